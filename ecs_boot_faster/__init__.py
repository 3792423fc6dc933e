"""
Boot time investigation and optimization for ECS-Optimized Amazon Linux AMIs.
"""

__all__ = [
    "applier",
    "cli",
    "commands",
    "diagnostics",
    "formatting",
    "inspection",
    "optimizations",
    "system_state",
    "systemd_output",
]
__version__ = "0.1.0"
