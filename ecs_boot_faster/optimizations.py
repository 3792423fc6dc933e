"""Configuration templates that shorten the boot of ECS-Optimized AMIs.

Each unit is a literal file consumed by an existing daemon at its next start or
reload. The ECS agent configuration is the only write-once unit so that a
user-supplied cluster configuration is never clobbered.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence


class WritePolicy(str, Enum):
    OVERWRITE = "overwrite"
    WRITE_IF_ABSENT = "write-if-absent"


@dataclass(frozen=True)
class OptimizationUnit:
    subsystem: str
    description: str
    destination: str
    content: str
    policy: WritePolicy = WritePolicy.OVERWRITE
    only_if_enabled: Optional[str] = None


JOURNALD_CONF = """\
[Journal]
# Reduce journal size for faster startup and cleanup
SystemMaxUse=100M
SystemKeepFree=500M
SystemMaxFileSize=10M
SystemMaxFiles=10
# Reduce sync frequency for faster writes during boot
SyncIntervalSec=60
# Disable syslog forwarding for performance
ForwardToSyslog=no
# Enable compression for space efficiency
Compress=yes
# Use persistent storage
Storage=persistent
"""

NETWORK_WAIT_TIMEOUT_SECONDS = 30

NETWORK_WAIT_CONF = f"""\
[Service]
# Reduce network wait timeout from default 120s to {NETWORK_WAIT_TIMEOUT_SECONDS}s (more conservative)
ExecStart=
ExecStart=/usr/lib/systemd/systemd-networkd-wait-online --timeout={NETWORK_WAIT_TIMEOUT_SECONDS}
"""

CLOUD_INIT_CFG = """\
# Optimize datasource detection for EC2
datasource_list: [ Ec2, None ]

# Conservative cloud-init optimization - keep essential modules
cloud_init_modules:
 - migrator
 - seed_random
 - bootcmd
 - write-files
 - growpart
 - resizefs
 - set_hostname
 - update_hostname
 - update_etc_hosts
 - ca-certs
 - rsyslog
 - users-groups

# Keep essential config modules
cloud_config_modules:
 - ssh
 - set-passwords
 - yum-add-repo
 - package-update-upgrade-install
 - timezone
 - disable-ec2-metadata
 - runcmd

# Keep essential final modules
cloud_final_modules:
 - package-update-upgrade-install
 - scripts-vendor
 - scripts-per-once
 - scripts-per-boot
 - scripts-per-instance
 - scripts-user
 - ssh-authkey-fingerprints
 - keys-to-console
 - final-message
"""

DOCKER_DAEMON_JSON = """\
{
  "log-driver": "journald",
  "log-opts": {
    "max-size": "10m",
    "max-file": "3"
  },
  "storage-driver": "overlay2",
  "storage-opts": [
    "overlay2.override_kernel_check=true"
  ],
  "live-restore": true,
  "userland-proxy": false,
  "no-new-privileges": true,
  "iptables": true,
  "ip-forward": true,
  "ip-masq": true,
  "fixed-cidr": "172.17.0.0/16"
}
"""

DOCKER_SERVICE_CONF = """\
[Service]
# Conservative startup timeout for reliability
TimeoutStartSec=60
# Faster restart on failure
RestartSec=2
"""

ECS_CONFIG = """\
# Basic ECS configuration with performance optimizations
ECS_CLUSTER=default
ECS_AVAILABLE_LOGGING_DRIVERS=["json-file","awslogs"]

# Performance optimizations for faster startup
ECS_ENGINE_TASK_CLEANUP_WAIT_DURATION=1m
ECS_IMAGE_CLEANUP_INTERVAL=10m
ECS_IMAGE_MINIMUM_CLEANUP_AGE=30m
ECS_NUM_IMAGES_DELETE_PER_CYCLE=5

# Reduce polling intervals
ECS_POLL_METRICS_INTERVAL=60s
ECS_CONTAINER_STOP_TIMEOUT=30s

# Resource reservations
ECS_RESERVED_MEMORY=256
ECS_RESERVED_PORTS=[22,2376,2375,51678,51679]

# Logging optimization
ECS_LOGLEVEL=info
ECS_LOGFILE=/log/ecs-agent.log

# Enable required features
ECS_ENABLE_TASK_IAM_ROLE=true
ECS_ENABLE_TASK_IAM_ROLE_NETWORK_HOST=true
"""

ECS_SERVICE_CONF = """\
[Service]
# Conservative startup timeout for reliability
TimeoutStartSec=90
# Faster restart on failure
RestartSec=5
"""

UDEV_RULES = """\
# Skip unnecessary device probing for faster boot
SUBSYSTEM=="block", KERNEL=="loop*", OPTIONS+="nowatch"
SUBSYSTEM=="block", KERNEL=="ram*", OPTIONS+="nowatch"
# Skip CD-ROM probing (not needed in cloud instances)
KERNEL=="sr*", OPTIONS+="nowatch"
"""

BOOT_UPDATE_CONF = """\
[Service]
# Conservative timeout for boot update service
TimeoutStartSec=30
"""

UDEV_TRIGGER_CONF = """\
[Service]
# Conservative timeout for device enumeration
TimeoutStartSec=60
"""

ECS_CONFIG_PATH = "/etc/ecs/ecs.config"
BOOT_UPDATE_SERVICE = "systemd-boot-update.service"

OPTIMIZATION_PLAN: Sequence[OptimizationUnit] = (
    OptimizationUnit(
        subsystem="journald",
        description="systemd-journald retention and sync",
        destination="/etc/systemd/journald.conf.d/boot-optimization.conf",
        content=JOURNALD_CONF,
    ),
    OptimizationUnit(
        subsystem="network-wait",
        description="network wait timeout",
        destination="/etc/systemd/system/systemd-networkd-wait-online.service.d/timeout.conf",
        content=NETWORK_WAIT_CONF,
    ),
    OptimizationUnit(
        subsystem="cloud-init",
        description="cloud-init module lists",
        destination="/etc/cloud/cloud.cfg.d/99-boot-optimization.cfg",
        content=CLOUD_INIT_CFG,
    ),
    OptimizationUnit(
        subsystem="docker",
        description="Docker daemon configuration",
        destination="/etc/docker/daemon.json",
        content=DOCKER_DAEMON_JSON,
    ),
    OptimizationUnit(
        subsystem="docker",
        description="docker.service timeouts",
        destination="/etc/systemd/system/docker.service.d/boot-optimization.conf",
        content=DOCKER_SERVICE_CONF,
    ),
    OptimizationUnit(
        subsystem="ecs",
        description="ECS agent configuration",
        destination=ECS_CONFIG_PATH,
        content=ECS_CONFIG,
        policy=WritePolicy.WRITE_IF_ABSENT,
    ),
    OptimizationUnit(
        subsystem="ecs",
        description="ecs.service timeouts",
        destination="/etc/systemd/system/ecs.service.d/boot-optimization.conf",
        content=ECS_SERVICE_CONF,
    ),
    OptimizationUnit(
        subsystem="udev",
        description="device probing rules",
        destination="/etc/udev/rules.d/99-boot-optimization.rules",
        content=UDEV_RULES,
    ),
    OptimizationUnit(
        subsystem="boot-update",
        description="boot update service timeout",
        destination=f"/etc/systemd/system/{BOOT_UPDATE_SERVICE}.d/timeout.conf",
        content=BOOT_UPDATE_CONF,
        only_if_enabled=BOOT_UPDATE_SERVICE,
    ),
    OptimizationUnit(
        subsystem="udev",
        description="udev trigger timeout",
        destination="/etc/systemd/system/systemd-udev-trigger.service.d/optimization.conf",
        content=UDEV_TRIGGER_CONF,
    ),
)

SERVICES_TO_DISABLE: Sequence[str] = ("update-motd.service",)

JOURNALD_SERVICE = "systemd-journald.service"

# Units whose start time the plan above shortens, for diagnostics.
SERVICE_SUBSYSTEMS: Dict[str, str] = {
    "systemd-journald.service": "journald",
    "systemd-journal-flush.service": "journald",
    "systemd-networkd-wait-online.service": "network-wait",
    "cloud-init-local.service": "cloud-init",
    "cloud-init.service": "cloud-init",
    "cloud-config.service": "cloud-init",
    "cloud-final.service": "cloud-init",
    "docker.service": "docker",
    "ecs.service": "ecs",
    "systemd-udev-trigger.service": "udev",
    "systemd-udev-settle.service": "udev",
    "systemd-boot-update.service": "boot-update",
}

MARKER_PATH = "/opt/systemd-boot-optimizations-complete.txt"
MARKER_MODE = 0o644


def plan_subsystems(plan: Sequence[OptimizationUnit] = OPTIMIZATION_PLAN) -> List[str]:
    """Subsystem tags of ``plan`` in first-seen order."""
    tags: List[str] = []
    for unit in plan:
        if unit.subsystem not in tags:
            tags.append(unit.subsystem)
    return tags


@dataclass
class CompletionMarker:
    completed_at: datetime
    applied: Sequence[str]
    approach: str = "conservative_reliable"
    expected_improvement: str = "3-8_seconds"
    expected_boot_time: str = "6-12_seconds"
    refinements: Sequence[str] = field(
        default_factory=lambda: (
            "removed_ipv6_disable",
            "conservative_timeouts",
            "essential_cloud_init_modules",
        )
    )

    def render(self) -> str:
        lines = [
            f"SYSTEMD_BOOT_OPTIMIZATIONS_COMPLETE={self.completed_at.isoformat(timespec='seconds')}",
            f"OPTIMIZATIONS_APPLIED={','.join(self.applied)}",
            f"APPROACH={self.approach}",
            f"EXPECTED_BOOT_TIME_IMPROVEMENT={self.expected_improvement}",
            f"TOTAL_EXPECTED_BOOT_TIME={self.expected_boot_time}",
            f"REFINEMENTS_APPLIED={','.join(self.refinements)}",
        ]
        return "\n".join(lines) + "\n"
