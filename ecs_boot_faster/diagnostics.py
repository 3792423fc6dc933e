"""Generate actionable findings from a boot report."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .inspection import BootReport
from .optimizations import SERVICE_SUBSYSTEMS, SERVICES_TO_DISABLE
from .system_state import DiskUsage, SystemSnapshot
from .systemd_output import BootTiming, ServiceTiming

SLOW_BOOT_SECONDS = 20.0
SLOW_USERSPACE_SECONDS = 12.0


@dataclass
class Bottleneck:
    title: str
    issue: str
    evidence: str
    solutions: Sequence[str]


def diagnose(report: BootReport) -> List[Bottleneck]:
    """Analyze a boot report and return likely boot bottlenecks with fixes."""
    bottlenecks: List[Bottleneck] = []

    boot_note = _diagnose_boot_time(report.boot_timing)
    if boot_note:
        bottlenecks.append(boot_note)
    bottlenecks.extend(_diagnose_failed_units(report.failed_units))
    bottlenecks.extend(_diagnose_slow_services(report.slow_services))
    if report.snapshot is not None:
        bottlenecks.extend(_diagnose_memory(report.snapshot))
        bottlenecks.extend(_diagnose_disk(report.snapshot.disk_usages))

    return bottlenecks


def _diagnose_boot_time(timing: Optional[BootTiming]) -> Optional[Bottleneck]:
    if timing is None or timing.total < SLOW_BOOT_SECONDS:
        return None
    userspace = timing.userspace or 0.0
    dominated_by = "userspace" if userspace >= SLOW_USERSPACE_SECONDS else "kernel/initrd"
    solutions = ["Run `ecs-boot-optimize` while building the AMI and reboot to measure again."]
    if dominated_by == "userspace":
        solutions.append("Check `systemd-analyze critical-chain` for the unit holding up multi-user.target.")
    else:
        solutions.append("Trim initrd modules and review kernel command line options for the instance family.")
    return Bottleneck(
        title="Slow boot",
        issue=f"Boot takes longer than {SLOW_BOOT_SECONDS:.0f}s, mostly in {dominated_by}.",
        evidence=", ".join(f"{phase} {seconds:.1f}s" for phase, seconds in timing.phases.items())
        + f" = {timing.total:.1f}s.",
        solutions=solutions,
    )


def _diagnose_failed_units(units: Sequence[str]) -> List[Bottleneck]:
    if not units:
        return []
    return [
        Bottleneck(
            title="Failed units",
            issue="Failed units can hold dependent targets until their start timeout expires.",
            evidence=", ".join(units) + ".",
            solutions=[
                "Inspect each unit with `journalctl -b -u <unit>`.",
                "Disable units the AMI does not need, or fix their configuration.",
            ],
        )
    ]


def _diagnose_slow_services(timings: Sequence[ServiceTiming]) -> List[Bottleneck]:
    findings: List[Bottleneck] = []
    for timing in timings:
        subsystem = SERVICE_SUBSYSTEMS.get(timing.unit)
        if subsystem is not None:
            solutions = [f"Apply the `{subsystem}` optimization with `ecs-boot-optimize`."]
        elif timing.unit in SERVICES_TO_DISABLE:
            solutions = [f"`ecs-boot-optimize` disables {timing.unit}."]
        else:
            solutions = [
                f"Check whether {timing.unit} is needed on a container host; disable it if not.",
                f"Add a drop-in under /etc/systemd/system/{timing.unit}.d/ to shorten its TimeoutStartSec.",
            ]
        findings.append(
            Bottleneck(
                title="Slow service",
                issue=f"{timing.unit} delays boot.",
                evidence=f"Took {timing.seconds:.1f}s to start.",
                solutions=solutions,
            )
        )
    return findings


def _diagnose_memory(snapshot: SystemSnapshot) -> List[Bottleneck]:
    if snapshot.memory_percent < 85:
        return []
    return [
        Bottleneck(
            title="Memory pressure",
            issue="Little memory is left for tasks; the ECS agent reserves 256 MiB on top.",
            evidence=f"Memory usage {snapshot.memory_percent:.0f}%, used {snapshot.memory_used / (1024**3):.1f} GiB, {snapshot.task_memory_available / (1024**2):.0f} MiB left for tasks.",
            solutions=[
                "Pick a larger instance type or lower task memory reservations.",
                "Check the top memory processes for leftovers from the AMI build.",
            ],
        )
    ]


def _diagnose_disk(disks: Sequence[DiskUsage]) -> List[Bottleneck]:
    findings: List[Bottleneck] = []
    for disk in disks:
        if disk.percent >= 85:
            findings.append(
                Bottleneck(
                    title="Low disk space",
                    issue=f"{disk.mount_point} is almost full; image pulls and journal writes slow down.",
                    evidence=f"Usage {disk.percent:.0f}% ({disk.used_gb:.1f} / {disk.total_gb:.1f} GiB).",
                    solutions=[
                        "Prune unused Docker images with `docker image prune -a`.",
                        "Lower ECS_IMAGE_CLEANUP_INTERVAL so the agent removes images sooner.",
                    ],
                )
            )
    return findings
