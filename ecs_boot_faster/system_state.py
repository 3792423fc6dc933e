"""Memory, disk and process state of a container instance after boot."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import psutil

# Filesystems Docker and systemd mount on a container host; they do not back
# the root volume or the image store.
PSEUDO_FILESYSTEMS = frozenset(
    {"overlay", "tmpfs", "devtmpfs", "squashfs", "nsfs", "proc", "sysfs", "cgroup", "cgroup2"}
)
CONTAINER_MOUNT_PREFIXES = ("/var/lib/docker/", "/var/lib/containerd/", "/run/")

ECS_RESERVED_MEMORY_BYTES = 256 * 1024**2


@dataclass
class ProcessUsage:
    pid: int
    name: str
    memory_percent: float
    rss_bytes: int
    started_after_boot: Optional[float] = None


@dataclass
class DiskUsage:
    mount_point: str
    total_gb: float
    used_gb: float
    percent: float


@dataclass
class SystemSnapshot:
    timestamp: datetime
    boot_time: datetime
    memory_total: int
    memory_used: int
    memory_available: int
    memory_percent: float
    top_memory_processes: List[ProcessUsage] = field(default_factory=list)
    disk_usages: List[DiskUsage] = field(default_factory=list)

    @property
    def uptime_seconds(self) -> float:
        return (self.timestamp - self.boot_time).total_seconds()

    @property
    def task_memory_available(self) -> int:
        """Memory the ECS agent can still hand out after its own reservation."""
        return max(self.memory_available - ECS_RESERVED_MEMORY_BYTES, 0)


def gather_snapshot(top_n: int = 5) -> SystemSnapshot:
    """Read instance memory, data volumes and the largest processes."""
    boot_timestamp = psutil.boot_time()
    memory = psutil.virtual_memory()
    processes = _process_usage(boot_timestamp)

    return SystemSnapshot(
        timestamp=datetime.now(),
        boot_time=datetime.fromtimestamp(boot_timestamp),
        memory_total=memory.total,
        memory_used=memory.used,
        memory_available=memory.available,
        memory_percent=memory.percent,
        top_memory_processes=sorted(processes, key=lambda p: p.rss_bytes, reverse=True)[:top_n],
        disk_usages=instance_volumes(psutil.disk_partitions(all=False)),
    )


def _process_usage(boot_timestamp: float) -> List[ProcessUsage]:
    usage: List[ProcessUsage] = []
    for proc in psutil.process_iter(["pid", "name", "memory_percent", "memory_info", "create_time"]):
        info = proc.info
        if info["memory_info"] is None:
            continue
        created = info["create_time"]
        usage.append(
            ProcessUsage(
                pid=info["pid"],
                name=info["name"] or "?",
                memory_percent=info["memory_percent"] or 0.0,
                rss_bytes=info["memory_info"].rss,
                started_after_boot=created - boot_timestamp if created else None,
            )
        )
    return usage


def instance_volumes(partitions) -> List[DiskUsage]:
    """Usage of the real volumes among ``partitions``, one entry per device."""
    disk_usages: List[DiskUsage] = []
    seen_devices = set()
    for partition in partitions:
        if partition.fstype in PSEUDO_FILESYSTEMS:
            continue
        if partition.mountpoint.startswith(CONTAINER_MOUNT_PREFIXES):
            continue
        # bind mounts of the same device into task volumes
        if partition.device in seen_devices:
            continue
        try:
            usage = psutil.disk_usage(partition.mountpoint)
        except (PermissionError, FileNotFoundError):
            continue
        seen_devices.add(partition.device)
        disk_usages.append(
            DiskUsage(
                mount_point=partition.mountpoint,
                total_gb=round(usage.total / (1024**3), 2),
                used_gb=round(usage.used / (1024**3), 2),
                percent=usage.percent,
            )
        )
    return disk_usages
