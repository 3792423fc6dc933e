"""Console-friendly formatting utilities."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence

from rich.console import Console

from .inspection import SLOWEST_SERVICES, BootReport
from .system_state import DiskUsage, ProcessUsage, SystemSnapshot

REPORT_TITLE = "ECS Optimized AMI Boot Performance Investigation"


class StatusLog:
    """Timestamped console log lines prefixed with a status glyph."""

    INFO = "ℹ️ "
    SUCCESS = "✅"
    WARNING = "⚠️ "

    def __init__(self, console: Optional[Console] = None, clock: Callable[[], datetime] = datetime.now) -> None:
        self.console = console or Console()
        self.clock = clock

    def emit(self, glyph: str, message: str) -> None:
        self.console.print(
            f"[{self.clock():%Y-%m-%d %H:%M:%S}] {glyph} {message}",
            markup=False,
            highlight=False,
            soft_wrap=True,
        )

    def info(self, message: str) -> None:
        self.emit(self.INFO, message)

    def success(self, message: str) -> None:
        self.emit(self.SUCCESS, message)

    def warning(self, message: str) -> None:
        self.emit(self.WARNING, message)


def format_bytes(num: float) -> str:
    suffixes = ["B", "KiB", "MiB", "GiB", "TiB"]
    value = float(num)
    for suffix in suffixes:
        if value < 1024 or suffix == suffixes[-1]:
            return f"{value:.1f} {suffix}"
        value /= 1024
    return f"{value:.1f} TiB"


def format_seconds(seconds: Optional[float]) -> str:
    return "unknown" if seconds is None else f"{seconds:.3f}s"


def format_started(seconds: Optional[float]) -> str:
    return "-" if seconds is None else f"+{seconds:.1f}s"


def render_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    widths = [len(h) for h in headers]
    for row in rows:
        for index, cell in enumerate(row):
            widths[index] = max(widths[index], len(cell))
    lines = []
    lines.append(_format_row(headers, widths))
    lines.append(_format_row(["-" * w for w in widths], widths))
    for row in rows:
        lines.append(_format_row(row, widths))
    return "\n".join(lines)


def format_process_table(processes: Iterable[ProcessUsage]) -> str:
    rows = [
        [
            str(proc.pid),
            proc.name,
            f"{proc.memory_percent:.0f}%",
            format_bytes(proc.rss_bytes),
            format_started(proc.started_after_boot),
        ]
        for proc in processes
    ]
    return render_table(["PID", "Process", "Memory", "RSS", "Started"], rows) if rows else "No process data"


def format_disk_table(disks: Iterable[DiskUsage]) -> str:
    rows = [
        [disk.mount_point, f"{disk.used_gb:.1f} / {disk.total_gb:.1f} GiB", f"{disk.percent:.0f}%"]
        for disk in disks
    ]
    return render_table(["Mount", "Used / Total", "Usage"], rows) if rows else "No disk data"


def format_snapshot(snapshot: SystemSnapshot) -> str:
    lines = [
        f"Booted: {snapshot.boot_time:%Y-%m-%d %H:%M:%S} (up {snapshot.uptime_seconds:.0f}s)",
        f"Memory: {snapshot.memory_percent:.0f}% | Used {format_bytes(snapshot.memory_used)} / {format_bytes(snapshot.memory_total)}",
        f"Available to tasks: {format_bytes(snapshot.task_memory_available)} (after ECS agent reservation)",
    ]
    if snapshot.disk_usages:
        lines.append("Disks:")
        lines.append(format_disk_table(snapshot.disk_usages))
    lines.append("Top Memory:")
    lines.append(format_process_table(snapshot.top_memory_processes))
    return "\n".join(lines)


def format_report(report: BootReport) -> str:
    """Render the collected sections the way an operator reads them in a terminal."""
    lines: List[str] = [_header(REPORT_TITLE), f"Timestamp: {report.timestamp:%Y-%m-%d %H:%M:%S}", ""]
    for section in report.sections:
        lines.append(_header(section.title))
        for entry in section.entries:
            if "\n" in entry.output:
                lines.append(f"{entry.label}:")
                lines.append(entry.output)
            else:
                lines.append(f"{entry.label}: {entry.output}")
            lines.append("")
    if report.snapshot is not None:
        lines.append(_header("Resource Snapshot"))
        lines.append(format_snapshot(report.snapshot))
        lines.append("")
    lines.append(_header("Performance Recommendations"))
    lines.append(format_summary(report))
    return "\n".join(lines)


def format_summary(report: BootReport) -> str:
    timing = report.boot_timing
    lines = [
        "Analysis Summary:",
        f"1. Boot Time: {format_seconds(timing.total if timing else None)}",
        f"2. Kernel Time: {format_seconds(timing.kernel if timing else None)}",
        f"3. Userspace Time: {format_seconds(timing.userspace if timing else None)}",
        "",
        f"Top {SLOWEST_SERVICES} Slowest Services:",
    ]
    if report.slowest_services:
        lines.append(
            render_table(
                ["Time", "Unit"],
                [[format_seconds(t.seconds), t.unit] for t in report.slowest_services],
            )
        )
    else:
        lines.append("No service timing data")
    return "\n".join(lines)


def _header(title: str) -> str:
    return f"=== {title} ==="


def _format_row(row: Sequence[str], widths: Sequence[int]) -> str:
    padded = [cell.ljust(width) for cell, width in zip(row, widths)]
    return " | ".join(padded)
