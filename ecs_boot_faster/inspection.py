"""Read-only boot performance inspection of an ECS-Optimized AMI instance.

Every step is independent: a missing tool or a failing command is replaced by
a fallback line and the collection carries on with the next step.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
import re
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .commands import CommandResult, Runner, run_command
from .system_state import SystemSnapshot
from .systemd_output import (
    BootTiming,
    ServiceTiming,
    parse_blame,
    parse_boot_timing,
    parse_failed_units,
    slower_than,
)

METADATA_URL = "http://169.254.169.254/latest"
METADATA_MAX_TIME = "2"
SLOW_SERVICE_SECONDS = 5.0
SLOWEST_SERVICES = 5

Selector = Callable[[str], str]


def lines(
    pattern: Optional[str] = None,
    *,
    head: Optional[int] = None,
    tail: Optional[int] = None,
    exclude: Optional[str] = None,
    ignore_case: bool = False,
) -> Selector:
    """Build a grep/head/tail style filter over command output."""
    matcher = re.compile(pattern, re.IGNORECASE if ignore_case else 0) if pattern else None
    excluder = re.compile(exclude) if exclude else None

    def select(text: str) -> str:
        selected = [
            line
            for line in text.splitlines()
            if (matcher is None or matcher.search(line))
            and (excluder is None or not excluder.search(line))
        ]
        if head is not None:
            selected = selected[:head]
        if tail is not None:
            selected = selected[-tail:] if tail else []
        return "\n".join(selected)

    return select


def slow_services(threshold: float = SLOW_SERVICE_SECONDS, head: int = 10) -> Selector:
    """Keep ``systemd-analyze blame`` lines slower than ``threshold`` seconds."""

    def select(text: str) -> str:
        slow = slower_than(parse_blame(text), threshold)[:head]
        return "\n".join(f"{timing.seconds:8.3f}s {timing.unit}" for timing in slow)

    return select


@dataclass(frozen=True)
class InspectionStep:
    section: str
    label: str
    command: Tuple[str, ...] = ()
    path: Optional[str] = None
    metadata: Optional[str] = None
    select: Optional[Selector] = None
    fallback: Optional[str] = None

    @property
    def tool(self) -> str:
        if self.metadata is not None:
            return "instance metadata"
        if self.path is not None:
            return self.path
        return self.command[0]

    @property
    def fallback_text(self) -> str:
        return self.fallback or f"{self.tool} not available"


@dataclass
class SectionEntry:
    label: str
    output: str
    available: bool = True


@dataclass
class ReportSection:
    title: str
    entries: List[SectionEntry] = field(default_factory=list)


@dataclass
class BootReport:
    timestamp: datetime
    sections: List[ReportSection] = field(default_factory=list)
    boot_timing: Optional[BootTiming] = None
    slowest_services: List[ServiceTiming] = field(default_factory=list)
    slow_services: List[ServiceTiming] = field(default_factory=list)
    failed_units: List[str] = field(default_factory=list)
    snapshot: Optional[SystemSnapshot] = None

    def section(self, title: str) -> Optional[ReportSection]:
        for section in self.sections:
            if section.title == title:
                return section
        return None


def _step(section: str, label: str, *command: str, **options) -> InspectionStep:
    return InspectionStep(section=section, label=label, command=tuple(command), **options)


BOOT_MARKERS = r"(Freeing|Mount|Loading|Starting|Reached|Failed)"
ERROR_MARKERS = r"(error|Error|ERROR|warn|Warn|WARN|fail|Fail|FAIL)"
KERNEL_TIMESTAMP = r"\[[0-9]+\.[0-9]+\]"
JOURNAL_MILESTONES = r"(Started|Reached|Failed)"
DURATION = r"([0-9]+s|[0-9]+ms)"

INSPECTION_STEPS: Sequence[InspectionStep] = (
    InspectionStep("Instance", "Instance Type", metadata="meta-data/instance-type"),
    InspectionStep("Instance", "AMI ID", metadata="meta-data/ami-id"),
    InspectionStep("Instance", "Instance ID", metadata="meta-data/instance-id"),
    InspectionStep("Instance", "Availability Zone", metadata="meta-data/placement/availability-zone"),
    _step("System Information", "Kernel Version", "uname", "-r"),
    InspectionStep("System Information", "OS Release", path="/etc/os-release", select=lines(head=5)),
    _step("System Information", "Uptime", "uptime"),
    InspectionStep("System Information", "Load Average", path="/proc/loadavg"),
    _step("Boot Time Analysis", "System Boot Time", "systemd-analyze"),
    _step("Boot Time Analysis", "Detailed Boot Timing", "systemd-analyze", "blame", select=lines(head=20)),
    _step("Boot Time Analysis", "Critical Chain Analysis", "systemd-analyze", "critical-chain"),
    _step("Systemd Service Status", "Failed Services", "systemctl", "--failed", "--no-pager"),
    _step(
        "Systemd Service Status",
        f"Slow Starting Services (>{SLOW_SERVICE_SECONDS:.0f} seconds)",
        "systemd-analyze",
        "blame",
        select=slow_services(),
    ),
    _step("Kernel Boot Messages", "Boot-related messages", "dmesg", select=lines(BOOT_MARKERS, head=20)),
    _step("Kernel Boot Messages", "Error/Warning messages", "dmesg", select=lines(ERROR_MARKERS, head=15)),
    _step("Kernel Boot Messages", "Timing-related messages", "dmesg", select=lines(KERNEL_TIMESTAMP, tail=20)),
    _step("ECS Agent Status", "ECS Agent Service Status", "systemctl", "status", "ecs", "--no-pager", "-l"),
    _step("ECS Agent Status", "ECS Agent Logs (last 20 lines)", "journalctl", "-u", "ecs", "--no-pager", "-n", "20"),
    _step("Docker Status", "Docker Service Status", "systemctl", "status", "docker", "--no-pager", "-l"),
    _step("Docker Status", "Docker Version", "docker", "--version", fallback="Docker not available"),
    _step("Network Configuration", "Network Interfaces", "ip", "addr", "show", select=lines(r"(inet |UP|DOWN)")),
    InspectionStep("Network Configuration", "DNS Configuration", path="/etc/resolv.conf"),
    _step("Storage Performance", "Disk Usage", "df", "-h"),
    _step("Storage Performance", "I/O Statistics", "iostat", "-x", "1", "3"),
    _step("Memory Usage", "Memory Information", "free", "-h"),
    _step(
        "Memory Usage",
        "Memory-related kernel messages",
        "dmesg",
        select=lines("memory", tail=10, ignore_case=True),
    ),
    _step("Process Analysis", "Top CPU consuming processes", "ps", "aux", "--sort=-%cpu", select=lines(head=10)),
    _step("Process Analysis", "Top Memory consuming processes", "ps", "aux", "--sort=-%mem", select=lines(head=10)),
    _step("Cloud-Init Analysis", "Cloud-init status", "cloud-init", "status", fallback="cloud-init status not available"),
    InspectionStep(
        "Cloud-Init Analysis",
        "Cloud-init timing",
        path="/var/log/cloud-init.log",
        select=lines(r"(took|seconds|finished)", tail=10),
        fallback="cloud-init logs not accessible",
    ),
    _step(
        "Journal Analysis",
        "Boot messages from journal",
        "journalctl",
        "-b",
        "--no-pager",
        select=lines(JOURNAL_MILESTONES, head=15),
    ),
    _step(
        "Journal Analysis",
        "Slow services from journal",
        "journalctl",
        "-b",
        "--no-pager",
        select=lines(DURATION, exclude="0ms", head=10),
    ),
    _step("Hardware Information", "CPU Information", "lscpu", select=lines(r"(Model name|CPU\(s\)|Thread|Core)")),
    _step("Hardware Information", "Block Devices", "lsblk"),
)


class _Collector:
    """Runs inspection steps, sharing output between steps that run the same command."""

    def __init__(self, runner: Runner) -> None:
        self.runner = runner
        self._results: Dict[Tuple[str, ...], CommandResult] = {}
        self._token: Optional[str] = None
        self._token_fetched = False

    def run(self, argv: Sequence[str]) -> CommandResult:
        key = tuple(argv)
        if key not in self._results:
            self._results[key] = self.runner(key)
        return self._results[key]

    def raw_output(self, step: InspectionStep) -> Optional[str]:
        if step.path is not None:
            return _read_file(step.path)
        if step.metadata is not None:
            return self._metadata(step.metadata)
        result = self.run(step.command)
        if not result.ran:
            return None
        if not result.ok and not result.stdout.strip():
            return None
        return result.stdout

    def collect(self, step: InspectionStep) -> SectionEntry:
        raw = self.raw_output(step)
        if raw is None:
            return SectionEntry(label=step.label, output=step.fallback_text, available=False)
        output = step.select(raw) if step.select else raw
        return SectionEntry(label=step.label, output=output.rstrip("\n"))

    def _metadata(self, path: str) -> Optional[str]:
        argv = ["curl", "-s", "-f", "--max-time", METADATA_MAX_TIME]
        token = self._imds_token()
        if token:
            argv += ["-H", f"X-aws-ec2-metadata-token: {token}"]
        result = self.run(argv + [f"{METADATA_URL}/{path}"])
        if not result.ok or not result.stdout.strip():
            return None
        return result.stdout.strip()

    def _imds_token(self) -> Optional[str]:
        # IMDSv2 first; instances that still allow IMDSv1 work without a token
        if not self._token_fetched:
            self._token_fetched = True
            result = self.run(
                [
                    "curl",
                    "-s",
                    "-f",
                    "--max-time",
                    METADATA_MAX_TIME,
                    "-X",
                    "PUT",
                    "-H",
                    "X-aws-ec2-metadata-token-ttl-seconds: 60",
                    f"{METADATA_URL}/api/token",
                ]
            )
            if result.ok and result.stdout.strip():
                self._token = result.stdout.strip()
        return self._token


def _read_file(path: str) -> Optional[str]:
    try:
        return Path(path).read_text(errors="replace")
    except OSError:
        return None


def collect_report(
    runner: Runner = run_command,
    steps: Sequence[InspectionStep] = INSPECTION_STEPS,
    snapshot: Optional[SystemSnapshot] = None,
) -> BootReport:
    """Run every inspection step in order and assemble the boot report."""
    collector = _Collector(runner)
    report = BootReport(timestamp=datetime.now(), snapshot=snapshot)

    for step in steps:
        section = report.section(step.section)
        if section is None:
            section = ReportSection(title=step.section)
            report.sections.append(section)
        section.entries.append(collector.collect(step))

    _summarize(report, collector)
    return report


def _summarize(report: BootReport, collector: _Collector) -> None:
    analyze = collector.run(("systemd-analyze",))
    if analyze.ok:
        report.boot_timing = parse_boot_timing(analyze.stdout)

    blame = collector.run(("systemd-analyze", "blame"))
    if blame.ok:
        timings = parse_blame(blame.stdout)
        report.slowest_services = timings[:SLOWEST_SERVICES]
        report.slow_services = slower_than(timings, SLOW_SERVICE_SECONDS)

    failed = collector.run(("systemctl", "--failed", "--no-pager"))
    if failed.ran:
        report.failed_units = parse_failed_units(failed.stdout)
