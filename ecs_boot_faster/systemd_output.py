"""Parse the text printed by systemd-analyze and systemctl."""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Dict, List, Optional

_TIMESPAN_PART = re.compile(r"(\d+(?:\.\d+)?)(us|µs|ms|min|s|h|d)")
_TIMESPAN_UNITS = {
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "min": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}
_PHASE = re.compile(r"^(?P<span>.+?)\s*\((?P<phase>[\w-]+)\)$")
_STARTUP_PREFIX = "Startup finished in"


@dataclass
class BootTiming:
    total: float
    phases: Dict[str, float] = field(default_factory=dict)

    @property
    def kernel(self) -> Optional[float]:
        return self.phases.get("kernel")

    @property
    def initrd(self) -> Optional[float]:
        return self.phases.get("initrd")

    @property
    def userspace(self) -> Optional[float]:
        return self.phases.get("userspace")


@dataclass
class ServiceTiming:
    unit: str
    seconds: float


def parse_timespan(text: str) -> Optional[float]:
    """Convert a systemd timespan such as ``1min 2.345s`` into seconds."""
    tokens = text.split()
    if not tokens:
        return None
    total = 0.0
    for token in tokens:
        match = _TIMESPAN_PART.fullmatch(token)
        if match is None:
            return None
        total += float(match.group(1)) * _TIMESPAN_UNITS[match.group(2)]
    return total


def parse_boot_timing(text: str) -> Optional[BootTiming]:
    """Read the ``Startup finished in ...`` line of ``systemd-analyze``.

    Returns ``None`` while the boot is still in progress or the output is not
    recognised.
    """
    for line in text.splitlines():
        if _STARTUP_PREFIX not in line:
            continue
        head, _, total_text = line.split(_STARTUP_PREFIX, 1)[1].partition("=")
        total = parse_timespan(total_text.strip())
        if total is None:
            return None
        phases: Dict[str, float] = {}
        for part in head.split("+"):
            match = _PHASE.match(part.strip())
            if match is None:
                continue
            seconds = parse_timespan(match.group("span"))
            if seconds is not None:
                phases[match.group("phase")] = seconds
        return BootTiming(total=total, phases=phases)
    return None


def parse_blame(text: str) -> List[ServiceTiming]:
    """Parse ``systemd-analyze blame`` lines, keeping their (slowest first) order."""
    timings: List[ServiceTiming] = []
    for line in text.splitlines():
        tokens = line.split()
        if len(tokens) < 2:
            continue
        seconds = parse_timespan(" ".join(tokens[:-1]))
        if seconds is None:
            continue
        timings.append(ServiceTiming(unit=tokens[-1], seconds=seconds))
    return timings


def slower_than(timings: List[ServiceTiming], threshold: float) -> List[ServiceTiming]:
    return [timing for timing in timings if timing.seconds > threshold]


def parse_failed_units(text: str) -> List[str]:
    """Unit names from ``systemctl --failed`` output."""
    units: List[str] = []
    for line in text.splitlines():
        tokens = line.replace("●", " ").replace("*", " ").split()
        if len(tokens) < 4 or "." not in tokens[0]:
            continue
        if tokens[2] == "failed":
            units.append(tokens[0])
    return units
