"""Apply the boot optimization plan to a host or a staged image root."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .commands import CommandResult, Runner, run_command
from .formatting import StatusLog
from .optimizations import (
    JOURNALD_SERVICE,
    MARKER_MODE,
    MARKER_PATH,
    OPTIMIZATION_PLAN,
    SERVICES_TO_DISABLE,
    CompletionMarker,
    OptimizationUnit,
    WritePolicy,
    plan_subsystems,
)

WRITTEN = "written"
PLANNED = "planned"
SKIPPED = "skipped"
FAILED = "failed"

DISABLED = "disabled"
ALREADY_DISABLED = "already-disabled"
NOT_FOUND = "not-found"


class Systemctl:
    """Service manager operations, optionally against an offline root."""

    def __init__(self, runner: Runner = run_command, root: str = "/") -> None:
        self.runner = runner
        self.root = root

    @property
    def offline(self) -> bool:
        return Path(self.root).resolve() != Path("/")

    def _argv(self, *args: str) -> List[str]:
        argv = ["systemctl"]
        if self.offline:
            argv.append(f"--root={self.root}")
        argv.extend(args)
        return argv

    def is_enabled(self, unit: str) -> bool:
        return self.runner(self._argv("is-enabled", unit)).ok

    def has_unit_file(self, unit: str) -> bool:
        result = self.runner(self._argv("list-unit-files", "--no-legend", "--no-pager", unit))
        return result.ok and unit in result.stdout

    def disable(self, unit: str) -> CommandResult:
        return self.runner(self._argv("disable", unit))

    def daemon_reload(self) -> CommandResult:
        return self.runner(["systemctl", "daemon-reload"])

    def restart(self, unit: str) -> CommandResult:
        return self.runner(["systemctl", "restart", unit])


@dataclass
class UnitOutcome:
    subsystem: str
    destination: str
    status: str
    detail: str = ""


@dataclass
class ServiceOutcome:
    service: str
    status: str
    detail: str = ""


@dataclass
class ApplyReport:
    root: str
    dry_run: bool
    units: List[UnitOutcome] = field(default_factory=list)
    services: List[ServiceOutcome] = field(default_factory=list)
    reloaded: bool = False
    journald_restarted: bool = False
    marker_path: Optional[str] = None
    applied_subsystems: List[str] = field(default_factory=list)


class BootOptimizer:
    """Writes the optimization plan, disables slow services and reloads systemd.

    Directory creation and permission errors propagate and abort the run; any
    other failed file write or service command is logged and the remaining
    steps still run.
    """

    def __init__(
        self,
        root: str = "/",
        systemctl: Optional[Systemctl] = None,
        log: Optional[StatusLog] = None,
        clock: Callable[[], datetime] = datetime.now,
        dry_run: bool = False,
    ) -> None:
        self.root = root
        self.systemctl = systemctl or Systemctl(root=root)
        self.log = log or StatusLog(clock=clock)
        self.clock = clock
        self.dry_run = dry_run

    def resolve(self, path: str) -> Path:
        return Path(self.root) / path.lstrip("/")

    def apply(
        self,
        plan: Sequence[OptimizationUnit] = OPTIMIZATION_PLAN,
        services: Sequence[str] = SERVICES_TO_DISABLE,
        restart_journald: bool = False,
    ) -> ApplyReport:
        report = ApplyReport(root=self.root, dry_run=self.dry_run)
        self.log.info("Applying systemd boot optimizations...")

        for unit in plan:
            report.units.append(self.apply_unit(unit))

        self.log.info("Disabling services known to cause boot delays...")
        for service in services:
            report.services.append(self.reconcile_service(service))

        report.reloaded = self.reload()
        if restart_journald:
            report.journald_restarted = self.restart_journald()

        report.applied_subsystems = _applied_subsystems(plan, report.units)
        report.marker_path = self.write_marker(report.applied_subsystems)

        if self.dry_run:
            self.log.success("Dry run complete, nothing was changed")
        else:
            self.log.success("SystemD boot optimizations completed")
        return report

    def apply_unit(self, unit: OptimizationUnit) -> UnitOutcome:
        path = self.resolve(unit.destination)
        self.log.info(f"Optimizing {unit.description} ({unit.subsystem})")

        if unit.only_if_enabled and not self.systemctl.is_enabled(unit.only_if_enabled):
            self.log.info(f"{unit.only_if_enabled} not enabled, skipping")
            return UnitOutcome(unit.subsystem, unit.destination, SKIPPED, "service not enabled")

        if unit.policy is WritePolicy.WRITE_IF_ABSENT and _has_content(path):
            self.log.info(f"{unit.destination} already exists, skipping creation")
            return UnitOutcome(unit.subsystem, unit.destination, SKIPPED, "existing configuration kept")

        if self.dry_run:
            self.log.info(f"Would write {path}")
            return UnitOutcome(unit.subsystem, unit.destination, PLANNED)

        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            path.write_text(unit.content)
        except PermissionError:
            raise
        except OSError as exc:
            self.log.warning(f"Could not write {path}: {exc}")
            return UnitOutcome(unit.subsystem, unit.destination, FAILED, str(exc))
        self.log.success(f"Wrote {path}")
        return UnitOutcome(unit.subsystem, unit.destination, WRITTEN)

    def reconcile_service(self, service: str) -> ServiceOutcome:
        if self.systemctl.is_enabled(service):
            if self.dry_run:
                self.log.info(f"Would disable {service}")
                return ServiceOutcome(service, PLANNED)
            result = self.systemctl.disable(service)
            if result.ok:
                self.log.success(f"Disabled {service}")
                return ServiceOutcome(service, DISABLED)
            detail = result.stderr.strip() or f"exit status {result.returncode}"
            self.log.warning(f"Could not disable {service}: {detail}")
            return ServiceOutcome(service, FAILED, detail)
        if self.systemctl.has_unit_file(service):
            self.log.info(f"{service} already disabled")
            return ServiceOutcome(service, ALREADY_DISABLED)
        self.log.info(f"{service} not found (may not exist on this system)")
        return ServiceOutcome(service, NOT_FOUND)

    def reload(self) -> bool:
        if self.dry_run:
            return False
        if self.systemctl.offline:
            self.log.info(f"Staged under {self.root}, skipping systemd reload")
            return False
        self.log.info("Reloading systemd configuration...")
        result = self.systemctl.daemon_reload()
        if not result.ok:
            self.log.warning(f"systemctl daemon-reload failed: {result.stderr.strip()}")
        return result.ok

    def restart_journald(self) -> bool:
        if self.dry_run or self.systemctl.offline:
            return False
        result = self.systemctl.restart(JOURNALD_SERVICE)
        if result.ok:
            self.log.success(f"Restarted {JOURNALD_SERVICE}")
        else:
            self.log.warning(f"Could not restart {JOURNALD_SERVICE}: {result.stderr.strip()}")
        return result.ok

    def write_marker(self, applied: Sequence[str]) -> Optional[str]:
        if self.dry_run:
            return None
        marker = CompletionMarker(completed_at=self.clock(), applied=list(applied))
        path = self.resolve(MARKER_PATH)
        self.log.info("Creating optimization completion marker...")
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            path.write_text(marker.render())
            path.chmod(MARKER_MODE)
        except PermissionError:
            raise
        except OSError as exc:
            self.log.warning(f"Could not write {path}: {exc}")
            return None
        self.log.info(f"Optimization details saved to: {path}")
        return str(path)


def _has_content(path: Path) -> bool:
    try:
        return path.stat().st_size > 0
    except FileNotFoundError:
        return False


def _applied_subsystems(plan: Sequence[OptimizationUnit], outcomes: Sequence[UnitOutcome]) -> List[str]:
    """Subsystems of ``plan`` in order, dropping any with a failed write."""
    failed = {outcome.subsystem for outcome in outcomes if outcome.status == FAILED}
    return [tag for tag in plan_subsystems(plan) if tag not in failed]
