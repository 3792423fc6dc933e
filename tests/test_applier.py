import io
import json
from datetime import datetime
from pathlib import Path

import pytest
from rich.console import Console

import ecs_boot_faster
from ecs_boot_faster import cli
from ecs_boot_faster.applier import (
    ALREADY_DISABLED,
    DISABLED,
    FAILED,
    NOT_FOUND,
    SKIPPED,
    WRITTEN,
    BootOptimizer,
    Systemctl,
)
from ecs_boot_faster.commands import CommandResult
from ecs_boot_faster.formatting import StatusLog
from ecs_boot_faster.optimizations import ECS_CONFIG, MARKER_PATH, OPTIMIZATION_PLAN

TEMPLATES_BY_SUBSYSTEM = {unit.subsystem: unit.content for unit in OPTIMIZATION_PLAN if unit.subsystem in ("cloud-init", "network-wait")}

FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0)
ALL_SUBSYSTEMS = ["journald", "network-wait", "cloud-init", "docker", "ecs", "udev", "boot-update"]


class FakeSystemd:
    """Minimal systemctl stand-in tracking enabled and installed unit files."""

    def __init__(self, enabled=(), installed=()):
        self.enabled = set(enabled)
        self.installed = set(installed) | self.enabled
        self.calls = []

    def __call__(self, argv):
        argv = tuple(argv)
        self.calls.append(argv)
        args = [arg for arg in argv[1:] if not arg.startswith("--root=")]
        verb, rest = args[0], args[1:]
        if verb == "is-enabled":
            enabled = rest[0] in self.enabled
            return CommandResult(argv, 0 if enabled else 1, "enabled\n" if enabled else "disabled\n")
        if verb == "list-unit-files":
            unit = rest[-1]
            if unit in self.installed:
                return CommandResult(argv, 0, f"{unit} disabled enabled\n")
            return CommandResult(argv, 1, "")
        if verb == "disable":
            self.enabled.discard(rest[0])
            return CommandResult(argv, 0, "")
        return CommandResult(argv, 0, "")


def make_optimizer(root, systemd, *, online=False, dry_run=False):
    buffer = io.StringIO()
    log = StatusLog(Console(file=buffer, width=200), clock=lambda: FIXED_NOW)
    systemctl = Systemctl(runner=systemd, root="/" if online else str(root))
    optimizer = BootOptimizer(root=str(root), systemctl=systemctl, log=log, clock=lambda: FIXED_NOW, dry_run=dry_run)
    return optimizer, buffer


def read(root, path):
    return (root / path.lstrip("/")).read_text()


def test_full_run_writes_every_template(tmp_path):
    systemd = FakeSystemd(enabled={"systemd-boot-update.service", "update-motd.service"})
    optimizer, _ = make_optimizer(tmp_path, systemd)

    report = optimizer.apply()

    assert [outcome.status for outcome in report.units] == [WRITTEN] * len(OPTIMIZATION_PLAN)
    for unit in OPTIMIZATION_PLAN:
        assert read(tmp_path, unit.destination) == unit.content
    assert "ECS_CLUSTER=default" in read(tmp_path, "/etc/ecs/ecs.config")
    assert "ECS_RESERVED_MEMORY=256" in read(tmp_path, "/etc/ecs/ecs.config")
    assert "--timeout=30" in read(tmp_path, "/etc/systemd/system/systemd-networkd-wait-online.service.d/timeout.conf")
    json.loads(read(tmp_path, "/etc/docker/daemon.json"))


def test_marker_lists_fixed_subsystems(tmp_path):
    optimizer, _ = make_optimizer(tmp_path, FakeSystemd())

    report = optimizer.apply()

    marker = read(tmp_path, MARKER_PATH)
    assert report.applied_subsystems == ALL_SUBSYSTEMS
    assert f"OPTIMIZATIONS_APPLIED={','.join(ALL_SUBSYSTEMS)}\n" in marker
    assert marker.startswith("SYSTEMD_BOOT_OPTIMIZATIONS_COMPLETE=2026-10-19T12:00:00\n")
    assert "APPROACH=conservative_reliable" in marker
    assert (tmp_path / MARKER_PATH.lstrip("/")).stat().st_mode & 0o777 == 0o644


def test_second_run_is_idempotent(tmp_path):
    systemd = FakeSystemd(enabled={"update-motd.service"})
    optimizer, buffer = make_optimizer(tmp_path, systemd)

    first = optimizer.apply()
    contents = {unit.destination: read(tmp_path, unit.destination) for unit in OPTIMIZATION_PLAN if unit.subsystem != "boot-update"}
    second = optimizer.apply()

    assert {path: read(tmp_path, path) for path in contents} == contents
    assert first.services[0].status == DISABLED
    assert second.services[0].status == ALREADY_DISABLED
    log = buffer.getvalue()
    assert log.count("Disabled update-motd.service") == 1
    assert "update-motd.service already disabled" in log
    assert [call for call in systemd.calls if "disable" in call] == [
        ("systemctl", f"--root={tmp_path}", "disable", "update-motd.service")
    ]


def test_existing_ecs_config_is_left_untouched(tmp_path):
    ecs_config = tmp_path / "etc/ecs/ecs.config"
    ecs_config.parent.mkdir(parents=True)
    ecs_config.write_bytes(b"ECS_CLUSTER=production\nECS_ENABLE_SPOT_INSTANCE_DRAINING=true\n")
    optimizer, _ = make_optimizer(tmp_path, FakeSystemd())

    report = optimizer.apply()

    assert ecs_config.read_bytes() == b"ECS_CLUSTER=production\nECS_ENABLE_SPOT_INSTANCE_DRAINING=true\n"
    ecs_outcome = next(o for o in report.units if o.destination == "/etc/ecs/ecs.config")
    assert ecs_outcome.status == SKIPPED
    assert "ecs" in report.applied_subsystems


def test_empty_ecs_config_is_replaced(tmp_path):
    ecs_config = tmp_path / "etc/ecs/ecs.config"
    ecs_config.parent.mkdir(parents=True)
    ecs_config.write_text("")
    optimizer, _ = make_optimizer(tmp_path, FakeSystemd())

    optimizer.apply()

    assert ecs_config.read_text() == ECS_CONFIG


def test_operator_edit_survives_rerun(tmp_path):
    optimizer, _ = make_optimizer(tmp_path, FakeSystemd())
    optimizer.apply()
    assert read(tmp_path, "/etc/ecs/ecs.config") == ECS_CONFIG

    (tmp_path / "etc/ecs/ecs.config").write_text("ECS_CLUSTER=edited\n")
    optimizer.apply()

    assert read(tmp_path, "/etc/ecs/ecs.config") == "ECS_CLUSTER=edited\n"


def test_boot_update_override_needs_enabled_service(tmp_path):
    optimizer, buffer = make_optimizer(tmp_path, FakeSystemd())

    report = optimizer.apply()

    outcome = next(o for o in report.units if o.subsystem == "boot-update")
    assert outcome.status == SKIPPED
    assert not (tmp_path / "etc/systemd/system/systemd-boot-update.service.d").exists()
    assert "systemd-boot-update.service not enabled, skipping" in buffer.getvalue()


def test_missing_service_is_a_no_op(tmp_path):
    systemd = FakeSystemd()
    optimizer, buffer = make_optimizer(tmp_path, systemd)

    outcome = optimizer.reconcile_service("no-such.service")

    assert outcome.status == NOT_FOUND
    assert "no-such.service not found" in buffer.getvalue()
    assert not any("disable" in call for call in systemd.calls)


def test_failed_write_is_not_fatal(tmp_path):
    (tmp_path / "etc/docker/daemon.json").mkdir(parents=True)
    optimizer, buffer = make_optimizer(tmp_path, FakeSystemd())

    report = optimizer.apply()

    statuses = {o.destination: o.status for o in report.units}
    assert statuses["/etc/docker/daemon.json"] == FAILED
    assert statuses["/etc/udev/rules.d/99-boot-optimization.rules"] == WRITTEN
    assert "docker" not in report.applied_subsystems
    assert "Could not write" in buffer.getvalue()


def test_uncreatable_directory_aborts(tmp_path):
    (tmp_path / "etc").mkdir()
    (tmp_path / "etc/cloud").write_text("not a directory")
    optimizer, _ = make_optimizer(tmp_path, FakeSystemd())

    with pytest.raises(OSError):
        optimizer.apply()

    assert (tmp_path / "etc/systemd/journald.conf.d/boot-optimization.conf").exists()
    assert not (tmp_path / "etc/docker/daemon.json").exists()
    assert not (tmp_path / MARKER_PATH.lstrip("/")).exists()


def test_permission_denied_write_aborts(tmp_path, monkeypatch):
    def deny(self, *args, **kwargs):
        raise PermissionError(13, "Permission denied", str(self))

    monkeypatch.setattr(Path, "write_text", deny)
    optimizer, _ = make_optimizer(tmp_path, FakeSystemd())

    with pytest.raises(PermissionError):
        optimizer.apply()

    assert not (tmp_path / MARKER_PATH.lstrip("/")).exists()


def test_permission_denied_marker_aborts(tmp_path, monkeypatch):
    original_write_text = Path.write_text

    def deny_marker(self, *args, **kwargs):
        if self.name == "systemd-boot-optimizations-complete.txt":
            raise PermissionError(13, "Permission denied", str(self))
        return original_write_text(self, *args, **kwargs)

    monkeypatch.setattr(Path, "write_text", deny_marker)
    optimizer, _ = make_optimizer(tmp_path, FakeSystemd())

    with pytest.raises(PermissionError):
        optimizer.apply()

    assert (tmp_path / "etc/docker/daemon.json").exists()


def test_staged_root_skips_reload(tmp_path):
    systemd = FakeSystemd()
    optimizer, buffer = make_optimizer(tmp_path, systemd)

    report = optimizer.apply(restart_journald=True)

    assert not report.reloaded
    assert not report.journald_restarted
    assert ("systemctl", "daemon-reload") not in systemd.calls
    assert all(call[1] == f"--root={tmp_path}" for call in systemd.calls)
    assert "skipping systemd reload" in buffer.getvalue()


def test_live_system_reloads_once_and_restarts_journald_on_request(tmp_path):
    systemd = FakeSystemd()
    optimizer, _ = make_optimizer(tmp_path, systemd, online=True)

    report = optimizer.apply()
    assert report.reloaded
    assert systemd.calls.count(("systemctl", "daemon-reload")) == 1
    assert ("systemctl", "restart", "systemd-journald.service") not in systemd.calls

    report = optimizer.apply(restart_journald=True)
    assert report.journald_restarted
    assert ("systemctl", "restart", "systemd-journald.service") in systemd.calls


def test_dry_run_changes_nothing(tmp_path):
    systemd = FakeSystemd(enabled={"update-motd.service"})
    optimizer, _ = make_optimizer(tmp_path, systemd, dry_run=True)

    report = optimizer.apply()

    assert list(tmp_path.iterdir()) == []
    assert report.marker_path is None
    assert "update-motd.service" in systemd.enabled


def test_log_lines_are_timestamped(tmp_path):
    optimizer, buffer = make_optimizer(tmp_path, FakeSystemd())
    optimizer.apply()
    for line in buffer.getvalue().splitlines():
        assert line.startswith("[2026-10-19 12:00:00] ")


def test_optimize_cli_prints_json_report(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(cli, "BootOptimizer", _optimizer_factory(FakeSystemd()))

    cli.optimize_main(["--root", str(tmp_path), "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["applied_subsystems"] == ALL_SUBSYSTEMS
    assert payload["marker_path"].endswith("systemd-boot-optimizations-complete.txt")


def _optimizer_factory(systemd):
    def factory(root, log, dry_run):
        return BootOptimizer(root=root, systemctl=Systemctl(runner=systemd, root=root), log=log, dry_run=dry_run)

    return factory


def test_templates_keep_conservative_comments():
    assert "# Conservative cloud-init optimization - keep essential modules\n" in TEMPLATES_BY_SUBSYSTEM["cloud-init"]
    assert "to 30s (more conservative)\n" in TEMPLATES_BY_SUBSYSTEM["network-wait"]


def test_package_exports_every_module():
    package_dir = Path(ecs_boot_faster.__file__).parent
    modules = sorted(path.stem for path in package_dir.glob("*.py") if path.stem != "__init__")
    assert sorted(ecs_boot_faster.__all__) == modules
