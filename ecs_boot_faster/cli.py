"""Entry points for the ecs-boot-faster command line tools."""

from __future__ import annotations

import argparse
import json
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .applier import ApplyReport, BootOptimizer
from .diagnostics import Bottleneck, diagnose
from .formatting import REPORT_TITLE, StatusLog, format_bytes, format_report, format_seconds, format_started, render_table
from .inspection import BootReport, collect_report
from .system_state import ProcessUsage, gather_snapshot


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Investigate and reduce the boot time of ECS-Optimized Amazon Linux AMIs.",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    _add_investigate_arguments(commands.add_parser("investigate", help="print a boot performance report"))
    _add_optimize_arguments(commands.add_parser("optimize", help="write boot optimization overrides"))
    args = parser.parse_args(argv)

    if args.command == "investigate":
        _investigate(args)
    else:
        _optimize(args)


def investigate_main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Print a boot performance report for this instance.")
    _add_investigate_arguments(parser)
    _investigate(parser.parse_args(argv))


def optimize_main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Apply systemd boot optimizations for ECS-Optimized AMIs.")
    _add_optimize_arguments(parser)
    _optimize(parser.parse_args(argv))


def _add_investigate_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--top", type=int, default=5, help="number of top processes in the resource snapshot")
    parser.add_argument("--json", action="store_true", help="print the report and findings as JSON")
    parser.add_argument("--ui", action="store_true", help="render the report with rich panels and tables")


def _add_optimize_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--root", default="/", help="stage files under this root instead of the running system")
    parser.add_argument("--dry-run", action="store_true", help="report what would change without writing")
    parser.add_argument(
        "--restart-journald",
        action="store_true",
        help="restart systemd-journald so the journal settings take effect immediately",
    )
    parser.add_argument("--json", action="store_true", help="print the apply report as JSON")


def _investigate(args: argparse.Namespace) -> None:
    report = collect_report(snapshot=gather_snapshot(top_n=args.top))
    bottlenecks = diagnose(report)

    if args.json:
        print(_report_to_json(report, bottlenecks))
        return

    if args.ui:
        _render_rich(report, bottlenecks)
        return

    print(format_report(report))
    if bottlenecks:
        print("\nLikely bottlenecks:")
        print(_format_bottlenecks(bottlenecks))
    else:
        print("\nNo obvious boot bottleneck found.")
    print(f"\n=== Investigation Complete ===\nTimestamp: {report.timestamp:%Y-%m-%d %H:%M:%S}")


def _optimize(args: argparse.Namespace) -> None:
    # log lines go to stderr when stdout carries JSON
    log = StatusLog(Console(stderr=args.json))
    optimizer = BootOptimizer(root=args.root, log=log, dry_run=args.dry_run)
    report = optimizer.apply(restart_journald=args.restart_journald)
    if args.json:
        print(_apply_to_json(report))


def _format_bottlenecks(bottlenecks: List[Bottleneck]) -> str:
    rows = [
        [bottleneck.title, bottleneck.issue, bottleneck.evidence, " / ".join(bottleneck.solutions)]
        for bottleneck in bottlenecks
    ]
    return render_table(["Problem", "Cause", "Evidence", "Fix"], rows)


def _report_to_json(report: BootReport, bottlenecks: List[Bottleneck]) -> str:
    report_dict: Dict[str, Any] = asdict(report)
    report_dict["timestamp"] = report.timestamp.isoformat()
    if report.snapshot is not None:
        report_dict["snapshot"]["timestamp"] = report.snapshot.timestamp.isoformat()
        report_dict["snapshot"]["boot_time"] = report.snapshot.boot_time.isoformat()
    payload: Dict[str, Any] = {"report": report_dict, "bottlenecks": [asdict(b) for b in bottlenecks]}
    return json.dumps(payload, ensure_ascii=False, indent=2)


def _apply_to_json(report: ApplyReport) -> str:
    return json.dumps(asdict(report), ensure_ascii=False, indent=2)


def _render_rich(report: BootReport, bottlenecks: List[Bottleneck]) -> None:
    console = Console()

    console.print(Panel(f"{REPORT_TITLE} - {report.timestamp:%Y-%m-%d %H:%M:%S}", style="bold cyan"))

    timing = report.boot_timing
    summary = Table(show_header=False, box=box.ROUNDED)
    summary.add_row("Boot", format_seconds(timing.total if timing else None))
    summary.add_row("Kernel", format_seconds(timing.kernel if timing else None))
    summary.add_row("Userspace", format_seconds(timing.userspace if timing else None))
    summary.add_row("Failed units", ", ".join(report.failed_units) or "none")
    console.print(summary)

    if report.slowest_services:
        blame = Table(title="Slowest services", box=box.SIMPLE_HEAD)
        blame.add_column("Time", justify="right")
        blame.add_column("Unit", style="bold")
        for service in report.slowest_services:
            blame.add_row(format_seconds(service.seconds), service.unit)
        console.print(blame)

    for section in report.sections:
        table = Table(title=section.title, box=box.SIMPLE_HEAD, show_header=False)
        table.add_column("Step", style="bold")
        table.add_column("Output", overflow="fold")
        for entry in section.entries:
            table.add_row(entry.label, Text(entry.output, style="" if entry.available else "yellow"))
        console.print(table)

    if report.snapshot is not None:
        console.print(_rich_process_table("Top Memory", report.snapshot.top_memory_processes))

    if bottlenecks:
        issues = Table(title="Likely bottlenecks", box=box.SIMPLE_HEAD)
        issues.add_column("Problem", style="bold red")
        issues.add_column("Cause")
        issues.add_column("Evidence")
        issues.add_column("Fix")
        for bottleneck in bottlenecks:
            issues.add_row(
                bottleneck.title,
                bottleneck.issue,
                bottleneck.evidence,
                "\n".join(bottleneck.solutions),
            )
        console.print(issues)
    else:
        console.print(Panel("No obvious boot bottleneck found.", style="bold green"))


def _rich_process_table(title: str, processes: List[ProcessUsage]) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("PID", justify="right")
    table.add_column("Process")
    table.add_column("Memory", justify="right")
    table.add_column("RSS", justify="right")
    table.add_column("Started", justify="right")

    if not processes:
        table.add_row("-", "No process data", "-", "-", "-")
        return table

    for proc in processes:
        table.add_row(
            str(proc.pid),
            proc.name,
            f"{proc.memory_percent:.0f}%",
            format_bytes(proc.rss_bytes),
            format_started(proc.started_after_boot),
        )
    return table


if __name__ == "__main__":
    main()
