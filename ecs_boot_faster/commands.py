"""Thin wrapper around external command execution."""

from __future__ import annotations

from dataclasses import dataclass
import subprocess
from typing import Callable, Optional, Sequence, Tuple


@dataclass
class CommandResult:
    argv: Tuple[str, ...]
    returncode: Optional[int]
    stdout: str
    stderr: str = ""

    @property
    def ran(self) -> bool:
        return self.returncode is not None

    @property
    def ok(self) -> bool:
        return self.returncode == 0


Runner = Callable[[Sequence[str]], CommandResult]


def run_command(argv: Sequence[str]) -> CommandResult:
    """Run ``argv`` to completion; a missing executable yields ``returncode=None``."""
    args = tuple(argv)
    try:
        completed = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            errors="replace",
            check=False,
        )
    except (FileNotFoundError, PermissionError) as exc:
        return CommandResult(argv=args, returncode=None, stdout="", stderr=str(exc))
    return CommandResult(
        argv=args,
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )
