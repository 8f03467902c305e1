"""Subprocess execution adapter.

Implements the core ProcessRunnerPort with a blocking `subprocess.run`.
"""

from __future__ import annotations

import subprocess
from typing import Optional, Sequence

from core.ports import CommandResult


class SubprocessRunner:
    """Runs a command, optionally feeding stdin, and captures combined output."""

    def run(self, argv: Sequence[str], stdin: Optional[bytes] = None) -> CommandResult:
        completed = subprocess.run(
            list(argv),
            input=stdin,
            stdin=subprocess.DEVNULL if stdin is None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
        return CommandResult(
            returncode=completed.returncode,
            output=completed.stdout.decode("utf-8", errors="replace"),
        )
