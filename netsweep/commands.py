"""Thin wrapper around ``subprocess.run`` for the OS shaping/accounting tools.

The runner is the explicit handle that shaping and counter code receive, so
tests can substitute an in-memory fake host for ``tc`` and ``iptables``.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Tuple

from netsweep.logging_utils import get_logger


logger = get_logger("netsweep.commands")


@dataclass(frozen=True)
class CommandResult:
    argv: Tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        detail = (self.stderr or self.stdout).strip()
        return f"{' '.join(self.argv)} exited {self.returncode}" + (f": {detail}" if detail else "")


class Runner(Protocol):
    """Anything that can execute an argv and report the outcome."""

    def run(self, argv: Sequence[str]) -> CommandResult:
        """Execute ``argv``; never raise for a non-zero exit."""


class CommandRunner:
    """Run commands locally, optionally behind ``sudo``."""

    def __init__(self, use_sudo: bool = False, timeout: float = 30.0) -> None:
        self.use_sudo = use_sudo
        self.timeout = timeout

    def _prefix(self) -> Tuple[str, ...]:
        return ("sudo",) if self.use_sudo else ()

    def run(self, argv: Sequence[str]) -> CommandResult:
        full = self._prefix() + tuple(argv)
        try:
            proc = subprocess.run(full, capture_output=True, text=True, timeout=self.timeout, check=False)
        except FileNotFoundError as exc:
            return CommandResult(full, 127, "", str(exc))
        except subprocess.TimeoutExpired:
            return CommandResult(full, 124, "", f"timed out after {self.timeout:.1f}s")
        result = CommandResult(full, proc.returncode, proc.stdout or "", proc.stderr or "")
        logger.debug("command finished", extra={"argv": list(full), "returncode": proc.returncode})
        return result

    @staticmethod
    def available(tool: str) -> Optional[str]:
        return shutil.which(tool)


def format_number(value: float) -> str:
    """Render a number for tc arguments without exponent notation (12.5, 1000)."""
    text = f"{float(value):.3f}".rstrip("0").rstrip(".")
    return text or "0"
