from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence


@dataclass(slots=True)
class CommandResult:
    """Outcome of one docker (or other external tool) invocation."""

    command: Sequence[str]
    return_code: Optional[int]
    stdout: str
    stderr: str
    duration: float
    timed_out: bool
    tool_available: bool
    exception: Optional[BaseException] = None

    def succeeded(self) -> bool:
        return self.return_code == 0 and not self.timed_out and self.tool_available

    def error_output(self, default: str = "Unknown error") -> str:
        """Return the most useful failure text the command produced."""
        return self.stderr.strip() or self.stdout.strip() or default

    @classmethod
    def failure(
        cls,
        command: Sequence[str],
        started: float,
        exc: BaseException,
        *,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
        tool_available: bool = True,
    ) -> "CommandResult":
        return cls(
            command=command,
            return_code=None,
            stdout=stdout,
            stderr=stderr,
            duration=time.monotonic() - started,
            timed_out=timed_out,
            tool_available=tool_available,
            exception=exc,
        )


class CommandRunner:
    """Run external commands without raising; every outcome becomes a CommandResult."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
        input_text: Optional[str] = None,
    ) -> CommandResult:
        """
        Execute ``command`` and capture its output.

        ``input_text`` is written to stdin (used for ``docker login --password-stdin``),
        so secrets never appear in the logged command line.
        """
        printable = " ".join(command)
        self.logger.debug("$ %s%s", printable, f" (cwd={cwd})" if cwd else "")
        started = time.monotonic()

        try:
            completed = subprocess.run(
                list(command),
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=str(cwd) if cwd else None,
                env=dict(env) if env else None,
                input=input_text,
            )
        except subprocess.TimeoutExpired as exc:
            self.logger.warning("Timed out after %ss: %s", timeout, printable)
            return CommandResult.failure(
                command,
                started,
                exc,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr),
                timed_out=True,
            )
        except FileNotFoundError as exc:
            self.logger.error("Command not found: %s", command[0])
            return CommandResult.failure(
                command, started, exc, stderr=f"Command not found: {command[0]}", tool_available=False
            )
        except OSError as exc:
            self.logger.error("Could not start %s: %s", command[0], exc)
            return CommandResult.failure(command, started, exc, stderr=str(exc))

        return CommandResult(
            command=command,
            return_code=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            duration=time.monotonic() - started,
            timed_out=False,
            tool_available=True,
        )


def _as_text(value: Optional[object]) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
