"""Bounded external command execution.

Every diagnostic or privileged command goes through `run_command`, which
never raises: a missing binary, a non-zero exit or a timeout all come back
as a `CommandResult` with `ok == False`.
"""

import asyncio
import shutil
from dataclasses import dataclass
from typing import Optional

from .logging import get_logger

logger = get_logger("utils.commands")

DEFAULT_TIMEOUT = 5.0


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a single external command."""
    args: tuple
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    not_found: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def error(self) -> Optional[str]:
        if self.ok:
            return None
        if self.not_found:
            return f"{self.args[0]} not found"
        if self.timed_out:
            return "timeout"
        return self.stderr.strip() or f"exit status {self.returncode}"


async def run_command(
    args: list[str],
    timeout: float = DEFAULT_TIMEOUT,
    input_text: Optional[str] = None,
) -> CommandResult:
    """Run a command and capture its output, killing it after `timeout` seconds."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.PIPE if input_text is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.debug("command_not_found", cmd=args[0], error=str(e))
        return CommandResult(args=tuple(args), returncode=None, not_found=True)

    data = input_text.encode() if input_text is not None else None
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(data), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        try:
            await proc.wait()
        except ProcessLookupError:
            pass
        logger.warning("command_timeout", cmd=" ".join(args), timeout=timeout)
        return CommandResult(args=tuple(args), returncode=None, timed_out=True)

    result = CommandResult(
        args=tuple(args),
        returncode=proc.returncode,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
    if not result.ok:
        logger.debug("command_failed", cmd=" ".join(args), returncode=proc.returncode)
    return result


def command_available(name: str) -> bool:
    """True if `name` resolves to an executable on PATH (or is an existing path)."""
    return shutil.which(name) is not None
