from __future__ import annotations

import asyncio
import contextlib
import logging
import shlex
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class CommandError(Exception):
    def __init__(self, command: str, message: str) -> None:
        super().__init__(f"{command}: {message}")
        self.command = command
        self.message = message


@dataclass(frozen=True, slots=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part).strip()


async def run_command(command: str, *args: str, timeout_seconds: float) -> CommandResult:
    try:
        argv = [*shlex.split(command), *args]
    except ValueError as exc:
        raise CommandError(command, f"invalid command: {exc}") from exc
    if not argv:
        raise CommandError(command, "empty command")
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise CommandError(command, f"failed to start: {exc}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        with contextlib.suppress(Exception):
            await process.wait()
        raise CommandError(command, f"timed out after {timeout_seconds:g}s") from exc

    result = CommandResult(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace").strip(),
        stderr=stderr.decode("utf-8", errors="replace").strip(),
    )
    logger.debug("Command finished command=%s returncode=%s", argv[0], result.returncode)
    return result
