"""
Runs external command-line tools (git, docker compose, docker) without
blocking the event loop.
"""
import asyncio
import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Protocol, Sequence, Union

from dockhand.internal.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandFailed(Exception):
    """A command exited non-zero, could not be launched, or timed out."""

    def __init__(self, args: Sequence[str], returncode: Optional[int], stderr: str = "", timed_out: bool = False):
        self.args_ = tuple(args)
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out
        if timed_out:
            message = f"'{shlex.join(self.args_)}' timed out"
        elif returncode is None:
            message = f"'{shlex.join(self.args_)}' could not be started: {stderr}"
        else:
            message = f"'{shlex.join(self.args_)}' exited with {returncode}: {stderr.strip()}"
        super().__init__(message)


class CommandRunner(Protocol):
    async def __call__(
        self,
        args: Sequence[str],
        cwd: Optional[Union[str, Path]] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        check: bool = True,
    ) -> CommandResult: ...


def split_command(command: str) -> list[str]:
    """'docker compose' -> ['docker', 'compose']"""
    return shlex.split(command, posix=os.name != "nt")


async def run_command(
    args: Sequence[str],
    cwd: Optional[Union[str, Path]] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    check: bool = True,
) -> CommandResult:
    """
    Runs a command to completion and captures its output.

    `env` replaces the child environment entirely; callers merge with
    os.environ themselves. On timeout the child is killed.
    """
    args = [str(a) for a in args]
    logger.debug("Running command", args=args, cwd=str(cwd) if cwd else None, timeout=timeout)

    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise CommandFailed(args, None, str(e)) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        logger.warning("Command timed out, killed", args=args, timeout=timeout)
        raise CommandFailed(args, None, timed_out=True)

    result = CommandResult(
        args=tuple(args),
        returncode=process.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    if check and not result.ok:
        raise CommandFailed(args, result.returncode, result.stderr)
    return result
