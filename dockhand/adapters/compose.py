"""
Thin async wrapper over the `docker compose` CLI for a single compose file.

Every call raises CommandFailed on a non-zero exit; interpreting failures is
left to the orchestrator.
"""
import json
from pathlib import Path
from typing import Any, Mapping, Optional

from dockhand.adapters.process import CommandResult, CommandRunner, run_command, split_command
from dockhand.internal import paths
from dockhand.internal.constants import COMMAND_TIMEOUT, DEFAULT_COMPOSE_COMMAND, DEFAULT_DOCKER_COMMAND
from dockhand.internal.logging import get_logger

logger = get_logger(__name__)


class ComposeOutputError(ValueError):
    """The CLI answered with something that is not the JSON we asked for."""


def parse_ps_output(stdout: str) -> list[dict[str, Any]]:
    """
    Accepts both shapes `compose ps --format json` has produced over time:
    a single JSON array, or one JSON object per line.
    """
    text = stdout.strip()
    if not text:
        return []
    try:
        document = json.loads(text)
    except json.JSONDecodeError:
        document = None
        entries = []
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError as e:
                raise ComposeOutputError(f"cannot decode compose ps output: {e}") from e
    else:
        entries = document if isinstance(document, list) else [document]

    if not all(isinstance(entry, dict) for entry in entries):
        raise ComposeOutputError("compose ps output is not a list of objects")
    return entries


def find_container(entries: list[dict[str, Any]], container_name: str, service_name: str) -> Optional[dict[str, Any]]:
    for entry in entries:
        if entry.get("Name") == container_name or entry.get("Service") == service_name:
            return entry
    return None


def published_ports(entry: dict[str, Any]) -> list[int]:
    ports: list[int] = []
    for publisher in entry.get("Publishers") or []:
        port = publisher.get("PublishedPort") if isinstance(publisher, dict) else None
        if port and int(port) not in ports:
            ports.append(int(port))
    return ports


def parse_inspect_ports(stdout: str) -> list[int]:
    """Parses `{{json .NetworkSettings.Ports}}` into host ports."""
    text = stdout.strip().strip("'")
    if not text or text == "null":
        return []
    try:
        mapping = json.loads(text)
    except json.JSONDecodeError as e:
        raise ComposeOutputError(f"cannot decode docker inspect output: {e}") from e

    ports: list[int] = []
    for bindings in (mapping or {}).values():
        for binding in bindings or []:
            host_port = binding.get("HostPort") if isinstance(binding, dict) else None
            if host_port and int(host_port) not in ports:
                ports.append(int(host_port))
    return ports


class ComposeCli:
    def __init__(
        self,
        compose_file: Path,
        working_dir: Optional[Path] = None,
        runner: CommandRunner = run_command,
        compose_command: Optional[str] = None,
        docker_command: Optional[str] = None,
        timeout: float = COMMAND_TIMEOUT,
    ):
        self.compose_file = Path(compose_file).resolve()
        self.working_dir = Path(working_dir) if working_dir else self.compose_file.parent
        self._runner = runner
        self._compose = split_command(
            compose_command or paths.env_str("DOCKHAND_COMPOSE_COMMAND", DEFAULT_COMPOSE_COMMAND)
        )
        self._docker = split_command(
            docker_command or paths.env_str("DOCKHAND_DOCKER_COMMAND", DEFAULT_DOCKER_COMMAND)
        )
        self._timeout = timeout

    def command(self, *args: str) -> list[str]:
        return [*self._compose, "-f", str(self.compose_file), *args]

    async def run(self, *args: str, env: Optional[Mapping[str, str]] = None, timeout: Optional[float] = None) -> CommandResult:
        return await self._runner(
            self.command(*args),
            cwd=self.working_dir,
            env=env,
            timeout=timeout or self._timeout,
        )

    async def up(self, env: Optional[Mapping[str, str]] = None) -> CommandResult:
        return await self.run("up", "-d", env=env)

    async def stop(self, env: Optional[Mapping[str, str]] = None) -> CommandResult:
        return await self.run("stop", env=env)

    async def down(self, env: Optional[Mapping[str, str]] = None, volumes: bool = False) -> CommandResult:
        args = ["down"]
        if volumes:
            args += ["--volumes", "--remove-orphans"]
        return await self.run(*args, env=env)

    async def ps(self, env: Optional[Mapping[str, str]] = None) -> list[dict[str, Any]]:
        result = await self.run("ps", "--format", "json", env=env)
        return parse_ps_output(result.stdout)

    async def logs(self, service_name: str, lines: int = 50, env: Optional[Mapping[str, str]] = None) -> str:
        result = await self.run("logs", "--tail", str(lines), service_name, env=env)
        return result.stdout

    async def inspect_ports(self, container_name: str) -> list[int]:
        result = await self._runner(
            [*self._docker, "inspect", container_name, "--format", "{{json .NetworkSettings.Ports}}"],
            cwd=self.working_dir,
            timeout=self._timeout,
        )
        return parse_inspect_ports(result.stdout)
