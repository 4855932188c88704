"""
Lifecycle management for one container-backed service declared by a service
manifest.

Lifecycle operations never raise for CLI failures. They log and return False
so a host can treat the service as temporarily unavailable.
"""
import asyncio
import os
import re
import time
from typing import Awaitable, Callable, Literal, Optional

from dockhand.adapters.compose import ComposeCli, ComposeOutputError, find_container, published_ports
from dockhand.adapters.process import CommandFailed, CommandRunner, run_command
from dockhand.adapters.storage_fs import remove_tree
from dockhand.internal import paths
from dockhand.internal.constants import (
    DEFAULT_HEALTH_ENDPOINT,
    HEALTH_POLL_INTERVAL,
    HEALTH_PORT_PLACEHOLDERS,
    HOST_PORT_ENV_TEMPLATE,
    LOCALHOST,
    RESTART_PAUSE,
    START_HEALTH_TIMEOUT,
    WAIT_HEALTHY_TIMEOUT,
)
from dockhand.internal.logging import get_logger
from dockhand.kernel.artifacts import CachedArtifact
from dockhand.kernel.contracts import Health, ServiceHandle, ServiceInfo, ServiceStatus
from dockhand.kernel.manifest import ServiceManifest
from dockhand.runtime.health import HealthMonitor, HealthState, probe_http
from dockhand.runtime.ports import PortAllocator, PortAssignment

logger = get_logger(__name__)

DynamicHostPort = Literal["assign", "delegate"]

_ENV_UNSAFE = re.compile(r"[^A-Za-z0-9]+")


def host_port_variable(service_name: str) -> str:
    """'kokoro-tts' -> 'KOKORO_TTS_HOST_PORT'"""
    return HOST_PORT_ENV_TEMPLATE.format(service=_ENV_UNSAFE.sub("_", service_name).strip("_").upper())


class ServiceOrchestrator(ServiceHandle):
    def __init__(
        self,
        manifest: ServiceManifest,
        artifact: CachedArtifact,
        allocator: Optional[PortAllocator] = None,
        runner: CommandRunner = run_command,
        compose_command: Optional[str] = None,
        docker_command: Optional[str] = None,
        dynamic_host_port: DynamicHostPort = "assign",
        start_timeout: Optional[float] = None,
        poll_interval: float = HEALTH_POLL_INTERVAL,
        restart_pause: float = RESTART_PAUSE,
        probe: Callable[[str], Awaitable[bool]] = probe_http,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if dynamic_host_port not in ("assign", "delegate"):
            raise ValueError(f"dynamic_host_port must be 'assign' or 'delegate', not {dynamic_host_port!r}")

        self.manifest = manifest
        self.artifact = artifact
        self.docker = manifest.docker
        self.container_name = f"{manifest.name}-{self.docker.service_name}"
        self.network = f"{manifest.name}-network"
        self.compose = ComposeCli(
            artifact.local_path / self.docker.compose_file,
            working_dir=artifact.local_path,
            runner=runner,
            compose_command=compose_command,
            docker_command=docker_command,
        )
        self.allocator = allocator or PortAllocator()
        self.dynamic_host_port = dynamic_host_port
        self.start_timeout = (
            start_timeout if start_timeout is not None
            else paths.env_float("DOCKHAND_START_TIMEOUT", START_HEALTH_TIMEOUT)
        )
        self._poll_interval = poll_interval
        self._restart_pause = restart_pause
        self._probe = probe
        self._sleep = sleep
        self._clock = clock
        self.last_health_state = HealthState.UNKNOWN

        self.ports = PortAssignment(declared=list(self.docker.ports))
        if dynamic_host_port == "assign":
            self.ports.assigned = self.allocator.assign(self.docker.ports)
        self.environment = self._build_environment()

        logger.debug(
            "Service orchestrator ready",
            service=self.docker.service_name,
            container=self.container_name,
            ports=self.ports.effective,
        )

    # ------------------------------------------------------------------
    # Environment and URLs
    # ------------------------------------------------------------------

    def _build_environment(self) -> dict[str, str]:
        environment = dict(self.docker.environment)
        host_port = self.ports.assigned[0] if self.ports.assigned else 0
        environment[host_port_variable(self.docker.service_name)] = str(host_port)
        return environment

    def _process_env(self) -> dict[str, str]:
        return {**os.environ, **self.environment}

    @property
    def has_health_check(self) -> bool:
        return bool(self.docker.health_check and self.docker.health_check.declared)

    def health_check_url(self) -> str:
        effective = self.ports.effective
        port = str(effective[0]) if effective else "0"
        health_check = self.docker.health_check

        if health_check and health_check.url:
            url = health_check.url
            for placeholder in HEALTH_PORT_PLACEHOLDERS:
                url = url.replace(placeholder, port)
            return url
        if health_check and health_check.endpoint:
            endpoint = health_check.endpoint
            if not endpoint.startswith("/"):
                endpoint = "/" + endpoint
            return f"http://{LOCALHOST}:{port}{endpoint}"
        return f"http://{LOCALHOST}:{port}{DEFAULT_HEALTH_ENDPOINT}"

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def status(self) -> ServiceStatus:
        try:
            entries = await self.compose.ps(env=self._process_env())
        except CommandFailed as e:
            logger.warning("Compose status query failed", service=self.docker.service_name, error=str(e))
            return ServiceStatus(running=False, state="error")
        except ComposeOutputError as e:
            logger.warning("Compose status output unreadable", service=self.docker.service_name, error=str(e))
            return ServiceStatus(running=False, state="parse-error")

        entry = find_container(entries, self.container_name, self.docker.service_name)
        if entry is None:
            return ServiceStatus(running=False, state="not-found")

        state = str(entry.get("State") or "unknown")
        running = state.lower() == "running"
        if running:
            # Published ports supersede any chosen locally
            published = published_ports(entry)
            if published:
                self.ports.detected = published
        health = Health.from_raw(entry.get("Health"))
        if running and health is Health.NONE and self.has_health_check:
            health = Health.HEALTHY if await self._probe(self.health_check_url()) else Health.STARTING

        return ServiceStatus(running=running, health=health, state=state, container_id=entry.get("ID"))

    async def is_running(self) -> bool:
        return (await self.status()).running

    async def is_healthy(self) -> bool:
        return (await self.status()).healthy

    async def wait_healthy(self, timeout: Optional[float] = None) -> bool:
        monitor = HealthMonitor(
            self.status,
            has_health_check=self.has_health_check,
            interval=self._poll_interval,
            clock=self._clock,
            sleep=self._sleep,
            name=self.docker.service_name,
        )
        healthy = await monitor.wait(timeout if timeout is not None else WAIT_HEALTHY_TIMEOUT)
        self.last_health_state = monitor.state
        return healthy

    async def _refresh_ports(self) -> None:
        self.ports.detected = await self.allocator.detect(
            self.compose,
            self.container_name,
            self.docker.service_name,
            env=self._process_env(),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        service = self.docker.service_name
        try:
            await self._refresh_ports()
            if (await self.status()).healthy:
                logger.info("Service already running and healthy", service=service, ports=self.ports.effective)
                return True

            await self.allocator.warn_if_in_use(self.ports.declared)
            logger.info("Starting service", service=service, compose_file=str(self.compose.compose_file))
            await self.compose.up(env=self._process_env())

            healthy = await self.wait_healthy(self.start_timeout)
            if not healthy:
                logger.error("Service started but did not become healthy", service=service, state=self.last_health_state.value)
                return False

            await self._refresh_ports()
            logger.info("Service started", service=service, ports=self.ports.effective)
            return True
        except CommandFailed as e:
            logger.error("Failed to start service", service=service, error=str(e))
            return False

    async def stop(self) -> bool:
        service = self.docker.service_name
        try:
            await self.compose.stop(env=self._process_env())
        except CommandFailed as e:
            logger.error("Failed to stop service", service=service, error=str(e))
            return False
        await self._refresh_ports()
        logger.info("Service stopped", service=service)
        return True

    async def restart(self) -> bool:
        logger.info("Restarting service", service=self.docker.service_name)
        if not await self.stop():
            return False
        await self._sleep(self._restart_pause)
        return await self.start()

    async def remove(self) -> bool:
        """Removes containers and networks, keeping volumes."""
        try:
            await self.compose.down(env=self._process_env())
        except CommandFailed as e:
            logger.error("Failed to remove service", service=self.docker.service_name, error=str(e))
            return False
        self.ports.detected = []
        return True

    async def cleanup(self) -> bool:
        """
        Removes containers, volumes and orphans, returns claimed ports to the
        ledger and deletes the fetched artifact directory.
        """
        service = self.docker.service_name
        try:
            await self.compose.down(env=self._process_env(), volumes=True)
        except CommandFailed as e:
            logger.error("Failed to clean up service", service=service, error=str(e))
            return False

        self.allocator.release(self.ports.assigned)
        self.ports.detected = []

        if not self.artifact.user_provided and self.artifact.local_path.exists():
            try:
                await asyncio.to_thread(remove_tree, self.artifact.local_path)
            except OSError as e:
                logger.error("Failed to remove service directory", path=str(self.artifact.local_path), error=str(e))
                return False
            logger.info("Removed service directory", path=str(self.artifact.local_path))

        logger.info("Service cleaned up", service=service)
        return True

    async def logs(self, lines: int = 50) -> str:
        try:
            return await self.compose.logs(self.docker.service_name, lines, env=self._process_env())
        except CommandFailed as e:
            logger.error("Failed to read service logs", service=self.docker.service_name, error=str(e))
            return ""

    def info(self) -> ServiceInfo:
        return ServiceInfo(
            container_name=self.container_name,
            image=self.docker.image or "",
            ports=self.ports.effective,
            compose_service=self.docker.service_name,
            compose_file=str(self.compose.compose_file),
            health_check_url=self.health_check_url(),
            network=self.network,
            service_directory=str(self.artifact.local_path),
        )
