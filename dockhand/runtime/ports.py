"""
Host port bookkeeping for container-backed services.

Ports chosen before start are claimed in a PortLedger so two services started
in the same process never pick the same host port. Once a container is live,
the ports it actually publishes supersede anything chosen locally.
"""
import asyncio
import socket
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional, Sequence

import psutil

from dockhand.adapters.compose import ComposeCli, ComposeOutputError, find_container, published_ports
from dockhand.adapters.process import CommandFailed
from dockhand.internal.logging import get_logger

logger = get_logger(__name__)


class PortLedger:
    """The set of host ports claimed by this process. Thread-safe."""

    def __init__(self):
        self._lock = threading.Lock()
        self._claimed: set[int] = set()

    def claim(self, port: int) -> bool:
        """Atomically claims a port; False if it was already claimed."""
        with self._lock:
            if port in self._claimed:
                return False
            self._claimed.add(port)
            return True

    def release(self, ports: Iterable[int]) -> None:
        with self._lock:
            self._claimed.difference_update(ports)

    def claimed(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._claimed)

    def __contains__(self, port: int) -> bool:
        with self._lock:
            return port in self._claimed

    def __len__(self) -> int:
        with self._lock:
            return len(self._claimed)


_default_ledger = PortLedger()


def get_default_ledger() -> PortLedger:
    return _default_ledger


@dataclass
class PortAssignment:
    declared: list[int] = field(default_factory=list)
    assigned: list[int] = field(default_factory=list)
    detected: list[int] = field(default_factory=list)

    @property
    def effective(self) -> list[int]:
        return list(self.detected or self.assigned or self.declared)


def os_ephemeral_port(host: str = "127.0.0.1") -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


def is_port_listening(port: int) -> bool:
    try:
        connections = psutil.net_connections(kind="inet")
    except (psutil.Error, OSError):
        # Listing sockets needs elevated rights on some platforms
        return False
    return any(
        conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port
        for conn in connections
    )


class PortAllocator:
    def __init__(
        self,
        ledger: Optional[PortLedger] = None,
        ephemeral: Callable[[], int] = os_ephemeral_port,
        max_attempts: int = 50,
    ):
        self.ledger = ledger if ledger is not None else get_default_ledger()
        self._ephemeral = ephemeral
        self._max_attempts = max_attempts

    def _claim_ephemeral(self) -> int:
        for _ in range(self._max_attempts):
            port = self._ephemeral()
            if self.ledger.claim(port):
                return port
            logger.debug("Ephemeral port already claimed, retrying", port=port)
        raise RuntimeError(f"No unclaimed ephemeral port after {self._max_attempts} attempts")

    def assign(self, declared: Sequence[int]) -> list[int]:
        """
        Non-zero ports pass through. Each zero, or an empty list, is replaced
        by a freshly claimed OS ephemeral port.
        """
        if not declared:
            declared = [0]

        assigned = []
        for port in declared:
            if port:
                assigned.append(port)
            else:
                assigned.append(self._claim_ephemeral())
        logger.debug("Ports assigned", declared=list(declared), assigned=assigned)
        return assigned

    def release(self, ports: Iterable[int]) -> None:
        self.ledger.release(ports)

    async def warn_if_in_use(self, ports: Iterable[int]) -> list[int]:
        """Fixed ports something on this host already listens on, each logged."""
        busy = []
        for port in ports:
            if port and await asyncio.to_thread(is_port_listening, port):
                logger.warning("Declared port is already in use on this host", port=port)
                busy.append(port)
        return busy

    async def detect(
        self,
        compose: ComposeCli,
        container_name: str,
        service_name: str,
        env: Optional[Mapping[str, str]] = None,
    ) -> list[int]:
        """
        Reads the host ports the live container publishes. Falls back to
        `docker inspect` when the compose listing has none. Failures yield [].
        """
        ports: list[int] = []
        try:
            entry = find_container(await compose.ps(env=env), container_name, service_name)
            if entry is not None:
                ports = published_ports(entry)
        except (CommandFailed, ComposeOutputError) as e:
            logger.warning("Compose port listing failed", service=service_name, error=str(e))

        if not ports:
            try:
                ports = await compose.inspect_ports(container_name)
            except (CommandFailed, ComposeOutputError) as e:
                logger.debug("Inspect port fallback failed", container=container_name, error=str(e))
                return []

        logger.debug("Ports detected", service=service_name, ports=ports)
        return ports
