"""
Data contracts and interfaces shared between the kernel, the runtime and host
code. Hosts interact with resolved components ONLY through these types.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable


class Health(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    STARTING = "starting"
    NONE = "none"

    @classmethod
    def from_raw(cls, value: Optional[str]) -> "Health":
        if not value:
            return cls.NONE
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.NONE


@dataclass(frozen=True)
class ServiceStatus:
    """
    A point-in-time view of a backing container. Never persisted.
    """
    running: bool
    health: Health = Health.NONE
    state: str = "unknown"
    container_id: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.running and self.health is Health.HEALTHY


@dataclass(frozen=True)
class ServiceInfo:
    container_name: str
    image: str
    ports: list[int]
    compose_service: str
    compose_file: str
    health_check_url: str
    network: str
    service_directory: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "containerName": self.container_name,
            "image": self.image,
            "ports": list(self.ports),
            "composeService": self.compose_service,
            "composeFile": self.compose_file,
            "healthCheckUrl": self.health_check_url,
            "network": self.network,
            "serviceDirectory": self.service_directory,
        }


@runtime_checkable
class ServiceHandle(Protocol):
    """
    The lifecycle contract handed to providers that need a backing service.
    Lifecycle operations report failure by returning False, never by raising.
    """

    async def start(self) -> bool: ...

    async def stop(self) -> bool: ...

    async def restart(self) -> bool: ...

    async def status(self) -> ServiceStatus: ...

    async def wait_healthy(self, timeout: Optional[float] = None) -> bool: ...

    async def cleanup(self) -> bool: ...

    def info(self) -> ServiceInfo: ...


class ProviderType(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


@dataclass
class ProviderHealth:
    status: str  # 'healthy' | 'unhealthy'
    details: dict = field(default_factory=dict)


@runtime_checkable
class Provider(Protocol):
    """
    Every adapter returned by the provider registry implements this.
    Validation is a single isinstance() check against it.
    """
    id: str
    name: str
    type: str
    capabilities: list[str]

    async def configure(self, config: dict) -> None: ...

    async def is_available(self) -> bool: ...

    async def get_health(self) -> ProviderHealth: ...
