"""
Registry of container-backed services, resolved from identifiers to
ServiceHandle instances.
"""
from typing import Any, Callable, Optional

from dockhand.adapters.process import CommandRunner, run_command
from dockhand.adapters.storage_fs import FileSystemArtifactCache
from dockhand.internal.logging import get_logger
from dockhand.kernel.artifacts import ArtifactCache, CachedArtifact
from dockhand.kernel.contracts import ServiceHandle
from dockhand.kernel.errors import CreationFailed
from dockhand.kernel.identifiers import is_dynamic, parse
from dockhand.kernel.manifest import ServiceManifest, load_service_manifest
from dockhand.kernel.registry import Registry
from dockhand.runtime.orchestrator import ServiceOrchestrator
from dockhand.runtime.ports import PortAllocator

logger = get_logger(__name__)

OrchestratorFactory = Callable[..., ServiceHandle]


class ServiceRegistry(Registry[ServiceHandle]):
    kind = "service"

    def __init__(
        self,
        cache: Optional[ArtifactCache] = None,
        allocator: Optional[PortAllocator] = None,
        runner: CommandRunner = run_command,
        orchestrator_factory: OrchestratorFactory = ServiceOrchestrator,
        resolve_timeout: Optional[float] = None,
        **orchestrator_options: Any,
    ):
        super().__init__(resolve_timeout=resolve_timeout)
        self.cache = cache if cache is not None else FileSystemArtifactCache("services")
        self.allocator = allocator or PortAllocator()
        self._runner = runner
        self._factory = orchestrator_factory
        self._options = orchestrator_options

    async def _resolve_dynamic(self, identifier: str) -> ServiceHandle:
        descriptor = parse(identifier)
        artifact = await self.cache.fetch(descriptor)
        manifest = await load_service_manifest(artifact)
        try:
            return self._factory(
                manifest,
                artifact,
                allocator=self.allocator,
                runner=self._runner,
                **self._options,
            )
        except Exception as e:
            await self._discard_fetched(artifact)
            raise CreationFailed(identifier, f"cannot build orchestrator for '{manifest.name}': {e}") from e

    def _validate(self, identifier: str, instance: Any) -> None:
        if not isinstance(instance, ServiceHandle):
            raise CreationFailed(identifier, f"{type(instance).__name__} does not implement ServiceHandle")

    async def _discard_fetched(self, artifact: CachedArtifact) -> None:
        if artifact.user_provided:
            return
        try:
            await self.cache.remove(artifact.descriptor)
        except OSError as e:
            logger.error("Could not remove fetched service", identifier=artifact.identifier, error=str(e))

    async def _discard_artifact(self, identifier: str) -> None:
        if is_dynamic(identifier):
            await self.cache.remove(parse(identifier))

    async def manifest(self, identifier: str) -> ServiceManifest:
        """Fetches (or reuses) the artifact and returns its manifest without starting anything."""
        artifact = await self.cache.fetch(parse(identifier))
        return await load_service_manifest(artifact)


_default_registry: Optional[ServiceRegistry] = None


def get_service_registry() -> ServiceRegistry:
    """The process-wide service registry."""
    global _default_registry
    if _default_registry is None:
        _default_registry = ServiceRegistry()
    return _default_registry
