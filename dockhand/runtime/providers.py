"""
Registry of providers (capability adapters).

A provider artifact ships a `dockhand.provider.yml` and an entry point that
names the class to instantiate. When the manifest declares a `serviceUrl`,
the backing service is resolved through the service registry first and
handed to the provider's constructor.
"""
import hashlib
import importlib
import importlib.util
import sys
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Protocol

from dockhand.adapters.storage_fs import FileSystemArtifactCache
from dockhand.internal.logging import get_logger
from dockhand.kernel.artifacts import ArtifactCache, CachedArtifact
from dockhand.kernel.contracts import Provider, ProviderType, ServiceHandle
from dockhand.kernel.errors import CreationFailed, DockhandError
from dockhand.kernel.identifiers import is_dynamic, parse
from dockhand.kernel.manifest import ProviderManifest, load_provider_manifest
from dockhand.kernel.registry import EntryState, Registry
from dockhand.runtime.services import ServiceRegistry, get_service_registry

logger = get_logger(__name__)

ProviderConstructor = Callable[..., Provider]


class EntryPointLoader(Protocol):
    """Turns a fetched provider artifact into the constructor it declares."""

    def load(self, artifact: CachedArtifact, manifest: ProviderManifest) -> ProviderConstructor: ...


class ModuleEntryPointLoader:
    """
    Resolves `entry` as either `path/to/file.py:ClassName`, relative to the
    artifact directory, or `importable.module:ClassName`.
    """

    def load(self, artifact: CachedArtifact, manifest: ProviderManifest) -> ProviderConstructor:
        target, sep, attribute = manifest.entry.partition(":")
        if not sep or not target or not attribute:
            raise CreationFailed(artifact.identifier, f"entry '{manifest.entry}' must look like 'module:Class'")

        if target.endswith(".py") or "/" in target:
            module = self._load_file(artifact, Path(artifact.local_path) / target)
        else:
            try:
                module = importlib.import_module(target)
            except ImportError as e:
                raise CreationFailed(artifact.identifier, f"cannot import '{target}': {e}") from e

        constructor = getattr(module, attribute, None)
        if constructor is None or not callable(constructor):
            raise CreationFailed(artifact.identifier, f"'{target}' has no callable '{attribute}'")
        return constructor

    def _load_file(self, artifact: CachedArtifact, path: Path):
        if not path.is_file():
            raise CreationFailed(artifact.identifier, f"entry file {path} does not exist")

        # Unique per file so two artifacts with a provider.py never collide
        digest = hashlib.sha256(str(path.resolve()).encode("utf-8")).hexdigest()[:12]
        module_name = f"dockhand_provider_{path.stem}_{digest}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise CreationFailed(artifact.identifier, f"cannot load {path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            raise CreationFailed(artifact.identifier, f"error executing {path.name}: {type(e).__name__}: {e}") from e
        return module


class ProviderRegistry(Registry[Provider]):
    kind = "provider"

    def __init__(
        self,
        cache: Optional[ArtifactCache] = None,
        services: Optional[ServiceRegistry] = None,
        loader: Optional[EntryPointLoader] = None,
        resolve_timeout: Optional[float] = None,
    ):
        super().__init__(resolve_timeout=resolve_timeout)
        self.cache = cache if cache is not None else FileSystemArtifactCache("providers")
        self._services = services
        self.loader = loader or ModuleEntryPointLoader()

    @property
    def services(self) -> ServiceRegistry:
        if self._services is None:
            self._services = get_service_registry()
        return self._services

    async def _resolve_dynamic(self, identifier: str) -> Provider:
        descriptor = parse(identifier)
        artifact = await self.cache.fetch(descriptor)
        manifest = await load_provider_manifest(artifact)

        try:
            service = await self._backing_service(identifier, manifest)
            constructor = self.loader.load(artifact, manifest)
            instance = constructor(manifest=manifest, service=service)
            self._validate(identifier, instance)
            if manifest.service_config:
                await instance.configure(dict(manifest.service_config))
        except Exception as e:
            await self._discard_fetched(artifact)
            if isinstance(e, CreationFailed) and e.identifier == identifier:
                raise
            raise CreationFailed(identifier, str(e)) from e

        logger.info("Loaded provider", identifier=identifier, provider_id=manifest.id, type=manifest.type)
        return instance

    async def _backing_service(self, identifier: str, manifest: ProviderManifest) -> Optional[ServiceHandle]:
        if not manifest.service_url:
            return None
        logger.debug("Resolving backing service", provider=identifier, service=manifest.service_url)
        try:
            return await self.services.get(manifest.service_url)
        except DockhandError as e:
            raise CreationFailed(identifier, f"backing service '{manifest.service_url}' failed: {e}") from e

    def _validate(self, identifier: str, instance: Any) -> None:
        if not isinstance(instance, Provider):
            raise CreationFailed(identifier, f"{type(instance).__name__} does not implement the Provider interface")

    async def _discard_fetched(self, artifact: CachedArtifact) -> None:
        if artifact.user_provided:
            return
        try:
            await self.cache.remove(artifact.descriptor)
        except OSError as e:
            logger.error("Could not remove fetched provider", identifier=artifact.identifier, error=str(e))

    async def _discard_artifact(self, identifier: str) -> None:
        if is_dynamic(identifier):
            await self.cache.remove(parse(identifier))

    # ------------------------------------------------------------------
    # Capability lookup
    # ------------------------------------------------------------------

    def _known_identifiers(self) -> list[str]:
        ready = [e.identifier for e in self.entries() if e.state is EntryState.READY]
        return self.available() + [i for i in ready if i not in self._constructors]

    async def get_providers_by_capability(self, capability: str) -> list[Provider]:
        """
        Every registered or already-resolved provider advertising the
        capability. Providers that fail to resolve are skipped.
        """
        matches = []
        for identifier in self._known_identifiers():
            try:
                provider = await self.get(identifier)
            except DockhandError as e:
                logger.warning("Skipping provider", identifier=identifier, error=str(e))
                continue
            if capability in (provider.capabilities or []):
                matches.append(provider)
        return matches

    async def find_best_provider(
        self,
        capability: str,
        prefer_local: bool = False,
        exclude: Iterable[str] = (),
    ) -> Optional[Provider]:
        excluded = set(exclude)
        candidates = [p for p in await self.get_providers_by_capability(capability) if p.id not in excluded]
        if prefer_local:
            candidates.sort(key=lambda p: p.type != ProviderType.LOCAL.value)

        for provider in candidates:
            try:
                if await provider.is_available():
                    return provider
            except Exception as e:
                logger.warning("Availability check failed", provider=provider.id, error=str(e))
        return None


_default_registry: Optional[ProviderRegistry] = None


def get_provider_registry() -> ProviderRegistry:
    """The process-wide provider registry, backed by the process-wide service registry."""
    global _default_registry
    if _default_registry is None:
        _default_registry = ProviderRegistry(services=get_service_registry())
    return _default_registry
