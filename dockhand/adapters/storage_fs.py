"""
A concrete implementation of the ArtifactCache that keeps one directory per
artifact under the application data directory.
"""
import asyncio
import os
import shutil
import stat
import sys
import time
from pathlib import Path
from typing import Literal, Mapping, Optional

from dockhand.adapters.sources import GitSource, PackageRegistrySource
from dockhand.internal import paths
from dockhand.internal.constants import PROVIDER_MANIFEST_FILE_NAME, SERVICE_MANIFEST_FILE_NAME
from dockhand.internal.logging import get_logger
from dockhand.kernel.artifacts import ArtifactCache, ArtifactSource, CachedArtifact
from dockhand.kernel.errors import DockhandError, FetchFailed, UnrecognizedIdentifier
from dockhand.kernel.identifiers import Descriptor, Scheme, cache_key, parse

logger = get_logger(__name__)

ArtifactKind = Literal["services", "providers"]

SOURCE_MARKER_FILE_NAME = ".dockhand-source"

_MANIFEST_NAMES = {
    "services": SERVICE_MANIFEST_FILE_NAME,
    "providers": PROVIDER_MANIFEST_FILE_NAME,
}


def _clear_readonly(func, path, _exc):
    # Git object files are read-only on Windows
    os.chmod(path, stat.S_IWRITE)
    func(path)


def remove_tree(path: Path, attempts: int = 3, delay: float = 0.5) -> None:
    """Deletes a directory tree, retrying while files are briefly locked."""
    handler = {"onexc": _clear_readonly} if sys.version_info >= (3, 12) else {"onerror": _clear_readonly}
    for attempt in range(1, attempts + 1):
        if not path.exists():
            return
        try:
            shutil.rmtree(path, **handler)
            return
        except OSError as e:
            if attempt == attempts:
                raise
            logger.warning("Directory removal failed, retrying", path=str(path), attempt=attempt, error=str(e))
            time.sleep(delay)


class FileSystemArtifactCache(ArtifactCache):
    """
    Idempotent, on-disk artifact cache. This is an 'adapter' in the hexagonal
    architecture; the registries only see the ArtifactCache port.
    """

    def __init__(
        self,
        kind: ArtifactKind,
        root: Optional[Path] = None,
        sources: Optional[Mapping[Scheme, ArtifactSource]] = None,
    ):
        if kind not in _MANIFEST_NAMES:
            raise ValueError(f"Unknown artifact kind: {kind}")
        self.kind = kind
        self.manifest_name = _MANIFEST_NAMES[kind]
        if root is None:
            root = paths.get_services_cache_dir() if kind == "services" else paths.get_providers_cache_dir()
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._sources = dict(sources) if sources is not None else {
            Scheme.VERSION_CONTROL: GitSource(),
            Scheme.PACKAGE_REGISTRY: PackageRegistrySource(),
        }

    def path_for(self, descriptor: Descriptor) -> Path:
        if descriptor.scheme is Scheme.LOCAL_PATH:
            return Path(descriptor.location)
        return self.root / cache_key(descriptor)

    def _artifact(self, descriptor: Descriptor, directory: Path) -> CachedArtifact:
        return CachedArtifact(
            identifier=descriptor.raw or str(descriptor),
            local_path=directory,
            manifest_path=directory / self.manifest_name,
            descriptor=descriptor,
            user_provided=descriptor.scheme is Scheme.LOCAL_PATH,
        )

    async def fetch(self, descriptor: Descriptor) -> CachedArtifact:
        if descriptor.scheme is Scheme.LOCAL_PATH:
            return self._use_local(descriptor)

        target = self.path_for(descriptor)
        artifact = self._artifact(descriptor, target)

        if target.exists():
            if artifact.manifest_path.is_file():
                logger.debug("Reusing cached artifact", identifier=artifact.identifier, path=str(target))
                return artifact
            logger.warning("Cached artifact has no manifest, re-fetching", identifier=artifact.identifier, path=str(target))
            try:
                await asyncio.to_thread(remove_tree, target)
            except OSError as e:
                raise FetchFailed(artifact.identifier, f"cannot remove invalid cache directory {target}: {e}") from e

        source = self._sources.get(descriptor.scheme)
        if source is None:
            raise FetchFailed(artifact.identifier, f"no source configured for {descriptor.scheme.value}")

        logger.info("Fetching artifact", identifier=artifact.identifier, scheme=descriptor.scheme.value)
        try:
            await source.fetch_into(descriptor, target)
            if not artifact.manifest_path.is_file():
                raise FetchFailed(artifact.identifier, f"fetched artifact has no {self.manifest_name}")
            (target / SOURCE_MARKER_FILE_NAME).write_text(artifact.identifier, encoding="utf-8")
        except BaseException as e:
            await self._discard(target)
            if isinstance(e, DockhandError) or not isinstance(e, Exception):
                raise
            raise FetchFailed(artifact.identifier, str(e)) from e

        logger.info("Artifact cached", identifier=artifact.identifier, path=str(target))
        return artifact

    def _use_local(self, descriptor: Descriptor) -> CachedArtifact:
        directory = Path(descriptor.location)
        artifact = self._artifact(descriptor, directory)
        if not directory.is_dir():
            raise FetchFailed(artifact.identifier, f"local path {directory} does not exist")
        if not artifact.manifest_path.is_file():
            raise FetchFailed(artifact.identifier, f"{directory} does not contain {self.manifest_name}")
        return artifact

    async def _discard(self, target: Path) -> None:
        try:
            await asyncio.to_thread(remove_tree, target)
        except OSError as e:
            logger.error("Could not remove partial artifact", path=str(target), error=str(e))

    async def remove(self, descriptor: Descriptor) -> bool:
        if descriptor.scheme is Scheme.LOCAL_PATH:
            return False
        target = self.path_for(descriptor)
        if not target.exists():
            return False
        await asyncio.to_thread(remove_tree, target)
        logger.info("Removed cached artifact", path=str(target))
        return True

    def list_cached(self) -> list[CachedArtifact]:
        artifacts = []
        for directory in sorted(self.root.iterdir()):
            marker = directory / SOURCE_MARKER_FILE_NAME
            if not directory.is_dir() or not marker.is_file():
                continue
            try:
                descriptor = parse(marker.read_text(encoding="utf-8").strip())
            except (OSError, UnrecognizedIdentifier) as e:
                logger.warning("Ignoring unreadable cache entry", path=str(directory), error=str(e))
                continue
            artifact = self._artifact(descriptor, directory)
            if artifact.manifest_path.is_file():
                artifacts.append(artifact)
        return artifacts
