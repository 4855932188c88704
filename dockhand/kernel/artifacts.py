"""
Defines the contracts for fetching and caching artifacts.

This is a core part of the kernel. It defines the ports that storage and
source adapters must provide; the registries only ever see these types.
"""
from abc import abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from dockhand.kernel.identifiers import Descriptor


@dataclass(frozen=True)
class CachedArtifact:
    """
    A local, on-disk copy of a referenced artifact.
    `user_provided` artifacts (local paths) are never deleted by the cache.
    """
    identifier: str
    local_path: Path
    manifest_path: Path
    descriptor: Descriptor
    user_provided: bool = False


class ArtifactSource(Protocol):
    """
    The interface (port) for anything that can populate a directory with the
    contents referenced by a descriptor.
    """

    @abstractmethod
    async def fetch_into(self, descriptor: Descriptor, target_dir: Path) -> None:
        """
        Populates target_dir with the artifact. target_dir may not exist yet.
        Raises FetchFailed on unrecoverable failure; cleanup of a partially
        populated directory is the caller's job.
        """
        ...


class ArtifactCache(Protocol):
    """
    The interface (port) for the idempotent artifact cache.
    """

    @abstractmethod
    async def fetch(self, descriptor: Descriptor) -> CachedArtifact:
        """
        Ensures a local copy of the artifact exists and returns it.
        A valid existing copy is reused without any external call.
        """
        ...

    @abstractmethod
    async def remove(self, descriptor: Descriptor) -> bool:
        """
        Deletes the cached copy of a fetched artifact. Returns True if
        something was removed. User-provided paths are left alone.
        """
        ...

    @abstractmethod
    def list_cached(self) -> list[CachedArtifact]:
        """
        Lists the artifacts currently present in the cache.
        """
        ...
