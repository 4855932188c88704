"""
Artifact sources: adapters that populate a cache directory from a remote
location. Local paths have no source; the cache uses them in place.
"""
import asyncio
import io
import shutil
import tarfile
from pathlib import Path, PurePosixPath
from typing import Optional

import httpx

from dockhand.adapters.process import CommandFailed, CommandRunner, run_command, split_command
from dockhand.internal import paths
from dockhand.internal.constants import (
    DEFAULT_GIT_COMMAND,
    DEFAULT_NPM_REGISTRY,
    FETCH_TIMEOUT,
    GITHUB_CLONE_URL,
)
from dockhand.internal.logging import get_logger
from dockhand.kernel.artifacts import ArtifactSource
from dockhand.kernel.errors import FetchFailed
from dockhand.kernel.identifiers import Descriptor

logger = get_logger(__name__)


def _fetch_timeout(timeout: Optional[float]) -> float:
    return timeout if timeout is not None else paths.env_float("DOCKHAND_FETCH_TIMEOUT", FETCH_TIMEOUT)


def _identifier(descriptor: Descriptor) -> str:
    return descriptor.raw or str(descriptor)


# ---------------------------------------------------------------------
# Version control
# ---------------------------------------------------------------------

class GitSource(ArtifactSource):
    """
    Shallow-clones a GitHub repository. The pinned ref is tried first; if it
    does not exist the default branch is cloned instead.
    """

    def __init__(
        self,
        runner: CommandRunner = run_command,
        git_command: str = DEFAULT_GIT_COMMAND,
        timeout: Optional[float] = None,
    ):
        self._runner = runner
        self._git = split_command(git_command)
        self._timeout = _fetch_timeout(timeout)

    def clone_url(self, descriptor: Descriptor) -> str:
        return GITHUB_CLONE_URL.format(owner=descriptor.owner, repo=descriptor.repo)

    async def fetch_into(self, descriptor: Descriptor, target_dir: Path) -> None:
        url = self.clone_url(descriptor)
        target_dir.parent.mkdir(parents=True, exist_ok=True)

        pinned = [*self._git, "clone", "--depth", "1", "--branch", descriptor.ref, url, str(target_dir)]
        try:
            await self._runner(pinned, timeout=self._timeout)
            logger.info("Cloned repository", url=url, ref=descriptor.ref, target=str(target_dir))
            return
        except CommandFailed as e:
            logger.warning(
                "Pinned clone failed, falling back to default branch",
                url=url,
                ref=descriptor.ref,
                error=str(e),
            )

        # git refuses to clone into a non-empty directory
        if target_dir.exists():
            await asyncio.to_thread(shutil.rmtree, target_dir, True)

        unpinned = [*self._git, "clone", "--depth", "1", url, str(target_dir)]
        try:
            await self._runner(unpinned, timeout=self._timeout)
        except CommandFailed as e:
            raise FetchFailed(_identifier(descriptor), f"git clone of {url} failed: {e}") from e
        logger.info("Cloned repository at default branch", url=url, target=str(target_dir))


# ---------------------------------------------------------------------
# Package registry
# ---------------------------------------------------------------------

class PackageRegistrySource(ArtifactSource):
    """
    Downloads a package tarball from an npm-compatible registry and unpacks it
    with its top-level folder (normally `package/`) stripped.
    """

    def __init__(
        self,
        registry_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._registry_url = (registry_url or paths.env_str("DOCKHAND_NPM_REGISTRY", DEFAULT_NPM_REGISTRY)).rstrip("/")
        self._timeout = _fetch_timeout(timeout)
        self._transport = transport

    def metadata_url(self, descriptor: Descriptor) -> str:
        # Scoped names keep the '@' and escape the slash
        name = descriptor.location.replace("/", "%2f")
        return f"{self._registry_url}/{name}/{descriptor.ref}"

    async def fetch_into(self, descriptor: Descriptor, target_dir: Path) -> None:
        identifier = _identifier(descriptor)
        try:
            payload = await asyncio.wait_for(self._download(descriptor), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise FetchFailed(identifier, f"download timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise FetchFailed(identifier, f"registry request failed: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise FetchFailed(identifier, f"unexpected registry response: {e}") from e

        try:
            count = await asyncio.to_thread(extract_package, payload, target_dir)
        except (tarfile.TarError, OSError, ValueError) as e:
            raise FetchFailed(identifier, f"cannot unpack tarball: {e}") from e
        logger.info("Unpacked package", package=descriptor.location, version=descriptor.ref, files=count)

    async def _download(self, descriptor: Descriptor) -> bytes:
        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            meta_url = self.metadata_url(descriptor)
            response = await client.get(meta_url)
            response.raise_for_status()
            tarball_url = response.json()["dist"]["tarball"]
            logger.debug("Downloading tarball", url=tarball_url)

            response = await client.get(tarball_url)
            response.raise_for_status()
            return response.content


def extract_package(payload: bytes, target_dir: Path) -> int:
    """
    Extracts regular files and directories from a gzipped tarball, dropping
    the first path component. Members resolving outside target_dir are
    refused. Returns the number of files written.
    """
    target_dir.mkdir(parents=True, exist_ok=True)
    root = target_dir.resolve()
    written = 0

    with tarfile.open(fileobj=io.BytesIO(payload), mode="r:gz") as archive:
        for member in archive.getmembers():
            parts = PurePosixPath(member.name).parts[1:]
            if not parts:
                continue
            destination = (root.joinpath(*parts)).resolve()
            if destination != root and root not in destination.parents:
                raise ValueError(f"member '{member.name}' escapes the target directory")

            if member.isdir():
                destination.mkdir(parents=True, exist_ok=True)
            elif member.isfile():
                destination.parent.mkdir(parents=True, exist_ok=True)
                source = archive.extractfile(member)
                if source is None:
                    continue
                with source, open(destination, "wb") as f:
                    shutil.copyfileobj(source, f)
                written += 1
            else:
                logger.debug("Skipping non-regular tar member", member=member.name)
    return written
