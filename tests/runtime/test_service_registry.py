import asyncio

import pytest
import yaml

from dockhand.adapters.storage_fs import FileSystemArtifactCache
from dockhand.internal.constants import SERVICE_MANIFEST_FILE_NAME
from dockhand.kernel.contracts import ServiceHandle
from dockhand.kernel.errors import CreationFailed, FetchFailed, InvalidManifest, NotFound, UnrecognizedIdentifier
from dockhand.kernel.identifiers import Scheme
from dockhand.kernel.registry import EntryState
from dockhand.runtime.orchestrator import ServiceOrchestrator
from dockhand.runtime.ports import PortAllocator, PortLedger
from dockhand.runtime.services import ServiceRegistry


class ManifestSource:
    """Populates the target directory with a service manifest and compose file."""

    def __init__(self, document):
        self.document = document
        self.fetches = 0

    async def fetch_into(self, descriptor, target_dir):
        self.fetches += 1
        target_dir.mkdir(parents=True)
        (target_dir / SERVICE_MANIFEST_FILE_NAME).write_text(yaml.safe_dump(self.document), encoding="utf-8")
        (target_dir / "docker-compose.yml").write_text("services: {}\n", encoding="utf-8")


@pytest.fixture
def source(service_manifest_data):
    return ManifestSource(service_manifest_data())


@pytest.fixture
def registry(tmp_path, source, fake_runner, fake_clock):
    cache = FileSystemArtifactCache("services", root=tmp_path / "cache", sources={Scheme.PACKAGE_REGISTRY: source})
    return ServiceRegistry(
        cache=cache,
        allocator=PortAllocator(ledger=PortLedger()),
        runner=fake_runner,
        sleep=fake_clock.sleep,
        clock=fake_clock,
    )


@pytest.mark.asyncio
async def test_local_directory_resolves_to_orchestrator(registry, write_service_dir):
    directory = write_service_dir()
    identifier = f"file:{directory.as_posix()}"

    handle = await registry.get(identifier)

    assert isinstance(handle, ServiceOrchestrator)
    assert isinstance(handle, ServiceHandle)
    assert handle.artifact.user_provided
    assert handle.artifact.local_path == directory
    assert await registry.get(identifier) is handle


@pytest.mark.asyncio
async def test_concurrent_gets_share_one_orchestrator(registry, source):
    results = await asyncio.gather(*(registry.get("npm:demo-service@1.0.0") for _ in range(10)))

    assert all(r is results[0] for r in results)
    assert source.fetches == 1
    stats = registry.stats()
    assert stats["misses"] == 1
    assert stats["waits"] == 9
    assert stats["cached"] == 1


@pytest.mark.asyncio
async def test_fetched_artifact_lands_in_the_cache(registry, tmp_path):
    handle = await registry.get("npm:@acme/demo-service")
    assert handle.artifact.local_path == tmp_path / "cache" / "acme+demo-service"
    assert not handle.artifact.user_provided


@pytest.mark.asyncio
async def test_invalid_manifest_passes_through_and_sticks(registry, write_service_dir):
    directory = write_service_dir(document={"name": "demo", "version": "1"})
    identifier = f"file:{directory.as_posix()}"

    with pytest.raises(InvalidManifest, match="docker"):
        await registry.get(identifier)
    assert registry.entry(identifier).state is EntryState.FAILED

    # Fixing the file is not enough; the failure is cached until refreshed
    write_service_dir(document=None)
    with pytest.raises(InvalidManifest):
        await registry.get(identifier)

    assert await registry.refresh(identifier) is True
    assert isinstance(await registry.get(identifier), ServiceOrchestrator)
    assert directory.exists()


@pytest.mark.asyncio
async def test_missing_local_directory_is_a_fetch_failure(registry, tmp_path):
    with pytest.raises(FetchFailed, match="does not exist"):
        await registry.get(f"file:{(tmp_path / 'nowhere').as_posix()}")


@pytest.mark.asyncio
async def test_unknown_and_malformed_identifiers(registry):
    with pytest.raises(NotFound):
        await registry.get("some-static-name")
    with pytest.raises(UnrecognizedIdentifier):
        await registry.get("npm:")


@pytest.mark.asyncio
async def test_factory_failure_discards_fetched_artifact(tmp_path, source, fake_runner):
    def broken_factory(manifest, artifact, **kwargs):
        raise RuntimeError("compose file is unusable")

    cache = FileSystemArtifactCache("services", root=tmp_path / "cache", sources={Scheme.PACKAGE_REGISTRY: source})
    registry = ServiceRegistry(cache=cache, allocator=PortAllocator(ledger=PortLedger()), runner=fake_runner, orchestrator_factory=broken_factory)

    with pytest.raises(CreationFailed, match="compose file is unusable"):
        await registry.get("npm:demo-service")
    assert not (tmp_path / "cache" / "demo-service").exists()


@pytest.mark.asyncio
async def test_static_registration_is_validated(registry):
    registry.register("not-a-service", lambda: object())
    with pytest.raises(CreationFailed, match="ServiceHandle"):
        await registry.get("not-a-service")


@pytest.mark.asyncio
async def test_refresh_removes_fetched_artifact_and_refetches(registry, source, tmp_path):
    first = await registry.get("npm:demo-service@1.0.0")
    assert (tmp_path / "cache" / "demo-service").exists()

    assert await registry.refresh("npm:demo-service@1.0.0") is True
    assert not (tmp_path / "cache" / "demo-service").exists()

    second = await registry.get("npm:demo-service@1.0.0")
    assert second is not first
    assert source.fetches == 2


@pytest.mark.asyncio
async def test_manifest_lookup_does_not_create_an_entry(registry):
    manifest = await registry.manifest("npm:demo-service")
    assert manifest.name == "demo"
    assert manifest.docker.service_name == "demo"
    assert registry.entry("npm:demo-service") is None
