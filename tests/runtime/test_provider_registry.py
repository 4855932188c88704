import pytest

from dockhand.adapters.storage_fs import FileSystemArtifactCache
from dockhand.kernel.contracts import Provider, ProviderHealth
from dockhand.kernel.errors import CreationFailed
from dockhand.runtime.orchestrator import ServiceOrchestrator
from dockhand.runtime.ports import PortAllocator, PortLedger
from dockhand.runtime.providers import ProviderRegistry
from dockhand.runtime.services import ServiceRegistry

PROVIDER_SOURCE = '''
class Provider:
    def __init__(self, manifest, service=None):
        self.id = manifest.id
        self.name = manifest.name
        self.type = manifest.type
        self.capabilities = list(manifest.capabilities)
        self.service = service
        self.config = {}

    async def configure(self, config):
        self.config = config

    async def is_available(self):
        return True

    async def get_health(self):
        return None
'''


class FakeProvider:
    def __init__(self, id, type="remote", capabilities=("text-to-speech",), available=True):
        self.id = id
        self.name = id.title()
        self.type = type
        self.capabilities = list(capabilities)
        self._available = available

    async def configure(self, config):
        pass

    async def is_available(self):
        if isinstance(self._available, Exception):
            raise self._available
        return self._available

    async def get_health(self):
        return ProviderHealth(status="healthy" if self._available is True else "unhealthy")


@pytest.fixture
def services(tmp_path, fake_runner):
    return ServiceRegistry(
        cache=FileSystemArtifactCache("services", root=tmp_path / "services-cache", sources={}),
        allocator=PortAllocator(ledger=PortLedger()),
        runner=fake_runner,
    )


@pytest.fixture
def registry(tmp_path, services):
    return ProviderRegistry(
        cache=FileSystemArtifactCache("providers", root=tmp_path / "providers-cache", sources={}),
        services=services,
    )


def _provider_document(**overrides):
    document = {
        "id": "demo",
        "name": "Demo Provider",
        "version": "0.1.0",
        "type": "local",
        "capabilities": ["text-to-text"],
    }
    document.update(overrides)
    return document


@pytest.mark.asyncio
async def test_provider_loaded_from_entry_file(registry, write_provider_dir):
    directory = write_provider_dir(source=PROVIDER_SOURCE)

    provider = await registry.get(f"file:{directory.as_posix()}")

    assert isinstance(provider, Provider)
    assert provider.id == "demo"
    assert provider.type == "local"
    assert provider.capabilities == ["text-to-text"]
    assert provider.service is None
    assert provider.config == {}


@pytest.mark.asyncio
async def test_custom_entry_and_service_config(registry, write_provider_dir):
    document = _provider_document(entry="adapter.py:Provider", serviceConfig={"voice": "af_heart"})
    directory = write_provider_dir(document=document)
    (directory / "adapter.py").write_text(PROVIDER_SOURCE, encoding="utf-8")

    provider = await registry.get(f"file:{directory.as_posix()}")

    assert provider.config == {"voice": "af_heart"}


@pytest.mark.asyncio
async def test_backing_service_is_resolved_first(registry, services, write_provider_dir, write_service_dir):
    service_dir = write_service_dir("tts-service")
    service_url = f"file:{service_dir.as_posix()}"
    directory = write_provider_dir(document=_provider_document(serviceUrl=service_url), source=PROVIDER_SOURCE)

    provider = await registry.get(f"file:{directory.as_posix()}")

    assert isinstance(provider.service, ServiceOrchestrator)
    assert provider.service is await services.get(service_url)


@pytest.mark.asyncio
async def test_backing_service_failure_fails_the_provider(registry, write_provider_dir, tmp_path):
    missing = f"file:{(tmp_path / 'no-such-service').as_posix()}"
    directory = write_provider_dir(document=_provider_document(serviceUrl=missing), source=PROVIDER_SOURCE)
    identifier = f"file:{directory.as_posix()}"

    with pytest.raises(CreationFailed, match="backing service") as excinfo:
        await registry.get(identifier)
    assert excinfo.value.identifier == identifier


@pytest.mark.asyncio
async def test_entry_that_is_not_a_provider_is_rejected(registry, write_provider_dir):
    directory = write_provider_dir(source="class Provider:\n    pass\n")

    with pytest.raises(CreationFailed, match="Provider interface"):
        await registry.get(f"file:{directory.as_posix()}")


@pytest.mark.asyncio
async def test_missing_entry_file(registry, write_provider_dir):
    directory = write_provider_dir()

    with pytest.raises(CreationFailed, match="does not exist"):
        await registry.get(f"file:{directory.as_posix()}")


@pytest.mark.asyncio
async def test_entry_that_raises_on_import(registry, write_provider_dir):
    directory = write_provider_dir(source="raise RuntimeError('boom')\n")

    with pytest.raises(CreationFailed, match="RuntimeError: boom"):
        await registry.get(f"file:{directory.as_posix()}")


@pytest.mark.asyncio
async def test_malformed_entry(registry, write_provider_dir):
    directory = write_provider_dir(document=_provider_document(entry="provider.py"), source=PROVIDER_SOURCE)

    with pytest.raises(CreationFailed, match="module:Class"):
        await registry.get(f"file:{directory.as_posix()}")


@pytest.mark.asyncio
async def test_two_artifacts_with_same_entry_file_do_not_collide(registry, write_provider_dir):
    first = write_provider_dir("one", document=_provider_document(id="one"), source=PROVIDER_SOURCE)
    second = write_provider_dir("two", document=_provider_document(id="two"), source=PROVIDER_SOURCE)

    a = await registry.get(f"file:{first.as_posix()}")
    b = await registry.get(f"file:{second.as_posix()}")

    assert (a.id, b.id) == ("one", "two")
    assert type(a) is not type(b)


@pytest.mark.asyncio
async def test_providers_by_capability(registry):
    registry.register("kokoro", lambda: FakeProvider("kokoro", type="local"))
    registry.register("openai", lambda: FakeProvider("openai", capabilities=("text-to-speech", "text-to-text")))
    registry.register("whisper", lambda: FakeProvider("whisper", capabilities=("speech-to-text",)))

    speech = await registry.get_providers_by_capability("text-to-speech")
    assert sorted(p.id for p in speech) == ["kokoro", "openai"]
    assert [p.id for p in await registry.get_providers_by_capability("image")] == []


@pytest.mark.asyncio
async def test_capability_lookup_skips_broken_providers(registry):
    registry.register("good", lambda: FakeProvider("good"))
    registry.register("broken", lambda: object())

    assert [p.id for p in await registry.get_providers_by_capability("text-to-speech")] == ["good"]


@pytest.mark.asyncio
async def test_capability_lookup_includes_resolved_dynamic_providers(registry, write_provider_dir):
    directory = write_provider_dir(source=PROVIDER_SOURCE)
    await registry.get(f"file:{directory.as_posix()}")

    assert [p.id for p in await registry.get_providers_by_capability("text-to-text")] == ["demo"]


@pytest.mark.asyncio
async def test_find_best_provider(registry):
    registry.register("a-remote", lambda: FakeProvider("a-remote"))
    registry.register("b-local", lambda: FakeProvider("b-local", type="local"))
    registry.register("c-down", lambda: FakeProvider("c-down", type="local", available=False))

    assert (await registry.find_best_provider("text-to-speech")).id == "a-remote"
    assert (await registry.find_best_provider("text-to-speech", prefer_local=True)).id == "b-local"
    assert (await registry.find_best_provider("text-to-speech", exclude=["a-remote"])).id == "b-local"
    assert await registry.find_best_provider("text-to-speech", exclude=["a-remote", "b-local"]) is None
    assert await registry.find_best_provider("speech-to-text") is None


@pytest.mark.asyncio
async def test_find_best_provider_skips_failing_availability_checks(registry):
    registry.register("flaky", lambda: FakeProvider("flaky", available=RuntimeError("network down")))
    registry.register("steady", lambda: FakeProvider("steady"))

    assert (await registry.find_best_provider("text-to-speech")).id == "steady"
