import os
import tempfile

# Must run before anything imports dockhand: the logging module configures a
# file handler under the app data directory at import time.
os.environ.setdefault("DOCKHAND_HOME", tempfile.mkdtemp(prefix="dockhand-tests-"))

from pathlib import Path

import pytest
import yaml

from dockhand.internal.constants import PROVIDER_MANIFEST_FILE_NAME, SERVICE_MANIFEST_FILE_NAME
from dockhand.kernel.artifacts import CachedArtifact
from dockhand.kernel.identifiers import parse
from tests.mocks import FakeClock, FakeRunner


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def fake_clock():
    return FakeClock()


def _demo_service_manifest(**docker_overrides):
    docker = {
        "composeFile": "docker-compose.yml",
        "serviceName": "demo",
        "ports": [0],
        "healthCheck": {"endpoint": "/health"},
    }
    docker.update(docker_overrides)
    return {"name": "demo", "version": "1.0.0", "docker": docker, "capabilities": ["text-to-text"]}


@pytest.fixture
def service_manifest_data():
    """Factory for service manifest documents; keyword args override `docker` keys."""
    return _demo_service_manifest


@pytest.fixture
def write_service_dir(tmp_path):
    """Creates a local service directory with a manifest and a compose file."""
    def _write(name: str = "demo-service", document: dict | None = None) -> Path:
        directory = tmp_path / name
        directory.mkdir(parents=True, exist_ok=True)
        document = document if document is not None else _demo_service_manifest()
        (directory / SERVICE_MANIFEST_FILE_NAME).write_text(yaml.safe_dump(document), encoding="utf-8")
        (directory / "docker-compose.yml").write_text("services: {}\n", encoding="utf-8")
        return directory
    return _write


@pytest.fixture
def write_provider_dir(tmp_path):
    """Creates a local provider directory with a manifest and a provider.py."""
    def _write(name: str = "demo-provider", document: dict | None = None, source: str = "") -> Path:
        directory = tmp_path / name
        directory.mkdir(parents=True, exist_ok=True)
        document = document if document is not None else {
            "id": "demo",
            "name": "Demo Provider",
            "version": "0.1.0",
            "type": "local",
            "capabilities": ["text-to-text"],
        }
        (directory / PROVIDER_MANIFEST_FILE_NAME).write_text(yaml.safe_dump(document), encoding="utf-8")
        if source:
            (directory / "provider.py").write_text(source, encoding="utf-8")
        return directory
    return _write


@pytest.fixture
def local_artifact():
    """Builds the CachedArtifact the cache would return for a local directory."""
    def _artifact(directory: Path, manifest_name: str = SERVICE_MANIFEST_FILE_NAME) -> CachedArtifact:
        identifier = f"file:{directory.as_posix()}"
        return CachedArtifact(
            identifier=identifier,
            local_path=directory,
            manifest_path=directory / manifest_name,
            descriptor=parse(identifier),
            user_provided=True,
        )
    return _artifact
