"""
Declarative manifests read from the root of a cached artifact.

Manifests are always read fresh from disk so edits are picked up on the next
resolution; only the artifact directory itself is reused.
"""
import asyncio
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from dockhand.internal.constants import (
    DEFAULT_PROVIDER_ENTRY,
    PROVIDER_MANIFEST_FILE_NAME,
    SERVICE_MANIFEST_FILE_NAME,
)
from dockhand.kernel.artifacts import CachedArtifact
from dockhand.kernel.contracts import ProviderType
from dockhand.kernel.errors import InvalidManifest


def _stringify(value: Any) -> Any:
    # YAML turns `version: 1.0` into a float
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class _ManifestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class HealthCheckSpec(_ManifestModel):
    url: Optional[str] = None
    endpoint: Optional[str] = None
    interval: Optional[str] = None
    timeout: Optional[str] = None
    retries: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def from_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"url": value} if "://" in value else {"endpoint": value}
        return value

    @field_validator("interval", "timeout", mode="before")
    @classmethod
    def stringify_durations(cls, value: Any) -> Any:
        return _stringify(value)

    @property
    def declared(self) -> bool:
        return bool(self.url or self.endpoint)


class Requirements(_ManifestModel):
    gpu: bool = False
    memory: Optional[str] = None
    cpu: Optional[str] = None

    @field_validator("memory", "cpu", mode="before")
    @classmethod
    def stringify_sizes(cls, value: Any) -> Any:
        return _stringify(value)


class DockerSpec(_ManifestModel):
    compose_file: str = Field(alias="composeFile", min_length=1)
    service_name: str = Field(alias="serviceName", min_length=1)
    image: Optional[str] = None
    ports: list[int] = Field(default_factory=list)
    health_check: Optional[HealthCheckSpec] = Field(default=None, alias="healthCheck")
    environment: dict[str, str] = Field(default_factory=dict)
    volumes: list[str] = Field(default_factory=list)

    @field_validator("ports", mode="before")
    @classmethod
    def ports_optional(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (int, str)):
            return [value]
        return value

    @field_validator("ports")
    @classmethod
    def ports_in_range(cls, value: list[int]) -> list[int]:
        for port in value:
            if port < 0 or port > 65535:
                raise ValueError(f"port {port} is out of range")
        return value

    @field_validator("environment", mode="before")
    @classmethod
    def environment_as_strings(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    @field_validator("volumes", mode="before")
    @classmethod
    def volumes_optional(cls, value: Any) -> Any:
        return [] if value is None else value


class ServiceManifest(_ManifestModel):
    name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    description: Optional[str] = None
    docker: DockerSpec
    capabilities: list[str] = Field(default_factory=list)
    requirements: Optional[Requirements] = None

    @field_validator("version", mode="before")
    @classmethod
    def stringify_version(cls, value: Any) -> Any:
        return _stringify(value)


class ProviderManifest(_ManifestModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    type: str = ProviderType.REMOTE.value
    description: Optional[str] = None
    service_url: Optional[str] = Field(default=None, alias="serviceUrl")
    service_config: dict[str, Any] = Field(default_factory=dict, alias="serviceConfig")
    capabilities: list[str] = Field(default_factory=list)
    entry: str = DEFAULT_PROVIDER_ENTRY

    @field_validator("version", mode="before")
    @classmethod
    def stringify_version(cls, value: Any) -> Any:
        return _stringify(value)

    @field_validator("type", mode="before")
    @classmethod
    def normalise_type(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("service_config", mode="before")
    @classmethod
    def service_config_optional(cls, value: Any) -> Any:
        return {} if value is None else value


Manifest = Union[ServiceManifest, ProviderManifest]


# ---------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------

def _read_document(artifact: CachedArtifact) -> dict:
    path = artifact.manifest_path
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise InvalidManifest(artifact.identifier, f"cannot read {path.name}: {exc}", str(path)) from exc
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise InvalidManifest(artifact.identifier, f"{path.name} is not valid YAML: {exc}", str(path)) from exc
    if not isinstance(document, dict):
        raise InvalidManifest(artifact.identifier, f"{path.name} must contain a mapping", str(path))
    return document


def _describe(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "<root>"
        if error["type"] == "missing":
            problems.append(f"missing required field '{location}'")
        else:
            problems.append(f"'{location}': {error['msg']}")
    return "; ".join(problems)


def parse_service_manifest(document: dict, identifier: str = "<inline>") -> ServiceManifest:
    try:
        return ServiceManifest.model_validate(document)
    except ValidationError as exc:
        raise InvalidManifest(identifier, _describe(exc)) from exc


def parse_provider_manifest(document: dict, identifier: str = "<inline>") -> ProviderManifest:
    try:
        return ProviderManifest.model_validate(document)
    except ValidationError as exc:
        raise InvalidManifest(identifier, _describe(exc)) from exc


async def load_service_manifest(artifact: CachedArtifact) -> ServiceManifest:
    document = await asyncio.to_thread(_read_document, artifact)
    return parse_service_manifest(document, artifact.identifier)


async def load_provider_manifest(artifact: CachedArtifact) -> ProviderManifest:
    document = await asyncio.to_thread(_read_document, artifact)
    return parse_provider_manifest(document, artifact.identifier)


async def load(artifact: CachedArtifact) -> Manifest:
    """Loads whichever manifest variant the artifact carries."""
    name = artifact.manifest_path.name
    if name == SERVICE_MANIFEST_FILE_NAME:
        return await load_service_manifest(artifact)
    if name == PROVIDER_MANIFEST_FILE_NAME:
        return await load_provider_manifest(artifact)
    raise InvalidManifest(artifact.identifier, f"unknown manifest file '{name}'", str(artifact.manifest_path))
