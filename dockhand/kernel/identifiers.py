"""
Parses raw identifier strings into typed descriptors.

Grammar, first match wins:

    @scope/name[@version]            package registry (version defaults to "latest")
    npm:name[@version]               package registry
    https://github.com/owner/repo[@ref]
    github:owner/repo[@ref]          version control (ref defaults to "main")
    file:///abs/path | file:rel      local path
"""
import hashlib
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from urllib.parse import unquote

from dockhand.internal.constants import (
    DEFAULT_PACKAGE_VERSION,
    DEFAULT_VCS_REF,
    LOCAL_PATH_PREFIX,
    PACKAGE_REGISTRY_PREFIX,
    VERSION_CONTROL_PREFIXES,
)
from dockhand.kernel.errors import UnrecognizedIdentifier

_SEGMENT = re.compile(r"^[A-Za-z0-9_.\-]+$")
_WINDOWS_DRIVE = re.compile(r"^/[A-Za-z]:")
_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.\-]+")


class Scheme(str, Enum):
    PACKAGE_REGISTRY = "package-registry"
    VERSION_CONTROL = "version-control"
    LOCAL_PATH = "local-path"


@dataclass(frozen=True)
class Descriptor:
    """
    The parsed form of an identifier. Two equal identifier strings always
    produce equal descriptors; `raw` is kept for diagnostics only.
    """
    scheme: Scheme
    location: str
    ref: str = ""
    raw: str = field(default="", compare=False)

    @property
    def owner(self) -> str:
        if self.scheme is not Scheme.VERSION_CONTROL:
            raise AttributeError("owner is only defined for version-control descriptors")
        return self.location.split("/", 1)[0]

    @property
    def repo(self) -> str:
        if self.scheme is not Scheme.VERSION_CONTROL:
            raise AttributeError("repo is only defined for version-control descriptors")
        return self.location.split("/", 1)[1]

    def __str__(self) -> str:
        if self.scheme is Scheme.LOCAL_PATH:
            return self.location
        return f"{self.location}@{self.ref}"


def is_dynamic(identifier: str) -> bool:
    """True when the identifier carries a scheme prefix this module can parse."""
    return (
        identifier.startswith("@")
        or identifier.startswith(PACKAGE_REGISTRY_PREFIX)
        or identifier.startswith(VERSION_CONTROL_PREFIXES)
        or identifier.startswith(LOCAL_PATH_PREFIX)
    )


def parse(identifier: str) -> Descriptor:
    if not isinstance(identifier, str) or not identifier.strip():
        raise UnrecognizedIdentifier(str(identifier), "identifier is empty")
    identifier = identifier.strip()

    if identifier.startswith("@") or identifier.startswith(PACKAGE_REGISTRY_PREFIX):
        return _parse_package(identifier)
    for prefix in VERSION_CONTROL_PREFIXES:
        if identifier.startswith(prefix):
            return _parse_version_control(identifier, identifier[len(prefix):])
    if identifier.startswith(LOCAL_PATH_PREFIX):
        return _parse_local_path(identifier)

    raise UnrecognizedIdentifier(identifier, "no scheme matches")


def _parse_package(identifier: str) -> Descriptor:
    spec = identifier[len(PACKAGE_REGISTRY_PREFIX):] if identifier.startswith(PACKAGE_REGISTRY_PREFIX) else identifier

    # A leading '@' marks a scope and is never a version separator.
    at = spec.rfind("@")
    if at > 0:
        name, version = spec[:at], spec[at + 1:]
    else:
        name, version = spec, ""

    if not name or name == "@":
        raise UnrecognizedIdentifier(identifier, "package name is empty")
    if name.startswith("@"):
        scope, _, bare = name[1:].partition("/")
        if not scope or not bare:
            raise UnrecognizedIdentifier(identifier, "scoped package names must look like @scope/name")

    return Descriptor(
        scheme=Scheme.PACKAGE_REGISTRY,
        location=name,
        ref=version or DEFAULT_PACKAGE_VERSION,
        raw=identifier,
    )


def _parse_version_control(identifier: str, remainder: str) -> Descriptor:
    owner_repo, _, ref = remainder.partition("@")
    parts = [p for p in owner_repo.strip("/").split("/") if p]
    if len(parts) < 2:
        raise UnrecognizedIdentifier(identifier, "expected owner/repo")

    owner, repo = parts[0], parts[1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    for segment in (owner, repo):
        if not _SEGMENT.match(segment) or segment in (".", ".."):
            raise UnrecognizedIdentifier(identifier, f"invalid path segment '{segment}'")

    return Descriptor(
        scheme=Scheme.VERSION_CONTROL,
        location=f"{owner}/{repo}",
        ref=ref or DEFAULT_VCS_REF,
        raw=identifier,
    )


def _parse_local_path(identifier: str) -> Descriptor:
    raw_path = unquote(identifier[len(LOCAL_PATH_PREFIX):])
    if raw_path.startswith("//"):
        raw_path = raw_path[2:]
    # file:///C:/x yields "/C:/x" on Windows
    if _WINDOWS_DRIVE.match(raw_path):
        raw_path = raw_path[1:]
    if not raw_path:
        raise UnrecognizedIdentifier(identifier, "path is empty")

    absolute = os.path.abspath(Path(raw_path).expanduser())
    return Descriptor(scheme=Scheme.LOCAL_PATH, location=absolute, ref="", raw=identifier)


def _safe(part: str) -> str:
    return _UNSAFE_KEY_CHARS.sub("-", part).strip("-")


def _package_key(name: str) -> str:
    # '+' never occurs in a registry name, so '@scope/name' cannot collide
    # with a bare 'scope-name'
    if name.startswith("@"):
        scope, _, bare = name[1:].partition("/")
        key, exact = f"{_safe(scope)}+{_safe(bare)}", f"{scope}+{bare}"
    else:
        key = _safe(name)
        exact = name
    if key != exact:
        key += "-" + hashlib.sha256(name.encode("utf-8")).hexdigest()[:8]
    return key


def cache_key(descriptor: Descriptor) -> str:
    """
    Deterministic directory name for a descriptor. Never random, so repeated
    requests for the same artifact land in the same place, and distinct
    package names never share a directory.
    """
    if descriptor.scheme is Scheme.VERSION_CONTROL:
        return f"{descriptor.owner}-{descriptor.repo}"
    if descriptor.scheme is Scheme.PACKAGE_REGISTRY:
        return _package_key(descriptor.location)
    digest = hashlib.sha256(descriptor.location.encode("utf-8")).hexdigest()[:12]
    stem = _UNSAFE_KEY_CHARS.sub("-", Path(descriptor.location).name).strip("-") or "root"
    return f"{stem}-{digest}"
