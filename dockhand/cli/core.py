"""
Core, reusable logic for CLI commands, decoupled from Typer.
"""

import asyncio

import typer

from dockhand.adapters.storage_fs import FileSystemArtifactCache
from dockhand.internal.logging import get_logger
from dockhand.kernel.artifacts import CachedArtifact
from dockhand.kernel.contracts import ServiceHandle
from dockhand.kernel.errors import DockhandError
from dockhand.kernel.identifiers import parse
from dockhand.kernel.manifest import Manifest, load_provider_manifest, load_service_manifest
from dockhand.runtime.providers import ProviderRegistry, get_provider_registry
from dockhand.runtime.services import ServiceRegistry, get_service_registry

logger = get_logger(__name__)

# ---------------------------------------------------------------------
# Async helper
# ---------------------------------------------------------------------

def run_async(coro):
    """
    Run an async coroutine from sync Typer commands.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    raise RuntimeError("run_async() cannot be called from inside a running event loop")

# ---------------------------------------------------------------------
# Wiring (tests patch these)
# ---------------------------------------------------------------------

def service_registry() -> ServiceRegistry:
    return get_service_registry()


def provider_registry() -> ProviderRegistry:
    return get_provider_registry()


def artifact_cache(provider: bool = False) -> FileSystemArtifactCache:
    return FileSystemArtifactCache("providers" if provider else "services")

# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def fail(message: str, code: int = 1):
    typer.echo(typer.style(f"Error: {message}", fg=typer.colors.RED), err=True)
    raise typer.Exit(code)


async def resolve_service(identifier: str) -> ServiceHandle:
    return await service_registry().get(identifier)


async def describe(identifier: str, provider: bool = False) -> tuple[CachedArtifact, Manifest]:
    """Fetches the artifact (or reuses the cached copy) and loads its manifest."""
    artifact = await artifact_cache(provider).fetch(parse(identifier))
    loader = load_provider_manifest if provider else load_service_manifest
    return artifact, await loader(artifact)


def run_service_operation(identifier: str, operation: str, **kwargs):
    """
    Resolves a service and awaits one of its lifecycle methods. Resolution
    errors end the command with exit code 1.
    """
    async def _run():
        handle = await resolve_service(identifier)
        return handle, await getattr(handle, operation)(**kwargs)

    try:
        return run_async(_run())
    except DockhandError as e:
        logger.error("Service operation failed", identifier=identifier, operation=operation, error=str(e))
        fail(str(e))

