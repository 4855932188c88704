"""
Identifier -> instance cache shared by the service and provider registries.

Concurrent `get()` calls for the same identifier share one resolution: the
first caller resolves, later callers await the same future. Entries only
leave the cache through `refresh()` or `clear_cache()`.
"""
import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

from dockhand.internal.constants import RESOLVE_TIMEOUT
from dockhand.internal.logging import get_logger
from dockhand.kernel.errors import CreationFailed, DockhandError, NotFound
from dockhand.kernel.identifiers import is_dynamic

logger = get_logger(__name__)

T = TypeVar("T")

Constructor = Callable[[], Union[T, Awaitable[T]]]


class EntryState(str, Enum):
    FETCHING = "fetching"
    READY = "ready"
    FAILED = "failed"


@dataclass
class RegistryEntry(Generic[T]):
    identifier: str
    state: EntryState = EntryState.FETCHING
    instance: Optional[T] = None
    error: Optional[DockhandError] = None
    future: Optional[asyncio.Future] = field(default=None, repr=False, compare=False)


class Registry(Generic[T]):
    """
    Base registry. Subclasses implement `_resolve_dynamic()` and
    `_validate()`; everything else (static registrations, single-flight,
    error wrapping, bookkeeping) lives here.
    """

    kind = "component"

    def __init__(self, resolve_timeout: Optional[float] = None):
        self._constructors: dict[str, Constructor] = {}
        self._entries: dict[str, RegistryEntry[T]] = {}
        self._resolve_timeout = resolve_timeout if resolve_timeout is not None else RESOLVE_TIMEOUT
        self._hits = 0
        self._misses = 0
        self._waits = 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, static_id: str, constructor: Constructor) -> None:
        if not callable(constructor):
            raise TypeError(f"constructor for '{static_id}' is not callable")
        self._constructors[static_id] = constructor
        logger.debug("Registered static %s", self.kind, identifier=static_id)

    def available(self) -> list[str]:
        return sorted(self._constructors)

    def has(self, identifier: str) -> bool:
        return identifier in self._constructors or is_dynamic(identifier)

    def entry(self, identifier: str) -> Optional[RegistryEntry[T]]:
        return self._entries.get(identifier)

    def entries(self) -> list[RegistryEntry[T]]:
        return list(self._entries.values())

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def get(self, identifier: str) -> T:
        entry = self._entries.get(identifier)
        if entry is not None:
            if entry.state is EntryState.READY:
                self._hits += 1
                return entry.instance
            if entry.state is EntryState.FAILED:
                raise entry.error
            self._waits += 1
            return await self._wait_for(entry)

        if not self.has(identifier):
            raise NotFound(identifier)

        entry = RegistryEntry(identifier=identifier, future=asyncio.get_running_loop().create_future())
        self._entries[identifier] = entry
        self._misses += 1
        logger.info("Resolving %s", self.kind, identifier=identifier)

        try:
            instance = await asyncio.wait_for(self._create(identifier), timeout=self._resolve_timeout)
        except DockhandError as e:
            self._fail(entry, e)
            raise
        except asyncio.TimeoutError as e:
            error = CreationFailed(identifier, f"resolution timed out after {self._resolve_timeout}s")
            self._fail(entry, error)
            raise error from e
        except asyncio.CancelledError:
            if self._entries.get(identifier) is entry:
                del self._entries[identifier]
            entry.future.cancel()
            raise
        except Exception as e:
            error = CreationFailed(identifier, f"{type(e).__name__}: {e}")
            self._fail(entry, error)
            raise error from e

        entry.instance = instance
        entry.state = EntryState.READY
        entry.future.set_result(instance)
        logger.info("Resolved %s", self.kind, identifier=identifier)
        return instance

    async def _wait_for(self, entry: RegistryEntry[T]) -> T:
        try:
            return await asyncio.wait_for(asyncio.shield(entry.future), timeout=self._resolve_timeout)
        except asyncio.TimeoutError as e:
            raise CreationFailed(entry.identifier, "timed out waiting for an in-flight resolution") from e

    def _fail(self, entry: RegistryEntry[T], error: DockhandError) -> None:
        entry.state = EntryState.FAILED
        entry.error = error
        entry.future.set_exception(error)
        # Mark as retrieved so an unawaited failure does not log at GC time
        entry.future.exception()
        logger.error("Failed to resolve %s", self.kind, identifier=entry.identifier, error=str(error))

    async def _create(self, identifier: str) -> T:
        constructor = self._constructors.get(identifier)
        if constructor is not None:
            instance = constructor()
            if inspect.isawaitable(instance):
                instance = await instance
        else:
            instance = await self._resolve_dynamic(identifier)
        self._validate(identifier, instance)
        return instance

    async def _resolve_dynamic(self, identifier: str) -> T:
        raise NotFound(identifier)

    def _validate(self, identifier: str, instance: Any) -> None:
        pass

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    async def refresh(self, identifier: str) -> bool:
        """
        Forgets the cached instance and deletes any fetched artifact so the
        next get() resolves from scratch.
        """
        removed = self._entries.pop(identifier, None) is not None
        await self._discard_artifact(identifier)
        logger.info("Refreshed %s", self.kind, identifier=identifier, had_entry=removed)
        return removed

    async def _discard_artifact(self, identifier: str) -> None:
        pass

    def clear_cache(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        logger.info("Cleared %s cache", self.kind, entries=count)

    def stats(self) -> dict[str, Any]:
        states = [e.state for e in self._entries.values()]
        return {
            "registered": len(self._constructors),
            "cached": states.count(EntryState.READY),
            "in_flight": states.count(EntryState.FETCHING),
            "failed": states.count(EntryState.FAILED),
            "hits": self._hits,
            "misses": self._misses,
            "waits": self._waits,
        }
