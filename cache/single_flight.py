"""
Keyed TTL cache with single-flight refill.

Many request handlers hit the static catalog at once; when its entry is
cold or expired every one of them would otherwise start its own
download + parse of the GTFS archive.  SingleFlightCache bounds that to one
loader execution per key:

  hit      unexpired entry returned immediately (no await, no lock)
  miss     the first caller starts a load task and registers it as the
           key's in-flight marker; every later caller for that key awaits
           the same task and receives the same value or the same exception
  failure  nothing is stored (no negative caching); the next call retries
  timeout  each load is bounded by load_timeout and fails with FetchFailure,
           releasing the slot

There is no await between checking the entry and registering the in-flight
task, so the check-and-register step is atomic on the event loop.

Waiters await the load through asyncio.shield(): a caller that gives up
does not cancel a load other callers (or the next request) still need.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from errors import FetchFailure

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    expires_at: float  # clock() seconds


class CacheStore(Protocol):
    """Optional persistent tier consulted only inside a single-flight load."""

    def get(self, key: str) -> CacheEntry | None: ...

    def set(self, entry: CacheEntry) -> None: ...

    def delete(self, key: str) -> None: ...


class SingleFlightCache:
    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        load_timeout: float | None = None,
        store: CacheStore | None = None,
    ) -> None:
        self._clock = clock
        self._load_timeout = load_timeout
        self._store = store
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._stats = {"hits": 0, "misses": 0, "loads": 0, "failures": 0}

    async def get_or_load(self, key: str, ttl: float, loader: Loader) -> Any:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at > self._clock():
            self._stats["hits"] += 1
            return entry.value

        self._stats["misses"] += 1
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._load(key, ttl, loader))
            task.add_done_callback(_consume_exception)
            self._inflight[key] = task
        return await asyncio.shield(task)

    async def _load(self, key: str, ttl: float, loader: Loader) -> Any:
        try:
            persisted = await self._store_get(key)
            if persisted is not None and persisted.expires_at > self._clock():
                logger.info("Cache %r restored from persistent store.", key)
                self._entries[key] = persisted
                return persisted.value

            self._stats["loads"] += 1
            started = self._clock()
            try:
                if self._load_timeout is None:
                    value = await loader()
                else:
                    value = await asyncio.wait_for(loader(), timeout=self._load_timeout)
            except asyncio.TimeoutError as exc:
                raise FetchFailure(
                    f"Loading {key!r} exceeded {self._load_timeout}s timeout."
                ) from exc

            entry = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl)
            self._entries[key] = entry
            await self._store_set(entry)
            logger.info("Cache %r loaded in %.2fs (ttl %ss).", key, self._clock() - started, ttl)
            return value
        except Exception as exc:
            self._stats["failures"] += 1
            logger.error("Cache %r load failed: %s", key, exc)
            raise
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    # The persistent tier is best-effort: its errors are logged and the
    # in-memory tier carries on without it.

    async def _store_get(self, key: str) -> CacheEntry | None:
        if self._store is None:
            return None
        try:
            return await asyncio.to_thread(self._store.get, key)
        except Exception as exc:
            logger.warning("Cache %r persistent read failed: %s", key, exc)
            return None

    async def _store_set(self, entry: CacheEntry) -> None:
        if self._store is None:
            return
        try:
            await asyncio.to_thread(self._store.set, entry)
        except Exception as exc:
            logger.warning("Cache %r persistent write failed: %s", entry.key, exc)

    def peek(self, key: str) -> CacheEntry | None:
        """Return the stored entry (even if expired) without loading."""
        return self._entries.get(key)

    def invalidate(self, key: str) -> None:
        """Drop the entry from both tiers; an in-flight load is left to finish."""
        self._entries.pop(key, None)
        if self._store is None:
            return
        try:
            self._store.delete(key)
        except Exception as exc:
            logger.warning("Cache %r persistent delete failed: %s", key, exc)

    def is_loading(self, key: str) -> bool:
        return key in self._inflight

    def stats(self) -> dict[str, int]:
        return dict(self._stats)


def _consume_exception(task: asyncio.Task) -> None:
    # Every waiter may have been cancelled; retrieve the exception so the loop
    # does not log "Task exception was never retrieved".
    if not task.cancelled():
        task.exception()
