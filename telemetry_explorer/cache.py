"""Query result cache and request sequencing.

The cache belongs to one :class:`~telemetry_explorer.client.TelemetryClient`
instance. Entries are replaced wholesale, never patched in place.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Hashable, Mapping, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, Tuple[Tuple[str, Any], ...]]


def make_key(operation: str, params: Optional[Mapping[str, Any]] = None) -> CacheKey:
    """Build a hashable, order-independent key for ``(operation, params)``."""
    items = tuple(sorted((params or {}).items()))
    return (operation, items)


class CacheEntry(NamedTuple):
    value: Any
    stored_at: float
    stale_after: float


class QueryCache:
    """In-memory ``key -> (value, timestamp, window)`` cache.

    Concurrent :meth:`fetch` calls for one key share a single in-flight
    load. A load that fails stores nothing.

    Parameters
    ----------
    stale_after : float
        Default staleness window in seconds.
    clock : Callable[[], float]
        Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        stale_after: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stale_after = stale_after
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._inflight: Dict[Hashable, "asyncio.Future[Any]"] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def get(self, key: Hashable, stale_after: Optional[float] = None) -> Optional[Any]:
        """Return the cached value if present and fresh, else None.

        A stale entry is dropped on lookup.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        window = entry.stale_after if stale_after is None else stale_after
        if self._clock() - entry.stored_at >= window:
            del self._entries[key]
            return None
        return entry.value

    def put(self, key: Hashable, value: Any, stale_after: Optional[float] = None) -> None:
        """Store a value; entries past their own window are pruned first."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now - e.stored_at >= e.stale_after]
        for k in expired:
            del self._entries[k]
        window = self.stale_after if stale_after is None else stale_after
        self._entries[key] = CacheEntry(value, now, window)

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    async def fetch(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[Any]],
        stale_after: Optional[float] = None,
        refetch: bool = False,
    ) -> Any:
        """Return a fresh cached value or load it, sharing in-flight loads.

        Parameters
        ----------
        key : Hashable
            Cache key, usually from :func:`make_key`.
        loader : Callable[[], Awaitable[Any]]
            Coroutine factory performing the actual request.
        stale_after : Optional[float]
            Override of the staleness window for this key.
        refetch : bool
            Skip a fresh cache entry. An identical load already in flight is
            still joined rather than duplicated.
        """
        if not refetch:
            cached = self.get(key, stale_after)
            if cached is not None:
                logger.debug(f"Cache hit: {key[0] if isinstance(key, tuple) else key}")
                return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load(key, loader, stale_after))
            task.add_done_callback(_retrieve_exception)
            self._inflight[key] = task
        # A cancelled caller must not cancel the load other callers share.
        return await asyncio.shield(task)

    async def _load(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[Any]],
        stale_after: Optional[float],
    ) -> Any:
        try:
            value = await loader()
            self.put(key, value, stale_after)
            return value
        finally:
            self._inflight.pop(key, None)

    def invalidate(self, operation: Optional[str] = None) -> int:
        """Drop entries for one operation (or all). Returns how many."""
        if operation is None:
            dropped = len(self._entries)
            self._entries.clear()
            return dropped
        doomed = [
            key for key in self._entries
            if isinstance(key, tuple) and key and key[0] == operation
        ]
        for key in doomed:
            del self._entries[key]
        return len(doomed)


def _retrieve_exception(task: "asyncio.Future[Any]") -> None:
    # Callers re-raise the error through the shield; this only marks it
    # retrieved when every caller was cancelled first.
    if not task.cancelled():
        task.exception()


class RequestSequencer:
    """Monotonic request numbering per slot.

    A slot names one view (e.g. ``"search"``). Each new request takes a
    ticket; only the holder of the latest ticket may commit its response.
    """

    def __init__(self):
        self._latest: Dict[str, int] = {}

    def issue(self, slot: str) -> int:
        ticket = self._latest.get(slot, 0) + 1
        self._latest[slot] = ticket
        return ticket

    def is_current(self, slot: str, ticket: int) -> bool:
        return self._latest.get(slot) == ticket

    def latest(self, slot: str) -> int:
        return self._latest.get(slot, 0)

    def supersede(self, slot: str) -> None:
        """Invalidate every outstanding ticket of a slot."""
        self.issue(slot)
