"""Query cache for remote reads.

Entries are keyed by ``(endpoint, params)``. A cached value older than the TTL
is stale and refetched on the next read. Concurrent reads of one key share a
single fetch, and a fetch whose key is invalidated while it is in flight does
not populate the cache.
"""
import asyncio
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

import structlog

from carebook.core.config import settings

logger = structlog.get_logger(__name__)

# Endpoint names used as the first half of every cache key
PROVIDER_APPOINTMENTS = "provider-appointments"
PROVIDER_APPOINTMENT_COUNTS = "provider-appointment-counts"
PROVIDER_CALENDAR = "provider-calendar-appointments"
PROVIDER_TIMESLOTS = "provider-timeslots"
PROVIDER_SCHEDULE = "provider-schedule"
PROVIDER_OPERATING_HOURS = "provider-operating-hours"

CacheKey = tuple[str, tuple[tuple[str, Any], ...]]
Matcher = Union[Mapping[str, Any], Callable[[dict[str, Any]], bool], None]


def make_key(endpoint: str, params: Optional[Mapping[str, Any]] = None) -> CacheKey:
    items = sorted((params or {}).items())
    return endpoint, tuple((name, _freeze(value)) for name, value in items)


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(_freeze(item) for item in value)
    if isinstance(value, Mapping):
        return tuple(sorted((k, _freeze(v)) for k, v in value.items()))
    return value


class QueryCache:
    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = (
            ttl_seconds if ttl_seconds is not None else settings.QUERY_CACHE_TTL_SECONDS
        )
        self.clock = clock
        self._entries: dict[CacheKey, tuple[Any, float]] = {}
        self._inflight: dict[CacheKey, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def is_stale(self, key: CacheKey) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return True
        return self.clock() - entry[1] > self.ttl_seconds

    def peek(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Return the cached value (stale or not) without fetching."""
        entry = self._entries.get(make_key(endpoint, params))
        return entry[0] if entry else None

    def set(
        self, endpoint: str, params: Optional[Mapping[str, Any]], value: Any
    ) -> None:
        self._entries[make_key(endpoint, params)] = (value, self.clock())

    async def get_or_fetch(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]],
        fetch: Callable[[], Awaitable[Any]],
    ) -> Any:
        key = make_key(endpoint, params)
        if not self.is_stale(key):
            return self._entries[key][0]

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fetch())
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._store(key, done))
        else:
            logger.debug("Joining in-flight query", endpoint=endpoint)
        return await asyncio.shield(task)

    def _store(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is not task:
            # Invalidated while in flight
            return
        del self._inflight[key]
        if task.cancelled() or task.exception() is not None:
            return
        self._entries[key] = (task.result(), self.clock())

    def invalidate(self, endpoint: Optional[str] = None, match: Matcher = None) -> int:
        """Drop cached and in-flight entries.

        ``match`` is either a mapping that must be a subset of the key's
        params, or a predicate over the params dict.
        """
        keys = set(self._entries) | set(self._inflight)
        dropped = 0
        for key in keys:
            name, frozen = key
            if endpoint is not None and name != endpoint:
                continue
            if not _matches(dict(frozen), match):
                continue
            self._entries.pop(key, None)
            self._inflight.pop(key, None)
            dropped += 1
        if dropped:
            logger.debug("Invalidated queries", endpoint=endpoint, count=dropped)
        return dropped

    def clear(self) -> None:
        self._entries.clear()
        self._inflight.clear()


def _matches(params: dict[str, Any], match: Matcher) -> bool:
    if match is None:
        return True
    if callable(match):
        return bool(match(params))
    return all(params.get(name) == _freeze(value) for name, value in match.items())


class SessionCacheRegistry:
    """One ``QueryCache`` per session, least recently used evicted first."""

    def __init__(self, max_sessions: Optional[int] = None, ttl_seconds: Optional[float] = None):
        self.max_sessions = max_sessions or settings.MAX_SESSION_CACHES
        self.ttl_seconds = ttl_seconds
        self._caches: "OrderedDict[str, QueryCache]" = OrderedDict()

    def get(self, session_id: str) -> QueryCache:
        cache = self._caches.get(session_id)
        if cache is None:
            cache = QueryCache(ttl_seconds=self.ttl_seconds)
            self._caches[session_id] = cache
            while len(self._caches) > self.max_sessions:
                evicted, _ = self._caches.popitem(last=False)
                logger.debug("Evicted session cache", session_id=evicted)
        else:
            self._caches.move_to_end(session_id)
        return cache

    def __len__(self) -> int:
        return len(self._caches)
