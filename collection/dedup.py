import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from .conf import setting

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Pending:
    future: asyncio.Future
    started: float


class RequestDeduplicator:
    """Collapses concurrent identical fetches.

    A call whose key matches a request started less than ``ttl`` seconds ago
    and still in flight awaits that request instead of running ``producer``
    again, so every caller sees the same value or the same exception.
    Entries are evicted as soon as they settle; each call also sweeps
    entries older than ``ttl``.
    """

    def __init__(self, ttl: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl = setting("REQUEST_DEDUP_TTL") if ttl is None else ttl
        self._clock = clock
        self._pending: Dict[str, _Pending] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, key: str) -> bool:
        return key in self._pending

    async def execute(self, key: str, producer: Callable[[], Awaitable[T]], ttl: Optional[float] = None) -> T:
        ttl = self.ttl if ttl is None else ttl
        now = self._clock()
        entry = self._pending.get(key)
        if entry is not None and now - entry.started < ttl:
            logger.debug("Joining in-flight request %s", key)
            return await asyncio.shield(entry.future)

        future = asyncio.ensure_future(producer())
        entry = _Pending(future=future, started=now)
        self._pending[key] = entry
        future.add_done_callback(functools.partial(self._evict, key, entry))
        self.sweep(ttl, now)
        return await asyncio.shield(future)

    def _evict(self, key: str, entry: _Pending, future: asyncio.Future) -> None:
        if self._pending.get(key) is entry:
            del self._pending[key]
        if not future.cancelled():
            # mark retrieved; the waiters re-raise it themselves
            future.exception()

    def sweep(self, ttl: Optional[float] = None, now: Optional[float] = None) -> int:
        ttl = self.ttl if ttl is None else ttl
        now = self._clock() if now is None else now
        stale = [key for key, entry in self._pending.items() if now - entry.started > ttl]
        for key in stale:
            del self._pending[key]
        if stale:
            logger.debug("Swept %s stale requests", len(stale))
        return len(stale)

    def clear(self) -> None:
        self._pending.clear()
