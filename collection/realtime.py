"""Change notifications for the collection dashboard.

``ChangeFeed`` is the push channel: model signals publish ``ChangeEvent``
objects into it and every ``Subscription`` is an async iterator over the
events of one table, delivered onto the event loop that subscribed.

``ChangeNotificationRouter`` sits on the consumer side of a dashboard view.
It keeps only events for the applications the view is showing, drops
everything while the view is hidden, and coalesces bursts into a single
trailing-edge callback.
"""
import asyncio
import inspect
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set

from .conf import setting
from .constants import EVENT_TYPES, WATCHED_TABLES

logger = logging.getLogger(__name__)

_CLOSED = object()


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None

    @property
    def subject_id(self) -> Optional[str]:
        for row in (self.new, self.old):
            if not row:
                continue
            value = row.get("application_id") or row.get("applicant_id")
            if value:
                return value
        return None


class Subscription:
    def __init__(self, feed: "ChangeFeed", table: str, event_types: Iterable[str], loop: asyncio.AbstractEventLoop):
        self.table = table
        self.event_types = frozenset(event_types)
        self.closed = False
        self._feed = feed
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._exhausted = False

    def deliver(self, event: ChangeEvent) -> None:
        # May run on any thread; the queue is only touched from its own loop.
        if self.closed or event.event_type not in self.event_types:
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)
        except RuntimeError:
            logger.warning("Subscriber loop for %s is closed, dropping subscription", self.table)
            self.close()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed.unsubscribe(self)
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, _CLOSED)
        except RuntimeError:
            logger.debug("Subscriber loop for %s already closed", self.table)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._exhausted:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._exhausted = True
            raise StopAsyncIteration
        return item


class ChangeFeed:
    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, table: str, event_types: Iterable[str] = EVENT_TYPES) -> Subscription:
        """Must be called from inside the event loop that will consume the events."""
        subscription = Subscription(self, table, event_types, asyncio.get_running_loop())
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug("Subscribed to %s changes", table)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, event: ChangeEvent) -> int:
        with self._lock:
            targets = [s for s in self._subscriptions if s.table == event.table]
        for subscription in targets:
            subscription.deliver(event)
        return len(targets)

    def subscriber_count(self, table: Optional[str] = None) -> int:
        with self._lock:
            return sum(1 for s in self._subscriptions if table is None or s.table == table)


change_feed = ChangeFeed()


class RouterState:
    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"


class ChangeNotificationRouter:
    """Routes table changes for visible applications to debounced callbacks.

    ``on_change`` is called for every watched table unless ``routes`` maps a
    table to its own callback. Callbacks take no arguments and may be plain
    functions or coroutine functions. Events that share a callback are
    coalesced: the callback runs once, ``throttle`` seconds after the last
    accepted event. ``resume()`` schedules one forced ``on_change`` after
    ``resume_delay`` seconds.
    """

    def __init__(
        self,
        channel,
        on_change: Callable[[], Any],
        tables: Iterable[str] = WATCHED_TABLES,
        routes: Optional[Mapping[str, Callable[[], Any]]] = None,
        visible_ids: Iterable[str] = (),
        throttle: Optional[float] = None,
        resume_delay: Optional[float] = None,
    ):
        self.channel = channel
        self.on_change = on_change
        self.routes: Dict[str, Callable[[], Any]] = {table: on_change for table in tables}
        self.routes.update(routes or {})
        self.throttle = setting("REALTIME_THROTTLE_SECONDS") if throttle is None else throttle
        self.resume_delay = setting("REALTIME_RESUME_DELAY_SECONDS") if resume_delay is None else resume_delay
        self.state = RouterState.ACTIVE
        self._visible_ids: frozenset = frozenset(visible_ids)
        self._subscriptions: List[Subscription] = []
        self._consumers: List[asyncio.Task] = []
        self._callback_tasks: Set[asyncio.Future] = set()
        self._debounce: Dict[Callable, asyncio.TimerHandle] = {}
        self._resume_handle: Optional[asyncio.TimerHandle] = None

    @property
    def visible_ids(self) -> frozenset:
        return self._visible_ids

    def set_visible_ids(self, ids: Iterable[str]) -> None:
        self._visible_ids = frozenset(ids)

    def start(self) -> "ChangeNotificationRouter":
        if self.state == RouterState.CLOSED:
            raise RuntimeError("Cannot start a closed router")
        loop = asyncio.get_running_loop()
        for table in self.routes:
            try:
                subscription = self.channel.subscribe(table, EVENT_TYPES)
            except Exception:
                logger.exception("Could not subscribe to %s changes", table)
                continue
            self._subscriptions.append(subscription)
            self._consumers.append(loop.create_task(self._consume(subscription)))
        logger.info(
            "Watching %s tables for %s visible applications",
            len(self._subscriptions),
            len(self._visible_ids),
        )
        return self

    async def _consume(self, subscription: Subscription) -> None:
        try:
            async for event in subscription:
                self.handle(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Change subscription for %s failed", subscription.table)

    def handle(self, event: ChangeEvent) -> bool:
        """Accept or drop one change event; returns True when it was accepted."""
        if self.state != RouterState.ACTIVE:
            return False
        subject = event.subject_id
        if subject is None or subject not in self._visible_ids:
            return False
        callback = self.routes.get(event.table)
        if callback is None:
            return False
        self._schedule(callback)
        return True

    def _schedule(self, callback: Callable[[], Any]) -> None:
        pending = self._debounce.pop(callback, None)
        if pending is not None:
            pending.cancel()
        loop = asyncio.get_running_loop()
        self._debounce[callback] = loop.call_later(self.throttle, self._fire, callback)

    def _fire(self, callback: Callable[[], Any]) -> None:
        self._debounce.pop(callback, None)
        if self.state != RouterState.ACTIVE:
            return
        self._invoke(callback)

    def _invoke(self, callback: Callable[[], Any]) -> None:
        try:
            result = callback()
        except Exception:
            logger.exception("Change callback %r failed", callback)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._callback_tasks.add(task)
            task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Future) -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Change callback failed", exc_info=exc)

    def pause(self) -> bool:
        if self.state != RouterState.ACTIVE:
            return False
        self.state = RouterState.PAUSED
        self._cancel_timers()
        logger.info("View hidden, pausing change notifications")
        return True

    def resume(self) -> bool:
        if self.state != RouterState.PAUSED:
            return False
        self.state = RouterState.ACTIVE
        loop = asyncio.get_running_loop()
        self._resume_handle = loop.call_later(self.resume_delay, self._forced_refresh)
        logger.info("View visible, resuming change notifications")
        return True

    def _forced_refresh(self) -> None:
        self._resume_handle = None
        if self.state == RouterState.ACTIVE:
            self._invoke(self.on_change)

    def _cancel_timers(self) -> None:
        for handle in self._debounce.values():
            handle.cancel()
        self._debounce.clear()
        if self._resume_handle is not None:
            self._resume_handle.cancel()
            self._resume_handle = None

    def close(self) -> None:
        if self.state == RouterState.CLOSED:
            return
        self.state = RouterState.CLOSED
        self._cancel_timers()
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions.clear()
        for task in self._consumers + list(self._callback_tasks):
            task.cancel()
        self._consumers.clear()
        self._callback_tasks.clear()
        logger.info("Change notifications closed")

    @property
    def pending_timers(self) -> int:
        return len(self._debounce) + (1 if self._resume_handle is not None else 0)

    async def __aenter__(self):
        return self.start()

    async def __aexit__(self, exc_type, exc, tb):
        self.close()
