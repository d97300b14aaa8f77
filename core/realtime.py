"""
Realtime change feed.

The persistence client publishes a ChangeEvent after every committed write.
Subscribers register per table (optionally per event type and column value)
and receive events in publish order on their own delivery queue, so a slow
subscriber never holds up a writer or another subscriber.

Usage:
    async with feed.subscribe("job_applications", on_change, event="update"):
        ...

    sub = feed.subscribe("support_tickets", on_ticket)
    ...
    sub.unsubscribe()
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

EVENT_INSERT = "insert"
EVENT_UPDATE = "update"
EVENT_DELETE = "delete"
EVENT_ANY = "*"
EVENTS = (EVENT_INSERT, EVENT_UPDATE, EVENT_DELETE, EVENT_ANY)


@dataclass(frozen=True)
class ChangeEvent:
    """A committed row change."""
    table: str
    event: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None

    @property
    def row(self) -> Optional[Dict[str, Any]]:
        """The row as it is now (the old snapshot for deletes)."""
        return self.new if self.new is not None else self.old

    @property
    def status_changed(self) -> bool:
        if self.event != EVENT_UPDATE or not self.old or not self.new:
            return False
        return self.old.get("status") != self.new.get("status")


class Subscription:
    """A registered callback with its own ordered delivery queue."""

    def __init__(self, feed: "ChangeFeed", table: str, callback: Callable, event: str = EVENT_ANY,
                 column_filter: Optional[Tuple[str, Any]] = None):
        self.feed = feed
        self.table = table
        self.callback = callback
        self.event = event
        self.column_filter = column_filter
        self.active = True
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    def matches(self, change: ChangeEvent) -> bool:
        if not self.active or change.table != self.table:
            return False
        if self.event != EVENT_ANY and change.event != self.event:
            return False
        if self.column_filter:
            column, value = self.column_filter
            row = change.row or {}
            if row.get(column) != value:
                return False
        return True

    def deliver(self, change: ChangeEvent):
        self._queue.put_nowait(change)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    async def _run(self):
        while True:
            change = await self._queue.get()
            try:
                result = self.callback(change)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Realtime subscriber for {self.table} failed on {change.event}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def join(self):
        """Wait until every queued event was handed to the callback."""
        await self._queue.join()

    def unsubscribe(self):
        if not self.active:
            return
        self.active = False
        self.feed._remove(self)
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
        self._worker = None

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unsubscribe()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.unsubscribe()


class ChangeFeed:
    """In-process push feed of row changes, keyed by table name."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, table: str, callback: Callable[[ChangeEvent], Optional[Awaitable]],
                  event: str = EVENT_ANY, column_filter: Optional[Tuple[str, Any]] = None) -> Subscription:
        """
        Register a callback for changes on a table.

        Args:
            table: Table name to watch
            callback: Sync or async callable receiving a ChangeEvent
            event: "insert", "update", "delete" or "*"
            column_filter: Optional (column, value) pair the row must match

        Returns:
            Subscription handle; release it with unsubscribe() or a with-block
        """
        if event not in EVENTS:
            raise ValueError(f"Unknown realtime event: {event}")
        subscription = Subscription(self, table, callback, event, column_filter)
        self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to {table} ({event})")
        return subscription

    def _remove(self, subscription: Subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
            logger.debug(f"Unsubscribed from {subscription.table} ({subscription.event})")

    def publish(self, change: ChangeEvent):
        """Queue a change for every matching subscriber. Never blocks the writer."""
        for subscription in list(self._subscriptions):
            if subscription.matches(change):
                subscription.deliver(change)

    async def drain(self):
        """Wait until all queued events have been delivered."""
        await asyncio.gather(*(sub.join() for sub in list(self._subscriptions)))

    def close(self):
        for subscription in list(self._subscriptions):
            subscription.unsubscribe()


class LiveQuery:
    """
    Poll-plus-push live value.

    The loader runs on every change to a watched table and on a fixed interval
    as a backstop for missed events. on_change is only called when the loaded
    value differs from the previous one.
    """

    def __init__(self, feed: ChangeFeed, tables: Iterable[str], loader: Callable[[], Awaitable[Any]],
                 interval: float, on_change: Optional[Callable[[Any], Awaitable[None]]] = None):
        self.feed = feed
        self.tables = list(tables)
        self.loader = loader
        self.interval = interval
        self.on_change = on_change
        self.value: Any = None
        self.loaded = False
        self._subscriptions: List[Subscription] = []
        self._poll_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    async def refresh(self) -> Any:
        async with self._lock:
            try:
                value = await self.loader()
            except Exception as e:
                logger.error(f"LiveQuery loader failed: {e}", exc_info=True)
                return self.value

            changed = not self.loaded or value != self.value
            self.value = value
            self.loaded = True

            # Rendered under the lock so an older value never lands after a newer one
            if changed and self.on_change is not None:
                try:
                    await self.on_change(value)
                except Exception as e:
                    logger.error(f"LiveQuery on_change failed: {e}", exc_info=True)
        return value

    async def _on_push(self, change: ChangeEvent):
        await self.refresh()

    async def _poll(self):
        while True:
            await asyncio.sleep(self.interval)
            await self.refresh()

    async def start(self) -> "LiveQuery":
        for table in self.tables:
            self._subscriptions.append(self.feed.subscribe(table, self._on_push))
        await self.refresh()
        self._poll_task = asyncio.get_running_loop().create_task(self._poll())
        return self

    async def stop(self):
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

    async def __aenter__(self) -> "LiveQuery":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
