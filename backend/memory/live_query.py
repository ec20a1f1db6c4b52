from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, AsyncIterator, Callable

logger = logging.getLogger(__name__)

Snapshot = list[dict[str, Any]]
Fetcher = Callable[[], Snapshot]
Listener = Callable[[Snapshot], None]
ErrorListener = Callable[[Exception], None]


class Subscription:
    """Handle for one live query. Snapshots are re-read after every matching write.

    Writes that land before a pending delivery runs collapse into a single
    snapshot. Subscribers that registered from inside an event loop receive
    snapshots on that loop on its next iteration; others are called inline.
    """

    def __init__(
        self,
        hub: "LiveQueryHub",
        key: tuple[str, int],
        fetch: Fetcher,
        listener: Listener,
        on_error: ErrorListener | None,
    ) -> None:
        self._hub = hub
        self.key = key
        self._fetch = fetch
        self._listener = listener
        self._on_error = on_error
        self._pending = False
        self._active = True
        self._state_lock = threading.Lock()
        try:
            self._loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        self._active = False
        self._hub._remove(self)

    def schedule(self) -> None:
        with self._state_lock:
            if not self._active or self._pending:
                return
            self._pending = True
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._deliver)
        else:
            self._deliver()

    def _deliver(self) -> None:
        with self._state_lock:
            self._pending = False
            if not self._active:
                return
        try:
            snapshot = self._fetch()
            self._listener(snapshot)
        except Exception as exc:
            if self._on_error is None:
                logger.exception("live query %s:%s listener failed", *self.key)
            else:
                self._on_error(exc)


class LiveQueryHub:
    def __init__(self) -> None:
        self._subscriptions: dict[tuple[str, int], list[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(
        self,
        table: str,
        episode_id: int,
        fetch: Fetcher,
        listener: Listener,
        *,
        on_error: ErrorListener | None = None,
    ) -> Subscription:
        subscription = Subscription(self, (table, episode_id), fetch, listener, on_error)
        with self._lock:
            self._subscriptions.setdefault(subscription.key, []).append(subscription)
        subscription.schedule()
        return subscription

    def notify(self, table: str, episode_id: int) -> None:
        with self._lock:
            targets = list(self._subscriptions.get((table, episode_id), []))
        for subscription in targets:
            subscription.schedule()

    def subscriber_count(self, table: str, episode_id: int) -> int:
        with self._lock:
            return len(self._subscriptions.get((table, episode_id), []))

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(subscription.key)
            if not subs:
                return
            if subscription in subs:
                subs.remove(subscription)
            if not subs:
                self._subscriptions.pop(subscription.key, None)

    async def snapshots(self, table: str, episode_id: int, fetch: Fetcher) -> AsyncIterator[Snapshot]:
        queue: asyncio.Queue[Snapshot] = asyncio.Queue()
        subscription = self.subscribe(table, episode_id, fetch, queue.put_nowait)
        try:
            while True:
                yield await queue.get()
        finally:
            subscription.unsubscribe()
