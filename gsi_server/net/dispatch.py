"""Event fan-out to subscribers.

Each subscription owns a queue and a worker task. `publish` only enqueues;
handlers run on the worker, so a slow handler delays nobody but itself.

Backpressure when a subscription's queue is full:
  block        publisher waits for space
  drop_oldest  oldest queued event is discarded
  drop_newest  incoming event is discarded
Drops are counted on the subscription.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Iterable

from gsi_server.game.events import Event, EventKind
from gsi_server.log import log_event

logger = logging.getLogger("gsi_server.dispatch")

Handler = Callable[[Event], Any]
ErrorHandler = Callable[["SubscriberDeliveryFailed"], Any]


class Backpressure(str, Enum):
    BLOCK = "block"
    DROP_OLDEST = "drop_oldest"
    DROP_NEWEST = "drop_newest"


class SubscriberDeliveryFailed(Exception):
    def __init__(self, subscription: str, event: Event, cause: BaseException):
        super().__init__(f"{subscription}: {event.kind.value} handler failed: {cause!r}")
        self.subscription = subscription
        self.event = event
        self.cause = cause


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class Subscription:
    def __init__(
        self,
        dispatcher: "EventDispatcher",
        handler: Handler,
        *,
        name: str,
        kinds: frozenset[EventKind] | None,
        queue_size: int,
        policy: Backpressure,
        on_error: ErrorHandler | None,
    ):
        self._dispatcher = dispatcher
        self.handler = handler
        self.name = name
        self.kinds = kinds
        self.policy = policy
        self.on_error = on_error
        self.queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max(0, int(queue_size)))

        self.delivered = 0
        self.dropped = 0
        self.failed = 0

        self._task: asyncio.Task | None = None
        self._closed = False

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def wants(self, event: Event) -> bool:
        return self.kinds is None or event.kind in self.kinds

    def unsubscribe(self) -> None:
        self._dispatcher.unsubscribe(self)

    async def offer(self, events: Iterable[Event]) -> None:
        for ev in events:
            if self._closed:
                return
            if not self.wants(ev):
                continue
            if self.policy is Backpressure.BLOCK:
                await self.queue.put(ev)
                if self._closed:
                    # Closed while we waited; nothing will drain this queue.
                    self._discard()
                    return
                continue
            if self.queue.full():
                if self.policy is Backpressure.DROP_NEWEST:
                    self._count_drop(ev)
                    continue
                old = self.queue.get_nowait()
                self.queue.task_done()
                self._count_drop(old)
            self.queue.put_nowait(ev)

    def _count_drop(self, ev: Event) -> None:
        self.dropped += 1
        log_event(logger, logging.DEBUG, "subscriber.drop", subscription=self.name, dropped=self.dropped, **ev.summary())

    async def join(self) -> None:
        """Wait until everything queued so far has been handled."""
        await self.queue.join()

    def start(self) -> None:
        self._closed = False
        if not self.active:
            self._task = asyncio.create_task(self._run(), name=f"gsi-subscriber-{self.name}")

    def close(self) -> asyncio.Task | None:
        """Stop accepting events; returns the cancelled worker, if any."""
        self._closed = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
        self._discard()
        return task

    async def stop(self) -> None:
        task = self.close()
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _discard(self) -> None:
        # Frees publishers still waiting on a full queue.
        while not self.queue.empty():
            self.queue.get_nowait()
            self.queue.task_done()
            self.dropped += 1

    async def _run(self) -> None:
        while True:
            ev = await self.queue.get()
            try:
                await _maybe_await(self.handler(ev))
                self.delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                await self._report(SubscriberDeliveryFailed(self.name, ev, e))
            finally:
                self.queue.task_done()

    async def _report(self, err: SubscriberDeliveryFailed) -> None:
        if self.on_error is None:
            log_event(logger, logging.WARNING, "subscriber.failed", subscription=self.name, error=repr(err.cause), **err.event.summary())
            return
        try:
            await _maybe_await(self.on_error(err))
        except Exception:
            logger.exception("error handler of subscription %s raised", self.name)

    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "policy": self.policy.value,
            "queued": self.queue.qsize(),
            "maxsize": self.queue.maxsize,
            "delivered": self.delivered,
            "dropped": self.dropped,
            "failed": self.failed,
        }


class EventDispatcher:
    def __init__(self, queue_size: int = 256, policy: Backpressure | str = Backpressure.BLOCK):
        self.queue_size = int(queue_size)
        self.policy = Backpressure(policy)
        self._subs: list[Subscription] = []
        self._running = False
        self._seq = 0

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subs)

    def subscribe(
        self,
        handler: Handler,
        *,
        kinds: Iterable[EventKind | str] | None = None,
        queue_size: int | None = None,
        policy: Backpressure | str | None = None,
        on_error: ErrorHandler | None = None,
        name: str | None = None,
    ) -> Subscription:
        self._seq += 1
        sub = Subscription(
            self,
            handler,
            name=name or getattr(handler, "__name__", None) or f"sub{self._seq}",
            kinds=frozenset(EventKind(k) for k in kinds) if kinds is not None else None,
            queue_size=self.queue_size if queue_size is None else queue_size,
            policy=self.policy if policy is None else Backpressure(policy),
            on_error=on_error,
        )
        self._subs.append(sub)
        if self._running:
            sub.start()
        log_event(logger, logging.INFO, "subscriber.added", subscription=sub.name, policy=sub.policy.value, maxsize=sub.queue.maxsize)
        return sub

    def on(self, *kinds: EventKind | str, **opts: Any) -> Callable[[Handler], Handler]:
        """Decorator form of `subscribe`."""

        def deco(fn: Handler) -> Handler:
            self.subscribe(fn, kinds=kinds or None, **opts)
            return fn

        return deco

    def unsubscribe(self, sub: Subscription) -> None:
        if sub not in self._subs:
            return
        self._subs.remove(sub)
        sub.close()
        log_event(logger, logging.INFO, "subscriber.removed", subscription=sub.name)

    async def start(self) -> None:
        self._running = True
        for sub in self._subs:
            sub.start()

    async def close(self) -> None:
        self._running = False
        for sub in list(self._subs):
            await sub.stop()

    async def publish(self, events: list[Event]) -> None:
        if not events or not self._subs:
            return
        # Concurrent so one blocked queue does not hold back the others.
        await asyncio.gather(*(sub.offer(events) for sub in list(self._subs)))

    async def drain(self) -> None:
        await asyncio.gather(*(sub.join() for sub in list(self._subs) if sub.active))

    def stats(self) -> list[dict[str, Any]]:
        return [s.stats() for s in self._subs]

