import asyncio

import pytest

from gsi_server.game.events import Event, EventKind
from gsi_server.net.dispatch import Backpressure, EventDispatcher, SubscriberDeliveryFailed


def ev(i, kind=EventKind.PLAYER_HEALTH_CHANGED):
    return Event(kind=kind, entity="765", old=i, new=i + 1, timestamp=i)


@pytest.mark.asyncio
async def test_delivers_in_order_to_sync_and_async_handlers():
    d = EventDispatcher()
    got_sync, got_async = [], []

    async def slow(e):
        await asyncio.sleep(0)
        got_async.append(e.timestamp)

    d.subscribe(lambda e: got_sync.append(e.timestamp))
    d.subscribe(slow)
    await d.start()

    await d.publish([ev(1), ev(2)])
    await d.publish([ev(3)])
    await d.drain()
    assert got_sync == [1, 2, 3]
    assert got_async == [1, 2, 3]
    await d.close()


@pytest.mark.asyncio
async def test_kind_filter():
    d = EventDispatcher()
    got = []
    d.subscribe(got.append, kinds=[EventKind.PLAYER_DIED, "bomb_state_changed"])
    await d.start()
    await d.publish([ev(1), ev(2, EventKind.PLAYER_DIED), ev(3, EventKind.BOMB_STATE_CHANGED)])
    await d.drain()
    assert [e.kind for e in got] == [EventKind.PLAYER_DIED, EventKind.BOMB_STATE_CHANGED]
    await d.close()


@pytest.mark.asyncio
async def test_decorator_registration():
    d = EventDispatcher()
    got = []

    @d.on(EventKind.PLAYER_DIED)
    def died(e):
        got.append(e)

    await d.start()
    await d.publish([ev(1), ev(2, EventKind.PLAYER_DIED)])
    await d.drain()
    assert len(got) == 1
    assert d.subscriptions[0].name == "died"
    await d.close()


@pytest.mark.asyncio
async def test_failing_subscriber_is_isolated():
    d = EventDispatcher()
    good, errors = [], []

    def broken(e):
        raise RuntimeError("boom")

    bad = d.subscribe(broken, on_error=errors.append)
    d.subscribe(good.append)
    await d.start()

    await d.publish([ev(1), ev(2)])
    await d.drain()
    assert [e.timestamp for e in good] == [1, 2]
    assert bad.failed == 2
    assert bad.delivered == 0
    assert all(isinstance(err, SubscriberDeliveryFailed) for err in errors)
    assert isinstance(errors[0].cause, RuntimeError)
    assert errors[0].event.timestamp == 1
    # Worker survives the failures.
    assert bad.active
    await d.close()


@pytest.mark.asyncio
async def test_drop_newest_counts_drops():
    d = EventDispatcher()
    sub = d.subscribe(lambda e: None, queue_size=2, policy=Backpressure.DROP_NEWEST)
    # Not started: nothing drains the queue.
    await d.publish([ev(i) for i in range(5)])
    assert sub.dropped == 3
    assert [sub.queue.get_nowait().timestamp for _ in range(2)] == [0, 1]


@pytest.mark.asyncio
async def test_drop_oldest_keeps_latest():
    d = EventDispatcher()
    sub = d.subscribe(lambda e: None, queue_size=2, policy="drop_oldest")
    await d.publish([ev(i) for i in range(5)])
    assert sub.dropped == 3
    assert [sub.queue.get_nowait().timestamp for _ in range(2)] == [3, 4]


@pytest.mark.asyncio
async def test_blocked_subscriber_does_not_hold_back_others():
    d = EventDispatcher()
    slow_got, fast_got = [], []
    fast_done = asyncio.Event()

    def fast(e):
        fast_got.append(e.timestamp)
        if len(fast_got) == 3:
            fast_done.set()

    slow = d.subscribe(lambda e: slow_got.append(e.timestamp), queue_size=1, policy="block", name="slow")
    quick = d.subscribe(fast, name="fast")
    quick.start()

    publishing = asyncio.create_task(d.publish([ev(1), ev(2), ev(3)]))
    await asyncio.wait_for(fast_done.wait(), timeout=1.0)
    assert fast_got == [1, 2, 3]
    # Slow queue is full and its worker is not running: publisher is suspended.
    assert not publishing.done()

    slow.start()
    await asyncio.wait_for(publishing, timeout=1.0)
    await slow.join()
    assert slow_got == [1, 2, 3]
    assert slow.dropped == 0
    await d.close()


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery():
    d = EventDispatcher()
    got = []
    sub = d.subscribe(got.append)
    await d.start()
    await d.publish([ev(1)])
    await d.drain()
    sub.unsubscribe()
    await d.publish([ev(2)])
    assert [e.timestamp for e in got] == [1]
    assert d.subscriptions == []
    await d.close()


@pytest.mark.asyncio
async def test_subscribe_after_start_runs_immediately():
    d = EventDispatcher(queue_size=4, policy="drop_newest")
    await d.start()
    got = []
    sub = d.subscribe(got.append)
    assert sub.policy is Backpressure.DROP_NEWEST
    assert sub.queue.maxsize == 4
    await d.publish([ev(1)])
    await d.drain()
    assert len(got) == 1
    assert d.stats()[0]["delivered"] == 1
    await d.close()


async def _stuck(e):
    await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_unsubscribe_releases_blocked_publisher():
    d = EventDispatcher()
    sub = d.subscribe(_stuck, queue_size=1, policy="block")
    await d.start()

    publishing = asyncio.create_task(d.publish([ev(i) for i in range(5)]))
    await asyncio.sleep(0.01)
    assert not publishing.done()

    sub.unsubscribe()
    await asyncio.wait_for(publishing, timeout=1.0)
    assert sub.queue.empty()
    assert not sub.active
    # Queued and parked events were discarded, not delivered.
    assert sub.delivered == 0
    assert sub.dropped >= 1
    await d.close()


@pytest.mark.asyncio
async def test_stop_releases_blocked_publisher_and_refuses_more():
    d = EventDispatcher()
    sub = d.subscribe(_stuck, queue_size=1, policy="block")
    await d.start()

    publishing = asyncio.create_task(d.publish([ev(i) for i in range(5)]))
    await asyncio.sleep(0.01)
    await sub.stop()
    await asyncio.wait_for(publishing, timeout=1.0)

    await asyncio.wait_for(d.publish([ev(10), ev(11)]), timeout=1.0)
    assert sub.queue.empty()
    assert not sub.active
