import asyncio
from datetime import datetime, timedelta, timezone

from placeflow.orchestrator.events import EventBus, EventKind, JobEvent
from placeflow.orchestrator.jobs import Job, JobKind
from placeflow.orchestrator.queue import ReadyQueue
from placeflow.orchestrator.rate_limit import IntervalLimiter

BASE = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _job(job_id, priority, offset):
    return Job(job_id=job_id, kind=JobKind.SCRAPE, priority=priority, created_at=BASE + timedelta(seconds=offset))


def test_ready_queue_orders_by_priority_then_age():
    queue = ReadyQueue()
    queue.put(_job("late-mid", 5, 20))
    queue.put(_job("low", 1, 0))
    queue.put(_job("early-mid", 5, 10))
    queue.put(_job("high", 9, 30))
    order = [queue.get_nowait().job_id for _ in range(4)]
    assert order == ["high", "early-mid", "late-mid", "low"]
    assert queue.get_nowait() is None


def test_ready_queue_swap_and_remove():
    queue = ReadyQueue()
    held = _job("held", 3, 0)
    queue.put(_job("urgent", 9, 5))
    queue.put(_job("other", 1, 5))
    swapped = queue.swap(held)
    assert swapped.job_id == "urgent"
    assert "held" in queue
    assert "urgent" not in queue
    assert queue.remove("other") is True
    assert queue.remove("other") is False
    assert len(queue) == 1
    assert [job.job_id for job in queue.clear()] == ["held"]
    assert len(queue) == 0


def test_ready_queue_get_waits_for_put():
    async def scenario():
        queue = ReadyQueue()
        waiter = asyncio.create_task(queue.get())
        await asyncio.sleep(0)
        assert not waiter.done()
        queue.put(_job("arrived", 5, 0))
        return await asyncio.wait_for(waiter, timeout=1)

    assert asyncio.run(scenario()).job_id == "arrived"


def test_interval_limiter_waits_for_window():
    now = [0.0]
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        now[0] += seconds

    limiter = IntervalLimiter(interval=1.0, cap=2, clock=lambda: now[0], sleep=fake_sleep)

    async def scenario():
        for _ in range(5):
            await limiter.acquire()

    asyncio.run(scenario())
    assert sleeps == [1.0, 1.0]
    assert limiter.usage() == 1


def test_event_bus_isolates_listener_failures():
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    bus.subscribe(EventKind.QUEUE_IDLE, broken)
    subscription = bus.subscribe(EventKind.QUEUE_IDLE, seen.append)
    bus.publish(JobEvent(EventKind.QUEUE_IDLE))
    subscription.unsubscribe()
    bus.publish(JobEvent(EventKind.QUEUE_IDLE))
    assert len(seen) == 1
