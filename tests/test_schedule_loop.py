import asyncio
from datetime import datetime, timezone

from placeflow.orchestrator.jobs import JobKind
from placeflow.orchestrator.schedule_loop import ScheduledJob, run_schedule_loop


class RecordingScheduler:
    def __init__(self):
        self.added = []

    async def add_job(self, kind, payload=None, *, priority=5, max_attempts=3):
        self.added.append((kind, payload, priority))
        return f"job-{len(self.added)}"


def _clock(*moments):
    remaining = list(moments)
    return lambda: remaining.pop(0)


def test_schedule_loop_enqueues_when_cron_fires():
    entry = ScheduledJob.from_config(
        {"kind": "scrape", "cron": "*/5 * * * *", "priority": 7, "payload": {"url": "https://guide.example/eat"}}
    )
    scheduler = RecordingScheduler()
    clock = _clock(
        datetime(2026, 3, 1, 10, 1, tzinfo=timezone.utc),
        datetime(2026, 3, 1, 10, 3, tzinfo=timezone.utc),
        datetime(2026, 3, 1, 10, 5, 30, tzinfo=timezone.utc),
        datetime(2026, 3, 1, 10, 7, tzinfo=timezone.utc),
    )
    added = asyncio.run(run_schedule_loop([entry], scheduler, interval_seconds=0, ticks=4, clock=clock))
    assert added == ["job-1"]
    assert scheduler.added == [(JobKind.SCRAPE, {"url": "https://guide.example/eat"}, 7)]
    assert entry.next_run == datetime(2026, 3, 1, 10, 10, tzinfo=timezone.utc)


def test_scheduled_job_defaults():
    entry = ScheduledJob.from_config({})
    assert entry.kind is JobKind.SCRAPE
    assert entry.cron == "*/30 * * * *"
    assert entry.priority == 5
    assert not entry.is_due(datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc))
    assert entry.is_due(datetime(2026, 3, 1, 10, 30, tzinfo=timezone.utc))


def test_schedule_loop_without_jobs_returns_immediately():
    assert asyncio.run(run_schedule_loop([], RecordingScheduler(), ticks=None)) == []
