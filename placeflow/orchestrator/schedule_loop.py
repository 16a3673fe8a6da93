"""Cron-like loop that enqueues configured jobs on the scheduler."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import structlog
from croniter import croniter

from placeflow.orchestrator.jobs import JobKind, utcnow

LOGGER = structlog.get_logger(__name__)


@dataclass
class ScheduledJob:
    kind: JobKind
    cron: str
    priority: int = 5
    payload: Dict[str, Any] = field(default_factory=dict)
    next_run: Optional[datetime] = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ScheduledJob":
        return cls(
            kind=JobKind(config.get("kind", "scrape")),
            cron=str(config.get("cron", "*/30 * * * *")),
            priority=int(config.get("priority", 5)),
            payload=dict(config.get("payload") or {}),
        )

    def is_due(self, now: datetime) -> bool:
        if self.next_run is None:
            self.next_run = croniter(self.cron, now).get_next(datetime)
        return now >= self.next_run

    def advance(self, now: datetime) -> None:
        self.next_run = croniter(self.cron, now).get_next(datetime)


async def run_schedule_loop(
    jobs: Sequence[ScheduledJob],
    scheduler: Any,
    *,
    interval_seconds: float = 60,
    ticks: Optional[int] = None,
    clock: Callable[[], datetime] = utcnow,
) -> List[str]:
    """Enqueue each scheduled job once its next cron fire time has passed.

    The first fire time is computed on the first tick, so nothing is enqueued
    at start-up. Returns the ids of the jobs added.
    """
    added: List[str] = []
    if not jobs:
        return added
    tick = 0
    while ticks is None or tick < ticks:
        now = clock()
        for job in jobs:
            if not job.is_due(now):
                continue
            job_id = await scheduler.add_job(job.kind, job.payload, priority=job.priority)
            added.append(job_id)
            LOGGER.info("schedule.fired", kind=job.kind.value, cron=job.cron, job_id=job_id)
            job.advance(now)
        tick += 1
        if ticks is None or tick < ticks:
            await asyncio.sleep(interval_seconds)
    return added
