"""In-memory ready queue ordered by job priority."""
from __future__ import annotations

import asyncio
import heapq
import itertools
from typing import List, Optional, Tuple

from placeflow.orchestrator.jobs import Job

_Entry = Tuple[int, float, int, Job]


class ReadyQueue:
    """Priority heap: highest priority first, oldest ``created_at`` on ties.

    The job table is the durable copy; this queue only holds jobs that are
    ready to be dispatched by this process.
    """

    def __init__(self) -> None:
        self._heap: List[_Entry] = []
        self._ids: set = set()
        self._counter = itertools.count()
        self._not_empty = asyncio.Event()

    def _entry(self, job: Job) -> _Entry:
        return (-job.priority, job.created_at.timestamp(), next(self._counter), job)

    def __len__(self) -> int:
        return len(self._heap)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._ids

    def put(self, job: Job) -> None:
        heapq.heappush(self._heap, self._entry(job))
        self._ids.add(job.job_id)
        self._not_empty.set()

    def get_nowait(self) -> Optional[Job]:
        if not self._heap:
            return None
        job = heapq.heappop(self._heap)[-1]
        self._ids.discard(job.job_id)
        if not self._heap:
            self._not_empty.clear()
        return job

    async def get(self) -> Job:
        """Obtain the most urgent job, blocking until one is available."""
        while True:
            job = self.get_nowait()
            if job is not None:
                return job
            await self._not_empty.wait()

    def swap(self, job: Job) -> Job:
        """Put ``job`` back and take whichever queued job is now most urgent."""
        if not self._heap:
            return job
        best = heapq.heappushpop(self._heap, self._entry(job))[-1]
        if best is not job:
            self._ids.add(job.job_id)
            self._ids.discard(best.job_id)
        return best

    def remove(self, job_id: str) -> bool:
        if job_id not in self._ids:
            return False
        self._heap = [entry for entry in self._heap if entry[-1].job_id != job_id]
        heapq.heapify(self._heap)
        self._ids.discard(job_id)
        if not self._heap:
            self._not_empty.clear()
        return True

    def clear(self) -> List[Job]:
        """Remove all jobs and return them."""
        jobs = [entry[-1] for entry in self._heap]
        self._heap = []
        self._ids.clear()
        self._not_empty.clear()
        return jobs
