"""Priority job scheduler with bounded concurrency, rate limiting and retries."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set

import structlog

from placeflow.errors import PersistenceError, ProcessorNotRegistered
from placeflow.observability.metrics import MetricsRegistry
from placeflow.observability.tracing import bind_job_context, clear_job_context
from placeflow.orchestrator.events import EventBus, EventKind, JobEvent
from placeflow.orchestrator.jobs import Job, JobKind, JobStatus, new_job_id, utcnow
from placeflow.orchestrator.processors import Processor
from placeflow.orchestrator.queue import ReadyQueue
from placeflow.orchestrator.rate_limit import IntervalLimiter
from placeflow.storage.job_table import JobStore

LOGGER = structlog.get_logger(__name__)

STALE_ERROR = "Job timeout - reset for retry"
STALE_EXHAUSTED_ERROR = "Job timeout - attempts exhausted"


class JobScheduler:
    """Dispatches persisted jobs to registered processors.

    At most ``concurrency`` jobs run at once and at most ``interval_cap`` jobs
    start in any ``interval`` seconds. Failed jobs wait ``2 ** attempts``
    seconds outside the worker pool before being queued again.
    """

    def __init__(
        self,
        store: JobStore,
        *,
        concurrency: int = 5,
        interval: float = 1.0,
        interval_cap: int = 2,
        job_timeout: Optional[float] = 300.0,
        stale_after: float = 600.0,
        sweep_interval: Optional[float] = 60.0,
        events: Optional[EventBus] = None,
        metrics: Optional[MetricsRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
        backoff_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        limiter: Optional[IntervalLimiter] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._store = store
        self.concurrency = concurrency
        self.job_timeout = job_timeout
        self.stale_after = stale_after
        self.sweep_interval = sweep_interval
        self.events = events or EventBus()
        self.metrics = metrics or MetricsRegistry()
        self._clock = clock
        self._backoff_sleep = backoff_sleep
        self._limiter = limiter or IntervalLimiter(interval=interval, cap=interval_cap)
        self._slots = asyncio.Semaphore(concurrency)
        self._queue = ReadyQueue()
        self._processors: Dict[JobKind, Processor] = {}
        self._active: Dict[str, Job] = {}
        self._cancelled: Set[str] = set()
        self._retry_tasks: Dict[str, asyncio.Task] = {}
        self._running: Set[asyncio.Task] = set()
        self._holding = False
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._dispatcher: Optional[asyncio.Task] = None
        self._sweeper: Optional[asyncio.Task] = None

    # registration

    def register_processor(self, kind: JobKind, processor: Processor) -> None:
        self._processors[JobKind(kind)] = processor

    def missing_processors(self) -> List[JobKind]:
        return [kind for kind in JobKind if kind not in self._processors]

    # producer side

    async def add_job(
        self,
        kind: JobKind,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        priority: int = 5,
        max_attempts: int = 3,
    ) -> str:
        """Persist a pending job and queue it; returns without waiting for it to run."""
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        job = Job(
            job_id=new_job_id(),
            kind=JobKind(kind),
            payload=dict(payload or {}),
            priority=priority,
            max_attempts=max_attempts,
            created_at=self._clock(),
        )
        try:
            await self._store.insert(job)
        except Exception as exc:
            self._report_store_error("insert", job, exc)
            raise PersistenceError(f"Failed to persist job: {exc}") from exc
        self._enqueue(job)
        self.metrics.incr("jobs_added")
        self.events.publish(JobEvent(EventKind.JOB_ADDED, job=job))
        LOGGER.info("scheduler.job_added", job_id=job.job_id, kind=job.kind.value, priority=priority)
        return job.job_id

    def pause(self) -> None:
        self._resumed.clear()
        self.events.publish(JobEvent(EventKind.QUEUE_PAUSED))
        LOGGER.info("scheduler.paused")

    def resume(self) -> None:
        self._resumed.set()
        self.events.publish(JobEvent(EventKind.QUEUE_RESUMED))
        LOGGER.info("scheduler.resumed")

    @property
    def is_paused(self) -> bool:
        return not self._resumed.is_set()

    def clear(self) -> None:
        """Drop queued jobs and pending retries; in-flight jobs are left to the stale sweep."""
        dropped = self._queue.clear()
        for task in self._retry_tasks.values():
            task.cancel()
        retries = len(self._retry_tasks)
        self._retry_tasks.clear()
        self._active.clear()
        self.events.publish(JobEvent(EventKind.QUEUE_CLEARED))
        LOGGER.warning("scheduler.cleared", queued=len(dropped), retries=retries)
        self._check_idle()

    async def cancel(self, job_id: str) -> bool:
        """Cancel a pending or processing job. Returns False if it was already terminal."""
        self._queue.remove(job_id)
        retry = self._retry_tasks.pop(job_id, None)
        if retry is not None:
            retry.cancel()
        if job_id in self._active:
            self._cancelled.add(job_id)
        try:
            changed = await self._store.mark_cancelled(job_id, completed_at=self._clock())
        except Exception as exc:
            self._report_store_error("cancel", None, exc)
            return False
        if changed:
            self.metrics.incr("jobs_cancelled")
            LOGGER.info("scheduler.job_cancelled", job_id=job_id)
        else:
            self._cancelled.discard(job_id)
        self._check_idle()
        return changed

    def get_stats(self) -> Dict[str, int]:
        size = len(self._queue)
        return {
            "pending": size + len(self._retry_tasks),
            "active": len(self._active),
            "completed": self.metrics.get("jobs_completed"),
            "failed": self.metrics.get("jobs_failed"),
            "size": size,
        }

    # lifecycle

    async def start(self) -> int:
        """Queue jobs persisted as pending and start dispatching. Returns the restored count."""
        if self._dispatcher is not None:
            return 0
        missing = self.missing_processors()
        if missing:
            LOGGER.warning("scheduler.missing_processors", kinds=[kind.value for kind in missing])
        restored = 0
        for job in await self._store.find_by_status(JobStatus.PENDING):
            if job.job_id in self._queue or job.job_id in self._active or job.job_id in self._retry_tasks:
                continue
            self._enqueue(job)
            restored += 1
        self._dispatcher = asyncio.create_task(self._dispatch_loop())
        if self.sweep_interval:
            self._sweeper = asyncio.create_task(self._sweep_loop())
        LOGGER.info("scheduler.started", restored=restored, concurrency=self.concurrency)
        return restored

    async def wait_forever(self) -> None:
        """Block for as long as the dispatcher runs."""
        if self._dispatcher is not None:
            await self._dispatcher

    async def join(self) -> None:
        """Wait until nothing is queued, running or waiting to retry."""
        await self._idle.wait()

    async def shutdown(self) -> None:
        """Stop the loops and wait for in-flight jobs to finish."""
        for task in (self._dispatcher, self._sweeper):
            if task is not None:
                task.cancel()
        for task in (self._dispatcher, self._sweeper):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._dispatcher = None
        self._sweeper = None
        for task in list(self._retry_tasks.values()):
            task.cancel()
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
        LOGGER.info("scheduler.stopped", stats=self.get_stats())

    # dispatch

    def _enqueue(self, job: Job) -> None:
        self._queue.put(job)
        self._idle.clear()

    async def _dispatch_loop(self) -> None:
        while True:
            await self._resumed.wait()
            await self._slots.acquire()
            job: Optional[Job] = None
            try:
                job = await self._queue.get()
                self._holding = True
                await self._limiter.acquire()
                # Re-read the queue so a more urgent arrival during the wait goes first.
                job = self._queue.swap(job)
            except asyncio.CancelledError:
                self._slots.release()
                if job is not None:
                    self._queue.put(job)
                raise
            finally:
                self._holding = False
            if not self._resumed.is_set():
                self._queue.put(job)
                self._slots.release()
                continue
            self._active[job.job_id] = job
            task = asyncio.create_task(self._execute(job))
            self._running.add(task)
            task.add_done_callback(self._running.discard)

    async def _execute(self, job: Job) -> None:
        try:
            await self._run(job)
        finally:
            self._active.pop(job.job_id, None)
            self._cancelled.discard(job.job_id)
            self._slots.release()
            self._check_idle()

    async def _run(self, job: Job) -> None:
        now = self._clock()
        try:
            claimed = await self._store.claim(job.job_id, attempts=job.attempts + 1, started_at=now)
        except Exception as exc:
            self._report_store_error("claim", job, exc)
            return
        if not claimed:
            LOGGER.info("scheduler.claim_skipped", job_id=job.job_id)
            return
        job.mark_started(now)
        self.events.publish(JobEvent(EventKind.JOB_STARTED, job=job))
        bind_job_context(job_id=job.job_id, kind=job.kind.value, attempt=job.attempts)
        try:
            LOGGER.info("scheduler.job_started")
            processor = self._processors.get(job.kind)
            if processor is None:
                raise ProcessorNotRegistered(job.kind.value)
            result = await asyncio.wait_for(processor.execute(job), timeout=self.job_timeout)
        except asyncio.TimeoutError:
            await self._handle_failure(job, TimeoutError(f"Job timed out after {self.job_timeout}s"))
        except Exception as exc:
            await self._handle_failure(job, exc)
        else:
            await self._handle_success(job, result)
        finally:
            clear_job_context()

    def _was_cancelled(self, job: Job) -> bool:
        if job.job_id in self._cancelled:
            job.cancel()
            LOGGER.info("scheduler.outcome_discarded", reason="cancelled")
            return True
        return False

    async def _handle_success(self, job: Job, result: Any) -> None:
        if self._was_cancelled(job):
            return
        job.mark_succeeded(result, self._clock())
        try:
            await self._store.mark_completed(job.job_id, result=result, completed_at=job.completed_at)
        except Exception as exc:
            self._report_store_error("complete", job, exc)
            return
        self.metrics.incr("jobs_completed")
        self.events.publish(JobEvent(EventKind.JOB_COMPLETED, job=job, result=result))
        LOGGER.info("scheduler.job_completed")

    async def _handle_failure(self, job: Job, error: BaseException) -> None:
        if self._was_cancelled(job):
            return
        job.mark_failed(error, self._clock())
        try:
            if job.should_retry():
                await self._store.mark_pending(job.job_id, attempts=job.attempts, error=job.last_error)
            else:
                await self._store.mark_failed(
                    job.job_id, attempts=job.attempts, error=job.last_error, completed_at=job.completed_at
                )
        except Exception as exc:
            self._report_store_error("fail", job, exc)
            return
        if job.should_retry():
            delay = job.retry_delay()
            self.metrics.incr("retries")
            self.events.publish(JobEvent(EventKind.JOB_RETRY, job=job, error=job.last_error, delay=delay))
            LOGGER.warning("scheduler.job_retry", error=job.last_error, delay=delay)
            self._retry_tasks[job.job_id] = asyncio.create_task(self._retry_after(job, delay))
        else:
            self.metrics.incr("jobs_failed")
            self.events.publish(JobEvent(EventKind.JOB_FAILED, job=job, error=job.last_error))
            LOGGER.error("scheduler.job_exhausted", error=job.last_error, attempts=job.attempts)

    async def _retry_after(self, job: Job, delay: float) -> None:
        try:
            await self._backoff_sleep(delay)
            self._enqueue(job)
        finally:
            if self._retry_tasks.get(job.job_id) is asyncio.current_task():
                del self._retry_tasks[job.job_id]

    def _check_idle(self) -> None:
        if len(self._queue) or self._holding or self._active or self._retry_tasks:
            return
        if not self._idle.is_set():
            self._idle.set()
            self.events.publish(JobEvent(EventKind.QUEUE_IDLE))
            LOGGER.info("scheduler.idle")

    def _report_store_error(self, action: str, job: Optional[Job], error: BaseException) -> None:
        LOGGER.error(
            "scheduler.store_error",
            action=action,
            job_id=job.job_id if job is not None else None,
            error=str(error),
        )
        self.events.publish(JobEvent(EventKind.QUEUE_ERROR, job=job, error=str(error)))

    # stale recovery

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            await self.sweep_stale_jobs()

    async def sweep_stale_jobs(self) -> int:
        """Reset jobs stuck in processing that this process is not running.

        Returns how many jobs went back to the queue. Jobs that have used every
        attempt are failed instead.
        """
        now = self._clock()
        cutoff = now - timedelta(seconds=self.stale_after)
        try:
            stale = await self._store.find_stale(cutoff)
        except Exception as exc:
            self._report_store_error("find_stale", None, exc)
            return 0
        reset = 0
        for job in stale:
            if job.job_id in self._active or job.job_id in self._queue:
                continue
            try:
                if job.attempts >= job.max_attempts:
                    await self._store.mark_failed(
                        job.job_id, attempts=job.attempts, error=STALE_EXHAUSTED_ERROR, completed_at=now
                    )
                    job.status = JobStatus.FAILED
                    job.last_error = STALE_EXHAUSTED_ERROR
                    self.metrics.incr("jobs_failed")
                    self.events.publish(JobEvent(EventKind.JOB_FAILED, job=job, error=STALE_EXHAUSTED_ERROR))
                    LOGGER.error("scheduler.stale_exhausted", job_id=job.job_id, attempts=job.attempts)
                    continue
                if not await self._store.reset_stale(job.job_id, error=STALE_ERROR):
                    continue
            except Exception as exc:
                self._report_store_error("sweep", job, exc)
                continue
            job.status = JobStatus.PENDING
            job.last_error = STALE_ERROR
            self._enqueue(job)
            reset += 1
            self.metrics.incr("stale_resets")
            LOGGER.warning("scheduler.stale_reset", job_id=job.job_id, started_at=str(job.started_at))
        return reset
