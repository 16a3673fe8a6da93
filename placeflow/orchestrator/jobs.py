"""Definitions for scheduled jobs and their lifecycle."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class JobKind(str, Enum):
    """Closed set of job kinds; every kind needs a registered processor."""

    SCRAPE = "scrape"
    ENRICH = "enrich"
    VALIDATE = "validate"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Job:
    """Represents a unit of retryable work owned by the scheduler."""

    job_id: str
    kind: JobKind
    payload: Dict[str, Any] = field(default_factory=dict)
    priority: int = 5
    attempts: int = 0
    max_attempts: int = 3
    status: JobStatus = JobStatus.PENDING
    last_error: Optional[str] = None
    result: Any = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def mark_started(self, now: datetime) -> None:
        """Transition the job into processing and count the attempt."""
        self.status = JobStatus.PROCESSING
        self.attempts += 1
        self.started_at = now

    def mark_succeeded(self, result: Any, now: datetime) -> None:
        """Mark the job as successfully completed."""
        self.status = JobStatus.COMPLETED
        self.result = result
        self.completed_at = now

    def mark_failed(self, error: BaseException, now: datetime) -> None:
        """Record a failure; the job goes back to pending until attempts run out."""
        self.last_error = str(error) or type(error).__name__
        if self.attempts >= self.max_attempts:
            self.status = JobStatus.FAILED
            self.completed_at = now
        else:
            self.status = JobStatus.PENDING

    def cancel(self) -> None:
        self.status = JobStatus.CANCELLED

    def should_retry(self) -> bool:
        """Return True when the job is eligible for another attempt."""
        return self.status == JobStatus.PENDING and self.attempts < self.max_attempts

    def retry_delay(self) -> float:
        """Seconds to wait before the next attempt: 2, 4, 8, ..."""
        return float(2 ** self.attempts)
