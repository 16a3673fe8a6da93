"""Durable job table: the source of truth for job status."""
from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional

import orjson

from placeflow.orchestrator.jobs import Job, JobKind, JobStatus
from placeflow.storage.database import Database

_DDL = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    job_type TEXT NOT NULL,
    source TEXT,
    city TEXT,
    category TEXT,
    status TEXT NOT NULL,
    priority INTEGER NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 3,
    total_items INTEGER NOT NULL DEFAULT 0,
    processed_items INTEGER NOT NULL DEFAULT 0,
    successful_items INTEGER NOT NULL DEFAULT 0,
    failed_items INTEGER NOT NULL DEFAULT 0,
    started_at TEXT,
    completed_at TEXT,
    created_at TEXT NOT NULL,
    error_message TEXT,
    metadata TEXT,
    result TEXT
)
"""

_INDEX = "CREATE INDEX IF NOT EXISTS jobs_status_started ON jobs (status, started_at)"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _dumps(value: Any) -> str:
    return orjson.dumps(value, default=str).decode()


def _job_from_row(row: sqlite3.Row) -> Job:
    return Job(
        job_id=row["id"],
        kind=JobKind(row["job_type"]),
        payload=orjson.loads(row["metadata"]) if row["metadata"] else {},
        priority=row["priority"],
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        status=JobStatus(row["status"]),
        last_error=row["error_message"],
        result=orjson.loads(row["result"]) if row["result"] else None,
        created_at=_parse(row["created_at"]),
        started_at=_parse(row["started_at"]),
        completed_at=_parse(row["completed_at"]),
    )


class JobStore:
    """SQLite-backed job table.

    Status transitions that must not race use conditional updates: ``claim``
    only moves a pending row to processing and ``reset_stale`` only moves a
    processing row back to pending, each reporting whether it won.
    """

    def __init__(self, database: Database) -> None:
        self._db = database
        self._db.call(self._create)

    @staticmethod
    def _create(connection: sqlite3.Connection) -> None:
        with connection:
            connection.execute(_DDL)
            connection.execute(_INDEX)

    async def _write(self, sql: str, params: tuple) -> int:
        def _execute(connection: sqlite3.Connection) -> int:
            with connection:
                return connection.execute(sql, params).rowcount

        return await self._db.run(_execute)

    async def _read(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        return await self._db.run(lambda connection: connection.execute(sql, params).fetchall())

    async def insert(self, job: Job) -> None:
        payload = job.payload
        await self._write(
            """
            INSERT INTO jobs (
                id, job_type, source, city, category, status, priority,
                attempts, max_attempts, created_at, metadata
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.job_id,
                job.kind.value,
                str(payload.get("source") or "manual"),
                str(payload.get("city") or "all"),
                payload.get("category"),
                job.status.value,
                job.priority,
                job.attempts,
                job.max_attempts,
                _iso(job.created_at),
                _dumps(payload),
            ),
        )

    async def claim(self, job_id: str, *, attempts: int, started_at: datetime) -> bool:
        """Move a pending job to processing; False when another actor got there first."""
        changed = await self._write(
            "UPDATE jobs SET status = ?, attempts = ?, started_at = ? WHERE id = ? AND status = ?",
            (JobStatus.PROCESSING.value, attempts, _iso(started_at), job_id, JobStatus.PENDING.value),
        )
        return changed == 1

    async def mark_completed(self, job_id: str, *, result: Any, completed_at: datetime) -> None:
        await self._write(
            "UPDATE jobs SET status = ?, result = ?, completed_at = ?, error_message = NULL WHERE id = ?",
            (JobStatus.COMPLETED.value, _dumps(result), _iso(completed_at), job_id),
        )

    async def mark_pending(self, job_id: str, *, attempts: int, error: Optional[str]) -> None:
        await self._write(
            "UPDATE jobs SET status = ?, attempts = ?, error_message = ? WHERE id = ?",
            (JobStatus.PENDING.value, attempts, error, job_id),
        )

    async def mark_failed(self, job_id: str, *, attempts: int, error: Optional[str], completed_at: datetime) -> None:
        await self._write(
            "UPDATE jobs SET status = ?, attempts = ?, error_message = ?, completed_at = ? WHERE id = ?",
            (JobStatus.FAILED.value, attempts, error, _iso(completed_at), job_id),
        )

    async def mark_cancelled(self, job_id: str, *, completed_at: datetime) -> bool:
        changed = await self._write(
            "UPDATE jobs SET status = ?, completed_at = ? WHERE id = ? AND status IN (?, ?)",
            (
                JobStatus.CANCELLED.value,
                _iso(completed_at),
                job_id,
                JobStatus.PENDING.value,
                JobStatus.PROCESSING.value,
            ),
        )
        return changed == 1

    async def reset_stale(self, job_id: str, *, error: str) -> bool:
        changed = await self._write(
            "UPDATE jobs SET status = ?, error_message = ? WHERE id = ? AND status = ?",
            (JobStatus.PENDING.value, error, job_id, JobStatus.PROCESSING.value),
        )
        return changed == 1

    async def record_progress(self, job_id: str, *, total: int, processed: int, successful: int, failed: int) -> None:
        await self._write(
            """
            UPDATE jobs SET total_items = ?, processed_items = ?, successful_items = ?, failed_items = ?
            WHERE id = ?
            """,
            (total, processed, successful, failed, job_id),
        )

    async def get(self, job_id: str) -> Optional[Job]:
        rows = await self._read("SELECT * FROM jobs WHERE id = ?", (job_id,))
        return _job_from_row(rows[0]) if rows else None

    async def find_by_status(self, status: JobStatus) -> List[Job]:
        rows = await self._read("SELECT * FROM jobs WHERE status = ? ORDER BY created_at", (status.value,))
        return [_job_from_row(row) for row in rows]

    async def find_stale(self, cutoff: datetime) -> List[Job]:
        """Jobs stuck in processing since before ``cutoff``."""
        rows = await self._read(
            "SELECT * FROM jobs WHERE status = ? AND started_at < ? ORDER BY started_at",
            (JobStatus.PROCESSING.value, _iso(cutoff)),
        )
        return [_job_from_row(row) for row in rows]

    async def list_jobs(self, *, status: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        """Raw rows for operator display, newest first."""
        if status:
            rows = await self._read(
                "SELECT * FROM jobs WHERE status = ? ORDER BY created_at DESC LIMIT ?", (status, limit)
            )
        else:
            rows = await self._read("SELECT * FROM jobs ORDER BY created_at DESC LIMIT ?", (limit,))
        return [dict(row) for row in rows]

    async def count_by_status(self) -> Dict[str, int]:
        rows = await self._read("SELECT status, COUNT(*) AS total FROM jobs GROUP BY status")
        counts = {status.value: 0 for status in JobStatus}
        counts.update({row["status"]: row["total"] for row in rows})
        return counts
