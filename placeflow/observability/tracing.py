"""Tracing helpers binding job context onto structured log lines."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

LOGGER = structlog.get_logger("placeflow.trace")

_JOB_KEYS = ("job_id", "job_kind", "attempt")


def bind_job_context(*, job_id: str, kind: str, attempt: int) -> None:
    bind_contextvars(job_id=job_id, job_kind=kind, attempt=attempt)


def clear_job_context() -> None:
    unbind_contextvars(*_JOB_KEYS)


@contextlib.contextmanager
def span(*, name: str, detail: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        LOGGER.debug("trace_span", span=name, detail=detail, elapsed_ms=elapsed_ms)
