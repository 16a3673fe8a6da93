"""Batch coordinator: runs the pipeline over many items and persists the survivors."""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

import structlog

from placeflow.errors import PersistenceError
from placeflow.observability.metrics import MetricsRegistry, record_duration
from placeflow.orchestrator.jobs import JobKind
from placeflow.pipeline.ingest import IngestionPipeline, PipelineResult, PlaceWriter
from placeflow.quality.quarantine import Quarantine

LOGGER = structlog.get_logger(__name__)

ENRICH_PRIORITY = 3


class JobSink(Protocol):
    async def add_job(
        self,
        kind: JobKind,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        priority: int = 5,
        max_attempts: int = 3,
    ) -> str:
        ...


@dataclass
class BatchSummary:
    processed: int = 0
    saved: int = 0
    duplicates: int = 0
    errors: int = 0
    results: List[PipelineResult] = field(default_factory=list)
    saved_ids: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "saved": self.saved,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "saved_ids": list(self.saved_ids),
        }


def _describe(result: PipelineResult) -> Dict[str, Any]:
    if isinstance(result.original, Mapping):
        return dict(result.original)
    if result.validated is not None:
        return result.validated.model_dump(mode="json")
    return {"raw": result.original if isinstance(result.original, str) else repr(result.original)}


class BatchCoordinator:
    """Turns pipeline results into saved places and follow-up enrichment jobs."""

    def __init__(
        self,
        pipeline: IngestionPipeline,
        store: PlaceWriter,
        scheduler: JobSink,
        *,
        quarantine: Optional[Quarantine] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._pipeline = pipeline
        self._store = store
        self._scheduler = scheduler
        self._quarantine = quarantine
        self._metrics = metrics or MetricsRegistry()

    def _reject(self, result: PipelineResult, source: str) -> None:
        if result.validated is None:
            self._metrics.incr("parse_failures")
        else:
            self._metrics.incr("validation_failures")
        if self._quarantine is not None:
            self._quarantine.reject(record=_describe(result), reason=result.errors, source=source)

    async def process_and_save(
        self,
        items: Sequence[Any],
        *,
        source: str,
        category: Optional[str] = None,
        skip_duplicates: bool = True,
        enrich_all: bool = False,
        concurrency: int = 5,
    ) -> BatchSummary:
        with record_duration(self._metrics, "batch_duration_ms"):
            results = await self._pipeline.process_batch(
                items,
                concurrency=concurrency,
                category=category,
                skip_duplicate_check=False,
                skip_enhancement=not enrich_all,
            )
            summary = BatchSummary(processed=len(results))
            to_save: List[int] = []
            for index, result in enumerate(results):
                if result.errors:
                    summary.errors += 1
                    LOGGER.info("batch.item_rejected", index=index, errors=list(result.errors))
                    self._reject(result, source)
                elif result.is_duplicate and skip_duplicates:
                    summary.duplicates += 1
                    LOGGER.info("batch.item_duplicate", index=index, duplicate_of=result.duplicate_of_id)
                else:
                    to_save.append(index)

            if to_save:
                await self._save(results, to_save, summary, source)
            summary.results = results

        self._metrics.incr("records_processed", summary.processed)
        self._metrics.incr("records_saved", summary.saved)
        self._metrics.incr("duplicates", summary.duplicates)
        self._metrics.incr("record_errors", summary.errors)
        LOGGER.info("batch.completed", source=source, **summary.as_dict())
        return summary

    async def _save(
        self,
        results: List[PipelineResult],
        indexes: List[int],
        summary: BatchSummary,
        source: str,
    ) -> None:
        records = [results[index].validated for index in indexes]
        enrichments = [results[index].enriched for index in indexes]
        try:
            saved_ids = await self._store.bulk_insert(records, source=source, enrichments=enrichments)
        except PersistenceError as exc:
            summary.errors += len(indexes)
            message = str(exc)
            for index in indexes:
                results[index] = dataclasses.replace(results[index], errors=results[index].errors + (message,))
            LOGGER.error("batch.save_failed", source=source, count=len(indexes), error=message)
            return

        summary.saved = len(saved_ids)
        summary.saved_ids = list(saved_ids)
        for index, place_id in zip(indexes, saved_ids):
            result = results[index]
            if result.enriched:
                continue
            try:
                await self._scheduler.add_job(
                    JobKind.ENRICH,
                    {"place_id": place_id, "category": result.validated.category, "source": source},
                    priority=ENRICH_PRIORITY,
                )
            except PersistenceError as exc:
                LOGGER.warning("batch.enrich_not_scheduled", place_id=place_id, error=str(exc))

    async def process_text(
        self,
        text: str,
        *,
        source: str,
        category: Optional[str] = None,
        skip_duplicates: bool = True,
    ) -> BatchSummary:
        """Process every business found in a block of text."""
        records = self._pipeline.parse_text(text) if text else []
        items: List[Any] = list(records) or [text]
        return await self.process_and_save(
            items, source=source, category=category, skip_duplicates=skip_duplicates
        )
