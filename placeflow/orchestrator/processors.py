"""Job processors: one per job kind."""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Protocol

import httpx
import structlog

from placeflow.enrich.seo import SeoEnhancer, image_metadata
from placeflow.errors import RecordNotFound
from placeflow.fetch.pages import fetch_page_text
from placeflow.orchestrator.jobs import Job, utcnow
from placeflow.quality.scoring import score_place
from placeflow.storage.job_table import JobStore
from placeflow.storage.places import PlaceStore

if TYPE_CHECKING:
    from placeflow.pipeline.batch import BatchCoordinator, BatchSummary

LOGGER = structlog.get_logger(__name__)

ENRICHMENT_TYPES = ("seo", "images", "full")


class Processor(Protocol):
    async def execute(self, job: Job) -> Any:
        ...


class ScrapeProcessor:
    """Feeds fetched pages, AI responses or imported items through the batch coordinator.

    Payload keys: exactly one of ``url``, ``text`` or ``items``; optional
    ``source``, ``category``, ``skip_duplicates`` and ``enrich_all``.
    """

    def __init__(
        self,
        coordinator: "BatchCoordinator",
        jobs: JobStore,
        *,
        client: Optional[httpx.AsyncClient] = None,
        fetch_timeout: Optional[float] = None,
    ) -> None:
        self._coordinator = coordinator
        self._jobs = jobs
        self._client = client
        self._fetch_timeout = fetch_timeout

    async def execute(self, job: Job) -> Dict[str, Any]:
        payload = job.payload
        source = str(payload.get("source") or "scrape")
        category = payload.get("category")
        skip_duplicates = bool(payload.get("skip_duplicates", True))

        if payload.get("items") is not None:
            items = list(payload["items"])
            summary = await self._coordinator.process_and_save(
                items,
                source=source,
                category=category,
                skip_duplicates=skip_duplicates,
                enrich_all=bool(payload.get("enrich_all", False)),
            )
        elif payload.get("text"):
            summary = await self._coordinator.process_text(
                str(payload["text"]), source=source, category=category, skip_duplicates=skip_duplicates
            )
        elif payload.get("url"):
            if self._client is None:
                raise RuntimeError("Scrape job needs an HTTP client to fetch URLs")
            text = await fetch_page_text(self._client, str(payload["url"]), timeout=self._fetch_timeout)
            summary = await self._coordinator.process_text(
                text, source=str(payload.get("source") or payload["url"]), category=category,
                skip_duplicates=skip_duplicates,
            )
        else:
            raise ValueError("Scrape job payload needs one of: url, text, items")

        await self._record(job, summary)
        return summary.as_dict()

    async def _record(self, job: Job, summary: "BatchSummary") -> None:
        await self._jobs.record_progress(
            job.job_id,
            total=summary.processed,
            processed=summary.processed,
            successful=summary.saved,
            failed=summary.errors,
        )
        LOGGER.info(
            "scrape.recorded",
            processed=summary.processed,
            saved=summary.saved,
            duplicates=summary.duplicates,
            errors=summary.errors,
        )


class EnrichmentProcessor:
    """Builds enrichment for a stored place and writes it back."""

    def __init__(self, places: PlaceStore, *, enhancer: Optional[SeoEnhancer] = None) -> None:
        self._places = places
        self._enhancer = enhancer or SeoEnhancer()

    async def execute(self, job: Job) -> Dict[str, Any]:
        place_id = str(job.payload.get("place_id", ""))
        enrichment_type = str(job.payload.get("enrichment_type") or "full")
        place = await self._places.get(place_id)
        if place is None:
            raise RecordNotFound(place_id)

        if enrichment_type not in ENRICHMENT_TYPES:
            LOGGER.warning("enrich.unknown_type", enrichment_type=enrichment_type)
            enrichment_type = "full"

        enrichment: Dict[str, Any] = dict(place.enrichment or {})
        if enrichment_type in ("seo", "full"):
            enrichment.update(await self._enhancer.enhance(place) or {})
        if enrichment_type in ("images", "full"):
            enrichment["photos"] = image_metadata(place)
        if enrichment_type == "full":
            enrichment["enriched_at"] = utcnow().isoformat()
        await self._places.update_enrichment(place_id, enrichment)
        LOGGER.info("enrich.saved", place_id=place_id, enrichment_type=enrichment_type)
        return {"place_id": place_id, "enrichment_type": enrichment_type, "fields": sorted(enrichment)}


class ValidationProcessor:
    """Scores a stored place and records whether it counts as verified."""

    def __init__(self, places: PlaceStore, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._places = places
        self._clock = clock

    async def execute(self, job: Job) -> Dict[str, Any]:
        place_id = str(job.payload.get("place_id", ""))
        place = await self._places.get(place_id)
        if place is None:
            raise RecordNotFound(place_id)
        report = score_place(place)
        await self._places.update_quality(
            place_id, score=report.score, verified=report.is_verified, verified_at=self._clock()
        )
        LOGGER.info("validate.scored", place_id=place_id, score=report.score, verified=report.is_verified)
        return {"place_id": place_id, "score": report.score, "is_verified": report.is_verified, "breakdown": report.breakdown}
