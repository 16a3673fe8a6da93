"""Per-record ingestion: parse, validate, duplicate check, enrich."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import structlog

from placeflow.normalize.fields import coerce_record, normalize_record
from placeflow.quality.similarity import SimilarityEngine
from placeflow.quality.validate import ValidationReport
from placeflow.storage.models import CandidateRecord, StoredPlace

LOGGER = structlog.get_logger(__name__)

CANDIDATE_LIMIT = 10
NEARBY_RADIUS_KM = 0.05
NEARBY_NAME_THRESHOLD = 0.8
PARSE_FAILED = "Failed to parse data"


class Parser(Protocol):
    def parse_text(self, text: str) -> List[CandidateRecord]:
        ...


class Validator(Protocol):
    def validate(self, record: CandidateRecord) -> ValidationReport:
        ...


class Enhancer(Protocol):
    async def enhance(self, record: CandidateRecord) -> Optional[Dict[str, Any]]:
        ...


class PlaceLookup(Protocol):
    async def find_candidates(self, name_filter: str, limit: int = CANDIDATE_LIMIT) -> List[StoredPlace]:
        ...

    async def find_near(self, lat: float, lng: float, radius_km: float) -> List[StoredPlace]:
        ...


class PlaceWriter(PlaceLookup, Protocol):
    async def bulk_insert(
        self,
        records: Sequence[CandidateRecord],
        *,
        source: str,
        enrichments: Optional[Sequence[Optional[Dict[str, Any]]]] = None,
    ) -> List[str]:
        ...


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of ingesting one raw item. Never mutated after construction."""

    original: Any
    validated: Optional[CandidateRecord] = None
    confidence: int = 0
    is_duplicate: bool = False
    duplicate_of_id: Optional[str] = None
    similarity: Optional[float] = None
    enriched: Optional[Dict[str, Any]] = None
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class _Draft:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class IngestionPipeline:
    """Runs one raw item through every stage and reports rather than raises."""

    def __init__(
        self,
        parser: Parser,
        validator: Validator,
        store: PlaceLookup,
        enhancer: Enhancer,
        engine: Optional[SimilarityEngine] = None,
    ) -> None:
        self._parser = parser
        self._validator = validator
        self._store = store
        self._enhancer = enhancer
        self._engine = engine or SimilarityEngine()

    def parse_text(self, text: str) -> List[CandidateRecord]:
        """Every record the parser finds in ``text``."""
        return self._parser.parse_text(text)

    def _parse(self, raw: Any, draft: _Draft) -> Optional[CandidateRecord]:
        if isinstance(raw, CandidateRecord):
            return raw
        if isinstance(raw, Mapping):
            return coerce_record(raw)
        if isinstance(raw, str):
            records = self._parser.parse_text(raw)
            if not records:
                return None
            if len(records) > 1:
                draft.warnings.append(f"Text contained {len(records)} records; only the first was used")
            return records[0]
        return None

    async def _find_duplicate(self, record: CandidateRecord) -> Optional[Tuple[str, float]]:
        tokens = record.name.split()
        if tokens:
            candidates = await self._store.find_candidates(tokens[0], limit=CANDIDATE_LIMIT)
            matches = self._engine.find_duplicates_against_existing(record, candidates)
            if matches:
                first = matches[0]
                return first.matched_existing.place_id, first.similarity
        if record.location is not None:
            nearby = await self._store.find_near(record.location.lat, record.location.lng, NEARBY_RADIUS_KM)
            for place in nearby:
                similarity = self._engine.name_similarity(record.name, place.name)
                if similarity > NEARBY_NAME_THRESHOLD:
                    return place.place_id, similarity
        return None

    async def process(
        self,
        raw: Any,
        *,
        skip_duplicate_check: bool = False,
        skip_enhancement: bool = False,
        category: Optional[str] = None,
    ) -> PipelineResult:
        draft = _Draft()
        try:
            record = self._parse(raw, draft)
            if record is None:
                LOGGER.info("pipeline.parse_failed", kind=type(raw).__name__)
                return PipelineResult(original=raw, errors=(PARSE_FAILED,), warnings=tuple(draft.warnings))

            report = self._validator.validate(record)
            draft.errors.extend(report.errors)
            draft.warnings.extend(report.warnings)
            validated = normalize_record(record, category=category)

            duplicate: Optional[Tuple[str, float]] = None
            if not skip_duplicate_check:
                try:
                    duplicate = await self._find_duplicate(validated)
                except Exception as exc:
                    LOGGER.warning("pipeline.duplicate_check_failed", name=validated.name, error=str(exc))
                    draft.warnings.append(f"Duplicate check failed: {exc}")

            enriched: Optional[Dict[str, Any]] = None
            if duplicate is None and not skip_enhancement:
                try:
                    enriched = await self._enhancer.enhance(validated)
                except Exception as exc:
                    LOGGER.warning("pipeline.enhancement_failed", name=validated.name, error=str(exc))

            return PipelineResult(
                original=raw,
                validated=validated,
                confidence=validated.confidence,
                is_duplicate=duplicate is not None,
                duplicate_of_id=duplicate[0] if duplicate else None,
                similarity=duplicate[1] if duplicate else None,
                enriched=enriched,
                errors=tuple(draft.errors),
                warnings=tuple(draft.warnings),
            )
        except Exception as exc:
            LOGGER.exception("pipeline.unexpected_error")
            return PipelineResult(
                original=raw,
                errors=tuple(draft.errors) + (f"Pipeline error: {exc}",),
                warnings=tuple(draft.warnings),
            )

    async def process_batch(
        self,
        items: Sequence[Any],
        *,
        concurrency: int = 5,
        **options: Any,
    ) -> List[PipelineResult]:
        """Process items in fixed-size chunks; results keep the input order."""
        size = max(1, concurrency)
        results: List[PipelineResult] = []
        for start in range(0, len(items), size):
            chunk = items[start:start + size]
            results.extend(await asyncio.gather(*(self.process(item, **options) for item in chunk)))
        return results
