import asyncio

from placeflow.enrich.seo import SeoEnhancer
from placeflow.errors import PersistenceError
from placeflow.observability.metrics import MetricsRegistry
from placeflow.orchestrator.jobs import JobKind
from placeflow.parse.text import TextParser
from placeflow.pipeline.batch import ENRICH_PRIORITY, BatchCoordinator
from placeflow.pipeline.ingest import IngestionPipeline
from placeflow.quality.quarantine import Quarantine
from placeflow.quality.validate import RecordValidator
from placeflow.storage.database import Database
from placeflow.storage.models import CandidateRecord
from placeflow.storage.places import PlaceStore

SEEDED = [
    CandidateRecord(name="Kloof Street House", phone="0214234413", address="30 Kloof St, Cape Town"),
    CandidateRecord(name="Test Kitchen", phone="0214472337", address="375 Albert Rd, Woodstock, Cape Town"),
    CandidateRecord(name="La Colombe", phone="0217942390"),
]

NEW_PLACES = [
    {"name": "Harbour House", "phone": "0214184744", "category": "restaurant"},
    {"name": "Pot Luck Club", "phone": "0214470804", "category": "restaurant"},
    {"name": "Mzoli's Place", "phone": "0216381355"},
    {"name": "Bascule Whisky Bar", "phone": "0214106082", "category": "bar"},
    {"name": "Gold Restaurant", "phone": "0214214653", "address": "15 Bennett St, Cape Town"},
]

REPEATS = [
    {"name": "Kloof Street House", "phone": "021 423 4413"},
    {"name": "Test Kitchen", "phone": "+27 21 447 2337"},
    {"name": "La Colombe", "phone": "021 794 2390"},
]

INVALID = [
    {"name": "X", "phone": "0215551234"},
    {"name": "Bad Phone Bistro", "phone": "12345"},
]


class RecordingSink:
    def __init__(self):
        self.jobs = []

    async def add_job(self, kind, payload=None, *, priority=5, max_attempts=3):
        self.jobs.append((kind, dict(payload or {}), priority))
        return f"job-{len(self.jobs)}"


class FullDisk(PlaceStore):
    async def bulk_insert(self, records, *, source, enrichments=None):
        raise PersistenceError("Failed to save places: database or disk is full")


def _coordinator(store, tmp_path, metrics=None):
    pipeline = IngestionPipeline(TextParser(), RecordValidator(), store, SeoEnhancer())
    sink = RecordingSink()
    coordinator = BatchCoordinator(
        pipeline,
        store,
        sink,
        quarantine=Quarantine(tmp_path / "quarantine"),
        metrics=metrics,
    )
    return coordinator, sink


def test_mixed_batch_is_counted_and_saved(tmp_path):
    metrics = MetricsRegistry()

    async def scenario():
        store = PlaceStore(Database(tmp_path / "places.sqlite3"))
        await store.bulk_insert(SEEDED, source="seed")
        coordinator, sink = _coordinator(store, tmp_path, metrics)
        items = [NEW_PLACES[0], REPEATS[0], INVALID[0], NEW_PLACES[1], REPEATS[1],
                 NEW_PLACES[2], INVALID[1], NEW_PLACES[3], REPEATS[2], NEW_PLACES[4]]
        summary = await coordinator.process_and_save(items, source="tripadvisor")
        return summary, sink, await store.count()

    summary, sink, stored = asyncio.run(scenario())
    assert summary.as_dict()["processed"] == 10
    assert (summary.saved, summary.duplicates, summary.errors) == (5, 3, 2)
    assert len(summary.saved_ids) == 5
    assert stored == len(SEEDED) + 5
    assert [result.validated.name for result in summary.results if result.is_duplicate] == [
        "Kloof Street House", "Test Kitchen", "La Colombe",
    ]

    assert len(sink.jobs) == 5
    kinds = {kind for kind, _, _ in sink.jobs}
    priorities = {priority for _, _, priority in sink.jobs}
    assert kinds == {JobKind.ENRICH}
    assert priorities == {ENRICH_PRIORITY}
    assert [payload["place_id"] for _, payload, _ in sink.jobs] == summary.saved_ids
    assert sink.jobs[0][1] == {"place_id": summary.saved_ids[0], "category": "restaurant", "source": "tripadvisor"}

    assert metrics.get("records_processed") == 10
    assert metrics.get("records_saved") == 5
    assert metrics.get("duplicates") == 3
    assert metrics.get("record_errors") == 2
    assert metrics.get("validation_failures") == 2

    rejects = Quarantine(tmp_path / "quarantine").entries()
    assert len(rejects) == 2
    assert {entry["source"] for entry in rejects} == {"tripadvisor"}
    reasons = sorted(reason for entry in rejects for reason in entry["reason"])
    assert reasons == [
        "Business name must be between 2 and 100 characters",
        "Phone number must be a valid South African number",
    ]


def test_duplicates_can_be_kept(tmp_path):
    async def scenario():
        store = PlaceStore(Database(tmp_path / "places.sqlite3"))
        await store.bulk_insert(SEEDED, source="seed")
        coordinator, sink = _coordinator(store, tmp_path)
        summary = await coordinator.process_and_save(REPEATS, source="manual", skip_duplicates=False)
        return summary, sink

    summary, sink = asyncio.run(scenario())
    assert (summary.saved, summary.duplicates, summary.errors) == (3, 0, 0)
    assert all(result.is_duplicate for result in summary.results)
    assert len(sink.jobs) == 3


def test_enrich_all_stores_enrichment_inline(tmp_path):
    async def scenario():
        store = PlaceStore(Database(tmp_path / "places.sqlite3"))
        coordinator, sink = _coordinator(store, tmp_path)
        summary = await coordinator.process_and_save(NEW_PLACES[:2], source="manual", enrich_all=True)
        stored = [await store.get(place_id) for place_id in summary.saved_ids]
        return summary, sink, stored

    summary, sink, stored = asyncio.run(scenario())
    assert summary.saved == 2
    assert sink.jobs == []
    assert [place.enrichment["slug"] for place in stored] == ["harbour-house", "pot-luck-club"]
    assert all(place.source == "manual" for place in stored)


def test_persistence_failure_counts_every_item_as_error(tmp_path):
    async def scenario():
        store = FullDisk(Database(tmp_path / "places.sqlite3"))
        coordinator, sink = _coordinator(store, tmp_path)
        summary = await coordinator.process_and_save(NEW_PLACES[:3], source="manual")
        return summary, sink

    summary, sink = asyncio.run(scenario())
    assert (summary.saved, summary.duplicates, summary.errors) == (0, 0, 3)
    assert summary.saved_ids == []
    assert sink.jobs == []
    for result in summary.results:
        assert result.errors[-1] == "Failed to save places: database or disk is full"


def test_process_text_saves_each_business(tmp_path):
    text = (
        "Two favourites:\n"
        "1. La Colombe\nPhone: 021 794 2390\n"
        "2. Test Kitchen\nPhone: 021 447 2337\nAddress: 375 Albert Rd, Woodstock, Cape Town\n"
    )

    async def scenario():
        store = PlaceStore(Database(tmp_path / "places.sqlite3"))
        coordinator, sink = _coordinator(store, tmp_path)
        summary = await coordinator.process_text(text, source="ai")
        unparsed = await coordinator.process_text("", source="ai")
        return summary, unparsed, sink

    summary, unparsed, sink = asyncio.run(scenario())
    assert (summary.processed, summary.saved) == (2, 2)
    assert [payload["category"] for _, payload, _ in sink.jobs] == ["general", "restaurant"]
    assert unparsed.processed == 1
    assert unparsed.errors == 1
    assert unparsed.results[0].errors == ("Failed to parse data",)
