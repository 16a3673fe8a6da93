import asyncio

import httpx
import pytest

from placeflow.enrich.seo import SeoEnhancer
from placeflow.errors import RecordNotFound
from placeflow.orchestrator.jobs import Job, JobKind, new_job_id
from placeflow.orchestrator.processors import EnrichmentProcessor, ScrapeProcessor, ValidationProcessor
from placeflow.parse.text import TextParser
from placeflow.pipeline.batch import BatchCoordinator
from placeflow.pipeline.ingest import IngestionPipeline
from placeflow.quality.validate import RecordValidator
from placeflow.storage.database import Database
from placeflow.storage.job_table import JobStore
from placeflow.storage.models import CandidateRecord, Location
from placeflow.storage.places import PlaceStore

LISTING_HTML = """
<html>
  <head><style>p { color: red; }</style><script>var tracking = 1;</script></head>
  <body>
    <p>1. La Colombe</p>
    <p>Phone: 021 794 2390</p>
    <p>Address: Silvermist Estate, Constantia Main Rd, Cape Town</p>
    <p>2. Test Kitchen</p>
    <p>Phone: 021 447 2337</p>
    <p>Address: 375 Albert Rd, Woodstock, Cape Town</p>
  </body>
</html>
"""


class RecordingSink:
    def __init__(self):
        self.jobs = []

    async def add_job(self, kind, payload=None, *, priority=5, max_attempts=3):
        self.jobs.append((kind, dict(payload or {})))
        return f"job-{len(self.jobs)}"


def _stores(tmp_path):
    database = Database(tmp_path / "placeflow.sqlite3")
    return JobStore(database), PlaceStore(database)


def _scrape_processor(jobs, places, client=None):
    pipeline = IngestionPipeline(TextParser(), RecordValidator(), places, SeoEnhancer())
    coordinator = BatchCoordinator(pipeline, places, RecordingSink())
    return ScrapeProcessor(coordinator, jobs, client=client)


def test_scrape_job_fetches_and_saves_a_page(tmp_path):
    requested = []

    def handler(request):
        requested.append(str(request.url))
        return httpx.Response(200, text=LISTING_HTML, headers={"content-type": "text/html; charset=utf-8"})

    async def scenario():
        jobs, places = _stores(tmp_path)
        job = Job(job_id=new_job_id(), kind=JobKind.SCRAPE, payload={"url": "https://guide.example/eat"})
        await jobs.insert(job)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await _scrape_processor(jobs, places, client).execute(job)
        rows = await jobs.list_jobs()
        return result, rows[0], await places.count()

    result, row, stored = asyncio.run(scenario())
    assert requested == ["https://guide.example/eat"]
    assert (result["processed"], result["saved"], result["errors"]) == (2, 2, 0)
    assert stored == 2
    assert (row["total_items"], row["successful_items"], row["failed_items"]) == (2, 2, 0)


def test_scrape_job_propagates_http_errors(tmp_path):
    def handler(request):
        return httpx.Response(503, text="unavailable")

    async def scenario():
        jobs, places = _stores(tmp_path)
        job = Job(job_id=new_job_id(), kind=JobKind.SCRAPE, payload={"url": "https://guide.example/down"})
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await _scrape_processor(jobs, places, client).execute(job)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(scenario())


def test_scrape_job_accepts_items_and_rejects_empty_payload(tmp_path):
    async def scenario():
        jobs, places = _stores(tmp_path)
        processor = _scrape_processor(jobs, places)
        items_job = Job(
            job_id=new_job_id(),
            kind=JobKind.SCRAPE,
            payload={"items": [{"name": "Harbour House", "phone": "0214184744"}], "source": "import"},
        )
        result = await processor.execute(items_job)
        with pytest.raises(ValueError):
            await processor.execute(Job(job_id=new_job_id(), kind=JobKind.SCRAPE, payload={}))
        return result

    result = asyncio.run(scenario())
    assert result["saved"] == 1


def test_enrichment_job_updates_the_place(tmp_path):
    async def scenario():
        _, places = _stores(tmp_path)
        [place_id] = await places.bulk_insert(
            [CandidateRecord(
                name="Zeitz MOCAA",
                category="tourist_attraction",
                city="Cape Town",
                photos=("https://img.example/zeitz-1.jpg", "https://img.example/zeitz-2.jpg"),
                location=Location(lat=-33.9075, lng=18.4227),
            )],
            source="seed",
        )
        processor = EnrichmentProcessor(places)
        seo = await processor.execute(
            Job(job_id=new_job_id(), kind=JobKind.ENRICH, payload={"place_id": place_id, "enrichment_type": "seo"})
        )
        images = await processor.execute(
            Job(job_id=new_job_id(), kind=JobKind.ENRICH, payload={"place_id": place_id, "enrichment_type": "images"})
        )
        odd = await processor.execute(
            Job(job_id=new_job_id(), kind=JobKind.ENRICH, payload={"place_id": place_id, "enrichment_type": "bogus"})
        )
        return seo, images, odd, await places.get(place_id)

    seo, images, odd, place = asyncio.run(scenario())
    assert "slug" in seo["fields"]
    assert "photos" not in seo["fields"]
    assert "photos" in images["fields"]
    assert odd["enrichment_type"] == "full"
    assert place.enrichment["slug"] == "zeitz-mocaa"
    assert place.enrichment["schema_markup"]["@type"] == "TouristAttraction"
    assert [photo["order"] for photo in place.enrichment["photos"]] == [0, 1]
    assert "enriched_at" in place.enrichment


def test_validation_job_scores_the_place(tmp_path):
    async def scenario():
        _, places = _stores(tmp_path)
        [place_id] = await places.bulk_insert(
            [CandidateRecord(
                name="La Colombe",
                phone="0217942390",
                email="info@lacolombe.co.za",
                website="https://www.lacolombe.co.za",
                address="Silvermist Estate, 1 Constantia Main Rd, Cape Town",
                category="restaurant",
                description="Fine dining with a view over the Constantia valley and a celebrated tasting menu.",
                location=Location(lat=-34.0265, lng=18.4231),
                photos=tuple(f"https://img.example/colombe-{index}.jpg" for index in range(5)),
            )],
            source="seed",
        )
        result = await ValidationProcessor(places).execute(
            Job(job_id=new_job_id(), kind=JobKind.VALIDATE, payload={"place_id": place_id})
        )
        return result, await places.get(place_id)

    result, place = asyncio.run(scenario())
    assert result["score"] == place.quality_score
    assert result["score"] >= 70
    assert result["is_verified"] is True
    assert place.is_verified is True
    assert set(result["breakdown"]) == {"contact", "location", "content", "images"}


def test_processors_reject_unknown_places(tmp_path):
    async def scenario():
        _, places = _stores(tmp_path)
        job = Job(job_id=new_job_id(), kind=JobKind.ENRICH, payload={"place_id": "nope"})
        with pytest.raises(RecordNotFound, match="Place not found: nope"):
            await EnrichmentProcessor(places).execute(job)
        with pytest.raises(RecordNotFound):
            await ValidationProcessor(places).execute(job)

    asyncio.run(scenario())
