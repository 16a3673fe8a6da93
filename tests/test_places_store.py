import asyncio
from datetime import datetime, timezone

from placeflow.storage.database import Database
from placeflow.storage.models import CandidateRecord, Location
from placeflow.storage.places import PlaceStore


def test_bulk_insert_and_lookups(tmp_path):
    records = [
        CandidateRecord(
            name="Kloof Street House",
            phone="0214234413",
            location=Location(lat=-33.9301, lng=18.4106),
            photos=("https://img.example/kloof.jpg",),
            category="restaurant",
        ),
        CandidateRecord(name="kloof deli", location=Location(lat=-33.9302, lng=18.4107)),
        CandidateRecord(name="Test Kitchen", location=Location(lat=-33.9275, lng=18.4571)),
    ]

    async def scenario():
        store = PlaceStore(Database(tmp_path / "places.sqlite3"))
        ids = await store.bulk_insert(records, source="seed", enrichments=[{"slug": "kloof-street-house"}, None, None])
        by_name = await store.find_candidates("Kloof")
        near = await store.find_near(-33.9301, 18.4106, 0.05)
        first = await store.get(ids[0])
        return ids, by_name, near, first, await store.count()

    ids, by_name, near, first, count = asyncio.run(scenario())
    assert len(set(ids)) == 3
    assert count == 3
    assert sorted(place.name for place in by_name) == ["Kloof Street House", "kloof deli"]
    assert sorted(place.name for place in near) == ["Kloof Street House", "kloof deli"]
    assert first.place_id == ids[0]
    assert first.source == "seed"
    assert first.photos == ("https://img.example/kloof.jpg",)
    assert first.location == Location(lat=-33.9301, lng=18.4106)
    assert first.enrichment == {"slug": "kloof-street-house"}


def test_enrichment_and_quality_updates(tmp_path):
    async def scenario():
        store = PlaceStore(Database(tmp_path / "places.sqlite3"))
        [place_id] = await store.bulk_insert([CandidateRecord(name="Zeitz MOCAA")], source="seed")
        await store.update_enrichment(place_id, {"tags": ["museum"]})
        await store.update_quality(
            place_id, score=82, verified=True, verified_at=datetime(2026, 1, 1, tzinfo=timezone.utc)
        )
        return await store.get(place_id), await store.get("missing")

    place, missing = asyncio.run(scenario())
    assert place.enrichment == {"tags": ["museum"]}
    assert place.quality_score == 82
    assert place.is_verified is True
    assert missing is None


def test_empty_insert_is_a_no_op(tmp_path):
    async def scenario():
        store = PlaceStore(Database(tmp_path / "places.sqlite3"))
        return await store.bulk_insert([], source="seed"), await store.count()

    assert asyncio.run(scenario()) == ([], 0)


def test_name_prefix_treats_wildcards_literally(tmp_path):
    records = [
        CandidateRecord(name="100% Cafe"),
        CandidateRecord(name="1000 Lanterns"),
        CandidateRecord(name="A_B Bar"),
        CandidateRecord(name="AxB Bar"),
    ]

    async def scenario():
        store = PlaceStore(Database(tmp_path / "places.sqlite3"))
        await store.bulk_insert(records, source="seed")
        return await store.find_candidates("100%"), await store.find_candidates("A_B")

    percent, underscore = asyncio.run(scenario())
    assert [place.name for place in percent] == ["100% Cafe"]
    assert [place.name for place in underscore] == ["A_B Bar"]
