import asyncio

from placeflow.enrich.seo import SeoEnhancer, generate_slug, generate_tags, structured_data
from placeflow.normalize.fields import coerce_record, normalize_record
from placeflow.quality.scoring import VERIFIED_THRESHOLD, score_place
from placeflow.storage.models import CandidateRecord, Location


def test_slug_and_tags():
    assert generate_slug("Mzoli's Place & Grill") == "mzolis-place-grill"
    place = CandidateRecord(name="Zeitz MOCAA", category="tourist_attraction", city="Cape Town", rating=4.7)
    tags = generate_tags(place)
    assert tags[:3] == ["Cape Town", "Cape Town tourist attraction", "South Africa"]
    assert "highly rated" in tags
    assert len(tags) == len(set(tags))


def test_structured_data_includes_optional_fields():
    place = CandidateRecord(
        name="La Colombe",
        category="restaurant",
        phone="0217942390",
        location=Location(lat=-34.0265, lng=18.4231),
        rating=4.8,
    )
    markup = structured_data(place)
    assert markup["@type"] == "Restaurant"
    assert markup["geo"]["latitude"] == -34.0265
    assert markup["telephone"] == "0217942390"
    assert markup["aggregateRating"]["ratingValue"] == 4.8
    assert "url" not in markup


def test_enhancer_truncates_title_and_skips_nameless_records():
    enhancer = SeoEnhancer()
    long_name = "The Extraordinarily Long Named Boutique Guesthouse By The Sea"
    payload = asyncio.run(enhancer.enhance(CandidateRecord(name=long_name, category="hotel")))
    assert len(payload["seo_title"]) == 60
    assert len(payload["seo_description"]) <= 160
    assert payload["schema_markup"]["@type"] == "Hotel"
    assert asyncio.run(enhancer.enhance(CandidateRecord())) is None


def test_normalize_record_cleans_fields():
    record = coerce_record({
        "name": "  Harbour   House ",
        "email": "Info@HarbourHouse.co.za",
        "category": "Lodge",
        "rating": "6",
        "images": ["https://img.example/a.jpg", "ftp://img.example/b.jpg", "https://img.example/a.jpg"],
        "coordinates": {"latitude": "-34.19", "longitude": "18.43"},
    })
    normalized = normalize_record(record)
    assert normalized.name == "Harbour House"
    assert normalized.email == "info@harbourhouse.co.za"
    assert normalized.category == "hotel"
    assert normalized.rating is None
    assert normalized.photos == ("https://img.example/a.jpg",)
    assert normalized.location == Location(lat=-34.19, lng=18.43)


def test_quality_score_rewards_complete_listings():
    sparse = score_place(CandidateRecord(name="Kloof Street House"))
    assert sparse.score < VERIFIED_THRESHOLD
    assert not sparse.is_verified
    assert sparse.breakdown["images"] == {"count": 0.0, "quality": 0.0}

    outside = score_place(CandidateRecord(name="Somewhere", location=Location(lat=51.5, lng=-0.12)))
    assert outside.breakdown["location"]["coordinates"] == 20.0
