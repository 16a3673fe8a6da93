"""SEO metadata, tags and structured data for places."""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

import structlog

from placeflow.storage.models import CandidateRecord

LOGGER = structlog.get_logger(__name__)

TITLE_LIMIT = 60
DESCRIPTION_LIMIT = 160
TAG_LIMIT = 15
DEFAULT_REGION = "South Africa"

SCHEMA_TYPES = {
    "restaurant": "Restaurant",
    "hotel": "Hotel",
    "tourist_attraction": "TouristAttraction",
    "activity": "TouristAttraction",
}

CATEGORY_TAGS = {
    "restaurant": ("dining",),
    "hotel": ("accommodation",),
    "tourist_attraction": ("tourist attraction", "sightseeing"),
    "activity": ("adventure",),
}

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9\s]")
_SLUG_SPACE_RE = re.compile(r"\s+")
_KEYWORD_RE = re.compile(r"[a-z]{5,}")
_STOPWORDS = frozenset({"about", "their", "there", "which", "these", "where", "while", "offers", "located"})


def generate_slug(name: str) -> str:
    slug = _SLUG_STRIP_RE.sub("", name.lower())
    return _SLUG_SPACE_RE.sub("-", slug.strip()).strip("-")


def _locality(place: CandidateRecord) -> str:
    if place.city:
        return place.city
    if place.address and "," in place.address:
        tail = place.address.rsplit(",", 1)[-1].strip()
        if tail:
            return tail
    return DEFAULT_REGION


def _keywords(text: Optional[str], limit: int = 5) -> List[str]:
    if not text:
        return []
    seen: List[str] = []
    for word in _KEYWORD_RE.findall(text.lower()):
        if word not in _STOPWORDS and word not in seen:
            seen.append(word)
        if len(seen) >= limit:
            break
    return seen


def generate_tags(place: CandidateRecord) -> List[str]:
    locality = _locality(place)
    category = place.category or "general"
    tags: List[str] = [locality, f"{locality} {category.replace('_', ' ')}", DEFAULT_REGION]
    tags.extend(CATEGORY_TAGS.get(category, ()))
    if place.rating is not None and place.rating >= 4.5:
        tags.append("highly rated")
    tags.extend(_keywords(place.description))
    unique: List[str] = []
    for tag in tags:
        if tag not in unique:
            unique.append(tag)
    return unique[:TAG_LIMIT]


def structured_data(place: CandidateRecord) -> Dict[str, Any]:
    """schema.org JSON-LD for the place."""
    markup: Dict[str, Any] = {
        "@context": "https://schema.org",
        "@type": SCHEMA_TYPES.get(place.category or "", "LocalBusiness"),
        "name": place.name,
        "image": list(place.photos),
        "address": {
            "@type": "PostalAddress",
            "streetAddress": place.address,
            "addressLocality": _locality(place),
            "addressCountry": "ZA",
        },
    }
    if place.location is not None:
        markup["geo"] = {
            "@type": "GeoCoordinates",
            "latitude": place.location.lat,
            "longitude": place.location.lng,
        }
    if place.phone:
        markup["telephone"] = place.phone
    if place.website:
        markup["url"] = place.website
    if place.rating is not None:
        markup["aggregateRating"] = {"@type": "AggregateRating", "ratingValue": place.rating, "bestRating": "5"}
    return markup


def content_score(place: CandidateRecord, *, tags: List[str], has_seo: bool) -> int:
    """0-100 readiness of the listing content."""
    score = 0
    score += 5 if place.name else 0
    score += 5 if place.address else 0
    score += 5 if place.phone else 0
    score += 3 if place.email else 0
    score += 3 if place.website else 0
    score += 5 if place.description and len(place.description) > 100 else 0
    score += 4 if place.location else 0
    photos = len(place.photos)
    score += 5 if photos >= 1 else 0
    score += 10 if photos >= 4 else 0
    score += 5 if photos >= 8 else 0
    score += 5 if place.category in SCHEMA_TYPES else 0
    score += 5 if has_seo else 0
    score += 5 if len(tags) >= 5 else 0
    return min(score, 100)


def image_metadata(place: CandidateRecord) -> List[Dict[str, Any]]:
    return [
        {"url": url, "alt": f"{place.name} - Image {index + 1}", "caption": f"View of {place.name}", "order": index}
        for index, url in enumerate(place.photos)
    ]


class SeoEnhancer:
    """Produces the enrichment payload stored alongside a place."""

    async def enhance(self, record: CandidateRecord) -> Optional[Dict[str, Any]]:
        if not record.name:
            return None
        locality = _locality(record)
        category = (record.category or "place").replace("_", " ")
        title = f"{record.name} - {category} in {locality}"
        summary = record.description[:100] if record.description else "a premier destination"
        description = (
            f"Discover {record.name}, {summary} in {DEFAULT_REGION}. "
            "View photos, reviews, and contact information."
        )
        tags = generate_tags(record)
        payload = {
            "seo_title": title[:TITLE_LIMIT],
            "seo_description": description[:DESCRIPTION_LIMIT],
            "slug": generate_slug(record.name),
            "tags": tags,
            "schema_markup": structured_data(record),
            "content_score": content_score(record, tags=tags, has_seo=True),
        }
        LOGGER.debug("seo.enhanced", slug=payload["slug"], tags=len(tags))
        return payload
