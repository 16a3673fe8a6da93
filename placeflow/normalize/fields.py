"""Field level coercion and normalisation helpers."""
from __future__ import annotations

import re
from typing import Any, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

from placeflow.normalize.taxonomy import normalize_category
from placeflow.storage.models import CandidateRecord, Location

_WHITESPACE_RE = re.compile(r"\s+")


def clean_string(value: Any) -> Optional[str]:
    """Trim and collapse whitespace; empty values become None."""
    if value is None:
        return None
    text = _WHITESPACE_RE.sub(" ", str(value)).strip()
    return text or None


def _coerce_float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _coerce_confidence(value: Any, default: int = 50) -> int:
    number = _coerce_float(value)
    if number is None:
        return default
    return int(min(max(number, 0), 100))


def parse_location(data: Mapping[str, Any]) -> Optional[Location]:
    """Read coordinates from the usual field spellings used by sources."""
    nested = data.get("location") or data.get("coordinates")
    if isinstance(nested, Location):
        return nested
    if isinstance(nested, Mapping):
        lat = _coerce_float(nested.get("lat", nested.get("latitude")))
        lng = _coerce_float(nested.get("lng", nested.get("lon", nested.get("longitude"))))
    else:
        lat = _coerce_float(data.get("latitude", data.get("lat")))
        lng = _coerce_float(data.get("longitude", data.get("lng", data.get("lon"))))
    if lat is None or lng is None:
        return None
    return Location(lat=lat, lng=lng)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def normalize_images(images: Any) -> Tuple[str, ...]:
    """Keep unique, well-formed http(s) image URLs in their original order."""
    seen: List[str] = []
    for item in _as_list(images):
        if not isinstance(item, str):
            continue
        cleaned = item.strip()
        parsed = urlparse(cleaned)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            continue
        if cleaned not in seen:
            seen.append(cleaned)
    return tuple(seen)


def normalize_rating(value: Optional[float]) -> Optional[float]:
    if value is None or not 0 <= value <= 5:
        return None
    return round(value, 1)


def coerce_record(data: Mapping[str, Any]) -> CandidateRecord:
    """Build a CandidateRecord from a loosely structured mapping without dropping bad values."""
    photos = data.get("photos", data.get("images"))
    return CandidateRecord(
        name=str(data.get("name") or ""),
        address=clean_string(data.get("address")),
        phone=clean_string(data.get("phone")),
        email=clean_string(data.get("email")),
        website=clean_string(data.get("website") or data.get("url")),
        category=clean_string(data.get("category")),
        rating=_coerce_float(data.get("rating")),
        location=parse_location(data),
        photos=tuple(str(item) for item in _as_list(photos) if isinstance(item, str)),
        confidence=_coerce_confidence(data.get("confidence")),
        description=clean_string(data.get("description")),
        city=clean_string(data.get("city")),
    )


def normalize_record(record: CandidateRecord, *, category: Optional[str] = None) -> CandidateRecord:
    """Return the cleaned copy of a record that downstream stages store and compare."""
    email = clean_string(record.email)
    return record.model_copy(
        update={
            "name": clean_string(record.name) or "",
            "address": clean_string(record.address),
            "phone": clean_string(record.phone),
            "email": email.lower() if email else None,
            "website": clean_string(record.website),
            "category": normalize_category(record.category or category),
            "rating": normalize_rating(record.rating),
            "photos": normalize_images(record.photos),
        }
    )
