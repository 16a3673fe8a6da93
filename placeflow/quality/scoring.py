"""Data quality scoring for stored places."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict

from placeflow.normalize.geo import SOUTH_AFRICA, BoundingBox
from placeflow.normalize.taxonomy import find_city
from placeflow.storage.models import CandidateRecord

WEIGHTS = {
    "contact": 0.25,
    "location": 0.20,
    "content": 0.30,
    "images": 0.25,
}

VERIFIED_THRESHOLD = 70

VALID_CATEGORIES = frozenset({"restaurant", "hotel", "tourist_attraction", "activity"})

_PHONE_RE = re.compile(r"^(\+27|0)[1-9]\d{8}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_URL_RE = re.compile(r"^https?://[^\s/$.?#][^\s]*$")
_DIGIT_RE = re.compile(r"\d+")


@dataclass(frozen=True)
class QualityReport:
    score: int
    breakdown: Dict[str, Dict[str, float]]

    @property
    def is_verified(self) -> bool:
        return self.score >= VERIFIED_THRESHOLD


def _mean(values: Dict[str, float]) -> float:
    return sum(values.values()) / len(values) if values else 0.0


def contact_scores(place: CandidateRecord) -> Dict[str, float]:
    scores = {"phone": 0.0, "website": 0.0, "email": 0.0, "address": 0.0}
    if place.phone:
        scores["phone"] = 100.0 if _PHONE_RE.match(re.sub(r"[\s\-()]", "", place.phone)) else 50.0
    if place.website:
        scores["website"] = 100.0 if _URL_RE.match(place.website) else 30.0
    if place.email:
        scores["email"] = 100.0 if _EMAIL_RE.match(place.email) else 30.0
    if place.address:
        has_street = bool(_DIGIT_RE.search(place.address))
        has_city = find_city(place.address) is not None
        scores["address"] = (50.0 if has_street else 0.0) + (50.0 if has_city else 0.0)
    return scores


def location_scores(place: CandidateRecord, region: BoundingBox = SOUTH_AFRICA) -> Dict[str, float]:
    scores = {"coordinates": 0.0, "address_accuracy": 0.0}
    if place.location is not None:
        scores["coordinates"] = 100.0 if region.contains(place.location.lat, place.location.lng) else 20.0
        if place.address:
            # Without geocoding we can only credit having both signals.
            scores["address_accuracy"] = 80.0
    return scores


def content_scores(place: CandidateRecord) -> Dict[str, float]:
    scores = {"name": 0.0, "description": 0.0, "category": 0.0}
    if place.name:
        scores["name"] = 100.0 if 3 <= len(place.name) <= 100 else 50.0
    if place.description:
        length = len(place.description)
        if 50 <= length <= 500:
            scores["description"] = 100.0
        elif length >= 20:
            scores["description"] = 70.0
        else:
            scores["description"] = 30.0
    scores["category"] = 100.0 if place.category in VALID_CATEGORIES else 50.0
    return scores


def image_scores(place: CandidateRecord) -> Dict[str, float]:
    count = len(place.photos)
    if count >= 5:
        count_score = 100.0
    elif count >= 3:
        count_score = 80.0
    elif count >= 1:
        count_score = 60.0
    else:
        count_score = 0.0
    return {"count": count_score, "quality": 80.0 if count else 0.0}


def score_place(place: CandidateRecord, *, region: BoundingBox = SOUTH_AFRICA) -> QualityReport:
    """Weighted 0-100 quality score with the per-section breakdown."""
    breakdown = {
        "contact": contact_scores(place),
        "location": location_scores(place, region),
        "content": content_scores(place),
        "images": image_scores(place),
    }
    total = sum(WEIGHTS[section] * _mean(values) for section, values in breakdown.items())
    return QualityReport(score=int(round(total)), breakdown=breakdown)
