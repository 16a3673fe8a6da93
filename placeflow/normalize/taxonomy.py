"""Taxonomy helpers for mapping source categories to canonical labels."""
from __future__ import annotations

from typing import Dict, Optional, Tuple

DEFAULT_CATEGORY = "general"

CATEGORY_MAP: Dict[str, str] = {
    "restaurant": "restaurant",
    "cafe": "restaurant",
    "bar": "restaurant",
    "hotel": "hotel",
    "lodge": "hotel",
    "attraction": "tourist_attraction",
    "tourist_attraction": "tourist_attraction",
    "museum": "tourist_attraction",
    "activity": "activity",
    "tour": "activity",
    "spa": "activity",
}

CATEGORY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "restaurant": ("restaurant", "dining", "cuisine", "eatery", "bistro", "cafe", "grill", "kitchen", "steakhouse", "pizzeria"),
    "hotel": ("hotel", "lodge", "resort", "accommodation", "guesthouse", "inn"),
    "attraction": ("attraction", "museum", "gallery", "park", "monument", "landmark"),
    "activity": ("tour", "experience", "activity", "hike", "safari"),
    "bar": ("bar", "pub", "lounge", "cocktail", "brewery"),
    "spa": ("spa", "wellness", "massage", "salon"),
}

KNOWN_CITIES: Tuple[str, ...] = (
    "Cape Town",
    "Johannesburg",
    "Durban",
    "Pretoria",
    "Port Elizabeth",
    "Bloemfontein",
    "Stellenbosch",
    "Sandton",
    "Camps Bay",
    "Franschhoek",
)


def normalize_category(value: Optional[str]) -> str:
    """Map a free-form category onto the canonical labels."""
    if not value:
        return DEFAULT_CATEGORY
    return CATEGORY_MAP.get(str(value).strip().lower(), DEFAULT_CATEGORY)


def categorize_text(text: str) -> str:
    """Pick the category whose keywords occur most often in the text."""
    lowered = text.lower()
    best, best_hits = DEFAULT_CATEGORY, 0
    for category, keywords in CATEGORY_KEYWORDS.items():
        hits = sum(lowered.count(keyword) for keyword in keywords)
        if hits > best_hits:
            best, best_hits = category, hits
    return best


def find_city(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    lowered = text.lower()
    for city in KNOWN_CITIES:
        if city.lower() in lowered:
            return city
    return None
