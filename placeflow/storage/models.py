"""Pydantic models for candidate and stored place records."""
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Location(BaseModel):
    """A WGS84 coordinate pair."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


class CandidateRecord(BaseModel):
    """A business or place extracted from a source, before persistence.

    Field values are deliberately unconstrained: range and shape checks are the
    validator's job so that bad values are reported rather than rejected on
    construction.
    """

    model_config = ConfigDict(frozen=True)

    name: str = ""
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    category: Optional[str] = None
    rating: Optional[float] = None
    location: Optional[Location] = None
    photos: Tuple[str, ...] = ()
    confidence: int = Field(default=50, description="Source supplied trust estimate, 0-100")
    description: Optional[str] = None
    city: Optional[str] = None


class StoredPlace(CandidateRecord):
    """A place read back from the place store."""

    place_id: str
    source: Optional[str] = None
    enrichment: Optional[Dict[str, Any]] = None
    quality_score: Optional[int] = None
    is_verified: bool = False
