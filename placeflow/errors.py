"""Exception types shared across the ingestion and scheduling layers."""
from __future__ import annotations


class PlaceflowError(Exception):
    """Base class for errors raised by placeflow components."""


class PersistenceError(PlaceflowError):
    """A write to the place store failed; no rows of the batch were stored."""


class ProcessorNotRegistered(PlaceflowError):
    """A job was dispatched for a kind that has no processor bound."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"No processor registered for type: {kind}")
        self.kind = kind


class RecordNotFound(PlaceflowError):
    """A processor was asked to work on a place that does not exist."""

    def __init__(self, place_id: str) -> None:
        super().__init__(f"Place not found: {place_id}")
        self.place_id = place_id
