"""SQLite place store used by the pipeline and the job processors."""
from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

import orjson
import structlog

from placeflow.errors import PersistenceError
from placeflow.normalize.geo import bounding_box, distance_km
from placeflow.storage.database import Database
from placeflow.storage.models import CandidateRecord, Location, StoredPlace

LOGGER = structlog.get_logger(__name__)

_COLUMNS = [
    "id TEXT PRIMARY KEY",
    "name TEXT NOT NULL",
    "address TEXT",
    "phone TEXT",
    "email TEXT",
    "website TEXT",
    "category TEXT",
    "rating REAL",
    "lat REAL",
    "lng REAL",
    "photos_json TEXT",
    "confidence INTEGER",
    "source TEXT",
    "description TEXT",
    "city TEXT",
    "enrichment_json TEXT",
    "quality_score INTEGER",
    "is_verified INTEGER NOT NULL DEFAULT 0",
    "last_verified TEXT",
    "created_at TEXT NOT NULL",
]

_INSERT_SQL = """
    INSERT INTO places (
        id, name, address, phone, email, website, category, rating,
        lat, lng, photos_json, confidence, source, description, city,
        enrichment_json, created_at
    ) VALUES (
        :id, :name, :address, :phone, :email, :website, :category, :rating,
        :lat, :lng, :photos_json, :confidence, :source, :description, :city,
        :enrichment_json, :created_at
    )
"""


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _place_from_row(row: sqlite3.Row) -> StoredPlace:
    location = None
    if row["lat"] is not None and row["lng"] is not None:
        location = Location(lat=row["lat"], lng=row["lng"])
    return StoredPlace(
        place_id=row["id"],
        name=row["name"],
        address=row["address"],
        phone=row["phone"],
        email=row["email"],
        website=row["website"],
        category=row["category"],
        rating=row["rating"],
        location=location,
        photos=tuple(orjson.loads(row["photos_json"])) if row["photos_json"] else (),
        confidence=row["confidence"] if row["confidence"] is not None else 50,
        description=row["description"],
        city=row["city"],
        source=row["source"],
        enrichment=orjson.loads(row["enrichment_json"]) if row["enrichment_json"] else None,
        quality_score=row["quality_score"],
        is_verified=bool(row["is_verified"]),
    )


class PlaceStore:
    """Persisted places with the lookups the duplicate check needs."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._db.call(self._create)

    @staticmethod
    def _create(connection: sqlite3.Connection) -> None:
        with connection:
            connection.execute(f"CREATE TABLE IF NOT EXISTS places ({', '.join(_COLUMNS)})")
            connection.execute("CREATE INDEX IF NOT EXISTS places_name ON places (name)")
            connection.execute("CREATE INDEX IF NOT EXISTS places_lat_lng ON places (lat, lng)")

    async def find_candidates(self, name_filter: str, limit: int = 10) -> List[StoredPlace]:
        """Places whose name starts with ``name_filter`` (case-insensitive)."""
        rows = await self._db.run(
            lambda connection: connection.execute(
                "SELECT * FROM places WHERE name LIKE ? || '%' ESCAPE '\\' ORDER BY created_at LIMIT ?",
                (_escape_like(name_filter), limit),
            ).fetchall()
        )
        return [_place_from_row(row) for row in rows]

    async def find_near(self, lat: float, lng: float, radius_km: float) -> List[StoredPlace]:
        box = bounding_box(lat, lng, radius_km)
        rows = await self._db.run(
            lambda connection: connection.execute(
                "SELECT * FROM places WHERE lat BETWEEN ? AND ? AND lng BETWEEN ? AND ?",
                (box.min_lat, box.max_lat, box.min_lng, box.max_lng),
            ).fetchall()
        )
        return [
            _place_from_row(row)
            for row in rows
            if distance_km(lat, lng, row["lat"], row["lng"]) <= radius_km
        ]

    async def bulk_insert(
        self,
        records: Sequence[CandidateRecord],
        *,
        source: str,
        enrichments: Optional[Sequence[Optional[Dict[str, Any]]]] = None,
    ) -> List[str]:
        """Insert all records in one transaction and return their new ids.

        Raises PersistenceError when the write fails; nothing is stored then.
        """
        if not records:
            return []
        extras: Iterable[Optional[Dict[str, Any]]] = enrichments if enrichments is not None else [None] * len(records)
        created_at = datetime.now().astimezone().isoformat()
        prepared: List[Dict[str, Any]] = []
        for record, enrichment in zip(records, extras):
            prepared.append({
                "id": str(uuid.uuid4()),
                "name": record.name,
                "address": record.address,
                "phone": record.phone,
                "email": record.email,
                "website": record.website,
                "category": record.category,
                "rating": record.rating,
                "lat": record.location.lat if record.location else None,
                "lng": record.location.lng if record.location else None,
                "photos_json": orjson.dumps(list(record.photos)).decode(),
                "confidence": record.confidence,
                "source": source,
                "description": record.description,
                "city": record.city,
                "enrichment_json": orjson.dumps(enrichment).decode() if enrichment else None,
                "created_at": created_at,
            })

        def _insert(connection: sqlite3.Connection) -> None:
            with connection:
                connection.executemany(_INSERT_SQL, prepared)

        try:
            await self._db.run(_insert)
        except sqlite3.Error as exc:
            LOGGER.error("places.bulk_insert_failed", count=len(prepared), source=source, error=str(exc))
            raise PersistenceError(f"Failed to save places: {exc}") from exc
        LOGGER.info("places.saved", count=len(prepared), source=source)
        return [row["id"] for row in prepared]

    async def get(self, place_id: str) -> Optional[StoredPlace]:
        rows = await self._db.run(
            lambda connection: connection.execute("SELECT * FROM places WHERE id = ?", (place_id,)).fetchall()
        )
        return _place_from_row(rows[0]) if rows else None

    async def update_enrichment(self, place_id: str, enrichment: Dict[str, Any]) -> None:
        blob = orjson.dumps(enrichment, default=str).decode()

        def _update(connection: sqlite3.Connection) -> None:
            with connection:
                connection.execute("UPDATE places SET enrichment_json = ? WHERE id = ?", (blob, place_id))

        await self._db.run(_update)

    async def update_quality(self, place_id: str, *, score: int, verified: bool, verified_at: datetime) -> None:
        def _update(connection: sqlite3.Connection) -> None:
            with connection:
                connection.execute(
                    "UPDATE places SET quality_score = ?, is_verified = ?, last_verified = ? WHERE id = ?",
                    (score, int(verified), verified_at.isoformat(), place_id),
                )

        await self._db.run(_update)

    async def count(self) -> int:
        rows = await self._db.run(lambda connection: connection.execute("SELECT COUNT(*) FROM places").fetchall())
        return int(rows[0][0])
