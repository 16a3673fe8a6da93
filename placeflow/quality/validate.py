"""JSON Schema validation stage for candidate records."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema
import orjson

from placeflow.storage.models import CandidateRecord

SCHEMA_ROOT = Path(__file__).parent / "schemas"

FIELD_MESSAGES = {
    "name": "Business name must be between 2 and 100 characters",
    "phone": "Phone number must be a valid South African number",
    "email": "Email must be a valid email address",
    "website": "Website must be a valid URL",
    "rating": "Rating must be between 0 and 5",
}

LOW_CONFIDENCE = 50

_PHONE_FORMATTING_RE = re.compile(r"[\s\-().]")


@dataclass
class ValidationReport:
    """Outcome of validating a single record."""

    ok: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class RecordValidator:
    """Checks field shapes against the place schema and flags soft issues."""

    def __init__(self, schema_path: Optional[Path] = None) -> None:
        path = schema_path or SCHEMA_ROOT / "place.schema.json"
        if not path.exists():
            raise FileNotFoundError(f"Schema not found: {path}")
        self._schema: Dict[str, Any] = orjson.loads(path.read_bytes())
        self._validator = jsonschema.Draft202012Validator(self._schema)

    @staticmethod
    def _payload(record: CandidateRecord) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for key in ("name", "address", "phone", "email", "website", "category"):
            value = getattr(record, key)
            if isinstance(value, str) and value.strip():
                payload[key] = value.strip()
        if "phone" in payload:
            payload["phone"] = _PHONE_FORMATTING_RE.sub("", payload["phone"])
        if record.rating is not None:
            payload["rating"] = record.rating
        return payload

    def _message(self, error: jsonschema.ValidationError, payload: Dict[str, Any]) -> List[str]:
        if error.validator == "required":
            missing = [name for name in error.validator_value if name not in payload]
            return [FIELD_MESSAGES.get(name, f"{name} is required") for name in missing]
        name = str(error.path[0]) if error.path else ""
        return [FIELD_MESSAGES.get(name, f"{error.json_path}: {error.message}")]

    def validate(self, record: CandidateRecord) -> ValidationReport:
        payload = self._payload(record)
        errors: List[str] = []
        for error in self._validator.iter_errors(payload):
            for message in self._message(error, payload):
                if message not in errors:
                    errors.append(message)

        warnings: List[str] = []
        if "phone" not in payload and "email" not in payload:
            warnings.append("No contact details (phone or email)")
        if "address" not in payload:
            warnings.append("Missing address")
        if record.confidence < LOW_CONFIDENCE:
            warnings.append(f"Low source confidence ({record.confidence})")
        return ValidationReport(ok=not errors, errors=errors, warnings=warnings)
