"""Parser for free-form AI response text listing businesses."""
from __future__ import annotations

import re
from typing import Dict, List, Optional

import structlog

from placeflow.normalize.fields import clean_string
from placeflow.normalize.taxonomy import categorize_text, find_city
from placeflow.quality.similarity import SimilarityEngine
from placeflow.storage.models import CandidateRecord

LOGGER = structlog.get_logger(__name__)

BASE_CONFIDENCE = 20
FIELD_CONFIDENCE = {
    "name": 20,
    "phone": 15,
    "email": 10,
    "website": 10,
    "address": 15,
    "rating": 5,
    "description": 5,
}

# Entry markers in the order they are tried; the first kind found at the
# start of an unindented line decides how the text is split.
_ENTRY_MARKERS = (
    re.compile(r"^\d+[.)]\s+"),
    re.compile(r"^#{1,3}\s+"),
    re.compile(r"^[-*•]\s+"),
)
_BLANK_LINES_RE = re.compile(r"\n\s*\n")
_LEADING_MARKER_RE = re.compile(r"^\s*(?:\d+[.)]|#{1,3}|[-*•])\s+")
_LABEL_RE = re.compile(
    r"^\s*(?:[-*•]\s*)?\**\s*"
    r"(phone|tel|telephone|email|e-mail|website|web|url|address|location|rating|category|description)"
    r"\s*\**\s*:\s*\**\s*(.+?)\s*$",
    re.IGNORECASE | re.MULTILINE,
)
_LABEL_ALIASES = {
    "tel": "phone",
    "telephone": "phone",
    "e-mail": "email",
    "web": "website",
    "url": "website",
    "location": "address",
}
_PHONE_RE = re.compile(r"(?:\+27|\b0)[\d\s\-()]{8,15}\d")
_PHONE_FORMATTING_RE = re.compile(r"[\s\-()]")
_EMAIL_RE = re.compile(r"[\w.+\-]+@[\w\-]+(?:\.[\w\-]+)+")
_WEBSITE_RE = re.compile(
    r"(?:https?://)?(?:www\.)?[a-z0-9\-]+(?:\.[a-z0-9\-]+)*\.[a-z]{2,}(?:/[^\s,;)]*)?",
    re.IGNORECASE,
)
_ADDRESS_RE = re.compile(
    r"\d+\s+[A-Za-z][\w\s]*?\b(?:Street|St|Road|Rd|Avenue|Ave|Drive|Dr|Lane|Ln|Way|Close|Crescent|Cres)\b[^\n]*",
    re.IGNORECASE,
)
_ADDRESS_HINTS = ("street", " st ", "road", " rd", "avenue", "drive", "mall", "centre", "center")
_RATING_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:/\s*(?:5|10)|stars?|rating)", re.IGNORECASE)
_NAME_TAIL_RE = re.compile(r"\s*(?:[:–—]|\s-\s).*$")
_MARKDOWN_RE = re.compile(r"[*_`]+")


def split_entries(text: str) -> List[str]:
    """Split a response into one chunk per business."""
    lines = text.strip().splitlines()
    for marker in _ENTRY_MARKERS:
        if not any(marker.match(line) for line in lines):
            continue
        entries: List[List[str]] = []
        for line in lines:
            if marker.match(line) or not entries:
                entries.append([line])
            else:
                entries[-1].append(line)
        # Text before the first marker is usually an introduction.
        if entries and not marker.match(entries[0][0]):
            entries = entries[1:]
        return [chunk for chunk in ("\n".join(entry).strip() for entry in entries) if chunk]
    return [chunk.strip() for chunk in _BLANK_LINES_RE.split(text) if chunk.strip()]


def _labels(entry: str) -> Dict[str, str]:
    found: Dict[str, str] = {}
    for match in _LABEL_RE.finditer(entry):
        key = match.group(1).lower()
        found.setdefault(_LABEL_ALIASES.get(key, key), _MARKDOWN_RE.sub("", match.group(2)).strip())
    return found


def clean_name(line: str) -> str:
    name = _LEADING_MARKER_RE.sub("", line)
    name = _MARKDOWN_RE.sub("", name)
    name = _NAME_TAIL_RE.sub("", name)
    return re.sub(r"\s+", " ", name).strip(" ,.")


def extract_phone(text: str) -> Optional[str]:
    match = _PHONE_RE.search(text)
    return _PHONE_FORMATTING_RE.sub("", match.group(0)) if match else None


def extract_email(text: str) -> Optional[str]:
    match = _EMAIL_RE.search(text)
    return match.group(0).lower() if match else None


def extract_website(text: str) -> Optional[str]:
    match = _WEBSITE_RE.search(_EMAIL_RE.sub(" ", text))
    if not match:
        return None
    website = match.group(0).rstrip("./")
    if not website.lower().startswith("http"):
        website = f"https://{website}"
    return website


def extract_address(text: str) -> Optional[str]:
    match = _ADDRESS_RE.search(text)
    if match:
        return clean_string(match.group(0).strip(" ,.;"))
    for line in text.splitlines():
        padded = f" {line.lower()} "
        if any(hint in padded for hint in _ADDRESS_HINTS) and find_city(line):
            return clean_string(_LEADING_MARKER_RE.sub("", line).strip(" ,.;"))
    return None


def extract_rating(text: str) -> Optional[float]:
    match = _RATING_RE.search(text)
    if not match:
        return None
    value = float(match.group(1))
    return value if value <= 5 else value / 2 if value <= 10 else None


def _description(lines: List[str], name: str) -> Optional[str]:
    picked: List[str] = []
    for line in lines:
        stripped = _MARKDOWN_RE.sub("", _LEADING_MARKER_RE.sub("", line)).strip()
        if not 20 < len(stripped) < 300 or name in stripped or _LABEL_RE.match(line):
            continue
        if _PHONE_RE.search(stripped) or _EMAIL_RE.search(stripped) or _WEBSITE_RE.search(stripped):
            continue
        picked.append(stripped)
        if len(picked) == 2:
            break
    return " ".join(picked) or None


def confidence_for(fields: Dict[str, object]) -> int:
    score = BASE_CONFIDENCE + sum(weight for key, weight in FIELD_CONFIDENCE.items() if fields.get(key))
    return min(score, 100)


class TextParser:
    """Turns AI response text into candidate records."""

    def __init__(self, engine: Optional[SimilarityEngine] = None) -> None:
        self._engine = engine or SimilarityEngine()

    def parse_entry(self, entry: str) -> Optional[CandidateRecord]:
        lines = [line for line in entry.splitlines() if line.strip()]
        if not lines:
            return None
        name = clean_name(lines[0])
        if not name:
            return None
        labels = _labels(entry)
        rating_text = labels.get("rating")
        fields: Dict[str, object] = {
            "name": name,
            "phone": extract_phone(labels["phone"]) if "phone" in labels else extract_phone(entry),
            "email": extract_email(labels.get("email", entry)),
            "website": extract_website(labels["website"]) if "website" in labels else extract_website(entry),
            "address": clean_string(labels.get("address")) or extract_address(entry),
            "rating": extract_rating(f"{rating_text}/5" if rating_text and "/" not in rating_text else rating_text or entry),
            "description": clean_string(labels.get("description")) or _description(lines[1:], name),
        }
        return CandidateRecord(
            **fields,
            category=labels.get("category") or categorize_text(entry),
            city=find_city(fields["address"]) or find_city(entry),
            confidence=confidence_for(fields),
        )

    def parse_text(self, text: str) -> List[CandidateRecord]:
        """All businesses found in ``text``, with near-duplicates removed."""
        if not text or not text.strip():
            return []
        records = [record for record in map(self.parse_entry, split_entries(text)) if record is not None]
        unique = self._engine.remove_duplicates(records)
        LOGGER.debug("parse.text", entries=len(records), unique=len(unique))
        return unique
