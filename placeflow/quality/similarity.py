"""Fuzzy duplicate scoring for place records.

Two records are compared on phone, name and address. Phone numbers must match
exactly after normalisation; names and addresses are compared with
Jaro-Winkler similarity. Each field carries a weight and the weights are
renormalised over the fields present on both records, so a pair without phone
numbers is judged on name and address alone.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from placeflow.storage.models import CandidateRecord

DUPLICATE_THRESHOLD = 0.8
FIELD_MATCH_THRESHOLD = 0.8

PHONE_WEIGHT = 0.4
NAME_WEIGHT = 0.3
ADDRESS_WEIGHT = 0.3

_PHONE_FORMATTING_RE = re.compile(r"[\s\-().]")
_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")
_GENERIC_NAME_WORDS_RE = re.compile(r"\b(the|and|restaurant|hotel|cafe|bar|spa|ltd|pty|cc)\b")
_STREET_TYPES_RE = re.compile(r"\b(street|st|road|rd|avenue|ave|drive|dr|lane|ln|way|close|crescent|cres)\b")


def normalize_phone(phone: str, *, country_prefix: str = "+27") -> str:
    normalized = _PHONE_FORMATTING_RE.sub("", phone)
    if normalized.startswith("0"):
        normalized = country_prefix + normalized[1:]
    return normalized


def normalize_name(name: str) -> str:
    text = _PUNCTUATION_RE.sub("", name.lower())
    text = _GENERIC_NAME_WORDS_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_address(address: str) -> str:
    text = _STREET_TYPES_RE.sub("st", address.lower())
    text = _PUNCTUATION_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_website(website: str) -> str:
    candidate = website.strip()
    if not candidate.lower().startswith(("http://", "https://")):
        candidate = "https://" + candidate
    host = urlparse(candidate).hostname or ""
    if not host:
        return re.sub(r"^(https?://)?(www\.)?", "", website.strip().lower())
    return re.sub(r"^www\.", "", host.lower())


def jaro_winkler(first: str, second: str) -> float:
    """Jaro similarity with the Winkler bonus for up to four shared leading characters."""
    if first == second:
        return 1.0
    if not first or not second:
        return 0.0

    window = max(0, max(len(first), len(second)) // 2 - 1)
    first_flags = [False] * len(first)
    second_flags = [False] * len(second)

    matches = 0
    for i, char in enumerate(first):
        start = max(0, i - window)
        end = min(i + window + 1, len(second))
        for j in range(start, end):
            if second_flags[j] or second[j] != char:
                continue
            first_flags[i] = second_flags[j] = True
            matches += 1
            break

    if matches == 0:
        return 0.0

    transpositions = 0
    k = 0
    for i, char in enumerate(first):
        if not first_flags[i]:
            continue
        while not second_flags[k]:
            k += 1
        if char != second[k]:
            transpositions += 1
        k += 1

    jaro = (
        matches / len(first)
        + matches / len(second)
        + (matches - transpositions / 2) / matches
    ) / 3

    prefix = 0
    for a, b in zip(first[:4], second[:4]):
        if a != b:
            break
        prefix += 1
    return jaro + 0.1 * prefix * (1 - jaro)


@dataclass(frozen=True)
class DuplicateMatch:
    """A candidate that scored at or above the threshold against another record."""

    candidate: CandidateRecord
    matched_existing: CandidateRecord
    similarity: float
    match_reasons: Tuple[str, ...]


class SimilarityEngine:
    """Scores record pairs and groups duplicates within a batch."""

    def __init__(self, *, threshold: float = DUPLICATE_THRESHOLD, country_prefix: str = "+27") -> None:
        self.threshold = threshold
        self.country_prefix = country_prefix

    def _phone(self, value: str) -> str:
        return normalize_phone(value, country_prefix=self.country_prefix)

    def name_similarity(self, first: str, second: str) -> float:
        return jaro_winkler(normalize_name(first), normalize_name(second))

    def address_similarity(self, first: str, second: str) -> float:
        return jaro_winkler(normalize_address(first), normalize_address(second))

    def score(self, a: CandidateRecord, b: CandidateRecord) -> float:
        """Weighted similarity in [0, 1] over the fields both records carry."""
        total = 0.0
        weight = 0.0
        if a.phone and b.phone:
            total += PHONE_WEIGHT * (1.0 if self._phone(a.phone) == self._phone(b.phone) else 0.0)
            weight += PHONE_WEIGHT
        if a.name and b.name:
            total += NAME_WEIGHT * self.name_similarity(a.name, b.name)
            weight += NAME_WEIGHT
        if a.address and b.address:
            total += ADDRESS_WEIGHT * self.address_similarity(a.address, b.address)
            weight += ADDRESS_WEIGHT
        return total / weight if weight > 0 else 0.0

    def explain(self, a: CandidateRecord, b: CandidateRecord) -> List[str]:
        """Concrete reasons two records look alike, independent of the aggregate score."""
        reasons: List[str] = []
        if self.same_phone(a, b):
            reasons.append("Same phone number")
        if a.email and b.email and a.email.strip().lower() == b.email.strip().lower():
            reasons.append("Same email address")
        if a.name and b.name and self.name_similarity(a.name, b.name) > FIELD_MATCH_THRESHOLD:
            reasons.append("Very similar business name")
        if a.address and b.address and self.address_similarity(a.address, b.address) > FIELD_MATCH_THRESHOLD:
            reasons.append("Very similar address")
        if a.website and b.website and normalize_website(a.website) == normalize_website(b.website):
            reasons.append("Same website")
        return reasons

    def same_phone(self, a: CandidateRecord, b: CandidateRecord) -> bool:
        return bool(a.phone and b.phone) and self._phone(a.phone) == self._phone(b.phone)

    def is_duplicate(self, a: CandidateRecord, b: CandidateRecord) -> bool:
        """A shared phone number is decisive; otherwise the weighted score must reach the threshold."""
        return self.same_phone(a, b) or self.score(a, b) >= self.threshold

    def match(self, candidate: CandidateRecord, existing: CandidateRecord) -> Optional[DuplicateMatch]:
        similarity = self.score(candidate, existing)
        if similarity < self.threshold and not self.same_phone(candidate, existing):
            return None
        return DuplicateMatch(
            candidate=candidate,
            matched_existing=existing,
            similarity=similarity,
            match_reasons=tuple(self.explain(candidate, existing)),
        )

    def find_duplicates_against_existing(
        self,
        candidate: CandidateRecord,
        existing: Sequence[CandidateRecord],
    ) -> List[DuplicateMatch]:
        """Matches of the candidate against known records, in the order supplied."""
        matches: List[DuplicateMatch] = []
        for record in existing:
            found = self.match(candidate, record)
            if found is not None:
                matches.append(found)
        return matches

    def find_duplicates_in_list(self, records: Sequence[CandidateRecord]) -> List[DuplicateMatch]:
        """Every pair in the list scoring at or above the threshold. Quadratic."""
        matches: List[DuplicateMatch] = []
        for i, first in enumerate(records):
            for second in records[i + 1:]:
                found = self.match(first, second)
                if found is not None:
                    matches.append(found)
        return matches

    def group_duplicates(self, records: Sequence[CandidateRecord]) -> List[List[CandidateRecord]]:
        """Greedy grouping: each unassigned record is compared only with a group's first member.

        This is not a transitive closure. A record similar to a later group
        member but not to its first member starts, or joins, another group.
        """
        groups: List[List[CandidateRecord]] = []
        assigned = set()
        for i, leader in enumerate(records):
            if i in assigned:
                continue
            group = [leader]
            assigned.add(i)
            for j in range(i + 1, len(records)):
                if j in assigned:
                    continue
                if self.is_duplicate(leader, records[j]):
                    group.append(records[j])
                    assigned.add(j)
            groups.append(group)
        return groups

    def remove_duplicates(self, records: Sequence[CandidateRecord]) -> List[CandidateRecord]:
        """Keep the highest-confidence member of each group; the earliest wins ties."""
        unique: List[CandidateRecord] = []
        for group in self.group_duplicates(records):
            best = group[0]
            for record in group[1:]:
                if record.confidence > best.confidence:
                    best = record
            unique.append(best)
        return unique
