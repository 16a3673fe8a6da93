"""Administrative CLI utilities."""
from __future__ import annotations

import argparse
import json
import re
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson

from placeflow.normalize.fields import coerce_record
from placeflow.observability.log import configure_logging
from placeflow.quality.similarity import SimilarityEngine

_REJECT_STAMP_RE = re.compile(r"^reject_(\d{8}T\d{6}\d{6})(?:_\d+)?$")


def _load_records(path: Path) -> List[Dict[str, Any]]:
    payload = orjson.loads(path.read_bytes())
    if isinstance(payload, dict):
        payload = payload.get("items", [payload])
    if not isinstance(payload, list):
        raise SystemExit(f"Expected a JSON array in {path}")
    return [item for item in payload if isinstance(item, dict)]


def cmd_explain(args: argparse.Namespace) -> None:
    first = coerce_record(json.loads(args.first))
    second = coerce_record(json.loads(args.second))
    engine = SimilarityEngine(threshold=args.threshold)
    score = engine.score(first, second)
    print(json.dumps({
        "score": round(score, 4),
        "is_duplicate": engine.is_duplicate(first, second),
        "reasons": engine.explain(first, second),
    }, indent=2))


def cmd_dedupe(args: argparse.Namespace) -> None:
    records = [coerce_record(item) for item in _load_records(Path(args.path))]
    engine = SimilarityEngine(threshold=args.threshold)
    groups = engine.group_duplicates(records)
    kept = engine.remove_duplicates(records)
    print(json.dumps({
        "input": len(records),
        "unique": len(kept),
        "groups": [[record.name for record in group] for group in groups if len(group) > 1],
    }, indent=2))


def _quarantine_reasons(quarantine_dir: Path, *, source: Optional[str], days: int) -> Dict[str, int]:
    if not quarantine_dir.exists():
        return {}
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    counter: Counter[str] = Counter()
    for path in quarantine_dir.glob("reject_*.json"):
        match = _REJECT_STAMP_RE.match(path.stem)
        if match:
            stamp = datetime.strptime(match.group(1), "%Y%m%dT%H%M%S%f").replace(tzinfo=timezone.utc)
            if stamp < cutoff:
                continue
        payload = orjson.loads(path.read_bytes())
        if source and payload.get("source") != source:
            continue
        for reason in payload.get("reason", []):
            counter[reason] += 1
    return dict(counter.most_common())


def cmd_rejects(args: argparse.Namespace) -> None:
    reasons = _quarantine_reasons(Path(args.quarantine), source=args.source, days=args.last)
    print(json.dumps(reasons, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="placeflow.admin.cli", description="Administration commands")
    sub = parser.add_subparsers(dest="command", required=True)

    explain = sub.add_parser("explain", help="Score two place records against each other")
    explain.add_argument("first", help="JSON object for the first record")
    explain.add_argument("second", help="JSON object for the second record")
    explain.add_argument("--threshold", type=float, default=0.8)

    dedupe = sub.add_parser("dedupe", help="Group near-duplicates in a JSON array of places")
    dedupe.add_argument("path")
    dedupe.add_argument("--threshold", type=float, default=0.8)

    rejects = sub.add_parser("inspect-rejects", help="Summarise quarantine reasons")
    rejects.add_argument("--quarantine", default="data/quarantine")
    rejects.add_argument("--source")
    rejects.add_argument("--last", type=int, default=7, help="Lookback window in days")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    configure_logging(Path("config/logging.yaml"))
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "explain":
        cmd_explain(args)
        return
    if args.command == "dedupe":
        cmd_dedupe(args)
        return
    if args.command == "inspect-rejects":
        cmd_rejects(args)
        return


if __name__ == "__main__":
    main()
