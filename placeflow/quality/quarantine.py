"""Quarantine handling for rejected records."""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Sequence

import orjson


class Quarantine:
    """Writes rejected records to a quarantine directory for manual review."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def reject(self, *, record: Dict[str, Any], reason: Sequence[str], source: str) -> Path:
        """Persist the rejected payload with accompanying reasons."""
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        target = self._root / f"reject_{timestamp}.json"
        counter = 1
        while target.exists():
            target = self._root / f"reject_{timestamp}_{counter}.json"
            counter += 1
        blob = {"source": source, "record": record, "reason": list(reason)}
        target.write_bytes(orjson.dumps(blob, option=orjson.OPT_INDENT_2, default=str))
        return target

    def entries(self) -> List[Dict[str, Any]]:
        return [orjson.loads(path.read_bytes()) for path in sorted(self._root.glob("reject_*.json"))]
