"""Thread-safe SQLite handle shared by the job table and the place store."""
from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Callable, TypeVar, Union

T = TypeVar("T")


class Database:
    """Single SQLite connection whose blocking calls run off the event loop."""

    def __init__(self, path: Union[Path, str]) -> None:
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self.path = path
        self._connection = sqlite3.connect(str(path), check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.Lock()

    def call(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``fn`` with exclusive use of the connection."""
        with self._lock:
            return fn(self._connection)

    async def run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        return await asyncio.to_thread(self.call, fn)

    def close(self) -> None:
        with self._lock:
            self._connection.close()
