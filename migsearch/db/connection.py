"""SQLite connections and scoped prepared statements."""

from __future__ import annotations

import os
from pathlib import Path
import sqlite3
import tempfile
from types import TracebackType
from typing import Sequence

from migsearch.config.schema import DatabaseConfig


def resolve_db_path(config: DatabaseConfig | None = None) -> str:
    configured = (config.path if config else "") or os.getenv("MIGSEARCH_DB")
    if not configured:
        return str(Path(tempfile.gettempdir()) / "migsearch.sqlite3")
    if configured == ":memory:":
        return configured
    return str(Path(configured).expanduser().resolve())


def connect(config: DatabaseConfig | None = None) -> sqlite3.Connection:
    config = config or DatabaseConfig()
    db_path = resolve_db_path(config)
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=config.timeout_seconds)
    conn.execute(f"PRAGMA journal_mode={config.journal_mode.upper()}")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.execute(f"PRAGMA foreign_keys={'ON' if config.foreign_keys else 'OFF'}")
    return conn


class PreparedStatement:
    """One search statement and the cursor it runs on.

    ``compile`` asks SQLite to plan the statement without touching any rows, so
    schema drift and malformed SQL surface before execution. The cursor is closed
    when the context exits, whichever way it exits.
    """

    def __init__(self, conn: sqlite3.Connection, query: str) -> None:
        self.query = query
        self._conn = conn
        self._cursor: sqlite3.Cursor | None = None

    def compile(self, params: Sequence[object]) -> None:
        plan = self._conn.execute(f"EXPLAIN {self.query}", tuple(params))
        plan.close()

    def execute(self, params: Sequence[object]) -> sqlite3.Cursor:
        self.close()
        self._cursor = self._conn.execute(self.query, tuple(params))
        return self._cursor

    def close(self) -> None:
        if self._cursor is not None:
            self._cursor.close()
            self._cursor = None

    def __enter__(self) -> PreparedStatement:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()
