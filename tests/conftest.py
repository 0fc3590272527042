from __future__ import annotations

from datetime import UTC, datetime
import json
import os
from pathlib import Path
import sqlite3

import pytest

from migsearch.config.schema import DatabaseConfig
from migsearch.db.connection import connect
from migsearch.db.schema import ensure_schema


# Keep default-config test runs away from any developer database.
os.environ.pop("MIGSEARCH_DB", None)

NOW = datetime(2026, 6, 1, tzinfo=UTC)


def _json(value: object) -> str:
    return json.dumps(value, separators=(",", ":"))


def seed_store(conn: sqlite3.Connection) -> None:
    conn.executemany(
        "INSERT INTO investigators (id, name, pgpfingerprint, status, createdat, lastmodified) VALUES (?, ?, ?, ?, ?, ?)",
        [
            (1, "Julien Vehent", "E60892BB9BD89A69F759A1A0A3D652173B763E8F", "active", "2025-01-01T00:00:00+00:00", "2026-01-05T00:00:00+00:00"),
            (2, "Alice Ops", "AAAA0000BBBB1111CCCC2222DDDD3333EEEE4444", "active", "2025-02-01T00:00:00+00:00", "2026-02-05T00:00:00+00:00"),
            (3, "Bob Retired", "", "disabled", "2025-03-01T00:00:00+00:00", "2026-03-05T00:00:00+00:00"),
        ],
    )
    conn.executemany(
        """
        INSERT INTO actions (
            id, name, target, description, threat, operations, validfrom, expireafter,
            starttime, finishtime, lastupdatetime, status, pgpsignatures, syntaxversion
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                10,
                "phishing sweep",
                "status='online'",
                _json({"author": "Julien", "email": "jvehent@example.net", "url": "", "revision": 2}),
                _json({"ref": "IOC-1", "level": "high", "family": "Phishing", "type": "ioc"}),
                _json([{"module": "file", "parameters": {"searches": {}}}]),
                "2026-01-01T00:00:00+00:00",
                "2026-01-08T00:00:00+00:00",
                "2026-01-01T00:05:00+00:00",
                "2026-01-01T01:00:00+00:00",
                "2026-01-01T01:00:00+00:00",
                "completed",
                _json(["sig-julien", "sig-alice"]),
                2,
            ),
            (
                11,
                "rootkit hunt",
                "os='linux'",
                _json({"author": "Julien", "revision": 1}),
                _json({"ref": "IOC-2", "level": "medium", "family": "rootkit", "type": "ioc"}),
                _json([{"module": "memory"}]),
                "2026-02-01T00:00:00+00:00",
                "2026-02-08T00:00:00+00:00",
                None,
                None,
                None,
                "inflight",
                _json(["sig-julien"]),
                2,
            ),
            (
                12,
                "idle check",
                "name='idle'",
                _json({}),
                _json({"family": "compliance"}),
                _json([]),
                "2026-03-01T00:00:00+00:00",
                "2026-03-08T00:00:00+00:00",
                None,
                None,
                None,
                "pending",
                _json(["sig-alice"]),
                2,
            ),
        ],
    )
    conn.executemany(
        "INSERT INTO signatures (actionid, investigatorid, pgpsignature) VALUES (?, ?, ?)",
        [(10, 1, "sig-julien"), (10, 2, "sig-alice"), (11, 1, "sig-julien"), (12, 2, "sig-alice")],
    )
    conn.executemany(
        """
        INSERT INTO agents (
            id, name, queueloc, mode, version, pid, starttime, destructiontime,
            heartbeattime, status, environment, tags
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                100,
                "web01.example.net",
                "linux.web01.abc",
                "daemon",
                "20260101+abc.prod",
                4242,
                "2025-12-01T00:00:00+00:00",
                None,
                "2026-05-30T00:00:00+00:00",
                "online",
                _json({"os": "linux", "arch": "amd64", "addresses": ["10.0.0.5/24"], "publicip": "203.0.113.5"}),
                _json([{"name": "operator", "value": "IT"}]),
            ),
            (
                101,
                "db01.example.net",
                "linux.db01.def",
                "daemon",
                "20260101+abc.prod",
                4343,
                "2025-12-01T00:00:00+00:00",
                None,
                "2026-05-20T00:00:00+00:00",
                "online",
                _json({"os": "linux", "arch": "arm64"}),
                _json([]),
            ),
            (
                102,
                "idle.example.net",
                "linux.idle.ghi",
                "daemon",
                "20251101+old.prod",
                99,
                "2025-10-01T00:00:00+00:00",
                "2026-01-01T00:00:00+00:00",
                "2026-01-01T00:00:00+00:00",
                "destroyed",
                _json({}),
                _json([]),
            ),
        ],
    )
    conn.executemany(
        "INSERT INTO commands (id, actionid, agentid, status, results, starttime, finishtime) VALUES (?, ?, ?, ?, ?, ?, ?)",
        [
            (
                1000,
                10,
                100,
                "success",
                _json([{"foundanything": True, "success": True, "elements": {"hits": 1}, "errors": []}]),
                "2026-01-01T00:10:00+00:00",
                "2026-01-01T00:11:00+00:00",
            ),
            (
                1001,
                10,
                101,
                "success",
                _json([{"foundanything": False, "success": True}]),
                "2026-01-01T00:12:00+00:00",
                "2026-01-01T00:13:00+00:00",
            ),
            (
                1002,
                11,
                100,
                "failed",
                _json([{"foundanything": False, "success": False, "errors": ["module crashed"]}]),
                "2026-02-01T00:10:00+00:00",
                "2026-02-01T00:12:00+00:00",
            ),
            (1003, 11, 101, "sent", None, "2026-02-01T00:15:00+00:00", None),
        ],
    )
    conn.commit()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def db_config(tmp_path: Path) -> DatabaseConfig:
    return DatabaseConfig(path=str(tmp_path / "mig.sqlite3"))


@pytest.fixture
def store(db_config: DatabaseConfig):
    conn = connect(db_config)
    ensure_schema(conn)
    seed_store(conn)
    try:
        yield conn
    finally:
        conn.close()
