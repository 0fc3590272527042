from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
import sqlite3
from typing import Sequence

import pytest

from migsearch.config.schema import DatabaseConfig, SearchConfig
from migsearch.core.errors import (
    CursorError,
    EnrichmentError,
    FilterParseError,
    QueryExecutionError,
    QueryPrepareError,
    SubDocumentError,
)
from migsearch.db import connection as db_connection
from migsearch.db.connection import connect
from migsearch.models import Action
from migsearch.search import LookupEnricher, SearchParameters, SearchService, new_search_parameters
from migsearch.search import service as search_service


class _RecordingEnricher:
    def __init__(self, fail_on: int | None = None) -> None:
        self.calls: list[list[int]] = []
        self.fail_on = fail_on

    def enrich(self, actions: Sequence[Action]) -> None:
        self.calls.append([action.id for action in actions])
        for action in actions:
            if action.id == self.fail_on:
                raise EnrichmentError("failed to retrieve action counters: lookup offline")
            action.counters.sent = -1


class _FlakyCursor:
    def __init__(self, cursor: sqlite3.Cursor, fail_after: int) -> None:
        self._cursor = cursor
        self._fail_after = fail_after
        self.fetches = 0
        self.closed = False

    def fetchmany(self, size: int) -> list[tuple]:
        self.fetches += 1
        if self.fetches > self._fail_after:
            raise sqlite3.OperationalError("disk I/O error")
        return self._cursor.fetchmany(size)

    def close(self) -> None:
        self.closed = True
        self._cursor.close()


class _FailingConnection:
    """Plans statements normally, then fails running or reading the search."""

    def __init__(self, conn: sqlite3.Connection, *, fail_execute: bool = False, fail_after: int = 0) -> None:
        self._conn = conn
        self._fail_execute = fail_execute
        self._fail_after = fail_after
        self.cursors: list[_FlakyCursor] = []

    def execute(self, sql: str, params: tuple = ()):
        if sql.startswith("EXPLAIN "):
            return self._conn.execute(sql, params)
        if self._fail_execute:
            raise sqlite3.OperationalError("database is locked")
        cursor = _FlakyCursor(self._conn.execute(sql, params), self._fail_after)
        self.cursors.append(cursor)
        return cursor


@pytest.fixture
def statements(monkeypatch: pytest.MonkeyPatch) -> list[db_connection.PreparedStatement]:
    opened: list[db_connection.PreparedStatement] = []

    class _RecordingStatement(db_connection.PreparedStatement):
        def __init__(self, conn, query: str) -> None:
            super().__init__(conn, query)
            opened.append(self)

    monkeypatch.setattr(search_service, "PreparedStatement", _RecordingStatement)
    return opened


@pytest.fixture
def service(store: sqlite3.Connection, now: datetime) -> SearchService:
    return SearchService(store, clock=lambda: now)


def _ids(records) -> list[int]:
    return [record.id for record in records]


def test_commands_search_deduplicates_joined_rows(service: SearchService, now: datetime) -> None:
    commands = service.search_commands(new_search_parameters(now=now, type="command"))
    assert _ids(commands) == [1003, 1002, 1001, 1000]
    latest = commands[0]
    assert latest.results == []
    assert latest.action.id == 11
    assert latest.action.counters.in_flight == 1
    assert [item.id for item in latest.action.investigators] == [1]
    assert latest.agent.name == "db01.example.net"


def test_actions_search_enriches_counters_and_signers(service: SearchService, now: datetime) -> None:
    actions = service.search_actions(new_search_parameters(now=now))
    assert _ids(actions) == [12, 11, 10]
    idle, rootkit, phishing = actions
    assert idle.counters.sent == 0
    assert [item.name for item in idle.investigators] == ["Alice Ops"]
    assert rootkit.counters.failed == 1
    assert phishing.counters.success == 2
    assert [item.id for item in phishing.investigators] == [1, 2]
    assert phishing.threat.family == "Phishing"


def test_generic_search_dispatches_on_type(service: SearchService, now: datetime) -> None:
    agents = service.search(new_search_parameters(now=now, type="agent"))
    assert _ids(agents) == [100, 101, 102]
    with pytest.raises(FilterParseError, match="unknown search type"):
        service.search(new_search_parameters(now=now, type="widgets"))


@pytest.mark.parametrize(
    ("filters", "expected"),
    [
        ({"investigator_name": "Julien%"}, [11, 10]),
        ({"investigator_id": "2"}, [12, 10]),
        ({"agent_name": "db01%"}, [11, 10]),
        ({"command_id": "1001"}, [10]),
        ({"status": "complet%"}, [10]),
        ({"threat_family": "PHISHING"}, [10]),
        ({"action_name": "%hunt"}, [11]),
    ],
)
def test_actions_filters(service: SearchService, now: datetime, filters, expected) -> None:
    actions = service.search_actions(new_search_parameters(now=now, **filters))
    assert _ids(actions) == expected


@pytest.mark.parametrize(
    ("filters", "expected"),
    [
        ({"action_name": "rootkit%"}, [100, 101]),
        ({"investigator_name": "Alice%"}, [100, 101]),
        ({"threat_family": "compliance"}, []),
        ({"command_id": "1002"}, [100]),
        ({"status": "destroyed"}, [102]),
    ],
)
def test_agents_filters(service: SearchService, now: datetime, filters, expected) -> None:
    agents = service.search_agents(new_search_parameters(now=now, type="agent", **filters))
    assert _ids(agents) == expected


@pytest.mark.parametrize(
    ("filters", "expected"),
    [
        ({}, [1, 2, 3]),
        ({"agent_id": "101"}, [1, 2]),
        ({"action_name": "rootkit%"}, [1]),
        ({"agent_name": "idle%"}, []),
        ({"status": "disabled"}, [3]),
    ],
)
def test_investigators_filters(service: SearchService, now: datetime, filters, expected) -> None:
    investigators = service.search_investigators(new_search_parameters(now=now, type="investigator", **filters))
    assert _ids(investigators) == expected


def test_commands_filters(service: SearchService, now: datetime) -> None:
    by_family = service.search_commands(new_search_parameters(now=now, threat_family="phishing"))
    assert _ids(by_family) == [1001, 1000]
    by_signer = service.search_commands(new_search_parameters(now=now, investigator_id="2"))
    assert _ids(by_signer) == [1001, 1000]
    by_status = service.search_commands(new_search_parameters(now=now, status="succ%", agent_id="100"))
    assert _ids(by_status) == [1000]


def test_found_anything_restriction(service: SearchService, now: datetime) -> None:
    found = service.search_commands(new_search_parameters(now=now, found_anything=True), found_anything=True)
    assert _ids(found) == [1000]
    assert found[0].results[0].found_anything is True
    empty = service.search_commands(new_search_parameters(now=now, found_anything=False), found_anything=True)
    assert _ids(empty) == [1001]


def test_time_window_filters(service: SearchService, now: datetime) -> None:
    after_mid_january = new_search_parameters(now=now, after=datetime(2026, 1, 15, tzinfo=UTC))
    assert _ids(service.search_actions(after_mid_january)) == [12, 11]
    window = new_search_parameters(
        now=now,
        after=datetime(2026, 1, 15, tzinfo=UTC),
        before=datetime(2026, 2, 10, tzinfo=UTC),
    )
    assert _ids(service.search_actions(window)) == [11]
    recent_agents = new_search_parameters(now=now, after=datetime(2026, 5, 1, tzinfo=UTC))
    assert _ids(service.search_agents(recent_agents)) == [100, 101]


def test_pagination(service: SearchService, now: datetime) -> None:
    assert _ids(service.search_actions(new_search_parameters(now=now, limit=2))) == [12, 11]
    assert _ids(service.search_actions(new_search_parameters(now=now, limit=2, offset=2))) == [10]
    assert service.search_actions(new_search_parameters(now=now, limit=0)) == []


def test_repeated_search_returns_identical_results(service: SearchService, now: datetime) -> None:
    params = new_search_parameters(now=now, type="command", agent_name="%.example.net")
    assert service.search_commands(params) == service.search_commands(params)


def test_parse_failure_issues_no_statement(store: sqlite3.Connection, service: SearchService, now: datetime) -> None:
    statements: list[str] = []
    store.set_trace_callback(statements.append)
    try:
        with pytest.raises(FilterParseError) as excinfo:
            service.search_agents(new_search_parameters(now=now, agent_id="abc"))
    finally:
        store.set_trace_callback(None)
    assert excinfo.value.results == []
    assert statements == []


def test_prepare_failure_carries_query_text(tmp_path: Path, now: datetime) -> None:
    conn = connect(DatabaseConfig(path=str(tmp_path / "empty.sqlite3")))
    try:
        with pytest.raises(QueryPrepareError) as excinfo:
            SearchService(conn, clock=lambda: now).search_actions(new_search_parameters(now=now))
    finally:
        conn.close()
    assert "FROM actions" in excinfo.value.query
    assert "no such table" in str(excinfo.value)
    assert excinfo.value.kind == "query_prepare"


def test_bad_document_keeps_partial_results(store: sqlite3.Connection, service: SearchService, now: datetime) -> None:
    store.execute("UPDATE actions SET threat = '{broken' WHERE id = 11")
    store.commit()
    with pytest.raises(SubDocumentError) as excinfo:
        service.search_actions(new_search_parameters(now=now))
    assert excinfo.value.document == "action threat"
    assert _ids(excinfo.value.results) == [12]


def test_enrichment_failure_keeps_partial_results(store: sqlite3.Connection, now: datetime) -> None:
    enricher = _RecordingEnricher(fail_on=11)
    service = SearchService(store, enricher=enricher, clock=lambda: now)
    with pytest.raises(EnrichmentError) as excinfo:
        service.search_actions(new_search_parameters(now=now))
    assert _ids(excinfo.value.results) == [12]
    assert enricher.calls == [[12], [11]]


def test_lookup_failure_is_reported_as_enrichment_error(store: sqlite3.Connection, service: SearchService, now: datetime) -> None:
    store.execute("DROP TABLE signatures")
    store.commit()
    with pytest.raises(EnrichmentError, match="failed to retrieve action investigators"):
        service.search_actions(new_search_parameters(now=now))


def test_batch_enrichment_runs_once_per_page(store: sqlite3.Connection, now: datetime) -> None:
    enricher = _RecordingEnricher()
    service = SearchService(
        store,
        config=SearchConfig(batch_enrichment=True, fetch_size=1),
        enricher=enricher,
        clock=lambda: now,
    )
    commands = service.search_commands(new_search_parameters(now=now))
    assert enricher.calls == [[11, 11, 10, 10]]
    assert all(command.action.counters.sent == -1 for command in commands)


def test_agent_and_investigator_searches_skip_enrichment(store: sqlite3.Connection, now: datetime) -> None:
    enricher = _RecordingEnricher()
    service = SearchService(store, enricher=enricher, clock=lambda: now)
    service.search_agents(new_search_parameters(now=now))
    service.search_investigators(new_search_parameters(now=now))
    assert enricher.calls == []


def test_generic_search_applies_found_anything(service: SearchService, now: datetime) -> None:
    found = service.search(new_search_parameters(now=now, type="command", found_anything=True))
    assert _ids(found) == [1000]
    from_query = SearchParameters.from_query_string("type=command&foundanything=false", now=now)
    assert _ids(service.search(from_query)) == [1001]
    assert _ids(service.search(new_search_parameters(now=now, type="command"))) == [1003, 1002, 1001, 1000]
    with pytest.raises(FilterParseError, match="only applies to command searches"):
        service.search(new_search_parameters(now=now, type="agent", found_anything=True))


def test_time_window_compares_instants_across_offsets(store: sqlite3.Connection, service: SearchService, now: datetime) -> None:
    # 10:00+05:00 is 05:00 UTC.
    store.execute(
        "INSERT INTO investigators (id, name, pgpfingerprint, status, createdat, lastmodified) VALUES (?, ?, ?, ?, ?, ?)",
        (99, "Offset Clock", "", "active", "2026-03-01T00:00:00+00:00", "2026-04-01T10:00:00+05:00"),
    )
    store.commit()
    window = new_search_parameters(
        now=now,
        after=datetime(2026, 3, 31, tzinfo=UTC),
        before=datetime(2026, 4, 1, 6, tzinfo=UTC),
    )
    assert _ids(service.search_investigators(window)) == [99]
    earlier = replace(window, before=datetime(2026, 4, 1, 4, tzinfo=UTC))
    assert service.search_investigators(earlier) == []


def test_execution_failure_closes_statement(
    store: sqlite3.Connection,
    statements: list[db_connection.PreparedStatement],
    now: datetime,
) -> None:
    conn = _FailingConnection(store, fail_execute=True)
    service = SearchService(conn, enricher=LookupEnricher(store), clock=lambda: now)
    with pytest.raises(QueryExecutionError) as excinfo:
        service.search_actions(new_search_parameters(now=now))
    assert excinfo.value.kind == "query_execution"
    assert "database is locked" in str(excinfo.value)
    assert not hasattr(excinfo.value, "query")
    assert "SELECT" not in str(excinfo.value)
    assert excinfo.value.results == []
    assert len(statements) == 1
    assert statements[0]._cursor is None


def test_cursor_failure_keeps_partial_results(
    store: sqlite3.Connection,
    statements: list[db_connection.PreparedStatement],
    now: datetime,
) -> None:
    conn = _FailingConnection(store, fail_after=1)
    service = SearchService(
        conn,
        config=SearchConfig(fetch_size=1),
        enricher=LookupEnricher(store),
        clock=lambda: now,
    )
    with pytest.raises(CursorError) as excinfo:
        service.search_actions(new_search_parameters(now=now))
    assert excinfo.value.kind == "cursor"
    assert "disk I/O error" in str(excinfo.value)
    assert not hasattr(excinfo.value, "query")
    assert _ids(excinfo.value.results) == [12]
    assert excinfo.value.results[0].counters.sent == 0
    assert statements[0]._cursor is None
    assert conn.cursors[0].closed
