"""Entity search services: resolve, build, execute, hydrate, enrich."""

from __future__ import annotations

from datetime import UTC, datetime
import sqlite3
import time
from typing import Any, Callable, Sequence

from migsearch.config.schema import SearchConfig
from migsearch.core.errors import (
    CursorError,
    FilterParseError,
    QueryExecutionError,
    QueryPrepareError,
    SearchError,
)
from migsearch.core.logging import emit_metric, get_logger
from migsearch.db.connection import PreparedStatement
from migsearch.models import Action, Agent, Command, Investigator
from migsearch.search.builder import SearchQuery, build_search_query
from migsearch.search.enrich import Enricher, LookupEnricher
from migsearch.search.hydrate import hydrate_action, hydrate_agent, hydrate_command, hydrate_investigator
from migsearch.search.joins import Entity, Join
from migsearch.search.parameters import SearchParameters
from migsearch.search.ranges import resolve_id_ranges


_HYDRATORS: dict[Entity, Callable[[Sequence[object]], Any]] = {
    Entity.ACTIONS: hydrate_action,
    Entity.COMMANDS: hydrate_command,
    Entity.AGENTS: hydrate_agent,
    Entity.INVESTIGATORS: hydrate_investigator,
}

# Records that carry an action to enrich.
_ACTION_OF: dict[Entity, Callable[[Any], Action]] = {
    Entity.ACTIONS: lambda record: record,
    Entity.COMMANDS: lambda record: record.action,
}

_TYPE_ALIASES = {
    "action": Entity.ACTIONS,
    "actions": Entity.ACTIONS,
    "command": Entity.COMMANDS,
    "commands": Entity.COMMANDS,
    "agent": Entity.AGENTS,
    "agents": Entity.AGENTS,
    "investigator": Entity.INVESTIGATORS,
    "investigators": Entity.INVESTIGATORS,
}


def entity_for_type(search_type: str) -> Entity:
    try:
        return _TYPE_ALIASES[search_type.strip().lower()]
    except KeyError as exc:
        raise FilterParseError(f"unknown search type '{search_type}'") from exc


class SearchService:
    """Runs searches on one connection.

    Calls are synchronous: one primary statement, then the enrichment lookups in
    row order. Nothing is cached or retried; store failures surface as
    ``SearchError`` subclasses.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        config: SearchConfig | None = None,
        enricher: Enricher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._conn = conn
        self._config = config or SearchConfig()
        self._enricher = enricher or LookupEnricher(conn)
        self._clock = clock or (lambda: datetime.now(UTC))
        self.logger = get_logger("migsearch.search")

    def search(self, params: SearchParameters) -> list[Any]:
        entity = entity_for_type(params.type)
        restricted = params.found_anything is not None
        if entity is Entity.COMMANDS:
            return self.search_commands(params, found_anything=restricted)
        if restricted:
            raise FilterParseError("the found-anything restriction only applies to command searches")
        return self._run(entity, params)

    def search_actions(self, params: SearchParameters) -> list[Action]:
        return self._run(Entity.ACTIONS, params)

    def search_commands(self, params: SearchParameters, found_anything: bool = False) -> list[Command]:
        return self._run(Entity.COMMANDS, params, found_anything=found_anything)

    def search_agents(self, params: SearchParameters) -> list[Agent]:
        return self._run(Entity.AGENTS, params)

    def search_investigators(self, params: SearchParameters) -> list[Investigator]:
        return self._run(Entity.INVESTIGATORS, params)

    def _run(self, entity: Entity, params: SearchParameters, *, found_anything: bool = False) -> list[Any]:
        started = time.monotonic()
        try:
            ids = resolve_id_ranges(params)
            query = build_search_query(entity, params, ids, found_anything=found_anything, now=self._clock())
            self._log_query(query)
            results = self._execute(query)
        except SearchError as exc:
            self.logger.warning(
                f"{entity.value} search failed",
                extra={
                    "service": "search",
                    "event_action": "search",
                    "event_outcome": "failure",
                    "error_type": exc.kind,
                    "error_message": str(exc),
                    "payload": {"entity": entity.value, "partial_results": len(exc.results)},
                },
            )
            raise
        emit_metric(
            self.logger,
            name="search_results",
            value=len(results),
            payload={
                "entity": entity.value,
                "elapsed_ms": round((time.monotonic() - started) * 1000.0, 3),
            },
        )
        return results

    def _log_query(self, query: SearchQuery) -> None:
        payload: dict[str, object] = {
            "entity": query.entity.value,
            "filters": sorted(flt.value for flt in query.filters),
            "joins": [flag.name.lower() for flag in Join if flag in query.joins],
            "parameter_count": len(query.values),
        }
        if self._config.log_queries:
            payload["query"] = query.text
        self.logger.debug(
            "search query built",
            extra={"service": "search", "event_action": "search_query", "payload": payload},
        )

    def _execute(self, query: SearchQuery) -> list[Any]:
        hydrate = _HYDRATORS[query.entity]
        action_of = _ACTION_OF.get(query.entity)
        batch = self._config.batch_enrichment
        results: list[Any] = []
        with PreparedStatement(self._conn, query.text) as statement:
            try:
                statement.compile(query.values)
            except sqlite3.Error as exc:
                raise QueryPrepareError(f"failed to prepare search statement: {exc}", query=query.text) from exc
            try:
                cursor = statement.execute(query.values)
            except sqlite3.Error as exc:
                raise QueryExecutionError(f"failed to find {query.entity.value}: {exc}") from exc
            while True:
                try:
                    rows = cursor.fetchmany(self._config.fetch_size)
                except sqlite3.Error as exc:
                    raise CursorError(f"failed to complete database query: {exc}", results=results) from exc
                if not rows:
                    break
                for row in rows:
                    try:
                        record = hydrate(row)
                        if action_of is not None and not batch:
                            self._enricher.enrich([action_of(record)])
                    except SearchError as exc:
                        exc.results = results
                        raise
                    results.append(record)
        if action_of is not None and batch and results:
            try:
                self._enricher.enrich([action_of(record) for record in results])
            except SearchError as exc:
                exc.results = results
                raise
        return results
