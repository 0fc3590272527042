"""Parameterized search query assembly.

Predicates are collected as ``(template, values)`` pairs and numbered only when
the statement is rendered, so each value lands in the next ``?N`` slot in the
order the predicates were added. LIMIT and OFFSET always take the last two slots.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Callable

from migsearch.models import STATUS_SUCCESS, format_timestamp
from migsearch.search.hydrate import ACTION_COLUMNS, AGENT_COLUMNS, COMMAND_COLUMNS, INVESTIGATOR_COLUMNS
from migsearch.search.joins import Entity, Join, infer_joins, render_joins
from migsearch.search.parameters import Filter, SearchParameters
from migsearch.search.ranges import IDRange, resolve_id_ranges


@dataclass(frozen=True, slots=True)
class EntitySpec:
    entity: Entity
    table: str
    columns: tuple[str, ...]
    before_column: str
    after_column: str
    predicate_order: tuple[Filter, ...]
    group_by: tuple[str, ...]
    order_by: tuple[str, ...]


ENTITY_SPECS: dict[Entity, EntitySpec] = {
    Entity.COMMANDS: EntitySpec(
        entity=Entity.COMMANDS,
        table="commands",
        columns=COMMAND_COLUMNS,
        before_column="commands.starttime",
        after_column="commands.starttime",
        predicate_order=(
            Filter.BEFORE,
            Filter.AFTER,
            Filter.COMMAND_ID,
            Filter.STATUS,
            Filter.ACTION_ID,
            Filter.ACTION_NAME,
            Filter.INVESTIGATOR_ID,
            Filter.INVESTIGATOR_NAME,
            Filter.AGENT_ID,
            Filter.AGENT_NAME,
            Filter.FOUND_ANYTHING,
            Filter.THREAT_FAMILY,
        ),
        group_by=("commands.id", "actions.id", "agents.id"),
        order_by=("julianday(commands.starttime) DESC", "commands.id DESC"),
    ),
    Entity.ACTIONS: EntitySpec(
        entity=Entity.ACTIONS,
        table="actions",
        columns=ACTION_COLUMNS,
        before_column="actions.expireafter",
        after_column="actions.validfrom",
        predicate_order=(
            Filter.BEFORE,
            Filter.AFTER,
            Filter.STATUS,
            Filter.ACTION_ID,
            Filter.ACTION_NAME,
            Filter.INVESTIGATOR_ID,
            Filter.INVESTIGATOR_NAME,
            Filter.AGENT_ID,
            Filter.AGENT_NAME,
            Filter.COMMAND_ID,
            Filter.THREAT_FAMILY,
        ),
        group_by=("actions.id",),
        order_by=("julianday(actions.validfrom) DESC", "actions.id DESC"),
    ),
    Entity.AGENTS: EntitySpec(
        entity=Entity.AGENTS,
        table="agents",
        columns=AGENT_COLUMNS,
        before_column="agents.heartbeattime",
        after_column="agents.heartbeattime",
        predicate_order=(
            Filter.BEFORE,
            Filter.AFTER,
            Filter.AGENT_ID,
            Filter.AGENT_NAME,
            Filter.STATUS,
            Filter.ACTION_ID,
            Filter.ACTION_NAME,
            Filter.THREAT_FAMILY,
            Filter.INVESTIGATOR_ID,
            Filter.INVESTIGATOR_NAME,
            Filter.COMMAND_ID,
        ),
        group_by=("agents.id",),
        order_by=("julianday(agents.heartbeattime) DESC", "agents.id DESC"),
    ),
    Entity.INVESTIGATORS: EntitySpec(
        entity=Entity.INVESTIGATORS,
        table="investigators",
        columns=INVESTIGATOR_COLUMNS,
        before_column="investigators.lastmodified",
        after_column="investigators.lastmodified",
        predicate_order=(
            Filter.BEFORE,
            Filter.AFTER,
            Filter.INVESTIGATOR_ID,
            Filter.INVESTIGATOR_NAME,
            Filter.STATUS,
            Filter.ACTION_ID,
            Filter.ACTION_NAME,
            Filter.THREAT_FAMILY,
            Filter.COMMAND_ID,
            Filter.AGENT_ID,
            Filter.AGENT_NAME,
        ),
        group_by=("investigators.id",),
        order_by=("investigators.id ASC",),
    ),
}


Predicate = tuple[str, tuple[object, ...]]

_FOUND_ANYTHING_TEMPLATE = (
    "commands.status = {} AND commands.id IN ("
    "SELECT commands.id FROM commands, actions, json_each(commands.results) AS r "
    "WHERE commands.actionid = actions.id "
    "AND actions.id >= {} AND actions.id <= {} "
    "AND json_type(r.value, '$.foundanything') = {})"
)


def _found_anything(spec: EntitySpec, params: SearchParameters, ids: IDRange) -> Predicate:
    # json_type reports JSON booleans as the text 'true' / 'false'.
    wanted = "true" if params.found_anything else "false"
    return _FOUND_ANYTHING_TEMPLATE, (STATUS_SUCCESS, *ids.action, wanted)


# Stored timestamps may carry any UTC offset, so time bounds compare julianday instants.
_PREDICATES: dict[Filter, Callable[[EntitySpec, SearchParameters, IDRange], Predicate]] = {
    Filter.BEFORE: lambda spec, p, ids: (
        f"julianday({spec.before_column}) <= julianday({{}})",
        (format_timestamp(p.before),),
    ),
    Filter.AFTER: lambda spec, p, ids: (
        f"julianday({spec.after_column}) >= julianday({{}})",
        (format_timestamp(p.after),),
    ),
    Filter.STATUS: lambda spec, p, ids: (f"{spec.table}.status LIKE {{}}", (p.status,)),
    Filter.ACTION_ID: lambda spec, p, ids: ("actions.id >= {} AND actions.id <= {}", ids.action),
    Filter.ACTION_NAME: lambda spec, p, ids: ("actions.name LIKE {}", (p.action_name,)),
    Filter.THREAT_FAMILY: lambda spec, p, ids: (
        "json_extract(actions.threat, '$.family') LIKE {}",
        (p.threat_family,),
    ),
    Filter.COMMAND_ID: lambda spec, p, ids: ("commands.id >= {} AND commands.id <= {}", ids.command),
    Filter.AGENT_ID: lambda spec, p, ids: ("agents.id >= {} AND agents.id <= {}", ids.agent),
    Filter.AGENT_NAME: lambda spec, p, ids: ("agents.name LIKE {}", (p.agent_name,)),
    Filter.INVESTIGATOR_ID: lambda spec, p, ids: (
        "investigators.id >= {} AND investigators.id <= {}",
        ids.investigator,
    ),
    Filter.INVESTIGATOR_NAME: lambda spec, p, ids: ("investigators.name LIKE {}", (p.investigator_name,)),
    Filter.FOUND_ANYTHING: _found_anything,
}


@dataclass(slots=True)
class QueryBuilder:
    predicates: list[Predicate] = field(default_factory=list)

    def where(self, template: str, *values: object) -> None:
        if template.count("{}") != len(values):
            raise ValueError(f"predicate '{template}' expects {template.count('{}')} values, got {len(values)}")
        self.predicates.append((template, tuple(values)))

    def build(
        self,
        *,
        columns: tuple[str, ...],
        table: str,
        joins: str,
        group_by: tuple[str, ...],
        order_by: tuple[str, ...],
        limit: int,
        offset: int,
    ) -> tuple[str, list[object]]:
        values: list[object] = []

        def bind(template: str, bound: tuple[object, ...]) -> str:
            start = len(values) + 1
            values.extend(bound)
            return template.format(*(f"?{start + index}" for index in range(len(bound))))

        lines = [f"SELECT {', '.join(columns)}", f"FROM {table}"]
        if joins:
            lines.append(joins)
        clauses = [bind(template, bound) for template, bound in self.predicates]
        if clauses:
            lines.append("WHERE " + " AND ".join(clauses))
        lines.append(f"GROUP BY {', '.join(group_by)}")
        lines.append(f"ORDER BY {', '.join(order_by)}")
        lines.append(bind("LIMIT {} OFFSET {}", (limit, offset)))
        return "\n".join(lines), values


@dataclass(frozen=True, slots=True)
class SearchQuery:
    entity: Entity
    text: str
    values: tuple[object, ...]
    filters: frozenset[Filter]
    joins: Join


def build_search_query(
    entity: Entity,
    params: SearchParameters,
    ids: IDRange | None = None,
    *,
    found_anything: bool = False,
    now: datetime | None = None,
) -> SearchQuery:
    if found_anything and entity is not Entity.COMMANDS:
        raise ValueError("the found-anything restriction only applies to command searches")
    ids = ids if ids is not None else resolve_id_ranges(params)
    spec = ENTITY_SPECS[entity]
    filters = params.active_filters(now or datetime.now(UTC))
    if found_anything:
        filters = filters | {Filter.FOUND_ANYTHING}
    joins = infer_joins(entity, filters)

    builder = QueryBuilder()
    for flt in spec.predicate_order:
        if flt in filters:
            template, values = _PREDICATES[flt](spec, params, ids)
            builder.where(template, *values)
    text, values = builder.build(
        columns=spec.columns,
        table=spec.table,
        joins=render_joins(entity, joins),
        group_by=spec.group_by,
        order_by=spec.order_by,
        limit=int(params.limit),
        offset=int(params.offset),
    )
    return SearchQuery(entity=entity, text=text, values=tuple(values), filters=filters, joins=joins)
