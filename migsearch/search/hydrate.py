"""Row hydration for search results.

Each entity has a fixed column projection and a decoder that walks a returned
row in that order. Scalar columns are converted in place; JSON sub-documents
are decoded one at a time so the first bad document names itself in the error.
"""

from __future__ import annotations

from datetime import datetime
import json
from typing import Any, Callable, Sequence, TypeVar

from migsearch.core.errors import RowScanError, SubDocumentError
from migsearch.models import (
    Action,
    Agent,
    AgentEnv,
    AgentTag,
    Command,
    CommandResult,
    Description,
    Investigator,
    Operation,
    Threat,
    parse_timestamp,
    signatures_from,
)


T = TypeVar("T")

ACTION_COLUMNS = (
    "actions.id",
    "actions.name",
    "actions.target",
    "actions.description",
    "actions.threat",
    "actions.operations",
    "actions.validfrom",
    "actions.expireafter",
    "actions.starttime",
    "actions.finishtime",
    "actions.lastupdatetime",
    "actions.status",
    "actions.pgpsignatures",
    "actions.syntaxversion",
)

COMMAND_COLUMNS = (
    "commands.id",
    "commands.status",
    "commands.results",
    "commands.starttime",
    "commands.finishtime",
    "actions.id",
    "actions.name",
    "actions.target",
    "actions.description",
    "actions.threat",
    "actions.operations",
    "actions.validfrom",
    "actions.expireafter",
    "actions.pgpsignatures",
    "actions.syntaxversion",
    "agents.id",
    "agents.name",
    "agents.version",
    "agents.tags",
    "agents.environment",
)

AGENT_COLUMNS = (
    "agents.id",
    "agents.name",
    "agents.queueloc",
    "agents.mode",
    "agents.version",
    "agents.pid",
    "agents.starttime",
    "agents.destructiontime",
    "agents.heartbeattime",
    "agents.status",
    "agents.tags",
    "agents.environment",
)

INVESTIGATOR_COLUMNS = (
    "investigators.id",
    "investigators.name",
    "investigators.pgpfingerprint",
    "investigators.status",
    "investigators.createdat",
    "investigators.lastmodified",
)


def _int(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected integer column, got {type(value).__name__}")
    return int(value)


def _text(value: object, *, nullable: bool = False) -> str:
    if value is None and nullable:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"expected text column, got {type(value).__name__}")
    return value


def _time(value: object, *, nullable: bool = False) -> datetime | None:
    if value is None and nullable:
        return None
    return parse_timestamp(value)


def _scan(row: Sequence[object], columns: Sequence[str], record: str, convert: Callable[[], T]) -> T:
    if len(row) != len(columns):
        raise RowScanError(f"failed to retrieve {record}: expected {len(columns)} columns, got {len(row)}")
    try:
        return convert()
    except (TypeError, ValueError) as exc:
        raise RowScanError(f"failed to retrieve {record}: {exc}") from exc


def decode_document(raw: object, document: str, build: Callable[[Any], T]) -> T:
    """Decode one JSON column. SQL NULL decodes like JSON ``null``."""
    payload: Any = None
    if raw is not None:
        if not isinstance(raw, (str, bytes, bytearray)):
            raise SubDocumentError(document, f"unexpected column type {type(raw).__name__}")
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise SubDocumentError(document, exc) from exc
    try:
        return build(payload)
    except (TypeError, ValueError) as exc:
        raise SubDocumentError(document, exc) from exc


def hydrate_action(row: Sequence[object]) -> Action:
    action = _scan(
        row,
        ACTION_COLUMNS,
        "action",
        lambda: Action(
            id=_int(row[0]),
            name=_text(row[1]),
            target=_text(row[2]),
            valid_from=_time(row[6]),
            expire_after=_time(row[7]),
            start_time=_time(row[8], nullable=True),
            finish_time=_time(row[9], nullable=True),
            last_update_time=_time(row[10], nullable=True),
            status=_text(row[11], nullable=True),
            syntax_version=_int(row[13]),
        ),
    )
    action.threat = decode_document(row[4], "action threat", Threat.from_dict)
    action.description = decode_document(row[3], "action description", Description.from_dict)
    action.operations = decode_document(row[5], "action operations", Operation.list_from)
    action.pgp_signatures = decode_document(row[12], "action signatures", signatures_from)
    return action


def hydrate_command(row: Sequence[object]) -> Command:
    command = _scan(
        row,
        COMMAND_COLUMNS,
        "command",
        lambda: Command(
            id=_int(row[0]),
            status=_text(row[1]),
            start_time=_time(row[3], nullable=True),
            finish_time=_time(row[4], nullable=True),
            action=Action(
                id=_int(row[5]),
                name=_text(row[6]),
                target=_text(row[7]),
                valid_from=_time(row[11]),
                expire_after=_time(row[12]),
                syntax_version=_int(row[14]),
            ),
            agent=Agent(
                id=_int(row[15]),
                name=_text(row[16]),
                version=_text(row[17], nullable=True),
            ),
        ),
    )
    command.action.threat = decode_document(row[9], "action threat", Threat.from_dict)
    command.results = decode_document(row[2], "command results", CommandResult.list_from)
    command.action.description = decode_document(row[8], "action description", Description.from_dict)
    command.action.operations = decode_document(row[10], "action operations", Operation.list_from)
    command.action.pgp_signatures = decode_document(row[13], "action signatures", signatures_from)
    command.agent.tags = decode_document(row[18], "agent tags", AgentTag.list_from)
    command.agent.env = decode_document(row[19], "agent environment", AgentEnv.from_dict)
    return command


def hydrate_agent(row: Sequence[object]) -> Agent:
    agent = _scan(
        row,
        AGENT_COLUMNS,
        "agent data",
        lambda: Agent(
            id=_int(row[0]),
            name=_text(row[1]),
            queue_loc=_text(row[2]),
            mode=_text(row[3], nullable=True),
            version=_text(row[4], nullable=True),
            pid=_int(row[5]) if row[5] is not None else 0,
            start_time=_time(row[6], nullable=True),
            destruction_time=_time(row[7], nullable=True),
            heartbeat_time=_time(row[8]),
            status=_text(row[9], nullable=True),
        ),
    )
    agent.tags = decode_document(row[10], "agent tags", AgentTag.list_from)
    agent.env = decode_document(row[11], "agent environment", AgentEnv.from_dict)
    return agent


def hydrate_investigator(row: Sequence[object]) -> Investigator:
    return _scan(
        row,
        INVESTIGATOR_COLUMNS,
        "investigator data",
        lambda: Investigator(
            id=_int(row[0]),
            name=_text(row[1]),
            pgp_fingerprint=_text(row[2], nullable=True),
            status=_text(row[3]),
            created_at=_time(row[4]),
            last_modified=_time(row[5]),
        ),
    )
