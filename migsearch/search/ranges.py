"""Identifier filters resolved into inclusive numeric ranges."""

from __future__ import annotations

from dataclasses import dataclass
import math
import re

from migsearch.core.errors import FilterParseError
from migsearch.search.parameters import SearchParameters


# Largest integer a double holds exactly. Identifiers arrive as JSON numbers,
# so no legitimate identifier exceeds it.
MAX_JSON_SAFE_ID = 9007199254740991

FULL_RANGE: tuple[float, float] = (0.0, float(MAX_JSON_SAFE_ID))

_DECIMAL_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")


@dataclass(frozen=True, slots=True)
class IDRange:
    action: tuple[float, float] = FULL_RANGE
    command: tuple[float, float] = FULL_RANGE
    agent: tuple[float, float] = FULL_RANGE
    investigator: tuple[float, float] = FULL_RANGE


def parse_identifier(value: str, field_name: str) -> float:
    text = value.strip()
    if not _DECIMAL_RE.match(text):
        raise FilterParseError(f"invalid {field_name} '{value}': not a base-10 number")
    parsed = float(text)
    if not math.isfinite(parsed):
        raise FilterParseError(f"invalid {field_name} '{value}': out of range")
    return parsed


def _range(value: str | None, field_name: str) -> tuple[float, float]:
    if value is None:
        return FULL_RANGE
    parsed = parse_identifier(value, field_name)
    return (parsed, parsed)


def resolve_id_ranges(params: SearchParameters) -> IDRange:
    return IDRange(
        action=_range(params.action_id, "action id"),
        command=_range(params.command_id, "command id"),
        agent=_range(params.agent_id, "agent id"),
        investigator=_range(params.investigator_id, "investigator id"),
    )
