"""Search filter model and its query-string form.

An unset filter is ``None``. The legacy wire sentinels (``∞`` for identifiers,
``%`` for patterns) are only understood by ``from_query_string``, where they
mean "unset" too.

``found_anything`` follows the same rule: ``None`` leaves command searches
unrestricted, while ``True`` or ``False`` restricts them to successful commands
whose results report that value. It is a request flag rather than a filter, so
``to_query_string`` never writes it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from migsearch.core.errors import FilterParseError


DEFAULT_SEARCH_PERIOD = timedelta(days=3650)
WINDOW_TOLERANCE = timedelta(hours=1)
DEFAULT_LIMIT = 100.0
DEFAULT_TYPE = "action"

ID_SENTINEL = "∞"
PATTERN_SENTINEL = "%"


class Filter(Enum):
    BEFORE = "before"
    AFTER = "after"
    STATUS = "status"
    ACTION_ID = "actionid"
    ACTION_NAME = "actionname"
    THREAT_FAMILY = "threatfamily"
    COMMAND_ID = "commandid"
    AGENT_ID = "agentid"
    AGENT_NAME = "agentname"
    INVESTIGATOR_ID = "investigatorid"
    INVESTIGATOR_NAME = "investigatorname"
    FOUND_ANYTHING = "foundanything"


# (query key, attribute, wire sentinel) in query-string order.
_OPTIONAL_FIELDS = (
    ("agentname", "agent_name", PATTERN_SENTINEL),
    ("agentid", "agent_id", ID_SENTINEL),
    ("actionname", "action_name", PATTERN_SENTINEL),
    ("actionid", "action_id", ID_SENTINEL),
    ("commandid", "command_id", ID_SENTINEL),
    ("investigatorid", "investigator_id", ID_SENTINEL),
    ("investigatorname", "investigator_name", PATTERN_SENTINEL),
    ("threatfamily", "threat_family", PATTERN_SENTINEL),
    ("status", "status", PATTERN_SENTINEL),
)

_VALUE_FILTERS = {
    "status": Filter.STATUS,
    "action_id": Filter.ACTION_ID,
    "action_name": Filter.ACTION_NAME,
    "threat_family": Filter.THREAT_FAMILY,
    "command_id": Filter.COMMAND_ID,
    "agent_id": Filter.AGENT_ID,
    "agent_name": Filter.AGENT_NAME,
    "investigator_id": Filter.INVESTIGATOR_ID,
    "investigator_name": Filter.INVESTIGATOR_NAME,
}


def _default_before() -> datetime:
    return datetime.now(UTC) + DEFAULT_SEARCH_PERIOD


def _default_after() -> datetime:
    return datetime.now(UTC) - DEFAULT_SEARCH_PERIOD


def format_rfc3339(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True, slots=True)
class SearchParameters:
    action_id: str | None = None
    action_name: str | None = None
    agent_id: str | None = None
    agent_name: str | None = None
    command_id: str | None = None
    investigator_id: str | None = None
    investigator_name: str | None = None
    threat_family: str | None = None
    status: str | None = None
    before: datetime = field(default_factory=_default_before)
    after: datetime = field(default_factory=_default_after)
    limit: float = DEFAULT_LIMIT
    offset: float = 0.0
    type: str = DEFAULT_TYPE
    found_anything: bool | None = None

    def __post_init__(self) -> None:
        for name in ("before", "after"):
            value = getattr(self, name)
            if not isinstance(value, datetime) or value.tzinfo is None:
                raise ValueError(f"search parameter '{name}' must be a timezone-aware datetime")
        if self.limit < 0:
            raise ValueError("search parameter 'limit' must not be negative")
        if self.offset < 0:
            raise ValueError("search parameter 'offset' must not be negative")

    def active_filters(self, now: datetime | None = None) -> frozenset[Filter]:
        """Filters that constrain the search.

        The time bounds count only when they move inside the default window by
        more than the tolerance, so the default window never becomes a predicate.
        """
        now = now or datetime.now(UTC)
        active = {flt for name, flt in _VALUE_FILTERS.items() if getattr(self, name) is not None}
        margin = DEFAULT_SEARCH_PERIOD - WINDOW_TOLERANCE
        if self.before < now + margin:
            active.add(Filter.BEFORE)
        if self.after > now - margin:
            active.add(Filter.AFTER)
        return frozenset(active)

    def to_query_string(self) -> str:
        parts = [
            f"type={self.type}",
            f"after={format_rfc3339(self.after)}",
            f"before={format_rfc3339(self.before)}",
        ]
        for key, attribute, _sentinel in _OPTIONAL_FIELDS:
            value = getattr(self, attribute)
            if value is not None:
                parts.append(f"{key}={value}")
        parts.append(f"limit={self.limit:.0f}")
        if self.offset != 0:
            parts.append(f"offset={self.offset:.0f}")
        return "&".join(parts)

    def __str__(self) -> str:
        return self.to_query_string()

    @classmethod
    def from_query_string(cls, text: str, now: datetime | None = None) -> SearchParameters:
        """Parse the ``key=value&...`` form produced by ``to_query_string``.

        Values are taken literally, without percent-decoding. A ``foundanything``
        key turns the found-anything restriction on with the given value.
        """
        params = new_search_parameters(now=now)
        updates: dict[str, Any] = {}
        optional = {key: (attribute, sentinel) for key, attribute, sentinel in _OPTIONAL_FIELDS}
        for pair in text.lstrip("?").split("&"):
            if not pair:
                continue
            key, _, value = pair.partition("=")
            key = key.strip().lower()
            if key in optional:
                attribute, sentinel = optional[key]
                updates[attribute] = None if value in ("", sentinel) else value
            elif key in ("after", "before"):
                updates[key] = parse_rfc3339(value, key=key)
            elif key in ("limit", "offset"):
                updates[key] = _parse_count(key, value)
            elif key == "type":
                updates["type"] = value or DEFAULT_TYPE
            elif key == "foundanything":
                updates["found_anything"] = _parse_flag(key, value)
            else:
                raise FilterParseError(f"unknown search parameter '{key}'")
        try:
            return replace(params, **updates)
        except ValueError as exc:
            raise FilterParseError(str(exc)) from exc


def new_search_parameters(now: datetime | None = None, **filters: Any) -> SearchParameters:
    """Default parameters: a ten-year window on each side of ``now``, no filters."""
    now = now or datetime.now(UTC)
    known = {item.name for item in fields(SearchParameters)}
    unknown = set(filters) - known
    if unknown:
        raise TypeError(f"unknown search parameters: {', '.join(sorted(unknown))}")
    defaults: dict[str, Any] = {
        "before": now + DEFAULT_SEARCH_PERIOD,
        "after": now - DEFAULT_SEARCH_PERIOD,
    }
    defaults.update(filters)
    return SearchParameters(**defaults)


def parse_rfc3339(value: str, *, key: str = "time") -> datetime:
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as exc:
        raise FilterParseError(f"invalid '{key}' timestamp '{value}': {exc}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _parse_count(key: str, value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:
        raise FilterParseError(f"invalid '{key}' value '{value}'") from exc
    if parsed != parsed or parsed < 0 or parsed == float("inf"):
        raise FilterParseError(f"'{key}' must be a non-negative number")
    return parsed


def _parse_flag(key: str, value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise FilterParseError(f"'{key}' must be a boolean")
