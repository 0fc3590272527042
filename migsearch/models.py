"""Domain records populated by the search hydrator."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import UTC, datetime
from typing import Any


STATUS_SENT = "sent"
STATUS_SUCCESS = "success"
STATUS_CANCELLED = "cancelled"
STATUS_EXPIRED = "expired"
STATUS_FAILED = "failed"
STATUS_TIMEOUT = "timeout"

TERMINAL_COMMAND_STATUSES = (
    STATUS_SUCCESS,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    STATUS_FAILED,
    STATUS_TIMEOUT,
)


def format_timestamp(value: datetime) -> str:
    """Render a timestamp the way the store keeps it: UTC ISO-8601, second precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="seconds")


def parse_timestamp(value: object) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip())
    else:
        raise TypeError(f"expected timestamp text, got {type(value).__name__}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _mapping(payload: object, name: str) -> dict[str, Any]:
    # JSON null decodes to the zero value.
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise TypeError(f"{name} must be an object, got {type(payload).__name__}")
    return payload


def _sequence(payload: object, name: str) -> list[Any]:
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise TypeError(f"{name} must be an array, got {type(payload).__name__}")
    return payload


def _string_field(data: dict[str, Any], key: str) -> str:
    value = data.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"field '{key}' must be a string")
    return value


@dataclass(slots=True)
class Description:
    author: str = ""
    email: str = ""
    url: str = ""
    revision: float = 0.0

    @classmethod
    def from_dict(cls, payload: object) -> Description:
        data = _mapping(payload, "description")
        return cls(
            author=_string_field(data, "author"),
            email=_string_field(data, "email"),
            url=_string_field(data, "url"),
            revision=float(data.get("revision", 0) or 0),
        )


@dataclass(slots=True)
class Threat:
    ref: str = ""
    level: str = ""
    family: str = ""
    type: str = ""

    @classmethod
    def from_dict(cls, payload: object) -> Threat:
        data = _mapping(payload, "threat")
        return cls(
            ref=_string_field(data, "ref"),
            level=_string_field(data, "level"),
            family=_string_field(data, "family"),
            type=_string_field(data, "type"),
        )


@dataclass(slots=True)
class Operation:
    module: str = ""
    parameters: Any = None
    want_compressed: bool = False

    @classmethod
    def list_from(cls, payload: object) -> list[Operation]:
        operations: list[Operation] = []
        for item in _sequence(payload, "operations"):
            data = _mapping(item, "operation")
            operations.append(
                cls(
                    module=_string_field(data, "module"),
                    parameters=data.get("parameters"),
                    want_compressed=bool(data.get("want_compressed", False)),
                )
            )
        return operations


def signatures_from(payload: object) -> list[str]:
    signatures: list[str] = []
    for item in _sequence(payload, "pgpsignatures"):
        if not isinstance(item, str):
            raise TypeError("pgp signatures must be strings")
        signatures.append(item)
    return signatures


@dataclass(slots=True)
class ActionCounters:
    sent: int = 0
    done: int = 0
    in_flight: int = 0
    success: int = 0
    cancelled: int = 0
    expired: int = 0
    failed: int = 0
    timeout: int = 0


@dataclass(slots=True)
class Investigator:
    id: int = 0
    name: str = ""
    pgp_fingerprint: str = ""
    status: str = ""
    created_at: datetime | None = None
    last_modified: datetime | None = None


@dataclass(slots=True)
class Action:
    id: int = 0
    name: str = ""
    target: str = ""
    description: Description = field(default_factory=Description)
    threat: Threat = field(default_factory=Threat)
    operations: list[Operation] = field(default_factory=list)
    valid_from: datetime | None = None
    expire_after: datetime | None = None
    start_time: datetime | None = None
    finish_time: datetime | None = None
    last_update_time: datetime | None = None
    status: str = ""
    pgp_signatures: list[str] = field(default_factory=list)
    syntax_version: int = 0
    counters: ActionCounters = field(default_factory=ActionCounters)
    investigators: list[Investigator] = field(default_factory=list)


@dataclass(slots=True)
class AgentTag:
    name: str = ""
    value: str = ""

    @classmethod
    def list_from(cls, payload: object) -> list[AgentTag]:
        tags: list[AgentTag] = []
        for item in _sequence(payload, "tags"):
            data = _mapping(item, "tag")
            tags.append(cls(name=_string_field(data, "name"), value=_string_field(data, "value")))
        return tags


@dataclass(slots=True)
class AgentEnv:
    init: str = ""
    ident: str = ""
    os: str = ""
    arch: str = ""
    is_proxied: bool = False
    proxy: str = ""
    addresses: list[str] = field(default_factory=list)
    public_ip: str = ""
    modules: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: object) -> AgentEnv:
        data = _mapping(payload, "environment")
        return cls(
            init=_string_field(data, "init"),
            ident=_string_field(data, "ident"),
            os=_string_field(data, "os"),
            arch=_string_field(data, "arch"),
            is_proxied=bool(data.get("isproxied", False)),
            proxy=_string_field(data, "proxy"),
            addresses=[str(item) for item in _sequence(data.get("addresses"), "addresses")],
            public_ip=_string_field(data, "publicip"),
            modules=[str(item) for item in _sequence(data.get("modules"), "modules")],
        )


@dataclass(slots=True)
class Agent:
    id: int = 0
    name: str = ""
    queue_loc: str = ""
    mode: str = ""
    version: str = ""
    pid: int = 0
    start_time: datetime | None = None
    destruction_time: datetime | None = None
    heartbeat_time: datetime | None = None
    status: str = ""
    tags: list[AgentTag] = field(default_factory=list)
    env: AgentEnv = field(default_factory=AgentEnv)


@dataclass(slots=True)
class CommandResult:
    found_anything: bool = False
    success: bool = False
    elements: Any = None
    statistics: Any = None
    errors: list[str] = field(default_factory=list)

    @classmethod
    def list_from(cls, payload: object) -> list[CommandResult]:
        results: list[CommandResult] = []
        for item in _sequence(payload, "results"):
            data = _mapping(item, "result")
            results.append(
                cls(
                    found_anything=bool(data.get("foundanything", False)),
                    success=bool(data.get("success", False)),
                    elements=data.get("elements"),
                    statistics=data.get("statistics"),
                    errors=[str(err) for err in _sequence(data.get("errors"), "errors")],
                )
            )
        return results


@dataclass(slots=True)
class Command:
    id: int = 0
    status: str = ""
    results: list[CommandResult] = field(default_factory=list)
    start_time: datetime | None = None
    finish_time: datetime | None = None
    action: Action = field(default_factory=Action)
    agent: Agent = field(default_factory=Agent)


def to_jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(asdict(value))
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, datetime):
        return format_timestamp(value)
    return value
