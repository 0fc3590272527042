"""Dataclasses for top-level application config."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class DatabaseConfig:
    path: str = ""
    timeout_seconds: float = 5.0
    journal_mode: str = "wal"
    foreign_keys: bool = True


@dataclass(slots=True)
class SearchConfig:
    batch_enrichment: bool = False
    log_queries: bool = False
    fetch_size: int = 100


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    fmt: str = "ecs_json"
    sink: str = "stdout"
    file_path: str | None = None
    service_name: str = "migsearch"


@dataclass(slots=True)
class AppConfig:
    environment: str = "development"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
VALID_LOG_FORMATS = {"json", "ecs_json"}
VALID_LOG_SINKS = {"stdout", "file"}
VALID_JOURNAL_MODES = {"delete", "truncate", "persist", "memory", "wal", "off"}


def _parse_bool_value(raw: Any, *, field_name: str, default: bool) -> bool:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        normalized = raw.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"'{field_name}' must be a boolean")


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    raw = data.get(name, {})
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"'{name}' must be an object")
    return raw


def parse_config(data: dict[str, Any]) -> AppConfig:
    environment = str(data.get("environment", "development"))

    database_raw = _section(data, "database")
    timeout_seconds = float(database_raw.get("timeout_seconds", 5.0))
    if timeout_seconds <= 0:
        raise ValueError("database timeout_seconds must be greater than zero")
    journal_mode = str(database_raw.get("journal_mode", "wal")).strip().lower()
    if journal_mode not in VALID_JOURNAL_MODES:
        raise ValueError(f"invalid database journal_mode '{journal_mode}'")
    database_config = DatabaseConfig(
        path=str(database_raw.get("path", "") or "").strip(),
        timeout_seconds=timeout_seconds,
        journal_mode=journal_mode,
        foreign_keys=_parse_bool_value(
            database_raw.get("foreign_keys"),
            field_name="database.foreign_keys",
            default=True,
        ),
    )

    search_raw = _section(data, "search")
    fetch_size = int(search_raw.get("fetch_size", 100))
    if fetch_size < 1 or fetch_size > 10000:
        raise ValueError("search fetch_size must be between 1 and 10000")
    search_config = SearchConfig(
        batch_enrichment=_parse_bool_value(
            search_raw.get("batch_enrichment"),
            field_name="search.batch_enrichment",
            default=False,
        ),
        log_queries=_parse_bool_value(
            search_raw.get("log_queries"),
            field_name="search.log_queries",
            default=False,
        ),
        fetch_size=fetch_size,
    )

    logging_raw = _section(data, "logging")
    level = str(logging_raw.get("level", "INFO")).upper()
    if level not in VALID_LOG_LEVELS:
        raise ValueError(f"invalid log level '{level}'")
    fmt = str(logging_raw.get("fmt", "ecs_json"))
    if fmt not in VALID_LOG_FORMATS:
        raise ValueError(f"invalid log format '{fmt}'")
    sink = str(logging_raw.get("sink", "stdout"))
    if sink not in VALID_LOG_SINKS:
        raise ValueError(f"invalid log sink '{sink}'")
    file_path = logging_raw.get("file_path")
    if sink == "file" and not file_path:
        raise ValueError("logging file_path is required when sink is 'file'")
    logging_config = LoggingConfig(
        level=level,
        fmt=fmt,
        sink=sink,
        file_path=str(file_path) if file_path else None,
        service_name=str(logging_raw.get("service_name", "migsearch")),
    )

    return AppConfig(
        environment=environment,
        database=database_config,
        search=search_config,
        logging=logging_config,
    )
