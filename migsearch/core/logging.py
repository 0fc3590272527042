"""Structured ECS logging for search operations."""

from __future__ import annotations

from datetime import UTC, datetime
import json
import logging
from pathlib import Path

from migsearch.config.schema import LoggingConfig


def _strip_empty(value: object) -> object | None:
    if isinstance(value, dict):
        cleaned = {key: _strip_empty(item) for key, item in value.items()}
        return {key: item for key, item in cleaned.items() if item is not None} or None
    if isinstance(value, list):
        cleaned_list = [_strip_empty(item) for item in value]
        return [item for item in cleaned_list if item is not None] or None
    if value in ("", None):
        return None
    return value


class ECSJsonFormatter(logging.Formatter):
    """One JSON object per record: ECS base fields plus a ``migsearch`` block."""

    def __init__(self, service_name: str = "migsearch") -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        event = {
            "kind": "event",
            "category": getattr(record, "event_category", "database"),
            "action": getattr(record, "event_action", None),
            "type": getattr(record, "event_type", None),
            "outcome": getattr(record, "event_outcome", None),
        }
        payload: dict[str, object] = {
            "@timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(timespec="microseconds"),
            "message": record.getMessage(),
            "log": {"level": record.levelname.lower(), "logger": record.name},
            "service": {"name": getattr(record, "service_name", self.service_name)},
            "event": event,
            "error": {
                "type": getattr(record, "error_type", None),
                "message": getattr(record, "error_message", None),
            },
            "migsearch": {
                "service": getattr(record, "service", None),
                "payload": getattr(record, "payload", None),
            },
        }
        return json.dumps(_strip_empty(payload) or {}, separators=(",", ":"), default=str)


def _sink_handler(config: LoggingConfig, formatter: logging.Formatter) -> logging.Handler:
    if config.sink == "file":
        file_path = config.file_path or "logs/migsearch.log"
        log_file = Path(file_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    return handler


def configure_logging(config: LoggingConfig, force: bool = False) -> None:
    root = logging.getLogger("migsearch")
    if getattr(root, "_migsearch_configured", False) and not force:
        return

    formatter = ECSJsonFormatter(service_name=config.service_name)
    root.setLevel(config.level)
    for existing in list(root.handlers):
        existing.close()
    root.handlers.clear()
    root.addHandler(_sink_handler(config, formatter))

    root.propagate = False
    setattr(root, "_migsearch_configured", True)


def get_logger(name: str, level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    if name.startswith("migsearch"):
        parent = logging.getLogger("migsearch")
        if parent.handlers:
            logger.setLevel(logging.NOTSET)
            logger.propagate = True
            return logger

    handler = logging.StreamHandler()
    handler.setFormatter(ECSJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def emit_metric(
    logger: logging.Logger,
    *,
    name: str,
    value: float,
    service: str = "search",
    payload: dict[str, object] | None = None,
    level: str = "INFO",
) -> None:
    metric_name = name.strip() or "metric"
    metric_value = float(value)
    metric_payload: dict[str, object] = {"metric_name": metric_name, "metric_value": metric_value}
    if payload:
        metric_payload.update(payload)
    logger.log(
        getattr(logging, level.upper(), logging.INFO),
        f"metric:{metric_name}",
        extra={
            "service": service,
            "event_action": metric_name,
            "event_category": "metric",
            "event_type": "info",
            "event_outcome": "success",
            "payload": metric_payload,
        },
    )
