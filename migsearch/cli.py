"""CLI entry point for migsearch."""

from __future__ import annotations

import argparse
from contextlib import closing
from dataclasses import replace
import json
from pathlib import Path
import sys
from typing import Any, Sequence

from migsearch.config.loader import DEFAULT_CONFIG_PATH, initialize_config, load_config
from migsearch.core.errors import FilterParseError, SearchError
from migsearch.core.logging import configure_logging
from migsearch.db.connection import connect, resolve_db_path
from migsearch.db.schema import ensure_schema
from migsearch.models import to_jsonable
from migsearch.search.parameters import SearchParameters, new_search_parameters, parse_rfc3339
from migsearch.search.service import SearchService


DEFAULT_CONFIG = DEFAULT_CONFIG_PATH

# Subcommand entity names map to the singular type used in query strings.
_WIRE_TYPES = {
    "actions": "action",
    "commands": "command",
    "agents": "agent",
    "investigators": "investigator",
}

_FILTER_FLAGS = (
    ("--actionid", "action_id"),
    ("--actionname", "action_name"),
    ("--agentid", "agent_id"),
    ("--agentname", "agent_name"),
    ("--commandid", "command_id"),
    ("--investigatorid", "investigator_id"),
    ("--investigatorname", "investigator_name"),
    ("--threatfamily", "threat_family"),
    ("--status", "status"),
)


def _add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--query", type=str, default=None, help="Start from a saved search query string")
    for flag, dest in _FILTER_FLAGS:
        parser.add_argument(flag, dest=dest, type=str, default=None)
    parser.add_argument("--before", type=str, default=None, help="RFC3339 upper time bound")
    parser.add_argument("--after", type=str, default=None, help="RFC3339 lower time bound")
    parser.add_argument("--limit", type=float, default=None)
    parser.add_argument("--offset", type=float, default=None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="migsearch")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Create starter config")
    init_parser.add_argument("--config", type=Path, default=Path("./config/migsearch.yml"))
    init_parser.add_argument("--force", action="store_true")

    init_db_parser = subparsers.add_parser("init-db", help="Create the search schema in the configured database")
    init_db_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)

    search_parser = subparsers.add_parser("search", help="Search actions, commands, agents or investigators")
    search_parser.add_argument("entity", choices=sorted(_WIRE_TYPES))
    search_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)
    search_parser.add_argument(
        "--found-anything",
        dest="found_anything",
        choices=["true", "false"],
        default=None,
        help="Only successful commands whose results report this found-anything value",
    )
    _add_filter_arguments(search_parser)

    query_string_parser = subparsers.add_parser("query-string", help="Print the canonical query string for filters")
    query_string_parser.add_argument("--type", dest="search_type", type=str, default=None)
    _add_filter_arguments(query_string_parser)

    return parser


def _parameters_from_args(args: argparse.Namespace, *, search_type: str | None) -> SearchParameters:
    if args.query:
        params = SearchParameters.from_query_string(args.query)
    else:
        params = new_search_parameters()
    updates: dict[str, Any] = {}
    if search_type is not None:
        updates["type"] = search_type
    for _flag, dest in _FILTER_FLAGS:
        value = getattr(args, dest)
        if value is not None:
            updates[dest] = value
    for key in ("before", "after"):
        raw = getattr(args, key)
        if raw is not None:
            updates[key] = parse_rfc3339(raw, key=key)
    if args.limit is not None:
        updates["limit"] = args.limit
    if args.offset is not None:
        updates["offset"] = args.offset
    try:
        return replace(params, **updates)
    except ValueError as exc:
        raise FilterParseError(str(exc)) from exc


def cmd_init(config_path: Path, force: bool) -> int:
    initialize_config(config_path, force=force)
    print(f"wrote config: {config_path}")
    return 0


def cmd_init_db(config_path: Path) -> int:
    config = load_config(config_path)
    configure_logging(config.logging)
    with closing(connect(config.database)) as conn:
        ensure_schema(conn)
    print(json.dumps({"db_path": resolve_db_path(config.database), "schema": "ready"}, indent=2))
    return 0


def cmd_search(config_path: Path, args: argparse.Namespace) -> int:
    config = load_config(config_path)
    configure_logging(config.logging)
    try:
        params = _parameters_from_args(args, search_type=_WIRE_TYPES[args.entity])
        if args.found_anything is not None:
            params = replace(params, found_anything=args.found_anything == "true")
        with closing(connect(config.database)) as conn:
            results = SearchService(conn, config=config.search).search(params)
    except SearchError as exc:
        print(f"search failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps({"query": str(params), "results": to_jsonable(results)}, indent=2))
    return 0


def cmd_query_string(args: argparse.Namespace) -> int:
    try:
        params = _parameters_from_args(args, search_type=args.search_type)
    except SearchError as exc:
        print(f"invalid filters: {exc}", file=sys.stderr)
        return 1
    print(str(params))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "init":
        return cmd_init(args.config, args.force)
    if args.command == "init-db":
        return cmd_init_db(args.config)
    if args.command == "search":
        if args.found_anything is not None and args.entity != "commands":
            parser.error("--found-anything only applies to command searches")
        return cmd_search(args.config, args)
    if args.command == "query-string":
        return cmd_query_string(args)

    parser.error(f"unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
