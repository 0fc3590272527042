"""Enrichment of hydrated actions with counters and signing investigators."""

from __future__ import annotations

import sqlite3
from typing import Protocol, Sequence

from migsearch.core.errors import EnrichmentError, SearchError
from migsearch.db import lookups
from migsearch.models import Action


class Enricher(Protocol):
    """Fills the derived fields of actions.

    The service calls ``enrich`` with one action per row by default, or with the
    whole page at once when batch enrichment is configured. A batching
    implementation can serve the second call in one round-trip.
    """

    def enrich(self, actions: Sequence[Action]) -> None: ...


class LookupEnricher:
    """Two lookups per action, one action after the other."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def enrich(self, actions: Sequence[Action]) -> None:
        for action in actions:
            try:
                action.counters = lookups.aggregate_counters(self._conn, action.id)
            except sqlite3.Error as exc:
                raise EnrichmentError(f"failed to retrieve action counters: {exc}") from exc
            try:
                action.investigators = lookups.investigators_for_action(self._conn, action.id)
            except (sqlite3.Error, SearchError) as exc:
                raise EnrichmentError(f"failed to retrieve action investigators: {exc}") from exc
