"""Per-action lookups used to enrich hydrated search results."""

from __future__ import annotations

import sqlite3

from migsearch.models import STATUS_SENT, TERMINAL_COMMAND_STATUSES, ActionCounters, Investigator
from migsearch.search.hydrate import INVESTIGATOR_COLUMNS, hydrate_investigator


def aggregate_counters(conn: sqlite3.Connection, action_id: int) -> ActionCounters:
    """Count the commands of one action by status.

    An action that never produced a command gets all-zero counters.
    """
    rows = conn.execute(
        """
        SELECT status, COUNT(*)
        FROM commands
        WHERE actionid = ?
        GROUP BY status
        """,
        (int(action_id),),
    ).fetchall()
    counters = ActionCounters()
    for status, count in rows:
        count = int(count)
        counters.sent += count
        if status == STATUS_SENT:
            counters.in_flight += count
        elif status in TERMINAL_COMMAND_STATUSES:
            setattr(counters, status, getattr(counters, status) + count)
            counters.done += count
    return counters


def investigators_for_action(conn: sqlite3.Connection, action_id: int) -> list[Investigator]:
    columns = ", ".join(INVESTIGATOR_COLUMNS)
    rows = conn.execute(
        f"""
        SELECT {columns}
        FROM investigators
        INNER JOIN signatures ON ( signatures.investigatorid = investigators.id )
        WHERE signatures.actionid = ?
        ORDER BY investigators.id ASC
        """,
        (int(action_id),),
    ).fetchall()
    return [hydrate_investigator(row) for row in rows]
