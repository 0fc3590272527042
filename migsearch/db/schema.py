"""Relational schema consumed by the search layer.

The search code never issues DDL. This module exists for bootstrapping local
databases (the ``init-db`` command and the test suite).
"""

from __future__ import annotations

import sqlite3


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS investigators (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        pgpfingerprint TEXT NOT NULL DEFAULT '',
        publickey BLOB,
        status TEXT NOT NULL DEFAULT 'active',
        createdat TEXT NOT NULL,
        lastmodified TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS actions (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        target TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '{}',
        threat TEXT NOT NULL DEFAULT '{}',
        operations TEXT NOT NULL DEFAULT '[]',
        validfrom TEXT NOT NULL,
        expireafter TEXT NOT NULL,
        starttime TEXT,
        finishtime TEXT,
        lastupdatetime TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        pgpsignatures TEXT NOT NULL DEFAULT '[]',
        syntaxversion INTEGER NOT NULL DEFAULT 2
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS signatures (
        actionid INTEGER NOT NULL REFERENCES actions(id),
        investigatorid INTEGER NOT NULL REFERENCES investigators(id),
        pgpsignature TEXT NOT NULL DEFAULT '',
        UNIQUE (actionid, investigatorid)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS agents (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        queueloc TEXT NOT NULL,
        mode TEXT NOT NULL DEFAULT '',
        version TEXT NOT NULL DEFAULT '',
        pid INTEGER NOT NULL DEFAULT 0,
        starttime TEXT,
        destructiontime TEXT,
        heartbeattime TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT '',
        environment TEXT NOT NULL DEFAULT '{}',
        tags TEXT NOT NULL DEFAULT '[]'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS commands (
        id INTEGER PRIMARY KEY,
        actionid INTEGER NOT NULL REFERENCES actions(id),
        agentid INTEGER NOT NULL REFERENCES agents(id),
        status TEXT NOT NULL,
        results TEXT,
        starttime TEXT,
        finishtime TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_commands_actionid ON commands(actionid)",
    "CREATE INDEX IF NOT EXISTS idx_commands_agentid ON commands(agentid)",
    "CREATE INDEX IF NOT EXISTS idx_commands_starttime ON commands(starttime)",
    "CREATE INDEX IF NOT EXISTS idx_signatures_actionid ON signatures(actionid)",
    "CREATE INDEX IF NOT EXISTS idx_signatures_investigatorid ON signatures(investigatorid)",
    "CREATE INDEX IF NOT EXISTS idx_agents_heartbeattime ON agents(heartbeattime)",
    "CREATE INDEX IF NOT EXISTS idx_actions_validfrom ON actions(validfrom)",
)


def ensure_schema(conn: sqlite3.Connection) -> None:
    for statement in SCHEMA_STATEMENTS:
        conn.execute(statement)
    conn.commit()
