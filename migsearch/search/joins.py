"""Join inference: which tables a search must join for its active filters.

Every entity has a static rule: filters trigger join flags, flags may imply
other flags, and the closure decides which join clauses are rendered, in a
fixed order and once each.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, Flag, auto
from typing import Iterable, Mapping

from migsearch.search.parameters import Filter


class Entity(str, Enum):
    ACTIONS = "actions"
    COMMANDS = "commands"
    AGENTS = "agents"
    INVESTIGATORS = "investigators"


class Join(Flag):
    NONE = 0
    COMMANDS = auto()
    ACTIONS = auto()
    AGENTS = auto()
    INVESTIGATORS = auto()


SIGNERS_FROM_ACTIONS = (
    "INNER JOIN signatures ON ( actions.id = signatures.actionid ) "
    "INNER JOIN investigators ON ( signatures.investigatorid = investigators.id )"
)


@dataclass(frozen=True, slots=True)
class JoinRule:
    triggers: Mapping[Filter, Join] = field(default_factory=dict)
    implies: Mapping[Join, Join] = field(default_factory=dict)
    clauses: tuple[tuple[Join, str], ...] = ()
    fixed: Join = Join.NONE


JOIN_RULES: dict[Entity, JoinRule] = {
    Entity.ACTIONS: JoinRule(
        triggers={
            Filter.AGENT_ID: Join.AGENTS,
            Filter.AGENT_NAME: Join.AGENTS,
            Filter.COMMAND_ID: Join.COMMANDS,
            Filter.INVESTIGATOR_ID: Join.INVESTIGATORS,
            Filter.INVESTIGATOR_NAME: Join.INVESTIGATORS,
        },
        implies={Join.AGENTS: Join.COMMANDS},
        clauses=(
            (Join.COMMANDS, "INNER JOIN commands ON ( commands.actionid = actions.id )"),
            (Join.AGENTS, "INNER JOIN agents ON ( commands.agentid = agents.id )"),
            (Join.INVESTIGATORS, SIGNERS_FROM_ACTIONS),
        ),
    ),
    Entity.AGENTS: JoinRule(
        triggers={
            Filter.ACTION_ID: Join.ACTIONS,
            Filter.ACTION_NAME: Join.ACTIONS,
            Filter.THREAT_FAMILY: Join.ACTIONS,
            Filter.INVESTIGATOR_ID: Join.INVESTIGATORS,
            Filter.INVESTIGATOR_NAME: Join.INVESTIGATORS,
            Filter.COMMAND_ID: Join.COMMANDS,
        },
        implies={Join.ACTIONS: Join.COMMANDS, Join.INVESTIGATORS: Join.ACTIONS},
        clauses=(
            (Join.COMMANDS, "INNER JOIN commands ON ( commands.agentid = agents.id )"),
            (Join.ACTIONS, "INNER JOIN actions ON ( commands.actionid = actions.id )"),
            (Join.INVESTIGATORS, SIGNERS_FROM_ACTIONS),
        ),
    ),
    Entity.INVESTIGATORS: JoinRule(
        triggers={
            Filter.ACTION_ID: Join.ACTIONS,
            Filter.ACTION_NAME: Join.ACTIONS,
            Filter.THREAT_FAMILY: Join.ACTIONS,
            Filter.COMMAND_ID: Join.COMMANDS,
            Filter.AGENT_ID: Join.AGENTS,
            Filter.AGENT_NAME: Join.AGENTS,
        },
        implies={Join.COMMANDS: Join.ACTIONS, Join.AGENTS: Join.COMMANDS},
        clauses=(
            (
                Join.ACTIONS,
                "INNER JOIN signatures ON ( signatures.investigatorid = investigators.id ) "
                "INNER JOIN actions ON ( actions.id = signatures.actionid )",
            ),
            (Join.COMMANDS, "INNER JOIN commands ON ( commands.actionid = actions.id )"),
            (Join.AGENTS, "INNER JOIN agents ON ( commands.agentid = agents.id )"),
        ),
    ),
    # Every command row carries its action, agent and signers.
    Entity.COMMANDS: JoinRule(
        clauses=(
            (Join.ACTIONS, "INNER JOIN actions ON ( commands.actionid = actions.id )"),
            (Join.INVESTIGATORS, SIGNERS_FROM_ACTIONS),
            (Join.AGENTS, "INNER JOIN agents ON ( commands.agentid = agents.id )"),
        ),
        fixed=Join.ACTIONS | Join.INVESTIGATORS | Join.AGENTS,
    ),
}


def infer_joins(entity: Entity, filters: Iterable[Filter]) -> Join:
    rule = JOIN_RULES[entity]
    joins = rule.fixed
    for flt in filters:
        joins |= rule.triggers.get(flt, Join.NONE)
    changed = True
    while changed:
        changed = False
        for flag, implied in rule.implies.items():
            if flag in joins and implied not in joins:
                joins |= implied
                changed = True
    return joins


def render_joins(entity: Entity, joins: Join) -> str:
    return " ".join(clause for flag, clause in JOIN_RULES[entity].clauses if flag in joins)
