"""Filter-driven search over actions, commands, agents and investigators."""

__version__ = "0.1.0"
