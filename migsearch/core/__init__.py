"""Shared errors and logging."""
