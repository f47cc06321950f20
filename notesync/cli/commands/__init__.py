"""CLI command handlers."""

from .sync import cmd_sync

__all__ = ["cmd_sync"]
