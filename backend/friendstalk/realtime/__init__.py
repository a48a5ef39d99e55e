"""Realtime surface: the /ws endpoint, its protocol, and connection lifecycle."""

from .lifecycle import ConnectionLifecycleManager, get_lifecycle, set_lifecycle
from .protocol import parse_command

__all__ = [
    "ConnectionLifecycleManager",
    "get_lifecycle",
    "parse_command",
    "set_lifecycle",
]
