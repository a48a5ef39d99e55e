"""Presence tracking: user identity ↔ live connection."""

from .connection import SESSION_SUPERSEDED_CLOSE_CODE, Connection
from .registry import PresenceRegistry

__all__ = [
    "Connection",
    "PresenceRegistry",
    "SESSION_SUPERSEDED_CLOSE_CODE",
]
