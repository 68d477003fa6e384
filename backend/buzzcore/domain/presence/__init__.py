"""Presence registry and its Redis mirror."""

from .mirror import RedisPresenceMirror  # noqa: F401
from .registry import InMemoryPresenceRegistry, PresenceListener, PresenceRegistry  # noqa: F401
