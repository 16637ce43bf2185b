"""Group membership resolution for processing sessions.

A GroupResolver answers "which organisational groups does this session
belong to right now?".  The answer may grow over a session's lifetime.
The aggregation service depends on this protocol — plug in a directory
lookup without touching aggregation logic.
"""

from __future__ import annotations

from typing import Iterable, Protocol


class GroupResolver(Protocol):
    """Protocol for session-to-groups resolution."""

    def groups_for(self, session_id: str) -> frozenset[str]:
        """Return the groups currently associated with *session_id*."""
        ...


class InMemoryGroupResolver:
    """Session groups kept in a dict, plus default groups every session joins.

    Sessions nobody registered still resolve to the default groups.
    """

    def __init__(self, default_groups: Iterable[str] = ()) -> None:
        self._default_groups = frozenset(default_groups)
        self._sessions: dict[str, set[str]] = {}

    def add(self, session_id: str, *groups: str) -> None:
        """Associate *groups* with *session_id* (membership only grows)."""
        self._sessions.setdefault(session_id, set()).update(groups)

    def groups_for(self, session_id: str) -> frozenset[str]:
        return self._default_groups | frozenset(self._sessions.get(session_id, ()))
