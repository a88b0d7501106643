"""Thread-safe session storage shared by the graph registry.

Sessions are keyed by string id and guarded by one re-entrant lock.
Stored state must expose an ``updated_at`` timestamp for stale cleanup.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Generic, Protocol, TypeVar, runtime_checkable

from src.utils.errors import CapacityExceededError, SessionNotFoundError


@runtime_checkable
class HasUpdatedAt(Protocol):
    """Protocol for objects with an updated_at timestamp."""

    updated_at: datetime


T = TypeVar("T")


class SessionManager(Generic[T]):
    """Thread-safe base class for session management.

    Usage:
        class GraphRegistry(SessionManager[GraphSession]):
            def rename(self, session_id: str, label: str) -> None:
                with self.session(session_id) as state:
                    state.label = label
    """

    def __init__(self, max_sessions: int | None = None) -> None:
        """Initialize with empty storage.

        Args:
            max_sessions: Optional ceiling on concurrently registered sessions.

        """
        self._sessions: dict[str, T] = {}
        self._lock = threading.RLock()
        self._max_sessions = max_sessions

    def _get_session(self, session_id: str) -> T:
        """Get session by ID. Caller must hold the lock.

        Raises:
            SessionNotFoundError: If session doesn't exist.

        """
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id) from None

    @contextmanager
    def session(self, session_id: str) -> Generator[T, None, None]:
        """Yield a session while holding the lock.

        Raises:
            SessionNotFoundError: If session doesn't exist.

        """
        with self._lock:
            yield self._get_session(session_id)

    @contextmanager
    def locked(self) -> Generator[dict[str, T], None, None]:
        """Yield the raw sessions dict while holding the lock."""
        with self._lock:
            yield self._sessions

    def session_exists(self, session_id: str) -> bool:
        """Check if session exists (thread-safe)."""
        with self._lock:
            return session_id in self._sessions

    def session_count(self) -> int:
        """Get number of registered sessions (thread-safe)."""
        with self._lock:
            return len(self._sessions)

    def session_ids(self) -> list[str]:
        """Registered ids in registration order (thread-safe)."""
        with self._lock:
            return list(self._sessions)

    def _register_session(self, session_id: str, state: T) -> None:
        """Register or overwrite a session (thread-safe).

        Raises:
            CapacityExceededError: If a new id would exceed ``max_sessions``.

        """
        with self._lock:
            if (
                self._max_sessions is not None
                and session_id not in self._sessions
                and len(self._sessions) >= self._max_sessions
            ):
                raise CapacityExceededError(
                    current_size=len(self._sessions),
                    max_size=self._max_sessions,
                    operation="register_session",
                    suggestion="Close unused sessions or raise MAX_GRAPHS",
                )
            self._sessions[session_id] = state

    def _remove_session(self, session_id: str) -> T | None:
        """Remove a session, returning it or None if absent (thread-safe)."""
        with self._lock:
            return self._sessions.pop(session_id, None)

    def cleanup_stale(
        self,
        max_age: timedelta,
        *,
        now: datetime | None = None,
        predicate: Callable[[T], bool] | None = None,
    ) -> list[str]:
        """Remove sessions whose ``updated_at`` is older than ``now - max_age``.

        Args:
            max_age: Maximum idle age.
            now: Reference time (defaults to datetime.now()).
            predicate: Optional extra filter; only sessions for which it
                returns True are eligible.

        Returns:
            List of removed session IDs.

        Raises:
            TypeError: If a stored state has no ``updated_at`` attribute.

        """
        cutoff = (now or datetime.now()) - max_age

        with self._lock:
            stale_ids: list[str] = []
            for session_id, state in self._sessions.items():
                if not isinstance(state, HasUpdatedAt):
                    raise TypeError(
                        f"Session state {type(state).__name__} must have 'updated_at' attribute"
                    )
                if state.updated_at < cutoff and (predicate is None or predicate(state)):
                    stale_ids.append(session_id)

            for session_id in stale_ids:
                del self._sessions[session_id]

        return stale_ids
