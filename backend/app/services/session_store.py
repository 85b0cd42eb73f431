"""
In-memory onboarding session store.

Process-local and guarded by a single re-entrant lock. Concurrent updates to
the same session are last-writer-wins. Idle sessions expire lazily on access
and are purged when the store reaches capacity.
"""
from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from fastapi import Request

from ..core.config import get_settings
from ..schemas.events import to_iso
from .signals.types import PromptSignals

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionState:
    id: str
    created_at: datetime
    last_activity_at: datetime
    current_step: str = "basics"
    completed_steps: List[str] = field(default_factory=list)
    values: Dict[str, Any] = field(default_factory=dict)
    persona: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    prompt_signals: Optional[PromptSignals] = None
    events: Deque[Any] = field(default_factory=deque)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": to_iso(self.created_at),
            "lastActivityAt": to_iso(self.last_activity_at),
            "currentStep": self.current_step,
            "completedSteps": list(self.completed_steps),
            "values": dict(self.values),
            "persona": self.persona,
            "metadata": dict(self.metadata),
            "promptSignals": self.prompt_signals.to_dict() if self.prompt_signals else None,
            "events": [e.to_wire() for e in self.events],
        }


@dataclass
class SessionStoreStats:
    total_sessions: int = 0
    active_sessions: int = 0
    total_events_stored: int = 0
    last_cleanup_at: Optional[datetime] = None
    sessions_cleaned_up: int = 0


class SessionStore:
    def __init__(
        self,
        max_idle_minutes: int = 60,
        max_events: int = 50,
        max_sessions: int = 1000,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.max_idle = timedelta(minutes=max_idle_minutes)
        self.max_events = max_events
        self.max_sessions = max_sessions
        self._clock = clock
        self._sessions: Dict[str, SessionState] = {}
        self._lock = threading.RLock()
        self._stats = SessionStoreStats()

    @classmethod
    def from_settings(cls) -> "SessionStore":
        settings = get_settings()
        return cls(
            max_idle_minutes=settings.SESSION_MAX_IDLE_MINUTES,
            max_events=settings.SESSION_MAX_EVENTS,
            max_sessions=settings.SESSION_MAX_CONCURRENT,
        )

    def _is_expired(self, session: SessionState, now: datetime) -> bool:
        return now - session.last_activity_at > self.max_idle

    def create_session(
        self,
        metadata: Optional[Dict[str, Any]] = None,
        initial_values: Optional[Dict[str, Any]] = None,
    ) -> SessionState:
        with self._lock:
            if len(self._sessions) >= self.max_sessions:
                self.cleanup_stale_sessions()
                if len(self._sessions) >= self.max_sessions:
                    self._evict_lru(1)

            now = self._clock()
            session = SessionState(
                id=str(uuid.uuid4()),
                created_at=now,
                last_activity_at=now,
                values=dict(initial_values or {}),
                metadata=dict(metadata or {}),
                events=deque(maxlen=self.max_events),
            )
            self._sessions[session.id] = session
            self._stats.total_sessions += 1
            self._stats.active_sessions = len(self._sessions)

        logger.debug("Created session", extra={"session_id": session.id})
        return session

    def get_session(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            now = self._clock()
            if self._is_expired(session, now):
                self.delete_session(session_id)
                return None
            session.last_activity_at = now
            return session

    def update_session(
        self,
        session_id: str,
        *,
        current_step: Optional[str] = None,
        add_completed_step: Optional[str] = None,
        values: Optional[Dict[str, Any]] = None,
        persona: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        prompt_signals: Optional[PromptSignals] = None,
        event: Any = None,
    ) -> Optional[SessionState]:
        with self._lock:
            session = self.get_session(session_id)
            if session is None:
                return None

            if current_step is not None:
                session.current_step = current_step
            if add_completed_step is not None and add_completed_step not in session.completed_steps:
                session.completed_steps.append(add_completed_step)
            if values is not None:
                session.values = {**session.values, **values}
            if persona is not None:
                session.persona = persona
            if metadata is not None:
                session.metadata = {**session.metadata, **metadata}
            if prompt_signals is not None:
                session.prompt_signals = prompt_signals
            if event is not None:
                self.add_event(session_id, event)

            session.last_activity_at = self._clock()
            return session

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            deleted = self._sessions.pop(session_id, None) is not None
            self._stats.active_sessions = len(self._sessions)
        if deleted:
            logger.debug("Deleted session", extra={"session_id": session_id})
        return deleted

    def add_event(self, session_id: str, event: Any) -> bool:
        with self._lock:
            session = self.get_session(session_id)
            if session is None:
                return False
            event.session_id = session_id
            # Bounded deque drops the oldest event once full.
            session.events.append(event)
            self._stats.total_events_stored += 1
            return True

    def add_events(self, session_id: str, events: Iterable[Any]) -> int:
        return sum(1 for event in events if self.add_event(session_id, event))

    def get_events(self, session_id: str) -> List[Any]:
        session = self.get_session(session_id)
        return list(session.events) if session else []

    def get_events_by_type(self, session_id: str, event_type: str) -> List[Any]:
        return [e for e in self.get_events(session_id) if e.type == event_type]

    def get_latest_event_of_type(self, session_id: str, event_type: str) -> Optional[Any]:
        events = self.get_events_by_type(session_id, event_type)
        return events[-1] if events else None

    def cleanup_stale_sessions(self) -> int:
        with self._lock:
            now = self._clock()
            stale = [sid for sid, s in self._sessions.items() if self._is_expired(s, now)]
            for sid in stale:
                del self._sessions[sid]
            self._stats.sessions_cleaned_up += len(stale)
            self._stats.last_cleanup_at = now
            self._stats.active_sessions = len(self._sessions)

        if stale:
            logger.info("Cleaned up %d stale sessions", len(stale))
        return len(stale)

    def _evict_lru(self, count: int) -> None:
        oldest = sorted(self._sessions.values(), key=lambda s: s.last_activity_at)[:count]
        for session in oldest:
            del self._sessions[session.id]
            logger.info("Evicted LRU session", extra={"session_id": session.id})
        self._stats.active_sessions = len(self._sessions)

    def get_stats(self) -> SessionStoreStats:
        with self._lock:
            return SessionStoreStats(**vars(self._stats))

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._stats.active_sessions = 0


def get_session_store(request: Request) -> SessionStore:
    """FastAPI dependency; the store is created once at application startup."""
    return request.app.state.session_store
