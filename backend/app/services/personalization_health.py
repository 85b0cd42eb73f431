# backend/app/services/personalization_health.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from ..core.config import get_settings

logger = logging.getLogger(__name__)

FAILURE_THRESHOLD = 3
FAILURE_WINDOW_MS = 120_000
RATE_LIMIT_WINDOW_MS = 60_000
MAX_REQUESTS_PER_WINDOW = 5


def _now_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class RateLimitResult:
    allowed: bool
    retry_after_ms: Optional[int] = None


class PersonalizationHealth:
    """
    Process-local guard for the canvas endpoint: a per-session sliding-window
    rate limit, and a soft kill switch tripped by repeated failures.
    """

    def __init__(self, clock: Callable[[], float] = _now_ms):
        self._clock = clock
        self._lock = threading.Lock()
        self._failures: List[float] = []
        self._requests: Dict[str, List[float]] = {}
        self.soft_disabled = False
        self._warning_logged = False

    def can_process_request(self, session_id: Optional[str]) -> RateLimitResult:
        if not session_id:
            return RateLimitResult(allowed=True)

        with self._lock:
            now = self._clock()
            recent = [t for t in self._requests.get(session_id, []) if now - t <= RATE_LIMIT_WINDOW_MS]
            if len(recent) >= MAX_REQUESTS_PER_WINDOW:
                self._requests[session_id] = recent
                retry_after = max(0, int(RATE_LIMIT_WINDOW_MS - (now - recent[0])))
                return RateLimitResult(allowed=False, retry_after_ms=retry_after)

            recent.append(now)
            self._requests[session_id] = recent
            return RateLimitResult(allowed=True)

    def track_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._failures.append(now)
            self._failures = [t for t in self._failures if now - t <= FAILURE_WINDOW_MS]
            if len(self._failures) >= FAILURE_THRESHOLD:
                self._soft_disable()

    def _soft_disable(self) -> None:
        if self.soft_disabled:
            return
        self.soft_disabled = True
        if not self._warning_logged:
            logger.warning(
                "Personalization soft-disabled after %d failures in %dms",
                FAILURE_THRESHOLD,
                FAILURE_WINDOW_MS,
                extra={
                    "step": "personalization",
                    "code": "consecutive_failures",
                    "disabled_at": datetime.now(timezone.utc).isoformat(),
                },
            )
            self._warning_logged = True

    def track_success(self) -> None:
        with self._lock:
            self._failures = []

    def is_enabled(self) -> bool:
        return get_settings().ENABLE_PERSONALIZATION and not self.soft_disabled

    def reset(self) -> None:
        with self._lock:
            self._failures = []
            self._requests.clear()
            self.soft_disabled = False
            self._warning_logged = False


_health = PersonalizationHealth()


def can_process_request(session_id: Optional[str]) -> RateLimitResult:
    return _health.can_process_request(session_id)


def track_failure() -> None:
    _health.track_failure()


def track_personalization_success() -> None:
    _health.track_success()


def is_personalization_enabled() -> bool:
    return _health.is_enabled()


def is_personalization_soft_disabled() -> bool:
    return _health.soft_disabled


def reset_for_testing() -> None:
    _health.reset()
