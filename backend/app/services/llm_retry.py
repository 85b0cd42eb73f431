"""
Retry, backoff and timeout helpers for provider calls.

Backoff schedule: the first retry waits `initial_delay_ms`, each later retry
waits `min(max_delay_ms, round(previous * multiplier))`, and every wait is
jittered by +/- `jitter_ratio` and capped at `max_delay_ms`.
"""
from __future__ import annotations

import logging
import random as _random
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

import httpx
import openai
from tenacity import RetryCallState, Retrying, stop_after_attempt
from tenacity.wait import wait_base

from ..core.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
LLM_TIMEOUT = "LLM_TIMEOUT"
LLM_ERROR = "LLM_ERROR"

RETRYABLE_CODES = {RATE_LIMIT_EXCEEDED, LLM_TIMEOUT}
RETRYABLE_STATUS_CODES = {408, 409, 429}


class LLMServiceError(Exception):
    """Provider failure normalized to one of the service error codes."""

    def __init__(self, message: str, code: str = LLM_ERROR):
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass
class BackoffSettings:
    max_attempts: int = 3
    initial_delay_ms: int = 400
    max_delay_ms: int = 3200
    multiplier: float = 2.0
    jitter_ratio: float = 0.2
    # Receives seconds, like time.sleep
    sleep: Callable[[float], None] = field(default=time.sleep)
    random: Callable[[], float] = field(default=_random.random)


def backoff_settings_from_config() -> BackoffSettings:
    settings = get_settings()
    return BackoffSettings(
        max_attempts=settings.LLM_RETRY_MAX_ATTEMPTS,
        initial_delay_ms=settings.LLM_RETRY_INITIAL_DELAY_MS,
        max_delay_ms=settings.LLM_RETRY_MAX_DELAY_MS,
        multiplier=settings.LLM_RETRY_BACKOFF_MULTIPLIER,
        jitter_ratio=settings.LLM_RETRY_JITTER_RATIO,
    )


def _round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def calculate_delay(
    base_delay_ms: float,
    max_delay_ms: float,
    jitter_ratio: float,
    random_fn: Callable[[], float],
) -> int:
    if base_delay_ms >= max_delay_ms:
        return int(max_delay_ms)
    if jitter_ratio <= 0:
        return int(min(base_delay_ms, max_delay_ms))

    min_factor = 1 - jitter_ratio
    max_factor = 1 + jitter_ratio
    factor = min_factor + (max_factor - min_factor) * random_fn()
    delay = _round_half_up(base_delay_ms * factor)
    return max(0, min(delay, int(max_delay_ms)))


def base_delay_for_retry(settings: BackoffSettings, retry_number: int) -> int:
    """Un-jittered delay before retry `retry_number` (1-based)."""
    delay = settings.initial_delay_ms
    for _ in range(max(0, retry_number - 1)):
        delay = min(settings.max_delay_ms, _round_half_up(delay * settings.multiplier))
    return int(delay)


class wait_jittered_backoff(wait_base):
    """tenacity wait strategy implementing the jittered exponential schedule."""

    def __init__(self, settings: BackoffSettings):
        self.settings = settings

    def __call__(self, retry_state: RetryCallState) -> float:
        base = base_delay_for_retry(self.settings, retry_state.attempt_number)
        delay_ms = calculate_delay(base, self.settings.max_delay_ms, self.settings.jitter_ratio, self.settings.random)
        return delay_ms / 1000.0


def retry_with_exponential_backoff(
    operation: Callable[[int], T],
    settings: BackoffSettings,
    should_retry: Optional[Callable[[BaseException, int], bool]] = None,
    on_retry: Optional[Callable[[BaseException, int, int], None]] = None,
) -> T:
    """
    Run `operation(attempt)` until it succeeds, attempts run out, or
    `should_retry` rejects the error. The last error is re-raised.
    """

    def _retry_predicate(retry_state: RetryCallState) -> bool:
        if retry_state.outcome is None or not retry_state.outcome.failed:
            return False
        if should_retry is None:
            return True
        return should_retry(retry_state.outcome.exception(), retry_state.attempt_number)

    def _before_sleep(retry_state: RetryCallState) -> None:
        if on_retry is None or retry_state.outcome is None:
            return
        delay_s = retry_state.next_action.sleep if retry_state.next_action else 0.0
        on_retry(retry_state.outcome.exception(), retry_state.attempt_number, int(round(delay_s * 1000)))

    retrying = Retrying(
        stop=stop_after_attempt(max(1, settings.max_attempts)),
        wait=wait_jittered_backoff(settings),
        retry=_retry_predicate,
        before_sleep=_before_sleep,
        sleep=settings.sleep,
        reraise=True,
    )

    for attempt in retrying:
        with attempt:
            result = operation(attempt.retry_state.attempt_number)
        if attempt.retry_state.outcome is not None and not attempt.retry_state.outcome.failed:
            return result
    raise LLMServiceError("LLM operation failed with an unknown error", LLM_ERROR)


def invoke_with_timeout(timeout_ms: int, operation: Callable[[Optional[float]], T]) -> T:
    """
    Call `operation(timeout_s)`; the provider enforces the deadline.

    A non-positive `timeout_ms` disables the per-call timeout.
    """
    if timeout_ms <= 0:
        return operation(None)
    return operation(timeout_ms / 1000.0)


def should_retry_on_error(error: BaseException) -> bool:
    if isinstance(error, LLMServiceError):
        return error.code in RETRYABLE_CODES
    if isinstance(error, (openai.RateLimitError, openai.APITimeoutError, openai.APIConnectionError)):
        return True
    if isinstance(error, openai.APIStatusError):
        return error.status_code in RETRYABLE_STATUS_CODES or error.status_code >= 500
    if isinstance(error, (httpx.TransportError, TimeoutError)):
        return True
    return False


def map_to_service_error(error: BaseException) -> LLMServiceError:
    if isinstance(error, LLMServiceError):
        return error
    if isinstance(error, openai.RateLimitError) or (
        isinstance(error, openai.APIStatusError) and error.status_code == 429
    ):
        return LLMServiceError("LLM rate limit exceeded", RATE_LIMIT_EXCEEDED)
    if isinstance(error, (openai.APITimeoutError, httpx.TimeoutException, TimeoutError)):
        return LLMServiceError("LLM request timed out", LLM_TIMEOUT)
    return LLMServiceError(str(error) or "LLM request failed", LLM_ERROR)
