"""
Tests for the personalization rate limiter and soft kill switch.
"""
import logging
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from app.services import personalization_health
from app.services.personalization_health import (
    FAILURE_WINDOW_MS,
    MAX_REQUESTS_PER_WINDOW,
    RATE_LIMIT_WINDOW_MS,
    PersonalizationHealth,
)


class ManualClock:
    """Millisecond clock advanced by hand."""

    def __init__(self):
        self.now = 1_000_000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def health(clock):
    return PersonalizationHealth(clock=clock)


class TestRateLimit:
    """Tests for the per-session sliding window."""

    def test_allows_up_to_the_limit(self, health):
        results = [health.can_process_request("s-1") for _ in range(MAX_REQUESTS_PER_WINDOW)]
        assert all(r.allowed for r in results)

        blocked = health.can_process_request("s-1")
        assert blocked.allowed is False
        assert blocked.retry_after_ms == RATE_LIMIT_WINDOW_MS

    def test_retry_after_counts_down_from_oldest_request(self, health, clock):
        health.can_process_request("s-1")
        clock.now += 10_000
        for _ in range(MAX_REQUESTS_PER_WINDOW - 1):
            health.can_process_request("s-1")

        assert health.can_process_request("s-1").retry_after_ms == RATE_LIMIT_WINDOW_MS - 10_000

    def test_window_slides(self, health, clock):
        for _ in range(MAX_REQUESTS_PER_WINDOW):
            health.can_process_request("s-1")
        clock.now += RATE_LIMIT_WINDOW_MS + 1

        assert health.can_process_request("s-1").allowed is True

    def test_sessions_are_independent(self, health):
        for _ in range(MAX_REQUESTS_PER_WINDOW):
            health.can_process_request("s-1")
        assert health.can_process_request("s-2").allowed is True

    @pytest.mark.parametrize("session_id", [None, ""], ids=["none", "empty"])
    def test_anonymous_requests_are_not_limited(self, health, session_id):
        for _ in range(MAX_REQUESTS_PER_WINDOW * 2):
            assert health.can_process_request(session_id).allowed is True


class TestSoftDisable:
    """Tests for the failure-driven kill switch."""

    def test_three_failures_disable(self, health, caplog):
        with caplog.at_level(logging.WARNING, logger="app.services.personalization_health"):
            for _ in range(5):
                health.track_failure()

        assert health.soft_disabled is True
        assert health.is_enabled() is False
        warnings = [r for r in caplog.records if "soft-disabled" in r.getMessage()]
        assert len(warnings) == 1

    def test_old_failures_fall_out_of_window(self, health, clock):
        health.track_failure()
        health.track_failure()
        clock.now += FAILURE_WINDOW_MS + 1
        health.track_failure()

        assert health.soft_disabled is False

    def test_success_clears_failures(self, health):
        health.track_failure()
        health.track_failure()
        health.track_success()
        health.track_failure()

        assert health.soft_disabled is False

    def test_setting_disables_personalization(self, health):
        with patch(
            "app.services.personalization_health.get_settings",
            return_value=SimpleNamespace(ENABLE_PERSONALIZATION=False),
        ):
            assert health.is_enabled() is False

    def test_reset(self, health):
        for _ in range(3):
            health.track_failure()
        health.reset()

        assert health.soft_disabled is False
        assert health.is_enabled() is True


class TestModuleHelpers:
    def setup_method(self):
        personalization_health.reset_for_testing()

    def teardown_method(self):
        personalization_health.reset_for_testing()

    def test_module_wrappers_share_one_guard(self):
        for _ in range(3):
            personalization_health.track_failure()

        assert personalization_health.is_personalization_soft_disabled() is True
        assert personalization_health.is_personalization_enabled() is False

        personalization_health.reset_for_testing()
        personalization_health.track_personalization_success()
        assert personalization_health.is_personalization_enabled() is True
        assert personalization_health.can_process_request("s-9").allowed is True
