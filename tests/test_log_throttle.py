"""
Tests for EventSampler: repeated low-severity event sampling.

Covers:
- First occurrence recorded, repeats within the interval sampled out
- High and Critical never sampled out
- Independent per-user state, ids/counters normalized in descriptions
- Suppressed count reported once the interval passes
- Interval 0 disables sampling
"""

import time
from unittest.mock import patch

import pytest

from setlist_guard.core.log_throttle import EventSampler
from setlist_guard.core.models import SecurityEventSeverity

LOW = SecurityEventSeverity.LOW
MEDIUM = SecurityEventSeverity.MEDIUM


@pytest.fixture
def sampler():
    return EventSampler(interval_seconds=60)


class TestSampling:
    def test_first_event_recorded(self, sampler):
        assert sampler.should_record("alice", "Song read", LOW) == (True, None)

    def test_repeat_sampled_out(self, sampler):
        sampler.should_record("alice", "Song read", LOW)
        recorded, note = sampler.should_record("alice", "Song read", LOW)
        assert recorded is False
        assert note is None
        assert sampler.total_suppressed == 1

    def test_numbers_normalized(self, sampler):
        sampler.should_record("carol", "Authentication failed: 4 attempts remaining", MEDIUM)
        recorded, _ = sampler.should_record("carol", "Authentication failed: 3 attempts remaining", MEDIUM)
        assert recorded is False

    def test_users_independent(self, sampler):
        sampler.should_record("alice", "Song read", LOW)
        recorded, _ = sampler.should_record("bob", "Song read", LOW)
        assert recorded is True

    @pytest.mark.parametrize("severity", [SecurityEventSeverity.HIGH, SecurityEventSeverity.CRITICAL])
    def test_high_never_sampled(self, sampler, severity):
        for _ in range(20):
            recorded, _ = sampler.should_record("mallory", "Unauthorized Update on Song", severity)
            assert recorded is True

    def test_disabled_interval(self):
        sampler = EventSampler(interval_seconds=0)
        for _ in range(5):
            assert sampler.should_record("alice", "Song read", LOW) == (True, None)


class TestInterval:
    def test_suppressed_count_reported_after_interval(self, sampler):
        sampler.should_record("alice", "Song read", LOW)
        sampler.should_record("alice", "Song read", LOW)
        sampler.should_record("alice", "Song read", LOW)

        future = time.monotonic() + 61
        with patch("setlist_guard.core.log_throttle.time.monotonic", return_value=future):
            recorded, note = sampler.should_record("alice", "Song read", LOW)

        assert recorded is True
        assert note == "[Previously suppressed 2 similar events]"

    def test_reset_user(self, sampler):
        sampler.should_record("alice", "Song read", LOW)
        sampler.reset_user("alice")
        recorded, _ = sampler.should_record("alice", "Song read", LOW)
        assert recorded is True
