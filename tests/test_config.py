"""
Tests for GuardSettings and ladder parsing.
"""

from datetime import timedelta

import pytest

from setlist_guard.config import (
    DEFAULT_LOCKOUT_LADDER,
    GuardSettings,
    parse_duration,
    parse_ladder,
)
from setlist_guard.core.exceptions import InvalidConfiguration


class TestDefaults:
    def test_defaults(self):
        settings = GuardSettings()
        assert settings.lockout_threshold == 5
        assert settings.lockout_ladder == DEFAULT_LOCKOUT_LADDER
        assert settings.max_message_length == 1000
        assert settings.store_timeout_seconds == 5.0
        assert settings.sample_interval_seconds == 0.0
        assert settings.audit_db_path is None

    def test_from_env_without_variables(self):
        assert GuardSettings.from_env() == GuardSettings()


class TestFromEnv:
    def test_reads_variables(self, monkeypatch):
        monkeypatch.setenv("SETLIST_GUARD_LOCKOUT_THRESHOLD", "3")
        monkeypatch.setenv("SETLIST_GUARD_LOCKOUT_LADDER", "3:1m,6:10m,*:1d")
        monkeypatch.setenv("SETLIST_GUARD_MAX_MESSAGE_LENGTH", "256")
        monkeypatch.setenv("SETLIST_GUARD_STORE_TIMEOUT", "2.5")
        monkeypatch.setenv("SETLIST_GUARD_SAMPLE_INTERVAL", "30")
        monkeypatch.setenv("SETLIST_GUARD_AUDIT_DB", "/var/lib/guard/audit.db")
        monkeypatch.setenv("SETLIST_GUARD_AUDIT_HMAC_KEY", "s3cret")

        settings = GuardSettings.from_env()

        assert settings.lockout_threshold == 3
        assert settings.lockout_ladder == (
            (3, timedelta(minutes=1)),
            (6, timedelta(minutes=10)),
            (None, timedelta(days=1)),
        )
        assert settings.max_message_length == 256
        assert settings.store_timeout_seconds == 2.5
        assert settings.sample_interval_seconds == 30.0
        assert settings.audit_db_path == "/var/lib/guard/audit.db"
        assert settings.audit_hmac_key == "s3cret"

    def test_reads_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("SETLIST_GUARD_LOCKOUT_THRESHOLD=7\n")
        assert GuardSettings.from_env(str(env_file)).lockout_threshold == 7

    @pytest.mark.parametrize("name,value", [
        ("SETLIST_GUARD_LOCKOUT_THRESHOLD", "five"),
        ("SETLIST_GUARD_LOCKOUT_THRESHOLD", "0"),
        ("SETLIST_GUARD_STORE_TIMEOUT", "-1"),
        ("SETLIST_GUARD_MAX_MESSAGE_LENGTH", "10"),
        ("SETLIST_GUARD_LOCKOUT_LADDER", "5:5m,3:1h"),
        ("SETLIST_GUARD_LOCKOUT_LADDER", "5:1h,10:5m"),
        ("SETLIST_GUARD_LOCKOUT_LADDER", "5:5 minutes"),
    ])
    def test_invalid_values(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(InvalidConfiguration):
            GuardSettings.from_env()


class TestParsing:
    @pytest.mark.parametrize("text,expected", [
        ("30s", timedelta(seconds=30)),
        ("5m", timedelta(minutes=5)),
        ("4h", timedelta(hours=4)),
        ("2d", timedelta(days=2)),
        (" 12H ", timedelta(hours=12)),
    ])
    def test_durations(self, text, expected):
        assert parse_duration(text) == expected

    def test_ladder_without_open_tier_extends_last(self):
        assert parse_ladder("5:5m,10:15m") == (
            (5, timedelta(minutes=5)),
            (10, timedelta(minutes=15)),
            (None, timedelta(minutes=15)),
        )

    def test_open_tier_must_be_last(self):
        with pytest.raises(InvalidConfiguration):
            parse_ladder("*:1h,5:2h")

    def test_empty_ladder(self):
        with pytest.raises(InvalidConfiguration):
            parse_ladder(" , ")
