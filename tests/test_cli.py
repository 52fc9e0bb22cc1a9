"""
Tests for the setlist-guard CLI (verify / events).
"""

import asyncio
import json
import sqlite3

import pytest

from setlist_guard.__main__ import EXIT_ERROR, EXIT_OK, EXIT_TAMPERED, main
from setlist_guard.core.models import SecurityEvent, SecurityEventSeverity, SecurityEventType
from setlist_guard.stores.sqlite_store import SqliteAuditSink


@pytest.fixture
def audit_db(tmp_path):
    path = tmp_path / "audit.db"
    sink = SqliteAuditSink(path)

    async def _seed():
        await sink.append(SecurityEvent(SecurityEventType.AUTHORIZATION, SecurityEventSeverity.LOW, "ok", user_id="alice"))
        await sink.append(SecurityEvent(SecurityEventType.ACCOUNT_LOCKOUT, SecurityEventSeverity.HIGH, "locked", user_id="carol"))

    asyncio.run(_seed())
    return path


class TestVerify:
    def test_intact_chain(self, audit_db, capsys):
        assert main(["verify", "--db", str(audit_db)]) == EXIT_OK
        assert "2 events verified" in capsys.readouterr().out

    def test_tampered_chain(self, audit_db, capsys):
        conn = sqlite3.connect(str(audit_db))
        conn.execute("DROP TRIGGER security_events_no_update")
        conn.execute("UPDATE security_events SET user_id = 'nobody' WHERE seq = 1")
        conn.commit()
        conn.close()

        assert main(["verify", "--db", str(audit_db)]) == EXIT_TAMPERED
        assert "BROKEN at seq 1" in capsys.readouterr().out

    def test_wrong_hmac_key(self, audit_db):
        assert main(["verify", "--db", str(audit_db), "--hmac-key", "other"]) == EXIT_TAMPERED

    def test_db_from_environment(self, audit_db, monkeypatch):
        monkeypatch.setenv("SETLIST_GUARD_AUDIT_DB", str(audit_db))
        assert main(["verify"]) == EXIT_OK

    def test_missing_db(self, tmp_path, capsys):
        assert main(["verify", "--db", str(tmp_path / "absent.db")]) == EXIT_ERROR
        assert "not found" in capsys.readouterr().err
        assert not (tmp_path / "absent.db").exists()

    def test_no_db_configured(self):
        assert main(["verify"]) == EXIT_ERROR


class TestEvents:
    def test_lists_newest_first(self, audit_db, capsys):
        assert main(["events", "--db", str(audit_db)]) == EXIT_OK
        lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
        assert [e["description"] for e in lines] == ["locked", "ok"]

    def test_filter_by_type(self, audit_db, capsys):
        main(["events", "--db", str(audit_db), "--type", "AccountLockout"])
        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["user_id"] == "carol"

    def test_filter_by_severity_and_limit(self, audit_db, capsys):
        main(["events", "--db", str(audit_db), "--severity", "Low", "--limit", "5"])
        lines = capsys.readouterr().out.splitlines()
        assert [json.loads(line)["severity"] for line in lines] == ["Low"]

    def test_invalid_type_rejected(self, audit_db):
        with pytest.raises(SystemExit):
            main(["events", "--db", str(audit_db), "--type", "Bogus"])
