# SQLite store implementations.
#
# Three independent stores, each usable against its own database file or a
# shared one:
#
#   SqliteOwnershipStore   read-only {id, owner} projections over the
#                          songs / setlists / setlist_songs tables
#   SqliteCredentialStore  failed-login counters and lockout deadlines
#   SqliteAuditSink        append-only, hash-chained security event log
#
# All connections come from core.db.connect() (WAL, busy_timeout). Blocking
# sqlite3 calls run on worker threads via asyncio.to_thread with a fresh
# connection per call. sqlite3 errors surface as StoreUnavailable.
#
# Audit chain: every row stores the hash of the previous row and its own
# hash over (previous_hash + canonical JSON of the event). With a key the
# hash is HMAC-SHA256, otherwise plain SHA-256. UPDATE and DELETE are
# rejected by triggers; verify_chain() detects edits made around them.

import asyncio
import hashlib
import hmac
import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from ..core.db import connect as db_connect
from ..core.exceptions import StoreUnavailable
from ..core.models import (
    ResourceId,
    ResourceOwnership,
    ResourceType,
    SecurityEvent,
    SecurityEventSeverity,
    SecurityEventType,
    utcnow,
)

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64

# SQLite's default host-parameter limit is 999
_BATCH_SIZE = 500

_OWNERSHIP_QUERIES = {
    ResourceType.SONG: "SELECT id, user_id FROM songs WHERE id IN ({})",
    ResourceType.SETLIST: "SELECT id, user_id FROM setlists WHERE id IN ({})",
    ResourceType.SETLIST_SONG: (
        "SELECT ss.id, s.user_id FROM setlist_songs ss "
        "JOIN setlists s ON s.id = ss.setlist_id WHERE ss.id IN ({})"
    ),
}


class _SqliteStore:
    """Shared connection handling for the SQLite stores."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._init_database()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Cannot initialize {self.db_path.name}: {e}") from e

    def _init_database(self):
        raise NotImplementedError

    def _conn(self, manual: bool = False) -> sqlite3.Connection:
        """New connection; ``manual`` leaves transaction control to the caller."""
        return db_connect(
            self.db_path,
            row_factory=True,
            isolation_level=None if manual else "",
        )

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"{type(self).__name__}: {e}") from e


# ── Ownership ────────────────────────────────────────────────────────


class SqliteOwnershipStore(_SqliteStore):
    """Ownership projections over the application's resource tables."""

    def _init_database(self):
        conn = self._conn()
        try:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS songs (
                    id INTEGER PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT ''
                );
                CREATE TABLE IF NOT EXISTS setlists (
                    id INTEGER PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL DEFAULT ''
                );
                CREATE TABLE IF NOT EXISTS setlist_songs (
                    id INTEGER PRIMARY KEY,
                    setlist_id INTEGER NOT NULL REFERENCES setlists(id) ON DELETE CASCADE,
                    song_id INTEGER NOT NULL REFERENCES songs(id) ON DELETE CASCADE,
                    position INTEGER NOT NULL DEFAULT 0
                );
                CREATE INDEX IF NOT EXISTS idx_songs_user ON songs(user_id);
                CREATE INDEX IF NOT EXISTS idx_setlists_user ON setlists(user_id);
                CREATE INDEX IF NOT EXISTS idx_setlist_songs_setlist ON setlist_songs(setlist_id);
            """)
            conn.commit()
        finally:
            conn.close()

    # ── Seeding ──────────────────────────────────────────────────────

    def add_song(self, song_id: int, user_id: str, title: str = ""):
        self._insert("INSERT INTO songs (id, user_id, title) VALUES (?, ?, ?)", (song_id, user_id, title))

    def add_setlist(self, setlist_id: int, user_id: str, name: str = ""):
        self._insert("INSERT INTO setlists (id, user_id, name) VALUES (?, ?, ?)", (setlist_id, user_id, name))

    def add_setlist_song(self, entry_id: int, setlist_id: int, song_id: int, position: int = 0):
        self._insert(
            "INSERT INTO setlist_songs (id, setlist_id, song_id, position) VALUES (?, ?, ?, ?)",
            (entry_id, setlist_id, song_id, position),
        )

    def _insert(self, sql: str, params: tuple):
        conn = self._conn()
        try:
            conn.execute(sql, params)
            conn.commit()
        finally:
            conn.close()

    # ── Lookups ──────────────────────────────────────────────────────

    def _fetch_ownership(
        self, resource_type: ResourceType, resource_ids: List[ResourceId]
    ) -> List[ResourceOwnership]:
        query = _OWNERSHIP_QUERIES[resource_type]
        projections: List[ResourceOwnership] = []
        conn = self._conn()
        try:
            for start in range(0, len(resource_ids), _BATCH_SIZE):
                batch = resource_ids[start:start + _BATCH_SIZE]
                rows = conn.execute(query.format(",".join("?" * len(batch))), batch).fetchall()
                projections.extend(ResourceOwnership(id=row[0], owner_id=row[1]) for row in rows)
        finally:
            conn.close()
        return projections

    def _fetch_owners(self, resource_type: ResourceType, resource_ids: List[ResourceId]) -> Dict[ResourceId, str]:
        found = {str(p.id): p.owner_id for p in self._fetch_ownership(resource_type, resource_ids)}
        return {rid: found[str(rid)] for rid in resource_ids if str(rid) in found}

    async def get_ownership(
        self, resource_type: ResourceType, resource_ids: Iterable[ResourceId]
    ) -> List[ResourceOwnership]:
        """Raw ``{id, owner_id}`` projections for the ids that exist."""
        ids = list(dict.fromkeys(resource_ids))
        if not ids:
            return []
        return await self._run(self._fetch_ownership, resource_type, ids)

    async def get_owner(self, resource_type: ResourceType, resource_id: ResourceId) -> Optional[str]:
        owners = await self._run(self._fetch_owners, resource_type, [resource_id])
        return owners.get(resource_id)

    async def get_owners(
        self, resource_type: ResourceType, resource_ids: Iterable[ResourceId]
    ) -> Dict[ResourceId, str]:
        ids = list(dict.fromkeys(resource_ids))
        if not ids:
            return {}
        return await self._run(self._fetch_owners, resource_type, ids)


# ── Credentials ──────────────────────────────────────────────────────


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SqliteCredentialStore(_SqliteStore):
    """Failed-login counters with atomic increments (``BEGIN IMMEDIATE``)."""

    def _init_database(self):
        conn = self._conn()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS account_lockouts (
                    user_id TEXT PRIMARY KEY,
                    failed_count INTEGER NOT NULL DEFAULT 0,
                    lockout_end TEXT,
                    updated_at TEXT
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def _increment(self, user_id: str) -> int:
        conn = self._conn(manual=True)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(
                    """INSERT INTO account_lockouts (user_id, failed_count, updated_at)
                       VALUES (?, 1, ?)
                       ON CONFLICT(user_id) DO UPDATE SET
                           failed_count = failed_count + 1,
                           updated_at = excluded.updated_at""",
                    (user_id, utcnow().isoformat()),
                )
                row = conn.execute(
                    "SELECT failed_count FROM account_lockouts WHERE user_id = ?", (user_id,)
                ).fetchone()
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
            return row["failed_count"]
        finally:
            conn.close()

    def _write(self, sql: str, params: tuple):
        conn = self._conn()
        try:
            conn.execute(sql, params)
            conn.commit()
        finally:
            conn.close()

    def _read(self, user_id: str) -> Optional[sqlite3.Row]:
        conn = self._conn()
        try:
            return conn.execute(
                "SELECT failed_count, lockout_end FROM account_lockouts WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        finally:
            conn.close()

    async def increment_failure_count(self, user_id: str) -> int:
        return await self._run(self._increment, user_id)

    async def reset_failure_count(self, user_id: str) -> None:
        await self._run(
            self._write,
            """INSERT INTO account_lockouts (user_id, failed_count, updated_at)
               VALUES (?, 0, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                   failed_count = 0, updated_at = excluded.updated_at""",
            (user_id, utcnow().isoformat()),
        )

    async def get_failure_count(self, user_id: str) -> int:
        row = await self._run(self._read, user_id)
        return row["failed_count"] if row else 0

    async def set_lockout_until(self, user_id: str, lockout_end: Optional[datetime]) -> None:
        await self._run(
            self._write,
            """INSERT INTO account_lockouts (user_id, failed_count, lockout_end, updated_at)
               VALUES (?, 0, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                   lockout_end = excluded.lockout_end, updated_at = excluded.updated_at""",
            (user_id, lockout_end.isoformat() if lockout_end else None, utcnow().isoformat()),
        )

    async def get_lockout_until(self, user_id: str) -> Optional[datetime]:
        row = await self._run(self._read, user_id)
        return _parse_ts(row["lockout_end"]) if row else None

    async def is_locked_out(self, user_id: str) -> bool:
        lockout_end = await self.get_lockout_until(user_id)
        return lockout_end is not None and lockout_end > utcnow()


# ── Audit ────────────────────────────────────────────────────────────


@dataclass
class ChainVerification:
    """Result of walking the audit hash chain."""
    valid: bool
    checked: int
    broken_at_seq: Optional[int] = None
    broken_event_id: Optional[str] = None
    reason: str = ""


def _canonical(event_dict: dict) -> str:
    return json.dumps(event_dict, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


class SqliteAuditSink(_SqliteStore):
    """Append-only, hash-chained security event store.

    Args:
        db_path: Path to the SQLite database file.
        hmac_key: Optional secret; when set, chain hashes are HMAC-SHA256
            so an attacker with file access cannot recompute them.
    """

    def __init__(self, db_path: Union[str, Path], hmac_key: Optional[str] = None):
        self._key = hmac_key.encode("utf-8") if hmac_key else None
        super().__init__(db_path)

    def _init_database(self):
        conn = self._conn()
        try:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS security_events (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id TEXT UNIQUE NOT NULL,
                    event_type TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    description TEXT NOT NULL,
                    user_id TEXT,
                    resource_type TEXT,
                    resource_id TEXT,
                    additional_context TEXT NOT NULL DEFAULT '{}',
                    correlation_id TEXT,
                    timestamp TEXT NOT NULL,
                    previous_hash TEXT NOT NULL,
                    hash TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_security_events_type ON security_events(event_type);
                CREATE INDEX IF NOT EXISTS idx_security_events_user ON security_events(user_id);
                CREATE INDEX IF NOT EXISTS idx_security_events_ts ON security_events(timestamp);
                CREATE TRIGGER IF NOT EXISTS security_events_no_update
                    BEFORE UPDATE ON security_events
                    BEGIN SELECT RAISE(ABORT, 'security_events is append-only'); END;
                CREATE TRIGGER IF NOT EXISTS security_events_no_delete
                    BEFORE DELETE ON security_events
                    BEGIN SELECT RAISE(ABORT, 'security_events is append-only'); END;
            """)
            conn.commit()
        finally:
            conn.close()

    def _hash(self, previous_hash: str, payload: str) -> str:
        message = (previous_hash + payload).encode("utf-8")
        if self._key:
            return hmac.new(self._key, message, hashlib.sha256).hexdigest()
        return hashlib.sha256(message).hexdigest()

    def _insert_event(self, event: SecurityEvent) -> bool:
        data = event.to_dict()
        conn = self._conn(manual=True)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                last = conn.execute(
                    "SELECT hash FROM security_events ORDER BY seq DESC LIMIT 1"
                ).fetchone()
                previous_hash = last["hash"] if last else GENESIS_HASH
                conn.execute(
                    """INSERT INTO security_events
                       (event_id, event_type, severity, description, user_id,
                        resource_type, resource_id, additional_context,
                        correlation_id, timestamp, previous_hash, hash)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        data["event_id"], data["event_type"], data["severity"],
                        data["description"], data["user_id"], data["resource_type"],
                        data["resource_id"], _canonical(data["additional_context"]),
                        data["correlation_id"], data["timestamp"], previous_hash,
                        self._hash(previous_hash, _canonical(data)),
                    ),
                )
                conn.execute("COMMIT")
            except sqlite3.IntegrityError:
                conn.execute("ROLLBACK")
                logger.warning("Duplicate audit event id rejected: %s", data["event_id"])
                return False
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
            return True
        finally:
            conn.close()

    async def append(self, event: SecurityEvent) -> bool:
        return await self._run(self._insert_event, event)

    # ── Forensics ────────────────────────────────────────────────────

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> dict:
        return {
            "event_id": row["event_id"],
            "event_type": row["event_type"],
            "severity": row["severity"],
            "description": row["description"],
            "user_id": row["user_id"],
            "resource_type": row["resource_type"],
            "resource_id": row["resource_id"],
            "additional_context": json.loads(row["additional_context"] or "{}"),
            "correlation_id": row["correlation_id"],
            "timestamp": row["timestamp"],
        }

    def verify_chain(self) -> ChainVerification:
        """Recompute every link of the hash chain, oldest first."""
        conn = self._conn()
        try:
            rows = conn.execute("SELECT * FROM security_events ORDER BY seq ASC")
            previous_hash = GENESIS_HASH
            checked = 0
            for row in rows:
                if row["previous_hash"] != previous_hash:
                    return ChainVerification(
                        False, checked, row["seq"], row["event_id"], "previous_hash mismatch"
                    )
                try:
                    payload = _canonical(self._row_to_dict(row))
                except ValueError:
                    return ChainVerification(
                        False, checked, row["seq"], row["event_id"], "unreadable context"
                    )
                if not hmac.compare_digest(row["hash"], self._hash(previous_hash, payload)):
                    return ChainVerification(
                        False, checked, row["seq"], row["event_id"], "hash mismatch"
                    )
                previous_hash = row["hash"]
                checked += 1
            return ChainVerification(True, checked)
        finally:
            conn.close()

    def query_events(
        self,
        event_type: Optional[SecurityEventType] = None,
        severity: Optional[SecurityEventSeverity] = None,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[SecurityEvent]:
        """Most recent events first, filtered on any combination of fields."""
        clauses = []
        params: list = []
        if event_type is not None:
            clauses.append("event_type = ?")
            params.append(SecurityEventType(event_type).value)
        if severity is not None:
            clauses.append("severity = ?")
            params.append(SecurityEventSeverity(severity).value)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(since.isoformat())

        sql = "SELECT * FROM security_events"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY seq DESC LIMIT ?"
        params.append(max(int(limit), 0))

        conn = self._conn()
        try:
            return [
                SecurityEvent.from_dict(self._row_to_dict(row))
                for row in conn.execute(sql, params)
            ]
        finally:
            conn.close()

    def count(self) -> int:
        conn = self._conn()
        try:
            return conn.execute("SELECT COUNT(*) FROM security_events").fetchone()[0]
        finally:
            conn.close()
