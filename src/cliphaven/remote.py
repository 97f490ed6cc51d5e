"""Remote record stores used by the sync service.

A store keeps opaque encrypted records in named zones and hands out an
opaque change cursor so clients can fetch only what changed since their last
fetch. Deletions are reported as tombstones through the same change feed.
"""

import logging
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path

from cliphaven.errors import (
    ConflictError,
    NetworkUnavailableError,
    NotAuthenticatedError,
    QuotaExceededError,
    RecordNotFoundError,
    ServerRejectedError,
)
from cliphaven.models import SyncRecord

logger = logging.getLogger(__name__)


@dataclass
class ChangeSet:
    records: list[SyncRecord] = field(default_factory=list)
    deleted_ids: list[uuid.UUID] = field(default_factory=list)
    cursor: str | None = None


def _parse_cursor(cursor: str | None) -> int:
    if cursor is None:
        return 0
    try:
        value = int(cursor)
    except ValueError:
        raise ServerRejectedError(f"Invalid change cursor: {cursor!r}") from None
    if value < 0:
        raise ServerRejectedError(f"Invalid change cursor: {cursor!r}")
    return value


class RemoteStore(ABC):
    @abstractmethod
    def account_available(self) -> bool:
        ...

    @abstractmethod
    def ensure_zone(self, zone: str) -> None:
        ...

    @abstractmethod
    def save(self, zone: str, record: SyncRecord, expected_tag: str | None = None) -> SyncRecord:
        """Create or overwrite the record with the same id.

        When expected_tag is given, the write only succeeds if the stored
        record still carries that tag; otherwise ConflictError is raised.
        Returns the stored record with server-assigned modified_at and change_tag.
        """

    @abstractmethod
    def fetch(self, zone: str, record_id: uuid.UUID) -> SyncRecord | None:
        ...

    @abstractmethod
    def delete(self, zone: str, record_id: uuid.UUID) -> None:
        """Remove a record. Raises RecordNotFoundError if it does not exist."""

    @abstractmethod
    def fetch_changes(self, zone: str, cursor: str | None) -> ChangeSet:
        """Records changed and ids deleted since cursor (None fetches everything)."""


class MemoryRemoteStore(RemoteStore):
    """In-process store. Share one instance between services to simulate devices."""

    def __init__(self, quota_bytes: int | None = None):
        self.available = True
        self._quota_bytes = quota_bytes
        self._zones: dict[str, int] = {}
        self._records: dict[tuple[str, uuid.UUID], tuple[SyncRecord, int]] = {}
        self._tombstones: dict[tuple[str, uuid.UUID], int] = {}
        self._lock = threading.Lock()

    def account_available(self) -> bool:
        return self.available

    def ensure_zone(self, zone: str) -> None:
        self._check_account()
        with self._lock:
            self._zones.setdefault(zone, 0)

    def save(self, zone: str, record: SyncRecord, expected_tag: str | None = None) -> SyncRecord:
        self._check_account()
        with self._lock:
            seq = self._next_seq(zone)
            key = (zone, record.id)
            existing = self._records.get(key)
            if expected_tag is not None:
                current_tag = existing[0].change_tag if existing else None
                if current_tag != expected_tag:
                    raise ConflictError()
            if self._quota_bytes is not None:
                used = sum(
                    len(r.encrypted_payload) for (z, rid), (r, _) in self._records.items() if z == zone and rid != record.id
                )
                if used + len(record.encrypted_payload) > self._quota_bytes:
                    raise QuotaExceededError()

            stored = replace(
                record,
                modified_at=datetime.now(timezone.utc),
                change_tag=uuid.uuid4().hex,
            )
            self._zones[zone] = seq
            self._records[key] = (stored, seq)
            self._tombstones.pop(key, None)
            return replace(stored)

    def fetch(self, zone: str, record_id: uuid.UUID) -> SyncRecord | None:
        self._check_account()
        with self._lock:
            self._require_zone(zone)
            found = self._records.get((zone, record_id))
            return replace(found[0]) if found else None

    def delete(self, zone: str, record_id: uuid.UUID) -> None:
        self._check_account()
        with self._lock:
            seq = self._next_seq(zone)
            key = (zone, record_id)
            if key not in self._records:
                raise RecordNotFoundError()
            del self._records[key]
            self._zones[zone] = seq
            self._tombstones[key] = seq

    def fetch_changes(self, zone: str, cursor: str | None) -> ChangeSet:
        self._check_account()
        since = _parse_cursor(cursor)
        with self._lock:
            self._require_zone(zone)
            changed = sorted(
                ((r, seq) for (z, _), (r, seq) in self._records.items() if z == zone and seq > since),
                key=lambda pair: pair[1],
            )
            deleted = sorted(
                ((rid, seq) for (z, rid), seq in self._tombstones.items() if z == zone and seq > since),
                key=lambda pair: pair[1],
            )
            return ChangeSet(
                records=[replace(r) for r, _ in changed],
                deleted_ids=[rid for rid, _ in deleted],
                cursor=str(self._zones[zone]),
            )

    def _check_account(self) -> None:
        if not self.available:
            raise NotAuthenticatedError()

    def _require_zone(self, zone: str) -> None:
        if zone not in self._zones:
            raise ServerRejectedError(f"Zone not found: {zone}")

    def _next_seq(self, zone: str) -> int:
        self._require_zone(zone)
        return self._zones[zone] + 1


SCHEMA = """
CREATE TABLE IF NOT EXISTS zones (
    name           TEXT PRIMARY KEY,
    seq            INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS records (
    zone                  TEXT NOT NULL,
    id                    TEXT NOT NULL,
    encrypted_payload     BLOB NOT NULL,
    nonce                 BLOB NOT NULL,
    content_kind          TEXT NOT NULL CHECK(content_kind IN ('text', 'image')),
    timestamp             TEXT NOT NULL,
    source_app_bundle_id  TEXT,
    source_app_name       TEXT,
    paste_count           INTEGER NOT NULL DEFAULT 0,
    is_pinned             INTEGER NOT NULL DEFAULT 0,
    device_id             TEXT NOT NULL,
    device_name           TEXT NOT NULL,
    modified_at           TEXT NOT NULL,
    change_tag            TEXT NOT NULL,
    seq                   INTEGER NOT NULL,
    PRIMARY KEY (zone, id)
);

CREATE INDEX IF NOT EXISTS idx_records_seq ON records(zone, seq);

CREATE TABLE IF NOT EXISTS tombstones (
    zone           TEXT NOT NULL,
    id             TEXT NOT NULL,
    seq            INTEGER NOT NULL,
    PRIMARY KEY (zone, id)
);
"""


class SQLiteRemoteStore(RemoteStore):
    """Record store kept in a SQLite database inside a shared folder.

    The folder is typically a cloud drive directory replicated between
    machines. A missing folder is treated as a signed-out account.
    """

    def __init__(self, db_path: str | Path, quota_bytes: int | None = None):
        self._db_path = str(db_path)
        self._quota_bytes = quota_bytes
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def account_available(self) -> bool:
        if self._db_path == ":memory:":
            return True
        return Path(self._db_path).parent.is_dir()

    def ensure_zone(self, zone: str) -> None:
        with self._transaction() as conn:
            conn.execute("INSERT OR IGNORE INTO zones (name) VALUES (?)", (zone,))

    def save(self, zone: str, record: SyncRecord, expected_tag: str | None = None) -> SyncRecord:
        with self._transaction() as conn:
            seq = self._next_seq(conn, zone)
            row = conn.execute(
                "SELECT change_tag FROM records WHERE zone = ? AND id = ?",
                (zone, str(record.id)),
            ).fetchone()
            if expected_tag is not None:
                current_tag = row["change_tag"] if row else None
                if current_tag != expected_tag:
                    raise ConflictError()
            if self._quota_bytes is not None:
                used = conn.execute(
                    "SELECT COALESCE(SUM(length(encrypted_payload)), 0) AS used FROM records WHERE zone = ? AND id != ?",
                    (zone, str(record.id)),
                ).fetchone()["used"]
                if used + len(record.encrypted_payload) > self._quota_bytes:
                    raise QuotaExceededError()

            stored = replace(
                record,
                modified_at=datetime.now(timezone.utc),
                change_tag=uuid.uuid4().hex,
            )
            conn.execute(
                """INSERT OR REPLACE INTO records
                   (zone, id, encrypted_payload, nonce, content_kind, timestamp, source_app_bundle_id, source_app_name,
                    paste_count, is_pinned, device_id, device_name, modified_at, change_tag, seq)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    zone,
                    str(stored.id),
                    stored.encrypted_payload,
                    stored.nonce,
                    stored.content_kind,
                    stored.timestamp.isoformat(),
                    stored.source_app_bundle_id,
                    stored.source_app_name,
                    stored.paste_count,
                    int(stored.is_pinned),
                    stored.device_id,
                    stored.device_name,
                    stored.modified_at.isoformat(),
                    stored.change_tag,
                    seq,
                ),
            )
            conn.execute("DELETE FROM tombstones WHERE zone = ? AND id = ?", (zone, str(record.id)))
            conn.execute("UPDATE zones SET seq = ? WHERE name = ?", (seq, zone))
            return stored

    def fetch(self, zone: str, record_id: uuid.UUID) -> SyncRecord | None:
        with self._transaction() as conn:
            self._require_zone(conn, zone)
            row = conn.execute(
                "SELECT * FROM records WHERE zone = ? AND id = ?",
                (zone, str(record_id)),
            ).fetchone()
            return self._row_to_record(row) if row else None

    def delete(self, zone: str, record_id: uuid.UUID) -> None:
        with self._transaction() as conn:
            seq = self._next_seq(conn, zone)
            cursor = conn.execute("DELETE FROM records WHERE zone = ? AND id = ?", (zone, str(record_id)))
            if cursor.rowcount == 0:
                raise RecordNotFoundError()
            conn.execute(
                "INSERT OR REPLACE INTO tombstones (zone, id, seq) VALUES (?, ?, ?)",
                (zone, str(record_id), seq),
            )
            conn.execute("UPDATE zones SET seq = ? WHERE name = ?", (seq, zone))

    def fetch_changes(self, zone: str, cursor: str | None) -> ChangeSet:
        since = _parse_cursor(cursor)
        with self._transaction() as conn:
            self._require_zone(conn, zone)
            rows = conn.execute(
                "SELECT * FROM records WHERE zone = ? AND seq > ? ORDER BY seq",
                (zone, since),
            ).fetchall()
            tombstones = conn.execute(
                "SELECT id FROM tombstones WHERE zone = ? AND seq > ? ORDER BY seq",
                (zone, since),
            ).fetchall()
            current = conn.execute("SELECT seq FROM zones WHERE name = ?", (zone,)).fetchone()["seq"]

        records = []
        for row in rows:
            try:
                records.append(self._row_to_record(row))
            except (TypeError, ValueError):
                logger.warning("Skipping malformed record row %r", row["id"])
        return ChangeSet(
            records=records,
            deleted_ids=[uuid.UUID(r["id"]) for r in tombstones],
            cursor=str(current),
        )

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            if not self.account_available():
                raise NotAuthenticatedError(f"Sync folder not available: {Path(self._db_path).parent}")
            conn = sqlite3.connect(self._db_path, timeout=10, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.executescript(SCHEMA)
            conn.commit()
            self._conn = conn
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                conn = self._connect()
                yield conn
                conn.commit()
            except sqlite3.OperationalError as exc:
                self._rollback()
                raise NetworkUnavailableError(str(exc)) from exc
            except sqlite3.DatabaseError as exc:
                self._rollback()
                raise ServerRejectedError(str(exc)) from exc
            except BaseException:
                self._rollback()
                raise

    def _rollback(self) -> None:
        if self._conn is not None:
            self._conn.rollback()

    @staticmethod
    def _require_zone(conn: sqlite3.Connection, zone: str) -> None:
        if conn.execute("SELECT 1 FROM zones WHERE name = ?", (zone,)).fetchone() is None:
            raise ServerRejectedError(f"Zone not found: {zone}")

    def _next_seq(self, conn: sqlite3.Connection, zone: str) -> int:
        self._require_zone(conn, zone)
        return conn.execute("SELECT seq FROM zones WHERE name = ?", (zone,)).fetchone()["seq"] + 1

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> SyncRecord:
        return SyncRecord(
            id=uuid.UUID(row["id"]),
            encrypted_payload=bytes(row["encrypted_payload"]),
            nonce=bytes(row["nonce"]),
            content_kind=row["content_kind"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            device_id=row["device_id"],
            device_name=row["device_name"],
            is_pinned=bool(row["is_pinned"]),
            source_app_bundle_id=row["source_app_bundle_id"],
            source_app_name=row["source_app_name"],
            paste_count=row["paste_count"],
            modified_at=datetime.fromisoformat(row["modified_at"]),
            change_tag=row["change_tag"],
        )

