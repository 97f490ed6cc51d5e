import sqlite3
import uuid
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from cliphaven.errors import (
    ConflictError,
    NetworkUnavailableError,
    NotAuthenticatedError,
    QuotaExceededError,
    RecordNotFoundError,
    ServerRejectedError,
)
from cliphaven.models import SyncRecord
from cliphaven.remote import MemoryRemoteStore, SQLiteRemoteStore

ZONE = "TestZone"


def _record(payload: bytes = b"cipher", record_id: uuid.UUID | None = None) -> SyncRecord:
    return SyncRecord(
        id=record_id or uuid.uuid4(),
        encrypted_payload=payload,
        nonce=b"n" * 12,
        content_kind="text",
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        device_id="device-1",
        device_name="Test Mac",
        source_app_bundle_id="com.example.app",
        paste_count=2,
    )


@pytest.fixture(params=["memory", "sqlite"])
def remote(request, tmp_path):
    if request.param == "memory":
        yield MemoryRemoteStore()
    else:
        with SQLiteRemoteStore(tmp_path / "records.db") as db:
            yield db


@pytest.fixture
def zoned(remote):
    remote.ensure_zone(ZONE)
    return remote


class TestSaveAndFetch:
    def test_save_assigns_tag_and_time(self, zoned):
        stored = zoned.save(ZONE, _record())
        assert stored.change_tag
        assert stored.modified_at is not None

    def test_fetch_returns_saved_fields(self, zoned):
        record = _record(b"payload")
        zoned.save(ZONE, record)

        fetched = zoned.fetch(ZONE, record.id)

        assert fetched.id == record.id
        assert fetched.encrypted_payload == b"payload"
        assert fetched.nonce == record.nonce
        assert fetched.timestamp == record.timestamp
        assert fetched.source_app_bundle_id == "com.example.app"
        assert fetched.paste_count == 2

    def test_fetch_missing(self, zoned):
        assert zoned.fetch(ZONE, uuid.uuid4()) is None

    def test_save_is_upsert(self, zoned):
        record = _record(b"v1")
        first = zoned.save(ZONE, record)
        second = zoned.save(ZONE, _record(b"v2", record_id=record.id))

        assert first.change_tag != second.change_tag
        assert zoned.fetch(ZONE, record.id).encrypted_payload == b"v2"

    def test_unknown_zone_rejected(self, remote):
        remote.ensure_zone(ZONE)
        with pytest.raises(ServerRejectedError):
            remote.save("Missing", _record())

    def test_ensure_zone_idempotent(self, zoned):
        zoned.save(ZONE, _record())
        zoned.ensure_zone(ZONE)
        assert len(zoned.fetch_changes(ZONE, None).records) == 1


class TestConflicts:
    def test_matching_tag_succeeds(self, zoned):
        record = _record()
        stored = zoned.save(ZONE, record)
        zoned.save(ZONE, record, expected_tag=stored.change_tag)

    def test_stale_tag_conflicts(self, zoned):
        record = _record()
        stale = zoned.save(ZONE, record)
        zoned.save(ZONE, record)

        with pytest.raises(ConflictError):
            zoned.save(ZONE, record, expected_tag=stale.change_tag)

    def test_expected_tag_on_missing_record_conflicts(self, zoned):
        with pytest.raises(ConflictError):
            zoned.save(ZONE, _record(), expected_tag="abc")


class TestChangeFeed:
    def test_full_fetch_without_cursor(self, zoned):
        ids = [zoned.save(ZONE, _record()).id for _ in range(3)]
        changes = zoned.fetch_changes(ZONE, None)
        assert [r.id for r in changes.records] == ids

    def test_cursor_returns_only_newer(self, zoned):
        zoned.save(ZONE, _record())
        cursor = zoned.fetch_changes(ZONE, None).cursor

        later = zoned.save(ZONE, _record())
        changes = zoned.fetch_changes(ZONE, cursor)

        assert [r.id for r in changes.records] == [later.id]

    def test_cursor_stable_without_changes(self, zoned):
        zoned.save(ZONE, _record())
        cursor = zoned.fetch_changes(ZONE, None).cursor

        changes = zoned.fetch_changes(ZONE, cursor)

        assert changes.records == []
        assert changes.cursor == cursor

    def test_updated_record_reported_once(self, zoned):
        record = _record()
        zoned.save(ZONE, record)
        zoned.save(ZONE, record)
        assert len(zoned.fetch_changes(ZONE, None).records) == 1

    def test_invalid_cursor_rejected(self, zoned):
        with pytest.raises(ServerRejectedError):
            zoned.fetch_changes(ZONE, "not-a-number")


class TestDelete:
    def test_delete_reports_tombstone(self, zoned):
        record = zoned.save(ZONE, _record())
        cursor = zoned.fetch_changes(ZONE, None).cursor

        zoned.delete(ZONE, record.id)
        changes = zoned.fetch_changes(ZONE, cursor)

        assert zoned.fetch(ZONE, record.id) is None
        assert changes.deleted_ids == [record.id]

    def test_delete_missing_raises(self, zoned):
        with pytest.raises(RecordNotFoundError):
            zoned.delete(ZONE, uuid.uuid4())

    def test_resave_clears_tombstone(self, zoned):
        record = _record()
        zoned.save(ZONE, record)
        zoned.delete(ZONE, record.id)
        zoned.save(ZONE, record)

        changes = zoned.fetch_changes(ZONE, None)

        assert changes.deleted_ids == []
        assert [r.id for r in changes.records] == [record.id]


class TestQuota:
    @pytest.fixture(params=["memory", "sqlite"])
    def limited(self, request, tmp_path):
        if request.param == "memory":
            store = MemoryRemoteStore(quota_bytes=10)
        else:
            store = SQLiteRemoteStore(":memory:", quota_bytes=10)
        store.ensure_zone(ZONE)
        return store

    def test_over_quota(self, limited):
        limited.save(ZONE, _record(b"12345678"))
        with pytest.raises(QuotaExceededError):
            limited.save(ZONE, _record(b"abc"))

    def test_overwrite_counts_replacement_only(self, limited):
        record = _record(b"12345678")
        limited.save(ZONE, record)
        limited.save(ZONE, _record(b"1234567890", record_id=record.id))

    def test_failed_save_leaves_store_unchanged(self, limited):
        limited.save(ZONE, _record(b"12345678"))
        with pytest.raises(QuotaExceededError):
            limited.save(ZONE, _record(b"abc"))
        assert len(limited.fetch_changes(ZONE, None).records) == 1


class TestAccount:
    def test_memory_store_signed_out(self):
        store = MemoryRemoteStore()
        store.available = False
        assert store.account_available() is False
        with pytest.raises(NotAuthenticatedError):
            store.ensure_zone(ZONE)

    def test_sqlite_missing_folder_signed_out(self, tmp_path):
        store = SQLiteRemoteStore(tmp_path / "missing" / "records.db")
        assert store.account_available() is False
        with pytest.raises(NotAuthenticatedError):
            store.ensure_zone(ZONE)

    def test_sqlite_memory_always_available(self):
        assert SQLiteRemoteStore(":memory:").account_available() is True


class TestSQLiteErrors:
    def test_operational_error_maps_to_network(self, tmp_path):
        store = SQLiteRemoteStore(tmp_path / "records.db")
        store.ensure_zone(ZONE)
        with patch.object(store, "_next_seq", side_effect=sqlite3.OperationalError("database is locked")):
            with pytest.raises(NetworkUnavailableError):
                store.save(ZONE, _record())
        store.close()

    def test_integrity_error_maps_to_rejected(self, tmp_path):
        store = SQLiteRemoteStore(tmp_path / "records.db")
        store.ensure_zone(ZONE)
        bad = _record()
        bad.content_kind = "video"
        with pytest.raises(ServerRejectedError):
            store.save(ZONE, bad)
        assert store.fetch_changes(ZONE, None).records == []
        store.close()

    def test_persists_across_connections(self, tmp_path):
        path = tmp_path / "records.db"
        record = _record()
        with SQLiteRemoteStore(path) as first:
            first.ensure_zone(ZONE)
            first.save(ZONE, record)

        with SQLiteRemoteStore(path) as second:
            assert second.fetch(ZONE, record.id).id == record.id
