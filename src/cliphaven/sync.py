import json
import logging
import os
import socket
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from cliphaven.config import SYNC_STATE_PATH, ZONE_NAME
from cliphaven.crypto import EncryptionService
from cliphaven.errors import (
    DecryptionError,
    EncryptionError,
    NotAuthenticatedError,
    QuotaExceededError,
    RecordNotFoundError,
    ServerRejectedError,
    SyncError,
    SyncInProgressError,
)
from cliphaven.models import ClipboardContent, ClipboardEntry, ContentKind, ImageContent, SourceApp, SyncRecord, TextContent
from cliphaven.remote import RemoteStore
from cliphaven.utils import get_image_dimensions, to_png

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass(frozen=True)
class SyncStatus:
    state: SyncState = SyncState.IDLE
    last_sync: datetime | None = None
    error: SyncError | None = None


class SyncService:
    """Encrypted replication of clipboard entries through a remote store.

    Only one operation runs at a time; overlapping calls raise
    SyncInProgressError. Fetched entries are returned to the caller, which
    decides how to merge them into local history.
    """

    def __init__(
        self,
        store: RemoteStore,
        encryption: EncryptionService,
        state_path: str | Path | None = None,
        zone: str = ZONE_NAME,
        device_name: str | None = None,
    ):
        self._store = store
        self._encryption = encryption
        self._state_path = Path(state_path) if state_path else SYNC_STATE_PATH
        self._zone = zone
        self._device_name = device_name or socket.gethostname() or "Mac"
        self._lock = threading.Lock()
        self._ready = False
        self._quota_exceeded = False
        self._status = SyncStatus()
        self._device_id, self._cursor = self._load_state()

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def device_name(self) -> str:
        return self._device_name

    @property
    def cursor(self) -> str | None:
        return self._cursor

    def is_available(self) -> bool:
        try:
            return self._store.account_available()
        except SyncError:
            return False

    def setup(self) -> None:
        with self._operation():
            self._ensure_ready()

    def upload(self, entry: ClipboardEntry, is_pinned: bool = False, expected_tag: str | None = None) -> str:
        """Encrypt and upsert entry. Returns the record's new change tag."""
        if self._quota_exceeded:
            raise QuotaExceededError()

        with self._operation():
            self._ensure_ready()
            ciphertext, nonce = self._encryption.encrypt(self._serialize(entry.content))
            record = SyncRecord(
                id=entry.id,
                encrypted_payload=ciphertext,
                nonce=nonce,
                content_kind=entry.kind.value,
                timestamp=entry.timestamp,
                device_id=self._device_id,
                device_name=self._device_name,
                is_pinned=is_pinned,
                source_app_bundle_id=entry.source_app.bundle_id if entry.source_app else None,
                source_app_name=entry.source_app.name if entry.source_app else None,
                paste_count=entry.paste_count,
            )
            stored = self._store.save(self._zone, record, expected_tag=expected_tag)
            logger.debug("Uploaded entry %s", entry.id)
            return stored.change_tag

    def fetch_changes(self) -> list[ClipboardEntry]:
        """Entries changed remotely since the last successful fetch.

        Records that fail to decrypt are skipped. The change cursor only
        advances once the whole change set has been processed.
        """
        with self._operation():
            self._ensure_ready()
            changes = self._store.fetch_changes(self._zone, self._cursor)

            entries = []
            for record in changes.records:
                try:
                    entries.append(self._decrypt_record(record))
                except DecryptionError:
                    logger.warning("Skipping record %s: could not decrypt", record.id)
            if changes.deleted_ids:
                # Remote deletions are not applied to local history
                logger.debug("Ignoring %d remote deletions", len(changes.deleted_ids))

            self._cursor = changes.cursor
            self._save_state()
            logger.info("Fetched %d changed entries (%d skipped)", len(entries), len(changes.records) - len(entries))
            return entries

    def fetch_entry(self, entry_id: uuid.UUID) -> ClipboardEntry | None:
        with self._operation():
            self._ensure_ready()
            record = self._store.fetch(self._zone, entry_id)
            return self._decrypt_record(record) if record else None

    def delete(self, entry_id: uuid.UUID) -> bool:
        """Remove the remote copy of an entry. Returns False if there was none."""
        with self._operation():
            self._ensure_ready()
            try:
                self._store.delete(self._zone, entry_id)
            except RecordNotFoundError:
                return False
            return True

    def reset_cursor(self) -> None:
        self._cursor = None
        self._save_state()

    def reset_error(self) -> None:
        """Clear the last error, re-enabling uploads after a quota failure."""
        self._quota_exceeded = False
        self._status = SyncStatus(SyncState.IDLE, self._status.last_sync, None)

    @contextmanager
    def _operation(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise SyncInProgressError()
        try:
            self._status = SyncStatus(SyncState.SYNCING, self._status.last_sync, None)
            try:
                yield
            except SyncError as exc:
                self._fail(exc)
                raise
            except Exception as exc:
                error = ServerRejectedError(str(exc))
                self._fail(error)
                raise error from exc
            self._status = SyncStatus(SyncState.IDLE, datetime.now(timezone.utc), None)
        finally:
            self._lock.release()

    def _fail(self, error: SyncError) -> None:
        logger.error("Sync failed: %s", error)
        if isinstance(error, QuotaExceededError):
            self._quota_exceeded = True
        self._status = SyncStatus(SyncState.ERROR, self._status.last_sync, error)

    def _ensure_ready(self) -> None:
        if self._ready:
            return
        if not self._store.account_available():
            raise NotAuthenticatedError()
        self._store.ensure_zone(self._zone)
        self._ready = True

    @staticmethod
    def _serialize(content: ClipboardContent) -> bytes:
        match content:
            case TextContent(text=text):
                return text.encode("utf-8")
            case ImageContent(data=data):
                try:
                    return to_png(data)
                except ValueError as exc:
                    raise EncryptionError("Could not convert image for sync") from exc
        raise TypeError(f"Unsupported clipboard content: {content!r}")

    def _decrypt_record(self, record: SyncRecord) -> ClipboardEntry:
        payload = self._encryption.decrypt(record.encrypted_payload, record.nonce)

        content: ClipboardContent
        if record.content_kind == ContentKind.TEXT.value:
            try:
                content = TextContent(payload.decode("utf-8"))
            except UnicodeDecodeError as exc:
                raise DecryptionError() from exc
        elif record.content_kind == ContentKind.IMAGE.value:
            width, height = get_image_dimensions(payload)
            if width == 0:
                raise DecryptionError("Synced image could not be read")
            content = ImageContent(payload, width, height)
        else:
            raise DecryptionError(f"Unknown content kind: {record.content_kind!r}")

        timestamp = record.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        source_app = None
        if record.source_app_bundle_id or record.source_app_name:
            source_app = SourceApp(record.source_app_bundle_id, record.source_app_name)
        return ClipboardEntry(
            id=record.id,
            content=content,
            timestamp=timestamp,
            source_app=source_app,
            paste_count=record.paste_count,
        )

    def _load_state(self) -> tuple[str, str | None]:
        state = {}
        if self._state_path.exists():
            try:
                state = json.loads(self._state_path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                logger.exception("Failed to read sync state from %s", self._state_path)
            if not isinstance(state, dict):
                state = {}

        device_id = state.get("deviceId")
        cursor = state.get("changeCursor")
        if not isinstance(cursor, str):
            cursor = None
        if not isinstance(device_id, str) or not device_id:
            device_id = str(uuid.uuid4())
            self._device_id, self._cursor = device_id, cursor
            self._save_state()
        return device_id, cursor

    def _save_state(self) -> None:
        tmp_path = self._state_path.with_suffix(self._state_path.suffix + ".tmp")
        try:
            self._state_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps({"deviceId": self._device_id, "changeCursor": self._cursor}),
                encoding="utf-8",
            )
            os.replace(tmp_path, self._state_path)
        except OSError:
            logger.exception("Failed to save sync state to %s", self._state_path)
