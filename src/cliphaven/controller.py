import logging
import queue
import uuid
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace

from cliphaven.config import HISTORY_PATH, KEY_PATH, PINNED_PATH, SETTINGS_PATH, SYNC_DB_NAME, SYNC_DIR, SYNC_STATE_PATH
from cliphaven.crypto import EncryptionService
from cliphaven.errors import SyncError
from cliphaven.history import HistoryStore
from cliphaven.models import ClipboardEntry
from cliphaven.monitor import ClipboardMonitor
from cliphaven.remote import SQLiteRemoteStore
from cliphaven.settings import Settings
from cliphaven.source import ClipboardSource, PasteboardSource
from cliphaven.storage import HistoryFile
from cliphaven.sync import SyncService
from cliphaven.utils import ensure_dirs

logger = logging.getLogger(__name__)


def build_sync_service() -> SyncService:
    store = SQLiteRemoteStore(SYNC_DIR / SYNC_DB_NAME)
    encryption = EncryptionService.load_or_create(KEY_PATH)
    return SyncService(store, encryption, SYNC_STATE_PATH)


def load_history_and_settings() -> tuple[HistoryStore, Settings]:
    ensure_dirs()
    settings = Settings(SETTINGS_PATH)
    history = HistoryStore(HistoryFile(HISTORY_PATH), HistoryFile(PINNED_PATH), max_size=settings.max_history_size)
    history.load()
    settings.attach_history(history)
    return history, settings


def sync_history(history: HistoryStore, sync: SyncService) -> int:
    """Fetch remote changes and merge them into history. Returns the merged count.

    Local entries are uploaded when captured or pinned, never in bulk, so a
    record deleted on another device is not recreated here.
    """
    return history.merge(sync.fetch_changes())


class ClipboardController:
    """Owns the history engine and wires capture, paste and sync together.

    All public methods are meant to be called from one thread (the UI main
    thread). Sync work runs on a single background worker; fetched entries
    are queued and merged into history by drain_sync_results() on the owner
    thread.
    """

    def __init__(
        self,
        history: HistoryStore,
        settings: Settings,
        source: ClipboardSource,
        sync: SyncService | None = None,
        sync_factory: Callable[[], SyncService] | None = None,
        on_change: Callable[[], None] | None = None,
        on_sync_error: Callable[[SyncError], None] | None = None,
    ):
        self._history = history
        self._settings = settings
        self._source = source
        self._sync = sync
        self._sync_factory = sync_factory
        self._on_change = on_change
        self._on_sync_error = on_sync_error
        self._monitor = ClipboardMonitor(source, history, settings, on_change=self._on_capture)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cliphaven-sync")
        self._fetched: queue.Queue[list[ClipboardEntry]] = queue.Queue()
        self._errors: queue.Queue[SyncError] = queue.Queue()

    @classmethod
    def create(cls, **kwargs) -> "ClipboardController":
        history, settings = load_history_and_settings()
        sync = build_sync_service() if settings.sync_enabled else None
        return cls(history, settings, PasteboardSource(), sync=sync, sync_factory=build_sync_service, **kwargs)

    @property
    def history(self) -> HistoryStore:
        return self._history

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def monitor(self) -> ClipboardMonitor:
        return self._monitor

    @property
    def sync(self) -> SyncService | None:
        return self._sync

    def set_on_change(self, callback: Callable[[], None] | None) -> None:
        self._on_change = callback

    def set_on_sync_error(self, callback: Callable[[SyncError], None] | None) -> None:
        self._on_sync_error = callback

    def poll(self) -> bool:
        """One timer tick: check the clipboard and apply finished sync results."""
        captured = self._monitor.check_clipboard()
        merged = self.drain_sync_results()
        if merged and self._on_change:
            self._on_change()
        return captured or merged > 0

    def expire(self) -> int:
        expired = self._history.expire(self._settings.auto_expire_hours)
        if expired and self._on_change:
            self._on_change()
        return expired

    def paste(self, entry_id: uuid.UUID) -> ClipboardEntry | None:
        entry = self._history.get(entry_id)
        if entry is None:
            return None
        self._source.write(entry.content)
        self._monitor.sync_change_count()
        promoted = self._history.paste(entry_id)
        self._notify()
        return promoted or entry

    def delete(self, entry_id: uuid.UUID) -> None:
        self._history.delete(entry_id)
        if self._sync_active():
            self._submit(self._sync.delete, entry_id)
        self._notify()

    def toggle_pin(self, entry_id: uuid.UUID) -> bool:
        pinned = self._history.toggle_pin(entry_id)
        entry = self._history.get(entry_id)
        if entry is not None and self._sync_active():
            self._submit(self._sync.upload, replace(entry), pinned)
        self._notify()
        return pinned

    def clear(self) -> None:
        self._history.clear()
        self._notify()

    def clear_pinned(self) -> None:
        self._history.clear_pinned()
        self._notify()

    def set_sync_enabled(self, enabled: bool) -> None:
        self._settings.set_sync_enabled(enabled)
        if enabled and self._sync is None and self._sync_factory is not None:
            self._sync = self._sync_factory()

    def sync_now(self) -> Future | None:
        if not self._sync_active():
            return None
        return self._submit(self._run_sync)

    def drain_sync_results(self) -> int:
        merged = 0
        while True:
            try:
                entries = self._fetched.get_nowait()
            except queue.Empty:
                break
            merged += self._history.merge(entries)

        while True:
            try:
                error = self._errors.get_nowait()
            except queue.Empty:
                break
            if self._on_sync_error:
                self._on_sync_error(error)
        return merged

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    def _run_sync(self) -> int:
        entries = self._sync.fetch_changes()
        self._fetched.put(entries)
        return len(entries)

    def _on_capture(self, entry: ClipboardEntry) -> None:
        if self._sync_active():
            self._submit(self._sync.upload, replace(entry), False)
        self._notify()

    def _sync_active(self) -> bool:
        return self._settings.sync_enabled and self._sync is not None

    def _submit(self, fn: Callable, *args) -> Future:
        future = self._executor.submit(fn, *args)
        future.add_done_callback(self._on_job_done)
        return future

    def _on_job_done(self, future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is None:
            return
        if isinstance(exc, SyncError):
            self._errors.put(exc)
        else:
            logger.error("Sync job failed", exc_info=exc)

    def _notify(self) -> None:
        if self._on_change:
            self._on_change()
