import logging
import threading
import uuid
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from cliphaven.config import DEFAULT_MAX_HISTORY
from cliphaven.models import ClipboardEntry
from cliphaven.storage import HistoryFile

logger = logging.getLogger(__name__)


class HistoryStore:
    """Ordered, deduplicated, bounded clipboard history plus a pinned list.

    History is most-recent first and holds at most one entry per content
    fingerprint. Pinned entries live in their own ordered list: they are
    exempt from the size cap and from capture-driven removal, and an id can
    be present in either list or both.
    """

    def __init__(
        self,
        history_file: HistoryFile | None = None,
        pinned_file: HistoryFile | None = None,
        max_size: int = DEFAULT_MAX_HISTORY,
    ):
        self._history_file = history_file
        self._pinned_file = pinned_file
        self._max_size = max(1, max_size)
        self._history: list[ClipboardEntry] = []
        self._pinned: list[ClipboardEntry] = []
        self._lock = threading.RLock()

    def load(self) -> None:
        with self._lock:
            if self._history_file:
                self._history = self._history_file.load()
                self._trim()
            if self._pinned_file:
                self._pinned = self._pinned_file.load()
            logger.info("Loaded %d history and %d pinned entries", len(self._history), len(self._pinned))

    @property
    def history(self) -> tuple[ClipboardEntry, ...]:
        with self._lock:
            return tuple(self._history)

    @property
    def pinned(self) -> tuple[ClipboardEntry, ...]:
        with self._lock:
            return tuple(self._pinned)

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        return len(self._history)

    def get(self, entry_id: uuid.UUID) -> ClipboardEntry | None:
        with self._lock:
            for entry in self._history:
                if entry.id == entry_id:
                    return entry
            for entry in self._pinned:
                if entry.id == entry_id:
                    return entry
        return None

    def is_pinned(self, entry_id: uuid.UUID) -> bool:
        with self._lock:
            return any(e.id == entry_id for e in self._pinned)

    def knows(self, entry_id: uuid.UUID) -> bool:
        return self.get(entry_id) is not None

    def add(self, entry: ClipboardEntry) -> bool:
        with self._lock:
            if self._history and self._history[0].fingerprint == entry.fingerprint:
                return False

            fp = entry.fingerprint
            self._history = [e for e in self._history if e.fingerprint != fp]
            self._history.insert(0, entry)
            self._trim()
            self._save_history()
            logger.debug("Added clipboard entry, history count: %d", len(self._history))
            return True

    def paste(self, entry_id: uuid.UUID) -> ClipboardEntry | None:
        with self._lock:
            index = self._index_of(entry_id)
            if index is None:
                return self._paste_pinned(entry_id)
            entry = self._history.pop(index)
            entry.paste_count += 1
            self._history.insert(0, entry)
            for pinned in self._pinned:
                if pinned.id == entry_id and pinned is not entry:
                    pinned.paste_count = entry.paste_count
            self._save_history()
            if self.is_pinned(entry_id):
                self._save_pinned()
            return entry

    def delete(self, entry_id: uuid.UUID) -> None:
        with self._lock:
            self._history = [e for e in self._history if e.id != entry_id]
            self._pinned = [e for e in self._pinned if e.id != entry_id]
            self._save_history()
            self._save_pinned()

    def pin(self, entry_id: uuid.UUID, entry: ClipboardEntry | None = None) -> bool:
        with self._lock:
            if self.is_pinned(entry_id):
                return False
            if entry is None:
                index = self._index_of(entry_id)
                if index is None:
                    return False
                entry = self._history[index]
            # Pins keep their own snapshot so later history edits don't leak in
            self._pinned.insert(0, replace(entry))
            self._save_pinned()
            return True

    def unpin(self, entry_id: uuid.UUID) -> bool:
        with self._lock:
            before = len(self._pinned)
            self._pinned = [e for e in self._pinned if e.id != entry_id]
            if len(self._pinned) == before:
                return False
            self._save_pinned()
            return True

    def toggle_pin(self, entry_id: uuid.UUID) -> bool:
        """Flip pin membership. Returns the new pinned state."""
        with self._lock:
            if self.is_pinned(entry_id):
                self.unpin(entry_id)
                return False
            return self.pin(entry_id)

    def clear(self) -> None:
        with self._lock:
            self._history.clear()
            self._save_history()

    def clear_pinned(self) -> None:
        with self._lock:
            self._pinned.clear()
            self._save_pinned()

    def remove_matching(self, fingerprint: str) -> int:
        with self._lock:
            before = len(self._history)
            self._history = [e for e in self._history if e.fingerprint != fingerprint]
            removed = before - len(self._history)
            if removed:
                self._save_history()
            return removed

    def merge(self, entries: Iterable[ClipboardEntry]) -> int:
        """Add synced entries whose id is not known locally.

        Known ids are left untouched, even when the incoming content differs.
        Each entry is placed by capture time, ahead of the first local entry
        that is not newer than it. A local entry with the same fingerprint is
        replaced when it is older and wins otherwise. Returns the number of
        merged entries still in history after the size cap is applied.
        """
        added: list[uuid.UUID] = []
        with self._lock:
            for entry in sorted(entries, key=lambda e: e.timestamp):
                if self.knows(entry.id):
                    continue
                fp = entry.fingerprint
                if any(e.fingerprint == fp and e.timestamp >= entry.timestamp for e in self._history):
                    continue
                self._history = [e for e in self._history if e.fingerprint != fp]
                index = next(
                    (i for i, e in enumerate(self._history) if e.timestamp <= entry.timestamp),
                    len(self._history),
                )
                self._history.insert(index, entry)
                added.append(entry.id)

            if not added:
                return 0
            self._trim()
            self._save_history()
            kept = {e.id for e in self._history}
            merged = sum(1 for entry_id in added if entry_id in kept)
        logger.info("Merged %d synced entries", merged)
        return merged

    def expire(self, max_age_hours: int, now: datetime | None = None) -> int:
        if max_age_hours <= 0:
            return 0
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=max_age_hours)
        with self._lock:
            before = len(self._history)
            self._history = [e for e in self._history if e.timestamp >= cutoff]
            expired = before - len(self._history)
            if expired:
                self._save_history()
                logger.info("Expired %d entries older than %d hours", expired, max_age_hours)
            return expired

    def set_max_size(self, max_size: int) -> None:
        with self._lock:
            self._max_size = max(1, max_size)
            if self._trim():
                self._save_history()

    def _paste_pinned(self, entry_id: uuid.UUID) -> ClipboardEntry | None:
        for pinned in self._pinned:
            if pinned.id == entry_id:
                pinned.paste_count += 1
                self._save_pinned()
                return pinned
        return None

    def _index_of(self, entry_id: uuid.UUID) -> int | None:
        for index, entry in enumerate(self._history):
            if entry.id == entry_id:
                return index
        return None

    def _trim(self) -> bool:
        if len(self._history) <= self._max_size:
            return False
        del self._history[self._max_size :]
        return True

    def _save_history(self) -> None:
        if self._history_file:
            self._history_file.save(self._history)

    def _save_pinned(self) -> None:
        if self._pinned_file:
            self._pinned_file.save(self._pinned)
