import json
import logging
import os
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from cliphaven.models import ClipboardEntry, SourceApp, TextContent

logger = logging.getLogger(__name__)


class HistoryFile:
    """JSON persistence for text entries.

    Image entries are never written, so they do not survive a restart.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def save(self, entries: Iterable[ClipboardEntry]) -> bool:
        records = [self._entry_to_record(e) for e in entries if isinstance(e.content, TextContent)]
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(records, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except (OSError, ValueError):
            logger.exception("Failed to save history to %s", self._path)
            return False
        return True

    def load(self) -> list[ClipboardEntry]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.exception("Failed to load history from %s", self._path)
            return []
        if not isinstance(raw, list):
            logger.warning("Ignoring history file %s: expected a JSON array", self._path)
            return []

        entries = []
        for record in raw:
            try:
                entries.append(self._record_to_entry(record))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed history record: %r", record)
        return entries

    @staticmethod
    def _entry_to_record(entry: ClipboardEntry) -> dict:
        record = {
            "id": str(entry.id),
            "text": entry.content.text,
            "timestamp": entry.timestamp.isoformat(),
            "pasteCount": entry.paste_count,
        }
        if entry.source_app:
            if entry.source_app.bundle_id is not None:
                record["sourceAppBundleID"] = entry.source_app.bundle_id
            if entry.source_app.name is not None:
                record["sourceAppName"] = entry.source_app.name
        return record

    @staticmethod
    def _record_to_entry(record: dict) -> ClipboardEntry:
        # Optional fields may be missing in files written by older versions
        text = record["text"]
        if not isinstance(text, str):
            raise TypeError("text must be a string")
        timestamp = datetime.fromisoformat(record["timestamp"])
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        bundle_id = record.get("sourceAppBundleID")
        app_name = record.get("sourceAppName")
        source_app = SourceApp(bundle_id, app_name) if bundle_id or app_name else None
        return ClipboardEntry(
            id=uuid.UUID(record["id"]),
            content=TextContent(text),
            timestamp=timestamp,
            source_app=source_app,
            paste_count=int(record.get("pasteCount") or 0),
        )
