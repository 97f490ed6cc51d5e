import io
from datetime import datetime, timedelta, timezone

import pytest
from PIL import Image

from cliphaven.history import HistoryStore
from cliphaven.models import ClipboardContent, ClipboardEntry, ImageContent, SourceApp, TextContent
from cliphaven.settings import Settings
from cliphaven.source import ClipboardSource
from cliphaven.storage import HistoryFile


class FakeSource(ClipboardSource):
    """Scriptable clipboard: copy() bumps the change counter like the OS does."""

    def __init__(self):
        self.count = 0
        self.content: ClipboardContent | None = None
        self.app: SourceApp | None = None
        self.written: list[ClipboardContent] = []

    def copy(self, content: ClipboardContent | None, app: SourceApp | None = None) -> None:
        self.content = content
        self.app = app
        self.count += 1

    def change_count(self) -> int:
        return self.count

    def read(self) -> ClipboardContent | None:
        return self.content

    def frontmost_app(self) -> SourceApp | None:
        return self.app

    def write(self, content: ClipboardContent) -> None:
        self.written.append(content)
        self.content = content
        self.count += 1


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def other_source():
    return FakeSource()


@pytest.fixture
def history_file(tmp_path):
    return HistoryFile(tmp_path / "history.json")


@pytest.fixture
def pinned_file(tmp_path):
    return HistoryFile(tmp_path / "pinned.json")


@pytest.fixture
def store(history_file, pinned_file):
    return HistoryStore(history_file, pinned_file)


@pytest.fixture
def settings(tmp_path, store):
    s = Settings(tmp_path / "settings.json")
    s.attach_history(store)
    return s


@pytest.fixture
def png_bytes():
    out = io.BytesIO()
    Image.new("RGB", (4, 3), color=(255, 0, 0)).save(out, format="PNG")
    return out.getvalue()


@pytest.fixture
def make_entry():
    """Factory fixture to create ClipboardEntry instances for testing."""

    def _make_entry(
        text: str = "hello world",
        image: bytes | None = None,
        age_seconds: float = 0,
        source_app: SourceApp | None = None,
        paste_count: int = 0,
    ) -> ClipboardEntry:
        content = ImageContent(image, 4, 3) if image is not None else TextContent(text)
        return ClipboardEntry(
            content=content,
            timestamp=datetime.now(timezone.utc) - timedelta(seconds=age_seconds),
            source_app=source_app,
            paste_count=paste_count,
        )

    return _make_entry
