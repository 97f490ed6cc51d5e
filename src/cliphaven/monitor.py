import logging
import time
from collections.abc import Callable

from cliphaven.config import MAX_IMAGE_SIZE, MAX_TEXT_SIZE
from cliphaven.history import HistoryStore
from cliphaven.models import ClipboardContent, ClipboardEntry, ImageContent, TextContent
from cliphaven.passwords import PasswordHeuristicFilter
from cliphaven.settings import Settings
from cliphaven.source import ClipboardSource

logger = logging.getLogger(__name__)


class ClipboardMonitor:
    def __init__(
        self,
        source: ClipboardSource,
        history: HistoryStore,
        settings: Settings,
        on_change: Callable[[ClipboardEntry], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._source = source
        self._history = history
        self._settings = settings
        self._on_change = on_change
        self._clock = clock
        self._password_filter = PasswordHeuristicFilter(history, is_enabled=lambda: settings.protect_passwords)
        self._last_change_count = source.change_count()

    @property
    def password_filter(self) -> PasswordHeuristicFilter:
        return self._password_filter

    def check_clipboard(self) -> bool:
        current_count = self._source.change_count()
        if current_count == self._last_change_count:
            return False

        self._last_change_count = current_count

        try:
            source_app = self._source.frontmost_app()
            if source_app and self._settings.is_app_excluded(source_app.bundle_id):
                logger.debug("Skipping clipboard from excluded app: %s", source_app.name or source_app.bundle_id)
                return False

            content = self._source.read()
            now = self._clock()
            current_text = content.text if isinstance(content, TextContent) else None
            self._password_filter.before_capture(current_text, now)

            if content is None:
                # Clipboard was cleared
                self._password_filter.reset()
                return False

            if not self._accept(content):
                return False

            if isinstance(content, TextContent):
                self._password_filter.record_text(content.text, now)
            else:
                self._password_filter.record_image()

            entry = ClipboardEntry(content=content, source_app=source_app)
            if not self._history.add(entry):
                return False

            if self._on_change:
                self._on_change(entry)
            return True
        except Exception:
            logger.exception("Error reading clipboard")
            return False

    def sync_change_count(self) -> None:
        self._last_change_count = self._source.change_count()

    @staticmethod
    def _accept(content: ClipboardContent) -> bool:
        match content:
            case TextContent(text=text):
                size = len(text.encode("utf-8"))
                if size > MAX_TEXT_SIZE:
                    logger.warning("Text too large (%d bytes), skipping", size)
                    return False
                return True
            case ImageContent(data=data):
                if len(data) > MAX_IMAGE_SIZE:
                    logger.warning("Image too large (%d bytes), skipping", len(data))
                    return False
                return True
        raise TypeError(f"Unsupported clipboard content: {content!r}")
