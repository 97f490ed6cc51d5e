"""Heuristic scrubbing of clipboard writes that look like they came from a password manager.

Password managers usually copy a credential and then overwrite or clear the
clipboard a few seconds later. When a text capture is replaced faster than
the clear window, the earlier text is dropped from history. Fast legitimate
re-copies are removed too, and slow managers slip through.
"""

import logging
import time
from collections.abc import Callable

from cliphaven.config import PASSWORD_CLEAR_WINDOW
from cliphaven.history import HistoryStore
from cliphaven.models import TextContent, fingerprint

logger = logging.getLogger(__name__)


class PasswordHeuristicFilter:
    def __init__(
        self,
        history: HistoryStore,
        is_enabled: Callable[[], bool] = lambda: True,
        window: float = PASSWORD_CLEAR_WINDOW,
    ):
        self._history = history
        self._is_enabled = is_enabled
        self._window = window
        self._last_text: str | None = None
        self._last_time: float | None = None

    @property
    def last_text(self) -> str | None:
        return self._last_text

    def before_capture(self, current_text: str | None, now: float | None = None) -> bool:
        """Scrub the previous text capture if it was replaced quickly.

        Args:
            current_text: Text currently on the clipboard, or None.
            now: Monotonic time of this capture.

        Returns:
            True if an entry was removed from history.
        """
        if not self._is_enabled():
            return False
        if self._last_text is None or self._last_time is None:
            return False

        now = time.monotonic() if now is None else now
        if now - self._last_time >= self._window:
            return False
        if current_text == self._last_text:
            return False

        removed = self._history.remove_matching(fingerprint(TextContent(self._last_text)))
        if removed:
            logger.debug("Removed quick-cleared entry (likely password)")
        return removed > 0

    def record_text(self, text: str, now: float | None = None) -> None:
        self._last_text = text
        self._last_time = time.monotonic() if now is None else now

    def record_image(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._last_text = None
        self._last_time = None
