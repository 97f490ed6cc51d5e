from unittest.mock import MagicMock, patch

import pytest

from cliphaven.models import ContentKind, ImageContent, SourceApp, TextContent
from cliphaven.monitor import ClipboardMonitor


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def monitor(source, store, settings, clock):
    return ClipboardMonitor(source, store, settings, clock=clock)


class TestCheckClipboard:
    def test_no_change(self, monitor):
        assert monitor.check_clipboard() is False

    def test_text_change(self, monitor, source, store):
        source.copy(TextContent("hello world"))

        assert monitor.check_clipboard() is True

        assert len(store) == 1
        assert store.history[0].kind == ContentKind.TEXT
        assert store.history[0].text == "hello world"

    def test_same_counter_not_read_twice(self, monitor, source, store):
        source.copy(TextContent("once"))
        monitor.check_clipboard()
        store.clear()

        assert monitor.check_clipboard() is False
        assert len(store) == 0

    def test_duplicate_text_not_added_twice(self, monitor, source, store, clock):
        source.copy(TextContent("duplicate"))
        monitor.check_clipboard()
        clock.now = 10
        source.copy(TextContent("duplicate"))

        assert monitor.check_clipboard() is False
        assert len(store) == 1

    def test_records_frontmost_app(self, monitor, source, store):
        app = SourceApp("com.apple.TextEdit", "TextEdit")
        source.copy(TextContent("typed"), app=app)

        monitor.check_clipboard()

        assert store.history[0].source_app == app

    def test_image_change(self, monitor, source, store, png_bytes):
        source.copy(ImageContent(png_bytes, 4, 3))

        assert monitor.check_clipboard() is True
        assert store.history[0].preview == "[Image: 4x3]"

    def test_callback_called_with_entry(self, source, store, settings):
        callback = MagicMock()
        mon = ClipboardMonitor(source, store, settings, on_change=callback)
        source.copy(TextContent("test"))

        mon.check_clipboard()

        callback.assert_called_once_with(store.history[0])

    def test_callback_not_called_for_duplicate(self, source, store, settings):
        callback = MagicMock()
        mon = ClipboardMonitor(source, store, settings, on_change=callback)
        source.copy(TextContent("same"))
        mon.check_clipboard()
        source.copy(TextContent("same"))
        mon.check_clipboard()

        callback.assert_called_once()

    def test_empty_clipboard_no_entry(self, monitor, source, store):
        source.copy(None)
        assert monitor.check_clipboard() is False
        assert len(store) == 0


class TestExcludedApps:
    def test_excluded_app_ignored(self, monitor, source, store, settings):
        settings.add_excluded_app("com.agilebits.onepassword7")
        source.copy(TextContent("hunter2"), app=SourceApp("com.agilebits.onepassword7", "1Password"))

        assert monitor.check_clipboard() is False
        assert len(store) == 0

    def test_counter_still_advances(self, monitor, source, store, settings):
        settings.add_excluded_app("com.example.vault")
        source.copy(TextContent("hidden"), app=SourceApp("com.example.vault"))
        monitor.check_clipboard()

        settings.remove_excluded_app("com.example.vault")

        assert monitor.check_clipboard() is False
        assert len(store) == 0

    def test_excluded_copy_does_not_scrub_previous(self, monitor, source, store, settings, clock):
        settings.add_excluded_app("com.example.vault")
        source.copy(TextContent("normal"))
        monitor.check_clipboard()

        clock.now = 1
        source.copy(TextContent("hidden"), app=SourceApp("com.example.vault"))
        monitor.check_clipboard()

        assert [e.text for e in store.history] == ["normal"]


class TestPasswordHeuristic:
    def test_quick_replacement_scrubs_previous(self, monitor, source, store, clock):
        source.copy(TextContent("s3cret!"))
        monitor.check_clipboard()

        clock.now = 1
        source.copy(TextContent("something else"))
        monitor.check_clipboard()

        assert [e.text for e in store.history] == ["something else"]

    def test_slow_replacement_keeps_previous(self, monitor, source, store, clock):
        source.copy(TextContent("keep me"))
        monitor.check_clipboard()

        clock.now = 5
        source.copy(TextContent("later"))
        monitor.check_clipboard()

        assert [e.text for e in store.history] == ["later", "keep me"]

    def test_quick_clear_scrubs_previous(self, monitor, source, store, clock):
        source.copy(TextContent("s3cret!"))
        monitor.check_clipboard()

        clock.now = 2
        source.copy(None)
        monitor.check_clipboard()

        assert len(store) == 0

    def test_disabled_keeps_everything(self, monitor, source, store, settings, clock):
        settings.set_protect_passwords(False)
        source.copy(TextContent("first"))
        monitor.check_clipboard()

        clock.now = 0.5
        source.copy(TextContent("second"))
        monitor.check_clipboard()

        assert len(store) == 2

    def test_image_capture_resets_tracking(self, monitor, source, store, clock, png_bytes):
        source.copy(TextContent("text"))
        monitor.check_clipboard()
        clock.now = 4
        source.copy(ImageContent(png_bytes, 4, 3))
        monitor.check_clipboard()

        clock.now = 4.5
        source.copy(TextContent("more text"))
        monitor.check_clipboard()

        assert len(store) == 3

    def test_pinned_copy_survives_scrub(self, monitor, source, store, clock):
        source.copy(TextContent("pin me"))
        monitor.check_clipboard()
        store.pin(store.history[0].id)

        clock.now = 1
        source.copy(TextContent("next"))
        monitor.check_clipboard()

        assert [e.text for e in store.pinned] == ["pin me"]
        assert [e.text for e in store.history] == ["next"]


class TestSizeLimits:
    def test_oversized_text_skipped(self, monitor, source, store):
        with patch("cliphaven.monitor.MAX_TEXT_SIZE", 10):
            source.copy(TextContent("x" * 11))
            assert monitor.check_clipboard() is False
        assert len(store) == 0

    def test_oversized_image_skipped(self, monitor, source, store):
        with patch("cliphaven.monitor.MAX_IMAGE_SIZE", 10):
            source.copy(ImageContent(b"\x00" * 11))
            assert monitor.check_clipboard() is False
        assert len(store) == 0


class TestSyncChangeCount:
    def test_own_write_not_captured(self, monitor, source, store):
        source.write(TextContent("pasted by app"))
        monitor.sync_change_count()

        assert monitor.check_clipboard() is False
        assert len(store) == 0


class TestErrorHandling:
    def test_exception_in_read_returns_false(self, monitor, source):
        source.copy(TextContent("x"))
        with patch.object(source, "read", side_effect=Exception("Test error")):
            assert monitor.check_clipboard() is False

    def test_polling_continues_after_error(self, monitor, source, store):
        source.copy(TextContent("x"))
        with patch.object(source, "read", side_effect=Exception("Test error")):
            monitor.check_clipboard()

        source.copy(TextContent("y"))
        assert monitor.check_clipboard() is True
