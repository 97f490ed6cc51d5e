import uuid
from datetime import datetime, timedelta, timezone

import pytest

from cliphaven.models import ClipboardEntry, ContentKind, ImageContent, TextContent, fingerprint
from cliphaven.utils import compute_hash


class TestFingerprint:
    def test_text_prefixed(self):
        assert fingerprint(TextContent("abc")) == "text:" + compute_hash("abc")

    def test_image_prefixed(self):
        assert fingerprint(ImageContent(b"abc")) == "image:" + compute_hash(b"abc")

    def test_text_and_image_with_same_bytes_differ(self):
        assert fingerprint(TextContent("abc")) != fingerprint(ImageContent(b"abc"))

    def test_dimensions_do_not_affect_image_identity(self):
        assert fingerprint(ImageContent(b"x", 1, 1)) == fingerprint(ImageContent(b"x", 9, 9))

    def test_unknown_content_raises(self):
        with pytest.raises(TypeError):
            fingerprint("plain string")


class TestClipboardEntry:
    def test_defaults(self):
        entry = ClipboardEntry(TextContent("hi"))
        assert isinstance(entry.id, uuid.UUID)
        assert entry.timestamp.tzinfo is not None
        assert entry.paste_count == 0
        assert entry.source_app is None

    def test_unique_ids(self):
        assert ClipboardEntry(TextContent("a")).id != ClipboardEntry(TextContent("a")).id

    def test_fingerprint_follows_content(self):
        entry = ClipboardEntry(TextContent("hi"))
        assert entry.fingerprint == fingerprint(TextContent("hi"))

    def test_kind_and_text(self):
        assert ClipboardEntry(TextContent("hi")).kind == ContentKind.TEXT
        assert ClipboardEntry(TextContent("hi")).text == "hi"
        assert ClipboardEntry(ImageContent(b"x")).kind == ContentKind.IMAGE
        assert ClipboardEntry(ImageContent(b"x")).text is None


class TestPreview:
    def test_text_trimmed(self):
        assert ClipboardEntry(TextContent("  hello  \n")).preview == "hello"

    def test_long_text_cut(self):
        preview = ClipboardEntry(TextContent("x" * 250)).preview
        assert preview == "x" * 100 + "..."

    def test_image_with_dimensions(self):
        assert ClipboardEntry(ImageContent(b"x", 640, 480)).preview == "[Image: 640x480]"

    def test_image_without_dimensions(self):
        assert ClipboardEntry(ImageContent(b"x")).preview == "[Image]"


class TestStats:
    def test_text_counts_words_and_chars(self):
        assert ClipboardEntry(TextContent("hello big world")).stats == "3w · 15c"

    def test_image_dimensions(self):
        assert ClipboardEntry(ImageContent(b"x", 32, 16)).stats == "32x16"


class TestTimeAgo:
    def test_relative_to_now(self):
        now = datetime(2024, 5, 1, tzinfo=timezone.utc)
        entry = ClipboardEntry(TextContent("a"), timestamp=now - timedelta(minutes=5))
        assert entry.time_ago(now) == "5m"
