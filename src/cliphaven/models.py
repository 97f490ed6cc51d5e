import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from cliphaven.config import PREVIEW_LENGTH
from cliphaven.utils import compute_hash, format_time_ago, truncate_text


class ContentKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"


@dataclass(frozen=True)
class TextContent:
    text: str

    kind = ContentKind.TEXT


@dataclass(frozen=True)
class ImageContent:
    data: bytes
    width: int = 0
    height: int = 0

    kind = ContentKind.IMAGE


ClipboardContent = TextContent | ImageContent


@dataclass(frozen=True)
class SourceApp:
    bundle_id: str | None
    name: str | None = None


def fingerprint(content: ClipboardContent) -> str:
    """Identity hash used for deduplication. Text and image never collide."""
    match content:
        case TextContent(text=text):
            return "text:" + compute_hash(text)
        case ImageContent(data=data):
            return "image:" + compute_hash(data)
    raise TypeError(f"Unsupported clipboard content: {content!r}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ClipboardEntry:
    content: ClipboardContent
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    timestamp: datetime = field(default_factory=_utcnow)
    source_app: SourceApp | None = None
    paste_count: int = 0

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.content)

    @property
    def kind(self) -> ContentKind:
        return self.content.kind

    @property
    def text(self) -> str | None:
        if isinstance(self.content, TextContent):
            return self.content.text
        return None

    @property
    def preview(self) -> str:
        match self.content:
            case TextContent(text=text):
                return truncate_text(text.strip(), PREVIEW_LENGTH)
            case ImageContent(width=width, height=height):
                return f"[Image: {width}x{height}]" if width > 0 else "[Image]"
        raise TypeError(f"Unsupported clipboard content: {self.content!r}")

    @property
    def stats(self) -> str:
        match self.content:
            case TextContent(text=text):
                return f"{len(text.split())}w · {len(text)}c"
            case ImageContent(width=width, height=height):
                return f"{width}x{height}"
        raise TypeError(f"Unsupported clipboard content: {self.content!r}")

    def time_ago(self, now: datetime | None = None) -> str:
        return format_time_ago(self.timestamp, now or _utcnow())


@dataclass
class SyncRecord:
    id: uuid.UUID
    encrypted_payload: bytes
    nonce: bytes
    content_kind: str
    timestamp: datetime
    device_id: str
    device_name: str
    is_pinned: bool = False
    source_app_bundle_id: str | None = None
    source_app_name: str | None = None
    paste_count: int = 0
    modified_at: datetime | None = None
    change_tag: str | None = None
