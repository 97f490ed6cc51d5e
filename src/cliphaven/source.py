from abc import ABC, abstractmethod

from cliphaven.models import ClipboardContent, ImageContent, SourceApp, TextContent
from cliphaven.utils import PNG_SIGNATURE, get_image_dimensions


class ClipboardSource(ABC):
    """Polling view of the system clipboard."""

    @abstractmethod
    def change_count(self) -> int:
        """Monotonic counter bumped by the OS on every clipboard write."""

    @abstractmethod
    def read(self) -> ClipboardContent | None:
        """Current content, text first then image. None when the clipboard is empty."""

    @abstractmethod
    def frontmost_app(self) -> SourceApp | None:
        """Best-effort identity of the foreground application."""

    @abstractmethod
    def write(self, content: ClipboardContent) -> None:
        """Replace the clipboard contents."""

    def current_text(self) -> str | None:
        content = self.read()
        if isinstance(content, TextContent):
            return content.text
        return None


class PasteboardSource(ClipboardSource):
    """macOS general pasteboard via pyobjc."""

    def __init__(self):
        from AppKit import NSPasteboard, NSWorkspace

        self._pasteboard = NSPasteboard.generalPasteboard()
        self._workspace = NSWorkspace.sharedWorkspace()

    def change_count(self) -> int:
        return int(self._pasteboard.changeCount())

    def read(self) -> ClipboardContent | None:
        from AppKit import NSPasteboardTypePNG, NSPasteboardTypeString, NSPasteboardTypeTIFF

        types = self._pasteboard.types()
        if types is None:
            return None

        if NSPasteboardTypeString in types:
            text = self._pasteboard.stringForType_(NSPasteboardTypeString)
            if text:
                return TextContent(str(text))

        for img_type in (NSPasteboardTypePNG, NSPasteboardTypeTIFF):
            if img_type in types:
                data = self._pasteboard.dataForType_(img_type)
                if data is None:
                    continue
                img_bytes = bytes(data)
                width, height = get_image_dimensions(img_bytes)
                return ImageContent(img_bytes, width, height)

        return None

    def frontmost_app(self) -> SourceApp | None:
        app = self._workspace.frontmostApplication()
        if app is None:
            return None
        bundle_id = app.bundleIdentifier()
        name = app.localizedName()
        return SourceApp(
            bundle_id=str(bundle_id) if bundle_id else None,
            name=str(name) if name else None,
        )

    def write(self, content: ClipboardContent) -> None:
        from AppKit import NSPasteboardTypePNG, NSPasteboardTypeString, NSPasteboardTypeTIFF
        from Foundation import NSData

        self._pasteboard.clearContents()
        match content:
            case TextContent(text=text):
                self._pasteboard.setString_forType_(text, NSPasteboardTypeString)
            case ImageContent(data=data):
                img_type = NSPasteboardTypePNG if data.startswith(PNG_SIGNATURE) else NSPasteboardTypeTIFF
                ns_data = NSData.dataWithBytes_length_(data, len(data))
                self._pasteboard.setData_forType_(ns_data, img_type)
            case _:
                raise TypeError(f"Unsupported clipboard content: {content!r}")
