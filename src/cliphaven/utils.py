import hashlib
import io
from datetime import datetime

from PIL import Image, UnidentifiedImageError

from cliphaven.config import DATA_DIR

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def compute_hash(data: str | bytes) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def truncate_text(text: str, max_len: int) -> str:
    single_line = " ".join(text.split())
    if len(single_line) <= max_len:
        return single_line
    return single_line[:max_len] + "..."


def ensure_dirs() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)


def format_time_ago(then: datetime, now: datetime) -> str:
    """Compact age string: 42s, 5m, 3h, 2d."""
    seconds = max(0, int((now - then).total_seconds()))
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h"
    return f"{hours // 24}d"


def get_image_dimensions(img_bytes: bytes) -> tuple[int, int]:
    try:
        with Image.open(io.BytesIO(img_bytes)) as img:
            return img.size
    except (UnidentifiedImageError, OSError, ValueError):
        return (0, 0)


def to_png(img_bytes: bytes) -> bytes:
    """Re-encode raster bytes (PNG, TIFF, ...) as PNG.

    Args:
        img_bytes: Raw image bytes as read from the pasteboard.

    Returns:
        PNG bytes. PNG input is returned unchanged.

    Raises:
        ValueError: If the bytes are not a readable image.
    """
    if img_bytes.startswith(PNG_SIGNATURE):
        return img_bytes
    try:
        with Image.open(io.BytesIO(img_bytes)) as img:
            out = io.BytesIO()
            img.save(out, format="PNG")
            return out.getvalue()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError("Not a readable image") from exc
