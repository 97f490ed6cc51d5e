import os
from pathlib import Path

DATA_DIR = Path(os.environ.get("CLIPHAVEN_DATA_DIR", Path.home() / ".local" / "share" / "cliphaven"))
HISTORY_PATH = DATA_DIR / "history.json"
PINNED_PATH = DATA_DIR / "pinned.json"
SETTINGS_PATH = DATA_DIR / "settings.json"
SYNC_STATE_PATH = DATA_DIR / "sync_state.json"
KEY_PATH = DATA_DIR / "sync.key"
LOG_PATH = DATA_DIR / "cliphaven.log"

# Shared folder (e.g. iCloud Drive) holding the remote record store
SYNC_DIR = Path(
    os.environ.get(
        "CLIPHAVEN_SYNC_DIR",
        Path.home() / "Library" / "Mobile Documents" / "com~apple~CloudDocs" / "cliphaven",
    )
)
SYNC_DB_NAME = "records.db"
ZONE_NAME = "ClipboardZone"

POLL_INTERVAL = 0.5  # seconds between clipboard checks
EXPIRE_CHECK_INTERVAL = 60  # seconds between auto-expire sweeps
PASSWORD_CLEAR_WINDOW = 3.0  # seconds; faster overwrites look like a password manager
DEFAULT_MAX_HISTORY = 50
MAX_TEXT_SIZE = 1_000_000  # 1MB text limit
MAX_IMAGE_SIZE = 10_000_000  # 10MB image limit
PREVIEW_LENGTH = 100  # characters kept in an entry preview
MENU_PREVIEW_LENGTH = 40  # characters shown in menu item


def _parse_int_env(name: str, default: int, low: int, high: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(low, min(high, value))


def _parse_menu_display_count() -> int:
    return _parse_int_env("CLIPHAVEN_MENU_DISPLAY_COUNT", 10, 5, 50)


def _parse_sync_interval() -> int:
    return _parse_int_env("CLIPHAVEN_SYNC_INTERVAL", 300, 30, 3600)


MENU_DISPLAY_COUNT = _parse_menu_display_count()
SYNC_INTERVAL = _parse_sync_interval()  # seconds between background syncs
