import logging
import uuid
from dataclasses import dataclass
from typing import Callable

import rumps

from cliphaven import __version__
from cliphaven.config import (
    EXPIRE_CHECK_INTERVAL,
    MENU_DISPLAY_COUNT,
    MENU_PREVIEW_LENGTH,
    POLL_INTERVAL,
    SYNC_INTERVAL,
)
from cliphaven.controller import ClipboardController
from cliphaven.errors import SyncError
from cliphaven.models import ClipboardEntry
from cliphaven.sync import SyncState
from cliphaven.utils import truncate_text

logger = logging.getLogger(__name__)

ENTRY_KEY_PREFIX = "cliphaven_entry_"


@dataclass
class MenuItemSpec:
    """Specification for a menu item, separating logic from rumps rendering."""

    title: str
    callback: Callable | None = None
    entry_id: uuid.UUID | None = None
    is_submenu: bool = False
    children: list["MenuItemSpec | None"] | None = None


class ClipHavenApp(rumps.App):
    def __init__(self, controller: ClipboardController | None = None):
        super().__init__("ClipHaven", title="📋", quit_button=None)
        self._init_app(controller)

    def _init_app(self, controller: ClipboardController | None = None) -> None:
        """Initialize app components. Separated for testability."""
        self._controller = controller or ClipboardController.create()
        self._controller.set_on_change(self._refresh_menu)
        self._controller.set_on_sync_error(self._on_sync_error)
        self._entry_ids: dict[str, uuid.UUID] = {}
        self._build_menu()

    def _build_menu(self) -> None:
        """Build the menu from computed specifications."""
        self.menu.clear()
        self._entry_ids.clear()
        specs = self._compute_menu_specs()
        self._render_menu_specs(specs)

    def _compute_menu_specs(self) -> list[MenuItemSpec | None]:
        """Compute menu item specifications. Pure logic, no rumps dependency."""
        history = self._controller.history
        specs: list[MenuItemSpec | None] = [
            MenuItemSpec(f"ClipHaven v{__version__} - Clipboard History"),
            None,  # separator
        ]

        pinned_entries = history.pinned
        if pinned_entries:
            pinned_children: list[MenuItemSpec | None] = [self._compute_entry_spec(e) for e in pinned_entries]
            pinned_children.append(None)  # separator
            pinned_children.append(MenuItemSpec("Clear Pinned", callback=self._on_clear_pinned))
            specs.append(MenuItemSpec("📌 Pinned", is_submenu=True, children=pinned_children))
            specs.append(None)  # separator

        pinned_ids = {e.id for e in pinned_entries}
        entries = [e for e in history.history if e.id not in pinned_ids][:MENU_DISPLAY_COUNT]

        if not entries and not pinned_entries:
            specs.append(MenuItemSpec("(No clipboard history)"))
        else:
            for entry in entries:
                specs.append(self._compute_entry_spec(entry))

        specs.append(None)  # separator
        specs.extend(self._compute_sync_specs())
        specs.extend([
            MenuItemSpec("Clear History", callback=self._on_clear),
            None,  # separator
            MenuItemSpec("Quit ClipHaven", callback=self._on_quit),
        ])

        return specs

    def _compute_sync_specs(self) -> list[MenuItemSpec | None]:
        sync = self._controller.sync
        if not self._controller.settings.sync_enabled or sync is None:
            return [MenuItemSpec("Enable Sync", callback=self._on_enable_sync), None]

        status = sync.status
        if status.state == SyncState.ERROR and status.error is not None:
            line = f"Sync error: {status.error}"
        elif status.state == SyncState.SYNCING:
            line = "Syncing..."
        elif status.last_sync is not None:
            line = f"Last synced: {status.last_sync.astimezone().strftime('%H:%M')}"
        else:
            line = "Not synced yet"
        return [
            MenuItemSpec(line),
            MenuItemSpec("Sync Now", callback=self._on_sync_now),
            None,  # separator
        ]

    def _compute_entry_spec(self, entry: ClipboardEntry) -> MenuItemSpec:
        """Compute menu item spec for a clipboard entry."""
        key = f"{ENTRY_KEY_PREFIX}{entry.id}"
        self._entry_ids[key] = entry.id
        return MenuItemSpec(
            title=truncate_text(entry.preview, MENU_PREVIEW_LENGTH),
            callback=self._on_entry_click,
            entry_id=entry.id,
        )

    def _render_menu_specs(self, specs: list[MenuItemSpec | None]) -> None:
        """Render menu item specifications to actual rumps MenuItems."""
        self.menu = [self._render_single_spec(spec) for spec in specs]

    def _render_single_spec(self, spec: MenuItemSpec | None) -> rumps.MenuItem | None:
        """Render a single menu item specification."""
        if spec is None:
            return None

        if spec.is_submenu and spec.children:
            submenu = rumps.MenuItem(spec.title)
            for child in spec.children:
                submenu.add(self._render_single_spec(child))
            return submenu

        item = rumps.MenuItem(spec.title, callback=spec.callback)
        if spec.entry_id is not None:
            item._id = f"{ENTRY_KEY_PREFIX}{spec.entry_id}"
        return item

    def _refresh_menu(self) -> None:
        self._build_menu()

    @rumps.timer(POLL_INTERVAL)
    def _poll_clipboard(self, _sender) -> None:
        self._controller.poll()

    @rumps.timer(EXPIRE_CHECK_INTERVAL)
    def _expire_entries(self, _sender) -> None:
        self._controller.expire()

    @rumps.timer(SYNC_INTERVAL)
    def _background_sync(self, _sender) -> None:
        self._controller.sync_now()

    def _on_entry_click(self, sender) -> None:
        entry_id = self._entry_ids.get(getattr(sender, "_id", ""))
        if entry_id is None:
            return

        # Option-click toggles the pin instead of pasting
        try:
            from AppKit import NSAlternateKeyMask, NSEvent

            if NSEvent.modifierFlags() & NSAlternateKeyMask:
                pinned = self._controller.toggle_pin(entry_id)
                rumps.notification("ClipHaven", "", "Pinned" if pinned else "Unpinned", sound=False)
                return
        except ImportError:
            logger.debug("Modifier keys unavailable, treating click as paste")

        try:
            entry = self._controller.paste(entry_id)
        except Exception:
            logger.exception("Error copying entry to clipboard")
            return

        if entry is not None:
            if self._controller.settings.play_sounds:
                self._play_sound()
            rumps.notification("ClipHaven", "", "Copied to clipboard", sound=False)

    @staticmethod
    def _play_sound() -> None:
        from AppKit import NSSound

        sound = NSSound.soundNamed_("Pop")
        if sound is not None:
            sound.play()

    def _on_sync_now(self, _sender) -> None:
        if self._controller.sync_now() is None:
            rumps.notification("ClipHaven", "", "Sync is disabled", sound=False)
        self._refresh_menu()

    def _on_enable_sync(self, _sender) -> None:
        try:
            self._controller.set_sync_enabled(True)
        except (OSError, ValueError) as exc:
            logger.exception("Could not enable sync")
            rumps.alert("ClipHaven", f"Could not enable sync: {exc}")
            return
        self._controller.sync_now()
        self._refresh_menu()

    def _on_sync_error(self, error: SyncError) -> None:
        rumps.notification("ClipHaven", "Sync failed", str(error), sound=False)
        self._refresh_menu()

    def _on_clear_pinned(self, _sender) -> None:
        """Clear all pinned entries."""
        self._controller.clear_pinned()

    def _on_clear(self, _sender) -> None:
        if rumps.alert("ClipHaven", "Clear all clipboard history? Pinned items are kept.", ok="Clear", cancel="Cancel"):
            self._controller.clear()

    def _on_quit(self, _sender) -> None:
        self._controller.shutdown()
        rumps.quit_application()
