import argparse
import logging
import shutil
import subprocess
import sys
from pathlib import Path
from xml.sax.saxutils import escape

from cliphaven.config import DATA_DIR, LOG_PATH
from cliphaven.utils import ensure_dirs

PLIST_LABEL = "com.cliphaven.app"
PLIST_NAME = f"{PLIST_LABEL}.plist"
LAUNCHAGENT_DIR = Path.home() / "Library" / "LaunchAgents"
PLIST_PATH = LAUNCHAGENT_DIR / PLIST_NAME


def get_cliphaven_command() -> list[str]:
    """Get the program arguments that start cliphaven."""
    cliphaven_path = shutil.which("cliphaven")
    if cliphaven_path:
        return [cliphaven_path]
    return [sys.executable, "-m", "cliphaven"]


def create_plist(command: list[str]) -> str:
    """Generate the LaunchAgent plist content."""
    arguments = "\n".join(f"        <string>{escape(part)}</string>" for part in [*command, "run"])
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE plist PUBLIC "-//Apple//DTD PLIST 1.0//EN" "http://www.apple.com/DTDs/PropertyList-1.0.dtd">
<plist version="1.0">
<dict>
    <key>Label</key>
    <string>{PLIST_LABEL}</string>
    <key>ProgramArguments</key>
    <array>
{arguments}
    </array>
    <key>RunAtLoad</key>
    <true/>
    <key>KeepAlive</key>
    <true/>
    <key>StandardOutPath</key>
    <string>{DATA_DIR}/cliphaven.log</string>
    <key>StandardErrorPath</key>
    <string>{DATA_DIR}/cliphaven.log</string>
</dict>
</plist>
"""


def install_launchagent() -> int:
    """Install and start the LaunchAgent."""
    ensure_dirs()

    command = get_cliphaven_command()
    print(f"Installing LaunchAgent for: {' '.join(command)}")

    LAUNCHAGENT_DIR.mkdir(parents=True, exist_ok=True)

    if PLIST_PATH.exists():
        subprocess.run(["launchctl", "unload", str(PLIST_PATH)], capture_output=True)

    PLIST_PATH.write_text(create_plist(command))
    print(f"Created: {PLIST_PATH}")

    result = subprocess.run(
        ["launchctl", "load", str(PLIST_PATH)],
        capture_output=True,
        text=True,
    )

    if result.returncode == 0:
        print("ClipHaven is now running in the background.")
        print("It will start automatically on login.")
        return 0
    print(f"Failed to load LaunchAgent: {result.stderr}")
    return 1


def uninstall_launchagent() -> int:
    """Stop and remove the LaunchAgent."""
    if not PLIST_PATH.exists():
        print("LaunchAgent not installed.")
        return 0

    subprocess.run(["launchctl", "unload", str(PLIST_PATH)], capture_output=True)
    PLIST_PATH.unlink()
    print("LaunchAgent uninstalled.")
    print("ClipHaven will no longer start on login.")
    return 0


def check_status() -> int:
    """Check if ClipHaven is running."""
    result = subprocess.run(
        ["launchctl", "list", PLIST_LABEL],
        capture_output=True,
        text=True,
    )

    if result.returncode == 0:
        print("ClipHaven is running.")
        if PLIST_PATH.exists():
            print(f"LaunchAgent: {PLIST_PATH}")
        return 0

    print("ClipHaven is not running.")
    if PLIST_PATH.exists():
        print(f"LaunchAgent installed but not loaded: {PLIST_PATH}")
    else:
        print("LaunchAgent not installed. Run: cliphaven install")
    return 1


def run_sync() -> int:
    """Fetch remote changes and merge them into history once."""
    from cliphaven.controller import build_sync_service, load_history_and_settings, sync_history
    from cliphaven.errors import SyncError

    history, settings = load_history_and_settings()
    if not settings.sync_enabled:
        print("Sync is disabled. Enable it from the menu bar first.")
        return 1

    try:
        merged = sync_history(history, build_sync_service())
    except SyncError as exc:
        print(f"Sync failed: {exc}")
        return 1
    print(f"Merged {merged} entries.")
    return 0


def export_settings(path: str) -> int:
    from cliphaven.controller import load_history_and_settings

    _history, settings = load_history_and_settings()
    try:
        Path(path).write_text(settings.export_settings(), encoding="utf-8")
    except OSError as exc:
        print(f"Could not write {path}: {exc}")
        return 1
    print(f"Settings exported to {path}")
    return 0


def import_settings(path: str) -> int:
    from cliphaven.controller import load_history_and_settings
    from cliphaven.settings import SettingsFormatError

    _history, settings = load_history_and_settings()
    try:
        settings.import_settings(Path(path).read_text(encoding="utf-8"))
    except (OSError, SettingsFormatError) as exc:
        print(f"Could not import {path}: {exc}")
        return 1
    print(f"Settings imported from {path}")
    return 0


def configure_logging() -> None:
    ensure_dirs()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_PATH),
            logging.StreamHandler(sys.stderr),
        ],
    )


def run_app():
    """Run the ClipHaven menu bar application."""
    configure_logging()

    from cliphaven.app import ClipHavenApp

    app = ClipHavenApp()
    app.run()


def main():
    parser = argparse.ArgumentParser(
        description="ClipHaven - Clipboard history manager for macOS with encrypted sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  (none), run             Run ClipHaven in foreground
  install                 Install as LaunchAgent (runs on login)
  uninstall               Remove LaunchAgent
  status                  Check if ClipHaven is running
  sync                    Sync history once and exit
  export-settings PATH    Write settings to a JSON file
  import-settings PATH    Load settings from a JSON file

Examples:
  cliphaven install                  # Install and start as background service
  cliphaven sync                     # Pull history from other devices now
  cliphaven export-settings ~/s.json # Back up settings
""",
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=["run", "install", "uninstall", "status", "sync", "export-settings", "import-settings"],
        help="Command to run",
    )
    parser.add_argument("path", nargs="?", help="Settings file for export-settings/import-settings")

    args = parser.parse_args()

    if args.command in ("export-settings", "import-settings") and not args.path:
        parser.error(f"{args.command} requires a PATH")

    if args.command == "install":
        sys.exit(install_launchagent())
    elif args.command == "uninstall":
        sys.exit(uninstall_launchagent())
    elif args.command == "status":
        sys.exit(check_status())
    elif args.command == "sync":
        configure_logging()
        sys.exit(run_sync())
    elif args.command == "export-settings":
        sys.exit(export_settings(args.path))
    elif args.command == "import-settings":
        sys.exit(import_settings(args.path))
    else:
        run_app()


if __name__ == "__main__":
    main()
