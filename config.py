"""Configuration settings for TimeSave."""

import os
import sys
from pathlib import Path
from dotenv import load_dotenv


def is_bundled() -> bool:
    """
    Check if the application is running from a PyInstaller bundle.

    Returns:
        True if running from a bundled executable, False otherwise.
    """
    return getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS')


def get_user_data_dir() -> Path:
    """
    Get the directory for user-writable data (usage ledger, blocklist, etc.).

    Priority:
        1. TIMESAVE_DATA_DIR environment variable (tests, custom installs)
        2. Bundled apps: per-platform application data folder
        3. Development: <project>/data

    Returns:
        Path to the user data directory.
    """
    override = os.getenv("TIMESAVE_DATA_DIR", "")
    if override:
        return Path(override).expanduser()

    if is_bundled():
        if sys.platform == 'darwin':
            # macOS: ~/Library/Application Support/TimeSave
            return Path.home() / "Library" / "Application Support" / "TimeSave"
        elif sys.platform == 'win32':
            appdata = os.environ.get('APPDATA')
            if appdata:
                return Path(appdata) / "TimeSave"
            return Path.home() / "AppData" / "Roaming" / "TimeSave"
        else:
            # Linux: ~/.local/share/TimeSave
            return Path.home() / ".local" / "share" / "TimeSave"

    return Path(__file__).parent / "data"


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from the environment, falling back on bad values.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset or not an integer.

    Returns:
        Parsed integer or the default.
    """
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        import logging
        logging.getLogger(__name__).warning(
            f"{name}={raw!r} is not an integer, using default {default}"
        )
        return default


# Load environment variables from .env file (only in development)
if not is_bundled():
    _env_path = Path(__file__).parent / ".env"
    load_dotenv(_env_path)

# User data directory (writable data: store file, logs)
USER_DATA_DIR = get_user_data_dir()

# Persistent configuration store (blocked items, limits, usage, reset date)
STORE_FILE = USER_DATA_DIR / "timesave_store.json"

# Groups
DEFAULT_GROUP_ID = "default"
DEFAULT_GROUP_LIMIT_MINUTES = _get_int_env("DEFAULT_GROUP_LIMIT_MINUTES", 60)

# Periodic limit check while a session is open (fixed delay between checks)
CHECK_INTERVAL_SECONDS = _get_int_env("CHECK_INTERVAL_SECONDS", 30)

# Substrings identifying browser-class packages (URL matching only applies to these)
BROWSER_PACKAGE_MARKERS = (
    "chrome",
    "firefox",
    "opera",
    "duckduckgo",
    "brave",
    "edge",
    "samsung.android.browser",
    "webview",
)

# Item kinds (persisted values)
KIND_APP = "APP"
KIND_WEBSITE = "WEBSITE"

# Built-in blocklist used when nothing is saved or the saved list is unreadable
DEFAULT_BLOCKED_ITEMS = [
    {"identifier": "com.example.blockedapp", "type": KIND_APP, "displayName": "InstaBlock Test App"},
    {"identifier": "youtube.com", "type": KIND_WEBSITE, "displayName": "YouTube Website"},
    {"identifier": "com.google.android.youtube", "type": KIND_APP, "displayName": "YouTube App"},
    {"identifier": "facebook.com", "type": KIND_WEBSITE, "displayName": "Facebook Website"},
    {"identifier": "com.facebook.katana", "type": KIND_APP, "displayName": "Facebook App"},
]

# Engine status values reported to on_status_change
STATUS_IDLE = "idle"
STATUS_TRACKING = "tracking"
STATUS_BLOCKED = "blocked"
STATUS_STOPPED = "stopped"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")  # Can override in .env: DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
