"""
Configuration store for TimeSave.

Persists the engine's logical key space in a single JSON document:

    blocked_items       JSON array of blocked items
    group_limits        group id -> daily allowance (integer minutes)
    group_usage         group id -> usage today (integer milliseconds)
    item_usage_millis   item identifier -> usage today (integer milliseconds)
    last_reset_date     ISO date string of the last daily reset

Every read tolerates a missing file, a missing key, and malformed content:
the caller always gets a default value, never an exception. Every write is
atomic (temp file + rename) so a crash can't leave a half-written document.
"""

import json
import logging
import math
import os
import tempfile
import threading
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

import config
from screen.blocklist import BlockedItem, get_default_blocked_items

logger = logging.getLogger(__name__)

KEY_BLOCKED_ITEMS = "blocked_items"
KEY_GROUP_LIMITS = "group_limits"
KEY_GROUP_USAGE = "group_usage"
KEY_ITEM_USAGE_MILLIS = "item_usage_millis"
KEY_LAST_RESET_DATE = "last_reset_date"


def _as_non_negative_int(value: Any) -> Optional[int]:
    """
    Coerce a persisted number to a non-negative int.

    Returns:
        The integer value, or None if the value is not a usable number.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float) and math.isfinite(value) and value >= 0:
        return int(value)
    return None


class ConfigStore:
    """
    JSON-file-backed configuration store.

    The document is re-read on every load so edits made by another process
    (settings UI, CLI) are picked up. Writes are serialized with a lock and
    done as read-modify-write of the whole document.
    """

    def __init__(self, path: Optional[Path] = None):
        """
        Initialize the store.

        Args:
            path: Path to the JSON document (default: config.STORE_FILE)
        """
        self.path: Path = Path(path) if path is not None else config.STORE_FILE
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Document I/O
    # ------------------------------------------------------------------

    def _read_document(self) -> Dict[str, Any]:
        """
        Read the whole JSON document.

        Returns:
            Parsed document, or an empty dict if absent or unreadable.
        """
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError, IOError, OSError) as e:
            logger.warning(f"Failed to read config store {self.path}: {e}. Using defaults.")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Config store {self.path} is not a JSON object. Using defaults.")
            return {}
        return data

    def _write_document(self, data: Dict[str, Any]) -> bool:
        """
        Write the whole JSON document atomically.

        Uses atomic write (write to temp file, then rename) to prevent
        data corruption if the process dies during save.

        Returns:
            True if saved successfully, False otherwise.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)

            temp_fd, temp_path = tempfile.mkstemp(
                suffix='.tmp',
                prefix='timesave_store_',
                dir=self.path.parent
            )

            try:
                with os.fdopen(temp_fd, 'w') as f:
                    json.dump(data, f, indent=2)
                os.replace(temp_path, self.path)
            except Exception:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
                raise

            return True

        except (IOError, OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save config store: {e}")
            return False

    def _update(self, **changes: Any) -> bool:
        """Read-modify-write of one or more top-level keys in a single write."""
        with self._lock:
            data = self._read_document()
            data.update(changes)
            return self._write_document(data)

    def _read_mapping(self, key: str) -> Dict[str, Any]:
        """Read a top-level object, treating anything else as absent."""
        value = self._read_document().get(key)
        if value is None:
            return {}
        if not isinstance(value, dict):
            logger.warning(f"Malformed '{key}' in config store (expected object). Ignoring.")
            return {}
        return value

    # ------------------------------------------------------------------
    # Blocked items
    # ------------------------------------------------------------------

    def load_blocked_items(self) -> List[BlockedItem]:
        """
        Load the blocked-item list.

        Returns:
            Saved items; the built-in defaults if nothing is saved or the
            saved value isn't a list. Individual unparsable entries are
            skipped with a warning.
        """
        raw = self._read_document().get(KEY_BLOCKED_ITEMS)
        if raw is None:
            logger.debug("No saved blocked items, returning default.")
            return get_default_blocked_items()
        if not isinstance(raw, list):
            logger.error(f"Error loading blocked items: expected a list, got {type(raw).__name__}")
            return get_default_blocked_items()

        items = []
        for entry in raw:
            try:
                items.append(BlockedItem.from_dict(entry))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed blocked item {entry!r}: {e}")
        logger.debug(f"Loaded {len(items)} blocked items")
        return items

    def save_blocked_items(self, items: Iterable[BlockedItem]) -> bool:
        """Save the blocked-item list."""
        payload = [item.to_dict() for item in items]
        saved = self._update(**{KEY_BLOCKED_ITEMS: payload})
        if saved:
            logger.debug(f"Saved {len(payload)} blocked items")
        return saved

    # ------------------------------------------------------------------
    # Group limits and usage
    # ------------------------------------------------------------------

    def load_group_ids(self) -> Set[str]:
        """Group ids that have a stored limit or usage counter."""
        data = self._read_document()
        group_ids: Set[str] = set()
        for key in (KEY_GROUP_LIMITS, KEY_GROUP_USAGE):
            value = data.get(key)
            if isinstance(value, dict):
                group_ids.update(str(k) for k in value)
        return group_ids

    def load_group_limit(self, group_id: str) -> int:
        """
        Load a group's daily allowance in minutes.

        Returns:
            Stored minutes, or config.DEFAULT_GROUP_LIMIT_MINUTES if absent
            or malformed.
        """
        raw = self._read_mapping(KEY_GROUP_LIMITS).get(group_id)
        if raw is None:
            return config.DEFAULT_GROUP_LIMIT_MINUTES
        minutes = _as_non_negative_int(raw)
        if minutes is None:
            logger.warning(f"Malformed time limit {raw!r} for group '{group_id}'. Using default.")
            return config.DEFAULT_GROUP_LIMIT_MINUTES
        return minutes

    def save_group_limit(self, group_id: str, minutes: int) -> bool:
        """
        Save a group's daily allowance.

        Raises:
            ValueError: If minutes is negative.
        """
        if minutes < 0:
            raise ValueError("Time limit must be non-negative")
        with self._lock:
            data = self._read_document()
            limits = data.get(KEY_GROUP_LIMITS)
            if not isinstance(limits, dict):
                limits = {}
            limits[group_id] = int(minutes)
            data[KEY_GROUP_LIMITS] = limits
            return self._write_document(data)

    def load_group_usage(self, group_id: str) -> int:
        """
        Load a group's usage today in milliseconds (0 if absent or malformed).
        """
        raw = self._read_mapping(KEY_GROUP_USAGE).get(group_id)
        if raw is None:
            return 0
        millis = _as_non_negative_int(raw)
        if millis is None:
            logger.warning(f"Malformed usage {raw!r} for group '{group_id}'. Treating as 0.")
            return 0
        return millis

    def save_group_usage(self, group_id: str, millis: int) -> bool:
        """Save a group's usage today in milliseconds."""
        with self._lock:
            data = self._read_document()
            usage = data.get(KEY_GROUP_USAGE)
            if not isinstance(usage, dict):
                usage = {}
            usage[group_id] = int(millis)
            data[KEY_GROUP_USAGE] = usage
            return self._write_document(data)

    # ------------------------------------------------------------------
    # Item usage
    # ------------------------------------------------------------------

    def load_item_usage(self) -> Dict[str, int]:
        """
        Load per-item usage in milliseconds.

        Returns:
            Mapping of identifier -> millis; empty if absent or malformed.
        """
        raw = self._read_mapping(KEY_ITEM_USAGE_MILLIS)
        usage: Dict[str, int] = {}
        for identifier, value in raw.items():
            millis = _as_non_negative_int(value)
            if millis is None:
                logger.error(f"Error loading item usage: bad value {value!r} for '{identifier}'")
                return {}
            usage[str(identifier)] = millis
        return usage

    def save_item_usage(self, usage: Dict[str, int]) -> bool:
        """Save per-item usage in milliseconds."""
        return self._update(**{KEY_ITEM_USAGE_MILLIS: {k: int(v) for k, v in usage.items()}})

    def save_usage(self, item_usage: Dict[str, int], group_usage: Dict[str, int],
                   reset_date: Optional[date] = None) -> bool:
        """
        Save per-item and per-group usage together in one write.

        Args:
            item_usage: identifier -> millis
            group_usage: group id -> millis (merged into stored groups)
            reset_date: If given, recorded as the last reset date in the
                        same write
        """
        with self._lock:
            data = self._read_document()
            stored_groups = data.get(KEY_GROUP_USAGE)
            if not isinstance(stored_groups, dict):
                stored_groups = {}
            stored_groups.update({k: int(v) for k, v in group_usage.items()})
            data[KEY_GROUP_USAGE] = stored_groups
            data[KEY_ITEM_USAGE_MILLIS] = {k: int(v) for k, v in item_usage.items()}
            if reset_date is not None:
                data[KEY_LAST_RESET_DATE] = reset_date.isoformat()
            return self._write_document(data)

    # ------------------------------------------------------------------
    # Daily reset
    # ------------------------------------------------------------------

    def load_last_reset_date(self) -> Optional[date]:
        """
        Load the date of the last daily reset.

        Returns:
            The stored date, or None if absent or unparsable.
        """
        raw = self._read_document().get(KEY_LAST_RESET_DATE)
        if raw is None or raw == "":
            return None
        try:
            return date.fromisoformat(str(raw))
        except ValueError:
            logger.warning(f"Malformed last reset date {raw!r}. Treating as absent.")
            return None

    def save_last_reset_date(self, day: date) -> bool:
        """Save the date of the last daily reset."""
        return self._update(**{KEY_LAST_RESET_DATE: day.isoformat()})

    def save_daily_reset(self, day: date, group_ids: Iterable[str] = ()) -> bool:
        """
        Zero all usage counters and record the reset date in one write.

        Args:
            day: The new current day
            group_ids: Groups to record explicitly as zero (stored groups
                       are always zeroed)
        """
        with self._lock:
            data = self._read_document()
            stored_groups = data.get(KEY_GROUP_USAGE)
            ids = set(stored_groups) if isinstance(stored_groups, dict) else set()
            ids.update(group_ids)
            data[KEY_GROUP_USAGE] = {group_id: 0 for group_id in sorted(ids)}
            data[KEY_ITEM_USAGE_MILLIS] = {}
            data[KEY_LAST_RESET_DATE] = day.isoformat()
            return self._write_document(data)
