"""
Usage ledger for TimeSave.

Tracks accumulated usage for the current day, per blocked item
(informational) and per group (authoritative for enforcement).
Counters are persisted after every mutation and reset when the day changes.

PRECISION GUIDELINE:
    All values are integer milliseconds. Sessions are measured on a
    monotonic millisecond clock, so no float rounding accumulates across
    commits.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, Optional

from screen.blocklist import BlockedItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RolloverResult:
    """Outcome of a daily rollover check."""

    previous_date: Optional[date]
    changed: bool


class UsageLedger:
    """
    Per-item and per-group usage counters for today.

    The ledger only ever receives durations; it knows nothing about
    sessions. Persistence goes through a ConfigStore.
    """

    def __init__(self, store, group_ids: Iterable[str] = ()):
        """
        Initialize the ledger and load existing usage from the store.

        Unreadable persisted values come back from the store as empty/zero,
        so loading never raises.

        Args:
            store: ConfigStore used for persistence
            group_ids: Groups to load usage for (stored groups are always loaded)
        """
        self.store = store
        self._item_usage: Dict[str, int] = {}
        self._group_usage: Dict[str, int] = {}
        self._last_reset_date: Optional[date] = None
        # Set while a reset happened in memory but its write failed
        self._reset_pending: bool = False
        self._load(group_ids)

    def _load(self, group_ids: Iterable[str]) -> None:
        self._item_usage = self.store.load_item_usage()
        ids = set(group_ids) | self.store.load_group_ids()
        self._group_usage = {group_id: self.store.load_group_usage(group_id) for group_id in ids}
        self._last_reset_date = self.store.load_last_reset_date()
        logger.debug(f"Loaded usage: items={self._item_usage}, groups={self._group_usage}")

    def _save(self) -> bool:
        # The reset date travels with the counters so a reload never pairs
        # today's totals with yesterday's date.
        saved = self.store.save_usage(self._item_usage, self._group_usage, self._last_reset_date)
        if saved:
            self._reset_pending = False
        else:
            logger.warning("Usage could not be persisted; keeping in-memory totals")
        return saved

    @property
    def last_reset_date(self) -> Optional[date]:
        """Date of the last daily reset, as known to this ledger."""
        return self._last_reset_date

    def commit(self, item: BlockedItem, duration_ms: int) -> bool:
        """
        Add a closed session's duration to the item and its group.

        Zero and negative durations are dropped, never subtracted, so
        re-delivery or a clock anomaly can't change the totals.

        Args:
            item: The item the duration was spent on
            duration_ms: Elapsed milliseconds

        Returns:
            True if the totals changed, False if the duration was dropped.
        """
        if duration_ms <= 0:
            logger.debug(f"Dropping non-positive duration {duration_ms}ms for {item.label}")
            return False

        duration_ms = int(duration_ms)
        self._item_usage[item.identifier] = self._item_usage.get(item.identifier, 0) + duration_ms
        self._group_usage[item.group_id] = self._group_usage.get(item.group_id, 0) + duration_ms
        self._save()

        logger.info(
            f"Committed {duration_ms / 1000:.1f}s for {item.label}. "
            f"Group '{item.group_id}' total: {self._group_usage[item.group_id] / 1000:.1f}s"
        )
        return True

    def current_group_usage(self, group_id: str) -> int:
        """Committed usage today for a group, in milliseconds."""
        return self._group_usage.get(group_id, 0)

    def current_item_usage(self, identifier: str) -> int:
        """Committed usage today for an item, in milliseconds."""
        return self._item_usage.get(identifier, 0)

    def rollover_if_new_day(self, today: date) -> RolloverResult:
        """
        Reset all counters if the last reset date isn't today.

        Compares against the date held in memory, so no store read happens
        and calling it again on the same day never zeroes the counters
        twice. The zeroed counters and the new date go to the store in a
        single write. If that write fails, later calls retry persisting the
        current totals with the new date instead of resetting again.

        Args:
            today: The current local date

        Returns:
            RolloverResult with the previous reset date and whether a
            reset happened.
        """
        previous = self._last_reset_date
        if previous == today:
            if self._reset_pending and self._save():
                logger.info(f"Daily reset for {today} persisted on retry")
            return RolloverResult(previous, False)

        logger.info(f"New day detected ({previous} -> {today}). Clearing daily usage data.")
        self._item_usage = {}
        self._group_usage = {group_id: 0 for group_id in self._group_usage}
        self._last_reset_date = today
        if self.store.save_daily_reset(today, self._group_usage.keys()):
            self._reset_pending = False
        else:
            self._reset_pending = True
            logger.warning("Daily reset could not be persisted; it will be retried on next check")
        return RolloverResult(previous, True)

    def flush(self) -> None:
        """Persist both ledgers (used on engine teardown)."""
        self._save()
        logger.debug("Flushed usage ledgers")

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        """
        Copy of both ledgers for display.

        Returns:
            {"items": {identifier: ms}, "groups": {group_id: ms}}
        """
        return {"items": dict(self._item_usage), "groups": dict(self._group_usage)}
