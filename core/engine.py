"""
EnforcementEngine — usage tracking and limit enforcement for TimeSave.

Owns the session tracker, the usage ledger and the blocklist registry.
All state changes happen on one thread: foreground signals and the
periodic limit check are serialized through a single queue, so no two
evaluations ever run concurrently.

This module has ZERO UI dependencies. Hosts feed foreground signals in and
receive updates via callbacks.

Callbacks:
    on_status_change(status: str, text: str)
    on_block(item: BlockedItem)
"""

import logging
import queue
import threading
import time
from datetime import date
from typing import Callable, Dict, List, Optional, Set

import config
from core.enforcer import Decision, LimitEnforcer
from screen.block_dispatcher import BlockDispatcher
from screen.blocklist import BlockedItem, Blocklist
from storage.config_store import ConfigStore
from tracking.session import SessionClosed, SessionOpened, SessionTracker, monotonic_millis
from tracking.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)

# Queue message kinds
_MSG_SIGNAL = "signal"
_MSG_RELOAD = "reload"
_MSG_STOP = "stop"


class EnforcementEngine:
    """
    Core enforcement engine.

    Handles:
    - Foreground signals -> session open/close
    - Committing closed sessions to the usage ledger
    - Limit evaluation on open, on close and periodically
    - Block dispatch (closing the session first so time isn't counted twice)
    - Daily reset
    - Teardown without losing the open session's time

    Synchronous entry points (handle_signal, run_periodic_check, shutdown)
    can be driven directly by a host with its own loop. start()/stop() run
    the same logic on a worker thread with a fixed-delay periodic check.
    """

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def __init__(
        self,
        store: Optional[ConfigStore] = None,
        dispatcher: Optional[BlockDispatcher] = None,
        enforcer: Optional[LimitEnforcer] = None,
        clock: Callable[[], int] = monotonic_millis,
        today: Callable[[], date] = date.today,
        check_interval_seconds: float = config.CHECK_INTERVAL_SECONDS,
    ) -> None:
        """
        Initialise the engine: load configuration and run the daily reset.

        Args:
            store: Configuration store (default: config.STORE_FILE)
            dispatcher: Block dispatcher (default: log-only screen + platform redirect)
            enforcer: Limit policy
            clock: Monotonic millisecond clock used for session durations
            today: Returns the current local date (daily reset)
            check_interval_seconds: Delay between periodic limit checks
        """
        self.store: ConfigStore = store or ConfigStore()
        self.blocklist: Blocklist = Blocklist.load(self.store)
        self.ledger: UsageLedger = UsageLedger(self.store, self.blocklist.groups.keys())
        self.tracker: SessionTracker = SessionTracker(self.blocklist.items, clock=clock)
        self.enforcer: LimitEnforcer = enforcer or LimitEnforcer()
        self.dispatcher: BlockDispatcher = dispatcher or BlockDispatcher()
        self._today = today
        self.check_interval_seconds: float = check_interval_seconds

        self.current_status: str = config.STATUS_IDLE
        self.is_running: bool = False
        self.is_shut_down: bool = False
        self._queue: "queue.Queue[tuple]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None

        # ---- Callbacks (set by the host) ----
        self.on_status_change: Optional[Callable[[str, str], None]] = None
        self.on_block: Optional[Callable[[BlockedItem], None]] = None

        self.ledger.rollover_if_new_day(self._today())

        logger.info(
            f"Engine ready. Monitoring {len(self.blocklist.items)} items in "
            f"{len(self.blocklist.groups)} group(s)."
        )
        for group in self.blocklist.groups.values():
            logger.info(
                f"Group '{group.group_id}' limit: {group.time_limit_minutes} minutes. "
                f"Current usage: {self.ledger.current_group_usage(group.group_id) / 1000:.0f}s."
            )

    # ------------------------------------------------------------------
    # Synchronous API (single thread of control)
    # ------------------------------------------------------------------

    def handle_signal(self, package: Optional[str], url: Optional[str] = None) -> List[object]:
        """
        Process one foreground signal.

        Duplicate signals for the same item are no-ops.

        Args:
            package: Foreground package identifier
            url: Candidate URL extracted from the foreground, if any

        Returns:
            Tracker events produced by the observation.
        """
        if self.is_shut_down:
            logger.debug("Ignoring foreground signal after shutdown")
            return []

        self._check_day()
        events = self.tracker.observe(package, url)

        # One dispatch per group per observation
        blocked_groups: Set[str] = set()
        for event in events:
            if isinstance(event, SessionClosed):
                self._on_session_closed(event, blocked_groups)
            elif isinstance(event, SessionOpened):
                self._on_session_opened(event, blocked_groups)

        if not self.tracker.is_tracking and self.current_status == config.STATUS_TRACKING:
            self._notify_status_change(config.STATUS_IDLE, "Idle")
        return events

    def run_periodic_check(self) -> Decision:
        """
        Evaluate the open session's group including its uncommitted time.

        Lets a block fire mid-session without waiting for a new foreground
        signal.

        Returns:
            The decision (NO_BLOCK when no session is open).
        """
        if self.is_shut_down:
            return Decision.NO_BLOCK

        self._check_day()
        item = self.tracker.active_item
        if item is None:
            return Decision.NO_BLOCK

        decision = self.enforcer.evaluate(
            item.group_id,
            self.ledger.current_group_usage(item.group_id),
            self.tracker.in_progress_ms(),
            self.blocklist.limit_minutes(item.group_id),
        )
        if decision == Decision.BLOCK:
            logger.warning(f"Periodic check: blocking active item {item.label}")
            self._block_active(item)
        return decision

    def reload_blocklist(self) -> None:
        """
        Re-read blocked items and group limits from the store.

        An open session keeps running; it is re-evaluated on the next signal
        or periodic check.
        """
        self.blocklist = Blocklist.load(self.store)
        self.tracker.set_items(self.blocklist.items)
        logger.info("Blocklist reloaded on engine")

    def shutdown(self) -> None:
        """
        Tear down: force-close any open session and flush the ledgers.

        Closing here commits the partial duration without evaluating
        limits. Safe to call more than once.
        """
        if self.is_shut_down:
            return
        closed = self.tracker.close()
        if closed is not None:
            self.ledger.commit(closed.item, closed.duration_ms)
        self.ledger.flush()
        self.is_shut_down = True
        self._notify_status_change(config.STATUS_STOPPED, "Stopped")
        logger.info("Engine shut down; usage flushed")

    def get_status(self) -> Dict:
        """
        Snapshot of engine state for display.

        Returns:
            {"status", "active_item", "in_progress_ms", "groups": {id: {...}}}
        """
        active = self.tracker.active_item
        groups = {}
        for group_id, group in self.blocklist.groups.items():
            used = self.ledger.current_group_usage(group_id)
            if active is not None and active.group_id == group_id:
                used += self.tracker.in_progress_ms()
            groups[group_id] = {
                "limit_minutes": group.time_limit_minutes,
                "used_ms": used,
                "remaining_ms": max(0, group.time_limit_millis - used),
            }
        return {
            "status": self.current_status,
            "active_item": active.identifier if active else None,
            "in_progress_ms": self.tracker.in_progress_ms(),
            "groups": groups,
        }

    # ------------------------------------------------------------------
    # Threaded API
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """
        Start the worker thread.

        Returns:
            True if started, False if already running or shut down.
        """
        if self.is_running or self.is_shut_down:
            return False
        self.is_running = True
        self._worker = threading.Thread(target=self._run_loop, name="timesave-engine", daemon=True)
        self._worker.start()
        logger.info(f"Engine started (periodic check every {self.check_interval_seconds}s)")
        return True

    def submit_signal(self, package: Optional[str], url: Optional[str] = None) -> None:
        """Queue a foreground signal for the worker thread."""
        self._queue.put((_MSG_SIGNAL, package, url))

    def request_reload(self) -> None:
        """Queue a blocklist reload for the worker thread."""
        self._queue.put((_MSG_RELOAD,))

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop the worker and tear down.

        Signals already queued are processed first; then the periodic check
        stops, the open session is closed and the ledgers are flushed.
        """
        if not self.is_running:
            self.shutdown()
            return
        self._queue.put((_MSG_STOP,))
        if self._worker is not None:
            self._worker.join(timeout=timeout)
            if self._worker.is_alive():
                # Still owns engine state; a later stop() joins it again
                logger.warning("Engine worker did not stop within timeout")
                return
        self._worker = None
        self.is_running = False

    def _run_loop(self) -> None:
        """Worker loop: signals and fixed-delay periodic checks on one thread."""
        next_check = time.monotonic() + self.check_interval_seconds
        while True:
            try:
                message = self._queue.get(timeout=max(0.0, next_check - time.monotonic()))
            except queue.Empty:
                self._run_safely(self.run_periodic_check)
                # Reschedule only after the check completed
                next_check = time.monotonic() + self.check_interval_seconds
                continue

            kind = message[0]
            if kind == _MSG_STOP:
                break
            if kind == _MSG_SIGNAL:
                self._run_safely(self.handle_signal, message[1], message[2])
            elif kind == _MSG_RELOAD:
                self._run_safely(self.reload_blocklist)

        self._run_safely(self.shutdown)

    def _run_safely(self, func: Callable, *args) -> None:
        try:
            func(*args)
        except Exception as e:
            logger.error(f"Engine loop error in {func.__name__}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_day(self) -> None:
        """Run the daily reset; an open session restarts at the day boundary."""
        result = self.ledger.rollover_if_new_day(self._today())
        if result.changed and self.tracker.is_tracking:
            self.tracker.restart()
            logger.info("Open session restarted at day boundary")

    def _on_session_closed(self, event: SessionClosed, blocked_groups: Set[str]) -> None:
        item = event.item
        self.ledger.commit(item, event.duration_ms)
        decision = self.enforcer.evaluate(
            item.group_id,
            self.ledger.current_group_usage(item.group_id),
            0,
            self.blocklist.limit_minutes(item.group_id),
        )
        if decision == Decision.BLOCK and item.group_id not in blocked_groups:
            blocked_groups.add(item.group_id)
            self._dispatch(item)

    def _on_session_opened(self, event: SessionOpened, blocked_groups: Set[str]) -> None:
        item = event.item
        if item.group_id in blocked_groups:
            # Already blocked in this observation: don't let the new session accrue
            closed = self.tracker.close()
            if closed is not None:
                self.ledger.commit(closed.item, closed.duration_ms)
            logger.info(f"Group '{item.group_id}' already blocked; not tracking {item.label}")
            return

        self._notify_status_change(config.STATUS_TRACKING, item.label)
        decision = self.enforcer.evaluate(
            item.group_id,
            self.ledger.current_group_usage(item.group_id),
            0,
            self.blocklist.limit_minutes(item.group_id),
        )
        if decision == Decision.BLOCK:
            blocked_groups.add(item.group_id)
            self._block_active(item)

    def _block_active(self, item: BlockedItem) -> None:
        """Close the open session (committing time up to now), then block."""
        closed = self.tracker.close()
        if closed is not None:
            self.ledger.commit(closed.item, closed.duration_ms)
        self._dispatch(item)

    def _dispatch(self, item: BlockedItem) -> None:
        self.dispatcher.request_block(item)
        self._notify_status_change(config.STATUS_BLOCKED, f"Time's up for: {item.label}")
        if self.on_block:
            try:
                self.on_block(item)
            except Exception as e:
                logger.debug(f"on_block callback error: {e}")

    # ------------------------------------------------------------------
    # Callback helpers
    # ------------------------------------------------------------------

    def _notify_status_change(self, status: str, text: str) -> None:
        """Status change notification; callback errors never reach the engine."""
        self.current_status = status
        if self.on_status_change:
            try:
                self.on_status_change(status, text)
            except Exception as e:
                logger.debug(f"on_status_change callback error: {e}")
