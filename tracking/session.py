"""Session tracking: which blocked item is currently in use, and for how long."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from screen.blocklist import BlockedItem
from screen.matching import ForegroundMatcher

logger = logging.getLogger(__name__)


def monotonic_millis() -> int:
    """Monotonic clock in milliseconds (unaffected by wall-clock changes)."""
    return int(time.monotonic() * 1000)


@dataclass
class Session:
    """An open tracking interval for one blocked item. Never persisted."""

    item: BlockedItem
    start_monotonic_ms: int


@dataclass(frozen=True)
class NoChange:
    """The observation didn't change the tracked item."""


@dataclass(frozen=True)
class SessionClosed:
    """A session ended; duration_ms is the elapsed time to commit (>= 0)."""

    item: BlockedItem
    duration_ms: int


@dataclass(frozen=True)
class SessionOpened:
    """A session started for item."""

    item: BlockedItem


class SessionTracker:
    """
    State machine over foreground observations.

    States are Idle (no session) and Tracking(item). At most one session is
    open at a time. Switching directly from X to Y closes X before opening
    Y so X's duration is committed against X's group. Only identifier
    equality decides whether an observation refers to the same item.
    """

    def __init__(self, items: Sequence[BlockedItem], matcher: Optional[ForegroundMatcher] = None,
                 clock: Callable[[], int] = monotonic_millis):
        """
        Initialize the tracker.

        Args:
            items: Configured items in priority order
            matcher: Matching strategies (default: app, then website)
            clock: Monotonic millisecond clock
        """
        self.items: List[BlockedItem] = list(items)
        self.matcher = matcher or ForegroundMatcher()
        self.clock = clock
        self._session: Optional[Session] = None

    @property
    def active_item(self) -> Optional[BlockedItem]:
        """Item of the open session, or None when idle."""
        return self._session.item if self._session else None

    @property
    def is_tracking(self) -> bool:
        return self._session is not None

    def set_items(self, items: Sequence[BlockedItem]) -> None:
        """Replace the configured items; an open session is left untouched."""
        self.items = list(items)

    def observe(self, package: Optional[str], url: Optional[str] = None) -> List[object]:
        """
        Process one foreground signal.

        Args:
            package: Foreground package identifier (None if unknown)
            url: Candidate URL from the foreground (None if unavailable)

        Returns:
            Events in order: [NoChange()], [SessionOpened], [SessionClosed],
            or [SessionClosed, SessionOpened] for a direct switch.
        """
        now = self.clock()
        new_item = self.matcher.match(self.items, package, url)
        current = self.active_item

        if current is not None and new_item is not None and current.identifier == new_item.identifier:
            return [NoChange()]
        if current is None and new_item is None:
            return [NoChange()]

        events: List[object] = []
        if current is not None:
            events.append(self._close(now))
        if new_item is not None:
            events.append(self._open(new_item, now))
        return events

    def close(self, now: Optional[int] = None) -> Optional[SessionClosed]:
        """
        Force-close the open session (limit breach, teardown).

        Returns:
            The SessionClosed event, or None if no session was open.
        """
        if self._session is None:
            return None
        return self._close(self.clock() if now is None else now)

    def in_progress_ms(self, now: Optional[int] = None) -> int:
        """Elapsed time of the open session, not yet committed (0 when idle)."""
        if self._session is None:
            return 0
        now = self.clock() if now is None else now
        return max(0, now - self._session.start_monotonic_ms)

    def restart(self, now: Optional[int] = None) -> None:
        """Move the open session's start to now without closing it."""
        if self._session is not None:
            self._session.start_monotonic_ms = self.clock() if now is None else now

    def _open(self, item: BlockedItem, now: int) -> SessionOpened:
        self._session = Session(item=item, start_monotonic_ms=now)
        logger.info(f"Starting new session for: {item.label} (Group: {item.group_id})")
        return SessionOpened(item)

    def _close(self, now: int) -> SessionClosed:
        session = self._session
        self._session = None
        duration = now - session.start_monotonic_ms
        if duration < 0:
            logger.warning(
                f"Negative session duration for {session.item.label}: {duration}ms. Clamping to 0."
            )
            duration = 0
        logger.info(f"Closed session for {session.item.label} after {duration / 1000:.1f}s")
        return SessionClosed(session.item, duration)
