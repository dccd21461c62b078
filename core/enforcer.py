"""
Limit enforcement policy.

A pure decision: given a group's committed usage, the in-progress duration
of the open session and the group's allowance, should a block fire?
The engine calls it on session open, on session close (in-progress = 0)
and periodically while a session stays open.
"""

import logging
from enum import Enum

logger = logging.getLogger(__name__)

MILLIS_PER_MINUTE = 60 * 1000


class Decision(Enum):
    """Outcome of a limit evaluation."""
    NO_BLOCK = "no_block"
    BLOCK = "block"


class LimitEnforcer:
    """Evaluates usage against a group's daily allowance."""

    def evaluate(self, group_id: str, committed_ms: int, in_progress_ms: int,
                 limit_minutes: int) -> Decision:
        """
        Decide whether the group's allowance is exhausted.

        A zero allowance means "always blocked once touched": it blocks as
        soon as any usage (committed or in progress) exists, but not before.

        Args:
            group_id: Group being evaluated (for logging)
            committed_ms: Usage already in the ledger today
            in_progress_ms: Uncommitted elapsed time of the open session
            limit_minutes: Group allowance in minutes

        Returns:
            Decision.BLOCK or Decision.NO_BLOCK
        """
        total_ms = max(0, committed_ms) + max(0, in_progress_ms)

        if limit_minutes <= 0:
            if total_ms > 0:
                logger.warning(f"Group '{group_id}' limit is 0 and usage is {total_ms / 1000:.1f}s. Blocking.")
                return Decision.BLOCK
            return Decision.NO_BLOCK

        limit_ms = limit_minutes * MILLIS_PER_MINUTE
        if total_ms >= limit_ms:
            logger.warning(
                f"Group '{group_id}' time limit EXCEEDED! Total: {total_ms / 1000:.1f}s, "
                f"Limit: {limit_ms / 1000:.0f}s"
            )
            return Decision.BLOCK

        logger.debug(
            f"Group '{group_id}' time limit not yet exceeded. Total: {total_ms / 1000:.1f}s, "
            f"Limit: {limit_ms / 1000:.0f}s"
        )
        return Decision.NO_BLOCK
