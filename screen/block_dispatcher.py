"""
Block dispatcher.

Requests the block screen for an item whose group allowance is exhausted,
then tries to move the foreground away from it. The block screen itself
belongs to the UI; it is reached through a callback.

Foreground redirect uses platform-native tools:
- macOS: AppleScript via subprocess (hide the frontmost application)
- Other platforms: not supported, reported as a failed redirect
"""

import logging
import subprocess
import sys
from typing import Callable, Optional

from screen.blocklist import BlockedItem

logger = logging.getLogger(__name__)

# Callback signature: show_block_screen(label, identifier)
ShowBlockScreen = Callable[[str, str], None]


def redirect_foreground_macos() -> bool:
    """
    Hide the frontmost application on macOS.

    Returns:
        True if the AppleScript ran successfully, False otherwise.
    """
    script = '''
    tell application "System Events"
        set visible of first application process whose frontmost is true to false
    end tell
    '''
    try:
        result = subprocess.run(
            ["osascript", "-e", script],
            capture_output=True,
            text=True,
            timeout=2
        )
    except subprocess.TimeoutExpired:
        logger.warning("AppleScript timed out hiding frontmost app")
        return False
    except OSError as e:
        logger.warning(f"Could not run osascript: {e}")
        return False

    if result.returncode != 0:
        logger.warning(f"AppleScript failed with code {result.returncode}: {result.stderr.strip()}")
        return False
    return True


def default_redirect() -> bool:
    """Redirect the foreground using the current platform's mechanism."""
    if sys.platform == "darwin":
        return redirect_foreground_macos()
    logger.warning(f"Foreground redirect not supported on platform: {sys.platform}")
    return False


class BlockDispatcher:
    """
    Presents the block screen and redirects the foreground.

    A failed redirect is logged and does not undo the block screen request.
    """

    def __init__(self, show_block_screen: Optional[ShowBlockScreen] = None,
                 redirect: Optional[Callable[[], bool]] = None):
        """
        Initialize the dispatcher.

        Args:
            show_block_screen: UI callback receiving (label, identifier).
                               If None, the block is only logged.
            redirect: Callable moving the foreground away; returns success.
        """
        self.show_block_screen = show_block_screen
        self.redirect = redirect or default_redirect
        self.blocks_requested: int = 0

    def request_block(self, item: BlockedItem) -> None:
        """
        Request the block screen for an item, then redirect the foreground.

        Args:
            item: The blocked item whose allowance is exhausted
        """
        self.blocks_requested += 1
        try:
            if self.show_block_screen:
                self.show_block_screen(item.label, item.identifier)
            logger.info(f"Block screen requested for {item.label} (Group: {item.group_id})")
        except Exception as e:
            logger.error(f"Error presenting block screen for {item.label}: {e}")

        try:
            if not self.redirect():
                logger.warning(f"Could not redirect foreground away from {item.label}")
        except Exception as e:
            logger.error(f"Error redirecting foreground away from {item.label}: {e}")
