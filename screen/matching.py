"""
Foreground matching strategies.

Decides which configured item (if any) the current foreground signal
refers to. Strategies are tried in priority order and the first hit wins:

1. App match: the foreground package equals an APP item's identifier.
2. Website match: the foreground package is a browser, a candidate URL is
   available, and a WEBSITE item's identifier occurs in the URL
   (case-insensitive).
"""

import logging
from typing import Iterable, List, Optional, Sequence

import config
from screen.blocklist import BlockedItem, BlockType

logger = logging.getLogger(__name__)


def is_browser_package(package: Optional[str], markers: Sequence[str] = config.BROWSER_PACKAGE_MARKERS) -> bool:
    """
    Check whether a package identifier belongs to a browser-class app.

    Args:
        package: Foreground package identifier (may be None)
        markers: Substrings identifying browser packages

    Returns:
        True if any marker occurs in the package identifier.
    """
    if not package:
        return False
    package_lower = package.lower()
    return any(marker in package_lower for marker in markers)


class MatchStrategy:
    """Base class: find the first item matching a foreground signal."""

    name = "base"

    def match(self, items: Iterable[BlockedItem], package: Optional[str],
              url: Optional[str]) -> Optional[BlockedItem]:
        raise NotImplementedError


class AppMatchStrategy(MatchStrategy):
    """Exact package identifier match against APP items."""

    name = "app"

    def match(self, items, package, url):
        if not package:
            return None
        for item in items:
            if item.kind == BlockType.APP and item.identifier == package:
                return item
        return None


class WebsiteMatchStrategy(MatchStrategy):
    """Case-insensitive substring match of WEBSITE identifiers in a browser URL."""

    name = "website"

    def __init__(self, browser_markers: Sequence[str] = config.BROWSER_PACKAGE_MARKERS):
        self.browser_markers = tuple(browser_markers)

    def match(self, items, package, url):
        if url is None or not is_browser_package(package, self.browser_markers):
            return None
        url_lower = url.lower()
        for item in items:
            if item.kind == BlockType.WEBSITE and item.identifier.lower() in url_lower:
                return item
        return None


def default_strategies() -> List[MatchStrategy]:
    """Strategies in priority order: apps before websites."""
    return [AppMatchStrategy(), WebsiteMatchStrategy()]


class ForegroundMatcher:
    """Runs match strategies in order against the configured items."""

    def __init__(self, strategies: Optional[Sequence[MatchStrategy]] = None):
        self.strategies: List[MatchStrategy] = list(strategies) if strategies is not None else default_strategies()

    def match(self, items: Sequence[BlockedItem], package: Optional[str],
              url: Optional[str]) -> Optional[BlockedItem]:
        """
        Find the item the foreground refers to.

        Args:
            items: Configured items in priority order
            package: Foreground package identifier
            url: Candidate URL extracted from the foreground (browsers only)

        Returns:
            The first matching item, or None if the foreground is neutral.
        """
        for strategy in self.strategies:
            item = strategy.match(items, package, url)
            if item is not None:
                logger.debug(f"Foreground '{package}' matched '{item.identifier}' via {strategy.name}")
                return item
        return None
