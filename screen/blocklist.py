"""
Blocklist registry for usage enforcement.

Holds the configured items-to-limit (apps by package identifier, websites
by hostname substring) and the per-group daily allowance. The registry is
read-only from the engine's point of view; items and limits are edited
through the configuration store by the settings UI or the CLI.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import config

logger = logging.getLogger(__name__)


class BlockType(str, Enum):
    """Kind of blocked item."""
    APP = config.KIND_APP
    WEBSITE = config.KIND_WEBSITE


@dataclass(frozen=True)
class BlockedItem:
    """
    A configured application or website subject to a usage allowance.

    Identifier is a package identifier (APP) or a hostname/substring
    (WEBSITE). Only the identifier decides whether two items are "the same"
    for session tracking; display name and group are descriptive.
    """

    identifier: str
    kind: BlockType
    display_name: Optional[str] = None
    group_id: str = config.DEFAULT_GROUP_ID

    def __post_init__(self):
        if not self.identifier or not self.identifier.strip():
            raise ValueError("Blocked item identifier must be non-empty")

    @property
    def label(self) -> str:
        """Name shown on the block screen and in logs."""
        return self.display_name or self.identifier

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert item to dictionary for JSON serialization.

        Returns:
            Dictionary using the persisted key names.
        """
        data = {
            "identifier": self.identifier,
            "type": self.kind.value,
            "groupId": self.group_id,
        }
        if self.display_name is not None:
            data["displayName"] = self.display_name
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BlockedItem':
        """
        Create a BlockedItem from a persisted dictionary.

        Args:
            data: Dictionary with identifier, type, and optional displayName/groupId

        Returns:
            New BlockedItem instance

        Raises:
            ValueError: If the identifier is empty or the type is unknown.
            KeyError: If a required key is missing.
            TypeError: If a value has the wrong type.
        """
        identifier = data["identifier"]
        if not isinstance(identifier, str):
            raise TypeError(f"identifier must be a string, got {type(identifier).__name__}")
        display_name = data.get("displayName")
        if display_name is not None and not isinstance(display_name, str):
            raise TypeError("displayName must be a string")
        group_id = data.get("groupId") or config.DEFAULT_GROUP_ID
        return cls(
            identifier=identifier,
            kind=BlockType(str(data["type"]).upper()),
            display_name=display_name,
            group_id=str(group_id),
        )


@dataclass
class Group:
    """A bucket of blocked items sharing one daily time allowance."""

    group_id: str
    time_limit_minutes: int = config.DEFAULT_GROUP_LIMIT_MINUTES

    @property
    def time_limit_millis(self) -> int:
        return max(0, self.time_limit_minutes) * 60 * 1000


def get_default_blocked_items() -> List[BlockedItem]:
    """Build the built-in blocklist used when nothing usable is stored."""
    return [BlockedItem.from_dict(entry) for entry in config.DEFAULT_BLOCKED_ITEMS]


class Blocklist:
    """
    Registry of blocked items and groups.

    Groups are a keyed collection: every group referenced by an item gets
    an entry, using the stored limit or the default allowance.
    """

    def __init__(self, items: Iterable[BlockedItem], groups: Optional[Dict[str, Group]] = None):
        """
        Initialize the registry.

        Args:
            items: Blocked items in priority order (first match wins)
            groups: Known groups by id; missing ones get the default limit
        """
        self.items: List[BlockedItem] = list(items)
        self.groups: Dict[str, Group] = dict(groups or {})
        for item in self.items:
            if item.group_id not in self.groups:
                self.groups[item.group_id] = Group(item.group_id)

    @classmethod
    def load(cls, store) -> 'Blocklist':
        """
        Load blocklist and group limits from the configuration store.

        Falls back to the built-in items (and saves them) when the store
        has no items configured.

        Args:
            store: ConfigStore to read from

        Returns:
            Loaded Blocklist instance
        """
        items = store.load_blocked_items()
        if not items:
            items = get_default_blocked_items()
            store.save_blocked_items(items)
            logger.info("No saved blocked items. Loaded and saved default items.")

        group_ids = {item.group_id for item in items}
        group_ids.update(store.load_group_ids())
        groups = {
            group_id: Group(group_id, store.load_group_limit(group_id))
            for group_id in sorted(group_ids)
        }
        blocklist = cls(items, groups)
        logger.info(
            f"Loaded blocklist: {len(blocklist.items)} items in {len(blocklist.groups)} group(s)"
        )
        return blocklist

    def get_group(self, group_id: str) -> Group:
        """
        Get a group by id, creating a default-limit entry if unknown.

        Args:
            group_id: Group identifier

        Returns:
            The Group instance
        """
        group = self.groups.get(group_id)
        if group is None:
            group = Group(group_id)
            self.groups[group_id] = group
        return group

    def limit_minutes(self, group_id: str) -> int:
        """Daily allowance for a group in minutes."""
        return self.get_group(group_id).time_limit_minutes

    def items_of_kind(self, kind: BlockType) -> List[BlockedItem]:
        """Items of one kind, in configured order."""
        return [item for item in self.items if item.kind == kind]

    def items_in_group(self, group_id: str) -> List[BlockedItem]:
        """Items belonging to a group, in configured order."""
        return [item for item in self.items if item.group_id == group_id]

    def find(self, identifier: str) -> Optional[BlockedItem]:
        """First item with the given identifier, or None."""
        for item in self.items:
            if item.identifier == identifier:
                return item
        return None
