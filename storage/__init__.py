"""
Persistence package for TimeSave.

ConfigStore keeps blocked items, group limits, usage counters and the
last reset date in one JSON document in the user data directory.
"""

from storage.config_store import ConfigStore

__all__ = ["ConfigStore"]
