"""
Core business logic package for TimeSave.

Contains the headless EnforcementEngine and the limit policy.
Zero UI dependencies.
"""

from core.engine import EnforcementEngine
from core.enforcer import Decision, LimitEnforcer

__all__ = ["EnforcementEngine", "Decision", "LimitEnforcer"]
