"""
Event Types for the Event Tracking System

Defines all audit event types emitted by the quota engine.
"""

from enum import Enum


class EventType(Enum):
    """Allowed event types for tracking."""

    # Entitlement decisions
    QUOTA_ALLOWED = "quota_allowed"
    QUOTA_DENIED = "quota_denied"
    CYCLE_ROLLOVER = "cycle_rollover"

    # Administrative overrides
    CAP_SET = "cap_set"
    COUNTER_RESET = "counter_reset"
    TIER_CHANGED = "tier_changed"

    # Account lifecycle
    ACCOUNT_CREATED = "account_created"

    @classmethod
    def is_valid(cls, event_type: str) -> bool:
        """Check if an event type string is valid."""
        try:
            cls(event_type)
            return True
        except ValueError:
            return False
