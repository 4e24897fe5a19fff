"""
Event Tracking Subsystem

Audit trail of quota decisions and administrative overrides.
"""

from .event_tracker import EventTracker
from .event_types import EventType
from .models import Event

__all__ = ['EventTracker', 'EventType', 'Event']
