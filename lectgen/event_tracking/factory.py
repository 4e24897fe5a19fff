"""
Factory for creating event tracking module.
"""
from pathlib import Path
from .routes import create_event_tracking_blueprint
from .event_tracker import EventTracker


def create_event_tracking_module(events_dir: Path, user_service) -> dict:
    """Create event tracking module with service and routes.

    Args:
        events_dir: Directory to store event tracking data files
        user_service: UserService used by the routes

    Returns:
        Dictionary containing the service and blueprint
    """
    event_tracker = EventTracker(events_dir)
    blueprint = create_event_tracking_blueprint(event_tracker, user_service)

    return {
        "service": event_tracker,
        "blueprint": blueprint
    }
