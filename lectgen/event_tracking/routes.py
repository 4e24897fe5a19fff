"""
Event Tracking Routes

Flask routes for reading the audit trail.
"""

from flask import Blueprint, request, jsonify

from .event_tracker import EventTracker


def create_event_tracking_blueprint(event_tracker: EventTracker, user_service):
    """Create a Flask blueprint for event tracking routes.

    Args:
        event_tracker: Tracker holding the audit events
        user_service: UserService used to identify the caller

    Returns:
        Flask blueprint with event tracking routes
    """
    bp = Blueprint('event_tracking', __name__)

    def _events_response(uid: str):
        limit = request.args.get("limit", default=100, type=int)
        event_type = request.args.get("type") or None
        try:
            events = event_tracker.get_user_events(uid, limit=limit, event_type=event_type)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        return jsonify({
            "uid": uid,
            "events": [e.to_dict() for e in events],
            "stats": event_tracker.get_event_stats(uid)
        })

    @bp.route("/api/events", methods=["GET"])
    def get_own_events():
        """Get quota events for the current user."""
        uid, error = user_service.require_auth_json()
        if error:
            return jsonify(error), 401
        return _events_response(uid)

    @bp.route("/api/admin/events/<uid>", methods=["GET"])
    def get_account_events(uid):
        """Get quota and override events for any account (admin only)."""
        _, error, status = user_service.require_admin_json()
        if error:
            return jsonify(error), status
        return _events_response(uid)

    return bp
