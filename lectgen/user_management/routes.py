"""
User session routes.
"""
from flask import Blueprint, jsonify
from .services import UserService


def create_user_routes(user_service: UserService) -> Blueprint:
    """Create user management routes."""
    bp = Blueprint('user_management', __name__)

    @bp.route("/api/session", methods=["GET"])
    def session_info():
        """Report who the caller is and whether they reach the admin console."""
        uid, error = user_service.require_auth_json()
        if error:
            return jsonify(error), 401

        return jsonify({
            "uid": uid,
            "is_admin": user_service.is_admin_user(uid)
        })

    return bp
