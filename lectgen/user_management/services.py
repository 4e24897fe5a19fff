"""
Caller identification for the quota service.

Authentication happens upstream; this service only reads the account id the
identity layer forwarded and checks it against the configured admin list.
"""
from typing import Optional, List
from flask import request

USER_ID_HEADER = "X-User-Id"


class UserService:
    """Service for identifying the caller of a request."""

    def __init__(self, admin_user_ids: List[str]):
        self.admin_user_ids = [uid.strip() for uid in admin_user_ids if uid and uid.strip()]

    def get_current_user_id(self) -> Optional[str]:
        """Get the current user ID from the forwarded header or the uid cookie."""
        uid = request.headers.get(USER_ID_HEADER) or request.cookies.get("uid")
        if uid:
            uid = uid.strip()
        return uid or None

    def is_authenticated(self) -> bool:
        """Check if the current request carries a user id."""
        return bool(self.get_current_user_id())

    def is_admin_user(self, uid: Optional[str]) -> bool:
        """Check if the user is an admin based on configuration."""
        return bool(uid) and uid.strip() in self.admin_user_ids

    def require_auth_json(self) -> tuple[Optional[str], Optional[dict]]:
        """Require a caller id for JSON endpoints, return error if missing."""
        uid = self.get_current_user_id()
        if not uid:
            return None, {"error": "no-uid", "message": "Login required"}
        return uid, None

    def require_admin_json(self) -> tuple[Optional[str], Optional[dict], int]:
        """Require an admin caller for JSON endpoints.

        Returns:
            (uid, error, status_code); error is None when the caller is an admin
        """
        uid, error = self.require_auth_json()
        if error:
            return None, error, 401
        if not self.is_admin_user(uid):
            return uid, {"error": "forbidden", "message": "Admin privileges required"}, 403
        return uid, None, 200
