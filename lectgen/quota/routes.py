"""
Quota routes: caller-facing quota endpoints and the admin override surface.
"""

from flask import Blueprint, jsonify, request
from pydantic import ValidationError

from .errors import InvalidTier, QuotaError
from .manager import QuotaManager
from .models import Tier
from .responses import error_response, quota_exceeded_response, validation_error_response
from .schemas import ChangeTierRequest, RegisterAccountRequest, SetCapRequest, UpdateSettingsRequest
from ..user_management.services import UserService


def create_quota_routes(quota_manager: QuotaManager, user_service: UserService) -> Blueprint:
    """Create Flask routes used by the request-handling layer."""

    bp = Blueprint('quota', __name__)

    @bp.route("/api/quota", methods=["GET"])
    def get_quota():
        """Get the caller's current quota information."""
        uid, error = user_service.require_auth_json()
        if error:
            return jsonify(error), 401

        try:
            return jsonify({"success": True, "quota": quota_manager.get_quota_info(uid)})
        except QuotaError as e:
            return error_response(e)

    @bp.route("/api/quota/check", methods=["GET"])
    def check_quota():
        """Check whether the caller may generate slides, without consuming."""
        uid, error = user_service.require_auth_json()
        if error:
            return jsonify(error), 401

        try:
            result = quota_manager.check_only(uid)
        except QuotaError as e:
            return error_response(e)
        return jsonify(result.to_dict())

    @bp.route("/api/quota/consume", methods=["POST"])
    def consume_quota():
        """Consume one slide generation for the caller."""
        uid, error = user_service.require_auth_json()
        if error:
            return jsonify(error), 401

        try:
            result = quota_manager.try_increment(uid)
        except QuotaError as e:
            return error_response(e)

        if not result.allowed:
            return quota_exceeded_response(result)
        return jsonify(result.to_dict())

    return bp


def create_quota_admin_routes(quota_manager: QuotaManager, user_service: UserService) -> Blueprint:
    """Create Flask routes for the administration surface."""

    bp = Blueprint('quota_admin', __name__, url_prefix="/api/admin")

    @bp.before_request
    def require_admin():
        _, error, status = user_service.require_admin_json()
        if error:
            return jsonify(error), status
        return None

    @bp.route("/accounts", methods=["GET"])
    def list_accounts():
        """List accounts with their quota summary."""
        limit = request.args.get("limit", default=50, type=int)
        offset = request.args.get("offset", default=0, type=int)
        limit = max(1, min(limit, 100))
        offset = max(0, offset)

        try:
            listing = quota_manager.list_accounts(limit=limit, offset=offset)
        except QuotaError as e:
            return error_response(e)
        return jsonify({"success": True, **listing.to_dict()})

    @bp.route("/accounts", methods=["POST"])
    def register_account():
        """Register a new account."""
        try:
            payload = RegisterAccountRequest.model_validate(request.get_json(silent=True) or {})
            tier = Tier.parse(payload.tier)
        except ValidationError as e:
            return validation_error_response(e)
        except InvalidTier as e:
            return jsonify({"error": e.code, "message": str(e)}), 400

        try:
            account = quota_manager.register_account(
                payload.uid,
                tier=tier,
                cap=payload.cap,
                subscription_expires_at=payload.subscription_expires_at,
                actor=user_service.get_current_user_id(),
            )
        except QuotaError as e:
            return error_response(e)
        return jsonify({"success": True, "account": account.to_dict()}), 201

    @bp.route("/accounts/<uid>", methods=["GET"])
    def get_account(uid):
        """Get an account with its quota information."""
        try:
            account = quota_manager.get_account(uid)
            quota = quota_manager.get_quota_info(uid)
        except QuotaError as e:
            return error_response(e)
        return jsonify({"success": True, "account": account.to_dict(), "quota": quota})

    @bp.route("/accounts/<uid>/cap", methods=["PUT"])
    def set_cap(uid):
        """Override the monthly cap of an account."""
        try:
            payload = SetCapRequest.model_validate(request.get_json(silent=True) or {})
        except ValidationError as e:
            return validation_error_response(e)

        try:
            account = quota_manager.set_cap(uid, payload.cap, actor=user_service.get_current_user_id())
        except QuotaError as e:
            return error_response(e)
        return jsonify({
            "success": True,
            "message": "User quota updated successfully",
            "account": account.to_dict()
        })

    @bp.route("/accounts/<uid>/reset", methods=["POST"])
    def reset_counter(uid):
        """Reset the usage counter of an account."""
        try:
            account = quota_manager.reset_counter(uid, actor=user_service.get_current_user_id())
        except QuotaError as e:
            return error_response(e)
        return jsonify({
            "success": True,
            "message": "User usage counter reset",
            "account": account.to_dict()
        })

    @bp.route("/accounts/<uid>/tier", methods=["PUT"])
    def change_tier(uid):
        """Change the subscription tier of an account."""
        try:
            payload = ChangeTierRequest.model_validate(request.get_json(silent=True) or {})
            tier = Tier.parse(payload.tier)
        except ValidationError as e:
            return validation_error_response(e)
        except InvalidTier as e:
            return jsonify({"error": e.code, "message": str(e)}), 400

        try:
            account = quota_manager.change_tier(
                uid,
                tier,
                subscription_expires_at=payload.subscription_expires_at,
                actor=user_service.get_current_user_id(),
            )
        except QuotaError as e:
            return error_response(e)
        return jsonify({
            "success": True,
            "message": "User role updated successfully",
            "account": account.to_dict()
        })

    @bp.route("/settings", methods=["GET"])
    def get_settings():
        """Get the runtime quota settings."""
        try:
            free_cap = quota_manager.default_free_cap()
        except QuotaError as e:
            return error_response(e)
        return jsonify({"success": True, "settings": {"free_monthly_cap": free_cap}})

    @bp.route("/settings", methods=["PUT"])
    def update_settings():
        """Change the FREE default cap and apply it to every FREE account."""
        try:
            payload = UpdateSettingsRequest.model_validate(request.get_json(silent=True) or {})
        except ValidationError as e:
            return validation_error_response(e)

        try:
            result = quota_manager.set_default_free_cap(
                payload.free_monthly_cap,
                actor=user_service.get_current_user_id(),
            )
        except QuotaError as e:
            return error_response(e)
        return jsonify({
            "success": True,
            "message": f"Updated quota for {len(result['updated_accounts'])} FREE account(s)",
            "settings": {"free_monthly_cap": result["cap"]},
            **result
        })

    @bp.route("/quota/stats", methods=["GET"])
    def quota_stats():
        """Aggregate quota statistics for the dashboard."""
        try:
            return jsonify({"success": True, "stats": quota_manager.get_all_usage_stats()})
        except QuotaError as e:
            return error_response(e)

    return bp
