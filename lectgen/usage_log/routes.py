"""
Usage log routes: record billable actions and query them from the admin console.
"""

from flask import Blueprint, jsonify, request
from pydantic import ValidationError

from .models import ActionType, UsagePayload, UsageQuery
from .tracker import UsageTracker
from ..quota.errors import QuotaError
from ..quota.responses import error_response, validation_error_response


def create_usage_routes(usage_tracker: UsageTracker, user_service, quota_manager=None) -> Blueprint:
    """Create Flask routes for the usage log.

    Args:
        usage_tracker: Where records are written and read
        user_service: UserService used to identify the caller
        quota_manager: Optional QuotaManager for account details in stats
    """
    bp = Blueprint('usage_log', __name__)

    @bp.route("/api/usage", methods=["POST"])
    def record_usage():
        """Record one billable action for the caller."""
        uid, error = user_service.require_auth_json()
        if error:
            return jsonify(error), 401

        try:
            payload = UsagePayload.model_validate(request.get_json(silent=True) or {})
        except ValidationError as e:
            return validation_error_response(e)

        try:
            if payload.action_type == ActionType.AI_GENERATION:
                record = usage_tracker.log_ai_generation(
                    uid, payload.duration_ms, payload.status,
                    tokens_used=payload.tokens_used,
                    error_message=payload.error_message,
                    metadata=payload.metadata,
                )
            elif payload.action_type == ActionType.SPEECH_TO_TEXT:
                record = usage_tracker.log_speech_to_text(
                    uid, payload.duration_ms, payload.status,
                    error_message=payload.error_message,
                    metadata=payload.metadata,
                )
            else:
                record = usage_tracker.log_pdf_generation(
                    uid, payload.duration_ms, payload.status,
                    error_message=payload.error_message,
                    metadata=payload.metadata,
                )
        except QuotaError as e:
            return error_response(e)

        return jsonify({"success": True, "record": record.to_dict()}), 201

    @bp.route("/api/admin/usage", methods=["GET"])
    def list_usage():
        """Filtered usage records, newest first (admin only)."""
        _, error, status = user_service.require_admin_json()
        if error:
            return jsonify(error), status

        try:
            query = UsageQuery.model_validate(request.args.to_dict())
        except ValidationError as e:
            return validation_error_response(e)

        try:
            rows, count = usage_tracker.find_records(
                user_id=query.uid,
                action_type=query.action_type,
                status=query.status,
                start=query.start,
                end=query.end,
                limit=query.limit,
                offset=query.offset,
            )
        except QuotaError as e:
            return error_response(e)

        return jsonify({"rows": rows, "count": count, "limit": query.limit, "offset": query.offset})

    @bp.route("/api/admin/usage/stats", methods=["GET"])
    def usage_stats():
        """Per-user stats when ``uid`` is given, otherwise global stats (admin only)."""
        _, error, status = user_service.require_admin_json()
        if error:
            return jsonify(error), status

        try:
            query = UsageQuery.model_validate(request.args.to_dict())
        except ValidationError as e:
            return validation_error_response(e)

        try:
            if query.uid:
                body = {
                    "uid": query.uid,
                    "stats": usage_tracker.get_user_stats(query.uid, query.start, query.end),
                }
                if quota_manager is not None:
                    body["quota"] = quota_manager.get_quota_info(query.uid)
                return jsonify(body)

            total_users = len(quota_manager.store.list_ids()) if quota_manager is not None else None
            return jsonify({
                "stats": usage_tracker.get_global_stats(query.start, query.end, total_users=total_users)
            })
        except QuotaError as e:
            return error_response(e)

    return bp
