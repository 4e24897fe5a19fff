"""
JSON responses shared by the quota-aware routes.
"""

import logging

from flask import jsonify
from pydantic import ValidationError

from .errors import AccountExists, AccountNotFound, InvalidAccountId, InvalidTier, QuotaError
from .models import QuotaResult

logger = logging.getLogger(__name__)

RETRY_LATER_MESSAGE = "The quota service is temporarily unavailable. Please retry later."


def quota_exceeded_response(result: QuotaResult):
    """403 body for a denied generation request."""
    body = result.to_dict()
    body["error"] = result.reason
    return jsonify(body), 403


def error_response(exc: QuotaError):
    """Translate a quota engine error into a JSON response."""
    if isinstance(exc, AccountNotFound):
        return jsonify({"error": exc.code, "message": str(exc)}), 404

    if isinstance(exc, AccountExists):
        return jsonify({"error": exc.code, "message": str(exc)}), 409

    if isinstance(exc, InvalidAccountId):
        return jsonify({"error": exc.code, "message": str(exc)}), 400

    if exc.transient:
        logger.warning(f"Transient quota failure: {exc}")
        return jsonify({"error": exc.code, "message": RETRY_LATER_MESSAGE}), 503

    if isinstance(exc, InvalidTier):
        # Only reachable for bad stored data; admin input is validated first
        logger.error(f"Invalid tier in stored account data: {exc}")
        return jsonify({"error": exc.code, "message": str(exc)}), 500

    logger.error(f"Unhandled quota error: {exc}")
    return jsonify({"error": exc.code, "message": str(exc)}), 500


def validation_error_response(exc: ValidationError):
    """400 body for a request payload that failed validation."""
    return jsonify({
        "error": "invalid_request",
        "details": [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
    }), 400
