"""
View decorator that gates a Flask endpoint on the caller's quota.
"""

from functools import wraps

from flask import g, jsonify

from .errors import QuotaError
from .manager import QuotaManager
from .responses import error_response, quota_exceeded_response


def quota_required(quota_manager: QuotaManager, user_service):
    """
    Consume one unit of the caller's quota before running the view.

    Denials return the structured 403 quota_exceeded body; engine failures
    return the matching error response and the view is not called. The
    QuotaResult of an allowed request is available as g.quota_result.
    """
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            uid, error = user_service.require_auth_json()
            if error:
                return jsonify(error), 401

            try:
                result = quota_manager.try_increment(uid)
            except QuotaError as e:
                return error_response(e)

            if not result.allowed:
                return quota_exceeded_response(result)

            g.quota_result = result
            return view(*args, **kwargs)
        return wrapped
    return decorator
