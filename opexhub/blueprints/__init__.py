"""
OpEx Hub - Stage Progression Service
Blueprint helpers shared by the JSON endpoints.
"""

from flask import request

from opexhub.utils.errors import E, api_error


def json_body():
    """Parse the request body as a JSON object.

    Returns:
        (data, None) on success, (None, error_response) for a missing or
        non-object body.
    """
    data = request.get_json(silent=True)
    if data is None:
        return None, api_error(E.VALIDATION_REQUIRED, "Request body must be JSON")
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return data, None


def current_actor():
    """Best-effort actor identity from headers (no auth enforcement).

    Returns:
        (actor_name, actor_email); either may be None.
    """
    name = request.headers.get("X-User") or request.headers.get("X-Forwarded-User")
    email = request.headers.get("X-User-Email")
    return name, email
