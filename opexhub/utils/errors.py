"""Standardised API error responses.

Usage
-----
    from opexhub.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Initiative not found")
    return api_error(E.VALIDATION_REQUIRED, "comment is required")
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from opexhub.core.exceptions import (
    ConflictError,
    MisconfiguredRoutingError,
    NotAssigneeError,
    NotFoundError,
    NotPendingError,
    UnresolvedRoleError,
    ValidationError,
)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Malformed request – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business-rule violation – HTTP 422
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"
    ROUTING_MISCONFIGURED = "ERR_ROUTING_MISCONFIGURED"
    ROLE_UNRESOLVED = "ERR_ROLE_UNRESOLVED"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.ROUTING_MISCONFIGURED: 422,
    E.ROLE_UNRESOLVED: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.FORBIDDEN: 403,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, conflicting state, ...).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_service_error_handlers(bp):
    """Attach the service-exception → HTTP mapping to a blueprint."""
    logger = logging.getLogger(bp.import_name)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(NotPendingError)
    def _handle_not_pending(error: NotPendingError):
        return api_error(E.CONFLICT_STATE, str(error), details={"status": error.status} if error.status else None)

    @bp.errorhandler(NotAssigneeError)
    def _handle_not_assignee(error: NotAssigneeError):
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(MisconfiguredRoutingError)
    def _handle_routing(error: MisconfiguredRoutingError):
        return api_error(
            E.ROUTING_MISCONFIGURED, str(error),
            details={"site": error.site, "stage_number": error.stage_number},
        )

    @bp.errorhandler(UnresolvedRoleError)
    def _handle_role(error: UnresolvedRoleError):
        return api_error(
            E.ROLE_UNRESOLVED, str(error),
            details={"site": error.site, "role": error.role, "stage_number": error.stage_number},
        )

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
