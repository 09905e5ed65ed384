"""
Service-wide exception hierarchy.

Every service module raises these types; blueprints register handlers once
and map them to consistent HTTP status codes (see ``opexhub.utils.errors``).

Usage:
    from opexhub.core.exceptions import NotFoundError, NotPendingError

    raise NotFoundError(resource="StageTransaction", resource_id=42)
    raise ValidationError("comment is required", details={"comment": "blank"})
"""


class NotFoundError(Exception):
    """Raised when a requested initiative, ledger row, user or token does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Initiative").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique record.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class NotPendingError(Exception):
    """Raised when an action targets a ledger row that is not ``pending``.

    Also raised when a concurrent action won the race for the same row.
    Maps to HTTP 409.
    """

    def __init__(self, transaction_id: int, status: str | None = None) -> None:
        self.transaction_id = transaction_id
        self.status = status
        msg = f"Stage transaction {transaction_id} is not pending"
        if status:
            msg += f" (status={status})"
        super().__init__(msg)


class NotAssigneeError(Exception):
    """Raised when the acting user is not the addressee of the pending row.

    Maps to HTTP 403.
    """

    def __init__(self, transaction_id: int, actor: str) -> None:
        self.transaction_id = transaction_id
        self.actor = actor
        super().__init__(f"{actor} is not assigned to stage transaction {transaction_id}")


class MisconfiguredRoutingError(Exception):
    """Raised when no active routing entry exists for a statically routed stage.

    Aborts the whole operation; no partial ledger is written.  Maps to HTTP 422.
    """

    def __init__(self, site: str, stage_number: int) -> None:
        self.site = site
        self.stage_number = stage_number
        super().__init__(f"No active routing entry for site={site} stage={stage_number}")


class UnresolvedRoleError(Exception):
    """Raised when a role-routed stage has no active user for (site, role).

    Maps to HTTP 422.
    """

    def __init__(self, site: str, role: str, stage_number: int) -> None:
        self.site = site
        self.role = role
        self.stage_number = stage_number
        super().__init__(f"No active user with role={role} at site={site} for stage {stage_number}")
