"""Domain exceptions shared by every service.

Each carries the HTTP status the API layer should answer with.
"""


class PortalError(Exception):
    """Base exception for portal operations."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or ""


class ValidationError(PortalError):
    """Required input is missing or malformed."""

    status_code = 400
    code = "validation_error"


class ForbiddenError(PortalError):
    """Actor is not allowed to perform this operation."""

    status_code = 403
    code = "forbidden"


class NotFoundError(PortalError):
    """Referenced entity does not exist."""

    status_code = 404
    code = "not_found"


class ConflictError(PortalError):
    """Operation conflicts with current state."""

    status_code = 409
    code = "conflict"


class InvalidTransitionError(ConflictError):
    """Status change not allowed from the current state."""

    code = "invalid_transition"


class UpstreamError(PortalError):
    """Storage or notification backend failed."""

    status_code = 502
    code = "upstream_error"
