"""
Custom exceptions for Falko loyalty and returns business logic.

Each exception carries a machine-readable code and the HTTP status the API
layer answers with, so route handlers can let them propagate to the
registered error handler.
"""
from .errors import ErrorCode


class FalkoError(Exception):
    """Base exception for all Falko business logic errors."""

    status_code = 400

    def __init__(self, message: str, code: ErrorCode = ErrorCode.INVALID_REQUEST, details: dict = None):
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)


class NotFoundError(FalkoError):
    """Resource not found."""

    status_code = 404

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with ID {identifier} not found"
        try:
            code = ErrorCode(f"{resource.upper()}_NOT_FOUND")
        except ValueError:
            code = ErrorCode.NOT_FOUND
        super().__init__(message, code)


class InvalidRequestError(FalkoError):
    """Missing or malformed request data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        details = {'field': field} if field else None
        super().__init__(message, ErrorCode.INVALID_REQUEST, details)


class NotEligibleError(FalkoError):
    """Return requested for an order outside the return window or not completed."""

    def __init__(self, message: str = "Order is not eligible for return"):
        super().__init__(message, ErrorCode.NOT_ELIGIBLE)


class InsufficientPointsError(FalkoError):
    """Not enough points for a redemption."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        self.shortfall = max(0, required - available)
        message = f"Insufficient points. Required: {required}, Available: {available}"
        super().__init__(
            message,
            ErrorCode.INSUFFICIENT_POINTS,
            {'required': required, 'available': available, 'shortfall': self.shortfall}
        )


class AuthorizationError(FalkoError):
    """Caller not authorized for this resource."""

    status_code = 403

    def __init__(self, message: str = "Not authorized for this operation"):
        super().__init__(message, ErrorCode.PERMISSION_DENIED)


class CollaboratorError(FalkoError):
    """Error talking to an external collaborator (shipping labels, email, orders)."""

    status_code = 502

    def __init__(self, collaborator: str, message: str, original_error: Exception = None):
        self.collaborator = collaborator
        self.original_error = original_error
        super().__init__(f"{collaborator}: {message}", ErrorCode.EXTERNAL_SERVICE_ERROR)


class PersistenceError(FalkoError):
    """Unexpected storage failure. The unit of work has been rolled back."""

    status_code = 500

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(message, ErrorCode.DATABASE_ERROR)
