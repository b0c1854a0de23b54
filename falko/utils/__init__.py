"""
Utility modules for Falko.
"""
from .logging_config import setup_logging
from .errors import (
    ErrorCode,
    error_response,
    bad_request,
    unauthorized,
    forbidden,
    internal_error
)
from .exceptions import (
    FalkoError,
    NotFoundError,
    InvalidRequestError,
    NotEligibleError,
    InsufficientPointsError,
    AuthorizationError,
    CollaboratorError,
    PersistenceError
)
