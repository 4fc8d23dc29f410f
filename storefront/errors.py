# storefront/errors.py
from typing import Any, Dict, List, Optional

GENERIC_ERROR_MESSAGE = "Something went wrong, please contact support with the request id"


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    retriable = False
    # 5xx messages are replaced by a generic one before leaving the service
    expose_message = False

    def __init__(self, message: str = "Internal Server Error", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def public_message(self) -> str:
        if self.expose_message:
            return self.message
        return GENERIC_ERROR_MESSAGE


class ValidationError(AppError):
    """Malformed or missing input."""
    status_code = 400
    expose_message = True

    def __init__(self, message: str = "Bad request", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class UnauthorizedError(AppError):
    status_code = 401
    expose_message = True

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = 403
    expose_message = True

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFoundError(AppError):
    status_code = 404
    expose_message = True

    def __init__(self, message: str = "Not Found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class ConflictError(AppError):
    """The resource is not in the state the request expects; retry with fresh data."""
    status_code = 409
    expose_message = True


class InsufficientStockError(ConflictError):
    """One or more variants cannot cover the requested quantity."""

    def __init__(self, items: List[Dict[str, int]], message: str = "Insufficient stock"):
        super().__init__(message, {"items": items})
        self.items = items


class DependentServiceError(AppError):
    """A remote collaborator (the payment provider) failed; safe to retry."""
    status_code = 503
    retriable = True

    def __init__(self, service: str, message: str = "Dependent service unavailable"):
        super().__init__(message, {"service": service})
        self.service = service


class InternalError(AppError):
    """A persistence step that had to succeed did not."""
    status_code = 500
