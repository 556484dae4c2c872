class AppException(Exception):
    """Base application exception."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or self.error_code


class NotFoundError(AppException):
    """Resource not found exception."""

    status_code = 404
    error_code = "NOT_FOUND"


class ValidationError(AppException):
    """Validation error exception."""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class ConflictError(AppException):
    """Resource state conflict exception."""

    status_code = 409
    error_code = "CONFLICT"


class LockTimeoutError(ConflictError):
    """Could not acquire a lock before the timeout."""

    error_code = "RESOURCE_BUSY"


class UnauthorizedError(AppException):
    """Caller could not be authenticated."""

    status_code = 401
    error_code = "UNAUTHORIZED"
