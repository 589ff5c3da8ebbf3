"""Custom application exceptions."""

from enum import Enum


class ErrorKind(str, Enum):
    """How an error is surfaced to the user."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    NETWORK = "network"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


class AppException(Exception):
    """Base application exception."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, status_code: int = 500, code: str | None = None):
        """Initialize exception with message, status code and optional machine code."""
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    kind = ErrorKind.AUTHORIZATION

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    kind = ErrorKind.AUTHORIZATION

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class BadRequestException(AppException):
    """Bad request exception."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class ValidationException(AppException):
    """Validation error exception."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str = "Validation error", field: str | None = None):
        """Initialize with 422 status code."""
        self.field = field
        super().__init__(message, status_code=422)


class ConflictException(AppException):
    """Conflict exception."""

    kind = ErrorKind.CONFLICT

    def __init__(self, message: str = "Conflict", code: str | None = None):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409, code=code)


class SlotConflictException(ConflictException):
    """The provider already has an active appointment at that instant."""

    def __init__(self, message: str = "That time slot is already booked for this provider"):
        """Initialize with the slot-taken code."""
        super().__init__(message, code="slot-taken")


class StateConflictException(ConflictException):
    """An appointment transition is not allowed from its current status."""

    def __init__(self, message: str = "Appointment status does not allow this action"):
        """Initialize with the state-conflict code."""
        super().__init__(message, code="state-conflict")


class NetworkException(AppException):
    """A collaborator could not be reached or answered with a server error."""

    kind = ErrorKind.NETWORK

    def __init__(self, message: str = "The service is temporarily unreachable"):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503)


class DocumentRenderException(AppException):
    """The invoice document could not be produced."""

    def __init__(self, message: str = "The invoice document could not be generated"):
        """Initialize with 500 status code."""
        super().__init__(message, status_code=500, code="document-render-failed")
