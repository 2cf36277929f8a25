"""
Error types for the PassDesk event pass system.

Managers raise these internally and turn them into result dictionaries
(``success``/``message``/``error_type``) at their public boundary. The HTTP
layer maps ``error_type`` back to a status code with ``status_for``.
"""

from typing import Any, Dict, Optional


class PassDeskError(Exception):
    """Base class for all PassDesk errors."""

    error_type = 'ERROR'
    http_status = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_result(self) -> Dict[str, Any]:
        result = {
            'success': False,
            'message': self.message,
            'error_type': self.error_type
        }
        result.update(self.details)
        return result


class ValidationError(PassDeskError):
    """Missing or malformed input fields."""
    error_type = 'VALIDATION_ERROR'


class InvalidPassError(ValidationError):
    """Scanned pass does not belong to an issued student."""
    error_type = 'INVALID_PASS'


class ConflictError(PassDeskError):
    """Duplicate identity or an already consumed pass."""
    error_type = 'CONFLICT'


class DuplicateStudentError(ConflictError):
    error_type = 'DUPLICATE_STUDENT'


class AlreadyUsedError(ConflictError):
    error_type = 'ALREADY_USED'


class DependencyError(PassDeskError):
    """An external collaborator (mail server, store) failed."""
    error_type = 'DEPENDENCY_ERROR'
    http_status = 502


class EmailDeliveryError(DependencyError):
    error_type = 'EMAIL_DELIVERY_FAILED'


class InternalError(PassDeskError):
    """Unexpected failure; detail stays in the server log."""
    error_type = 'INTERNAL_ERROR'
    http_status = 500


ERROR_STATUS = {
    cls.error_type: cls.http_status
    for cls in (PassDeskError, ValidationError, InvalidPassError, ConflictError,
                DuplicateStudentError, AlreadyUsedError, DependencyError,
                EmailDeliveryError, InternalError)
}


def status_for(error_type: Optional[str]) -> int:
    """HTTP status for a result ``error_type``; unknown types are server errors."""
    return ERROR_STATUS.get(error_type, 500)
