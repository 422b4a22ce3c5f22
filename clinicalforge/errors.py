"""Error taxonomy shared by the services and the HTTP layer.

Every error carries a stable ``code`` plus a user-facing message and a suggested
action, so the UI can show something actionable without parsing driver messages.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError


class ClinicalForgeError(Exception):
    """Base class for every domain error."""

    code = "unknown"
    status_code = 500
    user_message = "An unexpected error occurred. Please try again."
    action = "Try again or contact support"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.user_message)
        self.message = message or self.user_message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "userFriendlyMessage": self.user_message,
            "action": self.action,
        }


class Unauthenticated(ClinicalForgeError):
    code = "unauthenticated"
    status_code = 401
    user_message = "Please sign in to access this feature."
    action = "Sign in to continue"


class PermissionDenied(ClinicalForgeError):
    code = "permission-denied"
    status_code = 403
    user_message = "You don't have permission to access this data."
    action = "Contact administrator for access"


class StorageUnavailable(ClinicalForgeError):
    code = "storage-unavailable"
    status_code = 503
    user_message = "Database is temporarily unavailable. Please try again in a few moments."
    action = "Retry in a few moments"


class StorageTimeout(StorageUnavailable):
    code = "storage-timeout"
    user_message = "The database did not respond in time. Please try again."


class ValidationFailed(ClinicalForgeError):
    code = "validation-failed"
    status_code = 422
    user_message = "Some fields are missing or out of range."
    action = "Review the highlighted fields and submit again"

    def __init__(self, errors: List[Dict[str, Any]], message: Optional[str] = None) -> None:
        super().__init__(message or f"{len(errors)} field error(s)")
        self.errors = errors

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = self.errors
        return payload


class SubmissionNotFound(ClinicalForgeError):
    code = "not-found"
    status_code = 404
    user_message = "The requested submission was not found."
    action = "Check the submission id"


class InvalidStatusTransition(ClinicalForgeError):
    code = "invalid-status-transition"
    status_code = 409
    user_message = "This status change is not allowed."
    action = "Reload the submission and pick a later status"


class ConcurrentModification(ClinicalForgeError):
    code = "concurrent-modification"
    status_code = 409
    user_message = "Someone else changed this submission in the meantime."
    action = "Reload the submission and apply your change again"


_PERMISSION_MARKERS = ("permission denied", "insufficient privilege", "access denied")


def translate_storage_error(exc: SQLAlchemyError) -> ClinicalForgeError:
    """Map a SQLAlchemy failure onto the storage error kinds."""

    text = str(getattr(exc, "orig", None) or exc).lower()
    if any(marker in text for marker in _PERMISSION_MARKERS):
        return PermissionDenied(str(exc))
    return StorageUnavailable(str(exc))


def describe_error(exc: BaseException) -> Dict[str, Any]:
    """Render any exception in the shape the UI expects."""

    if isinstance(exc, ClinicalForgeError):
        return exc.to_dict()
    if isinstance(exc, SQLAlchemyError):
        return translate_storage_error(exc).to_dict()
    return ClinicalForgeError(str(exc) or exc.__class__.__name__).to_dict()
