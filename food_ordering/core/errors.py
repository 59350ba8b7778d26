"""
Error Taxonomy

Every failure the core can report maps to one of these classes. Each class
carries a machine-readable ``code`` and the HTTP status it is rendered with,
so the API layer can translate errors without inspecting messages.
"""

from typing import Optional


class FoodOrderingError(Exception):
    """Base class for all application errors."""

    code: str = "error"
    status_code: int = 500

    def __init__(self, message: str, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": False,
            "error": self.code,
            "detail": self.message,
        }


class ValidationError(FoodOrderingError):
    """Malformed or contradictory input. Never retried automatically."""
    code = "validation_error"
    status_code = 400


class AuthenticationError(FoodOrderingError):
    """Missing, expired or invalid credentials."""
    code = "unauthenticated"
    status_code = 401


class AuthorizationError(FoodOrderingError):
    """Authenticated, but the account's role is not allowed."""
    code = "forbidden"
    status_code = 403


class NotFoundError(FoodOrderingError):
    """A referenced entity does not exist."""
    code = "not_found"
    status_code = 404


class ConflictError(FoodOrderingError):
    """A uniqueness or compare-and-set check failed."""
    code = "conflict"
    status_code = 409


class StorageUnavailableError(FoodOrderingError):
    """The storage engine could not be reached. Safe for the caller to retry."""
    code = "storage_unavailable"
    status_code = 503
