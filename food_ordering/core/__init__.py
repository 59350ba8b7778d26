"""
Core module initialization.
Exports configuration, logging and error utilities.
"""

from food_ordering.core.config import (
    get_settings,
    setup_logging,
    Settings,
    EnvironmentMode,
    StorageBackend,
)
from food_ordering.core.errors import (
    FoodOrderingError,
    ValidationError,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ConflictError,
    StorageUnavailableError,
)

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "StorageBackend",
    "FoodOrderingError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "StorageUnavailableError",
]
