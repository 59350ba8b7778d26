"""
                        Services Module

Contains all business logic services. Every service receives the storage
engine and the settings object at construction time and never looks at
which engine it was given.

Services:
    - storage: Data-access layer (SQL and Redis engines behind one interface)
    - identity: Passwords, tokens and account administration
    - catalog: Menu browsing and maintenance
    - orders: Order creation, listing and status transitions
"""

from food_ordering.services.catalog import CatalogService
from food_ordering.services.identity import IdentityService
from food_ordering.services.orders import OrderService
from food_ordering.services.storage import create_storage

__all__ = ["CatalogService", "IdentityService", "OrderService", "create_storage"]
