"""
Storage Abstract Base Class

Defines the interface contract for the data-access layer. Both SQLStorage
and RedisStorage implement these methods and return the records from
``food_ordering.domain``, so services behave identically regardless of
which engine is active.

Design Pattern: Strategy Pattern
    - The engine is chosen once at startup from settings
    - Services only ever talk to BaseStorage

Contract shared by every implementation:
    - Create operations assign an opaque string id, stamp timestamps and
      return the full stored record
    - Read-by-id operations return None for absence, never raise
    - List filters: a missing key (or a None value) means "no constraint";
      ``available=False`` is a real constraint
    - Connectivity failures raise StorageUnavailableError, uniqueness
      violations raise ConflictError
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any, Optional

from food_ordering.domain import (
    Account,
    CatalogItem,
    NewAccount,
    NewCatalogItem,
    NewOrder,
    Order,
    OrderStatus,
)

ACCOUNT_MUTABLE_FIELDS = frozenset({
    "email",
    "name",
    "password_hash",
    "role",
    "phone",
    "address",
    "profile_photo",
    "theme_preference",
})

CATALOG_MUTABLE_FIELDS = frozenset({
    "name",
    "description",
    "price",
    "category",
    "image",
    "available",
})


def filter_value(filters: Optional[Mapping[str, Any]], key: str) -> Any:
    """
    Return the constraint for ``key`` or None when unconstrained.

    ``False`` is returned as ``False``; only a missing key or an explicit
    None mean "no constraint".
    """
    if not filters or key not in filters:
        return None
    return filters[key]


def clean_changes(changes: Mapping[str, Any], allowed: frozenset) -> dict[str, Any]:
    """Drop keys that may not be updated."""
    return {key: value for key, value in changes.items() if key in allowed}


class BaseStorage(ABC):
    """
    Abstract base class for storage engines.

    All engine implementations must inherit from this class and
    implement all abstract methods.

    Example:
        >>> storage = create_storage(settings)
        >>> await storage.connect()
        >>> account = await storage.find_account_by_email("a@b.com")
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the storage engine.

        Returns:
            str: Engine name (e.g., "sql", "redis")
        """
        pass

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @abstractmethod
    async def connect(self) -> None:
        """Prepare the engine (create tables, verify connectivity)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify connectivity to the storage engine.

        Returns:
            bool: True if the engine answers
        """
        pass

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    @abstractmethod
    async def create_account(self, new_account: NewAccount) -> Account:
        """
        Persist a new account.

        Raises:
            ConflictError: If the (case-insensitive) email is taken
        """
        pass

    @abstractmethod
    async def find_account_by_email(self, email: str) -> Optional[Account]:
        """Look up an account by email, ignoring case."""
        pass

    @abstractmethod
    async def find_account_by_id(self, account_id: str) -> Optional[Account]:
        pass

    async def find_accounts(self, account_ids: Iterable[str]) -> dict[str, Account]:
        """Batch lookup; ids that do not resolve are left out."""
        found = {}
        for account_id in set(account_ids):
            account = await self.find_account_by_id(account_id)
            if account is not None:
                found[account_id] = account
        return found

    @abstractmethod
    async def list_accounts(self, filters: Optional[Mapping[str, Any]] = None) -> list[Account]:
        """List accounts newest first. Supported filter: ``role``."""
        pass

    @abstractmethod
    async def update_account(self, account_id: str, changes: Mapping[str, Any]) -> Optional[Account]:
        """
        Apply ``changes`` to an account.

        Returns:
            The updated account, or None if it does not exist

        Raises:
            ConflictError: If the new email belongs to another account
        """
        pass

    @abstractmethod
    async def delete_account(self, account_id: str) -> bool:
        """Delete an account. Returns False if it did not exist."""
        pass

    # =========================================================================
    # CATALOG
    # =========================================================================

    @abstractmethod
    async def create_catalog_item(self, new_item: NewCatalogItem) -> CatalogItem:
        pass

    @abstractmethod
    async def find_catalog_item_by_id(self, item_id: str) -> Optional[CatalogItem]:
        pass

    async def find_catalog_items(self, item_ids: Iterable[str]) -> dict[str, CatalogItem]:
        """Batch lookup; ids that do not resolve are left out."""
        found = {}
        for item_id in set(item_ids):
            item = await self.find_catalog_item_by_id(item_id)
            if item is not None:
                found[item_id] = item
        return found

    @abstractmethod
    async def list_catalog_items(
        self,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> list[CatalogItem]:
        """
        List menu items ordered by category, then name.

        Supported filters:
            category: exact match
            available: True or False; absent/None means both
        """
        pass

    @abstractmethod
    async def update_catalog_item(
        self,
        item_id: str,
        changes: Mapping[str, Any],
    ) -> Optional[CatalogItem]:
        pass

    @abstractmethod
    async def delete_catalog_item(self, item_id: str) -> bool:
        pass

    # =========================================================================
    # ORDERS
    # =========================================================================

    @abstractmethod
    async def create_order(self, new_order: NewOrder) -> Order:
        """
        Persist an order and all of its lines as one atomic unit.

        The order starts in status pending. After a failure no part of it
        is visible to any reader.

        Raises:
            ConflictError: If the account already used the idempotency key
        """
        pass

    @abstractmethod
    async def find_order_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def find_order_by_idempotency_key(self, account_id: str, key: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def list_orders_by_account(self, account_id: str) -> list[Order]:
        """Orders of one account, newest first."""
        pass

    @abstractmethod
    async def list_all_orders(self) -> list[Order]:
        """Every order, newest first."""
        pass

    @abstractmethod
    async def set_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        expected_status: Optional[OrderStatus] = None,
    ) -> Optional[Order]:
        """
        Change an order's status.

        Args:
            order_id: Order to update
            status: New status
            expected_status: When given, only update if the stored status
                still equals it (compare-and-set)

        Returns:
            The updated order, or None if it does not exist

        Raises:
            ConflictError: If ``expected_status`` no longer matches
        """
        pass
