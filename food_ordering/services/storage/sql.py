"""
Relational Storage Implementation

SQLAlchemy async implementation of the storage interface. PostgreSQL is
the production target; the test suite runs it on SQLite via aiosqlite.

Representation notes:
    - Integer primary keys are exposed as strings; ids that are not
      integers simply do not resolve
    - Numeric columns come back as Decimal, booleans as bool
    - Orders and their ``order_items`` rows are inserted in one
      transaction, so a failure leaves neither behind
"""

import logging
from collections.abc import Iterable, Mapping
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from food_ordering.core.config import Settings
from food_ordering.core.errors import ConflictError, StorageUnavailableError
from food_ordering.database import create_engine, create_session_maker, init_db
from food_ordering.domain import (
    Account,
    CatalogItem,
    FulfillmentMode,
    NewAccount,
    NewCatalogItem,
    NewOrder,
    Order,
    OrderLine,
    OrderStatus,
    Role,
    as_utc,
    normalize_category,
    normalize_email,
    to_money,
    utcnow,
)
from food_ordering.models import AccountRow, CatalogItemRow, OrderItemRow, OrderRow
from food_ordering.services.storage.base import (
    ACCOUNT_MUTABLE_FIELDS,
    CATALOG_MUTABLE_FIELDS,
    BaseStorage,
    clean_changes,
    filter_value,
)

logger = logging.getLogger(__name__)

# Largest value an INTEGER primary key holds on PostgreSQL
MAX_ROW_ID = 2**31 - 1


def _parse_id(value: Any) -> Optional[int]:
    """Integer primary key for an opaque id, or None if it cannot be one."""
    text = str(value).strip()
    if not (text.isascii() and text.isdigit()):
        return None
    row_id = int(text)
    if row_id > MAX_ROW_ID:
        return None
    return row_id


class SQLStorage(BaseStorage):
    """
    Relational implementation of the storage interface.

    Attributes:
        settings: Application settings
        engine: SQLAlchemy async engine (built from settings if not given)
    """

    def __init__(self, settings: Settings, engine: Optional[AsyncEngine] = None):
        self.settings = settings
        self.engine = engine or create_engine(settings)
        self._session_maker = create_session_maker(self.engine)

        logger.info(f"SQLStorage initialized (dialect={self.engine.dialect.name})")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "sql"

    @asynccontextmanager
    async def _session(self, conflict_message: str = "Duplicate record") -> AsyncIterator[AsyncSession]:
        """Open a session and translate driver errors into the error taxonomy."""
        try:
            async with self._session_maker() as session:
                yield session
        except IntegrityError as e:
            logger.info(f"Integrity violation: {e.orig}")
            raise ConflictError(conflict_message) from e
        except (OperationalError, InterfaceError, OSError) as e:
            logger.error(f"Database unavailable: {e}")
            raise StorageUnavailableError("Database is unavailable") from e

    # =========================================================================
    # ROW MAPPERS
    # =========================================================================

    @staticmethod
    def _account(row: AccountRow) -> Account:
        return Account(
            id=str(row.id),
            email=row.email,
            name=row.name,
            password_hash=row.password_hash,
            role=Role(row.role),
            phone=row.phone or "",
            address=row.address or "",
            profile_photo=row.profile_photo or None,
            theme_preference=row.theme_preference or "light",
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    @staticmethod
    def _catalog_item(row: CatalogItemRow) -> CatalogItem:
        return CatalogItem(
            id=str(row.id),
            name=row.name,
            description=row.description or "",
            price=to_money(row.price),
            category=row.category,
            image=row.image,
            available=bool(row.available),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    @staticmethod
    def _order(row: OrderRow) -> Order:
        return Order(
            id=str(row.id),
            account_id=row.account_id,
            items=[
                OrderLine(
                    catalog_item_id=item.catalog_item_id,
                    quantity=item.quantity,
                    unit_price=to_money(item.unit_price),
                )
                for item in sorted(row.items, key=lambda i: i.position)
            ],
            subtotal=to_money(row.subtotal),
            delivery_fee=to_money(row.delivery_fee),
            total_price=to_money(row.total_price),
            status=OrderStatus(row.status),
            fulfillment_mode=FulfillmentMode(row.fulfillment_mode),
            phone=row.phone,
            delivery_address=row.delivery_address,
            pickup_datetime=as_utc(row.pickup_datetime),
            notes=row.notes,
            idempotency_key=row.idempotency_key,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def connect(self) -> None:
        try:
            await init_db(self.engine)
        except (OperationalError, InterfaceError, OSError) as e:
            logger.error(f"Could not initialize database: {e}")
            raise StorageUnavailableError("Database is unavailable") from e
        logger.info("✅ Database tables ready")

    async def close(self) -> None:
        await self.engine.dispose()

    async def health_check(self) -> bool:
        try:
            async with self._session() as session:
                await session.execute(select(1))
            return True
        except StorageUnavailableError:
            return False

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def create_account(self, new_account: NewAccount) -> Account:
        now = utcnow()
        row = AccountRow(
            email=normalize_email(new_account.email),
            name=new_account.name,
            password_hash=new_account.password_hash,
            role=Role(new_account.role),
            phone=new_account.phone or "",
            address=new_account.address or "",
            theme_preference="light",
            created_at=now,
            updated_at=now,
        )
        async with self._session(conflict_message="Email already registered") as session:
            async with session.begin():
                session.add(row)
        logger.info(f"Account #{row.id} created ({row.role.value})")
        return self._account(row)

    async def find_account_by_email(self, email: str) -> Optional[Account]:
        async with self._session() as session:
            result = await session.execute(
                select(AccountRow).where(AccountRow.email == normalize_email(email))
            )
            row = result.scalar_one_or_none()
        return self._account(row) if row else None

    async def find_account_by_id(self, account_id: str) -> Optional[Account]:
        pk = _parse_id(account_id)
        if pk is None:
            return None
        async with self._session() as session:
            row = await session.get(AccountRow, pk)
        return self._account(row) if row else None

    async def find_accounts(self, account_ids: Iterable[str]) -> dict[str, Account]:
        pks = {pk for pk in (_parse_id(a) for a in account_ids) if pk is not None}
        if not pks:
            return {}
        async with self._session() as session:
            result = await session.execute(select(AccountRow).where(AccountRow.id.in_(pks)))
            rows = result.scalars().all()
        return {str(row.id): self._account(row) for row in rows}

    async def list_accounts(self, filters: Optional[Mapping[str, Any]] = None) -> list[Account]:
        query = select(AccountRow).order_by(AccountRow.created_at.desc(), AccountRow.id.desc())
        role = filter_value(filters, "role")
        if role is not None:
            query = query.where(AccountRow.role == Role(role))
        async with self._session() as session:
            result = await session.execute(query)
            rows = result.scalars().all()
        return [self._account(row) for row in rows]

    async def update_account(self, account_id: str, changes: Mapping[str, Any]) -> Optional[Account]:
        pk = _parse_id(account_id)
        if pk is None:
            return None
        changes = clean_changes(changes, ACCOUNT_MUTABLE_FIELDS)
        if "email" in changes:
            changes["email"] = normalize_email(changes["email"])
        if "role" in changes:
            changes["role"] = Role(changes["role"])

        async with self._session(conflict_message="Email already registered") as session:
            async with session.begin():
                row = await session.get(AccountRow, pk)
                if row is None:
                    return None
                for key, value in changes.items():
                    setattr(row, key, value)
                row.updated_at = utcnow()
        return self._account(row)

    async def delete_account(self, account_id: str) -> bool:
        pk = _parse_id(account_id)
        if pk is None:
            return False
        async with self._session() as session:
            async with session.begin():
                row = await session.get(AccountRow, pk)
                if row is None:
                    return False
                await session.delete(row)
        logger.info(f"Account #{pk} deleted")
        return True

    # =========================================================================
    # CATALOG
    # =========================================================================

    async def create_catalog_item(self, new_item: NewCatalogItem) -> CatalogItem:
        now = utcnow()
        row = CatalogItemRow(
            name=new_item.name,
            description=new_item.description or "",
            price=to_money(new_item.price),
            category=normalize_category(new_item.category),
            image=new_item.image,
            available=bool(new_item.available),
            created_at=now,
            updated_at=now,
        )
        async with self._session() as session:
            async with session.begin():
                session.add(row)
        logger.info(f"Catalog item #{row.id} created: {row.name}")
        return self._catalog_item(row)

    async def find_catalog_item_by_id(self, item_id: str) -> Optional[CatalogItem]:
        pk = _parse_id(item_id)
        if pk is None:
            return None
        async with self._session() as session:
            row = await session.get(CatalogItemRow, pk)
        return self._catalog_item(row) if row else None

    async def find_catalog_items(self, item_ids: Iterable[str]) -> dict[str, CatalogItem]:
        pks = {pk for pk in (_parse_id(i) for i in item_ids) if pk is not None}
        if not pks:
            return {}
        async with self._session() as session:
            result = await session.execute(select(CatalogItemRow).where(CatalogItemRow.id.in_(pks)))
            rows = result.scalars().all()
        return {str(row.id): self._catalog_item(row) for row in rows}

    async def list_catalog_items(
        self,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> list[CatalogItem]:
        query = select(CatalogItemRow).order_by(CatalogItemRow.category, CatalogItemRow.name)

        category = filter_value(filters, "category")
        if category is not None:
            query = query.where(CatalogItemRow.category == category)

        available = filter_value(filters, "available")
        if available is not None:
            query = query.where(CatalogItemRow.available == bool(available))

        async with self._session() as session:
            result = await session.execute(query)
            rows = result.scalars().all()
        return [self._catalog_item(row) for row in rows]

    async def update_catalog_item(
        self,
        item_id: str,
        changes: Mapping[str, Any],
    ) -> Optional[CatalogItem]:
        pk = _parse_id(item_id)
        if pk is None:
            return None
        changes = clean_changes(changes, CATALOG_MUTABLE_FIELDS)
        if "price" in changes:
            changes["price"] = to_money(changes["price"])
        if "category" in changes:
            changes["category"] = normalize_category(changes["category"])
        if "available" in changes:
            changes["available"] = bool(changes["available"])

        async with self._session() as session:
            async with session.begin():
                row = await session.get(CatalogItemRow, pk)
                if row is None:
                    return None
                for key, value in changes.items():
                    setattr(row, key, value)
                row.updated_at = utcnow()
        return self._catalog_item(row)

    async def delete_catalog_item(self, item_id: str) -> bool:
        pk = _parse_id(item_id)
        if pk is None:
            return False
        async with self._session() as session:
            async with session.begin():
                row = await session.get(CatalogItemRow, pk)
                if row is None:
                    return False
                await session.delete(row)
        logger.info(f"Catalog item #{pk} deleted")
        return True

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def create_order(self, new_order: NewOrder) -> Order:
        now = utcnow()
        row = OrderRow(
            account_id=new_order.account_id,
            subtotal=to_money(new_order.subtotal),
            delivery_fee=to_money(new_order.delivery_fee),
            total_price=to_money(new_order.total_price),
            status=OrderStatus.PENDING,
            fulfillment_mode=FulfillmentMode(new_order.fulfillment_mode),
            delivery_address=new_order.delivery_address,
            pickup_datetime=new_order.pickup_datetime,
            phone=new_order.phone,
            notes=new_order.notes,
            idempotency_key=new_order.idempotency_key,
            created_at=now,
            updated_at=now,
            items=[
                OrderItemRow(
                    position=position,
                    catalog_item_id=line.catalog_item_id,
                    quantity=line.quantity,
                    unit_price=to_money(line.unit_price),
                )
                for position, line in enumerate(new_order.items)
            ],
        )

        # Order row and every item row commit together or not at all
        async with self._session(conflict_message="Idempotency key already used") as session:
            async with session.begin():
                session.add(row)

        logger.info(f"Order #{row.id} created with {len(row.items)} item(s), total {row.total_price}")
        return self._order(row)

    async def find_order_by_id(self, order_id: str) -> Optional[Order]:
        pk = _parse_id(order_id)
        if pk is None:
            return None
        async with self._session() as session:
            row = await session.get(OrderRow, pk)
        return self._order(row) if row else None

    async def find_order_by_idempotency_key(self, account_id: str, key: str) -> Optional[Order]:
        async with self._session() as session:
            result = await session.execute(
                select(OrderRow).where(
                    OrderRow.account_id == account_id,
                    OrderRow.idempotency_key == key,
                )
            )
            row = result.scalar_one_or_none()
        return self._order(row) if row else None

    async def list_orders_by_account(self, account_id: str) -> list[Order]:
        query = (
            select(OrderRow)
            .where(OrderRow.account_id == account_id)
            .order_by(OrderRow.created_at.desc(), OrderRow.id.asc())
        )
        async with self._session() as session:
            result = await session.execute(query)
            rows = result.scalars().all()
        return [self._order(row) for row in rows]

    async def list_all_orders(self) -> list[Order]:
        query = select(OrderRow).order_by(OrderRow.created_at.desc(), OrderRow.id.asc())
        async with self._session() as session:
            result = await session.execute(query)
            rows = result.scalars().all()
        return [self._order(row) for row in rows]

    async def set_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        expected_status: Optional[OrderStatus] = None,
    ) -> Optional[Order]:
        pk = _parse_id(order_id)
        if pk is None:
            return None

        statement = update(OrderRow).where(OrderRow.id == pk)
        if expected_status is not None:
            statement = statement.where(OrderRow.status == OrderStatus(expected_status))
        statement = statement.values(status=OrderStatus(status), updated_at=utcnow())

        async with self._session() as session:
            async with session.begin():
                result = await session.execute(
                    statement.execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    if await session.get(OrderRow, pk) is None:
                        return None
                    raise ConflictError(
                        f"Order #{pk} changed status concurrently; reload and retry"
                    )

        logger.info(f"Order #{pk} status -> {OrderStatus(status).value}")
        return await self.find_order_by_id(order_id)
