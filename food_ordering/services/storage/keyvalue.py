"""
Redis Storage Implementation

Document/key-value implementation of the storage interface on top of
``redis.asyncio``. Every record is a JSON document under its own key;
secondary access paths are explicit index keys.

Key layout (``{p}`` is ``settings.redis_key_prefix``):
    {p}:account:{id}                  account document
    {p}:account-email:{email}         email -> account id (uniqueness guard)
    {p}:accounts                      list of account ids, insertion order
    {p}:catalog:{id}                  catalog item document
    {p}:catalog                       list of catalog item ids
    {p}:order:{id}                    order document, line items embedded
    {p}:orders                        list of order ids
    {p}:account-orders:{account_id}   list of one account's order ids
    {p}:order-idem:{account_id}:{key} idempotency key -> order id

Writes that touch more than one key run inside MULTI/EXEC. Writes that
depend on something read first WATCH those keys, so a concurrent change
aborts the transaction instead of being overwritten.
"""

import json
import logging
import uuid
from collections.abc import Iterable, Mapping
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from food_ordering.core.config import Settings
from food_ordering.core.errors import ConflictError, StorageUnavailableError
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
from food_ordering.services.storage.base import (
    ACCOUNT_MUTABLE_FIELDS,
    CATALOG_MUTABLE_FIELDS,
    BaseStorage,
    clean_changes,
    filter_value,
)

logger = logging.getLogger(__name__)


# =============================================================================
# DOCUMENT ENCODING
# =============================================================================

def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return as_utc(datetime.fromisoformat(value)) if value else None


def _dump_account(account: Account) -> str:
    return json.dumps({
        "id": account.id,
        "email": account.email,
        "name": account.name,
        "password_hash": account.password_hash,
        "role": account.role.value,
        "phone": account.phone,
        "address": account.address,
        "profile_photo": account.profile_photo,
        "theme_preference": account.theme_preference,
        "created_at": _dt(account.created_at),
        "updated_at": _dt(account.updated_at),
    })


def _load_account(raw: str) -> Account:
    doc = json.loads(raw)
    return Account(
        id=doc["id"],
        email=doc["email"],
        name=doc["name"],
        password_hash=doc["password_hash"],
        role=Role(doc["role"]),
        phone=doc.get("phone") or "",
        address=doc.get("address") or "",
        profile_photo=doc.get("profile_photo") or None,
        theme_preference=doc.get("theme_preference") or "light",
        created_at=_parse_dt(doc.get("created_at")),
        updated_at=_parse_dt(doc.get("updated_at")),
    )


def _dump_catalog_item(item: CatalogItem) -> str:
    # Prices travel as strings so no precision is lost in JSON
    return json.dumps({
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "price": str(item.price),
        "category": item.category,
        "image": item.image,
        "available": item.available,
        "created_at": _dt(item.created_at),
        "updated_at": _dt(item.updated_at),
    })


def _load_catalog_item(raw: str) -> CatalogItem:
    doc = json.loads(raw)
    return CatalogItem(
        id=doc["id"],
        name=doc["name"],
        description=doc.get("description") or "",
        price=to_money(Decimal(doc["price"])),
        category=doc.get("category") or "none",
        image=doc.get("image"),
        available=bool(doc.get("available", True)),
        created_at=_parse_dt(doc.get("created_at")),
        updated_at=_parse_dt(doc.get("updated_at")),
    )


def _dump_order(order: Order) -> str:
    return json.dumps({
        "id": order.id,
        "account_id": order.account_id,
        "items": [
            {
                "catalog_item_id": line.catalog_item_id,
                "quantity": line.quantity,
                "unit_price": str(line.unit_price),
            }
            for line in order.items
        ],
        "subtotal": str(order.subtotal),
        "delivery_fee": str(order.delivery_fee),
        "total_price": str(order.total_price),
        "status": order.status.value,
        "fulfillment_mode": order.fulfillment_mode.value,
        "phone": order.phone,
        "delivery_address": order.delivery_address,
        "pickup_datetime": _dt(order.pickup_datetime),
        "notes": order.notes,
        "idempotency_key": order.idempotency_key,
        "created_at": _dt(order.created_at),
        "updated_at": _dt(order.updated_at),
    })


def _load_order(raw: str) -> Order:
    doc = json.loads(raw)
    return Order(
        id=doc["id"],
        account_id=doc["account_id"],
        items=[
            OrderLine(
                catalog_item_id=line["catalog_item_id"],
                quantity=int(line["quantity"]),
                unit_price=to_money(Decimal(line["unit_price"])),
            )
            for line in doc["items"]
        ],
        subtotal=to_money(Decimal(doc["subtotal"])),
        delivery_fee=to_money(Decimal(doc["delivery_fee"])),
        total_price=to_money(Decimal(doc["total_price"])),
        status=OrderStatus(doc["status"]),
        fulfillment_mode=FulfillmentMode(doc["fulfillment_mode"]),
        phone=doc["phone"],
        delivery_address=doc.get("delivery_address"),
        pickup_datetime=_parse_dt(doc.get("pickup_datetime")),
        notes=doc.get("notes"),
        idempotency_key=doc.get("idempotency_key"),
        created_at=_parse_dt(doc.get("created_at")),
        updated_at=_parse_dt(doc.get("updated_at")),
    )


def _newest_first(records: list) -> list:
    # sorted() is stable, so equal timestamps keep their input order
    return sorted(records, key=lambda r: r.created_at, reverse=True)


class RedisStorage(BaseStorage):
    """
    Redis implementation of the storage interface.

    Attributes:
        settings: Application settings
        client: ``redis.asyncio`` client (built from settings if not given;
            must decode responses to ``str``)
    """

    def __init__(self, settings: Settings, client: Optional[aioredis.Redis] = None):
        self.settings = settings
        self.prefix = settings.redis_key_prefix
        self.client = client or aioredis.from_url(settings.redis_url, decode_responses=True)

        logger.info(f"RedisStorage initialized (prefix={self.prefix})")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "redis"

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix, *parts))

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[None]:
        """Translate connectivity failures into StorageUnavailableError."""
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis unavailable: {e}")
            raise StorageUnavailableError("Redis is unavailable") from e

    async def _load_many(self, keys: list[str]) -> list[str]:
        if not keys:
            return []
        return [raw for raw in await self.client.mget(keys) if raw is not None]

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def connect(self) -> None:
        async with self._guard():
            await self.client.ping()
        logger.info("✅ Redis reachable")

    async def close(self) -> None:
        await self.client.aclose()

    async def health_check(self) -> bool:
        try:
            async with self._guard():
                return bool(await self.client.ping())
        except StorageUnavailableError:
            return False

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def create_account(self, new_account: NewAccount) -> Account:
        now = utcnow()
        account = Account(
            id=uuid.uuid4().hex,
            email=normalize_email(new_account.email),
            name=new_account.name,
            password_hash=new_account.password_hash,
            role=Role(new_account.role),
            phone=new_account.phone or "",
            address=new_account.address or "",
            created_at=now,
            updated_at=now,
        )
        email_key = self._key("account-email", account.email)

        async with self._guard():
            async with self.client.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(email_key)
                    if await pipe.exists(email_key):
                        raise ConflictError("Email already registered")
                    pipe.multi()
                    pipe.set(email_key, account.id)
                    pipe.set(self._key("account", account.id), _dump_account(account))
                    pipe.rpush(self._key("accounts"), account.id)
                    await pipe.execute()
                except WatchError as e:
                    raise ConflictError("Email already registered") from e

        logger.info(f"Account {account.id} created ({account.role.value})")
        return account

    async def find_account_by_email(self, email: str) -> Optional[Account]:
        async with self._guard():
            account_id = await self.client.get(self._key("account-email", normalize_email(email)))
            if account_id is None:
                return None
            raw = await self.client.get(self._key("account", account_id))
        return _load_account(raw) if raw else None

    async def find_account_by_id(self, account_id: str) -> Optional[Account]:
        async with self._guard():
            raw = await self.client.get(self._key("account", str(account_id)))
        return _load_account(raw) if raw else None

    async def find_accounts(self, account_ids: Iterable[str]) -> dict[str, Account]:
        keys = [self._key("account", str(a)) for a in set(account_ids)]
        async with self._guard():
            accounts = [_load_account(raw) for raw in await self._load_many(keys)]
        return {account.id: account for account in accounts}

    async def list_accounts(self, filters: Optional[Mapping[str, Any]] = None) -> list[Account]:
        async with self._guard():
            ids = await self.client.lrange(self._key("accounts"), 0, -1)
            raws = await self._load_many([self._key("account", i) for i in reversed(ids)])

        accounts = [_load_account(raw) for raw in raws]
        role = filter_value(filters, "role")
        if role is not None:
            accounts = [a for a in accounts if a.role == Role(role)]
        return _newest_first(accounts)

    async def update_account(self, account_id: str, changes: Mapping[str, Any]) -> Optional[Account]:
        changes = clean_changes(changes, ACCOUNT_MUTABLE_FIELDS)
        key = self._key("account", str(account_id))

        async with self._guard():
            async with self.client.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        return None
                    account = _load_account(raw)
                    old_email = account.email

                    for field_name, value in changes.items():
                        if field_name == "email":
                            value = normalize_email(value)
                        elif field_name == "role":
                            value = Role(value)
                        setattr(account, field_name, value)
                    account.updated_at = utcnow()

                    email_changed = account.email != old_email
                    new_email_key = self._key("account-email", account.email)
                    if email_changed:
                        await pipe.watch(new_email_key)
                        if await pipe.exists(new_email_key):
                            raise ConflictError("Email already registered")

                    pipe.multi()
                    if email_changed:
                        pipe.delete(self._key("account-email", old_email))
                        pipe.set(new_email_key, account.id)
                    pipe.set(key, _dump_account(account))
                    await pipe.execute()
                except WatchError as e:
                    raise ConflictError("Account changed concurrently; retry") from e

        return account

    async def delete_account(self, account_id: str) -> bool:
        key = self._key("account", str(account_id))

        async with self._guard():
            async with self.client.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        return False
                    account = _load_account(raw)
                    pipe.multi()
                    pipe.delete(key)
                    pipe.delete(self._key("account-email", account.email))
                    pipe.lrem(self._key("accounts"), 0, account.id)
                    await pipe.execute()
                except WatchError as e:
                    raise ConflictError("Account changed concurrently; retry") from e

        logger.info(f"Account {account_id} deleted")
        return True

    # =========================================================================
    # CATALOG
    # =========================================================================

    async def create_catalog_item(self, new_item: NewCatalogItem) -> CatalogItem:
        now = utcnow()
        item = CatalogItem(
            id=uuid.uuid4().hex,
            name=new_item.name,
            description=new_item.description or "",
            price=to_money(new_item.price),
            category=normalize_category(new_item.category),
            image=new_item.image,
            available=bool(new_item.available),
            created_at=now,
            updated_at=now,
        )
        async with self._guard():
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.set(self._key("catalog", item.id), _dump_catalog_item(item))
                pipe.rpush(self._key("catalog"), item.id)
                await pipe.execute()

        logger.info(f"Catalog item {item.id} created: {item.name}")
        return item

    async def find_catalog_item_by_id(self, item_id: str) -> Optional[CatalogItem]:
        async with self._guard():
            raw = await self.client.get(self._key("catalog", str(item_id)))
        return _load_catalog_item(raw) if raw else None

    async def find_catalog_items(self, item_ids: Iterable[str]) -> dict[str, CatalogItem]:
        keys = [self._key("catalog", str(i)) for i in set(item_ids)]
        async with self._guard():
            items = [_load_catalog_item(raw) for raw in await self._load_many(keys)]
        return {item.id: item for item in items}

    async def list_catalog_items(
        self,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> list[CatalogItem]:
        async with self._guard():
            ids = await self.client.lrange(self._key("catalog"), 0, -1)
            raws = await self._load_many([self._key("catalog", i) for i in ids])

        items = [_load_catalog_item(raw) for raw in raws]

        category = filter_value(filters, "category")
        if category is not None:
            items = [i for i in items if i.category == category]

        available = filter_value(filters, "available")
        if available is not None:
            items = [i for i in items if i.available == bool(available)]

        return sorted(items, key=lambda i: (i.category, i.name))

    async def update_catalog_item(
        self,
        item_id: str,
        changes: Mapping[str, Any],
    ) -> Optional[CatalogItem]:
        changes = clean_changes(changes, CATALOG_MUTABLE_FIELDS)
        key = self._key("catalog", str(item_id))

        async with self._guard():
            async with self.client.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        return None
                    item = _load_catalog_item(raw)
                    for field_name, value in changes.items():
                        if field_name == "price":
                            value = to_money(value)
                        elif field_name == "category":
                            value = normalize_category(value)
                        elif field_name == "available":
                            value = bool(value)
                        setattr(item, field_name, value)
                    item.updated_at = utcnow()

                    pipe.multi()
                    pipe.set(key, _dump_catalog_item(item))
                    await pipe.execute()
                except WatchError as e:
                    raise ConflictError("Menu item changed concurrently; retry") from e

        return item

    async def delete_catalog_item(self, item_id: str) -> bool:
        async with self._guard():
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.delete(self._key("catalog", str(item_id)))
                pipe.lrem(self._key("catalog"), 0, str(item_id))
                deleted, _ = await pipe.execute()

        if deleted:
            logger.info(f"Catalog item {item_id} deleted")
        return bool(deleted)

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def create_order(self, new_order: NewOrder) -> Order:
        now = utcnow()
        order = Order(
            id=uuid.uuid4().hex,
            account_id=str(new_order.account_id),
            items=list(new_order.items),
            subtotal=to_money(new_order.subtotal),
            delivery_fee=to_money(new_order.delivery_fee),
            total_price=to_money(new_order.total_price),
            status=OrderStatus.PENDING,
            fulfillment_mode=FulfillmentMode(new_order.fulfillment_mode),
            phone=new_order.phone,
            delivery_address=new_order.delivery_address,
            pickup_datetime=new_order.pickup_datetime,
            notes=new_order.notes,
            idempotency_key=new_order.idempotency_key,
            created_at=now,
            updated_at=now,
        )
        idem_key = (
            self._key("order-idem", order.account_id, order.idempotency_key)
            if order.idempotency_key else None
        )

        async with self._guard():
            async with self.client.pipeline(transaction=True) as pipe:
                try:
                    if idem_key:
                        await pipe.watch(idem_key)
                        if await pipe.exists(idem_key):
                            raise ConflictError("Idempotency key already used")
                    # Document and indexes become visible in a single EXEC
                    pipe.multi()
                    pipe.set(self._key("order", order.id), _dump_order(order))
                    pipe.rpush(self._key("orders"), order.id)
                    pipe.rpush(self._key("account-orders", order.account_id), order.id)
                    if idem_key:
                        pipe.set(idem_key, order.id)
                    await pipe.execute()
                except WatchError as e:
                    raise ConflictError("Idempotency key already used") from e

        logger.info(f"Order {order.id} created with {len(order.items)} item(s), total {order.total_price}")
        return order

    async def find_order_by_id(self, order_id: str) -> Optional[Order]:
        async with self._guard():
            raw = await self.client.get(self._key("order", str(order_id)))
        return _load_order(raw) if raw else None

    async def find_order_by_idempotency_key(self, account_id: str, key: str) -> Optional[Order]:
        async with self._guard():
            order_id = await self.client.get(self._key("order-idem", str(account_id), key))
        if order_id is None:
            return None
        return await self.find_order_by_id(order_id)

    async def _list_orders(self, index_key: str) -> list[Order]:
        async with self._guard():
            ids = await self.client.lrange(index_key, 0, -1)
            raws = await self._load_many([self._key("order", i) for i in ids])
        return _newest_first([_load_order(raw) for raw in raws])

    async def list_orders_by_account(self, account_id: str) -> list[Order]:
        return await self._list_orders(self._key("account-orders", str(account_id)))

    async def list_all_orders(self) -> list[Order]:
        return await self._list_orders(self._key("orders"))

    async def set_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        expected_status: Optional[OrderStatus] = None,
    ) -> Optional[Order]:
        key = self._key("order", str(order_id))

        async with self._guard():
            async with self.client.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        if raw is None:
                            return None
                        order = _load_order(raw)
                        if expected_status is not None and order.status != OrderStatus(expected_status):
                            raise ConflictError(
                                f"Order {order_id} changed status concurrently; reload and retry"
                            )
                        order.status = OrderStatus(status)
                        order.updated_at = utcnow()

                        pipe.multi()
                        pipe.set(key, _dump_order(order))
                        await pipe.execute()
                        break
                    except WatchError as e:
                        # Without an expected status the last write wins
                        if expected_status is not None:
                            raise ConflictError(
                                f"Order {order_id} changed status concurrently; reload and retry"
                            ) from e
                        logger.debug(f"Order {order_id} changed during status write, retrying")

        logger.info(f"Order {order_id} status -> {order.status.value}")
        return order
