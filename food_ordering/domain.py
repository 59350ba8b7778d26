"""
Domain Types

Enums, stored records and money helpers shared by both storage engines and
the services. Storage implementations always hand back these records, so the
rest of the application never sees engine-specific representations
(integer ids, 0/1 booleans, numeric strings, JSON documents).
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal("0.01")
UNCATEGORIZED = "none"


class Role(str, enum.Enum):
    """Account roles."""
    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class FulfillmentMode(str, enum.Enum):
    """Order type - Pickup or Delivery."""
    PICKUP = "pickup"
    DELIVERY = "delivery"


# Forward-only progression; cancelled is reachable from any non-terminal state.
STATUS_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from an engine."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_money(value: Any) -> Decimal:
    """Quantize any numeric value to cents."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_category(category: Optional[str]) -> str:
    if category is None or not category.strip():
        return UNCATEGORIZED
    return category.strip()


# =============================================================================
# STORED RECORDS
# =============================================================================

@dataclass
class Account:
    """
    A stored account.

    Attributes:
        id: Opaque identifier (string on every engine)
        email: Lower-cased, unique email
        name: Display name
        password_hash: bcrypt hash, never returned by the API
        role: customer, staff or admin
        phone: Contact phone ("" when unknown)
        address: Default delivery address ("" when unknown)
        profile_photo: Optional photo encoded as text
        theme_preference: UI theme, "light" by default
    """
    id: str
    email: str
    name: str
    password_hash: str
    role: Role
    phone: str = ""
    address: str = ""
    profile_photo: Optional[str] = None
    theme_preference: str = "light"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_public_dict(self) -> dict:
        """Account fields safe to expose to clients."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "phone": self.phone,
            "address": self.address,
            "profile_photo": self.profile_photo or "",
            "theme_preference": self.theme_preference,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class CatalogItem:
    """A menu entry. Price is always a Decimal, never a string."""
    id: str
    name: str
    description: str
    price: Decimal
    category: str = UNCATEGORIZED
    image: Optional[str] = None
    available: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class OrderLine:
    """One (catalog item, quantity, unit price) snapshot of an order."""
    catalog_item_id: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)


@dataclass
class Order:
    """A stored order with its line items in insertion order."""
    id: str
    account_id: str
    items: list[OrderLine]
    subtotal: Decimal
    delivery_fee: Decimal
    total_price: Decimal
    status: OrderStatus
    fulfillment_mode: FulfillmentMode
    phone: str
    delivery_address: Optional[str] = None
    pickup_datetime: Optional[datetime] = None
    notes: Optional[str] = None
    idempotency_key: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# =============================================================================
# CREATION INPUTS
# =============================================================================

@dataclass
class NewAccount:
    email: str
    name: str
    password_hash: str
    role: Role = Role.CUSTOMER
    phone: str = ""
    address: str = ""


@dataclass
class NewCatalogItem:
    name: str
    description: str
    price: Decimal
    category: str = UNCATEGORIZED
    image: Optional[str] = None
    available: bool = True


@dataclass
class NewOrder:
    """A validated, priced order ready to be persisted in state pending."""
    account_id: str
    items: list[OrderLine]
    subtotal: Decimal
    delivery_fee: Decimal
    total_price: Decimal
    fulfillment_mode: FulfillmentMode
    phone: str
    delivery_address: Optional[str] = None
    pickup_datetime: Optional[datetime] = None
    notes: Optional[str] = None
    idempotency_key: Optional[str] = None


# =============================================================================
# ENRICHED VIEWS
# =============================================================================

@dataclass
class EnrichedOrder:
    """An order joined at read time with catalog and owner display fields."""
    order: Order
    catalog: dict[str, CatalogItem] = field(default_factory=dict)
    owner: Optional[Account] = None
    include_owner: bool = False
