"""
SQLAlchemy Database Models

Relational layout of the food ordering system:
- accounts: customers, staff and admins
- catalog_items: the menu
- orders + order_items: an order and its price snapshot lines, always
  written together in one transaction
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from food_ordering.database import Base
from food_ordering.domain import FulfillmentMode, OrderStatus, Role, UNCATEGORIZED, utcnow


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class AccountRow(Base):
    """Account table - one row per registered user."""
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(100), nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(
        Enum(Role, values_callable=_enum_values, name="account_role"),
        default=Role.CUSTOMER,
        nullable=False,
        index=True,
    )
    phone = Column(String(20), nullable=False, default="")
    address = Column(String(255), nullable=False, default="")
    profile_photo = Column(Text, nullable=True)
    theme_preference = Column(String(10), nullable=False, default="light")

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Account #{self.id} - {self.email} - {self.role.value}>"


class CatalogItemRow(Base):
    """Menu table."""
    __tablename__ = "catalog_items"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_catalog_items_price"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=False, default="")
    price = Column(Numeric(10, 2), nullable=False)
    category = Column(String(50), nullable=False, default=UNCATEGORIZED, index=True)
    image = Column(String(500), nullable=True)
    available = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<CatalogItem #{self.id} - {self.name} - {self.price}>"


class OrderRow(Base):
    """
    Main Order table.

    Line items live in ``order_items`` and are inserted in the same
    transaction as the order row.
    """
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("account_id", "idempotency_key", name="uq_orders_idempotency"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    account_id = Column(String(64), nullable=False, index=True)

    # =========================================================================
    # PRICING
    # =========================================================================
    subtotal = Column(Numeric(10, 2), nullable=False)
    delivery_fee = Column(Numeric(10, 2), nullable=False, default=0)
    total_price = Column(Numeric(10, 2), nullable=False)

    # =========================================================================
    # STATUS & FULFILLMENT
    # =========================================================================
    status = Column(
        Enum(OrderStatus, values_callable=_enum_values, name="order_status"),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True,
    )
    fulfillment_mode = Column(
        Enum(FulfillmentMode, values_callable=_enum_values, name="fulfillment_mode"),
        default=FulfillmentMode.DELIVERY,
        nullable=False,
    )
    delivery_address = Column(String(255), nullable=True)
    pickup_datetime = Column(DateTime(timezone=True), nullable=True)
    phone = Column(String(20), nullable=False)
    notes = Column(Text, nullable=True)
    idempotency_key = Column(String(100), nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    items = relationship(
        "OrderItemRow",
        back_populates="order",
        order_by="OrderItemRow.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Order #{self.id} - {self.fulfillment_mode.value} - {self.status.value}>"


class OrderItemRow(Base):
    """Price snapshot line of an order. Never updated after insert."""
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    catalog_item_id = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)

    order = relationship("OrderRow", back_populates="items")

    def __repr__(self):
        return f"<OrderItem order={self.order_id} item={self.catalog_item_id} x{self.quantity}>"
