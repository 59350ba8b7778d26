"""
Pydantic Schemas for Request/Response Validation

Money is handled as Decimal on the way in and rendered as a JSON number
on the way out. Identifiers are always strings.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from food_ordering.domain import Account, CatalogItem, EnrichedOrder


# =============================================================================
# ENUMS
# =============================================================================

class RoleEnum(str, Enum):
    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"


# =============================================================================
# AUTH REQUEST SCHEMAS
# =============================================================================

class RegisterRequest(BaseModel):
    """Request schema for creating a customer account."""
    name: str = Field(..., min_length=1, max_length=100, examples=["Jane Doe"])
    email: EmailStr = Field(..., examples=["jane@example.com"])
    password: str = Field(..., min_length=6, max_length=128)
    phone: Optional[str] = Field(None, max_length=20, examples=["555-123-4567"])
    address: Optional[str] = Field(None, max_length=255)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class ProfileUpdate(BaseModel):
    """Only the fields that are sent are changed."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=255)
    profile_photo: Optional[str] = None


class PasswordChange(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=128)


class RoleUpdate(BaseModel):
    role: RoleEnum


# =============================================================================
# CATALOG REQUEST SCHEMAS
# =============================================================================

class CatalogItemCreate(BaseModel):
    """Request schema for adding a menu item."""
    name: str = Field(..., min_length=1, max_length=100, examples=["Tea"])
    description: str = Field(default="", max_length=1000)
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2, examples=[5.00])
    category: Optional[str] = Field(None, max_length=50, examples=["beverage"])
    image: Optional[str] = Field(None, max_length=500)
    available: bool = True


class CatalogItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    category: Optional[str] = Field(None, max_length=50)
    image: Optional[str] = Field(None, max_length=500)
    available: Optional[bool] = None


# =============================================================================
# ORDER REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(BaseModel):
    """Single line of a cart submission."""
    catalog_item_id: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(..., ge=1, examples=[2])
    unit_price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2, examples=[5.00])

    @field_validator("catalog_item_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        # Relational ids arrive as numbers from some clients
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class OrderCreate(BaseModel):
    """
    Request schema for placing an order.

    Cross-field rules (address for delivery, pickup time for pickup) are
    checked by the order service so they fail in a fixed order.
    """
    items: List[OrderItemCreate] = Field(default_factory=list)
    fulfillment_mode: Optional[str] = Field(default="delivery", examples=["pickup", "delivery"])
    delivery_address: Optional[str] = Field(None, max_length=255, examples=["350 Fifth Avenue"])
    pickup_datetime: Optional[str] = Field(None, max_length=40, examples=["2024-01-15T18:30:00"])
    phone: str = Field(default="", max_length=20, examples=["555-1111"])
    notes: Optional[str] = Field(None, max_length=500)


class StatusUpdate(BaseModel):
    status: str = Field(..., examples=["preparing"])


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class AccountResponse(BaseModel):
    """Account as shown to clients; never includes the password hash."""
    id: str
    email: str
    name: str
    role: str
    phone: str
    address: str
    profile_photo: str
    theme_preference: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, account: Account) -> "AccountResponse":
        return cls(**account.to_public_dict())


class AuthResponse(BaseModel):
    token: str
    user: AccountResponse


class CatalogItemResponse(BaseModel):
    id: str
    name: str
    description: str
    price: float
    category: str
    image: Optional[str]
    available: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, item: CatalogItem) -> "CatalogItemResponse":
        return cls(
            id=item.id,
            name=item.name,
            description=item.description,
            price=float(item.price),
            category=item.category,
            image=item.image,
            available=item.available,
            created_at=item.created_at,
            updated_at=item.updated_at,
        )


class CatalogItemSummary(BaseModel):
    """Catalog display fields joined onto an order line."""
    id: str
    name: str
    description: Optional[str] = None
    image: Optional[str] = None
    category: Optional[str] = None


class OwnerSummary(BaseModel):
    """Owner display fields joined onto an order for staff views."""
    id: str
    name: str
    email: str
    phone: str


class OrderLineResponse(BaseModel):
    catalog_item_id: str
    catalog_item: CatalogItemSummary
    quantity: int
    unit_price: float
    line_total: float


class OrderResponse(BaseModel):
    """Response schema for a single enriched order."""
    id: str
    account_id: str
    user: Optional[OwnerSummary] = None
    items: List[OrderLineResponse]
    subtotal: float
    delivery_fee: float
    total_price: float
    status: str
    fulfillment_mode: str
    delivery_address: Optional[str]
    pickup_datetime: Optional[datetime]
    phone: str
    notes: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_enriched(cls, enriched: EnrichedOrder) -> "OrderResponse":
        order = enriched.order
        lines = []
        for line in order.items:
            item = enriched.catalog.get(line.catalog_item_id)
            if item is not None:
                summary = CatalogItemSummary(
                    id=item.id,
                    name=item.name,
                    description=item.description,
                    image=item.image,
                    category=item.category,
                )
            else:
                summary = CatalogItemSummary(id=line.catalog_item_id, name="Unknown Item")
            lines.append(OrderLineResponse(
                catalog_item_id=line.catalog_item_id,
                catalog_item=summary,
                quantity=line.quantity,
                unit_price=float(line.unit_price),
                line_total=float(line.line_total),
            ))

        owner = None
        if enriched.include_owner and enriched.owner is not None:
            owner = OwnerSummary(
                id=enriched.owner.id,
                name=enriched.owner.name,
                email=enriched.owner.email,
                phone=enriched.owner.phone,
            )

        return cls(
            id=order.id,
            account_id=order.account_id,
            user=owner,
            items=lines,
            subtotal=float(order.subtotal),
            delivery_fee=float(order.delivery_fee),
            total_price=float(order.total_price),
            status=order.status.value,
            fulfillment_mode=order.fulfillment_mode.value,
            delivery_address=order.delivery_address,
            pickup_datetime=order.pickup_datetime,
            phone=order.phone,
            notes=order.notes,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class OrderStatsResponse(BaseModel):
    """Order counts per status plus revenue."""
    total_orders: int
    pending_orders: int
    preparing_orders: int
    ready_orders: int
    delivered_orders: int
    cancelled_orders: int
    total_revenue: float


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    storage_backend: str
    storage: str
    timestamp: datetime
