"""
Order Lifecycle Service

Turns a cart submission into a persisted, priced order and governs how its
status may change afterwards.

Creation:
    1. Fulfillment mode must be pickup or delivery
    2. Delivery needs an address, pickup needs a date-time
    3. Lines are priced from the submitted unit prices (a snapshot); when
       ``verify_client_prices`` is on, each price must still match the menu
    4. Delivery adds ``settings.delivery_fee``; pickup adds nothing
    5. Order and lines are written as one atomic unit in state pending

Status changes follow STATUS_TRANSITIONS when ``strict_status_transitions``
is on and are applied with compare-and-set, so two staff members cannot both
move the same order out of the same state.

The service never looks at which storage engine is active.
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from typing import Optional

from food_ordering.core.config import Settings
from food_ordering.core.errors import ConflictError, NotFoundError, ValidationError
from food_ordering.domain import (
    STATUS_TRANSITIONS,
    Account,
    EnrichedOrder,
    FulfillmentMode,
    NewOrder,
    Order,
    OrderLine,
    OrderStatus,
    Role,
    as_utc,
    to_money,
)
from food_ordering.schemas import OrderCreate
from food_ordering.services.identity import STAFF_ROLES, authorize
from food_ordering.services.storage.base import BaseStorage

logger = logging.getLogger(__name__)

MAX_IDEMPOTENCY_KEY_LENGTH = 100


def calculate_order_totals(
    lines: Iterable[OrderLine],
    mode: FulfillmentMode,
    delivery_fee: Decimal,
) -> dict[str, Decimal]:
    """Calculate order subtotal, fee and total from the submitted prices."""
    subtotal = to_money(sum((line.unit_price * line.quantity for line in lines), Decimal("0")))
    fee = to_money(delivery_fee) if mode == FulfillmentMode.DELIVERY else to_money(0)
    return {
        "subtotal": subtotal,
        "delivery_fee": fee,
        "total_price": to_money(subtotal + fee),
    }


def _parse_pickup(value: str) -> datetime:
    try:
        return as_utc(datetime.fromisoformat(value.strip()))
    except ValueError as e:
        raise ValidationError("Pickup date and time must be an ISO-8601 date-time.") from e


class OrderService:
    """
    Order creation, listing and status transitions.

    Example:
        >>> service = OrderService(storage, settings)
        >>> enriched, created = await service.create_order(customer, submission)
        >>> enriched.order.status
        <OrderStatus.PENDING: 'pending'>
    """

    def __init__(self, storage: BaseStorage, settings: Settings):
        self.storage = storage
        self.settings = settings

        logger.info(
            f"OrderService initialized "
            f"(storage={storage.provider_name}, "
            f"strict_status_transitions={settings.strict_status_transitions}, "
            f"verify_client_prices={settings.verify_client_prices})"
        )

    # =========================================================================
    # CREATION
    # =========================================================================

    def validate_submission(self, account_id: str, submission: OrderCreate) -> NewOrder:
        """
        Check a submission and price it.

        Checks run in a fixed order and stop at the first failure.

        Raises:
            ValidationError: On the first rule that is violated
        """
        mode_value = (submission.fulfillment_mode or FulfillmentMode.DELIVERY.value).strip().lower()
        try:
            mode = FulfillmentMode(mode_value)
        except ValueError:
            raise ValidationError('Invalid delivery type. Must be "pickup" or "delivery".')

        address = (submission.delivery_address or "").strip()
        pickup_text = (submission.pickup_datetime or "").strip()

        if mode == FulfillmentMode.DELIVERY and not address:
            raise ValidationError("Delivery address is required for delivery orders.")

        if mode == FulfillmentMode.PICKUP and not pickup_text:
            raise ValidationError("Pickup date and time are required for pickup orders.")
        pickup_at = _parse_pickup(pickup_text) if mode == FulfillmentMode.PICKUP else None

        if not submission.items:
            raise ValidationError("An order needs at least one item.")

        phone = submission.phone.strip()
        if not phone:
            raise ValidationError("A contact phone number is required.")

        lines = [
            OrderLine(
                catalog_item_id=item.catalog_item_id,
                quantity=item.quantity,
                unit_price=to_money(item.unit_price),
            )
            for item in submission.items
        ]
        totals = calculate_order_totals(lines, mode, self.settings.delivery_fee)

        # Only the detail belonging to the chosen mode is kept
        return NewOrder(
            account_id=account_id,
            items=lines,
            subtotal=totals["subtotal"],
            delivery_fee=totals["delivery_fee"],
            total_price=totals["total_price"],
            fulfillment_mode=mode,
            phone=phone,
            delivery_address=address if mode == FulfillmentMode.DELIVERY else None,
            pickup_datetime=pickup_at,
            notes=(submission.notes or "").strip() or None,
        )

    async def _verify_prices(self, lines: list[OrderLine]) -> None:
        """Reject lines whose item is gone, unavailable or repriced."""
        catalog = await self.storage.find_catalog_items(line.catalog_item_id for line in lines)
        for line in lines:
            item = catalog.get(line.catalog_item_id)
            if item is None:
                raise ValidationError(f"Menu item {line.catalog_item_id} does not exist.")
            if not item.available:
                raise ValidationError(f"{item.name} is currently unavailable.")
            if to_money(item.price) != line.unit_price:
                raise ValidationError(
                    f"Price of {item.name} changed to {item.price}; refresh your cart."
                )

    async def create_order(
        self,
        actor: Account,
        submission: OrderCreate,
        idempotency_key: Optional[str] = None,
    ) -> tuple[EnrichedOrder, bool]:
        """
        Place an order for ``actor``.

        Args:
            actor: Authenticated customer placing the order
            submission: Cart contents and fulfillment details
            idempotency_key: Optional client token; repeating a key returns
                the order created the first time

        Returns:
            (enriched order, True if it was created by this call)

        Raises:
            AuthorizationError: If the actor is not a customer
            ValidationError: If the submission is rejected
        """
        authorize(actor, [Role.CUSTOMER])

        new_order = self.validate_submission(actor.id, submission)

        if idempotency_key is not None:
            idempotency_key = idempotency_key.strip()
            if not idempotency_key or len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
                raise ValidationError("Idempotency key must be 1-100 characters.")
            existing = await self.storage.find_order_by_idempotency_key(actor.id, idempotency_key)
            if existing is not None:
                logger.info(f"Idempotent replay of order {existing.id}")
                return (await self._enrich([existing], actor))[0], False
            new_order.idempotency_key = idempotency_key

        if self.settings.verify_client_prices:
            await self._verify_prices(new_order.items)

        try:
            order = await self.storage.create_order(new_order)
        except ConflictError:
            if idempotency_key is None:
                raise
            # A concurrent request with the same key won the race
            existing = await self.storage.find_order_by_idempotency_key(actor.id, idempotency_key)
            if existing is None:
                raise
            return (await self._enrich([existing], actor))[0], False

        logger.info(
            f"Order {order.id} placed by {actor.id}: "
            f"{len(order.items)} item(s), {order.fulfillment_mode.value}, total {order.total_price}"
        )
        return (await self._enrich([order], actor))[0], True

    # =========================================================================
    # READS
    # =========================================================================

    async def get_order(self, actor: Account, order_id: str) -> EnrichedOrder:
        """
        Read one order. Customers may only read their own.

        Raises:
            NotFoundError: If the order does not exist
            AuthorizationError: If a customer asks for someone else's order
        """
        order = await self.storage.find_order_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if actor.role == Role.CUSTOMER and order.account_id != actor.id:
            authorize(actor, STAFF_ROLES)
        return (await self._enrich([order], actor))[0]

    async def list_orders(self, actor: Account) -> list[EnrichedOrder]:
        """Customers see their own orders; staff and admins see all. Newest first."""
        if actor.role == Role.CUSTOMER:
            orders = await self.storage.list_orders_by_account(actor.id)
        else:
            authorize(actor, STAFF_ROLES)
            orders = await self.storage.list_all_orders()
        return await self._enrich(orders, actor)

    async def order_statistics(self, actor: Account) -> dict:
        authorize(actor, STAFF_ROLES)
        orders = await self.storage.list_all_orders()
        stats = {f"{status.value}_orders": 0 for status in OrderStatus}
        for order in orders:
            stats[f"{order.status.value}_orders"] += 1
        stats["total_orders"] = len(orders)
        stats["total_revenue"] = to_money(sum((o.total_price for o in orders), Decimal("0")))
        return stats

    # =========================================================================
    # STATUS
    # =========================================================================

    def check_transition(self, current: OrderStatus, target: OrderStatus) -> None:
        """
        Raises:
            ValidationError: If strict transitions are on and the move is illegal
        """
        if not self.settings.strict_status_transitions or current == target:
            return
        if target not in STATUS_TRANSITIONS[current]:
            raise ValidationError(
                f"Cannot change order status from {current.value} to {target.value}."
            )

    async def transition_status(self, actor: Account, order_id: str, status: str) -> EnrichedOrder:
        """
        Move an order to ``status``.

        Raises:
            AuthorizationError: If the actor is not staff or admin
            ValidationError: If the status is unknown or the move is illegal
            NotFoundError: If the order does not exist
            ConflictError: If another request changed the status first
        """
        authorize(actor, STAFF_ROLES)

        try:
            target = OrderStatus(str(status).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid status. Options: {[s.value for s in OrderStatus]}"
            )

        order = await self.storage.find_order_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found")

        self.check_transition(order.status, target)

        if self.settings.strict_status_transitions:
            if order.status == target:
                return (await self._enrich([order], actor))[0]
            updated = await self.storage.set_order_status(order.id, target, expected_status=order.status)
        else:
            updated = await self.storage.set_order_status(order.id, target)

        if updated is None:
            raise NotFoundError("Order not found")

        logger.info(f"Order {order.id}: {order.status.value} -> {target.value} by {actor.id}")
        return (await self._enrich([updated], actor))[0]

    # =========================================================================
    # ENRICHMENT
    # =========================================================================

    async def _enrich(self, orders: list[Order], viewer: Account) -> list[EnrichedOrder]:
        """Join catalog display fields, and owner fields for non-owners."""
        if not orders:
            return []

        catalog = await self.storage.find_catalog_items(
            line.catalog_item_id for order in orders for line in order.items
        )
        foreign_owners = {o.account_id for o in orders if o.account_id != viewer.id}
        owners = await self.storage.find_accounts(foreign_owners) if foreign_owners else {}

        return [
            EnrichedOrder(
                order=order,
                catalog={
                    line.catalog_item_id: catalog[line.catalog_item_id]
                    for line in order.items
                    if line.catalog_item_id in catalog
                },
                owner=owners.get(order.account_id),
                include_owner=order.account_id != viewer.id,
            )
            for order in orders
        ]
