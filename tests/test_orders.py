"""
Order lifecycle service tests, run against both storage engines.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from food_ordering.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from food_ordering.domain import FulfillmentMode, NewCatalogItem, OrderLine, OrderStatus
from food_ordering.schemas import OrderCreate
from food_ordering.services.orders import OrderService, calculate_order_totals


def tomorrow() -> str:
    return (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()


def submission(items, **overrides) -> OrderCreate:
    body = {
        "items": [
            {"catalog_item_id": item.id, "quantity": qty, "unit_price": str(item.price)}
            for item, qty in items
        ],
        "fulfillment_mode": "delivery",
        "delivery_address": "350 Fifth Avenue",
        "phone": "555-1111",
    }
    body.update(overrides)
    return OrderCreate(**body)


# =============================================================================
# PRICING
# =============================================================================


class TestPricing:

    @pytest.mark.parametrize(
        "quantities,prices,mode,expected",
        [
            ([1], ["2.50"], FulfillmentMode.PICKUP, "2.50"),
            ([2, 3], ["5.00", "1.10"], FulfillmentMode.DELIVERY, "18.30"),
            ([99], ["0.00"], FulfillmentMode.DELIVERY, "5.00"),
            ([3], ["0.10"], FulfillmentMode.PICKUP, "0.30"),
        ],
    )
    def test_total_is_lines_plus_fee(self, quantities, prices, mode, expected):
        lines = [
            OrderLine(catalog_item_id=str(i), quantity=q, unit_price=Decimal(p))
            for i, (q, p) in enumerate(zip(quantities, prices))
        ]
        totals = calculate_order_totals(lines, mode, Decimal("5.00"))
        assert totals["total_price"] == Decimal(expected)
        assert totals["total_price"] == totals["subtotal"] + totals["delivery_fee"]

    async def test_submitted_prices_are_the_snapshot(self, storage, settings, customer, tea):
        settings.verify_client_prices = False
        service = OrderService(storage, settings)
        body = submission([(tea, 2)])
        body.items[0].unit_price = Decimal("1.00")

        enriched, _ = await service.create_order(customer, body)
        assert enriched.order.subtotal == Decimal("2.00")
        assert enriched.order.total_price == Decimal("7.00")


# =============================================================================
# CREATION
# =============================================================================


class TestCreateOrder:

    async def test_end_to_end_pickup_scenario(self, storage, orders, customer):
        tea = await storage.create_catalog_item(
            NewCatalogItem(name="Tea", description="", price=Decimal("5.00"), category="beverage", available=True)
        )
        body = OrderCreate(
            items=[{"catalog_item_id": tea.id, "quantity": 2, "unit_price": "5.00"}],
            fulfillment_mode="pickup",
            pickup_datetime=tomorrow(),
            phone="555-1111",
        )

        enriched, created = await orders.create_order(customer, body)
        order = enriched.order

        assert created is True
        assert order.total_price == Decimal("10.00")
        assert order.delivery_fee == Decimal("0.00")
        assert order.status == OrderStatus.PENDING
        assert len(order.items) == 1
        assert order.items[0].quantity == 2
        assert order.pickup_datetime is not None
        assert order.delivery_address is None
        assert enriched.catalog[tea.id].name == "Tea"
        assert enriched.include_owner is False

    async def test_delivery_adds_fee(self, orders, customer, tea, burger):
        enriched, _ = await orders.create_order(customer, submission([(tea, 1), (burger, 2)]))
        assert enriched.order.subtotal == Decimal("20.48")
        assert enriched.order.delivery_fee == Decimal("5.00")
        assert enriched.order.total_price == Decimal("25.48")

    async def test_mode_defaults_to_delivery(self, orders, customer, tea):
        body = submission([(tea, 1)])
        body.fulfillment_mode = None
        enriched, _ = await orders.create_order(customer, body)
        assert enriched.order.fulfillment_mode == FulfillmentMode.DELIVERY

    async def test_delivery_without_address_persists_nothing(self, storage, orders, customer, tea):
        with pytest.raises(ValidationError, match="address"):
            await orders.create_order(customer, submission([(tea, 1)], delivery_address="  "))
        assert await storage.list_orders_by_account(customer.id) == []

    async def test_pickup_without_time_persists_nothing(self, storage, orders, customer, tea):
        with pytest.raises(ValidationError, match="Pickup"):
            await orders.create_order(
                customer, submission([(tea, 1)], fulfillment_mode="pickup", delivery_address=None)
            )
        assert await storage.list_orders_by_account(customer.id) == []

    async def test_unparseable_pickup_time(self, orders, customer, tea):
        with pytest.raises(ValidationError, match="ISO-8601"):
            await orders.create_order(
                customer, submission([(tea, 1)], fulfillment_mode="pickup", pickup_datetime="tomorrow at six")
            )

    async def test_unknown_mode(self, orders, customer, tea):
        with pytest.raises(ValidationError, match="delivery type"):
            await orders.create_order(customer, submission([(tea, 1)], fulfillment_mode="drone"))

    async def test_checks_run_in_order(self, orders, customer):
        # Missing address is reported before the empty cart and missing phone
        body = OrderCreate(items=[], fulfillment_mode="delivery", phone="")
        with pytest.raises(ValidationError, match="address"):
            await orders.create_order(customer, body)

        body = OrderCreate(items=[], fulfillment_mode="delivery", delivery_address="1 Main St", phone="")
        with pytest.raises(ValidationError, match="at least one item"):
            await orders.create_order(customer, body)

    async def test_pickup_time_checked_before_cart_and_phone(self, storage, orders, customer):
        body = OrderCreate(items=[], fulfillment_mode="pickup", pickup_datetime="garbage", phone="")
        with pytest.raises(ValidationError, match="ISO-8601"):
            await orders.create_order(customer, body)
        assert await storage.list_orders_by_account(customer.id) == []

    async def test_large_quantities_are_accepted(self, orders, customer, tea):
        enriched, _ = await orders.create_order(customer, submission([(tea, 150)]))
        assert enriched.order.items[0].quantity == 150
        assert enriched.order.subtotal == Decimal("375.00")

    async def test_quantity_must_be_positive(self, tea):
        with pytest.raises(PydanticValidationError):
            submission([(tea, 0)])

    async def test_phone_required(self, orders, customer, tea):
        with pytest.raises(ValidationError, match="phone"):
            await orders.create_order(customer, submission([(tea, 1)], phone=" "))

    async def test_only_customers_place_orders(self, orders, staff, tea):
        with pytest.raises(AuthorizationError):
            await orders.create_order(staff, submission([(tea, 1)]))


class TestPriceVerification:

    async def test_stale_price_rejected(self, orders, customer, tea):
        body = submission([(tea, 1)])
        body.items[0].unit_price = Decimal("1.99")
        with pytest.raises(ValidationError, match="Price of Tea"):
            await orders.create_order(customer, body)

    async def test_unavailable_item_rejected(self, storage, orders, customer, tea):
        await storage.update_catalog_item(tea.id, {"available": False})
        with pytest.raises(ValidationError, match="unavailable"):
            await orders.create_order(customer, submission([(tea, 1)]))

    async def test_unknown_item_rejected(self, orders, customer, tea):
        body = submission([(tea, 1)])
        body.items[0].catalog_item_id = "999999"
        with pytest.raises(ValidationError, match="does not exist"):
            await orders.create_order(customer, body)


# =============================================================================
# IDEMPOTENCY
# =============================================================================


class TestIdempotency:

    async def test_replay_returns_original(self, storage, orders, customer, tea):
        first, created = await orders.create_order(customer, submission([(tea, 1)]), idempotency_key="abc")
        again, created_again = await orders.create_order(customer, submission([(tea, 3)]), idempotency_key="abc")

        assert created is True
        assert created_again is False
        assert again.order.id == first.order.id
        assert again.order.items[0].quantity == 1
        assert len(await storage.list_orders_by_account(customer.id)) == 1

    async def test_lost_race_resolves_to_winner(self, storage, orders, customer, tea, monkeypatch):
        winner, _ = await orders.create_order(customer, submission([(tea, 1)]), idempotency_key="race")

        # The pre-check misses, as if the winner committed in between
        lookups = []
        original = storage.find_order_by_idempotency_key

        async def late_lookup(account_id, key):
            lookups.append(key)
            if len(lookups) == 1:
                return None
            return await original(account_id, key)

        monkeypatch.setattr(storage, "find_order_by_idempotency_key", late_lookup)

        enriched, created = await orders.create_order(customer, submission([(tea, 1)]), idempotency_key="race")
        assert created is False
        assert enriched.order.id == winner.order.id

    async def test_key_too_long(self, orders, customer, tea):
        with pytest.raises(ValidationError, match="Idempotency key"):
            await orders.create_order(customer, submission([(tea, 1)]), idempotency_key="k" * 101)


# =============================================================================
# READS
# =============================================================================


class TestReads:

    async def test_customer_listing_never_shows_other_accounts(
        self, orders, customer, other_customer, tea
    ):
        await orders.create_order(customer, submission([(tea, 1)]))
        await orders.create_order(other_customer, submission([(tea, 2)]))

        mine = await orders.list_orders(customer)
        assert len(mine) == 1
        assert all(e.order.account_id == customer.id for e in mine)
        assert all(e.include_owner is False for e in mine)

    async def test_staff_listing_has_owner_fields(self, orders, customer, other_customer, staff, tea):
        await orders.create_order(customer, submission([(tea, 1)]))
        await orders.create_order(other_customer, submission([(tea, 2)]))

        everything = await orders.list_orders(staff)
        assert len(everything) == 2
        assert {e.owner.email for e in everything} == {"alice@example.com", "bob@example.com"}
        assert all(e.include_owner for e in everything)

    async def test_deleted_owner_and_item_still_render(
        self, storage, orders, customer, staff, tea
    ):
        enriched, _ = await orders.create_order(customer, submission([(tea, 1)]))
        await storage.delete_catalog_item(tea.id)
        await storage.delete_account(customer.id)

        view = await orders.get_order(staff, enriched.order.id)
        assert view.owner is None
        assert view.catalog == {}

    async def test_customer_cannot_read_foreign_order(self, orders, customer, other_customer, tea):
        enriched, _ = await orders.create_order(customer, submission([(tea, 1)]))
        with pytest.raises(AuthorizationError):
            await orders.get_order(other_customer, enriched.order.id)

    async def test_missing_order(self, orders, staff):
        with pytest.raises(NotFoundError):
            await orders.get_order(staff, "123456")

    async def test_statistics(self, orders, customer, staff, tea):
        a, _ = await orders.create_order(customer, submission([(tea, 1)]))
        await orders.create_order(customer, submission([(tea, 2)]))
        await orders.transition_status(staff, a.order.id, "cancelled")

        stats = await orders.order_statistics(staff)
        assert stats["total_orders"] == 2
        assert stats["pending_orders"] == 1
        assert stats["cancelled_orders"] == 1
        assert stats["total_revenue"] == Decimal("17.50")

    async def test_statistics_staff_only(self, orders, customer):
        with pytest.raises(AuthorizationError):
            await orders.order_statistics(customer)


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================


class TestStrictTransitions:

    async def test_forward_path(self, orders, customer, staff, tea):
        enriched, _ = await orders.create_order(customer, submission([(tea, 1)]))
        order_id = enriched.order.id
        for status in ["preparing", "ready", "delivered"]:
            result = await orders.transition_status(staff, order_id, status)
            assert result.order.status == OrderStatus(status)

    async def test_reverse_transition_rejected(self, orders, customer, staff, tea):
        enriched, _ = await orders.create_order(customer, submission([(tea, 1)]))
        order_id = enriched.order.id
        await orders.transition_status(staff, order_id, "preparing")
        await orders.transition_status(staff, order_id, "ready")

        with pytest.raises(ValidationError, match="from ready to pending"):
            await orders.transition_status(staff, order_id, "pending")

    async def test_skipping_ahead_rejected(self, orders, customer, staff, tea):
        enriched, _ = await orders.create_order(customer, submission([(tea, 1)]))
        with pytest.raises(ValidationError):
            await orders.transition_status(staff, enriched.order.id, "ready")

    async def test_terminal_states(self, orders, customer, staff, tea):
        enriched, _ = await orders.create_order(customer, submission([(tea, 1)]))
        await orders.transition_status(staff, enriched.order.id, "cancelled")
        with pytest.raises(ValidationError):
            await orders.transition_status(staff, enriched.order.id, "preparing")

    async def test_same_status_is_noop(self, orders, customer, staff, tea):
        enriched, _ = await orders.create_order(customer, submission([(tea, 1)]))
        result = await orders.transition_status(staff, enriched.order.id, "pending")
        assert result.order.status == OrderStatus.PENDING

    async def test_unknown_status(self, orders, customer, staff, tea):
        enriched, _ = await orders.create_order(customer, submission([(tea, 1)]))
        with pytest.raises(ValidationError, match="Invalid status"):
            await orders.transition_status(staff, enriched.order.id, "eaten")

    async def test_missing_order(self, orders, staff):
        with pytest.raises(NotFoundError):
            await orders.transition_status(staff, "987654", "preparing")

    async def test_customers_cannot_transition(self, orders, customer, tea):
        enriched, _ = await orders.create_order(customer, submission([(tea, 1)]))
        with pytest.raises(AuthorizationError):
            await orders.transition_status(customer, enriched.order.id, "cancelled")

    async def test_concurrent_change_conflicts(self, storage, orders, customer, staff, tea, monkeypatch):
        enriched, _ = await orders.create_order(customer, submission([(tea, 1)]))
        order_id = enriched.order.id

        # Another worker moves the order right after this one reads it
        original = storage.find_order_by_id

        async def read_then_race(oid):
            order = await original(oid)
            await storage.set_order_status(oid, OrderStatus.CANCELLED)
            return order

        monkeypatch.setattr(storage, "find_order_by_id", read_then_race)
        with pytest.raises(ConflictError):
            await orders.transition_status(staff, order_id, "preparing")


class TestPermissiveTransitions:

    @pytest.fixture
    def orders(self, storage, settings):
        settings.strict_status_transitions = False
        return OrderService(storage, settings)

    async def test_any_status_from_any_status(self, orders, customer, staff, tea):
        enriched, _ = await orders.create_order(customer, submission([(tea, 1)]))
        order_id = enriched.order.id

        ready = await orders.transition_status(staff, order_id, "ready")
        assert ready.order.status == OrderStatus.READY
        back = await orders.transition_status(staff, order_id, "pending")
        assert back.order.status == OrderStatus.PENDING
