"""
HTTP API tests through FastAPI's TestClient, once per storage engine.
"""

import pytest
from fastapi.testclient import TestClient

from food_ordering.core.config import StorageBackend
from food_ordering.domain import Role
from food_ordering.main import create_app
from food_ordering.services.storage import RedisStorage

from tests.conftest import fake_redis_client


@pytest.fixture(params=[StorageBackend.SQL, StorageBackend.REDIS], ids=["sql", "redis"])
def client(request, settings):
    storage = None
    if request.param == StorageBackend.REDIS:
        storage = RedisStorage(settings, client=fake_redis_client())
    app = create_app(settings, storage=storage)
    with TestClient(app) as test_client:
        yield test_client


def register(client, email, name="Test User"):
    resp = client.post(
        "/api/auth/register",
        json={"name": name, "email": email, "password": "secret123", "phone": "555-0000"},
    )
    assert resp.status_code == 201, resp.text
    data = resp.json()
    return data["user"], {"Authorization": f"Bearer {data['token']}"}


def set_role(client, account_id, role):
    storage = client.app.state.storage
    client.portal.call(storage.update_account, account_id, {"role": role})


@pytest.fixture
def customer_headers(client):
    _, headers = register(client, "alice@example.com", "Alice")
    return headers


@pytest.fixture
def staff_headers(client):
    user, headers = register(client, "staff@example.com", "Sam Staff")
    set_role(client, user["id"], Role.STAFF)
    return headers


@pytest.fixture
def admin_headers(client):
    user, headers = register(client, "admin@example.com", "Ada Admin")
    set_role(client, user["id"], Role.ADMIN)
    return headers


@pytest.fixture
def tea(client, admin_headers):
    resp = client.post(
        "/api/menu",
        json={"name": "Tea", "price": 5.00, "category": "beverage"},
        headers=admin_headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def pickup_order(item, quantity=2):
    return {
        "items": [{"catalog_item_id": item["id"], "quantity": quantity, "unit_price": item["price"]}],
        "fulfillment_mode": "pickup",
        "pickup_datetime": "2030-01-15T18:30:00Z",
        "phone": "555-1111",
    }


# =============================================================================
# ROOT & HEALTH
# =============================================================================


class TestRoot:

    def test_root(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json()["storage"] in ("sql", "redis")

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "operational"
        assert data["storage"] == "healthy"


# =============================================================================
# AUTH
# =============================================================================


class TestAuth:

    def test_register_login_me(self, client):
        user, _ = register(client, "Jane@Example.com", "Jane")
        assert user["email"] == "jane@example.com"
        assert user["role"] == "customer"
        assert "password_hash" not in user

        resp = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "secret123"})
        assert resp.status_code == 200
        token = resp.json()["token"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["id"] == user["id"]

    def test_duplicate_email(self, client):
        register(client, "dup@example.com")
        resp = client.post(
            "/api/auth/register",
            json={"name": "Again", "email": "DUP@example.com", "password": "secret123"},
        )
        assert resp.status_code == 409
        assert resp.json() == {"success": False, "error": "conflict", "detail": "Email already registered"}

    def test_bad_login(self, client):
        register(client, "x@example.com")
        resp = client.post("/api/auth/login", json={"email": "x@example.com", "password": "nope"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "unauthenticated"

    def test_schema_errors_are_400(self, client):
        resp = client.post("/api/auth/register", json={"name": "A", "email": "not-an-email", "password": "secret123"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_error"

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("GET", "/api/orders"),
            ("POST", "/api/orders"),
            ("GET", "/api/orders/stats"),
            ("GET", "/api/auth/users"),
        ],
    )
    def test_requires_auth(self, client, method, path):
        resp = client.request(method, path, json={} if method == "POST" else None)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_admin_user_management(self, client, customer_headers, admin_headers):
        users = client.get("/api/auth/users", params={"role": "customer"}, headers=admin_headers).json()
        assert [u["email"] for u in users] == ["alice@example.com"]

        resp = client.put(f"/api/auth/users/{users[0]['id']}/role", json={"role": "staff"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["role"] == "staff"

        resp = client.delete(f"/api/auth/users/{users[0]['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert client.get("/api/auth/me", headers=customer_headers).status_code == 401

    def test_customer_cannot_list_users(self, client, customer_headers):
        assert client.get("/api/auth/users", headers=customer_headers).status_code == 403

    def test_profile_and_password(self, client, customer_headers):
        resp = client.put("/api/auth/profile", json={"address": "9 Elm St"}, headers=customer_headers)
        assert resp.json()["address"] == "9 Elm St"

        resp = client.put(
            "/api/auth/change-password",
            json={"current_password": "secret123", "new_password": "even-more-secret"},
            headers=customer_headers,
        )
        assert resp.status_code == 200
        resp = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "even-more-secret"})
        assert resp.status_code == 200


# =============================================================================
# MENU
# =============================================================================


class TestMenu:

    def test_menu_is_public(self, client, tea):
        items = client.get("/api/menu").json()
        assert [i["name"] for i in items] == ["Tea"]
        assert items[0]["price"] == 5.0
        assert client.get("/api/menu/categories").json() == ["beverage"]
        assert client.get(f"/api/menu/{tea['id']}").json()["id"] == tea["id"]

    @pytest.mark.parametrize("item_id", ["does-not-exist", "²", "9" * 30])
    def test_unknown_item_is_404(self, client, item_id):
        resp = client.get(f"/api/menu/{item_id}")
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    def test_toggle_hides_item(self, client, admin_headers, tea):
        resp = client.patch(f"/api/menu/{tea['id']}/availability", headers=admin_headers)
        assert resp.json()["available"] is False
        assert client.get("/api/menu").json() == []
        assert len(client.get("/api/menu", params={"include_unavailable": True}).json()) == 1

    def test_update_and_delete(self, client, admin_headers, tea):
        resp = client.put(f"/api/menu/{tea['id']}", json={"price": 5.5}, headers=admin_headers)
        assert resp.json()["price"] == 5.5
        assert client.delete(f"/api/menu/{tea['id']}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/menu/{tea['id']}").status_code == 404

    def test_customers_cannot_edit_menu(self, client, customer_headers):
        resp = client.post("/api/menu", json={"name": "Fries", "price": 3}, headers=customer_headers)
        assert resp.status_code == 403
        assert resp.json()["error"] == "forbidden"


# =============================================================================
# ORDERS
# =============================================================================


class TestOrders:

    def test_place_pickup_order(self, client, customer_headers, tea):
        resp = client.post("/api/orders", json=pickup_order(tea), headers=customer_headers)
        assert resp.status_code == 201, resp.text
        order = resp.json()
        assert order["total_price"] == 10.0
        assert order["status"] == "pending"
        assert len(order["items"]) == 1
        assert order["items"][0]["quantity"] == 2
        assert order["items"][0]["catalog_item"]["name"] == "Tea"
        assert order["user"] is None

    def test_delivery_without_address(self, client, customer_headers, tea):
        body = pickup_order(tea)
        body["fulfillment_mode"] = "delivery"
        resp = client.post("/api/orders", json=body, headers=customer_headers)
        assert resp.status_code == 400
        assert client.get("/api/orders", headers=customer_headers).json() == []

    def test_idempotent_replay(self, client, customer_headers, tea):
        headers = {**customer_headers, "Idempotency-Key": "cart-42"}
        first = client.post("/api/orders", json=pickup_order(tea), headers=headers)
        second = client.post("/api/orders", json=pickup_order(tea), headers=headers)
        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]
        assert len(client.get("/api/orders", headers=customer_headers).json()) == 1

    def test_listing_scope_and_owner_fields(self, client, customer_headers, staff_headers, tea):
        client.post("/api/orders", json=pickup_order(tea), headers=customer_headers)
        _, bob = register(client, "bob@example.com", "Bob")
        client.post("/api/orders", json=pickup_order(tea, 1), headers=bob)

        mine = client.get("/api/orders", headers=customer_headers).json()
        assert len(mine) == 1
        assert mine[0]["user"] is None

        everything = client.get("/api/orders", headers=staff_headers).json()
        assert len(everything) == 2
        assert {o["user"]["email"] for o in everything} == {"alice@example.com", "bob@example.com"}

    def test_foreign_order_is_forbidden(self, client, customer_headers, tea):
        order = client.post("/api/orders", json=pickup_order(tea), headers=customer_headers).json()
        _, bob = register(client, "bob@example.com", "Bob")
        assert client.get(f"/api/orders/{order['id']}", headers=bob).status_code == 403
        assert client.get(f"/api/orders/{order['id']}", headers=customer_headers).status_code == 200

    def test_status_flow(self, client, customer_headers, staff_headers, tea):
        order = client.post("/api/orders", json=pickup_order(tea), headers=customer_headers).json()
        url = f"/api/orders/{order['id']}/status"

        assert client.patch(url, json={"status": "preparing"}, headers=staff_headers).json()["status"] == "preparing"
        assert client.patch(url, json={"status": "ready"}, headers=staff_headers).status_code == 200

        resp = client.patch(url, json={"status": "pending"}, headers=staff_headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_error"

        assert client.patch(url, json={"status": "cancelled"}, headers=customer_headers).status_code == 403

    def test_status_of_unknown_order(self, client, staff_headers):
        resp = client.patch("/api/orders/777777/status", json={"status": "ready"}, headers=staff_headers)
        assert resp.status_code == 404

    def test_stats(self, client, customer_headers, staff_headers, tea):
        client.post("/api/orders", json=pickup_order(tea), headers=customer_headers)
        stats = client.get("/api/orders/stats", headers=staff_headers).json()
        assert stats["total_orders"] == 1
        assert stats["pending_orders"] == 1
        assert stats["total_revenue"] == 10.0
        assert client.get("/api/orders/stats", headers=customer_headers).status_code == 403
