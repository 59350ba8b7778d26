"""
Pytest fixtures for the food ordering tests.

Every storage-backed fixture is parametrized over both engines: SQL runs on
a throwaway SQLite file through aiosqlite, Redis runs on fakeredis.
"""

from decimal import Decimal

import fakeredis
import pytest

from food_ordering.core.config import Settings, StorageBackend
from food_ordering.domain import NewAccount, NewCatalogItem, Role
from food_ordering.services.catalog import CatalogService
from food_ordering.services.identity import IdentityService
from food_ordering.services.orders import OrderService
from food_ordering.services.storage import RedisStorage, SQLStorage

TEST_PASSWORD = "secret123"


def fake_redis_client():
    """A fakeredis client with its own private server."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        jwt_secret_key="test-secret",
        bcrypt_rounds=4,
    )


@pytest.fixture(params=[StorageBackend.SQL, StorageBackend.REDIS], ids=["sql", "redis"])
async def storage(request, settings):
    """Connected storage engine, one per backend."""
    if request.param == StorageBackend.SQL:
        engine = SQLStorage(settings)
    else:
        engine = RedisStorage(settings, client=fake_redis_client())
    await engine.connect()
    yield engine
    await engine.close()


@pytest.fixture
def identity(storage, settings):
    return IdentityService(storage, settings)


@pytest.fixture
def catalog(storage, settings):
    return CatalogService(storage, settings)


@pytest.fixture
def orders(storage, settings):
    return OrderService(storage, settings)


# =============================================================================
# ACCOUNTS
# =============================================================================

async def make_account(storage, identity, email, role=Role.CUSTOMER, name="Test User"):
    return await storage.create_account(
        NewAccount(
            email=email,
            name=name,
            password_hash=identity.hash_password(TEST_PASSWORD),
            role=role,
            phone="555-0000",
        )
    )


@pytest.fixture
async def customer(storage, identity):
    return await make_account(storage, identity, "alice@example.com", name="Alice")


@pytest.fixture
async def other_customer(storage, identity):
    return await make_account(storage, identity, "bob@example.com", name="Bob")


@pytest.fixture
async def staff(storage, identity):
    return await make_account(storage, identity, "staff@example.com", Role.STAFF, name="Sam Staff")


@pytest.fixture
async def admin(storage, identity):
    return await make_account(storage, identity, "admin@example.com", Role.ADMIN, name="Ada Admin")


# =============================================================================
# MENU
# =============================================================================

@pytest.fixture
async def tea(storage):
    return await storage.create_catalog_item(
        NewCatalogItem(name="Tea", description="Hot tea", price=Decimal("2.50"), category="beverage")
    )


@pytest.fixture
async def burger(storage):
    return await storage.create_catalog_item(
        NewCatalogItem(name="Burger", description="Beef burger", price=Decimal("8.99"), category="main")
    )
