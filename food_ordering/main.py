"""
FastAPI Application Entry Point

Food Ordering System - one API, two interchangeable storage engines.
The engine (SQL or Redis) is picked once from settings when the app starts.

Endpoints:
    - /api/auth/*: Registration, login, profile and account administration
    - /api/menu/*: Menu browsing and maintenance
    - /api/orders/*: Order placement, listing and status changes
    - GET /health: Storage health check

Run:
    uvicorn food_ordering.main:app --port 5000
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from food_ordering.core.config import Settings, get_settings, setup_logging
from food_ordering.core.errors import FoodOrderingError
from food_ordering.dependencies import (
    get_catalog_service,
    get_current_account,
    get_identity_service,
    get_order_service,
    get_settings_dep,
    get_storage,
    require_roles,
)
from food_ordering.domain import Account, Role
from food_ordering.schemas import (
    AccountResponse,
    AuthResponse,
    CatalogItemCreate,
    CatalogItemResponse,
    CatalogItemUpdate,
    ErrorResponse,
    HealthResponse,
    LoginRequest,
    MessageResponse,
    OrderCreate,
    OrderResponse,
    OrderStatsResponse,
    PasswordChange,
    ProfileUpdate,
    RegisterRequest,
    RoleEnum,
    RoleUpdate,
    StatusUpdate,
)
from food_ordering.services.catalog import CatalogService
from food_ordering.services.identity import STAFF_ROLES, IdentityService
from food_ordering.services.orders import OrderService
from food_ordering.services.storage import BaseStorage, create_storage

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    settings: Settings = app.state.settings

    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Storage: {settings.storage_backend.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    storage: BaseStorage = app.state.storage or create_storage(settings)
    await storage.connect()
    app.state.storage = storage
    logger.info(f"✅ Storage ready: {storage.provider_name}")

    app.state.identity_service = IdentityService(storage, settings)
    app.state.catalog_service = CatalogService(storage, settings)
    app.state.order_service = OrderService(storage, settings)

    missing = settings.validate_production_config()
    if missing:
        logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await storage.close()
    logger.info("✅ Cleanup complete")


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

root_router = APIRouter()


@root_router.get("/", tags=["Root"])
async def root(settings: Settings = Depends(get_settings_dep)) -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍔 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "storage": settings.storage_backend.value,
        "documentation": "/docs",
        "health": "/health",
    }


@root_router.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(storage: BaseStorage = Depends(get_storage)) -> HealthResponse:
    """Verify the storage engine is reachable."""
    healthy = await storage.health_check()
    if not healthy:
        logger.error(f"Storage health check failed ({storage.provider_name})")

    return HealthResponse(
        status="operational" if healthy else "degraded",
        storage_backend=storage.provider_name,
        storage="healthy" if healthy else "unhealthy",
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# AUTH ENDPOINTS
# =============================================================================

auth_router = APIRouter(prefix="/api/auth", tags=["Auth"], responses=ERROR_RESPONSES)


@auth_router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    identity: IdentityService = Depends(get_identity_service),
) -> AuthResponse:
    """Create a customer account and log it in."""
    account = await identity.register(payload)
    return AuthResponse(token=identity.issue_token(account), user=AccountResponse.from_record(account))


@auth_router.post("/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest,
    identity: IdentityService = Depends(get_identity_service),
) -> AuthResponse:
    account = await identity.authenticate(payload.email, payload.password)
    return AuthResponse(token=identity.issue_token(account), user=AccountResponse.from_record(account))


@auth_router.get("/me", response_model=AccountResponse)
async def me(account: Account = Depends(get_current_account)) -> AccountResponse:
    return AccountResponse.from_record(account)


@auth_router.put("/profile", response_model=AccountResponse)
async def update_profile(
    payload: ProfileUpdate,
    account: Account = Depends(get_current_account),
    identity: IdentityService = Depends(get_identity_service),
) -> AccountResponse:
    updated = await identity.update_profile(account, payload)
    return AccountResponse.from_record(updated)


@auth_router.put("/change-password", response_model=MessageResponse)
async def change_password(
    payload: PasswordChange,
    account: Account = Depends(get_current_account),
    identity: IdentityService = Depends(get_identity_service),
) -> MessageResponse:
    await identity.change_password(account, payload.current_password, payload.new_password)
    return MessageResponse(message="Password updated successfully")


@auth_router.get("/users", response_model=List[AccountResponse])
async def list_users(
    role: Optional[RoleEnum] = Query(None),
    account: Account = Depends(require_roles(Role.ADMIN)),
    identity: IdentityService = Depends(get_identity_service),
) -> List[AccountResponse]:
    """List accounts, optionally filtered by role. Admin only."""
    accounts = await identity.list_accounts(account, Role(role.value) if role else None)
    return [AccountResponse.from_record(a) for a in accounts]


@auth_router.put("/users/{account_id}/role", response_model=AccountResponse)
async def update_user_role(
    account_id: str,
    payload: RoleUpdate,
    account: Account = Depends(require_roles(Role.ADMIN)),
    identity: IdentityService = Depends(get_identity_service),
) -> AccountResponse:
    updated = await identity.set_role(account, account_id, Role(payload.role.value))
    return AccountResponse.from_record(updated)


@auth_router.delete("/users/{account_id}", response_model=MessageResponse)
async def delete_user(
    account_id: str,
    account: Account = Depends(require_roles(Role.ADMIN)),
    identity: IdentityService = Depends(get_identity_service),
) -> MessageResponse:
    await identity.delete_account(account, account_id)
    return MessageResponse(message="User deleted successfully")


# =============================================================================
# MENU ENDPOINTS
# =============================================================================

menu_router = APIRouter(prefix="/api/menu", tags=["Menu"], responses=ERROR_RESPONSES)


@menu_router.get("/categories", response_model=List[str])
async def list_categories(catalog: CatalogService = Depends(get_catalog_service)) -> List[str]:
    return await catalog.categories()


@menu_router.get("", response_model=List[CatalogItemResponse])
async def list_menu(
    category: Optional[str] = Query(None),
    include_unavailable: bool = Query(False),
    catalog: CatalogService = Depends(get_catalog_service),
) -> List[CatalogItemResponse]:
    """List menu items. Unavailable items are hidden unless asked for."""
    items = await catalog.list_items(category=category, include_unavailable=include_unavailable)
    return [CatalogItemResponse.from_record(item) for item in items]


@menu_router.get("/{item_id}", response_model=CatalogItemResponse)
async def get_menu_item(
    item_id: str,
    catalog: CatalogService = Depends(get_catalog_service),
) -> CatalogItemResponse:
    return CatalogItemResponse.from_record(await catalog.get_item(item_id))


@menu_router.post("", response_model=CatalogItemResponse, status_code=status.HTTP_201_CREATED)
async def create_menu_item(
    payload: CatalogItemCreate,
    account: Account = Depends(require_roles(Role.ADMIN)),
    catalog: CatalogService = Depends(get_catalog_service),
) -> CatalogItemResponse:
    item = await catalog.create_item(account, payload)
    return CatalogItemResponse.from_record(item)


@menu_router.put("/{item_id}", response_model=CatalogItemResponse)
async def update_menu_item(
    item_id: str,
    payload: CatalogItemUpdate,
    account: Account = Depends(require_roles(Role.ADMIN)),
    catalog: CatalogService = Depends(get_catalog_service),
) -> CatalogItemResponse:
    item = await catalog.update_item(account, item_id, payload)
    return CatalogItemResponse.from_record(item)


@menu_router.patch("/{item_id}/availability", response_model=CatalogItemResponse)
async def toggle_menu_item(
    item_id: str,
    account: Account = Depends(require_roles(Role.ADMIN)),
    catalog: CatalogService = Depends(get_catalog_service),
) -> CatalogItemResponse:
    item = await catalog.toggle_availability(account, item_id)
    return CatalogItemResponse.from_record(item)


@menu_router.delete("/{item_id}", response_model=MessageResponse)
async def delete_menu_item(
    item_id: str,
    account: Account = Depends(require_roles(Role.ADMIN)),
    catalog: CatalogService = Depends(get_catalog_service),
) -> MessageResponse:
    await catalog.delete_item(account, item_id)
    return MessageResponse(message="Menu item deleted successfully")


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

orders_router = APIRouter(prefix="/api/orders", tags=["Orders"], responses=ERROR_RESPONSES)


@orders_router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place Order",
)
async def create_order(
    payload: OrderCreate,
    response: Response,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    account: Account = Depends(get_current_account),
    orders: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """
    Place an order for the logged-in customer.

    Sending the same ``Idempotency-Key`` again returns the first order
    with status 200 instead of creating a duplicate.
    """
    enriched, created = await orders.create_order(account, payload, idempotency_key)
    if not created:
        response.status_code = status.HTTP_200_OK
    return OrderResponse.from_enriched(enriched)


@orders_router.get("", response_model=List[OrderResponse], summary="List Orders")
async def list_orders(
    account: Account = Depends(get_current_account),
    orders: OrderService = Depends(get_order_service),
) -> List[OrderResponse]:
    """Customers get their own orders; staff and admins get all of them."""
    return [OrderResponse.from_enriched(o) for o in await orders.list_orders(account)]


@orders_router.get("/stats", response_model=OrderStatsResponse, summary="Order Statistics")
async def order_stats(
    account: Account = Depends(require_roles(*STAFF_ROLES)),
    orders: OrderService = Depends(get_order_service),
) -> OrderStatsResponse:
    stats = await orders.order_statistics(account)
    return OrderStatsResponse(**{**stats, "total_revenue": float(stats["total_revenue"])})


@orders_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    account: Account = Depends(get_current_account),
    orders: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """Get a specific order by ID."""
    return OrderResponse.from_enriched(await orders.get_order(account, order_id))


@orders_router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: str,
    payload: StatusUpdate,
    account: Account = Depends(require_roles(*STAFF_ROLES)),
    orders: OrderService = Depends(get_order_service),
) -> OrderResponse:
    enriched = await orders.transition_status(account, order_id, payload.status)
    return OrderResponse.from_enriched(enriched)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

async def app_error_handler(request: Request, exc: FoodOrderingError) -> JSONResponse:
    """Render application errors with their own status code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are validation errors, not 422s."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "validation_error",
            "detail": "; ".join(messages) or "Invalid request",
        },
    )


def build_global_exception_handler(settings: Settings):
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all exception handler."""
        logger.exception(f"Unhandled exception: {exc}")

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "internal_error",
                "detail": str(exc) if settings.debug else "An unexpected error occurred",
            },
        )

    return global_exception_handler


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(settings: Optional[Settings] = None, storage: Optional[BaseStorage] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to run with (defaults to environment settings)
        storage: Pre-built storage engine; otherwise one is created from
            settings at startup
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Food ordering backend: menu, accounts and an order lifecycle "
            "running on either a relational or a Redis storage engine."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.storage = storage

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(root_router)
    app.include_router(auth_router)
    app.include_router(menu_router)
    app.include_router(orders_router)

    app.add_exception_handler(FoodOrderingError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, build_global_exception_handler(settings))

    return app


def _default_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings)
    return create_app(settings)


app = _default_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "food_ordering.main:app",
        host=_settings.api_host,
        port=_settings.api_port,
        reload=_settings.is_development,
    )
