"""
FastAPI Dependencies

Services live on ``app.state`` (built once in the lifespan) and are handed
to route functions through these providers.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from food_ordering.core.config import Settings
from food_ordering.core.errors import AuthenticationError
from food_ordering.domain import Account, Role
from food_ordering.services.catalog import CatalogService
from food_ordering.services.identity import IdentityService, authorize
from food_ordering.services.orders import OrderService
from food_ordering.services.storage.base import BaseStorage

bearer_scheme = HTTPBearer(auto_error=False)


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> BaseStorage:
    return request.app.state.storage


def get_identity_service(request: Request) -> IdentityService:
    return request.app.state.identity_service


def get_catalog_service(request: Request) -> CatalogService:
    return request.app.state.catalog_service


def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service


async def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    identity: IdentityService = Depends(get_identity_service),
) -> Account:
    """
    Resolve the bearer token into an account.

    Raises:
        AuthenticationError: If no token was sent or it does not resolve
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("No token, authorization denied")
    return await identity.resolve_token(credentials.credentials)


def require_roles(*roles: Role):
    """Dependency factory: authenticated account holding one of ``roles``."""

    async def dependency(account: Account = Depends(get_current_account)) -> Account:
        authorize(account, roles)
        return account

    return dependency
