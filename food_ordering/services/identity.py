"""
Identity Service

Registration, password authentication, access tokens and role checks.

Passwords are hashed with bcrypt; access tokens are HS256 JWTs signed with
``settings.jwt_secret_key`` whose subject is the account id.
"""

import logging
from collections.abc import Iterable
from datetime import timedelta
from typing import Optional

import bcrypt
from fastapi.concurrency import run_in_threadpool
from jose import JWTError, jwt

from food_ordering.core.config import Settings
from food_ordering.core.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from food_ordering.domain import Account, NewAccount, Role, utcnow
from food_ordering.schemas import ProfileUpdate, RegisterRequest
from food_ordering.services.storage.base import BaseStorage

logger = logging.getLogger(__name__)

STAFF_ROLES = (Role.STAFF, Role.ADMIN)


def authorize(account: Account, roles: Iterable[Role]) -> None:
    """
    Allow the call only if the account holds one of ``roles``.

    Raises:
        AuthorizationError: If the role is not allowed
    """
    allowed = {Role(r) for r in roles}
    if account.role not in allowed:
        names = ", ".join(sorted(r.value for r in allowed))
        raise AuthorizationError(f"Access denied: requires role {names}")


class IdentityService:
    """
    Account management on top of the storage layer.

    Example:
        >>> identity = IdentityService(storage, settings)
        >>> account = await identity.authenticate("a@b.com", "secret123")
        >>> token = identity.issue_token(account)
    """

    def __init__(self, storage: BaseStorage, settings: Settings):
        self.storage = storage
        self.settings = settings

    # =========================================================================
    # PASSWORDS
    # =========================================================================

    def hash_password(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.settings.bcrypt_rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Malformed hash in storage
            return False

    # =========================================================================
    # TOKENS
    # =========================================================================

    def issue_token(self, account: Account) -> str:
        expires = utcnow() + timedelta(minutes=self.settings.access_token_expire_minutes)
        claims = {"sub": account.id, "role": account.role.value, "exp": expires}
        return jwt.encode(claims, self.settings.jwt_secret_key, algorithm=self.settings.jwt_algorithm)

    async def resolve_token(self, token: str) -> Account:
        """
        Turn a bearer token back into its account.

        Raises:
            AuthenticationError: If the token is invalid, expired or its
                account no longer exists
        """
        try:
            claims = jwt.decode(
                token,
                self.settings.jwt_secret_key,
                algorithms=[self.settings.jwt_algorithm],
            )
        except JWTError as e:
            raise AuthenticationError("Token is not valid") from e

        account_id = claims.get("sub")
        if not account_id:
            raise AuthenticationError("Token is not valid")

        account = await self.storage.find_account_by_id(account_id)
        if account is None:
            raise AuthenticationError("Token is not valid")
        return account

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def register(self, payload: RegisterRequest, role: Role = Role.CUSTOMER) -> Account:
        """
        Create a new account.

        Raises:
            ConflictError: If the email is already registered
        """
        account = await self.storage.create_account(
            NewAccount(
                email=payload.email,
                name=payload.name,
                password_hash=await run_in_threadpool(self.hash_password, payload.password),
                role=role,
                phone=payload.phone or "",
                address=payload.address or "",
            )
        )
        logger.info(f"Registered {account.email} as {account.role.value}")
        return account

    async def authenticate(self, email: str, password: str) -> Account:
        account = await self.storage.find_account_by_email(email)
        if account is None or not await run_in_threadpool(self.verify_password, password, account.password_hash):
            logger.info(f"Failed login for {email}")
            raise AuthenticationError("Invalid credentials")
        return account

    async def update_profile(self, account: Account, payload: ProfileUpdate) -> Account:
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        updated = await self.storage.update_account(account.id, changes)
        if updated is None:
            raise NotFoundError("User not found")
        return updated

    async def change_password(self, account: Account, current_password: str, new_password: str) -> None:
        stored = await self.storage.find_account_by_id(account.id)
        if stored is None:
            raise NotFoundError("User not found")
        if not await run_in_threadpool(self.verify_password, current_password, stored.password_hash):
            raise AuthenticationError("Current password is incorrect")
        password_hash = await run_in_threadpool(self.hash_password, new_password)
        await self.storage.update_account(account.id, {"password_hash": password_hash})
        logger.info(f"Password changed for account {account.id}")

    async def list_accounts(self, actor: Account, role: Optional[Role] = None) -> list[Account]:
        authorize(actor, [Role.ADMIN])
        filters = {"role": role} if role is not None else {}
        return await self.storage.list_accounts(filters)

    async def set_role(self, actor: Account, account_id: str, role: Role) -> Account:
        authorize(actor, [Role.ADMIN])
        if account_id == actor.id and Role(role) != Role.ADMIN:
            raise ValidationError("Cannot change your own admin role")
        updated = await self.storage.update_account(account_id, {"role": Role(role)})
        if updated is None:
            raise NotFoundError("User not found")
        logger.info(f"Account {account_id} role -> {updated.role.value}")
        return updated

    async def delete_account(self, actor: Account, account_id: str) -> None:
        authorize(actor, [Role.ADMIN])
        if account_id == actor.id:
            raise ValidationError("Cannot delete your own account")
        if not await self.storage.delete_account(account_id):
            raise NotFoundError("User not found")
