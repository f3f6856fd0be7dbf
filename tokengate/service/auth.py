from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable, List, Optional, Protocol, Tuple, TypeVar

from tokengate.config import Settings
from tokengate.logging import get_logger
from tokengate.service.errors import (
    InvalidCredentials,
    NotFoundError,
    StoreUnavailable,
    ValidationError,
)
from tokengate.service.passwords import PasswordHasherService
from tokengate.service.scopes import can_request_scope, validate_vocabulary
from tokengate.service.tokens import generate_token, token_digest, token_ttl
from tokengate.storage.models import Token, User

logger = get_logger(__name__)

T = TypeVar("T")


class UserStore(Protocol):
    def create_user(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password_hash: str,
        scope: Iterable[str] = (),
    ) -> User: ...

    def get_user(self, user_id: int) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def list_users(self) -> List[User]: ...

    def update_user(
        self,
        user_id: int,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
        scope: Optional[Iterable[str]] = None,
    ) -> Optional[User]: ...

    def update_password(self, user_id: int, password_hash: str) -> bool: ...

    def delete_user(self, user_id: int) -> bool: ...


class TokenStore(Protocol):
    def insert_token(self, token: Token, user: User) -> None: ...

    def resolve_token(self, plaintext: str) -> Tuple[User, Token]: ...

    def delete_token(self, digest: str) -> bool: ...

    def delete_tokens_for_user(self, user_id: int) -> int: ...


class AuthStore(UserStore, TokenStore, Protocol):
    pass


async def run_bounded(
    operation: str,
    func: Callable[..., T],
    *args: Any,
    timeout: float,
    **kwargs: Any,
) -> T:
    """Run a blocking store call off the event loop, bounded by ``timeout``."""
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args, **kwargs), timeout
        )
    except asyncio.TimeoutError as exc:
        logger.error("store_call_timeout", operation=operation, timeout=timeout)
        raise StoreUnavailable(f"{operation} timed out after {timeout}s") from exc


class AuthService:
    """Credential checks, token issuance and user management.

    Store access goes through ``run_bounded`` so a stalled backend fails
    fast instead of holding the request.
    """

    def __init__(
        self,
        store: AuthStore,
        settings: Settings,
        *,
        hasher: Optional[PasswordHasherService] = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.hasher = hasher or PasswordHasherService(settings)
        self.logger = logger
        self._dummy_hash: Optional[str] = None

    def _burn_verification(self, password: str) -> None:
        # unknown emails pay the same hashing cost as wrong passwords
        if self._dummy_hash is None:
            self._dummy_hash = self.hasher.hash("tokengate-unknown-user")
        self.hasher.verify(self._dummy_hash, password)

    async def _store(self, operation: str, *args: Any, **kwargs: Any) -> Any:
        func = getattr(self.store, operation)
        return await run_bounded(
            operation, func, *args, timeout=self.settings.store_timeout_seconds, **kwargs
        )

    async def authenticate(
        self,
        email: str,
        password: str,
        scope: Optional[Iterable[str]] = None,
        expiry_minutes: int = 0,
    ) -> Tuple[User, Token]:
        """Check credentials and issue the user's single active token."""
        requested = validate_vocabulary(scope or (), self.settings.valid_scopes)
        low = self.settings.token_min_extension_minutes
        high = self.settings.token_max_extension_minutes
        if not low <= expiry_minutes <= high:
            raise ValidationError(
                f"expiry must be between {low} and {high} minutes",
                detail={"expiry": expiry_minutes},
            )
        user: Optional[User] = await self._store("get_user_by_email", email)
        if not user:
            self._burn_verification(password)
            self.logger.warning("authenticate_unknown_email")
            raise InvalidCredentials()
        if not self.hasher.verify(user.password_hash, password):
            self.logger.warning("authenticate_bad_password", user_id=user.id)
            raise InvalidCredentials()

        can_request_scope(user.scope, requested)

        ttl = token_ttl(expiry_minutes, self.settings)
        token = generate_token(user.id, ttl, requested)
        await self._store("insert_token", token, user)

        if self.hasher.needs_rehash(user.password_hash):
            await self._store("update_password", user.id, self.hasher.hash(password))
            self.logger.info("password_rehashed", user_id=user.id)

        self.logger.info(
            "token_issued",
            user_id=user.id,
            token_scope=list(token.scope),
            token_ttl_minutes=int(ttl.total_seconds() // 60),
            expiry=token.expiry.isoformat(),
        )
        return user, token

    async def resolve(self, plaintext: str) -> Tuple[User, Token]:
        return await self._store("resolve_token", plaintext)

    async def logout(self, token: Token) -> bool:
        removed = await self._store("delete_token", token.digest)
        self.logger.info("token_revoked", user_id=token.user_id, removed=removed)
        return removed

    async def logout_plaintext(self, plaintext: str) -> bool:
        return await self._store("delete_token", token_digest(plaintext))

    # user management
    async def create_user(
        self,
        *,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        scope: Optional[Iterable[str]] = None,
    ) -> User:
        granted = validate_vocabulary(
            scope if scope is not None else self.settings.user_scope_default(),
            self.settings.valid_scopes,
        )
        user = await self._store(
            "create_user",
            first_name,
            last_name,
            email,
            self.hasher.hash(password),
            granted,
        )
        self.logger.info("user_created", user_id=user.id, scope=list(user.scope))
        return user

    async def get_user(self, user_id: int) -> User:
        user = await self._store("get_user", user_id)
        if not user:
            raise NotFoundError("user not found", detail={"user_id": user_id})
        return user

    async def list_users(self) -> List[User]:
        return await self._store("list_users")

    async def update_user(
        self,
        user_id: int,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
        scope: Optional[Iterable[str]] = None,
        password: Optional[str] = None,
    ) -> User:
        granted = (
            validate_vocabulary(scope, self.settings.valid_scopes)
            if scope is not None
            else None
        )
        user = await self._store(
            "update_user",
            user_id,
            first_name=first_name,
            last_name=last_name,
            email=email,
            scope=granted,
        )
        if not user:
            raise NotFoundError("user not found", detail={"user_id": user_id})
        if password:
            await self._store("update_password", user_id, self.hasher.hash(password))
        if password or granted is not None:
            # outstanding tokens may carry scope or credentials that no longer hold
            revoked = await self._store("delete_tokens_for_user", user_id)
            self.logger.info("user_tokens_revoked", user_id=user_id, revoked=revoked)
        self.logger.info("user_updated", user_id=user_id)
        return user

    async def delete_user(self, user_id: int) -> None:
        removed = await self._store("delete_user", user_id)
        if not removed:
            raise NotFoundError("user not found", detail={"user_id": user_id})
        self.logger.info("user_deleted", user_id=user_id)


__all__ = [
    "AuthService",
    "AuthStore",
    "TokenStore",
    "UserStore",
    "run_bounded",
]
