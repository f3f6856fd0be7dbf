from __future__ import annotations

from typing import Callable, Optional

from fastapi import APIRouter, Depends, Header, Path

from tokengate.api.schemas import (
    CreateUserRequest,
    IssuedToken,
    MessageResponse,
    TokenRequest,
    TokenResponse,
    UpdateUserRequest,
    UserEnvelope,
    UserListResponse,
    UserResponse,
)
from tokengate.config import Settings
from tokengate.logging import get_logger
from tokengate.service.errors import UnknownScope
from tokengate.service.gate import AuthenticatedRequest
from tokengate.service.runtime import get_runtime
from tokengate.service.scopes import validate_vocabulary

logger = get_logger(__name__)

router = APIRouter()

READ_A = ("read:a",)
READ_A_WRITE_A = ("read:a", "write:a")
ROUTE_SCOPES = (READ_A, READ_A_WRITE_A)


def require_scope(*scopes: str) -> Callable[..., AuthenticatedRequest]:
    """Build a dependency that admits only bearers holding every one of ``scopes``.

    With no scopes any authenticated caller passes.
    """

    async def _authenticated(
        authorization: Optional[str] = Header(None),
    ) -> AuthenticatedRequest:
        runtime = get_runtime()
        return await runtime.gate.authenticate(authorization, scopes)

    return _authenticated


def require_full_scope() -> Callable[..., AuthenticatedRequest]:
    """Build a dependency that admits only bearers holding the whole vocabulary.

    The vocabulary is read from the settings on each request, so adding a
    capability to ``VALID_SCOPES`` also raises the bar for the admin routes.
    """

    async def _authenticated(
        authorization: Optional[str] = Header(None),
    ) -> AuthenticatedRequest:
        runtime = get_runtime()
        return await runtime.gate.authenticate(
            authorization, runtime.settings.valid_scopes
        )

    return _authenticated


def check_route_scopes(settings: Settings) -> None:
    """Fail startup when a fixed route scope is missing from ``VALID_SCOPES``."""
    for scopes in ROUTE_SCOPES:
        try:
            validate_vocabulary(scopes, settings.valid_scopes)
        except UnknownScope as exc:
            raise RuntimeError(
                f"route scope '{exc.scope}' is not in VALID_SCOPES"
            ) from exc


def _greeting(principal: AuthenticatedRequest) -> MessageResponse:
    user = principal.user
    return MessageResponse(
        message=f"Hello {user.first_name} {user.last_name} ({user.email})!"
    )


@router.get("/hello", response_model=MessageResponse)
async def hello() -> MessageResponse:
    return MessageResponse(message="Hello!")


@router.post("/authenticate", response_model=TokenResponse)
@router.post("/api/authenticate", response_model=TokenResponse)
async def authenticate(body: TokenRequest) -> TokenResponse:
    runtime = get_runtime()
    user, token = await runtime.auth.authenticate(
        body.email, body.password, body.scope, body.expiry
    )
    return TokenResponse(
        message=f"token for {user.email} created",
        authentication_token=IssuedToken.from_token(token),
    )


@router.post("/api/logout", response_model=MessageResponse)
async def logout(
    principal: AuthenticatedRequest = Depends(require_scope()),
) -> MessageResponse:
    runtime = get_runtime()
    await runtime.auth.logout(principal.token)
    return MessageResponse(message="token revoked")


@router.get("/api/hello-user", response_model=MessageResponse)
async def hello_user(
    principal: AuthenticatedRequest = Depends(require_scope()),
) -> MessageResponse:
    return _greeting(principal)


@router.get("/api/read-a/hello-user", response_model=MessageResponse)
async def hello_user_read_a(
    principal: AuthenticatedRequest = Depends(require_scope(*READ_A)),
) -> MessageResponse:
    return _greeting(principal)


@router.get("/api/read-a-write-a/hello-user", response_model=MessageResponse)
async def hello_user_read_a_write_a(
    principal: AuthenticatedRequest = Depends(require_scope(*READ_A_WRITE_A)),
) -> MessageResponse:
    return _greeting(principal)


# admin


admin_router = APIRouter(prefix="/api/admin")


@admin_router.get("/hello-user", response_model=MessageResponse)
async def hello_admin(
    principal: AuthenticatedRequest = Depends(require_full_scope()),
) -> MessageResponse:
    return _greeting(principal)


@admin_router.get("/users", response_model=UserListResponse)
async def list_users(
    principal: AuthenticatedRequest = Depends(require_full_scope()),
) -> UserListResponse:
    runtime = get_runtime()
    users = await runtime.auth.list_users()
    return UserListResponse(
        message=f"{len(users)} users",
        users=[UserResponse.from_user(u) for u in users],
    )


@admin_router.post("/users", response_model=UserEnvelope)
async def create_user(
    body: CreateUserRequest,
    principal: AuthenticatedRequest = Depends(require_full_scope()),
) -> UserEnvelope:
    runtime = get_runtime()
    user = await runtime.auth.create_user(
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        password=body.password,
        scope=body.scope,
    )
    logger.info("admin_user_created", actor_id=principal.user_id, user_id=user.id)
    return UserEnvelope(
        message="user successfully created", user=UserResponse.from_user(user)
    )


@admin_router.get("/users/{user_id}", response_model=UserEnvelope)
async def get_user(
    user_id: int = Path(..., gt=0),
    principal: AuthenticatedRequest = Depends(require_full_scope()),
) -> UserEnvelope:
    runtime = get_runtime()
    user = await runtime.auth.get_user(user_id)
    return UserEnvelope(message="user found", user=UserResponse.from_user(user))


@admin_router.put("/users/{user_id}", response_model=UserEnvelope)
async def update_user(
    body: UpdateUserRequest,
    user_id: int = Path(..., gt=0),
    principal: AuthenticatedRequest = Depends(require_full_scope()),
) -> UserEnvelope:
    runtime = get_runtime()
    user = await runtime.auth.update_user(
        user_id,
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        scope=body.scope,
        password=body.password,
    )
    logger.info("admin_user_updated", actor_id=principal.user_id, user_id=user_id)
    return UserEnvelope(
        message="user successfully updated", user=UserResponse.from_user(user)
    )


@admin_router.delete("/users/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: int = Path(..., gt=0),
    principal: AuthenticatedRequest = Depends(require_full_scope()),
) -> MessageResponse:
    runtime = get_runtime()
    await runtime.auth.delete_user(user_id)
    logger.info("admin_user_deleted", actor_id=principal.user_id, user_id=user_id)
    return MessageResponse(message="user successfully deleted")


router.include_router(admin_router)
