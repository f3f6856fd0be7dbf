"""Bearer-token gate for protected routes.

Per request the gate moves through::

    no header / malformed header / wrong length -> MalformedAuthHeader (401)
    well-formed -> resolve: not found | expired  -> TokenNotFound | TokenExpired (401)
    resolved    -> scope check: insufficient     -> InsufficientScope (401 or 403)
                                sufficient       -> AuthenticatedRequest

Header problems are rejected before the store is touched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from tokengate.config import Settings
from tokengate.logging import get_logger
from tokengate.service.auth import TokenStore, run_bounded
from tokengate.service.errors import InsufficientScope, MalformedAuthHeader
from tokengate.service.scopes import Scope, has_scope, normalize_scope
from tokengate.service.tokens import TOKEN_LENGTH
from tokengate.storage.models import Token, User

logger = get_logger(__name__)

BEARER_PREFIX = "Bearer"


@dataclass(frozen=True)
class AuthenticatedRequest:
    """Principal attached to a request that passed the gate."""

    user: User
    token: Token

    @property
    def user_id(self) -> int:
        return self.user.id

    @property
    def scope(self) -> Scope:
        return self.token.scope


def extract_bearer(header: Optional[str]) -> str:
    """Return the token from ``Bearer <token>`` or raise ``MalformedAuthHeader``."""
    if not header:
        raise MalformedAuthHeader("no authorization header received")
    parts = header.split(" ")
    if len(parts) != 2 or parts[0] != BEARER_PREFIX:
        raise MalformedAuthHeader("malformed authorization header")
    token = parts[1]
    if len(token) != TOKEN_LENGTH:
        raise MalformedAuthHeader("authentication token wrong size")
    return token


class TokenGate:
    def __init__(self, store: TokenStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    async def authenticate(
        self,
        authorization: Optional[str],
        required_scope: Iterable[str] = (),
    ) -> AuthenticatedRequest:
        plaintext = extract_bearer(authorization)
        user, token = await run_bounded(
            "resolve_token",
            self.store.resolve_token,
            plaintext,
            timeout=self.settings.store_timeout_seconds,
        )
        required = normalize_scope(required_scope)
        try:
            has_scope(token.scope, required)
        except InsufficientScope as exc:
            if self.settings.insufficient_scope_status == 403:
                exc.status_code = 403
                exc.error_code = "forbidden"
            logger.warning(
                "gate_insufficient_scope",
                user_id=user.id,
                missing=exc.missing,
                required=list(required),
            )
            raise
        return AuthenticatedRequest(user=user, token=token)
