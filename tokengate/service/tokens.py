from __future__ import annotations

import base64
import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Iterable, Optional

from tokengate.config import Settings
from tokengate.logging import get_logger
from tokengate.service.errors import RandomSourceExhausted
from tokengate.service.scopes import normalize_scope
from tokengate.storage.models import Token, utcnow

logger = get_logger(__name__)

TOKEN_BYTES = 16
# 16 bytes -> ceil(128 / 5) base-32 characters once padding is stripped
TOKEN_LENGTH = 26


def encode_token(raw: bytes) -> str:
    return base64.b32encode(raw).decode("ascii").rstrip("=")


def decode_token(plaintext: str) -> bytes:
    padding = "=" * ((8 - len(plaintext) % 8) % 8)
    return base64.b32decode(plaintext + padding, casefold=False)


def token_digest(plaintext: str) -> str:
    """Hex SHA-256 of the plaintext; the only form a token is stored in."""
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def token_ttl(extension_minutes: int, settings: Settings) -> timedelta:
    """Base lifetime plus the caller's extension, clamped to the configured range."""
    extension = max(
        settings.token_min_extension_minutes,
        min(int(extension_minutes), settings.token_max_extension_minutes),
    )
    return timedelta(minutes=settings.token_base_ttl_minutes + extension)


def generate_token(
    user_id: int,
    ttl: timedelta,
    scope: Iterable[str],
    *,
    now: Optional[datetime] = None,
) -> Token:
    """Create a fresh opaque token; the plaintext is only on the returned object."""
    try:
        raw = secrets.token_bytes(TOKEN_BYTES)
    except (OSError, NotImplementedError) as exc:
        logger.error("token_random_source_failed", user_id=user_id, error=str(exc))
        raise RandomSourceExhausted("random source unavailable") from exc
    plaintext = encode_token(raw)
    issued_at = now or utcnow()
    return Token(
        user_id=user_id,
        digest=token_digest(plaintext),
        scope=normalize_scope(scope),
        expiry=issued_at + ttl,
        plaintext=plaintext,
        created_at=issued_at,
    )
