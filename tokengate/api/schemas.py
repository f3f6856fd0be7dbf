from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from tokengate.storage.models import Token, User

MAX_NAME_LENGTH = 255
MAX_SCOPE_ITEMS = 64


def _normalize_unicode(value: str) -> str:
    """Strip zero-width and bidi override characters, then apply NFKC."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    cleaned = "".join(c for c in value if c not in zero_width)
    bidi_overrides = set(chr(c) for c in range(0x202A, 0x202F))
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(c for c in cleaned if c not in bidi_overrides)
    return unicodedata.normalize("NFKC", cleaned)


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    if len(normalized) < 3:
        raise ValueError("email address too short")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64:
        raise ValueError("email local part too long")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_password_strength(value: str) -> str:
    if len(value) < 8:
        raise ValueError("password must be at least 8 characters")
    if len(value) > 128:
        raise ValueError("password must be at most 128 characters")
    return value


def _validate_scope_items(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return None
    for item in value:
        if not item or not item.strip():
            raise ValueError("scope entries must be non-empty strings")
    return [item.strip() for item in value]


class MessageResponse(BaseModel):
    """Body shared by every response: ``{"error": bool, "message": str}``."""

    error: bool = False
    message: str = ""


class ErrorResponse(MessageResponse):
    error: bool = True


# authentication


class TokenRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1, max_length=1024)
    scope: List[str] = Field(default_factory=list, max_length=MAX_SCOPE_ITEMS)
    expiry: int = Field(
        default=0,
        description="Minutes added to the base lifetime; the accepted range is configured",
    )

    @field_validator("email")
    @classmethod
    def _validate_token_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("scope")
    @classmethod
    def _validate_token_scope(cls, value: List[str]) -> List[str]:
        return _validate_scope_items(value) or []


class IssuedToken(BaseModel):
    token: str
    expiry: datetime
    scope: List[str]

    @classmethod
    def from_token(cls, token: Token) -> "IssuedToken":
        return cls(token=token.plaintext or "", expiry=token.expiry, scope=list(token.scope))


class TokenResponse(MessageResponse):
    authentication_token: IssuedToken


# users


class UserResponse(BaseModel):
    """Public view of a user; the password hash never leaves the service."""

    id: int
    first_name: str
    last_name: str
    email: str
    scope: List[str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            scope=list(user.scope),
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class UserEnvelope(MessageResponse):
    user: UserResponse


class UserListResponse(MessageResponse):
    users: List[UserResponse]


class CreateUserRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=MAX_NAME_LENGTH)
    last_name: str = Field(..., min_length=1, max_length=MAX_NAME_LENGTH)
    email: str
    password: str
    scope: Optional[List[str]] = Field(
        default=None,
        max_length=MAX_SCOPE_ITEMS,
        description="Granted scope; omitted means the configured default",
    )

    @field_validator("email")
    @classmethod
    def _validate_create_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_create_password(cls, value: str) -> str:
        return _validate_password_strength(value)

    @field_validator("scope")
    @classmethod
    def _validate_create_scope(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _validate_scope_items(value)


class UpdateUserRequest(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=MAX_NAME_LENGTH)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=MAX_NAME_LENGTH)
    email: Optional[str] = None
    password: Optional[str] = None
    scope: Optional[List[str]] = Field(default=None, max_length=MAX_SCOPE_ITEMS)

    @field_validator("email")
    @classmethod
    def _validate_update_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_update_password(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        return _validate_password_strength(value)

    @field_validator("scope")
    @classmethod
    def _validate_update_scope(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _validate_scope_items(value)
