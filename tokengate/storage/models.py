from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: int
    first_name: str
    last_name: str
    email: str
    password_hash: str = ""
    scope: Tuple[str, ...] = ()
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Token:
    """One authentication grant.

    ``plaintext`` is only populated on the instance handed back by the
    generator; stores persist and return the digest alone.
    """

    user_id: int
    digest: str
    scope: Tuple[str, ...]
    expiry: datetime
    plaintext: Optional[str] = field(default=None, repr=False)
    id: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        # the expiry instant itself is no longer valid
        return (now or utcnow()) >= self.expiry
