from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from tokengate.logging import get_logger
from tokengate.service.errors import TokenExpired, TokenNotFound
from tokengate.service.scopes import can_request_scope, normalize_scope
from tokengate.service.tokens import token_digest
from tokengate.storage.errors import ConstraintViolation
from tokengate.storage.models import Token, User, utcnow


class MemoryStore:
    """In-process user and token store for tests and local development.

    All mutations happen under one re-entrant lock, which plays the part of
    the database transaction in ``PostgresStore``.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, User] = {}
        # token rows keyed by digest
        self.tokens: Dict[str, Token] = {}
        self._user_id_seq = 0
        self._token_id_seq = 0
        self._data_lock = threading.RLock()

    def verify_connection(self) -> None:
        return None

    def close(self) -> None:
        return None

    # users
    def create_user(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password_hash: str,
        scope: Iterable[str] = (),
    ) -> User:
        normalized_email = email.strip().lower()
        with self._data_lock:
            if any(u.email == normalized_email for u in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            self._user_id_seq += 1
            now = utcnow()
            user = User(
                id=self._user_id_seq,
                first_name=first_name,
                last_name=last_name,
                email=normalized_email,
                password_hash=password_hash,
                scope=normalize_scope(scope),
                created_at=now,
                updated_at=now,
            )
            self.users[user.id] = user
            return replace(user)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        normalized_email = email.strip().lower()
        with self._data_lock:
            user = next(
                (u for u in self.users.values() if u.email == normalized_email), None
            )
            return replace(user) if user else None

    def list_users(self) -> List[User]:
        with self._data_lock:
            ordered = sorted(
                self.users.values(), key=lambda u: (u.last_name, u.first_name, u.id)
            )
            return [replace(u) for u in ordered]

    def update_user(
        self,
        user_id: int,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
        scope: Optional[Iterable[str]] = None,
    ) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            if email is not None:
                normalized_email = email.strip().lower()
                if any(
                    u.email == normalized_email and u.id != user_id
                    for u in self.users.values()
                ):
                    raise ConstraintViolation("email already exists", {"field": "email"})
                user.email = normalized_email
            if first_name is not None:
                user.first_name = first_name
            if last_name is not None:
                user.last_name = last_name
            if scope is not None:
                user.scope = normalize_scope(scope)
            user.updated_at = utcnow()
            return replace(user)

    def update_password(self, user_id: int, password_hash: str) -> bool:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return False
            user.password_hash = password_hash
            user.updated_at = utcnow()
            return True

    def delete_user(self, user_id: int) -> bool:
        with self._data_lock:
            if user_id not in self.users:
                return False
            self.users.pop(user_id, None)
            self.delete_tokens_for_user(user_id)
            return True

    # tokens
    def insert_token(self, token: Token, user: User) -> None:
        """Replace every token of ``user`` with ``token`` in one step.

        The scope is checked against the stored user, not the caller's copy.
        """
        with self._data_lock:
            if user.id not in self.users:
                raise ConstraintViolation("token user missing", {"user_id": user.id})
            can_request_scope(self.users[user.id].scope, token.scope)
            self.delete_tokens_for_user(user.id)
            self._token_id_seq += 1
            self.tokens[token.digest] = Token(
                id=self._token_id_seq,
                user_id=user.id,
                digest=token.digest,
                scope=normalize_scope(token.scope),
                expiry=token.expiry,
                created_at=token.created_at,
            )
            token.id = self._token_id_seq

    def resolve_token(
        self, plaintext: str, *, now: Optional[datetime] = None
    ) -> Tuple[User, Token]:
        digest = token_digest(plaintext)
        with self._data_lock:
            row = self.tokens.get(digest)
            user = self.users.get(row.user_id) if row else None
            if not row or not user:
                raise TokenNotFound()
            if row.is_expired(now):
                self.tokens.pop(digest, None)
                self.logger.info(
                    "token_expired_removed",
                    user_id=row.user_id,
                    token_digest_prefix=digest[:8],
                )
                raise TokenExpired()
            return replace(user), replace(row)

    def delete_token(self, digest: str) -> bool:
        with self._data_lock:
            return self.tokens.pop(digest, None) is not None

    def delete_tokens_for_user(self, user_id: int) -> int:
        with self._data_lock:
            stale = [d for d, t in self.tokens.items() if t.user_id == user_id]
            for digest in stale:
                self.tokens.pop(digest, None)
            return len(stale)
