from __future__ import annotations

import contextlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Tuple

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from tokengate.logging import get_logger
from tokengate.service.errors import StoreUnavailable, TokenExpired, TokenNotFound
from tokengate.service.scopes import can_request_scope, parse_scope, serialize_scope
from tokengate.service.tokens import token_digest
from tokengate.storage.errors import ConstraintViolation
from tokengate.storage.models import Token, User, utcnow

SCHEMA_PATH = Path(__file__).resolve().with_name("schema.sql")

_REQUIRED_TABLES = ("users", "tokens")


def _aware(value: Optional[datetime]) -> datetime:
    if value is None:
        return utcnow()
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _row_to_user(row: dict[str, Any]) -> User:
    return User(
        id=int(row["id"]),
        first_name=row.get("first_name") or "",
        last_name=row.get("last_name") or "",
        email=row["email"],
        password_hash=row.get("password") or "",
        scope=parse_scope(row.get("scope")),
        created_at=_aware(row.get("created_at")),
        updated_at=_aware(row.get("updated_at")),
    )


class PostgresStore:
    """Postgres-backed user and token store.

    Every round-trip is bounded: the pool gives up acquiring a connection
    after ``timeout_seconds`` and each connection carries a matching
    ``statement_timeout``.
    """

    def __init__(
        self,
        dsn: str,
        *,
        timeout_seconds: float = 3.0,
        run_migrations: bool = False,
    ) -> None:
        self.dsn = dsn
        self.timeout_seconds = timeout_seconds
        self.logger = get_logger(__name__)
        statement_timeout_ms = max(int(timeout_seconds * 1000), 1)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=1,
            max_size=10,
            timeout=timeout_seconds,
            kwargs={
                "row_factory": dict_row,
                "autocommit": False,
                "connect_timeout": max(int(timeout_seconds), 1),
                "options": f"-c statement_timeout={statement_timeout_ms}",
            },
            open=True,
        )
        if run_migrations:
            self._apply_schema()
        self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    @contextlib.contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Translate driver failures into ``StoreUnavailable``."""
        try:
            yield
        except (PoolTimeout, errors.QueryCanceled, psycopg.OperationalError) as exc:
            self.logger.error(
                "store_unavailable",
                operation=operation,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise StoreUnavailable(f"{operation} failed: {exc}") from exc

    def _apply_schema(self) -> None:
        ddl = SCHEMA_PATH.read_text()
        with self._guard("apply_schema"), self._connect() as conn:
            conn.execute(ddl)
        self.logger.info("schema_applied", path=str(SCHEMA_PATH))

    def _verify_required_schema(self) -> None:
        """Ensure the user and token tables exist before serving requests."""

        with self._guard("verify_schema"), self._connect() as conn:
            missing_tables = []
            for table in _REQUIRED_TABLES:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)

        if missing_tables:
            raise RuntimeError(
                "Missing required Postgres tables: {}. Set RUN_MIGRATIONS=true or apply {}.".format(
                    ", ".join(sorted(missing_tables)), SCHEMA_PATH.name
                )
            )

    def verify_connection(self) -> None:
        with self._guard("verify_connection"), self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    # users
    def create_user(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password_hash: str,
        scope: Iterable[str] = (),
    ) -> User:
        try:
            with self._guard("create_user"), self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO users (first_name, last_name, email, password, scope)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        first_name,
                        last_name,
                        email.strip().lower(),
                        password_hash,
                        serialize_scope(scope),
                    ),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return _row_to_user(row)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._guard("get_user"), self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE id = %s", (user_id,)
            ).fetchone()
        return _row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._guard("get_user_by_email"), self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE lower(email) = %s",
                (email.strip().lower(),),
            ).fetchone()
        return _row_to_user(row) if row else None

    def list_users(self) -> List[User]:
        with self._guard("list_users"), self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM users ORDER BY last_name, first_name, id"
            ).fetchall()
        return [_row_to_user(row) for row in rows]

    def update_user(
        self,
        user_id: int,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
        scope: Optional[Iterable[str]] = None,
    ) -> Optional[User]:
        assignments: list[str] = []
        params: list[Any] = []
        if first_name is not None:
            assignments.append("first_name = %s")
            params.append(first_name)
        if last_name is not None:
            assignments.append("last_name = %s")
            params.append(last_name)
        if email is not None:
            assignments.append("email = %s")
            params.append(email.strip().lower())
        if scope is not None:
            assignments.append("scope = %s")
            params.append(serialize_scope(scope))
        assignments.append("updated_at = now()")
        params.append(user_id)
        try:
            with self._guard("update_user"), self._connect() as conn:
                row = conn.execute(
                    f"UPDATE users SET {', '.join(assignments)} WHERE id = %s RETURNING *",
                    tuple(params),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return _row_to_user(row) if row else None

    def update_password(self, user_id: int, password_hash: str) -> bool:
        with self._guard("update_password"), self._connect() as conn:
            result = conn.execute(
                "UPDATE users SET password = %s, updated_at = now() WHERE id = %s",
                (password_hash, user_id),
            )
            return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        # tokens go with the user through ON DELETE CASCADE
        with self._guard("delete_user"), self._connect() as conn:
            result = conn.execute("DELETE FROM users WHERE id = %s", (user_id,))
            return result.rowcount > 0

    # tokens
    def insert_token(self, token: Token, user: User) -> None:
        """Replace every token of ``user`` with ``token`` in one transaction.

        The owning user row is locked first so concurrent logins for the same
        user serialize; the last one to commit holds the only token. The token
        scope is checked against the locked row, so a scope narrowed after the
        credential check cannot be issued.
        """
        with self._guard("insert_token"), self._connect() as conn:
            with conn.transaction():
                owner = conn.execute(
                    "SELECT id, scope FROM users WHERE id = %s FOR UPDATE", (user.id,)
                ).fetchone()
                if not owner:
                    raise ConstraintViolation("token user missing", {"user_id": user.id})
                can_request_scope(parse_scope(owner.get("scope")), token.scope)
                conn.execute("DELETE FROM tokens WHERE user_id = %s", (user.id,))
                row = conn.execute(
                    """
                    INSERT INTO tokens (user_id, token_hash, scope, expiry, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        user.id,
                        token.digest,
                        serialize_scope(token.scope),
                        token.expiry,
                        token.created_at,
                    ),
                ).fetchone()
        token.id = int(row["id"]) if row else None

    def resolve_token(
        self, plaintext: str, *, now: Optional[datetime] = None
    ) -> Tuple[User, Token]:
        digest = token_digest(plaintext)
        expired: Optional[Token] = None
        with self._guard("resolve_token"), self._connect() as conn:
            row = conn.execute(
                """
                SELECT
                    t.id AS token_id, t.token_hash, t.scope AS token_scope,
                    t.expiry, t.created_at AS token_created_at, u.*
                FROM tokens t
                INNER JOIN users u ON u.id = t.user_id
                WHERE t.token_hash = %s
                """,
                (digest,),
            ).fetchone()
            if not row:
                raise TokenNotFound()
            token = Token(
                id=int(row["token_id"]),
                user_id=int(row["id"]),
                digest=row["token_hash"],
                scope=parse_scope(row.get("token_scope")),
                expiry=_aware(row["expiry"]),
                created_at=_aware(row.get("token_created_at")),
            )
            if token.is_expired(now):
                conn.execute("DELETE FROM tokens WHERE id = %s", (token.id,))
                expired = token
        if expired is not None:
            self.logger.info(
                "token_expired_removed",
                user_id=expired.user_id,
                token_digest_prefix=digest[:8],
            )
            raise TokenExpired()
        return _row_to_user(row), token

    def delete_token(self, digest: str) -> bool:
        with self._guard("delete_token"), self._connect() as conn:
            result = conn.execute("DELETE FROM tokens WHERE token_hash = %s", (digest,))
            return result.rowcount > 0

    def delete_tokens_for_user(self, user_id: int) -> int:
        with self._guard("delete_tokens_for_user"), self._connect() as conn:
            result = conn.execute("DELETE FROM tokens WHERE user_id = %s", (user_id,))
            return result.rowcount
