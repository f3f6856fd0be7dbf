from __future__ import annotations

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from tokengate.config import Settings
from tokengate.logging import get_logger
from tokengate.service.errors import MalformedPasswordHash

logger = get_logger(__name__)


class PasswordHasherService:
    """argon2id hashing; cost parameters only apply when a hash is created."""

    algorithm = "argon2id"

    def __init__(self, settings: Settings) -> None:
        self._hasher = PasswordHasher(
            time_cost=settings.password_time_cost,
            memory_cost=settings.password_memory_cost,
            parallelism=settings.password_parallelism,
            type=Type.ID,
        )

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, stored_hash: str, candidate: str) -> bool:
        """Return whether ``candidate`` matches; raise only for an unparsable hash."""
        try:
            return self._hasher.verify(stored_hash, candidate)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError) as exc:
            # a parsable header with a corrupt salt or digest lands here too
            logger.error("password_hash_malformed", error=str(exc))
            raise MalformedPasswordHash("stored password hash is malformed") from exc

    def needs_rehash(self, stored_hash: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(stored_hash)
        except InvalidHashError:
            return False
