from __future__ import annotations

from typing import Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import (
    HashingError as Argon2HashingError,
    InvalidHashError,
    VerificationError,
    VerifyMismatchError,
)

from chirpy.config import Settings, default_parallelism
from chirpy.logging import get_logger
from chirpy.service.errors import HashingError

logger = get_logger(__name__)

PASSWORD_ALGO = "argon2id"


class PasswordHasherService:
    """argon2id credential hashing.

    The stored value is the self-describing PHC string produced by argon2, so
    salt and cost parameters travel with the hash and verification never needs
    the current settings.
    """

    def __init__(
        self,
        *,
        memory_cost: int = 128 * 1024,
        time_cost: int = 4,
        parallelism: Optional[int] = None,
        salt_len: int = 16,
        hash_len: int = 32,
    ) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism or default_parallelism(),
            hash_len=hash_len,
            salt_len=salt_len,
            type=Type.ID,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordHasherService":
        return cls(
            memory_cost=settings.argon2_memory_cost_kib,
            time_cost=settings.argon2_time_cost,
            parallelism=settings.argon2_parallelism,
            salt_len=settings.argon2_salt_len,
            hash_len=settings.argon2_hash_len,
        )

    def hash_password(self, password: str) -> str:
        try:
            return self._hasher.hash(password)
        except Argon2HashingError as exc:
            logger.error("password_hash_failed", error=str(exc))
            raise HashingError("password hashing failed") from exc

    def verify_password(self, password: str, stored_hash: str) -> bool:
        """Return whether ``password`` matches ``stored_hash``.

        A mismatch is ``False``; a stored value that is not a usable argon2
        hash raises ``HashingError`` so callers can tell corrupt storage from a
        wrong password.
        """
        try:
            return self._hasher.verify(stored_hash, password)
        except VerifyMismatchError:
            return False
        except InvalidHashError as exc:
            logger.error("password_hash_malformed", error=str(exc))
            raise HashingError("stored password hash is malformed") from exc
        except VerificationError as exc:
            logger.error("password_verification_error", error=str(exc))
            raise HashingError("password verification failed") from exc

    def needs_rehash(self, stored_hash: str) -> bool:
        """True when ``stored_hash`` was made with different cost parameters."""
        try:
            return self._hasher.check_needs_rehash(stored_hash)
        except InvalidHashError as exc:
            raise HashingError("stored password hash is malformed") from exc


__all__ = ["PASSWORD_ALGO", "PasswordHasherService"]
