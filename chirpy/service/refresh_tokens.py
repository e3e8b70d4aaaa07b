from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Optional, Protocol

from chirpy.logging import get_logger
from chirpy.service.clock import Clock, utc_now
from chirpy.service.errors import (
    TokenExpiredError,
    TokenNotFoundError,
    TokenRevokedError,
)
from chirpy.storage.models import RefreshToken

logger = get_logger(__name__)

# 32 random bytes, hex encoded to 64 characters
REFRESH_TOKEN_BYTES = 32


class RefreshTokenRepository(Protocol):
    def insert_refresh_token(
        self,
        token: str,
        user_id: str,
        expires_at: datetime,
        *,
        created_at: Optional[datetime] = None,
    ) -> RefreshToken: ...

    def get_refresh_token(self, token: str) -> Optional[RefreshToken]: ...

    def revoke_refresh_token(
        self, token: str, revoked_at: datetime
    ) -> Optional[RefreshToken]: ...

    def delete_refresh_tokens(self) -> int: ...


def make_refresh_token() -> str:
    return secrets.token_bytes(REFRESH_TOKEN_BYTES).hex()


class RefreshTokenStore:
    """Issues, validates and revokes opaque refresh tokens.

    Holds no rows itself; every check runs against a single read from the
    repository so a committed revoke is seen by the next validate.
    """

    def __init__(self, repository: RefreshTokenRepository, *, clock: Clock = utc_now) -> None:
        self.repository = repository
        self._clock = clock

    def issue(self, user_id: str, ttl: timedelta) -> str:
        now = self._clock()
        token = make_refresh_token()
        row = self.repository.insert_refresh_token(
            token, user_id, now + ttl, created_at=now
        )
        logger.info("refresh_token_issued", user_id=user_id, expires_at=row.expires_at.isoformat())
        return token

    def validate(self, token: str) -> str:
        """Return the owning user id or raise why the token is unusable."""
        row = self.repository.get_refresh_token(token)
        if row is None:
            raise TokenNotFoundError("refresh token not found")
        if row.is_revoked:
            raise TokenRevokedError("refresh token revoked")
        if row.is_expired(self._clock()):
            raise TokenExpiredError("refresh token expired")
        return row.user_id

    def revoke(self, token: str) -> None:
        row = self.repository.revoke_refresh_token(token, self._clock())
        if row is None:
            raise TokenNotFoundError("refresh token not found")
        logger.info("refresh_token_revoked", user_id=row.user_id)

    def purge_all(self) -> int:
        """Drop every refresh token row; callers gate this to dev platforms."""
        deleted = self.repository.delete_refresh_tokens()
        logger.warning("refresh_tokens_purged", count=deleted)
        return deleted


__all__ = [
    "REFRESH_TOKEN_BYTES",
    "RefreshTokenRepository",
    "RefreshTokenStore",
    "make_refresh_token",
]
