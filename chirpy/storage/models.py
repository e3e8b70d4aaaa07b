from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from chirpy.service.clock import utc_now


@dataclass
class User:
    id: str
    email: str
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class RefreshToken:
    token: str
    user_id: str
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    revoked_at: Optional[datetime] = None

    @classmethod
    def new(
        cls, token: str, user_id: str, expires_at: datetime, *, now: datetime | None = None
    ) -> "RefreshToken":
        now = now or utc_now()
        return cls(
            token=token,
            user_id=user_id,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class Chirp:
    id: str
    body: str
    user_id: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def new(cls, body: str, user_id: str) -> "Chirp":
        now = utc_now()
        return cls(
            id=str(uuid.uuid4()),
            body=body,
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )
