from __future__ import annotations

import json
import threading
import uuid
from dataclasses import asdict, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from chirpy.logging import get_logger
from chirpy.service.clock import utc_now
from chirpy.storage.errors import ConstraintViolation
from chirpy.storage.models import Chirp, RefreshToken, User

_DATETIME_FIELDS = ("created_at", "updated_at", "expires_at", "revoked_at")


class MemoryStore:
    """In-process backing store for development and tests.

    Every read and write runs under one re-entrant lock, which is what makes
    refresh-token validate/revoke linearizable here. Reads hand out copies so
    callers never observe a row changing underneath them.
    """

    def __init__(self, state_dir: str | None = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.credentials: Dict[str, tuple[str, str]] = {}
        self.refresh_tokens: Dict[str, RefreshToken] = {}
        self.chirps: Dict[str, Chirp] = {}
        self._data_lock = threading.RLock()
        self.state_dir = Path(state_dir) if state_dir else None
        if self.state_dir is not None:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            self._load_state()

    # users / credentials
    def create_user(self, email: str) -> User:
        with self._data_lock:
            if any(existing.email == email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", field="email")
            user = User(id=str(uuid.uuid4()), email=email)
            self.users[user.id] = user
            self._persist_state()
            return replace(user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            user = next((u for u in self.users.values() if u.email == email), None)
            return replace(user) if user else None

    def replace_credentials(
        self, user_id: str, email: str, password_hash: str, password_algo: str
    ) -> Optional[User]:
        """Swap email and password hash together; nothing changes on failure."""
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            if any(u.email == email and u.id != user_id for u in self.users.values()):
                raise ConstraintViolation("email already exists", field="email")
            user.email = email
            user.updated_at = utc_now()
            self.credentials[user_id] = (password_hash, password_algo)
            self._persist_state()
            return replace(user)

    def delete_users(self) -> int:
        """Delete every user together with their credentials, chirps and tokens."""
        with self._data_lock:
            count = len(self.users)
            self.users.clear()
            self.credentials.clear()
            self.chirps.clear()
            self.refresh_tokens.clear()
            self._persist_state()
            return count

    def save_password(self, user_id: str, password_hash: str, password_algo: str) -> None:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation(
                    "user not found for credentials", field="user_id"
                )
            self.credentials[user_id] = (password_hash, password_algo)
            self._persist_state()

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]:
        with self._data_lock:
            return self.credentials.get(user_id)

    # refresh tokens
    def insert_refresh_token(
        self,
        token: str,
        user_id: str,
        expires_at: datetime,
        *,
        created_at: Optional[datetime] = None,
    ) -> RefreshToken:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("user does not exist", field="user_id")
            if token in self.refresh_tokens:
                raise ConstraintViolation("refresh token already exists", field="token")
            row = RefreshToken.new(token, user_id, expires_at, now=created_at)
            self.refresh_tokens[token] = row
            self._persist_state()
            return replace(row)

    def get_refresh_token(self, token: str) -> Optional[RefreshToken]:
        with self._data_lock:
            row = self.refresh_tokens.get(token)
            return replace(row) if row else None

    def revoke_refresh_token(
        self, token: str, revoked_at: datetime
    ) -> Optional[RefreshToken]:
        """Stamp ``revoked_at`` unless already set; ``None`` for unknown tokens."""
        with self._data_lock:
            row = self.refresh_tokens.get(token)
            if not row:
                return None
            if row.revoked_at is None:
                row.revoked_at = revoked_at
                row.updated_at = revoked_at
                self._persist_state()
            return replace(row)

    def delete_refresh_tokens(self) -> int:
        with self._data_lock:
            count = len(self.refresh_tokens)
            self.refresh_tokens.clear()
            self._persist_state()
            return count

    # chirps
    def create_chirp(self, body: str, user_id: str) -> Chirp:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("chirp author missing", field="user_id")
            chirp = Chirp.new(body, user_id)
            self.chirps[chirp.id] = chirp
            self._persist_state()
            return replace(chirp)

    def get_chirp(self, chirp_id: str) -> Optional[Chirp]:
        with self._data_lock:
            chirp = self.chirps.get(chirp_id)
            return replace(chirp) if chirp else None

    def list_chirps(
        self, author_id: Optional[str] = None, *, descending: bool = False
    ) -> List[Chirp]:
        with self._data_lock:
            results = [
                replace(c)
                for c in self.chirps.values()
                if author_id is None or c.user_id == author_id
            ]
        return sorted(results, key=lambda c: c.created_at, reverse=descending)

    def delete_chirp(self, chirp_id: str) -> bool:
        with self._data_lock:
            if self.chirps.pop(chirp_id, None) is None:
                return False
            self._persist_state()
            return True

    # snapshot persistence
    def _state_path(self) -> Optional[Path]:
        if self.state_dir is None:
            return None
        return self.state_dir / "memory_store.json"

    @staticmethod
    def _serialize(obj: Any) -> dict:
        data = asdict(obj)
        for key in _DATETIME_FIELDS:
            value = data.get(key)
            if isinstance(value, datetime):
                data[key] = value.isoformat()
        return data

    @staticmethod
    def _deserialize(raw: dict) -> dict:
        data = dict(raw)
        for key in _DATETIME_FIELDS:
            value = data.get(key)
            if isinstance(value, str):
                data[key] = datetime.fromisoformat(value)
        return data

    def _persist_state(self) -> None:
        path = self._state_path()
        if path is None:
            return
        state = {
            "users": [self._serialize(u) for u in self.users.values()],
            "credentials": [
                {"user_id": user_id, "password_hash": creds[0], "password_algo": creds[1]}
                for user_id, creds in self.credentials.items()
            ],
            "refresh_tokens": [self._serialize(t) for t in self.refresh_tokens.values()],
            "chirps": [self._serialize(c) for c in self.chirps.values()],
        }
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        if path is None:
            return False
        # Use try-except instead of exists() to avoid TOCTOU race condition
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {
            u["id"]: User(**self._deserialize(u)) for u in data.get("users", [])
        }
        self.credentials = {
            entry["user_id"]: (entry["password_hash"], entry.get("password_algo", ""))
            for entry in data.get("credentials", [])
        }
        self.refresh_tokens = {
            t["token"]: RefreshToken(**self._deserialize(t))
            for t in data.get("refresh_tokens", [])
        }
        self.chirps = {
            c["id"]: Chirp(**self._deserialize(c)) for c in data.get("chirps", [])
        }
        self.logger.info(
            "memory_store_state_loaded",
            users=len(self.users),
            refresh_tokens=len(self.refresh_tokens),
            chirps=len(self.chirps),
        )
        return True
