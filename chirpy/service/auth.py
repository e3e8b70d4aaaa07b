from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, List, Mapping, Optional, Protocol

from chirpy.config import Settings
from chirpy.logging import get_logger
from chirpy.service.clock import Clock, utc_now
from chirpy.service.errors import (
    AuthenticationError,
    ForbiddenError,
    MissingTokenError,
    ValidationError,
)
from chirpy.service.passwords import PASSWORD_ALGO, PasswordHasherService
from chirpy.service.refresh_tokens import RefreshTokenRepository, RefreshTokenStore
from chirpy.service.tokens import AccessTokenCodec
from chirpy.storage.models import User

logger = get_logger(__name__)

BEARER_PREFIX = "Bearer "


class AuthStore(RefreshTokenRepository, Protocol):
    def create_user(self, email: str) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def replace_credentials(
        self, user_id: str, email: str, password_hash: str, password_algo: str
    ) -> Optional[User]: ...

    def delete_users(self) -> int: ...

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None: ...

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]: ...


@dataclass
class AuthContext:
    user_id: str


@dataclass
class IssuedTokens:
    access_token: str
    refresh_token: str


def _header_values(headers: Any, name: str) -> List[str]:
    getlist = getattr(headers, "getlist", None)
    if callable(getlist):
        # starlette.datastructures.Headers keeps repeated headers apart
        return list(getlist(name))
    values: List[str] = []
    target = name.lower()
    for key, value in headers.items():
        if key.lower() != target:
            continue
        if isinstance(value, (list, tuple)):
            values.extend(value)
        else:
            values.append(value)
    return values


def extract_bearer_token(headers: Mapping[str, Any]) -> str:
    """Pull the token out of ``Authorization: Bearer <token>``.

    Anything other than exactly one header value carrying the literal
    ``"Bearer "`` prefix counts as no token at all.
    """
    values = _header_values(headers, "Authorization")
    if not values:
        raise MissingTokenError("authorization header missing")
    if len(values) != 1:
        raise MissingTokenError("multiple authorization headers")
    header = values[0]
    if not isinstance(header, str) or not header.startswith(BEARER_PREFIX):
        raise MissingTokenError("authorization header is not a bearer token")
    token = header[len(BEARER_PREFIX):]
    if not token:
        raise MissingTokenError("bearer token is empty")
    return token


class RequestAuthenticator:
    """Resolves the subject of a request from its bearer access token."""

    def __init__(self, codec: AccessTokenCodec, secret: str) -> None:
        self.codec = codec
        self._secret = secret

    def authenticate(self, headers: Mapping[str, Any]) -> str:
        token = extract_bearer_token(headers)
        return self.codec.validate_access_token(token, self._secret)


def _canonical_id(value: str | uuid.UUID) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except ValueError:
        return str(value)


def authorize(subject_id: str | uuid.UUID, owner_id: str | uuid.UUID) -> bool:
    return _canonical_id(subject_id) == _canonical_id(owner_id)


def ensure_owner(subject_id: str | uuid.UUID, owner_id: str | uuid.UUID) -> None:
    """Raise ``ForbiddenError`` unless the subject owns the resource.

    Callers load the resource first; a missing resource is a 404 before
    ownership is ever considered.
    """
    if not authorize(subject_id, owner_id):
        logger.warning("ownership_denied", subject_id=str(subject_id), owner_id=str(owner_id))
        raise ForbiddenError("not the owner of this resource")


class AuthService:
    """Credential checks plus access/refresh token issuance for the API."""

    def __init__(
        self,
        store: AuthStore,
        settings: Settings,
        *,
        hasher: Optional[PasswordHasherService] = None,
        codec: Optional[AccessTokenCodec] = None,
        refresh_tokens: Optional[RefreshTokenStore] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store: AuthStore = store
        self.settings = settings
        self.hasher = hasher or PasswordHasherService.from_settings(settings)
        self.codec = codec or AccessTokenCodec(
            issuer=settings.jwt_issuer,
            clock=clock,
            leeway=timedelta(seconds=settings.jwt_leeway_seconds),
        )
        self.refresh_tokens = refresh_tokens or RefreshTokenStore(store, clock=clock)
        self.authenticator = RequestAuthenticator(self.codec, self._secret)
        self.logger = logger
        self._dummy_hash: Optional[str] = None
        self._dummy_lock = threading.Lock()

    @property
    def _secret(self) -> str:
        secret = self.settings.jwt_secret
        if not secret:
            raise RuntimeError("jwt secret is not configured")
        return secret

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.access_token_ttl_minutes)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.settings.refresh_token_ttl_days)

    def register(self, email: str, password: str) -> User:
        if not password:
            raise ValidationError("password must not be empty", detail={"field": "password"})
        # Hash before the insert so a hashing failure leaves no password-less user
        password_hash = self.hasher.hash_password(password)
        user = self.store.create_user(email)
        self.store.save_password(user.id, password_hash, PASSWORD_ALGO)
        self.logger.info("user_registered", user_id=user.id)
        return user

    def update_credentials(self, user_id: str, email: str, password: str) -> User:
        """Replace the user's email and password hash wholesale."""
        if not password:
            raise ValidationError("password must not be empty", detail={"field": "password"})
        password_hash = self.hasher.hash_password(password)
        user = self.store.replace_credentials(user_id, email, password_hash, PASSWORD_ALGO)
        if user is None:
            raise AuthenticationError("user no longer exists")
        self.logger.info("user_credentials_updated", user_id=user.id)
        return user

    def verify_password(self, user_id: str, password: str) -> bool:
        """Verify a user's password against stored hash."""
        record = self.store.get_password_record(user_id)
        if not record:
            self.logger.warning("password_record_missing", user_id=user_id)
            return False
        stored_hash, algo = record
        if algo != PASSWORD_ALGO:
            self.logger.warning("password_algo_mismatch", user_id=user_id, algo=algo)
            return False
        matched = self.hasher.verify_password(password, stored_hash)
        if matched and self.hasher.needs_rehash(stored_hash):
            self.store.save_password(user_id, self.hasher.hash_password(password), PASSWORD_ALGO)
            self.logger.info("password_rehashed", user_id=user_id)
        return matched

    def _burn_verify(self, password: str) -> None:
        # Unknown emails pay the same argon2 cost as wrong passwords
        with self._dummy_lock:
            if self._dummy_hash is None:
                self._dummy_hash = self.hasher.hash_password(uuid.uuid4().hex)
            dummy = self._dummy_hash
        self.hasher.verify_password(password, dummy)

    def make_access_token(self, user_id: str) -> str:
        return self.codec.make_access_token(user_id, self._secret, self.access_token_ttl)

    def login(self, email: str, password: str) -> tuple[User, IssuedTokens]:
        user = self.store.get_user_by_email(email)
        if user is None:
            self._burn_verify(password)
            self.logger.warning("login_failed", reason="unknown_account")
            raise AuthenticationError("invalid credentials")
        if not self.verify_password(user.id, password):
            self.logger.warning("login_failed", reason="password_mismatch", user_id=user.id)
            raise AuthenticationError("invalid credentials")
        tokens = IssuedTokens(
            access_token=self.make_access_token(user.id),
            refresh_token=self.refresh_tokens.issue(user.id, self.refresh_token_ttl),
        )
        self.logger.info("login_succeeded", user_id=user.id)
        return user, tokens

    def refresh(self, refresh_token: str) -> str:
        """Exchange a live refresh token for a fresh access token.

        The refresh token itself stays valid until it expires or is revoked.
        """
        try:
            user_id = self.refresh_tokens.validate(refresh_token)
        except AuthenticationError as exc:
            self.logger.warning("refresh_rejected", reason=type(exc).__name__)
            raise
        return self.make_access_token(user_id)

    def revoke(self, refresh_token: str) -> None:
        try:
            self.refresh_tokens.revoke(refresh_token)
        except AuthenticationError as exc:
            self.logger.warning("revoke_rejected", reason=type(exc).__name__)
            raise

    def authenticate(self, headers: Mapping[str, Any]) -> AuthContext:
        try:
            user_id = self.authenticator.authenticate(headers)
        except AuthenticationError as exc:
            self.logger.warning("access_token_rejected", reason=type(exc).__name__)
            raise
        return AuthContext(user_id=user_id)

    def reset(self) -> int:
        """Purge refresh tokens and delete all users; gated by the caller."""
        self.refresh_tokens.purge_all()
        deleted = self.store.delete_users()
        self.logger.warning("users_deleted", count=deleted)
        return deleted


__all__ = [
    "AuthContext",
    "AuthService",
    "AuthStore",
    "BEARER_PREFIX",
    "IssuedTokens",
    "RequestAuthenticator",
    "authorize",
    "ensure_owner",
    "extract_bearer_token",
]
