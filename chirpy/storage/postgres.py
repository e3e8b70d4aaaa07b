from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from chirpy.logging import get_logger
from chirpy.service.clock import utc_now
from chirpy.storage.errors import ConstraintViolation
from chirpy.storage.models import Chirp, RefreshToken, User

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id UUID PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        hashed_password TEXT,
        password_algo TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chirps (
        id UUID PRIMARY KEY,
        body TEXT NOT NULL,
        user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS refresh_tokens (
        token TEXT PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        expires_at TIMESTAMPTZ NOT NULL,
        revoked_at TIMESTAMPTZ
    )
    """,
)


def _row_to_user(row: dict[str, Any]) -> User:
    return User(
        id=str(row["id"]),
        email=row["email"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_refresh_token(row: dict[str, Any]) -> RefreshToken:
    return RefreshToken(
        token=row["token"],
        user_id=str(row["user_id"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        expires_at=row["expires_at"],
        revoked_at=row.get("revoked_at"),
    )


def _row_to_chirp(row: dict[str, Any]) -> Chirp:
    return Chirp(
        id=str(row["id"]),
        body=row["body"],
        user_id=str(row["user_id"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresStore:
    """Postgres-backed store for users, credentials, chirps and refresh tokens.

    Each refresh-token operation is a single statement, so Postgres row
    locking provides the validate/revoke ordering; no in-process lock is held.
    """

    def __init__(self, dsn: str, *, ensure_schema: bool = True) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=1,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        if ensure_schema:
            self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(statement)
        self.logger.info("postgres_schema_ready")

    def close(self) -> None:
        self.pool.close()

    # users / credentials
    def create_user(self, email: str) -> User:
        user_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO users (id, email) VALUES (%s, %s)
                    RETURNING id, email, created_at, updated_at
                    """,
                    (user_id, email),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", field="email")
        return _row_to_user(row)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, email, created_at, updated_at FROM users WHERE id = %s",
                (user_id,),
            ).fetchone()
        return _row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, email, created_at, updated_at FROM users WHERE email = %s",
                (email,),
            ).fetchone()
        return _row_to_user(row) if row else None

    def replace_credentials(
        self, user_id: str, email: str, password_hash: str, password_algo: str
    ) -> Optional[User]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    UPDATE users
                    SET email = %s, hashed_password = %s, password_algo = %s,
                        updated_at = now()
                    WHERE id = %s
                    RETURNING id, email, created_at, updated_at
                    """,
                    (email, password_hash, password_algo, user_id),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", field="email")
        return _row_to_user(row) if row else None

    def delete_users(self) -> int:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM users")
            return result.rowcount

    def save_password(self, user_id: str, password_hash: str, password_algo: str) -> None:
        with self._connect() as conn:
            result = conn.execute(
                """
                UPDATE users
                SET hashed_password = %s, password_algo = %s, updated_at = now()
                WHERE id = %s
                """,
                (password_hash, password_algo, user_id),
            )
            if result.rowcount == 0:
                raise ConstraintViolation(
                    "user not found for credentials", field="user_id"
                )

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT hashed_password, password_algo FROM users WHERE id = %s",
                (user_id,),
            ).fetchone()
        if not row or row["hashed_password"] is None:
            return None
        return str(row["hashed_password"]), str(row["password_algo"] or "")

    # refresh tokens
    def insert_refresh_token(
        self,
        token: str,
        user_id: str,
        expires_at: datetime,
        *,
        created_at: Optional[datetime] = None,
    ) -> RefreshToken:
        created = created_at or utc_now()
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO refresh_tokens (token, user_id, created_at, updated_at, expires_at)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING token, user_id, created_at, updated_at, expires_at, revoked_at
                    """,
                    (token, user_id, created, created, expires_at),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("user does not exist", field="user_id")
        except errors.UniqueViolation:
            raise ConstraintViolation("refresh token already exists", field="token")
        return _row_to_refresh_token(row)

    def get_refresh_token(self, token: str) -> Optional[RefreshToken]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT token, user_id, created_at, updated_at, expires_at, revoked_at
                FROM refresh_tokens WHERE token = %s
                """,
                (token,),
            ).fetchone()
        return _row_to_refresh_token(row) if row else None

    def revoke_refresh_token(
        self, token: str, revoked_at: datetime
    ) -> Optional[RefreshToken]:
        # COALESCE keeps the first revocation time, making repeat calls no-ops
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE refresh_tokens
                SET revoked_at = COALESCE(revoked_at, %s),
                    updated_at = CASE WHEN revoked_at IS NULL THEN %s ELSE updated_at END
                WHERE token = %s
                RETURNING token, user_id, created_at, updated_at, expires_at, revoked_at
                """,
                (revoked_at, revoked_at, token),
            ).fetchone()
        return _row_to_refresh_token(row) if row else None

    def delete_refresh_tokens(self) -> int:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM refresh_tokens")
            return result.rowcount

    # chirps
    def create_chirp(self, body: str, user_id: str) -> Chirp:
        chirp_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO chirps (id, body, user_id) VALUES (%s, %s, %s)
                    RETURNING id, body, user_id, created_at, updated_at
                    """,
                    (chirp_id, body, user_id),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("chirp author missing", field="user_id")
        return _row_to_chirp(row)

    def get_chirp(self, chirp_id: str) -> Optional[Chirp]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, body, user_id, created_at, updated_at FROM chirps WHERE id = %s",
                (chirp_id,),
            ).fetchone()
        return _row_to_chirp(row) if row else None

    def list_chirps(
        self, author_id: Optional[str] = None, *, descending: bool = False
    ) -> List[Chirp]:
        order = "DESC" if descending else "ASC"
        query = "SELECT id, body, user_id, created_at, updated_at FROM chirps"
        params: tuple = ()
        if author_id is not None:
            query += " WHERE user_id = %s"
            params = (author_id,)
        query += f" ORDER BY created_at {order}"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_chirp(row) for row in rows]

    def delete_chirp(self, chirp_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM chirps WHERE id = %s", (chirp_id,))
            return result.rowcount > 0
