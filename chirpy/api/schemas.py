from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from chirpy.logging import get_correlation_id

MAX_CHIRP_LENGTH = 140
MAX_PASSWORD_LENGTH = 1024

_VALID_ERROR_CODES = {
    "validation_error",
    "unauthorized",
    "forbidden",
    "not_found",
    "conflict",
    "server_error",
}

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _validate_email(value: str) -> str:
    value = value.strip()
    if len(value) > 254 or not _EMAIL_PATTERN.match(value):
        raise ValueError("invalid email address")
    return value


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(f"unknown error code {value!r}")
        return value


class Envelope(BaseModel):
    """API envelope format shared by every JSON response."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: get_correlation_id() or str(uuid4()))


class CredentialsRequest(BaseModel):
    email: str
    # Empty passwords are rejected here, not by the hasher
    password: str = Field(..., min_length=1, max_length=MAX_PASSWORD_LENGTH)

    @field_validator("email")
    @classmethod
    def _validate_credentials_email(cls, value: str) -> str:
        return _validate_email(value)


class UserResponse(BaseModel):
    id: str
    email: str
    created_at: datetime
    updated_at: datetime


class LoginResponse(UserResponse):
    token: str
    refresh_token: str
    token_type: str = "bearer"


class AccessTokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"


class ChirpRequest(BaseModel):
    body: str = Field(..., min_length=1, max_length=MAX_CHIRP_LENGTH)


class ChirpResponse(BaseModel):
    id: str
    body: str
    user_id: str
    created_at: datetime
    updated_at: datetime


class MetricsResponse(BaseModel):
    hits: int
