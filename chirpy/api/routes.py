from __future__ import annotations

import asyncio
import uuid
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import PlainTextResponse

from chirpy.api.schemas import (
    AccessTokenResponse,
    ChirpRequest,
    ChirpResponse,
    CredentialsRequest,
    Envelope,
    LoginResponse,
    MetricsResponse,
    UserResponse,
)
from chirpy.logging import get_logger
from chirpy.service.auth import AuthContext, ensure_owner, extract_bearer_token
from chirpy.service.errors import ForbiddenError, NotFoundError, ValidationError
from chirpy.service.runtime import get_runtime
from chirpy.storage.models import Chirp, User

logger = get_logger(__name__)

router = APIRouter(prefix="/api")
admin_router = APIRouter(prefix="/admin")


async def get_user(request: Request) -> AuthContext:
    runtime = get_runtime()
    return runtime.auth.authenticate(request.headers)


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def _chirp_response(chirp: Chirp) -> ChirpResponse:
    return ChirpResponse(
        id=chirp.id,
        body=chirp.body,
        user_id=chirp.user_id,
        created_at=chirp.created_at,
        updated_at=chirp.updated_at,
    )


def _load_chirp(runtime, chirp_id: str) -> Chirp:
    try:
        canonical = str(uuid.UUID(chirp_id))
    except ValueError:
        raise NotFoundError("chirp not found")
    chirp = runtime.store.get_chirp(canonical)
    if not chirp:
        raise NotFoundError("chirp not found")
    return chirp


@router.get("/healthz", response_class=PlainTextResponse, tags=["ops"])
async def healthz():
    return PlainTextResponse("OK")


@router.post("/users", response_model=Envelope, status_code=201, tags=["auth"])
async def create_user(body: CredentialsRequest):
    """Register a new account; the password is stored only as an argon2id hash."""
    runtime = get_runtime()
    # argon2 is CPU bound, keep it off the event loop
    user = await asyncio.to_thread(runtime.auth.register, body.email, body.password)
    return Envelope(status="ok", data=_user_response(user))


@router.put("/users", response_model=Envelope, tags=["auth"])
async def update_user(
    body: CredentialsRequest, principal: AuthContext = Depends(get_user)
):
    runtime = get_runtime()
    user = await asyncio.to_thread(
        runtime.auth.update_credentials, principal.user_id, body.email, body.password
    )
    return Envelope(status="ok", data=_user_response(user))


@router.post("/login", response_model=Envelope, tags=["auth"])
async def login(body: CredentialsRequest):
    """Authenticate with email and password.

    Returns a short-lived access token and a long-lived refresh token. Unknown
    email and wrong password are indistinguishable to the caller.
    """
    runtime = get_runtime()
    user, tokens = await asyncio.to_thread(runtime.auth.login, body.email, body.password)
    user_data = _user_response(user)
    return Envelope(
        status="ok",
        data=LoginResponse(
            **user_data.model_dump(),
            token=tokens.access_token,
            refresh_token=tokens.refresh_token,
        ),
    )


@router.post("/refresh", response_model=Envelope, tags=["auth"])
async def refresh(request: Request):
    """Trade the refresh token in the bearer header for a new access token."""
    runtime = get_runtime()
    refresh_token = extract_bearer_token(request.headers)
    access_token = runtime.auth.refresh(refresh_token)
    return Envelope(status="ok", data=AccessTokenResponse(token=access_token))


@router.post("/revoke", status_code=204, tags=["auth"])
async def revoke(request: Request):
    runtime = get_runtime()
    refresh_token = extract_bearer_token(request.headers)
    runtime.auth.revoke(refresh_token)
    return Response(status_code=204)


@router.post("/chirps", response_model=Envelope, status_code=201, tags=["chirps"])
async def create_chirp(body: ChirpRequest, principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    chirp = runtime.store.create_chirp(body.body, principal.user_id)
    return Envelope(status="ok", data=_chirp_response(chirp))


@router.get("/chirps", response_model=Envelope, tags=["chirps"])
async def list_chirps(
    author_id: Optional[str] = Query(None),
    sort: Literal["asc", "desc"] = Query("asc"),
):
    runtime = get_runtime()
    if author_id is not None:
        try:
            author_id = str(uuid.UUID(author_id))
        except ValueError:
            raise ValidationError("invalid author_id", detail={"field": "author_id"})
    chirps = runtime.store.list_chirps(author_id, descending=sort == "desc")
    return Envelope(status="ok", data=[_chirp_response(c) for c in chirps])


@router.get("/chirps/{chirp_id}", response_model=Envelope, tags=["chirps"])
async def get_chirp(chirp_id: str):
    runtime = get_runtime()
    return Envelope(status="ok", data=_chirp_response(_load_chirp(runtime, chirp_id)))


@router.delete("/chirps/{chirp_id}", status_code=204, tags=["chirps"])
async def delete_chirp(chirp_id: str, principal: AuthContext = Depends(get_user)):
    """Delete a chirp: existence (404), then ownership (403), then the delete."""
    runtime = get_runtime()
    chirp = _load_chirp(runtime, chirp_id)
    ensure_owner(principal.user_id, chirp.user_id)
    runtime.store.delete_chirp(chirp.id)
    logger.info("chirp_deleted", chirp_id=chirp.id, user_id=principal.user_id)
    return Response(status_code=204)


@admin_router.get("/metrics", response_model=Envelope, tags=["admin"])
async def metrics():
    runtime = get_runtime()
    return Envelope(status="ok", data=MetricsResponse(hits=runtime.hits.value))


@admin_router.post("/reset", response_model=Envelope, tags=["admin"])
async def reset():
    """Wipe users, chirps and refresh tokens and zero the hit counter (dev only)."""
    runtime = get_runtime()
    if not runtime.settings.is_dev:
        raise ForbiddenError("reset is only allowed in dev environment")
    deleted = runtime.auth.reset()
    runtime.hits.reset()
    return Envelope(status="ok", data={"users_deleted": deleted, "hits": runtime.hits.value})
