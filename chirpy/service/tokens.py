from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import uuid
from datetime import timedelta
from typing import Any, Optional

from chirpy.logging import get_logger
from chirpy.service.clock import Clock, utc_now
from chirpy.service.errors import (
    InvalidSignatureError,
    MalformedClaimsError,
    TokenExpiredError,
)

logger = get_logger(__name__)

DEFAULT_ISSUER = "chirpy"
JWT_ALGORITHM = "HS256"
_JWT_HEADER = {"alg": JWT_ALGORITHM, "typ": "JWT"}


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _sign(secret: str, signing_input: str) -> str:
    digest = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
    return _encode_segment(digest)


class AccessTokenCodec:
    """Stateless HS256 access tokens carrying ``{iss, sub, iat, exp}``.

    The codec owns no state beyond its issuer and clock; the secret is passed
    on every call so one codec serves any number of signing keys in tests.
    """

    def __init__(
        self,
        *,
        issuer: str = DEFAULT_ISSUER,
        clock: Clock = utc_now,
        leeway: timedelta = timedelta(0),
    ) -> None:
        self.issuer = issuer
        self._clock = clock
        self._leeway = leeway

    def make_access_token(
        self, subject_id: str | uuid.UUID, secret: str, ttl: timedelta
    ) -> str:
        now = self._clock()
        payload = {
            "iss": self.issuer,
            "sub": str(subject_id),
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        header_enc = _encode_segment(
            json.dumps(_JWT_HEADER, separators=(",", ":")).encode()
        )
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{_sign(secret, signing_input)}"

    def validate_access_token(self, token: str, secret: str) -> str:
        """Return the canonical subject id of a valid token.

        Raises:
            InvalidSignatureError: broken structure, foreign algorithm or bad MAC
            MalformedClaimsError: authentic token whose claims are unusable
            TokenExpiredError: authentic token past its ``exp``
        """
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except (AttributeError, ValueError):
            raise InvalidSignatureError("token is not a compact JWS")

        # Refuse anything but HS256 before touching the signature (alg=none, RS256 swaps)
        header = self._decode_json(header_b64)
        if not isinstance(header, dict):
            logger.warning("jwt_header_decode_failed")
            raise InvalidSignatureError("token header is unreadable")
        if header.get("alg") != JWT_ALGORITHM:
            logger.warning("jwt_invalid_algorithm", alg=header.get("alg"))
            raise InvalidSignatureError("unexpected signing algorithm")

        expected_sig = _sign(secret, f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            raise InvalidSignatureError("signature mismatch")

        payload = self._decode_json(payload_b64)
        if not isinstance(payload, dict):
            logger.warning("jwt_payload_decode_failed")
            raise MalformedClaimsError("token payload is not a JSON object")
        if payload.get("iss") != self.issuer:
            raise MalformedClaimsError("unexpected issuer")

        exp = payload.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise MalformedClaimsError("exp claim missing or not numeric")
        now_ts = self._clock().timestamp()
        if exp <= now_ts - self._leeway.total_seconds():
            raise TokenExpiredError("access token expired")

        subject = payload.get("sub")
        if not isinstance(subject, str):
            raise MalformedClaimsError("sub claim missing")
        try:
            return str(uuid.UUID(subject))
        except ValueError:
            raise MalformedClaimsError("sub claim is not a valid user id")

    @staticmethod
    def _decode_json(segment: str) -> Optional[Any]:
        try:
            return json.loads(_decode_segment(segment))
        except (binascii.Error, ValueError, UnicodeDecodeError, RecursionError):
            # Deeply nested JSON exhausts the parser stack
            return None


__all__ = ["AccessTokenCodec", "DEFAULT_ISSUER", "JWT_ALGORITHM"]
