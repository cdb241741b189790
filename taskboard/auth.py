"""Owner authentication boundary.

The rest of the app only needs "this request belongs to user U, or it is
rejected". `TokenAuthenticator` provides that with HMAC-SHA256 signed,
expiring tokens of the form `<base64url(json claims)>.<base64url(signature)>`.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from typing import Protocol

from taskboard.errors import Unauthorized

TOKEN_COOKIE = "token"


class Authenticator(Protocol):
    def authenticate(self, token: str | None) -> str:
        """Return the owner id for a credential or raise Unauthorized."""


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


class TokenAuthenticator:
    def __init__(self, secret: str, *, ttl_seconds: int = 3600) -> None:
        if not secret:
            raise ValueError("token secret must be non-empty")
        self._key = secret.encode("utf-8")
        self._ttl = ttl_seconds

    def _sign(self, body: str) -> str:
        digest = hmac.new(self._key, body.encode("ascii"), hashlib.sha256).digest()
        return _b64encode(digest)

    def issue(
        self, user_id: str, *, ttl_seconds: int | None = None, now: float | None = None
    ) -> str:
        if not user_id:
            raise ValueError("user_id must be non-empty")
        issued = int(now if now is not None else time.time())
        claims = {"sub": user_id, "iat": issued, "exp": issued + (ttl_seconds or self._ttl)}
        body = _b64encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
        return f"{body}.{self._sign(body)}"

    def authenticate(self, token: str | None, *, now: float | None = None) -> str:
        if not token:
            raise Unauthorized("No token provided.")
        body, sep, signature = token.partition(".")
        if not sep or not hmac.compare_digest(signature, self._sign(body)):
            raise Unauthorized("Invalid token.")
        try:
            claims = json.loads(_b64decode(body))
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            raise Unauthorized("Invalid token.") from exc
        if not isinstance(claims, dict):
            raise Unauthorized("Invalid token.")
        sub = claims.get("sub")
        exp = claims.get("exp")
        if not isinstance(sub, str) or not sub or not isinstance(exp, int):
            raise Unauthorized("Invalid token.")
        if exp <= int(now if now is not None else time.time()):
            raise Unauthorized("Invalid token.")
        return sub


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an `Authorization: Bearer <token>` header."""
    scheme, _, value = (authorization or "").strip().partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


__all__ = ["TOKEN_COOKIE", "Authenticator", "TokenAuthenticator", "bearer_token"]
