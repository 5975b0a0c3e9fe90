"""Signed session tokens.

Tokens have the shape ``chs.<base64url(payload_json)>.<hex hmac-sha256>``.
The payload carries the user (``sub``), the active tenant, the caller's role
in that tenant, and issue/expiry timestamps.  The active tenant is always
read from a verified token; it is never inferred from anything else in the
request.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
import uuid

from pydantic import BaseModel, SecretStr, ValidationError

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "chs"
_ISSUER = "clubhouse"


class TokenClaims(BaseModel):
    """Validated contents of a session token."""

    sub: str
    tenant_id: str
    role: str
    iat: float
    exp: float
    jti: str
    iss: str = _ISSUER


class SessionTokenManager:
    """Issue and validate HMAC-signed session tokens.

    Parameters
    ----------
    secret:
        Shared signing secret.
    ttl_seconds:
        Default lifetime of issued tokens.
    """

    def __init__(self, secret: SecretStr | str, ttl_seconds: int = 3600) -> None:
        raw = secret.get_secret_value() if isinstance(secret, SecretStr) else secret
        if not raw:
            raise ValueError("Session secret must not be empty")
        self._key = raw.encode("utf-8")
        self._ttl = ttl_seconds

    def _sign(self, payload_json: bytes) -> str:
        return hmac.new(self._key, payload_json, hashlib.sha256).hexdigest()

    def issue(
        self,
        *,
        sub: str,
        tenant_id: str,
        role: str,
        ttl_seconds: int | None = None,
    ) -> str:
        """Return a signed token for *sub* acting in *tenant_id* as *role*."""
        now = time.time()
        payload = {
            "sub": sub,
            "tenant_id": tenant_id,
            "role": role,
            "iss": _ISSUER,
            "iat": now,
            "exp": now + (ttl_seconds if ttl_seconds is not None else self._ttl),
            "jti": uuid.uuid4().hex,
        }
        payload_json = json.dumps(payload, sort_keys=True).encode("utf-8")
        body = base64.urlsafe_b64encode(payload_json).decode("ascii")
        return f"{TOKEN_PREFIX}.{body}.{self._sign(payload_json)}"

    def validate(self, token: str) -> TokenClaims:
        """Verify *token* and return its claims.

        Raises
        ------
        PermissionError
            If the token is malformed, its signature does not match, or it
            has expired.  The message contains ``"expired"`` only in the
            last case.
        """
        parts = token.split(".")
        if len(parts) != 3 or parts[0] != TOKEN_PREFIX:
            raise PermissionError("Malformed token")

        try:
            payload_json = base64.urlsafe_b64decode(parts[1].encode("ascii"))
        except (binascii.Error, ValueError):
            raise PermissionError("Malformed token")

        if not hmac.compare_digest(self._sign(payload_json), parts[2]):
            raise PermissionError("Invalid signature")

        try:
            claims = TokenClaims.model_validate_json(payload_json)
        except ValidationError:
            raise PermissionError("Malformed token")

        if claims.iss != _ISSUER:
            raise PermissionError("Invalid issuer")
        if claims.exp <= time.time():
            raise PermissionError("Token expired")
        return claims
