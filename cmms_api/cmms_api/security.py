"""Bearer token issuance and validation.

Tokens are HS256 JSON Web Tokens carrying the claims the authorization
layer needs (subject, tenant, role).  Signing and verification go through
PyJWT, keyed by :attr:`TokenConfig.jwt_secret` and
:attr:`TokenConfig.jwt_algorithm`.

Validation failures raise :class:`PermissionError`; an expired token raises
the :class:`TokenExpiredError` subclass.  The authentication middleware maps
both to 401 responses.
"""

from __future__ import annotations

import logging
import os
import secrets
import time
import uuid
from enum import Enum

import jwt
from pydantic import BaseModel, Field, SecretStr, ValidationError

logger = logging.getLogger(__name__)

TOKEN_ISSUER = "cmms"


class TokenExpiredError(PermissionError):
    """The token signature is valid but its ``exp`` claim has passed."""


class AuthMode(str, Enum):
    """How the signing secret is sourced.

    ``development`` tolerates a missing ``JWT_SECRET`` by generating a
    per-process secret; ``hmac`` requires it.
    """

    DEVELOPMENT = "development"
    HMAC = "hmac"


class TokenConfig(BaseModel):
    auth_mode: AuthMode = AuthMode.DEVELOPMENT
    jwt_secret: SecretStr
    jwt_algorithm: str = "HS256"
    token_ttl_seconds: int = 3600
    max_token_ttl_seconds: int = 86400


class TokenClaims(BaseModel):
    """Validated token payload."""

    sub: str
    tenant_id: str | None = None
    role: str = ""
    email: str | None = None
    iss: str = TOKEN_ISSUER
    iat: int
    exp: int
    jti: str = Field(default_factory=lambda: uuid.uuid4().hex)


class TokenManager:
    """Generate and validate signed bearer tokens."""

    def __init__(self, config: TokenConfig) -> None:
        self._config = config
        self._secret = config.jwt_secret.get_secret_value()

    def generate_token(
        self,
        subject: str,
        tenant_id: str | None,
        *,
        role: str = "",
        email: str | None = None,
        ttl_seconds: int | None = None,
    ) -> str:
        ttl = min(ttl_seconds or self._config.token_ttl_seconds, self._config.max_token_ttl_seconds)
        now = int(time.time())
        payload = {
            "sub": subject,
            "tenant_id": tenant_id,
            "role": role,
            "email": email,
            "iss": TOKEN_ISSUER,
            "iat": now,
            "exp": now + ttl,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secret, algorithm=self._config.jwt_algorithm)

    def validate_token(self, token: str) -> TokenClaims:
        """Return the claims of *token*.

        Raises
        ------
        TokenExpiredError
            If the token has expired.
        PermissionError
            If the token is malformed, has a bad signature, uses another
            algorithm or was issued by someone else.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._config.jwt_algorithm],
                issuer=TOKEN_ISSUER,
                options={"require": ["sub", "iat", "exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpiredError("token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise PermissionError(str(exc) or exc.__class__.__name__) from exc

        try:
            return TokenClaims.model_validate(payload)
        except ValidationError as exc:
            raise PermissionError("invalid token claims") from exc


def build_token_config() -> TokenConfig:
    """Construct a :class:`TokenConfig` from ``AUTH_MODE`` and ``JWT_SECRET``."""
    auth_mode_raw = os.environ.get("AUTH_MODE", "development").lower()
    try:
        auth_mode = AuthMode(auth_mode_raw)
    except ValueError:
        logger.warning("Unknown AUTH_MODE '%s'; falling back to development", auth_mode_raw)
        auth_mode = AuthMode.DEVELOPMENT

    secret = os.environ.get("JWT_SECRET", "")
    if not secret:
        if auth_mode != AuthMode.DEVELOPMENT:
            raise RuntimeError(
                f"JWT_SECRET environment variable must be set when AUTH_MODE={auth_mode.value}. "
                "Refusing to start with an insecure default secret."
            )
        secret = f"dev-{secrets.token_hex(32)}"
        logger.warning(
            "JWT_SECRET not set; generated random per-process dev secret. Tokens will not survive process restarts."
        )

    return TokenConfig(
        auth_mode=auth_mode,
        jwt_secret=SecretStr(secret),
        jwt_algorithm=os.environ.get("JWT_ALGORITHM", "HS256"),
        token_ttl_seconds=int(os.environ.get("TOKEN_TTL_SECONDS", "3600")),
        max_token_ttl_seconds=int(os.environ.get("MAX_TOKEN_TTL_SECONDS", "86400")),
    )
