"""Tests for bearer token issuance and validation."""

from __future__ import annotations

import base64
import json
import time

import jwt
import pytest
from pydantic import SecretStr

from cmms_api.security import (
    TOKEN_ISSUER,
    AuthMode,
    TokenConfig,
    TokenExpiredError,
    TokenManager,
    build_token_config,
)

SECRET = "unit-test-secret-0123456789abcdef-0123456789abcdef-0123456789abcdef"


@pytest.fixture()
def manager() -> TokenManager:
    return TokenManager(TokenConfig(jwt_secret=SecretStr(SECRET), token_ttl_seconds=600))


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")


class TestTokenManager:
    def test_round_trip(self, manager: TokenManager) -> None:
        token = manager.generate_token("user-1", "tenant-1", role="tecnico", email="t@example.test")
        assert jwt.get_unverified_header(token)["alg"] == "HS256"

        claims = manager.validate_token(token)
        assert claims.sub == "user-1"
        assert claims.tenant_id == "tenant-1"
        assert claims.role == "tecnico"
        assert claims.iss == TOKEN_ISSUER
        assert claims.exp - claims.iat == 600

    def test_decodes_with_plain_jwt(self, manager: TokenManager) -> None:
        token = manager.generate_token("user-1", "tenant-1", role="gestor_manutencao")
        payload = jwt.decode(token, SECRET, algorithms=["HS256"], issuer=TOKEN_ISSUER)
        assert payload["role"] == "gestor_manutencao"

    def test_ttl_capped(self) -> None:
        manager = TokenManager(TokenConfig(jwt_secret=SecretStr(SECRET), max_token_ttl_seconds=60))
        claims = manager.validate_token(manager.generate_token("u", None, ttl_seconds=3600))
        assert claims.exp - claims.iat == 60

    def test_tampered_payload_rejected(self, manager: TokenManager) -> None:
        header, payload, signature = manager.generate_token("user-1", "tenant-1", role="tecnico").split(".")
        claims = json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))
        claims["role"] = "superadmin"
        with pytest.raises(PermissionError) as excinfo:
            manager.validate_token(f"{header}.{_b64(claims)}.{signature}")
        assert isinstance(excinfo.value.__cause__, jwt.InvalidSignatureError)

    def test_other_secret_rejected(self, manager: TokenManager) -> None:
        other = TokenManager(TokenConfig(jwt_secret=SecretStr(SECRET[::-1])))
        with pytest.raises(PermissionError):
            manager.validate_token(other.generate_token("user-1", "tenant-1"))

    def test_other_algorithm_rejected(self, manager: TokenManager) -> None:
        now = int(time.time())
        token = jwt.encode(
            {"sub": "user-1", "iss": TOKEN_ISSUER, "iat": now, "exp": now + 60},
            SECRET,
            algorithm="HS512",
        )
        with pytest.raises(PermissionError) as excinfo:
            manager.validate_token(token)
        assert isinstance(excinfo.value.__cause__, jwt.InvalidAlgorithmError)

    def test_other_issuer_rejected(self, manager: TokenManager) -> None:
        now = int(time.time())
        claims = {"sub": "user-1", "iss": "elsewhere", "iat": now, "exp": now + 60}
        token = jwt.encode(claims, SECRET, algorithm="HS256")
        with pytest.raises(PermissionError) as excinfo:
            manager.validate_token(token)
        assert not isinstance(excinfo.value, TokenExpiredError)

    def test_missing_exp_rejected(self, manager: TokenManager) -> None:
        token = jwt.encode({"sub": "user-1", "iss": TOKEN_ISSUER, "iat": int(time.time())}, SECRET, algorithm="HS256")
        with pytest.raises(PermissionError):
            manager.validate_token(token)

    def test_expired(self, manager: TokenManager) -> None:
        token = manager.generate_token("user-1", "tenant-1", ttl_seconds=-5)
        with pytest.raises(TokenExpiredError):
            manager.validate_token(token)

    @pytest.mark.parametrize("token", ["", "abc", "Bearer.x.y", "a.!!!.sig", "a.b.c.d"])
    def test_malformed(self, manager: TokenManager, token: str) -> None:
        with pytest.raises(PermissionError) as excinfo:
            manager.validate_token(token)
        assert not isinstance(excinfo.value, TokenExpiredError)


class TestBuildTokenConfig:
    def test_hmac_mode_requires_secret(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTH_MODE", "hmac")
        monkeypatch.delenv("JWT_SECRET", raising=False)
        with pytest.raises(RuntimeError, match="JWT_SECRET"):
            build_token_config()

    def test_development_generates_secret(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTH_MODE", "development")
        monkeypatch.delenv("JWT_SECRET", raising=False)
        config = build_token_config()
        assert config.auth_mode is AuthMode.DEVELOPMENT
        assert config.jwt_secret.get_secret_value().startswith("dev-")

    def test_unknown_mode_falls_back(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTH_MODE", "kerberos")
        monkeypatch.setenv("JWT_SECRET", "explicit")
        monkeypatch.setenv("TOKEN_TTL_SECONDS", "120")
        config = build_token_config()
        assert config.auth_mode is AuthMode.DEVELOPMENT
        assert config.jwt_secret.get_secret_value() == "explicit"
        assert config.token_ttl_seconds == 120

    def test_algorithm_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("JWT_SECRET", SECRET)
        monkeypatch.setenv("JWT_ALGORITHM", "HS512")
        config = build_token_config()
        assert config.jwt_algorithm == "HS512"
        token = TokenManager(config).generate_token("user-1", "tenant-1")
        assert jwt.get_unverified_header(token)["alg"] == "HS512"
