"""Authentication service: password verification and token issuance."""

from __future__ import annotations

import logging
from typing import Any

import bcrypt
from cmms_core.errors import UnauthenticatedError
from cmms_core.rbac.engine import normalize_role
from cmms_core.state.repository import UserRepository
from sqlalchemy.ext.asyncio import AsyncSession

from cmms_api.security import TokenManager

logger = logging.getLogger(__name__)

# Compared against when the email is unknown so both paths cost one bcrypt check.
_DUMMY_HASH = bcrypt.hashpw(b"cmms-dummy-password", bcrypt.gensalt(rounds=4))


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


class AuthService:
    """Log users of a tenant in.

    Parameters
    ----------
    session:
        An async database session (caller manages transaction).
    token_manager:
        The :class:`TokenManager` used to sign access tokens.
    """

    def __init__(self, session: AsyncSession, token_manager: TokenManager) -> None:
        self._session = session
        self._tm = token_manager

    async def login(self, tenant_id: str, email: str, password: str) -> dict[str, Any]:
        """Verify credentials and return an access token plus the user profile.

        Raises :class:`UnauthenticatedError` with a uniform message for an
        unknown email, a wrong password or a deactivated account.
        """
        repo = UserRepository(self._session, tenant_id=tenant_id)
        user = await repo.get_by_email(email)

        if user is None:
            bcrypt.checkpw(password.encode("utf-8"), _DUMMY_HASH)
            logger.info("Login failed: unknown email for tenant=%s", tenant_id)
            raise UnauthenticatedError("Invalid credentials")

        if not verify_password(password, user.password_hash) or not user.is_active:
            logger.info("Login failed: user=%s tenant=%s", user.id, tenant_id)
            raise UnauthenticatedError("Invalid credentials")

        await repo.record_login(user.id)
        token = self._tm.generate_token(
            user.id,
            tenant_id,
            role=user.role,
            email=user.email,
        )
        logger.info("User logged in: user=%s tenant=%s", user.id, tenant_id)
        return {
            "access_token": token,
            "token_type": "bearer",
            "user": {
                "id": user.id,
                "email": user.email,
                "display_name": user.display_name,
                "role": normalize_role(user.role),
                "tenant_id": tenant_id,
            },
        }
