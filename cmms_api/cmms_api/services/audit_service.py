"""Centralized audit logging service.

Wraps :class:`AuditRepository` and :class:`SuperadminAuditRepository` with
predefined action constants.  Audit writes are best-effort: each runs inside a savepoint, so a failure is
logged, discards only the audit row and never fails the operation being
audited.
"""

from __future__ import annotations

import logging
from typing import Any

from cmms_core.state.repository import AuditRepository, SuperadminAuditRepository
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class AuditAction:
    """Well-known audit action identifiers."""

    RBAC_ROLE_PERMISSIONS_REPLACED = "RBAC_ROLE_PERMISSIONS_REPLACED"
    SLA_RULE_UPSERTED = "SLA_RULE_UPSERTED"
    SLA_RULE_DEACTIVATED = "SLA_RULE_DEACTIVATED"
    WORKFLOW_CREATED = "WORKFLOW_CREATED"
    WORKFLOW_UPDATED = "WORKFLOW_UPDATED"
    WORKFLOW_DELETED = "WORKFLOW_DELETED"
    WORK_ORDER_CREATED = "WORK_ORDER_CREATED"
    WORK_ORDER_STATUS_CHANGED = "WORK_ORDER_STATUS_CHANGED"
    TICKET_CREATED = "TICKET_CREATED"
    AUTH_SUCCESS = "AUTH_SUCCESS"
    AUTH_FAILURE = "AUTH_FAILURE"
    TENANT_UPDATED = "TENANT_UPDATED"
    AUDIT_PURGED = "AUDIT_PURGED"


class AuditService:
    """Tenant audit trail for router-level use.

    Parameters
    ----------
    session:
        The async database session for the current request scope.
    tenant_id:
        Tenant the audited entity belongs to.
    actor:
        Identity of the user or system principal performing the action.
    ip_address:
        Client address, when known.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        tenant_id: str,
        actor: str = "system",
        ip_address: str | None = None,
    ) -> None:
        self._session = session
        self._repo = AuditRepository(session, tenant_id=tenant_id)
        self._actor = actor
        self._ip = ip_address

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        *,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
    ) -> str | None:
        """Record an audit event.  Returns the entry id, or ``None`` if the write failed."""
        # Errors in the audited operation itself surface here, outside the savepoint.
        await self._session.flush()
        try:
            async with self._session.begin_nested():
                return await self._repo.log(
                    actor=self._actor,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    old_values=old_values,
                    new_values=new_values,
                    ip_address=self._ip,
                )
        except SQLAlchemyError:
            logger.warning("Audit write failed: action=%s entity=%s/%s", action, entity_type, entity_id, exc_info=True)
            return None


class SuperadminAuditService:
    """Best-effort audit trail for platform-operator actions."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        actor_user_id: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        self._session = session
        self._repo = SuperadminAuditRepository(session)
        self._actor = actor_user_id
        self._ip = ip_address
        self._user_agent = user_agent

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        *,
        affected_tenant_id: str | None = None,
        **metadata: Any,
    ) -> str | None:
        await self._session.flush()
        try:
            async with self._session.begin_nested():
                return await self._repo.log(
                    actor_user_id=self._actor,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    affected_tenant_id=affected_tenant_id,
                    metadata=metadata or None,
                    ip_address=self._ip,
                    user_agent=self._user_agent,
                )
        except SQLAlchemyError:
            logger.warning(
                "Superadmin audit write failed: action=%s entity=%s/%s",
                action,
                entity_type,
                entity_id,
                exc_info=True,
            )
            return None
