"""Typed error taxonomy shared by the core and the HTTP layer.

Every error carries the HTTP status it maps to and a machine-readable
``code`` so the API layer can render a consistent JSON body without
inspecting messages.
"""

from __future__ import annotations


class CMMSError(Exception):
    """Base class for all domain errors raised by the core."""

    status_code: int = 500
    code: str = "INTERNAL"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, object]:
        """Return the client-facing payload for this error."""
        return {"detail": self.message, "code": self.code}


class InvalidInputError(CMMSError):
    """Malformed identifier or missing required field (user-correctable)."""

    status_code = 400
    code = "INVALID_INPUT"


class UnauthenticatedError(CMMSError):
    """No authenticated principal on the request."""

    status_code = 401
    code = "UNAUTHENTICATED"


class ForbiddenError(CMMSError):
    """Principal lacks the role or permission required by the operation."""

    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str, *, permission: str | None = None, code: str | None = None) -> None:
        super().__init__(message, code=code)
        self.permission = permission

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        if self.permission is not None:
            payload["permission"] = self.permission
        return payload


class NotFoundError(CMMSError):
    """Referenced tenant, plant or entity does not exist."""

    status_code = 404
    code = "NOT_FOUND"


class TenantReadOnlyError(CMMSError):
    """Write blocked because the tenant is locked in read-only mode."""

    status_code = 423
    code = "TENANT_READ_ONLY"


class InternalError(CMMSError):
    """Unexpected store or infrastructure failure.

    The message is generic; the underlying cause is chained and logged
    server-side keyed by the request id.
    """

    status_code = 500
    code = "INTERNAL"


class InvalidTransitionError(CMMSError):
    """Requested status change is not in the active workflow."""

    status_code = 400
    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, message: str | None = None) -> None:
        super().__init__(message or f"Invalid status transition: {from_status} -> {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class RoleNotPermittedError(ForbiddenError):
    """Transition exists but the actor's role is not in ``allowed_roles``."""

    code = "ROLE_NOT_PERMITTED"


class StoreError(Exception):
    """Data-store failure surfaced by the repository layer."""


class StoreTimeoutError(StoreError):
    """A store call exceeded its time budget."""


class NotProvisionedError(StoreError):
    """The storage backing a feature has not been migrated yet.

    Raised by repositories when the underlying table is missing so callers
    can branch on a typed condition instead of matching driver messages.
    """

    def __init__(self, relation: str) -> None:
        super().__init__(f"Relation '{relation}' is not provisioned")
        self.relation = relation
