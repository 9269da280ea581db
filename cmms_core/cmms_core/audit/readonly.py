"""Read-only tenant guard.

A tenant flagged ``is_read_only`` keeps read access but every mutating
request is rejected with 423.  Auth flows and superadmin tooling stay
writable so operators can lift the lock and users can still sign in.
"""

from __future__ import annotations

from cmms_core.errors import TenantReadOnlyError

WRITE_METHODS: frozenset[str] = frozenset({"POST", "PUT", "PATCH", "DELETE"})

EXEMPT_PATH_PREFIXES: tuple[str, ...] = ("/api/v1/auth", "/api/v1/superadmin")


def is_exempt_path(path: str) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in EXEMPT_PATH_PREFIXES)


def check_write_allowed(method: str, path: str, read_only: bool) -> None:
    """Raise :class:`TenantReadOnlyError` for a write against a read-only tenant."""
    if method.upper() not in WRITE_METHODS:
        return
    if is_exempt_path(path):
        return
    if not read_only:
        return
    raise TenantReadOnlyError("Tenant is in read-only mode")
