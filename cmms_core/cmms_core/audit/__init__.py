"""Write protection for read-only tenants."""

from cmms_core.audit.readonly import EXEMPT_PATH_PREFIXES, WRITE_METHODS, check_write_allowed, is_exempt_path

__all__ = ["EXEMPT_PATH_PREFIXES", "WRITE_METHODS", "check_write_allowed", "is_exempt_path"]
