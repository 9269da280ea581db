"""Tenant resolution with a TTL-bounded default cache."""

from cmms_core.tenancy.resolver import TenantCache, TenantInfo, TenantResolver, is_valid_tenant_id

__all__ = ["TenantCache", "TenantInfo", "TenantResolver", "is_valid_tenant_id"]
