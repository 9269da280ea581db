"""Tenant, RBAC, SLA and workflow core for the CMMS backend."""

__version__ = "0.1.0"
