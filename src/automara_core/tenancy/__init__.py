"""Tenant hierarchy and access scopes."""

from automara_core.tenancy.models import Tenant, TenantStatus, TenantType
from automara_core.tenancy.scope import (
    CLIENT_ADMIN,
    GLOBAL_ADMIN,
    MSP_ADMIN,
    CallerIdentity,
    ScopeFilter,
    ScopeResolver,
    normalize_role,
)
from automara_core.tenancy.store import TenantStore

__all__ = [
    "CLIENT_ADMIN",
    "GLOBAL_ADMIN",
    "MSP_ADMIN",
    "CallerIdentity",
    "ScopeFilter",
    "ScopeResolver",
    "Tenant",
    "TenantStatus",
    "TenantStore",
    "TenantType",
    "normalize_role",
]
