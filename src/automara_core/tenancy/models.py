"""Tenant hierarchy data model."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class TenantStatus(str, Enum):
    """Lifecycle status of a tenant."""

    ACTIVE = "active"
    SUSPENDED = "suspended"


class TenantType(str, Enum):
    """Position of a tenant in the hierarchy."""

    STANDALONE = "standalone"
    MSP = "msp"
    SUB_TENANT = "sub_tenant"


@dataclass
class Tenant:
    """An organization using the control plane.

    A ``sub_tenant`` always has a parent, and that parent is an ``msp``.
    """

    id: int
    name: str
    domain: str
    status: TenantStatus
    tenant_type: TenantType
    parent_tenant_id: int | None
    created_at: float
    updated_at: float

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "domain": self.domain,
            "status": self.status.value,
            "tenant_type": self.tenant_type.value,
            "parent_tenant_id": self.parent_tenant_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_row(cls, row: Any) -> "Tenant":
        """Create from database row."""
        return cls(
            id=row.id,
            name=row.name,
            domain=row.domain,
            status=TenantStatus(row.status),
            tenant_type=TenantType(row.tenant_type),
            parent_tenant_id=row.parent_tenant_id,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
