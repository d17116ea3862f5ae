"""Tenant workflow records."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def derive_workflow_name(tenant_name: str, template_name: str) -> str:
    """Name of a tenant's clone of a template, unique per tenant."""
    return f"{tenant_name} - {template_name}"


class ProvisionOutcome(str, Enum):
    """How a provision request was satisfied."""

    CREATED = "created"
    REACTIVATED = "reactivated"


class AuditAction(str, Enum):
    """Actions recorded in the activation audit log."""

    PROVISIONED = "provisioned"
    REACTIVATED = "reactivated"


@dataclass
class TenantWorkflow:
    """A tenant's clone of a template, mirrored from the engine."""

    id: int
    external_id: str
    tenant_id: int
    parent_workflow_id: int | None
    name: str
    active: bool
    folder_name: str | None
    cloned_at: float | None
    created_at: float
    updated_at: float
    definition: dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (definition omitted)."""
        return {
            "id": self.id,
            "external_id": self.external_id,
            "tenant_id": self.tenant_id,
            "parent_workflow_id": self.parent_workflow_id,
            "name": self.name,
            "active": self.active,
            "folder_name": self.folder_name,
            "cloned_at": self.cloned_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_row(cls, row: Any) -> "TenantWorkflow":
        """Create from database row."""
        return cls(
            id=row.id,
            external_id=row.external_id,
            tenant_id=row.tenant_id,
            parent_workflow_id=row.parent_workflow_id,
            name=row.name,
            active=bool(row.active),
            folder_name=row.folder_name,
            cloned_at=row.cloned_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
            definition=json.loads(row.definition or "{}"),
        )


@dataclass
class ProvisionResult:
    """The provisioned workflow and how it came to be."""

    workflow: TenantWorkflow
    outcome: ProvisionOutcome

    @property
    def created(self) -> bool:
        return self.outcome == ProvisionOutcome.CREATED

    def to_dict(self) -> dict[str, Any]:
        return {"workflow": self.workflow.to_dict(), "outcome": self.outcome.value}


@dataclass
class ActivationAuditEntry:
    """Append-only record of a clone being provisioned or reactivated."""

    id: int
    workflow_id: int
    tenant_id: int
    activated_by: str | None
    external_id: str
    folder_name: str | None
    workflow_name: str
    action: AuditAction
    created_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "tenant_id": self.tenant_id,
            "activated_by": self.activated_by,
            "external_id": self.external_id,
            "folder_name": self.folder_name,
            "workflow_name": self.workflow_name,
            "action": self.action.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_row(cls, row: Any) -> "ActivationAuditEntry":
        return cls(
            id=row.id,
            workflow_id=row.workflow_id,
            tenant_id=row.tenant_id,
            activated_by=row.activated_by,
            external_id=row.external_id,
            folder_name=row.folder_name,
            workflow_name=row.workflow_name,
            action=AuditAction(row.action),
            created_at=row.created_at,
        )
