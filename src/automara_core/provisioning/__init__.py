"""Tenant workflow provisioning lifecycle."""

from automara_core.provisioning.audit import AuditLog
from automara_core.provisioning.models import (
    ActivationAuditEntry,
    AuditAction,
    ProvisionOutcome,
    ProvisionResult,
    TenantWorkflow,
    derive_workflow_name,
)
from automara_core.provisioning.service import WorkflowProvisioningService

__all__ = [
    "ActivationAuditEntry",
    "AuditAction",
    "AuditLog",
    "ProvisionOutcome",
    "ProvisionResult",
    "TenantWorkflow",
    "WorkflowProvisioningService",
    "derive_workflow_name",
]
