"""Activation audit log."""

import time

from automara_core.protocols import Database
from automara_core.provisioning.models import (
    ActivationAuditEntry,
    AuditAction,
    TenantWorkflow,
)


class AuditLog:
    """Append-only history of clones handed to tenants.

    Entries outlive the workflow rows they describe; only deleting the
    tenant removes them.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    async def record(
        self,
        workflow: TenantWorkflow,
        actor: str | None,
        action: AuditAction,
    ) -> ActivationAuditEntry:
        """Append an entry for ``workflow``."""
        now = time.time()
        rows = await self.database.execute(
            """
            INSERT INTO activation_audit
                (workflow_id, tenant_id, activated_by, external_id, folder_name,
                 workflow_name, action, created_at)
            VALUES (:workflow_id, :tenant_id, :activated_by, :external_id, :folder_name,
                    :workflow_name, :action, :created_at)
            RETURNING id
            """,
            {
                "workflow_id": workflow.id,
                "tenant_id": workflow.tenant_id,
                "activated_by": actor,
                "external_id": workflow.external_id,
                "folder_name": workflow.folder_name,
                "workflow_name": workflow.name,
                "action": action.value,
                "created_at": now,
            },
        )
        return ActivationAuditEntry(
            id=rows[0].id,
            workflow_id=workflow.id,
            tenant_id=workflow.tenant_id,
            activated_by=actor,
            external_id=workflow.external_id,
            folder_name=workflow.folder_name,
            workflow_name=workflow.name,
            action=action,
            created_at=now,
        )

    async def list_entries(self, tenant_id: int, limit: int = 100) -> list[ActivationAuditEntry]:
        """Most recent entries for a tenant, newest first."""
        rows = await self.database.execute(
            """
            SELECT id, workflow_id, tenant_id, activated_by, external_id, folder_name,
                   workflow_name, action, created_at
            FROM activation_audit
            WHERE tenant_id = :tenant_id
            ORDER BY created_at DESC, id DESC
            LIMIT :limit
            """,
            {"tenant_id": tenant_id, "limit": limit},
        )
        return [ActivationAuditEntry.from_row(row) for row in rows]
