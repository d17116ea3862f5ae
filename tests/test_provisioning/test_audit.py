"""Tests for the activation audit log."""

from automara_core.provisioning import AuditAction, TenantWorkflow


def make_workflow(tenant_id: int, workflow_id: int = 1, external_id: str = "wf-1") -> TenantWorkflow:
    return TenantWorkflow(
        id=workflow_id,
        external_id=external_id,
        tenant_id=tenant_id,
        parent_workflow_id=None,
        name="Acme - Email Digest",
        active=False,
        folder_name="Acme",
        cloned_at=0.0,
        created_at=0.0,
        updated_at=0.0,
    )


class TestAuditLog:
    """Tests for AuditLog."""

    async def test_record_and_list(self, audit_log, acme):
        entry = await audit_log.record(make_workflow(acme.id), "u-acme", AuditAction.PROVISIONED)

        (listed,) = await audit_log.list_entries(acme.id)
        assert listed == entry
        assert listed.to_dict()["action"] == "provisioned"
        assert listed.activated_by == "u-acme"

    async def test_newest_first_and_limited(self, audit_log, acme):
        await audit_log.record(make_workflow(acme.id, external_id="wf-1"), None, AuditAction.PROVISIONED)
        await audit_log.record(make_workflow(acme.id, external_id="wf-2"), None, AuditAction.REACTIVATED)
        await audit_log.record(make_workflow(acme.id, external_id="wf-3"), None, AuditAction.REACTIVATED)

        entries = await audit_log.list_entries(acme.id, limit=2)

        assert [e.external_id for e in entries] == ["wf-3", "wf-2"]

    async def test_entries_are_per_tenant(self, audit_log, msp_tree):
        await audit_log.record(make_workflow(msp_tree["child_a"].id), None, AuditAction.PROVISIONED)

        assert await audit_log.list_entries(msp_tree["child_b"].id) == []

    async def test_entries_removed_with_tenant(self, audit_log, tenant_store, acme):
        await audit_log.record(make_workflow(acme.id), None, AuditAction.PROVISIONED)

        await tenant_store.delete(acme.id)

        assert await audit_log.list_entries(acme.id) == []
