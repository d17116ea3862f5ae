"""Workflow provisioning lifecycle.

State per (tenant, template) pair::

    NONE --provision--> PROVISIONED(inactive) --start--> PROVISIONED(active)
    PROVISIONED(active) --stop--> PROVISIONED(inactive)
    PROVISIONED(inactive) --provision--> PROVISIONED(inactive)  (reactivate)
    PROVISIONED(any) --retire--> NONE

The local row and the engine copy can drift apart because the engine is
reached over the network. The unique index on ``(tenant_id, name)`` and a
compare-and-set on ``external_id`` keep at most one live clone per pair
without any lock.
"""

import json
import time
from typing import NoReturn

from automara_core.catalog import WorkflowCatalog, WorkflowTemplate
from automara_core.exceptions import (
    ConflictError,
    EngineError,
    ForbiddenError,
    StoreConflictError,
    ValidationError,
    WorkflowNotFoundError,
)
from automara_core.observability import Timer, emit_counter, emit_timer, get_logger
from automara_core.protocols import Database, WorkflowEngine
from automara_core.protocols.engine import ClonedWorkflow, EngineExecution
from automara_core.provisioning.audit import AuditLog
from automara_core.provisioning.models import (
    AuditAction,
    ProvisionOutcome,
    ProvisionResult,
    TenantWorkflow,
    derive_workflow_name,
)
from automara_core.tenancy import CallerIdentity, ScopeResolver, Tenant, TenantStore

logger = get_logger(__name__)

MAX_EXECUTIONS_LIMIT = 250

_COLUMNS = (
    "id, external_id, tenant_id, parent_workflow_id, name, definition, active, "
    "folder_name, cloned_at, created_at, updated_at"
)


class WorkflowProvisioningService:
    """Provisions, starts, stops and retires tenant workflows.

    Example:
        service = WorkflowProvisioningService(db, gateway, catalog, tenants, resolver)
        result = await service.provision(42, template_id=1, caller=caller)
        await service.start(result.workflow.id, caller)
    """

    def __init__(
        self,
        database: Database,
        engine: WorkflowEngine,
        catalog: WorkflowCatalog,
        tenants: TenantStore,
        resolver: ScopeResolver,
        audit: AuditLog | None = None,
        max_conflict_retries: int = 3,
    ) -> None:
        """Initialize the provisioning service.

        Args:
            database: Relational store holding workflow rows
            engine: External workflow engine gateway
            catalog: Template catalog
            tenants: Tenant hierarchy store
            resolver: Access scope resolver
            audit: Activation audit log (defaults to one over ``database``)
            max_conflict_retries: How often to re-read after losing a race to
                a concurrent retire before giving up with ``ConflictError``
        """
        self.database = database
        self.engine = engine
        self.catalog = catalog
        self.tenants = tenants
        self.resolver = resolver
        self.audit = audit or AuditLog(database)
        self.max_conflict_retries = max(1, max_conflict_retries)

    # -- queries ---------------------------------------------------------

    async def _find(self, tenant_id: int, name: str) -> TenantWorkflow | None:
        rows = await self.database.execute(
            f"SELECT {_COLUMNS} FROM workflows WHERE tenant_id = :tenant_id AND name = :name",
            {"tenant_id": tenant_id, "name": name},
        )
        return TenantWorkflow.from_row(rows[0]) if rows else None

    async def _load(self, workflow_id: int) -> TenantWorkflow:
        rows = await self.database.execute(
            f"SELECT {_COLUMNS} FROM workflows WHERE id = :id AND is_template = 0",
            {"id": workflow_id},
        )
        if not rows:
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")
        return TenantWorkflow.from_row(rows[0])

    async def _require_active_tenant(self, tenant_id: int) -> Tenant:
        tenant = await self.tenants.get(tenant_id)
        if not tenant.is_active:
            raise ForbiddenError(f"Tenant {tenant_id} is suspended")
        return tenant

    # -- engine helpers --------------------------------------------------

    async def _clone(self, tenant: Tenant, template: WorkflowTemplate, name: str) -> ClonedWorkflow:
        folder_id = await self.engine.get_or_create_folder(tenant.name)
        return await self.engine.clone_workflow(template.external_id, name, folder_id)

    # -- provision -------------------------------------------------------

    async def provision(
        self,
        tenant_id: int | None,
        template_id: int,
        caller: CallerIdentity,
    ) -> ProvisionResult:
        """Give a tenant its own inactive clone of a template.

        Args:
            tenant_id: Target tenant; defaults to the caller's own tenant
            template_id: Local catalog ID of the template
            caller: Identity of the requester

        Returns:
            The tenant workflow, freshly created or reactivated in place

        Raises:
            ForbiddenError: Caller may not act for the tenant, or it is suspended
            NotFoundError: Tenant or template does not exist
            ConflictError: The tenant's clone is already active
            EngineUnavailableError: Engine could not be reached
        """
        target = tenant_id if tenant_id is not None else caller.tenant_id
        if target is None:
            raise ValidationError("tenant_id is required")

        self.resolver.authorize_tenant(caller, target)
        tenant = await self._require_active_tenant(target)
        template = await self.catalog.get_template(template_id)
        name = derive_workflow_name(tenant.name, template.name)

        with Timer() as timer:
            result = await self._provision(tenant, template, name, caller)

        logger.info(
            "Workflow provisioned",
            context={
                "workflow_id": result.workflow.id,
                "external_id": result.workflow.external_id,
                "outcome": result.outcome.value,
            },
            duration_ms=timer.duration_ms,
        )
        emit_counter(f"workflow.provision.{result.outcome.value}")
        emit_timer("workflow.provision.duration", timer.duration_ms)
        return result

    async def _provision(
        self,
        tenant: Tenant,
        template: WorkflowTemplate,
        name: str,
        caller: CallerIdentity,
    ) -> ProvisionResult:
        for _ in range(self.max_conflict_retries):
            existing = await self._find(tenant.id, name)
            if existing is not None and existing.active:
                self._reject_active(existing)

            if existing is None:
                result = await self._create(tenant, template, name, caller)
            else:
                result = await self._reactivate(existing, tenant, template, caller)

            if result is not None:
                return result
            # Row vanished under us (concurrent retire); look again

        emit_counter("workflow.provision.conflict")
        raise ConflictError(f"Workflow '{name}' is changing concurrently; retry later")

    @staticmethod
    def _reject_active(existing: TenantWorkflow) -> NoReturn:
        logger.info("Provision rejected: workflow already active", context={"workflow_id": existing.id})
        emit_counter("workflow.provision.conflict")
        raise ConflictError(f"Workflow '{existing.name}' is already activated")

    async def _create(
        self,
        tenant: Tenant,
        template: WorkflowTemplate,
        name: str,
        caller: CallerIdentity,
    ) -> ProvisionResult | None:
        clone = await self._clone(tenant, template, name)
        now = time.time()
        try:
            rows = await self.database.execute(
                """
                INSERT INTO workflows
                    (external_id, tenant_id, parent_workflow_id, name, definition,
                     is_template, active, folder_name, cloned_at, created_at, updated_at)
                VALUES (:external_id, :tenant_id, :parent_workflow_id, :name, :definition,
                        0, 0, :folder_name, :now, :now, :now)
                RETURNING id
                """,
                {
                    "external_id": clone.external_id,
                    "tenant_id": tenant.id,
                    "parent_workflow_id": template.id,
                    "name": name,
                    "definition": json.dumps(clone.definition),
                    "folder_name": tenant.name,
                    "now": now,
                },
            )
        except StoreConflictError:
            # A concurrent request inserted the row first; ours is redundant
            logger.info("Lost provision race, discarding clone", context={"external_id": clone.external_id})
            await self.engine.discard(clone.external_id)
            winner = await self._find(tenant.id, name)
            if winner is None:
                return None
            if winner.active:
                self._reject_active(winner)
            return ProvisionResult(workflow=winner, outcome=ProvisionOutcome.CREATED)
        except Exception:
            await self.engine.discard(clone.external_id)
            raise

        workflow = TenantWorkflow(
            id=rows[0].id,
            external_id=clone.external_id,
            tenant_id=tenant.id,
            parent_workflow_id=template.id,
            name=name,
            active=False,
            folder_name=tenant.name,
            cloned_at=now,
            created_at=now,
            updated_at=now,
            definition=clone.definition,
        )
        await self.audit.record(workflow, caller.user_id, AuditAction.PROVISIONED)
        return ProvisionResult(workflow=workflow, outcome=ProvisionOutcome.CREATED)

    async def _reactivate(
        self,
        existing: TenantWorkflow,
        tenant: Tenant,
        template: WorkflowTemplate,
        caller: CallerIdentity,
    ) -> ProvisionResult | None:
        """Replace an inactive row's engine copy with a fresh clone in place."""
        clone = await self._clone(tenant, template, existing.name)
        now = time.time()
        try:
            rows = await self.database.execute(
                """
                UPDATE workflows
                SET external_id = :new_external_id, definition = :definition,
                    folder_name = :folder_name, cloned_at = :now, updated_at = :now
                WHERE id = :id AND external_id = :old_external_id AND active = 0
                RETURNING id
                """,
                {
                    "new_external_id": clone.external_id,
                    "definition": json.dumps(clone.definition),
                    "folder_name": tenant.name,
                    "now": now,
                    "id": existing.id,
                    "old_external_id": existing.external_id,
                },
            )
        except Exception:
            await self.engine.discard(clone.external_id)
            raise

        if not rows:
            # Another request changed the row first; it wins
            logger.info("Lost reactivation race, discarding clone", context={"external_id": clone.external_id})
            await self.engine.discard(clone.external_id)
            current = await self._find(tenant.id, existing.name)
            if current is None:
                return None
            if current.active:
                self._reject_active(current)
            return ProvisionResult(workflow=current, outcome=ProvisionOutcome.REACTIVATED)

        # The replaced copy may already be gone from the engine
        await self.engine.discard(existing.external_id)

        workflow = TenantWorkflow(
            id=existing.id,
            external_id=clone.external_id,
            tenant_id=existing.tenant_id,
            parent_workflow_id=existing.parent_workflow_id,
            name=existing.name,
            active=False,
            folder_name=tenant.name,
            cloned_at=now,
            created_at=existing.created_at,
            updated_at=now,
            definition=clone.definition,
        )
        await self.audit.record(workflow, caller.user_id, AuditAction.REACTIVATED)
        return ProvisionResult(workflow=workflow, outcome=ProvisionOutcome.REACTIVATED)

    # -- start / stop / retire -------------------------------------------

    async def _set_active(
        self,
        workflow_id: int,
        caller: CallerIdentity,
        active: bool,
    ) -> TenantWorkflow:
        workflow = await self._load(workflow_id)
        self.resolver.authorize_tenant(caller, workflow.tenant_id)
        if active:
            await self._require_active_tenant(workflow.tenant_id)

        # Local state only changes once the engine has accepted the change
        await self.engine.set_active(workflow.external_id, active)

        now = time.time()
        rows = await self.database.execute(
            """
            UPDATE workflows SET active = :active, updated_at = :now
            WHERE id = :id AND external_id = :external_id
            RETURNING id
            """,
            {
                "active": 1 if active else 0,
                "now": now,
                "id": workflow.id,
                "external_id": workflow.external_id,
            },
        )
        if not rows:
            # A reactivation or retire replaced the engine copy we just changed
            logger.warning(
                "Engine copy changed during activation change",
                context={"workflow_id": workflow.id, "external_id": workflow.external_id},
            )
            emit_counter("workflow.activation.conflict")
            raise ConflictError(
                f"Workflow {workflow.id} changed concurrently; reload and retry"
            )
        workflow.active = active
        workflow.updated_at = now

        action = "start" if active else "stop"
        logger.info("Workflow started" if active else "Workflow stopped", context={"workflow_id": workflow.id})
        emit_counter(f"workflow.{action}")
        return workflow

    async def start(self, workflow_id: int, caller: CallerIdentity) -> TenantWorkflow:
        """Activate a tenant workflow in the engine, then mark it active.

        Raises:
            WorkflowNotFoundError: No such tenant workflow
            ForbiddenError: Caller may not act for the owning tenant
            EngineNotFoundError: The engine copy is gone; reprovision it
            EngineUnavailableError: Engine could not be reached
            ConflictError: A concurrent reactivation replaced the engine copy
        """
        return await self._set_active(workflow_id, caller, True)

    async def stop(self, workflow_id: int, caller: CallerIdentity) -> TenantWorkflow:
        """Deactivate a tenant workflow; the row is kept for reactivation."""
        return await self._set_active(workflow_id, caller, False)

    async def retire(self, workflow_id: int, caller: CallerIdentity) -> None:
        """Delete a tenant workflow from the engine and locally.

        The local row is removed even if the engine delete fails. If a
        concurrent reactivation swaps in a new engine copy while the delete
        is in flight, that copy is retired as well.

        Raises:
            WorkflowNotFoundError: No such tenant workflow
            ForbiddenError: Caller may not act for the owning tenant
            ConflictError: The engine copy kept changing underneath the call
        """
        workflow = await self._load(workflow_id)
        self.resolver.authorize_tenant(caller, workflow.tenant_id)

        for _ in range(self.max_conflict_retries):
            try:
                await self.engine.delete_workflow(workflow.external_id)
            except EngineError as e:
                logger.error(
                    "Engine delete failed during retire; removing local record anyway",
                    context={"workflow_id": workflow.id, "external_id": workflow.external_id},
                    error=e,
                )

            rows = await self.database.execute(
                "DELETE FROM workflows WHERE id = :id AND external_id = :external_id RETURNING id",
                {"id": workflow.id, "external_id": workflow.external_id},
            )
            if rows:
                logger.info("Workflow retired", context={"workflow_id": workflow.id})
                emit_counter("workflow.retire")
                return

            try:
                workflow = await self._load(workflow_id)
            except WorkflowNotFoundError:
                logger.info("Workflow retired concurrently", context={"workflow_id": workflow_id})
                return
            logger.info(
                "Engine copy replaced during retire, retiring the new one",
                context={"workflow_id": workflow.id, "external_id": workflow.external_id},
            )

        emit_counter("workflow.retire.conflict")
        raise ConflictError(f"Workflow {workflow_id} is changing concurrently; retry later")

    # -- reads -----------------------------------------------------------

    async def list_workflows(self, caller: CallerIdentity) -> list[TenantWorkflow]:
        """List tenant workflows visible to the caller."""
        scope = await self.resolver.resolve(caller)
        predicate, params = scope.sql("tenant_id")
        rows = await self.database.execute(
            f"""
            SELECT {_COLUMNS} FROM workflows
            WHERE is_template = 0 AND {predicate}
            ORDER BY tenant_id, name
            """,
            params,
        )
        return [TenantWorkflow.from_row(row) for row in rows]

    async def get_workflow(self, workflow_id: int, caller: CallerIdentity) -> TenantWorkflow:
        """Get one tenant workflow visible to the caller.

        Raises:
            WorkflowNotFoundError: No such tenant workflow
            ForbiddenError: Workflow belongs to a tenant outside the caller's scope
        """
        workflow = await self._load(workflow_id)
        scope = await self.resolver.resolve(caller)
        if not scope.allows(workflow.tenant_id):
            raise ForbiddenError(f"Not authorized for workflow {workflow_id}")
        return workflow

    async def list_executions(
        self,
        workflow_id: int,
        caller: CallerIdentity,
        limit: int = 20,
    ) -> list[EngineExecution]:
        """Recent engine executions of a visible tenant workflow."""
        if limit < 1 or limit > MAX_EXECUTIONS_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_EXECUTIONS_LIMIT}")
        workflow = await self.get_workflow(workflow_id, caller)
        return await self.engine.list_executions(workflow.external_id, limit=limit)
