"""Pytest configuration and fixtures."""

import asyncio
from typing import Any

import pytest

from automara_core.backends.database.sqlite import SQLiteDatabase
from automara_core.catalog import WorkflowCatalog, WorkflowTemplate
from automara_core.exceptions import EngineError, EngineNotFoundError
from automara_core.observability import clear_metric_callbacks, register_metric_callback
from automara_core.protocols.engine import ClonedWorkflow, EngineExecution, EngineWorkflow
from automara_core.provisioning import AuditLog, WorkflowProvisioningService
from automara_core.schema import initialize_schema
from automara_core.tenancy import CallerIdentity, ScopeResolver, Tenant, TenantStore, TenantType


class FakeEngine:
    """In-memory WorkflowEngine recording every call.

    Set ``failures[method] = exc`` to make a method raise until removed.
    Set ``delays[method] = seconds`` to hold a method open after it has
    applied its change, so other tasks can run in between.
    """

    def __init__(self) -> None:
        self.workflows: dict[str, dict[str, Any]] = {}
        self.folders: dict[str, str] = {}
        self.executions: dict[str, list[EngineExecution]] = {}
        self.calls: list[str] = []
        self.failures: dict[str, Exception] = {}
        self.delays: dict[str, float] = {}
        self.closed = False
        self._next_id = 1

    def add_workflow(
        self,
        external_id: str,
        name: str,
        tags: list[str] | None = None,
        nodes: list[dict[str, Any]] | None = None,
        active: bool = False,
    ) -> None:
        self.workflows[external_id] = {
            "name": name,
            "tags": list(tags or []),
            "active": active,
            "nodes": nodes if nodes is not None else [{"name": "Start", "type": "n8n-nodes-base.start"}],
            "connections": {},
            "settings": {},
        }

    def named(self, name: str) -> list[str]:
        """External IDs of live engine workflows with this name."""
        return [eid for eid, wf in self.workflows.items() if wf["name"] == name]

    async def _enter(self, method: str) -> None:
        self.calls.append(method)
        await asyncio.sleep(0)
        if method in self.failures:
            raise self.failures[method]

    async def _leave(self, method: str) -> None:
        if method in self.delays:
            await asyncio.sleep(self.delays[method])

    async def get_or_create_folder(self, label: str) -> str:
        await self._enter("get_or_create_folder")
        if label not in self.folders:
            self.folders[label] = f"tag-{len(self.folders) + 1}"
        return self.folders[label]

    async def clone_workflow(self, source_id: str, new_name: str, folder_id: str) -> ClonedWorkflow:
        await self._enter("clone_workflow")
        source = self.workflows.get(source_id)
        if source is None:
            raise EngineNotFoundError(f"Workflow not found: {source_id}", status_code=404)
        external_id = f"wf-{self._next_id}"
        self._next_id += 1
        label = next((name for name, fid in self.folders.items() if fid == folder_id), folder_id)
        self.workflows[external_id] = {
            "name": new_name,
            "tags": [label],
            "active": False,
            "nodes": list(source["nodes"]),
            "connections": dict(source["connections"]),
            "settings": dict(source["settings"]),
        }
        definition = {
            "nodes": list(source["nodes"]),
            "connections": dict(source["connections"]),
            "settings": dict(source["settings"]),
        }
        return ClonedWorkflow(external_id=external_id, name=new_name, definition=definition)

    async def set_active(self, external_id: str, active: bool) -> None:
        await self._enter("set_active")
        if external_id not in self.workflows:
            raise EngineNotFoundError(f"Workflow not found: {external_id}", status_code=404)
        self.workflows[external_id]["active"] = active
        await self._leave("set_active")

    async def delete_workflow(self, external_id: str) -> bool:
        await self._enter("delete_workflow")
        existed = self.workflows.pop(external_id, None) is not None
        await self._leave("delete_workflow")
        return existed

    async def discard(self, external_id: str) -> None:
        self.calls.append("discard")
        try:
            await self.delete_workflow(external_id)
        except EngineError:
            pass

    async def list_workflows(self) -> list[EngineWorkflow]:
        await self._enter("list_workflows")
        return [
            EngineWorkflow(
                id=eid,
                name=wf["name"],
                active=wf["active"],
                tags=list(wf["tags"]),
                definition={"nodes": wf["nodes"], "connections": wf["connections"], "settings": wf["settings"]},
            )
            for eid, wf in self.workflows.items()
        ]

    async def get_workflow(self, external_id: str) -> EngineWorkflow:
        await self._enter("get_workflow")
        if external_id not in self.workflows:
            raise EngineNotFoundError(f"Workflow not found: {external_id}", status_code=404)
        wf = self.workflows[external_id]
        return EngineWorkflow(id=external_id, name=wf["name"], active=wf["active"], tags=list(wf["tags"]))

    async def list_executions(self, external_id: str, limit: int = 20) -> list[EngineExecution]:
        await self._enter("list_executions")
        return self.executions.get(external_id, [])[:limit]

    async def ping(self) -> bool:
        return "ping" not in self.failures

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
async def database():
    """In-memory SQLite database with the schema applied."""
    db = SQLiteDatabase(path=":memory:")
    await initialize_schema(db)
    yield db
    await db.close()


@pytest.fixture
def engine() -> FakeEngine:
    """Fake workflow engine holding one library template."""
    fake = FakeEngine()
    fake.add_workflow("tpl-1", "Email Digest", tags=["library"])
    return fake


@pytest.fixture
def tenant_store(database) -> TenantStore:
    return TenantStore(database)


@pytest.fixture
def resolver(database) -> ScopeResolver:
    return ScopeResolver(database)


@pytest.fixture
def catalog(database, engine) -> WorkflowCatalog:
    return WorkflowCatalog(database, engine)


@pytest.fixture
def audit_log(database) -> AuditLog:
    return AuditLog(database)


@pytest.fixture
def service(database, engine, catalog, tenant_store, resolver, audit_log) -> WorkflowProvisioningService:
    return WorkflowProvisioningService(
        database,
        engine,
        catalog,
        tenant_store,
        resolver,
        audit=audit_log,
    )


@pytest.fixture
async def acme(tenant_store) -> Tenant:
    """A standalone tenant named Acme."""
    return await tenant_store.create(name="Acme", domain="acme.example")


@pytest.fixture
async def template(catalog) -> WorkflowTemplate:
    """The "Email Digest" template, synced into the catalog."""
    await catalog.sync_from_engine()
    templates = await catalog.list_templates()
    return next(t for t in templates if t.external_id == "tpl-1")


@pytest.fixture
def acme_admin(acme) -> CallerIdentity:
    return CallerIdentity(role="client_admin", tenant_id=acme.id, user_id="u-acme")


@pytest.fixture
async def msp_tree(tenant_store) -> dict[str, Tenant]:
    """An MSP with two sub-tenants plus an unrelated standalone tenant."""
    msp = await tenant_store.create(name="Northwind MSP", domain="northwind.example", tenant_type=TenantType.MSP)
    child_a = await tenant_store.create(name="Contoso", domain="contoso.example", parent_tenant_id=msp.id)
    child_b = await tenant_store.create(name="Fabrikam", domain="fabrikam.example", parent_tenant_id=msp.id)
    other = await tenant_store.create(name="Globex", domain="globex.example")
    return {"msp": msp, "child_a": child_a, "child_b": child_b, "other": other}


@pytest.fixture
def metrics():
    """Collects (name, value, labels) for every metric emitted during a test."""
    received: list[tuple[str, float, dict[str, Any]]] = []
    register_metric_callback(lambda name, value, labels: received.append((name, value, labels)))
    yield received
    clear_metric_callbacks()
