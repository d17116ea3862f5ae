"""Persistence for the tenant hierarchy."""

import time

from automara_core.exceptions import (
    ConflictError,
    StoreConflictError,
    TenantNotFoundError,
    ValidationError,
)
from automara_core.observability import emit_counter, get_logger
from automara_core.protocols import Database
from automara_core.tenancy.models import Tenant, TenantStatus, TenantType
from automara_core.tenancy.scope import ScopeFilter

logger = get_logger(__name__)

_COLUMNS = "id, name, domain, status, tenant_type, parent_tenant_id, created_at, updated_at"


class TenantStore:
    """Creates, reads and toggles tenants.

    Hierarchy rules are enforced on create: a tenant with a parent is a
    ``sub_tenant``, and its parent must be an ``msp``. Since an msp never has
    a parent, the hierarchy is at most two levels deep.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    async def create(
        self,
        name: str,
        domain: str,
        tenant_type: TenantType | str | None = None,
        parent_tenant_id: int | None = None,
    ) -> Tenant:
        """Create a tenant.

        Args:
            name: Display name, also used as the tenant's engine folder label
            domain: Unique lookup key
            tenant_type: Defaults to ``sub_tenant`` when a parent is given,
                ``standalone`` otherwise
            parent_tenant_id: Owning MSP tenant

        Raises:
            ValidationError: Missing fields or hierarchy rule violated
            TenantNotFoundError: Parent tenant does not exist
            ConflictError: Domain already registered
        """
        name = (name or "").strip()
        domain = (domain or "").strip().lower()
        if not name:
            raise ValidationError("Tenant name is required")
        if not domain:
            raise ValidationError("Tenant domain is required")

        if tenant_type is None:
            tenant_type = TenantType.SUB_TENANT if parent_tenant_id is not None else TenantType.STANDALONE
        try:
            tenant_type = TenantType(tenant_type)
        except ValueError:
            raise ValidationError(f"Unknown tenant type: {tenant_type}") from None

        if parent_tenant_id is not None:
            if tenant_type != TenantType.SUB_TENANT:
                raise ValidationError("Only sub_tenant tenants may have a parent")
            parent = await self.get(parent_tenant_id)
            if parent.tenant_type != TenantType.MSP:
                raise ValidationError(f"Parent tenant {parent_tenant_id} is not an msp")
        elif tenant_type == TenantType.SUB_TENANT:
            raise ValidationError("A sub_tenant requires a parent_tenant_id")

        now = time.time()
        try:
            rows = await self.database.execute(
                """
                INSERT INTO tenants
                    (name, domain, status, tenant_type, parent_tenant_id, created_at, updated_at)
                VALUES (:name, :domain, :status, :tenant_type, :parent_tenant_id, :now, :now)
                RETURNING id
                """,
                {
                    "name": name,
                    "domain": domain,
                    "status": TenantStatus.ACTIVE.value,
                    "tenant_type": tenant_type.value,
                    "parent_tenant_id": parent_tenant_id,
                    "now": now,
                },
            )
        except StoreConflictError:
            raise ConflictError(f"Domain already registered: {domain}") from None

        tenant = Tenant(
            id=rows[0].id,
            name=name,
            domain=domain,
            status=TenantStatus.ACTIVE,
            tenant_type=tenant_type,
            parent_tenant_id=parent_tenant_id,
            created_at=now,
            updated_at=now,
        )
        logger.info(
            "Tenant created",
            context={"new_tenant_id": tenant.id, "tenant_type": tenant_type.value},
        )
        emit_counter("tenant.created", {"tenant_type": tenant_type.value})
        return tenant

    async def get(self, tenant_id: int) -> Tenant:
        """Get a tenant by ID.

        Raises:
            TenantNotFoundError: If tenant doesn't exist
        """
        rows = await self.database.execute(
            f"SELECT {_COLUMNS} FROM tenants WHERE id = :id",
            {"id": tenant_id},
        )
        if not rows:
            raise TenantNotFoundError(f"Tenant not found: {tenant_id}")
        return Tenant.from_row(rows[0])

    async def get_by_domain(self, domain: str) -> Tenant | None:
        """Look up a tenant by its domain."""
        rows = await self.database.execute(
            f"SELECT {_COLUMNS} FROM tenants WHERE domain = :domain",
            {"domain": domain.strip().lower()},
        )
        return Tenant.from_row(rows[0]) if rows else None

    async def list_tenants(self, scope: ScopeFilter | None = None) -> list[Tenant]:
        """List tenants, optionally restricted to a scope."""
        predicate, params = (scope or ScopeFilter.unrestricted()).sql("id")
        rows = await self.database.execute(
            f"SELECT {_COLUMNS} FROM tenants WHERE {predicate} ORDER BY id",
            params,
        )
        return [Tenant.from_row(row) for row in rows]

    async def list_children(self, parent_tenant_id: int) -> list[Tenant]:
        """List the direct sub-tenants of a tenant."""
        rows = await self.database.execute(
            f"SELECT {_COLUMNS} FROM tenants WHERE parent_tenant_id = :parent ORDER BY id",
            {"parent": parent_tenant_id},
        )
        return [Tenant.from_row(row) for row in rows]

    async def set_status(self, tenant_id: int, status: TenantStatus | str) -> Tenant:
        """Suspend or reactivate a tenant.

        Raises:
            TenantNotFoundError: If tenant doesn't exist
        """
        status = TenantStatus(status)
        rows = await self.database.execute(
            "UPDATE tenants SET status = :status, updated_at = :now WHERE id = :id RETURNING id",
            {"status": status.value, "now": time.time(), "id": tenant_id},
        )
        if not rows:
            raise TenantNotFoundError(f"Tenant not found: {tenant_id}")

        logger.info("Tenant status changed", context={"target_tenant_id": tenant_id, "status": status.value})
        return await self.get(tenant_id)

    async def delete(self, tenant_id: int) -> None:
        """Hard-delete a tenant along with its workflows and audit entries.

        Raises:
            TenantNotFoundError: If tenant doesn't exist
            ConflictError: Tenant still has sub-tenants
        """
        await self.get(tenant_id)
        if await self.list_children(tenant_id):
            raise ConflictError(f"Tenant {tenant_id} still has sub-tenants")

        await self.database.execute("DELETE FROM tenants WHERE id = :id", {"id": tenant_id})
        logger.info("Tenant deleted", context={"target_tenant_id": tenant_id})
        emit_counter("tenant.deleted")
