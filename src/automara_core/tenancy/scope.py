"""Access scope resolution over the tenant hierarchy.

Every tenant-scoped read goes through ``ScopeResolver`` so that the rule for
"which tenants can this caller see" lives in exactly one place.
"""

from dataclasses import dataclass
from typing import Any

from automara_core.exceptions import AccessDeniedError, ForbiddenError
from automara_core.observability import get_logger
from automara_core.protocols import Database

logger = get_logger(__name__)

GLOBAL_ADMIN = "global_admin"
MSP_ADMIN = "msp_admin"
CLIENT_ADMIN = "client_admin"
DEFAULT_ROLE = "user"

# Older deployments issued plain "admin" for platform operators
LEGACY_ROLE_ALIASES = {"admin": GLOBAL_ADMIN}

HIERARCHY_ROLES = frozenset({MSP_ADMIN, CLIENT_ADMIN})

# Own tenant plus every descendant. UNION (not UNION ALL) stops on cycles.
_SCOPE_QUERY = """
WITH RECURSIVE scope(id) AS (
    SELECT id FROM tenants WHERE id = :tenant_id
    UNION
    SELECT t.id FROM tenants t JOIN scope s ON t.parent_tenant_id = s.id
)
SELECT id FROM scope
"""


def normalize_role(role: str | None) -> str:
    """Lower-case a role name and resolve legacy aliases."""
    name = (role or "").strip().lower()
    if not name:
        return DEFAULT_ROLE
    return LEGACY_ROLE_ALIASES.get(name, name)


@dataclass(frozen=True)
class CallerIdentity:
    """Trusted identity of the caller, supplied by the upstream auth layer."""

    role: str
    tenant_id: int | None = None
    user_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", normalize_role(self.role))

    @property
    def is_global_admin(self) -> bool:
        return self.role == GLOBAL_ADMIN


@dataclass(frozen=True)
class ScopeFilter:
    """The set of tenant IDs a caller may read or act on.

    ``tenant_ids`` is None for an unrestricted (global admin) scope.
    """

    tenant_ids: frozenset[int] | None

    @classmethod
    def unrestricted(cls) -> "ScopeFilter":
        return cls(tenant_ids=None)

    @classmethod
    def of(cls, *tenant_ids: int) -> "ScopeFilter":
        return cls(tenant_ids=frozenset(tenant_ids))

    @property
    def is_unrestricted(self) -> bool:
        return self.tenant_ids is None

    def allows(self, tenant_id: int | None) -> bool:
        """Return True if ``tenant_id`` is inside the scope."""
        if self.tenant_ids is None:
            return True
        return tenant_id is not None and tenant_id in self.tenant_ids

    def sql(self, column: str, prefix: str = "scope") -> tuple[str, dict[str, Any]]:
        """Render the scope as a parameterized SQL predicate on ``column``.

        Returns:
            Tuple of (predicate, params) to splice into a WHERE clause
        """
        if self.tenant_ids is None:
            return "1 = 1", {}
        if not self.tenant_ids:
            return "1 = 0", {}
        params = {f"{prefix}_{i}": tid for i, tid in enumerate(sorted(self.tenant_ids))}
        placeholders = ", ".join(f":{name}" for name in params)
        return f"{column} IN ({placeholders})", params


class ScopeResolver:
    """Computes access scopes from the tenant hierarchy.

    Scopes are evaluated fresh on every call and never cached, so a tenant
    moved or deleted is reflected on the next request.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    async def resolve_scope(self, role: str | None, tenant_id: int | None) -> ScopeFilter:
        """Resolve the tenants visible to a caller.

        Args:
            role: Caller role; ``admin`` is treated as ``global_admin``
            tenant_id: Caller's own tenant

        Returns:
            Scope filter for the caller

        Raises:
            AccessDeniedError: Non-global caller without a tenant, or an admin
                whose tenant does not exist
        """
        role = normalize_role(role)
        if role == GLOBAL_ADMIN:
            return ScopeFilter.unrestricted()

        if tenant_id is None:
            logger.warning("Scope denied: no tenant on caller", context={"caller_role": role})
            raise AccessDeniedError(f"Role '{role}' requires a tenant")

        if role not in HIERARCHY_ROLES:
            return ScopeFilter.of(tenant_id)

        rows = await self.database.execute(_SCOPE_QUERY, {"tenant_id": tenant_id})
        if not rows:
            logger.warning(
                "Scope denied: caller tenant does not exist",
                context={"caller_role": role, "caller_tenant_id": tenant_id},
            )
            raise AccessDeniedError(f"Tenant {tenant_id} does not exist")
        return ScopeFilter(tenant_ids=frozenset(row.id for row in rows))

    async def resolve(self, caller: CallerIdentity) -> ScopeFilter:
        """Resolve the scope for a caller identity."""
        return await self.resolve_scope(caller.role, caller.tenant_id)

    @staticmethod
    def authorize_tenant(caller: CallerIdentity, tenant_id: int) -> None:
        """Check the caller may mutate workflows owned by ``tenant_id``.

        Raises:
            ForbiddenError: Caller is neither a global admin nor a member
        """
        if caller.is_global_admin:
            return
        if caller.tenant_id is None or caller.tenant_id != tenant_id:
            raise ForbiddenError(f"Not authorized for tenant {tenant_id}")
