"""Template catalog synchronized from the workflow engine."""

import json
import time
from dataclasses import dataclass, field
from typing import Any

from automara_core.exceptions import StoreConflictError, TemplateNotFoundError
from automara_core.observability import Timer, emit_counter, emit_timer, get_logger
from automara_core.protocols import Database, WorkflowEngine
from automara_core.protocols.engine import EngineWorkflow

logger = get_logger(__name__)

# Tenant clones are named "{tenant} - {template}"; never pick them up as templates
CLONE_NAME_SEPARATOR = " - "


@dataclass
class WorkflowTemplate:
    """A library workflow that tenants can provision."""

    id: int
    external_id: str
    name: str
    definition: dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    updated_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (definition omitted)."""
        return {
            "id": self.id,
            "external_id": self.external_id,
            "name": self.name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_row(cls, row: Any) -> "WorkflowTemplate":
        """Create from database row."""
        return cls(
            id=row.id,
            external_id=row.external_id,
            name=row.name,
            definition=json.loads(row.definition or "{}"),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


@dataclass
class SyncResult:
    """Counts from one catalog sync."""

    created: int = 0
    updated: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"created": self.created, "updated": self.updated}


class WorkflowCatalog:
    """Owns template rows (``is_template = 1``, ``tenant_id`` NULL).

    Templates are engine workflows tagged with the library tag. Syncing is
    idempotent: re-running it against an unchanged engine creates nothing.
    """

    def __init__(
        self,
        database: Database,
        engine: WorkflowEngine,
        library_tag: str = "library",
    ) -> None:
        self.database = database
        self.engine = engine
        self.library_tag = library_tag

    def is_library_template(self, workflow: EngineWorkflow) -> bool:
        """A template is library-tagged and not itself a tenant clone."""
        return (
            workflow.has_tag_containing(self.library_tag)
            and CLONE_NAME_SEPARATOR not in workflow.name
        )

    async def sync_from_engine(self) -> SyncResult:
        """Upsert every library workflow from the engine by external ID.

        An engine failure aborts the sync; rows already upserted are kept.

        Raises:
            EngineUnavailableError: Engine could not be reached
        """
        result = SyncResult()
        with Timer() as timer:
            workflows = await self.engine.list_workflows()
            for workflow in workflows:
                if not self.is_library_template(workflow):
                    continue
                if await self._upsert(workflow):
                    result.created += 1
                else:
                    result.updated += 1

        logger.info(
            "Catalog synced",
            context={"engine_workflows": len(workflows), **result.to_dict()},
            duration_ms=timer.duration_ms,
        )
        emit_counter("catalog.sync", result.to_dict())
        emit_timer("catalog.sync.duration", timer.duration_ms)
        return result

    async def _upsert(self, workflow: EngineWorkflow) -> bool:
        """Insert or refresh a template row. Returns True if inserted."""
        params = {
            "external_id": workflow.id,
            "name": workflow.name,
            "definition": json.dumps(workflow.definition),
            "now": time.time(),
        }
        existing = await self.database.execute(
            "SELECT id FROM workflows WHERE external_id = :external_id",
            {"external_id": workflow.id},
        )
        if not existing:
            try:
                await self.database.execute(
                    """
                    INSERT INTO workflows
                        (external_id, tenant_id, name, definition, is_template, active,
                         created_at, updated_at)
                    VALUES (:external_id, NULL, :name, :definition, 1, 0, :now, :now)
                    """,
                    params,
                )
                return True
            except StoreConflictError:
                # A concurrent sync inserted it first
                pass

        await self.database.execute(
            """
            UPDATE workflows
            SET name = :name, definition = :definition, is_template = 1,
                tenant_id = NULL, updated_at = :now
            WHERE external_id = :external_id
            """,
            params,
        )
        return False

    async def list_templates(self) -> list[WorkflowTemplate]:
        """List all templates, ordered by name."""
        rows = await self.database.execute(
            """
            SELECT id, external_id, name, definition, created_at, updated_at
            FROM workflows WHERE is_template = 1 ORDER BY name
            """
        )
        return [WorkflowTemplate.from_row(row) for row in rows]

    async def get_template(self, template_id: int) -> WorkflowTemplate:
        """Get a template by local ID.

        Raises:
            TemplateNotFoundError: If no template has this ID
        """
        rows = await self.database.execute(
            """
            SELECT id, external_id, name, definition, created_at, updated_at
            FROM workflows WHERE id = :id AND is_template = 1
            """,
            {"id": template_id},
        )
        if not rows:
            raise TemplateNotFoundError(f"Template not found: {template_id}")
        return WorkflowTemplate.from_row(rows[0])
