"""External workflow engine protocol."""

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class EngineWorkflow:
    """A workflow as reported by the engine."""

    id: str
    name: str
    active: bool = False
    tags: list[str] = field(default_factory=list)
    definition: dict[str, Any] = field(default_factory=dict)

    def has_tag_containing(self, needle: str) -> bool:
        """Case-insensitive substring match against tag names."""
        needle = needle.lower()
        return any(needle in tag.lower() for tag in self.tags)


@dataclass
class ClonedWorkflow:
    """Result of cloning a workflow into a tenant folder."""

    external_id: str
    name: str
    definition: dict[str, Any] = field(default_factory=dict)


@dataclass
class EngineExecution:
    """A single workflow run recorded by the engine."""

    id: str
    workflow_id: str
    status: str | None = None
    mode: str | None = None
    finished: bool = False
    started_at: str | None = None
    stopped_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "status": self.status,
            "mode": self.mode,
            "finished": self.finished,
            "started_at": self.started_at,
            "stopped_at": self.stopped_at,
        }


class WorkflowEngine(Protocol):
    """Protocol for external workflow execution engines.

    Every call is bounded by a timeout. Implementations raise
    ``EngineUnavailableError`` for transport failures, timeouts and
    server-side errors, ``EngineNotFoundError`` when the engine reports the
    resource missing, and ``EngineInconsistentError`` when a successful
    response cannot be interpreted.
    """

    async def get_or_create_folder(self, label: str) -> str:
        """Return the folder (tag) ID for ``label``, creating it if absent."""
        ...

    async def clone_workflow(
        self,
        source_id: str,
        new_name: str,
        folder_id: str,
    ) -> ClonedWorkflow:
        """Copy a workflow under a new name, inactive, filed into a folder."""
        ...

    async def set_active(self, external_id: str, active: bool) -> None:
        """Activate or deactivate a workflow."""
        ...

    async def delete_workflow(self, external_id: str) -> bool:
        """Delete a workflow. Returns False if it was already gone."""
        ...

    async def discard(self, external_id: str) -> None:
        """Best-effort delete of a copy nothing references; never raises EngineError."""
        ...

    async def list_workflows(self) -> list[EngineWorkflow]:
        """List every workflow known to the engine."""
        ...

    async def get_workflow(self, external_id: str) -> EngineWorkflow:
        """Fetch a single workflow."""
        ...

    async def list_executions(
        self,
        external_id: str,
        limit: int = 20,
    ) -> list[EngineExecution]:
        """List recent executions of a workflow."""
        ...

    async def ping(self) -> bool:
        """Return True if the engine answers."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...
