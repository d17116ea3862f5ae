"""Protocol interfaces for pluggable backends."""

from automara_core.protocols.database import Database, Row
from automara_core.protocols.engine import (
    ClonedWorkflow,
    EngineExecution,
    EngineWorkflow,
    WorkflowEngine,
)

__all__ = [
    "ClonedWorkflow",
    "Database",
    "EngineExecution",
    "EngineWorkflow",
    "Row",
    "WorkflowEngine",
]
