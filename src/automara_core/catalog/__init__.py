"""Workflow template catalog."""

from automara_core.catalog.sync import SyncResult, WorkflowCatalog, WorkflowTemplate

__all__ = ["SyncResult", "WorkflowCatalog", "WorkflowTemplate"]
