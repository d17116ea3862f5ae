"""External workflow engine gateways."""

from automara_core.engine.n8n import N8NGateway

__all__ = ["N8NGateway"]
