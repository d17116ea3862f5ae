"""Automara Core - multi-tenant control plane for workflow provisioning."""

from automara_core.config import Config
from automara_core.control_plane import ControlPlane
from automara_core.observability import (
    LogLevel,
    RequestContext,
    StructuredLogger,
    Timer,
    configure_logging,
    emit_counter,
    emit_metric,
    emit_timer,
    get_logger,
    register_metric_callback,
)

__version__ = "0.1.0"
__all__ = [
    # Core
    "Config",
    "ControlPlane",
    # Observability
    "LogLevel",
    "RequestContext",
    "StructuredLogger",
    "Timer",
    "configure_logging",
    "emit_counter",
    "emit_metric",
    "emit_timer",
    "get_logger",
    "register_metric_callback",
]
