"""Plugin discovery via Python entry points."""

from importlib.metadata import entry_points
from typing import Any

from automara_core.exceptions import ConfigError
from automara_core.protocols import Database, WorkflowEngine

BACKEND_GROUPS = {
    "database": "automara_core.backends.database",
    "engine": "automara_core.backends.engine",
}


def discover_backends(group: str) -> dict[str, Any]:
    """Discover all registered backends for a given group.

    Args:
        group: The backend group name (database, engine)

    Returns:
        Dictionary mapping backend names to their classes
    """
    full_group = BACKEND_GROUPS.get(group, group)
    return {ep.name: ep.load() for ep in entry_points(group=full_group)}


def get_backend(group: str, name: str) -> Any:
    """Get a specific backend class by group and name.

    Raises:
        ConfigError: If the backend is not registered
    """
    backends = discover_backends(group)
    if name not in backends:
        available = ", ".join(sorted(backends)) or "(none)"
        raise ConfigError(
            f"Backend '{name}' not found in group '{group}'. Available: {available}"
        )
    return backends[name]


def create_database(backend: str, **kwargs: Any) -> Database:
    """Create a Database instance (e.g. "sqlite")."""
    cls = get_backend("database", backend)
    return cls(**kwargs)


def create_engine(backend: str, **kwargs: Any) -> WorkflowEngine:
    """Create a WorkflowEngine gateway (e.g. "n8n")."""
    cls = get_backend("engine", backend)
    return cls(**kwargs)
