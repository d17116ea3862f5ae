"""Process bootstrap for the automara control plane."""

import asyncio
from pathlib import Path
from typing import Any

from automara_core.catalog import WorkflowCatalog
from automara_core.config import Config
from automara_core.observability import Timer, configure_logging, emit_timer, get_logger
from automara_core.plugins import create_database, create_engine
from automara_core.protocols import Database, WorkflowEngine
from automara_core.provisioning import AuditLog, WorkflowProvisioningService
from automara_core.schema import initialize_schema
from automara_core.tenancy import ScopeResolver, TenantStore

logger = get_logger(__name__)

_NOT_INITIALIZED = "Control plane not initialized. Use async context manager or call initialize() first."


class ControlPlane:
    """Owns the database, engine gateway and services built on them.

    Example usage:
        # Load from config file and serve HTTP
        plane = ControlPlane.from_config("config.yaml")
        plane.serve(port=8080)

        # Or use directly
        async with ControlPlane.from_config("config.yaml") as plane:
            await plane.catalog.sync_from_engine()
    """

    def __init__(
        self,
        config: Config,
        engine: WorkflowEngine | None = None,
        database: Database | None = None,
    ) -> None:
        """Initialize the control plane.

        Args:
            config: Application configuration
            engine: Pre-built engine gateway; built from ``config.engine`` if omitted
            database: Pre-built database; built from ``config.storage`` if omitted
        """
        self.config = config
        self._engine = engine
        self._db = database
        self._tenants: TenantStore | None = None
        self._resolver: ScopeResolver | None = None
        self._catalog: WorkflowCatalog | None = None
        self._audit: AuditLog | None = None
        self._provisioning: WorkflowProvisioningService | None = None
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, path: str | Path) -> "ControlPlane":
        """Create a control plane from a YAML or JSON configuration file."""
        return cls(Config.from_file(path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any], **kwargs: Any) -> "ControlPlane":
        """Create a control plane from a configuration dictionary."""
        return cls(Config.from_dict(config_dict), **kwargs)

    async def initialize(self) -> None:
        """Build backends and services on first use.

        Safe to call repeatedly and concurrently.
        """
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return
            await self._do_initialize()

    async def _do_initialize(self) -> None:
        with Timer() as timer:
            logger.info("Initializing control plane")

            if self._db is None:
                db_config = self.config.storage.database
                self._db = create_database(db_config.backend, path=db_config.path)
            await initialize_schema(self._db)

            if self._engine is None:
                engine_config = self.config.engine
                self._engine = create_engine(
                    engine_config.backend,
                    base_url=engine_config.base_url,
                    api_key=engine_config.api_key,
                    timeout_seconds=engine_config.timeout_seconds,
                    clone_timeout_seconds=engine_config.clone_timeout_seconds,
                )

            self._tenants = TenantStore(self._db)
            self._resolver = ScopeResolver(self._db)
            self._catalog = WorkflowCatalog(
                self._db,
                self._engine,
                library_tag=self.config.engine.library_tag,
            )
            self._audit = AuditLog(self._db)
            self._provisioning = WorkflowProvisioningService(
                self._db,
                self._engine,
                self._catalog,
                self._tenants,
                self._resolver,
                audit=self._audit,
                max_conflict_retries=self.config.provisioning.max_conflict_retries,
            )
            self._initialized = True

        logger.info("Control plane initialized", duration_ms=timer.duration_ms)
        emit_timer("control_plane.init", timer.duration_ms)

    @property
    def db(self) -> Database:
        """Get the database backend."""
        if self._db is None or not self._initialized:
            raise RuntimeError(_NOT_INITIALIZED)
        return self._db

    @property
    def engine(self) -> WorkflowEngine:
        """Get the workflow engine gateway."""
        if self._engine is None or not self._initialized:
            raise RuntimeError(_NOT_INITIALIZED)
        return self._engine

    @property
    def tenants(self) -> TenantStore:
        if self._tenants is None:
            raise RuntimeError(_NOT_INITIALIZED)
        return self._tenants

    @property
    def resolver(self) -> ScopeResolver:
        if self._resolver is None:
            raise RuntimeError(_NOT_INITIALIZED)
        return self._resolver

    @property
    def catalog(self) -> WorkflowCatalog:
        if self._catalog is None:
            raise RuntimeError(_NOT_INITIALIZED)
        return self._catalog

    @property
    def audit(self) -> AuditLog:
        if self._audit is None:
            raise RuntimeError(_NOT_INITIALIZED)
        return self._audit

    @property
    def provisioning(self) -> WorkflowProvisioningService:
        if self._provisioning is None:
            raise RuntimeError(_NOT_INITIALIZED)
        return self._provisioning

    async def aclose(self) -> None:
        """Close the engine client and database connection."""
        if self._engine is not None:
            await self._engine.aclose()
        if self._db is not None:
            await self._db.close()
        self._initialized = False
        logger.info("Control plane shut down")

    def serve(
        self,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        """Start the HTTP server.

        Args:
            host: Host to bind to (defaults to config value)
            port: Port to bind to (defaults to config value)
        """
        import uvicorn

        from automara_core.server.app import create_app

        configure_logging(self.config.logging.level, self.config.logging.format)
        uvicorn.run(
            create_app(self),
            host=host or self.config.server.host,
            port=port or self.config.server.port,
            log_config=None,
        )

    async def __aenter__(self) -> "ControlPlane":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
