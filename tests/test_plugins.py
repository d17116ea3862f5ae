"""Tests for backend plugin discovery."""

import pytest

from automara_core.backends.database.sqlite import SQLiteDatabase
from automara_core.engine import N8NGateway
from automara_core.exceptions import ConfigError
from automara_core.plugins import create_database, create_engine, discover_backends, get_backend


class TestPlugins:
    """Tests for entry point based backend lookup."""

    def test_builtin_backends_registered(self) -> None:
        assert discover_backends("database")["sqlite"] is SQLiteDatabase
        assert discover_backends("engine")["n8n"] is N8NGateway

    def test_unknown_backend(self) -> None:
        with pytest.raises(ConfigError, match="Available: sqlite"):
            get_backend("database", "postgres")

    async def test_create_database(self) -> None:
        db = create_database("sqlite", path=":memory:")
        assert isinstance(db, SQLiteDatabase)
        await db.close()

    async def test_create_engine(self) -> None:
        engine = create_engine("n8n", base_url="http://n8n.test/api/v1/", api_key="k")
        assert isinstance(engine, N8NGateway)
        assert engine.base_url == "http://n8n.test/api/v1"
        await engine.aclose()
