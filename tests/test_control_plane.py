"""Tests for the control plane bootstrap."""

import asyncio

import pytest

from automara_core import ControlPlane
from automara_core.engine import N8NGateway
from automara_core.exceptions import ConfigError

MEMORY = {"storage": {"database": {"path": ":memory:"}}}


class TestControlPlane:
    """Tests for ControlPlane."""

    def test_services_unavailable_before_initialize(self, engine) -> None:
        plane = ControlPlane.from_dict(MEMORY, engine=engine)

        with pytest.raises(RuntimeError, match="not initialized"):
            _ = plane.provisioning
        with pytest.raises(RuntimeError, match="not initialized"):
            _ = plane.engine

    async def test_context_manager_lifecycle(self, engine) -> None:
        async with ControlPlane.from_dict(MEMORY, engine=engine) as plane:
            tenant = await plane.tenants.create(name="Acme", domain="acme.example")
            result = await plane.catalog.sync_from_engine()

            assert tenant.id > 0
            assert result.created == 1
            assert plane.engine is engine

        assert engine.closed

    async def test_concurrent_initialize_builds_once(self, engine) -> None:
        plane = ControlPlane.from_dict(MEMORY, engine=engine)

        await asyncio.gather(plane.initialize(), plane.initialize(), plane.initialize())
        db = plane.db
        await plane.initialize()

        assert plane.db is db
        await plane.aclose()

    async def test_engine_built_from_config(self) -> None:
        plane = ControlPlane.from_dict({
            **MEMORY,
            "engine": {"base_url": "http://n8n.test/api/v1", "api_key": "k", "timeout_seconds": 3},
            "provisioning": {"max_conflict_retries": 5},
        })
        await plane.initialize()

        assert isinstance(plane.engine, N8NGateway)
        assert plane.engine.timeout_seconds == 3
        assert plane.provisioning.max_conflict_retries == 5
        await plane.aclose()

    def test_from_config_file(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("N8N_API_KEY", "from-env")
        path = tmp_path / "automara.yaml"
        path.write_text(
            "engine:\n"
            "  base_url: http://n8n.internal/api/v1\n"
            "  api_key: ${N8N_API_KEY}\n"
            "  library_tag: shared\n"
        )

        plane = ControlPlane.from_config(path)

        assert plane.config.engine.api_key == "from-env"
        assert plane.config.engine.library_tag == "shared"

    def test_from_config_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConfigError):
            ControlPlane.from_config(tmp_path / "missing.yaml")
