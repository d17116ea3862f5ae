"""ASGI application for standalone deployment."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware

from automara_core.server.middleware import IdentityMiddleware

if TYPE_CHECKING:
    from automara_core.control_plane import ControlPlane


def create_app(plane: "ControlPlane") -> Starlette:
    """Create the ASGI application.

    Args:
        plane: The configured ControlPlane instance

    Returns:
        Starlette application
    """
    from automara_core.server.routes import create_routes

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await plane.initialize()
        yield
        await plane.aclose()

    public_paths = ["/health"]

    # Executed in reverse order: CORS -> Identity -> Route handler
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=plane.config.server.cors_origins or ["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        ),
        Middleware(IdentityMiddleware, public_paths=public_paths),
    ]

    return Starlette(
        routes=create_routes(plane),
        middleware=middleware,
        lifespan=lifespan,
    )
