"""HTTP Server module."""

from automara_core.server.app import create_app
from automara_core.server.middleware import IdentityMiddleware
from automara_core.server.routes import create_routes, error_response

__all__ = [
    "IdentityMiddleware",
    "create_app",
    "create_routes",
    "error_response",
]
