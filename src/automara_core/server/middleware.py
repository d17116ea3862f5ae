"""Caller identity middleware for the HTTP server."""

from typing import Any, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from automara_core.observability import RequestContext, get_logger
from automara_core.tenancy import CallerIdentity

logger = get_logger(__name__)


class IdentityMiddleware(BaseHTTPMiddleware):
    """Reads the trusted caller identity set by the upstream auth layer.

    The role, tenant and user headers are parsed into a ``CallerIdentity``
    on ``request.state.identity`` and bound to the logging context for the
    rest of the request.
    """

    def __init__(
        self,
        app: Any,
        role_header: str = "X-User-Role",
        tenant_header: str = "X-Tenant-ID",
        user_header: str = "X-User-ID",
        request_id_header: str = "X-Request-ID",
        public_paths: list[str] | None = None,
    ) -> None:
        """Initialize identity middleware.

        Args:
            app: The ASGI application
            role_header: Header carrying the caller role
            tenant_header: Header carrying the caller's tenant ID
            user_header: Header carrying the caller's user ID
            request_id_header: Header carrying an upstream request ID
            public_paths: Paths served without an identity
        """
        super().__init__(app)
        self.role_header = role_header
        self.tenant_header = tenant_header
        self.user_header = user_header
        self.request_id_header = request_id_header
        self.public_paths = set(public_paths or ["/health"])

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Any],
    ) -> Response:
        """Attach the caller identity, or reject a malformed tenant header."""
        if request.url.path in self.public_paths:
            return await call_next(request)

        raw_tenant = request.headers.get(self.tenant_header)
        tenant_id: int | None = None
        if raw_tenant:
            try:
                tenant_id = int(raw_tenant)
            except ValueError:
                return JSONResponse(
                    {"error": f"Invalid {self.tenant_header} header", "kind": "validation_error"},
                    status_code=400,
                )

        identity = CallerIdentity(
            role=request.headers.get(self.role_header, ""),
            tenant_id=tenant_id,
            user_id=request.headers.get(self.user_header) or None,
        )
        request.state.identity = identity

        async with RequestContext(
            request_id=request.headers.get(self.request_id_header),
            tenant_id=identity.tenant_id,
            user_id=identity.user_id,
            role=identity.role,
        ) as ctx:
            response = await call_next(request)
            response.headers[self.request_id_header] = ctx.request_id
            return response
