"""HTTP route handlers.

Handlers only translate between HTTP and the services: the caller identity
comes from ``IdentityMiddleware`` and every domain error maps to a fixed
status code with a ``{"error", "kind"}`` body.
"""

import functools
import json
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from automara_core.exceptions import (
    AutomaraError,
    ConflictError,
    EngineError,
    EngineInconsistentError,
    EngineNotFoundError,
    EngineUnavailableError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from automara_core.observability import get_logger
from automara_core.provisioning import ProvisionOutcome
from automara_core.tenancy import MSP_ADMIN, CallerIdentity, TenantStatus, TenantType

if TYPE_CHECKING:
    from automara_core.control_plane import ControlPlane

logger = get_logger(__name__)

Handler = Callable[[Request], Awaitable[Response]]

RETRY_AFTER_SECONDS = 5

# Most specific first
_STATUS_BY_ERROR: list[tuple[type[AutomaraError], int]] = [
    (EngineNotFoundError, 409),  # engine copy is gone; reprovision
    (EngineUnavailableError, 503),
    (EngineInconsistentError, 502),
    (EngineError, 502),
    (NotFoundError, 404),
    (ForbiddenError, 403),
    (ConflictError, 409),
    (ValidationError, 400),
]


def error_response(error: AutomaraError) -> JSONResponse:
    """Map a domain error to its HTTP response."""
    status = next(
        (code for cls, code in _STATUS_BY_ERROR if isinstance(error, cls)),
        500,
    )
    body: dict[str, Any] = {"error": str(error), "kind": error.kind}
    headers: dict[str, str] = {}

    if isinstance(error, EngineUnavailableError):
        body["retryable"] = True
        headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
    elif isinstance(error, EngineInconsistentError):
        body["error"] = "Workflow engine returned an unexpected response"
    elif status == 500:
        body["error"] = "Internal server error"

    return JSONResponse(body, status_code=status, headers=headers)


def handle_errors(handler: Handler) -> Handler:
    """Decorator turning domain errors into JSON error responses."""

    @functools.wraps(handler)
    async def wrapper(request: Request) -> Response:
        try:
            return await handler(request)
        except AutomaraError as e:
            response = error_response(e)
            if response.status_code >= 500:
                logger.error(
                    "Request failed",
                    context={"path": request.url.path, "status_code": response.status_code},
                    error=e,
                )
            return response
        except Exception as e:
            logger.error(
                "Unhandled error",
                context={"path": request.url.path, "status_code": 500},
                error=e,
            )
            return JSONResponse(
                {"error": "Internal server error", "kind": AutomaraError.kind},
                status_code=500,
            )

    return wrapper


def require_global_admin(handler: Handler) -> Handler:
    """Decorator restricting a route to global admins."""

    @functools.wraps(handler)
    async def wrapper(request: Request) -> Response:
        if not caller_of(request).is_global_admin:
            return JSONResponse(
                {"error": "Global admin access required", "kind": ForbiddenError.kind},
                status_code=403,
            )
        return await handler(request)

    return wrapper


def caller_of(request: Request) -> CallerIdentity:
    """Identity attached by ``IdentityMiddleware`` (anonymous user if absent)."""
    identity = getattr(request.state, "identity", None)
    return identity if identity is not None else CallerIdentity(role="")


async def read_json(request: Request) -> dict[str, Any]:
    """Parse an optional JSON object body; an empty body is ``{}``."""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError("Invalid JSON body") from None
    if not isinstance(body, dict):
        raise ValidationError("JSON body must be an object")
    return body


def optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer") from None


def create_routes(plane: "ControlPlane") -> list[Route]:
    """Create HTTP routes for the control plane.

    Args:
        plane: The configured ControlPlane instance

    Returns:
        List of Starlette routes
    """

    async def health(request: Request) -> Response:
        """Health check endpoint."""
        await plane.initialize()
        engine_ok = await plane.engine.ping()
        return JSONResponse(
            {
                "status": "ok",
                "engine": "ok" if engine_ok else "unreachable",
                "timestamp": time.time(),
            }
        )

    # -- workflows -------------------------------------------------------

    @handle_errors
    async def provision_workflow(request: Request) -> Response:
        """Provision a template for the caller's tenant (or a named one)."""
        await plane.initialize()
        body = await read_json(request)
        result = await plane.provisioning.provision(
            tenant_id=optional_int(body.get("tenant_id"), "tenant_id"),
            template_id=request.path_params["template_id"],
            caller=caller_of(request),
        )
        status = 201 if result.outcome == ProvisionOutcome.CREATED else 200
        return JSONResponse(result.to_dict(), status_code=status)

    @handle_errors
    async def start_workflow(request: Request) -> Response:
        await plane.initialize()
        workflow = await plane.provisioning.start(
            request.path_params["workflow_id"], caller_of(request)
        )
        return JSONResponse(workflow.to_dict())

    @handle_errors
    async def stop_workflow(request: Request) -> Response:
        await plane.initialize()
        workflow = await plane.provisioning.stop(
            request.path_params["workflow_id"], caller_of(request)
        )
        return JSONResponse(workflow.to_dict())

    @handle_errors
    async def retire_workflow(request: Request) -> Response:
        await plane.initialize()
        workflow_id = request.path_params["workflow_id"]
        await plane.provisioning.retire(workflow_id, caller_of(request))
        return JSONResponse({"id": workflow_id, "status": "retired"})

    @handle_errors
    async def list_workflows(request: Request) -> Response:
        await plane.initialize()
        workflows = await plane.provisioning.list_workflows(caller_of(request))
        return JSONResponse({"workflows": [w.to_dict() for w in workflows]})

    @handle_errors
    async def get_workflow(request: Request) -> Response:
        await plane.initialize()
        workflow = await plane.provisioning.get_workflow(
            request.path_params["workflow_id"], caller_of(request)
        )
        return JSONResponse(workflow.to_dict())

    @handle_errors
    async def list_executions(request: Request) -> Response:
        """Recent engine executions of one workflow."""
        await plane.initialize()
        limit = optional_int(request.query_params.get("limit"), "limit")
        if limit is None:
            limit = 20
        executions = await plane.provisioning.list_executions(
            request.path_params["workflow_id"], caller_of(request), limit=limit
        )
        return JSONResponse({"executions": [e.to_dict() for e in executions]})

    # -- catalog ---------------------------------------------------------

    @require_global_admin
    @handle_errors
    async def sync_catalog(request: Request) -> Response:
        """Pull library templates from the engine."""
        await plane.initialize()
        result = await plane.catalog.sync_from_engine()
        return JSONResponse(result.to_dict())

    @handle_errors
    async def list_templates(request: Request) -> Response:
        await plane.initialize()
        templates = await plane.catalog.list_templates()
        return JSONResponse({"templates": [t.to_dict() for t in templates]})

    # -- tenants ---------------------------------------------------------

    @handle_errors
    async def list_tenants(request: Request) -> Response:
        """Tenants visible to the caller."""
        await plane.initialize()
        scope = await plane.resolver.resolve(caller_of(request))
        tenants = await plane.tenants.list_tenants(scope)
        return JSONResponse({"tenants": [t.to_dict() for t in tenants]})

    @handle_errors
    async def create_tenant(request: Request) -> Response:
        """Create a tenant; MSP admins may only add sub-tenants to their own MSP."""
        await plane.initialize()
        caller = caller_of(request)
        body = await read_json(request)
        parent_tenant_id = optional_int(body.get("parent_tenant_id"), "parent_tenant_id")
        tenant_type = body.get("tenant_type")

        if not caller.is_global_admin:
            if caller.role != MSP_ADMIN or caller.tenant_id is None:
                raise ForbiddenError("Only admins may create tenants")
            if parent_tenant_id is None:
                parent_tenant_id = caller.tenant_id
            if parent_tenant_id != caller.tenant_id:
                raise ForbiddenError("MSP admins may only create sub-tenants of their own tenant")
            if tenant_type not in (None, TenantType.SUB_TENANT.value):
                raise ForbiddenError("MSP admins may only create sub-tenants")

        tenant = await plane.tenants.create(
            name=str(body.get("name") or ""),
            domain=str(body.get("domain") or ""),
            tenant_type=tenant_type,
            parent_tenant_id=parent_tenant_id,
        )
        return JSONResponse(tenant.to_dict(), status_code=201)

    @require_global_admin
    @handle_errors
    async def suspend_tenant(request: Request) -> Response:
        await plane.initialize()
        tenant = await plane.tenants.set_status(
            request.path_params["tenant_id"], TenantStatus.SUSPENDED
        )
        return JSONResponse(tenant.to_dict())

    @require_global_admin
    @handle_errors
    async def activate_tenant(request: Request) -> Response:
        await plane.initialize()
        tenant = await plane.tenants.set_status(
            request.path_params["tenant_id"], TenantStatus.ACTIVE
        )
        return JSONResponse(tenant.to_dict())

    @require_global_admin
    @handle_errors
    async def delete_tenant(request: Request) -> Response:
        """Hard delete; workflows and audit entries go with the tenant."""
        await plane.initialize()
        tenant_id = request.path_params["tenant_id"]
        await plane.tenants.delete(tenant_id)
        return JSONResponse({"id": tenant_id, "status": "deleted"})

    return [
        Route("/health", health, methods=["GET"]),
        Route("/workflows", list_workflows, methods=["GET"]),
        Route("/workflows/{workflow_id:int}", get_workflow, methods=["GET"]),
        Route("/workflows/{workflow_id:int}/executions", list_executions, methods=["GET"]),
        Route("/workflows/{template_id:int}/provision", provision_workflow, methods=["POST"]),
        Route("/workflows/{workflow_id:int}/start", start_workflow, methods=["POST"]),
        Route("/workflows/{workflow_id:int}/stop", stop_workflow, methods=["POST"]),
        Route("/workflows/{workflow_id:int}/retire", retire_workflow, methods=["POST"]),
        Route("/catalog/sync", sync_catalog, methods=["POST"]),
        Route("/catalog/templates", list_templates, methods=["GET"]),
        Route("/tenants", list_tenants, methods=["GET"]),
        Route("/tenants", create_tenant, methods=["POST"]),
        Route("/tenants/{tenant_id:int}", delete_tenant, methods=["DELETE"]),
        Route("/tenants/{tenant_id:int}/suspend", suspend_tenant, methods=["POST"]),
        Route("/tenants/{tenant_id:int}/activate", activate_tenant, methods=["POST"]),
    ]
