"""n8n workflow engine gateway.

Talks to the n8n public REST API (v1). Tenant folders are modelled as n8n
tags: a tenant's cloned workflows all carry the tag named after the tenant.
"""

import json
from typing import Any

import httpx

from automara_core.concurrency import SingleFlight
from automara_core.exceptions import (
    EngineDuplicateError,
    EngineError,
    EngineInconsistentError,
    EngineNotFoundError,
    EngineUnavailableError,
    ValidationError,
)
from automara_core.observability import Timer, emit_timer, get_logger
from automara_core.protocols.engine import (
    ClonedWorkflow,
    EngineExecution,
    EngineWorkflow,
)

logger = get_logger(__name__)

PAGE_SIZE = 100
MAX_LOGGED_BODY = 500


def _unwrap(payload: Any) -> Any:
    """n8n answers either ``{...}`` or ``{"data": {...}}`` depending on version."""
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload


def _truncate(body: Any) -> str:
    text = body if isinstance(body, str) else json.dumps(body, default=str)
    return text[:MAX_LOGGED_BODY]


def _inconsistent(message: str, body: Any, status_code: int | None = None) -> EngineInconsistentError:
    logger.error(
        message,
        context={"response_body": _truncate(body), "status_code": status_code},
    )
    return EngineInconsistentError(message, body=body, status_code=status_code)


class N8NGateway:
    """Async client for workflow CRUD, tagging and activation in n8n.

    Example:
        gateway = N8NGateway(base_url="http://n8n:5678/api/v1", api_key="...")
        folder_id = await gateway.get_or_create_folder("Acme")
        clone = await gateway.clone_workflow("tpl-1", "Acme - Email Digest", folder_id)
        await gateway.set_active(clone.external_id, True)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
        clone_timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the gateway.

        Args:
            base_url: API root, e.g. ``http://n8n:5678/api/v1``
            api_key: Value for the ``X-N8N-API-KEY`` header
            timeout_seconds: Timeout applied to every call
            clone_timeout_seconds: Timeout for the workflow create in a clone
            transport: Optional httpx transport (tests use ``MockTransport``)
            **kwargs: Ignored (for compatibility with other backends)
        """
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key:
            headers["X-N8N-API-KEY"] = api_key

        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.clone_timeout_seconds = clone_timeout_seconds
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )
        self._folders = SingleFlight()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body (None if empty)."""
        try:
            response = await self._client.request(
                method,
                path,
                json=json_body,
                params=params,
                timeout=timeout if timeout is not None else self.timeout_seconds,
            )
        except httpx.TimeoutException as e:
            logger.warning("n8n request timed out", context={"method": method, "path": path})
            raise EngineUnavailableError(f"n8n timed out on {method} {path}") from e
        except httpx.TransportError as e:
            logger.warning(
                "n8n unreachable",
                context={"method": method, "path": path},
                error=e,
            )
            raise EngineUnavailableError(f"n8n unreachable: {e}") from e

        status = response.status_code
        if status >= 500:
            raise EngineUnavailableError(
                f"n8n returned {status} on {method} {path}", status_code=status
            )
        if status == 404:
            raise EngineNotFoundError(f"n8n resource not found: {path}", status_code=404)
        if status == 409 or (status == 400 and "already exists" in response.text.lower()):
            raise EngineDuplicateError(
                f"n8n reports duplicate on {method} {path}", status_code=status
            )
        if status >= 400:
            logger.warning(
                "n8n rejected request",
                context={"method": method, "path": path, "status_code": status,
                         "response_body": _truncate(response.text)},
            )
            raise EngineError(f"n8n returned {status} on {method} {path}", status_code=status)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise _inconsistent(
                f"n8n returned non-JSON body on {method} {path}", response.text, status
            ) from None

    async def _paginate(self, path: str, params: dict[str, Any] | None = None) -> list[Any]:
        """Collect every item of a cursor-paginated list endpoint."""
        items: list[Any] = []
        query = dict(params or {})
        query.setdefault("limit", PAGE_SIZE)
        while True:
            payload = await self._request("GET", path, params=query)
            if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
                raise _inconsistent(f"n8n list response for {path} has no data array", payload)
            items.extend(payload["data"])
            cursor = payload.get("nextCursor")
            if not cursor:
                return items
            query["cursor"] = cursor

    @staticmethod
    def _require_id(payload: Any, what: str) -> str:
        data = _unwrap(payload)
        if not isinstance(data, dict) or data.get("id") in (None, ""):
            raise _inconsistent(f"n8n {what} response is missing an id", payload)
        return str(data["id"])

    @staticmethod
    def _parse_workflow(item: Any) -> EngineWorkflow:
        if not isinstance(item, dict) or "id" not in item or "name" not in item:
            raise _inconsistent("n8n workflow entry is missing id or name", item)
        tags = [
            tag["name"] if isinstance(tag, dict) else str(tag)
            for tag in item.get("tags") or []
            if not isinstance(tag, dict) or tag.get("name")
        ]
        return EngineWorkflow(
            id=str(item["id"]),
            name=item["name"],
            active=bool(item.get("active", False)),
            tags=tags,
            definition={
                "nodes": item.get("nodes") or [],
                "connections": item.get("connections") or {},
                "settings": item.get("settings") or {},
            },
        )

    async def _find_folder(self, label: str) -> str | None:
        for tag in await self._paginate("/tags"):
            if isinstance(tag, dict) and tag.get("name") == label and tag.get("id"):
                return str(tag["id"])
        return None

    async def _resolve_folder(self, label: str) -> str:
        folder_id = await self._find_folder(label)
        if folder_id is not None:
            return folder_id

        try:
            created = await self._request("POST", "/tags", json_body={"name": label})
        except EngineDuplicateError:
            # Another process created it between our lookup and create
            logger.info("Folder created concurrently, refetching", context={"folder": label})
            folder_id = await self._find_folder(label)
            if folder_id is None:
                raise _inconsistent(
                    f"n8n reported folder '{label}' as duplicate but it cannot be found",
                    None,
                ) from None
            return folder_id

        folder_id = self._require_id(created, "tag")
        logger.info("Folder created", context={"folder": label, "folder_id": folder_id})
        return folder_id

    async def get_or_create_folder(self, label: str) -> str:
        """Return the tag ID named exactly ``label``, creating it if absent.

        Concurrent callers in this process asking for the same label share a
        single lookup/create.
        """
        if not label or not label.strip():
            raise ValidationError("Folder label must not be empty")
        return await self._folders.do(label, lambda: self._resolve_folder(label))

    async def clone_workflow(
        self,
        source_id: str,
        new_name: str,
        folder_id: str,
    ) -> ClonedWorkflow:
        """Copy nodes, connections and settings of ``source_id`` verbatim.

        The copy is created inactive under ``new_name`` and tagged with
        ``folder_id``. If tagging fails the copy is deleted before the error
        propagates.
        """
        with Timer() as timer:
            source = _unwrap(await self._request("GET", f"/workflows/{source_id}"))
            if not isinstance(source, dict) or not isinstance(source.get("nodes"), list):
                raise _inconsistent(f"Source workflow {source_id} has no nodes array", source)

            definition = {
                "nodes": source["nodes"],
                "connections": source.get("connections") or {},
                "settings": source.get("settings") or {},
            }
            created = await self._request(
                "POST",
                "/workflows",
                json_body={"name": new_name, **definition, "staticData": None},
                timeout=self.clone_timeout_seconds,
            )
            external_id = self._require_id(created, "workflow create")

            try:
                await self._request(
                    "PUT", f"/workflows/{external_id}/tags", json_body=[{"id": folder_id}]
                )
            except EngineError as e:
                logger.warning(
                    "Tagging clone failed, discarding it",
                    context={"external_id": external_id, "folder_id": folder_id},
                    error=e,
                )
                await self.discard(external_id)
                raise

        logger.info(
            "Workflow cloned",
            context={"source_id": source_id, "external_id": external_id, "name": new_name},
            duration_ms=timer.duration_ms,
        )
        emit_timer("engine.clone.duration", timer.duration_ms)
        return ClonedWorkflow(external_id=external_id, name=new_name, definition=definition)

    async def set_active(self, external_id: str, active: bool) -> None:
        """Activate or deactivate a workflow.

        Raises:
            EngineNotFoundError: The workflow no longer exists in n8n
            EngineUnavailableError: n8n could not be reached
        """
        action = "activate" if active else "deactivate"
        await self._request("POST", f"/workflows/{external_id}/{action}")
        logger.info(f"Workflow {action}d", context={"external_id": external_id})

    async def delete_workflow(self, external_id: str) -> bool:
        """Delete a workflow. Returns False if n8n no longer had it."""
        try:
            await self._request("DELETE", f"/workflows/{external_id}")
        except EngineNotFoundError:
            logger.info("Workflow already gone from n8n", context={"external_id": external_id})
            return False
        return True

    async def discard(self, external_id: str) -> None:
        """Best-effort delete of an orphaned clone; failures are only logged."""
        try:
            await self.delete_workflow(external_id)
        except EngineError as e:
            logger.warning(
                "Could not discard orphaned clone",
                context={"external_id": external_id},
                error=e,
            )

    async def list_workflows(self) -> list[EngineWorkflow]:
        """List every workflow, following pagination cursors."""
        return [self._parse_workflow(item) for item in await self._paginate("/workflows")]

    async def get_workflow(self, external_id: str) -> EngineWorkflow:
        """Fetch a single workflow."""
        payload = await self._request("GET", f"/workflows/{external_id}")
        return self._parse_workflow(_unwrap(payload))

    async def list_executions(
        self,
        external_id: str,
        limit: int = 20,
    ) -> list[EngineExecution]:
        """List the most recent executions of a workflow."""
        payload = await self._request(
            "GET",
            "/executions",
            params={"workflowId": external_id, "limit": limit, "includeData": "false"},
        )
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            raise _inconsistent("n8n executions response has no data array", payload)

        executions = []
        for item in payload["data"]:
            if not isinstance(item, dict) or "id" not in item:
                raise _inconsistent("n8n execution entry is missing an id", item)
            executions.append(
                EngineExecution(
                    id=str(item["id"]),
                    workflow_id=str(item.get("workflowId", external_id)),
                    status=item.get("status"),
                    mode=item.get("mode"),
                    finished=bool(item.get("finished", False)),
                    started_at=item.get("startedAt"),
                    stopped_at=item.get("stoppedAt"),
                )
            )
        return executions

    async def ping(self) -> bool:
        """Return True if n8n answers an authenticated request."""
        try:
            await self._request("GET", "/workflows", params={"limit": 1})
        except EngineError:
            return False
        return True

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
