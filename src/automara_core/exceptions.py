"""Automara Core exceptions.

Every exception carries a stable ``kind`` string that the HTTP layer returns
to callers alongside the human-readable message.
"""

from typing import Any


class AutomaraError(Exception):
    """Base exception for automara-core."""

    kind = "internal_error"


class ConfigError(AutomaraError):
    """Configuration error."""

    kind = "config_error"


class ValidationError(AutomaraError):
    """Request or input failed validation."""

    kind = "validation_error"


class NotFoundError(AutomaraError):
    """Resource not found."""

    kind = "not_found"


class TenantNotFoundError(NotFoundError):
    """Tenant not found."""

    pass


class TemplateNotFoundError(NotFoundError):
    """Template not found in the catalog."""

    pass


class WorkflowNotFoundError(NotFoundError):
    """Tenant workflow not found."""

    pass


class ForbiddenError(AutomaraError):
    """Caller is not allowed to act on the requested resource."""

    kind = "forbidden"


class AccessDeniedError(ForbiddenError):
    """Caller identity is insufficient to resolve an access scope."""

    kind = "access_denied"


class ConflictError(AutomaraError):
    """Request conflicts with the current state of a resource."""

    kind = "conflict"


class StoreConflictError(ConflictError):
    """A unique constraint was violated in the relational store."""

    kind = "store_conflict"


class EngineError(AutomaraError):
    """External workflow engine error."""

    kind = "engine_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EngineUnavailableError(EngineError):
    """Engine could not be reached, timed out, or failed server-side.

    Retryable.
    """

    kind = "engine_unavailable"


class EngineNotFoundError(EngineError):
    """Engine reports the workflow or tag does not exist."""

    kind = "engine_not_found"


class EngineDuplicateError(EngineError):
    """Engine rejected a create because the resource already exists."""

    kind = "engine_duplicate"


class EngineInconsistentError(EngineError):
    """Engine reported success but the response is malformed.

    Not retryable. ``body`` holds the raw response for operator diagnosis and
    must never be returned to callers.
    """

    kind = "engine_inconsistent"

    def __init__(
        self,
        message: str,
        body: Any = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.body = body
