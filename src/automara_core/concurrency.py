"""In-process call de-duplication."""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

T = TypeVar("T")


class SingleFlight:
    """Collapses concurrent calls sharing a key into one execution.

    Callers that arrive while a call for the same key is running wait for
    that call's outcome, result or exception, instead of starting another.
    Nothing is cached once the call finishes.

    Example:
        folders = SingleFlight()
        folder_id = await folders.do(label, lambda: lookup_or_create(label))
    """

    def __init__(self) -> None:
        self._in_flight: dict[str, asyncio.Task[Any]] = {}

    def in_flight(self, key: str) -> bool:
        """Return True if a call for ``key`` is currently running."""
        return key in self._in_flight

    def _finish(self, key: str, task: asyncio.Task[Any]) -> None:
        self._in_flight.pop(key, None)
        # Mark the outcome retrieved even if every waiter was cancelled
        if not task.cancelled():
            task.exception()

    async def do(
        self,
        key: str,
        func: Callable[[], Awaitable[T]],
    ) -> T:
        """Execute ``func`` once per key among concurrent callers.

        Args:
            key: Unique key for this operation
            func: Async function to execute

        Returns:
            Result from func (may be from another caller)
        """
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(func())
            self._in_flight[key] = task
            task.add_done_callback(lambda t: self._finish(key, t))

        # Shield so one cancelled waiter does not cancel the shared call
        return await asyncio.shield(task)
