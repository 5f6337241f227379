"""Fire-and-forget task dispatcher for work that outlives the HTTP request."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

from wecom_relay.log import get_logger
from wecom_relay.services.base import Service

logger = get_logger(__name__)


class TaskDispatcher(Service):
    """Runs background coroutines tied to the process lifetime.

    Tasks are strongly referenced until they finish; an exception in one task
    is logged and never reaches the server.
    """

    def __init__(self, shutdown_timeout: float = 10.0):
        self._tasks: set[asyncio.Task[Any]] = set()
        self._running = False
        self._shutdown_timeout = shutdown_timeout

    @property
    def service_name(self) -> str:
        return "dispatcher"

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def start(self) -> None:
        self._running = True
        logger.info("dispatcher_started")

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
        if not self._running:
            coro.close()
            raise RuntimeError("Dispatcher is not running. Call start() first.")
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("background_task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "background_task_failed",
                task=task.get_name(),
                error=str(exc),
                exc_info=exc,
            )

    async def join(self) -> None:
        """Wait until every task spawned so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def stop(self) -> None:
        """Give running tasks a grace period, then cancel the rest."""
        self._running = False
        if self._tasks:
            _, pending = await asyncio.wait(set(self._tasks), timeout=self._shutdown_timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        logger.info("dispatcher_stopped")

    async def health_check(self) -> bool:
        return self._running
