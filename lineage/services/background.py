from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine


logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Detached fire-and-forget work whose failures only reach the log.

    Callers never await what they spawn. The runner holds strong references
    so the event loop does not garbage-collect pending tasks, and ``drain``
    lets shutdown hooks and tests wait for outstanding work.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(self._run(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        # Wait for tasks spawned so far, including ones spawned while draining.
        while self._tasks:
            batch = list(self._tasks)
            _done, still_pending = await asyncio.wait(batch, timeout=timeout)
            if still_pending:
                logger.warning("background_drain_timeout pending=%s", len(still_pending))
                return

    async def _run(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - detached work must never escalate
            logger.warning("background_task_failed name=%s", name, exc_info=exc)
