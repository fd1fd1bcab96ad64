"""Single funnel for errors raised by the reload actors."""

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class ErrorSink:
    """Collects run-time errors from every actor and logs them.

    Errors are always logged at ERROR, so they stay visible when verbose
    logging is off. An optional callback lets the host decide whether a
    given error class is fatal.
    """

    def __init__(
        self,
        maxsize: int = 64,
        on_error: Callable[[Exception], Any] | None = None,
        history: int = 100,
    ) -> None:
        self._queue: asyncio.Queue[Exception | None] = asyncio.Queue(maxsize=maxsize)
        self._on_error = on_error
        self._history: deque[Exception] = deque(maxlen=history)
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def report(self, error: Exception) -> None:
        """Queue an error without blocking the caller."""
        if not self.running:
            self._report_inline(error)
            return
        try:
            self._queue.put_nowait(error)
        except asyncio.QueueFull:
            # Never drop: report straight away instead of queueing
            logger.warning("Error sink full, reporting inline")
            self._report_inline(error)

    async def start(self) -> None:
        """Start consuming reported errors."""
        if self.running:
            return
        self._task = asyncio.create_task(self._consume(), name="treeloader-error-sink")

    async def stop(self) -> None:
        """Drain pending errors and stop the consumer."""
        if self._task is None:
            return
        if not self._task.done():
            await self._queue.put(None)
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None

    def recent(self, limit: int = 10) -> list[Exception]:
        """Most recently reported errors, oldest first."""
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    async def _consume(self) -> None:
        while True:
            error = await self._queue.get()
            if error is None:
                break
            self._record(error)
            await self._notify(error)

    def _record(self, error: Exception) -> None:
        self._history.append(error)
        logger.error(f"{type(error).__name__}: {error}")

    async def _notify(self, error: Exception) -> None:
        if self._on_error is None:
            return
        try:
            result = self._on_error(error)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"Error callback failed: {e}")

    def _report_inline(self, error: Exception) -> None:
        self._record(error)
        if self._on_error is None:
            return
        try:
            result = self._on_error(error)
        except Exception as e:
            logger.error(f"Error callback failed: {e}")
            return
        if asyncio.iscoroutine(result):
            try:
                asyncio.get_running_loop().create_task(result)
            except RuntimeError:
                result.close()
                logger.debug("No running loop for async error callback")
