"""Serializes watch-set changes against the notifier."""

import asyncio
import contextlib
import logging

from treeloader.errors import WatchError
from treeloader.events import ErrorSink, WatchChangeRequest, WatchIntent
from treeloader.watch.notifier import Notifier
from treeloader.watch.watchset import WatchDiff, WatchSet, diff_watch_sets

logger = logging.getLogger(__name__)


class WatchSetManager:
    """Owns the current watch set and the only consumer of watch requests.

    Requests flow over a bounded queue to a single consumer task, so the
    notifier never sees concurrent add/remove calls. Notifier failures go to
    the error sink and do not stop the consumer.
    """

    def __init__(
        self,
        notifier: Notifier,
        errors: ErrorSink,
        maxsize: int = 64,
        verbose: bool = False,
    ) -> None:
        self._notifier = notifier
        self._errors = errors
        self._requests: asyncio.Queue[WatchChangeRequest | None] = asyncio.Queue(maxsize=maxsize)
        self._current = WatchSet()
        self._verbose = verbose
        self._task: asyncio.Task | None = None

    @property
    def current(self) -> WatchSet:
        """Copy of the directories the loop is watching."""
        return self._current.copy()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._consume(), name="treeloader-watch-manager")

    async def stop(self) -> None:
        if self._task is None:
            return
        if not self._task.done():
            await self._requests.put(None)
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None

    async def apply(self, new: WatchSet) -> WatchDiff:
        """Replace the current watch set with `new`.

        Returns once the consumer has processed every request, so callers
        can rely on the notifier state when this returns.
        """
        if not self.running:
            raise WatchError("<manager>", "Watch manager is not running")

        diff = diff_watch_sets(self._current, new)
        for directory in diff.remove:
            await self._requests.put(WatchChangeRequest(directory, WatchIntent.REMOVE))
        for directory in diff.ensure:
            await self._requests.put(WatchChangeRequest(directory, WatchIntent.ADD))
        await self._requests.join()

        self._current = new.copy()
        return diff

    async def clear(self) -> WatchDiff:
        """Stop watching everything."""
        return await self.apply(WatchSet())

    async def _consume(self) -> None:
        while True:
            request = await self._requests.get()
            try:
                if request is None:
                    break
                self._handle(request)
            finally:
                self._requests.task_done()

    def _handle(self, request: WatchChangeRequest) -> None:
        try:
            if request.intent == WatchIntent.ADD:
                changed = self._notifier.add(request.directory)
                verb = "watching"
            else:
                changed = self._notifier.remove(request.directory)
                verb = "stopped watching"
        except WatchError as e:
            self._errors.report(e)
            return
        except Exception as e:
            # Keep the consumer alive; apply() waits on it
            self._errors.report(WatchError(request.directory, f"Notifier failure ({e})"))
            return

        if changed:
            self._log(f"{verb} {request.directory}")

    def _log(self, message: str) -> None:
        logger.log(logging.INFO if self._verbose else logging.DEBUG, message)
