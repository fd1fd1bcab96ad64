"""The reload control loop.

Flow per accepted write:
1. Kill the running program (whole process group)
2. Re-resolve the import graph
3. Diff and apply the watch set
4. Spawn the program again
5. Notify the listener
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from treeloader.config import LoaderConfig
from treeloader.deps import DependencyResolver, ImportSource, PythonImportSource
from treeloader.errors import (
    CloseError,
    DependencyResolutionError,
    DepthExceededError,
    ProcessError,
    TreeloaderError,
    WatchError,
)
from treeloader.events import ErrorSink, ReloadNotification
from treeloader.process import CommandDescriptor, ProcessManager
from treeloader.reload.policy import AcceptAllPolicy, DebouncePolicy, ReloadPolicy
from treeloader.watch import FileEvent, Notifier, WatchdogNotifier, WatchSet, WatchSetManager

logger = logging.getLogger(__name__)


class ReloadCoordinator:
    """Rebuilds and restarts an entry program whenever its sources change.

    The coordinator is the only actor that kills or spawns the program and
    the only one that changes the watch set. Notifier events arrive over a
    bounded queue; cycles run one at a time, and writes that arrive during a
    cycle collapse into a single follow-up cycle.

    Example:
        reloaded: asyncio.Queue[ReloadNotification] = asyncio.Queue(maxsize=1)
        loader = ReloadCoordinator(LoaderConfig(entry="app/main.py"), reloaded=reloaded)
        async with loader:
            notification = await reloaded.get()
    """

    def __init__(
        self,
        config: LoaderConfig,
        *,
        reloaded: asyncio.Queue[ReloadNotification] | None = None,
        policy: ReloadPolicy | None = None,
        source: ImportSource | None = None,
        notifier: Notifier | None = None,
        process_manager: ProcessManager | None = None,
        on_error: Callable[[Exception], Any] | None = None,
    ):
        config.check()
        self.config = config
        self.entry = config.entry_path
        self.reloaded = reloaded

        source = source or PythonImportSource(config.search_paths)
        self.extensions = config.watched_extensions(source.native_extension)
        self.resolver = DependencyResolver(
            source,
            max_depth=config.max_depth,
            allow_cycles=config.allow_cycles,
        )
        if policy is None:
            if config.debounce_seconds > 0:
                policy = DebouncePolicy(config.debounce_seconds)
            else:
                policy = AcceptAllPolicy()
        self.policy = policy

        # Raises WatchError here, before any task starts
        self._notifier = notifier or WatchdogNotifier()

        self._errors = ErrorSink(config.error_queue_size, on_error=on_error)
        self._watches = WatchSetManager(
            self._notifier,
            self._errors,
            maxsize=config.request_queue_size,
            verbose=config.verbose,
        )
        self._process = process_manager or ProcessManager(verbose=config.verbose)
        self._command = CommandDescriptor.for_entry(
            self.entry,
            interpreter=config.python,
            args=config.args,
            cwd=config.cwd,
        )

        self._events: asyncio.Queue[FileEvent] = asyncio.Queue(maxsize=config.event_queue_size)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task | None = None
        self._ready = asyncio.Event()
        self._closed = False
        self._cycle_failed = False
        self._previous_failed = False
        self.cycles = 0

    @property
    def errors(self) -> ErrorSink:
        return self._errors

    @property
    def watch_set(self) -> WatchSet:
        return self._watches.current

    @property
    def process(self) -> ProcessManager:
        return self._process

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "ReloadCoordinator":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def start(self) -> None:
        """Run the loop in a background task and wait for the startup cycle."""
        runner = asyncio.create_task(self.run(), name="treeloader-coordinator")
        ready = asyncio.create_task(self._ready.wait())
        done, _ = await asyncio.wait({runner, ready}, return_when=asyncio.FIRST_COMPLETED)
        if runner in done:
            ready.cancel()
            runner.result()

    async def run(self) -> None:
        """Run the startup cycle, then reload on every accepted write until closed."""
        if self._closed:
            raise TreeloaderError("Loader is closed")
        if self._task is not None:
            raise TreeloaderError("Loader is already running")

        self._task = asyncio.current_task()
        self._loop = asyncio.get_running_loop()
        try:
            await self._errors.start()
            await self._watches.start()
            self._notifier.start(self._deliver)

            await self._cycle("")
            self._ready.set()

            while True:
                event = await self._events.get()
                if not self._accept(event):
                    continue
                trigger: str | None = event.path
                while trigger is not None:
                    trigger = await self._settle(trigger)
                    await self._cycle(trigger)
                    trigger = self._drain()
        except asyncio.CancelledError:
            if not self._closed:
                raise
            logger.debug("Reload loop stopped by close()")

    async def close(self) -> None:
        """Kill the program and release the watch handle.

        Raises:
            CloseError: With every failure encountered while shutting down.
        """
        if self._closed:
            return
        self._closed = True
        errors: list[Exception] = []

        task = self._task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                errors.append(e)

        try:
            await self._process.kill()
        except ProcessError as e:
            errors.append(e)

        try:
            self._notifier.close()
        except WatchError as e:
            errors.append(e)

        await self._watches.stop()
        await self._errors.stop()
        self._log(f"closed loader for {self.entry}")

        if errors:
            raise CloseError(errors)

    def _deliver(self, event: FileEvent) -> None:
        """Called by the notifier, possibly from its own thread."""
        if self._closed or self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._enqueue, event)
        except RuntimeError:
            # Event loop already closed
            logger.debug(f"Dropped event for {event.path} after shutdown")

    def _enqueue(self, event: FileEvent) -> None:
        if self._closed:
            return
        try:
            self._events.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Event queue full, dropping {event.kind.value} {event.path}")

    def _accept(self, event: FileEvent) -> bool:
        if not event.is_write:
            return False
        if event.extension not in self.extensions:
            return False
        return self.policy.should_reload(event)

    async def _settle(self, trigger: str) -> str:
        """Hold a trigger until accepted writes stop for the policy's settle window.

        Returns the last accepted path seen while waiting.
        """
        window = self.policy.settle_window
        if window <= 0:
            return trigger

        loop = asyncio.get_running_loop()
        limit = self.policy.settle_limit
        deadline = None if limit is None else loop.time() + limit
        quiet_at = loop.time() + window
        while True:
            timeout = quiet_at - loop.time()
            if deadline is not None:
                timeout = min(timeout, deadline - loop.time())
            if timeout <= 0:
                return trigger
            try:
                event = await asyncio.wait_for(self._events.get(), timeout=timeout)
            except TimeoutError:
                return trigger
            if self._accept(event):
                trigger = event.path
                quiet_at = loop.time() + window

    def _drain(self) -> str | None:
        """Collapse queued events into at most one more trigger."""
        trigger = None
        while True:
            try:
                event = self._events.get_nowait()
            except asyncio.QueueEmpty:
                return trigger
            if self._accept(event):
                trigger = event.path

    async def _cycle(self, trigger: str) -> None:
        self.cycles += 1
        self._cycle_failed = False
        if trigger:
            self._log(f"change detected: {trigger}")

        try:
            await self._process.kill()
        except ProcessError as e:
            self._errors.report(e)

        dirs = await self._resolve()
        await self._watches.apply(dirs)
        spawned = await self._spawn()
        if spawned and self._previous_failed and not self._cycle_failed:
            logger.info(f"successful build and run of {self.entry.name} after a failed reload")
        self._previous_failed = self._cycle_failed
        self._notify(trigger, spawned)

    async def _resolve(self) -> WatchSet:
        try:
            dirs = await asyncio.to_thread(self.resolver.resolve, self.entry)
        except (DependencyResolutionError, DepthExceededError) as e:
            self._cycle_failed = True
            self._errors.report(e)
            # Keep watching what we had so a fix triggers the next cycle
            dirs = self._watches.current
            dirs.add(self.entry.parent)
            if e.partial is not None:
                dirs = dirs | e.partial
            return dirs

        self._log(f"watching {len(dirs)} directories for {self.entry.name}")
        logger.debug(f"Watch set:\n{dirs}")
        return dirs

    async def _spawn(self) -> bool:
        elapsed = self._process.since_last_spawn()
        if elapsed is not None:
            self._log(f"time since last build: {elapsed:.3f}s")
        try:
            await self._process.spawn(self._command)
        except ProcessError as e:
            self._cycle_failed = True
            self._errors.report(e)
            return False
        return True

    def _notify(self, trigger: str, spawned: bool) -> None:
        if self.reloaded is None:
            return
        try:
            self.reloaded.put_nowait(ReloadNotification(path=trigger, spawned=spawned))
        except asyncio.QueueFull:
            logger.warning("Reload listener full, discarding notification")

    def _log(self, message: str) -> None:
        logger.log(logging.INFO if self.config.verbose else logging.DEBUG, message)

