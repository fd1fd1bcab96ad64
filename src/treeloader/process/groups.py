"""Process-group lifecycle: start a program in its own group and kill the group.

Killing only the leading process leaks whatever it started (listening
sockets, worker children), so termination always targets the whole group.
"""

import asyncio
import contextlib
import logging
import os
import signal
import subprocess
import sys
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)


class ProcessGroup(ABC):
    """Platform capability for creating and terminating process groups."""

    @abstractmethod
    def spawn_options(self) -> dict[str, Any]:
        """Keyword arguments that place a new process in its own group."""
        ...

    @abstractmethod
    async def terminate(self, process: asyncio.subprocess.Process) -> None:
        """Forcibly terminate the process and all of its descendants.

        A group that has already exited is not an error.

        Raises:
            OSError: If the group cannot be signalled.
        """
        ...

    @abstractmethod
    def was_terminated(self, returncode: int) -> bool:
        """Whether an exit status is the result of terminate()."""
        ...


class PosixProcessGroup(ProcessGroup):
    """New session per child; SIGKILL to the negated group id."""

    def __init__(self, sig: int | None = None):
        self.sig = signal.SIGKILL if sig is None else sig

    def spawn_options(self) -> dict[str, Any]:
        return {"start_new_session": True}

    async def terminate(self, process: asyncio.subprocess.Process) -> None:
        try:
            # The session leader's pid is also the group id
            os.killpg(process.pid, self.sig)
        except ProcessLookupError:
            logger.debug(f"Process group {process.pid} already gone")
        except PermissionError:
            # macOS refuses killpg once the leader is a zombie
            with contextlib.suppress(ProcessLookupError):
                process.kill()

    def was_terminated(self, returncode: int) -> bool:
        return returncode < 0


class WindowsProcessGroup(ProcessGroup):
    """New process group per child; taskkill /T kills the descendant tree."""

    def spawn_options(self) -> dict[str, Any]:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}

    async def terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        killer = await asyncio.create_subprocess_exec(
            "taskkill",
            "/F",
            "/T",
            "/PID",
            str(process.pid),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        if await killer.wait() != 0 and process.returncode is None:
            logger.debug(f"taskkill failed for {process.pid}, killing leader only")
            with contextlib.suppress(ProcessLookupError):
                process.kill()

    def was_terminated(self, returncode: int) -> bool:
        # taskkill /F leaves exit status 1
        return returncode == 1


def default_process_group() -> ProcessGroup:
    """Process-group implementation for the current platform."""
    if sys.platform == "win32":
        return WindowsProcessGroup()
    return PosixProcessGroup()
