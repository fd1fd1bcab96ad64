"""Spawns and kills the watched program, one live process at a time."""

import asyncio
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from treeloader.errors import KillError, SpawnError
from treeloader.process.groups import ProcessGroup, default_process_group

logger = logging.getLogger(__name__)


class ProcessState(str, Enum):
    """Lifecycle of the watched program."""

    IDLE = "idle"
    RUNNING = "running"
    KILLING = "killing"


@dataclass
class CommandDescriptor:
    """How to run the entry program, plus its live process if any."""

    entry: Path
    artifact: str
    argv: list[str]
    cwd: Path | None = None
    env: dict[str, str] = field(default_factory=dict)
    process: asyncio.subprocess.Process | None = None

    @classmethod
    def for_entry(
        cls,
        entry: str | Path,
        interpreter: str | None = None,
        args: list[str] | None = None,
        cwd: str | Path | None = None,
    ) -> "CommandDescriptor":
        """Run `entry` with the given (or current) Python interpreter."""
        entry = Path(entry).absolute()
        return cls(
            entry=entry,
            artifact=entry.stem,
            argv=[interpreter or sys.executable, str(entry), *(args or [])],
            cwd=Path(cwd) if cwd else None,
        )


class ProcessManager:
    """Owns the watched program's process group.

    State machine: idle -> running -> idle. The killing state is only
    visible while kill() waits for the OS to reap the group.
    """

    def __init__(self, group: ProcessGroup | None = None, verbose: bool = False):
        self.group = group or default_process_group()
        self.verbose = verbose
        self._state = ProcessState.IDLE
        self._command: CommandDescriptor | None = None
        self._last_spawn: float | None = None

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def command(self) -> CommandDescriptor | None:
        return self._command

    @property
    def pid(self) -> int | None:
        if self._command and self._command.process:
            return self._command.process.pid
        return None

    def running(self) -> bool:
        """Whether a spawned process is held (it may have exited on its own)."""
        return self._state == ProcessState.RUNNING

    def since_last_spawn(self) -> float | None:
        """Seconds since the previous spawn, or None before the first."""
        if self._last_spawn is None:
            return None
        return time.monotonic() - self._last_spawn

    async def spawn(self, command: CommandDescriptor) -> asyncio.subprocess.Process:
        """Start the program in its own process group.

        Standard output and error are inherited from this process.

        Raises:
            SpawnError: If a process is already held or it cannot be started.
        """
        if self._state != ProcessState.IDLE:
            raise SpawnError(f"Cannot spawn {command.artifact} while {self._state.value}")

        env = None
        if command.env:
            env = os.environ.copy()
            env.update(command.env)

        try:
            process = await asyncio.create_subprocess_exec(
                *command.argv,
                cwd=command.cwd,
                env=env,
                **self.group.spawn_options(),
            )
        except OSError as e:
            raise SpawnError(f"Unable to start {command.argv[0]}: {e}") from e

        command.process = process
        self._command = command
        self._state = ProcessState.RUNNING
        self._last_spawn = time.monotonic()
        self._log(f"started {command.artifact} (pid {process.pid})")
        return process

    async def kill(self) -> None:
        """Kill the whole process group and wait until it is reaped.

        No-op when idle. The wait is bounded only by the OS.

        Raises:
            KillError: If the group cannot be signalled, or the program had
                already exited with a failure status.
        """
        command = self._command
        if command is None or command.process is None:
            self._state = ProcessState.IDLE
            return

        process = command.process
        self._state = ProcessState.KILLING
        started = time.monotonic()
        try:
            await self.group.terminate(process)
        except OSError as e:
            self._state = ProcessState.RUNNING
            raise KillError(f"Unable to kill process group {process.pid}: {e}") from e

        # Interrupted waits leave the handle in place so kill() can retry
        returncode = await process.wait()

        command.process = None
        self._command = None
        self._state = ProcessState.IDLE
        self._log(
            f"killed {command.artifact} (pid {process.pid}) in {time.monotonic() - started:.3f}s"
        )

        if returncode != 0 and not self.group.was_terminated(returncode):
            raise KillError(
                f"{command.artifact} exited with status {returncode}",
                returncode=returncode,
            )

    def _log(self, message: str) -> None:
        logger.log(logging.INFO if self.verbose else logging.DEBUG, message)
