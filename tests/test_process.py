"""Tests for process groups and the process manager."""

import asyncio
import logging
import os
import sys
import time
from pathlib import Path

import pytest

from treeloader.errors import KillError, SpawnError
from treeloader.process import (
    CommandDescriptor,
    PosixProcessGroup,
    ProcessGroup,
    ProcessManager,
    ProcessState,
    default_process_group,
)


class FakeProcess:
    """Stands in for asyncio.subprocess.Process."""

    def __init__(self, pid: int = 4242) -> None:
        self.pid = pid
        self.returncode: int | None = None
        self._exited = asyncio.Event()

    def finish(self, returncode: int) -> None:
        self.returncode = returncode
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeGroup(ProcessGroup):
    """Records terminations; optionally finishes the process like SIGKILL would."""

    def __init__(self, finish_with: int | None = -9, error: OSError | None = None) -> None:
        self.finish_with = finish_with
        self.error = error
        self.terminated: list[int] = []

    def spawn_options(self) -> dict:
        return {"start_new_session": True}

    async def terminate(self, process) -> None:
        if self.error is not None:
            raise self.error
        self.terminated.append(process.pid)
        if self.finish_with is not None and process.returncode is None:
            process.finish(self.finish_with)

    def was_terminated(self, returncode: int) -> bool:
        return returncode < 0


@pytest.fixture
def fake_exec(monkeypatch):
    """Replace subprocess creation with FakeProcess instances."""
    spawned: list[tuple[tuple, dict]] = []

    async def create_subprocess_exec(*argv, **kwargs):
        spawned.append((argv, kwargs))
        return FakeProcess(pid=1000 + len(spawned))

    monkeypatch.setattr(asyncio, "create_subprocess_exec", create_subprocess_exec)
    return spawned


def is_alive(pid: int) -> bool:
    """Whether a pid names a live (non-zombie) process."""
    stat = Path(f"/proc/{pid}/stat")
    if stat.parent.parent.exists():
        try:
            fields = stat.read_text().rsplit(")", 1)[1].split()
        except FileNotFoundError:
            return False
        return fields[0] != "Z"
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


async def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.05)
    return predicate()


class TestCommandDescriptor:
    """Tests for CommandDescriptor."""

    def test_for_entry(self, tmp_path: Path):
        command = CommandDescriptor.for_entry(tmp_path / "server.py", args=["--port", "8000"])

        assert command.artifact == "server"
        assert command.argv == [sys.executable, str(tmp_path / "server.py"), "--port", "8000"]
        assert command.process is None

    def test_custom_interpreter_and_cwd(self, tmp_path: Path):
        command = CommandDescriptor.for_entry(
            tmp_path / "server.py", interpreter="/opt/python3", cwd=tmp_path
        )
        assert command.argv[0] == "/opt/python3"
        assert command.cwd == tmp_path


class TestProcessGroups:
    def test_default_group_matches_platform(self):
        group = default_process_group()
        if sys.platform == "win32":
            assert "creationflags" in group.spawn_options()
        else:
            assert isinstance(group, PosixProcessGroup)
            assert group.spawn_options() == {"start_new_session": True}

    @pytest.mark.posix
    def test_posix_termination_status(self):
        group = PosixProcessGroup()
        assert group.was_terminated(-9)
        assert not group.was_terminated(0)
        assert not group.was_terminated(3)


class TestProcessManagerStates:
    """State machine tests with fake processes."""

    async def test_spawn_then_kill(self, tmp_path: Path, fake_exec):
        group = FakeGroup()
        manager = ProcessManager(group=group)
        command = CommandDescriptor.for_entry(tmp_path / "main.py")

        process = await manager.spawn(command)

        assert manager.state == ProcessState.RUNNING
        assert manager.running()
        assert manager.pid == process.pid
        assert command.process is process
        assert fake_exec[0][1]["start_new_session"] is True

        await manager.kill()

        assert manager.state == ProcessState.IDLE
        assert manager.pid is None
        assert command.process is None
        assert group.terminated == [process.pid]

    async def test_kill_when_idle_is_noop(self):
        group = FakeGroup()
        manager = ProcessManager(group=group)

        await manager.kill()

        assert manager.state == ProcessState.IDLE
        assert group.terminated == []

    async def test_double_spawn_rejected(self, tmp_path: Path, fake_exec):
        manager = ProcessManager(group=FakeGroup())
        await manager.spawn(CommandDescriptor.for_entry(tmp_path / "main.py"))

        with pytest.raises(SpawnError, match="while running"):
            await manager.spawn(CommandDescriptor.for_entry(tmp_path / "main.py"))
        assert len(fake_exec) == 1

    async def test_spawn_passes_env_overrides(self, tmp_path: Path, fake_exec):
        manager = ProcessManager(group=FakeGroup())
        command = CommandDescriptor.for_entry(tmp_path / "main.py")
        command.env = {"TREELOADER_CHILD": "1"}

        await manager.spawn(command)

        env = fake_exec[0][1]["env"]
        assert env["TREELOADER_CHILD"] == "1"
        assert "PATH" in env

    async def test_kill_blocks_until_reaped(self, tmp_path: Path, fake_exec):
        """kill() does not return while the group is still being reaped."""
        manager = ProcessManager(group=FakeGroup(finish_with=None))
        process = await manager.spawn(CommandDescriptor.for_entry(tmp_path / "main.py"))

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(manager.kill(), timeout=0.2)

        # The interrupted kill keeps the handle so it can be retried
        assert manager.state == ProcessState.KILLING
        assert manager.pid == process.pid

        process.finish(-9)
        await manager.kill()
        assert manager.state == ProcessState.IDLE

    async def test_failed_exit_status_raises(self, tmp_path: Path, fake_exec):
        manager = ProcessManager(group=FakeGroup(finish_with=None))
        process = await manager.spawn(CommandDescriptor.for_entry(tmp_path / "main.py"))
        process.finish(2)

        with pytest.raises(KillError, match="exited with status 2") as exc_info:
            await manager.kill()

        assert exc_info.value.returncode == 2
        assert manager.state == ProcessState.IDLE

    async def test_clean_exit_is_not_an_error(self, tmp_path: Path, fake_exec):
        manager = ProcessManager(group=FakeGroup(finish_with=None))
        process = await manager.spawn(CommandDescriptor.for_entry(tmp_path / "main.py"))
        process.finish(0)

        await manager.kill()
        assert manager.state == ProcessState.IDLE

    async def test_signal_failure_keeps_process(self, tmp_path: Path, fake_exec):
        manager = ProcessManager(group=FakeGroup(error=PermissionError("not allowed")))
        await manager.spawn(CommandDescriptor.for_entry(tmp_path / "main.py"))

        with pytest.raises(KillError, match="Unable to kill"):
            await manager.kill()

        assert manager.state == ProcessState.RUNNING
        assert manager.running()

    async def test_since_last_spawn(self, tmp_path: Path, fake_exec):
        manager = ProcessManager(group=FakeGroup())
        assert manager.since_last_spawn() is None

        await manager.spawn(CommandDescriptor.for_entry(tmp_path / "main.py"))

        assert manager.since_last_spawn() >= 0

    async def test_verbose_logging(self, tmp_path: Path, fake_exec, caplog):
        manager = ProcessManager(group=FakeGroup(), verbose=True)

        with caplog.at_level(logging.INFO, logger="treeloader.process.manager"):
            await manager.spawn(CommandDescriptor.for_entry(tmp_path / "main.py"))
            await manager.kill()

        assert "started main (pid 1001)" in caplog.text
        assert "killed main (pid 1001)" in caplog.text

    async def test_quiet_logging(self, tmp_path: Path, fake_exec, caplog):
        manager = ProcessManager(group=FakeGroup())

        with caplog.at_level(logging.INFO, logger="treeloader.process.manager"):
            await manager.spawn(CommandDescriptor.for_entry(tmp_path / "main.py"))

        assert "started" not in caplog.text


@pytest.mark.posix
class TestProcessManagerPosix:
    """Spawns real programs in their own process groups."""

    async def test_spawn_and_kill(self, sleeper: Path):
        manager = ProcessManager()
        process = await manager.spawn(CommandDescriptor.for_entry(sleeper))

        assert is_alive(process.pid)
        assert os.getpgid(process.pid) == process.pid

        await manager.kill()

        assert process.returncode == -9
        assert not is_alive(process.pid)

    async def test_kill_reaps_grandchildren(self, tmp_path: Path, write_module):
        pid_file = tmp_path / "grandchild.pid"
        entry = write_module(
            tmp_path / "parent" / "main.py",
            """
            import os
            import subprocess
            import sys
            import time

            child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
            with open(sys.argv[1] + ".tmp", "w") as f:
                f.write(str(child.pid))
            os.replace(sys.argv[1] + ".tmp", sys.argv[1])
            while True:
                time.sleep(0.1)
            """,
        )
        manager = ProcessManager()
        await manager.spawn(CommandDescriptor.for_entry(entry, args=[str(pid_file)]))

        assert await wait_until(pid_file.exists)
        grandchild = int(pid_file.read_text())
        assert is_alive(grandchild)

        await manager.kill()

        assert await wait_until(lambda: not is_alive(grandchild))

    async def test_kill_ignores_sigterm_handlers(self, tmp_path: Path, write_module):
        ready = tmp_path / "ready"
        entry = write_module(
            tmp_path / "stubborn" / "main.py",
            """
            import signal
            import sys
            import time
            from pathlib import Path

            signal.signal(signal.SIGTERM, signal.SIG_IGN)
            Path(sys.argv[1]).touch()
            while True:
                time.sleep(0.1)
            """,
        )
        manager = ProcessManager()
        process = await manager.spawn(CommandDescriptor.for_entry(entry, args=[str(ready)]))
        assert await wait_until(ready.exists)

        await asyncio.wait_for(manager.kill(), timeout=5.0)

        assert process.returncode == -9

    async def test_program_that_already_failed(self, tmp_path: Path, write_module):
        entry = write_module(tmp_path / "failing" / "main.py", "raise SystemExit(3)\n")
        manager = ProcessManager()
        process = await manager.spawn(CommandDescriptor.for_entry(entry))
        await process.wait()

        with pytest.raises(KillError) as exc_info:
            await manager.kill()

        assert exc_info.value.returncode == 3
        assert manager.state == ProcessState.IDLE

    async def test_program_that_exited_cleanly(self, tmp_path: Path, write_module):
        entry = write_module(tmp_path / "done" / "main.py", "print('done')\n")
        manager = ProcessManager()
        process = await manager.spawn(CommandDescriptor.for_entry(entry))
        await process.wait()

        await manager.kill()

        assert manager.state == ProcessState.IDLE

    async def test_missing_interpreter(self, sleeper: Path, tmp_path: Path):
        manager = ProcessManager()
        command = CommandDescriptor.for_entry(sleeper, interpreter=str(tmp_path / "no-python"))

        with pytest.raises(SpawnError, match="Unable to start"):
            await manager.spawn(command)

        assert manager.state == ProcessState.IDLE
