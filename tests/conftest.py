"""Pytest configuration and fixtures."""

import sys
import textwrap
from pathlib import Path

import pytest

from treeloader.errors import WatchError
from treeloader.watch import EventKind, FileEvent, Notifier


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "posix: mark test as needing POSIX process groups (skipped on Windows)",
    )


def pytest_collection_modifyitems(config, items):
    """Skip POSIX-only tests on Windows."""
    if sys.platform != "win32":
        return

    skip_posix = pytest.mark.skip(reason="needs POSIX process groups")
    for item in items:
        if "posix" in item.keywords:
            item.add_marker(skip_posix)


class FakeNotifier(Notifier):
    """In-memory notifier that records every add/remove call."""

    def __init__(self, fail_on: set[str] | None = None) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail_on = fail_on or set()
        self.deliver = None
        self.closed = False
        self._watched: set[str] = set()

    @property
    def watched(self) -> frozenset[str]:
        return frozenset(self._watched)

    def start(self, deliver) -> None:
        self.deliver = deliver

    def add(self, directory: str) -> bool:
        self.calls.append(("add", directory))
        if directory in self.fail_on:
            raise WatchError(directory, "Watch limit exceeded")
        if directory in self._watched:
            return False
        self._watched.add(directory)
        return True

    def remove(self, directory: str) -> bool:
        self.calls.append(("remove", directory))
        if directory not in self._watched:
            return False
        self._watched.discard(directory)
        return True

    def close(self) -> None:
        self.closed = True
        self._watched.clear()

    def emit(self, path: str | Path, kind: EventKind = EventKind.MODIFIED, is_directory: bool = False) -> None:
        """Deliver an event as the real notifier would."""
        assert self.deliver is not None, "notifier not started"
        self.deliver(FileEvent(path=str(path), kind=kind, is_directory=is_directory))


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def write_module():
    """Write a dedented source file, creating parent directories."""

    def _write(path: Path, source: str = "") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source))
        return path

    return _write


@pytest.fixture
def sleeper(tmp_path: Path, write_module) -> Path:
    """An entry program that runs until killed."""
    return write_module(
        tmp_path / "sleeper" / "main.py",
        """
        import time

        if __name__ == "__main__":
            while True:
                time.sleep(0.1)
        """,
    )
