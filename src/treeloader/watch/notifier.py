"""File-system notifier capability and its watchdog implementation.

The notifier owns the OS watch handle. Only the WatchSetManager consumer
calls add/remove, and events are delivered through a single callback so
the coordinator sees one ordered stream.
"""

import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch

from treeloader.errors import WatchError

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Kind of file-system change."""

    MODIFIED = "modified"
    CREATED = "created"
    DELETED = "deleted"
    MOVED = "moved"
    CLOSED = "closed"
    OTHER = "other"

    @classmethod
    def from_watchdog(cls, event_type: str) -> "EventKind":
        try:
            return cls(event_type)
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class FileEvent:
    """A change reported by the notifier."""

    path: str
    kind: EventKind
    is_directory: bool = False

    @property
    def is_write(self) -> bool:
        """True for a content write to a regular file."""
        return self.kind == EventKind.MODIFIED and not self.is_directory

    @property
    def extension(self) -> str:
        return os.path.splitext(self.path)[1]


Deliver = Callable[[FileEvent], None]


class Notifier(ABC):
    """Abstract per-directory file-system notifier."""

    @abstractmethod
    def start(self, deliver: Deliver) -> None:
        """Begin delivering events. `deliver` may be called from any thread."""
        ...

    @abstractmethod
    def add(self, directory: str) -> bool:
        """Watch a directory. Returns False if it was already watched."""
        ...

    @abstractmethod
    def remove(self, directory: str) -> bool:
        """Stop watching a directory. Returns False if it was not watched."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Remove every watch and release the handle."""
        ...

    @property
    @abstractmethod
    def watched(self) -> frozenset[str]:
        """Directories currently registered."""
        ...


class _ForwardingHandler(FileSystemEventHandler):
    """Forwards watchdog events from the observer thread."""

    def __init__(self, deliver: Deliver) -> None:
        super().__init__()
        self._deliver = deliver

    def on_any_event(self, event: FileSystemEvent) -> None:
        self._deliver(
            FileEvent(
                path=os.fsdecode(event.src_path),
                kind=EventKind.from_watchdog(event.event_type),
                is_directory=event.is_directory,
            )
        )


class WatchdogNotifier(Notifier):
    """Notifier backed by a single watchdog Observer.

    Each directory gets its own non-recursive schedule, since the watch set
    already lists every directory the program depends on.
    """

    def __init__(self, join_timeout: float = 5.0) -> None:
        try:
            self._observer = Observer()
        except OSError as e:
            raise WatchError("<observer>", f"Unable to create file watcher ({e})") from e
        self._join_timeout = join_timeout
        self._handler: _ForwardingHandler | None = None
        self._watches: dict[str, ObservedWatch] = {}
        self._closed = False

    @property
    def watched(self) -> frozenset[str]:
        return frozenset(self._watches)

    def start(self, deliver: Deliver) -> None:
        if self._closed:
            raise WatchError("<observer>", "File watcher is closed")
        self._handler = _ForwardingHandler(deliver)
        self._observer.start()

    def add(self, directory: str) -> bool:
        if self._handler is None:
            raise WatchError(directory, "File watcher not started")
        if directory in self._watches:
            return False
        if not os.path.isdir(directory):
            raise WatchError(directory, "Directory does not exist")
        try:
            watch = self._observer.schedule(self._handler, directory, recursive=False)
        except OSError as e:
            raise WatchError(directory, f"Unable to watch directory ({e})") from e
        self._watches[directory] = watch
        return True

    def remove(self, directory: str) -> bool:
        watch = self._watches.pop(directory, None)
        if watch is None:
            return False
        try:
            self._observer.unschedule(watch)
        except KeyError:
            # Observer already dropped the emitter (directory vanished)
            logger.debug(f"Watch for {directory} was already gone")
        except OSError as e:
            raise WatchError(directory, f"Unable to stop watching directory ({e})") from e
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._watches.clear()
        try:
            self._observer.unschedule_all()
            if self._observer.is_alive():
                self._observer.stop()
                self._observer.join(timeout=self._join_timeout)
        except OSError as e:
            raise WatchError("<observer>", f"Unable to close file watcher ({e})") from e
