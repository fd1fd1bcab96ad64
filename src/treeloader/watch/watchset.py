"""The set of directories registered with the file-system notifier."""

import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path


def normalize_directory(directory: str | Path) -> str:
    """Canonical string form used for every watched directory."""
    return os.path.normpath(os.path.abspath(os.fspath(directory)))


class WatchSet:
    """Unordered, duplicate-free set of directory paths."""

    def __init__(self, directories: Iterable[str | Path] = ()) -> None:
        self._dirs: set[str] = set()
        for directory in directories:
            self.add(directory)

    def add(self, *directories: str | Path) -> None:
        for directory in directories:
            self._dirs.add(normalize_directory(directory))

    def remove(self, *directories: str | Path) -> None:
        """Remove directories; absent ones are ignored."""
        for directory in directories:
            self._dirs.discard(normalize_directory(directory))

    discard = remove

    def copy(self) -> "WatchSet":
        clone = WatchSet()
        clone._dirs = set(self._dirs)
        return clone

    def __contains__(self, directory: object) -> bool:
        if not isinstance(directory, str | Path):
            return False
        return normalize_directory(directory) in self._dirs

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._dirs))

    def __len__(self) -> int:
        return len(self._dirs)

    def __sub__(self, other: "WatchSet") -> "WatchSet":
        result = WatchSet()
        result._dirs = self._dirs - other._dirs
        return result

    def __or__(self, other: "WatchSet") -> "WatchSet":
        result = WatchSet()
        result._dirs = self._dirs | other._dirs
        return result

    def __eq__(self, other: object) -> bool:
        if isinstance(other, WatchSet):
            return self._dirs == other._dirs
        if isinstance(other, set | frozenset):
            return self._dirs == {normalize_directory(d) for d in other}
        return NotImplemented

    def __str__(self) -> str:
        return "\n".join(sorted(self._dirs))

    def __repr__(self) -> str:
        return f"WatchSet({sorted(self._dirs)!r})"


@dataclass
class WatchDiff:
    """Changes needed to move the notifier from one watch set to another."""

    remove: WatchSet = field(default_factory=WatchSet)
    ensure: WatchSet = field(default_factory=WatchSet)

    @property
    def empty(self) -> bool:
        return not self.remove and not self.ensure


def diff_watch_sets(old: WatchSet, new: WatchSet) -> WatchDiff:
    """Directories to stop watching (old - new) and to ensure are watched (new).

    Adding an already-watched directory is a no-op at the notifier, so every
    member of `new` is ensured rather than only the net additions.
    """
    return WatchDiff(remove=old - new, ensure=new.copy())
