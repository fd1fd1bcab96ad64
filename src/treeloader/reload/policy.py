"""Policies deciding whether a relevant write should trigger a reload.

The coordinator has already filtered events down to content writes with a
watched extension; a policy only decides whether to act on them.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from treeloader.watch.notifier import FileEvent

logger = logging.getLogger(__name__)


class ReloadPolicy(ABC):
    """Extension point for suppressing redundant reloads.

    A policy with a positive `settle_window` makes the coordinator hold an
    accepted write until no further accepted write arrives for that many
    seconds, then reload once for the last path. `settle_limit` caps the
    total wait so a steady stream of writes still reloads.
    """

    settle_window: float = 0.0
    settle_limit: float | None = None

    @abstractmethod
    def should_reload(self, event: FileEvent) -> bool:
        ...


class AcceptAllPolicy(ReloadPolicy):
    """Reload on every relevant write."""

    def should_reload(self, event: FileEvent) -> bool:
        return True


class DebouncePolicy(ReloadPolicy):
    """Reload once a burst of writes has settled.

    Editors often emit several writes per save. Every write is accepted, and
    the coordinator waits until `window` seconds pass without another one,
    so the cycle always sees the last write of the burst. The wait never
    exceeds `limit` seconds (ten windows by default).
    """

    def __init__(self, window: float = 0.5, limit: float | None = None):
        self.settle_window = window
        self.settle_limit = window * 10 if limit is None else limit

    @property
    def window(self) -> float:
        return self.settle_window

    def should_reload(self, event: FileEvent) -> bool:
        return True


class ContentHashPolicy(ReloadPolicy):
    """Suppress writes that leave a file's contents unchanged.

    The first write seen for a path always reloads, since there is no
    earlier hash to compare against. Unreadable files also reload.
    """

    def __init__(self) -> None:
        self._hashes: dict[str, str] = {}

    def _compute_hash(self, path: Path) -> str:
        """Compute SHA256 hash of file content."""
        return hashlib.sha256(path.read_bytes()).hexdigest()

    def should_reload(self, event: FileEvent) -> bool:
        try:
            digest = self._compute_hash(Path(event.path))
        except OSError as e:
            logger.debug(f"Unable to hash {event.path}: {e}")
            self._hashes.pop(event.path, None)
            return True

        if self._hashes.get(event.path) == digest:
            logger.debug(f"Contents of {event.path} unchanged")
            return False
        self._hashes[event.path] = digest
        return True


class ChainPolicy(ReloadPolicy):
    """Reload only when every policy agrees; stops at the first refusal."""

    def __init__(self, *policies: ReloadPolicy):
        self.policies = list(policies)

    @property
    def settle_window(self) -> float:
        return max((p.settle_window for p in self.policies), default=0.0)

    @property
    def settle_limit(self) -> float | None:
        limits = [p.settle_limit for p in self.policies if p.settle_limit is not None]
        return max(limits, default=None)

    def should_reload(self, event: FileEvent) -> bool:
        return all(policy.should_reload(event) for policy in self.policies)
