"""Messages exchanged between the reload actors."""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


class WatchIntent(str, Enum):
    """What a watch change request asks the notifier to do."""

    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class WatchChangeRequest:
    """Request to add or remove a single watched directory."""

    directory: str
    intent: WatchIntent


class ReloadNotification(BaseModel):
    """Emitted once per reload cycle.

    `path` is the file whose write triggered the cycle, or "" for the
    initial startup cycle.
    """

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    path: str = ""
    spawned: bool = True
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def initial(self) -> bool:
        return self.path == ""

    def to_json(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "path": self.path,
            "spawned": self.spawned,
            "timestamp": self.timestamp.isoformat(),
        }
