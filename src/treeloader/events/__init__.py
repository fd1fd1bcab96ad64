"""Messages and the error sink shared by the reload actors."""

from treeloader.events.sink import ErrorSink
from treeloader.events.types import ReloadNotification, WatchChangeRequest, WatchIntent

__all__ = ["ErrorSink", "ReloadNotification", "WatchChangeRequest", "WatchIntent"]
