"""Watch-set bookkeeping and the file-system notifier."""

from treeloader.watch.manager import WatchSetManager
from treeloader.watch.notifier import EventKind, FileEvent, Notifier, WatchdogNotifier
from treeloader.watch.watchset import WatchDiff, WatchSet, diff_watch_sets, normalize_directory

__all__ = [
    "EventKind",
    "FileEvent",
    "Notifier",
    "WatchDiff",
    "WatchSet",
    "WatchSetManager",
    "WatchdogNotifier",
    "diff_watch_sets",
    "normalize_directory",
]
