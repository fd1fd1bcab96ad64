"""Treeloader - rebuild and restart a program when its import tree changes."""

__version__ = "0.1.0"

from treeloader.config import LoaderConfig  # noqa: E402
from treeloader.events import ReloadNotification  # noqa: E402
from treeloader.reload import ReloadCoordinator  # noqa: E402

__all__ = ["LoaderConfig", "ReloadCoordinator", "ReloadNotification", "__version__"]
