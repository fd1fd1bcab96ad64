"""Exception taxonomy for Treeloader.

Configuration errors abort startup and are raised to the caller. Everything
else is raised by a single reload step and funneled through the error sink.
"""

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from treeloader.watch.watchset import WatchSet


class TreeloaderError(Exception):
    """Base class for all Treeloader errors."""

    pass


class ConfigurationError(TreeloaderError):
    """Raised when the loader is constructed with a missing or invalid entry."""

    pass


class DependencyResolutionError(TreeloaderError):
    """Raised when an import cannot be located or parsed.

    `directory` is set when the module was located but could not be read,
    so its directory can still be watched. `partial` holds the directories
    resolved before the failure.
    """

    def __init__(self, message: str, directory: Path | None = None):
        self.directory = directory
        self.partial: "WatchSet | None" = None
        super().__init__(message)


class InvalidEntryError(DependencyResolutionError):
    """Raised when the entry path does not describe an executable program."""

    def __init__(self, path: Path | str, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Invalid entry {path}: {reason}")


class DepthExceededError(TreeloaderError):
    """Raised for import graphs that are cyclic or deeper than the bound."""

    def __init__(self, message: str, chain: list[str] | None = None):
        self.chain = chain or []
        self.partial: "WatchSet | None" = None
        super().__init__(message)


class WatchError(TreeloaderError):
    """Raised when the file-system notifier rejects an add or remove."""

    def __init__(self, directory: str, message: str):
        self.directory = directory
        super().__init__(f"{message}: {directory}")


class ProcessError(TreeloaderError):
    """Raised when the watched program cannot be managed."""

    pass


class SpawnError(ProcessError):
    """Raised when the watched program cannot be started."""

    pass


class KillError(ProcessError):
    """Raised when the watched program cannot be stopped cleanly."""

    def __init__(self, message: str, returncode: int | None = None):
        self.returncode = returncode
        super().__init__(message)


class CloseError(TreeloaderError):
    """Raised by close() with every failure collected during shutdown."""

    def __init__(self, errors: list[Exception]):
        self.errors = list(errors)
        details = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(f"{len(self.errors)} error(s) while closing: {details}")
