"""Walks an entry program's import graph to find the directories to watch."""

import logging
from pathlib import Path

from treeloader.config import DEFAULT_MAX_DEPTH
from treeloader.deps.sources import ImportRef, ImportSource, ModuleInfo, PythonImportSource
from treeloader.errors import DependencyResolutionError, DepthExceededError
from treeloader.watch.watchset import WatchSet

logger = logging.getLogger(__name__)


class DependencyResolver:
    """Computes the watch set for an entry program.

    The result holds the entry's directory plus the owning directory of every
    non-library module reachable through imports. Recursion is bounded by a
    visited set (each module is expanded once) and by `max_depth`.
    """

    def __init__(
        self,
        source: ImportSource | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        allow_cycles: bool = True,
    ):
        self.source = source or PythonImportSource()
        self.max_depth = max_depth
        self.allow_cycles = allow_cycles

    def resolve(self, entry: str | Path) -> WatchSet:
        """Resolve the directories the entry program depends on.

        Args:
            entry: Path to the entry source file.

        Returns:
            A new WatchSet. Nothing is modified if resolution fails; the
            error carries the directories found so far as `partial`.

        Raises:
            InvalidEntryError: If the entry is not an executable program.
            DependencyResolutionError: If a required import cannot be resolved.
            DepthExceededError: If the graph is too deep, or cyclic when
                cycles are not allowed.
        """
        module = self.source.load_entry(Path(entry))

        dirs = WatchSet()
        if module.directory is not None:
            dirs.add(module.directory)

        try:
            self._walk(module, dirs, visited={module.name}, chain=[module.name])
        except (DependencyResolutionError, DepthExceededError) as e:
            e.partial = dirs
            raise
        logger.debug(f"Resolved {len(dirs)} directories for {entry}")
        return dirs

    def _walk(
        self,
        module: ModuleInfo,
        dirs: WatchSet,
        visited: set[str],
        chain: list[str],
    ) -> None:
        depth = len(chain) - 1
        if depth > self.max_depth:
            raise DepthExceededError(
                f"Import graph deeper than {self.max_depth} at {module.name}",
                chain=list(chain),
            )

        for ref in module.imports:
            dep = self._load(ref, module, dirs)
            if dep is None or dep.library:
                continue
            if dep.name == module.name or module.name.startswith(f"{dep.name}."):
                # A module importing itself or its own parent package
                continue

            if dep.name in chain:
                if not self.allow_cycles:
                    cycle = [*chain[chain.index(dep.name):], dep.name]
                    raise DepthExceededError(
                        f"Import cycle: {' -> '.join(cycle)}",
                        chain=cycle,
                    )
                continue

            if dep.directory is not None:
                dirs.add(dep.directory)

            if dep.name in visited:
                continue
            visited.add(dep.name)

            chain.append(dep.name)
            self._walk(dep, dirs, visited, chain)
            chain.pop()

    def _load(self, ref: ImportRef, importer: ModuleInfo, dirs: WatchSet) -> ModuleInfo | None:
        try:
            return self.source.load(ref.name, importer)
        except DependencyResolutionError as e:
            if e.directory is not None:
                # Located but unreadable: watch it so a fix is seen
                dirs.add(e.directory)
            if ref.optional:
                logger.debug(f"Skipping optional import {ref.name} from {importer.name}")
                return None
            raise
