"""Import sources: how a build ecosystem finds a module and its imports.

The resolver only walks the graph. Everything about locating modules and
reading their imports lives behind ImportSource, so another ecosystem can be
plugged in without touching the walk, depth guard, or watch-set diffing.
"""

import ast
import importlib
import logging
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from importlib.machinery import ModuleSpec, PathFinder
from pathlib import Path

from treeloader.errors import DependencyResolutionError, InvalidEntryError

logger = logging.getLogger(__name__)

ENTRY_MODULE = "__main__"

# Handler names that make an import inside `try:` optional
_IMPORT_GUARDS = frozenset({"ImportError", "ModuleNotFoundError", "Exception", "BaseException"})


@dataclass(frozen=True)
class ImportRef:
    """An import declared by a module."""

    name: str
    optional: bool = False


@dataclass(frozen=True)
class ModuleInfo:
    """A located module and the imports it declares."""

    name: str
    root: Path
    path: Path | None = None
    directory: Path | None = None
    is_package: bool = False
    library: bool = False
    imports: tuple[ImportRef, ...] = field(default_factory=tuple)


class ImportSource(ABC):
    """Resolves module identities and their declared imports."""

    @property
    @abstractmethod
    def native_extension(self) -> str:
        """Source file extension of this ecosystem (e.g. ".py")."""
        ...

    @abstractmethod
    def load_entry(self, entry: Path) -> ModuleInfo:
        """Map the entry program to a module.

        Raises:
            InvalidEntryError: If the path is not an executable entry point.
        """
        ...

    @abstractmethod
    def load(self, name: str, importer: ModuleInfo) -> ModuleInfo:
        """Locate a module imported by `importer`.

        Raises:
            DependencyResolutionError: If the module cannot be located or read.
        """
        ...


class PythonImportSource(ImportSource):
    """Reads Python imports statically and locates them on the search roots.

    First-party modules are found under the entry's directory and any extra
    search paths. Standard-library modules and anything only importable from
    sys.path (site-packages) are reported as libraries.
    """

    def __init__(self, search_paths: list[str | Path] | None = None) -> None:
        self.search_paths = [Path(p).expanduser().absolute() for p in search_paths or []]

    @property
    def native_extension(self) -> str:
        return ".py"

    def load_entry(self, entry: Path) -> ModuleInfo:
        entry = Path(entry).expanduser().absolute()
        if not entry.is_file():
            raise InvalidEntryError(entry, "file not found")
        if entry.suffix != self.native_extension:
            raise InvalidEntryError(entry, f"not a {self.native_extension} source file")
        if entry.name == "__init__.py":
            raise InvalidEntryError(entry, "package initializer is a library, not a program")

        # New files may have appeared since the last resolution
        importlib.invalidate_caches()

        try:
            imports = _read_imports(entry, package="")
        except DependencyResolutionError as e:
            raise InvalidEntryError(entry, str(e)) from e

        return ModuleInfo(
            name=ENTRY_MODULE,
            root=entry.parent,
            path=entry,
            directory=entry.parent,
            imports=imports,
        )

    def load(self, name: str, importer: ModuleInfo) -> ModuleInfo:
        top = name.partition(".")[0]
        if _is_platform_module(top):
            return ModuleInfo(name=name, root=importer.root, library=True)

        roots = self._roots(importer.root)
        spec = _find_spec(name, [str(r) for r in roots])
        if spec is None:
            if PathFinder.find_spec(top) is not None:
                # Importable, but only from sys.path: third-party library
                return ModuleInfo(name=name, root=importer.root, library=True)
            raise DependencyResolutionError(
                f"Cannot resolve import {name!r} from {importer.name}"
            )

        return self._describe(name, spec, importer.root)

    def _roots(self, entry_root: Path) -> list[Path]:
        roots = [entry_root]
        roots.extend(p for p in self.search_paths if p != entry_root)
        return roots

    def _describe(self, name: str, spec: ModuleSpec, root: Path) -> ModuleInfo:
        locations = list(spec.submodule_search_locations or [])
        is_package = bool(locations)

        if spec.origin is None or not spec.has_location:
            # Namespace package: no source, just directories
            directory = Path(locations[0]) if locations else None
            return ModuleInfo(name=name, root=root, directory=directory, is_package=True)

        path = Path(spec.origin)
        if path.suffix != self.native_extension:
            # Compiled extension module: watch its directory, nothing to parse
            return ModuleInfo(name=name, root=root, path=path, directory=path.parent)

        package = name if is_package else name.rpartition(".")[0]
        try:
            imports = _read_imports(path, package=package)
        except DependencyResolutionError as e:
            raise DependencyResolutionError(str(e), directory=path.parent) from e
        return ModuleInfo(
            name=name,
            root=root,
            path=path,
            directory=path.parent,
            is_package=is_package,
            imports=imports,
        )


def _is_platform_module(top: str) -> bool:
    return (
        top == ENTRY_MODULE
        or top in sys.stdlib_module_names
        or top in sys.builtin_module_names
    )


def _find_spec(name: str, roots: list[str]) -> ModuleSpec | None:
    """Find a dotted module under `roots` without importing any parent."""
    parts = name.split(".")
    spec = PathFinder.find_spec(parts[0], roots)
    prefix = parts[0]
    for part in parts[1:]:
        if spec is None or not spec.submodule_search_locations:
            return None
        prefix = f"{prefix}.{part}"
        spec = PathFinder.find_spec(prefix, list(spec.submodule_search_locations))
    return spec


def _read_imports(path: Path, package: str) -> tuple[ImportRef, ...]:
    try:
        source = path.read_bytes()
    except OSError as e:
        raise DependencyResolutionError(f"Unable to read {path}: {e}") from e
    try:
        tree = ast.parse(source, filename=str(path))
    except (SyntaxError, ValueError) as e:
        raise DependencyResolutionError(f"Unable to parse {path}: {e}") from e

    collector = _ImportCollector(package)
    collector.visit(tree)
    return tuple(ImportRef(name, optional) for name, optional in sorted(collector.refs.items()))


def _prefixes(name: str) -> list[str]:
    """"a.b.c" -> ["a", "a.b", "a.b.c"]; importing a submodule runs its parents."""
    parts = name.split(".")
    return [".".join(parts[: i + 1]) for i in range(len(parts))]


def _catches_import_error(handler: ast.ExceptHandler) -> bool:
    if handler.type is None:
        return True
    names = handler.type.elts if isinstance(handler.type, ast.Tuple) else [handler.type]
    return any(isinstance(n, ast.Name) and n.id in _IMPORT_GUARDS for n in names)


class _ImportCollector(ast.NodeVisitor):
    """Collects every import in a module, marking guarded ones optional."""

    def __init__(self, package: str) -> None:
        self.package = package
        self.refs: dict[str, bool] = {}  # name -> optional
        self._guarded = 0

    def _add(self, name: str, optional: bool) -> None:
        optional = optional or self._guarded > 0
        # A single required occurrence makes the import required
        self.refs[name] = self.refs.get(name, True) and optional

    def visit_Try(self, node: ast.Try) -> None:
        guarded = any(_catches_import_error(h) for h in node.handlers)
        if guarded:
            self._guarded += 1
        for stmt in node.body:
            self.visit(stmt)
        if guarded:
            self._guarded -= 1
        for stmt in [*node.handlers, *node.orelse, *node.finalbody]:
            self.visit(stmt)

    visit_TryStar = visit_Try

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            for prefix in _prefixes(alias.name):
                self._add(prefix, optional=False)

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        base = self._absolute_base(node)
        if base is None:
            return
        for prefix in _prefixes(base):
            self._add(prefix, optional=False)
        for alias in node.names:
            if alias.name != "*":
                # May be a submodule or just an attribute of `base`
                self._add(f"{base}.{alias.name}", optional=True)

    def _absolute_base(self, node: ast.ImportFrom) -> str | None:
        if not node.level:
            return node.module
        parts = self.package.split(".") if self.package else []
        if node.level - 1 >= len(parts):
            logger.debug(f"Ignoring relative import beyond top-level package in {self.package!r}")
            return None
        parts = parts[: len(parts) - (node.level - 1)]
        if node.module:
            parts.extend(node.module.split("."))
        return ".".join(parts) or None
