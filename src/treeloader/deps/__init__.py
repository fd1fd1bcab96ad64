"""Dependency resolution over a program's import graph."""

from treeloader.deps.resolver import DependencyResolver
from treeloader.deps.sources import ImportRef, ImportSource, ModuleInfo, PythonImportSource

__all__ = [
    "DependencyResolver",
    "ImportRef",
    "ImportSource",
    "ModuleInfo",
    "PythonImportSource",
]
