"""Lifecycle of the watched program's process group."""

from treeloader.process.groups import (
    PosixProcessGroup,
    ProcessGroup,
    WindowsProcessGroup,
    default_process_group,
)
from treeloader.process.manager import CommandDescriptor, ProcessManager, ProcessState

__all__ = [
    "CommandDescriptor",
    "PosixProcessGroup",
    "ProcessGroup",
    "ProcessManager",
    "ProcessState",
    "WindowsProcessGroup",
    "default_process_group",
]
