"""The reload control loop and its reload policies."""

from treeloader.reload.coordinator import ReloadCoordinator
from treeloader.reload.policy import (
    AcceptAllPolicy,
    ChainPolicy,
    ContentHashPolicy,
    DebouncePolicy,
    ReloadPolicy,
)

__all__ = [
    "AcceptAllPolicy",
    "ChainPolicy",
    "ContentHashPolicy",
    "DebouncePolicy",
    "ReloadCoordinator",
    "ReloadPolicy",
]
