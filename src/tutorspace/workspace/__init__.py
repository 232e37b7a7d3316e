"""
tutorspace workspace module.

Path confinement, file operations and change watching for the learner workspace.
"""

from .file_store import FileStore, FileTreeNode
from .ignore import IgnoreRules
from .path_guard import PathGuard
from .watcher import ChangeEvent, ChangeWatcher, FileStats, WatcherState

__all__ = [
    "ChangeEvent",
    "ChangeWatcher",
    "FileStats",
    "FileStore",
    "FileTreeNode",
    "IgnoreRules",
    "PathGuard",
    "WatcherState",
]
