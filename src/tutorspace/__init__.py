"""
tutorspace: sandboxed workspace backend for an interactive coding tutor.
"""

from .errors import (
    AlreadyExistsError,
    CommandTimeoutError,
    ForbiddenError,
    InvalidCommandError,
    NotFoundError,
    SpawnFailureError,
    StorageError,
    WorkspaceError,
)
from .runtime import Runtime

__version__ = "0.1.0"

__all__ = [
    "AlreadyExistsError",
    "CommandTimeoutError",
    "ForbiddenError",
    "InvalidCommandError",
    "NotFoundError",
    "Runtime",
    "SpawnFailureError",
    "StorageError",
    "WorkspaceError",
]
