"""
Error taxonomy for workspace, command and process operations.

Every error carries the HTTP status the API layer reports it with.
"""


class WorkspaceError(Exception):
    """Base class for all tutorspace operation failures."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        """Serialize for API responses."""
        return {"error": self.message, "type": type(self).__name__}


class ForbiddenError(WorkspaceError):
    """Path escapes the workspace, or command is not allowed."""

    status_code = 403


class NotFoundError(WorkspaceError):
    """File or directory does not exist."""

    status_code = 404


class AlreadyExistsError(WorkspaceError):
    """Create target already exists."""

    status_code = 409


class InvalidCommandError(WorkspaceError):
    """Command line is empty or cannot be tokenized."""

    status_code = 400


class CommandTimeoutError(WorkspaceError):
    """Command exceeded its wall-clock bound and was killed."""

    status_code = 408

    def __init__(self, message: str, command: str = "", timeout: float = 0.0) -> None:
        super().__init__(message)
        self.command = command
        self.timeout = timeout


class SpawnFailureError(WorkspaceError):
    """The OS could not start the process."""

    status_code = 500

    def __init__(self, message: str, command: str = "") -> None:
        super().__init__(message)
        self.command = command


class StorageError(WorkspaceError):
    """The progress database could not be read or written."""

    status_code = 500
