"""
Path confinement for workspace operations.

Every caller-supplied path is resolved against the workspace root and rejected
if it lands outside it.
"""

from pathlib import Path

from ..errors import ForbiddenError
from ..logging_config import get_logger

logger = get_logger(__name__)


class PathGuard:
    """
    Resolves relative paths inside a fixed workspace root.

    Blocks ``..`` escapes, absolute-path overrides and symlinks pointing
    outside the root. Rejections are never clamped back into the root.
    """

    def __init__(self, workspace_root: Path) -> None:
        """
        Initialize path guard.

        Args:
            workspace_root: Workspace root directory
        """
        self.workspace_root = Path(workspace_root).expanduser().resolve()

        logger.debug(f"PathGuard initialized for {self.workspace_root}")

    def is_within(self, path: Path) -> bool:
        """
        Check whether an absolute path lies at or beneath the root.

        Args:
            path: Path to check (resolved before comparison)

        Returns:
            True if inside the workspace
        """
        try:
            Path(path).resolve().relative_to(self.workspace_root)
            return True
        except (ValueError, OSError, RuntimeError):
            return False

    def resolve(self, relative_path: str | Path = "") -> Path:
        """
        Resolve a caller path to an absolute path inside the workspace.

        Args:
            relative_path: Path relative to the workspace root

        Returns:
            Absolute, normalized path

        Raises:
            ForbiddenError: Path resolves outside the workspace
        """
        raw = str(relative_path) if relative_path is not None else ""

        if "\x00" in raw:
            logger.warning(f"Rejected path with NUL byte: {raw!r}")
            raise ForbiddenError("Access denied: invalid path")

        try:
            candidate = (self.workspace_root / raw).resolve()
        except (OSError, RuntimeError) as e:
            logger.warning(f"Rejected unresolvable path {raw!r}: {e}")
            raise ForbiddenError(f"Access denied: {raw}") from e

        try:
            candidate.relative_to(self.workspace_root)
        except ValueError:
            logger.warning(f"Rejected path outside workspace: {raw!r}")
            raise ForbiddenError(f"Access denied: {raw}") from None

        return candidate

    def relative(self, path: Path) -> str:
        """
        Express an absolute workspace path relative to the root.

        Args:
            path: Absolute path inside the workspace

        Returns:
            POSIX-style relative path ("" for the root itself)
        """
        rel = Path(path).relative_to(self.workspace_root).as_posix()
        return "" if rel == "." else rel
