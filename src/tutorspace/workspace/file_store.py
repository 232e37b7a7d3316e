"""
File operations confined to the learner workspace.

Every operation goes through PathGuard before touching the filesystem.
"""

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from ..errors import AlreadyExistsError, ForbiddenError, NotFoundError
from ..logging_config import get_logger
from .ignore import IgnoreRules
from .path_guard import PathGuard

logger = get_logger(__name__)

NodeType = Literal["file", "directory"]


@dataclass
class FileTreeNode:
    """Entry in the recursive workspace tree."""

    name: str
    type: NodeType
    path: str
    size: int | None = None
    children: list["FileTreeNode"] | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert node to dictionary.

        Returns:
            Dict representation (size only for files, children only for directories)
        """
        data: dict[str, Any] = {"name": self.name, "type": self.type, "path": self.path}

        if self.type == "file":
            data["size"] = self.size
        else:
            data["children"] = [child.to_dict() for child in self.children or []]

        return data


def _sort_key(entry: Any) -> tuple[int, str]:
    # Directories first, then by name
    return (0 if entry.type == "directory" else 1, entry.name)


class FileStore:
    """
    Read, write, create, delete and list workspace files.

    Text content is UTF-8. Writes are replace-on-rename, which is enough for a
    single writer; concurrent writers to the same path are not serialized.
    """

    def __init__(self, guard: PathGuard, ignore_rules: IgnoreRules | None = None) -> None:
        """
        Initialize file store.

        Args:
            guard: Path guard for the workspace
            ignore_rules: Rules for hiding entries from the file tree
        """
        self.guard = guard
        self.ignore_rules = ignore_rules or IgnoreRules()

    @property
    def root(self) -> Path:
        return self.guard.workspace_root

    def read_file(self, path: str) -> str:
        """
        Read a workspace file.

        Args:
            path: Relative file path

        Returns:
            File content (undecodable bytes become U+FFFD)

        Raises:
            ForbiddenError: Path escapes the workspace
            NotFoundError: Missing or not a regular file
        """
        target = self.guard.resolve(path)

        if not target.is_file():
            raise NotFoundError(f"File not found: {path}")

        return target.read_text(encoding="utf-8", errors="replace")

    def write_file(self, path: str, content: str) -> str:
        """
        Write a workspace file, creating parent directories.

        Args:
            path: Relative file path
            content: New file content

        Returns:
            Relative path written
        """
        target = self.guard.resolve(path)

        if target == self.root or target.is_dir():
            raise ForbiddenError(f"Cannot write to directory: {path}")

        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            # mkstemp creates 0600; keep the existing mode or use a regular file mode
            os.chmod(tmp_name, target.stat().st_mode & 0o777 if target.exists() else 0o644)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        rel = self.guard.relative(target)
        logger.debug(f"Wrote {rel} ({len(content)} chars)")

        return rel

    def create_file(self, path: str, content: str = "") -> str:
        """
        Create a new workspace file.

        Args:
            path: Relative file path
            content: Initial content

        Returns:
            Relative path created

        Raises:
            AlreadyExistsError: Target already exists
        """
        target = self.guard.resolve(path)

        if target.exists():
            raise AlreadyExistsError(f"File already exists: {path}")

        rel = self.write_file(path, content)
        logger.info(f"Created file {rel}")

        return rel

    def delete_file(self, path: str) -> str:
        """
        Delete a workspace file.

        Args:
            path: Relative file path

        Returns:
            Relative path deleted

        Raises:
            NotFoundError: File does not exist (or is a directory)
        """
        target = self.guard.resolve(path)

        if not target.exists():
            raise NotFoundError(f"File not found: {path}")

        if not target.is_file():
            raise NotFoundError(f"Not a file: {path}")

        target.unlink()

        rel = self.guard.relative(target)
        logger.info(f"Deleted file {rel}")

        return rel

    def list_directory(self, path: str = "") -> list[dict[str, str]]:
        """
        List one directory level.

        Args:
            path: Relative directory path ("" for the root)

        Returns:
            List of {name, type, path} dicts
        """
        target = self.guard.resolve(path)

        if not target.is_dir():
            raise NotFoundError(f"Directory not found: {path}")

        entries = []

        for item in target.iterdir():
            entries.append(
                FileTreeNode(
                    name=item.name,
                    type="directory" if item.is_dir() else "file",
                    path=self.guard.relative(item),
                )
            )

        return [{"name": e.name, "type": e.type, "path": e.path} for e in sorted(entries, key=_sort_key)]

    def get_file_tree(self) -> list[FileTreeNode]:
        """
        Build the full workspace tree with ignore rules applied.

        Never raises; read errors yield empty listings.

        Returns:
            Top-level nodes
        """
        try:
            return self._build_tree(self.root)
        except OSError as e:
            logger.exception(f"Error building file tree: {e}")
            return []

    def _build_tree(self, directory: Path) -> list[FileTreeNode]:
        nodes: list[FileTreeNode] = []

        for item in directory.iterdir():
            if self.ignore_rules.is_ignored_name(item.name):
                continue

            rel = item.relative_to(self.root).as_posix()

            if item.is_dir() and not item.is_symlink():
                try:
                    children = self._build_tree(item)
                except OSError as e:
                    logger.warning(f"Cannot read directory {rel}: {e}")
                    children = []
                nodes.append(FileTreeNode(name=item.name, type="directory", path=rel, children=children))
            else:
                try:
                    size = item.stat().st_size
                except OSError:
                    # Dangling symlink or vanished file
                    continue
                nodes.append(FileTreeNode(name=item.name, type="file", path=rel, size=size))

        return sorted(nodes, key=_sort_key)
