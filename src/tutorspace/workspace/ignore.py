"""
Ignore rules shared by the file tree listing and the change watcher.
"""

from collections.abc import Iterable
from fnmatch import fnmatch

from ..config.schema import DEFAULT_IGNORED_NAMES


class IgnoreRules:
    """Decides which workspace entries are hidden from tree and watch output."""

    def __init__(
        self,
        names: Iterable[str] | None = None,
        patterns: Iterable[str] | None = None,
        ignore_dotfiles: bool = True,
    ) -> None:
        self.names = frozenset(DEFAULT_IGNORED_NAMES if names is None else names)
        self.patterns = tuple(["*.log"] if patterns is None else patterns)
        self.ignore_dotfiles = ignore_dotfiles

    def is_ignored_name(self, name: str) -> bool:
        """Check a single path component."""
        if name in self.names:
            return True

        if self.ignore_dotfiles and name.startswith(".") and name not in (".", ".."):
            return True

        return any(fnmatch(name, pattern) for pattern in self.patterns)

    def is_ignored_path(self, parts: Iterable[str]) -> bool:
        """Check every component of a relative path."""
        return any(self.is_ignored_name(part) for part in parts)
