"""
Recursive change watcher for the learner workspace.

Publishes a ChangeEvent for every file or directory added, changed or deleted
after the watch is established. Events carry a content snapshot for files so
subscribers do not need to re-read them.
"""

import asyncio
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from watchfiles import Change, DefaultFilter, awatch

from ..events import EventBroadcaster, Subscription
from ..logging_config import get_logger
from .ignore import IgnoreRules
from .path_guard import PathGuard

logger = get_logger(__name__)

ChangeKind = Literal["add", "change", "delete", "addDir", "deleteDir"]


class WatcherState(Enum):
    """Watcher lifecycle state."""

    STOPPED = "stopped"
    WATCHING = "watching"


@dataclass
class FileStats:
    """Stat snapshot attached to add/change events."""

    size: int
    modified: datetime
    is_directory: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": self.size,
            "modified": self.modified.isoformat(),
            "is_directory": self.is_directory,
        }


@dataclass
class ChangeEvent:
    """A single workspace change, emitted once and never persisted."""

    event: ChangeKind
    relative_path: str
    full_path: str
    content: str | None
    stats: FileStats | None
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        """
        Convert event to dictionary.

        Returns:
            Dict representation
        """
        return {
            "event": self.event,
            "relative_path": self.relative_path,
            "full_path": self.full_path,
            "content": self.content,
            "stats": self.stats.to_dict() if self.stats else None,
            "timestamp": self.timestamp.isoformat(),
        }


class WorkspaceWatchFilter(DefaultFilter):
    """watchfiles filter applying workspace ignore rules at watch level."""

    def __init__(self, root: Path, ignore_rules: IgnoreRules) -> None:
        super().__init__()
        self.root = root
        self.ignore_rules = ignore_rules

    def __call__(self, change: Change, path: str) -> bool:
        try:
            parts = Path(path).relative_to(self.root).parts
        except ValueError:
            return False

        if self.ignore_rules.is_ignored_path(parts):
            return False

        return super().__call__(change, path)


class ChangeWatcher:
    """
    Watches the workspace and broadcasts ChangeEvents.

    States: STOPPED -> WATCHING on ``start()``, WATCHING -> STOPPED on ``stop()``.
    No coalescing is done here; rapid saves may produce several ``change`` events.
    """

    def __init__(
        self,
        guard: PathGuard,
        ignore_rules: IgnoreRules | None = None,
        broadcaster: EventBroadcaster | None = None,
        force_polling: bool = False,
        debounce_ms: int = 400,
    ) -> None:
        """
        Initialize change watcher.

        Args:
            guard: Path guard for the workspace
            ignore_rules: Entries excluded from watching
            broadcaster: Channel events are published to
            force_polling: Poll instead of using OS notifications
            debounce_ms: Batch window of the underlying watcher
        """
        self.guard = guard
        self.ignore_rules = ignore_rules or IgnoreRules()
        self.broadcaster = broadcaster or EventBroadcaster("file_changed")
        self.force_polling = force_polling
        self.debounce_ms = debounce_ms

        self.state = WatcherState.STOPPED
        self.events_emitted = 0
        self._known_dirs: set[Path] = set()
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def root(self) -> Path:
        return self.guard.workspace_root

    @property
    def is_watching(self) -> bool:
        return self.state == WatcherState.WATCHING

    async def start(self) -> None:
        """Begin watching (no-op if already watching)."""
        if self.state == WatcherState.WATCHING:
            return

        self.state = WatcherState.WATCHING

        await asyncio.to_thread(self.root.mkdir, parents=True, exist_ok=True)
        self._known_dirs = await asyncio.to_thread(self._scan_directories)

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event), name="tutorspace-change-watcher")

        logger.info(f"Watching workspace: {self.root}")

    async def stop(self) -> None:
        """Stop watching (no-op if already stopped)."""
        if self.state == WatcherState.STOPPED:
            return

        self.state = WatcherState.STOPPED

        if self._stop_event is not None:
            self._stop_event.set()

        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=5)
            except TimeoutError:
                self._task.cancel()
                logger.warning("File watcher did not stop in time, cancelled")
            self._task = None

        logger.info("File watcher stopped")

    async def _run(self, stop_event: asyncio.Event) -> None:
        watch_filter = WorkspaceWatchFilter(self.root, self.ignore_rules)

        try:
            async for changes in awatch(
                self.root,
                watch_filter=watch_filter,
                stop_event=stop_event,
                force_polling=self.force_polling,
                debounce=self.debounce_ms,
                recursive=True,
            ):
                # Parents sort before their children
                for change, path in sorted(changes, key=lambda c: c[1]):
                    await self._dispatch(change, path)
        except Exception as e:
            logger.exception(f"File watcher error: {e}")
            self.state = WatcherState.STOPPED

    async def _dispatch(self, change: Change, path: str) -> None:
        try:
            event = await self.handle_change(change, Path(path))
        except Exception:
            logger.exception(f"Error handling file change: {path}")
            return

        if event is not None:
            self.events_emitted += 1
            self.broadcaster.publish(event)
            logger.debug(f"File {event.event}: {event.relative_path}")

    async def handle_change(self, change: Change, path: Path) -> ChangeEvent | None:
        """
        Turn one raw notification into a ChangeEvent.

        Args:
            change: watchfiles change type
            path: Absolute path reported by the watcher

        Returns:
            ChangeEvent, or None if the change is dropped
        """
        try:
            relative = path.relative_to(self.root)
        except ValueError:
            return None

        if relative == Path(".") or self.ignore_rules.is_ignored_path(relative.parts):
            return None

        if change == Change.deleted:
            if path in self._known_dirs:
                self._forget_directory(path)
                kind: ChangeKind = "deleteDir"
            else:
                kind = "delete"
            return self._make_event(kind, relative, path, None, None)

        # Symlinks pointing out of the workspace are not followed
        if not self.guard.is_within(path):
            return None

        if path.is_dir():
            if change != Change.added or path in self._known_dirs:
                return None
            self._known_dirs.add(path)
            kind = "addDir"
        else:
            kind = "add" if change == Change.added else "change"

        content, stats = await asyncio.to_thread(self._snapshot, path)

        return self._make_event(kind, relative, path, content, stats)

    def _make_event(
        self,
        kind: ChangeKind,
        relative: Path,
        path: Path,
        content: str | None,
        stats: FileStats | None,
    ) -> ChangeEvent:
        return ChangeEvent(
            event=kind,
            relative_path=relative.as_posix(),
            full_path=str(path),
            content=content,
            stats=stats,
            timestamp=datetime.now(UTC),
        )

    def _snapshot(self, path: Path) -> tuple[str | None, FileStats | None]:
        try:
            st = path.stat()
            stats = FileStats(
                size=st.st_size,
                modified=datetime.fromtimestamp(st.st_mtime, UTC),
                is_directory=path.is_dir(),
            )
            content = path.read_text(encoding="utf-8") if path.is_file() else None
        except UnicodeDecodeError:
            return None, stats
        except OSError as e:
            # Removed between notification and read
            logger.warning(f"Could not read file {path}: {e}")
            return None, None

        return content, stats

    def _scan_directories(self) -> set[Path]:
        known: set[Path] = set()

        for dirpath, dirnames, _ in os.walk(self.root):
            dirnames[:] = [d for d in dirnames if not self.ignore_rules.is_ignored_name(d)]
            for name in dirnames:
                known.add(Path(dirpath) / name)

        return known

    def _forget_directory(self, path: Path) -> None:
        self._known_dirs = {d for d in self._known_dirs if d != path and path not in d.parents}

    def subscribe(self, maxsize: int | None = None) -> Subscription:
        """Shortcut for ``broadcaster.subscribe``."""
        return self.broadcaster.subscribe(maxsize)
