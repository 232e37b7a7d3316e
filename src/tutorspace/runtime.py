"""
Explicit construction and lifecycle of the tutor backend components.

The hosting process builds one Runtime, calls ``start()`` once the event loop
is running, and awaits ``shutdown()`` on exit so no child process outlives it.
"""

from pathlib import Path

from .config.schema import TutorspaceSettings
from .errors import StorageError
from .events import EventBroadcaster
from .logging_config import get_logger
from .process.command_runner import CommandRunner
from .process.dev_server import DevServerManager
from .process.monitor import ProcessMonitor
from .progress import ProgressStore
from .workspace.file_store import FileStore
from .workspace.ignore import IgnoreRules
from .workspace.path_guard import PathGuard
from .workspace.project import ProjectManager
from .workspace.watcher import ChangeWatcher

logger = get_logger(__name__)


class Runtime:
    """Owns every component bound to one workspace."""

    def __init__(self, settings: TutorspaceSettings | None = None) -> None:
        """
        Build all components (nothing is started yet).

        Args:
            settings: Configuration (loaded from env/YAML if None)
        """
        self.settings = settings or TutorspaceSettings()

        workspace = self.settings.workspace
        root = self.settings.workspace_root
        root.mkdir(parents=True, exist_ok=True)

        self.guard = PathGuard(root)
        self.ignore_rules = IgnoreRules(
            names=workspace.ignored_names,
            patterns=workspace.ignored_patterns,
            ignore_dotfiles=workspace.ignore_dotfiles,
        )
        self.monitor = ProcessMonitor()
        self.file_store = FileStore(self.guard, self.ignore_rules)
        self.watcher = ChangeWatcher(
            self.guard,
            self.ignore_rules,
            broadcaster=EventBroadcaster("file_changed", workspace.event_queue_size),
            force_polling=workspace.watch_force_polling,
        )
        self.runner = CommandRunner(
            self.guard,
            self.monitor,
            allowed_commands=self.settings.commands.allowed,
            timeout_seconds=self.settings.commands.timeout_seconds,
            kill_grace_seconds=self.settings.commands.kill_grace_seconds,
        )
        self.dev_server = DevServerManager.from_config(
            self.settings.dev_server,
            root,
            monitor=self.monitor,
            broadcaster=EventBroadcaster("dev_server", workspace.event_queue_size),
        )
        self.projects = ProjectManager(self.file_store, self.runner, self.settings.dev_server.port)
        self.progress = ProgressStore(self.settings.progress.db_path)

        self.session_id: int | None = None
        self.started = False

        logger.debug(f"Runtime built for workspace {root}")

    @property
    def workspace_root(self) -> Path:
        return self.guard.workspace_root

    async def start(self) -> None:
        """Start background services (the change watcher) and open a learning session."""
        if self.started:
            return

        await self.watcher.start()
        self.session_id = self.progress.start_session()
        self.started = True

        logger.info(f"Runtime started for {self.workspace_root}")

    async def shutdown(self) -> None:
        """Stop the watcher and dev server and kill any in-flight commands."""
        logger.info("Shutting down runtime")

        await self.watcher.stop()
        await self.dev_server.shutdown()
        await self.monitor.cleanup_all(self.settings.commands.kill_grace_seconds)

        self.watcher.broadcaster.close()
        self.dev_server.broadcaster.close()

        if self.session_id is not None:
            try:
                self.progress.end_session(self.session_id)
            except StorageError as e:
                logger.warning(f"Failed to close learning session {self.session_id}: {e.message}")
            self.session_id = None

        self.started = False

    async def __aenter__(self) -> "Runtime":
        await self.start()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.shutdown()
