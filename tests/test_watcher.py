"""Tests for the workspace change watcher."""

import asyncio

import pytest
from watchfiles import Change

from tutorspace.events import EventBroadcaster
from tutorspace.workspace.ignore import IgnoreRules
from tutorspace.workspace.path_guard import PathGuard
from tutorspace.workspace.watcher import ChangeWatcher, WatcherState, WorkspaceWatchFilter


@pytest.fixture
def watcher(workspace):
    watcher = ChangeWatcher(PathGuard(workspace))
    watcher._known_dirs = watcher._scan_directories()
    return watcher


@pytest.mark.unit
class TestHandleChange:
    """Test mapping raw notifications to change events."""

    @pytest.mark.asyncio
    async def test_added_file(self, watcher):
        """Test a new file yields add with content and stats."""
        path = watcher.root / "src" / "App.tsx"
        path.parent.mkdir()
        path.write_text("export default App\n")

        event = await watcher.handle_change(Change.added, path)

        assert event.event == "add"
        assert event.relative_path == "src/App.tsx"
        assert event.full_path == str(path)
        assert event.content == "export default App\n"
        assert event.stats.size == len("export default App\n")
        assert event.stats.is_directory is False

    @pytest.mark.asyncio
    async def test_modified_file(self, watcher):
        """Test modification yields change."""
        path = watcher.root / "main.ts"
        path.write_text("v2")

        event = await watcher.handle_change(Change.modified, path)

        assert event.event == "change"
        assert event.content == "v2"

    @pytest.mark.asyncio
    async def test_deleted_file(self, watcher):
        """Test deletion yields delete without content or stats."""
        event = await watcher.handle_change(Change.deleted, watcher.root / "gone.ts")

        assert event.event == "delete"
        assert event.content is None
        assert event.stats is None

    @pytest.mark.asyncio
    async def test_directory_added_then_deleted(self, watcher):
        """Test directories are reported as addDir/deleteDir."""
        directory = watcher.root / "components"
        directory.mkdir()

        added = await watcher.handle_change(Change.added, directory)
        assert added.event == "addDir"
        assert added.content is None
        assert added.stats.is_directory is True

        # A second notification for the same directory is not repeated
        assert await watcher.handle_change(Change.added, directory) is None

        directory.rmdir()
        deleted = await watcher.handle_change(Change.deleted, directory)
        assert deleted.event == "deleteDir"

    @pytest.mark.asyncio
    async def test_existing_directory_deleted(self, workspace):
        """Test directories present at start are known."""
        (workspace / "src").mkdir()
        watcher = ChangeWatcher(PathGuard(workspace))
        watcher._known_dirs = watcher._scan_directories()

        (workspace / "src").rmdir()
        event = await watcher.handle_change(Change.deleted, watcher.root / "src")

        assert event.event == "deleteDir"

    @pytest.mark.asyncio
    async def test_directory_modification_dropped(self, watcher):
        """Test directory mtime changes are not reported."""
        directory = watcher.root / "src"
        directory.mkdir()
        watcher._known_dirs.add(directory)

        assert await watcher.handle_change(Change.modified, directory) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "relative",
        ["node_modules/react/index.js", ".git/HEAD", "dist/bundle.js", "npm-debug.log", ".env", "src/.cache/x"],
    )
    async def test_ignored_paths_dropped(self, watcher, relative):
        """Test ignored paths never produce events."""
        path = watcher.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("x")

        assert await watcher.handle_change(Change.added, path) is None

    @pytest.mark.asyncio
    async def test_outside_root_dropped(self, watcher, tmp_path):
        """Test paths outside the root are dropped silently."""
        outside = tmp_path / "outside.txt"
        outside.write_text("x")

        assert await watcher.handle_change(Change.added, outside) is None
        assert await watcher.handle_change(Change.modified, watcher.root) is None

    @pytest.mark.asyncio
    async def test_escaping_symlink_dropped(self, watcher, tmp_path):
        """Test symlinks leading out of the root are not read."""
        secret = tmp_path / "secret.txt"
        secret.write_text("secret")
        link = watcher.root / "link.txt"
        link.symlink_to(secret)

        assert await watcher.handle_change(Change.added, link) is None

    @pytest.mark.asyncio
    async def test_binary_file_has_stats_only(self, watcher):
        """Test undecodable content is omitted."""
        path = watcher.root / "logo.png"
        path.write_bytes(b"\x89PNG\r\n\x1a\n\xff\xfe\x00")

        event = await watcher.handle_change(Change.added, path)

        assert event.event == "add"
        assert event.content is None
        assert event.stats.size == 11

    @pytest.mark.asyncio
    async def test_vanished_file(self, watcher):
        """Test a file removed before it is read degrades gracefully."""
        event = await watcher.handle_change(Change.added, watcher.root / "flash.txt")

        assert event.event == "add"
        assert event.content is None
        assert event.stats is None

    @pytest.mark.asyncio
    async def test_event_to_dict(self, watcher):
        """Test serialization shape."""
        path = watcher.root / "a.txt"
        path.write_text("a")

        data = (await watcher.handle_change(Change.added, path)).to_dict()

        assert set(data) == {"event", "relative_path", "full_path", "content", "stats", "timestamp"}
        assert set(data["stats"]) == {"size", "modified", "is_directory"}
        assert data["timestamp"].endswith("+00:00")

    @pytest.mark.asyncio
    async def test_dispatch_publishes(self, watcher):
        """Test handled events reach subscribers."""
        subscription = watcher.subscribe()
        path = watcher.root / "b.txt"
        path.write_text("b")

        await watcher._dispatch(Change.added, str(path))
        await watcher._dispatch(Change.added, str(watcher.root / "node_modules" / "x"))

        event = await subscription.get(timeout=1)
        assert event.relative_path == "b.txt"
        assert subscription.pending() == 0
        assert watcher.events_emitted == 1

    @pytest.mark.asyncio
    async def test_dispatch_survives_handler_errors(self, watcher):
        """Test one failing event does not stop later ones."""
        subscription = watcher.subscribe()
        original = watcher.handle_change
        calls = []

        async def flaky(change, path):
            calls.append(path)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return await original(change, path)

        watcher.handle_change = flaky
        (watcher.root / "ok.txt").write_text("ok")

        await watcher._dispatch(Change.added, str(watcher.root / "bad.txt"))
        await watcher._dispatch(Change.added, str(watcher.root / "ok.txt"))

        event = await subscription.get(timeout=1)
        assert event.relative_path == "ok.txt"


@pytest.mark.unit
class TestWatchFilter:
    """Test the watch-level filter."""

    def test_filter_applies_ignore_rules(self, workspace):
        """Test ignored and outside paths are filtered."""
        root = workspace.resolve()
        watch_filter = WorkspaceWatchFilter(root, IgnoreRules())

        assert watch_filter(Change.added, str(root / "src" / "App.tsx"))
        assert not watch_filter(Change.added, str(root / "node_modules" / "a.js"))
        assert not watch_filter(Change.added, str(root / ".git" / "index"))
        assert not watch_filter(Change.added, "/somewhere/else.txt")


@pytest.mark.integration
class TestWatcherLifecycle:
    """Test the watcher against the real filesystem."""

    @pytest.mark.asyncio
    async def test_start_stop(self, workspace):
        """Test state transitions and idempotence."""
        watcher = ChangeWatcher(PathGuard(workspace), force_polling=True)

        await watcher.start()
        task = watcher._task
        await watcher.start()

        assert watcher.state == WatcherState.WATCHING
        assert watcher.is_watching
        assert watcher._task is task

        await watcher.stop()
        await watcher.stop()

        assert watcher.state == WatcherState.STOPPED
        assert task.done()

    @pytest.mark.asyncio
    async def test_emits_events_for_new_file(self, workspace):
        """Test a file created after start is reported with its content."""
        broadcaster = EventBroadcaster("file_changed")
        watcher = ChangeWatcher(PathGuard(workspace), broadcaster=broadcaster, force_polling=True, debounce_ms=50)
        subscription = watcher.subscribe()

        await watcher.start()
        try:
            await asyncio.sleep(1.0)
            (workspace / "hello.txt").write_text("hello world")
            (workspace / "node_modules").mkdir()
            (workspace / "node_modules" / "pkg.js").write_text("ignored")

            event = await subscription.get(timeout=10)
            while event.relative_path != "hello.txt":
                event = await subscription.get(timeout=10)
        finally:
            await watcher.stop()

        assert event.event in ("add", "change")
        assert event.content == "hello world"
        assert all("node_modules" not in e.relative_path for e in _drain(subscription))

    @pytest.mark.asyncio
    async def test_missing_root_is_created(self, tmp_path):
        """Test starting on a missing root creates it."""
        watcher = ChangeWatcher(PathGuard(tmp_path / "new-workspace"), force_polling=True)

        await watcher.start()
        try:
            assert (tmp_path / "new-workspace").is_dir()
        finally:
            await watcher.stop()


def _drain(subscription):
    events = []
    while subscription.pending():
        item = subscription._queue.get_nowait()
        if hasattr(item, "relative_path"):
            events.append(item)
    return events
