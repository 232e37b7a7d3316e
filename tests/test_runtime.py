"""Tests for runtime construction and teardown."""

import asyncio
import sys

import pytest

from tutorspace.config.schema import TutorspaceSettings
from tutorspace.process.dev_server import DevServerState
from tutorspace.runtime import Runtime


@pytest.mark.unit
class TestRuntimeConstruction:
    """Test component wiring."""

    def test_builds_components(self, settings, workspace):
        """Test every component shares the workspace root."""
        runtime = Runtime(settings)

        assert runtime.workspace_root == workspace.resolve()
        assert runtime.file_store.root == runtime.workspace_root
        assert runtime.watcher.root == runtime.workspace_root
        assert runtime.dev_server.workspace_root == runtime.workspace_root
        assert runtime.runner.monitor is runtime.monitor
        assert runtime.dev_server.monitor is runtime.monitor
        assert runtime.runner.timeout_seconds == 5.0
        assert not runtime.started

    def test_creates_missing_root(self, tmp_path):
        """Test the workspace root is created on construction."""
        root = tmp_path / "student-workspace" / "my-task-manager"

        Runtime(TutorspaceSettings(workspace={"root": str(root)}))

        assert root.is_dir()

    def test_runtimes_are_independent(self, tmp_path):
        """Test two runtimes share no state."""
        first = Runtime(TutorspaceSettings(workspace={"root": str(tmp_path / "a")}))
        second = Runtime(TutorspaceSettings(workspace={"root": str(tmp_path / "b")}))

        assert first.dev_server is not second.dev_server
        assert first.monitor is not second.monitor
        assert first.watcher.broadcaster is not second.watcher.broadcaster


@pytest.mark.integration
class TestRuntimeLifecycle:
    """Test start and shutdown."""

    @pytest.mark.asyncio
    async def test_context_manager(self, settings):
        """Test the watcher runs inside the context and stops after."""
        async with Runtime(settings) as runtime:
            assert runtime.started
            assert runtime.watcher.is_watching

        assert not runtime.started
        assert not runtime.watcher.is_watching
        assert runtime.watcher.broadcaster.closed
        assert runtime.dev_server.broadcaster.closed

    @pytest.mark.asyncio
    async def test_shutdown_stops_dev_server(self, workspace):
        """Test shutdown leaves no dev server behind."""
        settings = TutorspaceSettings(
            workspace={"root": str(workspace), "watch_force_polling": True},
            dev_server={
                "command": [sys.executable, "-c", "import time; print('Local: up', flush=True); time.sleep(60)"],
                "stop_grace_seconds": 1.0,
            },
        )
        runtime = Runtime(settings)
        await runtime.start()

        assert (await runtime.dev_server.start()).success
        pid = runtime.dev_server.pid

        await runtime.shutdown()

        assert runtime.dev_server.state == DevServerState.IDLE
        assert pid not in runtime.monitor.tracked_processes
        assert runtime.monitor.get_process_count() == 0

    @pytest.mark.asyncio
    async def test_shutdown_kills_inflight_commands(self, workspace):
        """Test a running command is killed on shutdown."""
        settings = TutorspaceSettings(
            workspace={"root": str(workspace)},
            commands={"allowed": ["sleep"], "timeout_seconds": 30, "kill_grace_seconds": 0.5},
        )
        runtime = Runtime(settings)

        command = asyncio.create_task(runtime.runner.execute("sleep 30"))
        for _ in range(50):
            if runtime.monitor.get_process_count():
                break
            await asyncio.sleep(0.05)
        assert runtime.monitor.get_process_count() == 1

        await runtime.shutdown()

        result = await asyncio.wait_for(command, timeout=5)
        assert result.exit_code != 0
        assert runtime.monitor.get_process_count() == 0

    @pytest.mark.asyncio
    async def test_learning_session_recorded(self, settings):
        """Test start opens a learning session and shutdown closes it."""
        runtime = Runtime(settings)

        async with runtime:
            session_id = runtime.session_id
            assert session_id is not None
            runtime.progress.record_step("m1", "s1", "completed")
            assert runtime.progress.get_session(session_id)["session_end"] is None

        session = runtime.progress.get_session(session_id)

        assert runtime.session_id is None
        assert session["session_end"] is not None
        assert session["steps_completed"] == 1

    @pytest.mark.asyncio
    async def test_shutdown_without_start_opens_no_session(self, settings):
        """Test shutting down a never-started runtime."""
        runtime = Runtime(settings)

        await runtime.shutdown()

        assert runtime.progress.get_session(1) is None
