"""Tests for process monitoring functionality."""

import asyncio
import signal
import sys
from unittest.mock import MagicMock

import psutil
import pytest

from tutorspace.process.monitor import ProcessMonitor

SPAWN_GRANDCHILD = (
    "import subprocess, sys, time\n"
    "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'])\n"
    "print(child.pid, flush=True)\n"
    "time.sleep(60)\n"
)

IGNORE_SIGTERM = (
    "import signal, time\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "print('ready', flush=True)\n"
    "time.sleep(60)\n"
)


async def _spawn(script: str) -> asyncio.subprocess.Process:
    return await asyncio.create_subprocess_exec(
        sys.executable,
        "-c",
        script,
        stdout=asyncio.subprocess.PIPE,
        start_new_session=True,
    )


def _is_gone(pid: int) -> bool:
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


@pytest.mark.unit
class TestProcessMonitor:
    """Test process monitor bookkeeping."""

    def test_initialization(self):
        """Test monitor initialization."""
        monitor = ProcessMonitor()

        assert monitor.tracked_processes == {}
        assert isinstance(monitor.parent_pid, int)

    def test_register_process(self):
        """Test registering a process."""
        monitor = ProcessMonitor()
        mock_process = MagicMock()
        mock_process.pid = 12345

        monitor.register_process(mock_process, name="npm run dev")

        assert monitor.tracked_processes[12345]["name"] == "npm run dev"
        assert monitor.tracked_processes[12345]["process"] is mock_process

    def test_register_process_without_pid(self):
        """Test registering a process without pid attribute."""
        monitor = ProcessMonitor()

        monitor.register_process(MagicMock(spec=[]), name="no_pid")

        assert len(monitor.tracked_processes) == 0

    def test_unregister_process(self):
        """Test unregistering a process (twice is harmless)."""
        monitor = ProcessMonitor()
        mock_process = MagicMock()
        mock_process.pid = 12345
        monitor.register_process(mock_process, name="test")

        monitor.unregister_process(12345)
        monitor.unregister_process(12345)

        assert 12345 not in monitor.tracked_processes

    def test_process_count_drops_finished(self):
        """Test finished processes are not counted."""
        monitor = ProcessMonitor()
        running = MagicMock(pid=1001, returncode=None)
        finished = MagicMock(pid=1002, returncode=0)
        monitor.register_process(running, name="running")
        monitor.register_process(finished, name="finished")

        assert monitor.get_process_count() == 1
        assert list(monitor.tracked_processes) == [1001]

    def test_status_summary(self):
        """Test summary of tracked processes."""
        monitor = ProcessMonitor()
        monitor.register_process(MagicMock(pid=2001, returncode=None), name="git status")

        summary = monitor.get_status_summary()

        assert summary == {"total_tracked": 1, "processes": [{"pid": 2001, "name": "git status"}]}

    @pytest.mark.asyncio
    async def test_kill_untracked(self):
        """Test killing an unknown pid reports failure."""
        monitor = ProcessMonitor()

        assert await monitor.kill_process(999999) is False


@pytest.mark.integration
class TestProcessTermination:
    """Test terminating real process trees."""

    @pytest.mark.asyncio
    async def test_terminate_graceful(self):
        """Test SIGTERM ends a cooperative process."""
        monitor = ProcessMonitor()
        process = await _spawn("import time; time.sleep(60)")
        monitor.register_process(process, name="sleeper")

        code = await monitor.terminate(process, grace_seconds=5)

        assert code == -signal.SIGTERM
        assert monitor.tracked_processes == {}

    @pytest.mark.asyncio
    async def test_terminate_escalates_to_sigkill(self):
        """Test a process ignoring SIGTERM is killed after the grace period."""
        monitor = ProcessMonitor()
        process = await _spawn(IGNORE_SIGTERM)
        assert (await process.stdout.readline()).strip() == b"ready"

        code = await monitor.terminate(process, grace_seconds=0.5)

        assert code == -signal.SIGKILL

    @pytest.mark.asyncio
    async def test_terminate_kills_descendants(self):
        """Test grandchildren do not outlive the terminated child."""
        monitor = ProcessMonitor()
        process = await _spawn(SPAWN_GRANDCHILD)
        grandchild_pid = int((await process.stdout.readline()).strip())

        await monitor.terminate(process, grace_seconds=2)

        for _ in range(50):
            if _is_gone(grandchild_pid):
                break
            await asyncio.sleep(0.1)
        assert _is_gone(grandchild_pid)

    @pytest.mark.asyncio
    async def test_terminate_already_exited(self):
        """Test terminating a finished process just reports its code."""
        monitor = ProcessMonitor()
        process = await _spawn("import sys; sys.exit(4)")
        await process.wait()

        assert await monitor.terminate(process) == 4

    @pytest.mark.asyncio
    async def test_kill_process_force(self):
        """Test force-killing a tracked process by pid."""
        monitor = ProcessMonitor()
        process = await _spawn("import time; time.sleep(60)")
        monitor.register_process(process, name="sleeper")

        assert await monitor.kill_process(process.pid, force=True) is True
        assert process.returncode == -signal.SIGKILL
        assert monitor.get_process_count() == 0

    @pytest.mark.asyncio
    async def test_cleanup_all(self):
        """Test cleanup terminates every tracked process."""
        monitor = ProcessMonitor()
        processes = [await _spawn("import time; time.sleep(60)") for _ in range(3)]
        for n, process in enumerate(processes):
            monitor.register_process(process, name=f"sleeper-{n}")

        await monitor.cleanup_all(grace_seconds=2)

        assert all(process.returncode is not None for process in processes)
        assert monitor.tracked_processes == {}
