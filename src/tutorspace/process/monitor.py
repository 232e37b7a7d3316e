"""
Tracking and teardown of spawned child processes.

Every child started by the command runner or the dev server manager is
registered here so the host can kill whatever is still alive on shutdown.
"""

import asyncio
from typing import Any

import psutil

from ..logging_config import get_logger

logger = get_logger(__name__)


class ProcessMonitor:
    """
    Tracks spawned processes and terminates them together with their children.

    Direct children are awaited through asyncio (which reaps them); psutil is
    used to find and signal descendants such as the node process behind npm.
    Cleanup is explicit: the runtime awaits ``cleanup_all()`` during shutdown.
    """

    def __init__(self) -> None:
        """Initialize process monitor."""
        self.tracked_processes: dict[int, dict[str, Any]] = {}  # PID -> process info
        self.parent_pid = psutil.Process().pid

        logger.debug(f"ProcessMonitor initialized for PID {self.parent_pid}")

    def register_process(self, process: Any, name: str) -> None:
        """
        Register a spawned process for tracking.

        Args:
            process: asyncio subprocess (anything with ``pid``)
            name: Process name/description
        """
        pid = getattr(process, "pid", None)

        if pid:
            self.tracked_processes[pid] = {"name": name, "process": process}
            logger.debug(f"Registered process {pid}: {name}")

    def unregister_process(self, pid: int) -> None:
        """
        Unregister a process after it completes.

        Args:
            pid: Process ID
        """
        if pid in self.tracked_processes:
            del self.tracked_processes[pid]
            logger.debug(f"Unregistered process {pid}")

    def get_process_count(self) -> int:
        """
        Get count of tracked processes that are still running.

        Returns:
            Number of tracked processes
        """
        for pid, info in list(self.tracked_processes.items()):
            if getattr(info["process"], "returncode", None) is not None:
                self.unregister_process(pid)

        return len(self.tracked_processes)

    def _collect_tree(self, pid: int) -> list[psutil.Process]:
        try:
            root = psutil.Process(pid)
        except psutil.NoSuchProcess:
            return []

        try:
            return [root, *root.children(recursive=True)]
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return [root]

    def _signal(self, processes: list[psutil.Process], force: bool) -> None:
        for process in processes:
            try:
                if force:
                    process.kill()  # SIGKILL
                else:
                    process.terminate()  # SIGTERM
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied as e:
                logger.warning(f"Cannot signal process {process.pid}: {e}")

    async def terminate(self, process: Any, grace_seconds: float = 5.0) -> int | None:
        """
        Terminate a child process and all of its descendants.

        Sends SIGTERM to the tree, waits up to ``grace_seconds`` for the child
        to exit, then SIGKILLs whatever is left.

        Args:
            process: asyncio subprocess
            grace_seconds: Time allowed for graceful exit (0 kills immediately)

        Returns:
            Child exit code
        """
        tree = self._collect_tree(process.pid) if process.returncode is None else []
        descendants = [p for p in tree if p.pid != process.pid]

        if process.returncode is None:
            self._signal(tree, force=grace_seconds <= 0)

            try:
                await asyncio.wait_for(process.wait(), timeout=max(grace_seconds, 0.01))
            except TimeoutError:
                # Pick up anything spawned during the grace period
                extra = [p for p in self._collect_tree(process.pid) if p not in tree]
                self._signal(tree + extra, force=True)
                descendants.extend(p for p in extra if p.pid != process.pid)
                logger.warning(f"Force-killed process {process.pid} after {grace_seconds}s grace")
                await process.wait()

        if descendants:
            _, alive = await asyncio.to_thread(psutil.wait_procs, descendants, timeout=max(grace_seconds, 0.5))
            if alive:
                self._signal(alive, force=True)

        self.unregister_process(process.pid)

        return process.returncode

    async def kill_process(self, pid: int, force: bool = False) -> bool:
        """
        Terminate a tracked process.

        Args:
            pid: Process ID
            force: Use SIGKILL instead of SIGTERM

        Returns:
            True if process terminated
        """
        info = self.tracked_processes.get(pid)
        if info is None:
            logger.warning(f"Failed to terminate process {pid}: not tracked")
            return False

        try:
            await self.terminate(info["process"], grace_seconds=0 if force else 5.0)
        except (psutil.Error, OSError) as e:
            logger.warning(f"Failed to terminate process {pid}: {e}")
            return False

        logger.info(f"Terminated process {pid}")
        return True

    async def cleanup_all(self, grace_seconds: float = 5.0) -> None:
        """Terminate every tracked process (called on shutdown)."""
        if not self.tracked_processes:
            return

        logger.info(f"Cleaning up {len(self.tracked_processes)} tracked processes")

        for pid, info in list(self.tracked_processes.items()):
            try:
                await self.terminate(info["process"], grace_seconds)
            except (psutil.Error, OSError) as e:
                logger.warning(f"Error cleaning up process {pid}: {e}")
                self.unregister_process(pid)

    def get_status_summary(self) -> dict[str, Any]:
        """
        Get summary of tracked processes.

        Returns:
            Dict with process statistics
        """
        self.get_process_count()  # Drop terminated

        return {
            "total_tracked": len(self.tracked_processes),
            "processes": [{"pid": pid, "name": info["name"]} for pid, info in self.tracked_processes.items()],
        }
