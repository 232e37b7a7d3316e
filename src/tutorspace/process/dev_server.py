"""
Supervision of the learner's development server.

Owns at most one long-lived child process. Readiness is detected by matching a
known substring in the server's output (e.g. Vite's "Local:" banner), which is
a heuristic rather than a handshake; an optional TCP check can confirm it.
"""

import asyncio
import os
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Literal

import psutil

from ..config.schema import DevServerConfig
from ..events import EventBroadcaster, Subscription
from ..logging_config import get_logger
from .monitor import ProcessMonitor

logger = get_logger(__name__)

DevServerEventType = Literal["ready", "output", "exit", "error"]

_STREAM_LIMIT = 1024 * 1024


class DevServerState(Enum):
    """Dev server lifecycle state."""

    IDLE = "idle"
    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"


@dataclass
class DevServerResult:
    """Outcome of start/stop/restart."""

    success: bool
    message: str
    port: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.port is not None:
            data["port"] = self.port
        return data


@dataclass
class DevServerStatus:
    """Point-in-time status; port is only reported while ready."""

    is_running: bool
    state: DevServerState
    port: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"is_running": self.is_running, "state": self.state.value}
        if self.port is not None:
            data["port"] = self.port
        return data


@dataclass
class DevServerEvent:
    """Asynchronous notification from the dev server manager."""

    type: DevServerEventType
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data, "timestamp": self.timestamp.isoformat()}


class DevServerManager:
    """
    Start/stop/restart a single dev server process.

    State machine::

        IDLE -> STARTING -> READY -> STOPPING -> IDLE
        STARTING -> IDLE   (spawn failure, start timeout, early exit)
        STARTING -> STOPPING (stop before ready, including mid-spawn)
        READY -> IDLE      (unexpected exit)

    Every check-and-set of ``state`` happens without an intervening await, so
    the state machine itself guarantees a single owned child.
    """

    def __init__(
        self,
        workspace_root: Path,
        monitor: ProcessMonitor | None = None,
        broadcaster: EventBroadcaster | None = None,
        command: Iterable[str] | None = None,
        port: int = 5174,
        port_env_var: str = "VITE_PORT",
        readiness_markers: Iterable[str] | None = None,
        readiness_check: Literal["output", "port"] = "output",
        start_timeout_seconds: float = 10.0,
        stop_grace_seconds: float = 5.0,
        restart_delay_seconds: float = 1.0,
        output_buffer_lines: int = 200,
    ) -> None:
        """
        Initialize dev server manager.

        Args:
            workspace_root: Directory the server runs in
            monitor: Process monitor the child is registered with
            broadcaster: Channel for ready/output/exit/error events
            command: Server command line as argv
            port: Fixed port injected into the child environment
            port_env_var: Extra environment variable carrying the port
            readiness_markers: Output substrings that signal readiness
            readiness_check: "output" (markers only) or "port" (markers + TCP connect)
            start_timeout_seconds: Bound on STARTING
            stop_grace_seconds: SIGTERM -> SIGKILL delay
            restart_delay_seconds: Pause between stop and start on restart
            output_buffer_lines: Recent output lines kept in memory
        """
        self.workspace_root = Path(workspace_root)
        self.monitor = monitor or ProcessMonitor()
        self.broadcaster = broadcaster or EventBroadcaster("dev_server")
        self.command = list(command or ["npm", "run", "dev"])
        self.port = port
        self.port_env_var = port_env_var
        self.readiness_markers = list(readiness_markers or ["Local:", "ready in"])
        self.readiness_check = readiness_check
        self.start_timeout_seconds = start_timeout_seconds
        self.stop_grace_seconds = stop_grace_seconds
        self.restart_delay_seconds = restart_delay_seconds

        self.state = DevServerState.IDLE
        self._process: asyncio.subprocess.Process | None = None
        self._ready_future: asyncio.Future[DevServerResult] | None = None
        self._exit_task: asyncio.Task[None] | None = None
        self._spawned: asyncio.Event | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._marker_seen = False
        self._output: deque[dict[str, str]] = deque(maxlen=output_buffer_lines)

        logger.debug(f"DevServerManager: {' '.join(self.command)} on port {self.port}")

    @classmethod
    def from_config(
        cls,
        config: DevServerConfig,
        workspace_root: Path,
        monitor: ProcessMonitor | None = None,
        broadcaster: EventBroadcaster | None = None,
    ) -> "DevServerManager":
        """Build a manager from the ``dev_server`` settings section."""
        return cls(
            workspace_root=workspace_root,
            monitor=monitor,
            broadcaster=broadcaster,
            command=config.command,
            port=config.port,
            port_env_var=config.port_env_var,
            readiness_markers=config.readiness_markers,
            readiness_check=config.readiness_check,
            start_timeout_seconds=config.start_timeout_seconds,
            stop_grace_seconds=config.stop_grace_seconds,
            restart_delay_seconds=config.restart_delay_seconds,
            output_buffer_lines=config.output_buffer_lines,
        )

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def subscribe(self, maxsize: int | None = None) -> Subscription:
        """Shortcut for ``broadcaster.subscribe``."""
        return self.broadcaster.subscribe(maxsize)

    def get_status(self) -> DevServerStatus:
        """
        Get current status.

        Returns:
            DevServerStatus (port present only when ready)
        """
        is_running = self.state == DevServerState.READY
        return DevServerStatus(is_running=is_running, state=self.state, port=self.port if is_running else None)

    def recent_output(self, lines: int = 50) -> list[dict[str, str]]:
        """
        Get the most recent output lines.

        Args:
            lines: Maximum number of lines

        Returns:
            List of {stream, data} dicts, oldest first
        """
        if lines <= 0:
            return []
        return list(self._output)[-lines:]

    async def start(self) -> DevServerResult:
        """
        Start the dev server and wait for readiness.

        Returns:
            DevServerResult (never raises for process failures)
        """
        if self.state == DevServerState.READY:
            return DevServerResult(True, "Dev server already running", self.port)

        if self.state == DevServerState.STARTING and self._ready_future is not None:
            # Share the in-flight start instead of spawning again
            return await self._await_ready(self._ready_future)

        if self.state == DevServerState.STOPPING:
            return DevServerResult(False, "Dev server is stopping")

        self.state = DevServerState.STARTING
        ready: asyncio.Future[DevServerResult] = asyncio.get_running_loop().create_future()
        self._ready_future = ready
        self._marker_seen = False
        self._output.clear()

        env = os.environ.copy()
        env.update({"PORT": str(self.port), self.port_env_var: str(self.port), "BROWSER": "none"})

        logger.info(f"Starting dev server: {' '.join(self.command)} (port {self.port})")

        spawned = asyncio.Event()
        self._spawned = spawned

        try:
            try:
                process = await asyncio.create_subprocess_exec(
                    *self.command,
                    cwd=self.workspace_root,
                    env=env,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    start_new_session=True,
                    limit=_STREAM_LIMIT,
                )
            except OSError as e:
                return self._spawn_failed(ready, f"Failed to start dev server: {e.strerror or e}")

            if ready.done():
                # stop() arrived while the process was being spawned
                logger.info(f"Dev server stopped during spawn, terminating process {process.pid}")
                await self.monitor.terminate(process, self.stop_grace_seconds)
                return ready.result()
        finally:
            spawned.set()

        self._process = process
        self.monitor.register_process(process, name="dev-server")

        self._spawn(self._read_stream(process, process.stdout, "stdout"))
        self._spawn(self._read_stream(process, process.stderr, "stderr"))
        self._exit_task = self._spawn(self._watch_exit(process))
        if self.readiness_check == "port":
            self._spawn(self._check_port(process))

        return await self._await_ready(ready)

    async def stop(self) -> DevServerResult:
        """
        Stop the dev server: SIGTERM, grace period, then SIGKILL.

        Always ends in IDLE.

        Returns:
            DevServerResult
        """
        if self.state == DevServerState.IDLE:
            return DevServerResult(True, "Dev server not running")

        if self.state == DevServerState.STOPPING:
            if self._spawned is not None:
                await self._spawned.wait()
            if self._exit_task is not None:
                await asyncio.shield(self._exit_task)
            return DevServerResult(True, "Dev server stopped successfully")

        logger.info("Stopping dev server")

        if self._ready_future is not None:
            self._resolve(self._ready_future, DevServerResult(False, "Dev server stopped before becoming ready"))

        if self._process is None:
            # Still spawning; start() terminates the new process itself
            self.state = DevServerState.STOPPING
            if self._spawned is not None:
                await self._spawned.wait()
            self._clear()
            return DevServerResult(True, "Dev server stopped successfully")

        try:
            await self._terminate_current()
        except (psutil.Error, OSError) as e:
            logger.exception(f"Failed to stop dev server: {e}")
            self._clear()
            return DevServerResult(False, f"Failed to stop dev server: {e}")

        return DevServerResult(True, "Dev server stopped successfully")

    async def restart(self) -> DevServerResult:
        """
        Stop, pause briefly, then start.

        Returns:
            Stop failure, or the start result
        """
        stop_result = await self.stop()
        if not stop_result.success:
            return stop_result

        await asyncio.sleep(self.restart_delay_seconds)

        return await self.start()

    async def shutdown(self) -> None:
        """Stop the server and cancel background readers (host teardown)."""
        await self.stop()

        for task in list(self._tasks):
            task.cancel()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _spawn(self, coro: Any) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _publish(self, event_type: DevServerEventType, data: dict[str, Any]) -> None:
        self.broadcaster.publish(DevServerEvent(type=event_type, data=data))

    @staticmethod
    def _resolve(future: asyncio.Future[DevServerResult], result: DevServerResult) -> None:
        if not future.done():
            future.set_result(result)

    def _spawn_failed(self, ready: asyncio.Future[DevServerResult], message: str) -> DevServerResult:
        logger.error(message)
        self._publish("error", {"error": message})

        if not ready.done():
            self._clear()
            self._resolve(ready, DevServerResult(False, message))

        return ready.result()

    def _clear(self) -> None:
        if self._process is not None:
            self.monitor.unregister_process(self._process.pid)
        self._process = None
        self._ready_future = None
        self.state = DevServerState.IDLE

    async def _await_ready(self, ready: asyncio.Future[DevServerResult]) -> DevServerResult:
        try:
            return await asyncio.wait_for(asyncio.shield(ready), timeout=self.start_timeout_seconds)
        except TimeoutError:
            pass

        if not ready.done() and ready is self._ready_future and self.state == DevServerState.STARTING:
            message = "Timeout waiting for dev server to start"
            logger.warning(message)
            self._resolve(ready, DevServerResult(False, message))
            self._publish("error", {"error": message})
            try:
                await self._terminate_current()
            except (psutil.Error, OSError) as e:
                logger.exception(f"Failed to stop dev server after start timeout: {e}")
                self._clear()

        return await ready

    def _mark_ready(self, process: asyncio.subprocess.Process) -> None:
        if process is not self._process or self.state != DevServerState.STARTING:
            return

        self.state = DevServerState.READY
        logger.info(f"Dev server ready on port {self.port}")
        self._publish("ready", {"port": self.port})

        if self._ready_future is not None:
            self._resolve(self._ready_future, DevServerResult(True, "Dev server started successfully", self.port))

    async def _terminate_current(self) -> None:
        process = self._process
        if process is None:
            self.state = DevServerState.IDLE
            return

        self.state = DevServerState.STOPPING
        await self.monitor.terminate(process, self.stop_grace_seconds)

        # Let the exit watcher publish the exit event
        if self._exit_task is not None:
            await asyncio.shield(self._exit_task)

        if self._process is process:
            self._clear()

    async def _read_stream(
        self,
        process: asyncio.subprocess.Process,
        stream: asyncio.StreamReader | None,
        name: str,
    ) -> None:
        if stream is None:
            return

        while True:
            try:
                raw = await stream.readline()
            except ValueError as e:
                # Line longer than the stream limit
                logger.warning(f"Dev server {name} line dropped: {e}")
                continue

            if not raw:
                break

            try:
                self._handle_line(process, name, raw.decode("utf-8", errors="replace").rstrip("\r\n"))
            except Exception:
                logger.exception(f"Error handling dev server {name} output")

    def _handle_line(self, process: asyncio.subprocess.Process, stream: str, line: str) -> None:
        entry = {"stream": stream, "data": line}
        self._output.append(entry)
        self._publish("output", entry)
        logger.debug(f"Dev server {stream}: {line}")

        if self.state != DevServerState.STARTING or process is not self._process:
            return

        if any(marker in line for marker in self.readiness_markers):
            self._marker_seen = True
            if self.readiness_check == "output":
                self._mark_ready(process)

    async def _check_port(self, process: asyncio.subprocess.Process) -> None:
        while process is self._process and self.state == DevServerState.STARTING:
            if self._marker_seen and await self._port_open():
                self._mark_ready(process)
                return
            await asyncio.sleep(0.25)

    async def _port_open(self) -> bool:
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection("127.0.0.1", self.port), timeout=0.5)
        except (OSError, TimeoutError):
            return False

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def _watch_exit(self, process: asyncio.subprocess.Process) -> None:
        code = await process.wait()

        if process is not self._process:
            return

        expected = self.state == DevServerState.STOPPING
        was_ready = self.state == DevServerState.READY
        ready = self._ready_future

        self.monitor.unregister_process(process.pid)
        self._process = None
        self._ready_future = None
        self.state = DevServerState.IDLE

        if expected:
            logger.info(f"Dev server process exited with code {code}")
        else:
            logger.warning(f"Dev server exited unexpectedly with code {code}")

        self._publish("exit", {"code": code, "unexpected": not expected, "was_ready": was_ready})

        if ready is not None:
            self._resolve(ready, DevServerResult(False, f"Dev server exited with code {code} before becoming ready"))
