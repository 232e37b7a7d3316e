"""
One-shot execution of allow-listed commands inside the workspace.

Commands are tokenized and executed directly (no shell), bounded by a
wall-clock timeout after which the whole process tree is killed.
"""

import asyncio
import os
import shlex
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

from ..config.schema import DEFAULT_ALLOWED_COMMANDS
from ..errors import (
    CommandTimeoutError,
    ForbiddenError,
    InvalidCommandError,
    NotFoundError,
    SpawnFailureError,
)
from ..logging_config import get_logger
from ..workspace.path_guard import PathGuard
from .monitor import ProcessMonitor

logger = get_logger(__name__)

SHELL_METACHARACTERS = frozenset(";&|$<>`()\n\r")


@dataclass
class CommandResult:
    """Outcome of a command that ran to completion."""

    command: str
    exit_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict[str, Any]:
        """
        Convert result to dictionary.

        Returns:
            Dict representation
        """
        return {
            "command": self.command,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "success": self.success,
        }


class CommandRunner:
    """
    Runs a single allow-listed command with a hard timeout.

    Validation happens before anything is spawned:
    - command must be non-empty and free of shell metacharacters
    - the first token must be in the allow-list
    - the working directory (and any path-like argument) must stay in the workspace
    """

    def __init__(
        self,
        guard: PathGuard,
        monitor: ProcessMonitor | None = None,
        allowed_commands: Iterable[str] | None = None,
        timeout_seconds: float = 30.0,
        kill_grace_seconds: float = 2.0,
    ) -> None:
        """
        Initialize command runner.

        Args:
            guard: Path guard for the workspace
            monitor: Process monitor children are registered with
            allowed_commands: Permitted leading tokens
            timeout_seconds: Wall-clock bound per command
            kill_grace_seconds: SIGTERM -> SIGKILL delay on timeout
        """
        self.guard = guard
        self.monitor = monitor or ProcessMonitor()
        self.allowed_commands = list(DEFAULT_ALLOWED_COMMANDS if allowed_commands is None else allowed_commands)
        self.timeout_seconds = timeout_seconds
        self.kill_grace_seconds = kill_grace_seconds

    def is_allowed(self, command: str) -> bool:
        """Check the leading token against the allow-list."""
        tokens = command.strip().split()
        return bool(tokens) and tokens[0] in self.allowed_commands

    def validate(self, command: str, working_dir: str = "") -> tuple[list[str], Path]:
        """
        Validate a command line without running it.

        Args:
            command: Command line
            working_dir: Working directory relative to the workspace

        Returns:
            Tuple of (argv, resolved working directory)

        Raises:
            InvalidCommandError: Empty or malformed command
            ForbiddenError: Not allow-listed, shell syntax, or path escape
            NotFoundError: Working directory does not exist
        """
        if not command or not command.strip():
            raise InvalidCommandError("Command required")

        metachars = sorted({c for c in command if c in SHELL_METACHARACTERS})
        if metachars:
            shown = " ".join(repr(c) for c in metachars)
            raise ForbiddenError(f"Shell operators are not allowed: {shown}")

        try:
            argv = shlex.split(command)
        except ValueError as e:
            raise InvalidCommandError(f"Cannot parse command: {e}") from e

        if not argv or argv[0] not in self.allowed_commands:
            name = argv[0] if argv else command.strip()
            allowed = ", ".join(self.allowed_commands)
            raise ForbiddenError(f'Command "{name}" not allowed. Allowed commands: {allowed}')

        cwd = self.guard.resolve(working_dir or "")
        if not cwd.is_dir():
            raise NotFoundError(f"Working directory not found: {working_dir}")

        for arg in argv[1:]:
            if arg.startswith("-"):
                continue
            if arg.startswith("/") or ".." in PurePosixPath(arg).parts:
                # Raises ForbiddenError when the argument points outside
                self.guard.resolve(cwd / arg)

        return argv, cwd

    async def execute(self, command: str, working_dir: str = "", timeout: float | None = None) -> CommandResult:
        """
        Validate and run a command.

        Args:
            command: Command line
            working_dir: Working directory relative to the workspace
            timeout: Override the default timeout (seconds)

        Returns:
            CommandResult with trimmed stdout/stderr

        Raises:
            CommandTimeoutError: Command exceeded the bound and was killed
            SpawnFailureError: Executable missing or not runnable
        """
        argv, cwd = self.validate(command, working_dir)
        if timeout is None:
            timeout = self.timeout_seconds

        if argv[0] == "cd":
            return self._change_directory(command, argv, cwd)

        logger.info(f"Executing in {self.guard.relative(cwd) or '.'}: {command}")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=os.environ.copy(),
                start_new_session=True,
            )
        except OSError as e:
            logger.warning(f"Failed to spawn {argv[0]}: {e}")
            raise SpawnFailureError(f"Failed to start {argv[0]}: {e.strerror or e}", command=command) from e

        self.monitor.register_process(process, name=command)

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except TimeoutError:
            await self.monitor.terminate(process, self.kill_grace_seconds)
            logger.warning(f"Command timed out after {timeout}s: {command}")
            raise CommandTimeoutError(f"Command timeout after {timeout:g}s", command=command, timeout=timeout) from None
        except asyncio.CancelledError:
            logger.warning(f"Command cancelled, killing process {process.pid}: {command}")
            # Runs to completion even if this task is cancelled again
            await asyncio.shield(self.monitor.terminate(process, self.kill_grace_seconds))
            raise
        finally:
            # A still-running child stays tracked so cleanup_all() can reach it
            if process.returncode is not None:
                self.monitor.unregister_process(process.pid)

        result = CommandResult(
            command=command,
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace").strip(),
            stderr=stderr.decode("utf-8", errors="replace").strip(),
        )

        logger.debug(f"Command exited with {result.exit_code}: {command}")

        return result

    def _change_directory(self, command: str, argv: list[str], cwd: Path) -> CommandResult:
        # cd is a shell builtin; resolve it here instead of spawning
        target = argv[1] if len(argv) > 1 else ""
        resolved = self.guard.resolve(cwd / target) if target else self.guard.workspace_root

        if not resolved.is_dir():
            return CommandResult(command=command, exit_code=1, stdout="", stderr=f"cd: no such directory: {target}")

        return CommandResult(command=command, exit_code=0, stdout=self.guard.relative(resolved) or ".", stderr="")
