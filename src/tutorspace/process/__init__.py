"""
tutorspace process module.

One-shot command execution, dev server supervision and child process tracking.
"""

from .command_runner import CommandResult, CommandRunner
from .dev_server import DevServerEvent, DevServerManager, DevServerResult, DevServerState, DevServerStatus
from .monitor import ProcessMonitor

__all__ = [
    "CommandResult",
    "CommandRunner",
    "DevServerEvent",
    "DevServerManager",
    "DevServerResult",
    "DevServerState",
    "DevServerStatus",
    "ProcessMonitor",
]
