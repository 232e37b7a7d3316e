"""Shared fixtures for tutorspace tests."""

import os
from pathlib import Path

import pytest

from tutorspace.config.schema import TutorspaceSettings


@pytest.fixture(autouse=True)
def _isolate_config(tmp_path, monkeypatch):
    """Keep user config files and TUTORSPACE_* variables out of tests."""
    for key in list(os.environ):
        if key.startswith("TUTORSPACE_"):
            monkeypatch.delenv(key)

    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg-cache"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def workspace(tmp_path) -> Path:
    """Empty workspace directory."""
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def settings(workspace) -> TutorspaceSettings:
    """Settings bound to the temporary workspace with fast process timings."""
    return TutorspaceSettings(
        workspace={"root": str(workspace), "watch_force_polling": True},
        commands={"timeout_seconds": 5.0, "kill_grace_seconds": 0.5},
        dev_server={
            "start_timeout_seconds": 5.0,
            "stop_grace_seconds": 1.0,
            "restart_delay_seconds": 0.1,
        },
    )
