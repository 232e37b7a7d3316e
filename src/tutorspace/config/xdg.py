"""
XDG Base Directory helpers for tutorspace.

Config lives in ``$XDG_CONFIG_HOME/tutorspace``, caches in ``$XDG_CACHE_HOME/tutorspace``.
"""

import os
from pathlib import Path

APP_NAME = "tutorspace"


def get_xdg_config_home() -> Path:
    """Get XDG config home (defaults to ~/.config)."""
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))


def get_xdg_cache_home() -> Path:
    """Get XDG cache home (defaults to ~/.cache)."""
    return Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache"))


def get_tutorspace_config_dir() -> Path:
    """Get tutorspace config directory (not created)."""
    return get_xdg_config_home() / APP_NAME


def get_tutorspace_cache_dir() -> Path:
    """
    Get tutorspace cache directory, creating it if needed.

    Returns:
        Cache directory path
    """
    cache_dir = get_xdg_cache_home() / APP_NAME
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def get_config_file_path() -> Path:
    """Get the user-level config file path."""
    return get_tutorspace_config_dir() / "config.yaml"


def ensure_directories() -> dict[str, Path]:
    """
    Create config and cache directories.

    Returns:
        Dict of directory name -> path
    """
    config_dir = get_tutorspace_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)

    return {
        "config": config_dir,
        "cache": get_tutorspace_cache_dir(),
    }
