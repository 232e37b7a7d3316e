"""
tutorspace configuration module.
"""

from .schema import (
    ApiConfig,
    CommandsConfig,
    DevServerConfig,
    GeneralConfig,
    ProgressConfig,
    TutorspaceSettings,
    WorkspaceConfig,
)
from .xdg import (
    ensure_directories,
    get_config_file_path,
    get_tutorspace_cache_dir,
    get_tutorspace_config_dir,
    get_xdg_cache_home,
    get_xdg_config_home,
)

__all__ = [
    "ApiConfig",
    "CommandsConfig",
    "DevServerConfig",
    "GeneralConfig",
    "ProgressConfig",
    "TutorspaceSettings",
    "WorkspaceConfig",
    "ensure_directories",
    "get_config_file_path",
    "get_tutorspace_cache_dir",
    "get_tutorspace_config_dir",
    "get_xdg_cache_home",
    "get_xdg_config_home",
]
