"""
Unified configuration schema for tutorspace.

All configuration is defined in a single YAML file with one section per component.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from .xdg import get_tutorspace_config_dir
from .yaml_source import XDGYamlSettingsSource

DEFAULT_ALLOWED_COMMANDS = [
    "npm",
    "git",
    "node",
    "ls",
    "dir",
    "pwd",
    "cd",
    "cat",
    "echo",
    "mkdir",
    "touch",
]

DEFAULT_IGNORED_NAMES = [
    "node_modules",
    ".git",
    "dist",
    "build",
    "tmp",
    ".DS_Store",
    "Thumbs.db",
    ".env",
]


# ==============================================================================
# NESTED CONFIG MODELS (use BaseModel, not BaseSettings)
# ==============================================================================


class GeneralConfig(BaseModel):
    """General settings."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False


class WorkspaceConfig(BaseModel):
    """Learner workspace settings."""

    root: Path = Path("./student-workspace/my-task-manager")
    ignored_names: list[str] = Field(default_factory=lambda: list(DEFAULT_IGNORED_NAMES))
    ignored_patterns: list[str] = Field(default_factory=lambda: ["*.log"])
    ignore_dotfiles: bool = True
    watch_force_polling: bool = False
    event_queue_size: int = Field(default=256, gt=0)


class CommandsConfig(BaseModel):
    """Terminal command settings."""

    allowed: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_COMMANDS))
    timeout_seconds: float = Field(default=30.0, gt=0)
    kill_grace_seconds: float = Field(default=2.0, ge=0)


class DevServerConfig(BaseModel):
    """Dev server supervision settings."""

    command: list[str] = Field(default_factory=lambda: ["npm", "run", "dev"])
    port: int = Field(default=5174, gt=0, lt=65536)
    port_env_var: str = "VITE_PORT"
    readiness_markers: list[str] = Field(default_factory=lambda: ["Local:", "ready in"])
    readiness_check: Literal["output", "port"] = "output"
    start_timeout_seconds: float = Field(default=10.0, gt=0)
    stop_grace_seconds: float = Field(default=5.0, ge=0)
    restart_delay_seconds: float = Field(default=1.0, ge=0)
    output_buffer_lines: int = Field(default=200, gt=0)


class ProgressConfig(BaseModel):
    """Learner progress tracking settings."""

    db_path: Path | None = None  # Defaults to $XDG_CACHE_HOME/tutorspace/progress.db
    recent_commits_limit: int = Field(default=10, gt=0)


class ApiConfig(BaseModel):
    """HTTP API settings."""

    host: str = "127.0.0.1"
    port: int = Field(default=3001, gt=0, lt=65536)
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])


# ==============================================================================
# MAIN SETTINGS CLASS
# ==============================================================================


class TutorspaceSettings(BaseSettings):
    """
    Unified tutorspace configuration.

    Configuration precedence (highest to lowest):
    1. Explicit init arguments
    2. Environment variables (TUTORSPACE_*)
    3. .env file
    4. YAML config files (project > user)
    5. Field defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="TUTORSPACE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    dev_server: DevServerConfig = Field(default_factory=DevServerConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    progress: ProgressConfig = Field(default_factory=ProgressConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Insert the YAML source between dotenv and file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            XDGYamlSettingsSource(settings_cls, app_name="tutorspace"),
            file_secret_settings,
        )

    @property
    def config_dir(self) -> Path:
        """Get configuration directory path."""
        return get_tutorspace_config_dir()

    @property
    def workspace_root(self) -> Path:
        """Absolute workspace root."""
        return self.workspace.root.expanduser().resolve()
