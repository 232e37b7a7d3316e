"""
YAML settings source for pydantic-settings.

Looks for YAML config in the project directory first, then the XDG config dir,
and deep-merges them (project files win).
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from ..logging_config import get_logger
from .xdg import get_xdg_config_home

logger = get_logger(__name__)


def get_config_paths(app_name: str = "tutorspace") -> list[Path]:
    """
    Get candidate config files in precedence order (highest first).

    Args:
        app_name: Application name used for file and directory names

    Returns:
        Existing config file paths
    """
    cwd = Path.cwd()
    candidates = [
        cwd / f"{app_name}.yaml",
        cwd / "config.yaml",
        get_xdg_config_home() / app_name / "config.yaml",
    ]

    return [path for path in candidates if path.is_file()]


class XDGYamlSettingsSource(PydanticBaseSettingsSource):
    """Settings source that merges YAML config files."""

    def __init__(self, settings_cls: type[BaseSettings], app_name: str = "tutorspace") -> None:
        super().__init__(settings_cls)
        self.app_name = app_name
        self._merged_data = self._load()

    def _load(self) -> dict[str, Any]:
        merged: dict[str, Any] = {}

        # Lowest precedence first so later files override
        for path in reversed(get_config_paths(self.app_name)):
            try:
                with path.open(encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Skipping unreadable config {path}: {e}")
                continue

            if not isinstance(data, dict):
                logger.warning(f"Skipping config {path}: top level is not a mapping")
                continue

            merged = self._deep_merge(merged, data)
            logger.debug(f"Loaded config from {path}")

        return merged

    @staticmethod
    def _deep_merge(base: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
        """Recursively merge ``update`` into a copy of ``base``."""
        result = dict(base)

        for key, value in update.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = XDGYamlSettingsSource._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        """Return a single field value (required by the base class)."""
        return self._merged_data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return self._merged_data
