"""
Configuration loader — reads converge.yml into a Settings model.

The file is optional: without one, every setting has a default and
recipes are looked up in ./deps. It reads YAML, validates against a
Pydantic schema, and returns typed settings.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from converge.core.models.platform import Platform

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "converge.yml"


class ConfigError(Exception):
    """Raised when converge.yml is invalid or unreadable."""


class Settings(BaseModel):
    """Run settings, loaded from converge.yml."""

    recipes: list[str] = Field(default_factory=lambda: ["deps"])
    vars: dict[str, Any] = Field(default_factory=dict)
    platform: str | None = None
    timeout: float | None = None
    jobs: int = 1
    state_dir: str = ".converge"

    # Directory the file was loaded from; relative paths resolve here
    base_dir: Path = Field(default_factory=Path.cwd, exclude=True)

    @field_validator("platform")
    @classmethod
    def _known_platform(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return Platform.parse(value).value

    @field_validator("jobs")
    @classmethod
    def _positive_jobs(cls, value: int) -> int:
        if value < 1:
            raise ValueError("jobs must be >= 1")
        return value

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("timeout must be > 0")
        return value

    @property
    def recipe_paths(self) -> list[Path]:
        return [self._absolute(p) for p in self.recipes]

    @property
    def state_path(self) -> Path:
        return self._absolute(self.state_dir)

    def _absolute(self, value: str) -> Path:
        path = Path(value).expanduser()
        return path if path.is_absolute() else self.base_dir / path


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for converge.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to converge.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_settings(path: Path | None = None) -> Settings:
    """Load and validate settings.

    Args:
        path: Explicit path to converge.yml. If None, searches upward;
            if nothing is found, defaults rooted at the cwd are returned.

    Raises:
        ConfigError: If the file is missing (when explicit) or invalid.
    """
    if path is None:
        path = find_config_file()
        if path is None:
            logger.debug("No %s found, using defaults", CONFIG_FILE)
            return Settings(base_dir=Path.cwd())

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading settings from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        settings = Settings.model_validate({**data, "base_dir": path.parent.resolve()})
    except Exception as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info("Loaded settings from %s (%d recipe path(s))", path, len(settings.recipes))
    return settings
