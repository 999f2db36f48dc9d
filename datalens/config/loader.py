"""TOML configuration loader.

Reads ``config/default.toml`` and the optional ``config/{DATALENS_ENV}.toml``
overlay, merging nested tables key by key.
"""

import os
import tomllib
from pathlib import Path
from typing import Any

CONFIG_DIR_ENV = "DATALENS_CONFIG_DIR"
ENVIRONMENT_ENV = "DATALENS_ENV"
DEFAULT_ENVIRONMENT = "development"


def get_config_dir() -> Path:
    """Locate the configuration directory.

    ``DATALENS_CONFIG_DIR`` wins when set and must exist. Otherwise the
    nearest ``config/`` directory at or above the working directory is used.
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        path = Path(override)
        if not path.is_dir():
            raise FileNotFoundError(f"Config directory not found: {override}")
        return path

    current = Path.cwd()
    for candidate in (current, *current.parents):
        config_path = candidate / "config"
        if config_path.is_dir():
            return config_path

    return Path("config")


def get_environment() -> str:
    """Name of the active environment overlay (``DATALENS_ENV``)."""
    return os.environ.get(ENVIRONMENT_ENV, DEFAULT_ENVIRONMENT)


def load_toml(file_path: Path) -> dict[str, Any]:
    """Parse a single TOML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        tomllib.TOMLDecodeError: If the TOML syntax is invalid
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    with file_path.open("rb") as f:
        return tomllib.load(f)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; nested tables merge recursively."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def load_config(
    config_dir: Path | None = None,
    environment: str | None = None,
) -> dict[str, Any]:
    """Load and merge the TOML configuration.

    A missing ``default.toml`` is not an error: the service then runs on
    model defaults plus ``DATALENS_*`` environment variables.

    Args:
        config_dir: Directory holding the TOML files (auto-detected if None)
        environment: Overlay name (``DATALENS_ENV`` if None)

    Returns:
        Merged configuration dictionary
    """
    directory = config_dir or get_config_dir()
    env = environment or get_environment()

    config: dict[str, Any] = {}
    default_path = directory / "default.toml"
    if default_path.exists():
        config = load_toml(default_path)

    env_path = directory / f"{env}.toml"
    if env_path.exists():
        config = deep_merge(config, load_toml(env_path))

    return config
