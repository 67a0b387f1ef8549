"""
Configuration loader — reads stacks.yml into the AppConfig model.

Commands may run from anywhere inside an app: the nearest stacks.yml
above the working directory wins. Every problem with the file (absent,
unreadable, bad YAML, schema violation) surfaces as ConfigError.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from stackrecon.core.errors import ConfigurationError
from stackrecon.core.models.app import AppConfig

logger = logging.getLogger(__name__)

APP_CONFIG_FILE = "stacks.yml"

# How many parent directories find_app_file() looks through
_MAX_SEARCH_DEPTH = 20


class ConfigError(ConfigurationError):
    """Raised when the app definition is invalid or missing."""


def find_app_file(start_dir: Path | None = None) -> Path | None:
    """Nearest stacks.yml in ``start_dir`` (default: cwd) or one of its parents."""
    start = (start_dir or Path.cwd()).resolve()
    for directory in [start, *start.parents][:_MAX_SEARCH_DEPTH]:
        candidate = directory / APP_CONFIG_FILE
        if candidate.is_file():
            return candidate
    return None


def load_app_config(path: Path | None = None) -> AppConfig:
    """Read and validate stacks.yml (searched upward from cwd if ``path`` is None).

    Raises:
        ConfigError: The file is absent, unreadable or invalid.
    """
    path = path or find_app_file()
    if path is None:
        raise ConfigError(f"No {APP_CONFIG_FILE} found. Create one, or specify --config.")

    logger.debug("Loading app config from %s", path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}") from None
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    return parse_app_config(raw, source=str(path))


def parse_app_config(raw: str, source: str = "<string>") -> AppConfig:
    """Parse and validate stacks.yml content."""
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {source}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {source}, got {type(data).__name__}")

    # ``stacks`` may be a mapping keyed by stack name or a list
    stacks = data.get("stacks")
    if isinstance(stacks, dict):
        data["stacks"] = [
            {"name": name, **(body or {})} for name, body in stacks.items()
        ]

    try:
        config = AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid app configuration in {source}: {e}") from e

    logger.info(
        "Loaded app '%s' (stage %s) with %d stacks",
        config.app.name,
        config.app.stage,
        len(config.stacks),
    )
    return config


def app_root(config_path: Path) -> Path:
    """Get the app root directory from a config file path."""
    return config_path.parent.resolve()
