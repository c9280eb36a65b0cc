"""Configuration loading and management."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from gitrewrite.config.models import GitRewriteConfig
from gitrewrite.core.exceptions import ConfigurationError

PROJECT_CONFIG_NAME = ".gitrewrite.yaml"


def load_config(
    repo_path: Optional[Path] = None,
    config_path: Optional[Path] = None,
    global_config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> GitRewriteConfig:
    """Load gitrewrite configuration from multiple sources.

    Configuration is loaded in the following order (later sources override earlier ones):
    1. Default configuration (built into the models)
    2. Global configuration (~/.config/gitrewrite/config.yaml)
    3. Project configuration (.gitrewrite.yaml in the repository)
    4. Explicit configuration file (--config)
    5. Overrides (command line flags)

    Args:
        repo_path: Repository whose project config is read
        config_path: Explicit configuration file
        global_config_path: Explicit path to global config file
        overrides: Nested dict of values set on the command line

    Returns:
        Merged and validated configuration

    Raises:
        ConfigurationError: If configuration is invalid or cannot be loaded
    """
    try:
        config_data: Dict[str, Any] = {}

        global_path = global_config_path or _get_global_config_path()
        if global_path and global_path.exists():
            config_data = _merge_config(config_data, _load_yaml_file(global_path))

        project_path = _get_project_config_path(repo_path)
        if project_path and project_path.exists():
            config_data = _merge_config(config_data, _load_yaml_file(project_path))

        if config_path:
            if not config_path.exists():
                raise ConfigurationError(f"Configuration file not found: {config_path}")
            config_data = _merge_config(config_data, _load_yaml_file(config_path))

        if overrides:
            config_data = _merge_config(config_data, _drop_none(overrides))

        config = GitRewriteConfig(**config_data)

        # Resolve environment variables
        return config.resolve_env_vars()

    except ConfigurationError:
        raise
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def _get_global_config_path() -> Optional[Path]:
    """Get the global configuration file path."""
    # Try XDG config directory first
    xdg_config = os.getenv("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / "gitrewrite" / "config.yaml"

    return Path.home() / ".config" / "gitrewrite" / "config.yaml"


def _get_project_config_path(repo_path: Optional[Path] = None) -> Optional[Path]:
    """Get the project configuration file of a repository."""
    if repo_path is None:
        return None
    return Path(repo_path) / PROJECT_CONFIG_NAME


def _load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """Load and parse a YAML file.

    Raises:
        ConfigurationError: If file cannot be loaded or parsed
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {file_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read {file_path}: {e}") from e

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration file must contain a YAML object, got {type(data)}"
        )

    return data


def _merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge two configuration dictionaries recursively."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_config(result[key], value)
        else:
            result[key] = value

    return result


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    """Remove unset (None) values so they do not override file settings."""
    result = {}
    for key, value in data.items():
        if isinstance(value, dict):
            nested = _drop_none(value)
            if nested:
                result[key] = nested
        elif value is not None:
            result[key] = value
    return result
