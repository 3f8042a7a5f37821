"""
Configuration loading.

Settings come from `config/config.yml` when present, then from `VIRTUOSO_*`
environment variables, which win over the file. Account overrides can be
given one per alias as `VIRTUOSO_ACCOUNT_<ALIAS>=<jid>`.
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from pydantic import ValidationError

from .config_models import PerformerConfig, SystemConfig
from .interfaces import VirtuosoError

DEFAULT_CONFIG_PATH = Path("config/config.yml")

ACCOUNT_ENV_PREFIX = "VIRTUOSO_ACCOUNT_"

# Environment variable -> (section, key)
ENV_SETTINGS: Dict[str, Tuple[str, str]] = {
    "VIRTUOSO_LOG_LEVEL": ("logging", "level"),
    "VIRTUOSO_LOG_DIR": ("paths", "log_dir"),
    "VIRTUOSO_DATA_DIR": ("paths", "data_dir"),
    "VIRTUOSO_CUE_TIMEOUT_MS": ("performer", "default_cue_timeout_ms"),
    "VIRTUOSO_FAIL_FAST": ("performer", "fail_fast"),
}


class ConfigurationError(VirtuosoError):
    """Raised when configuration loading or validation fails."""


def load_config(config_path: Optional[Path] = None,
                environ: Optional[Mapping[str, str]] = None) -> SystemConfig:
    """
    Load and validate system configuration.

    Args:
        config_path: YAML file to read; defaults to config/config.yml.
            A missing file means built-in defaults.
        environ: Environment to read overrides from; defaults to os.environ

    Returns:
        Validated SystemConfig instance

    Raises:
        ConfigurationError: If the file cannot be read or parsed, or the
            merged settings fail validation
    """
    settings = _read_file(config_path or DEFAULT_CONFIG_PATH)

    for section, values in _env_overrides(os.environ if environ is None else environ).items():
        current = settings.get(section)
        settings[section] = {**current, **values} if isinstance(current, dict) else values

    try:
        return SystemConfig.model_validate(settings)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def _read_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse YAML config {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration root must be a mapping in {path}")
    return data


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Dict[str, str]]:
    """Group environment overrides by config section; pydantic coerces the strings."""
    overrides: Dict[str, Dict[str, str]] = {}

    for variable, (section, key) in ENV_SETTINGS.items():
        if variable in environ:
            overrides.setdefault(section, {})[key] = environ[variable]

    for variable, identifier in environ.items():
        if variable.startswith(ACCOUNT_ENV_PREFIX) and len(variable) > len(ACCOUNT_ENV_PREFIX):
            alias = variable[len(ACCOUNT_ENV_PREFIX):].lower()
            overrides.setdefault("accounts", {})[alias] = identifier

    return overrides


def create_example_config(output_path: Path = Path("config/config.yml.example")) -> None:
    """Write an example configuration with every section filled in."""
    defaults = PerformerConfig()
    example = {
        "paths": {"log_dir": "logs", "data_dir": "data"},
        "logging": {"level": "INFO"},
        "performer": {
            "default_cue_timeout_ms": defaults.default_cue_timeout_ms,
            "fail_fast": defaults.fail_fast,
        },
        "accounts": {"alice": "alice@localhost", "bob": "bob@localhost"},
    }

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        yaml.safe_dump(example, f, default_flow_style=False, sort_keys=False)
