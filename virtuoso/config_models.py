"""Configuration models for the composition engine."""

from pathlib import Path
from typing import Dict, Union

from pydantic import BaseModel, Field, field_validator

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class PathsConfig(BaseModel):
    """Where run logs and stored compositions live; directories are created on load."""

    log_dir: Path = Field(default=Path("logs"), description="Directory for per-run log files")
    data_dir: Path = Field(default=Path("data"), description="Directory for compositions and performances")

    @field_validator("log_dir", "data_dir", mode="before")
    @classmethod
    def create_directory(cls, v: Union[str, Path]) -> Path:
        path = Path(v).expanduser()
        path.mkdir(parents=True, exist_ok=True)
        return path


class LoggingConfig(BaseModel):
    """Console verbosity and format; the per-run JSON file always logs DEBUG."""

    level: str = Field(default="INFO", description="Console log level")
    format_console: str = Field(
        default="%(asctime)s %(levelname)-8s [%(run_id)s] %(name)s: %(message)s",
        description="Console log format"
    )

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of {', '.join(LOG_LEVELS)}, not {v!r}")
        return level


class PerformerConfig(BaseModel):
    """Replay behaviour settings."""

    default_cue_timeout_ms: int = Field(default=10000, description="Cue timeout used when a recording omits one")
    fail_fast: bool = Field(default=False, description="Abort a performance on the first failed assertion")

    @field_validator("default_cue_timeout_ms")
    @classmethod
    def timeout_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Cue timeout must be positive")
        return v


class SystemConfig(BaseModel):
    """Top-level settings as loaded from config.yml and the environment."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    performer: PerformerConfig = Field(default_factory=PerformerConfig)

    # Alias -> identifier overrides applied when a composition is performed
    accounts: Dict[str, str] = Field(default_factory=dict, description="Account identifier overrides by alias")

    @field_validator("accounts")
    @classmethod
    def identifiers_must_not_be_blank(cls, v: Dict[str, str]) -> Dict[str, str]:
        for alias, identifier in v.items():
            if not identifier.strip():
                raise ValueError(f"Identifier for alias '{alias}' cannot be empty")
        return v
