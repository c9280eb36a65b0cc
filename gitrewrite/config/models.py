"""Configuration models for gitrewrite."""

import os
import re
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class GenerationConfig(BaseModel):
    """Message generation (Ollama) configuration."""

    model: str = Field(default="qwen2.5:14b", description="Ollama model")
    temperature: float = Field(default=0.1, description="Sampling temperature")
    ollama_host: Optional[str] = Field(
        default=None, description="Ollama server URL (default: $OLLAMA_HOST)"
    )
    request_timeout: float = Field(default=300.0, description="Request timeout (s)")
    max_retries: int = Field(default=2, description="Retries for transient errors")
    retry_delay: float = Field(default=5.0, description="Delay between retries (s)")

    @field_validator("model")
    @classmethod
    def validate_model(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("model must not be empty")
        return v.strip()

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """Validate sampling temperature."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("temperature must be between 0 and 1")
        return v

    @field_validator("request_timeout", "retry_delay")
    @classmethod
    def validate_non_negative_seconds(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Value must not be negative")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_retries must not be negative")
        if v > 10:
            raise ValueError("max_retries cannot exceed 10")
        return v


class SelectionConfig(BaseModel):
    """Which commits are rewritten and what is sent for them."""

    max_msg_length: int = Field(
        default=10, description="Rewrite messages of at most this many characters"
    )
    max_diff_length: int = Field(
        default=2048, description="Byte cap for each file's diff"
    )
    max_files_per_commit: int = Field(
        default=200, description="Commits with more files are skipped or summarized"
    )
    summarize_oversized: bool = Field(
        default=False, description="Summarize oversized commits instead of skipping"
    )
    exclude_pattern: Optional[str] = Field(
        default=None, description="Regex of paths left out of diffs"
    )

    @field_validator("max_msg_length", "max_diff_length", "max_files_per_commit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate positive integers."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("exclude_pattern")
    @classmethod
    def validate_exclude_pattern(cls, v: Optional[str]) -> Optional[str]:
        """Validate the exclusion regex."""
        if not v:
            return None
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid exclude pattern: {e}") from e
        return v


class JournalConfig(BaseModel):
    """Checkpoint journal configuration."""

    flush_interval: int = Field(
        default=5, description="Write the journal after this many new decisions"
    )

    @field_validator("flush_interval")
    @classmethod
    def validate_flush_interval(cls, v: int) -> int:
        if v < 1:
            raise ValueError("flush_interval must be at least 1")
        return v


class OutputConfig(BaseModel):
    """Output locations."""

    output_file: Optional[str] = Field(
        default=None, description="Journal path (default: <repo>-rewrite-changes.json)"
    )
    output_repo_name: Optional[str] = Field(
        default=None, description="New repository name (default: <repo>-rewritten)"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    debug_log: Optional[str] = Field(default=None, description="JSONL debug log path")
    level: str = Field(default="INFO", description="Console log level")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARN", "ERROR"]
        if v.upper() not in valid_levels:
            raise ValueError(f"level must be one of: {', '.join(valid_levels)}")
        return v.upper()


class GitRewriteConfig(BaseModel):
    """Main gitrewrite configuration."""

    generation: GenerationConfig = Field(
        default_factory=GenerationConfig, description="Generation configuration"
    )
    selection: SelectionConfig = Field(
        default_factory=SelectionConfig, description="Selection configuration"
    )
    journal: JournalConfig = Field(
        default_factory=JournalConfig, description="Journal configuration"
    )
    output: OutputConfig = Field(
        default_factory=OutputConfig, description="Output configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    def resolve_env_vars(self) -> "GitRewriteConfig":
        """Resolve environment variables in configuration values."""
        config_dict = self.model_dump()
        resolved_dict = _resolve_env_vars_recursive(config_dict)
        return GitRewriteConfig(**resolved_dict)

    def get_debug_log_path(self) -> Optional[Path]:
        if not self.logging.debug_log:
            return None
        return Path(self.logging.debug_log).expanduser()


def _resolve_env_vars_recursive(obj: Any) -> Any:
    """Recursively resolve environment variables in configuration."""
    if isinstance(obj, dict):
        return {key: _resolve_env_vars_recursive(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_resolve_env_vars_recursive(item) for item in obj]
    elif isinstance(obj, str):
        return _resolve_env_var_string(obj)
    else:
        return obj


def _resolve_env_var_string(value: str) -> str:
    """Resolve environment variables in a string."""
    # Pattern for ${VAR_NAME} or ${VAR_NAME:default_value}
    pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"

    def replace_var(match):
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.getenv(var_name, default_value)

    return re.sub(pattern, replace_var, value)
