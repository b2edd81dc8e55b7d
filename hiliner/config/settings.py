"""Engine settings using Pydantic."""

import sys
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Global action engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="HILINER_",
        case_sensitive=False,
        validate_assignment=True,
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: Literal["json", "plain"] = Field(
        default="plain",
        description="Log format (json, plain)"
    )

    # Execution configuration
    default_timeout_ms: int = Field(
        default=10_000,
        ge=1,
        le=3_600_000,
        description="Default timeout for external commands in milliseconds"
    )
    kill_grace_period_seconds: float = Field(
        default=2.0,
        gt=0,
        le=60,
        description="Delay between graceful termination and forced kill"
    )
    allow_dangerous_actions: bool = Field(
        default=True,
        description="Allow actions marked dangerous (after confirmation)"
    )
    python_executable: str = Field(
        default=sys.executable,
        description="Interpreter used to run embedded Python snippets"
    )

    # Configuration discovery
    config_path: Optional[str] = Field(
        default=None,
        description="Explicit action configuration file (replaces discovery)"
    )
    user_config_dir: str = Field(
        default="~/.hiliner",
        description="Directory holding the user-level actions.json"
    )
    project_config_name: str = Field(
        default="hiliner-actions.json",
        description="File name of the project-level configuration"
    )
    strict_config: bool = Field(
        default=True,
        description="Fail on malformed or invalid configuration sources"
    )
    strict_key_bindings: bool = Field(
        default=False,
        description="Fail registry construction on key binding conflicts"
    )
    max_config_size_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1024,
        description="Maximum aggregate size of all configuration sources"
    )

    # Metrics configuration
    metrics_enabled: bool = Field(
        default=True,
        description="Record Prometheus metrics for action dispatch"
    )

    @property
    def default_timeout_seconds(self) -> float:
        """Default command timeout in seconds."""
        return self.default_timeout_ms / 1000
