"""Engine settings and action configuration loading."""

from .loader import (
    ConfigError,
    ConfigErrorType,
    ConfigLoadOptions,
    ConfigLoadResult,
    load_config,
    merge_configs,
    resolve_config_paths,
    validate_config_document,
)
from .settings import EngineSettings

__all__ = [
    "EngineSettings",
    "ConfigError",
    "ConfigErrorType",
    "ConfigLoadOptions",
    "ConfigLoadResult",
    "load_config",
    "merge_configs",
    "resolve_config_paths",
    "validate_config_document",
]
