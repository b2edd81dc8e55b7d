"""Configuration discovery, validation and merging.

Sources, lowest to highest precedence:

1. user-level ``~/.hiliner/actions.json``
2. project-level ``<working directory>/hiliner-actions.json``
3. an explicit override path, which replaces the other two when it exists
"""

import json
import os
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import structlog
import yaml
from pydantic import ValidationError

from ..actions.models import (
    ActionConfig,
    ActionDefinition,
    ActionEnvironment,
    ConfigMetadata,
)


logger = structlog.get_logger(__name__)

DEFAULT_USER_CONFIG_DIR = "~/.hiliner"
USER_CONFIG_NAME = "actions.json"
DEFAULT_PROJECT_CONFIG_NAME = "hiliner-actions.json"
DEFAULT_MAX_TOTAL_SIZE = 10 * 1024 * 1024

ACTION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")
YAML_SUFFIXES = (".yaml", ".yml")


class ConfigErrorType(Enum):
    """Configuration failure kinds."""

    FILE_NOT_FOUND = "file_not_found"
    PERMISSION_ERROR = "permission_error"
    PARSE_ERROR = "parse_error"
    VALIDATION_ERROR = "validation_error"
    FILE_SYSTEM_ERROR = "file_system_error"
    SIZE_LIMIT_EXCEEDED = "size_limit_exceeded"


@dataclass
class ValidationIssue:
    """One schema violation, addressed by a JSON-pointer style path."""

    path: str
    message: str
    value: Any = None

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


class ConfigError(Exception):
    """Raised when configuration cannot be loaded."""

    def __init__(
        self,
        error_type: ConfigErrorType,
        message: str,
        path: Optional[str] = None,
        recoverable: bool = False,
        validation_errors: Optional[List[ValidationIssue]] = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.path = path
        self.recoverable = recoverable
        self.validation_errors = validation_errors or []


@dataclass
class ConfigConflict:
    """A collision found while merging sources."""

    type: str
    key: str
    sources: List[str]
    resolution: str


@dataclass
class ConfigWarning:
    """Non-fatal problem recorded in lenient mode."""

    message: str
    source: str
    severity: str = "medium"


@dataclass
class ConfigLoadOptions:
    """Options controlling discovery and failure handling."""

    custom_config_path: Optional[str] = None
    strict: bool = True
    max_total_size: int = DEFAULT_MAX_TOTAL_SIZE
    user_config_dir: Optional[str] = None
    project_config_name: str = DEFAULT_PROJECT_CONFIG_NAME

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "ConfigLoadOptions":
        options = cls(
            custom_config_path=settings.config_path,
            strict=settings.strict_config,
            max_total_size=settings.max_config_size_bytes,
            user_config_dir=settings.user_config_dir,
            project_config_name=settings.project_config_name,
        )
        for name, value in overrides.items():
            setattr(options, name, value)
        return options


@dataclass
class ConfigSource:
    """A parsed and validated document with its origin."""

    path: str
    config: ActionConfig
    size: int = 0


@dataclass
class LoadMetrics:
    load_time_seconds: float = 0.0
    files_processed: int = 0
    total_size: int = 0


@dataclass
class ConfigLoadResult:
    """Effective configuration plus provenance for diagnostics."""

    config: ActionConfig = field(default_factory=ActionConfig)
    sources: List[str] = field(default_factory=list)
    conflicts: List[ConfigConflict] = field(default_factory=list)
    warnings: List[ConfigWarning] = field(default_factory=list)
    validation_errors: List[ValidationIssue] = field(default_factory=list)
    action_sources: Dict[str, str] = field(default_factory=dict)
    metrics: LoadMetrics = field(default_factory=LoadMetrics)


def _expand(path: str, working_directory: str) -> str:
    path = os.path.expanduser(path)
    if not os.path.isabs(path):
        path = os.path.join(working_directory, path)
    return os.path.normpath(path)


def resolve_config_paths(
    working_directory: str,
    custom_path: Optional[str] = None,
    user_config_dir: Optional[str] = None,
    project_config_name: str = DEFAULT_PROJECT_CONFIG_NAME,
) -> List[str]:
    """List candidate sources in ascending precedence.

    Args:
        working_directory: Directory searched for the project config
        custom_path: Explicit override path (``~`` and relative paths allowed)
        user_config_dir: Directory holding the user-level config

    Returns:
        ``[user, project]`` plus the resolved override when given
    """
    user_dir = os.path.expanduser(user_config_dir or DEFAULT_USER_CONFIG_DIR)
    paths = [
        os.path.join(user_dir, USER_CONFIG_NAME),
        os.path.join(working_directory, project_config_name),
    ]
    if custom_path:
        paths.append(_expand(custom_path, working_directory))
    return paths


def validate_config_document(document: Any) -> List[ValidationIssue]:
    """Check a parsed document before it is merged.

    Returns:
        Every violation found; an empty list means the document is valid
    """
    if not isinstance(document, dict):
        return [ValidationIssue("/", "Configuration must be an object")]

    actions = document.get("actions")
    if not isinstance(actions, list):
        return [ValidationIssue("/actions", "Missing required property: actions (must be array)")]

    issues: List[ValidationIssue] = []

    version = document.get("version")
    if version is not None and not (isinstance(version, str) and VERSION_PATTERN.match(version)):
        issues.append(ValidationIssue(
            "/version",
            'Version must be in semver format (e.g. "1.0.0")',
            version,
        ))

    for index, action in enumerate(actions):
        issues.extend(_validate_action(action, f"/actions/{index}"))

    for name in ("keyBindings", "environment", "metadata"):
        if name in document and document[name] is not None and not isinstance(document[name], dict):
            issues.append(ValidationIssue(f"/{name}", "Must be an object", document[name]))

    return issues


def _validate_action(action: Any, path: str) -> List[ValidationIssue]:
    if not isinstance(action, dict):
        return [ValidationIssue(path, "Action must be an object", action)]

    issues: List[ValidationIssue] = []
    action_id = action.get("id")
    if not action_id:
        issues.append(ValidationIssue(f"{path}/id", "Missing required property: id"))
    elif not isinstance(action_id, str) or not ACTION_ID_PATTERN.match(action_id):
        issues.append(ValidationIssue(
            f"{path}/id",
            "Action ID must only contain letters, numbers, hyphens, and underscores",
            action_id,
        ))

    for name in ("key", "script", "description"):
        if not action.get(name):
            issues.append(ValidationIssue(f"{path}/{name}", f"Missing required property: {name}"))

    if issues:
        return issues

    # Structural checks (script variants, when conditions, field types)
    try:
        ActionDefinition.model_validate(action)
    except ValidationError as e:
        for error in e.errors():
            location = "/".join(str(part) for part in error["loc"])
            issues.append(ValidationIssue(
                f"{path}/{location}" if location else path,
                error["msg"],
                error.get("input"),
            ))
    return issues


class _Loader:
    """Reads and validates sources, applying the strict/lenient policy."""

    def __init__(self, options: ConfigLoadOptions) -> None:
        self.options = options
        self.warnings: List[ConfigWarning] = []
        self.validation_errors: List[ValidationIssue] = []
        self.total_size = 0
        self.files_processed = 0

    def fail_or_warn(
        self,
        error_type: ConfigErrorType,
        message: str,
        path: str,
        validation_errors: Optional[List[ValidationIssue]] = None,
    ) -> None:
        if self.options.strict:
            raise ConfigError(
                error_type,
                message,
                path=path,
                recoverable=False,
                validation_errors=validation_errors,
            )
        logger.warning("Configuration problem ignored", path=path, error=message)
        self.warnings.append(ConfigWarning(message=message, source=path, severity="high"))

    def read(self, path: str) -> Optional[bytes]:
        try:
            size = os.stat(path).st_size
        except FileNotFoundError:
            logger.debug("Configuration source not found, skipping", path=path)
            return None
        except PermissionError as e:
            self.fail_or_warn(ConfigErrorType.PERMISSION_ERROR, f"Cannot access {path}: {e}", path)
            return None
        except OSError as e:
            self.fail_or_warn(ConfigErrorType.FILE_SYSTEM_ERROR, f"Cannot access {path}: {e}", path)
            return None

        self._check_size(path, self.total_size + size)

        try:
            with open(path, "rb") as f:
                raw = f.read()
        except PermissionError as e:
            self.fail_or_warn(ConfigErrorType.PERMISSION_ERROR, f"Cannot read {path}: {e}", path)
            return None
        except OSError as e:
            self.fail_or_warn(ConfigErrorType.FILE_SYSTEM_ERROR, f"Cannot read {path}: {e}", path)
            return None

        self.total_size += len(raw)
        self._check_size(path, self.total_size)
        self.files_processed += 1
        return raw

    def _check_size(self, path: str, total: int) -> None:
        if total > self.options.max_total_size:
            raise ConfigError(
                ConfigErrorType.SIZE_LIMIT_EXCEEDED,
                f"Configuration sources exceed {self.options.max_total_size} bytes",
                path=path,
            )

    def parse(self, path: str, raw: bytes) -> Any:
        try:
            text = raw.decode("utf-8-sig")
            if path.lower().endswith(YAML_SUFFIXES):
                return yaml.safe_load(text)
            return json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
            self.fail_or_warn(ConfigErrorType.PARSE_ERROR, f"Invalid configuration in {path}: {e}", path)
            return None

    def validate(self, path: str, document: Any) -> Optional[ActionConfig]:
        issues = validate_config_document(document)
        if issues:
            self.validation_errors.extend(issues)
            self.fail_or_warn(
                ConfigErrorType.VALIDATION_ERROR,
                f"Configuration validation failed for {path}: "
                + "; ".join(str(issue) for issue in issues),
                path,
                validation_errors=issues,
            )
            document = self._drop_invalid(document, issues)
            if document is None:
                return None

        # Explicit nulls mean "not set"
        document = {name: value for name, value in document.items() if value is not None}
        try:
            return ActionConfig.model_validate(document)
        except ValidationError as e:
            problems = [
                ValidationIssue("/" + "/".join(str(part) for part in error["loc"]), error["msg"])
                for error in e.errors()
            ]
            self.validation_errors.extend(problems)
            self.fail_or_warn(
                ConfigErrorType.VALIDATION_ERROR,
                f"Configuration validation failed for {path}: {e.error_count()} error(s)",
                path,
                validation_errors=problems,
            )
            return None

    @staticmethod
    def _drop_invalid(document: Any, issues: List[ValidationIssue]) -> Optional[Dict[str, Any]]:
        """Keep the valid remainder of a document in lenient mode."""
        if not isinstance(document, dict) or not isinstance(document.get("actions"), list):
            return None

        bad_actions = set()
        for issue in issues:
            parts = issue.path.strip("/").split("/")
            if len(parts) >= 2 and parts[0] == "actions" and parts[1].isdigit():
                bad_actions.add(int(parts[1]))

        cleaned = dict(document)
        cleaned["actions"] = [
            action for index, action in enumerate(document["actions"])
            if index not in bad_actions
        ]
        for issue in issues:
            name = issue.path.strip("/")
            if name in ("version", "keyBindings", "environment", "metadata"):
                cleaned.pop(name, None)
        return cleaned


def merge_configs(sources: List[ConfigSource]) -> Tuple[ActionConfig, List[ConfigConflict]]:
    """Merge validated sources given in ascending precedence.

    Args:
        sources: Parsed documents, lowest precedence first

    Returns:
        Effective configuration and the conflicts resolved while merging
    """
    conflicts: List[ConfigConflict] = []

    actions: List[ActionDefinition] = []
    positions: Dict[str, int] = {}
    action_sources: Dict[str, str] = {}

    for source in sources:
        for action in source.config.actions:
            if action.id in positions:
                previous = action_sources[action.id]
                conflicts.append(ConfigConflict(
                    type="duplicate_action_id",
                    key=action.id,
                    sources=[previous, source.path],
                    resolution=f"kept definition from {source.path}",
                ))
                actions[positions[action.id]] = action
            else:
                positions[action.id] = len(actions)
                actions.append(action)
            action_sources[action.id] = source.path

    # Key ownership over the merged set, claimed in precedence order
    owners: Dict[str, Tuple[str, str]] = {}
    explicit_keys: List[str] = []
    contested_keys: List[str] = []

    def claim(key: str, action_id: str, source_path: str) -> None:
        current = owners.get(key)
        if current is not None and current[0] != action_id:
            conflicts.append(ConfigConflict(
                type="duplicate_key_binding",
                key=key,
                sources=[current[1], source_path],
                resolution=f"bound to '{action_id}' from {source_path}",
            ))
            if key not in contested_keys:
                contested_keys.append(key)
        owners[key] = (action_id, source_path)

    for source in sources:
        for action in source.config.actions:
            if actions[positions[action.id]] is not action:
                continue
            for key in action.all_keys():
                claim(key, action.id, source.path)
        for key, action_id in source.config.key_bindings.items():
            claim(key, action_id, source.path)
            if key not in explicit_keys:
                explicit_keys.append(key)

    key_bindings = {
        key: owners[key][0]
        for key in [*explicit_keys, *(k for k in contested_keys if k not in explicit_keys)]
    }

    variables: Dict[str, str] = {}
    variable_sources: Dict[str, str] = {}
    version: Optional[str] = None
    metadata: Optional[ConfigMetadata] = None
    timeout: Optional[int] = None
    shell = None

    for source in sources:
        config = source.config
        for name, value in config.environment.variables.items():
            if name in variables and variables[name] != value:
                conflicts.append(ConfigConflict(
                    type="conflicting_environment_var",
                    key=name,
                    sources=[variable_sources[name], source.path],
                    resolution=f"used value from {source.path}",
                ))
            variables[name] = value
            variable_sources[name] = source.path

        if config.version is not None:
            version = config.version
        if config.metadata is not None:
            metadata = config.metadata
        if config.environment.timeout is not None:
            timeout = config.environment.timeout
        if config.environment.shell is not None:
            shell = config.environment.shell

    merged = ActionConfig(
        version=version,
        metadata=metadata,
        actions=actions,
        key_bindings=key_bindings,
        environment=ActionEnvironment(variables=variables, timeout=timeout, shell=shell),
    )
    return merged, conflicts


def load_config(
    working_directory: Optional[str] = None,
    options: Optional[ConfigLoadOptions] = None,
) -> ConfigLoadResult:
    """Discover, validate and merge configuration sources.

    Args:
        working_directory: Directory searched for the project config
        options: Loading options; strict mode when omitted

    Returns:
        ConfigLoadResult with the effective configuration

    Raises:
        ConfigError: On any failure in strict mode, and on oversized input
            in every mode
    """
    start_time = time.time()
    working_directory = os.path.abspath(working_directory or os.getcwd())
    options = options or ConfigLoadOptions()
    loader = _Loader(options)

    candidates = resolve_config_paths(
        working_directory,
        user_config_dir=options.user_config_dir,
        project_config_name=options.project_config_name,
    )

    if options.custom_config_path:
        override = _expand(options.custom_config_path, working_directory)
        if os.path.exists(override):
            candidates = [override]
        elif options.strict:
            raise ConfigError(
                ConfigErrorType.FILE_NOT_FOUND,
                f"Configuration file not found: {override}",
                path=override,
                recoverable=True,
            )
        else:
            logger.warning("Configuration override not found, using discovery", path=override)
            loader.warnings.append(ConfigWarning(
                message=f"Configuration file not found: {override}",
                source=override,
            ))

    sources: List[ConfigSource] = []
    for path in candidates:
        raw = loader.read(path)
        if raw is None:
            continue
        document = loader.parse(path, raw)
        if document is None:
            continue
        config = loader.validate(path, document)
        if config is None:
            continue
        sources.append(ConfigSource(path=path, config=config, size=len(raw)))
        logger.debug("Loaded configuration source", path=path, actions=len(config.actions))

    merged, conflicts = merge_configs(sources)

    for conflict in conflicts:
        logger.info(
            "Configuration conflict resolved",
            conflict_type=conflict.type,
            key=conflict.key,
            sources=conflict.sources,
            resolution=conflict.resolution,
        )

    result = ConfigLoadResult(
        config=merged,
        sources=[source.path for source in sources],
        conflicts=conflicts,
        warnings=loader.warnings,
        validation_errors=loader.validation_errors,
        action_sources={
            action.id: source.path for source in sources for action in source.config.actions
        },
        metrics=LoadMetrics(
            load_time_seconds=time.time() - start_time,
            files_processed=loader.files_processed,
            total_size=loader.total_size,
        ),
    )

    logger.info(
        "Configuration loaded",
        sources=result.sources,
        actions=len(merged.actions),
        conflicts=len(conflicts),
        warnings=len(result.warnings),
    )
    return result
