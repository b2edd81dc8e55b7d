"""Action definitions, configuration documents and runtime value types."""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .context import FileSnapshot, SelectionSnapshot, selected_text_for


class _ConfigModel(BaseModel):
    """Base for configuration document models.

    Documents are written in camelCase; unknown fields are ignored so newer
    configuration files still load.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class BuiltinCommand(_ConfigModel):
    """Run a handler supplied by the host."""

    type: Literal["builtin"] = "builtin"
    builtin: str = Field(description="Name of the builtin handler")
    silent: bool = False


class ExternalCommand(_ConfigModel):
    """Run an external program with templated arguments."""

    type: Literal["external"] = "external"
    command: str = Field(description="Program to run")
    args: List[str] = Field(default_factory=list)
    env: Optional[Dict[str, str]] = Field(
        default=None,
        validation_alias=AliasChoices("env", "environment"),
        description="Command-specific environment overrides"
    )
    cwd: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("cwd", "workingDirectory", "working_directory"),
    )
    timeout: Optional[int] = Field(
        default=None,
        gt=0,
        description="Timeout in milliseconds (overrides the executor default)"
    )
    capture_output: bool = Field(
        default=True,
        validation_alias=AliasChoices("captureOutput", "capture_output"),
    )
    silent: bool = False


class ScriptCommand(_ConfigModel):
    """Forward a snippet through the string-script path."""

    type: Literal["script"] = "script"
    command: str
    silent: bool = False


class SequenceCommand(_ConfigModel):
    """Ordered steps with short-circuit on the first failure."""

    type: Literal["sequence"] = "sequence"
    steps: List["ComplexCommand"] = Field(
        default_factory=list,
        validation_alias=AliasChoices("steps", "sequence"),
    )
    on_success: Optional[Union[str, "ComplexCommand"]] = Field(
        default=None,
        validation_alias=AliasChoices("onSuccess", "on_success"),
    )
    on_failure: Optional[Union[str, "ComplexCommand"]] = Field(
        default=None,
        validation_alias=AliasChoices("onFailure", "on_failure"),
    )
    silent: bool = False


ComplexCommand = Annotated[
    Union[BuiltinCommand, ExternalCommand, ScriptCommand, SequenceCommand],
    Field(discriminator="type"),
]

SequenceCommand.model_rebuild()


# ---------------------------------------------------------------------------
# Actions and configuration documents
# ---------------------------------------------------------------------------


class LineCountBounds(_ConfigModel):
    """Inclusive bounds on the number of lines in the file."""

    min: Optional[int] = Field(default=None, ge=0)
    max: Optional[int] = Field(default=None, ge=0)


class WhenCondition(_ConfigModel):
    """Applicability predicate; every present condition must hold."""

    file_types: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("fileTypes", "file_types"),
    )
    has_selection: Optional[bool] = Field(
        default=None,
        validation_alias=AliasChoices("hasSelection", "has_selection"),
    )
    line_count: Optional[LineCountBounds] = Field(
        default=None,
        validation_alias=AliasChoices("lineCount", "line_count"),
    )
    mode: Optional[Literal["interactive", "static", "any"]] = None


class ActionDefinition(_ConfigModel):
    """A key-bound operation with a script or command payload."""

    id: str = Field(min_length=1, description="Unique, stable identifier")
    name: Optional[str] = None
    description: str = ""
    key: str = Field(min_length=1, description="Primary key binding")
    alternative_keys: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("alternativeKeys", "alternative_keys"),
    )
    script: Union[str, ComplexCommand]
    when: Optional[WhenCondition] = None
    dangerous: bool = False
    confirm_prompt: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("confirmPrompt", "confirm_prompt"),
    )
    category: str = "custom"
    priority: Optional[int] = None
    enabled: bool = True

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def all_keys(self) -> List[str]:
        """Primary key followed by alternative keys, without duplicates."""
        keys: List[str] = []
        for key in [self.key, *self.alternative_keys]:
            if key and key not in keys:
                keys.append(key)
        return keys


class ConfigMetadata(_ConfigModel):
    """Informational metadata about a configuration document."""

    name: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    created: Optional[str] = None
    modified: Optional[str] = None


ShellName = Literal["bash", "sh", "zsh", "fish", "cmd", "powershell"]


class ActionEnvironment(_ConfigModel):
    """Global environment for spawned commands."""

    variables: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[int] = Field(
        default=None,
        gt=0,
        description="Default timeout for external commands in milliseconds"
    )
    shell: Optional[ShellName] = None


class ActionConfig(_ConfigModel):
    """One configuration document, or the merged effective configuration."""

    version: Optional[str] = None
    metadata: Optional[ConfigMetadata] = None
    actions: List[ActionDefinition] = Field(default_factory=list)
    key_bindings: Dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("keyBindings", "key_bindings"),
    )
    environment: ActionEnvironment = Field(default_factory=ActionEnvironment)


# ---------------------------------------------------------------------------
# Runtime values
# ---------------------------------------------------------------------------


class MessageType(str, Enum):
    """Severity of a status message shown by the host."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class FileMetadata:
    """Optional facts about the loaded file."""

    size: Optional[int] = None
    encoding: Optional[str] = None
    is_binary: bool = False
    detected_language: Optional[str] = None


@dataclass(frozen=True)
class ExecutionContext:
    """Snapshot of viewer state passed to builtins and predicates."""

    current_file: str
    current_line: int = 1
    current_column: int = 0
    selected_lines: List[int] = field(default_factory=list)
    selected_text: str = ""
    file_name: str = ""
    file_dir: str = ""
    total_lines: int = 0
    viewport_start: int = 1
    viewport_end: int = 1
    theme: str = "default"
    has_selection: bool = False
    mode: Literal["interactive", "static"] = "interactive"
    file_metadata: Optional[FileMetadata] = None

    @classmethod
    def from_snapshots(
        cls,
        file: FileSnapshot,
        selection: SelectionSnapshot,
        current_line: int,
        *,
        current_column: int = 0,
        viewport_start: int = 1,
        viewport_end: Optional[int] = None,
        theme: str = "default",
        mode: Literal["interactive", "static"] = "interactive",
        file_metadata: Optional[FileMetadata] = None,
    ) -> "ExecutionContext":
        """Build a context from the same snapshots used for the action context.

        Args:
            file: ``FileSnapshot`` of the current file
            selection: ``SelectionSnapshot`` of the current selection
            current_line: 1-based cursor line
        """
        selected = sorted(selection.selected_lines)
        metadata = file_metadata
        if metadata is None and file.detected_language:
            metadata = FileMetadata(detected_language=file.detected_language)

        return cls(
            current_file=file.file_path,
            current_line=current_line,
            current_column=current_column,
            selected_lines=selected,
            selected_text=selected_text_for(selection, file),
            file_name=os.path.basename(file.file_path),
            file_dir=os.path.dirname(file.file_path),
            total_lines=file.total_lines,
            viewport_start=viewport_start,
            viewport_end=viewport_end if viewport_end is not None else file.total_lines,
            theme=theme,
            has_selection=bool(selected),
            mode=mode,
            file_metadata=metadata,
        )

    @property
    def detected_language(self) -> Optional[str]:
        if self.file_metadata is None:
            return None
        return self.file_metadata.detected_language


@dataclass
class ExecutionResult:
    """Uniform result returned for every dispatch."""

    success: bool
    message: str = ""
    message_type: MessageType = MessageType.INFO
    error: Optional[str] = None
    output: Optional[str] = None
    refresh_required: bool = False
    timed_out: bool = False
    execution_time_seconds: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, output: Optional[str] = None, **kwargs: Any) -> "ExecutionResult":
        return cls(
            success=True,
            message=message,
            message_type=MessageType.SUCCESS,
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(cls, message: str, error: Optional[str] = None, **kwargs: Any) -> "ExecutionResult":
        return cls(
            success=False,
            message=message,
            message_type=MessageType.ERROR,
            error=error or message,
            **kwargs,
        )

    @classmethod
    def warning(cls, message: str, error: Optional[str] = None, **kwargs: Any) -> "ExecutionResult":
        return cls(
            success=False,
            message=message,
            message_type=MessageType.WARNING,
            error=error,
            **kwargs,
        )

    @classmethod
    def info(cls, message: str, success: bool = True, **kwargs: Any) -> "ExecutionResult":
        return cls(
            success=success,
            message=message,
            message_type=MessageType.INFO,
            **kwargs,
        )
