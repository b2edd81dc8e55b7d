"""Action context: values injected into spawned processes and templates.

Eight values are derived from the file and selection snapshot at the moment a
key is pressed. Each is exposed twice, under an upper-snake name for the
process environment and a camelCase name for ``{{name}}`` substitution. Both
views are built from the same value table so they cannot diverge.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple

import structlog


logger = structlog.get_logger(__name__)

UNKNOWN_LANGUAGE = "unknown"

# (environment name, template name)
CONTEXT_VARIABLES: Tuple[Tuple[str, str], ...] = (
    ("SELECTED_TEXT", "selectedText"),
    ("FILE_PATH", "filePath"),
    ("LINE_START", "lineStart"),
    ("LINE_END", "lineEnd"),
    ("LANGUAGE", "language"),
    ("SELECTION_COUNT", "selectionCount"),
    ("TOTAL_LINES", "totalLines"),
    ("CURRENT_LINE", "currentLine"),
)

_PLACEHOLDER = re.compile(r"\{\{([^{}]*)\}\}")


@dataclass(frozen=True)
class SelectionSnapshot:
    """Read-only view of the selected line numbers (1-based)."""

    selected_lines: frozenset = field(default_factory=frozenset)

    @classmethod
    def of(cls, lines: Iterable[int]) -> "SelectionSnapshot":
        return cls(selected_lines=frozenset(lines))

    @property
    def selection_count(self) -> int:
        return len(self.selected_lines)


@dataclass(frozen=True)
class FileSnapshot:
    """Content of the current file, already loaded into memory."""

    file_path: str
    lines: Tuple[str, ...] = ()
    detected_language: Optional[str] = None

    @classmethod
    def from_text(
        cls, file_path: str, text: str, detected_language: Optional[str] = None
    ) -> "FileSnapshot":
        return cls(
            file_path=file_path,
            lines=tuple(text.splitlines()),
            detected_language=detected_language,
        )

    @property
    def total_lines(self) -> int:
        return len(self.lines)


@dataclass(frozen=True)
class ActionContext:
    """Derived, immutable values for one invocation."""

    environment_variables: Mapping[str, str]
    template_variables: Mapping[str, str]


def selected_text_for(selection: SelectionSnapshot, file: FileSnapshot) -> str:
    """Join the selected lines in ascending order, skipping out-of-range lines."""
    if not selection.selected_lines:
        return ""

    selected = []
    for line_number in sorted(selection.selected_lines):
        if 1 <= line_number <= file.total_lines:
            selected.append(file.lines[line_number - 1])
    return "\n".join(selected)


def _line_range(selection: SelectionSnapshot) -> Tuple[str, str]:
    # Empty selection yields empty strings rather than 0 so shells see "unset"
    if not selection.selected_lines:
        return "", ""
    return str(min(selection.selected_lines)), str(max(selection.selected_lines))


def build_action_context(
    selection: SelectionSnapshot,
    file: FileSnapshot,
    current_line: int,
) -> ActionContext:
    """Build the action context from the current selection and file.

    Args:
        selection: Selected line numbers (1-based)
        file: Loaded file content and metadata
        current_line: Cursor position (1-based)

    Returns:
        ActionContext with identical environment and template values
    """
    line_start, line_end = _line_range(selection)
    values = (
        selected_text_for(selection, file),
        file.file_path,
        line_start,
        line_end,
        file.detected_language or UNKNOWN_LANGUAGE,
        str(selection.selection_count),
        str(file.total_lines),
        str(current_line),
    )

    environment = {env: value for (env, _), value in zip(CONTEXT_VARIABLES, values)}
    template = {name: value for (_, name), value in zip(CONTEXT_VARIABLES, values)}

    return ActionContext(
        environment_variables=MappingProxyType(environment),
        template_variables=MappingProxyType(template),
    )


def substitute_variables(
    template: str,
    context: ActionContext,
    max_iterations: int = 10,
) -> str:
    """Replace ``{{name}}`` placeholders with template variable values.

    Unknown names are left untouched. Substitution is repeated so a value that
    itself contains a known placeholder gets expanded, stopping after a pass
    that makes no substitution or after ``max_iterations`` passes.

    Args:
        template: Text containing ``{{variable}}`` placeholders
        context: Action context supplying template variables
        max_iterations: Upper bound on re-scan passes

    Returns:
        Text with known placeholders substituted
    """
    variables = context.template_variables
    result = template

    for _ in range(max_iterations):
        substitutions = 0

        def _replace(match: "re.Match[str]") -> str:
            nonlocal substitutions
            name = match.group(1).strip()
            if name in variables:
                substitutions += 1
                return variables[name]
            return match.group(0)

        result = _PLACEHOLDER.sub(_replace, result)
        if substitutions == 0:
            break
    else:
        logger.debug(
            "Template substitution hit iteration limit",
            max_iterations=max_iterations,
        )

    return result
