"""Reference builtin handlers operating on a minimal viewer state."""

from dataclasses import dataclass, field
from typing import Set

import structlog

from ..models import ExecutionContext, ExecutionResult
from . import BuiltinHandlerTable


logger = structlog.get_logger(__name__)


@dataclass
class ViewerState:
    """Cursor, viewport and selection of a viewer session."""

    total_lines: int
    viewport_height: int = 20
    current_line: int = 1
    viewport_start: int = 1
    selected_lines: Set[int] = field(default_factory=set)
    quit_requested: bool = False
    help_visible: bool = False
    reload_requested: bool = False

    @property
    def viewport_end(self) -> int:
        return min(self.total_lines, self.viewport_start + self.viewport_height - 1)

    def move_to(self, line: int) -> None:
        """Move the cursor, clamped to the file, and scroll it into view."""
        last = max(1, self.total_lines)
        self.current_line = max(1, min(line, last))
        if self.current_line < self.viewport_start:
            self.viewport_start = self.current_line
        elif self.current_line > self.viewport_end:
            self.viewport_start = max(1, self.current_line - self.viewport_height + 1)


def create_navigation_handlers(state: ViewerState) -> BuiltinHandlerTable:
    """Build the builtin table for a viewer session.

    Args:
        state: Mutable viewer state the handlers act on

    Returns:
        Table covering navigation, selection and application control
    """
    table = BuiltinHandlerTable()

    def _moved(message: str) -> ExecutionResult:
        return ExecutionResult.info(message, refresh_required=True)

    @table.register("quit")
    def quit_viewer(context: ExecutionContext) -> ExecutionResult:
        state.quit_requested = True
        return ExecutionResult.info("Quitting")

    @table.register("scrollUp")
    def scroll_up(context: ExecutionContext) -> ExecutionResult:
        state.move_to(state.current_line - 1)
        return _moved(f"Line {state.current_line}")

    @table.register("scrollDown")
    def scroll_down(context: ExecutionContext) -> ExecutionResult:
        state.move_to(state.current_line + 1)
        return _moved(f"Line {state.current_line}")

    @table.register("pageUp")
    def page_up(context: ExecutionContext) -> ExecutionResult:
        state.move_to(state.current_line - state.viewport_height)
        return _moved(f"Line {state.current_line}")

    @table.register("pageDown")
    def page_down(context: ExecutionContext) -> ExecutionResult:
        state.move_to(state.current_line + state.viewport_height)
        return _moved(f"Line {state.current_line}")

    @table.register("goToStart")
    def go_to_start(context: ExecutionContext) -> ExecutionResult:
        state.move_to(1)
        return _moved("Top of file")

    @table.register("goToEnd")
    def go_to_end(context: ExecutionContext) -> ExecutionResult:
        state.move_to(state.total_lines)
        return _moved("End of file")

    @table.register("toggleSelection")
    def toggle_selection(context: ExecutionContext) -> ExecutionResult:
        line = state.current_line
        if line in state.selected_lines:
            state.selected_lines.discard(line)
            return _moved(f"Deselected line {line}")
        state.selected_lines.add(line)
        return _moved(f"Selected line {line}")

    @table.register("selectAll")
    def select_viewport(context: ExecutionContext) -> ExecutionResult:
        # Selects the visible lines only
        state.selected_lines.update(range(state.viewport_start, state.viewport_end + 1))
        return _moved(f"{len(state.selected_lines)} lines selected")

    @table.register("clearSelection")
    def clear_selection(context: ExecutionContext) -> ExecutionResult:
        state.selected_lines.clear()
        return _moved("Selection cleared")

    @table.register("showHelp")
    def show_help(context: ExecutionContext) -> ExecutionResult:
        state.help_visible = not state.help_visible
        return _moved("Help shown" if state.help_visible else "Help hidden")

    @table.register("reload")
    def reload_file(context: ExecutionContext) -> ExecutionResult:
        state.reload_requested = True
        logger.info("Reload requested", file=context.current_file)
        return _moved(f"Reloading {context.file_name or context.current_file}")

    return table
