"""Pytest configuration and fixtures for hiliner action engine tests."""

import json
import sys
from unittest.mock import MagicMock

import pytest

from hiliner.actions.builtin.navigation import ViewerState, create_navigation_handlers
from hiliner.actions.context import FileSnapshot, SelectionSnapshot, build_action_context
from hiliner.actions.executor import ActionExecutor
from hiliner.actions.models import ExecutionContext
from hiliner.config import EngineSettings


@pytest.fixture
def engine_settings(tmp_path):
    """Provide test engine settings isolated from the real home directory."""
    return EngineSettings(
        log_level="DEBUG",
        default_timeout_ms=5000,
        kill_grace_period_seconds=0.5,
        user_config_dir=str(tmp_path / "home" / ".hiliner"),
        metrics_enabled=False,
        python_executable=sys.executable,
    )


@pytest.fixture
def file_snapshot():
    """Provide a ten-line file snapshot."""
    return FileSnapshot(
        file_path="/project/src/app.py",
        lines=tuple(f"line {n}" for n in range(1, 11)),
        detected_language="python",
    )


@pytest.fixture
def selection_snapshot():
    """Provide a selection of lines 2, 5 and 9."""
    return SelectionSnapshot.of([2, 5, 9])


@pytest.fixture
def action_context(file_snapshot, selection_snapshot):
    """Provide the action context for the sample file and selection."""
    return build_action_context(selection_snapshot, file_snapshot, current_line=3)


@pytest.fixture
def execution_context(file_snapshot, selection_snapshot):
    """Provide the execution context for the sample file and selection."""
    return ExecutionContext.from_snapshots(file_snapshot, selection_snapshot, 3)


@pytest.fixture
def viewer_state():
    """Provide viewer state matching the sample file."""
    return ViewerState(total_lines=10, viewport_height=5)


@pytest.fixture
def mock_bridge():
    """Provide a mocked host bridge."""
    bridge = MagicMock()
    bridge.update_status = MagicMock()
    bridge.clear_status = MagicMock()
    return bridge


@pytest.fixture
def executor(viewer_state, mock_bridge):
    """Provide an executor wired to navigation handlers and a mock bridge."""
    return ActionExecutor(
        default_timeout=5.0,
        builtin_handlers=create_navigation_handlers(viewer_state),
        bridge=mock_bridge,
        kill_grace_period=0.5,
        metrics_enabled=False,
    )


@pytest.fixture
def write_config(tmp_path):
    """Write a JSON configuration document and return its path."""

    def _write(name, document):
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(document, str):
            path.write_text(document)
        else:
            path.write_text(json.dumps(document))
        return path

    return _write


@pytest.fixture
def make_action():
    """Build raw action documents."""

    def _make(action_id, key, script="echo hi", **extra):
        action = {
            "id": action_id,
            "key": key,
            "script": script,
            "description": f"{action_id} action",
        }
        action.update(extra)
        return action

    return _make
