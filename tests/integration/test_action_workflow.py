"""Integration tests for the complete key-press to result workflow."""

import json
import os
from unittest.mock import AsyncMock

import pytest

from hiliner.actions.builtin.navigation import ViewerState, create_navigation_handlers
from hiliner.actions.context import FileSnapshot, SelectionSnapshot
from hiliner.actions.models import MessageType
from hiliner.engine import ActionEngine
from hiliner.main import main, parse_selection

pytestmark = pytest.mark.skipif(os.name == "nt", reason="POSIX shell required")


@pytest.fixture
def project_dir(tmp_path):
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def sample_file(project_dir):
    path = project_dir / "notes.txt"
    path.write_text("\n".join(f"row {n}" for n in range(1, 11)) + "\n")
    return path


@pytest.fixture
def project_config(project_dir, make_action):
    """Write a project-level configuration exercising every script kind."""
    document = {
        "version": "1.0.0",
        "metadata": {"name": "integration"},
        "environment": {"variables": {"GREETING": "hello"}},
        "actions": [
            make_action("count", "w", 'echo "$GREETING {{selectionCount}}"', category="tools"),
            make_action(
                "head",
                "h",
                {"type": "external", "command": "head", "args": ["-n", "2", "{{filePath}}"]},
            ),
            make_action(
                "jump",
                "J",
                {
                    "type": "sequence",
                    "steps": [
                        {"type": "builtin", "builtin": "goToEnd"},
                        {"type": "script", "command": "echo moved"},
                    ],
                },
            ),
            make_action("python-only", "p", "echo py", when={"fileTypes": ["py"]}),
            make_action(
                "wipe",
                "X",
                "echo wiped",
                dangerous=True,
                confirmPrompt="Really wipe?",
            ),
            make_action(
                "status",
                "s",
                "hiliner.update_status('lines: ' + str(hiliner.get_file_info()['total_lines']))",
            ),
        ],
        "keyBindings": {"c": "count"},
    }
    path = project_dir / "hiliner-actions.json"
    path.write_text(json.dumps(document))
    return path


@pytest.fixture
def viewer(sample_file):
    state = ViewerState(total_lines=10, viewport_height=4)
    file = FileSnapshot.from_text(str(sample_file), sample_file.read_text(), "text")
    return state, file


class TestActionEngine:
    """Test ActionEngine end to end."""

    @pytest.mark.asyncio
    async def test_dispatch_every_kind(self, engine_settings, project_dir, project_config, viewer, mock_bridge):
        state, file = viewer
        confirm = AsyncMock(return_value=False)
        engine = ActionEngine.create(
            engine_settings,
            str(project_dir),
            builtin_handlers=create_navigation_handlers(state),
            confirmation_handler=confirm,
            bridge=mock_bridge,
        )
        selection = SelectionSnapshot.of([1, 2])

        assert engine.startup_error is None
        assert engine.load_result.sources == [str(project_config)]

        result = await engine.dispatch_key("w", file, selection, 1)
        assert result.success
        assert result.output == "hello 2"

        result = await engine.dispatch_key("c", file, selection, 1)
        assert result.output == "hello 2"

        result = await engine.dispatch_key("h", file, selection, 1)
        assert result.output == "row 1\nrow 2"

        result = await engine.dispatch_key("J", file, selection, 1)
        assert result.success
        assert result.output == "moved"
        assert state.current_line == 10

        result = await engine.dispatch_key("j", file, selection, 1)
        assert result.success

        result = await engine.dispatch_key("X", file, selection, 1)
        confirm.assert_awaited_once_with("Really wipe?")
        assert result.message_type == MessageType.INFO
        assert not result.success

        result = await engine.dispatch_key("s", file, selection, 1)
        assert result.message == "lines: 10"
        mock_bridge.update_status.assert_called_once()

    @pytest.mark.asyncio
    async def test_unbound_and_unavailable(self, engine_settings, project_dir, project_config, viewer):
        _, file = viewer
        engine = ActionEngine.create(engine_settings, str(project_dir))

        assert await engine.dispatch_key("%", file, SelectionSnapshot(), 1) is None

        result = await engine.dispatch_key("p", file, SelectionSnapshot(), 1)
        assert not result.success
        assert result.message_type == MessageType.WARNING

    @pytest.mark.asyncio
    async def test_unknown_builtin_without_handlers(self, engine_settings, project_dir, viewer):
        _, file = viewer
        engine = ActionEngine.create(engine_settings, str(project_dir))

        result = await engine.dispatch_key("q", file, SelectionSnapshot(), 1)

        assert not result.success
        assert "quit" in result.message

    def test_fallback_on_invalid_config(self, engine_settings, project_dir):
        (project_dir / "hiliner-actions.json").write_text(json.dumps({
            "actions": [{"id": "quit", "key": "Q", "script": "echo no", "description": "override"}],
        }))

        engine = ActionEngine.create(engine_settings, str(project_dir))

        assert engine.startup_error is not None
        assert "quit" in engine.startup_error
        assert engine.registry.action_by_key("q").id == "quit"
        assert engine.registry.get_stats()["custom_actions"] == 0

    def test_fallback_on_parse_error(self, engine_settings, project_dir):
        (project_dir / "hiliner-actions.json").write_text("{")

        engine = ActionEngine.create(engine_settings, str(project_dir))

        assert engine.startup_error is not None
        assert len(engine.registry.all_actions()) == 12

    def test_keymap_help(self, engine_settings, project_dir, project_config):
        engine = ActionEngine.create(engine_settings, str(project_dir))

        help = engine.keymap_help()

        assert help.total_custom == 6
        assert "tools" in help.categories
        assert help.categories["tools"][0].source == str(project_config)


class TestCommandLine:
    """Test the hiliner-actions console script."""

    def test_parse_selection(self):
        assert parse_selection("2,5-7") == {2, 5, 6, 7}
        assert parse_selection("9-8, 1") == {1, 8, 9}

    def test_keymap(self, project_dir, project_config, monkeypatch, capsys, tmp_path):
        monkeypatch.chdir(project_dir)
        monkeypatch.setenv("HILINER_USER_CONFIG_DIR", str(tmp_path / "nohome"))
        monkeypatch.setenv("HILINER_METRICS_ENABLED", "false")

        assert main(["keymap"]) == 0

        out = capsys.readouterr().out
        assert "HILINER KEYMAP" in out
        assert "count - count action" in out
        assert "18 actions: 12 built-in, 6 custom" in out

    def test_run(self, project_dir, project_config, sample_file, monkeypatch, capsys, tmp_path):
        monkeypatch.chdir(project_dir)
        monkeypatch.setenv("HILINER_USER_CONFIG_DIR", str(tmp_path / "nohome"))
        monkeypatch.setenv("HILINER_METRICS_ENABLED", "false")

        assert main(["run", "count", str(sample_file), "--select", "1-3"]) == 0

        out = capsys.readouterr().out
        assert "[success] Command executed successfully" in out
        assert "hello 3" in out

    def test_run_failure_exit_code(self, project_dir, sample_file, monkeypatch, capsys, tmp_path):
        monkeypatch.chdir(project_dir)
        monkeypatch.setenv("HILINER_USER_CONFIG_DIR", str(tmp_path / "nohome"))
        monkeypatch.setenv("HILINER_METRICS_ENABLED", "false")

        assert main(["run", "no-such-action", str(sample_file)]) == 1
