"""Unit tests for configuration discovery, validation and merging."""

import os

import pytest

from hiliner.actions.models import ActionConfig, ExternalCommand, SequenceCommand
from hiliner.config.loader import (
    ConfigError,
    ConfigErrorType,
    ConfigLoadOptions,
    ConfigSource,
    load_config,
    merge_configs,
    resolve_config_paths,
    validate_config_document,
)


@pytest.fixture
def project_dir(tmp_path):
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def user_dir(tmp_path):
    return tmp_path / "home" / ".hiliner"


@pytest.fixture
def options(user_dir):
    return ConfigLoadOptions(user_config_dir=str(user_dir))


def _source(path, document):
    return ConfigSource(path=path, config=ActionConfig.model_validate(document))


class TestResolveConfigPaths:
    """Test resolve_config_paths."""

    def test_discovery_order(self, project_dir, user_dir):
        """Test user before project, override last."""
        paths = resolve_config_paths(str(project_dir), "extra.json", str(user_dir))

        assert paths == [
            os.path.join(str(user_dir), "actions.json"),
            os.path.join(str(project_dir), "hiliner-actions.json"),
            os.path.join(str(project_dir), "extra.json"),
        ]

    def test_tilde_expansion(self, project_dir, monkeypatch, tmp_path):
        """Test ~ in the override path expands to the home directory."""
        monkeypatch.setenv("HOME", str(tmp_path))

        paths = resolve_config_paths(str(project_dir), "~/custom.json")

        assert paths[0] == os.path.join(str(tmp_path), ".hiliner", "actions.json")
        assert paths[-1] == os.path.join(str(tmp_path), "custom.json")


class TestValidateConfigDocument:
    """Test validate_config_document."""

    def test_valid_document(self, make_action):
        """Test a well-formed document has no issues."""
        document = {"version": "1.0.0", "actions": [make_action("count-lines", "w")]}

        assert validate_config_document(document) == []

    def test_not_an_object(self):
        """Test non-mapping documents."""
        issues = validate_config_document(["actions"])

        assert issues[0].path == "/"

    def test_missing_actions(self):
        """Test a document without an actions array."""
        issues = validate_config_document({"version": "1.0.0"})

        assert [issue.path for issue in issues] == ["/actions"]

    def test_action_violations(self, make_action):
        """Test every violation is reported with a path."""
        document = {
            "version": "1.0",
            "actions": [
                {"id": "bad id!", "key": "x", "script": "ls", "description": "d"},
                {"key": "y"},
                make_action("ok", "z"),
            ],
        }

        paths = {issue.path for issue in validate_config_document(document)}

        assert "/version" in paths
        assert "/actions/0/id" in paths
        assert {"/actions/1/id", "/actions/1/script", "/actions/1/description"} <= paths
        assert not any(path.startswith("/actions/2") for path in paths)

    def test_invalid_complex_command(self, make_action):
        """Test script objects must be a known command variant."""
        document = {"actions": [make_action("x", "x", script={"type": "teleport"})]}

        issues = validate_config_document(document)

        assert issues
        assert all(issue.path.startswith("/actions/0") for issue in issues)


class TestMergeConfigs:
    """Test the canonical merge algorithm."""

    def test_duplicate_action_id_replaced_in_place(self, make_action):
        """Test the higher-precedence definition wins and keeps its position."""
        user = _source("user.json", {"actions": [
            make_action("first", "1", "echo user"),
            make_action("second", "2"),
        ]})
        project = _source("project.json", {"actions": [make_action("first", "1", "echo project")]})

        merged, conflicts = merge_configs([user, project])

        assert [a.id for a in merged.actions] == ["first", "second"]
        assert merged.actions[0].script == "echo project"
        assert len(conflicts) == 1
        assert conflicts[0].type == "duplicate_action_id"
        assert conflicts[0].sources == ["user.json", "project.json"]
        assert "project.json" in conflicts[0].resolution

    def test_duplicate_key_binding(self, make_action):
        """Test a key claimed by two actions goes to the later source."""
        user = _source("user.json", {"actions": [make_action("lint", "l")]})
        project = _source("project.json", {"actions": [make_action("log", "l")]})

        merged, conflicts = merge_configs([user, project])

        key_conflicts = [c for c in conflicts if c.type == "duplicate_key_binding"]
        assert len(key_conflicts) == 1
        assert key_conflicts[0].key == "l"
        assert key_conflicts[0].sources == ["user.json", "project.json"]
        assert merged.key_bindings["l"] == "log"

    def test_explicit_key_bindings(self, make_action):
        """Test explicit bindings merge with later sources winning."""
        user = _source("user.json", {
            "actions": [make_action("a", "1"), make_action("b", "2")],
            "keyBindings": {"x": "a"},
        })
        project = _source("project.json", {"actions": [], "keyBindings": {"x": "b"}})

        merged, conflicts = merge_configs([user, project])

        assert merged.key_bindings["x"] == "b"
        assert any(c.type == "duplicate_key_binding" and c.key == "x" for c in conflicts)

    def test_same_action_same_key_is_not_conflict(self, make_action):
        """Test redefining an action with its own key records no key conflict."""
        user = _source("user.json", {"actions": [make_action("a", "1")]})
        project = _source("project.json", {"actions": [make_action("a", "1")]})

        _, conflicts = merge_configs([user, project])

        assert [c.type for c in conflicts] == ["duplicate_action_id"]

    def test_environment_variables(self, make_action):
        """Test variables merge per name and only differing values conflict."""
        user = _source("user.json", {"actions": [], "environment": {
            "variables": {"EDITOR": "vi", "PAGER": "less"},
            "timeout": 1000,
            "shell": "bash",
        }})
        project = _source("project.json", {"actions": [], "environment": {
            "variables": {"EDITOR": "nano", "PAGER": "less"},
            "timeout": 2000,
        }})

        merged, conflicts = merge_configs([user, project])

        assert merged.environment.variables == {"EDITOR": "nano", "PAGER": "less"}
        assert merged.environment.timeout == 2000
        assert merged.environment.shell == "bash"
        env_conflicts = [c for c in conflicts if c.type == "conflicting_environment_var"]
        assert [c.key for c in env_conflicts] == ["EDITOR"]

    def test_scalars_from_highest_precedence(self):
        """Test version and metadata come from the last source defining them."""
        user = _source("user.json", {"version": "1.0.0", "metadata": {"name": "user"}, "actions": []})
        project = _source("project.json", {"actions": []})

        merged, _ = merge_configs([user, project])

        assert merged.version == "1.0.0"
        assert merged.metadata.name == "user"

    def test_no_sources(self):
        """Test merging nothing gives an empty configuration."""
        merged, conflicts = merge_configs([])

        assert merged.actions == []
        assert conflicts == []


class TestLoadConfig:
    """Test load_config."""

    def test_no_sources(self, project_dir, options):
        """Test missing sources are skipped silently."""
        result = load_config(str(project_dir), options)

        assert result.sources == []
        assert result.config.actions == []
        assert result.warnings == []

    def test_user_and_project_merge(self, project_dir, user_dir, options, write_config, make_action):
        """Test both discovered sources are merged in precedence order."""
        user_path = write_config(str(user_dir / "actions.json"), {
            "actions": [make_action("shared", "s", "echo user"), make_action("mine", "m")],
        })
        project_path = write_config(str(project_dir / "hiliner-actions.json"), {
            "actions": [make_action("shared", "s", "echo project")],
        })

        result = load_config(str(project_dir), options)

        assert result.sources == [str(user_path), str(project_path)]
        assert [a.id for a in result.config.actions] == ["shared", "mine"]
        assert result.config.actions[0].script == "echo project"
        assert result.action_sources["shared"] == str(project_path)
        assert result.metrics.files_processed == 2
        assert result.metrics.total_size > 0

    def test_override_replaces_discovery(self, project_dir, options, write_config, make_action):
        """Test an existing override is the only source loaded."""
        write_config(str(project_dir / "hiliner-actions.json"), {"actions": [make_action("project", "p")]})
        override = write_config("override.json", {"actions": [make_action("override", "o")]})
        options.custom_config_path = str(override)

        result = load_config(str(project_dir), options)

        assert result.sources == [str(override)]
        assert [a.id for a in result.config.actions] == ["override"]

    def test_missing_override_strict(self, project_dir, options):
        """Test a missing override fails in strict mode."""
        options.custom_config_path = "missing.json"

        with pytest.raises(ConfigError) as exc_info:
            load_config(str(project_dir), options)

        assert exc_info.value.error_type == ConfigErrorType.FILE_NOT_FOUND

    def test_missing_override_lenient(self, project_dir, options, write_config, make_action):
        """Test a missing override falls back to discovery in lenient mode."""
        write_config(str(project_dir / "hiliner-actions.json"), {"actions": [make_action("project", "p")]})
        options.custom_config_path = "missing.json"
        options.strict = False

        result = load_config(str(project_dir), options)

        assert [a.id for a in result.config.actions] == ["project"]
        assert len(result.warnings) == 1

    def test_yaml_override(self, project_dir, options, write_config):
        """Test YAML override documents."""
        override = write_config("actions.yaml", (
            "version: 1.0.0\n"
            "actions:\n"
            "  - id: tail\n"
            "    key: t\n"
            "    description: Tail the file\n"
            "    script:\n"
            "      type: external\n"
            "      command: tail\n"
            "      args: ['-n', '5', '{{filePath}}']\n"
        ))
        options.custom_config_path = str(override)

        result = load_config(str(project_dir), options)

        script = result.config.actions[0].script
        assert isinstance(script, ExternalCommand)
        assert script.args == ["-n", "5", "{{filePath}}"]

    def test_parse_error_strict(self, project_dir, options, write_config):
        """Test malformed JSON fails in strict mode."""
        write_config(str(project_dir / "hiliner-actions.json"), "{not json")

        with pytest.raises(ConfigError) as exc_info:
            load_config(str(project_dir), options)

        assert exc_info.value.error_type == ConfigErrorType.PARSE_ERROR

    def test_parse_error_lenient(self, project_dir, user_dir, options, write_config, make_action):
        """Test malformed JSON is a warning in lenient mode."""
        write_config(str(user_dir / "actions.json"), {"actions": [make_action("mine", "m")]})
        write_config(str(project_dir / "hiliner-actions.json"), "{not json")
        options.strict = False

        result = load_config(str(project_dir), options)

        assert [a.id for a in result.config.actions] == ["mine"]
        assert len(result.warnings) == 1

    def test_validation_error_strict(self, project_dir, options, write_config):
        """Test invalid actions fail strict loading with every issue attached."""
        write_config(str(project_dir / "hiliner-actions.json"), {"actions": [{"id": "x"}]})

        with pytest.raises(ConfigError) as exc_info:
            load_config(str(project_dir), options)

        assert exc_info.value.error_type == ConfigErrorType.VALIDATION_ERROR
        paths = {issue.path for issue in exc_info.value.validation_errors}
        assert {"/actions/0/key", "/actions/0/script", "/actions/0/description"} <= paths

    def test_validation_error_lenient(self, project_dir, options, write_config, make_action):
        """Test invalid actions are dropped in lenient mode."""
        write_config(str(project_dir / "hiliner-actions.json"), {
            "actions": [{"id": "broken"}, make_action("good", "g")],
        })
        options.strict = False

        result = load_config(str(project_dir), options)

        assert [a.id for a in result.config.actions] == ["good"]
        assert result.validation_errors
        assert result.warnings

    def test_unknown_fields_ignored(self, project_dir, options, write_config, make_action):
        """Test unknown top-level and action-level fields load fine."""
        write_config(str(project_dir / "hiliner-actions.json"), {
            "futureField": True,
            "actions": [make_action("a", "a", icon="star")],
        })

        result = load_config(str(project_dir), options)

        assert [a.id for a in result.config.actions] == ["a"]

    def test_sequence_document(self, project_dir, options, write_config, make_action):
        """Test sequence scripts with steps and string follow-ups."""
        write_config(str(project_dir / "hiliner-actions.json"), {"actions": [make_action(
            "build",
            "B",
            script={
                "type": "sequence",
                "steps": [{"type": "builtin", "builtin": "reload"}],
                "onSuccess": "echo done",
            },
        )]})

        result = load_config(str(project_dir), options)

        script = result.config.actions[0].script
        assert isinstance(script, SequenceCommand)
        assert script.on_success == "echo done"

    def test_size_limit(self, project_dir, options, write_config, make_action):
        """Test oversized input is fatal even in lenient mode."""
        write_config(str(project_dir / "hiliner-actions.json"), {
            "actions": [make_action("big", "b", "echo " + "x" * 4096)],
        })
        options.strict = False
        options.max_total_size = 1024

        with pytest.raises(ConfigError) as exc_info:
            load_config(str(project_dir), options)

        assert exc_info.value.error_type == ConfigErrorType.SIZE_LIMIT_EXCEEDED

    def test_directory_source_lenient(self, project_dir, options):
        """Test an unreadable source becomes a warning in lenient mode."""
        (project_dir / "hiliner-actions.json").mkdir()
        options.strict = False

        result = load_config(str(project_dir), options)

        assert result.sources == []
        assert len(result.warnings) == 1
