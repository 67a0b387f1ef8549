"""
Tests for the stacks.yml loader and the AppConfig model.
"""

from pathlib import Path

import pytest

from stackrecon.core.config.loader import (
    APP_CONFIG_FILE,
    ConfigError,
    app_root,
    find_app_file,
    load_app_config,
    parse_app_config,
)
from stackrecon.core.errors import ConfigurationError
from stackrecon.core.models.app import AppConfig


class TestFindAppFile:
    def test_in_start_dir(self, stacks_yml):
        assert find_app_file(stacks_yml.parent) == stacks_yml.resolve()

    def test_walks_up(self, stacks_yml):
        nested = stacks_yml.parent / "src" / "api"
        nested.mkdir(parents=True)
        assert find_app_file(nested) == stacks_yml.resolve()

    def test_not_found(self, tmp_path):
        assert find_app_file(tmp_path) is None


class TestLoadAppConfig:
    def test_loads_demo(self, stacks_yml):
        config = load_app_config(stacks_yml)
        assert isinstance(config, AppConfig)
        assert config.app.name == "demo"
        assert config.stack_names == ["StackA", "StackB"]
        assert config.deploy.max_workers == 2
        assert config.get_stack("StackB").functions[0].handler == "main"

    def test_missing_path(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_app_config(tmp_path / APP_CONFIG_FILE)

    def test_no_file_anywhere(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigError, match="No stacks.yml found"):
            load_app_config()

    def test_search_from_cwd(self, stacks_yml, monkeypatch):
        monkeypatch.chdir(stacks_yml.parent)
        assert load_app_config().app.name == "demo"

    def test_app_root(self, stacks_yml):
        assert app_root(stacks_yml) == stacks_yml.parent.resolve()


class TestParseAppConfig:
    def test_invalid_yaml(self):
        with pytest.raises(ConfigError, match="Invalid YAML"):
            parse_app_config("app: [unclosed")

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError, match="Expected a YAML mapping"):
            parse_app_config("- just\n- a list\n")

    def test_missing_app_section(self):
        with pytest.raises(ConfigError, match="Invalid app configuration"):
            parse_app_config("stacks: []\n")

    def test_config_error_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            parse_app_config("42")

    def test_stacks_as_mapping(self):
        config = parse_app_config(
            """
app: {name: demo}
stacks:
  StackA:
    outputs:
      X: {value: 1}
  StackB:
"""
        )
        assert config.stack_names == ["StackA", "StackB"]
        assert config.get_stack("StackA").outputs["X"].value == 1

    def test_duplicate_stack_names(self):
        with pytest.raises(ConfigError, match="Duplicate stack name: StackA"):
            parse_app_config(
                """
app: {name: demo}
stacks:
  - name: StackA
  - name: StackA
"""
            )

    def test_declared_and_retired(self):
        with pytest.raises(ConfigError, match="both declared and retired"):
            parse_app_config(
                """
app: {name: demo}
stacks:
  - name: StackA
retire: [StackA]
"""
            )

    def test_defaults(self):
        config = parse_app_config("app: {name: demo}\n")
        assert config.app.stage == "dev"
        assert config.app.resource_prefix == "dev-demo"
        assert config.retire == []
        assert config.deploy.max_attempts == 3

    def test_invalid_deploy_settings(self):
        with pytest.raises(ConfigError):
            parse_app_config("app: {name: demo}\ndeploy: {max_workers: 0}\n")

    def test_unknown_stack_lookup(self):
        assert parse_app_config("app: {name: demo}\n").get_stack("Nope") is None


def test_demo_file_round_trips_through_path(tmp_path: Path):
    path = tmp_path / "custom.yml"
    path.write_text("app: {name: other, stage: prod}\n")
    assert load_app_config(path).app.resource_prefix == "prod-other"
