"""Tests for trackdown.lib.config module."""

import pytest

from trackdown.lib.config import (
    CONFIG_DIR,
    CONFIG_FILE,
    find_project_root,
    init_project,
    load_config,
)
from trackdown.lib.errors import NotFoundError, SchemaError
from trackdown.lib.types import ItemKind


class TestInitProject:
    """Test init_project."""

    def test_creates_config_and_directories(self, tmp_path):
        config = init_project(tmp_path, "demo")
        assert (tmp_path / CONFIG_DIR / CONFIG_FILE).exists()
        for kind in ItemKind:
            assert config.dir_for(kind).is_dir()
        assert config.templates_dir.is_dir()

    def test_defaults(self, tmp_path):
        config = init_project(tmp_path, "demo")
        assert config.tasks_root == tmp_path / "tasks"
        assert config.dir_for(ItemKind.ISSUE) == tmp_path / "tasks" / "issues"
        assert config.prefix_for(ItemKind.EPIC) == "EP"
        assert config.prefix_for(ItemKind.TASK) == "TSK"
        assert config.default_assignee == "unassigned"

    def test_name_defaults_to_directory(self, tmp_path):
        root = tmp_path / "my-project"
        root.mkdir()
        assert init_project(root).name == "my-project"


class TestLoadConfig:
    """Test load_config."""

    def test_round_trips_init(self, tmp_path):
        init_project(tmp_path, "demo", tasks_directory="work")
        config = load_config(tmp_path)
        assert config.name == "demo"
        assert config.tasks_directory == "work"
        assert config.dir_for(ItemKind.PR) == tmp_path / "work" / "prs"

    def test_missing_config_raises(self, tmp_path):
        with pytest.raises(NotFoundError):
            load_config(tmp_path)

    def test_invalid_yaml_raises(self, tmp_path):
        (tmp_path / CONFIG_DIR).mkdir()
        (tmp_path / CONFIG_DIR / CONFIG_FILE).write_text("name: [broken\n")
        with pytest.raises(SchemaError):
            load_config(tmp_path)

    def test_unknown_structure_key_rejected(self, tmp_path):
        (tmp_path / CONFIG_DIR).mkdir()
        (tmp_path / CONFIG_DIR / CONFIG_FILE).write_text("name: x\nstructure:\n  bugs_dir: bugs\n")
        with pytest.raises(SchemaError):
            load_config(tmp_path)

    def test_partial_config_fills_defaults(self, tmp_path):
        (tmp_path / CONFIG_DIR).mkdir()
        (tmp_path / CONFIG_DIR / CONFIG_FILE).write_text("name: x\nstructure:\n  prs_dir: pulls\n")
        config = load_config(tmp_path)
        assert config.dir_for(ItemKind.PR) == tmp_path / "tasks" / "pulls"
        assert config.dir_for(ItemKind.EPIC) == tmp_path / "tasks" / "epics"


class TestEnvOverrides:
    """Test ATD_* environment overrides."""

    def test_default_assignee(self, tmp_path, monkeypatch):
        init_project(tmp_path, "demo")
        monkeypatch.setenv("ATD_DEFAULT_ASSIGNEE", "alice")
        assert load_config(tmp_path).default_assignee == "alice"

    def test_tasks_dir(self, tmp_path, monkeypatch):
        init_project(tmp_path, "demo")
        monkeypatch.setenv("ATD_TASKS_DIR", "elsewhere")
        assert load_config(tmp_path).tasks_root == tmp_path / "elsewhere"

    def test_auto_timestamps_off(self, tmp_path, monkeypatch):
        init_project(tmp_path, "demo")
        monkeypatch.setenv("ATD_AUTO_TIMESTAMPS", "false")
        assert load_config(tmp_path).automation.auto_update_timestamps is False


class TestFindProjectRoot:
    """Test find_project_root."""

    def test_walks_up_from_subdirectory(self, tmp_path):
        init_project(tmp_path, "demo")
        nested = tmp_path / "src" / "deep"
        nested.mkdir(parents=True)
        assert find_project_root(nested) == tmp_path.resolve()

    def test_none_outside_project(self, tmp_path):
        assert find_project_root(tmp_path) is None
