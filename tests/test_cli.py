"""Tests for the atd command line."""

import pytest

from trackdown.cli import build_parser, main
from trackdown.lib.config import load_config, save_config
from trackdown.lib.types import ItemKind


@pytest.fixture
def run(project, capsys):
    """Run atd against the project. Returns (exit code, stdout)."""
    def invoke(*argv):
        code = main(["-C", str(project.config.project_root), *argv])
        return code, capsys.readouterr().out
    return invoke


class TestInit:
    """Test atd init."""

    def test_creates_project(self, tmp_path, capsys):
        root = tmp_path / "fresh"
        assert main(["init", str(root), "--name", "fresh", "--assignee", "alice"]) == 0
        config = load_config(root)
        assert config.name == "fresh"
        assert config.default_assignee == "alice"
        assert "Initialized project 'fresh'" in capsys.readouterr().out

    def test_refuses_existing_project(self, project, capsys):
        assert main(["init", str(project.config.project_root)]) == 1
        assert "already a trackdown project" in capsys.readouterr().out

    def test_missing_project_exit_code(self, tmp_path, capsys):
        assert main(["-C", str(tmp_path / "nowhere"), "index", "stats"]) == 2
        assert "ERROR" in capsys.readouterr().out


class TestCommands:
    """Test commands against a populated project."""

    def test_show_unknown_item(self, run):
        code, out = run("show", "ISS-0404")
        assert code == 2
        assert "ISS-0404" in out

    def test_show_item(self, run, make_item):
        make_item(ItemKind.EPIC, "Billing")
        make_item(ItemKind.ISSUE, "Invoices", epic_id="EP-0001")
        code, out = run("show", "EP-0001")
        assert code == 0
        assert "EP-0001: Billing" in out
        assert "ISS-0001" in out

    def test_index_rebuild_and_stats(self, run, make_item):
        make_item(ItemKind.ISSUE, "Issue")
        assert run("index", "rebuild")[0] == 0
        _, out = run("index", "stats")
        assert "Items:       1" in out

    def test_deps_cycle_reported(self, run, make_item):
        make_item(ItemKind.ISSUE, "Issue")
        for title in ("A", "B"):
            make_item(ItemKind.PR, title, issue_id="ISS-0001")
        assert run("deps", "add", "PR-0001", "depends_on", "PR-0002")[0] == 0

        code, out = run("deps", "add", "PR-0002", "depends_on", "PR-0001")
        assert code == 1
        assert "Cycle:" in out

    def test_state_pr_rejects_invalid_move(self, run, make_item):
        make_item(ItemKind.ISSUE, "Issue")
        make_item(ItemKind.PR, "PR", issue_id="ISS-0001")
        code, out = run("state", "pr", "PR-0001", "merged")
        assert code == 1
        assert "Allowed from draft" in out

    def test_sync_run(self, run, project, make_item):
        make_item(ItemKind.ISSUE, "Issue")
        make_item(ItemKind.TASK, "Task", issue_id="ISS-0001", status="active",
                  updated_date="2025-01-05T00:00:00+00:00")
        make_item(ItemKind.PR, "PR", issue_id="ISS-0001", pr_status="merged",
                  updated_date="2025-01-10T00:00:00+00:00")

        code, out = run("sync", "run")
        assert code == 0
        assert "PR-0001 -> TSK-0001: set status=completed" in out
        assert project.store.load(ItemKind.TASK, "TSK-0001").status == "completed"


class TestItemCommands:
    """Test atd create, update and delete."""

    def test_create_issue_and_task(self, run, project):
        code, out = run("create", "issue", "Login bug", "--priority", "high", "--tag", "auth")
        assert code == 0
        assert "Created Issue ISS-0001: Login bug" in out

        code, out = run("create", "task", "Write tests", "--issue", "ISS-0001")
        assert code == 0
        task = project.store.load(ItemKind.TASK, "TSK-0001")
        assert task.issue_id == "ISS-0001"
        issue = project.store.load(ItemKind.ISSUE, "ISS-0001")
        assert issue.priority == "high"
        assert issue.tags == ["auth"]

        _, out = run("index", "stats")
        assert "Items:       2" in out

    def test_create_task_needs_issue(self, run, project):
        code, out = run("create", "task", "Orphan")
        assert code == 1
        assert "needs a parent issue" in out
        assert project.store.list_files(ItemKind.TASK) == []

    def test_create_pr_starts_as_draft(self, run, project, make_item):
        make_item(ItemKind.ISSUE, "Issue")
        code, _ = run("create", "pr", "Fix login", "--issue", "ISS-0001", "--branch", "fix/login")
        assert code == 0
        pr = project.store.load(ItemKind.PR, "PR-0001")
        assert pr.pr_status == "draft"
        assert pr.branch_name == "fix/login"

    def test_update_fields(self, run, project, make_item):
        make_item(ItemKind.ISSUE, "Issue")
        code, out = run("update", "ISS-0001", "--status", "active",
                        "--set", "milestone=Q3", "--set", "tags=api,auth")
        assert code == 0
        assert "Updated ISS-0001" in out
        issue = project.store.load(ItemKind.ISSUE, "ISS-0001")
        assert issue.status == "active"
        assert issue.tags == ["api", "auth"]
        assert issue.extra == {"milestone": "Q3"}

    def test_update_refuses_lifecycle_fields(self, run, project, make_item):
        make_item(ItemKind.ISSUE, "Issue")
        make_item(ItemKind.PR, "PR", issue_id="ISS-0001")
        code, out = run("update", "PR-0001", "--set", "pr_status=merged")
        assert code == 1
        assert "atd state" in out
        assert project.store.load(ItemKind.PR, "PR-0001").pr_status == "draft"

    def test_delete_refuses_parent_without_force(self, run, project, make_item):
        make_item(ItemKind.EPIC, "Epic")
        make_item(ItemKind.ISSUE, "Issue", epic_id="EP-0001")

        code, out = run("delete", "EP-0001")
        assert code == 1
        assert "ISS-0001" in out
        assert project.store.find_path(ItemKind.EPIC, "EP-0001") is not None

        code, out = run("delete", "EP-0001", "--force")
        assert code == 0
        assert project.store.find_path(ItemKind.EPIC, "EP-0001") is None
        _, out = run("index", "stats")
        assert "Items:       1" in out


class TestPrStatusAutoSync:
    """Test that atd state pr pushes the new status to linked tasks."""

    @pytest.fixture
    def approved_pr(self, make_item):
        make_item(ItemKind.ISSUE, "Issue")
        make_item(ItemKind.TASK, "Task", issue_id="ISS-0001", status="active",
                  updated_date="2025-01-05T00:00:00+00:00")
        make_item(ItemKind.PR, "PR", issue_id="ISS-0001", pr_status="approved",
                  updated_date="2025-01-04T00:00:00+00:00")

    def test_merge_completes_task(self, run, project, approved_pr):
        code, out = run("state", "pr", "PR-0001", "merged")
        assert code == 0
        assert "PR-0001 -> TSK-0001" in out
        assert project.store.load(ItemKind.TASK, "TSK-0001").status == "completed"

    def test_disabled_leaves_task_alone(self, run, project, approved_pr):
        project.config.automation.auto_sync_status = False
        save_config(project.config)

        code, out = run("state", "pr", "PR-0001", "merged")
        assert code == 0
        assert "TSK-0001" not in out
        assert project.store.load(ItemKind.PR, "PR-0001").pr_status == "merged"
        assert project.store.load(ItemKind.TASK, "TSK-0001").status == "active"


class TestParser:
    """Test argument parsing."""

    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_unknown_state_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["state", "transition", "TSK-0001", "finished"])
