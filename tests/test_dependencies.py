"""Tests for trackdown.graph.dependencies module."""

import json

import pytest

from trackdown.lib.errors import CycleError, NotFoundError, SchemaError, ValidationError
from trackdown.lib.types import ItemKind

A, B, C = "PR-0001", "PR-0002", "PR-0003"


@pytest.fixture
def prs(project, make_item):
    """Three draft PRs under one issue."""
    make_item(ItemKind.ISSUE, "Issue")
    for title in ("A", "B", "C"):
        make_item(ItemKind.PR, f"PR {title}", issue_id="ISS-0001")
    return project


def record(pr_id, other, dep_type, created):
    return {"prId": pr_id, "dependentPrId": other, "type": dep_type,
            "created": created, "createdBy": "test"}


class TestAddDependency:
    """Test add_dependency validation and cycle rejection."""

    def test_adds_record(self, prs):
        rec = prs.deps.add_dependency(A, B, "depends_on", reason="needs API", created_by="alice")
        assert rec.edge == (A, B)
        stored = json.loads(prs.config.dependencies_path.read_text())
        assert stored[0]["prId"] == A
        assert stored[0]["createdBy"] == "alice"

    def test_cycle_rejected_and_store_unchanged(self, prs):
        prs.deps.add_dependency(A, B, "depends_on")
        prs.deps.add_dependency(B, C, "depends_on")
        before = prs.config.dependencies_path.read_text()

        with pytest.raises(ValidationError) as exc:
            prs.deps.add_dependency(C, A, "depends_on")

        assert isinstance(exc.value, CycleError)
        assert exc.value.cycle == [A, B, C]
        assert prs.config.dependencies_path.read_text() == before

    def test_cycle_through_mixed_types(self, prs):
        """A blocks B means B waits on A, so A depends_on B closes a cycle."""
        prs.deps.add_dependency(A, B, "blocks")
        with pytest.raises(CycleError):
            prs.deps.add_dependency(A, B, "depends_on")

    def test_unknown_type(self, prs):
        with pytest.raises(ValidationError) as exc:
            prs.deps.add_dependency(A, B, "relates_to")
        assert "depends_on" in exc.value.allowed

    def test_self_reference(self, prs):
        with pytest.raises(ValidationError, match="itself"):
            prs.deps.add_dependency(A, A, "depends_on")

    def test_missing_pr(self, prs):
        with pytest.raises(NotFoundError):
            prs.deps.add_dependency(A, "PR-0404", "depends_on")

    def test_duplicate_edge(self, prs):
        """B required_by A is the same edge as A depends_on B."""
        prs.deps.add_dependency(A, B, "depends_on")
        with pytest.raises(ValidationError, match="already exists"):
            prs.deps.add_dependency(B, A, "required_by")

    def test_merged_pr_warns(self, prs, caplog):
        prs.store.update(prs.graph.find(ItemKind.PR, B).file_path, {"pr_status": "merged"})
        prs.graph.rebuild_cache()
        prs.deps.add_dependency(A, B, "depends_on")
        assert "already merged" in caplog.text


class TestQueries:
    """Test dependency views and mergeability."""

    def test_pr_dependencies(self, prs):
        prs.deps.add_dependency(A, B, "depends_on")
        prs.deps.add_dependency(C, A, "required_by")  # A waits on C

        a = prs.deps.get_pr_dependencies(A)
        assert a.depends_on == [B, C]
        assert a.blocked_by == [B, C]
        assert a.can_merge is False
        assert a.blocking_reasons[0] == f"Blocked by {B} (draft)"

        b = prs.deps.get_pr_dependencies(B)
        assert b.required_by == [A]
        assert b.blocks == [A]
        assert b.can_merge is True

    def test_merged_blocker_does_not_block(self, prs):
        prs.deps.add_dependency(A, B, "depends_on")
        prs.store.update(prs.graph.find(ItemKind.PR, B).file_path, {"pr_status": "merged"})
        prs.graph.rebuild_cache()

        check = prs.deps.check_mergeability(A)
        assert check.can_merge is True
        assert prs.deps.get_pr_dependencies(A).depends_on == [B]

    def test_resolved_records_ignored(self, prs):
        prs.deps.add_dependency(A, B, "depends_on")
        assert prs.deps.resolve_dependencies(B, resolved_by="merge-bot") == 1
        assert prs.deps.get_pr_dependencies(A).depends_on == []
        assert prs.deps.load()[0].resolved_by == "merge-bot"

    def test_resolved_records_do_not_form_cycles(self, prs):
        prs.deps.add_dependency(A, B, "depends_on")
        prs.deps.resolve_dependencies(B)
        prs.deps.add_dependency(B, A, "depends_on")
        assert len(prs.deps.load()) == 2

    def test_unknown_pr(self, prs):
        with pytest.raises(NotFoundError):
            prs.deps.get_pr_dependencies("PR-0404")


class TestRemoveDependency:
    """Test remove_dependency."""

    def test_removes_either_direction(self, prs):
        prs.deps.add_dependency(A, B, "depends_on")
        assert prs.deps.remove_dependency(B, A) == 1
        assert prs.deps.load() == []

    def test_type_filter(self, prs):
        prs.deps.add_dependency(A, B, "depends_on")
        with pytest.raises(NotFoundError):
            prs.deps.remove_dependency(A, B, "blocks")
        assert len(prs.deps.load()) == 1


class TestValidateAndFix:
    """Test validate_dependencies and fix_dependency_issues on hand-edited files."""

    def write_records(self, project, records):
        project.config.dependencies_path.write_text(json.dumps(records))

    def test_valid_when_empty(self, prs):
        assert prs.deps.validate_dependencies().valid

    def test_detects_problems(self, prs):
        self.write_records(prs, [
            record(A, B, "depends_on", "2025-01-01T00:00:00+00:00"),
            record(B, A, "depends_on", "2025-01-02T00:00:00+00:00"),
            record(C, C, "depends_on", "2025-01-03T00:00:00+00:00"),
            record(C, "PR-0404", "blocks", "2025-01-04T00:00:00+00:00"),
        ])
        report = prs.deps.validate_dependencies()
        assert not report.valid
        assert report.self_references == [C]
        assert report.missing_prs == ["PR-0404"]
        assert [A, B] in report.cycles

    def test_fix_breaks_cycle_by_dropping_newest(self, prs):
        self.write_records(prs, [
            record(A, B, "depends_on", "2025-01-01T00:00:00+00:00"),
            record(B, C, "depends_on", "2025-01-02T00:00:00+00:00"),
            record(C, A, "depends_on", "2025-01-03T00:00:00+00:00"),
        ])
        fixes = prs.deps.fix_dependency_issues()

        assert len(fixes) == 1
        assert f"{C} depends_on {A}" in fixes[0]
        assert [(r.pr_id, r.dependent_pr_id) for r in prs.deps.load()] == [(A, B), (B, C)]
        assert prs.deps.validate_dependencies().valid

    def test_invalid_file_raises(self, prs):
        prs.config.dependencies_path.write_text('[{"prId": "PR-0001"}]')
        with pytest.raises(SchemaError):
            prs.deps.load()
