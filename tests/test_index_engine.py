"""Tests for trackdown.index.engine module."""

import json
import logging
import os
import time

import pytest

from trackdown.context import TrackdownContext
from trackdown.index.engine import IndexEngine
from trackdown.lib.types import ItemKind


def issue_text(n: int, status: str = "planning") -> str:
    return (
        "---\n"
        f"issue_id: ISS-{n:04d}\n"
        f"title: Issue {n}\n"
        f"status: {status}\n"
        "priority: medium\n"
        "assignee: unassigned\n"
        "created_date: '2025-01-01T00:00:00+00:00'\n"
        "updated_date: '2025-01-01T00:00:00+00:00'\n"
        "---\n\nbody\n"
    )


def touch_future(path, seconds: int = 60):
    """Push mtime past any index build timestamp."""
    future = time.time() + seconds
    os.utime(path, (future, future))


class TestRebuildIndex:
    """Test IndexEngine.rebuild_index counts and persistence."""

    def test_empty_project(self, project):
        snapshot = project.index.rebuild_index()
        assert snapshot.stats["totalIssues"] == 0
        assert snapshot.items == {}

    def test_single_issue(self, project, write_raw):
        write_raw(ItemKind.ISSUE, "ISS-0001-a.md", issue_text(1))
        snapshot = project.index.rebuild_index()
        assert snapshot.stats["totalIssues"] == 1
        assert snapshot.items["ISS-0001"].title == "Issue 1"

    def test_many_issues_with_one_malformed(self, project, write_raw, caplog):
        """Malformed files are excluded from counts but do not fail the build."""
        for n in range(1, 121):
            write_raw(ItemKind.ISSUE, f"ISS-{n:04d}-issue.md", issue_text(n))
        write_raw(ItemKind.ISSUE, "ISS-0999-broken.md", "---\nissue_id: [\n---\n")

        snapshot = project.index.rebuild_index()

        assert snapshot.stats["totalIssues"] == 120
        assert snapshot.file_counts["issue"] == 121
        assert len(snapshot.skipped_files) == 1
        assert snapshot.skipped_files[0].endswith("ISS-0999-broken.md")
        assert "Skipping malformed file" in caplog.text

    def test_counts_per_kind(self, project, make_item):
        make_item(ItemKind.EPIC, "Epic")
        make_item(ItemKind.ISSUE, "Issue", epic_id="EP-0001")
        make_item(ItemKind.TASK, "Task", issue_id="ISS-0001")
        make_item(ItemKind.PR, "PR", issue_id="ISS-0001")
        stats = project.index.rebuild_index().stats
        assert (stats["totalEpics"], stats["totalIssues"], stats["totalTasks"], stats["totalPRs"]) == (1, 1, 1, 1)

    def test_snapshot_persisted(self, project, write_raw):
        write_raw(ItemKind.ISSUE, "ISS-0001-a.md", issue_text(1))
        project.index.rebuild_index()
        data = json.loads(project.config.index_path.read_text())
        assert data["stats"]["totalIssues"] == 1
        assert data["items"]["ISS-0001"]["filePath"].endswith("ISS-0001-a.md")
        assert "builtAt" in data

    def test_save_failure_is_not_fatal(self, project, write_raw, caplog):
        write_raw(ItemKind.ISSUE, "ISS-0001-a.md", issue_text(1))
        project.config.index_path.mkdir()
        snapshot = project.index.rebuild_index()
        assert snapshot.stats["totalIssues"] == 1
        assert snapshot.save_error is not None
        assert "Failed to save index" in caplog.text


class TestLoadIndex:
    """Test loading, cache hits and staleness."""

    def test_fresh_index_is_reused(self, project, write_raw):
        write_raw(ItemKind.ISSUE, "ISS-0001-a.md", issue_text(1))
        project.index.rebuild_index()

        engine = IndexEngine(project.config, project.store)
        snapshot = engine.load_index()
        assert "ISS-0001" in snapshot.items
        assert engine.get_index_stats().cache_hit is True

    def test_missing_index_triggers_rebuild(self, project, write_raw):
        write_raw(ItemKind.ISSUE, "ISS-0001-a.md", issue_text(1))
        snapshot = project.index.load_index()
        assert "ISS-0001" in snapshot.items
        assert project.config.index_path.exists()

    def test_modified_file_makes_index_stale(self, project, write_raw):
        path = write_raw(ItemKind.ISSUE, "ISS-0001-a.md", issue_text(1))
        project.index.rebuild_index()
        assert not project.index.is_stale()

        path.write_text(issue_text(1, status="active"))
        touch_future(path)

        engine = IndexEngine(project.config, project.store)
        assert engine.is_stale()
        assert engine.load_index().items["ISS-0001"].status == "active"
        assert engine.get_index_stats().cache_hit is False

    def test_added_file_makes_index_stale(self, project, write_raw):
        write_raw(ItemKind.ISSUE, "ISS-0001-a.md", issue_text(1))
        project.index.rebuild_index()
        write_raw(ItemKind.ISSUE, "ISS-0002-b.md", issue_text(2))

        engine = IndexEngine(project.config, project.store)
        reasons = engine.stale_reasons(engine._read_persisted())
        assert any("count" in r for r in reasons)
        assert set(engine.load_index().items) == {"ISS-0001", "ISS-0002"}

    def test_corrupt_index_is_rebuilt(self, project, write_raw, caplog):
        write_raw(ItemKind.ISSUE, "ISS-0001-a.md", issue_text(1))
        project.config.index_path.write_text("{not json")
        snapshot = project.index.load_index()
        assert "ISS-0001" in snapshot.items
        assert "Ignoring unreadable index" in caplog.text


class TestIncrementalUpdates:
    """Test update_item and remove_item."""

    def test_update_adds_new_item_without_rebuild(self, project, make_item, caplog):
        make_item(ItemKind.ISSUE, "First")
        project.index.rebuild_index()

        second = make_item(ItemKind.ISSUE, "Second")
        caplog.set_level(logging.INFO, logger="trackdown.index.engine")
        entry = project.index.update_item(ItemKind.ISSUE, second.id)

        assert entry.id == "ISS-0002"
        assert "Index stale" not in caplog.text
        assert project.index.snapshot.stats["totalIssues"] == 2
        assert not project.index.is_stale()

    def test_update_reflects_changed_fields(self, project, make_item):
        issue = make_item(ItemKind.ISSUE, "Issue")
        project.index.rebuild_index()
        project.store.update(issue.file_path, {"status": "active", "priority": "high"})
        entry = project.index.update_item(ItemKind.ISSUE, issue.id)
        assert entry.status == "active"
        assert project.index.get_items_by_status("active")[0].id == issue.id

    def test_update_of_deleted_file_removes_entry(self, project, make_item):
        issue = make_item(ItemKind.ISSUE, "Issue")
        project.index.rebuild_index()
        project.store.delete(ItemKind.ISSUE, issue.id)
        assert project.index.update_item(ItemKind.ISSUE, issue.id) is None
        assert project.index.get_item(issue.id) is None

    def test_remove_item_leaves_children(self, project, make_item):
        epic = make_item(ItemKind.EPIC, "Epic")
        make_item(ItemKind.ISSUE, "Child", epic_id=epic.id)
        project.index.rebuild_index()
        project.store.delete(ItemKind.EPIC, epic.id)

        assert project.index.remove_item(ItemKind.EPIC, epic.id) is True
        assert project.index.get_item("ISS-0001").epic_id == epic.id
        assert project.index.remove_item(ItemKind.EPIC, epic.id) is False

    def test_update_when_otherwise_stale_rebuilds(self, project, make_item, write_raw, caplog):
        make_item(ItemKind.ISSUE, "First")
        project.index.rebuild_index()
        write_raw(ItemKind.EPIC, "EP-0005-hand.md",
                  issue_text(5).replace("issue_id: ISS-0005", "epic_id: EP-0005"))
        second = make_item(ItemKind.ISSUE, "Second")

        caplog.set_level(logging.INFO, logger="trackdown.index.engine")
        project.index.update_item(ItemKind.ISSUE, second.id)
        assert "Index stale before update" in caplog.text
        assert project.index.get_item("EP-0005") is not None


class TestUpdatesFromFreshContext:
    """update_item and remove_item as a new CLI invocation runs them: no in-memory snapshot."""

    @pytest.fixture
    def reopen(self, project):
        def open_context():
            return TrackdownContext.open(project.config.project_root)
        return open_context

    @staticmethod
    def count_rebuilds(ctx, monkeypatch) -> list:
        calls = []
        rebuild = ctx.index.rebuild_index

        def counting(*args, **kwargs):
            calls.append(1)
            return rebuild(*args, **kwargs)

        monkeypatch.setattr(ctx.index, "rebuild_index", counting)
        return calls

    @staticmethod
    def persisted(project) -> dict:
        return json.loads(project.config.index_path.read_text())

    def test_own_write_is_patched_without_rebuild(self, project, make_item, reopen, monkeypatch):
        issue = make_item(ItemKind.ISSUE, "Issue")
        make_item(ItemKind.ISSUE, "Other")
        project.index.rebuild_index()

        ctx = reopen()
        rebuilds = self.count_rebuilds(ctx, monkeypatch)
        ctx.store.update(issue.file_path, {"status": "active"})
        ctx.after_mutation(ItemKind.ISSUE, issue.id)

        assert rebuilds == []
        assert ctx.index.get_item(issue.id).status == "active"
        assert self.persisted(project)["items"][issue.id]["status"] == "active"

    def test_new_item_is_patched_without_rebuild(self, project, make_item, reopen, monkeypatch):
        make_item(ItemKind.ISSUE, "First")
        project.index.rebuild_index()

        ctx = reopen()
        rebuilds = self.count_rebuilds(ctx, monkeypatch)
        second = ctx.store.create(ItemKind.ISSUE, {"title": "Second"})
        ctx.index.update_item(ItemKind.ISSUE, second.id)

        assert rebuilds == []
        assert self.persisted(project)["stats"]["totalIssues"] == 2

    def test_sibling_deleted_by_hand_forces_rebuild(self, project, make_item, reopen, caplog):
        gone = make_item(ItemKind.ISSUE, "Gone")
        kept = make_item(ItemKind.ISSUE, "Kept")
        project.index.rebuild_index()
        os.remove(gone.file_path)

        ctx = reopen()
        ctx.store.update(kept.file_path, {"priority": "high"})
        caplog.set_level(logging.INFO, logger="trackdown.index.engine")
        ctx.index.update_item(ItemKind.ISSUE, kept.id)

        assert "Index stale before update" in caplog.text
        data = self.persisted(project)
        assert gone.id not in data["items"]
        assert data["stats"]["totalIssues"] == 1
        assert data["stats"]["fileCounts"]["issue"] == 1
        assert IndexEngine(project.config, project.store).load_index().count(ItemKind.ISSUE) == 1

    def test_new_item_replacing_hand_deleted_one_forces_rebuild(self, project, make_item, reopen):
        """A create and an outside delete cancel out in the count; the entry must still go."""
        gone = make_item(ItemKind.ISSUE, "Gone")
        project.index.rebuild_index()
        os.remove(gone.file_path)

        ctx = reopen()
        added = ctx.store.create(ItemKind.ISSUE, {"title": "Added"})
        ctx.index.update_item(ItemKind.ISSUE, added.id)

        assert set(self.persisted(project)["items"]) == {added.id}

    def test_remove_with_other_hand_deletion_rebuilds(self, project, make_item, reopen):
        first = make_item(ItemKind.EPIC, "First")
        second = make_item(ItemKind.EPIC, "Second")
        make_item(ItemKind.EPIC, "Third")
        project.index.rebuild_index()
        os.remove(second.file_path)

        ctx = reopen()
        ctx.store.delete(ItemKind.EPIC, first.id)
        assert ctx.index.remove_item(ItemKind.EPIC, first.id) is True

        assert set(self.persisted(project)["items"]) == {"EP-0003"}


class TestQueries:
    """Test status/type lookups and the project overview."""

    @pytest.fixture
    def populated(self, project, make_item):
        make_item(ItemKind.EPIC, "Epic", status="active")
        make_item(ItemKind.ISSUE, "Done issue", status="completed", priority="high")
        make_item(ItemKind.ISSUE, "Old issue", created_date="2020-01-01T00:00:00+00:00",
                  updated_date="2020-01-01T00:00:00+00:00")
        make_item(ItemKind.TASK, "Task", issue_id="ISS-0001")
        project.index.rebuild_index()
        return project

    def test_items_by_type(self, populated):
        ids = [e.id for e in populated.index.get_items_by_type(ItemKind.ISSUE)]
        assert ids == ["ISS-0001", "ISS-0002"]

    def test_items_by_status(self, populated):
        assert [e.id for e in populated.index.get_items_by_status("completed")] == ["ISS-0001"]

    def test_overview(self, populated):
        overview = populated.index.get_project_overview()
        assert overview.total_items == 4
        assert overview.by_type == {"epic": 1, "issue": 2, "task": 1, "pr": 0}
        assert overview.by_priority["high"] == 1
        assert overview.completion_rate == 25
        recent_ids = {a["id"] for a in overview.recent_activity}
        assert "ISS-0002" not in recent_ids
        assert "EP-0001" in recent_ids

    def test_index_stats_healthy(self, populated):
        stats = populated.index.get_index_stats()
        assert stats.healthy is True
        assert stats.item_count == 4
        assert stats.index_size > 0
