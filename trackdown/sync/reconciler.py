"""
PR <-> task status reconciliation.

A PR and the tasks it closes should agree on where the work is:

    PR status               task status
    draft                   planning
    open/review/approved    active
    merged                  completed
    closed                  archived

When they disagree, the side with the newer updated_date wins. Equal
timestamps with different values are a conflict that only --force
resolves (in the PR's favour). A change is only applied if the allow table
for the PR's status permits it, and, for tasks carrying a unified state,
if the state machine does too.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Optional

from trackdown.graph.relationships import RelationshipGraph
from trackdown.index.engine import IndexEngine
from trackdown.lib.errors import ConflictError, NotFoundError, TrackdownError
from trackdown.lib.timeutil import parse_timestamp
from trackdown.lib.types import ItemKind
from trackdown.store.items import ItemStore
from trackdown.store.models import Item
from trackdown.workflow.pr_status import validate_merge, validate_pr_transition
from trackdown.workflow.states import map_legacy_status, transition_state, validate_transition

logger = logging.getLogger(__name__)

PR_TO_TASK = {
    "draft": "planning",
    "open": "active",
    "review": "active",
    "approved": "active",
    "merged": "completed",
    "closed": "archived",
}

TASK_TO_PR = {
    "planning": "draft",
    "active": "open",
    "completed": "merged",
    "archived": "closed",
}

# Task statuses a PR in a given status may sync to or from
ALLOWED_TASK_STATUSES = {
    "draft": ["planning", "active"],
    "open": ["active"],
    "review": ["active"],
    "approved": ["active", "completed"],
    "merged": ["completed"],
    "closed": ["archived"],
}

# Flat task statuses and unified states, folded onto the four legacy statuses
_TO_LEGACY = {
    "todo": "planning",
    "in-progress": "active",
    "blocked": "active",
    "done": "completed",
    "ready_for_engineering": "active",
    "ready_for_qa": "active",
    "ready_for_deployment": "active",
    "won_t_do": "archived",
}

PR_TO_TASK_DIRECTION = "pr-to-task"
TASK_TO_PR_DIRECTION = "task-to-pr"
BIDIRECTIONAL = "bidirectional"
DIRECTIONS = (PR_TO_TASK_DIRECTION, TASK_TO_PR_DIRECTION, BIDIRECTIONAL)


@dataclass
class SyncOptions:
    direction: str = BIDIRECTIONAL
    dry_run: bool = False
    force: bool = False
    sync_assignees: bool = False
    sync_timestamps: bool = False              # Copy the winner's updated_date instead of stamping now
    auto_complete: bool = False                # Merged PRs complete their tasks regardless of timestamps
    actor: str = "pr-sync"


@dataclass
class SyncMapping:
    """Comparison of one (PR, task) pair and the change it calls for."""
    pr_id: str
    task_id: str
    issue_id: Optional[str]
    pr_status: str
    task_status: str                           # Folded onto planning/active/completed/archived
    pr_assignee: str
    task_assignee: str
    pr_updated: str
    task_updated: str
    sync_required: bool = False
    sync_direction: str = "none"               # none | pr-to-task | task-to-pr | conflict
    proposed_task_status: Optional[str] = None
    proposed_pr_status: Optional[str] = None
    proposed_assignee: Optional[str] = None
    forced: bool = False
    conflict_reasons: list[str] = field(default_factory=list)
    blocked_reasons: list[str] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return self.sync_direction == "none" and not self.blocked_reasons

    @property
    def conflict(self) -> bool:
        return self.sync_direction == "conflict"


@dataclass
class SyncResult:
    success: bool = True
    dry_run: bool = False
    mappings: list[SyncMapping] = field(default_factory=list)
    updated_tasks: list[str] = field(default_factory=list)
    updated_prs: list[str] = field(default_factory=list)
    completed_tasks: list[str] = field(default_factory=list)
    conflicts: list[ConflictError] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    details: list[str] = field(default_factory=list)


@dataclass
class SyncStatus:
    total_pairs: int
    in_sync: int
    out_of_sync: int
    conflicts: int
    blocked: int


def task_sync_status(task: Item) -> str:
    """A task's status folded onto planning/active/completed/archived."""
    value = task.state or task.status
    return _TO_LEGACY.get(value, value)


class Reconciler:
    """Keeps PR and linked task statuses aligned."""

    def __init__(self, store: ItemStore, graph: RelationshipGraph, index: IndexEngine | None = None):
        self.store = store
        self.graph = graph
        self.index = index

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def linked_tasks(self, pr: Item) -> list[Item]:
        """Tasks a PR closes: its related_tasks, else tasks of the same issue."""
        if pr.related_tasks:
            tasks = []
            for task_id in pr.related_tasks:
                task = self.graph.find(ItemKind.TASK, task_id)
                if task is None:
                    logger.warning(f"[SYNC] {pr.id} lists unknown task {task_id}")
                else:
                    tasks.append(task)
            return tasks
        if not pr.issue_id:
            return []
        return [t for t in self.graph.get_all_tasks() if t.issue_id == pr.issue_id]

    def analyze_pair(self, pr: Item, task: Item, options: SyncOptions = None) -> SyncMapping:
        """Work out whether and how a (PR, task) pair should be synced."""
        options = options or SyncOptions()
        pr_status = pr.pr_status or "draft"
        task_status = task_sync_status(task)
        mapping = SyncMapping(
            pr_id=pr.id,
            task_id=task.id,
            issue_id=pr.issue_id,
            pr_status=pr_status,
            task_status=task_status,
            pr_assignee=pr.assignee,
            task_assignee=task.assignee,
            pr_updated=pr.updated_date,
            task_updated=task.updated_date,
        )

        if pr_status not in PR_TO_TASK:
            mapping.blocked_reasons.append(f"Unknown PR status '{pr_status}'")
            return mapping

        status_differs = PR_TO_TASK[pr_status] != task_status
        assignee_differs = options.sync_assignees and pr.assignee != task.assignee
        if not status_differs and not assignee_differs:
            return mapping

        if options.auto_complete and pr_status == "merged" and task_status != "completed":
            direction = PR_TO_TASK_DIRECTION
        else:
            pr_ts = parse_timestamp(pr.updated_date)
            task_ts = parse_timestamp(task.updated_date)
            if pr_ts == task_ts:
                if status_differs:
                    mapping.conflict_reasons.append("Same timestamp but different status")
                if assignee_differs:
                    mapping.conflict_reasons.append("Same timestamp but different assignee")
                if not options.force:
                    mapping.sync_direction = "conflict"
                    return mapping
                mapping.forced = True
                direction = PR_TO_TASK_DIRECTION
            elif task_ts is None or (pr_ts is not None and pr_ts > task_ts):
                direction = PR_TO_TASK_DIRECTION
            else:
                direction = TASK_TO_PR_DIRECTION

        if options.direction != BIDIRECTIONAL and options.direction != direction:
            mapping.blocked_reasons.append(f"Needs {direction} sync but direction is {options.direction}")
            return mapping

        mapping.sync_direction = direction
        if direction == PR_TO_TASK_DIRECTION:
            self._propose_task_change(mapping, pr, task, status_differs, assignee_differs)
        else:
            self._propose_pr_change(mapping, pr, task, status_differs, assignee_differs)

        mapping.sync_required = not mapping.blocked_reasons and (
            mapping.proposed_task_status is not None
            or mapping.proposed_pr_status is not None
            or mapping.proposed_assignee is not None
        )
        return mapping

    def _propose_task_change(self, mapping: SyncMapping, pr: Item, task: Item,
                             status_differs: bool, assignee_differs: bool) -> None:
        target = PR_TO_TASK[mapping.pr_status]
        if status_differs:
            if target not in ALLOWED_TASK_STATUSES[mapping.pr_status]:
                mapping.blocked_reasons.append(
                    f"A {mapping.pr_status} PR cannot move a task to {target}"
                )
            elif task.state:
                target_state = map_legacy_status(target)
                if target_state != task.state:
                    mapping.blocked_reasons.extend(validate_transition(task.state, target_state).errors)
            if not mapping.blocked_reasons:
                mapping.proposed_task_status = target
        if assignee_differs:
            mapping.proposed_assignee = pr.assignee

    def _propose_pr_change(self, mapping: SyncMapping, pr: Item, task: Item,
                           status_differs: bool, assignee_differs: bool) -> None:
        if status_differs:
            target = TASK_TO_PR.get(mapping.task_status)
            if target is None:
                mapping.blocked_reasons.append(f"Task status '{mapping.task_status}' has no PR equivalent")
            elif mapping.task_status not in ALLOWED_TASK_STATUSES[mapping.pr_status]:
                mapping.blocked_reasons.append(
                    f"A {mapping.pr_status} PR cannot sync from a {mapping.task_status} task"
                )
            else:
                validation = validate_pr_transition(mapping.pr_status, target)
                errors = list(validation.errors)
                if validation.valid and target == "merged":
                    errors.extend(validate_merge(pr).errors)
                mapping.blocked_reasons.extend(errors)
            if not mapping.blocked_reasons:
                mapping.proposed_pr_status = target
        if assignee_differs:
            mapping.proposed_assignee = task.assignee

    def analyze(self, pr_id: str = None, options: SyncOptions = None) -> list[SyncMapping]:
        """Mappings for every (PR, linked task) pair, or just one PR's."""
        options = options or SyncOptions()
        if pr_id:
            pr = self.graph.find(ItemKind.PR, pr_id)
            if pr is None:
                raise NotFoundError(pr_id, ItemKind.PR.value)
            prs = [pr]
        else:
            prs = self.graph.get_all_prs()

        return [self.analyze_pair(pr, task, options) for pr in prs for task in self.linked_tasks(pr)]

    def status(self, pr_id: str = None) -> SyncStatus:
        """Counts of in-sync, out-of-sync, conflicting and blocked pairs."""
        mappings = self.analyze(pr_id)
        return SyncStatus(
            total_pairs=len(mappings),
            in_sync=sum(1 for m in mappings if m.in_sync),
            out_of_sync=sum(1 for m in mappings if m.sync_required),
            conflicts=sum(1 for m in mappings if m.conflict),
            blocked=sum(1 for m in mappings if m.blocked_reasons and not m.conflict),
        )

    # ------------------------------------------------------------------
    # Applying
    # ------------------------------------------------------------------

    def sync(self, options: SyncOptions = None, pr_id: str = None) -> SyncResult:
        """Analyze and apply every required change.

        Conflicts are collected as ConflictError values, not raised, so one
        conflicting pair never stops the rest.
        """
        options = options or SyncOptions()
        result = SyncResult(dry_run=options.dry_run)
        result.mappings = self.analyze(pr_id, options)

        for mapping in result.mappings:
            pr = self.graph.find(ItemKind.PR, mapping.pr_id)
            task = self.graph.find(ItemKind.TASK, mapping.task_id)
            if mapping.conflict:
                result.conflicts.append(self._conflict(pr, task, mapping))
                result.details.append(
                    f"{mapping.pr_id} <-> {mapping.task_id}: conflict ({'; '.join(mapping.conflict_reasons)})"
                )
                continue
            if mapping.blocked_reasons:
                result.details.append(
                    f"{mapping.pr_id} <-> {mapping.task_id}: skipped ({'; '.join(mapping.blocked_reasons)})"
                )
                continue
            if not mapping.sync_required:
                continue
            try:
                self._apply(mapping, pr, task, options, result)
            except (OSError, TrackdownError) as e:
                result.errors.append(f"{mapping.pr_id} <-> {mapping.task_id}: {e}")
                logger.warning(f"[SYNC] Failed to sync {mapping.pr_id} <-> {mapping.task_id}: {e}")

        if not options.dry_run and (result.updated_tasks or result.updated_prs):
            self.graph.rebuild_cache()

        result.success = not result.errors and not result.conflicts
        return result

    def sync_pair(self, pr_id: str, task_id: str, force: bool = False,
                  options: SyncOptions = None) -> SyncMapping:
        """Sync one pair, raising instead of collecting problems.

        Raises:
            NotFoundError: Unknown PR or task
            ConflictError: Conflict and force is not set
        """
        options = options or SyncOptions()
        if force:
            options = dataclasses.replace(options, force=True)
        pr = self.graph.find(ItemKind.PR, pr_id)
        if pr is None:
            raise NotFoundError(pr_id, ItemKind.PR.value)
        task = self.graph.find(ItemKind.TASK, task_id)
        if task is None:
            raise NotFoundError(task_id, ItemKind.TASK.value)

        mapping = self.analyze_pair(pr, task, options)
        if mapping.conflict:
            raise self._conflict(pr, task, mapping)
        if mapping.sync_required:
            self._apply(mapping, pr, task, options, SyncResult(dry_run=options.dry_run))
            if not options.dry_run:
                self.graph.rebuild_cache()
        return mapping

    @staticmethod
    def _conflict(pr: Item, task: Item, mapping: SyncMapping) -> ConflictError:
        return ConflictError(pr.summary(), task.summary(), mapping.conflict_reasons)

    def _apply(self, mapping: SyncMapping, pr: Item, task: Item, options: SyncOptions,
               result: SyncResult) -> None:
        if mapping.sync_direction == PR_TO_TASK_DIRECTION:
            target, source, kind = task, pr, ItemKind.TASK
            fields = self._task_fields(mapping, task, options)
        else:
            target, source, kind = pr, task, ItemKind.PR
            fields = {}
            if mapping.proposed_pr_status:
                fields["pr_status"] = mapping.proposed_pr_status
            if mapping.proposed_assignee is not None:
                fields["assignee"] = mapping.proposed_assignee

        if options.sync_timestamps and source.updated_date:
            fields["updated_date"] = source.updated_date

        note = f"{mapping.pr_id} -> {mapping.task_id}" if kind is ItemKind.TASK else f"{mapping.task_id} -> {mapping.pr_id}"
        changes = ", ".join(f"{k}={v}" for k, v in fields.items() if k not in ("state_metadata", "updated_date"))
        if mapping.forced:
            logger.warning(f"[SYNC] {note}: forced override ({'; '.join(mapping.conflict_reasons)})")
            changes += " (forced override)"

        if options.dry_run:
            result.details.append(f"{note}: would set {changes}")
        else:
            self.store.update(target.file_path, fields, stamp=not options.sync_timestamps)
            if self.index is not None:
                self.index.update_item(kind, target.id)
            result.details.append(f"{note}: set {changes}")
            logger.info(f"[SYNC] {note}: set {changes}")

        if kind is ItemKind.TASK:
            result.updated_tasks.append(task.id)
            if mapping.proposed_task_status == "completed":
                result.completed_tasks.append(task.id)
        else:
            result.updated_prs.append(pr.id)

    @staticmethod
    def _task_fields(mapping: SyncMapping, task: Item, options: SyncOptions) -> dict:
        fields = {}
        if mapping.proposed_task_status:
            fields["status"] = mapping.proposed_task_status
            if task.state:
                target_state = map_legacy_status(mapping.proposed_task_status)
                if target_state != task.state:
                    moved = transition_state(
                        task, target_state, options.actor,
                        reason=f"Synced from {mapping.pr_id} ({mapping.pr_status})",
                        automation_source="pr-sync",
                    )
                    fields["state"] = moved.item.state
                    fields["state_metadata"] = moved.item.state_metadata
        if mapping.proposed_assignee is not None:
            fields["assignee"] = mapping.proposed_assignee
        return fields
