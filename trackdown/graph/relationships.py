"""
Relationship graph over loaded items.

Answers the questions the flat index cannot: what hangs off an epic, what an
item depends on or blocks, who its siblings are, and whether every parent
reference resolves. The cache is an explicit snapshot of the files at the
moment rebuild_cache() was called; callers rebuild after mutating files.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from trackdown.graph.cycles import build_adjacency, find_all_cycles
from trackdown.lib.errors import NotFoundError, ValidationError
from trackdown.lib.timeutil import now_iso, parse_timestamp
from trackdown.lib.types import ItemKind
from trackdown.store.items import ItemStore, LoadFailure
from trackdown.store.models import Item

logger = logging.getLogger(__name__)


@dataclass
class EpicHierarchy:
    epic: Item
    issues: list[Item]
    tasks: list[Item]
    prs: list[Item]


@dataclass
class IssueHierarchy:
    issue: Item
    epic: Optional[Item]
    tasks: list[Item]
    prs: list[Item]
    missing_parent_id: Optional[str] = None    # epic_id that does not resolve


@dataclass
class TaskHierarchy:
    task: Item
    issue: Optional[Item]
    epic: Optional[Item]
    missing_parent_id: Optional[str] = None


@dataclass
class PRHierarchy:
    pr: Item
    issue: Optional[Item]
    epic: Optional[Item]
    missing_parent_id: Optional[str] = None


@dataclass
class RelatedItems:
    siblings: list[Item] = field(default_factory=list)
    dependencies: list[Item] = field(default_factory=list)
    dependents: list[Item] = field(default_factory=list)
    blocked_by: list[Item] = field(default_factory=list)
    blocks: list[Item] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)  # Referenced ids with no item


@dataclass
class SearchFilters:
    """Criteria for RelationshipGraph.search. Unset fields match everything."""
    kind: Optional[ItemKind] = None
    status: Optional[list[str]] = None         # Matches status, state or pr_status
    priority: Optional[list[str]] = None
    assignee: Optional[str] = None
    tags: Optional[list[str]] = None           # Any of
    created_after: Optional[str] = None
    created_before: Optional[str] = None
    updated_after: Optional[str] = None
    updated_before: Optional[str] = None
    text: Optional[str] = None                 # Case-insensitive, title/description/body


@dataclass
class IntegrityReport:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    orphans: list[tuple[str, str]] = field(default_factory=list)  # (item id, missing parent id)
    cycles: list[list[str]] = field(default_factory=list)


@dataclass
class CacheStats:
    counts: dict[str, int]
    failures: list[LoadFailure]
    built_at: Optional[str]


def _by_created(items) -> list[Item]:
    return sorted(items, key=lambda i: (i.created_date or "", i.id))


class RelationshipGraph:
    """In-memory parent/child and dependency graph for one project."""

    def __init__(self, store: ItemStore):
        self.store = store
        self._items: dict[ItemKind, dict[str, Item]] = {kind: {} for kind in ItemKind}
        self._failures: list[LoadFailure] = []
        self._built_at: str | None = None

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def rebuild_cache(self) -> None:
        """Re-read every item directory into memory."""
        items: dict[ItemKind, dict[str, Item]] = {}
        failures: list[LoadFailure] = []
        for kind in ItemKind:
            loaded, failed = self.store.load_all(kind)
            items[kind] = {item.id: item for item in loaded}
            failures.extend(failed)
        self._items = items
        self._failures = failures
        self._built_at = now_iso()
        logger.debug(
            "[GRAPH] Cache rebuilt: "
            + ", ".join(f"{len(items[k])} {k.value}" for k in ItemKind)
            + (f" ({len(failures)} unreadable)" if failures else "")
        )

    def _ensure_loaded(self) -> None:
        if self._built_at is None:
            self.rebuild_cache()

    def get_cache_stats(self) -> CacheStats:
        self._ensure_loaded()
        return CacheStats(
            counts={kind.value: len(self._items[kind]) for kind in ItemKind},
            failures=list(self._failures),
            built_at=self._built_at,
        )

    # ------------------------------------------------------------------
    # Flat accessors
    # ------------------------------------------------------------------

    def _get(self, kind: ItemKind, item_id: str | None) -> Item | None:
        if not item_id:
            return None
        self._ensure_loaded()
        return self._items[kind].get(item_id)

    def _require(self, kind: ItemKind, item_id: str) -> Item:
        item = self._get(kind, item_id)
        if item is None:
            raise NotFoundError(item_id, kind.value)
        return item

    def find(self, kind: ItemKind, item_id: str | None) -> Item | None:
        """Item of a given kind, or None."""
        return self._get(kind, item_id)

    def get_item(self, item_id: str) -> Item | None:
        """Look up an id across all kinds."""
        self._ensure_loaded()
        for kind in ItemKind:
            if item_id in self._items[kind]:
                return self._items[kind][item_id]
        return None

    def require_item(self, item_id: str) -> Item:
        item = self.get_item(item_id)
        if item is None:
            raise NotFoundError(item_id)
        return item

    def all_items(self) -> list[Item]:
        self._ensure_loaded()
        return [item for kind in ItemKind for item in self._items[kind].values()]

    def get_all(self, kind: ItemKind) -> list[Item]:
        self._ensure_loaded()
        return _by_created(self._items[kind].values())

    def get_all_epics(self) -> list[Item]:
        return self.get_all(ItemKind.EPIC)

    def get_all_issues(self) -> list[Item]:
        return self.get_all(ItemKind.ISSUE)

    def get_all_tasks(self) -> list[Item]:
        return self.get_all(ItemKind.TASK)

    def get_all_prs(self) -> list[Item]:
        return self.get_all(ItemKind.PR)

    # ------------------------------------------------------------------
    # Hierarchies
    # ------------------------------------------------------------------

    def get_epic_hierarchy(self, epic_id: str) -> EpicHierarchy:
        """Epic plus its issues and every task/PR under them."""
        epic = self._require(ItemKind.EPIC, epic_id)
        issues = [i for i in self._items[ItemKind.ISSUE].values() if i.epic_id == epic_id]
        issue_ids = {i.id for i in issues}

        def under_epic(item: Item) -> bool:
            return item.epic_id == epic_id or item.issue_id in issue_ids

        return EpicHierarchy(
            epic=epic,
            issues=_by_created(issues),
            tasks=_by_created(t for t in self._items[ItemKind.TASK].values() if under_epic(t)),
            prs=_by_created(p for p in self._items[ItemKind.PR].values() if under_epic(p)),
        )

    def get_issue_hierarchy(self, issue_id: str) -> IssueHierarchy:
        """Issue plus its epic, tasks and PRs."""
        issue = self._require(ItemKind.ISSUE, issue_id)
        epic = self._get(ItemKind.EPIC, issue.epic_id)
        return IssueHierarchy(
            issue=issue,
            epic=epic,
            tasks=_by_created(t for t in self._items[ItemKind.TASK].values() if t.issue_id == issue_id),
            prs=_by_created(p for p in self._items[ItemKind.PR].values() if p.issue_id == issue_id),
            missing_parent_id=issue.epic_id if issue.epic_id and epic is None else None,
        )

    def _ancestors(self, item: Item) -> tuple[Item | None, Item | None, str | None]:
        """(issue, epic, missing parent id) for a task or PR."""
        issue = self._get(ItemKind.ISSUE, item.issue_id)
        epic_id = item.epic_id or (issue.epic_id if issue else None)
        epic = self._get(ItemKind.EPIC, epic_id)
        missing = None
        if item.issue_id and issue is None:
            missing = item.issue_id
        elif epic_id and epic is None:
            missing = epic_id
        return issue, epic, missing

    def get_task_hierarchy(self, task_id: str) -> TaskHierarchy:
        task = self._require(ItemKind.TASK, task_id)
        issue, epic, missing = self._ancestors(task)
        return TaskHierarchy(task=task, issue=issue, epic=epic, missing_parent_id=missing)

    def get_pr_hierarchy(self, pr_id: str) -> PRHierarchy:
        pr = self._require(ItemKind.PR, pr_id)
        issue, epic, missing = self._ancestors(pr)
        return PRHierarchy(pr=pr, issue=issue, epic=epic, missing_parent_id=missing)

    def get_hierarchy(self, item_id: str):
        """Dispatch to the hierarchy query matching the item's kind."""
        item = self.require_item(item_id)
        if item.kind is ItemKind.EPIC:
            return self.get_epic_hierarchy(item_id)
        if item.kind is ItemKind.ISSUE:
            return self.get_issue_hierarchy(item_id)
        if item.kind is ItemKind.TASK:
            return self.get_task_hierarchy(item_id)
        return self.get_pr_hierarchy(item_id)

    def get_children(self, item_id: str) -> list[Item]:
        """Direct children: issues of an epic, tasks and PRs of an issue."""
        item = self.require_item(item_id)
        if item.kind is ItemKind.EPIC:
            return _by_created(i for i in self._items[ItemKind.ISSUE].values() if i.epic_id == item_id)
        if item.kind is ItemKind.ISSUE:
            return _by_created(
                c for kind in (ItemKind.TASK, ItemKind.PR)
                for c in self._items[kind].values() if c.issue_id == item_id
            )
        return []

    def get_parent(self, item_id: str) -> Item | None:
        """Direct parent, or None for epics and dangling references."""
        item = self.require_item(item_id)
        if item.kind is ItemKind.ISSUE:
            return self._get(ItemKind.EPIC, item.epic_id)
        if item.kind in (ItemKind.TASK, ItemKind.PR):
            return self._get(ItemKind.ISSUE, item.issue_id)
        return None

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def get_related_items(self, item_id: str) -> RelatedItems:
        """Siblings plus dependency and blocking relations, in both directions."""
        item = self.require_item(item_id)
        result = RelatedItems()

        if item.parent_id:
            result.siblings = _by_created(
                other for other in self._items[item.kind].values()
                if other.id != item.id and other.parent_id == item.parent_id
            )

        def resolve(ids: list[str]) -> list[Item]:
            found = []
            for ref in ids:
                target = self.get_item(ref)
                if target is None:
                    if ref not in result.unresolved:
                        result.unresolved.append(ref)
                elif target not in found:
                    found.append(target)
            return found

        others = [o for o in self.all_items() if o.id != item.id]
        result.dependencies = resolve(item.dependencies)
        result.dependents = [o for o in others if item.id in o.dependencies]

        result.blocked_by = resolve(item.blocked_by)
        result.blocked_by += [o for o in others if item.id in o.blocks and o not in result.blocked_by]

        result.blocks = resolve(item.blocks)
        result.blocks += [o for o in others if item.id in o.blocked_by and o not in result.blocks]
        return result

    def search(self, filters: SearchFilters) -> list[Item]:
        """Items matching every set filter, ordered by creation date."""
        kinds = [filters.kind] if filters.kind else list(ItemKind)
        self._ensure_loaded()
        text = filters.text.lower() if filters.text else None

        def bound(value: str | None, name: str):
            if not value:
                return None
            parsed = parse_timestamp(value)
            if parsed is None:
                raise ValidationError(f"Invalid date for {name}: {value}", field=name)
            return parsed

        created_after = bound(filters.created_after, "created_after")
        created_before = bound(filters.created_before, "created_before")
        updated_after = bound(filters.updated_after, "updated_after")
        updated_before = bound(filters.updated_before, "updated_before")

        def within(value: str, after, before) -> bool:
            if after is None and before is None:
                return True
            ts = parse_timestamp(value)
            if ts is None:
                return False
            if after is not None and ts < after:
                return False
            if before is not None and ts > before:
                return False
            return True

        matches = []
        for kind in kinds:
            for item in self._items[kind].values():
                if filters.status and not ({item.status, item.state, item.pr_status} & set(filters.status)):
                    continue
                if filters.priority and item.priority not in filters.priority:
                    continue
                if filters.assignee and item.assignee != filters.assignee:
                    continue
                if filters.tags and not set(filters.tags) & set(item.tags):
                    continue
                if not within(item.created_date, created_after, created_before):
                    continue
                if not within(item.updated_date or item.created_date,
                              updated_after, updated_before):
                    continue
                if text and not any(text in s.lower() for s in (item.title, item.description, item.content)):
                    continue
                matches.append(item)
        return _by_created(matches)

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def validate_relationships(self) -> IntegrityReport:
        """Check parent references, dependency references and cycles."""
        self._ensure_loaded()
        report = IntegrityReport(valid=True)
        epics = self._items[ItemKind.EPIC]
        issues = self._items[ItemKind.ISSUE]

        for issue in issues.values():
            if issue.epic_id and issue.epic_id not in epics:
                report.errors.append(f"Issue {issue.id} references missing epic {issue.epic_id}")
                report.orphans.append((issue.id, issue.epic_id))

        for kind in (ItemKind.TASK, ItemKind.PR):
            for item in self._items[kind].values():
                parent = issues.get(item.issue_id)
                if parent is None:
                    report.errors.append(
                        f"{kind.label} {item.id} references missing issue {item.issue_id}"
                    )
                    report.orphans.append((item.id, item.issue_id))
                    continue
                if item.epic_id and parent.epic_id and item.epic_id != parent.epic_id:
                    report.warnings.append(
                        f"{kind.label} {item.id} has epic_id {item.epic_id} "
                        f"but its issue {parent.id} belongs to {parent.epic_id}"
                    )
                if item.epic_id and item.epic_id not in epics:
                    report.errors.append(f"{kind.label} {item.id} references missing epic {item.epic_id}")
                    report.orphans.append((item.id, item.epic_id))

        edges = []
        for item in self.all_items():
            for field_name in ("dependencies", "blocked_by", "blocks"):
                for ref in getattr(item, field_name):
                    if self.get_item(ref) is None:
                        report.warnings.append(f"{item.id} {field_name} references unknown item {ref}")
                    elif field_name == "blocks":
                        edges.append((ref, item.id))
                    else:
                        edges.append((item.id, ref))

        report.cycles = find_all_cycles(build_adjacency(edges))
        for cycle in report.cycles:
            report.errors.append(f"Circular dependency: {' -> '.join(cycle + cycle[:1])}")

        report.valid = not report.errors
        if not report.valid:
            logger.info(f"[GRAPH] Relationship check found {len(report.errors)} error(s)")
        return report

    def create_placeholder_parents(self, actor: str = "system") -> list[Item]:
        """Write placeholder epics/issues for every dangling parent reference.

        Returns:
            The items created. The cache is rebuilt when anything was written.
        """
        self._ensure_loaded()
        created: list[Item] = []
        now = now_iso()

        missing_issues: dict[str, Item] = {}
        for kind in (ItemKind.TASK, ItemKind.PR):
            for item in self._items[kind].values():
                if item.issue_id and item.issue_id not in self._items[ItemKind.ISSUE]:
                    missing_issues.setdefault(item.issue_id, item)

        missing_epics: dict[str, str] = {}
        for item in list(self._items[ItemKind.ISSUE].values()) + list(missing_issues.values()):
            if item.epic_id and item.epic_id not in self._items[ItemKind.EPIC]:
                missing_epics.setdefault(item.epic_id, item.id)

        for epic_id, referrer in missing_epics.items():
            created.append(self._write_placeholder(ItemKind.EPIC, epic_id, referrer, actor, now))

        for issue_id, referrer in missing_issues.items():
            created.append(self._write_placeholder(
                ItemKind.ISSUE, issue_id, referrer.id, actor, now, epic_id=referrer.epic_id
            ))

        if created:
            self.rebuild_cache()
        return created

    def _write_placeholder(self, kind: ItemKind, item_id: str, referrer: str, actor: str,
                           now: str, epic_id: str = None) -> Item:
        item = Item(
            kind=kind,
            id=item_id,
            title=f"Placeholder for {item_id}",
            status="planning",
            assignee=self.store.config.default_assignee,
            created_date=now,
            updated_date=now,
            description=f"Created by {actor} because {referrer} references {item_id}.",
            epic_id=epic_id if kind is ItemKind.ISSUE else None,
            tags=["placeholder"],
        )
        self.store.write(item)
        logger.warning(f"[GRAPH] Materialized placeholder {kind.value} {item_id} (referenced by {referrer})")
        return item
