"""
PR dependency records and the acyclic dependency graph.

Records live in <prs dir>/dependencies.json as a JSON array:

    [{"prId": "PR-0001", "dependentPrId": "PR-0002", "type": "depends_on",
      "reason": "...", "created": "...", "createdBy": "alice"}]

A record reads "prId <type> dependentPrId". Every record is normalized to
a waiter -> waited-on edge:
    A depends_on B, A blocked_by B    ->  A waits on B
    A blocks B,     A required_by B   ->  B waits on A

The graph of unresolved edges must stay acyclic; add_dependency checks the
graph with the new edge added before anything is written.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from trackdown.graph.cycles import build_adjacency, find_all_cycles, find_cycle
from trackdown.graph.relationships import RelationshipGraph
from trackdown.lib.config import TrackdownConfig
from trackdown.lib.errors import CycleError, NotFoundError, SchemaError, ValidationError
from trackdown.lib.fileio import atomic_write_json
from trackdown.lib.timeutil import now_iso
from trackdown.lib.types import ItemKind
from trackdown.lib.validate import validate, validate_before_write

logger = logging.getLogger(__name__)

DEPENDENCY_TYPES = ("blocks", "blocked_by", "depends_on", "required_by")

# Types where prId is the waiting side
_WAITER_IS_SOURCE = {"depends_on", "blocked_by"}


@dataclass
class PRDependency:
    """One dependency record."""
    pr_id: str
    dependent_pr_id: str
    type: str
    created: str
    created_by: str
    reason: str = ""
    resolved: bool = False
    resolved_by: Optional[str] = None

    @property
    def edge(self) -> tuple[str, str]:
        """(waiter, waited-on) pair."""
        if self.type in _WAITER_IS_SOURCE:
            return self.pr_id, self.dependent_pr_id
        return self.dependent_pr_id, self.pr_id

    def involves(self, pr_id: str) -> bool:
        return pr_id in (self.pr_id, self.dependent_pr_id)

    def to_dict(self) -> dict:
        data = {
            "prId": self.pr_id,
            "dependentPrId": self.dependent_pr_id,
            "type": self.type,
            "reason": self.reason,
            "created": self.created,
            "createdBy": self.created_by,
        }
        if self.resolved:
            data["resolved"] = True
        if self.resolved_by:
            data["resolvedBy"] = self.resolved_by
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PRDependency":
        return cls(
            pr_id=data["prId"],
            dependent_pr_id=data["dependentPrId"],
            type=data["type"],
            created=data["created"],
            created_by=data["createdBy"],
            reason=data.get("reason", ""),
            resolved=bool(data.get("resolved", False)),
            resolved_by=data.get("resolvedBy"),
        )


@dataclass
class DependencyGraph:
    """Dependency view of a single PR."""
    pr_id: str
    blocks: list[str] = field(default_factory=list)        # PRs waiting on this one
    blocked_by: list[str] = field(default_factory=list)    # Unmerged PRs this one waits on
    depends_on: list[str] = field(default_factory=list)    # Everything this one waits on
    required_by: list[str] = field(default_factory=list)   # Everything waiting on this one
    can_merge: bool = True
    blocking_reasons: list[str] = field(default_factory=list)


@dataclass
class MergeCheck:
    pr_id: str
    can_merge: bool
    blocking_reasons: list[str]


@dataclass
class DependencyReport:
    valid: bool
    cycles: list[list[str]] = field(default_factory=list)
    missing_prs: list[str] = field(default_factory=list)
    self_references: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class DependencyStore:
    """Loads, validates and mutates PR dependency records."""

    def __init__(self, config: TrackdownConfig, graph: RelationshipGraph):
        self.config = config
        self.graph = graph
        self.path = config.dependencies_path

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> list[PRDependency]:
        """Read all records. A missing file means no dependencies.

        Raises:
            SchemaError: If the file exists but is not valid
        """
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError as e:
            raise SchemaError("dependencies", f"Invalid JSON in {self.path}: {e}") from None
        validate(data, "dependencies")
        return [PRDependency.from_dict(d) for d in data]

    def _save(self, records: list[PRDependency]) -> None:
        data = [r.to_dict() for r in records]
        validate_before_write(data, "dependencies", self.path)
        atomic_write_json(self.path, data)

    # ------------------------------------------------------------------
    # Graph helpers
    # ------------------------------------------------------------------

    def _pr_status(self, pr_id: str) -> str | None:
        pr = self.graph.find(ItemKind.PR, pr_id)
        return pr.pr_status if pr else None

    def _require_pr(self, pr_id: str) -> None:
        if self.graph.find(ItemKind.PR, pr_id) is None:
            raise NotFoundError(pr_id, ItemKind.PR.value)

    @staticmethod
    def _adjacency(records: list[PRDependency]) -> dict[str, list[str]]:
        return build_adjacency(r.edge for r in records if not r.resolved)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_dependency(self, pr_id: str, other_pr_id: str, dep_type: str,
                       reason: str = "", created_by: str = "system") -> PRDependency:
        """Record "pr_id <dep_type> other_pr_id".

        Raises:
            NotFoundError: Either PR does not exist
            ValidationError: Bad type, self reference or duplicate
            CycleError: The edge would close a cycle; nothing is written
        """
        if dep_type not in DEPENDENCY_TYPES:
            raise ValidationError(
                f"Unknown dependency type '{dep_type}'", field="type", allowed=list(DEPENDENCY_TYPES)
            )
        if pr_id == other_pr_id:
            raise ValidationError(f"{pr_id} cannot depend on itself", item_id=pr_id, field="dependentPrId")
        self._require_pr(pr_id)
        self._require_pr(other_pr_id)

        records = self.load()
        record = PRDependency(
            pr_id=pr_id,
            dependent_pr_id=other_pr_id,
            type=dep_type,
            created=now_iso(),
            created_by=created_by,
            reason=reason,
        )

        for existing in records:
            if not existing.resolved and existing.edge == record.edge:
                raise ValidationError(
                    f"Dependency already exists: {existing.pr_id} {existing.type} {existing.dependent_pr_id}",
                    item_id=pr_id,
                    field="dependencies",
                )

        cycle = find_cycle(self._adjacency(records + [record]))
        if cycle:
            logger.warning(f"[DEPS] Rejected {pr_id} {dep_type} {other_pr_id}: cycle {cycle}")
            raise CycleError(cycle)

        for candidate in (pr_id, other_pr_id):
            if self._pr_status(candidate) == "merged":
                logger.warning(f"[DEPS] {candidate} is already merged; dependency has no effect on merging")

        records.append(record)
        self._save(records)
        logger.info(f"[DEPS] Added {pr_id} {dep_type} {other_pr_id}")
        return record

    def remove_dependency(self, pr_id: str, other_pr_id: str, dep_type: str = None) -> int:
        """Remove records between two PRs (either direction).

        Args:
            dep_type: Only remove records of this type

        Returns:
            Number of records removed

        Raises:
            NotFoundError: No matching record
        """
        records = self.load()
        keep = []
        removed = 0
        for r in records:
            same_pair = {r.pr_id, r.dependent_pr_id} == {pr_id, other_pr_id}
            if same_pair and (dep_type is None or r.type == dep_type):
                removed += 1
            else:
                keep.append(r)

        if not removed:
            raise NotFoundError(f"{pr_id} -> {other_pr_id}", "dependency")

        self._save(keep)
        logger.info(f"[DEPS] Removed {removed} dependency record(s) between {pr_id} and {other_pr_id}")
        return removed

    def resolve_dependencies(self, merged_pr_id: str, resolved_by: str = "system") -> int:
        """Mark every record waiting on merged_pr_id as resolved.

        Returns:
            Number of records resolved
        """
        records = self.load()
        count = 0
        for r in records:
            if not r.resolved and r.edge[1] == merged_pr_id:
                r.resolved = True
                r.resolved_by = resolved_by
                count += 1
        if count:
            self._save(records)
            logger.info(f"[DEPS] Resolved {count} dependency record(s) on merged {merged_pr_id}")
        return count

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_pr_dependencies(self, pr_id: str) -> DependencyGraph:
        """Everything pr_id waits on and everything waiting on it."""
        self._require_pr(pr_id)
        result = DependencyGraph(pr_id=pr_id)

        for r in self.load():
            if r.resolved:
                continue
            waiter, waited_on = r.edge
            if waiter == pr_id and waited_on not in result.depends_on:
                result.depends_on.append(waited_on)
            elif waited_on == pr_id and waiter not in result.required_by:
                result.required_by.append(waiter)

        result.blocked_by = [p for p in result.depends_on if self._pr_status(p) != "merged"]
        result.blocks = list(result.required_by)
        result.can_merge = not result.blocked_by
        result.blocking_reasons = [
            f"Blocked by {p} ({self._pr_status(p) or 'missing'})" for p in result.blocked_by
        ]
        return result

    def check_mergeability(self, pr_id: str) -> MergeCheck:
        """A PR can merge iff nothing unmerged blocks it."""
        deps = self.get_pr_dependencies(pr_id)
        return MergeCheck(pr_id=pr_id, can_merge=deps.can_merge, blocking_reasons=deps.blocking_reasons)

    def validate_dependencies(self) -> DependencyReport:
        """Check for cycles, missing PRs and self references."""
        records = self.load()
        report = DependencyReport(valid=True)

        for r in records:
            if r.pr_id == r.dependent_pr_id and r.pr_id not in report.self_references:
                report.self_references.append(r.pr_id)
                report.errors.append(f"{r.pr_id} depends on itself")
            for ref in (r.pr_id, r.dependent_pr_id):
                if self.graph.find(ItemKind.PR, ref) is None and ref not in report.missing_prs:
                    report.missing_prs.append(ref)
                    report.errors.append(f"Dependency references missing PR {ref}")

        report.cycles = find_all_cycles(self._adjacency(records))
        for cycle in report.cycles:
            report.errors.append(f"Circular dependency: {' -> '.join(cycle + cycle[:1])}")

        report.valid = not report.errors
        return report

    def fix_dependency_issues(self) -> list[str]:
        """Drop invalid records until validate_dependencies passes.

        Removes self references and records pointing at missing PRs, then
        breaks each remaining cycle by dropping its most recently created
        record.

        Returns:
            Human-readable description of each fix
        """
        records = self.load()
        fixes = []

        kept = []
        for r in records:
            if r.pr_id == r.dependent_pr_id:
                fixes.append(f"Removed self reference on {r.pr_id}")
            elif any(self.graph.find(ItemKind.PR, ref) is None for ref in (r.pr_id, r.dependent_pr_id)):
                fixes.append(f"Removed {r.pr_id} {r.type} {r.dependent_pr_id} (missing PR)")
            else:
                kept.append(r)

        while True:
            cycle = find_cycle(self._adjacency(kept))
            if not cycle:
                break
            cycle_edges = set(zip(cycle, cycle[1:] + cycle[:1]))
            in_cycle = [r for r in kept if not r.resolved and r.edge in cycle_edges]
            newest = max(in_cycle, key=lambda r: r.created)
            kept.remove(newest)
            fixes.append(
                f"Removed {newest.pr_id} {newest.type} {newest.dependent_pr_id} "
                f"to break cycle {' -> '.join(cycle + cycle[:1])}"
            )

        if fixes:
            self._save(kept)
            for fix in fixes:
                logger.info(f"[DEPS] {fix}")
        return fixes
