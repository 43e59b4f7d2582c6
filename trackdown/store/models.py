"""
Data models for tracked work items.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from trackdown.lib.types import ItemKind


@dataclass
class StateMetadata:
    """Audit record stamped on every unified-state change."""
    transitioned_at: str                       # ISO timestamp
    transitioned_by: str
    previous_state: Optional[str] = None
    automation_eligible: bool = False
    automation_source: Optional[str] = None
    transition_reason: Optional[str] = None
    reviewer: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "transitioned_at": self.transitioned_at,
            "transitioned_by": self.transitioned_by,
            "previous_state": self.previous_state,
            "automation_eligible": self.automation_eligible,
            "automation_source": self.automation_source,
            "transition_reason": self.transition_reason,
            "reviewer": self.reviewer,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict) -> "StateMetadata":
        return cls(
            transitioned_at=str(data.get("transitioned_at", "")),
            transitioned_by=str(data.get("transitioned_by", "")),
            previous_state=data.get("previous_state"),
            automation_eligible=bool(data.get("automation_eligible", False)),
            automation_source=data.get("automation_source"),
            transition_reason=data.get("transition_reason"),
            reviewer=data.get("reviewer"),
        )


# List-valued frontmatter fields, in the order they are written
LIST_FIELDS = (
    "tags",
    "dependencies",
    "blocked_by",
    "blocks",
    "related_issues",
    "related_tasks",
    "related_prs",
    "reviewers",
    "approvals",
)

# Scalar fields after the id/parent block, in the order they are written
SCALAR_FIELDS = (
    "title",
    "description",
    "status",
    "pr_status",
    "branch_name",
    "state",
    "priority",
    "assignee",
    "created_date",
    "updated_date",
    "estimated_tokens",
    "actual_tokens",
    "sync_status",
)

# Parent reference fields each kind may carry
PARENT_FIELDS = {
    ItemKind.EPIC: (),
    ItemKind.ISSUE: ("epic_id",),
    ItemKind.TASK: ("issue_id", "epic_id"),
    ItemKind.PR: ("issue_id", "epic_id"),
}


@dataclass
class Item:
    """A tracked work item: epic, issue, task or pull request.

    `kind` is the discriminant. Fields that do not apply to a kind stay at
    their defaults and are never written (e.g. pr_status on an epic).
    """
    kind: ItemKind
    id: str                                    # EP-0001, ISS-0001, TSK-0001, PR-0001
    title: str
    status: str                                # Legacy status
    priority: str = "medium"
    assignee: str = "unassigned"
    created_date: str = ""
    updated_date: str = ""
    description: str = ""
    state: Optional[str] = None                # Unified state, supersedes status
    state_metadata: Optional[StateMetadata] = None
    epic_id: Optional[str] = None
    issue_id: Optional[str] = None
    pr_status: Optional[str] = None
    branch_name: Optional[str] = None
    estimated_tokens: int = 0
    actual_tokens: int = 0
    sync_status: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    blocked_by: list[str] = field(default_factory=list)
    blocks: list[str] = field(default_factory=list)
    related_issues: list[str] = field(default_factory=list)
    related_tasks: list[str] = field(default_factory=list)
    related_prs: list[str] = field(default_factory=list)
    reviewers: list[str] = field(default_factory=list)
    approvals: list[str] = field(default_factory=list)
    content: str = ""                          # Markdown body
    file_path: Optional[Path] = None           # Identity within the store, not semantic data
    extra: dict = field(default_factory=dict)  # Unrecognised frontmatter keys, kept verbatim

    @property
    def parent_id(self) -> Optional[str]:
        """Direct parent: epic for issues, issue for tasks and PRs."""
        if self.kind is ItemKind.ISSUE:
            return self.epic_id
        if self.kind in (ItemKind.TASK, ItemKind.PR):
            return self.issue_id
        return None

    def to_frontmatter(self) -> dict:
        """Frontmatter dict as written to disk.

        None values and empty lists are omitted.
        """
        data = {self.kind.id_field: self.id}
        for name in PARENT_FIELDS[self.kind]:
            data[name] = getattr(self, name)
        for name in SCALAR_FIELDS:
            if name in ("pr_status", "branch_name") and self.kind is not ItemKind.PR:
                continue
            data[name] = getattr(self, name)
        if self.state_metadata is not None:
            data["state_metadata"] = self.state_metadata.to_dict()
        for name in LIST_FIELDS:
            if name in ("reviewers", "approvals") and self.kind is not ItemKind.PR:
                continue
            value = getattr(self, name)
            if value:
                data[name] = list(value)
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_frontmatter(cls, kind: ItemKind, data: dict, content: str = "",
                         file_path: Path = None) -> "Item":
        """Build an Item from a parsed frontmatter dict."""
        data = dict(data)
        known = {kind.id_field, "state_metadata", *SCALAR_FIELDS, *LIST_FIELDS, *PARENT_FIELDS[kind]}

        metadata = data.get("state_metadata")
        item = cls(
            kind=kind,
            id=str(data[kind.id_field]),
            title=str(data.get("title", "")),
            status=str(data.get("status", "")),
            priority=data.get("priority", "medium"),
            assignee=data.get("assignee", "unassigned"),
            created_date=str(data.get("created_date", "")),
            updated_date=str(data.get("updated_date", "") or ""),
            description=data.get("description") or "",
            state=data.get("state"),
            state_metadata=StateMetadata.from_dict(metadata) if isinstance(metadata, dict) else None,
            epic_id=data.get("epic_id") if "epic_id" in PARENT_FIELDS[kind] else None,
            issue_id=data.get("issue_id") if "issue_id" in PARENT_FIELDS[kind] else None,
            pr_status=data.get("pr_status") if kind is ItemKind.PR else None,
            branch_name=data.get("branch_name") if kind is ItemKind.PR else None,
            estimated_tokens=int(data.get("estimated_tokens") or 0),
            actual_tokens=int(data.get("actual_tokens") or 0),
            sync_status=data.get("sync_status"),
            content=content,
            file_path=file_path,
            extra={k: v for k, v in data.items() if k not in known},
        )
        for name in LIST_FIELDS:
            value = data.get(name) or []
            setattr(item, name, [str(v) for v in value])
        return item

    def summary(self) -> dict:
        """Small dict used in logs, conflict reports and CLI output."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "title": self.title,
            "status": self.pr_status if self.kind is ItemKind.PR else self.status,
            "state": self.state,
            "assignee": self.assignee,
            "updated_date": self.updated_date,
        }
