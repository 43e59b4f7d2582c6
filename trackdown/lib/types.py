"""
Shared types for trackdown.

Kept free of other trackdown imports so config, store and engines can all
depend on it without circular imports.
"""

from enum import Enum


class ItemKind(Enum):
    """The four kinds of tracked work item."""

    EPIC = "epic"
    ISSUE = "issue"
    TASK = "task"
    PR = "pr"

    @property
    def id_field(self) -> str:
        """Frontmatter key holding this kind's own id."""
        return f"{self.value}_id"

    @property
    def label(self) -> str:
        return "PR" if self is ItemKind.PR else self.value.capitalize()


def parse_kind(value) -> ItemKind:
    """Parse a kind name ("epic", "issues", "PR") into ItemKind.

    Raises:
        ValueError: If the name is not a known kind
    """
    if isinstance(value, ItemKind):
        return value
    name = str(value).strip().lower()
    if name.endswith("s"):
        name = name[:-1]
    for kind in ItemKind:
        if kind.value == name:
            return kind
    raise ValueError(f"Unknown item kind: {value}")


# Kind -> stats key used in the persisted index snapshot
STATS_KEYS = {
    ItemKind.EPIC: "totalEpics",
    ItemKind.ISSUE: "totalIssues",
    ItemKind.TASK: "totalTasks",
    ItemKind.PR: "totalPRs",
}
