"""
atd show / related / search / validate - Read-only views over the item graph.
"""

from trackdown.context import TrackdownContext
from trackdown.graph.relationships import (
    EpicHierarchy,
    IssueHierarchy,
    SearchFilters,
)
from trackdown.lib.types import ItemKind, parse_kind
from trackdown.store.models import Item


def _line(item: Item) -> str:
    status = item.pr_status if item.kind is ItemKind.PR else (item.state or item.status)
    title = item.title[:50] + "..." if len(item.title) > 50 else item.title
    return f"{item.id:<12} {status:<22} {item.priority:<8} {title}"


def _print_group(title: str, items: list[Item]) -> None:
    if not items:
        return
    print(f"{title} ({len(items)})")
    for item in items:
        print(f"  {_line(item)}")


def cmd_show(args, ctx: TrackdownContext) -> int:
    """Show one item with its position in the hierarchy."""
    item = ctx.graph.require_item(args.id)
    print(f"{item.id}: {item.title}")
    print("=" * 60)
    print(f"Kind:       {item.kind.label}")
    print(f"Status:     {item.status}")
    if item.state:
        print(f"State:      {item.state}")
    if item.kind is ItemKind.PR:
        print(f"PR status:  {item.pr_status}")
        if item.branch_name:
            print(f"Branch:     {item.branch_name}")
    print(f"Priority:   {item.priority}")
    print(f"Assignee:   {item.assignee}")
    print(f"Created:    {item.created_date}")
    print(f"Updated:    {item.updated_date}")
    if item.tags:
        print(f"Tags:       {', '.join(item.tags)}")
    print(f"File:       {item.file_path}")
    if item.state_metadata:
        meta = item.state_metadata
        print(f"Last move:  {meta.previous_state or '-'} -> {item.state} by {meta.transitioned_by} at {meta.transitioned_at}")
    print()

    hierarchy = ctx.graph.get_hierarchy(item.id)
    if isinstance(hierarchy, EpicHierarchy):
        _print_group("Issues", hierarchy.issues)
        _print_group("Tasks", hierarchy.tasks)
        _print_group("PRs", hierarchy.prs)
    else:
        if isinstance(hierarchy, IssueHierarchy):
            parents = [hierarchy.epic]
        else:
            parents = [hierarchy.issue, hierarchy.epic]
        for parent in parents:
            if parent is not None:
                print(f"Parent:     {_line(parent)}")
        if hierarchy.missing_parent_id:
            print(f"Parent:     {hierarchy.missing_parent_id} (missing)")
        if isinstance(hierarchy, IssueHierarchy):
            _print_group("Tasks", hierarchy.tasks)
            _print_group("PRs", hierarchy.prs)

    if args.body and item.content.strip():
        print()
        print(item.content.strip())
    return 0


def cmd_related(args, ctx: TrackdownContext) -> int:
    """Siblings, dependencies and blocking relations of one item."""
    related = ctx.graph.get_related_items(args.id)
    _print_group("Siblings", related.siblings)
    _print_group("Depends on", related.dependencies)
    _print_group("Depended on by", related.dependents)
    _print_group("Blocked by", related.blocked_by)
    _print_group("Blocks", related.blocks)
    if related.unresolved:
        print(f"Unresolved references: {', '.join(related.unresolved)}")
    if not any((related.siblings, related.dependencies, related.dependents,
                related.blocked_by, related.blocks, related.unresolved)):
        print(f"{args.id} has no related items")
    return 0


def cmd_search(args, ctx: TrackdownContext) -> int:
    """Filter items by kind, status, priority, assignee, tags, dates and text."""
    filters = SearchFilters(
        kind=parse_kind(args.type) if args.type else None,
        status=args.status,
        priority=args.priority,
        assignee=args.assignee,
        tags=args.tag,
        created_after=args.created_after,
        created_before=args.created_before,
        updated_after=args.updated_after,
        updated_before=args.updated_before,
        text=args.text,
    )
    results = ctx.graph.search(filters)
    for item in results:
        print(_line(item))
    print(f"{len(results)} item(s)")
    return 0


def cmd_validate(args, ctx: TrackdownContext) -> int:
    """Check parent links, references and dependency cycles."""
    if args.create_placeholders:
        for item in ctx.graph.create_placeholder_parents(actor=args.actor):
            print(f"Created placeholder {item.kind.value} {item.id}")
            ctx.index.update_item(item.kind, item.id)

    report = ctx.graph.validate_relationships()
    for failure in ctx.graph.get_cache_stats().failures:
        print(f"[WARN] Could not parse {failure.path}: {failure.reason}")
    for error in report.errors:
        print(f"[ERROR] {error}")
    for warning in report.warnings:
        print(f"[WARN] {warning}")

    if report.valid:
        print("All relationships valid")
        return 0
    print(f"{len(report.errors)} error(s), {len(report.warnings)} warning(s)")
    return 1
