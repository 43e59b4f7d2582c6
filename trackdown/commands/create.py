"""
atd create - Create an epic, issue, task or PR.
"""

from trackdown.context import TrackdownContext
from trackdown.lib.types import ItemKind, parse_kind


def cmd_create(args, ctx: TrackdownContext) -> int:
    """Write a new item file and index it."""
    kind = parse_kind(args.kind)

    fields = {"title": args.title}
    for name in ("description", "priority", "assignee", "status"):
        value = getattr(args, name)
        if value:
            fields[name] = value
    if args.tag:
        fields["tags"] = args.tag

    if kind is ItemKind.ISSUE and args.epic:
        fields["epic_id"] = args.epic
    if kind in (ItemKind.TASK, ItemKind.PR):
        if not args.issue:
            print(f"ERROR: a {kind.label} needs a parent issue (--issue)")
            return 1
        fields["issue_id"] = args.issue
        if args.epic:
            fields["epic_id"] = args.epic
    if kind is ItemKind.PR and args.branch:
        fields["branch_name"] = args.branch

    parent_id = fields.get("issue_id") or fields.get("epic_id")
    if parent_id and ctx.graph.get_item(parent_id) is None:
        print(f"[WARN] Parent {parent_id} does not exist yet")

    item = ctx.store.create(kind, fields, args.body or "")
    ctx.after_mutation(kind, item.id)
    print(f"Created {kind.label} {item.id}: {item.title}")
    print(f"  File: {item.file_path}")
    return 0
