"""
atd delete - Remove an item file.
"""

from trackdown.context import TrackdownContext


def cmd_delete(args, ctx: TrackdownContext) -> int:
    """Delete one item. Refuses when it still has children unless --force."""
    item = ctx.graph.require_item(args.id)
    children = ctx.graph.get_children(item.id)
    if children and not args.force:
        print(f"ERROR: {item.id} has {len(children)} child item(s): {', '.join(c.id for c in children)}")
        print("  Use --force to delete anyway; children will be reported as orphans")
        return 1

    path = ctx.store.delete(item.kind, item.id)
    ctx.after_mutation(item.kind, item.id)
    print(f"Deleted {item.kind.label} {item.id} ({path.name})")
    return 0
