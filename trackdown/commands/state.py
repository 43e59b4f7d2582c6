"""
atd state - Unified state transitions, legacy migration and PR status.
"""

from trackdown.context import TrackdownContext
from trackdown.lib.errors import NotFoundError
from trackdown.lib.types import ItemKind, parse_kind
from trackdown.workflow.migration import (
    create_rollback_plan,
    migrate_store,
    preview_migration,
    validate_migration,
)
from trackdown.workflow.pr_status import get_allowed_pr_transitions, transition_pr_status
from trackdown.workflow.states import (
    MANUAL_TRANSITIONS,
    get_allowed_transitions,
    get_effective_state,
    parse_state,
    transition_state,
)


def cmd_state_allowed(args, ctx: TrackdownContext) -> int:
    """List moves available from a state name or an item's current state."""
    if parse_state(args.target) is not None:
        current = args.target
    else:
        current = get_effective_state(ctx.graph.require_item(args.target))

    allowed = get_allowed_transitions(current)
    print(f"From {current}:")
    if not allowed:
        print("  (none)")
    for dest in allowed:
        manual = " (manual)" if (current, dest) in MANUAL_TRANSITIONS else ""
        print(f"  -> {dest}{manual}")
    return 0


def cmd_state_transition(args, ctx: TrackdownContext) -> int:
    """Move an item to a new unified state and write it back."""
    item = ctx.graph.require_item(args.id)
    result = transition_state(item, args.state, args.actor, reason=args.reason,
                              reviewer=args.reviewer)
    for warning in result.warnings:
        print(f"[WARN] {warning}")
    if not result.success:
        for error in result.errors:
            print(f"ERROR: {error}")
        allowed = get_allowed_transitions(get_effective_state(item))
        print(f"  Allowed from {get_effective_state(item)}: {', '.join(allowed) or '(none)'}")
        return 1

    ctx.store.save(result.item, stamp=False)
    ctx.after_mutation(item.kind, item.id)
    print(f"{item.id}: {get_effective_state(item)} -> {result.item.state}")
    return 0


def cmd_state_pr(args, ctx: TrackdownContext) -> int:
    """Change a PR's status, resolving dependencies on merge."""
    pr = ctx.graph.find(ItemKind.PR, args.id)
    if pr is None:
        raise NotFoundError(args.id, ItemKind.PR.value)

    blocked_by = ctx.deps.get_pr_dependencies(pr.id).blocked_by
    result = transition_pr_status(pr, args.status, args.actor, blocked_by=blocked_by)
    for warning in result.warnings:
        print(f"[WARN] {warning}")
    if not result.success:
        for error in result.errors:
            print(f"ERROR: {error}")
        allowed = get_allowed_pr_transitions(pr.pr_status or "draft")
        print(f"  Allowed from {pr.pr_status}: {', '.join(allowed) or '(none)'}")
        return 1

    ctx.store.save(result.item, stamp=False)
    if result.item.pr_status == "merged":
        resolved = ctx.deps.resolve_dependencies(pr.id, resolved_by=args.actor)
        if resolved:
            print(f"Resolved {resolved} dependency record(s) waiting on {pr.id}")
    ctx.after_mutation(ItemKind.PR, pr.id)
    print(f"{pr.id}: {pr.pr_status} -> {result.item.pr_status}")

    synced = ctx.after_pr_status_change(pr.id)
    if synced is not None:
        for detail in synced.details:
            print(f"  {detail}")
    return 0


def cmd_state_preview(args, ctx: TrackdownContext) -> int:
    """Show what migrate would change."""
    items = ctx.graph.all_items()
    if args.type:
        kind = parse_kind(args.type)
        items = [i for i in items if i.kind is kind]
    preview = preview_migration(items)
    if not preview:
        print("All items already carry a unified state")
        return 0
    for entry in preview:
        target = entry["new_state"] or f"ERROR: {entry['error']}"
        print(f"  {entry['item_id']:<12} {entry['item_type']:<6} {entry['old_status']:<12} -> {target}")
    print(f"{len(preview)} item(s) to migrate")
    return 0


def cmd_state_migrate(args, ctx: TrackdownContext) -> int:
    """Add unified state fields to every item that lacks them."""
    kinds = [parse_kind(args.type)] if args.type else None
    result = migrate_store(ctx.store, actor=args.actor, dry_run=args.dry_run, kinds=kinds)

    prefix = "Would migrate" if args.dry_run else "Migrated"
    print(f"{prefix} {result.migrated_count} item(s); "
          f"{result.skipped_count} already migrated, {result.failed_count} failed")
    for error in result.errors:
        print(f"  [ERROR] {error}")

    if not args.dry_run and result.migrated_count:
        print(create_rollback_plan(result.migration_log).summary)
        ctx.index.rebuild_index()
        ctx.graph.rebuild_cache()
        problems = validate_migration(ctx.graph.all_items())
        for problem in problems:
            print(f"  [WARN] {problem}")

    return 0 if result.success else 1
