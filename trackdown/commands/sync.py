"""
atd sync - Reconcile PR status with linked task status.
"""

from trackdown.context import TrackdownContext
from trackdown.sync.reconciler import SyncOptions


def cmd_sync_status(args, ctx: TrackdownContext) -> int:
    """Per-pair comparison without changing anything."""
    mappings = ctx.reconciler.analyze(args.pr)
    if not mappings:
        print("No PR/task pairs found")
        return 0

    for m in mappings:
        if m.conflict:
            marker = "CONFLICT"
        elif m.sync_required:
            marker = m.sync_direction
        elif m.blocked_reasons:
            marker = "blocked"
        else:
            marker = "in sync"
        print(f"  {m.pr_id:<10} {m.pr_status:<9} {m.task_id:<10} {m.task_status:<10} {marker}")
        for reason in m.conflict_reasons + m.blocked_reasons:
            print(f"      {reason}")

    status = ctx.reconciler.status(args.pr)
    print()
    print(f"{status.total_pairs} pair(s): {status.in_sync} in sync, {status.out_of_sync} out of sync, "
          f"{status.conflicts} conflict(s), {status.blocked} blocked")
    return 0


def cmd_sync_run(args, ctx: TrackdownContext) -> int:
    """Apply every required status change."""
    options = SyncOptions(
        direction=args.direction,
        dry_run=args.dry_run,
        force=args.force,
        sync_assignees=args.assignees,
        sync_timestamps=args.timestamps,
        auto_complete=args.auto_complete,
        actor=args.actor,
    )
    result = ctx.reconciler.sync(options, pr_id=args.pr)

    for detail in result.details:
        print(f"  {detail}")
    for error in result.errors:
        print(f"  [ERROR] {error}")

    print()
    verb = "Would update" if result.dry_run else "Updated"
    print(f"{verb} {len(result.updated_tasks)} task(s) and {len(result.updated_prs)} PR(s); "
          f"{len(result.completed_tasks)} task(s) completed")
    if result.conflicts:
        print(f"{len(result.conflicts)} conflict(s) left unresolved; rerun with --force to favour the PR")
    return 0 if result.success else 1
