"""
atd deps - Manage PR dependency records.
"""

from trackdown.context import TrackdownContext
from trackdown.lib.errors import CycleError


def cmd_deps_add(args, ctx: TrackdownContext) -> int:
    """Record "<pr> <type> <other>"."""
    try:
        record = ctx.deps.add_dependency(args.pr, args.other, args.type,
                                         reason=args.reason or "", created_by=args.actor)
    except CycleError as e:
        print(f"ERROR: {e}")
        print(f"  Cycle: {' -> '.join(e.cycle + e.cycle[:1])}")
        return 1
    print(f"Added: {record.pr_id} {record.type} {record.dependent_pr_id}")
    return 0


def cmd_deps_remove(args, ctx: TrackdownContext) -> int:
    removed = ctx.deps.remove_dependency(args.pr, args.other, args.type)
    print(f"Removed {removed} record(s) between {args.pr} and {args.other}")
    return 0


def cmd_deps_show(args, ctx: TrackdownContext) -> int:
    """What a PR waits on and what waits on it."""
    deps = ctx.deps.get_pr_dependencies(args.pr)
    print(f"{deps.pr_id}")
    print("-" * 40)
    print(f"  Depends on:  {', '.join(deps.depends_on) or '-'}")
    print(f"  Blocked by:  {', '.join(deps.blocked_by) or '-'}")
    print(f"  Required by: {', '.join(deps.required_by) or '-'}")
    print(f"  Can merge:   {'yes' if deps.can_merge else 'no'}")
    for reason in deps.blocking_reasons:
        print(f"    {reason}")
    return 0


def cmd_deps_check(args, ctx: TrackdownContext) -> int:
    """Validate all records, or mergeability of one PR."""
    if args.pr:
        check = ctx.deps.check_mergeability(args.pr)
        if check.can_merge:
            print(f"{check.pr_id} can be merged")
            return 0
        print(f"{check.pr_id} cannot be merged:")
        for reason in check.blocking_reasons:
            print(f"  {reason}")
        return 1

    report = ctx.deps.validate_dependencies()
    if report.valid:
        print("Dependencies valid")
        return 0
    for error in report.errors:
        print(f"[ERROR] {error}")
    print()
    print("Run 'atd deps fix' to remove offending records")
    return 1


def cmd_deps_fix(args, ctx: TrackdownContext) -> int:
    fixes = ctx.deps.fix_dependency_issues()
    if not fixes:
        print("Nothing to fix")
        return 0
    for fix in fixes:
        print(f"  {fix}")
    print(f"Applied {len(fixes)} fix(es)")
    return 0
