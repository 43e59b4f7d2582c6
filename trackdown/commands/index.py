"""
atd index - Rebuild and inspect the project index.
"""

from trackdown.context import TrackdownContext


def cmd_index_rebuild(args, ctx: TrackdownContext) -> int:
    """Full rescan of every item directory."""
    snapshot = ctx.index.rebuild_index()
    stats = snapshot.stats
    print(f"Indexed {len(snapshot.items)} items in {snapshot.build_duration_ms}ms")
    print(f"  Epics:  {stats['totalEpics']}")
    print(f"  Issues: {stats['totalIssues']}")
    print(f"  Tasks:  {stats['totalTasks']}")
    print(f"  PRs:    {stats['totalPRs']}")
    if snapshot.skipped_files:
        print()
        print(f"Skipped {len(snapshot.skipped_files)} file(s) that could not be parsed:")
        for path in snapshot.skipped_files:
            print(f"  {path}")
    if snapshot.save_error:
        print()
        print(f"WARNING: index not saved: {snapshot.save_error}")
    return 0


def cmd_index_stats(args, ctx: TrackdownContext) -> int:
    """Health of the persisted index."""
    ctx.index.load_index()
    stats = ctx.index.get_index_stats()
    print(f"Index file:  {ctx.index.index_path} ({'present' if stats.index_file_exists else 'missing'})")
    print(f"Size:        {stats.index_size} bytes")
    print(f"Items:       {stats.item_count}")
    print(f"Built at:    {stats.built_at}")
    print(f"Cache hit:   {'yes' if stats.cache_hit else 'no'}")
    print(f"Healthy:     {'yes' if stats.healthy else 'no'}")
    for reason in stats.stale_reasons:
        print(f"  stale: {reason}")
    for path in stats.skipped_files:
        print(f"  skipped: {path}")
    return 0 if stats.healthy else 1


def cmd_index_overview(args, ctx: TrackdownContext) -> int:
    """Counts by type, status and priority plus recent activity."""
    overview = ctx.index.get_project_overview()
    print(f"{ctx.config.name}: {overview.total_items} items, {overview.completion_rate}% complete")
    print()
    for title, counts in (("By type", overview.by_type),
                          ("By status", overview.by_status),
                          ("By priority", overview.by_priority)):
        print(title)
        print("-" * 40)
        for key, count in sorted(counts.items()):
            print(f"  {key:<24} {count}")
        print()

    if overview.recent_activity:
        print("Recent activity (7 days)")
        print("-" * 40)
        for entry in overview.recent_activity:
            print(f"  {entry['id']:<12} {entry['kind']:<6} {entry['updated_date'][:19]}  {entry['title']}")
    return 0
