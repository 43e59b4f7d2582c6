"""
atd init - Create a trackdown project in the current (or given) directory.
"""

from pathlib import Path

from trackdown.lib.config import CONFIG_DIR, CONFIG_FILE
from trackdown.context import TrackdownContext


def cmd_init(args) -> int:
    """Write .ai-trackdown/config.yaml and the item directories."""
    root = Path(args.path or Path.cwd()).resolve()
    if (root / CONFIG_DIR / CONFIG_FILE).exists() and not args.force:
        print(f"ERROR: {root} is already a trackdown project (use --force to rewrite the config)")
        return 1

    overrides = {}
    if args.tasks_dir:
        overrides["tasks_directory"] = args.tasks_dir
    if args.assignee:
        overrides["default_assignee"] = args.assignee

    ctx = TrackdownContext.create(root, args.name, **overrides)
    config = ctx.config
    print(f"Initialized project '{config.name}'")
    print(f"  Config:  {config.config_path}")
    print(f"  Items:   {config.tasks_root}")
    print()
    print("Next: create items under the epics/issues/tasks/prs directories, then 'atd index rebuild'")
    return 0
