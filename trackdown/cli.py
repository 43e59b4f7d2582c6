#!/usr/bin/env python3
"""atd CLI entrypoint."""

import sys
import argparse
import logging
from pathlib import Path

from trackdown.context import TrackdownContext
from trackdown.graph.dependencies import DEPENDENCY_TYPES
from trackdown.lib.errors import NotFoundError, TrackdownError
from trackdown.lib.types import ItemKind
from trackdown.sync.reconciler import DIRECTIONS, BIDIRECTIONAL
from trackdown.workflow.pr_status import PR_STATES
from trackdown.workflow.states import STATES
from trackdown.commands import init as cmd_init_module
from trackdown.commands import index as cmd_index_module
from trackdown.commands import create as cmd_create_module
from trackdown.commands import update as cmd_update_module
from trackdown.commands import delete as cmd_delete_module
from trackdown.commands import show as cmd_show_module
from trackdown.commands import deps as cmd_deps_module
from trackdown.commands import state as cmd_state_module
from trackdown.commands import sync as cmd_sync_module

logger = logging.getLogger(__name__)

KIND_CHOICES = [kind.value for kind in ItemKind]


def _default_actor() -> str:
    return Path.home().name or "cli"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='atd', description='AI-Trackdown work item CLI')
    parser.add_argument('--project-dir', '-C', help='Project directory (default: search upward from cwd)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # atd init
    p_init = subparsers.add_parser('init', help='Create a trackdown project')
    p_init.add_argument('path', nargs='?', help='Project directory (default: cwd)')
    p_init.add_argument('--name', '-n', help='Project name (default: directory name)')
    p_init.add_argument('--tasks-dir', help='Root directory for item files (default: tasks)')
    p_init.add_argument('--assignee', help='Default assignee for new items')
    p_init.add_argument('--force', action='store_true', help='Rewrite an existing config')
    p_init.set_defaults(func=cmd_init_module.cmd_init, needs_project=False)

    # atd index
    p_index = subparsers.add_parser('index', help='Project index')
    index_sub = p_index.add_subparsers(dest='index_cmd', required=True)

    p_index_rebuild = index_sub.add_parser('rebuild', help='Rescan all item files')
    p_index_rebuild.set_defaults(func=cmd_index_module.cmd_index_rebuild)

    p_index_stats = index_sub.add_parser('stats', help='Index health')
    p_index_stats.set_defaults(func=cmd_index_module.cmd_index_stats)

    p_index_overview = index_sub.add_parser('overview', help='Counts by type, status and priority')
    p_index_overview.set_defaults(func=cmd_index_module.cmd_index_overview)

    # atd create
    p_create = subparsers.add_parser('create', help='Create an epic, issue, task or PR')
    p_create.add_argument('kind', choices=KIND_CHOICES)
    p_create.add_argument('title')
    p_create.add_argument('--epic', help='Parent epic ID (issues; optional for tasks and PRs)')
    p_create.add_argument('--issue', help='Parent issue ID (required for tasks and PRs)')
    p_create.add_argument('--description', '-d')
    p_create.add_argument('--priority', '-p', choices=['low', 'medium', 'high', 'critical'])
    p_create.add_argument('--assignee', '-a')
    p_create.add_argument('--status', '-s', help='Legacy status (default: planning)')
    p_create.add_argument('--tag', action='append', help='Tag (repeatable)')
    p_create.add_argument('--branch', help='Branch name (PRs)')
    p_create.add_argument('--body', '-b', help='Markdown body')
    p_create.set_defaults(func=cmd_create_module.cmd_create)

    # atd update
    p_update = subparsers.add_parser('update', help='Change fields of an item')
    p_update.add_argument('id', help='Item ID')
    p_update.add_argument('--title')
    p_update.add_argument('--description', '-d')
    p_update.add_argument('--priority', '-p', choices=['low', 'medium', 'high', 'critical'])
    p_update.add_argument('--assignee', '-a')
    p_update.add_argument('--status', '-s')
    p_update.add_argument('--add-tag', action='append')
    p_update.add_argument('--set', action='append', metavar='FIELD=VALUE',
                          help='Any other field; lists are comma separated (repeatable)')
    p_update.set_defaults(func=cmd_update_module.cmd_update)

    # atd delete
    p_delete = subparsers.add_parser('delete', help='Remove an item file')
    p_delete.add_argument('id', help='Item ID')
    p_delete.add_argument('--force', '-f', action='store_true', help='Delete even if it has children')
    p_delete.set_defaults(func=cmd_delete_module.cmd_delete)

    # atd show
    p_show = subparsers.add_parser('show', help='Show an item and its hierarchy')
    p_show.add_argument('id', help='Item ID (e.g., ISS-0001)')
    p_show.add_argument('--body', '-b', action='store_true', help='Include the Markdown body')
    p_show.set_defaults(func=cmd_show_module.cmd_show)

    # atd related
    p_related = subparsers.add_parser('related', help='Siblings, dependencies and blockers')
    p_related.add_argument('id', help='Item ID')
    p_related.set_defaults(func=cmd_show_module.cmd_related)

    # atd search
    p_search = subparsers.add_parser('search', help='Filter items')
    p_search.add_argument('text', nargs='?', help='Text in title, description or body')
    p_search.add_argument('--type', '-t', choices=KIND_CHOICES)
    p_search.add_argument('--status', '-s', action='append', help='Status, state or PR status (repeatable)')
    p_search.add_argument('--priority', action='append', choices=['low', 'medium', 'high', 'critical'])
    p_search.add_argument('--assignee', '-a')
    p_search.add_argument('--tag', action='append', help='Match any of these tags (repeatable)')
    p_search.add_argument('--created-after')
    p_search.add_argument('--created-before')
    p_search.add_argument('--updated-after')
    p_search.add_argument('--updated-before')
    p_search.set_defaults(func=cmd_show_module.cmd_search)

    # atd validate
    p_validate = subparsers.add_parser('validate', help='Check relationships and references')
    p_validate.add_argument('--create-placeholders', action='store_true',
                            help='Write placeholder epics/issues for missing parents')
    p_validate.add_argument('--actor', default=_default_actor())
    p_validate.set_defaults(func=cmd_show_module.cmd_validate)

    # atd deps
    p_deps = subparsers.add_parser('deps', help='PR dependencies')
    deps_sub = p_deps.add_subparsers(dest='deps_cmd', required=True)

    p_deps_add = deps_sub.add_parser('add', help='Record "<pr> <type> <other>"')
    p_deps_add.add_argument('pr', help='PR ID')
    p_deps_add.add_argument('type', choices=DEPENDENCY_TYPES)
    p_deps_add.add_argument('other', help='Other PR ID')
    p_deps_add.add_argument('--reason', '-r')
    p_deps_add.add_argument('--actor', default=_default_actor())
    p_deps_add.set_defaults(func=cmd_deps_module.cmd_deps_add)

    p_deps_remove = deps_sub.add_parser('remove', help='Remove records between two PRs')
    p_deps_remove.add_argument('pr')
    p_deps_remove.add_argument('other')
    p_deps_remove.add_argument('--type', choices=DEPENDENCY_TYPES)
    p_deps_remove.set_defaults(func=cmd_deps_module.cmd_deps_remove)

    p_deps_show = deps_sub.add_parser('show', help='Dependencies of one PR')
    p_deps_show.add_argument('pr')
    p_deps_show.set_defaults(func=cmd_deps_module.cmd_deps_show)

    p_deps_check = deps_sub.add_parser('check', help='Validate records, or check one PR can merge')
    p_deps_check.add_argument('pr', nargs='?')
    p_deps_check.set_defaults(func=cmd_deps_module.cmd_deps_check)

    p_deps_fix = deps_sub.add_parser('fix', help='Remove invalid and cycle-closing records')
    p_deps_fix.set_defaults(func=cmd_deps_module.cmd_deps_fix)

    # atd state
    p_state = subparsers.add_parser('state', help='Unified state and PR status')
    state_sub = p_state.add_subparsers(dest='state_cmd', required=True)

    p_state_allowed = state_sub.add_parser('allowed', help='Moves available from a state or item')
    p_state_allowed.add_argument('target', help='State name or item ID')
    p_state_allowed.set_defaults(func=cmd_state_module.cmd_state_allowed)

    p_state_transition = state_sub.add_parser('transition', help='Move an item to a new state')
    p_state_transition.add_argument('id', help='Item ID')
    p_state_transition.add_argument('state', choices=STATES)
    p_state_transition.add_argument('--reason', '-r')
    p_state_transition.add_argument('--reviewer')
    p_state_transition.add_argument('--actor', default=_default_actor())
    p_state_transition.set_defaults(func=cmd_state_module.cmd_state_transition)

    p_state_pr = state_sub.add_parser('pr', help='Change a PR status')
    p_state_pr.add_argument('id', help='PR ID')
    p_state_pr.add_argument('status', choices=PR_STATES)
    p_state_pr.add_argument('--actor', default=_default_actor())
    p_state_pr.set_defaults(func=cmd_state_module.cmd_state_pr)

    p_state_preview = state_sub.add_parser('preview', help='Show what migrate would change')
    p_state_preview.add_argument('--type', '-t', choices=KIND_CHOICES)
    p_state_preview.set_defaults(func=cmd_state_module.cmd_state_preview)

    p_state_migrate = state_sub.add_parser('migrate', help='Add unified state to legacy items')
    p_state_migrate.add_argument('--type', '-t', choices=KIND_CHOICES)
    p_state_migrate.add_argument('--dry-run', action='store_true')
    p_state_migrate.add_argument('--actor', default='system-migration')
    p_state_migrate.set_defaults(func=cmd_state_module.cmd_state_migrate)

    # atd sync
    p_sync = subparsers.add_parser('sync', help='PR/task status reconciliation')
    sync_sub = p_sync.add_subparsers(dest='sync_cmd', required=True)

    p_sync_status = sync_sub.add_parser('status', help='Compare PRs with their tasks')
    p_sync_status.add_argument('--pr', help='Only this PR')
    p_sync_status.set_defaults(func=cmd_sync_module.cmd_sync_status)

    p_sync_run = sync_sub.add_parser('run', help='Apply required status changes')
    p_sync_run.add_argument('--pr', help='Only this PR')
    p_sync_run.add_argument('--direction', choices=DIRECTIONS, default=BIDIRECTIONAL)
    p_sync_run.add_argument('--dry-run', action='store_true')
    p_sync_run.add_argument('--force', action='store_true', help='Resolve conflicts in favour of the PR')
    p_sync_run.add_argument('--assignees', action='store_true', help='Also sync assignees')
    p_sync_run.add_argument('--timestamps', action='store_true',
                            help="Copy the winning side's updated_date instead of stamping now")
    p_sync_run.add_argument('--auto-complete', action='store_true',
                            help='Merged PRs complete their tasks regardless of timestamps')
    p_sync_run.add_argument('--actor', default='pr-sync')
    p_sync_run.set_defaults(func=cmd_sync_module.cmd_sync_run)

    return parser


def main(argv: list[str] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        if not getattr(args, 'needs_project', True):
            if args.project_dir and not args.path:
                args.path = args.project_dir
            return args.func(args)
        ctx = TrackdownContext.open(Path(args.project_dir) if args.project_dir else None)
        return args.func(args, ctx)
    except NotFoundError as e:
        print(f"ERROR: {e}")
        return 2
    except TrackdownError as e:
        print(f"ERROR: {e}")
        logger.debug("Command failed", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
