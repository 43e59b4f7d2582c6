"""
atd update - Change frontmatter fields of an existing item.

State and PR status have their own commands (atd state transition / atd
state pr) so their lifecycles are enforced; they cannot be set here.
"""

from trackdown.context import TrackdownContext
from trackdown.store.models import LIST_FIELDS

LIFECYCLE_FIELDS = {"state", "state_metadata", "pr_status"}
INT_FIELDS = {"estimated_tokens", "actual_tokens"}


def _parse_assignment(text: str) -> tuple[str, object]:
    """FIELD=VALUE, with comma lists for list fields and ints for token counts."""
    name, sep, value = text.partition("=")
    name = name.strip()
    if not sep or not name:
        raise ValueError(f"Expected FIELD=VALUE, got '{text}'")
    if name in LIST_FIELDS:
        return name, [v.strip() for v in value.split(",") if v.strip()]
    if name in INT_FIELDS:
        return name, int(value)
    return name, value


def cmd_update(args, ctx: TrackdownContext) -> int:
    """Shallow-merge fields into an item and re-index it."""
    item = ctx.graph.require_item(args.id)

    fields = {}
    for name in ("title", "description", "priority", "assignee", "status"):
        value = getattr(args, name)
        if value is not None:
            fields[name] = value
    for assignment in args.set or []:
        try:
            name, value = _parse_assignment(assignment)
        except ValueError as e:
            print(f"ERROR: {e}")
            return 1
        fields[name] = value
    if args.add_tag:
        fields["tags"] = list(dict.fromkeys([*fields.get("tags", item.tags), *args.add_tag]))

    blocked = sorted(LIFECYCLE_FIELDS & fields.keys())
    if blocked:
        print(f"ERROR: {', '.join(blocked)} can only be changed with 'atd state'")
        return 1
    if not fields:
        print("Nothing to update")
        return 0

    updated = ctx.store.update(item.file_path, fields)
    ctx.after_mutation(item.kind, item.id)
    print(f"Updated {updated.id}: {', '.join(sorted(fields))}")
    return 0
