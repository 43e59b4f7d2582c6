"""
Legacy status -> unified state migration.

Items written before unified states existed only carry `status`. Migration
adds `state` and `state_metadata` without touching `status`, so it can be
rolled back by removing the two added fields.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Optional

from trackdown.lib.errors import TrackdownError
from trackdown.lib.timeutil import now_iso
from trackdown.lib.types import ItemKind
from trackdown.store.items import ItemStore
from trackdown.store.models import Item
from trackdown.workflow.states import (
    create_state_metadata,
    map_legacy_status,
    parse_state,
    validate_state_metadata,
)

logger = logging.getLogger(__name__)

MIGRATION_ACTOR = "system-migration"
MIGRATION_REASON = "Legacy status migration"


@dataclass
class MigrationOutcome:
    item: Item
    migrated: bool


@dataclass
class MigrationLogEntry:
    item_id: str
    item_type: str
    old_status: str
    new_state: Optional[str]
    timestamp: str
    success: bool
    operation: str = "add_state_fields"
    error: Optional[str] = None


@dataclass
class MigrationResult:
    success: bool
    migrated_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    errors: list[str] = field(default_factory=list)
    migration_log: list[MigrationLogEntry] = field(default_factory=list)
    items: list[Item] = field(default_factory=list)  # Resulting item values, input order


@dataclass
class RollbackOperation:
    item_id: str
    item_type: str
    operation: str                             # remove_state_fields | restore_status
    restore_status: Optional[str] = None


@dataclass
class RollbackPlan:
    operations: list[RollbackOperation]
    summary: str


class MigrationError(TrackdownError):
    """An item's legacy status has no unified equivalent."""


def needs_migration(item: Item) -> bool:
    return not item.state


def _legacy_status(item: Item) -> str:
    """The status a unified state is derived from: pr_status for PRs that have one."""
    return item.pr_status if item.kind is ItemKind.PR and item.pr_status else item.status


def _mapped_state(item: Item) -> str:
    status = _legacy_status(item)
    state = map_legacy_status(status)
    if state is None:
        raise MigrationError(f"{item.id}: unknown legacy status '{status}'")
    return state


def migrate_item(item: Item, actor: str = MIGRATION_ACTOR) -> MigrationOutcome:
    """Add state + state_metadata derived from the legacy status.

    Returns the same item object, unchanged, when it already has a state.

    Raises:
        MigrationError: If the legacy status has no mapping
    """
    if not needs_migration(item):
        return MigrationOutcome(item=item, migrated=False)

    state = _mapped_state(item)
    migrated = dataclasses.replace(
        item,
        state=state,
        state_metadata=create_state_metadata(
            transitioned_by=actor,
            automation_eligible=False,
            transition_reason=MIGRATION_REASON,
        ),
        tags=list(item.tags),
        extra=dict(item.extra),
    )
    return MigrationOutcome(item=migrated, migrated=True)


def migrate_items(items: list[Item], actor: str = MIGRATION_ACTOR) -> MigrationResult:
    """Migrate a batch. Failures are logged per item and never stop the batch."""
    result = MigrationResult(success=True)

    for item in items:
        old_status = _legacy_status(item)
        if not needs_migration(item):
            result.skipped_count += 1
            result.items.append(item)
            continue

        try:
            outcome = migrate_item(item, actor)
        except MigrationError as e:
            result.failed_count += 1
            result.errors.append(str(e))
            result.items.append(item)
            result.migration_log.append(MigrationLogEntry(
                item_id=item.id,
                item_type=item.kind.value,
                old_status=old_status,
                new_state=None,
                timestamp=now_iso(),
                success=False,
                error=str(e),
            ))
            logger.warning(f"[STATE] Migration failed: {e}")
            continue

        result.migrated_count += 1
        result.items.append(outcome.item)
        result.migration_log.append(MigrationLogEntry(
            item_id=item.id,
            item_type=item.kind.value,
            old_status=old_status,
            new_state=outcome.item.state,
            timestamp=outcome.item.state_metadata.transitioned_at,
            success=True,
        ))

    result.success = result.failed_count == 0
    logger.info(
        f"[STATE] Migrated {result.migrated_count} item(s), "
        f"{result.failed_count} failed, {result.skipped_count} already migrated"
    )
    return result


def preview_migration(items: list[Item]) -> list[dict]:
    """What migrate_items would do, without doing it."""
    preview = []
    for item in items:
        if not needs_migration(item):
            continue
        try:
            new_state = _mapped_state(item)
            error = None
        except MigrationError as e:
            new_state, error = None, str(e)
        preview.append({
            "item_id": item.id,
            "item_type": item.kind.value,
            "old_status": _legacy_status(item),
            "new_state": new_state,
            "error": error,
        })
    return preview


def validate_migration(items: list[Item]) -> list[str]:
    """Problems left after a migration; empty means every item is consistent."""
    issues = []
    for item in items:
        if needs_migration(item):
            issues.append(f"{item.id}: not migrated")
            continue
        if parse_state(item.state) is None:
            issues.append(f"{item.id}: invalid state '{item.state}'")
        for problem in validate_state_metadata(item.state_metadata):
            issues.append(f"{item.id}: {problem}")
    return issues


def create_rollback_plan(log: list[MigrationLogEntry]) -> RollbackPlan:
    """Undo operations for a migration log.

    Each successful add_state_fields entry gets a remove_state_fields
    operation; failed entries only need their status left as it was.
    """
    operations = []
    for entry in log:
        if entry.operation != "add_state_fields":
            continue
        if entry.success:
            operations.append(RollbackOperation(entry.item_id, entry.item_type, "remove_state_fields"))
        else:
            operations.append(RollbackOperation(
                entry.item_id, entry.item_type, "restore_status", restore_status=entry.old_status
            ))

    removals = sum(1 for op in operations if op.operation == "remove_state_fields")
    summary = (
        f"Rollback will remove state fields from {removals} item(s) "
        f"and restore status on {len(operations) - removals} item(s)"
    )
    return RollbackPlan(operations=operations, summary=summary)


def rollback_item(item: Item, operation: RollbackOperation) -> Item:
    """Apply one rollback operation to an item value."""
    if operation.operation == "remove_state_fields":
        return dataclasses.replace(item, state=None, state_metadata=None,
                                   tags=list(item.tags), extra=dict(item.extra))
    if operation.operation == "restore_status" and operation.restore_status:
        field_name = "pr_status" if item.kind is ItemKind.PR and item.pr_status else "status"
        return dataclasses.replace(item, **{field_name: operation.restore_status},
                                   tags=list(item.tags), extra=dict(item.extra))
    return item


def migrate_store(store: ItemStore, actor: str = MIGRATION_ACTOR, dry_run: bool = False,
                  kinds: list[ItemKind] = None) -> MigrationResult:
    """Migrate every item file in the store.

    Unparseable files are counted as failures. Each migrated item is written
    on its own; a write failure is logged against that item only.
    """
    items: list[Item] = []
    load_errors: list[str] = []
    for kind in kinds or list(ItemKind):
        loaded, failures = store.load_all(kind)
        items.extend(loaded)
        load_errors.extend(f"{f.path}: {f.reason}" for f in failures)

    result = migrate_items(items, actor)
    result.failed_count += len(load_errors)
    result.errors.extend(load_errors)

    if not dry_run:
        for entry, item in zip(_migrated_entries(result), _migrated_items(items, result)):
            try:
                store.save(item, stamp=False)
            except (OSError, TrackdownError) as e:
                entry.success = False
                entry.error = str(e)
                result.migrated_count -= 1
                result.failed_count += 1
                result.errors.append(f"{item.id}: {e}")
                logger.warning(f"[STATE] Could not write migrated {item.id}: {e}")

    result.success = result.failed_count == 0
    return result


def _migrated_entries(result: MigrationResult) -> list[MigrationLogEntry]:
    return [e for e in result.migration_log if e.success]


def _migrated_items(originals: list[Item], result: MigrationResult) -> list[Item]:
    return [new for old, new in zip(originals, result.items) if new is not old]
