"""
Derived index over the item file tree.

The index is a cache: a JSON snapshot of one summary entry per item plus
per-kind counts, persisted to <tasks root>/.ai-trackdown-index so read-heavy
commands avoid re-parsing every file. The files remain the source of truth;
whenever the snapshot may disagree with them it is rebuilt.

Usage:
    engine = IndexEngine(config, store)
    snapshot = engine.load_index()          # rebuilds if missing or stale
    engine.update_item(ItemKind.TASK, "TSK-0007")   # after a single write
"""

import json
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from trackdown.lib.config import TrackdownConfig
from trackdown.lib.errors import ParseError, SchemaError
from trackdown.lib.fileio import atomic_write_json
from trackdown.lib.timeutil import now_iso, parse_timestamp
from trackdown.lib.types import STATS_KEYS, ItemKind
from trackdown.lib.validate import validate, validate_before_write
from trackdown.store.items import ItemStore
from trackdown.store.models import Item

logger = logging.getLogger(__name__)

INDEX_VERSION = "1.0.0"

# Statuses/states that count as finished work in the completion rate
COMPLETED_VALUES = {"completed", "done", "merged"}

RECENT_ACTIVITY_DAYS = 7
RECENT_ACTIVITY_LIMIT = 10


@dataclass
class IndexEntry:
    """Summary of one item, as held in the index."""
    id: str
    kind: ItemKind
    title: str
    status: str
    file_path: str
    state: Optional[str] = None
    priority: str = "medium"
    assignee: str = "unassigned"
    last_modified: float = 0.0
    file_size: int = 0
    epic_id: Optional[str] = None
    issue_id: Optional[str] = None
    pr_status: Optional[str] = None
    created_date: str = ""
    updated_date: str = ""
    dependencies: list[str] = field(default_factory=list)
    blocked_by: list[str] = field(default_factory=list)
    blocks: list[str] = field(default_factory=list)
    related_tasks: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    @classmethod
    def from_item(cls, item: Item) -> "IndexEntry":
        path = Path(item.file_path)
        stat = path.stat()
        return cls(
            id=item.id,
            kind=item.kind,
            title=item.title,
            status=item.status,
            file_path=str(path),
            state=item.state,
            priority=item.priority,
            assignee=item.assignee,
            last_modified=stat.st_mtime,
            file_size=stat.st_size,
            epic_id=item.epic_id,
            issue_id=item.issue_id,
            pr_status=item.pr_status,
            created_date=item.created_date,
            updated_date=item.updated_date,
            dependencies=list(item.dependencies),
            blocked_by=list(item.blocked_by),
            blocks=list(item.blocks),
            related_tasks=list(item.related_tasks),
            tags=list(item.tags),
        )

    def matches_status(self, status: str) -> bool:
        """True if status equals the legacy status, unified state or PR status."""
        return status in (self.status, self.state, self.pr_status)

    def is_completed(self) -> bool:
        return bool({self.status, self.state, self.pr_status} & COMPLETED_VALUES)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "title": self.title,
            "status": self.status,
            "state": self.state,
            "priority": self.priority,
            "assignee": self.assignee,
            "filePath": self.file_path,
            "lastModified": self.last_modified,
            "fileSize": self.file_size,
            "epicId": self.epic_id,
            "issueId": self.issue_id,
            "prStatus": self.pr_status,
            "createdDate": self.created_date,
            "updatedDate": self.updated_date,
            "dependencies": self.dependencies,
            "blockedBy": self.blocked_by,
            "blocks": self.blocks,
            "relatedTasks": self.related_tasks,
            "tags": self.tags,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IndexEntry":
        return cls(
            id=data["id"],
            kind=ItemKind(data["kind"]),
            title=data["title"],
            status=data["status"],
            file_path=data["filePath"],
            state=data.get("state"),
            priority=data.get("priority", "medium"),
            assignee=data.get("assignee", "unassigned"),
            last_modified=data.get("lastModified", 0.0),
            file_size=data.get("fileSize", 0),
            epic_id=data.get("epicId"),
            issue_id=data.get("issueId"),
            pr_status=data.get("prStatus"),
            created_date=data.get("createdDate", ""),
            updated_date=data.get("updatedDate", ""),
            dependencies=data.get("dependencies", []),
            blocked_by=data.get("blockedBy", []),
            blocks=data.get("blocks", []),
            related_tasks=data.get("relatedTasks", []),
            tags=data.get("tags", []),
        )


@dataclass
class IndexSnapshot:
    """In-memory form of the persisted index."""
    items: dict[str, IndexEntry]
    built_at: str
    file_counts: dict[str, int]                # Directory listing counts per kind, malformed included
    skipped_files: list[str] = field(default_factory=list)
    last_full_scan: str = ""
    build_duration_ms: float = 0.0
    project_path: str = ""
    version: str = INDEX_VERSION
    save_error: Optional[str] = None           # Set when persisting failed; never written

    def count(self, kind: ItemKind) -> int:
        return sum(1 for e in self.items.values() if e.kind is kind)

    @property
    def stats(self) -> dict:
        stats = {STATS_KEYS[kind]: self.count(kind) for kind in ItemKind}
        stats.update({
            "fileCounts": dict(self.file_counts),
            "skippedFiles": list(self.skipped_files),
            "lastFullScan": self.last_full_scan,
            "indexSize": len(self.items),
            "buildDurationMs": self.build_duration_ms,
        })
        return stats

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "builtAt": self.built_at,
            "projectPath": self.project_path,
            "items": {item_id: entry.to_dict() for item_id, entry in self.items.items()},
            "stats": self.stats,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IndexSnapshot":
        stats = data["stats"]
        return cls(
            items={item_id: IndexEntry.from_dict(e) for item_id, e in data["items"].items()},
            built_at=data["builtAt"],
            file_counts=dict(stats["fileCounts"]),
            skipped_files=list(stats.get("skippedFiles", [])),
            last_full_scan=stats.get("lastFullScan", ""),
            build_duration_ms=stats.get("buildDurationMs", 0.0),
            project_path=data.get("projectPath", ""),
            version=data["version"],
        )


@dataclass
class ProjectOverview:
    """Aggregate counts for dashboards."""
    total_items: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    by_type: dict[str, int]
    completion_rate: int                       # Percent, rounded
    recent_activity: list[dict]


@dataclass
class IndexStats:
    """Health report for the persisted index."""
    index_size: int                            # Bytes on disk, 0 if missing
    item_count: int
    built_at: str
    healthy: bool
    cache_hit: bool                            # Last load served from disk without rebuild
    index_file_exists: bool
    stale_reasons: list[str] = field(default_factory=list)
    skipped_files: list[str] = field(default_factory=list)


class IndexEngine:
    """Builds, persists and queries the index snapshot for one project."""

    def __init__(self, config: TrackdownConfig, store: ItemStore):
        self.config = config
        self.store = store
        self.index_path = config.index_path
        self._snapshot: IndexSnapshot | None = None
        self._cache_hit = False

    # ------------------------------------------------------------------
    # Build / load / persist
    # ------------------------------------------------------------------

    def rebuild_index(self, progress: Callable[[int, int], None] | None = None) -> IndexSnapshot:
        """Full scan of all item directories.

        Files that fail to parse are logged and left out. The snapshot is
        persisted; a failed save is recorded on the snapshot but the
        in-memory result stays usable.

        Args:
            progress: Optional callback(done, total) after each file
        """
        started = time.monotonic()
        # Stamp before scanning so files touched mid-scan read as newer
        built_at = now_iso()

        files = [(kind, path) for kind in ItemKind for path in self.store.list_files(kind)]
        total = len(files)
        items: dict[str, IndexEntry] = {}
        skipped: list[str] = []
        file_counts = {kind.value: 0 for kind in ItemKind}

        for done, (kind, path) in enumerate(files, 1):
            file_counts[kind.value] += 1
            try:
                item = self.store.parse(kind, path)
                entry = IndexEntry.from_item(item)
            except ParseError as e:
                logger.warning(f"[INDEX] Skipping malformed file {path}: {e.reason}")
                skipped.append(str(path))
            except OSError as e:
                logger.warning(f"[INDEX] Skipping unreadable file {path}: {e}")
                skipped.append(str(path))
            else:
                if entry.id in items:
                    logger.warning(
                        f"[INDEX] Duplicate id {entry.id} in {path}, keeping {items[entry.id].file_path}"
                    )
                    skipped.append(str(path))
                else:
                    items[entry.id] = entry
            if progress:
                progress(done, total)

        snapshot = IndexSnapshot(
            items=items,
            built_at=built_at,
            file_counts=file_counts,
            skipped_files=skipped,
            last_full_scan=built_at,
            build_duration_ms=round((time.monotonic() - started) * 1000, 2),
            project_path=str(self.config.project_root),
        )
        logger.info(
            f"[INDEX] Rebuilt index: {len(items)} items from {total} files "
            f"({len(skipped)} skipped) in {snapshot.build_duration_ms}ms"
        )

        self._snapshot = snapshot
        self._cache_hit = False
        self._save(snapshot)
        return snapshot

    def _save(self, snapshot: IndexSnapshot) -> None:
        """Persist snapshot. Errors are recorded, not raised."""
        data = snapshot.to_dict()
        try:
            validate_before_write(data, "index", self.index_path)
            atomic_write_json(self.index_path, data)
            snapshot.save_error = None
        except (OSError, SchemaError) as e:
            snapshot.save_error = str(e)
            logger.warning(f"[INDEX] Failed to save index to {self.index_path}: {e}")

    def _read_persisted(self) -> IndexSnapshot | None:
        """Read the snapshot from disk, or None if missing or unusable."""
        if not self.index_path.exists():
            return None
        try:
            data = json.loads(self.index_path.read_text())
            validate(data, "index")
            return IndexSnapshot.from_dict(data)
        except (OSError, json.JSONDecodeError, SchemaError, KeyError, ValueError) as e:
            logger.warning(f"[INDEX] Ignoring unreadable index {self.index_path}: {e}")
            return None

    def load_index(self) -> IndexSnapshot:
        """Return the persisted snapshot if it is fresh, else rebuild."""
        snapshot = self._read_persisted()
        if snapshot is None:
            logger.info("[INDEX] No usable index on disk, rebuilding")
            return self.rebuild_index()

        reasons = self.stale_reasons(snapshot)
        if reasons:
            logger.info(f"[INDEX] Index stale ({'; '.join(reasons)}), rebuilding")
            return self.rebuild_index()

        logger.debug(f"[INDEX] Loaded {len(snapshot.items)} items from {self.index_path}")
        self._snapshot = snapshot
        self._cache_hit = True
        return snapshot

    @property
    def snapshot(self) -> IndexSnapshot:
        """Current snapshot, loading it on first use."""
        if self._snapshot is None:
            return self.load_index()
        return self._snapshot

    # ------------------------------------------------------------------
    # Staleness
    # ------------------------------------------------------------------

    def stale_reasons(self, snapshot: IndexSnapshot, ignore_path: Path | None = None,
                      ignore_kind: ItemKind | None = None) -> list[str]:
        """Reasons the snapshot may disagree with the files, empty if fresh.

        Args:
            snapshot: Snapshot to check
            ignore_path: File just written by this process (skipped in the mtime check)
            ignore_kind: Kind of that file; its directory mtime and file count
                are left to the caller, which knows the expected change
        """
        built = parse_timestamp(snapshot.built_at)
        if built is None:
            return ["unparseable builtAt"]
        built_ts = built.timestamp()
        ignore = Path(ignore_path).resolve() if ignore_path else None

        reasons = []
        for kind in ItemKind:
            directory = self.store.directory(kind)
            files = self.store.list_files(kind)

            if kind is not ignore_kind:
                expected = snapshot.file_counts.get(kind.value, 0)
                if len(files) != expected:
                    reasons.append(f"{kind.value} count {len(files)} != indexed {expected}")
                if directory.exists() and directory.stat().st_mtime > built_ts:
                    reasons.append(f"{kind.value} directory modified after index build")

            for path in files:
                if ignore is not None and path.resolve() == ignore:
                    continue
                try:
                    st = path.stat()
                except OSError:
                    reasons.append(f"{path.name} vanished during check")
                    continue
                if max(st.st_mtime, st.st_ctime) > built_ts:
                    reasons.append(f"{path.name} modified after index build")
                    break
        return reasons

    def _count_drift(self, snapshot: IndexSnapshot, kind: ItemKind, delta: int) -> list[str]:
        """Reason list if kind's file count is not the indexed count plus delta."""
        expected = snapshot.file_counts.get(kind.value, 0) + delta
        actual = len(self.store.list_files(kind))
        if actual != expected:
            return [f"{kind.value} count {actual}, expected {expected}"]
        return []

    def is_stale(self) -> bool:
        snapshot = self._snapshot or self._read_persisted()
        return snapshot is None or bool(self.stale_reasons(snapshot))

    # ------------------------------------------------------------------
    # Incremental updates
    # ------------------------------------------------------------------

    def _patch_base(self) -> IndexSnapshot | None:
        """Snapshot to patch in place: in memory, else as persisted (unchecked)."""
        if self._snapshot is None:
            self._snapshot = self._read_persisted()
            self._cache_hit = self._snapshot is not None
        return self._snapshot

    def _commit(self, snapshot: IndexSnapshot, kind: ItemKind) -> None:
        snapshot.file_counts[kind.value] = len(self.store.list_files(kind))
        snapshot.built_at = now_iso()
        self._save(snapshot)

    def update_item(self, kind: ItemKind, item_id: str) -> IndexEntry | None:
        """Re-parse one item and patch the snapshot.

        Freshness is judged with this item's own write discounted: a new
        file may raise its kind's count by exactly one, an existing one must
        leave it unchanged. Anything else, such as a file removed by hand,
        means the snapshot no longer matches the tree and a full rebuild is
        done instead. If the item's file no longer exists its entry is removed.

        Returns:
            The new entry, or None if the item was removed or failed to parse
        """
        path = self.store.find_path(kind, item_id)
        if path is None:
            self.remove_item(kind, item_id)
            return None

        snapshot = self._patch_base()
        if snapshot is None:
            return self.rebuild_index().items.get(item_id)

        was_indexed = item_id in snapshot.items
        was_skipped = str(path) in snapshot.skipped_files
        known = was_indexed or was_skipped
        reasons = (self.stale_reasons(snapshot, ignore_path=path, ignore_kind=kind)
                   + self._count_drift(snapshot, kind, 0 if known else 1))
        if reasons:
            logger.info(f"[INDEX] Index stale before update of {item_id} ({'; '.join(reasons)}), rebuilding")
            return self.rebuild_index().items.get(item_id)

        try:
            entry = IndexEntry.from_item(self.store.parse(kind, path))
        except ParseError as e:
            logger.warning(f"[INDEX] {kind.value} {item_id} no longer parses, dropping from index: {e.reason}")
            snapshot.items.pop(item_id, None)
            if not was_skipped:
                snapshot.skipped_files.append(str(path))
            entry = None
        else:
            snapshot.items[item_id] = entry
            if was_skipped:
                snapshot.skipped_files.remove(str(path))

        self._commit(snapshot, kind)
        logger.debug(f"[INDEX] {'Updated' if was_indexed else 'Added'} {kind.value} {item_id}")
        return entry

    def remove_item(self, kind: ItemKind, item_id: str) -> bool:
        """Drop an entry after its file was deleted.

        Children keep their parent references; validate_relationships
        reports them as orphans.

        Returns:
            True if an entry was removed
        """
        snapshot = self._patch_base()
        if snapshot is None:
            self.rebuild_index()
            return False

        entry = snapshot.items.get(item_id)
        delta = -1 if entry is not None and not Path(entry.file_path).exists() else 0
        reasons = self.stale_reasons(snapshot, ignore_kind=kind) + self._count_drift(snapshot, kind, delta)
        if reasons:
            logger.info(f"[INDEX] Index stale before removal of {item_id} ({'; '.join(reasons)}), rebuilding")
            self.rebuild_index()
            return entry is not None

        if entry is not None:
            del snapshot.items[item_id]
            snapshot.skipped_files = [p for p in snapshot.skipped_files if p != entry.file_path]
            logger.info(f"[INDEX] Removed {kind.value} {item_id}")
        self._commit(snapshot, kind)
        return entry is not None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_item(self, item_id: str) -> IndexEntry | None:
        return self.snapshot.items.get(item_id)

    def get_items_by_status(self, status: str) -> list[IndexEntry]:
        """Entries whose legacy status, unified state or PR status equals status."""
        return sorted(
            (e for e in self.snapshot.items.values() if e.matches_status(status)),
            key=lambda e: e.id,
        )

    def get_items_by_type(self, kind: ItemKind) -> list[IndexEntry]:
        return sorted(
            (e for e in self.snapshot.items.values() if e.kind is kind),
            key=lambda e: e.id,
        )

    def get_project_overview(self) -> ProjectOverview:
        """Totals by status, priority and kind, plus completion and recent activity."""
        entries = list(self.snapshot.items.values())
        by_status = Counter(e.state or e.status for e in entries)
        by_priority = Counter(e.priority for e in entries)
        by_type = Counter(e.kind.value for e in entries)
        completed = sum(1 for e in entries if e.is_completed())
        completion_rate = round(completed / len(entries) * 100) if entries else 0

        cutoff = datetime.now(timezone.utc) - timedelta(days=RECENT_ACTIVITY_DAYS)
        recent = []
        for e in entries:
            updated = parse_timestamp(e.updated_date or e.created_date)
            if updated is not None and updated >= cutoff:
                recent.append((updated, e))
        recent.sort(key=lambda pair: pair[0], reverse=True)

        return ProjectOverview(
            total_items=len(entries),
            by_status=dict(by_status),
            by_priority=dict(by_priority),
            by_type={kind.value: by_type.get(kind.value, 0) for kind in ItemKind},
            completion_rate=completion_rate,
            recent_activity=[
                {
                    "id": e.id,
                    "kind": e.kind.value,
                    "title": e.title,
                    "status": e.state or e.status,
                    "updated_date": e.updated_date or e.created_date,
                }
                for _, e in recent[:RECENT_ACTIVITY_LIMIT]
            ],
        )

    def get_index_stats(self) -> IndexStats:
        """Size and health of the index."""
        snapshot = self.snapshot
        exists = self.index_path.exists()
        reasons = self.stale_reasons(snapshot)
        if not exists:
            reasons.append("index file missing")
        return IndexStats(
            index_size=self.index_path.stat().st_size if exists else 0,
            item_count=len(snapshot.items),
            built_at=snapshot.built_at,
            healthy=exists and not reasons and snapshot.save_error is None,
            cache_hit=self._cache_hit,
            index_file_exists=exists,
            stale_reasons=reasons,
            skipped_files=list(snapshot.skipped_files),
        )
