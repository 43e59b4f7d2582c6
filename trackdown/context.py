"""
Project context: one wired-up set of services per project root.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from trackdown.graph.dependencies import DependencyStore
from trackdown.graph.relationships import RelationshipGraph
from trackdown.index.engine import IndexEngine
from trackdown.lib.config import TrackdownConfig, find_project_root, init_project, load_config
from trackdown.lib.errors import NotFoundError
from trackdown.lib.types import ItemKind
from trackdown.store.items import ItemStore
from trackdown.sync.reconciler import PR_TO_TASK_DIRECTION, Reconciler, SyncOptions, SyncResult

logger = logging.getLogger(__name__)


@dataclass
class TrackdownContext:
    """Services for a single project, sharing one store."""
    config: TrackdownConfig
    store: ItemStore
    index: IndexEngine
    graph: RelationshipGraph
    deps: DependencyStore
    reconciler: Reconciler

    @classmethod
    def from_config(cls, config: TrackdownConfig) -> "TrackdownContext":
        store = ItemStore(config)
        index = IndexEngine(config, store)
        graph = RelationshipGraph(store)
        return cls(
            config=config,
            store=store,
            index=index,
            graph=graph,
            deps=DependencyStore(config, graph),
            reconciler=Reconciler(store, graph, index),
        )

    @classmethod
    def open(cls, start: Path = None) -> "TrackdownContext":
        """Context for the project containing start (default: cwd).

        Raises:
            NotFoundError: No .ai-trackdown/config.yaml at or above start
        """
        root = find_project_root(start)
        if root is None:
            raise NotFoundError(str(Path(start or Path.cwd())), "project", "run 'atd init' first")
        return cls.from_config(load_config(root))

    @classmethod
    def create(cls, project_root: Path, name: str = None, **overrides) -> "TrackdownContext":
        """Initialize a new project and return its context."""
        return cls.from_config(init_project(project_root, name, **overrides))

    def after_mutation(self, kind: ItemKind, item_id: str) -> None:
        """Bring the index and relationship cache up to date after a write."""
        self.index.update_item(kind, item_id)
        self.graph.rebuild_cache()

    def after_pr_status_change(self, pr_id: str) -> SyncResult | None:
        """Push a PR's new status to its linked tasks.

        Only runs when automation.auto_sync_status is on; returns None otherwise.
        """
        if not self.config.automation.auto_sync_status:
            return None
        result = self.reconciler.sync(SyncOptions(direction=PR_TO_TASK_DIRECTION), pr_id=pr_id)
        logger.debug(f"[SYNC] Auto sync after {pr_id} status change: {len(result.updated_tasks)} task(s) updated")
        return result
