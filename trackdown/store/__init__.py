"""
Item store for trackdown.

Loads and saves epics, issues, tasks and pull requests as Markdown files
with YAML frontmatter, and allocates ids for new items.
"""

from trackdown.store.models import Item, StateMetadata
from trackdown.store.items import ItemStore, LoadFailure
from trackdown.store.ids import IdGenerator, format_id

__all__ = [
    "Item",
    "StateMetadata",
    "ItemStore",
    "LoadFailure",
    "IdGenerator",
    "format_id",
]
