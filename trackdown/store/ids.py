"""
Id allocation for new items.

Ids look like EP-0001. The next number is one past the larger of the
persisted counter and the highest number already present on disk, so a
lost or stale counters.json never produces a duplicate.
"""

import json
import logging
import re

from trackdown.lib.config import TrackdownConfig
from trackdown.lib.fileio import atomic_write_json
from trackdown.lib.types import ItemKind

logger = logging.getLogger(__name__)


def format_id(prefix: str, number: int) -> str:
    """Format an id with 4-digit zero padding."""
    return f"{prefix}-{number:04d}"


def parse_id_number(item_id: str, prefix: str = None) -> int | None:
    """Extract the numeric part of an id, or None if malformed."""
    pattern = rf"^{re.escape(prefix)}-(\d+)" if prefix else r"^[A-Za-z][A-Za-z0-9]*-(\d+)"
    match = re.match(pattern, item_id)
    return int(match.group(1)) if match else None


class IdGenerator:
    """Allocates sequential ids per kind."""

    def __init__(self, config: TrackdownConfig):
        self.config = config

    def _load_counters(self) -> dict:
        path = self.config.counters_path
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[STORE] Ignoring unreadable counters file {path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _highest_on_disk(self, kind: ItemKind) -> int:
        """Highest id number among existing files of this kind."""
        prefix = self.config.prefix_for(kind)
        directory = self.config.dir_for(kind)
        if not directory.exists():
            return 0

        nums = []
        for f in directory.glob(f"{prefix}-*{self.config.naming_conventions.file_extension}"):
            num = parse_id_number(f.stem, prefix)
            if num is None:
                logger.warning(f"[STORE] Malformed item file name ignored: {f.name}")
                continue
            nums.append(num)
        return max(nums, default=0)

    def peek(self, kind: ItemKind) -> str:
        """Next id for kind, without reserving it."""
        counters = self._load_counters()
        current = max(int(counters.get(kind.value, 0)), self._highest_on_disk(kind))
        return format_id(self.config.prefix_for(kind), current + 1)

    def next_id(self, kind: ItemKind) -> str:
        """Reserve and return the next id for kind."""
        counters = self._load_counters()
        current = max(int(counters.get(kind.value, 0)), self._highest_on_disk(kind))
        counters[kind.value] = current + 1
        atomic_write_json(self.config.counters_path, counters)
        return format_id(self.config.prefix_for(kind), current + 1)
