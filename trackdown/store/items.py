"""
Item file CRUD.

Items are stored one per Markdown file with YAML frontmatter:
  <tasks root>/epics/EP-0001-some-title.md
  <tasks root>/issues/ISS-0001-fix-login.md
  <tasks root>/tasks/TSK-0001-write-tests.md
  <tasks root>/prs/PR-0001-login-fix.md

The kind of an item always comes from the directory it lives in.
"""

import logging
import re
from dataclasses import dataclass, fields as dataclass_fields
from pathlib import Path

from trackdown.lib import frontmatter
from trackdown.lib.config import TrackdownConfig
from trackdown.lib.errors import NotFoundError, ParseError, SchemaError, ValidationError
from trackdown.lib.fileio import atomic_write_text
from trackdown.lib.timeutil import now_iso
from trackdown.lib.types import ItemKind
from trackdown.lib.validate import validate, validate_before_write
from trackdown.store.ids import IdGenerator
from trackdown.store.models import Item, StateMetadata

logger = logging.getLogger(__name__)

# Fields callers may not change through update(): identity and kind-defining keys
_IMMUTABLE_FIELDS = {"kind", "id", "file_path"}
_ITEM_FIELDS = {f.name for f in dataclass_fields(Item)}


@dataclass
class LoadFailure:
    """A file that could not be loaded during a bulk read."""
    path: Path
    reason: str


def slugify(title: str, max_len: int = 50) -> str:
    """Lowercase, dash-separated file name fragment."""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug[:max_len].rstrip("-") or "item"


class ItemStore:
    """Reads and writes item files for one project."""

    def __init__(self, config: TrackdownConfig):
        self.config = config
        self.ids = IdGenerator(config)

    @property
    def extension(self) -> str:
        return self.config.naming_conventions.file_extension

    @property
    def auto_timestamps(self) -> bool:
        return self.config.automation.auto_update_timestamps

    def directory(self, kind: ItemKind) -> Path:
        return self.config.dir_for(kind)

    def kind_for_path(self, path: Path) -> ItemKind:
        """Infer the kind from the directory a file lives in.

        Raises:
            ValidationError: If the path is outside every item directory
        """
        parent = Path(path).resolve().parent
        for kind in ItemKind:
            if self.directory(kind).resolve() == parent:
                return kind
        raise ValidationError(f"{path} is not inside an item directory", field="file_path")

    def list_files(self, kind: ItemKind) -> list[Path]:
        """Item files for kind, sorted by name. Hidden files are skipped."""
        directory = self.directory(kind)
        if not directory.exists():
            return []
        return sorted(
            p for p in directory.glob(f"*{self.extension}")
            if p.is_file() and not p.name.startswith(".")
        )

    def parse(self, kind: ItemKind, path: Path) -> Item:
        """Parse one item file.

        Raises:
            ParseError: Unreadable file, bad frontmatter, or schema violation
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ParseError(path, str(e)) from None

        try:
            data, body = frontmatter.parse(text)
        except frontmatter.FrontmatterError as e:
            raise ParseError(path, str(e)) from None

        try:
            validate(data, kind.value)
        except SchemaError as e:
            raise ParseError(path, str(e)) from None

        return Item.from_frontmatter(kind, data, body, path)

    def render(self, item: Item) -> str:
        """File text for an item, validated against its kind schema."""
        data = item.to_frontmatter()
        validate_before_write(data, item.kind.value, item.file_path or self.path_for(item))
        return frontmatter.dump(data, item.content)

    def path_for(self, item: Item) -> Path:
        """Canonical path for a new item: <dir>/<id>-<slug><ext>."""
        return self.directory(item.kind) / f"{item.id}-{slugify(item.title)}{self.extension}"

    def write(self, item: Item) -> Path:
        """Validate and atomically write an item. Sets item.file_path."""
        path = Path(item.file_path) if item.file_path else self.path_for(item)
        text = self.render(item)
        atomic_write_text(path, text)
        item.file_path = path
        logger.info(f"[STORE] Wrote {item.kind.value} {item.id} to {path.name}")
        return path

    def create(self, kind: ItemKind, fields: dict, content: str = "") -> Item:
        """Create a new item with a freshly allocated id.

        Args:
            kind: Item kind
            fields: Frontmatter values (title required; parent ids as needed)
            content: Markdown body

        Returns:
            The written Item
        """
        if not fields.get("title"):
            raise ValidationError("title is required", field="title")

        now = now_iso()
        data = {
            "status": "planning",
            "priority": "medium",
            "assignee": self.config.default_assignee,
            "created_date": now,
            "updated_date": now,
            **fields,
        }
        if kind is ItemKind.PR:
            data.setdefault("pr_status", "draft")
            data["status"] = fields.get("status", "active")

        # Allocate only after the payload validates so failures don't burn ids
        data[kind.id_field] = self.ids.peek(kind)
        item = Item.from_frontmatter(kind, data, content)
        self.render(item)

        item.id = self.ids.next_id(kind)
        self.write(item)
        return item

    def update(self, path: Path, fields: dict, stamp: bool = True) -> Item:
        """Shallow-merge fields into an existing item file.

        Args:
            path: Item file
            fields: Attribute values to set; state_metadata may be a dict
            stamp: Set updated_date to now (unless fields supplies one or
                automation.auto_update_timestamps is off)

        Returns:
            The updated Item

        Raises:
            ParseError: If the current file cannot be parsed
            SchemaError: If the merged item is invalid; the file is untouched
        """
        path = Path(path)
        kind = self.kind_for_path(path)
        item = self.parse(kind, path)

        for name, value in fields.items():
            if name in _IMMUTABLE_FIELDS:
                raise ValidationError(f"{name} cannot be changed", item_id=item.id, field=name)
            if name == "state_metadata" and isinstance(value, dict):
                value = StateMetadata.from_dict(value)
            if name in _ITEM_FIELDS:
                setattr(item, name, value)
            else:
                item.extra[name] = value

        if stamp and self.auto_timestamps and "updated_date" not in fields:
            item.updated_date = now_iso()

        self.write(item)
        return item

    def save(self, item: Item, stamp: bool = True) -> Item:
        """Write back a modified Item value in place."""
        if stamp and self.auto_timestamps:
            item.updated_date = now_iso()
        self.write(item)
        return item

    def find_path(self, kind: ItemKind, item_id: str) -> Path | None:
        """Locate the file for an id.

        Tries the <id>-*.md naming convention first, then falls back to
        reading frontmatter for files named some other way.
        """
        directory = self.directory(kind)
        if not directory.exists():
            return None

        exact = directory / f"{item_id}{self.extension}"
        if exact.exists():
            return exact
        for candidate in sorted(directory.glob(f"{item_id}-*{self.extension}")):
            return candidate

        for path in self.list_files(kind):
            try:
                data, _ = frontmatter.parse(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, frontmatter.FrontmatterError):
                continue
            if data.get(kind.id_field) == item_id:
                return path
        return None

    def load(self, kind: ItemKind, item_id: str) -> Item:
        """Load one item by id.

        Raises:
            NotFoundError: No file for this id
            ParseError: File exists but is malformed
        """
        path = self.find_path(kind, item_id)
        if path is None:
            raise NotFoundError(item_id, kind.value)
        return self.parse(kind, path)

    def load_all(self, kind: ItemKind) -> tuple[list[Item], list[LoadFailure]]:
        """Load every item of a kind, skipping files that fail to parse."""
        items = []
        failures = []
        for path in self.list_files(kind):
            try:
                items.append(self.parse(kind, path))
            except ParseError as e:
                logger.warning(f"[STORE] Skipping {path}: {e.reason}")
                failures.append(LoadFailure(path, e.reason))
        return items, failures

    def delete(self, kind: ItemKind, item_id: str) -> Path:
        """Remove an item file.

        Raises:
            NotFoundError: No file for this id
        """
        path = self.find_path(kind, item_id)
        if path is None:
            raise NotFoundError(item_id, kind.value)
        path.unlink()
        logger.info(f"[STORE] Deleted {kind.value} {item_id} ({path.name})")
        return path
