"""Shared fixtures: throwaway trackdown projects under tmp_path."""

import pytest

from trackdown.context import TrackdownContext
from trackdown.lib.types import ItemKind


@pytest.fixture
def project(tmp_path):
    """An initialized, empty project."""
    return TrackdownContext.create(tmp_path / "proj", "demo")


@pytest.fixture
def make_item(project):
    """Create an item through the store. Returns a factory."""
    def make(kind: ItemKind, title: str = "Item", content: str = "", **fields):
        return project.store.create(kind, {"title": title, **fields}, content)
    return make


@pytest.fixture
def write_raw(project):
    """Write an item file verbatim, bypassing validation. Returns a writer."""
    def write(kind: ItemKind, name: str, text: str):
        path = project.config.dir_for(kind) / name
        path.write_text(text)
        return path
    return write
