"""Shared pytest fixtures for the tile_overlay test suite.

Fixtures:
    solid: factory for in-memory RGBA images of a single colour
    to_png: encodes a PIL image to PNG bytes
    make_storage: factory for a primary + backup file store chain under tmp_path
    make_manager: factory for a TemplateManager on a 10px tile grid (draw_mult 3)
"""
import itertools
from io import BytesIO

import pytest
from PIL import Image

from tile_overlay.domain.template_manager import TemplateManager
from tile_overlay.infrastructure.storage.backends import KeyValueFileStore, StorageChain

RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 255)
WHITE = (255, 255, 255, 255)
CLEAR = (0, 0, 0, 0)


@pytest.fixture
def solid():
    def _solid(w, h, color=RED):
        return Image.new("RGBA", (w, h), color)
    return _solid


@pytest.fixture
def to_png():
    def _to_png(img, fmt="PNG"):
        buf = BytesIO()
        img.save(buf, format=fmt)
        return buf.getvalue()
    return _to_png


@pytest.fixture
def make_storage(tmp_path):
    counter = itertools.count()

    def _make():
        store_dir = tmp_path / f"store{next(counter)}"
        return StorageChain([
            KeyValueFileStore(store_dir / "Blue_Marble.json", "bmTemplates"),
            KeyValueFileStore(store_dir / "localStorage.json", "BlueMarbleTemplates"),
        ])
    return _make


@pytest.fixture
def make_manager(make_storage):
    def _make(storage=None, **kwargs):
        kwargs.setdefault("tile_size", 10)
        kwargs.setdefault("draw_mult", 3)
        kwargs.setdefault("user_id", 0)
        return TemplateManager(storage or make_storage(), **kwargs)
    return _make
