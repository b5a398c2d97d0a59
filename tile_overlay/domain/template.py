# tile_overlay/domain/template.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from PIL import Image

TEMPLATE_KEY_RE = re.compile(r"^(\d+) (\S+)$")
FRAGMENT_KEY_RE = re.compile(r"^(\d{4}),(\d{4}),(\d+),(\d+)$")
LOOSE_FRAGMENT_KEY_RE = re.compile(r"^\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*$")


def make_template_key(sort_id: int, author_id: str) -> str:
    return f"{sort_id} {author_id}"


def parse_template_key(key: str) -> Optional[Tuple[int, str]]:
    """``"0 $Z"`` -> ``(0, "$Z")``; ``None`` when the key breaks the grammar."""
    m = TEMPLATE_KEY_RE.match(key or "")
    if not m:
        return None
    return int(m.group(1)), m.group(2)


def make_fragment_key(tile_x: int, tile_y: int, pixel_x: int, pixel_y: int) -> str:
    return f"{tile_x:04d},{tile_y:04d},{pixel_x},{pixel_y}"


def tile_prefix(tile_x: int, tile_y: int) -> str:
    return f"{tile_x:04d},{tile_y:04d},"


def parse_fragment_key(key: str) -> Optional[Tuple[int, int, int, int]]:
    m = FRAGMENT_KEY_RE.match(key or "")
    if not m:
        return None
    return tuple(int(g) for g in m.groups())


def normalize_fragment_key(key: str) -> Optional[str]:
    """Re-pads loosely written keys such as ``"375,1846,276,188"``; ``None`` if unusable."""
    m = LOOSE_FRAGMENT_KEY_RE.match(key or "")
    if not m:
        return None
    return make_fragment_key(*(int(g) for g in m.groups()))


def parse_coords(value) -> Optional[List[int]]:
    """Accepts ``"1, 2, 3, 4"`` or a 4-item sequence; ``None`` if unusable."""
    if isinstance(value, str):
        parts = [p.strip() for p in value.split(",")]
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    else:
        return None
    if len(parts) != 4:
        return None
    try:
        coords = [int(p) for p in parts]
    except (TypeError, ValueError):
        return None
    if any(c < 0 for c in coords):
        return None
    return coords


def format_coords(coords) -> str:
    return ", ".join(str(c) for c in coords)


@dataclass
class Template:
    """One logical artwork: chunked bitmaps plus identity, placement and enablement."""

    display_name: str
    sort_id: int
    author_id: str
    coords: Optional[List[int]] = None
    enabled: bool = True
    chunked: Dict[str, Image.Image] = field(default_factory=dict)
    pixel_count: int = 0

    @property
    def key(self) -> str:
        return make_template_key(self.sort_id, self.author_id)

    def matches(self, sort_id: int, author_id: str) -> bool:
        return self.sort_id == sort_id and self.author_id == author_id

    def fragment_for_tile(self, tile_x: int, tile_y: int) -> Optional[Tuple[str, Image.Image]]:
        """First fragment of this template on the given tile, if any."""
        prefix = tile_prefix(tile_x, tile_y)
        for frag_key in sorted(self.chunked):
            if frag_key.startswith(prefix):
                return frag_key, self.chunked[frag_key]
        return None
