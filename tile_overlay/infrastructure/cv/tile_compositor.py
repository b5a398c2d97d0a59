# tile_overlay/infrastructure/cv/tile_compositor.py
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from PIL import Image

from tile_overlay.domain.template import Template, parse_fragment_key
from tile_overlay.infrastructure.cv.image_process import encode_image, open_image


@dataclass
class TileDraw:
    sort_id: int
    pixel_x: int
    pixel_y: int
    bitmap: Image.Image
    pixel_count: int


def select_fragments(templates: Iterable[Template], tile_x: int, tile_y: int) -> List[TileDraw]:
    """Enabled templates with a fragment on this tile, lowest sort id first.

    At most one fragment per template is taken.
    """
    draws = []
    for template in templates:
        if not template.enabled:
            continue
        found = template.fragment_for_tile(tile_x, tile_y)
        if found is None:
            continue
        frag_key, bitmap = found
        _, _, px, py = parse_fragment_key(frag_key)
        draws.append(TileDraw(template.sort_id, px, py, bitmap, template.pixel_count or 0))
    draws.sort(key=lambda d: d.sort_id)
    return draws


def status_for(draws: List[TileDraw]) -> str:
    count = len(draws)
    if count == 0:
        return f"Displaying {count} templates."
    total = sum(d.pixel_count for d in draws)
    return f"Displaying {count} template{'' if count == 1 else 's'}.\nTotal pixels: {total:,}"


def composite_tile(tile_bytes: bytes, draws: List[TileDraw], tile_size: int,
                   draw_mult: int) -> Tuple[bytes, str]:
    """Draws ``draws`` in order over the live tile, upscaled by ``draw_mult``.

    Returns the encoded tile and the status line.
    """
    live = open_image(tile_bytes)
    fmt = live.format or "PNG"
    draw_size = tile_size * draw_mult

    # Nearest neighbour only, anything else smears the shredded centre cells
    surface = Image.new("RGBA", (draw_size, draw_size), (0, 0, 0, 0))
    base = live.convert("RGBA").resize((draw_size, draw_size), Image.Resampling.NEAREST)
    surface.alpha_composite(base)

    for d in draws:
        x, y = d.pixel_x * draw_mult, d.pixel_y * draw_mult
        if x >= draw_size or y >= draw_size:
            continue
        bitmap = d.bitmap
        if bitmap.mode != "RGBA":
            bitmap = bitmap.convert("RGBA")
        # Clip to the surface bounds
        bitmap = bitmap.crop((0, 0, min(bitmap.width, draw_size - x), min(bitmap.height, draw_size - y)))
        surface.alpha_composite(bitmap, dest=(x, y))

    return encode_image(surface, fmt), status_for(draws)
