# tile_overlay/infrastructure/cv/pixel_count.py
from typing import Dict

import numpy as np
from PIL import Image

from tile_overlay.domain.errors import ReconstructionError


def count_fragment_pixels(bitmap: Image.Image, draw_mult: int) -> int:
    # Only centre cells of each draw_mult block carry data
    c = (draw_mult - 1) // 2
    alpha = np.asarray(bitmap.convert("RGBA"), dtype=np.uint8)[..., 3]
    return int((alpha[c::draw_mult, c::draw_mult] > 0).sum())


def compute_pixel_count(fragments: Dict[str, Image.Image], draw_mult: int) -> int:
    """Exact logical pixel count of one template, rebuilt from its shredded fragments."""
    total = 0
    try:
        for bitmap in fragments.values():
            if bitmap is None:
                continue
            total += count_fragment_pixels(bitmap, draw_mult)
    except Exception as e:
        raise ReconstructionError(f"Pixel count reconstruction failed: {e}") from e
    return total
