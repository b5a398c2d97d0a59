# tile_overlay/infrastructure/cv/image_process.py
import base64
import binascii
from dataclasses import dataclass, field
from io import BytesIO
from typing import Dict, Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from tile_overlay.domain.errors import DecodeError
from tile_overlay.domain.template import make_fragment_key, parse_fragment_key


@dataclass
class ChunkResult:
    tiles: Dict[str, Image.Image] = field(default_factory=dict)
    total_pixel_count: int = 0


def open_image(data: bytes) -> Image.Image:
    """Opens and fully decodes ``data``, keeping the container format on ``.format``."""
    if not data:
        raise DecodeError("Empty image payload")
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError) as e:
        raise DecodeError(f"Could not decode image: {e}") from e
    return img


def decode_image(data: bytes) -> Image.Image:
    return open_image(data).convert("RGBA")


def encode_image(img: Image.Image, fmt: str = "png") -> bytes:
    fmt = (fmt or "png").lower()
    if fmt in ("jpg", "jpeg"):
        # JPEG can't have alpha
        if img.mode != "RGB":
            img = img.convert("RGB")
        save_kwargs = dict(format="JPEG", quality=95)
    elif fmt == "png":
        save_kwargs = dict(format="PNG")
    else:
        save_kwargs = dict(format=fmt.upper())

    buf = BytesIO()
    img.save(buf, **save_kwargs)
    return buf.getvalue()


def image_to_data_url(img: Image.Image) -> str:
    encoded = base64.b64encode(encode_image(img, "png")).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def decode_data_url(src: str) -> bytes:
    """Data URL or bare base64 -> raw bytes."""
    if not isinstance(src, str) or not src:
        raise DecodeError("Fragment payload is not a base64 string")
    if src.startswith("data:"):
        _, _, src = src.partition(",")
    try:
        return base64.b64decode(src + "===")
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 payload: {e}") from e


def shred(span: np.ndarray, draw_mult: int) -> Image.Image:
    """Expands each source pixel into a ``draw_mult`` square whose only
    non-transparent cell is the centre one, carrying the exact RGBA."""
    h, w = span.shape[:2]
    c = (draw_mult - 1) // 2
    out = np.zeros((h * draw_mult, w * draw_mult, 4), dtype=np.uint8)
    opaque = span[..., 3:4] > 0
    out[c::draw_mult, c::draw_mult] = np.where(opaque, span, 0)
    return Image.fromarray(out)


def chunk_image(img: Image.Image, anchor_x: int, anchor_y: int,
                tile_size: int, draw_mult: int) -> ChunkResult:
    """Slices ``img`` placed at global pixel ``(anchor_x, anchor_y)`` into
    shredded, tile-aligned fragments. Tiles with no opaque pixel are skipped."""
    if tile_size <= 0:
        raise ValueError("tile_size must be positive")
    if draw_mult <= 0 or draw_mult % 2 == 0:
        raise ValueError("draw_mult must be a positive odd integer")

    arr = np.asarray(img.convert("RGBA"), dtype=np.uint8)
    h, w = arr.shape[:2]
    result = ChunkResult()
    if h == 0 or w == 0:
        return result

    opaque = arr[..., 3] > 0
    first_tx, last_tx = anchor_x // tile_size, (anchor_x + w - 1) // tile_size
    first_ty, last_ty = anchor_y // tile_size, (anchor_y + h - 1) // tile_size

    for ty in range(first_ty, last_ty + 1):
        y0 = max(anchor_y, ty * tile_size)
        y1 = min(anchor_y + h, (ty + 1) * tile_size)
        for tx in range(first_tx, last_tx + 1):
            x0 = max(anchor_x, tx * tile_size)
            x1 = min(anchor_x + w, (tx + 1) * tile_size)

            rows = slice(y0 - anchor_y, y1 - anchor_y)
            cols = slice(x0 - anchor_x, x1 - anchor_x)
            count = int(opaque[rows, cols].sum())
            if count == 0:
                continue

            key = make_fragment_key(tx, ty, x0 - tx * tile_size, y0 - ty * tile_size)
            result.tiles[key] = shred(arr[rows, cols], draw_mult)
            result.total_pixel_count += count

    return result


def assemble_logical_image(fragments: Dict[str, Image.Image], tile_size: int,
                           draw_mult: int) -> Optional[Tuple[Image.Image, int, int]]:
    """Inverse of :func:`chunk_image`: samples the centre cells of every fragment
    and lays them out in global space.

    Returns ``(image, origin_x, origin_y)`` or ``None`` if nothing is usable.
    """
    c = (draw_mult - 1) // 2
    placed = []
    for key, bitmap in fragments.items():
        parsed = parse_fragment_key(key)
        if parsed is None or bitmap is None:
            continue
        tx, ty, px, py = parsed
        logical = np.asarray(bitmap.convert("RGBA"), dtype=np.uint8)[c::draw_mult, c::draw_mult]
        placed.append((tx * tile_size + px, ty * tile_size + py, logical))

    if not placed:
        return None

    min_x = min(gx for gx, _, _ in placed)
    min_y = min(gy for _, gy, _ in placed)
    max_x = max(gx + lg.shape[1] for gx, _, lg in placed)
    max_y = max(gy + lg.shape[0] for _, gy, lg in placed)

    canvas = np.zeros((max_y - min_y, max_x - min_x, 4), dtype=np.uint8)
    for gx, gy, logical in placed:
        lh, lw = logical.shape[:2]
        canvas[gy - min_y:gy - min_y + lh, gx - min_x:gx - min_x + lw] = logical

    return Image.fromarray(canvas), min_x, min_y
