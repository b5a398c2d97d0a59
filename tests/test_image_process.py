"""Tests for template chunking and pixel shredding."""

import base64
import re

import numpy as np
import pytest
from PIL import Image

from tile_overlay.domain.errors import DecodeError
from tile_overlay.domain.template import tile_prefix
from tile_overlay.infrastructure.cv.image_process import (
    assemble_logical_image,
    chunk_image,
    decode_data_url,
    decode_image,
    image_to_data_url,
    shred,
)

RED = (255, 0, 0, 255)
CLEAR = (0, 0, 0, 0)


class TestChunkImage:
    def test_transparent_image_yields_no_fragments(self, solid):
        result = chunk_image(solid(20, 20, CLEAR), 5, 5, tile_size=10, draw_mult=3)
        assert result.tiles == {}
        assert result.total_pixel_count == 0

    def test_two_by_two_across_both_boundaries(self, solid):
        result = chunk_image(solid(2, 2), 999, 999, tile_size=1000, draw_mult=3)
        assert set(result.tiles) == {
            "0000,0000,999,999",
            "0001,0000,0,999",
            "0000,0001,999,0",
            "0001,0001,0,0",
        }
        assert result.total_pixel_count == 4
        assert all(bmp.size == (3, 3) for bmp in result.tiles.values())

    def test_two_by_two_across_one_boundary(self, solid):
        result = chunk_image(solid(2, 2), 999, 998, tile_size=1000, draw_mult=3)
        assert set(result.tiles) == {"0000,0000,999,998", "0001,0000,0,998"}
        assert result.tiles["0000,0000,999,998"].size == (3, 6)
        assert result.total_pixel_count == 4

    def test_spans_are_clipped_at_tile_edges(self, solid):
        result = chunk_image(solid(15, 5), 5, 0, tile_size=10, draw_mult=3)
        assert result.tiles["0000,0000,5,0"].size == (15, 15)
        assert result.tiles["0001,0000,0,0"].size == (30, 15)
        assert result.total_pixel_count == 75

    def test_fragment_keys_follow_grammar(self, solid):
        result = chunk_image(solid(25, 25), 7, 3, tile_size=10, draw_mult=3)
        assert len(result.tiles) == 12
        for key in result.tiles:
            assert re.match(r"^\d{4},\d{4},\d+,\d+$", key)
            tx, ty = (int(part) for part in key.split(",")[:2])
            assert key.startswith(tile_prefix(tx, ty))

    def test_fully_transparent_tile_is_skipped(self):
        img = Image.new("RGBA", (20, 1), CLEAR)
        img.putpixel((15, 0), RED)
        result = chunk_image(img, 0, 0, tile_size=10, draw_mult=3)
        assert list(result.tiles) == ["0001,0000,0,0"]
        assert result.total_pixel_count == 1

    def test_even_draw_mult_rejected(self, solid):
        with pytest.raises(ValueError):
            chunk_image(solid(2, 2), 0, 0, tile_size=10, draw_mult=2)


class TestShred:
    def test_centre_cell_carries_exact_colour(self):
        span = np.array([[[10, 20, 30, 128]]], dtype=np.uint8)
        out = shred(span, 3)
        assert out.size == (3, 3)
        assert out.getpixel((1, 1)) == (10, 20, 30, 128)
        for x in range(3):
            for y in range(3):
                if (x, y) != (1, 1):
                    assert out.getpixel((x, y)) == CLEAR

    def test_transparent_source_pixels_stay_empty(self):
        img = Image.new("RGBA", (3, 1), RED)
        img.putpixel((1, 0), (200, 200, 200, 0))
        out = shred(np.asarray(img), 3)
        assert out.getpixel((1, 1)) == RED
        assert out.getpixel((4, 1)) == CLEAR
        assert out.getpixel((7, 1)) == RED

    def test_larger_multiplier(self):
        out = shred(np.asarray(Image.new("RGBA", (1, 1), RED)), 5)
        assert out.size == (5, 5)
        assert out.getpixel((2, 2)) == RED
        assert out.getpixel((1, 1)) == CLEAR


class TestAssemble:
    def test_rebuilds_source_and_origin(self):
        img = Image.new("RGBA", (4, 3), CLEAR)
        img.putpixel((0, 0), RED)
        img.putpixel((3, 2), (0, 255, 0, 255))
        chunk = chunk_image(img, 8, 9, tile_size=10, draw_mult=3)

        image, origin_x, origin_y = assemble_logical_image(chunk.tiles, 10, 3)
        assert (origin_x, origin_y) == (8, 9)
        assert image.size == (4, 3)
        assert image.getpixel((0, 0)) == RED
        assert image.getpixel((3, 2)) == (0, 255, 0, 255)

    def test_nothing_usable(self):
        assert assemble_logical_image({"bad key": Image.new("RGBA", (3, 3))}, 10, 3) is None


class TestCodecHelpers:
    def test_decode_rejects_garbage(self):
        with pytest.raises(DecodeError):
            decode_image(b"definitely not an image")

    def test_decode_rejects_empty(self):
        with pytest.raises(DecodeError):
            decode_image(b"")

    def test_data_url_keeps_pixels(self):
        img = Image.new("RGBA", (3, 3), CLEAR)
        img.putpixel((1, 1), (1, 2, 3, 4))
        url = image_to_data_url(img)
        assert url.startswith("data:image/png;base64,")
        assert decode_image(decode_data_url(url)).getpixel((1, 1)) == (1, 2, 3, 4)

    def test_bare_base64_accepted(self, to_png):
        raw = to_png(Image.new("RGBA", (2, 2), RED))
        assert decode_data_url(base64.b64encode(raw).decode()) == raw
