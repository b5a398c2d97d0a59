"""Tests for drawing template fragments over a live tile."""

from io import BytesIO

from PIL import Image

from tile_overlay.domain.template import Template
from tile_overlay.infrastructure.cv.image_process import chunk_image
from tile_overlay.infrastructure.cv.tile_compositor import composite_tile, select_fragments, status_for

RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 255)
WHITE = (255, 255, 255, 255)


def _template(sort_id, color, anchor, enabled=True):
    chunk = chunk_image(Image.new("RGBA", (2, 2), color), *anchor, tile_size=10, draw_mult=3)
    return Template(
        display_name=f"t{sort_id}",
        sort_id=sort_id,
        author_id="!",
        coords=[0, 0, *anchor],
        enabled=enabled,
        chunked=chunk.tiles,
        pixel_count=chunk.total_pixel_count,
    )


def _decode(data):
    return Image.open(BytesIO(data))


class TestSelectFragments:
    def test_sorted_by_sort_id(self):
        late = _template(5, BLUE, (2, 2))
        early = _template(2, RED, (1, 1))
        draws = select_fragments([late, early], 0, 0)
        assert [d.sort_id for d in draws] == [2, 5]
        assert (draws[0].pixel_x, draws[0].pixel_y) == (1, 1)

    def test_disabled_and_other_tiles_skipped(self):
        off = _template(1, RED, (1, 1), enabled=False)
        on = _template(2, BLUE, (1, 1))
        assert [d.sort_id for d in select_fragments([off, on], 0, 0)] == [2]
        assert select_fragments([on], 3, 3) == []

    def test_one_fragment_per_template(self):
        template = _template(0, RED, (1, 1))
        template.chunked["0000,0000,8,8"] = template.chunked["0000,0000,1,1"]
        draws = select_fragments([template], 0, 0)
        assert len(draws) == 1
        assert (draws[0].pixel_x, draws[0].pixel_y) == (1, 1)


class TestStatus:
    def test_wording(self):
        assert status_for([]) == "Displaying 0 templates."
        one = select_fragments([_template(0, RED, (0, 0))], 0, 0)
        assert status_for(one) == "Displaying 1 template.\nTotal pixels: 4"

    def test_thousands_separator(self):
        draws = select_fragments([_template(0, RED, (0, 0)), _template(1, RED, (4, 4))], 0, 0)
        draws[0].pixel_count = 1500
        assert status_for(draws) == "Displaying 2 templates.\nTotal pixels: 1,504"


class TestCompositeTile:
    def test_later_template_wins(self, to_png):
        tile = to_png(Image.new("RGBA", (10, 10), WHITE))
        draws = select_fragments([_template(2, RED, (1, 1)), _template(5, BLUE, (2, 2))], 0, 0)
        data, status = composite_tile(tile, draws, tile_size=10, draw_mult=3)
        out = _decode(data).convert("RGBA")
        assert out.size == (30, 30)
        assert out.getpixel((4, 4)) == RED
        assert out.getpixel((7, 7)) == BLUE
        assert out.getpixel((6, 6)) == WHITE
        assert status == "Displaying 2 templates.\nTotal pixels: 8"

    def test_disabled_template_reveals_lower_one(self, to_png):
        tile = to_png(Image.new("RGBA", (10, 10), WHITE))
        templates = [_template(2, RED, (1, 1)), _template(5, BLUE, (2, 2), enabled=False)]
        data, status = composite_tile(tile, select_fragments(templates, 0, 0), 10, 3)
        out = _decode(data).convert("RGBA")
        assert out.getpixel((7, 7)) == RED
        assert status == "Displaying 1 template.\nTotal pixels: 4"

    def test_base_tile_upscaled_without_smoothing(self, to_png):
        base = Image.new("RGBA", (10, 10), WHITE)
        base.putpixel((0, 0), BLUE)
        data, status = composite_tile(to_png(base), [], 10, 3)
        out = _decode(data).convert("RGBA")
        assert all(out.getpixel((x, y)) == BLUE for x in range(3) for y in range(3))
        assert out.getpixel((3, 0)) == WHITE
        assert status == "Displaying 0 templates."

    def test_keeps_input_format(self, to_png):
        tile = to_png(Image.new("RGB", (10, 10), (255, 255, 255)), "JPEG")
        data, _ = composite_tile(tile, [], 10, 3)
        out = _decode(data)
        assert out.format == "JPEG"
        assert out.size == (30, 30)

    def test_fragment_clipped_at_tile_edge(self, to_png):
        template = _template(0, RED, (9, 9))
        data, _ = composite_tile(to_png(Image.new("RGBA", (10, 10), WHITE)),
                                 select_fragments([template], 0, 0), 10, 3)
        out = _decode(data).convert("RGBA")
        assert out.size == (30, 30)
        assert out.getpixel((28, 28)) == RED
