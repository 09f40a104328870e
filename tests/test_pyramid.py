"""
Deep-zoom geometry, tiling and manifest.
"""

import io
import math

import pytest
from PIL import Image

from drawings_worker.services.pyramid import (
    TILE_SIZE,
    LevelGeometry,
    build_manifest,
    level_count,
    level_geometry,
    load_raster,
    max_level,
    pyramid_geometry,
    render_level_tiles,
    render_thumbnail,
    tile_boxes,
    tile_path,
)


def _png(width: int, height: int, mode: str = "RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, (width, height)).save(buffer, format="PNG")
    return buffer.getvalue()


class TestGeometry:

    @pytest.mark.parametrize("width,height,expected", [
        (1, 1, 0),
        (2, 1, 1),
        (256, 256, 8),
        (257, 10, 9),
        (600, 400, 10),
        (1024, 768, 10),
        (1025, 1, 11),
        (3400, 2200, 12),
    ])
    def test_max_level_is_ceil_log2(self, width, height, expected):
        assert max_level(width, height) == expected
        assert expected == math.ceil(math.log2(max(width, height)))

    def test_invalid_dimensions(self):
        with pytest.raises(ValueError):
            max_level(0, 10)

    def test_level_dimensions(self):
        assert level_geometry(600, 400, 10) == LevelGeometry(10, 600, 400)
        assert level_geometry(600, 400, 9) == LevelGeometry(9, 300, 200)
        assert level_geometry(600, 400, 8) == LevelGeometry(8, 150, 100)
        assert level_geometry(601, 401, 9) == LevelGeometry(9, 301, 201)
        assert level_geometry(600, 400, 0) == LevelGeometry(0, 1, 1)

    def test_level_out_of_range(self):
        with pytest.raises(ValueError):
            level_geometry(600, 400, 11)

    def test_pyramid_has_max_level_plus_one_levels(self):
        levels = pyramid_geometry(3400, 2200)
        assert len(levels) == level_count(3400, 2200) == 13
        assert [g.level for g in levels] == list(range(13))
        assert (levels[-1].width, levels[-1].height) == (3400, 2200)

    def test_full_resolution_grid_covers_image(self):
        geometry = level_geometry(1000, 700, max_level(1000, 700))
        assert (geometry.columns, geometry.rows) == (4, 3)

        covered = 0
        for _, _, (left, top, right, bottom) in tile_boxes(geometry):
            assert 0 < right - left <= TILE_SIZE
            assert 0 < bottom - top <= TILE_SIZE
            covered += (right - left) * (bottom - top)
        assert covered == 1000 * 700

    def test_tile_path(self):
        assert tile_path("org/abc/page-0", 3, 1, 2) == "org/abc/page-0/tiles/3/1_2.png"


class TestRendering:

    def test_edge_tiles_are_clipped(self):
        source = load_raster(_png(300, 200))
        tiles = render_level_tiles(source, level_geometry(300, 200, max_level(300, 200)))

        sizes = {(t.column, t.row): Image.open(io.BytesIO(t.data)).size for t in tiles}
        assert sizes == {(0, 0): (256, 200), (1, 0): (44, 200)}

    def test_lower_levels_are_resized(self):
        source = load_raster(_png(300, 200))
        tiles = render_level_tiles(source, level_geometry(300, 200, 7))
        assert len(tiles) == 1
        assert Image.open(io.BytesIO(tiles[0].data)).size == (75, 50)

    def test_palette_images_are_converted(self):
        source = load_raster(_png(10, 10, mode="P"))
        assert source.mode == "RGB"

    def test_thumbnail_fits_inside_square(self):
        thumb = Image.open(io.BytesIO(render_thumbnail(load_raster(_png(600, 400)))))
        assert max(thumb.size) == 256
        assert thumb.size[1] <= 256

    def test_thumbnail_does_not_upscale(self):
        thumb = Image.open(io.BytesIO(render_thumbnail(load_raster(_png(100, 50)))))
        assert thumb.size == (100, 50)


class TestManifest:

    def test_manifest_shape(self):
        manifest = build_manifest(600, 400)
        assert manifest["Levels"] == 11
        image = manifest["Image"]
        assert image["Format"] == "png"
        assert image["Overlap"] == 0
        assert image["TileSize"] == 256
        assert image["Size"] == {"Width": 600, "Height": 400}
