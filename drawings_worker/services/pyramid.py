"""
Deep-zoom pyramid builder.

Level 0 is a single ~1px tile, level max_level is the full-resolution source.
Each level halves linear resolution versus the next and is cut into 256px
tiles; the last tile of every row and column is clipped, never padded.
"""

import io
from dataclasses import dataclass
from typing import Iterator

from PIL import Image

TILE_SIZE = 256
OVERLAP = 0
TILE_FORMAT = "png"
THUMBNAIL_SIZE = 256
DEEPZOOM_XMLNS = "http://schemas.microsoft.com/deepzoom/2008"


@dataclass(frozen=True)
class LevelGeometry:
    level: int
    width: int
    height: int

    @property
    def columns(self) -> int:
        return -(-self.width // TILE_SIZE)

    @property
    def rows(self) -> int:
        return -(-self.height // TILE_SIZE)

    @property
    def tile_count(self) -> int:
        return self.columns * self.rows


@dataclass(frozen=True)
class Tile:
    level: int
    column: int
    row: int
    data: bytes


def max_level(width: int, height: int) -> int:
    """ceil(log2(max(width, height))), computed exactly on integers."""
    if width < 1 or height < 1:
        raise ValueError(f"Invalid image dimensions: {width}x{height}")
    return (max(width, height) - 1).bit_length()


def level_count(width: int, height: int) -> int:
    return max_level(width, height) + 1


def level_geometry(width: int, height: int, level: int) -> LevelGeometry:
    top = max_level(width, height)
    if not 0 <= level <= top:
        raise ValueError(f"Level {level} outside 0..{top}")
    shift = top - level
    divisor = 1 << shift
    return LevelGeometry(
        level=level,
        width=max(1, -(-width // divisor)),
        height=max(1, -(-height // divisor)),
    )


def pyramid_geometry(width: int, height: int) -> list[LevelGeometry]:
    return [level_geometry(width, height, level) for level in range(level_count(width, height))]


def tile_boxes(geometry: LevelGeometry) -> Iterator[tuple[int, int, tuple[int, int, int, int]]]:
    """Yield (column, row, crop box) for every tile of a level."""
    for column in range(geometry.columns):
        left = column * TILE_SIZE
        right = min(left + TILE_SIZE, geometry.width)
        for row in range(geometry.rows):
            top = row * TILE_SIZE
            bottom = min(top + TILE_SIZE, geometry.height)
            yield column, row, (left, top, right, bottom)


def tile_path(base_path: str, level: int, column: int, row: int) -> str:
    return f"{base_path}/tiles/{level}/{column}_{row}.{TILE_FORMAT}"


def build_manifest(width: int, height: int) -> dict:
    """
    Deep-zoom descriptor as JSON. "Levels" is not part of the DZI format; the
    viewer reads it to tell a real pyramid from a single-level stub.
    """
    return {
        "Image": {
            "xmlns": DEEPZOOM_XMLNS,
            "Format": TILE_FORMAT,
            "Overlap": OVERLAP,
            "TileSize": TILE_SIZE,
            "Size": {"Width": width, "Height": height},
        },
        "Levels": level_count(width, height),
    }


def load_raster(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    if image.mode not in ("RGB", "RGBA", "L", "LA"):
        image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
    return image


def _encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def render_level(source: Image.Image, geometry: LevelGeometry) -> Image.Image:
    if (geometry.width, geometry.height) == source.size:
        return source
    return source.resize((geometry.width, geometry.height), Image.Resampling.LANCZOS)


def render_level_tiles(source: Image.Image, geometry: LevelGeometry) -> list[Tile]:
    """Resize the source once to this level, then slice it into PNG tiles."""
    level_image = render_level(source, geometry)
    return [
        Tile(geometry.level, column, row, _encode_png(level_image.crop(box)))
        for column, row, box in tile_boxes(geometry)
    ]


def render_thumbnail(source: Image.Image) -> bytes:
    """Fit inside THUMBNAIL_SIZE x THUMBNAIL_SIZE, keeping aspect ratio."""
    thumb = source.copy()
    thumb.thumbnail((THUMBNAIL_SIZE, THUMBNAIL_SIZE), Image.Resampling.LANCZOS)
    return _encode_png(thumb)
