"""
analyzer/tiling.py — Partitioner, Coordinate Remapper and tile rendering.

Tall screenshots are cut into overlapping horizontal tiles so each backend
call sees a slice small enough for precise boxes. Tiles always span the full
image width, so only y-coordinates need remapping.
"""
import base64
import io
import math
from typing import List, NamedTuple, Sequence

from PIL import Image

DEFAULT_TILE_HEIGHT = 1536
DEFAULT_OVERLAP = 150
DEFAULT_MAX_WIDTH = 2048
DEFAULT_JPEG_QUALITY = 90

NORMALIZED_SPAN = 1000


class Tile(NamedTuple):
    index: int
    offset: int
    height: int


def plan_tiles(full_height: int,
               max_tile_height: int = DEFAULT_TILE_HEIGHT,
               overlap: int = DEFAULT_OVERLAP) -> List[Tile]:
    """
    Compute tile offsets and heights covering rows [0, full_height).

    Consecutive tiles share `overlap` rows so elements straddling a boundary
    are whole in at least one tile. The last tile may be shorter.
    """
    if full_height <= 0:
        raise ValueError(f"Image height must be positive, got {full_height}")
    if overlap < 0 or max_tile_height <= overlap:
        raise ValueError(
            f"Tile height ({max_tile_height}) must exceed overlap ({overlap}) and overlap must be >= 0"
        )

    effective = max_tile_height - overlap
    if full_height <= max_tile_height:
        count = 1
    else:
        count = math.ceil((full_height - overlap) / effective)

    tiles = []
    for i in range(count):
        offset = math.floor(i * effective)
        height = math.floor(min(max_tile_height, full_height - offset))
        tiles.append(Tile(i, offset, height))
    return tiles


def clamp_box(coords) -> List[int]:
    """Round and clamp a raw box into [0, 1000]; malformed boxes become all-zero."""
    if not isinstance(coords, (list, tuple)) or len(coords) < 4:
        return [0, 0, 0, 0]
    box = []
    for value in coords[:4]:
        try:
            number = round(float(value))
        except (TypeError, ValueError, OverflowError):
            number = 0
        box.append(max(0, min(NORMALIZED_SPAN, number)))
    return box


def is_unanchored(box: Sequence) -> bool:
    """An all-zero box means the element has no visual position."""
    return not box or all(c == 0 for c in box)


def remap_box(box: Sequence, offset: int, tile_height: int, full_height: int) -> List[int]:
    """Convert a tile-local normalized box to full-image normalized space."""
    y_min, x_min, y_max, x_max = box[:4]

    def _global_y(local_y):
        return ((local_y / NORMALIZED_SPAN * tile_height) + offset) / full_height * NORMALIZED_SPAN

    return clamp_box([_global_y(y_min), x_min, _global_y(y_max), x_max])


class ImageTileSource:
    """Pillow-backed image that renders tiles as base64 JPEG."""

    def __init__(self, image: Image.Image,
                 max_width: int = DEFAULT_MAX_WIDTH,
                 jpeg_quality: int = DEFAULT_JPEG_QUALITY):
        image = image.convert("RGB")
        if max_width and image.width > max_width:
            scale = max_width / image.width
            image = image.resize((max_width, round(image.height * scale)), Image.LANCZOS)
        self.image = image
        self.jpeg_quality = jpeg_quality

    @classmethod
    def from_bytes(cls, data: bytes, **kwargs) -> "ImageTileSource":
        """Open uploaded bytes. Raises ValueError when they are not an image."""
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (OSError, Image.DecompressionBombError) as exc:
            raise ValueError(f"Uploaded file is not a readable image: {exc}") from exc
        return cls(image, **kwargs)

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    def render(self, offset: int, height: int) -> str:
        tile = self.image.crop((0, offset, self.image.width, offset + height))
        buffer = io.BytesIO()
        tile.save(buffer, "JPEG", quality=self.jpeg_quality)
        return base64.b64encode(buffer.getvalue()).decode("ascii")
