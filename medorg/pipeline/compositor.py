import logging
import os
from pathlib import Path
from typing import List, Sequence, Union
from PIL import Image, ImageOps, UnidentifiedImageError
from medorg.domain.errors import CompositionError
from medorg.domain.models import ThumbnailResult

BACKGROUND = (0, 0, 0)


class GridCompositor:
    """Tiles thumbnails row-major into a fixed ``columns x rows`` sheet.

    The sheet is always ``columns*tile_width x rows*tile_height``. Tiles are
    packed without gaps in the order given; when fewer than the full grid are
    available the trailing cells stay background. Every tile is letterboxed
    to the cell size, so odd-sized inputs never spill into neighbours.
    """

    def __init__(self, columns: int = 9, rows: int = 6, tile_width: int = 320, tile_height: int = 180, quality: int = 90):
        self.columns = columns
        self.rows = rows
        self.tile_width = tile_width
        self.tile_height = tile_height
        self.quality = quality
        self.logger = logging.getLogger(__name__)

    @property
    def capacity(self) -> int:
        return self.columns * self.rows

    @property
    def sheet_size(self):
        return (self.columns * self.tile_width, self.rows * self.tile_height)

    @staticmethod
    def ordered_tiles(results: Sequence[ThumbnailResult]) -> List[Path]:
        """Successful tiles in ascending timestamp order."""
        ok = [r for r in results if r.success]
        ok.sort(key=lambda r: (r.task.timestamp, r.task.index))
        return [r.task.output_path for r in ok]

    def _load_tile(self, path: Path):
        with Image.open(path) as img:
            img.load()
            tile = img.convert("RGB")
        if tile.size != (self.tile_width, self.tile_height):
            tile = ImageOps.pad(tile, (self.tile_width, self.tile_height), color=BACKGROUND)
        return tile

    def compose(self, tiles: Sequence[Union[Path, ThumbnailResult]], output_path: Path) -> int:
        """Writes the sheet to ``output_path`` and returns how many tiles were placed.

        ThumbnailResults are filtered to successes and ordered by timestamp;
        plain paths are used in the order given. Unreadable tiles are skipped
        and the rest close the gap. Raises CompositionError when nothing is usable.
        """
        if tiles and isinstance(tiles[0], ThumbnailResult):
            paths = self.ordered_tiles(tiles)
        else:
            paths = [Path(p) for p in tiles]

        sheet = Image.new("RGB", self.sheet_size, BACKGROUND)
        placed = 0
        for path in paths:
            if placed >= self.capacity:
                break
            try:
                tile = self._load_tile(path)
            except (OSError, UnidentifiedImageError) as e:
                self.logger.warning(f"TILE_SKIPPED: {path.name}: {e}")
                continue
            row, col = divmod(placed, self.columns)
            sheet.paste(tile, (col * self.tile_width, row * self.tile_height))
            placed += 1

        if placed == 0:
            raise CompositionError(f"No usable tiles for {output_path.name}")

        output_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = output_path.with_name(f".{output_path.name}.tmp")
        try:
            sheet.save(tmp_path, format="JPEG", quality=self.quality)
            os.replace(tmp_path, output_path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
        return placed
