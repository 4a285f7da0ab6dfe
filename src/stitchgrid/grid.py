"""Downsample a pixel buffer into a grid of palette-bound pattern cells."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

from PIL import Image

from stitchgrid.color import nearest_rgb_index, round_half_up
from stitchgrid.errors import InvalidArgumentError
from stitchgrid.image_io import buffer_from_image, image_from_buffer
from stitchgrid.logging import get_logger
from stitchgrid.models import RGB, PaletteEntry, PatternCell, PixelBuffer
from stitchgrid.scheduling import Checkpoint, ChunkCallback, ChunkPolicy, pause

logger = get_logger("grid")

Grid = tuple[tuple[PatternCell, ...], ...]


def _validate(grid_width: int, grid_height: int, palette: Sequence[PaletteEntry]) -> None:
    if grid_width <= 0 or grid_height <= 0:
        raise InvalidArgumentError(
            f"Grid dimensions must be positive, got {grid_width}x{grid_height}"
        )
    if not palette:
        raise InvalidArgumentError("Cannot map to a grid with an empty palette")


def _area_average(
    buffer: PixelBuffer, x0: int, y0: int, w: int, h: int
) -> RGB:
    """Mean color of the source rectangle, clamped to the buffer bounds."""
    x1 = min(x0 + w, buffer.width)
    y1 = min(y0 + h, buffer.height)
    data = buffer.data
    r_sum = g_sum = b_sum = 0
    count = 0
    for y in range(y0, y1):
        row = y * buffer.width
        for x in range(x0, x1):
            base = (row + x) * 4
            r_sum += data[base]
            g_sum += data[base + 1]
            b_sum += data[base + 2]
            count += 1
    if count == 0:
        return (0, 0, 0)
    return (
        round_half_up(r_sum / count),
        round_half_up(g_sum / count),
        round_half_up(b_sum / count),
    )


class _RowMapper:
    """Maps rows of one buffer; the lookup cache lives only as long as the mapper."""

    def __init__(
        self,
        buffer: PixelBuffer,
        grid_width: int,
        grid_height: int,
        palette: Sequence[PaletteEntry],
    ) -> None:
        self.buffer = buffer
        self.grid_width = grid_width
        self.entries = list(palette)
        self.palette_rgb = [entry.rgb.as_tuple() for entry in self.entries]
        self.direct = buffer.width == grid_width and buffer.height == grid_height
        self.scale_x = buffer.width / grid_width
        self.scale_y = buffer.height / grid_height
        self.sample_w = math.ceil(self.scale_x)
        self.sample_h = math.ceil(self.scale_y)
        self.cache: dict[RGB, PaletteEntry] = {}

    def _lookup(self, rgb: RGB) -> PaletteEntry:
        entry = self.cache.get(rgb)
        if entry is None:
            entry = self.entries[nearest_rgb_index(rgb, self.palette_rgb)]
            self.cache[rgb] = entry
        return entry

    def _sample(self, x: int, y: int) -> RGB:
        if self.direct:
            return self.buffer.pixel(x, y)
        return _area_average(
            self.buffer,
            math.floor(x * self.scale_x),
            math.floor(y * self.scale_y),
            self.sample_w,
            self.sample_h,
        )

    def row(self, y: int) -> tuple[PatternCell, ...]:
        return tuple(
            PatternCell(x=x, y=y, entry=self._lookup(self._sample(x, y)))
            for x in range(self.grid_width)
        )


def map_to_grid(
    buffer: PixelBuffer,
    grid_width: int,
    grid_height: int,
    palette: Sequence[PaletteEntry],
) -> Grid:
    """Map *buffer* onto a ``grid_height`` x ``grid_width`` grid of cells.

    When the buffer already has the grid's dimensions each pixel maps to one
    cell; otherwise each cell takes the rounded mean of its source
    rectangle.  Cells bind to the nearest palette entry by squared RGB
    distance, the earlier entry winning ties.

    Raises:
        InvalidArgumentError: If a grid dimension is not positive or the
            palette is empty.
    """
    _validate(grid_width, grid_height, palette)
    mapper = _RowMapper(buffer, grid_width, grid_height, palette)
    return tuple(mapper.row(y) for y in range(grid_height))


async def map_to_grid_async(
    buffer: PixelBuffer,
    grid_width: int,
    grid_height: int,
    palette: Sequence[PaletteEntry],
    *,
    policy: ChunkPolicy | None = None,
    checkpoint: Checkpoint | None = None,
    on_chunk: ChunkCallback | None = None,
) -> Grid:
    """Chunked variant of ``map_to_grid``; yields after every block of rows.

    *on_chunk* receives ``(chunks_done, chunks_total)`` after each block.
    """
    _validate(grid_width, grid_height, palette)
    policy = policy or ChunkPolicy.desktop()
    mapper = _RowMapper(buffer, grid_width, grid_height, palette)
    total_cells = grid_width * grid_height
    rows_per_chunk = policy.row_chunk_size(total_cells)
    chunk_count = math.ceil(grid_height / rows_per_chunk)

    rows: list[tuple[PatternCell, ...]] = []
    for index, start in enumerate(range(0, grid_height, rows_per_chunk)):
        end = min(start + rows_per_chunk, grid_height)
        rows.extend(mapper.row(y) for y in range(start, end))
        if on_chunk is not None:
            on_chunk(index + 1, chunk_count)
        await pause(policy, index, total_cells, checkpoint=checkpoint)

    logger.debug(
        "Mapped %dx%d grid (%s mode, %d rows/chunk, %d distinct samples)",
        grid_width,
        grid_height,
        "direct" if mapper.direct else "area-average",
        rows_per_chunk,
        len(mapper.cache),
    )
    return tuple(rows)


def count_color_usage(cells: Iterable[Iterable[PatternCell]]) -> dict[str, int]:
    """Cell count per palette id, in first-seen order."""
    usage: dict[str, int] = {}
    for row in cells:
        for cell in row:
            usage[cell.entry.id] = usage.get(cell.entry.id, 0) + 1
    return usage


def used_colors(cells: Iterable[Iterable[PatternCell]]) -> list[PaletteEntry]:
    """Distinct palette entries referenced by *cells*, in first-seen order."""
    seen: dict[str, PaletteEntry] = {}
    for row in cells:
        for cell in row:
            seen.setdefault(cell.entry.id, cell.entry)
    return list(seen.values())


def resize_to_grid(buffer: PixelBuffer, grid_width: int, grid_height: int) -> PixelBuffer:
    """Resample *buffer* to the grid dimensions with bilinear filtering."""
    if grid_width <= 0 or grid_height <= 0:
        raise InvalidArgumentError(
            f"Grid dimensions must be positive, got {grid_width}x{grid_height}"
        )
    if (buffer.width, buffer.height) == (grid_width, grid_height):
        return buffer
    image = image_from_buffer(buffer).resize(
        (grid_width, grid_height), resample=Image.Resampling.BILINEAR
    )
    return buffer_from_image(image)


def calculate_grid_dimensions(
    image_width: int,
    image_height: int,
    target: int,
    maintain_aspect_ratio: bool = True,
) -> tuple[int, int]:
    """Grid size whose longer side is *target* stitches.

    Without aspect-ratio preservation the grid is square.
    """
    if image_width <= 0 or image_height <= 0 or target <= 0:
        raise InvalidArgumentError(
            f"Dimensions must be positive, got image {image_width}x{image_height} "
            f"and target {target}"
        )
    if not maintain_aspect_ratio:
        return target, target

    ratio = image_width / image_height
    if ratio >= 1:
        return target, max(1, round_half_up(target / ratio))
    return max(1, round_half_up(target * ratio)), target
