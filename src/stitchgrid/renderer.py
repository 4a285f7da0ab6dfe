"""Pattern-to-image and pattern-to-text renderers."""

from __future__ import annotations

import io

from PIL import Image, ImageDraw, ImageFont

from stitchgrid.grid import count_color_usage
from stitchgrid.models import Pattern
from stitchgrid.symbols import symbol_legend

GRID_LINE_COLOR = (160, 160, 160)
MAJOR_GRID_LINE_COLOR = (40, 40, 40)
MAJOR_GRID_EVERY = 10
_WHITE = (255, 255, 255)


def _text_color(rgb: tuple[int, int, int]) -> tuple[int, int, int]:
    """Black on light cells, white on dark ones."""
    luminance = 0.299 * rgb[0] + 0.587 * rgb[1] + 0.114 * rgb[2]
    return (0, 0, 0) if luminance > 140 else _WHITE


def render_pattern(
    pattern: Pattern,
    cell_size: int = 10,
    show_grid: bool = True,
    colorless: bool = False,
    show_symbols: bool | None = None,
) -> Image.Image:
    """Render *pattern* as an RGB chart image.

    Each cell becomes a ``cell_size`` square filled with its thread color,
    or white in colorless mode.  Grid lines are drawn along cell borders
    with a darker line every tenth stitch.

    Args:
        pattern: The pattern to draw.
        cell_size: Edge length of one cell in pixels.
        show_grid: Draw cell borders.
        colorless: Fill cells white and rely on glyphs alone.
        show_symbols: Draw each cell's glyph.  Defaults to *colorless*.

    Raises:
        ValueError: If *cell_size* is less than 1.
    """
    if cell_size < 1:
        raise ValueError(f"cell_size must be >= 1, got {cell_size}")
    if show_symbols is None:
        show_symbols = colorless

    width = pattern.width * cell_size
    height = pattern.height * cell_size
    img = Image.new("RGB", (width, height), _WHITE)
    draw = ImageDraw.Draw(img)

    if not colorless:
        for cell in pattern.iter_cells():
            x0 = cell.x * cell_size
            y0 = cell.y * cell_size
            draw.rectangle(
                (x0, y0, x0 + cell_size - 1, y0 + cell_size - 1),
                fill=cell.entry.rgb.as_tuple(),
            )

    if show_symbols and cell_size >= 6:
        font = ImageFont.load_default(size=max(6, int(cell_size * 0.7)))
        for cell in pattern.iter_cells():
            fill = (0, 0, 0) if colorless else _text_color(cell.entry.rgb.as_tuple())
            center = (
                cell.x * cell_size + cell_size / 2,
                cell.y * cell_size + cell_size / 2,
            )
            draw.text(center, cell.symbol, fill=fill, font=font, anchor="mm")

    if show_grid:
        for i in range(pattern.width + 1):
            x = min(i * cell_size, width - 1)
            color = MAJOR_GRID_LINE_COLOR if i % MAJOR_GRID_EVERY == 0 else GRID_LINE_COLOR
            draw.line((x, 0, x, height - 1), fill=color)
        for j in range(pattern.height + 1):
            y = min(j * cell_size, height - 1)
            color = MAJOR_GRID_LINE_COLOR if j % MAJOR_GRID_EVERY == 0 else GRID_LINE_COLOR
            draw.line((0, y, width - 1, y), fill=color)

    return img


def pattern_to_png_bytes(
    pattern: Pattern,
    cell_size: int = 10,
    show_grid: bool = True,
    colorless: bool = False,
    show_symbols: bool | None = None,
) -> bytes:
    """Render *pattern* and encode it as PNG bytes."""
    img = render_pattern(
        pattern,
        cell_size=cell_size,
        show_grid=show_grid,
        colorless=colorless,
        show_symbols=show_symbols,
    )
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def pattern_symbol_rows(pattern: Pattern) -> list[str]:
    """One string of glyphs per pattern row."""
    return ["".join(cell.symbol for cell in row) for row in pattern.cells]


def format_chart_text(pattern: Pattern) -> str:
    """Plain-text chart: glyph rows followed by a legend with stitch counts."""
    usage = count_color_usage(pattern.cells)
    lines = pattern_symbol_rows(pattern)
    lines.append("")
    lines.append(f"Legend ({len(pattern.palette)} colors)")
    for symbol, color in symbol_legend(pattern.palette):
        lines.append(
            f"{symbol}  {color.id:<6} {color.hex}  {color.display_name}"
            f"  ({usage.get(color.id, 0)} stitches)"
        )
    return "\n".join(lines) + "\n"
