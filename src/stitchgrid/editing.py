"""Palette edits on finished patterns.

Patterns are immutable; each edit builds and returns a new ``Pattern`` so
holders of the old value keep a consistent view.
"""

from __future__ import annotations

from collections.abc import Callable

from stitchgrid.color import nearest_rgb_index
from stitchgrid.errors import InvalidArgumentError
from stitchgrid.logging import get_logger
from stitchgrid.models import PaletteEntry, Pattern, PatternCell, ReferenceColor
from stitchgrid.symbols import assign_symbols

logger = get_logger("editing")


def _rebuild(
    pattern: Pattern,
    palette: list[PaletteEntry],
    remap: Callable[[PaletteEntry], PaletteEntry],
) -> Pattern:
    cells = tuple(
        tuple(PatternCell(x=c.x, y=c.y, entry=remap(c.entry)) for c in row)
        for row in pattern.cells
    )
    used = {cell.entry.id for row in cells for cell in row}
    kept = tuple(entry for entry in palette if entry.id in used)
    return pattern.model_copy(
        update={
            "cells": cells,
            "palette": kept,
            "metadata": pattern.metadata.model_copy(update={"color_count": len(kept)}),
        }
    )


def _require_entry(pattern: Pattern, color_id: str) -> PaletteEntry:
    entry = pattern.entry_for(color_id)
    if entry is None:
        raise InvalidArgumentError(f"Color {color_id!r} is not in the pattern palette")
    return entry


def remove_color(pattern: Pattern, color_id: str) -> Pattern:
    """Drop *color_id* from the palette.

    Its cells move to the nearest remaining entry by RGB distance, and the
    remaining entries are given fresh glyphs in palette order.

    Raises:
        InvalidArgumentError: If *color_id* is unknown or is the last color.
    """
    _require_entry(pattern, color_id)
    if len(pattern.palette) <= 1:
        raise InvalidArgumentError("Cannot remove the last color")

    remaining = assign_symbols([e for e in pattern.palette if e.id != color_id])
    by_id = {entry.id: entry for entry in remaining}
    remaining_rgb = [entry.rgb.as_tuple() for entry in remaining]
    nearest_cache: dict[str, PaletteEntry] = {}

    def remap(entry: PaletteEntry) -> PaletteEntry:
        if entry.id != color_id:
            return by_id[entry.id]
        target = nearest_cache.get(entry.id)
        if target is None:
            target = remaining[nearest_rgb_index(entry.rgb.as_tuple(), remaining_rgb)]
            nearest_cache[entry.id] = target
        return target

    edited = _rebuild(pattern, remaining, remap)
    logger.info(
        "Removed color %s; %d colors remain", color_id, len(edited.palette)
    )
    return edited


def replace_color(pattern: Pattern, color_id: str, new_color: ReferenceColor) -> Pattern:
    """Swap the thread behind *color_id* for *new_color*, keeping its glyph.

    If *new_color* is already in the palette the two entries merge and the
    cells adopt the existing entry's glyph.

    Raises:
        InvalidArgumentError: If *color_id* is not in the pattern palette.
    """
    old = _require_entry(pattern, color_id)
    existing = pattern.entry_for(new_color.id)

    if existing is not None and existing.id != color_id:
        replacement = existing
        palette = [e for e in pattern.palette if e.id != color_id]
        logger.info("Merged color %s into %s", color_id, new_color.id)
    else:
        replacement = PaletteEntry(color=new_color, symbol=old.symbol)
        palette = [replacement if e.id == color_id else e for e in pattern.palette]
        logger.info("Replaced color %s with %s", color_id, new_color.id)

    def remap(entry: PaletteEntry) -> PaletteEntry:
        return replacement if entry.id == color_id else entry

    return _rebuild(pattern, palette, remap)
