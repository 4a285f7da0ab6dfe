"""Chart glyph table and palette symbol assignment."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from stitchgrid.errors import InvalidArgumentError
from stitchgrid.logging import get_logger
from stitchgrid.models import PaletteEntry, ReferenceColor

logger = get_logger("symbols")

BASIC_SYMBOLS: tuple[str, ...] = ("●", "■", "▲", "♦", "★", "+", "×", "○", "□", "△")
LETTER_SYMBOLS: tuple[str, ...] = tuple("ABCDEFGHIJKLMNOPQRSTUVWXYZ")
DIGIT_SYMBOLS: tuple[str, ...] = tuple("0123456789")
EXTENDED_SYMBOLS: tuple[str, ...] = (
    "◆", "▼", "◀", "▶", "☆", "⬟", "◯", "▪", "▴", "⬢", "⊕", "⊗", "⊙", "◐", "◑",
)  # fmt: skip

# Simplest glyphs first; assignment walks the table in order.
SYMBOL_TABLE: tuple[str, ...] = (
    BASIC_SYMBOLS + LETTER_SYMBOLS + DIGIT_SYMBOLS + EXTENDED_SYMBOLS
)


def symbol_for_index(index: int) -> str:
    """Glyph for palette position *index*; wraps past the end of the table."""
    return SYMBOL_TABLE[index % len(SYMBOL_TABLE)]


def _base_color(item: ReferenceColor | PaletteEntry) -> ReferenceColor:
    return item.color if isinstance(item, PaletteEntry) else item


def assign_symbols(palette: Sequence[ReferenceColor | PaletteEntry]) -> list[PaletteEntry]:
    """Give entry *i* the glyph ``SYMBOL_TABLE[i % len(SYMBOL_TABLE)]``.

    Palettes larger than the table reuse glyphs.  That is a known limitation
    of a fixed table and is only reported, not corrected.
    """
    if len(palette) > len(SYMBOL_TABLE):
        logger.warning(
            "Palette has %d colors but only %d distinct symbols; symbols will repeat",
            len(palette),
            len(SYMBOL_TABLE),
        )
    return [
        PaletteEntry(color=_base_color(item), symbol=symbol_for_index(i))
        for i, item in enumerate(palette)
    ]


def assign_symbols_by_usage(
    palette: Sequence[ReferenceColor | PaletteEntry],
    usage_counts: Mapping[str, int],
) -> list[PaletteEntry]:
    """Assign glyphs so that the most used colors get the simplest ones.

    The palette is stably sorted by descending usage (ids missing from
    *usage_counts* count as zero) before positional assignment.
    """
    ordered = sorted(
        palette, key=lambda item: usage_counts.get(_base_color(item).id, 0), reverse=True
    )
    return assign_symbols(ordered)


def reassign_symbol(
    entries: Sequence[PaletteEntry], color_id: str, symbol: str
) -> list[PaletteEntry]:
    """Return a copy of *entries* with *color_id* drawn as *symbol*."""
    if not symbol:
        raise InvalidArgumentError("Symbol must be a non-empty string")
    return [
        entry.model_copy(update={"symbol": symbol}) if entry.id == color_id else entry
        for entry in entries
    ]


def has_unique_symbols(entries: Iterable[PaletteEntry]) -> bool:
    seen: set[str] = set()
    for entry in entries:
        if entry.symbol in seen:
            return False
        seen.add(entry.symbol)
    return True


def symbol_for(entries: Iterable[PaletteEntry], color_id: str) -> str | None:
    for entry in entries:
        if entry.id == color_id:
            return entry.symbol
    return None


def symbol_legend(entries: Iterable[PaletteEntry]) -> list[tuple[str, ReferenceColor]]:
    """``(glyph, color)`` pairs in palette order, for chart keys."""
    return [(entry.symbol, entry.color) for entry in entries]
