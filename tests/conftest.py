"""Shared fixtures for stitchgrid tests."""

from __future__ import annotations

import pytest

from stitchgrid.catalog import ReferenceCatalog
from stitchgrid.models import PaletteEntry, PixelBuffer, ReferenceColor
from stitchgrid.symbols import assign_symbols

from factories import make_color

# ---------------------------------------------------------------------------
# Catalog fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def primary_colors() -> list[ReferenceColor]:
    """Black, white, red, green and blue, in that order."""
    return [
        make_color("310", (0, 0, 0), "Black"),
        make_color("B5200", (255, 255, 255), "Snow White"),
        make_color("666", (255, 0, 0), "Bright Red"),
        make_color("700", (0, 255, 0), "Bright Green"),
        make_color("797", (0, 0, 255), "Royal Blue"),
    ]


@pytest.fixture()
def small_catalog(primary_colors: list[ReferenceColor]) -> ReferenceCatalog:
    return ReferenceCatalog(primary_colors)


@pytest.fixture()
def black_white_palette() -> list[PaletteEntry]:
    """Two-entry palette: black then white, with assigned glyphs."""
    return assign_symbols(
        [make_color("310", (0, 0, 0), "Black"), make_color("B5200", (255, 255, 255))]
    )


# ---------------------------------------------------------------------------
# Pixel buffer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def red_blue_buffer() -> PixelBuffer:
    """10x10 image: left half pure red, right half pure blue."""
    colors = []
    for _y in range(10):
        colors.extend([(255, 0, 0)] * 5)
        colors.extend([(0, 0, 255)] * 5)
    return PixelBuffer.from_rgb(10, 10, colors)


@pytest.fixture()
def checkerboard_buffer() -> PixelBuffer:
    """20x20 black-and-white checkerboard with 1-pixel squares."""
    colors = [
        (0, 0, 0) if (x + y) % 2 == 0 else (255, 255, 255)
        for y in range(20)
        for x in range(20)
    ]
    return PixelBuffer.from_rgb(20, 20, colors)


@pytest.fixture()
def gradient_buffer() -> PixelBuffer:
    """40x30 buffer with a smooth red/green gradient and constant blue."""
    colors = [
        (x * 6, y * 8, 128)
        for y in range(30)
        for x in range(40)
    ]
    return PixelBuffer.from_rgb(40, 30, colors)

