"""Color space conversion and distance metrics.

Two metrics are used on purpose:

* ``perceptual_distance``: plain Euclidean distance over CIE L*a*b*
  (sRGB, D65 white).  Used for catalog-wide matching.  CIEDE2000 would be
  more accurate but changes which thread wins for many inputs.
* ``squared_rgb_distance``: cheap squared Euclidean RGB distance, used
  against the small reduced palette while recoloring and grid mapping.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Sequence
from functools import lru_cache

from stitchgrid.errors import InvalidArgumentError
from stitchgrid.models import RGB, RGBColor, to_rgb

Lab = tuple[float, float, float]
DistanceFunc = Callable[[RGB, RGB], float]

# D65 reference white
_XN: float = 0.950470
_YN: float = 1.0
_ZN: float = 1.088830

_T0: float = 4.0 / 29.0
_T1: float = 6.0 / 29.0
_T2: float = 3.0 * _T1 * _T1
_T3: float = _T1 * _T1 * _T1


def _srgb_to_linear(channel: int) -> float:
    c = channel / 255.0
    if c <= 0.04045:
        return c / 12.92
    return ((c + 0.055) / 1.055) ** 2.4


def _xyz_to_lab_component(t: float) -> float:
    if t > _T3:
        return t ** (1.0 / 3.0)
    return t / _T2 + _T0


@lru_cache(maxsize=16_384)
def rgb_to_lab(rgb: RGB) -> Lab:
    """Convert an sRGB triple to CIE L*a*b* (D65)."""
    r = _srgb_to_linear(rgb[0])
    g = _srgb_to_linear(rgb[1])
    b = _srgb_to_linear(rgb[2])

    x = _xyz_to_lab_component((0.4124564 * r + 0.3575761 * g + 0.1804375 * b) / _XN)
    y = _xyz_to_lab_component((0.2126729 * r + 0.7151522 * g + 0.0721750 * b) / _YN)
    z = _xyz_to_lab_component((0.0193339 * r + 0.1191920 * g + 0.9503041 * b) / _ZN)

    lightness = max(0.0, 116.0 * y - 16.0)
    return (lightness, 500.0 * (x - y), 200.0 * (y - z))


def lab_distance(lab1: Lab, lab2: Lab) -> float:
    """Euclidean distance between two Lab triples."""
    dl = lab1[0] - lab2[0]
    da = lab1[1] - lab2[1]
    db = lab1[2] - lab2[2]
    return math.sqrt(dl * dl + da * da + db * db)


def perceptual_distance(
    color1: RGBColor | Iterable[int], color2: RGBColor | Iterable[int]
) -> float:
    """Simplified perceptual distance: Euclidean distance in Lab space."""
    return lab_distance(rgb_to_lab(to_rgb(color1)), rgb_to_lab(to_rgb(color2)))


def euclidean_distance(
    color1: RGBColor | Iterable[int], color2: RGBColor | Iterable[int]
) -> float:
    """Euclidean distance in RGB space."""
    return math.sqrt(squared_rgb_distance(to_rgb(color1), to_rgb(color2)))


def squared_rgb_distance(rgb1: RGB, rgb2: RGB) -> int:
    """Squared Euclidean RGB distance (no square root)."""
    dr = rgb1[0] - rgb2[0]
    dg = rgb1[1] - rgb2[1]
    db = rgb1[2] - rgb2[2]
    return dr * dr + dg * dg + db * db


def batch_distance(
    source: RGBColor | Iterable[int],
    targets: Iterable[RGBColor | Iterable[int]],
    distance: Callable[..., float] = perceptual_distance,
) -> list[float]:
    """Distances from *source* to each of *targets*, in order."""
    return [distance(source, target) for target in targets]


def find_closest_index(
    source: RGBColor | Iterable[int],
    targets: Sequence[RGBColor | Iterable[int]],
    distance: Callable[..., float] = perceptual_distance,
) -> int:
    """Index of the closest target; the earliest index wins ties.

    Raises:
        InvalidArgumentError: If *targets* is empty.
    """
    if not targets:
        raise InvalidArgumentError("Cannot search for a closest color in an empty list")
    best_index = 0
    best_distance = math.inf
    for i, d in enumerate(batch_distance(source, targets, distance)):
        if d < best_distance:
            best_distance = d
            best_index = i
    return best_index


def nearest_rgb_index(rgb: RGB, palette: Sequence[RGB]) -> int:
    """Index of the nearest palette triple by squared RGB distance.

    Hot-path variant of ``find_closest_index`` for small palettes of raw
    triples; the first entry wins ties.
    """
    best_index = 0
    best = -1
    r, g, b = rgb
    for i, (pr, pg, pb) in enumerate(palette):
        dr = r - pr
        dg = g - pg
        db = b - pb
        d = dr * dr + dg * dg + db * db
        if best < 0 or d < best:
            best = d
            best_index = i
    return best_index


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for non-negatives."""
    return int(math.floor(value + 0.5))
