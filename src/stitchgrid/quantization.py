"""Median-cut color quantization, pixel sampling, and the recoloring pass."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from stitchgrid.color import nearest_rgb_index, round_half_up
from stitchgrid.errors import InvalidArgumentError
from stitchgrid.logging import get_logger
from stitchgrid.models import RGB, PixelBuffer, RGBColor, to_rgb
from stitchgrid.scheduling import Checkpoint, ChunkCallback, ChunkPolicy, pause

logger = get_logger("quantization")

MAX_COLORS = 255
_CHANNELS = (0, 1, 2)


def _unpack_rgb(raw: bytes, stride: int = 1) -> list[RGB]:
    step = 4 * stride
    return list(zip(raw[0::step], raw[1::step], raw[2::step]))


def extract_pixels(buffer: PixelBuffer, sample_rate: int = 1) -> list[RGB]:
    """Return every *sample_rate*-th pixel of *buffer* as an RGB triple.

    Alpha is dropped.

    Raises:
        InvalidArgumentError: If *sample_rate* is less than 1.
    """
    if sample_rate < 1:
        raise InvalidArgumentError(f"sample_rate must be >= 1, got {sample_rate}")
    return _unpack_rgb(buffer.data, sample_rate)


def optimal_sample_rate(width: int, height: int) -> int:
    """Sampling stride that bounds quantization cost on large images."""
    total = width * height
    if total > 1_000_000:
        return 5
    if total > 500_000:
        return 3
    if total > 250_000:
        return 2
    return 1


@dataclass
class _ColorBox:
    """A weighted set of distinct colors with tight per-channel bounds."""

    members: list[tuple[RGB, int]]
    lo: list[int] = field(default_factory=lambda: [0, 0, 0])
    hi: list[int] = field(default_factory=lambda: [255, 255, 255])

    @classmethod
    def bounded(cls, members: list[tuple[RGB, int]]) -> _ColorBox:
        lo = [255, 255, 255]
        hi = [0, 0, 0]
        for color, _count in members:
            for ch in _CHANNELS:
                value = color[ch]
                if value < lo[ch]:
                    lo[ch] = value
                if value > hi[ch]:
                    hi[ch] = value
        return cls(members=members, lo=lo, hi=hi)

    @property
    def volume(self) -> int:
        return (
            (self.hi[0] - self.lo[0])
            * (self.hi[1] - self.lo[1])
            * (self.hi[2] - self.lo[2])
        )

    def longest_channel(self) -> int:
        """Channel with the widest range; ties prefer r, then g, then b."""
        ranges = [self.hi[ch] - self.lo[ch] for ch in _CHANNELS]
        if ranges[0] >= ranges[1] and ranges[0] >= ranges[2]:
            return 0
        if ranges[1] >= ranges[2]:
            return 1
        return 2

    def split(self) -> tuple[_ColorBox, _ColorBox]:
        """Split at the weighted median along the longest channel."""
        channel = self.longest_channel()
        ordered = sorted(self.members, key=lambda m: m[0][channel])
        total = sum(count for _color, count in ordered)
        half = total / 2.0
        running = 0
        index = len(ordered)
        for i, (_color, count) in enumerate(ordered):
            running += count
            if running >= half:
                index = i + 1
                break
        index = min(max(index, 1), len(ordered) - 1)
        return _ColorBox.bounded(ordered[:index]), _ColorBox.bounded(ordered[index:])

    def average(self) -> RGBColor:
        """Count-weighted mean color, each channel rounded half-up."""
        weight = 0
        sums = [0, 0, 0]
        for color, count in self.members:
            weight += count
            for ch in _CHANNELS:
                sums[ch] += color[ch] * count
        return RGBColor(
            r=round_half_up(sums[0] / weight),
            g=round_half_up(sums[1] / weight),
            b=round_half_up(sums[2] / weight),
        )


class MedianCut:
    """Iterative median-cut worklist over a color frequency map.

    The first box spans the full 0–255 cube; every box produced by a split
    carries tight bounds over its members.
    """

    def __init__(self, counts: dict[RGB, int], k: int) -> None:
        self.k = k
        self.distinct = len(counts)
        self.boxes: list[_ColorBox] = [_ColorBox(members=list(counts.items()))]

    def _pick_box(self) -> int | None:
        best_index: int | None = None
        best_volume = -1
        for i, box in enumerate(self.boxes):
            if len(box.members) > 1 and box.volume > best_volume:
                best_volume = box.volume
                best_index = i
        return best_index

    def step(self) -> bool:
        """Perform one split. Returns False once no more splits are possible."""
        if len(self.boxes) >= self.k or len(self.boxes) >= self.distinct:
            return False
        index = self._pick_box()
        if index is None:
            return False
        left, right = self.boxes[index].split()
        self.boxes[index : index + 1] = [left, right]
        return True

    def colors(self) -> list[RGBColor]:
        return [box.average() for box in self.boxes if box.members]


def _count_colors(pixels: Iterable[RGBColor | Iterable[int]]) -> Counter[RGB]:
    counts: Counter[RGB] = Counter()
    for pixel in pixels:
        counts[pixel if type(pixel) is tuple else to_rgb(pixel)] += 1
    return counts


def _prepare(
    pixels: Iterable[RGBColor | Iterable[int]], k: int
) -> tuple[Counter[RGB], list[RGBColor] | None]:
    if k <= 0:
        raise InvalidArgumentError(f"k must be greater than 0, got {k}")
    if k > MAX_COLORS:
        raise InvalidArgumentError(f"k must be {MAX_COLORS} or less, got {k}")
    counts = _count_colors(pixels)
    if not counts:
        raise InvalidArgumentError("Cannot quantize an empty pixel population")
    if k >= len(counts):
        return counts, [RGBColor.from_tuple(c) for c in counts]
    return counts, None


def quantize(pixels: Iterable[RGBColor | Iterable[int]], k: int) -> list[RGBColor]:
    """Reduce *pixels* to at most *k* representative colors via median cut.

    When *k* is at least the number of distinct colors, the distinct colors
    are returned unchanged in first-seen order.

    Args:
        pixels: Pixel population as ``RGBColor`` models or raw triples.
        k: Maximum number of output colors (1–255).

    Returns:
        Between 1 and *k* colors, deterministic for identical input.

    Raises:
        InvalidArgumentError: If *k* is out of range or *pixels* is empty.
    """
    counts, passthrough = _prepare(pixels, k)
    if passthrough is not None:
        return passthrough
    cut = MedianCut(counts, k)
    while cut.step():
        pass
    colors = cut.colors()
    logger.debug("Median cut: %d distinct -> %d colors", len(counts), len(colors))
    return colors


async def quantize_async(
    pixels: Iterable[RGBColor | Iterable[int]],
    k: int,
    *,
    policy: ChunkPolicy | None = None,
    checkpoint: Checkpoint | None = None,
) -> list[RGBColor]:
    """Cooperative variant of ``quantize`` that yields during box splitting."""
    policy = policy or ChunkPolicy.desktop()
    counts, passthrough = _prepare(pixels, k)
    if passthrough is not None:
        return passthrough
    cut = MedianCut(counts, k)
    splits = 0
    while cut.step():
        splits += 1
        if len(cut.boxes) % policy.split_yield_interval == 0:
            await pause(policy, splits, checkpoint=checkpoint)
    if checkpoint is not None:
        checkpoint()
    colors = cut.colors()
    logger.debug("Median cut: %d distinct -> %d colors", len(counts), len(colors))
    return colors


def _validate_palette(colors: Sequence[RGBColor | Iterable[int]]) -> list[RGB]:
    palette = [to_rgb(c) for c in colors]
    if not palette:
        raise InvalidArgumentError("Cannot recolor with an empty color list")
    return palette


def _recolor_range(
    src: bytes,
    out: bytearray,
    start: int,
    end: int,
    palette: list[RGB],
    cache: dict[RGB, RGB],
) -> None:
    for i in range(start, end):
        base = i * 4
        key = (src[base], src[base + 1], src[base + 2])
        target = cache.get(key)
        if target is None:
            target = palette[nearest_rgb_index(key, palette)]
            cache[key] = target
        out[base] = target[0]
        out[base + 1] = target[1]
        out[base + 2] = target[2]


def apply_quantized_colors(
    buffer: PixelBuffer, colors: Sequence[RGBColor | Iterable[int]]
) -> PixelBuffer:
    """Return a copy of *buffer* with every pixel snapped to the nearest color.

    Uses squared RGB distance; alpha is preserved.
    """
    palette = _validate_palette(colors)
    out = bytearray(buffer.data)
    _recolor_range(buffer.data, out, 0, buffer.pixel_count, palette, {})
    return PixelBuffer(width=buffer.width, height=buffer.height, data=bytes(out))


async def apply_quantized_colors_async(
    buffer: PixelBuffer,
    colors: Sequence[RGBColor | Iterable[int]],
    *,
    policy: ChunkPolicy | None = None,
    checkpoint: Checkpoint | None = None,
    on_chunk: ChunkCallback | None = None,
) -> PixelBuffer:
    """Chunked variant of ``apply_quantized_colors``.

    *on_chunk* is called after every chunk with the number of chunks done
    and the total.
    """
    policy = policy or ChunkPolicy.desktop()
    palette = _validate_palette(colors)
    out = bytearray(buffer.data)
    cache: dict[RGB, RGB] = {}
    total = buffer.pixel_count
    chunk = policy.pixel_chunk_size
    chunk_count = (total + chunk - 1) // chunk
    for index, start in enumerate(range(0, total, chunk)):
        _recolor_range(buffer.data, out, start, min(start + chunk, total), palette, cache)
        if on_chunk is not None:
            on_chunk(index + 1, chunk_count)
        await pause(policy, index, checkpoint=checkpoint)
    logger.debug(
        "Recolored %d pixels (%d distinct inputs) in %d chunks",
        total,
        len(cache),
        chunk_count,
    )
    return PixelBuffer(width=buffer.width, height=buffer.height, data=bytes(out))


__all__ = [
    "MAX_COLORS",
    "MedianCut",
    "apply_quantized_colors",
    "apply_quantized_colors_async",
    "extract_pixels",
    "optimal_sample_rate",
    "quantize",
    "quantize_async",
]
