"""Nearest reference-color matching with a bounded, shareable LRU cache."""

from __future__ import annotations

import threading
from collections import OrderedDict
from collections.abc import Hashable, Iterable, Sequence

from stitchgrid.catalog import ReferenceCatalog
from stitchgrid.color import Lab, lab_distance, rgb_to_lab
from stitchgrid.errors import InvalidArgumentError
from stitchgrid.logging import get_logger
from stitchgrid.models import RGB, ReferenceColor, RGBColor, to_rgb

logger = get_logger("matcher")

DEFAULT_CACHE_CAPACITY = 65_536


class MatchCache:
    """Thread-safe LRU cache of color -> ``ReferenceColor`` matches.

    One instance may be shared by several matchers or overlapping pipeline
    runs; every read and insert happens under a single lock.  Keys are
    opaque here; ``PaletteMatcher`` keys by catalog fingerprint and
    ``(r, g, b)`` so matchers over different catalogs never see each
    other's results.
    """

    def __init__(self, capacity: int = DEFAULT_CACHE_CAPACITY) -> None:
        if capacity < 1:
            raise InvalidArgumentError(f"cache capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._entries: OrderedDict[Hashable, ReferenceColor] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> ReferenceColor | None:
        with self._lock:
            value = self._entries.get(key)
            if value is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return value

    def put(self, key: Hashable, value: ReferenceColor) -> None:
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        return self.size()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0


class PaletteMatcher:
    """Match arbitrary colors to the perceptually nearest catalog entry.

    Distance is plain Euclidean distance in Lab space.  When two entries are
    equally close, the one earlier in catalog order wins.
    """

    def __init__(
        self,
        catalog: ReferenceCatalog | Sequence[ReferenceColor],
        cache: MatchCache | None = None,
    ) -> None:
        self._colors: tuple[ReferenceColor, ...] = tuple(catalog)
        self._labs: list[Lab] = [rgb_to_lab(c.rgb.as_tuple()) for c in self._colors]
        self._fingerprint = hash(tuple((c.id, c.rgb.as_tuple()) for c in self._colors))
        self.cache = cache if cache is not None else MatchCache()

    @property
    def catalog_size(self) -> int:
        return len(self._colors)

    def _require_catalog(self) -> None:
        if not self._colors:
            raise InvalidArgumentError("Reference catalog is empty")

    def _distances(self, rgb: RGB) -> list[float]:
        lab = rgb_to_lab(rgb)
        return [lab_distance(lab, other) for other in self._labs]

    def _nearest(self, rgb: RGB) -> ReferenceColor:
        lab = rgb_to_lab(rgb)
        best_index = 0
        best = lab_distance(lab, self._labs[0])
        for i in range(1, len(self._labs)):
            d = lab_distance(lab, self._labs[i])
            if d < best:
                best = d
                best_index = i
        return self._colors[best_index]

    def match(self, color: RGBColor | Iterable[int], use_cache: bool = True) -> ReferenceColor:
        """Return the catalog entry nearest to *color*.

        Raises:
            InvalidArgumentError: If the catalog is empty.
        """
        self._require_catalog()
        rgb = to_rgb(color)
        key = (self._fingerprint, rgb)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
        matched = self._nearest(rgb)
        if use_cache:
            self.cache.put(key, matched)
        return matched

    def match_batch(
        self, colors: Iterable[RGBColor | Iterable[int]], use_cache: bool = True
    ) -> list[ReferenceColor]:
        """Match each color, preserving input order."""
        return [self.match(c, use_cache=use_cache) for c in colors]

    def match_unique(
        self, colors: Iterable[RGBColor | Iterable[int]]
    ) -> list[ReferenceColor]:
        """Match each color and drop repeats by id, keeping first occurrences."""
        unique: dict[str, ReferenceColor] = {}
        for matched in self.match_batch(colors):
            unique.setdefault(matched.id, matched)
        return list(unique.values())

    def match_with_threshold(
        self, color: RGBColor | Iterable[int], max_distance: float = 10.0
    ) -> list[ReferenceColor]:
        """All catalog entries within *max_distance* of *color*, in catalog order."""
        self._require_catalog()
        distances = self._distances(to_rgb(color))
        return [c for c, d in zip(self._colors, distances) if d <= max_distance]

    def top_n(
        self, color: RGBColor | Iterable[int], n: int = 5
    ) -> list[tuple[ReferenceColor, float]]:
        """The *n* nearest entries with their distances, closest first."""
        self._require_catalog()
        if n < 0:
            raise InvalidArgumentError(f"n must be >= 0, got {n}")
        ranked = sorted(
            zip(self._colors, self._distances(to_rgb(color))), key=lambda item: item[1]
        )
        return ranked[:n]

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.debug("Match cache cleared")

    def cache_size(self) -> int:
        return self.cache.size()
