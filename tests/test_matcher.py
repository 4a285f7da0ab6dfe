"""Tests for stitchgrid.matcher: palette matching and the LRU match cache."""

from __future__ import annotations

import threading

import pytest

from stitchgrid.catalog import ReferenceCatalog, default_catalog
from stitchgrid.errors import InvalidArgumentError
from stitchgrid.matcher import MatchCache, PaletteMatcher
from stitchgrid.models import ReferenceColor, RGBColor

from factories import make_color

# ---------------------------------------------------------------------------
# MatchCache
# ---------------------------------------------------------------------------


class TestMatchCache:
    def test_get_put(self) -> None:
        cache = MatchCache(4)
        black = make_color("310", (0, 0, 0))
        assert cache.get((0, 0, 0)) is None
        cache.put((0, 0, 0), black)
        assert cache.get((0, 0, 0)) == black
        assert cache.hits == 1
        assert cache.misses == 1
        assert len(cache) == 1

    def test_evicts_least_recently_used(self) -> None:
        cache = MatchCache(2)
        a, b, c = (make_color(code, (i, i, i)) for i, code in enumerate("abc"))
        cache.put((0, 0, 0), a)
        cache.put((1, 1, 1), b)
        cache.get((0, 0, 0))  # refresh a
        cache.put((2, 2, 2), c)
        assert (0, 0, 0) in cache
        assert (1, 1, 1) not in cache
        assert (2, 2, 2) in cache
        assert cache.size() == 2

    def test_capacity_bound_never_exceeded(self) -> None:
        cache = MatchCache(10)
        color = make_color("x", (0, 0, 0))
        for i in range(100):
            cache.put((i, 0, 0), color)
            assert len(cache) <= 10
        assert len(cache) == 10

    def test_invalid_capacity(self) -> None:
        with pytest.raises(InvalidArgumentError):
            MatchCache(0)

    def test_clear_resets_counters(self) -> None:
        cache = MatchCache(2)
        cache.put((0, 0, 0), make_color("x", (0, 0, 0)))
        cache.get((0, 0, 0))
        cache.clear()
        assert len(cache) == 0
        assert (cache.hits, cache.misses) == (0, 0)

    def test_concurrent_puts_stay_bounded(self) -> None:
        cache = MatchCache(50)
        color = make_color("x", (0, 0, 0))

        def worker(offset: int) -> None:
            for i in range(200):
                cache.put((offset, i % 256, 0), color)
                cache.get((offset, (i * 7) % 256, 0))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(cache) == 50


# ---------------------------------------------------------------------------
# PaletteMatcher
# ---------------------------------------------------------------------------


class TestMatch:
    def test_exact_match(self, small_catalog: ReferenceCatalog) -> None:
        matcher = PaletteMatcher(small_catalog)
        assert matcher.match((255, 0, 0)).id == "666"
        assert matcher.match(RGBColor(r=0, g=0, b=255)).id == "797"

    def test_nearest_match(self, small_catalog: ReferenceCatalog) -> None:
        matcher = PaletteMatcher(small_catalog)
        assert matcher.match((20, 15, 10)).id == "310"
        assert matcher.match((240, 245, 250)).id == "B5200"

    def test_tie_prefers_earlier_entry(self) -> None:
        twins = [make_color("first", (10, 10, 10)), make_color("second", (10, 10, 10))]
        assert PaletteMatcher(twins).match((12, 12, 12)).id == "first"

    def test_empty_catalog_rejected(self) -> None:
        matcher = PaletteMatcher(ReferenceCatalog([]))
        with pytest.raises(InvalidArgumentError):
            matcher.match((1, 2, 3))
        with pytest.raises(InvalidArgumentError):
            matcher.top_n((1, 2, 3))
        with pytest.raises(InvalidArgumentError):
            matcher.match_with_threshold((1, 2, 3))
        with pytest.raises(InvalidArgumentError):
            matcher.match_batch([(1, 2, 3)])

    def test_idempotent_over_packaged_catalog(self) -> None:
        matcher = PaletteMatcher(default_catalog())
        for rgb in [(12, 200, 77), (250, 250, 240), (90, 40, 160), (128, 128, 128)]:
            first = matcher.match(rgb)
            assert matcher.match(first.rgb) == first

    def test_deterministic_across_matchers(self) -> None:
        a = PaletteMatcher(default_catalog())
        b = PaletteMatcher(default_catalog())
        for rgb in [(1, 2, 3), (200, 100, 50), (33, 66, 99)]:
            assert a.match(rgb) == b.match(rgb)

    def test_results_cached(self, small_catalog: ReferenceCatalog) -> None:
        matcher = PaletteMatcher(small_catalog)
        matcher.match((10, 10, 10))
        matcher.match((10, 10, 10))
        assert matcher.cache_size() == 1
        assert matcher.cache.hits == 1

    def test_use_cache_false_bypasses_cache(self, small_catalog: ReferenceCatalog) -> None:
        matcher = PaletteMatcher(small_catalog)
        matcher.match((10, 10, 10), use_cache=False)
        assert matcher.cache_size() == 0

    def test_shared_cache(self, small_catalog: ReferenceCatalog) -> None:
        cache = MatchCache(16)
        PaletteMatcher(small_catalog, cache=cache).match((5, 5, 5))
        other = PaletteMatcher(small_catalog, cache=cache)
        assert other.cache_size() == 1
        other.match((5, 5, 5))
        assert cache.hits == 1

    def test_shared_cache_keeps_catalogs_apart(self) -> None:
        cache = MatchCache(16)
        reds = PaletteMatcher([make_color("A-red", (255, 0, 0))], cache=cache)
        blues = PaletteMatcher([make_color("B-blue", (0, 0, 255))], cache=cache)
        assert reds.match((200, 0, 0)).id == "A-red"
        assert blues.match((200, 0, 0)).id == "B-blue"
        assert reds.match((200, 0, 0)).id == "A-red"
        assert cache.size() == 2
        assert cache.hits == 1

    def test_equal_catalogs_share_entries(
        self, primary_colors: list[ReferenceColor]
    ) -> None:
        cache = MatchCache(16)
        PaletteMatcher(primary_colors, cache=cache).match((9, 9, 9))
        PaletteMatcher(list(primary_colors), cache=cache).match((9, 9, 9))
        assert cache.hits == 1

    def test_clear_cache(self, small_catalog: ReferenceCatalog) -> None:
        matcher = PaletteMatcher(small_catalog)
        matcher.match((5, 5, 5))
        matcher.clear_cache()
        assert matcher.cache_size() == 0


class TestBatchOperations:
    def test_match_batch_preserves_order(self, small_catalog: ReferenceCatalog) -> None:
        matcher = PaletteMatcher(small_catalog)
        result = matcher.match_batch([(0, 0, 250), (5, 5, 5), (0, 0, 255)])
        assert [c.id for c in result] == ["797", "310", "797"]

    def test_match_unique_dedupes_first_seen(
        self, small_catalog: ReferenceCatalog
    ) -> None:
        matcher = PaletteMatcher(small_catalog)
        result = matcher.match_unique([(0, 0, 250), (5, 5, 5), (0, 0, 255), (250, 0, 0)])
        assert [c.id for c in result] == ["797", "310", "666"]

    def test_match_with_threshold(self, small_catalog: ReferenceCatalog) -> None:
        matcher = PaletteMatcher(small_catalog)
        assert [c.id for c in matcher.match_with_threshold((0, 0, 0))] == ["310"]
        assert matcher.match_with_threshold((128, 128, 128), max_distance=1.0) == []
        everything = matcher.match_with_threshold((0, 0, 0), max_distance=1000.0)
        assert len(everything) == len(small_catalog)

    def test_top_n_sorted_by_distance(self, small_catalog: ReferenceCatalog) -> None:
        matcher = PaletteMatcher(small_catalog)
        ranked = matcher.top_n((250, 5, 5), 3)
        assert len(ranked) == 3
        assert ranked[0][0].id == "666"
        distances = [d for _c, d in ranked]
        assert distances == sorted(distances)

    def test_top_n_default_five(self) -> None:
        assert len(PaletteMatcher(default_catalog()).top_n((100, 100, 100))) == 5

    def test_top_n_rejects_negative(self, small_catalog: ReferenceCatalog) -> None:
        with pytest.raises(InvalidArgumentError):
            PaletteMatcher(small_catalog).top_n((0, 0, 0), -1)
