"""Tests for stitchgrid.pipeline: orchestration, state machine, cancellation."""

from __future__ import annotations

import asyncio

import pytest

from stitchgrid.catalog import ReferenceCatalog
from stitchgrid.errors import (
    AbortedError,
    InvalidArgumentError,
    PipelineStateError,
)
from stitchgrid.grid import count_color_usage
from stitchgrid.matcher import PaletteMatcher
from stitchgrid.models import Pattern, PixelBuffer, ProcessingSettings
from stitchgrid.observability import RunMetricsCollector
from stitchgrid.pipeline import PatternPipeline, PipelineState
from stitchgrid.scheduling import ChunkPolicy
from stitchgrid.symbols import has_unique_symbols

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_SMALL = ProcessingSettings(max_colors=2, grid_width=10, grid_height=10)


def _assert_consistent(pattern: Pattern) -> None:
    used = set(count_color_usage(pattern.cells))
    assert {e.id for e in pattern.palette} == used
    assert pattern.metadata.color_count == len(pattern.palette)
    assert len(pattern.cells) == pattern.height
    assert all(len(row) == pattern.width for row in pattern.cells)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestGenerate:
    async def test_red_blue_image(
        self, small_catalog: ReferenceCatalog, red_blue_buffer: PixelBuffer
    ) -> None:
        pipeline = PatternPipeline(small_catalog)
        pattern = await pipeline.generate(red_blue_buffer, _SMALL)

        assert pipeline.state is PipelineState.READY
        assert pipeline.last_pattern is pattern
        assert (pattern.width, pattern.height) == (10, 10)
        assert [e.id for e in pattern.palette] == ["666", "797"]
        assert pattern.cell(0, 0).entry.id == "666"
        assert pattern.cell(9, 0).entry.id == "797"
        assert pattern.metadata.original_width == 10
        assert has_unique_symbols(pattern.palette)
        _assert_consistent(pattern)

    async def test_downscaled_gradient(
        self, small_catalog: ReferenceCatalog, gradient_buffer: PixelBuffer
    ) -> None:
        settings = ProcessingSettings(max_colors=6, grid_width=10, grid_height=12)
        pattern = await PatternPipeline(small_catalog).generate(gradient_buffer, settings)
        assert (pattern.width, pattern.height) == (10, 12)
        assert 1 <= len(pattern.palette) <= 5
        _assert_consistent(pattern)

    async def test_progress_reports_stages_in_order(
        self, small_catalog: ReferenceCatalog, red_blue_buffer: PixelBuffer
    ) -> None:
        events: list[tuple[str, int, int]] = []
        pipeline = PatternPipeline(
            small_catalog,
            progress_callback=lambda s, c, t: events.append((s, c, t)),
        )
        await pipeline.generate(red_blue_buffer, _SMALL)
        started = [s for s, c, _t in events if c == 0]
        assert started == ["quantizing", "matching", "recoloring", "grid_mapping"]
        assert events[-1] == ("grid_mapping", 1, 1)

    async def test_fit_to_aspect(self, small_catalog: ReferenceCatalog) -> None:
        buffer = PixelBuffer.filled(40, 20, (255, 0, 0))
        settings = ProcessingSettings(max_colors=2, grid_width=30, grid_height=30)
        pattern = await PatternPipeline(small_catalog).generate(
            buffer, settings, fit_to_aspect=True
        )
        assert (pattern.width, pattern.height) == (30, 15)

    async def test_fit_ignored_without_aspect_setting(
        self, small_catalog: ReferenceCatalog
    ) -> None:
        buffer = PixelBuffer.filled(40, 20, (255, 0, 0))
        settings = ProcessingSettings(
            max_colors=2, grid_width=30, grid_height=30, maintain_aspect_ratio=False
        )
        pattern = await PatternPipeline(small_catalog).generate(
            buffer, settings, fit_to_aspect=True
        )
        assert (pattern.width, pattern.height) == (30, 30)

    async def test_constrained_policy_same_result(
        self, small_catalog: ReferenceCatalog, gradient_buffer: PixelBuffer
    ) -> None:
        settings = ProcessingSettings(max_colors=5, grid_width=20, grid_height=15)
        desktop = await PatternPipeline(small_catalog).generate(gradient_buffer, settings)
        constrained = await PatternPipeline(
            small_catalog, policy=ChunkPolicy.constrained()
        ).generate(gradient_buffer, settings)
        assert desktop.cells == constrained.cells
        assert desktop.palette == constrained.palette

    async def test_metrics_recorded(
        self, small_catalog: ReferenceCatalog, red_blue_buffer: PixelBuffer
    ) -> None:
        collector = RunMetricsCollector()
        pipeline = PatternPipeline(small_catalog, metrics=collector)
        await pipeline.generate(red_blue_buffer, _SMALL)
        snap = collector.snapshot()
        assert set(snap["stage_duration_ms"]) == {
            "quantizing",
            "matching",
            "recoloring",
            "grid_mapping",
        }
        assert snap["runs_completed"] == 1
        assert snap["chunk_count"]["grid_mapping"] == 1
        assert snap["cache_misses"] == 2

    async def test_chunk_counts_come_from_stages(
        self, small_catalog: ReferenceCatalog, red_blue_buffer: PixelBuffer
    ) -> None:
        collector = RunMetricsCollector()
        policy = ChunkPolicy(pixel_chunk_size=30, row_chunk_size_normal=3)
        pipeline = PatternPipeline(small_catalog, policy=policy, metrics=collector)
        await pipeline.generate(red_blue_buffer, _SMALL)
        chunks = collector.snapshot()["chunk_count"]
        assert chunks == {"recoloring": 4, "grid_mapping": 4}


def test_generate_sync(
    small_catalog: ReferenceCatalog, red_blue_buffer: PixelBuffer
) -> None:
    pipeline = PatternPipeline(small_catalog)
    pattern = pipeline.generate_sync(red_blue_buffer, _SMALL)
    assert pipeline.generation == 1
    assert pipeline.state is PipelineState.READY
    _assert_consistent(pattern)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestStateMachine:
    async def test_initial_state(self, small_catalog: ReferenceCatalog) -> None:
        pipeline = PatternPipeline(small_catalog)
        assert pipeline.state is PipelineState.IDLE
        assert pipeline.last_pattern is None
        assert pipeline.failure_reason is None
        pipeline.reset()
        assert pipeline.state is PipelineState.IDLE

    async def test_reset_from_ready(
        self, small_catalog: ReferenceCatalog, red_blue_buffer: PixelBuffer
    ) -> None:
        pipeline = PatternPipeline(small_catalog)
        await pipeline.generate(red_blue_buffer, _SMALL)
        pipeline.reset()
        assert pipeline.state is PipelineState.IDLE
        assert pipeline.last_pattern is not None

    async def test_reset_while_running_is_illegal(
        self, small_catalog: ReferenceCatalog, red_blue_buffer: PixelBuffer
    ) -> None:
        pipeline: PatternPipeline

        def callback(stage: str, current: int, _total: int) -> None:
            if stage == "matching" and current == 0:
                pipeline.reset()

        pipeline = PatternPipeline(small_catalog, progress_callback=callback)
        with pytest.raises(PipelineStateError):
            await pipeline.generate(red_blue_buffer, _SMALL)
        assert pipeline.state is PipelineState.FAILED

    async def test_stage_failure_keeps_previous_pattern(
        self, small_catalog: ReferenceCatalog, red_blue_buffer: PixelBuffer
    ) -> None:
        pipeline = PatternPipeline(small_catalog)
        good = await pipeline.generate(red_blue_buffer, _SMALL)

        pipeline.matcher = PaletteMatcher(ReferenceCatalog([]))
        with pytest.raises(InvalidArgumentError, match="empty"):
            await pipeline.generate(red_blue_buffer, _SMALL)

        assert pipeline.state is PipelineState.FAILED
        assert "empty" in (pipeline.failure_reason or "")
        assert pipeline.last_pattern is good

    async def test_new_run_after_failure(
        self, small_catalog: ReferenceCatalog, red_blue_buffer: PixelBuffer
    ) -> None:
        pipeline = PatternPipeline(ReferenceCatalog([]))
        with pytest.raises(InvalidArgumentError):
            await pipeline.generate(red_blue_buffer, _SMALL)
        assert pipeline.state is PipelineState.FAILED

        pipeline.matcher = PaletteMatcher(small_catalog)
        await pipeline.generate(red_blue_buffer, _SMALL)
        assert pipeline.state is PipelineState.READY
        assert pipeline.failure_reason is None


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestCancellation:
    async def test_cancel_aborts_in_flight_run(
        self, small_catalog: ReferenceCatalog, red_blue_buffer: PixelBuffer
    ) -> None:
        pipeline: PatternPipeline

        def callback(stage: str, current: int, _total: int) -> None:
            if stage == "recoloring" and current == 0:
                pipeline.cancel()

        collector = RunMetricsCollector()
        pipeline = PatternPipeline(
            small_catalog, progress_callback=callback, metrics=collector
        )
        with pytest.raises(AbortedError):
            await pipeline.generate(red_blue_buffer, _SMALL)

        assert pipeline.state is PipelineState.IDLE
        assert pipeline.last_pattern is None
        assert pipeline.generation == 2
        assert collector.snapshot()["runs_aborted"] == 1

    async def test_newer_run_supersedes_older(
        self, small_catalog: ReferenceCatalog, red_blue_buffer: PixelBuffer
    ) -> None:
        pipeline = PatternPipeline(small_catalog)
        newer_settings = ProcessingSettings(max_colors=2, grid_width=12, grid_height=12)

        older, newer = await asyncio.gather(
            pipeline.generate(red_blue_buffer, _SMALL),
            pipeline.generate(red_blue_buffer, newer_settings),
            return_exceptions=True,
        )

        assert isinstance(older, AbortedError)
        assert isinstance(newer, Pattern)
        assert newer.width == 12
        assert pipeline.last_pattern is newer
        assert pipeline.state is PipelineState.READY
        assert pipeline.generation == 2

    async def test_cancel_when_idle_only_bumps_generation(
        self, small_catalog: ReferenceCatalog
    ) -> None:
        pipeline = PatternPipeline(small_catalog)
        pipeline.cancel()
        assert pipeline.state is PipelineState.IDLE
        assert pipeline.generation == 1
