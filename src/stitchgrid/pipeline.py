"""Pipeline orchestrator: image buffer in, cross-stitch ``Pattern`` out.

Stages run in a fixed order on one asyncio task:

1. **Quantizing**: sample the buffer and reduce it with median cut.
2. **Matching**: map quantized colors to catalog entries and assign glyphs.
3. **Recoloring**: snap every pixel to its quantized color.
4. **Grid mapping**: resize to the grid and bind each cell to an entry.

Every stage yields to the event loop between chunks.  Each run holds a
generation token; starting a new run or calling ``cancel()`` supersedes
the old token and the stale run stops with ``AbortedError`` at its next
checkpoint.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from enum import Enum

from stitchgrid.catalog import ReferenceCatalog, default_catalog
from stitchgrid.errors import AbortedError, PipelineStateError
from stitchgrid.grid import (
    Grid,
    calculate_grid_dimensions,
    map_to_grid_async,
    resize_to_grid,
)
from stitchgrid.logging import get_logger, log_stage
from stitchgrid.matcher import PaletteMatcher
from stitchgrid.models import (
    PaletteEntry,
    Pattern,
    PatternMetadata,
    PixelBuffer,
    ProcessingSettings,
    ReferenceColor,
)
from stitchgrid.observability import RunMetricsCollector
from stitchgrid.quantization import (
    apply_quantized_colors_async,
    extract_pixels,
    optimal_sample_rate,
    quantize_async,
)
from stitchgrid.scheduling import (
    Checkpoint,
    ChunkCallback,
    ChunkPolicy,
    GenerationCounter,
    pause,
)
from stitchgrid.symbols import assign_symbols

logger = get_logger("pipeline")

ProgressCallback = Callable[[str, int, int], None]


class PipelineState(str, Enum):
    IDLE = "idle"
    QUANTIZING = "quantizing"
    MATCHING = "matching"
    RECOLORING = "recoloring"
    GRID_MAPPING = "grid_mapping"
    READY = "ready"
    FAILED = "failed"


_RUNNING_STATES = frozenset(
    {
        PipelineState.QUANTIZING,
        PipelineState.MATCHING,
        PipelineState.RECOLORING,
        PipelineState.GRID_MAPPING,
    }
)

_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.IDLE: frozenset({PipelineState.QUANTIZING, PipelineState.FAILED}),
    PipelineState.QUANTIZING: frozenset({PipelineState.MATCHING, PipelineState.FAILED}),
    PipelineState.MATCHING: frozenset({PipelineState.RECOLORING, PipelineState.FAILED}),
    PipelineState.RECOLORING: frozenset(
        {PipelineState.GRID_MAPPING, PipelineState.FAILED}
    ),
    PipelineState.GRID_MAPPING: frozenset({PipelineState.READY, PipelineState.FAILED}),
    PipelineState.READY: frozenset({PipelineState.IDLE, PipelineState.FAILED}),
    PipelineState.FAILED: frozenset({PipelineState.IDLE}),
}


class PatternPipeline:
    """Sequences the conversion stages and owns their state machine.

    Args:
        catalog: Reference colors to match against.  Defaults to the
            packaged DMC catalog unless a *matcher* is supplied.
        matcher: Pre-built matcher, e.g. one sharing a cache with others.
        policy: Chunking policy; desktop defaults when omitted.
        progress_callback: Optional ``callback(stage_name, current, total)``.
        metrics: Optional collector for stage timings and cache counters.
    """

    def __init__(
        self,
        catalog: ReferenceCatalog | Sequence[ReferenceColor] | None = None,
        *,
        matcher: PaletteMatcher | None = None,
        policy: ChunkPolicy | None = None,
        progress_callback: ProgressCallback | None = None,
        metrics: RunMetricsCollector | None = None,
    ) -> None:
        if matcher is None:
            matcher = PaletteMatcher(catalog if catalog is not None else default_catalog())
        self.matcher = matcher
        self.policy = policy or ChunkPolicy.desktop()
        self.progress_callback = progress_callback
        self.metrics = metrics
        self._generations = GenerationCounter()
        self._state = PipelineState.IDLE
        self._failure_reason: str | None = None
        self._last_pattern: Pattern | None = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def failure_reason(self) -> str | None:
        return self._failure_reason

    @property
    def last_pattern(self) -> Pattern | None:
        """Most recent successfully generated pattern."""
        return self._last_pattern

    @property
    def generation(self) -> int:
        return self._generations.current

    def _transition(self, target: PipelineState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise PipelineStateError(
                f"Illegal transition {self._state.value} -> {target.value}"
            )
        logger.debug("State %s -> %s", self._state.value, target.value)
        self._state = target

    def _advance(self, checkpoint: Checkpoint, target: PipelineState) -> None:
        checkpoint()
        self._transition(target)

    def _progress(self, stage: str, current: int, total: int) -> None:
        if self.progress_callback:
            self.progress_callback(stage, current, total)

    def reset(self) -> None:
        """Return to ``IDLE`` from ``READY`` or ``FAILED``."""
        if self._state is PipelineState.IDLE:
            return
        self._transition(PipelineState.IDLE)
        self._failure_reason = None

    def cancel(self) -> None:
        """Supersede any in-flight run; it stops at its next checkpoint."""
        superseded = self._generations.current
        self._generations.next()
        if self._state in _RUNNING_STATES:
            logger.warning("Generation %d cancelled during %s", superseded, self._state.value)
            self._state = PipelineState.IDLE

    def _begin(self) -> int:
        token = self._generations.next()
        if self._state in _RUNNING_STATES:
            logger.warning(
                "Generation %d supersedes an in-flight run in %s",
                token,
                self._state.value,
            )
            self._state = PipelineState.IDLE
        elif self._state is not PipelineState.IDLE:
            self.reset()
        self._failure_reason = None
        return token

    def _record(self, stage: PipelineState, timing: dict[str, float]) -> None:
        if self.metrics is not None and "duration_ms" in timing:
            self.metrics.record_stage(stage.value, timing["duration_ms"])

    def _chunk_recorder(self, stage: PipelineState) -> ChunkCallback | None:
        metrics = self.metrics
        if metrics is None:
            return None

        def _on_chunk(_done: int, _total: int) -> None:
            metrics.record_chunks(stage.value)

        return _on_chunk

    async def generate(
        self,
        buffer: PixelBuffer,
        settings: ProcessingSettings | None = None,
        fit_to_aspect: bool = False,
    ) -> Pattern:
        """Run every stage on *buffer* and return the finished pattern.

        Args:
            buffer: Decoded RGBA input image.
            settings: Validated processing settings; defaults when omitted.
            fit_to_aspect: Recompute the grid size from the image aspect
                ratio when ``settings.maintain_aspect_ratio`` is set.

        Raises:
            AbortedError: If a newer run or ``cancel()`` superseded this one.
            InvalidArgumentError: If a stage rejects its input.
        """
        settings = settings or ProcessingSettings()
        token = self._begin()
        checkpoint = self._generations.checkpoint_for(token)
        logger.info(
            "Generation %d: %dx%d image, %d colors, %dx%d grid",
            token,
            buffer.width,
            buffer.height,
            settings.max_colors,
            settings.grid_width,
            settings.grid_height,
        )
        try:
            pattern = await self._run(buffer, settings, fit_to_aspect, token, checkpoint)
        except AbortedError:
            logger.warning("Generation %d aborted", token)
            if self.metrics is not None:
                self.metrics.record_outcome("aborted")
            raise
        except Exception as exc:
            if self._generations.is_current(token):
                self._failure_reason = str(exc)
                self._transition(PipelineState.FAILED)
                logger.error("Generation %d failed: %s", token, exc)
            if self.metrics is not None:
                self.metrics.record_outcome("failed")
            raise

        self._last_pattern = pattern
        if self.metrics is not None:
            self.metrics.record_outcome("ready")
            self.metrics.record_cache(self.matcher.cache.hits, self.matcher.cache.misses)
        logger.info(
            "Generation %d ready: %dx%d pattern with %d colors",
            token,
            pattern.width,
            pattern.height,
            len(pattern.palette),
        )
        return pattern

    async def _run(
        self,
        buffer: PixelBuffer,
        settings: ProcessingSettings,
        fit_to_aspect: bool,
        token: int,
        checkpoint: Checkpoint,
    ) -> Pattern:
        policy = self.policy

        self._advance(checkpoint, PipelineState.QUANTIZING)
        self._progress(PipelineState.QUANTIZING.value, 0, 1)
        with log_stage(logger, PipelineState.QUANTIZING.value, token) as timing:
            sample_rate = optimal_sample_rate(buffer.width, buffer.height)
            pixels = extract_pixels(buffer, sample_rate)
            quantized = await quantize_async(
                pixels, settings.max_colors, policy=policy, checkpoint=checkpoint
            )
        self._record(PipelineState.QUANTIZING, timing)
        self._progress(PipelineState.QUANTIZING.value, 1, 1)
        await pause(policy, checkpoint=checkpoint)

        self._advance(checkpoint, PipelineState.MATCHING)
        self._progress(PipelineState.MATCHING.value, 0, 1)
        with log_stage(logger, PipelineState.MATCHING.value, token) as timing:
            matched = self.matcher.match_unique(quantized)
            palette = assign_symbols(matched)
        self._record(PipelineState.MATCHING, timing)
        self._progress(PipelineState.MATCHING.value, 1, 1)
        await pause(policy, checkpoint=checkpoint)

        self._advance(checkpoint, PipelineState.RECOLORING)
        self._progress(PipelineState.RECOLORING.value, 0, 1)
        with log_stage(logger, PipelineState.RECOLORING.value, token) as timing:
            recolored = await apply_quantized_colors_async(
                buffer,
                quantized,
                policy=policy,
                checkpoint=checkpoint,
                on_chunk=self._chunk_recorder(PipelineState.RECOLORING),
            )
        self._record(PipelineState.RECOLORING, timing)
        self._progress(PipelineState.RECOLORING.value, 1, 1)
        await pause(policy, checkpoint=checkpoint)

        self._advance(checkpoint, PipelineState.GRID_MAPPING)
        self._progress(PipelineState.GRID_MAPPING.value, 0, 1)
        grid_width, grid_height = settings.grid_width, settings.grid_height
        if fit_to_aspect and settings.maintain_aspect_ratio:
            grid_width, grid_height = calculate_grid_dimensions(
                buffer.width, buffer.height, max(grid_width, grid_height)
            )
        with log_stage(logger, PipelineState.GRID_MAPPING.value, token) as timing:
            resized = resize_to_grid(recolored, grid_width, grid_height)
            await pause(policy, checkpoint=checkpoint)
            cells = await map_to_grid_async(
                resized,
                grid_width,
                grid_height,
                palette,
                policy=policy,
                checkpoint=checkpoint,
                on_chunk=self._chunk_recorder(PipelineState.GRID_MAPPING),
            )
        self._record(PipelineState.GRID_MAPPING, timing)
        self._progress(PipelineState.GRID_MAPPING.value, 1, 1)

        pattern = _build_pattern(buffer, grid_width, grid_height, cells, palette)
        self._advance(checkpoint, PipelineState.READY)
        return pattern

    def generate_sync(
        self,
        buffer: PixelBuffer,
        settings: ProcessingSettings | None = None,
        fit_to_aspect: bool = False,
    ) -> Pattern:
        """Blocking wrapper around ``generate`` for scripts and the CLI."""
        return asyncio.run(self.generate(buffer, settings, fit_to_aspect))


def _build_pattern(
    buffer: PixelBuffer,
    grid_width: int,
    grid_height: int,
    cells: Grid,
    palette: list[PaletteEntry],
) -> Pattern:
    used = {cell.entry.id for row in cells for cell in row}
    used_palette = tuple(entry for entry in palette if entry.id in used)
    return Pattern(
        width=grid_width,
        height=grid_height,
        cells=cells,
        palette=used_palette,
        metadata=PatternMetadata(
            original_width=buffer.width,
            original_height=buffer.height,
            color_count=len(used_palette),
        ),
    )
