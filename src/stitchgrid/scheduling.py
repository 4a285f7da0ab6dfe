"""Cooperative scheduling helpers for chunked pipeline stages.

Stages never run as one unbroken computation on large inputs: they work in
bounded chunks and hand control back to the event loop in between.
Chunk sizes are tuning knobs only; results never depend on them.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from stitchgrid.errors import AbortedError

# Called at every suspension point; raises AbortedError when the run is stale.
Checkpoint = Callable[[], None]
# Awaited between chunks; defaults to one trip through the event loop.
YieldFunc = Callable[[], Awaitable[None]]
# Called by chunked stages after each chunk with (chunks_done, chunks_total).
ChunkCallback = Callable[[int, int], None]

LARGE_GRID_CELLS = 22_500
VERY_LARGE_GRID_CELLS = 25_000


async def yield_control() -> None:
    """Suspend the current task for one scheduler round-trip."""
    await asyncio.sleep(0)


@dataclass(frozen=True)
class ChunkPolicy:
    """Adaptive chunking parameters.

    Attributes:
        pixel_chunk_size: Pixels recolored between yields.
        row_chunk_size_normal: Grid rows mapped between yields.
        row_chunk_size_large: Rows per chunk once a grid exceeds
            ``large_grid_cells`` cells.
        large_grid_cells: Cell count above which the large row chunk applies.
        split_yield_interval: Yield whenever the box count is a multiple
            of this value during median cut.
        yields_per_chunk: Scheduler round-trips after each chunk.
        extra_yield_on_large_grids: Add one more round-trip on every other
            chunk of very large grids.
    """

    pixel_chunk_size: int = 50_000
    row_chunk_size_normal: int = 50
    row_chunk_size_large: int = 25
    large_grid_cells: int = LARGE_GRID_CELLS
    split_yield_interval: int = 10
    yields_per_chunk: int = 1
    extra_yield_on_large_grids: bool = False

    def __post_init__(self) -> None:
        for name in (
            "pixel_chunk_size",
            "row_chunk_size_normal",
            "row_chunk_size_large",
            "split_yield_interval",
            "yields_per_chunk",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")

    @classmethod
    def desktop(cls) -> ChunkPolicy:
        return cls()

    @classmethod
    def constrained(cls) -> ChunkPolicy:
        """Smaller chunks and extra yields for low-power targets."""
        return cls(
            pixel_chunk_size=10_000,
            row_chunk_size_normal=10,
            row_chunk_size_large=5,
            large_grid_cells=VERY_LARGE_GRID_CELLS,
            yields_per_chunk=2,
            extra_yield_on_large_grids=True,
        )

    def row_chunk_size(self, total_cells: int) -> int:
        """Rows per chunk for a grid of *total_cells* cells."""
        if total_cells > self.large_grid_cells:
            return self.row_chunk_size_large
        return self.row_chunk_size_normal

    def yields_after_chunk(self, chunk_index: int, total_cells: int = 0) -> int:
        """Number of scheduler round-trips after chunk *chunk_index*."""
        count = self.yields_per_chunk
        if (
            self.extra_yield_on_large_grids
            and total_cells > self.large_grid_cells
            and chunk_index % 2 == 0
        ):
            count += 1
        return count


async def pause(
    policy: ChunkPolicy,
    chunk_index: int = 0,
    total_cells: int = 0,
    checkpoint: Checkpoint | None = None,
    yield_func: YieldFunc = yield_control,
) -> None:
    """Yield between chunks and re-check cancellation afterwards."""
    if checkpoint is not None:
        checkpoint()
    for _ in range(policy.yields_after_chunk(chunk_index, total_cells)):
        await yield_func()
    if checkpoint is not None:
        checkpoint()


class GenerationCounter:
    """Monotonic generation tokens; a newer token supersedes older runs."""

    def __init__(self) -> None:
        self._current = 0
        self._lock = threading.Lock()

    @property
    def current(self) -> int:
        with self._lock:
            return self._current

    def next(self) -> int:
        """Issue a new token, superseding every earlier one."""
        with self._lock:
            self._current += 1
            return self._current

    def is_current(self, token: int) -> bool:
        with self._lock:
            return token == self._current

    def checkpoint_for(self, token: int) -> Checkpoint:
        """Return a checkpoint that raises once *token* is superseded."""

        def _check() -> None:
            if not self.is_current(token):
                raise AbortedError(
                    f"Generation {token} superseded by generation {self.current}"
                )

        return _check
