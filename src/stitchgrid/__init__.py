"""stitchgrid: convert raster images into counted cross-stitch patterns."""

from stitchgrid.catalog import ReferenceCatalog, default_catalog
from stitchgrid.color import (
    euclidean_distance,
    find_closest_index,
    perceptual_distance,
    rgb_to_lab,
)
from stitchgrid.config import PipelineConfig, StitchGridConfig, load_config
from stitchgrid.editing import remove_color, replace_color
from stitchgrid.errors import (
    AbortedError,
    ConfigError,
    InvalidArgumentError,
    PipelineStateError,
    ResourceUnavailableError,
    StitchGridError,
)
from stitchgrid.grid import (
    calculate_grid_dimensions,
    count_color_usage,
    map_to_grid,
    map_to_grid_async,
    resize_to_grid,
    used_colors,
)
from stitchgrid.image_io import buffer_from_image, image_from_buffer, load_image
from stitchgrid.logging import get_logger, setup_logging
from stitchgrid.matcher import MatchCache, PaletteMatcher
from stitchgrid.models import (
    PaletteEntry,
    Pattern,
    PatternCell,
    PatternMetadata,
    PixelBuffer,
    ProcessingSettings,
    ReferenceColor,
    RGBColor,
)
from stitchgrid.observability import RunMetricsCollector, write_run_summary
from stitchgrid.pipeline import PatternPipeline, PipelineState
from stitchgrid.project import ProjectSnapshot, ProjectStore
from stitchgrid.quantization import (
    apply_quantized_colors,
    extract_pixels,
    optimal_sample_rate,
    quantize,
    quantize_async,
)
from stitchgrid.renderer import (
    format_chart_text,
    pattern_symbol_rows,
    pattern_to_png_bytes,
    render_pattern,
)
from stitchgrid.scheduling import ChunkPolicy, GenerationCounter
from stitchgrid.symbols import (
    SYMBOL_TABLE,
    assign_symbols,
    assign_symbols_by_usage,
    has_unique_symbols,
    reassign_symbol,
    symbol_for,
    symbol_legend,
)

__all__ = [
    "AbortedError",
    "ChunkPolicy",
    "ConfigError",
    "GenerationCounter",
    "InvalidArgumentError",
    "MatchCache",
    "PaletteEntry",
    "PaletteMatcher",
    "Pattern",
    "PatternCell",
    "PatternMetadata",
    "PatternPipeline",
    "PipelineConfig",
    "PipelineState",
    "PipelineStateError",
    "PixelBuffer",
    "ProcessingSettings",
    "ProjectSnapshot",
    "ProjectStore",
    "RGBColor",
    "ReferenceCatalog",
    "ReferenceColor",
    "ResourceUnavailableError",
    "RunMetricsCollector",
    "SYMBOL_TABLE",
    "StitchGridConfig",
    "StitchGridError",
    "apply_quantized_colors",
    "assign_symbols",
    "assign_symbols_by_usage",
    "buffer_from_image",
    "calculate_grid_dimensions",
    "count_color_usage",
    "default_catalog",
    "euclidean_distance",
    "extract_pixels",
    "find_closest_index",
    "format_chart_text",
    "get_logger",
    "has_unique_symbols",
    "image_from_buffer",
    "load_config",
    "load_image",
    "map_to_grid",
    "map_to_grid_async",
    "optimal_sample_rate",
    "pattern_symbol_rows",
    "pattern_to_png_bytes",
    "perceptual_distance",
    "quantize",
    "quantize_async",
    "reassign_symbol",
    "remove_color",
    "render_pattern",
    "replace_color",
    "resize_to_grid",
    "rgb_to_lab",
    "setup_logging",
    "symbol_for",
    "symbol_legend",
    "used_colors",
    "write_run_summary",
]
