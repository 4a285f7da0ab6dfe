"""Pydantic data models for colors, palettes, pixel buffers, and patterns."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from datetime import datetime, timezone
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from stitchgrid.errors import InvalidArgumentError

# Raw ``(r, g, b)`` triple used on per-pixel hot paths.
RGB = tuple[int, int, int]


class RGBColor(BaseModel):
    """An opaque 8-bit-per-channel color.

    Attributes:
        r: Red channel (0–255).
        g: Green channel (0–255).
        b: Blue channel (0–255).
    """

    model_config = ConfigDict(frozen=True)

    r: int = Field(..., ge=0, le=255)
    g: int = Field(..., ge=0, le=255)
    b: int = Field(..., ge=0, le=255)

    @classmethod
    def from_tuple(cls, rgb: Iterable[int]) -> RGBColor:
        """Build a color from any ``(r, g, b)`` iterable."""
        r, g, b = rgb
        return cls(r=r, g=g, b=b)

    @classmethod
    def from_hex(cls, value: str) -> RGBColor:
        """Parse ``#RRGGBB`` (leading ``#`` optional)."""
        text = value.strip().lstrip("#")
        if len(text) != 6:
            raise ValueError(f"hex color must have 6 digits, got {value!r}")
        try:
            return cls(r=int(text[0:2], 16), g=int(text[2:4], 16), b=int(text[4:6], 16))
        except ValueError as exc:
            raise ValueError(f"invalid hex color {value!r}") from exc

    def as_tuple(self) -> RGB:
        """Return the color as an ``(R, G, B)`` tuple."""
        return (self.r, self.g, self.b)

    @property
    def hex(self) -> str:
        """Upper-case ``#RRGGBB`` representation."""
        return f"#{self.r:02X}{self.g:02X}{self.b:02X}"


def to_rgb(color: RGBColor | Iterable[int]) -> RGB:
    """Normalize a model or raw triple to a plain ``(r, g, b)`` tuple."""
    if isinstance(color, RGBColor):
        return color.as_tuple()
    r, g, b = color
    return (int(r), int(g), int(b))


class ReferenceColor(BaseModel):
    """A named entry of the reference thread catalog.

    Attributes:
        id: Stable catalog code (e.g. DMC ``"310"``).
        display_name: Human-readable thread name.
        rgb: The thread color.
        hex: ``#RRGGBB`` string; derived from *rgb* when omitted.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    display_name: str = ""
    rgb: RGBColor
    hex: str = ""

    @model_validator(mode="before")
    @classmethod
    def _reconcile_rgb_and_hex(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        rgb = data.get("rgb")
        hex_value = data.get("hex") or ""
        if rgb is None and hex_value:
            rgb = RGBColor.from_hex(hex_value)
        elif isinstance(rgb, dict):
            rgb = RGBColor(**rgb)
        elif isinstance(rgb, (list, tuple)):
            rgb = RGBColor.from_tuple(rgb)
        if isinstance(rgb, RGBColor):
            if hex_value and hex_value.strip().upper().lstrip("#") != rgb.hex[1:]:
                raise ValueError(
                    f"hex {hex_value!r} does not match rgb {rgb.as_tuple()} "
                    f"for color {data.get('id')!r}"
                )
            data["rgb"] = rgb
            data["hex"] = rgb.hex
        return data


class PaletteEntry(BaseModel):
    """A reference color with the glyph assigned to it within one pattern."""

    model_config = ConfigDict(frozen=True)

    color: ReferenceColor
    symbol: str = Field(..., min_length=1)

    @property
    def id(self) -> str:
        return self.color.id

    @property
    def rgb(self) -> RGBColor:
        return self.color.rgb

    @property
    def hex(self) -> str:
        return self.color.hex

    @property
    def display_name(self) -> str:
        return self.color.display_name


class PatternCell(BaseModel):
    """One stitch position, bound to exactly one palette entry."""

    model_config = ConfigDict(frozen=True)

    x: int = Field(..., ge=0)
    y: int = Field(..., ge=0)
    entry: PaletteEntry

    @property
    def symbol(self) -> str:
        return self.entry.symbol


class PatternMetadata(BaseModel):
    """Provenance recorded alongside a generated pattern."""

    model_config = ConfigDict(frozen=True)

    original_width: int = Field(..., gt=0)
    original_height: int = Field(..., gt=0)
    color_count: int = Field(..., ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Pattern(BaseModel):
    """A finished stitch pattern.

    Attributes:
        width: Number of cells per row.
        height: Number of rows.
        cells: ``height`` rows of ``width`` cells, indexed ``cells[y][x]``.
        palette: Entries actually used by the cells, in legend order.
        metadata: Source dimensions, color count and creation time.
    """

    model_config = ConfigDict(frozen=True)

    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    cells: tuple[tuple[PatternCell, ...], ...]
    palette: tuple[PaletteEntry, ...]
    metadata: PatternMetadata

    @model_validator(mode="after")
    def _validate_consistency(self) -> Pattern:
        if len(self.cells) != self.height:
            raise ValueError(
                f"cells must have exactly {self.height} rows, got {len(self.cells)}"
            )
        palette_ids: set[str] = set()
        for entry in self.palette:
            if entry.id in palette_ids:
                raise ValueError(f"Duplicate palette color id: {entry.id!r}")
            palette_ids.add(entry.id)
        if len(self.palette) != self.metadata.color_count:
            raise ValueError(
                f"palette has {len(self.palette)} entries but metadata.color_count "
                f"is {self.metadata.color_count}"
            )
        for y, row in enumerate(self.cells):
            if len(row) != self.width:
                raise ValueError(
                    f"Row {y} must have exactly {self.width} cells, got {len(row)}"
                )
            for cell in row:
                if cell.entry.id not in palette_ids:
                    raise ValueError(
                        f"Cell ({cell.x}, {cell.y}) uses color {cell.entry.id!r} "
                        "which is not in the palette"
                    )
        return self

    def cell(self, x: int, y: int) -> PatternCell:
        """Return the cell at grid coordinate ``(x, y)``."""
        return self.cells[y][x]

    def iter_cells(self) -> Iterator[PatternCell]:
        """Iterate cells row by row."""
        for row in self.cells:
            yield from row

    def entry_for(self, color_id: str) -> PaletteEntry | None:
        """Return the palette entry with *color_id*, if present."""
        for entry in self.palette:
            if entry.id == color_id:
                return entry
        return None


class ProcessingSettings(BaseModel):
    """User-facing conversion settings, validated at the pipeline boundary.

    Attributes:
        max_colors: Upper bound on quantized colors (2–50).
        grid_width: Pattern width in stitches (10–500).
        grid_height: Pattern height in stitches (10–500).
        maintain_aspect_ratio: Derive one grid side from the image ratio.
        colorless_mode: Render charts as symbols on white.
    """

    model_config = ConfigDict(frozen=True)

    max_colors: int = Field(default=20, ge=2, le=50)
    grid_width: int = Field(default=100, ge=10, le=500)
    grid_height: int = Field(default=100, ge=10, le=500)
    maintain_aspect_ratio: bool = True
    colorless_mode: bool = False

    @classmethod
    def create(cls, **values: Any) -> ProcessingSettings:
        """Validate *values*, raising InvalidArgumentError on bad input."""
        try:
            return cls(**values)
        except ValidationError as exc:
            raise InvalidArgumentError(f"Invalid processing settings: {exc}") from exc


class PixelBuffer(BaseModel):
    """A decoded RGBA image, row-major, 4 bytes per pixel.

    Alpha is carried through recoloring but ignored by the pipeline.
    """

    model_config = ConfigDict(frozen=True)

    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    data: bytes

    @field_validator("data", mode="before")
    @classmethod
    def _coerce_bytes(cls, v: Any) -> Any:
        if isinstance(v, (bytearray, memoryview)):
            return bytes(v)
        return v

    @model_validator(mode="after")
    def _check_length(self) -> PixelBuffer:
        expected = self.width * self.height * 4
        if len(self.data) != expected:
            raise ValueError(
                f"RGBA data must be {expected} bytes for "
                f"{self.width}×{self.height}, got {len(self.data)}"
            )
        return self

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    def pixel(self, x: int, y: int) -> RGB:
        """Return the RGB triple at ``(x, y)``."""
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"pixel ({x}, {y}) outside {self.width}×{self.height}")
        base = (y * self.width + x) * 4
        return (self.data[base], self.data[base + 1], self.data[base + 2])

    @classmethod
    def from_rgb(
        cls, width: int, height: int, colors: Iterable[RGBColor | Iterable[int]]
    ) -> PixelBuffer:
        """Build an opaque buffer from ``width * height`` colors in row-major order."""
        out = bytearray()
        for color in colors:
            out.extend(to_rgb(color))
            out.append(255)
        return cls(width=width, height=height, data=bytes(out))

    @classmethod
    def filled(cls, width: int, height: int, color: RGBColor | Iterable[int]) -> PixelBuffer:
        """Build a uniform opaque buffer."""
        r, g, b = to_rgb(color)
        return cls(width=width, height=height, data=bytes((r, g, b, 255)) * (width * height))
