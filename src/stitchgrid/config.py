"""YAML configuration loading and validation for pattern generation runs."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from stitchgrid.errors import ConfigError, InvalidArgumentError
from stitchgrid.logging import get_logger
from stitchgrid.matcher import DEFAULT_CACHE_CAPACITY
from stitchgrid.models import ProcessingSettings
from stitchgrid.scheduling import ChunkPolicy

logger = get_logger("config")

_SECTIONS = ("settings", "pipeline")


class PipelineConfig(BaseModel):
    """Execution tuning that never changes pipeline output.

    Attributes:
        constrained: Use the small-chunk policy for low-power targets.
        match_cache_capacity: Entries kept by the matcher's LRU cache.
    """

    model_config = ConfigDict(frozen=True)

    constrained: bool = False
    match_cache_capacity: int = Field(default=DEFAULT_CACHE_CAPACITY, ge=1)

    def chunk_policy(self) -> ChunkPolicy:
        return ChunkPolicy.constrained() if self.constrained else ChunkPolicy.desktop()


class StitchGridConfig(BaseModel):
    """Top-level configuration file contents."""

    model_config = ConfigDict(frozen=True)

    settings: ProcessingSettings = Field(default_factory=ProcessingSettings)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    catalog_path: Path | None = None


def validate_config_path(path: str | Path) -> Path:
    """Resolve and validate that a config file path exists.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    resolved = Path(path)
    if not resolved.is_file():
        raise FileNotFoundError(f"Config file not found: {resolved}")
    return resolved


def _parse_yaml(path: Path) -> dict:
    """Read and parse a YAML file, requiring a mapping at the top level.

    An empty file is treated as an empty mapping.
    """
    with open(path, "r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Malformed YAML in {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Expected a YAML mapping at top level, got {type(data).__name__}"
        )
    return data


def load_config(path: str | Path) -> StitchGridConfig:
    """Load and validate a stitchgrid YAML configuration file.

    A relative ``catalog_path`` is resolved against the config file's
    directory.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigError: If the YAML is malformed or a section has the wrong shape.
        InvalidArgumentError: If a value is out of range.
    """
    config_path = validate_config_path(path)
    data = _parse_yaml(config_path)

    for section in _SECTIONS:
        value = data.get(section)
        if value is not None and not isinstance(value, dict):
            raise ConfigError(
                f"Section '{section}' must be a mapping, got {type(value).__name__}"
            )
    unknown = set(data) - {*_SECTIONS, "catalog_path"}
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    catalog_path = data.get("catalog_path")
    if catalog_path is not None:
        if not isinstance(catalog_path, str):
            raise ConfigError("'catalog_path' must be a string")
        resolved = Path(catalog_path)
        if not resolved.is_absolute():
            resolved = config_path.parent / resolved
        catalog_path = resolved

    try:
        config = StitchGridConfig(
            settings=ProcessingSettings(**(data.get("settings") or {})),
            pipeline=PipelineConfig(**(data.get("pipeline") or {})),
            catalog_path=catalog_path,
        )
    except ValidationError as exc:
        raise InvalidArgumentError(f"Invalid configuration in {config_path}: {exc}") from exc

    logger.info("Loaded config from %s", config_path)
    return config
