"""stitchgrid error hierarchy.

All custom exceptions inherit from StitchGridError, enabling callers
to catch the base class for blanket error handling or specific
subclasses for targeted recovery.
"""


class StitchGridError(Exception):
    """Base exception for all stitchgrid errors."""


class InvalidArgumentError(StitchGridError, ValueError):
    """Raised when a stage precondition fails (bad k, empty palette, bad grid size)."""


class ResourceUnavailableError(StitchGridError):
    """Raised when an image, catalog, or project file cannot be read or decoded."""


class AbortedError(StitchGridError):
    """Raised when a pipeline run is superseded by a newer generation request."""


class PipelineStateError(StitchGridError):
    """Raised on an illegal pipeline state transition."""


class ConfigError(StitchGridError):
    """Raised when configuration loading fails (malformed YAML, bad sections)."""
