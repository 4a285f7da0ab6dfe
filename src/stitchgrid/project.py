"""Project persistence: processing settings and palette, stored as JSON.

Only the inputs needed to reproduce a pattern are saved.  Cell grids are
regenerated from the source image rather than persisted.
"""

from __future__ import annotations

import json
import os
import threading
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from stitchgrid.errors import ResourceUnavailableError
from stitchgrid.logging import get_logger
from stitchgrid.models import PaletteEntry, ProcessingSettings

logger = get_logger("project")


class ProjectSnapshot(BaseModel):
    """The persisted state of one project."""

    model_config = ConfigDict(frozen=True)

    version: int = 1
    saved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    settings: ProcessingSettings
    palette: tuple[PaletteEntry, ...] = ()


class ProjectStore:
    """Reads and writes a single project file.

    Writes go to a same-directory temp file that then replaces the target,
    so a crash mid-write never leaves a truncated project behind.
    """

    PROJECT_VERSION = 1

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()

    def _atomic_write_text(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(
            f".{self.path.name}.tmp-{os.getpid()}-{threading.get_ident()}"
        )
        tmp_path.write_text(text, encoding="utf-8")
        tmp_path.replace(self.path)

    def save(
        self, settings: ProcessingSettings, palette: Sequence[PaletteEntry] = ()
    ) -> ProjectSnapshot:
        """Persist *settings* and *palette*, returning the written snapshot."""
        snapshot = ProjectSnapshot(
            version=self.PROJECT_VERSION, settings=settings, palette=tuple(palette)
        )
        with self._lock:
            self._atomic_write_text(snapshot.model_dump_json(indent=2))
        logger.debug(
            "Saved project %s (%d palette entries)", self.path, len(snapshot.palette)
        )
        return snapshot

    def load(self) -> ProjectSnapshot | None:
        """Load the project, or return None when no file exists yet.

        Raises:
            ResourceUnavailableError: If the file is unreadable, corrupt, or
                written by a newer version.
        """
        with self._lock:
            if not self.path.exists():
                return None
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                raise ResourceUnavailableError(
                    f"Project file {self.path} is unreadable: {exc}"
                ) from exc

        if not isinstance(raw, dict):
            raise ResourceUnavailableError(
                f"Project file {self.path} has unexpected type {type(raw).__name__}"
            )
        version = raw.get("version", 0)
        if not isinstance(version, int) or version > self.PROJECT_VERSION:
            raise ResourceUnavailableError(
                f"Project file {self.path} has unsupported version {version!r} "
                f"(max supported {self.PROJECT_VERSION})"
            )
        try:
            snapshot = ProjectSnapshot.model_validate(raw)
        except ValidationError as exc:
            raise ResourceUnavailableError(
                f"Project file {self.path} is malformed: {exc}"
            ) from exc

        logger.debug("Loaded project %s", self.path)
        return snapshot

    def delete(self) -> None:
        """Remove the project file if present."""
        with self._lock:
            self.path.unlink(missing_ok=True)
