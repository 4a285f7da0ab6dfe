"""Reference thread catalog loading and lookup.

The catalog is an ordered, read-only collection of ``ReferenceColor``
entries.  Iteration order is significant: nearest-color searches break
ties in favor of the entry that appears first.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Sequence
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from stitchgrid.errors import InvalidArgumentError, ResourceUnavailableError
from stitchgrid.logging import get_logger
from stitchgrid.models import ReferenceColor

logger = get_logger("catalog")

DEFAULT_CATALOG_RESOURCE = "dmc_colors.json"


def _entry_from_record(record: Any, index: int) -> ReferenceColor:
    """Translate one catalog JSON record (``code``/``name``/``hex``/``rgb``)."""
    if not isinstance(record, dict):
        raise InvalidArgumentError(
            f"Catalog entry {index} must be a mapping, got {type(record).__name__}"
        )
    try:
        return ReferenceColor(
            id=str(record.get("code", record.get("id", ""))),
            display_name=str(record.get("name", record.get("display_name", ""))),
            rgb=record.get("rgb"),
            hex=record.get("hex", ""),
        )
    except ValidationError as exc:
        raise InvalidArgumentError(f"Invalid catalog entry {index}: {exc}") from exc


class ReferenceCatalog:
    """Immutable, ordered catalog of reference thread colors."""

    def __init__(self, colors: Iterable[ReferenceColor]) -> None:
        entries = tuple(colors)
        by_id: dict[str, ReferenceColor] = {}
        for color in entries:
            if color.id in by_id:
                raise InvalidArgumentError(f"Duplicate catalog code: {color.id!r}")
            by_id[color.id] = color
        self._colors = entries
        self._by_id = by_id

    @classmethod
    def from_records(cls, records: Sequence[Any]) -> ReferenceCatalog:
        """Build a catalog from parsed JSON records."""
        return cls(_entry_from_record(rec, i) for i, rec in enumerate(records))

    @classmethod
    def load(cls, path: str | Path | None = None) -> ReferenceCatalog:
        """Load a catalog from a JSON file, or the packaged DMC catalog.

        Args:
            path: Optional JSON file holding a list of
                ``{code, name, hex, rgb}`` records.

        Raises:
            ResourceUnavailableError: If the file cannot be read or parsed.
            InvalidArgumentError: If a record is malformed or codes repeat.
        """
        try:
            if path is None:
                text = (
                    resources.files("stitchgrid.data")
                    .joinpath(DEFAULT_CATALOG_RESOURCE)
                    .read_text(encoding="utf-8")
                )
                source = f"package:{DEFAULT_CATALOG_RESOURCE}"
            else:
                text = Path(path).read_text(encoding="utf-8")
                source = str(path)
            records = json.loads(text)
        except (OSError, json.JSONDecodeError) as exc:
            raise ResourceUnavailableError(f"Cannot read catalog: {exc}") from exc

        if not isinstance(records, list):
            raise ResourceUnavailableError(
                f"Catalog must be a JSON list, got {type(records).__name__}"
            )

        catalog = cls.from_records(records)
        logger.info("Loaded %d reference colors from %s", len(catalog), source)
        return catalog

    def __iter__(self) -> Iterator[ReferenceColor]:
        return iter(self._colors)

    def __len__(self) -> int:
        return len(self._colors)

    def __contains__(self, code: object) -> bool:
        return code in self._by_id

    @property
    def colors(self) -> tuple[ReferenceColor, ...]:
        return self._colors

    def get(self, code: str) -> ReferenceColor | None:
        """Return the entry with catalog *code*, if any."""
        return self._by_id.get(code)

    def get_many(self, codes: Iterable[str]) -> list[ReferenceColor]:
        """Return entries for *codes* in the given order, skipping unknown codes."""
        return [self._by_id[c] for c in codes if c in self._by_id]

    def search(self, query: str) -> list[ReferenceColor]:
        """Case-insensitive substring search over display names."""
        needle = query.lower()
        return [c for c in self._colors if needle in c.display_name.lower()]

    def by_family(self, family: str) -> list[ReferenceColor]:
        """Entries whose name mentions a color family (e.g. ``"blue"``)."""
        return self.search(family)


@lru_cache(maxsize=1)
def default_catalog() -> ReferenceCatalog:
    """Return the packaged DMC catalog, loaded once per process."""
    return ReferenceCatalog.load()
