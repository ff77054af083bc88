"""Aftercare guide catalog — read-only brochures bundled with the package.

Each brochure is a tree of sections holding line items. Item ids are unique
within a brochure, so checked state refers to them without a section prefix.
"""

from __future__ import annotations

import enum
import json
import logging
from functools import lru_cache
from importlib import resources
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

_BUNDLED_PACKAGE = "aftercare"
_BUNDLED_FILE = "data/brochures.json"


class CatalogError(Exception):
    """Raised when brochure content cannot be loaded or is inconsistent."""


class ItemType(enum.StrEnum):
    """Visual emphasis of a brochure item."""

    WARNING = "warning"
    INFO = "info"
    SUCCESS = "success"


class _ContentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class BrochureItem(_ContentModel):
    """A single line of guidance; checkable items can be marked complete."""

    id: str
    text: str
    type: ItemType | None = None
    checkable: bool = False


class BrochureSection(_ContentModel):
    """An ordered group of items under one heading."""

    id: str
    title: str
    icon: str | None = None
    items: list[BrochureItem] = []


class Brochure(_ContentModel):
    """A structured recovery guide."""

    id: str
    title: str
    description: str
    category: str
    version: str
    estimated_read_time: str
    sections: list[BrochureSection] = []

    @model_validator(mode="after")
    def _item_ids_unique(self) -> Brochure:
        seen: set[str] = set()
        for section in self.sections:
            for item in section.items:
                if item.id in seen:
                    raise ValueError(f"Duplicate item id {item.id!r} in brochure {self.id!r}")
                seen.add(item.id)
        return self

    def checkable_items(self) -> list[BrochureItem]:
        """Return all checkable items in reading order."""
        return [item for section in self.sections for item in section.items if item.checkable]

    def find_item(self, item_id: str) -> BrochureItem | None:
        for section in self.sections:
            for item in section.items:
                if item.id == item_id:
                    return item
        return None


class Catalog:
    """Immutable, queryable collection of brochures."""

    def __init__(self, brochures: list[Brochure]) -> None:
        by_id: dict[str, Brochure] = {}
        for brochure in brochures:
            if brochure.id in by_id:
                raise CatalogError(f"Duplicate brochure id: {brochure.id!r}")
            by_id[brochure.id] = brochure
        self._brochures = tuple(brochures)
        self._by_id = by_id

    def __len__(self) -> int:
        return len(self._brochures)

    def all(self) -> list[Brochure]:
        return list(self._brochures)

    def get(self, brochure_id: str) -> Brochure | None:
        return self._by_id.get(brochure_id)

    def categories(self) -> list[str]:
        """Return the distinct brochure categories, sorted."""
        return sorted({b.category for b in self._brochures})

    def search(self, text: str = "", category: str | None = None) -> list[Brochure]:
        """Filter brochures by free text and category.

        Text matches case-insensitively against title or description.
        A category of ``None`` or ``"all"`` matches every brochure.
        """
        needle = text.strip().lower()
        results: list[Brochure] = []
        for brochure in self._brochures:
            if category not in (None, "all") and brochure.category != category:
                continue
            if needle and not (
                needle in brochure.title.lower() or needle in brochure.description.lower()
            ):
                continue
            results.append(brochure)
        return results


def parse_catalog(raw: str) -> Catalog:
    """Parse a JSON array of brochures into a Catalog."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CatalogError(f"Brochure content is not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise CatalogError("Brochure content must be a JSON array")
    try:
        brochures = [Brochure.model_validate(entry) for entry in data]
    except ValidationError as exc:
        raise CatalogError(f"Invalid brochure content: {exc}") from exc
    return Catalog(brochures)


@lru_cache(maxsize=1)
def _bundled_catalog() -> Catalog:
    raw = resources.files(_BUNDLED_PACKAGE).joinpath(_BUNDLED_FILE).read_text(encoding="utf-8")
    catalog = parse_catalog(raw)
    logger.debug("Loaded %d bundled brochures", len(catalog))
    return catalog


def load_catalog(path: Path | None = None) -> Catalog:
    """Load the bundled catalog, or a catalog from *path* when given."""
    if path is None:
        return _bundled_catalog()
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise CatalogError(f"Cannot read brochure file {path}: {exc}") from exc
    return parse_catalog(raw)
