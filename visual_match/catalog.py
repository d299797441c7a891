"""
Catalog loading and validation.

The catalog is a JSON list of product records, each carrying display
metadata and a precomputed 6-dimensional embedding. It is loaded once
at startup and is read-only afterwards. Any malformed record aborts the
load with a DataError: entries are never dropped or coerced, so the
ranker always sees exactly the catalog that was written.
"""

import os
import json
import math
import logging
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Dict, Iterable, Tuple

from .embedding import EMBEDDING_DIM
from .errors import DataError

logger = logging.getLogger(__name__)

CATALOG_PATH = os.environ.get("CATALOG_PATH", "data/products.json")

REQUIRED_TEXT_FIELDS = ("name", "category", "image")
# Required in catalog files; the dataclass defaults only serve entries
# built in code.
METADATA_FIELDS = ("tags", "price", "description")


@dataclass(frozen=True)
class CatalogEntry:
    """A product record with its precomputed embedding."""

    id: int
    name: str
    category: str
    image: str
    embedding: Tuple[float, ...]
    tags: Tuple[str, ...] = field(default_factory=tuple)
    price: float = 0.0
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "image": self.image,
            "tags": list(self.tags),
            "price": self.price,
            "description": self.description,
            "embedding": list(self.embedding),
        }


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def parse_entry(record: Any, position: int = 0) -> CatalogEntry:
    """
    Validate one raw catalog record and build a CatalogEntry.

    Args:
        record: Decoded JSON object.
        position: Index of the record in the catalog, used in error messages.

    Raises:
        DataError: If a field is missing or has the wrong type, or the
            embedding is not EMBEDDING_DIM finite numbers.
    """
    if not isinstance(record, dict):
        raise DataError(f"Catalog record {position} is not an object")

    entry_id = record.get("id")
    if not isinstance(entry_id, int) or isinstance(entry_id, bool):
        raise DataError(f"Catalog record {position} has a missing or non-integer id")

    label = f"Catalog record {position} (id={entry_id})"

    for name in REQUIRED_TEXT_FIELDS:
        if not isinstance(record.get(name), str):
            raise DataError(f"{label} is missing text field '{name}'")

    embedding = record.get("embedding")
    if not isinstance(embedding, list) or len(embedding) != EMBEDDING_DIM:
        raise DataError(f"{label} must have an embedding of {EMBEDDING_DIM} numbers")
    if not all(_is_number(v) and math.isfinite(v) for v in embedding):
        raise DataError(f"{label} has a non-numeric or non-finite embedding value")

    for name in METADATA_FIELDS:
        if name not in record:
            raise DataError(f"{label} is missing field '{name}'")

    tags = record["tags"]
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise DataError(f"{label} has tags that are not a list of strings")

    price = record["price"]
    if not _is_number(price):
        raise DataError(f"{label} has a non-numeric price")

    description = record["description"]
    if not isinstance(description, str):
        raise DataError(f"{label} has a non-text description")

    return CatalogEntry(
        id=entry_id,
        name=record["name"],
        category=record["category"],
        image=record["image"],
        embedding=tuple(float(v) for v in embedding),
        tags=tuple(tags),
        price=float(price),
        description=description,
    )


def parse_catalog(records: Iterable[Any]) -> Tuple[CatalogEntry, ...]:
    """
    Validate a sequence of raw records into an immutable catalog.

    Raises:
        DataError: On the first malformed record or a duplicate id.
    """
    if not isinstance(records, (list, tuple)):
        raise DataError("Catalog must be a list of product records")

    entries = []
    seen = set()
    for position, record in enumerate(records):
        entry = parse_entry(record, position)
        if entry.id in seen:
            raise DataError(f"Catalog record {position} duplicates id {entry.id}")
        seen.add(entry.id)
        entries.append(entry)

    return tuple(entries)


def load_catalog(path: str = None) -> Tuple[CatalogEntry, ...]:
    """
    Load and validate the catalog JSON file.

    Args:
        path: JSON file path; defaults to CATALOG_PATH.

    Raises:
        DataError: If the file is missing, is not valid JSON, or any record
            fails validation.
    """
    path = path or CATALOG_PATH
    try:
        with open(path, "r", encoding="utf-8") as f:
            records = json.load(f)
    except OSError as e:
        raise DataError(f"Catalog file could not be read: {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise DataError(f"Catalog file is not valid JSON: {path}: {e}") from e

    catalog = parse_catalog(records)
    logger.info(f"Loaded catalog: {len(catalog)} products from {path}")
    return catalog
