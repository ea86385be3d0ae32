from __future__ import annotations

import logging
import math
import unicodedata

from oc_consolidator.errors import HeaderNotFoundError, MissingColumnsError
from oc_consolidator.fields import FieldSpec, Schema
from oc_consolidator.normalization import clean_text, is_blank

logger = logging.getLogger(__name__)

HEADER_SCAN_ROWS = 20
MIN_HEADER_CELLS = 3


def normalise_header(value: object) -> str:
    """Uppercase, whitespace-collapsed, accent-free text for header comparison."""
    text = " ".join(clean_text(value).split())
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(char for char in decomposed if not unicodedata.combining(char)).upper()


def _synonym_set(field: FieldSpec) -> frozenset[str]:
    return frozenset(normalise_header(synonym) for synonym in field.synonyms)


def _non_empty_count(row: list[object]) -> int:
    return sum(1 for cell in row if not is_blank(cell))


def count_field_matches(row: list[object], fields: tuple[FieldSpec, ...]) -> int:
    cells = {normalise_header(cell) for cell in row if not is_blank(cell)}
    return sum(1 for field in fields if cells & _synonym_set(field))


def locate_header_row(
    grid: list[list[object]],
    fields: tuple[FieldSpec, ...],
    scan_limit: int = HEADER_SCAN_ROWS,
) -> int:
    """
    Find the header row below any banner or title rows.

    A row qualifies when at least half of the field groups (rounded up) have a
    matching cell and the row has three or more non-empty cells. The first
    qualifying row within ``scan_limit`` rows wins.
    """
    needed = math.ceil(len(fields) / 2)
    for idx, row in enumerate(grid[:scan_limit]):
        if _non_empty_count(row) < MIN_HEADER_CELLS:
            continue
        matches = count_field_matches(row, fields)
        if matches >= needed:
            logger.debug("Header row %d matched %d/%d field groups", idx, matches, len(fields))
            return idx
    raise HeaderNotFoundError(
        f"Header row not found in the first {scan_limit} rows "
        f"(need {needed} of: {', '.join(field.name for field in fields)})"
    )


def map_columns(header_row: list[object], fields: tuple[FieldSpec, ...]) -> dict[str, int]:
    normalised = [normalise_header(cell) for cell in header_row]
    mapping: dict[str, int] = {}
    for field in fields:
        synonyms = _synonym_set(field)
        for idx, text in enumerate(normalised):
            if text and text in synonyms:
                mapping[field.name] = idx
                break
    return mapping


def require_columns(mapping: dict[str, int], schema: Schema) -> None:
    missing = [field.name for field in schema.required_fields if field.name not in mapping]
    if missing:
        raise MissingColumnsError(missing)
