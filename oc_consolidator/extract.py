from __future__ import annotations

import logging
from datetime import date

from oc_consolidator.fields import DETAIL_SCHEMA, MAIN_SCHEMA, Schema
from oc_consolidator.headers import HEADER_SCAN_ROWS, locate_header_row, map_columns, require_columns
from oc_consolidator.models import DetailRecord, ExtractionResult, MainRecord, RejectedRow
from oc_consolidator.normalization import clean_text, is_blank, normalise_date, parse_amount

logger = logging.getLogger(__name__)


def _cell(row: list[object], idx: int | None) -> object:
    if idx is None or idx >= len(row):
        return None
    return row[idx]


def _row_values(row: list[object], mapping: dict[str, int], schema: Schema, today: date | None) -> dict[str, object]:
    values: dict[str, object] = {}
    for field in schema.fields:
        raw = _cell(row, mapping.get(field.name))
        if field.kind == "date":
            values[field.attr] = normalise_date(raw, today)
        elif field.kind == "amount":
            values[field.attr] = parse_amount(raw)
        else:
            values[field.attr] = clean_text(raw)
    return values


def _main_rejection(values: dict[str, object]) -> str | None:
    if not values["order_number"]:
        return "missing order number"
    if not values["supplier_name"]:
        return "missing supplier"
    if values["amount"] <= 0:
        return "amount is not positive"
    return None


def _detail_rejection(values: dict[str, object]) -> str | None:
    if not values["order_number"]:
        return "missing order number"
    if not values["cost_center_code"]:
        return "missing cost center code"
    return None


def extract_records(
    grid: list[list[object]],
    mapping: dict[str, int],
    start_row: int,
    schema: Schema,
    *,
    header_row_index: int | None = None,
    today: date | None = None,
) -> ExtractionResult:
    """
    Turn grid rows from ``start_row`` on into typed records.

    Rows that fail the schema's minimum fields are left out of ``records``
    and listed in ``rejected`` instead. Empty rows are skipped silently.
    """
    result = ExtractionResult(
        schema=schema.name,
        header_row_index=start_row - 1 if header_row_index is None else header_row_index,
        mapping=dict(mapping),
    )
    is_main = schema.name == MAIN_SCHEMA.name

    for idx in range(start_row, len(grid)):
        row = grid[idx]
        if all(is_blank(cell) for cell in row):
            continue
        row_number = idx + 1
        values = _row_values(row, mapping, schema, today)
        reason = _main_rejection(values) if is_main else _detail_rejection(values)
        if reason:
            logger.debug("%s row %d dropped: %s", schema.name, row_number, reason)
            result.rejected.append(RejectedRow(row_number=row_number, reason=reason, values=list(row)))
            continue
        if is_main:
            result.records.append(MainRecord(source_row=row_number, **values))
        else:
            if not values["amount"]:
                values["amount"] = None
            result.records.append(DetailRecord(source_row=row_number, **values))

    logger.info(
        "Extracted %d %s records (%d rows rejected)",
        len(result.records),
        schema.name,
        len(result.rejected),
    )
    return result


def extract_schema(
    grid: list[list[object]],
    schema: Schema,
    *,
    scan_limit: int = HEADER_SCAN_ROWS,
    today: date | None = None,
) -> ExtractionResult:
    header_idx = locate_header_row(grid, schema.fields, scan_limit=scan_limit)
    mapping = map_columns(grid[header_idx], schema.fields)
    require_columns(mapping, schema)
    return extract_records(grid, mapping, header_idx + 1, schema, header_row_index=header_idx, today=today)


def extract_main_records(grid: list[list[object]], **kwargs) -> ExtractionResult:
    return extract_schema(grid, MAIN_SCHEMA, **kwargs)


def extract_detail_records(grid: list[list[object]], **kwargs) -> ExtractionResult:
    return extract_schema(grid, DETAIL_SCHEMA, **kwargs)
