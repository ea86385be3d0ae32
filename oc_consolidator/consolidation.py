from __future__ import annotations

import logging
from datetime import date
from typing import Any

from oc_consolidator import __version__ as TOOL_VERSION
from oc_consolidator.contracts import build_contract
from oc_consolidator.models import ConsolidatedRecord, DetailRecord, ExtractionResult, MainRecord

logger = logging.getLogger(__name__)

PLACEHOLDER_TEXT = "Por definir"
PLACEHOLDER_AMOUNT = 1.0

PREVIEW_MAIN_SAMPLES = 5
PREVIEW_DETAIL_SAMPLES = 10
PREVIEW_CONSOLIDATED_SAMPLES = 5


def group_details(details: list[DetailRecord]) -> dict[str, list[DetailRecord]]:
    groups: dict[str, list[DetailRecord]] = {}
    for detail in details:
        groups.setdefault(detail.order_number, []).append(detail)
    return groups


def dedupe_main(main_records: list[MainRecord]) -> dict[str, MainRecord]:
    """Last occurrence of an order number wins; its slot stays where the key first appeared."""
    unique: dict[str, MainRecord] = {}
    for record in main_records:
        if record.order_number in unique:
            logger.info("Duplicate order %s in main file; keeping the later row", record.order_number)
        unique[record.order_number] = record
    return unique


def find_cost_center_conflicts(details: list[DetailRecord]) -> dict[str, list[str]]:
    conflicts: dict[str, list[str]] = {}
    for order_number, group in group_details(details).items():
        codes = list(dict.fromkeys(detail.cost_center_code for detail in group))
        if len(codes) > 1:
            conflicts[order_number] = codes
    return conflicts


def _from_main(record: MainRecord, group: list[DetailRecord]) -> ConsolidatedRecord:
    first = group[0] if group else None
    return ConsolidatedRecord(
        order_number=record.order_number,
        order_name=record.order_name,
        date=record.date,
        cost_center_label=record.cost_center_label,
        supplier_name=record.supplier_name,
        payment_terms=record.payment_terms,
        amount=record.amount,
        details=list(group),
        cost_center_code=first.cost_center_code if first else "",
        cost_account_name=first.cost_account_name if first else "",
    )


def _placeholder(order_number: str, group: list[DetailRecord], today: date) -> ConsolidatedRecord:
    first = group[0]
    return ConsolidatedRecord(
        order_number=order_number,
        order_name=first.description or f"Orden {order_number}",
        date=today.strftime("%Y-%m-%d"),
        cost_center_label=PLACEHOLDER_TEXT,
        supplier_name=PLACEHOLDER_TEXT,
        payment_terms=PLACEHOLDER_TEXT,
        amount=PLACEHOLDER_AMOUNT,
        details=list(group),
        cost_center_code=first.cost_center_code,
        cost_account_name=first.cost_account_name,
        needs_review=True,
    )


def consolidate(
    main_records: list[MainRecord],
    detail_records: list[DetailRecord],
    today: date | None = None,
) -> list[ConsolidatedRecord]:
    """
    Merge main and detail records into one record per order number.

    Main-derived records come first in main-file order, followed by orders
    that only appear in the detail file, in detail-file order. Cost-center
    code and account always come from the first detail of the group.
    """
    today = today or date.today()
    groups = group_details(detail_records)
    unique_main = dedupe_main(main_records)

    for order_number, codes in find_cost_center_conflicts(detail_records).items():
        logger.warning(
            "Order %s has details with different cost center codes (%s); using %s",
            order_number,
            ", ".join(codes),
            codes[0],
        )

    consolidated = [
        _from_main(record, groups.get(order_number, []))
        for order_number, record in unique_main.items()
    ]
    detail_only = [key for key in groups if key not in unique_main]
    for order_number in detail_only:
        logger.info("Order %s only exists in the detail file; created a placeholder for review", order_number)
        consolidated.append(_placeholder(order_number, groups[order_number], today))

    logger.info(
        "Consolidated %d orders (%d from main, %d detail-only)",
        len(consolidated),
        len(unique_main),
        len(detail_only),
    )
    return consolidated


def build_preview(
    main: ExtractionResult,
    detail: ExtractionResult,
    consolidated: list[ConsolidatedRecord],
    *,
    main_samples: int = PREVIEW_MAIN_SAMPLES,
    detail_samples: int = PREVIEW_DETAIL_SAMPLES,
    consolidated_samples: int = PREVIEW_CONSOLIDATED_SAMPLES,
) -> dict[str, Any]:
    contract = build_contract("oc_consolidator.preview")
    warnings = [
        f"Order {order_number} has inconsistent cost center codes: {', '.join(codes)}"
        for order_number, codes in find_cost_center_conflicts(detail.records).items()
    ]
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "counts": {
            "main_records": len(main.records),
            "detail_records": len(detail.records),
            "consolidated_records": len(consolidated),
            "with_details": sum(1 for record in consolidated if record.details),
            "new_from_details": sum(1 for record in consolidated if record.needs_review),
            "main_rows_rejected": len(main.rejected),
            "detail_rows_rejected": len(detail.rejected),
        },
        "header_rows": {
            "main": main.header_row_index + 1,
            "detail": detail.header_row_index + 1,
        },
        "warnings": warnings,
        "rejected_rows": {
            "main": [{"row": row.row_number, "reason": row.reason} for row in main.rejected],
            "detail": [{"row": row.row_number, "reason": row.reason} for row in detail.rejected],
        },
        "samples": {
            "main": [record.to_dict() for record in main.records[:main_samples]],
            "detail": [record.to_dict() for record in detail.records[:detail_samples]],
            "consolidated": [record.to_dict() for record in consolidated[:consolidated_samples]],
        },
    }
