from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date

from oc_consolidator.consolidation import consolidate
from oc_consolidator.errors import ConsolidatorError, ImportCancelledError, NoOrdersError
from oc_consolidator.extract import extract_detail_records, extract_main_records
from oc_consolidator.headers import HEADER_SCAN_ROWS
from oc_consolidator.models import BatchOutcome, ConsolidatedRecord, ExtractionResult
from oc_consolidator.reader import read_grid
from oc_consolidator.report import build_report
from oc_consolidator.upsert import Submitter, UpsertOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class LoadedOrders:
    main: ExtractionResult
    detail: ExtractionResult
    consolidated: list[ConsolidatedRecord]


@dataclass
class ImportResult:
    loaded: LoadedOrders
    outcome: BatchOutcome
    report: str


def _check_cancelled(cancel_event: threading.Event | None, stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ImportCancelledError(f"Import cancelled before {stage}")


def _extract(label: str, data: bytes, name: str | None, extractor, scan_limit: int, today: date | None) -> ExtractionResult:
    try:
        grid = read_grid(data, name)
        return extractor(grid, scan_limit=scan_limit, today=today)
    except ConsolidatorError as exc:
        logger.error("%s file %s rejected: %s", label, name or "", exc)
        raise


def load_orders(
    main_bytes: bytes,
    detail_bytes: bytes,
    *,
    main_name: str | None = None,
    detail_name: str | None = None,
    scan_limit: int = HEADER_SCAN_ROWS,
    today: date | None = None,
    cancel_event: threading.Event | None = None,
) -> LoadedOrders:
    """Read both spreadsheets and consolidate them. Fatal file problems raise."""
    _check_cancelled(cancel_event, "reading files")
    main = _extract("Main", main_bytes, main_name, extract_main_records, scan_limit, today)
    _check_cancelled(cancel_event, "reading the detail file")
    detail = _extract("Detail", detail_bytes, detail_name, extract_detail_records, scan_limit, today)
    _check_cancelled(cancel_event, "consolidation")
    consolidated = consolidate(main.records, detail.records, today=today)
    if not consolidated:
        raise NoOrdersError("No valid orders found to consolidate")
    return LoadedOrders(main=main, detail=detail, consolidated=consolidated)


def run_import(
    main_bytes: bytes,
    detail_bytes: bytes,
    submitter: Submitter,
    *,
    main_name: str | None = None,
    detail_name: str | None = None,
    scan_limit: int = HEADER_SCAN_ROWS,
    today: date | None = None,
    cancel_event: threading.Event | None = None,
) -> ImportResult:
    loaded = load_orders(
        main_bytes,
        detail_bytes,
        main_name=main_name,
        detail_name=detail_name,
        scan_limit=scan_limit,
        today=today,
        cancel_event=cancel_event,
    )
    _check_cancelled(cancel_event, "submission")
    outcome = UpsertOrchestrator(submitter, cancel_event=cancel_event).submit(loaded.consolidated)
    return ImportResult(loaded=loaded, outcome=outcome, report=build_report(outcome))
