"""
upsert.py — push consolidated orders into the order store

The store owns upsert-by-order-number: it creates unknown orders and updates
existing ones, and tells us which happened. This module validates records,
shapes payloads and talks to the store through a Submitter:

    store = HttpOrderStore("http://localhost:5000/api", token="...")
    outcome = UpsertOrchestrator(store).submit(consolidated)

Before anything is sent, the store's reference data (cost centers, account
categories) is loaded so payloads and items can carry resolved ids.

All orders go out in one batch call. Only when that call fails at the
transport level (connection error, timeout, 5xx, unusable body, a reply that
stored nothing) are the same orders resent one at a time, in order.
Rejections of single orders inside a batch are ordinary failed outcomes and
never trigger the fallback.

Once an order is stored, its detail lines are created through the store's
bulk item endpoint. Item failures are collected on the outcome and never
turn a stored order into a failed one.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

import requests

from oc_consolidator.errors import RecordValidationError, TransportError
from oc_consolidator.models import (
    RESULT_CREATED,
    RESULT_FAILED,
    RESULT_UPDATED,
    BatchOutcome,
    ConsolidatedRecord,
    ItemResult,
    UpsertOutcome,
)
from oc_consolidator.payload import DEFAULT_STATE, build_items, build_payload
from oc_consolidator.reference import ReferenceData

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:5000/api"
DEFAULT_TIMEOUT_SECONDS = 30.0
BATCH_PATH = "/ordenes-compra/batch"
ORDER_PATH = "/ordenes-compra"
REFERENCE_DATA_PATH = "/ordenes-compra/items/reference-data"
ITEMS_BULK_PATH = "/ordenes-compra/{order_id}/items/bulk"
CANCELLED_MESSAGE = "cancelled before submission"
NO_ID_MESSAGE = "no id returned for this order"
NO_RESULT_MESSAGE = "no result returned for this order"


def validate_record(record: ConsolidatedRecord) -> None:
    if not record.order_number.strip():
        raise RecordValidationError("order number is empty")
    if not record.supplier_name.strip():
        raise RecordValidationError("supplier name is empty")
    if record.amount <= 0:
        raise RecordValidationError(f"amount must be greater than 0 (got {record.amount:g})")


# ══════════════════════════════════════════════════════════════════════════════
# SUBMITTERS
# ══════════════════════════════════════════════════════════════════════════════

class Submitter(ABC):
    def fetch_reference_data(self) -> ReferenceData:
        """Stores without reference data resolve no ids."""
        return ReferenceData()

    @abstractmethod
    def submit_batch(self, payloads: list[dict[str, Any]]) -> list[ItemResult]:
        """One result per payload, same order. Raise TransportError if the call itself failed."""

    @abstractmethod
    def submit_one(self, payload: dict[str, Any]) -> ItemResult:
        """Raise TransportError if the call itself failed."""

    @abstractmethod
    def submit_items(self, order_id: int, items: list[dict[str, Any]]) -> int:
        """Create detail lines for a stored order; returns how many were inserted."""


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_result_item(item: dict[str, Any]) -> ItemResult:
    error = item.get("errorMessage") or item.get("error")
    success = bool(item.get("success", error is None))
    if not success:
        return ItemResult(success=False, error_message=str(error or "rejected by order store"))
    entity_id = _as_int(item.get("entityId", item.get("id")))
    if entity_id is None:
        return ItemResult(success=False, error_message=NO_ID_MESSAGE)
    action = item.get("action")
    if action:
        created = action == RESULT_CREATED
    elif "created" in item:
        created = bool(item["created"])
    else:
        created = not item.get("updated", False)
    return ItemResult(success=True, created=created, entity_id=entity_id)


def _expect(value: Any, kind: type, what: str) -> Any:
    if not isinstance(value, kind):
        raise TransportError(f"Batch reply has an unusable {what}: {value!r}")
    return value


def _parse_results_list(data: dict[str, Any], expected: int) -> list[ItemResult | None]:
    results: list[ItemResult | None] = [None] * expected
    for position, item in enumerate(_expect(data["results"], list, "results list")):
        _expect(item, dict, "results entry")
        index = _as_int(item.get("index", position))
        if index is not None and 0 <= index < expected:
            results[index] = _parse_result_item(item)
    return results


def _parse_aggregate(data: dict[str, Any], expected: int) -> list[ItemResult | None]:
    results: list[ItemResult | None] = [None] * expected
    errors = _expect(data.get("errors") or [], list, "errors list")
    ids = _expect(data.get("ids") or [], list, "ids list")
    details = _expect(data.get("details") or {}, dict, "details object")
    updated_ids = {_as_int(value) for value in _expect(details.get("updatedIds") or [], list, "updatedIds list")}

    for error in errors:
        _expect(error, dict, "errors entry")
        index = _as_int(error.get("index"))
        if index is None or not 0 <= index < expected:
            continue
        item = error.get("item") if isinstance(error.get("item"), dict) else {}
        message = item.get("error") or error.get("error") or "rejected by order store"
        results[index] = ItemResult(success=False, error_message=str(message))

    successful = [index for index in range(expected) if results[index] is None]
    if successful and not ids:
        raise TransportError("Batch reply stored no orders (no ids returned)")

    # ids follow the order of the items that did not fail
    for position, index in enumerate(successful):
        entity_id = _as_int(ids[position]) if position < len(ids) else None
        if entity_id is None:
            results[index] = ItemResult(success=False, error_message=NO_ID_MESSAGE)
        else:
            results[index] = ItemResult(success=True, created=entity_id not in updated_ids, entity_id=entity_id)
    return results


def parse_batch_response(body: dict[str, Any], expected: int) -> list[ItemResult]:
    """
    Read per-order results from a batch reply.

    Two shapes are understood: an explicit ``data.results`` list, and the
    aggregate form with ``data.ids``, ``data.errors[].index`` and
    ``data.details.createdIds/updatedIds``, where ids follow the order of the
    successful items. A body of any other shape, or an aggregate reply that
    accepted orders without returning ids, raises TransportError.
    """
    data = _expect(body.get("data"), dict, "data object")
    if "results" in data:
        results = _parse_results_list(data, expected)
    else:
        results = _parse_aggregate(data, expected)
    return [
        result if result is not None else ItemResult(success=False, error_message=NO_RESULT_MESSAGE)
        for result in results
    ]


class HttpOrderStore(Submitter):
    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        *,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json", "Accept": "application/json"})
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> tuple[int, dict[str, Any]]:
        url = self.base_url + path
        try:
            if method == "GET":
                response = self.session.get(url, timeout=self.timeout)
            else:
                response = self.session.post(url, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc
        try:
            status = response.status_code
            if status >= 500:
                raise TransportError(f"{method} {url} returned HTTP {status}")
            try:
                payload = response.json()
            except ValueError as exc:
                raise TransportError(f"{method} {url} returned a non-JSON body (HTTP {status})") from exc
            if not isinstance(payload, dict):
                raise TransportError(f"{method} {url} returned an unexpected body (HTTP {status})")
            return status, payload
        finally:
            response.close()

    @staticmethod
    def _message(body: dict[str, Any], status: int) -> str:
        return str(body.get("message") or body.get("error") or f"HTTP {status}")

    def fetch_reference_data(self) -> ReferenceData:
        status, body = self._request("GET", REFERENCE_DATA_PATH)
        data = body.get("data")
        if status >= 400 or not body.get("success", True) or not isinstance(data, dict):
            raise TransportError(f"Could not load reference data: {self._message(body, status)}")
        return ReferenceData.from_payload(data)

    def submit_batch(self, payloads: list[dict[str, Any]]) -> list[ItemResult]:
        status, body = self._request("POST", BATCH_PATH, {"ordenes": payloads})
        accepted = body.get("success") or body.get("status") in ("success", "partial_success")
        if status >= 400 or not accepted:
            raise TransportError(f"Batch upsert failed: {self._message(body, status)}")
        return parse_batch_response(body, len(payloads))

    def submit_one(self, payload: dict[str, Any]) -> ItemResult:
        status, body = self._request("POST", ORDER_PATH, payload)
        if status >= 400 or not body.get("success", True):
            return ItemResult(success=False, error_message=self._message(body, status))
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        entity_id = _as_int(data.get("id"))
        if entity_id is None:
            return ItemResult(success=False, error_message=NO_ID_MESSAGE)
        return ItemResult(success=True, created=not data.get("isUpdate", False), entity_id=entity_id)

    def submit_items(self, order_id: int, items: list[dict[str, Any]]) -> int:
        status, body = self._request("POST", ITEMS_BULK_PATH.format(order_id=order_id), {"items": items})
        if status >= 400 or not body.get("success", True):
            raise TransportError(f"Item creation failed: {self._message(body, status)}")
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        inserted = _as_int(data.get("inserted"))
        return len(items) if inserted is None else inserted


# ══════════════════════════════════════════════════════════════════════════════
# ORCHESTRATION
# ══════════════════════════════════════════════════════════════════════════════

class UpsertOrchestrator:
    def __init__(
        self,
        submitter: Submitter,
        *,
        cancel_event: threading.Event | None = None,
        state: str = DEFAULT_STATE,
    ) -> None:
        self.submitter = submitter
        self.cancel_event = cancel_event
        self.state = state

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    @staticmethod
    def _outcome(index: int, record: ConsolidatedRecord, result: ItemResult) -> UpsertOutcome:
        if not result.success:
            return UpsertOutcome(
                record_ref=index,
                order_number=record.order_number,
                result_kind=RESULT_FAILED,
                error_message=result.error_message or "rejected by order store",
            )
        return UpsertOutcome(
            record_ref=index,
            order_number=record.order_number,
            result_kind=RESULT_CREATED if result.created else RESULT_UPDATED,
            entity_id=result.entity_id,
        )

    def _load_reference(self) -> ReferenceData:
        try:
            reference = self.submitter.fetch_reference_data()
        except TransportError as exc:
            logger.warning("Reference data unavailable (%s); orders are sent without reference ids", exc)
            return ReferenceData()
        logger.info(
            "Loaded %d cost centers and %d account categories",
            len(reference.cost_centers),
            len(reference.account_categories),
        )
        return reference

    def _submit_batch(self, payloads: list[dict[str, Any]]) -> list[ItemResult]:
        results = self.submitter.submit_batch(payloads)
        if len(results) != len(payloads):
            raise TransportError(f"Batch reply had {len(results)} results for {len(payloads)} orders")
        return results

    def _submit_individually(self, payloads: list[dict[str, Any]]) -> list[ItemResult]:
        results: list[ItemResult] = []
        for payload in payloads:
            if self._cancelled():
                results.append(ItemResult(success=False, error_message=CANCELLED_MESSAGE))
                continue
            try:
                results.append(self.submitter.submit_one(payload))
            except TransportError as exc:
                logger.error("Order %s could not be sent: %s", payload.get("poNumber"), exc)
                results.append(ItemResult(success=False, error_message=str(exc)))
        return results

    def _create_items(
        self,
        records: list[ConsolidatedRecord],
        outcomes: list[UpsertOutcome],
        reference: ReferenceData,
        batch: BatchOutcome,
    ) -> None:
        for outcome in outcomes:
            record = records[outcome.record_ref]
            if not outcome.succeeded or outcome.entity_id is None or not record.details:
                continue
            if self._cancelled():
                logger.warning("Cancelled before creating items for order %s", record.order_number)
                break
            items = [item for item in build_items(record, reference) if item["total"] > 0]
            if not items:
                continue
            try:
                batch.items_created += self.submitter.submit_items(outcome.entity_id, items)
            except TransportError as exc:
                logger.error("Items for order %s could not be created: %s", record.order_number, exc)
                batch.item_errors.append(f"{record.order_number}: {exc}")

    def submit(self, records: list[ConsolidatedRecord]) -> BatchOutcome:
        outcomes: dict[int, UpsertOutcome] = {}
        pending: list[int] = []
        for index, record in enumerate(records):
            try:
                validate_record(record)
            except RecordValidationError as exc:
                outcomes[index] = UpsertOutcome(
                    record_ref=index,
                    order_number=record.order_number,
                    result_kind=RESULT_FAILED,
                    error_message=str(exc),
                )
                continue
            pending.append(index)

        used_fallback = False
        reference = ReferenceData()
        if pending:
            if self._cancelled():
                results = [ItemResult(success=False, error_message=CANCELLED_MESSAGE) for _ in pending]
            else:
                reference = self._load_reference()
                payloads = [build_payload(records[index], self.state, reference) for index in pending]
                try:
                    results = self._submit_batch(payloads)
                except TransportError as exc:
                    logger.warning("Batch upsert failed (%s); sending %d orders one by one", exc, len(payloads))
                    used_fallback = True
                    results = self._submit_individually(payloads)
            for index, result in zip(pending, results):
                outcomes[index] = self._outcome(index, records[index], result)

        outcome = BatchOutcome(outcomes=[outcomes[index] for index in sorted(outcomes)], used_fallback=used_fallback)
        self._create_items(records, outcome.outcomes, reference, outcome)
        logger.info(
            "Upsert finished: %d created, %d updated, %d failed, %d items%s",
            outcome.created,
            outcome.updated,
            outcome.failed,
            outcome.items_created,
            " (individual fallback)" if used_fallback else "",
        )
        return outcome
