from __future__ import annotations

from typing import Any

from oc_consolidator.headers import normalise_header
from oc_consolidator.models import ConsolidatedRecord, DetailRecord
from oc_consolidator.reference import ReferenceData, find_account_category_id, find_cost_center_id

CURRENCY = "CLP"
DEFAULT_STATE = "draft"
DEFAULT_DB_STATE = "borrador"

STATE_TO_DB = {
    "draft": "borrador",
    "pending": "borrador",
    "approved": "activo",
    "received": "completado",
    "paid": "completado",
    "delivered": "completado",
    "rejected": "cancelado",
    "cancelled": "cancelado",
}

PAYMENT_CASH = "cash"
PAYMENT_CREDIT = "credit"
CASH_HINTS = ("CONTADO", "EFECTIVO", "CASH")


def classify_payment_type(terms: str) -> str:
    """Map free-text payment terms onto the store's credit/cash enum."""
    text = normalise_header(terms)
    if any(hint in text for hint in CASH_HINTS) or text.startswith("0 DIAS"):
        return PAYMENT_CASH
    return PAYMENT_CREDIT


def _item_total(detail: DetailRecord, record: ConsolidatedRecord) -> float:
    if detail.amount and detail.amount > 0:
        return detail.amount
    return float(round(record.amount / len(record.details)))


def build_items(record: ConsolidatedRecord, reference: ReferenceData | None = None) -> list[dict[str, Any]]:
    """Detail lines in the shape of the store's bulk item endpoint."""
    reference = reference or ReferenceData()
    cost_center_id = find_cost_center_id(record.cost_center_label, reference.cost_centers)
    items = []
    for detail in record.details:
        items.append(
            {
                "cost_center_id": cost_center_id,
                "account_category_id": find_account_category_id(
                    detail.cost_account_name or detail.cost_center_code, reference.account_categories
                ),
                "date": record.date,
                "description": detail.description or f"{detail.cost_center_code} - {detail.cost_account_name}",
                "glosa": detail.note or f"Código CC: {detail.cost_center_code} | Cuenta: {detail.cost_account_name}",
                "currency": CURRENCY,
                "total": _item_total(detail, record),
            }
        )
    return items


def build_notes(record: ConsolidatedRecord) -> str:
    codes = ", ".join(detail.cost_center_code for detail in record.details)
    return f"Consolidado de {len(record.details)} detalles: {codes}"


def build_payload(
    record: ConsolidatedRecord,
    state: str = DEFAULT_STATE,
    reference: ReferenceData | None = None,
) -> dict[str, Any]:
    """
    One order in the store's create/upsert wire format.

    The store accepts several aliases for the same value (``poNumber`` and
    ``po_number``, ``total``/``amount``/``subtotal`` ...); all of them are
    sent. Reference ids are only present when the label resolved.
    """
    reference = reference or ReferenceData()
    name = record.order_name or f"Orden {record.order_number}"
    category = record.cost_center_code or record.cost_account_name
    db_state = STATE_TO_DB.get(state, DEFAULT_DB_STATE)
    payload: dict[str, Any] = {
        "poNumber": record.order_number,
        "po_number": record.order_number,
        "poDate": record.date,
        "po_date": record.date,
        "description": name,
        "supplierName": record.supplier_name,
        "total": record.amount,
        "amount": record.amount,
        "subtotal": record.amount,
        "categoryName": category,
        "category": category,
        "categoriaNombre": category,
        "costCenterCode": record.cost_center_label,
        "centerCode": record.cost_center_label,
        "centroCosto": record.cost_center_label,
        "paymentType": classify_payment_type(record.payment_terms),
        "paymentTerms": record.payment_terms,
        "status": db_state,
        "state": db_state,
        "currency": CURRENCY,
        "notes": build_notes(record),
        "needsReview": record.needs_review,
    }
    cost_center_id = find_cost_center_id(record.cost_center_label, reference.cost_centers)
    if cost_center_id is not None:
        payload["centroCostoId"] = cost_center_id
    account_category_id = find_account_category_id(
        record.cost_account_name or record.cost_center_code, reference.account_categories
    )
    if account_category_id is not None:
        payload["accountCategoryId"] = account_category_id
    return payload
