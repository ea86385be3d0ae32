from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

RESULT_CREATED = "created"
RESULT_UPDATED = "updated"
RESULT_FAILED = "failed"


@dataclass
class MainRecord:
    order_number: str
    supplier_name: str
    amount: float
    order_name: str = ""
    date: str = ""
    cost_center_label: str = ""
    payment_terms: str = ""
    source_row: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DetailRecord:
    order_number: str
    cost_center_code: str
    cost_account_name: str = ""
    description: str = ""
    note: str = ""
    amount: float | None = None
    source_row: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ConsolidatedRecord:
    order_number: str
    order_name: str
    date: str
    cost_center_label: str
    supplier_name: str
    payment_terms: str
    amount: float
    details: list[DetailRecord] = field(default_factory=list)
    cost_center_code: str = ""
    cost_account_name: str = ""
    needs_review: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["details_count"] = len(self.details)
        return payload


@dataclass
class RejectedRow:
    row_number: int
    reason: str
    values: list[Any] = field(default_factory=list)


@dataclass
class ExtractionResult:
    schema: str
    header_row_index: int
    mapping: dict[str, int]
    records: list = field(default_factory=list)
    rejected: list[RejectedRow] = field(default_factory=list)


@dataclass
class ItemResult:
    """One order-store answer for one payload, batch or individual."""

    success: bool
    created: bool = False
    entity_id: int | None = None
    error_message: str | None = None


@dataclass
class UpsertOutcome:
    record_ref: int
    order_number: str
    result_kind: str
    entity_id: int | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result_kind != RESULT_FAILED


@dataclass
class BatchOutcome:
    outcomes: list[UpsertOutcome] = field(default_factory=list)
    used_fallback: bool = False
    items_created: int = 0
    item_errors: list[str] = field(default_factory=list)

    def _count(self, kind: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.result_kind == kind)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def created(self) -> int:
        return self._count(RESULT_CREATED)

    @property
    def updated(self) -> int:
        return self._count(RESULT_UPDATED)

    @property
    def failed(self) -> int:
        return self._count(RESULT_FAILED)

    @property
    def failures(self) -> list[UpsertOutcome]:
        return [outcome for outcome in self.outcomes if outcome.result_kind == RESULT_FAILED]
