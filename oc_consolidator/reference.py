"""
reference.py — resolve spreadsheet labels to the order store's reference ids

The store keeps cost centers and account categories as reference data. The
spreadsheets only carry free text (the "Obra" label, a cost-center code, an
account name), so every order and item is matched against that list using
strategies in priority order:

  cost centers:       exact name, exact code, partial name
  account categories: exact code, exact name, exact group, partial name/code

Comparisons are case-insensitive on trimmed text. No match leaves the id out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CostCenter:
    id: int
    name: str = ""
    code: str = ""


@dataclass(frozen=True)
class AccountCategory:
    id: int
    name: str = ""
    code: str = ""
    group_name: str = ""


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _entries(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [entry for entry in raw if isinstance(entry, dict) and entry.get("id") is not None]


@dataclass
class ReferenceData:
    cost_centers: list[CostCenter] = field(default_factory=list)
    account_categories: list[AccountCategory] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ReferenceData:
        """Build from the store's ``{"costCenters": [...], "accountCategories": [...]}`` body."""
        cost_centers = []
        for entry in _entries(data.get("costCenters")):
            try:
                cost_centers.append(CostCenter(id=int(entry["id"]), name=_text(entry.get("name")), code=_text(entry.get("code"))))
            except (TypeError, ValueError):
                logger.debug("Skipping cost center with unusable id: %r", entry.get("id"))
        account_categories = []
        for entry in _entries(data.get("accountCategories")):
            try:
                account_categories.append(
                    AccountCategory(
                        id=int(entry["id"]),
                        name=_text(entry.get("name")),
                        code=_text(entry.get("code")),
                        group_name=_text(entry.get("group_name")),
                    )
                )
            except (TypeError, ValueError):
                logger.debug("Skipping account category with unusable id: %r", entry.get("id"))
        return cls(cost_centers=cost_centers, account_categories=account_categories)


def _first(entries: list[T], predicate: Callable[[T], bool]) -> T | None:
    for entry in entries:
        if predicate(entry):
            return entry
    return None


def _partial(needle: str, candidate: str) -> bool:
    candidate = candidate.lower()
    return bool(candidate) and (needle in candidate or candidate in needle)


def find_cost_center_id(label: str, cost_centers: list[CostCenter]) -> int | None:
    needle = _text(label).lower()
    if not needle or not cost_centers:
        return None

    strategies = (
        ("name", lambda cc: cc.name.lower() == needle),
        ("code", lambda cc: cc.code.lower() == needle),
        ("partial name", lambda cc: _partial(needle, cc.name)),
    )
    for strategy, predicate in strategies:
        found = _first(cost_centers, predicate)
        if found:
            logger.debug("Cost center %r matched by %s -> id %d", label, strategy, found.id)
            return found.id

    logger.info("Cost center not found in reference data: %r", label)
    return None


def find_account_category_id(value: str, categories: list[AccountCategory]) -> int | None:
    needle = _text(value).lower()
    if not needle or not categories:
        return None

    strategies = (
        ("code", lambda ac: ac.code.lower() == needle),
        ("name", lambda ac: ac.name.lower() == needle),
        ("group", lambda ac: ac.group_name.lower() == needle),
        ("partial name or code", lambda ac: _partial(needle, ac.name) or _partial(needle, ac.code)),
    )
    for strategy, predicate in strategies:
        found = _first(categories, predicate)
        if found:
            logger.debug("Account category %r matched by %s -> id %d", value, strategy, found.id)
            return found.id

    logger.info("Account category not found in reference data: %r", value)
    return None
