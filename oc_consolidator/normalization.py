from __future__ import annotations

import math
import numbers
import re
from datetime import date, datetime, timedelta

import pandas as pd

EXCEL_EPOCH = datetime(1899, 12, 30)

DAY_FIRST_RE = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{4})$")
ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:[T ][\d:.]+Z?)?$")
CURRENCY_RE = re.compile(r"[$€£¥₹]|\b(?:CLP|USD|EUR)\b", re.IGNORECASE)
WHITESPACE_RE = re.compile(r"\s+")


def _fmt(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def _is_number(value: object) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def clean_text(value: object) -> str:
    """Stringify a cell for a text field. Whole floats lose their trailing .0."""
    if is_blank(value):
        return ""
    if _is_number(value) and float(value).is_integer():
        return str(int(value))
    text = str(value).replace("\ufeff", "").replace("\x00", "")
    return text.strip()


def normalise_date(value: object, today: date | None = None) -> str:
    """
    Return an ISO YYYY-MM-DD string for a date cell.

    Accepts native date/datetime cells, spreadsheet serial numbers and
    day-first text (05-03-2024, 5/3/2024). Anything else becomes today.
    """
    fallback = _fmt(today or date.today())
    if is_blank(value):
        return fallback
    if isinstance(value, datetime):
        return _fmt(value)
    if isinstance(value, date):
        return _fmt(value)
    if _is_number(value):
        serial = float(value)
        if serial <= 0 or math.isinf(serial):
            return fallback
        try:
            return _fmt(EXCEL_EPOCH + timedelta(days=int(serial)))
        except OverflowError:
            return fallback

    text = clean_text(value)
    m = DAY_FIRST_RE.match(text)
    if m:
        day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        try:
            return _fmt(date(year, month, day))
        except ValueError:
            return fallback

    m = ISO_DATE_RE.match(text)
    if m:
        try:
            return _fmt(date(int(m.group(1)), int(m.group(2)), int(m.group(3))))
        except ValueError:
            return fallback

    return fallback


def parse_amount(value: object) -> float:
    """
    Parse an amount cell. Text uses '.' for thousands and ',' for decimals
    ("$1.234.567,89" -> 1234567.89); native numbers pass through. Returns 0
    when nothing numeric can be read.
    """
    if isinstance(value, bool) or is_blank(value):
        return 0.0
    if _is_number(value):
        result = float(value)
        return 0.0 if math.isnan(result) or math.isinf(result) else result

    text = CURRENCY_RE.sub("", clean_text(value))
    text = WHITESPACE_RE.sub("", text)
    text = text.replace(".", "").replace(",", ".")
    try:
        result = float(text)
    except ValueError:
        return 0.0
    if math.isnan(result) or math.isinf(result):
        return 0.0
    return result
