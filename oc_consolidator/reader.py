"""
reader.py — decode spreadsheet bytes into a raw grid

Supports: .xlsx .xlsm (openpyxl), .xls (pandas + xlrd), .ods (pandas + odfpy),
          .csv .tsv .txt exports (chardet + csv)

Public API:
    grid = read_grid(data, filename="ordenes.xlsx")

The grid is a list of rows, each a list of raw cell values (str, int, float,
datetime or None). Only the first sheet of a workbook is read and no header or
type interpretation happens here. Every decoding failure surfaces as
UnreadableFileError.
"""

from __future__ import annotations

import csv
import io
import logging
import zipfile
from collections import Counter
from pathlib import PurePath

from oc_consolidator.errors import UnreadableFileError
from oc_consolidator.normalization import is_blank

logger = logging.getLogger(__name__)

# ── Format groups ──────────────────────────────────────────────────────────────
OPENXML_FORMATS  = {".xlsx", ".xlsm"}
LEGACY_FORMATS   = {".xls"}
ODS_FORMATS      = {".ods"}

OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
ODS_MIMETYPE = "application/vnd.oasis.opendocument.spreadsheet"


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT SNIFFING
# ══════════════════════════════════════════════════════════════════════════════

def detect_format(data: bytes, filename: str | None = None) -> str:
    """
    Decide the container format, trusting content over the file name.

    Returns one of ".xlsx", ".xls", ".ods", ".csv", ".tsv".
    """
    suffix = PurePath(filename).suffix.lower() if filename else ""

    if data.startswith(b"PK"):
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                names = set(zf.namelist())
                if "mimetype" in names:
                    mimetype = zf.read("mimetype").decode("utf-8", errors="ignore").strip()
                    if mimetype == ODS_MIMETYPE:
                        return ".ods"
                if "xl/workbook.xml" in names:
                    return ".xlsx"
        except zipfile.BadZipFile as exc:
            raise UnreadableFileError(f"Could not open workbook: {exc}") from exc
        raise UnreadableFileError("Zip archive is not a spreadsheet workbook")

    if data[:8] == OLE2_MAGIC:
        return ".xls"

    if suffix in OPENXML_FORMATS | LEGACY_FORMATS | ODS_FORMATS:
        raise UnreadableFileError(f"File content is not a valid {suffix} workbook")
    if suffix == ".tsv":
        return ".tsv"
    return ".csv"


# ══════════════════════════════════════════════════════════════════════════════
# TEXT EXPORTS
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding(raw: bytes) -> str:
    import chardet

    result = chardet.detect(raw)
    detected = result.get("encoding")
    return detected or "utf-8"


def _read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line-by-line: UTF-8, then the detected encoding, then
    latin-1, finally CP1252 with replacement. Null bytes are dropped.
    """
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", "").rstrip("\r"))
    text = "\n".join(decoded_lines)
    return text.lstrip("\ufeff")


def _detect_delimiter(text: str) -> str:
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    sample = "\n".join(sample_lines[:25])
    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            pass

    best_delim = ","
    best_score = float("-inf")
    for delim in (",", ";", "\t", "|"):
        widths = [len(row) for row in csv.reader(io.StringIO(sample), delimiter=delim) if row]
        if not widths:
            continue
        mode_width, mode_count = Counter(widths).most_common(1)[0]
        score = mode_width * 2.0 + (mode_count / len(widths)) * mode_width
        if mode_width == 1:
            score -= 10.0
        if score > best_score:
            best_score = score
            best_delim = delim
    return best_delim


def _looks_binary(raw: bytes) -> bool:
    sample = raw[:4096]
    control = sum(1 for byte in sample if byte < 9 or 13 < byte < 32)
    return control > len(sample) * 0.05


def _read_text_grid(data: bytes, suffix: str) -> list[list[object]]:
    if _looks_binary(data):
        raise UnreadableFileError("File is not a spreadsheet or delimited text export")
    text = _read_text_safely(data, _detect_encoding(data))
    if not text.strip():
        raise UnreadableFileError("File contains no rows")
    delimiter = "\t" if suffix == ".tsv" else _detect_delimiter(text)
    logger.debug("Reading delimited text with delimiter %r", delimiter)
    rows = [list(row) for row in csv.reader(io.StringIO(text), delimiter=delimiter)]
    if sum(1 for row in rows if len(row) > 1) < 2:
        raise UnreadableFileError(
            "File does not appear to contain delimited/tabular data "
            f"(detected delimiter {delimiter!r} but fewer than 2 rows contain multiple fields)"
        )
    return rows


# ══════════════════════════════════════════════════════════════════════════════
# WORKBOOKS
# ══════════════════════════════════════════════════════════════════════════════

def _trim_trailing_empty_cells(row: list[object]) -> list[object]:
    trimmed = list(row)
    while trimmed and is_blank(trimmed[-1]):
        trimmed.pop()
    return trimmed


def _read_openpyxl_grid(data: bytes) -> list[list[object]]:
    import openpyxl

    try:
        workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:
        raise UnreadableFileError(f"Could not open workbook: {exc}") from exc
    try:
        if not workbook.sheetnames:
            raise UnreadableFileError("Workbook has no sheets")
        sheet = workbook[workbook.sheetnames[0]]
        if len(workbook.sheetnames) > 1:
            logger.info(
                "Workbook has %d sheets; reading only '%s'", len(workbook.sheetnames), sheet.title
            )
        return [_trim_trailing_empty_cells(values) for values in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def _read_pandas_grid(data: bytes, suffix: str) -> list[list[object]]:
    import pandas as pd

    if suffix == ".xls":
        try:
            import xlrd  # noqa: F401
        except ImportError:
            raise ImportError(".xls files require xlrd — run: pip install oc-consolidator[excel-legacy]")
        engine = "xlrd"
    else:
        try:
            import odf  # noqa: F401
        except ImportError:
            raise ImportError(".ods files require odfpy — run: pip install oc-consolidator[ods]")
        engine = "odf"

    try:
        df = pd.read_excel(io.BytesIO(data), sheet_name=0, header=None, dtype=object, engine=engine)
    except Exception as exc:
        raise UnreadableFileError(f"Could not open workbook: {exc}") from exc

    rows: list[list[object]] = []
    for values in df.itertuples(index=False, name=None):
        rows.append(_trim_trailing_empty_cells([None if is_blank(value) else value for value in values]))
    return rows


def read_grid(data: bytes, filename: str | None = None) -> list[list[object]]:
    if not data:
        raise UnreadableFileError(f"File is empty: {filename}" if filename else "File is empty")

    fmt = detect_format(data, filename)
    if fmt in OPENXML_FORMATS:
        grid = _read_openpyxl_grid(data)
    elif fmt in LEGACY_FORMATS | ODS_FORMATS:
        grid = _read_pandas_grid(data, fmt)
    else:
        grid = _read_text_grid(data, fmt)

    if not any(grid):
        raise UnreadableFileError(f"No rows found in {filename or 'spreadsheet'}")
    logger.info("Read %d rows from %s (%s)", len(grid), filename or "upload", fmt.lstrip("."))
    return grid
