from __future__ import annotations

import importlib.util
import io
import unittest
from datetime import datetime
from unittest import mock

from openpyxl import Workbook

from oc_consolidator import reader
from oc_consolidator.errors import UnreadableFileError

_XLRD_AVAILABLE = importlib.util.find_spec("xlrd") is not None


def workbook_bytes(*sheets: list[list[object]]) -> bytes:
    wb = Workbook()
    ws = wb.active
    for index, rows in enumerate(sheets):
        if index:
            ws = wb.create_sheet(f"Sheet{index + 1}")
        for row in rows:
            ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class ReadGridTests(unittest.TestCase):
    def test_xlsx_first_sheet_only_with_native_types(self):
        data = workbook_bytes(
            [["N° OC", "PROVEEDOR", "MONTO", "FECHA"], ["OC-1", "Acme", 50000, datetime(2024, 3, 5)]],
            [["ignored"], ["also ignored"]],
        )
        grid = reader.read_grid(data, "ordenes.xlsx")

        self.assertEqual(grid[0], ["N° OC", "PROVEEDOR", "MONTO", "FECHA"])
        self.assertEqual(grid[1][0], "OC-1")
        self.assertEqual(grid[1][2], 50000)
        self.assertEqual(grid[1][3], datetime(2024, 3, 5))
        self.assertEqual(len(grid), 2)

    def test_trailing_empty_cells_are_trimmed_and_short_rows_kept(self):
        data = workbook_bytes([["Reporte de compras"], [], ["a", "b", "c", None, None], ["x"]])
        grid = reader.read_grid(data)

        self.assertEqual(grid[0], ["Reporte de compras"])
        self.assertEqual(grid[1], [])
        self.assertEqual(grid[2], ["a", "b", "c"])
        self.assertEqual(grid[3], ["x"])

    def test_content_wins_over_misleading_suffix(self):
        data = workbook_bytes([["N OC", "CC"], ["1", "CC-01"]])
        grid = reader.read_grid(data, "exported.csv")
        self.assertEqual(grid[1], ["1", "CC-01"])

    def test_semicolon_csv_export_with_bom(self):
        data = "\ufeffN° OC;PROVEEDOR;MONTO\nOC-1;Construcción Ltda;1.500,00\nOC-2;Ñandú SpA;200\n".encode("utf-8")
        grid = reader.read_grid(data, "ordenes.csv")

        self.assertEqual(grid[0], ["N° OC", "PROVEEDOR", "MONTO"])
        self.assertEqual(grid[1], ["OC-1", "Construcción Ltda", "1.500,00"])
        self.assertEqual(grid[2][1], "Ñandú SpA")

    def test_empty_bytes_are_unreadable(self):
        with self.assertRaisesRegex(UnreadableFileError, "File is empty"):
            reader.read_grid(b"", "main.xlsx")

    def test_corrupt_workbook_is_unreadable(self):
        with self.assertRaisesRegex(UnreadableFileError, "not a valid .xlsx workbook"):
            reader.read_grid(b"this is not a workbook", "main.xlsx")

    def test_truncated_zip_is_unreadable(self):
        data = workbook_bytes([["a", "b"], ["1", "2"]])
        with self.assertRaises(UnreadableFileError):
            reader.read_grid(data[:200], "main.xlsx")

    def test_binary_garbage_is_unreadable(self):
        with self.assertRaises(UnreadableFileError):
            reader.read_grid(bytes(range(0, 32)) * 20)

    def test_prose_text_is_unreadable(self):
        with self.assertRaisesRegex(UnreadableFileError, "delimited/tabular"):
            reader.read_grid(b"just a note\n", "notes.txt")

    def test_unreadable_error_is_a_value_error(self):
        with self.assertRaises(ValueError):
            reader.read_grid(b"")

    def test_missing_xlrd_raises_clear_importerror(self):
        original_import = __import__

        def fake_import(name, globals=None, locals=None, fromlist=(), level=0):
            if name == "xlrd":
                raise ImportError("simulated missing xlrd")
            return original_import(name, globals, locals, fromlist, level)

        with mock.patch("builtins.__import__", side_effect=fake_import):
            with self.assertRaisesRegex(ImportError, r"\.xls files require xlrd"):
                reader.read_grid(reader.OLE2_MAGIC + b"\x00" * 512, "legacy.xls")

    @unittest.skipUnless(_XLRD_AVAILABLE, "xlrd not installed")
    def test_corrupt_xls_is_unreadable(self):
        with self.assertRaises(UnreadableFileError):
            reader.read_grid(reader.OLE2_MAGIC + b"\x00" * 512, "legacy.xls")


class DetectFormatTests(unittest.TestCase):
    def test_detects_containers_from_magic_bytes(self):
        self.assertEqual(reader.detect_format(workbook_bytes([["a"]])), ".xlsx")
        self.assertEqual(reader.detect_format(reader.OLE2_MAGIC + b"rest"), ".xls")
        self.assertEqual(reader.detect_format(b"a\tb\n1\t2\n", "export.tsv"), ".tsv")
        self.assertEqual(reader.detect_format(b"a,b\n1,2\n"), ".csv")


if __name__ == "__main__":
    unittest.main()
