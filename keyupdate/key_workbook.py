"""
openpyxl-backed access to a key file workbook.

Every read goes to the live worksheet, so a value written earlier in the same
session is visible to the next read and row/column extents are never cached.
Tabs are handed out as pandas frames: data row i (0-based) lives on
spreadsheet row i + 2 because row 1 holds the header.
"""

from __future__ import annotations

import os
from typing import Callable, Iterable

import openpyxl
import pandas as pd
from openpyxl.styles import Font
from openpyxl.worksheet.datavalidation import DataValidation

from column_locator import column_letter, locate_index

LOCATION_TAB = "Location_data"
PROFILE_TAB = "Profile_data (Key-Key)"
UNITS_TAB = "Units"

HEADER_ROW = 1
FIRST_DATA_ROW = 2


def sheet_row(row_index: int) -> int:
    """Spreadsheet row number of a 0-based data row index."""
    return row_index + FIRST_DATA_ROW


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def cell_text(value) -> str:
    """Cell value as stripped text; None and NaN read as ''."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


def _unique_headers(raw: list) -> list[str]:
    # Blank headers become "Unnamed: <pos>" and repeats get a ".<n>" suffix,
    # the same naming pandas uses when it parses a sheet.
    out: list[str] = []
    seen: dict[str, int] = {}
    for pos, value in enumerate(raw):
        name = f"Unnamed: {pos}" if _is_blank(value) else str(value).strip()
        if name in seen:
            seen[name] += 1
            name = f"{name}.{seen[name]}"
        else:
            seen[name] = 0
        out.append(name)
    return out


class KeyWorkbook:
    """A loaded key file: tabs by name, read/write by absolute position."""

    def __init__(self, wb: openpyxl.Workbook, path: str | None = None):
        self.wb = wb
        self.path = path

    @classmethod
    def load(cls, path: str) -> "KeyWorkbook":
        abs_path = os.path.abspath(path)
        return cls(openpyxl.load_workbook(abs_path), abs_path)

    @property
    def tab_names(self) -> list[str]:
        return list(self.wb.sheetnames)

    def worksheet(self, tab: str):
        if tab not in self.wb.sheetnames:
            raise KeyError(f"tab {tab!r} not found in workbook (tabs: {self.wb.sheetnames})")
        return self.wb[tab]

    # ── Extents ────────────────────────────────────────────────────────────

    def current_column_count(self, tab: str) -> int:
        """Last column holding any value, header included."""
        ws = self.worksheet(tab)
        last = 0
        for row in ws.iter_rows(values_only=True):
            for pos, value in enumerate(row, start=1):
                if not _is_blank(value) and pos > last:
                    last = pos
        return last

    def current_row_count(self, tab: str) -> int:
        """Number of data rows up to the last non-empty row (header excluded)."""
        ws = self.worksheet(tab)
        last = 0
        for row_no, row in enumerate(ws.iter_rows(values_only=True), start=1):
            if any(not _is_blank(v) for v in row):
                last = row_no
        return max(0, last - HEADER_ROW)

    # ── Reads ──────────────────────────────────────────────────────────────

    def header(self, tab: str) -> list[str]:
        ws = self.worksheet(tab)
        ncols = self.current_column_count(tab)
        if ncols == 0:
            return []
        raw = [ws.cell(row=HEADER_ROW, column=c).value for c in range(1, ncols + 1)]
        return _unique_headers(raw)

    def read_tab(self, tab: str) -> pd.DataFrame:
        """Return the tab as a frame of raw cell values (object dtype)."""
        ws = self.worksheet(tab)
        headers = self.header(tab)
        nrows = self.current_row_count(tab)
        if not headers:
            return pd.DataFrame()
        rows = [
            list(values)
            for values in ws.iter_rows(
                min_row=FIRST_DATA_ROW,
                max_row=nrows + HEADER_ROW,
                max_col=len(headers),
                values_only=True,
            )
        ] if nrows else []
        return pd.DataFrame(rows, columns=headers, dtype=object)

    def column_index(self, tab: str, header_pattern: str, policy: str = "first") -> int:
        """1-based position of the live header matching `header_pattern`."""
        return locate_index(self.header(tab), header_pattern, policy)

    def find_rows(self, tab: str, predicate: Callable[[pd.Series], bool]) -> list[int]:
        """0-based data row indices for which `predicate(row)` is true, in sheet order."""
        frame = self.read_tab(tab)
        return [i for i, (_, row) in enumerate(frame.iterrows()) if predicate(row)]

    def cell_value(self, tab: str, row: int, col: int):
        return self.worksheet(tab).cell(row=row, column=col).value

    # ── Writes ─────────────────────────────────────────────────────────────

    def write_block(self, tab: str, values: Iterable[Iterable], start_row: int, start_col: int) -> None:
        """Write a rectangular block of rows with its top-left cell at (start_row, start_col)."""
        ws = self.worksheet(tab)
        for r_off, row in enumerate(values):
            for c_off, value in enumerate(row):
                if isinstance(value, float) and pd.isna(value):
                    value = None
                ws.cell(row=start_row + r_off, column=start_col + c_off, value=value)

    def write_column(self, tab: str, values: Iterable, start_row: int, start_col: int) -> None:
        self.write_block(tab, [[v] for v in values], start_row, start_col)

    def write_cell(self, tab: str, row: int, col: int, value) -> None:
        self.write_block(tab, [[value]], row, col)

    def add_list_validation(self, tab: str, col: int, first_row: int, last_row: int, formula: str) -> str:
        """Restrict cells col[first_row:last_row] to the list referenced by `formula`.

        Returns the cell range the validation was bound to.
        """
        ws = self.worksheet(tab)
        letter = column_letter(col)
        cells = f"{letter}{first_row}" if first_row == last_row else f"{letter}{first_row}:{letter}{last_row}"
        dv = DataValidation(type="list", formula1=formula, allow_blank=True)
        ws.add_data_validation(dv)
        dv.add(cells)
        return cells

    def list_validations(self, tab: str) -> list[tuple[str, str]]:
        """(cell range, formula) for every list validation on the tab."""
        ws = self.worksheet(tab)
        return [
            (str(dv.sqref), dv.formula1)
            for dv in ws.data_validations.dataValidation
            if dv.type == "list"
        ]

    def apply_font(
        self,
        tab: str,
        font: Font,
        min_row: int,
        max_row: int,
        min_col: int,
        max_col: int,
    ) -> None:
        if max_row < min_row or max_col < min_col:
            return
        ws = self.worksheet(tab)
        for row in ws.iter_rows(min_row=min_row, max_row=max_row, min_col=min_col, max_col=max_col):
            for cell in row:
                cell.font = font

    def save(self, path: str) -> str:
        abs_path = os.path.abspath(path)
        os.makedirs(os.path.dirname(abs_path), exist_ok=True)
        self.wb.save(abs_path)
        return abs_path
