from __future__ import annotations

import zipfile
from io import BytesIO
from typing import Any, Iterator, Optional

from openpyxl import load_workbook
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from bakery.errors import SpreadsheetError
from bakery.utils import normalize_date, to_number


class Sheet:
    """Cell access over the first worksheet of an uploaded workbook."""

    def __init__(self, ws):
        self._ws = ws

    @property
    def title(self) -> str:
        return str(self._ws.title)

    @property
    def max_row(self) -> int:
        return int(self._ws.max_row or 0)

    def value(self, addr: str) -> Any:
        return self._ws[addr].value

    def text(self, addr: str) -> Optional[str]:
        v = self.value(addr)
        if v is None:
            return None
        s = str(v).strip()
        return s if s else None

    def number(self, addr: str) -> Optional[float]:
        return to_number(self.value(addr))

    def date(self, addr: str) -> Optional[str]:
        return normalize_date(self.value(addr))

    def raw_date(self, addr: str) -> str:
        v = self.value(addr)
        return "" if v is None else str(v).strip()

    def find_in_row(self, row: int, needle: str, max_columns: int) -> Optional[str]:
        """Column letter of the first cell in `row` whose text equals `needle` (case-insensitive)."""
        target = needle.strip().lower()
        for col in range(1, max_columns + 1):
            letter = get_column_letter(col)
            v = self.text(f"{letter}{row}")
            if v is not None and v.lower() == target:
                return letter
        return None

    def rows(self) -> Iterator[tuple]:
        return self._ws.iter_rows(values_only=True)


def open_workbook(data: bytes):
    try:
        wb = load_workbook(BytesIO(data), data_only=True, read_only=False)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise SpreadsheetError(f"Workbook could not be read: {e}") from e
    if not wb.sheetnames:
        raise SpreadsheetError("Workbook contains no sheets.")
    return wb


def read_first_sheet(data: bytes) -> Sheet:
    wb = open_workbook(data)
    return Sheet(wb[wb.sheetnames[0]])


def read_all_sheets(data: bytes) -> list[Sheet]:
    wb = open_workbook(data)
    return [Sheet(wb[name]) for name in wb.sheetnames]
