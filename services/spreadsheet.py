"""
Spreadsheet builder: turns row arrays into a multi-sheet .xlsx workbook.

Two input shapes are accepted for ``sheets``:

- a list of ``{"name": ..., "data": [[...], ...]}`` entries (name optional,
  defaulting to ``Sheet<n>``)
- an object mapping sheet names to row arrays
"""

import io
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Tuple

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.utils import get_column_letter

from models.errors import InvalidRequestError

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

MAX_SHEET_NAME = 31
MAX_COLUMN_WIDTH = 80
_INVALID_SHEET_CHARS = re.compile(r'[\[\]:*?/\\]')


@dataclass
class BuiltWorkbook:
    content: bytes
    sheet_names: List[str] = field(default_factory=list)

    @property
    def sheet_count(self) -> int:
        return len(self.sheet_names)


def _normalize_sheets(sheets: Any) -> List[Tuple[str, Any]]:
    if isinstance(sheets, list):
        if not sheets:
            raise InvalidRequestError("Le tableau sheets est vide", "empty_sheets")
        entries = []
        for index, sheet in enumerate(sheets):
            sheet = sheet if isinstance(sheet, dict) else {}
            entries.append((str(sheet.get('name') or f"Sheet{index + 1}"), sheet.get('data')))
        return entries

    if isinstance(sheets, dict):
        if not sheets:
            raise InvalidRequestError("L'objet sheets est vide", "empty_sheets")
        return [(str(name), data) for name, data in sheets.items()]

    raise InvalidRequestError(
        "Format sheets invalide",
        "invalid_sheets_format",
        details="sheets doit être un array ou un objet",
    )


def safe_sheet_name(name: str, taken: Iterable[str]) -> str:
    """Make name acceptable to Excel and unique among taken (case-insensitive)"""
    base = _INVALID_SHEET_CHARS.sub('_', name).strip().strip("'")[:MAX_SHEET_NAME] or "Sheet"
    taken_lower = {t.lower() for t in taken}
    candidate = base
    counter = 2
    while candidate.lower() in taken_lower:
        suffix = f" ({counter})"
        candidate = base[:MAX_SHEET_NAME - len(suffix)] + suffix
        counter += 1
    return candidate


def cell_value(value: Any) -> Any:
    if value is None or isinstance(value, (int, float, bool)):
        return value
    if not isinstance(value, str):
        value = json.dumps(value, ensure_ascii=False, separators=(',', ':'))
    return ILLEGAL_CHARACTERS_RE.sub('', value)


def _write_rows(worksheet, rows: List[Any]):
    widths = {}
    for row in rows:
        cells = row if isinstance(row, list) else [row]
        worksheet.append([cell_value(value) for value in cells])
        # Caller text is never a formula, even when it starts with '='
        for cell in worksheet[worksheet.max_row]:
            if isinstance(cell.value, str) and cell.value.startswith('='):
                cell.data_type = 's'
        for column, value in enumerate(cells, start=1):
            if value is not None:
                widths[column] = max(widths.get(column, 0), len(str(cell_value(value))))

    for column, width in widths.items():
        worksheet.column_dimensions[get_column_letter(column)].width = min(width + 2, MAX_COLUMN_WIDTH)


def build_workbook(sheets: Any) -> BuiltWorkbook:
    """Build the workbook and return its bytes with the final sheet names"""
    entries = _normalize_sheets(sheets)

    workbook = Workbook()
    workbook.remove(workbook.active)

    names: List[str] = []
    for requested_name, data in entries:
        if not isinstance(data, list):
            raise InvalidRequestError(
                f'Les données du sheet "{requested_name}" doivent être un tableau',
                "invalid_sheet_data",
                details={"sheet": requested_name},
            )
        name = safe_sheet_name(requested_name, names)
        if name != requested_name:
            logger.info(f"Sheet name '{requested_name}' stored as '{name}'")
        _write_rows(workbook.create_sheet(title=name), data)
        names.append(name)

    buffer = io.BytesIO()
    workbook.save(buffer)
    content = buffer.getvalue()
    logger.info(f"Workbook generated: {len(names)} sheets, {len(content)} bytes")
    return BuiltWorkbook(content=content, sheet_names=names)
