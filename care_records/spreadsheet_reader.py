import io
import re
import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Callable, Dict, List, Optional, Tuple

import openpyxl

from .errors import ExtractionFailed, NoRecordsFound
from .names import (
    HONORIFIC_ALT,
    NAME_BODY,
    UNCLASSIFIED_NAME,
    canonical_name,
    has_honorific,
)
from .sections import MAX_CHARS_PER_SECTION, SectionMap, append_section

logger = logging.getLogger(__name__)

NAME_HEADER_KEYWORDS = ("氏名", "名前", "利用者", "対象者", "お名前", "name")
CONTENT_HEADER_KEYWORDS = (
    "記録", "内容", "経過", "様子", "備考", "特記", "所見",
    "record", "note", "content", "observation",
)
NAME_LABEL_CELLS = {"氏名", "名前", "お名前", "利用者", "利用者名", "対象者", "name"}

_LABEL_RE = re.compile(r"^(?:氏名|名前|利用者名?|対象者|お名前|name)\s*[:：]", re.IGNORECASE)
_INLINE_MARKER_RE = re.compile(
    r"^(?:(?:氏名|利用者名?|対象者|名前|name)\s*[:：]\s*)?"
    r"[【\[（(「]?\s*"
    rf"({NAME_BODY}(?:{HONORIFIC_ALT}))"
    r"\s*[】\]）)」]?"
    r"(?=[\s　]|$)",
    re.IGNORECASE,
)

Row = List[str]


@dataclass
class PersonRecord:
    name: str
    content: str


def sanitize_cell(value: Any) -> str:
    """Render a cell value as display text."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return f"{value.year}/{value.month}/{value.day}"
    if isinstance(value, date):
        return f"{value.year}/{value.month}/{value.day}"
    if isinstance(value, time):
        return value.strftime("%H:%M")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _matches_any(text: str, keywords) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)


class SpreadsheetRecordReader:
    """
    Reads person records out of a care record workbook.

    Each sheet is tried with three strategies in a fixed priority and the
    first one that yields records is used for that sheet:
        1. the whole sheet belongs to one person
        2. a header row with a name column and content columns
        3. inline name markers at the start of rows
    """

    def __init__(self, header_scan_rows: int = 5, max_chars: int = MAX_CHARS_PER_SECTION):
        self.header_scan_rows = header_scan_rows
        self.max_chars = max_chars
        self.strategies: List[Tuple[str, Callable[[str, List[Row]], List[PersonRecord]]]] = [
            ("whole-sheet", self._whole_sheet_records),
            ("structured-columns", self._structured_records),
            ("inline-markers", self._inline_marker_records),
        ]

    # --- Sheet access ---

    def _sheet_rows(self, worksheet) -> List[Row]:
        rows = []
        for values in worksheet.iter_rows(values_only=True):
            rows.append([sanitize_cell(value) for value in values])
        return rows

    @staticmethod
    def _row_text(row: Row) -> str:
        return " ".join(cell for cell in row if cell)

    # --- Strategy 1: whole sheet is one person ---

    def _name_cells(self, rows: List[Row]) -> List[str]:
        """Distinct names written as standalone or labelled cells."""
        names: List[str] = []
        for row in rows:
            for cell in row:
                if not cell:
                    continue
                if _LABEL_RE.match(cell) or has_honorific(cell):
                    name = canonical_name(cell)
                    if name and name not in names:
                        names.append(name)
        return names

    def _whole_sheet_records(self, title: str, rows: List[Row]) -> List[PersonRecord]:
        name = canonical_name(title)
        # A bare title only names the sheet when there is no per-row name column
        if name and not has_honorific(title) and self._find_header(rows) is not None:
            return []
        if not name:
            embedded = self._name_cells(rows)
            if len(embedded) != 1:
                return []
            name = embedded[0]

        lines = []
        for row in rows:
            cells = [
                cell for cell in row
                if cell
                and cell.lower() not in NAME_LABEL_CELLS
                and canonical_name(cell) != name
            ]
            if cells:
                lines.append(" ".join(cells))

        content = "\n".join(lines).strip()
        if not content:
            return []
        return [PersonRecord(name=name, content=content)]

    # --- Strategy 2: structured columns ---

    def _find_header(self, rows: List[Row]) -> Optional[Tuple[int, int, List[int]]]:
        for row_index, row in enumerate(rows[:self.header_scan_rows]):
            name_column = -1
            content_columns: List[int] = []
            for column, cell in enumerate(row):
                if not cell:
                    continue
                is_name = _matches_any(cell, NAME_HEADER_KEYWORDS)
                is_content = _matches_any(cell, CONTENT_HEADER_KEYWORDS)
                if is_name and not is_content and name_column < 0:
                    name_column = column
                elif is_content:
                    content_columns.append(column)
            if name_column >= 0 and content_columns:
                return row_index, name_column, content_columns
        return None

    def _structured_records(self, title: str, rows: List[Row]) -> List[PersonRecord]:
        header = self._find_header(rows)
        if header is None:
            return []
        header_row, name_column, content_columns = header

        collected: Dict[str, List[str]] = {}
        previous_name: Optional[str] = None

        for row in rows[header_row + 1:]:
            content = " ".join(
                row[column] for column in content_columns
                if column < len(row) and row[column]
            )
            if not content:
                continue

            raw_name = row[name_column] if name_column < len(row) else ""
            if raw_name:
                name = canonical_name(raw_name) or UNCLASSIFIED_NAME
            else:
                # Blank name cells (usually merged cells) continue the previous person
                name = previous_name or UNCLASSIFIED_NAME
            previous_name = name

            collected.setdefault(name, []).append(content)

        return [PersonRecord(name=name, content="\n".join(parts)) for name, parts in collected.items()]

    # --- Strategy 3: inline name markers ---

    def _inline_marker_records(self, title: str, rows: List[Row]) -> List[PersonRecord]:
        records: List[PersonRecord] = []
        preamble: List[str] = []
        current_name: Optional[str] = None
        current_lines: List[str] = []

        def close_current():
            if current_name is not None:
                records.append(PersonRecord(name=current_name, content="\n".join(current_lines).strip()))

        for row in rows:
            row_text = self._row_text(row)
            if not row_text:
                continue

            match = _INLINE_MARKER_RE.match(row_text)
            name = canonical_name(match.group(1)) if match else ""
            if name:
                close_current()
                current_name = name
                remainder = row_text[match.end():].strip()
                current_lines = [remainder] if remainder else []
            elif current_name is not None:
                current_lines.append(row_text)
            else:
                preamble.append(row_text)

        close_current()

        if records and preamble:
            records.insert(0, PersonRecord(name=UNCLASSIFIED_NAME, content="\n".join(preamble)))
        return [record for record in records if record.content]

    # --- Public API ---

    def extract_sheet(self, worksheet) -> Tuple[Optional[str], List[PersonRecord]]:
        """Return the winning strategy name and its records for one sheet."""
        rows = self._sheet_rows(worksheet)
        if not any(any(cell for cell in row) for row in rows):
            return None, []

        for strategy_name, strategy in self.strategies:
            records = strategy(worksheet.title, rows)
            if records:
                return strategy_name, records
        return None, []

    def read(self, data: bytes, source: Optional[str] = None) -> SectionMap:
        """
        Read a workbook into a SectionMap.

        Args:
            data: Raw .xlsx bytes
            source: Original filename, used for logging and error context

        Raises:
            ExtractionFailed: the workbook cannot be opened
            NoRecordsFound: no sheet yields any person record
        """
        label = source or "<workbook>"
        try:
            workbook = openpyxl.load_workbook(io.BytesIO(data), data_only=True)
        except Exception as e:
            raise ExtractionFailed(
                f"Excelファイルを読み込めませんでした（{label}）。.xlsx形式か確認してください。",
                source=source,
            ) from e

        logger.info(f"{label}: workbook has {len(workbook.worksheets)} sheets")

        sections: SectionMap = {}
        try:
            for worksheet in workbook.worksheets:
                strategy_name, records = self.extract_sheet(worksheet)
                if not records:
                    logger.info(f"{label}/{worksheet.title}: no records detected")
                    continue
                logger.info(f"{label}/{worksheet.title}: {len(records)} records via {strategy_name}")
                for record in records:
                    append_section(sections, record.name, record.content, limit=self.max_chars)
        finally:
            workbook.close()

        if not sections:
            raise NoRecordsFound(
                f"Excelファイルから利用者記録を抽出できませんでした（{label}）。ファイル形式を確認してください。",
                source=source,
            )

        logger.info(f"✅ {label}: extracted {len(sections)} persons")
        return sections


def read_workbook_sections(data: bytes, source: Optional[str] = None) -> SectionMap:
    """Read a workbook with the default reader settings."""
    return SpreadsheetRecordReader().read(data, source=source)
