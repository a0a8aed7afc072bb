"""
Builds the output workbooks with openpyxl.

Three layouts are produced:
    * summaries only, one sheet per person
    * merged records, an overview sheet plus one sheet per person
    * summaries of merged records, an overview sheet plus one sheet per person
"""

import io
import re
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

from .aggregator import AggregationResult, combine_entries, format_date
from .sections import truncate_content
from .summarizer import SummaryResult

logger = logging.getLogger(__name__)

MAX_SHEET_NAME = 31
MAX_CELL_CHARS = 32767
FORBIDDEN_SHEET_CHARS = re.compile(r"[\[\]*:/\\?]")
CIRCLED_NUMBERS = "①②③④⑤⑥⑦⑧⑨⑩⑪⑫⑬⑭⑮⑯⑰⑱⑲⑳"
EMPTY_SHEET_NAME = "名前なし"

SUMMARY_OVERVIEW_TITLE = "📊 要約サマリー"
MERGE_OVERVIEW_TITLE = "📊 統合サマリー"

HEADER_FILL = PatternFill(fill_type="solid", fgColor="FFE0E0E0")
TITLE_FILL = PatternFill(fill_type="solid", fgColor="FFE8F4FF")
COMBINED_FILL = PatternFill(fill_type="solid", fgColor="FFFFF0E0")
STRIPE_FILL = PatternFill(fill_type="solid", fgColor="FFF5F5F5")
THIN = Side(style="thin")
THIN_BORDER = Border(top=THIN, left=THIN, bottom=THIN, right=THIN)
WRAP_TOP = Alignment(wrap_text=True, vertical="top", horizontal="left")


# --- Sheet naming ---

@dataclass
class NameCollisionCounter:
    """Occurrences of each sanitized sheet name within one workbook."""
    counts: Dict[str, int] = field(default_factory=dict)


def sanitize_sheet_name(name: str) -> str:
    cleaned = FORBIDDEN_SHEET_CHARS.sub("", name).strip()
    return cleaned[:MAX_SHEET_NAME] or EMPTY_SHEET_NAME


def _collision_suffix(occurrence: int) -> str:
    # occurrence 2 -> ①, 21 -> ⑳, 22 -> (21)
    index = occurrence - 1
    if index <= len(CIRCLED_NUMBERS):
        return CIRCLED_NUMBERS[index - 1]
    return f"({index})"


def assign_sheet_name(base: str, counter: NameCollisionCounter) -> Tuple[str, NameCollisionCounter]:
    """
    Pick a worksheet label for `base` and return it with the updated counter.

    The first occurrence keeps the sanitized name; later ones get ①…⑳ and
    then (21), (22)..., with the name trimmed so the label fits 31 characters.
    """
    cleaned = sanitize_sheet_name(base)
    counts = dict(counter.counts)
    occurrence = counts.get(cleaned, 0) + 1
    counts[cleaned] = occurrence

    if occurrence == 1:
        label = cleaned
    else:
        suffix = _collision_suffix(occurrence)
        label = cleaned[:MAX_SHEET_NAME - len(suffix)] + suffix
    return label, NameCollisionCounter(counts=counts)


# --- Cell helpers ---

def cell_text(value) -> str:
    text = ILLEGAL_CHARACTERS_RE.sub("", str(value if value is not None else ""))
    return truncate_content(text, MAX_CELL_CHARS)


def _append(worksheet, values: List, bold: bool = False, fill: Optional[PatternFill] = None,
            wrap_column: Optional[int] = None, height: Optional[float] = None):
    worksheet.append([cell_text(value) if isinstance(value, str) else value for value in values])
    if not values:
        return None
    row_number = worksheet.max_row
    row = worksheet[row_number]
    for cell in row:
        if bold:
            cell.font = Font(bold=True)
        if fill is not None:
            cell.fill = fill
    if wrap_column is not None:
        worksheet.cell(row=row_number, column=wrap_column).alignment = WRAP_TOP
    if height is not None:
        worksheet.row_dimensions[row_number].height = height
    return row_number


def _set_widths(worksheet, widths: List[float]):
    for index, width in enumerate(widths):
        worksheet.column_dimensions[chr(ord("A") + index)].width = width


def _add_borders(worksheet, first_row: int = 1):
    for row in worksheet.iter_rows(min_row=first_row):
        for cell in row:
            if cell.value not in (None, ""):
                cell.border = THIN_BORDER


def _content_height(text: str, per_line: int = 80, minimum: float = 100, maximum: float = 409) -> float:
    lines = max(1, len(text) // per_line + text.count("\n"))
    return min(maximum, max(minimum, lines * 15))


def _timestamp(value: datetime) -> str:
    return value.strftime("%Y/%m/%d %H:%M:%S")


def _to_bytes(workbook: Workbook) -> bytes:
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _new_workbook(first_title: Optional[str]) -> Tuple[Workbook, NameCollisionCounter]:
    workbook = Workbook()
    counter = NameCollisionCounter()
    if first_title:
        workbook.active.title, counter = assign_sheet_name(first_title, counter)
    return workbook, counter


def _person_sheet(workbook: Workbook, name: str, counter: NameCollisionCounter,
                  reuse_active: bool = False):
    label, counter = assign_sheet_name(name, counter)
    if reuse_active:
        worksheet = workbook.active
        worksheet.title = label
    else:
        worksheet = workbook.create_sheet(title=label)
    return worksheet, counter


# --- Layout: summaries only ---

def build_summary_workbook(summaries: Dict[str, SummaryResult],
                           generated_at: Optional[datetime] = None) -> bytes:
    """One worksheet per person with name, summary and generation time."""
    generated_at = generated_at or datetime.now()
    workbook, counter = _new_workbook(None)

    for index, (name, result) in enumerate(summaries.items()):
        worksheet, counter = _person_sheet(workbook, name, counter, reuse_active=index == 0)
        _set_widths(worksheet, [26, 90])
        _append(worksheet, ["項目", "内容"], bold=True, fill=HEADER_FILL)
        _append(worksheet, ["氏名", name])
        _append(worksheet, ["要約（200〜300文字・敬体）", result.summary_text], wrap_column=2,
                height=_content_height(result.summary_text, per_line=50))
        _append(worksheet, ["作成日時", _timestamp(generated_at)])
        _add_borders(worksheet)

    logger.info(f"✅ Built summary workbook with {len(summaries)} sheets")
    return _to_bytes(workbook)


# --- Layout: merged records ---

def _merge_overview(worksheet, aggregation: AggregationResult):
    _set_widths(worksheet, [6, 25, 15, 50, 30])
    _append(worksheet, ["", "📊 統合ファイルサマリー"], bold=True, height=30)
    _append(worksheet, [])
    _append(worksheet, ["", "総利用者数:", f"{len(aggregation.sections)}名"])
    _append(worksheet, ["", "総レコード数:", f"{aggregation.total_records}件"])
    _append(worksheet, [])
    header_row = _append(worksheet, ["No.", "利用者名", "レコード数", "ソースファイル", "備考"],
                         bold=True, fill=HEADER_FILL)

    for index, name in enumerate(aggregation.sections, start=1):
        entries = aggregation.entries.get(name, [])
        sources = aggregation.sources.get(name, [])
        _append(
            worksheet,
            [index, name, len(entries), ", ".join(sources), "複数ファイルから統合" if len(sources) > 1 else ""],
            fill=STRIPE_FILL if index % 2 == 0 else None,
        )
    _add_borders(worksheet, first_row=header_row)


def _merge_person(worksheet, name: str, aggregation: AggregationResult):
    entries = aggregation.entries.get(name, [])
    _set_widths(worksheet, [30, 90])
    _append(worksheet, ["利用者名", name], bold=True, fill=TITLE_FILL)
    _append(worksheet, [])
    header_row = _append(worksheet, ["項目", "内容"], bold=True, fill=HEADER_FILL)

    for entry in entries:
        _append(worksheet, ["ソースファイル", entry.source])
        if entry.inferred_date:
            _append(worksheet, ["記録日付", format_date(entry.inferred_date)])
        _append(worksheet, ["記録内容", entry.content], wrap_column=2, height=_content_height(entry.content))
        _append(worksheet, [])

    if len(entries) > 1:
        _append(worksheet, [])
        _append(worksheet, ["統合記録", "全ファイルの記録を時系列順に結合"], bold=True, fill=COMBINED_FILL)
        combined = combine_entries(entries)
        _append(worksheet, ["", combined], wrap_column=2, height=_content_height(combined))

    _add_borders(worksheet, first_row=header_row)


def build_merge_workbook(aggregation: AggregationResult) -> bytes:
    """Overview sheet plus one sheet per person with every source's records."""
    workbook, counter = _new_workbook(MERGE_OVERVIEW_TITLE)
    _merge_overview(workbook.active, aggregation)

    for name in aggregation.sections:
        worksheet, counter = _person_sheet(workbook, name, counter)
        _merge_person(worksheet, name, aggregation)

    logger.info(f"✅ Built merge workbook with {len(aggregation.sections)} person sheets")
    return _to_bytes(workbook)


# --- Layout: summaries of merged records ---

def _summary_overview(worksheet, summaries: Dict[str, SummaryResult],
                      aggregation: AggregationResult, generated_at: datetime):
    succeeded = sum(1 for result in summaries.values() if result.succeeded)
    _set_widths(worksheet, [6, 25, 80, 40, 10])
    _append(worksheet, ["", "📊 AI要約統合サマリー"], bold=True, height=30)
    _append(worksheet, [])
    _append(worksheet, ["", "総利用者数:", f"{len(summaries)}名"])
    _append(worksheet, ["", "要約成功:", f"{succeeded}/{len(summaries)}名"])
    _append(worksheet, ["", "処理日時:", _timestamp(generated_at)])
    _append(worksheet, [])
    header_row = _append(worksheet, ["No.", "利用者名", "要約（200-300文字）", "ソースファイル", "文字数"],
                         bold=True, fill=HEADER_FILL)

    for index, (name, result) in enumerate(summaries.items(), start=1):
        _append(
            worksheet,
            [index, name, result.summary_text, ", ".join(aggregation.sources.get(name, [])), result.char_count],
            fill=STRIPE_FILL if index % 2 == 0 else None,
            wrap_column=3,
        )
    _add_borders(worksheet, first_row=header_row)


def _summary_person(worksheet, name: str, result: SummaryResult, aggregation: AggregationResult):
    original = aggregation.sections.get(name, "")
    latest = aggregation.latest_date(name)

    _set_widths(worksheet, [30, 90])
    _append(worksheet, ["利用者名", name], bold=True, fill=TITLE_FILL)
    _append(worksheet, [])
    _append(worksheet, ["📝 AI要約", "200〜300文字の要約"], bold=True, fill=HEADER_FILL)
    _append(worksheet, ["", result.summary_text], wrap_column=2,
            height=_content_height(result.summary_text, per_line=50))
    _append(worksheet, ["文字数", f"{result.char_count}文字"])
    _append(worksheet, [])
    _append(worksheet, ["📁 ソース情報", ""], bold=True, fill=HEADER_FILL)
    _append(worksheet, ["ソースファイル", ", ".join(aggregation.sources.get(name, []))])
    if latest:
        _append(worksheet, ["記録日付", format_date(latest)])
    _append(worksheet, ["元データ文字数", f"{len(original)}文字"])
    _append(worksheet, [])
    _append(worksheet, ["📄 元の記録内容", "※要約前の全文"], bold=True, fill=COMBINED_FILL)
    _append(worksheet, ["", original], wrap_column=2, height=_content_height(original))
    _add_borders(worksheet, first_row=3)


def build_summarize_merge_workbook(summaries: Dict[str, SummaryResult], aggregation: AggregationResult,
                                   generated_at: Optional[datetime] = None) -> bytes:
    """Overview with success counts plus one sheet per person with summary and sources."""
    generated_at = generated_at or datetime.now()
    workbook, counter = _new_workbook(SUMMARY_OVERVIEW_TITLE)
    _summary_overview(workbook.active, summaries, aggregation, generated_at)

    for name, result in summaries.items():
        worksheet, counter = _person_sheet(workbook, name, counter)
        _summary_person(worksheet, name, result, aggregation)

    logger.info(f"✅ Built summarize+merge workbook with {len(summaries)} person sheets")
    return _to_bytes(workbook)
