import re
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple

from .sections import SectionMap

logger = logging.getLogger(__name__)

ENTRY_DIVIDER = "\n\n" + "=" * 30 + "\n\n"

# Preference order: full date, compact date, month/day
_FULL_DATE_RE = re.compile(r"(\d{4})[年\-/.](\d{1,2})[月\-/.](\d{1,2})日?")
_COMPACT_DATE_RE = re.compile(r"(?<!\d)(\d{4})(\d{2})(\d{2})(?!\d)")
_MONTH_DAY_RE = re.compile(r"(?<!\d)(\d{1,2})[月\-/](\d{1,2})日?")


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def infer_date(file_id: str, today: Optional[date] = None) -> Optional[date]:
    """
    Infer a record date from a file name.

    Args:
        file_id: Original filename
        today: Reference date for month/day names without a year

    Returns:
        The first valid date found, or None
    """
    for match in _FULL_DATE_RE.finditer(file_id):
        found = _safe_date(*(int(part) for part in match.groups()))
        if found:
            return found

    for match in _COMPACT_DATE_RE.finditer(file_id):
        found = _safe_date(*(int(part) for part in match.groups()))
        if found:
            return found

    year = (today or date.today()).year
    for match in _MONTH_DAY_RE.finditer(file_id):
        month, day = (int(part) for part in match.groups())
        found = _safe_date(year, month, day)
        if found:
            return found
    return None


def format_date(value: date) -> str:
    return f"{value.year}年{value.month}月{value.day}日"


@dataclass
class RecordEntry:
    """One person's content from one source file."""
    content: str
    source: str
    inferred_date: Optional[date] = None

    @property
    def header(self) -> str:
        if self.inferred_date:
            return f"【{format_date(self.inferred_date)}の記録】"
        return f"【{self.source}】"


@dataclass
class AggregationResult:
    sections: SectionMap = field(default_factory=dict)
    sources: Dict[str, List[str]] = field(default_factory=dict)
    entries: Dict[str, List[RecordEntry]] = field(default_factory=dict)

    @property
    def total_records(self) -> int:
        return sum(len(items) for items in self.entries.values())

    def latest_date(self, name: str) -> Optional[date]:
        dates = [entry.inferred_date for entry in self.entries.get(name, []) if entry.inferred_date]
        return max(dates) if dates else None


def _sort_entries(entries: List[RecordEntry]) -> List[RecordEntry]:
    if all(entry.inferred_date for entry in entries):
        return sorted(entries, key=lambda entry: (entry.inferred_date, entry.source, entry.content))
    # Content breaks ties between uploads sharing a filename
    return sorted(entries, key=lambda entry: (entry.source, entry.content))


def combine_entries(entries: List[RecordEntry]) -> str:
    return ENTRY_DIVIDER.join(f"{entry.header}\n{entry.content}" for entry in entries)


def aggregate_sections(files: List[Tuple[str, SectionMap]],
                       today: Optional[date] = None) -> AggregationResult:
    """
    Merge per-file SectionMaps into one SectionMap keyed by person.

    The result does not depend on the order of `files`.
    """
    grouped: Dict[str, List[RecordEntry]] = {}

    for file_id, sections in sorted(files, key=lambda item: item[0]):
        inferred = infer_date(file_id, today=today)
        for name, content in sections.items():
            grouped.setdefault(name, []).append(
                RecordEntry(content=content, source=file_id, inferred_date=inferred)
            )
        logger.info(f"{file_id}: {len(sections)} persons"
                    + (f", dated {format_date(inferred)}" if inferred else ""))

    result = AggregationResult()
    for name in sorted(grouped):
        entries = _sort_entries(grouped[name])
        result.entries[name] = entries
        result.sections[name] = combine_entries(entries)
        sources: List[str] = []
        for entry in entries:
            if entry.source not in sources:
                sources.append(entry.source)
        result.sources[name] = sources

    logger.info(f"✅ Aggregated {result.total_records} records into {len(result.sections)} persons")
    return result
