"""
Splits a flat PDF text stream into per-person sections.

Boundary detection runs every matcher in a fixed, ranked list, counts the
validated name lines each one finds and keeps the best. When no matcher
produces a plausible number of boundaries the text is split on large blank
runs or page breaks, and as a last resort kept whole, so non-empty input
always yields at least one section.
"""

import re
import logging
from dataclasses import dataclass
from typing import List, Optional, Pattern, Tuple

from .names import (
    HONORIFIC_ALT,
    NAME_BODY,
    UNCLASSIFIED_NAME,
    canonical_name,
    find_honorific_names,
    ordinal_fallback_name,
)
from .sections import MAX_CHARS_PER_SECTION, SectionMap, append_section, truncate_content

logger = logging.getLogger(__name__)

MIN_BOUNDARIES = 2
MAX_BOUNDARIES = 100
MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 49
MIN_CHUNK_CHARS = 20
MIN_PREAMBLE_CHARS = 50
NAME_SCAN_LINES = 3

_NAME = rf"(?P<name>{NAME_BODY}(?:{HONORIFIC_ALT}))"
_NAME_GROUP = rf"({NAME_BODY}(?:{HONORIFIC_ALT}))"
# Labelled names may omit the honorific
_LABELED_NAME = rf"(?P<name>{NAME_BODY}(?:{HONORIFIC_ALT})?)"
_DATE = r"(?:\d{4}[年/\-.])?\d{1,2}[月/\-.]\d{1,2}日?(?:\s*[（(][日月火水木金土][)）])?"

# Ranked boundary matchers, highest priority first
BOUNDARY_PATTERNS: List[Tuple[str, Pattern]] = [
    ("header", re.compile(rf"^[ \t]*(?:#{{1,6}}[ \t]+)?{_NAME}[ \t]*$", re.MULTILINE)),
    ("labeled", re.compile(rf"^[ \t]*(?:氏名|利用者名?|対象者|名前)[ \t]*[:：][ \t]*{_LABELED_NAME}[ \t]*$", re.MULTILINE)),
    ("decorated", re.compile(
        rf"^[ \t]*(?:[-=]{{3,}}[ \t]*{_NAME_GROUP}[ \t]*[-=]{{3,}}"
        rf"|[【\[［][ \t]*{_NAME_GROUP}[ \t]*[】\]］]"
        rf"|[■□◆◇●○▼★☆][ \t]*{_NAME_GROUP})[ \t]*$",
        re.MULTILINE,
    )),
    ("date-prefixed", re.compile(rf"^[ \t]*{_DATE}[ \t　]+{_NAME}[ \t]*$", re.MULTILINE)),
]

_SEPARATOR_LINE = re.compile(r"^[ \t]*[-=_*─━・~〜]{3,}[ \t]*$")
_SUB_HEADER_LINE = re.compile(r"^[ \t]*#{1,6}[ \t]*(?:日付|内容|記録|備考)[ \t]*$")
_REPEATED_CHAR = re.compile(r"(.)\1{4,}")
_CHUNK_SPLIT = re.compile(r"\f|\n[ \t]*\n(?:[ \t]*\n)+")


@dataclass
class Boundary:
    start: int
    end: int
    name: str


def _match_name(match: re.Match) -> str:
    if match.groupdict().get("name"):
        return match.group("name")
    # The decorated pattern uses one unnamed group per alternative
    for value in match.groups():
        if value:
            return value
    return ""


def is_valid_name(name: str) -> bool:
    stripped = name.strip()
    if not (MIN_NAME_LENGTH <= len(stripped) <= MAX_NAME_LENGTH):
        return False
    return not _REPEATED_CHAR.search(stripped)


def find_boundaries(text: str, pattern: Pattern) -> List[Boundary]:
    """Validated name lines found by a single matcher."""
    boundaries = []
    for match in pattern.finditer(text):
        raw = _match_name(match).strip()
        if not is_valid_name(raw):
            continue
        name = canonical_name(raw)
        if not name:
            continue
        boundaries.append(Boundary(start=match.start(), end=match.end(), name=name))
    return boundaries


def select_boundaries(text: str) -> Tuple[Optional[str], List[Boundary]]:
    """
    Run every matcher and keep the one with the most validated boundaries.

    Ties go to the higher-ranked matcher.
    """
    best_name: Optional[str] = None
    best: List[Boundary] = []
    for family, pattern in BOUNDARY_PATTERNS:
        found = find_boundaries(text, pattern)
        logger.debug(f"boundary family {family}: {len(found)} matches")
        if len(found) > len(best):
            best_name, best = family, found
    return best_name, best


def clean_section(content: str) -> str:
    """Strip decorative separators and sub-headers, collapse long blank runs."""
    lines = []
    blank_run = 0
    for line in content.splitlines():
        if _SEPARATOR_LINE.match(line) or _SUB_HEADER_LINE.match(line):
            continue
        if line.strip():
            if blank_run >= 3:
                lines.append("")
            else:
                lines.extend([""] * blank_run)
            blank_run = 0
            lines.append(line.rstrip())
        else:
            blank_run += 1
    return "\n".join(lines).strip()


def _split_chunks(text: str) -> List[str]:
    chunks = [chunk.strip() for chunk in _CHUNK_SPLIT.split(text)]
    return [chunk for chunk in chunks if len(re.sub(r"\s", "", chunk)) >= MIN_CHUNK_CHARS]


def _name_chunk(chunk: str, index: int) -> str:
    head = "\n".join(chunk.splitlines()[:NAME_SCAN_LINES])
    names = find_honorific_names(head)
    return names[0] if names else ordinal_fallback_name(index)


def _fallback_sections(text: str, max_chars: int) -> SectionMap:
    sections: SectionMap = {}
    chunks = _split_chunks(text)

    if MIN_BOUNDARIES <= len(chunks) <= MAX_BOUNDARIES:
        logger.info(f"Fallback segmentation: {len(chunks)} blank-line/page chunks")
        for index, chunk in enumerate(chunks, start=1):
            append_section(sections, _name_chunk(chunk, index), clean_section(chunk), limit=max_chars)
        return sections

    logger.info("Fallback segmentation: keeping the whole text as one section")
    sections[UNCLASSIFIED_NAME] = truncate_content(clean_section(text) or text.strip(), max_chars)
    return sections


def split_by_person(text: str, max_chars: int = MAX_CHARS_PER_SECTION) -> SectionMap:
    """
    Split flat text into a SectionMap keyed by canonical person name.

    Args:
        text: Flat text recovered from a PDF
        max_chars: Hard cap per person, including the truncation marker

    Returns:
        SectionMap with at least one entry for non-empty text
    """
    if not text or not text.strip():
        return {}

    family, boundaries = select_boundaries(text)
    if not (MIN_BOUNDARIES <= len(boundaries) <= MAX_BOUNDARIES):
        logger.info(f"No reliable name boundaries ({len(boundaries)} found), using fallback")
        return _fallback_sections(text, max_chars)

    logger.info(f"Segmenting with '{family}' boundaries: {len(boundaries)} matches")
    sections: SectionMap = {}

    preamble = clean_section(text[:boundaries[0].start])
    if len(preamble) >= MIN_PREAMBLE_CHARS:
        append_section(sections, UNCLASSIFIED_NAME, preamble, limit=max_chars)

    for index, boundary in enumerate(boundaries):
        end = boundaries[index + 1].start if index + 1 < len(boundaries) else len(text)
        content = clean_section(text[boundary.end:end])
        if not content:
            continue
        append_section(sections, boundary.name, content, limit=max_chars)

    if not sections:
        return _fallback_sections(text, max_chars)

    logger.info(f"✅ Found {len(sections)} person sections")
    return sections


def preview_sections(sections: SectionMap) -> List[str]:
    """One-line previews used for debug logging; names and sizes only."""
    return [f"【{name}】({len(content)}文字)" for name, content in sections.items()]
