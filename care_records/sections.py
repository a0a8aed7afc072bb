from typing import Dict

# canonical name -> free text content
SectionMap = Dict[str, str]

MAX_CHARS_PER_SECTION = 10000
TRUNCATION_MARKER = "\n...[truncated]"


def truncate_content(content: str, limit: int = MAX_CHARS_PER_SECTION) -> str:
    """
    Cap content at `limit` characters including the visible marker.

    Content that already fits is returned unchanged, so applying this twice
    gives the same result as applying it once.
    """
    if len(content) <= limit:
        return content
    keep = max(0, limit - len(TRUNCATION_MARKER))
    return content[:keep].rstrip() + TRUNCATION_MARKER


def append_section(sections: SectionMap, name: str, content: str,
                   separator: str = "\n\n", limit: int = MAX_CHARS_PER_SECTION) -> None:
    """Add content under name, concatenating when the name already exists."""
    if name in sections and sections[name]:
        combined = sections[name] + separator + content if content else sections[name]
    else:
        combined = content
    sections[name] = truncate_content(combined, limit)
