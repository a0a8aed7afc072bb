"""
Person name handling for care records.

Canonical names always carry a Japanese honorific suffix. Names that already
end with one keep it, bare names get "さん".
"""

import re
from typing import List, Optional

UNCLASSIFIED_NAME = "Unclassified"
DEFAULT_HONORIFIC = "さん"
HONORIFICS = ("ちゃん", "さん", "様", "氏", "殿", "君")

HONORIFIC_ALT = "|".join(HONORIFICS)

# A name token on one line: kanji, kana, latin letters and inner spaces
NAME_BODY = r"[一-龯々〆ヵヶぁ-んァ-ヶーA-Za-zＡ-Ｚａ-ｚ][一-龯々〆ヵヶぁ-んァ-ヶーA-Za-zＡ-Ｚａ-ｚ・ \t　]{0,19}?"

# Names embedded in running text must start at a line start or a delimiter
_EMBEDDED_NAME_RE = re.compile(
    r"(?:^|(?<=[\s　:：【\[（(「]))"
    r"([一-龯々〆ヵヶァ-ヶーA-Za-zＡ-Ｚａ-ｚ][一-龯々〆ヵヶぁ-んァ-ヶーA-Za-zＡ-Ｚａ-ｚ・]{0,9}?"
    rf"(?:{HONORIFIC_ALT}))",
    re.MULTILINE,
)
_HONORIFIC_SUFFIX_RE = re.compile(rf"(?:{HONORIFIC_ALT})$")
_PURE_SCRIPT_RE = re.compile(r"^[一-龯々〆ヵヶぁ-んァ-ヶーA-Za-zＡ-Ｚａ-ｚ・\s　]+$")
_LABEL_PREFIX_RE = re.compile(r"^(?:氏名|名前|利用者名?|対象者|お名前|name)\s*[:：]\s*", re.IGNORECASE)

# Sheet titles and cells that are never person names
GENERIC_LABEL_RE = re.compile(
    r"^(?:sheet|シート|page|ページ)\s*\d*$"
    r"|^(?:index|list|summary|overview|data|total|notes?|residents?|clients?|members?|users?|staff)$"
    r"|^(?:january|february|march|april|june|july|august|september|october|november|december)$"
    r"|^第|\d{4,}|^\d+$",
    re.IGNORECASE,
)
GENERIC_WORDS = (
    "一覧", "目次", "表紙", "記録", "集計", "まとめ", "合計", "設定", "データ",
    "名簿", "様式", "経過", "月分", "サマリー", "内容", "備考",
    "利用者", "入居者", "入所者", "デイサービス", "ショートステイ", "施設", "ホーム",
    "事業所", "職員", "スタッフ",
)


def strip_honorific(name: str) -> str:
    """Remove a single trailing honorific and surrounding whitespace."""
    if not name:
        return ""
    return _HONORIFIC_SUFFIX_RE.sub("", name.strip()).strip()


def has_honorific(name: str) -> bool:
    return bool(name) and bool(_HONORIFIC_SUFFIX_RE.search(name.strip()))


def is_generic_label(text: str) -> bool:
    cleaned = text.strip()
    if not cleaned:
        return True
    if GENERIC_LABEL_RE.search(cleaned):
        return True
    return any(word in cleaned for word in GENERIC_WORDS)


def canonical_name(raw: Optional[str]) -> str:
    """
    Normalize a raw name into its canonical display form.

    Returns an empty string when the value does not look like a person name.
    """
    if raw is None:
        return ""
    name = _LABEL_PREFIX_RE.sub("", str(raw).strip())
    name = re.sub(r"[\s　]+", " ", name).strip(" 【】[]（）()「」")
    base = strip_honorific(name)

    if not base or len(base) > 20:
        return ""
    if is_generic_label(base):
        return ""
    if not _PURE_SCRIPT_RE.match(base):
        return ""

    if has_honorific(name):
        return name
    return base + DEFAULT_HONORIFIC


def find_honorific_names(text: str) -> List[str]:
    """All honorific-bearing names found in text, in order of appearance."""
    names = []
    for match in _EMBEDDED_NAME_RE.finditer(text or ""):
        candidate = canonical_name(match.group(1))
        if candidate:
            names.append(candidate)
    return names


def is_reserved_name(name: str) -> bool:
    return name == UNCLASSIFIED_NAME or name.startswith(UNCLASSIFIED_NAME + " (")


def ordinal_fallback_name(index: int) -> str:
    return f"{UNCLASSIFIED_NAME} ({index})"
