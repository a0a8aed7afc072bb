# To run this code you need to install the following dependencies:
# pip install PyPDF2 python-dotenv

import io
import re
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import PyPDF2

from .errors import ExtractionFailed

logger = logging.getLogger(__name__)

PDF_ADVICE = (
    "PDFからテキストを抽出できませんでした。スキャン画像のPDFではなく、"
    "テキスト抽出可能なPDFか、Excelファイル（.xlsx）をアップロードしてください。"
)
GARBLED_ADVICE = (
    "PDFの文字が正しく読み取れません。Excelファイル（.xlsx）の使用を強く推奨します。"
)

PAGE_BREAK = "\n\f\n"
REPLACEMENT_CHAR = "\ufffd"


@dataclass
class PdfExtraction:
    """Flat text recovered from a PDF plus how it was obtained."""
    text: str
    strategy: str
    replacement_ratio: float


class PdfTextExtractor:
    """
    Recovers a flat text stream from PDF bytes using several strategies.

    Strategies run in order and the first one whose output passes the
    quality gate wins:
        1. PyPDF2 page text
        2. literal strings of the text-showing operators inside BT/ET objects,
           plus readable runs from streams that hold no text objects
        3. raw runs of Japanese script found anywhere in the byte buffer
    """

    def __init__(self, min_length: int = 100, max_replacement_ratio: float = 0.1,
                 min_script_run: int = 10, min_stream_run: int = 20):
        """
        Initialize the extractor.

        Args:
            min_length: Minimum number of characters for usable text
            max_replacement_ratio: Highest tolerated share of U+FFFD characters
            min_script_run: Shortest Japanese run kept by the script scan
            min_stream_run: Shortest readable run kept from streams without text objects
        """
        self.min_length = min_length
        self.max_replacement_ratio = max_replacement_ratio
        self.min_script_run = min_script_run
        self.min_stream_run = min_stream_run

        # PDF text objects and the operators that paint strings
        self.text_object_pattern = re.compile(
            r"(?<![A-Za-z])BT(?![A-Za-z])(.*?)(?<![A-Za-z])ET(?![A-Za-z])", re.DOTALL
        )
        self.show_operator_pattern = re.compile(
            r"\(((?:\\.|[^\\)])*)\)\s*(?:Tj|'|\")"
            r"|\[((?:\\.|[^\\\]])*)\]\s*TJ"
            r"|(?<![A-Za-z])(T\*|Td|TD|Tm)(?![A-Za-z])",
            re.DOTALL,
        )
        self.array_string_pattern = re.compile(r"\(((?:\\.|[^\\)])*)\)", re.DOTALL)
        self.stream_pattern = re.compile(r"(?<![A-Za-z])stream\r?\n(.*?)endstream", re.DOTALL)
        # Printable ASCII, kana and CJK ideographs
        self.readable_pattern = re.compile(r"[\x20-\x7E぀-ゟ゠-ヿ㐀-䶿一-龯]+")
        self.escape_pattern = re.compile(r"\\([0-7]{1,3}|.)", re.DOTALL)

        # Kana, kanji, full-width alphanumerics and Japanese punctuation
        self.script_pattern = re.compile(
            r"[ぁ-んァ-ヶー一-龯０-９Ａ-Ｚａ-ｚ]"
            r"[ぁ-んァ-ヶー一-龯０-９Ａ-Ｚａ-ｚ\s。、！？「」『』（）｛｝［］【】〈〉《》・…－―～〜：]+"
        )

        self.strategies: List[Tuple[str, Callable[[bytes], str]]] = [
            ("pypdf", self._extract_with_pypdf),
            ("text-operators", self._extract_text_operators),
            ("script-scan", self._extract_script_runs),
        ]

    # --- Strategies ---

    def _extract_with_pypdf(self, data: bytes) -> str:
        reader = PyPDF2.PdfReader(io.BytesIO(data))
        pages = []
        for page in reader.pages:
            page_text = page.extract_text() or ""
            if page_text.strip():
                pages.append(page_text)
        return PAGE_BREAK.join(pages)

    def _decode_pdf_string(self, raw: str) -> str:
        """Resolve PDF literal string escapes (\\n, \\(, octal codes...)."""
        simple = {"n": "\n", "r": "\r", "t": "\t", "b": "", "f": "", "\n": ""}

        def replace(match):
            token = match.group(1)
            if token[0] in "01234567":
                return chr(int(token, 8))
            return simple.get(token, token)

        return self.escape_pattern.sub(replace, raw)

    def _extract_text_operators(self, data: bytes) -> str:
        pdf_string = data.decode("utf-8", errors="replace")
        blocks = []

        for text_object in self.text_object_pattern.finditer(pdf_string):
            parts: List[str] = []
            for match in self.show_operator_pattern.finditer(text_object.group(1)):
                literal, array, line_operator = match.groups()
                if line_operator:
                    parts.append("\n")
                elif literal is not None:
                    parts.append(self._decode_pdf_string(literal))
                elif array is not None:
                    strings = self.array_string_pattern.findall(array)
                    parts.append("".join(self._decode_pdf_string(s) for s in strings))
            block = "".join(parts).strip()
            if block:
                blocks.append(block)

        blocks.extend(self._stream_runs(pdf_string))
        return self._normalize("\n".join(blocks))

    def _stream_runs(self, pdf_string: str) -> List[str]:
        """Readable runs inside streams that hold no text objects."""
        runs = []
        for stream in self.stream_pattern.finditer(pdf_string):
            content = stream.group(1)
            if self.text_object_pattern.search(content):
                continue
            for match in self.readable_pattern.finditer(content):
                run = match.group(0).strip()
                if len(run) >= self.min_stream_run and re.search(r"[A-Za-z぀-ヿ㐀-龯]", run):
                    runs.append(run)
        return runs

    def _extract_script_runs(self, data: bytes) -> str:
        pdf_string = data.decode("utf-8", errors="replace")
        runs = [
            match.group(0).strip()
            for match in self.script_pattern.finditer(pdf_string)
            if len(match.group(0).strip()) > self.min_script_run
        ]
        return "\n".join(runs)

    # --- Quality gate ---

    def _normalize(self, text: str) -> str:
        lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.splitlines()]
        text = "\n".join(lines)
        return re.sub(r"\n{3,}", "\n\n", text).strip()

    def replacement_ratio(self, text: str) -> float:
        if not text:
            return 0.0
        return text.count(REPLACEMENT_CHAR) / len(text)

    def check_quality(self, text: str) -> Optional[str]:
        """Return a failure reason, or None when the text is usable."""
        stripped = (text or "").strip()
        if len(stripped) < self.min_length:
            return f"too short ({len(stripped)} chars)"
        ratio = self.replacement_ratio(stripped)
        if ratio > self.max_replacement_ratio:
            return f"garbled ({ratio:.0%} replacement characters)"
        return None

    # --- Public API ---

    def extract(self, data: bytes, source: Optional[str] = None) -> PdfExtraction:
        """
        Extract flat text from a PDF byte buffer.

        Args:
            data: Raw PDF bytes
            source: Original filename, used for logging and error context

        Returns:
            PdfExtraction with the winning strategy's text

        Raises:
            ExtractionFailed: when no strategy produces usable text
        """
        label = source or "<pdf>"
        saw_garbled = False

        for strategy_name, strategy in self.strategies:
            try:
                text = strategy(data)
            except Exception as e:
                logger.warning(f"⚠️ {label}: {strategy_name} extraction failed - {e}")
                continue

            reason = self.check_quality(text)
            if reason is None:
                text = text.strip()
                logger.info(f"✅ {label}: extracted {len(text)} characters via {strategy_name}")
                return PdfExtraction(
                    text=text,
                    strategy=strategy_name,
                    replacement_ratio=self.replacement_ratio(text),
                )

            saw_garbled = saw_garbled or reason.startswith("garbled")
            logger.info(f"{label}: {strategy_name} output rejected, {reason}")

        raise ExtractionFailed(GARBLED_ADVICE if saw_garbled else PDF_ADVICE, source=source)


def extract_pdf_text(data: bytes, source: Optional[str] = None) -> PdfExtraction:
    """Extract text from PDF bytes with the default extractor settings."""
    return PdfTextExtractor().extract(data, source=source)
