import io

import pytest
import PyPDF2

from care_records.errors import ExtractionFailed
from care_records.pdf_extractor import GARBLED_ADVICE, PDF_ADVICE, PdfTextExtractor, extract_pdf_text


def blank_pdf() -> bytes:
    writer = PyPDF2.PdfWriter()
    writer.add_blank_page(width=200, height=200)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def content_stream_pdf(lines) -> bytes:
    """A minimal byte buffer holding one text object with the given lines."""
    shown = " T* ".join(f"({line}) Tj" for line in lines)
    return (
        b"%PDF-1.4\n1 0 obj\n<< /Length 0 >>\nstream\nBT /F1 12 Tf 72 720 Td "
        + shown.encode("latin-1")
        + b" ET\nendstream\nendobj\n%%EOF\n"
    )


def test_pdf_without_text_fails():
    with pytest.raises(ExtractionFailed) as excinfo:
        extract_pdf_text(blank_pdf(), source="scan.pdf")

    assert excinfo.value.message == PDF_ADVICE
    assert excinfo.value.source == "scan.pdf"


def test_text_operators_are_read_when_parsing_fails():
    lines = [
        "Tanaka-san: ate all of breakfast and lunch today",
        "Walked to the dining room without assistance",
        "Slept through the night \\(no calls\\)",
    ]

    result = PdfTextExtractor().extract(content_stream_pdf(lines))

    assert result.strategy == "text-operators"
    assert result.text.splitlines() == [
        "Tanaka-san: ate all of breakfast and lunch today",
        "Walked to the dining room without assistance",
        "Slept through the night (no calls)",
    ]
    assert result.replacement_ratio == 0.0


def test_readable_stream_runs_are_read_without_text_objects():
    note = (
        "Sato-sama: took a short walk in the garden after lunch, "
        "blood pressure normal, family visited in the afternoon and stayed for tea"
    )
    data = (
        b"%PDF-1.4\n1 0 obj\n<< /Length 0 >>\nstream\n\x01\x02"
        + note.encode("ascii")
        + b"\x03\nendstream\nendobj\n%%EOF\n"
    )

    result = PdfTextExtractor().extract(data)

    assert result.strategy == "text-operators"
    assert result.text == note


def test_garbled_text_is_rejected_with_advice():
    data = b"%PDF-1.4\nBT (" + b"\xff" * 150 + b") Tj ET\n%%EOF\n"

    with pytest.raises(ExtractionFailed) as excinfo:
        PdfTextExtractor().extract(data)

    assert excinfo.value.message == GARBLED_ADVICE


def test_quality_gate():
    extractor = PdfTextExtractor()

    assert extractor.check_quality("短い") is not None
    assert extractor.check_quality("あ" * 120) is None
    assert extractor.check_quality("slept well, " * 10) is None
    assert extractor.check_quality("あ" * 100 + "\ufffd" * 20).startswith("garbled")


def test_octal_escapes_are_decoded():
    extractor = PdfTextExtractor()

    assert extractor._decode_pdf_string(r"A\101\n\(x\)") == "AA\n(x)"
