import os
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .aggregator import AggregationResult, aggregate_sections
from .config import Settings
from .errors import CareRecordError, ExtractionFailed, NoRecordsFound
from .pdf_extractor import PdfTextExtractor
from .sections import SectionMap
from .segmenter import preview_sections, split_by_person
from .spreadsheet_reader import SpreadsheetRecordReader
from .summarizer import GeminiTextGenerator, SummarizationOrchestrator, SummaryResult
from .workbook_writer import (
    build_merge_workbook,
    build_summarize_merge_workbook,
    build_summary_workbook,
)

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class FileKind(str, Enum):
    PDF = "pdf"
    SPREADSHEET = "spreadsheet"


class ProcessingMode(str, Enum):
    SUMMARIZE = "summarize"
    MERGE = "merge"
    SUMMARIZE_MERGE = "summarize_merge"


FILE_EXTENSIONS = {
    ".pdf": FileKind.PDF,
    ".xlsx": FileKind.SPREADSHEET,
    ".xlsm": FileKind.SPREADSHEET,
    ".xls": FileKind.SPREADSHEET,
}


def infer_file_kind(filename: str) -> FileKind:
    extension = Path(filename or "").suffix.lower()
    if extension not in FILE_EXTENSIONS:
        raise ExtractionFailed(
            f"対応していないファイル形式です（{filename}）。PDFまたはExcelファイルをアップロードしてください。",
            source=filename,
        )
    return FILE_EXTENSIONS[extension]


@dataclass
class UploadedFile:
    """An uploaded document held in memory for the duration of one request."""
    filename: str
    data: bytes
    kind: Optional[FileKind] = None

    def __post_init__(self):
        if self.kind is None:
            self.kind = infer_file_kind(self.filename)
        elif not isinstance(self.kind, FileKind):
            self.kind = FileKind(self.kind)


@dataclass
class ProcessingResult:
    """Result of one processing request."""
    workbook: bytes
    filename: str
    mode: ProcessingMode
    summaries: Dict[str, SummaryResult] = field(default_factory=dict)
    aggregation: Optional[AggregationResult] = None
    skipped_files: List[str] = field(default_factory=list)

    @property
    def person_count(self) -> int:
        if self.summaries:
            return len(self.summaries)
        return len(self.aggregation.sections) if self.aggregation else 0


def output_filename(mode: ProcessingMode, now: Optional[datetime] = None) -> str:
    prefix = "要約" if mode == ProcessingMode.SUMMARIZE else "統合"
    return f"{prefix}_{(now or datetime.now()).strftime('%Y%m%d_%H%M%S')}.xlsx"


def extract_file_sections(upload: UploadedFile,
                          pdf_extractor: Optional[PdfTextExtractor] = None,
                          spreadsheet_reader: Optional[SpreadsheetRecordReader] = None) -> SectionMap:
    """
    Turn one uploaded file into a SectionMap.

    Raises:
        ExtractionFailed: the file cannot be read
        NoRecordsFound: the file was read but holds no person records
    """
    if upload.kind == FileKind.PDF:
        extraction = (pdf_extractor or PdfTextExtractor()).extract(upload.data, source=upload.filename)
        sections = split_by_person(extraction.text)
        if not sections:
            raise NoRecordsFound("利用者ごとのセクションを検出できませんでした", source=upload.filename)
        for preview in preview_sections(sections):
            logger.debug(preview)
        return sections

    return (spreadsheet_reader or SpreadsheetRecordReader()).read(upload.data, source=upload.filename)


def collect_sections(files: List[UploadedFile]) -> Tuple[List[Tuple[str, SectionMap]], List[str]]:
    """
    Extract every file, skipping the ones that fail.

    Returns:
        (file_id, SectionMap) pairs and the names of skipped files

    Raises:
        NoRecordsFound: no file produced any record
    """
    collected: List[Tuple[str, SectionMap]] = []
    skipped: List[str] = []
    pdf_extractor = PdfTextExtractor()
    spreadsheet_reader = SpreadsheetRecordReader()

    for index, upload in enumerate(files, start=1):
        logger.info(f"📄 Processing file {index}/{len(files)}: {upload.filename}")
        try:
            sections = extract_file_sections(upload, pdf_extractor, spreadsheet_reader)
        except CareRecordError as e:
            logger.warning(f"⚠️ Skipping {upload.filename}: {e.message}")
            skipped.append(upload.filename)
            continue
        collected.append((upload.filename, sections))
        logger.info(f"✅ Extracted {len(sections)} persons from {upload.filename}")

    if not collected:
        raise NoRecordsFound("アップロードされたファイルから利用者記録を抽出できませんでした")
    return collected, skipped


class CareRecordPipeline:
    """Main pipeline from uploaded files to the output workbook."""

    def __init__(self, settings: Optional[Settings] = None,
                 generator_factory: Optional[Callable[[Settings], object]] = None):
        self.settings = settings or Settings.from_env()
        self.generator_factory = generator_factory or (lambda settings: GeminiTextGenerator(settings.api_key))

    def _orchestrator(self) -> SummarizationOrchestrator:
        # Raises InvalidCredential before any item is processed
        generator = self.generator_factory(self.settings)
        return SummarizationOrchestrator(generator, self.settings)

    async def process(self, files: List[UploadedFile], mode: ProcessingMode = ProcessingMode.SUMMARIZE,
                      model_id: Optional[str] = None,
                      concurrency_limit: Optional[int] = None) -> ProcessingResult:
        """
        Process uploaded files according to the mode.

        Args:
            files: Uploaded files, exactly one for summarize mode
            mode: summarize, merge or summarize_merge
            model_id: Model override for summarization
            concurrency_limit: In-flight request ceiling, defaults to the configured value

        Returns:
            ProcessingResult with the workbook bytes and download filename
        """
        mode = ProcessingMode(mode)
        if not files:
            raise ValueError("ファイルがアップロードされていません")
        if concurrency_limit is not None and (isinstance(concurrency_limit, bool)
                                              or not isinstance(concurrency_limit, int)
                                              or concurrency_limit <= 0):
            raise ValueError(f"concurrency_limit must be a positive integer, got {concurrency_limit!r}")

        start_time = datetime.now()
        logger.info(f"🚀 Processing {len(files)} files in {mode.value} mode")

        if mode == ProcessingMode.SUMMARIZE:
            if len(files) != 1:
                raise ValueError("要約モードでは1つのファイルのみ処理できます")
            # Parsing and workbook building stay off the event loop
            sections = await asyncio.to_thread(extract_file_sections, files[0])
            logger.info(f"Found {len(sections)} person sections for summarization")
            summaries = await self._orchestrator().summarize(sections, model_id, concurrency_limit)
            result = ProcessingResult(
                workbook=await asyncio.to_thread(build_summary_workbook, summaries, start_time),
                filename=output_filename(mode, start_time),
                mode=mode,
                summaries=summaries,
            )
        else:
            collected, skipped = await asyncio.to_thread(collect_sections, files)
            aggregation = aggregate_sections(collected)

            if mode == ProcessingMode.MERGE:
                workbook = await asyncio.to_thread(build_merge_workbook, aggregation)
                summaries = {}
            else:
                summaries = await self._orchestrator().summarize(
                    aggregation.sections, model_id, concurrency_limit
                )
                workbook = await asyncio.to_thread(
                    build_summarize_merge_workbook, summaries, aggregation, start_time
                )

            result = ProcessingResult(
                workbook=workbook,
                filename=output_filename(mode, start_time),
                mode=mode,
                summaries=summaries,
                aggregation=aggregation,
                skipped_files=skipped,
            )

        processing_time = (datetime.now() - start_time).total_seconds()
        logger.info(f"🎉 {mode.value} completed: {result.person_count} persons -> {result.filename}")
        logger.info(f"   ⏱️  Total time: {processing_time:.2f} seconds")
        return result


def process_files_simple(paths: List[str], mode: str = "summarize") -> ProcessingResult:
    """
    Synchronous wrapper that processes files from disk.

    Args:
        paths: Paths to PDF or spreadsheet files
        mode: summarize, merge or summarize_merge
    """
    files = [UploadedFile(filename=Path(path).name, data=Path(path).read_bytes()) for path in paths]
    return asyncio.run(CareRecordPipeline().process(files, ProcessingMode(mode)))


if __name__ == "__main__":
    import sys

    if len(sys.argv) < 3:
        print("Usage: python -m care_records.pipeline <summarize|merge|summarize_merge> <file> [file ...]")
        sys.exit(1)

    outcome = process_files_simple(sys.argv[2:], mode=sys.argv[1])
    output_path = os.path.join(os.getcwd(), outcome.filename)
    with open(output_path, "wb") as handle:
        handle.write(outcome.workbook)
    print(f"✅ Wrote {output_path}")
