import os
import logging
from typing import Any, Dict, List, Optional
from datetime import datetime
from pathlib import Path
from urllib.parse import quote

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel
import uvicorn

# Import our pipeline
from care_records.config import Settings
from care_records.errors import CareRecordError, ExtractionError, InvalidCredential
from care_records.pipeline import CareRecordPipeline, FileKind, ProcessingMode, ProcessingResult, UploadedFile

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
VERSION = "1.0.0"

# Create FastAPI app
app = FastAPI(
    title="Care Record Summarizer API",
    description="Upload care record PDFs or spreadsheets and download per-person summaries as Excel",
    version=VERSION
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)

# Global instance, created on first use
processing_pipeline: Optional[CareRecordPipeline] = None


class HealthResponse(BaseModel):
    status: str
    api_key_configured: bool
    model: str
    max_concurrency: int
    timestamp: str
    version: str


def get_pipeline() -> CareRecordPipeline:
    """Return the shared pipeline, building it from the environment on first use."""
    global processing_pipeline
    if processing_pipeline is None:
        processing_pipeline = CareRecordPipeline(Settings.from_env())
        logger.info("✅ Processing pipeline initialized")
    return processing_pipeline


def download_headers(filename: str) -> Dict[str, str]:
    """Attachment headers with an ASCII fallback and the UTF-8 filename (RFC 5987)."""
    ascii_name = filename.replace("要約", "summary").replace("統合", "merged")
    return {
        "Content-Disposition": f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}",
        "Cache-Control": "no-cache, no-store, must-revalidate",
    }


def workbook_response(result: ProcessingResult) -> Response:
    headers = download_headers(result.filename)
    headers["X-Persons-Processed"] = str(result.person_count)
    if result.skipped_files:
        headers["X-Skipped-Files"] = quote(", ".join(result.skipped_files))
    return Response(content=result.workbook, media_type=XLSX_MEDIA_TYPE, headers=headers)


async def read_upload(file: UploadFile, settings: Settings) -> UploadedFile:
    if not file.filename:
        raise HTTPException(status_code=400, detail="ファイル名がありません")

    data = await file.read()
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"ファイルサイズが大きすぎます（最大{settings.max_upload_mb}MB）: {file.filename}"
        )
    try:
        return UploadedFile(filename=file.filename, data=data)
    except ExtractionError as e:
        raise HTTPException(status_code=400, detail=e.message)


async def run_pipeline(pipeline: CareRecordPipeline, files: List[UploadedFile], mode: ProcessingMode,
                       model: Optional[str], concurrency: Optional[int]) -> Response:
    try:
        result = await pipeline.process(files, mode, model_id=model or None, concurrency_limit=concurrency)
        return workbook_response(result)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExtractionError as e:
        logger.warning(f"⚠️ Extraction failed ({e.kind.value}): {e.message}")
        raise HTTPException(status_code=400, detail=e.message)
    except InvalidCredential as e:
        logger.error(f"❌ {e.message}")
        raise HTTPException(status_code=500, detail=e.message)
    except CareRecordError as e:
        logger.error(f"❌ Processing failed ({e.kind.value}): {e.message}")
        raise HTTPException(status_code=502, detail=e.message)
    except Exception as e:
        logger.error(f"❌ Processing error: {e}")
        raise HTTPException(status_code=500, detail=f"処理中にエラーが発生しました: {str(e)}")


@app.get("/api", response_model=Dict[str, Any])
async def api_info():
    """API information endpoint."""
    return {
        "message": "Care Record Summarizer API",
        "version": VERSION,
        "modes": [mode.value for mode in ProcessingMode],
        "endpoints": {
            "process": "/process",
            "upload": "/upload",
            "health": "/health"
        }
    }


@app.get("/health", response_model=HealthResponse)
async def health_check(pipeline: CareRecordPipeline = Depends(get_pipeline)):
    """Health check endpoint."""
    settings = pipeline.settings
    return HealthResponse(
        status="healthy",
        api_key_configured=bool(settings.api_key),
        model=settings.model_name,
        max_concurrency=settings.max_concurrency,
        timestamp=datetime.now().isoformat(),
        version=VERSION
    )


@app.post("/process")
async def process_files(
    files: List[UploadFile] = File(...),
    mode: str = Form(ProcessingMode.SUMMARIZE.value),
    model: Optional[str] = Form(None),
    concurrency: Optional[int] = Form(None),
    pipeline: CareRecordPipeline = Depends(get_pipeline)
):
    """
    Process uploaded care records and return an Excel workbook.

    Modes:
    - summarize: one PDF or spreadsheet, one summary per person
    - merge: several files merged per person, no summarization
    - summarize_merge: several files merged per person, then summarized
    """
    try:
        processing_mode = ProcessingMode(mode)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported mode: {mode}. Allowed: {', '.join(m.value for m in ProcessingMode)}"
        )

    uploads = [await read_upload(file, pipeline.settings) for file in files]
    logger.info(f"📤 Received {len(uploads)} files for {processing_mode.value}")
    return await run_pipeline(pipeline, uploads, processing_mode, model, concurrency)


@app.post("/upload")
async def upload_document(
    file: UploadFile = File(...),
    pipeline: CareRecordPipeline = Depends(get_pipeline)
):
    """Summarize a single PDF (kept for older clients)."""
    if Path(file.filename or "").suffix.lower() != ".pdf":
        raise HTTPException(status_code=400, detail="PDFファイルをアップロードしてください")

    upload = await read_upload(file, pipeline.settings)
    upload.kind = FileKind.PDF
    return await run_pipeline(pipeline, [upload], ProcessingMode.SUMMARIZE, None, None)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.environ.get("API_PORT", 1090)),
        log_level="info")
