from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    EXTRACTION_FAILED = "ExtractionFailed"
    NO_RECORDS_FOUND = "NoRecordsFound"
    INVALID_CREDENTIAL = "InvalidCredential"
    RATE_LIMITED = "RateLimited"
    CONTEXT_TOO_LARGE = "ContextTooLarge"
    UNKNOWN_REMOTE_ERROR = "UnknownRemoteError"


class CareRecordError(Exception):
    """Base class for all errors raised by the care record pipeline."""

    kind: ErrorKind = ErrorKind.UNKNOWN_REMOTE_ERROR

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.source = source


# --- Extraction phase ---

class ExtractionError(CareRecordError):
    """Raised while turning an uploaded file into per-person sections."""


class ExtractionFailed(ExtractionError):
    kind = ErrorKind.EXTRACTION_FAILED


class NoRecordsFound(ExtractionError):
    kind = ErrorKind.NO_RECORDS_FOUND


# --- Summarization phase ---

class RemoteModelError(CareRecordError):
    """Raised when the text generation service cannot produce a summary."""


class InvalidCredential(RemoteModelError):
    kind = ErrorKind.INVALID_CREDENTIAL


class RateLimited(RemoteModelError):
    kind = ErrorKind.RATE_LIMITED


class ContextTooLarge(RemoteModelError):
    kind = ErrorKind.CONTEXT_TOO_LARGE


class UnknownRemoteError(RemoteModelError):
    kind = ErrorKind.UNKNOWN_REMOTE_ERROR
