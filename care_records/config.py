"""
Configuration for the care record summarizer.

Values are read from the environment (a local .env file is loaded first).
Required for summarization:
    GOOGLE_API_KEY=your_gemini_key
Optional:
    GOOGLE_GEMINI_MODEL, MAX_CONCURRENCY, MODEL_CONTEXT_TOKENS,
    CONTEXT_SAFETY_MARGIN, MAX_UPLOAD_MB, API_PORT
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_CONCURRENCY = 8


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"⚠️ {name}={raw!r} is not an integer, using {default}")
        return default
    if value <= 0:
        logger.warning(f"⚠️ {name} must be positive, using {default}")
        return default
    return value


@dataclass
class Settings:
    """Runtime settings shared by the pipeline and the API."""
    api_key: Optional[str] = None
    model_name: str = DEFAULT_MODEL
    max_concurrency: int = DEFAULT_CONCURRENCY

    # Token budget for a single summarization request
    context_tokens: int = 131072
    context_safety_margin: int = 11072
    max_input_chars: int = 50000

    # Summary length band (characters, newlines excluded)
    summary_min_chars: int = 200
    summary_max_chars: int = 300
    temperature: float = 0.2
    adjust_temperature: float = 0.0

    # Upload handling
    max_upload_mb: int = 30
    api_port: int = 1090

    @property
    def input_token_budget(self) -> int:
        return max(1, self.context_tokens - self.context_safety_margin)

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_key=os.getenv("GOOGLE_API_KEY"),
            model_name=os.getenv("GOOGLE_GEMINI_MODEL", DEFAULT_MODEL),
            max_concurrency=_int_from_env("MAX_CONCURRENCY", DEFAULT_CONCURRENCY),
            context_tokens=_int_from_env("MODEL_CONTEXT_TOKENS", 131072),
            context_safety_margin=_int_from_env("CONTEXT_SAFETY_MARGIN", 11072),
            max_upload_mb=_int_from_env("MAX_UPLOAD_MB", 30),
            api_port=_int_from_env("API_PORT", 1090),
        )
