# To run this code you need to install the following dependencies:
# pip install google-genai python-dotenv

import re
import math
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .config import Settings
from .errors import (
    ContextTooLarge,
    ErrorKind,
    InvalidCredential,
    RateLimited,
    RemoteModelError,
    UnknownRemoteError,
)
from .names import is_reserved_name, strip_honorific
from .sections import SectionMap

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM = (
    "あなたは介護・福祉の月次経過記録の要約担当です。\n"
    "記録を正確・簡潔にまとめ、現場の申し送りに使える品質で出力してください。"
)

SUMMARY_INSTRUCTIONS = """要約要件:
・200〜300文字、敬体（です・ます調）。箇条書き不可、1段落。
・原文にない推測や評価は禁止。日付や数値は正確に転記。
・優先順位: 体調/睡眠/感情 → 排泄/入浴/転倒等 → 皮膚所見/脱水等のリスクと対応 → 連絡事項（家族・ショートステイ等）→ 次回への配慮事項。
・該当がない項目は無理に入れない。
出力は本文のみ。"""

ADJUST_SYSTEM = "文章整形アシスタント"

TRUNCATION_NOTICE = "\n\n[注意: 記録が長すぎるため、一部のみを要約対象としています]"
OMISSION_NOTICE = "\n\n[以下省略]"
MASK_TOKEN = "対象者"
FAILURE_PREFIX = "要約失敗: "

FAILURE_MESSAGES = {
    ErrorKind.CONTEXT_TOO_LARGE: "テキストが長すぎます。管理者にお問い合わせください。",
    ErrorKind.INVALID_CREDENTIAL: "APIキーが無効です。設定を確認してください。",
    ErrorKind.RATE_LIMITED: "API制限に達しました。しばらくお待ちください。",
}

_JAPANESE_RE = re.compile(r"[ぁ-んァ-ヶー一-龯]")
_ASCII_ALNUM_RE = re.compile(r"[A-Za-z0-9]")
_ASCII_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z .'-]*$")

# Lower-cased fragments of remote error messages
_CREDENTIAL_HINTS = ("api key not valid", "api_key_invalid", "invalid_api_key", "permission_denied",
                     "unauthenticated", "invalid api key")
_RATE_LIMIT_HINTS = ("resource_exhausted", "rate_limit", "rate limit", "quota", "too many requests")
_CONTEXT_HINTS = ("maximum context length", "context length", "too long", "token count",
                  "exceeds the maximum", "input token")


# --- Text helpers ---

def estimate_tokens(text: str) -> int:
    """Rough token count for mixed Japanese/ASCII text."""
    japanese = len(_JAPANESE_RE.findall(text))
    ascii_alnum = len(_ASCII_ALNUM_RE.findall(text))
    other = len(text) - japanese - ascii_alnum
    return math.ceil(japanese * 2.5 + ascii_alnum * 0.25 + other * 1.5)


def summary_length(text: str) -> int:
    """Character count used for the length band, newlines excluded."""
    return len(text.replace("\r", "").replace("\n", ""))


def truncate_to_token_budget(text: str, token_budget: int, max_chars: int = 50000) -> str:
    """
    Shorten text so its estimated token count fits the budget.

    The cut lands on the last sentence end or newline when one exists within
    100 characters of the limit, and a visible notice is appended.

    Raises:
        ContextTooLarge: the text cannot be brought under the budget
    """
    if estimate_tokens(text) > token_budget:
        # 2.5 is the highest per-character estimate
        char_limit = max(0, int((token_budget - estimate_tokens(TRUNCATION_NOTICE)) / 2.5))
        if len(text) > char_limit:
            head = text[:char_limit]
            cut = max(head.rfind("。") + 1, head.rfind("\n"), char_limit - 100)
            text = text[:cut].rstrip() + TRUNCATION_NOTICE
            logger.warning(f"⚠️ Content truncated to {len(text)} characters to fit {token_budget} tokens")

    if len(text) > max_chars:
        text = text[:max_chars - len(OMISSION_NOTICE)] + OMISSION_NOTICE

    if estimate_tokens(text) > token_budget:
        raise ContextTooLarge(FAILURE_MESSAGES[ErrorKind.CONTEXT_TOO_LARGE])
    return text


def mask_name(content: str, name: str) -> str:
    """Replace the person's name in the body with a neutral token."""
    base = strip_honorific(name)
    if not base or is_reserved_name(name):
        return content
    if _ASCII_NAME_RE.match(base):
        return re.sub(rf"\b{re.escape(base)}\b", MASK_TOKEN, content)
    return content.replace(base, MASK_TOKEN)


def build_summary_prompt(name: str, content: str) -> str:
    return (
        f"利用者: {name}\n"
        f"以下は当月の経過記録です。これを要件に従い要約してください。\n"
        f"---\n{content}\n---\n"
        f"{SUMMARY_INSTRUCTIONS}"
    )


def build_adjust_prompt(summary: str, min_chars: int, max_chars: int) -> str:
    return (
        f"次の文章を{min_chars}〜{max_chars}文字に調整し、敬体を維持して意味を保ってください。"
        f"本文のみ:\n---\n{summary}\n---"
    )


def classify_error(error: Exception) -> RemoteModelError:
    """Map any exception raised while summarizing onto the remote error taxonomy."""
    if isinstance(error, RemoteModelError):
        return error

    message = str(error)
    lowered = message.lower()
    code = getattr(error, "code", None) if isinstance(error, genai_errors.APIError) else None

    if code in (401, 403) or any(hint in lowered for hint in _CREDENTIAL_HINTS):
        return InvalidCredential(FAILURE_MESSAGES[ErrorKind.INVALID_CREDENTIAL])
    if code == 429 or any(hint in lowered for hint in _RATE_LIMIT_HINTS):
        return RateLimited(FAILURE_MESSAGES[ErrorKind.RATE_LIMITED])
    if any(hint in lowered for hint in _CONTEXT_HINTS):
        return ContextTooLarge(FAILURE_MESSAGES[ErrorKind.CONTEXT_TOO_LARGE])
    return UnknownRemoteError(message[:100] or type(error).__name__)


def failure_text(error: RemoteModelError) -> str:
    return FAILURE_PREFIX + FAILURE_MESSAGES.get(error.kind, error.message)


# --- Results ---

@dataclass
class SummaryResult:
    canonical_name: str
    summary_text: str
    succeeded: bool
    error_kind: Optional[ErrorKind] = None

    @property
    def char_count(self) -> int:
        return summary_length(self.summary_text)


@dataclass
class ItemOutcome:
    """Result of one summarization item; exactly one of summary/error is set."""
    name: str
    summary: Optional[str] = None
    error: Optional[RemoteModelError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_result(self) -> SummaryResult:
        if self.ok:
            return SummaryResult(canonical_name=self.name, summary_text=self.summary or "", succeeded=True)
        return SummaryResult(
            canonical_name=self.name,
            summary_text=failure_text(self.error),
            succeeded=False,
            error_kind=self.error.kind,
        )


# --- Remote model ---

class GeminiTextGenerator:
    """Handles text generation using Gemini AI."""

    def __init__(self, api_key: Optional[str]):
        if not api_key or len(api_key.strip()) < 10:
            raise InvalidCredential("有効なAPIキーが設定されていません。GOOGLE_API_KEYを確認してください。")
        self.client = genai.Client(api_key=api_key)

    async def generate(self, model_id: str, system_instruction: str, prompt: str,
                       temperature: float) -> str:
        """Run one generation request in a worker thread and return its text."""
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=temperature,
        )
        response = await asyncio.to_thread(
            self.client.models.generate_content,
            model=model_id,
            contents=prompt,
            config=config,
        )
        text = (response.text or "").strip()
        if not text:
            raise UnknownRemoteError("モデルから空の応答が返されました")
        return text


# --- Orchestration ---

class SummarizationOrchestrator:
    """
    Summarizes every person in a SectionMap with bounded concurrency.

    Items run in batches of `concurrency_limit`; a batch is fully resolved
    before the next one starts. Failures stay local to their item.
    """

    def __init__(self, generator, settings: Optional[Settings] = None):
        self.generator = generator
        self.settings = settings or Settings()

    def prepare_content(self, name: str, content: str) -> str:
        tokens = estimate_tokens(content)
        logger.info(f"Processing {name}: {len(content)} chars, ~{tokens} tokens")
        content = truncate_to_token_budget(
            content,
            self.settings.input_token_budget,
            max_chars=self.settings.max_input_chars,
        )
        return mask_name(content, name)

    async def summarize_one(self, name: str, content: str, model_id: str) -> str:
        """
        Summarize one person's records, with a single length correction.

        Raises:
            RemoteModelError: classified failure of the remote call
        """
        body = self.prepare_content(name, content)
        summary = await self.generator.generate(
            model_id,
            SUMMARY_SYSTEM,
            build_summary_prompt(name, body),
            self.settings.temperature,
        )

        length = summary_length(summary)
        low, high = self.settings.summary_min_chars, self.settings.summary_max_chars
        if low <= length <= high:
            return summary

        logger.info(f"Adjusting summary length for {name}: {length} chars")
        try:
            adjusted = await self.generator.generate(
                model_id,
                ADJUST_SYSTEM,
                build_adjust_prompt(summary, low, high),
                self.settings.adjust_temperature,
            )
        except Exception as e:
            logger.warning(f"⚠️ Length adjustment failed for {name}, keeping first summary: {e}")
            return summary
        return adjusted or summary

    async def _run_item(self, name: str, content: str, model_id: str) -> ItemOutcome:
        try:
            summary = await self.summarize_one(name, content, model_id)
            return ItemOutcome(name=name, summary=summary)
        except Exception as e:
            error = classify_error(e)
            logger.error(f"❌ Failed to summarize {name}: {error.kind.value} - {e}")
            return ItemOutcome(name=name, error=error)

    async def summarize(self, sections: SectionMap, model_id: Optional[str] = None,
                        concurrency_limit: Optional[int] = None) -> Dict[str, SummaryResult]:
        """
        Summarize all sections.

        Args:
            sections: canonical name -> content
            model_id: Model to use, defaults to the configured model
            concurrency_limit: Maximum in-flight requests, defaults to the configured value

        Returns:
            canonical name -> SummaryResult, one entry per input name
        """
        limit = self.settings.max_concurrency if concurrency_limit is None else concurrency_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValueError(f"concurrency_limit must be a positive integer, got {limit!r}")
        model_id = model_id or self.settings.model_name

        items: List[Tuple[str, str]] = list(sections.items())
        total_batches = math.ceil(len(items) / limit) if items else 0
        logger.info(f"Processing {len(items)} sections with concurrency {limit} using {model_id}")

        results: Dict[str, SummaryResult] = {}
        for batch_index, start in enumerate(range(0, len(items), limit), start=1):
            batch = items[start:start + limit]
            logger.info(f"Processing batch {batch_index}/{total_batches}")
            outcomes = await asyncio.gather(
                *(self._run_item(name, content, model_id) for name, content in batch)
            )
            for outcome in outcomes:
                results[outcome.name] = outcome.to_result()

        succeeded = sum(1 for result in results.values() if result.succeeded)
        logger.info(f"✅ Completed {succeeded}/{len(results)} summaries")
        return results
