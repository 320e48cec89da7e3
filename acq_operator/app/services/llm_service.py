"""
Anthropic Messages API client (httpx). Every Claude call goes through this module.

Transient failures (429 / 5xx / transport errors) are retried with linear backoff;
a model-resolution failure (400/404 mentioning the model) can be retried against
fallback models. Errors surface as LLMProviderError with the provider's own reason.
"""
import asyncio
import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

from app.config import Settings
from app.logging_config import get_logger

logger = get_logger(__name__)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 0.35
PARSE_RETRY_DELAY_SECONDS = 0.25
RAW_SNIPPET_CHARS = 420

_FENCED_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class LLMProviderError(Exception):
    """Non-2xx (or unreachable) provider. status=0 means no HTTP response."""

    def __init__(self, status: int, reason: str, raw_snippet: str = ""):
        self.status = status
        self.reason = reason or "Claude request failed"
        self.raw_snippet = raw_snippet
        super().__init__(f"Claude request failed ({status}): {raw_snippet or self.reason}")


class LLMNotConfiguredError(LLMProviderError):
    def __init__(self) -> None:
        super().__init__(0, "CLAUDE_API_KEY not configured")


@dataclass
class LLMResult:
    text: str
    model: str
    usage: Optional[Dict[str, Any]] = None
    latency_ms: int = 0
    payload: Dict[str, Any] = field(default_factory=dict)


def is_transient_status(status: int) -> bool:
    return status == 429 or status >= 500


def is_model_resolution_error(status: int, reason: str) -> bool:
    """400/404 whose text points at the model id (unknown, invalid, unsupported)."""
    if status not in (400, 404):
        return False
    normalized = (reason or "").lower()
    return any(k in normalized for k in ("model", "not found", "invalid", "unsupported"))


def read_error_reason(payload: Optional[Dict[str, Any]], raw: str) -> str:
    """error.message, then message, then raw body."""
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and str(error.get("message") or "").strip():
            return str(error["message"]).strip()
        if str(payload.get("message") or "").strip():
            return str(payload["message"]).strip()
    return (raw or "").strip() or "Claude request failed"


def extract_text(payload: Any) -> str:
    """Join all text blocks of a Messages API response."""
    content = payload.get("content") if isinstance(payload, dict) else None
    if not isinstance(content, list):
        return ""
    parts = [
        block["text"]
        for block in content
        if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
    ]
    return "\n".join(parts).strip()


def extract_usage(payload: Any) -> Optional[Dict[str, Any]]:
    usage = payload.get("usage") if isinstance(payload, dict) else None
    return usage if isinstance(usage, dict) else None


def parse_json_from_text(text: Optional[str]) -> Optional[Any]:
    """
    Model output -> JSON object. Accepts ```json fences and prose around the object.
    Returns None when nothing parses.
    """
    if not text:
        return None
    fenced = _FENCED_RE.search(text)
    candidate = fenced.group(1) if fenced else text
    match = _OBJECT_RE.search(candidate)
    target = match.group(0) if match else candidate
    try:
        return json.loads(target)
    except (TypeError, ValueError):
        return None


class LLMService:
    """Claude over httpx. `transport` lets tests plug in httpx.MockTransport."""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay: float = RETRY_DELAY_SECONDS,
        parse_retry_delay: float = PARSE_RETRY_DELAY_SECONDS,
    ) -> None:
        self.api_key = settings.claude_api_key
        self.model = settings.claude_model
        self.fallback_models = settings.fallback_models()
        self.timeout_seconds = settings.claude_timeout_seconds
        self.transport = transport
        self.retry_delay = retry_delay
        self.parse_retry_delay = parse_retry_delay

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    async def _post_once(self, body: Dict[str, Any]) -> tuple[int, Optional[Dict[str, Any]], str]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            resp = await client.post(ANTHROPIC_MESSAGES_URL, headers=self._headers(), json=body)
        raw = resp.text
        try:
            payload = resp.json() if raw else None
        except ValueError:
            payload = None
        return resp.status_code, payload if isinstance(payload, dict) else None, raw

    async def create_message(
        self,
        *,
        system: str,
        messages: List[Dict[str, Any]],
        max_tokens: int,
        temperature: float,
        model: Optional[str] = None,
    ) -> LLMResult:
        """
        One logical call with up to MAX_ATTEMPTS tries on transient failures.
        Raises LLMProviderError on the final failure.
        """
        if not self.configured:
            raise LLMNotConfiguredError()
        model = model or self.model
        body = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system,
            "messages": messages,
        }
        start = time.perf_counter()
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                status, payload, raw = await self._post_once(body)
            except httpx.HTTPError as e:
                logger.warning("llm.transport_error", model=model, attempt=attempt, error=str(e))
                if attempt < MAX_ATTEMPTS:
                    await asyncio.sleep(self.retry_delay * attempt)
                    continue
                raise LLMProviderError(0, str(e) or e.__class__.__name__) from e

            if 200 <= status < 300:
                latency_ms = round((time.perf_counter() - start) * 1000)
                payload = payload or {}
                logger.info("llm.message_success", model=model, latency_ms=latency_ms, attempt=attempt)
                return LLMResult(
                    text=extract_text(payload),
                    model=model,
                    usage=extract_usage(payload),
                    latency_ms=latency_ms,
                    payload=payload,
                )

            reason = read_error_reason(payload, raw)
            logger.warning("llm.message_failed", model=model, status=status, attempt=attempt, reason=reason[:200])
            if is_transient_status(status) and attempt < MAX_ATTEMPTS:
                await asyncio.sleep(self.retry_delay * attempt)
                continue
            raise LLMProviderError(status, reason, raw[:RAW_SNIPPET_CHARS])
        raise LLMProviderError(0, "Claude request failed")

    async def create_message_with_fallback(
        self,
        *,
        model: str,
        system: str,
        messages: List[Dict[str, Any]],
        max_tokens: int,
        temperature: float,
        fallback_models: Optional[Sequence[str]] = None,
    ) -> LLMResult:
        """
        Try `model`; on a model-resolution error walk the fallback list in order.
        The first error is re-raised when no fallback succeeds.
        """
        try:
            return await self.create_message(
                system=system, messages=messages, max_tokens=max_tokens, temperature=temperature, model=model
            )
        except LLMProviderError as first:
            if not is_model_resolution_error(first.status, first.reason):
                raise
            candidates = self.fallback_models if fallback_models is None else list(fallback_models)
            for fallback in candidates:
                if not fallback or fallback == model:
                    continue
                logger.info("llm.model_fallback", requested=model, fallback=fallback, reason=first.reason[:200])
                try:
                    return await self.create_message(
                        system=system,
                        messages=messages,
                        max_tokens=max_tokens,
                        temperature=temperature,
                        model=fallback,
                    )
                except LLMProviderError as e:
                    logger.warning("llm.fallback_failed", fallback=fallback, status=e.status)
            raise first

    async def complete_text(self, system: str, prompt: str, max_tokens: int = 1000, temperature: float = 0.2) -> str:
        result = await self.create_message(
            system=system,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return result.text

    async def complete_json(self, system: str, prompt: str, max_tokens: int = 1400) -> Any:
        """
        JSON-only completion. Unparseable output is retried (same prompt) up to MAX_ATTEMPTS.
        Raises ValueError when no attempt yields JSON.
        """
        for attempt in range(1, MAX_ATTEMPTS + 1):
            result = await self.create_message(
                system=system,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=0.15,
            )
            parsed = parse_json_from_text(result.text)
            if parsed is not None:
                return parsed
            logger.warning("llm.json_parse_failed", model=result.model, attempt=attempt)
            if attempt < MAX_ATTEMPTS:
                await asyncio.sleep(self.parse_retry_delay)
        raise ValueError("Failed to parse Claude JSON response")
