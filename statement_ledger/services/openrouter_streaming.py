"""Streaming JSON-mode completions from OpenRouter for statement extraction."""

import json
import time
from collections.abc import AsyncIterator
from typing import Any

import httpx
from httpx_sse import ServerSentEvent, aconnect_sse

from statement_ledger.config import settings
from statement_ledger.logger import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
RETRYABLE_STREAM_CODES = frozenset({"server_error", "timeout"})


class OpenRouterStreamError(Exception):
    """A completion could not be streamed; ``retryable`` tells callers to try the next model."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


def _completion_request(messages: list[dict[str, Any]], model: str) -> dict[str, Any]:
    return {
        "model": model,
        "stream": True,
        "messages": messages,
        "response_format": {"type": "json_object"},
    }


def _delta_from_event(event: ServerSentEvent) -> str | None:
    """Return the content delta carried by one SSE event, or None when it carries none.

    Keep-alive comments and blank events are skipped. Errors that OpenRouter
    reports inside the stream body are raised.
    """
    data = event.data.strip()
    if not data or data.startswith(":"):
        return None

    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("Skipping undecodable completion chunk", data_preview=data[:200])
        return None

    if "error" in chunk:
        detail = chunk["error"]
        code = detail.get("code", "unknown") if isinstance(detail, dict) else "unknown"
        message = detail.get("message", str(detail)) if isinstance(detail, dict) else str(detail)
        raise OpenRouterStreamError(f"Mid-stream error: {message}", retryable=code in RETRYABLE_STREAM_CODES)

    choices = chunk.get("choices") or []
    if not choices:
        return None
    if choices[0].get("finish_reason") == "error":
        raise OpenRouterStreamError("Stream terminated with error", retryable=True)
    return choices[0].get("delta", {}).get("content") or None


async def stream_openrouter_json(
    messages: list[dict[str, Any]],
    model: str,
    *,
    api_key: str | None = None,
    base_url: str | None = None,
    timeout: float = 180.0,
    connect_timeout: float = 10.0,
) -> AsyncIterator[str]:
    """Yield content deltas of a JSON-mode completion as they arrive."""
    key = api_key or settings.openrouter_api_key
    if not key:
        raise OpenRouterStreamError("OpenRouter API key not configured")
    url = f"{base_url or settings.openrouter_base_url}/chat/completions"

    started = time.perf_counter()
    received = 0
    logger.info("Requesting statement completion", model=model)

    async with httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=connect_timeout)) as client:
        async with aconnect_sse(
            client,
            "POST",
            url,
            headers={"Authorization": f"Bearer {key}", "X-Title": "Statement Ledger"},
            json=_completion_request(messages, model),
        ) as source:
            status_code = source.response.status_code
            if status_code != 200:
                body = (await source.response.aread()).decode("utf-8", errors="replace")
                raise OpenRouterStreamError(
                    f"HTTP {status_code}: {body}", retryable=status_code in RETRYABLE_STATUS_CODES
                )

            async for event in source.aiter_sse():
                if event.data == "[DONE]":
                    break
                delta = _delta_from_event(event)
                if delta:
                    received += len(delta)
                    yield delta

    logger.info(
        "Statement completion finished",
        model=model,
        chars=received,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )


async def accumulate_stream(stream: AsyncIterator[str]) -> str:
    return "".join([chunk async for chunk in stream])
