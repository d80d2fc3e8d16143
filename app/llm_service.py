"""
Chat-completion helper shared by all pipeline stages.

Every outbound model call goes through the shared rate limiter and the retry
executor. Callers receive the raw text content and do their own parsing, so
malformed output never triggers a retry.
"""
import logging
from typing import Any, Dict, List, Optional

from app.clients import (
    MODEL,
    RETRY_ATTEMPTS,
    RETRY_BACKOFF,
    RETRY_DELAY_MS,
    get_llm_client,
    llm_limiter,
)
from eatwise.retry import with_retry

logger = logging.getLogger(__name__)


async def chat_completion(
    messages: List[Dict[str, Any]],
    *,
    model: Optional[str] = None,
    temperature: float = 0.3,
    max_tokens: Optional[int] = None,
    json_mode: bool = False,
    label: str = "llm",
) -> str:
    """Rate-limited, retried chat completion. Returns the content string ('' if empty)."""
    kwargs: Dict[str, Any] = {
        "model": model or MODEL,
        "messages": messages,
        "temperature": temperature,
    }
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    async def _call():
        client = get_llm_client()
        return await llm_limiter.throttle(lambda: client.chat.completions.create(**kwargs))

    response = await with_retry(
        _call,
        retries=RETRY_ATTEMPTS,
        delay=RETRY_DELAY_MS / 1000,
        backoff=RETRY_BACKOFF,
        label=label,
    )
    if not response.choices:
        return ""
    content = response.choices[0].message.content or ""
    logger.debug(f"[LLM] {label}: {len(content)} chars")
    return content
