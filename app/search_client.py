"""
Neural web search client (Exa-compatible API) used for grounded research.
"""
import logging
from typing import Any, Dict, List

import httpx

from app.clients import EXA_API_KEY, EXA_SEARCH_URL, SEARCH_TIMEOUT_MS

logger = logging.getLogger(__name__)

HIGHLIGHT_SENTENCES = 3
MAX_TEXT_CHARS = 2000


class SearchUnavailableError(Exception):
    """Raised when no search API key is configured."""
    pass


def search_enabled() -> bool:
    return bool(EXA_API_KEY)


async def neural_search(
    query: str,
    num_results: int,
    summary_query: str,
    highlights_query: str,
) -> List[Dict[str, Any]]:
    """
    Run one neural search and return the result documents.

    Each document carries title, url, publishedDate, summary, highlights and
    text (truncated server-side). Raises httpx errors on transport failures.
    """
    if not EXA_API_KEY:
        raise SearchUnavailableError("Search API key not configured")

    payload = {
        "query": query,
        "type": "neural",
        "numResults": num_results,
        "contents": {
            "summary": {"query": summary_query},
            "highlights": {"numSentences": HIGHLIGHT_SENTENCES, "query": highlights_query},
            "text": {"maxCharacters": MAX_TEXT_CHARS},
        },
    }
    async with httpx.AsyncClient(timeout=SEARCH_TIMEOUT_MS / 1000) as client:
        response = await client.post(
            EXA_SEARCH_URL,
            json=payload,
            headers={"x-api-key": EXA_API_KEY, "content-type": "application/json"},
        )
        response.raise_for_status()
        data = response.json()

    results = data.get("results") if isinstance(data, dict) else None
    if not isinstance(results, list):
        return []
    logger.debug(f"[SEARCH] {len(results)} results for {query!r}")
    return [r for r in results if isinstance(r, dict)]
