"""
Singleton clients and shared configuration for the app.

Import from here instead of reading the environment in each module:
    from app.clients import get_llm_client, llm_limiter, MODEL, RETRY_ATTEMPTS, ...
"""
import os
from functools import lru_cache
from dotenv import load_dotenv
from openai import AsyncOpenAI

from eatwise.rate_limiter import RateLimiter

load_dotenv()

# ── Model config ──────────────────────────────────────────────────────
MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
VISION_MODEL = os.getenv("VISION_MODEL", "gpt-4o-mini")
LLM_TIMEOUT_S = float(os.getenv("LLM_TIMEOUT_S", "60"))

# ── Search config ─────────────────────────────────────────────────────
EXA_API_KEY = os.getenv("EXA_API_KEY", "")
EXA_SEARCH_URL = os.getenv("EXA_SEARCH_URL", "https://api.exa.ai/search")

# ── Barcode lookup ────────────────────────────────────────────────────
OFF_PRODUCT_URL = os.getenv("OFF_PRODUCT_URL", "https://world.openfoodfacts.org/api/v0/product")
BARCODE_TIMEOUT_S = float(os.getenv("BARCODE_TIMEOUT_S", "10"))

# ── Timeouts (milliseconds) ───────────────────────────────────────────
GLOBAL_TIMEOUT_MS = int(os.getenv("GLOBAL_TIMEOUT_MS", "120000"))
RESEARCH_TIMEOUT_MS = int(os.getenv("RESEARCH_TIMEOUT_MS", "35000"))
SEARCH_TIMEOUT_MS = int(os.getenv("SEARCH_TIMEOUT_MS", "15000"))

# ── Retry & pacing ────────────────────────────────────────────────────
RETRY_ATTEMPTS = int(os.getenv("RETRY_ATTEMPTS", "3"))
RETRY_DELAY_MS = int(os.getenv("RETRY_DELAY_MS", "1000"))
RETRY_BACKOFF = float(os.getenv("RETRY_BACKOFF", "2"))
LLM_MIN_INTERVAL_MS = int(os.getenv("LLM_MIN_INTERVAL_MS", "2500"))
STAGE_PACING_MS = int(os.getenv("STAGE_PACING_MS", "200"))
RESEARCH_BATCH_SIZE = int(os.getenv("RESEARCH_BATCH_SIZE", "2"))
RESEARCH_BATCH_DELAY_MS = int(os.getenv("RESEARCH_BATCH_DELAY_MS", "300"))

# ── History store ─────────────────────────────────────────────────────
HISTORY_MAX_ENTRIES = int(os.getenv("HISTORY_MAX_ENTRIES", "10"))
HISTORY_READ_LIMIT = 5

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# ── Singleton clients ─────────────────────────────────────────────────
llm_limiter = RateLimiter(min_interval=LLM_MIN_INTERVAL_MS / 1000)


@lru_cache(maxsize=1)
def get_llm_client() -> AsyncOpenAI:
    # Retries are handled by eatwise.retry.with_retry, not the SDK.
    return AsyncOpenAI(
        api_key=os.getenv("OPENAI_API_KEY"),
        timeout=LLM_TIMEOUT_S,
        max_retries=0,
    )
