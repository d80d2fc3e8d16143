"""
Barcode lookup against the Open Food Facts product API.
"""
import logging
from typing import Optional

import httpx

from app.clients import (
    BARCODE_TIMEOUT_S,
    OFF_PRODUCT_URL,
    RETRY_ATTEMPTS,
    RETRY_BACKOFF,
    RETRY_DELAY_MS,
)
from eatwise.models import ProductInfo
from eatwise.retry import with_retry

logger = logging.getLogger(__name__)


async def _fetch(barcode: str) -> Optional[dict]:
    url = f"{OFF_PRODUCT_URL}/{barcode}.json"
    async with httpx.AsyncClient(timeout=BARCODE_TIMEOUT_S) as client:
        response = await client.get(url, headers={"User-Agent": "EatWise/1.0"})
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()


async def fetch_product_by_barcode(barcode: str) -> Optional[ProductInfo]:
    """
    Look up a product by barcode.

    Returns None when the product is unknown. Transport errors propagate after
    retries.
    """
    barcode = barcode.strip()
    if not barcode:
        return None

    data = await with_retry(
        lambda: _fetch(barcode),
        retries=RETRY_ATTEMPTS,
        delay=RETRY_DELAY_MS / 1000,
        backoff=RETRY_BACKOFF,
        label="barcode",
    )
    if not isinstance(data, dict) or data.get("status") != 1:
        logger.info(f"[BARCODE] {barcode} not found")
        return None

    product = data.get("product") or {}
    name = product.get("product_name") or product.get("generic_name") or "Unknown product"
    ingredients_text = product.get("ingredients_text_en") or product.get("ingredients_text") or ""
    logger.info(f"[BARCODE] {barcode} → {name!r}")
    return ProductInfo(product_name=str(name), ingredients_text=str(ingredients_text))
