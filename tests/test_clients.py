"""
Outbound client tests: chat completion wrapper, barcode lookup, neural search.

No network: the SDK client and HTTP fetches are replaced with mocks.

Usage:
  pytest tests/test_clients.py -v
"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from app.llm_service import chat_completion
from app.product_lookup import fetch_product_by_barcode
from app.search_client import SearchUnavailableError, neural_search, search_enabled


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def fake_client(create):
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


class RateLimited(Exception):
    status_code = 429


# ── chat_completion ────────────────────────────────────────────────────

class TestChatCompletion:
    def test_passes_options(self):
        create = AsyncMock(return_value=completion('{"ok": true}'))
        with patch("app.llm_service.get_llm_client", return_value=fake_client(create)):
            content = asyncio.run(chat_completion(
                [{"role": "user", "content": "hi"}],
                model="vision-model",
                temperature=0,
                max_tokens=50,
                json_mode=True,
            ))

        assert content == '{"ok": true}'
        kwargs = create.await_args.kwargs
        assert kwargs["model"] == "vision-model"
        assert kwargs["temperature"] == 0
        assert kwargs["max_tokens"] == 50
        assert kwargs["response_format"] == {"type": "json_object"}

    def test_defaults(self):
        create = AsyncMock(return_value=completion(None))
        with patch("app.llm_service.get_llm_client", return_value=fake_client(create)):
            content = asyncio.run(chat_completion([{"role": "user", "content": "hi"}]))

        assert content == ""
        kwargs = create.await_args.kwargs
        assert "max_tokens" not in kwargs
        assert "response_format" not in kwargs

    def test_no_choices(self):
        create = AsyncMock(return_value=SimpleNamespace(choices=[]))
        with patch("app.llm_service.get_llm_client", return_value=fake_client(create)):
            assert asyncio.run(chat_completion([])) == ""

    def test_rate_limit_retried(self):
        create = AsyncMock(side_effect=[RateLimited("slow down"), completion("done")])
        with patch("app.llm_service.get_llm_client", return_value=fake_client(create)):
            assert asyncio.run(chat_completion([])) == "done"
        assert create.await_count == 2


# ── Barcode lookup ─────────────────────────────────────────────────────

class TestBarcodeLookup:
    def run_lookup(self, barcode, data):
        fetch = AsyncMock(return_value=data)
        with patch("app.product_lookup._fetch", new=fetch):
            return asyncio.run(fetch_product_by_barcode(barcode)), fetch

    def test_found(self):
        product, fetch = self.run_lookup(" 4001 ", {
            "status": 1,
            "product": {
                "product_name": "Choco Bar",
                "ingredients_text": "Zucker, Kakao",
                "ingredients_text_en": "Sugar, Cocoa",
            },
        })
        fetch.assert_awaited_once_with("4001")
        assert product.product_name == "Choco Bar"
        assert product.ingredients_text == "Sugar, Cocoa"

    def test_not_found(self):
        product, _ = self.run_lookup("4001", {"status": 0, "status_verbose": "product not found"})
        assert product is None

    def test_missing_fields(self):
        product, _ = self.run_lookup("4001", {"status": 1, "product": {}})
        assert product.product_name == "Unknown product"
        assert product.ingredients_text == ""

    def test_unknown_on_404(self):
        product, _ = self.run_lookup("4001", None)
        assert product is None

    def test_blank_barcode(self):
        product, fetch = self.run_lookup("   ", {})
        assert product is None
        fetch.assert_not_awaited()


# ── Neural search ──────────────────────────────────────────────────────

class TestNeuralSearch:
    def test_disabled_without_key(self):
        assert search_enabled() is False
        with pytest.raises(SearchUnavailableError):
            asyncio.run(neural_search("q", 3, "s", "h"))
