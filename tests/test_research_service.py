"""
Research stage tests with search and model calls mocked.

Usage:
  pytest tests/test_research_service.py -v
"""
import asyncio
import json
from contextlib import ExitStack
from unittest.mock import AsyncMock, patch

import pytest

from app.research_service import (
    EMPTY_ANALYSIS,
    NO_SEARCH_KEY_WARNING,
    RESEARCH_TIMEOUT_WARNING,
    parse_source_analysis,
    perform_grounded_research,
    research_ingredients,
    to_documents,
)
from eatwise.formatter import NEUTRALITY_NOTE
from eatwise.models import (
    ConflictType,
    ConsensusStatus,
    Region,
    RiskAssessment,
    RiskDetail,
    RiskLevel,
    SafetyStance,
    SourceCredibility,
)

SEARCH_RESULTS = [
    {"title": "FDA Color Additives", "url": "https://fda.example/e171", "summary": "Permitted in foods."},
    {"title": "EFSA Opinion", "url": "https://efsa.example/e171", "summary": "No longer considered safe."},
]

CONFLICTING_ANALYSIS = {
    "claims": {
        "0": {"sourceCredibility": "REGULATORY_AUTHORITY", "claim": "Permitted as a color additive.",
              "stance": "APPROVED", "region": "UNITED_STATES", "confidence": 0.9},
        "1": {"sourceCredibility": "REGULATORY_AUTHORITY", "claim": "Not considered safe since 2022.",
              "stance": "PROHIBITED", "region": "EUROPEAN_UNION", "confidence": 0.9},
    },
    "conflict": {"detected": True, "type": "REGIONAL", "summary": "US permits it, EU bans it", "confidence": 0.85},
}


def fake_llm(source_analysis=None, analysis="Balanced analysis of the ingredients."):
    """Answers by call label: source analysis JSON or the final analysis text."""
    async def answer(messages, **kwargs):
        if kwargs.get("label") == "source-analysis":
            return json.dumps(source_analysis or {"claims": {}, "conflict": {"detected": False}})
        return analysis
    return AsyncMock(side_effect=answer)


def run_research(ingredients, llm, search=None, risk_assessment=None, enabled=True, persona="Parent", **overrides):
    with ExitStack() as stack:
        stack.enter_context(patch("app.research_service.search_enabled", return_value=enabled))
        stack.enter_context(patch("app.research_service.search_sources", new=search or AsyncMock(return_value=[])))
        stack.enter_context(patch("app.research_service.chat_completion", new=llm))
        if overrides:
            stack.enter_context(patch.multiple("app.research_service", **overrides))
        return asyncio.run(research_ingredients(ingredients, persona, risk_assessment, "Focus on children."))


# ── Parsing helpers ────────────────────────────────────────────────────

class TestParsing:
    def test_documents_prefer_summary(self):
        docs = to_documents([
            {"title": "A", "url": "u1", "summary": "sum", "highlights": ["h"], "text": "t"},
            {"title": "B", "url": "u2", "highlights": ["h1", "h2"], "text": "t"},
            {"title": "C", "url": "u3", "text": "body", "publishedDate": "2023-05-01"},
        ])
        assert [d["content"] for d in docs] == ["sum", "h1 h2", "body"]
        assert docs[2]["published_date"] == "2023-05-01"
        assert docs[0]["published_date"] is None

    def test_claims_mapped_by_index(self):
        docs = to_documents(SEARCH_RESULTS)
        analysis = parse_source_analysis({
            "claims": [
                {"sourceCredibility": "peer reviewed", "stance": "caution", "region": "EU"},
                {"stance": "APPROVED"},
                {"stance": "APPROVED"},
            ],
            "conflict": {"detected": "yes", "type": "regional differences", "confidence": "0.8"},
        }, docs)

        assert len(analysis.claims) == 2
        first = analysis.claims[0]
        assert first.source == "FDA Color Additives"
        assert first.source_url == "https://fda.example/e171"
        assert first.credibility == SourceCredibility.PEER_REVIEWED_RESEARCH
        assert first.stance == SafetyStance.CAUTION_ADVISED
        assert first.claim == "Permitted in foods."
        assert analysis.conflict.detected is True
        assert analysis.conflict.type == ConflictType.REGIONAL
        assert analysis.conflict.confidence == pytest.approx(0.8)

    def test_missing_conflict_block(self):
        analysis = parse_source_analysis({"claims": "garbage"}, to_documents(SEARCH_RESULTS))
        assert analysis.claims == []
        assert analysis.conflict.detected is False
        assert analysis.conflict.type is None


# ── research_ingredients ───────────────────────────────────────────────

class TestResearchIngredients:
    def test_without_search_key(self):
        llm = fake_llm(analysis="Sugar is fine in moderation.")
        result = run_research(["sugar", "salt"], llm, enabled=False)

        assert result.consensus_status == ConsensusStatus.INSUFFICIENT_DATA
        assert result.metadata.data_warnings == [NO_SEARCH_KEY_WARNING]
        assert result.metadata.overall_confidence == 50
        assert result.trade_off_contexts == []
        assert result.analysis_text.startswith("Sugar is fine in moderation.")
        assert "[Grounding Metadata]" in result.analysis_text
        assert "Consensus Status: INSUFFICIENT_DATA" in result.analysis_text
        assert llm.await_count == 1

    def test_conflicting_evidence(self):
        llm = fake_llm(
            source_analysis=CONFLICTING_ANALYSIS,
            analysis="The FDA permits E171. You should avoid E171 entirely. The EU withdrew approval.",
        )
        search = AsyncMock(return_value=SEARCH_RESULTS)
        result = run_research(["E171"], llm, search=search)

        assert result.consensus_status == ConsensusStatus.CONFLICTING_EVIDENCE
        assert len(result.trade_off_contexts) == 1
        trade_off = result.trade_off_contexts[0]
        assert trade_off.ingredient == "E171"
        assert {p.region for p in trade_off.positions} == {Region.UNITED_STATES, Region.EUROPEAN_UNION}

        assert "You should avoid" not in result.analysis_text
        assert NEUTRALITY_NOTE in result.analysis_text
        assert "Trade-offs Identified: 1" in result.analysis_text
        assert "Sources Consulted: 2" in result.analysis_text
        assert result.metadata.unresolved_conflicts == ["E171: US permits it, EU bans it"]

        query = search.await_args.args[0]
        assert query == '"E171" Parent health implications'

    def test_secondary_search_for_thin_high_risk_evidence(self):
        one_claim = {
            "claims": {"0": {"stance": "APPROVED", "sourceCredibility": "REGULATORY_AUTHORITY"}},
            "conflict": {"detected": False, "confidence": 0.9},
        }
        llm = fake_llm(source_analysis=one_claim)
        search = AsyncMock(return_value=SEARCH_RESULTS[:1])
        assessment = RiskAssessment(
            ingredients_to_research=["Red 40"],
            risk_details={"Red 40": RiskDetail(risk_level=RiskLevel.HIGH_SCRUTINY)},
        )
        result = run_research(["Red 40", "water"], llm, search=search, risk_assessment=assessment)

        assert search.await_count == 2
        assert "banned OR restricted" in search.await_args_list[1].args[0]
        assert search.await_args_list[0].args[1] == 4
        assert result.metadata.sources_consulted == 2

    def test_search_failure_becomes_warning(self):
        llm = fake_llm()
        search = AsyncMock(side_effect=asyncio.TimeoutError())
        result = run_research(["carrageenan"], llm, search=search)

        assert result.consensus_status == ConsensusStatus.INSUFFICIENT_DATA
        assert result.metadata.data_warnings == ['No external sources found for "carrageenan"']
        assert result.metadata.overall_confidence == 0

    def test_research_set_is_capped(self):
        names = ["a", "b", "c", "d", "e", "f"]
        assessment = RiskAssessment(ingredients_to_research=names)
        search = AsyncMock(return_value=[])
        result = run_research(names, fake_llm(), search=search, risk_assessment=assessment)

        assert search.await_count == 3
        assert "Research limited to 3 of 6 controversial ingredients" in result.metadata.data_warnings

    def test_nothing_selected_for_long_list_without_assessment(self):
        search = AsyncMock(return_value=[])
        result = run_research([f"i{n}" for n in range(8)], fake_llm(), search=search)

        assert search.await_count == 0
        assert result.consensus_status == ConsensusStatus.INSUFFICIENT_DATA

    def test_research_budget_timeout(self):
        async def slow_search(*args):
            await asyncio.sleep(1)
            return SEARCH_RESULTS

        result = run_research(
            ["E171"],
            fake_llm(),
            search=AsyncMock(side_effect=slow_search),
            RESEARCH_TIMEOUT_MS=50,
            TIME_LIMIT_MARGIN_S=0.0,
        )

        assert result.metadata.data_warnings == [RESEARCH_TIMEOUT_WARNING]
        assert result.metadata.overall_confidence == 30
        assert result.consensus_status == ConsensusStatus.INSUFFICIENT_DATA

    def test_time_limit_stops_new_batches(self):
        search = AsyncMock(return_value=[])
        result = run_research(["a", "b"], fake_llm(), search=search, RESEARCH_TIMEOUT_MS=5000)

        assert search.await_count == 0
        assert "Research time limit reached - analyzed 0 of 2 ingredients" in result.metadata.data_warnings

    def test_empty_analysis_text(self):
        result = run_research(["sugar"], fake_llm(analysis="  "), enabled=False)
        assert result.analysis_text.startswith(EMPTY_ANALYSIS)

    def test_empty_regulatory_search_keeps_primary_conflict(self):
        search = AsyncMock(side_effect=[SEARCH_RESULTS, []])
        assessment = RiskAssessment(
            ingredients_to_research=["E171"],
            risk_details={"E171": RiskDetail(risk_level=RiskLevel.HIGH_SCRUTINY)},
        )
        result = run_research(["E171"], fake_llm(source_analysis=CONFLICTING_ANALYSIS),
                              search=search, risk_assessment=assessment)

        assert search.await_count == 2
        assert result.consensus_status == ConsensusStatus.CONFLICTING_EVIDENCE
        assert result.metadata.unresolved_conflicts == ["E171: US permits it, EU bans it"]
        assert result.metadata.overall_confidence == 85
        assert result.trade_off_contexts[0].conflict_type == ConflictType.REGIONAL

    def test_three_ingredients_run_in_two_batches(self):
        events = []
        two_claims = {
            "claims": {
                "0": {"stance": "APPROVED", "sourceCredibility": "REGULATORY_AUTHORITY", "region": "US"},
                "1": {"stance": "CONDITIONALLY_SAFE", "sourceCredibility": "PEER_REVIEWED_RESEARCH"},
            },
            "conflict": {"detected": False, "confidence": 0.8},
        }

        async def search(query, *args):
            events.append(query.split('"')[1])
            return SEARCH_RESULTS

        async def sleep(delay):
            if delay == 0.25:
                events.append("pause")

        with patch("app.research_service.asyncio.sleep", new=AsyncMock(side_effect=sleep)):
            result = run_research(
                ["sugar", "palm oil", "msg"],
                fake_llm(source_analysis=two_claims),
                search=AsyncMock(side_effect=search),
                persona="General Health",
                RESEARCH_BATCH_DELAY_MS=250,
            )

        assert events == ["sugar", "palm oil", "pause", "msg"]
        assert result.metadata.sources_consulted == 6
        assert result.consensus_status == ConsensusStatus.CLEAR_CONSENSUS
        assert result.trade_off_contexts == []

    def test_results_kept_in_ingredient_order(self):
        async def search(query, *args):
            if query.startswith('"sugar"'):
                await asyncio.sleep(0.05)
            return SEARCH_RESULTS[:1]

        one_claim = {"claims": {"0": {"stance": "APPROVED"}}, "conflict": {"detected": False}}
        with ExitStack() as stack:
            stack.enter_context(patch("app.research_service.search_enabled", return_value=True))
            stack.enter_context(patch("app.research_service.search_sources", new=AsyncMock(side_effect=search)))
            stack.enter_context(patch("app.research_service.chat_completion", new=fake_llm(source_analysis=one_claim)))
            grounded = asyncio.run(perform_grounded_research(
                ["sugar", "salt"],
                "General Health",
                {"sugar": RiskLevel.STANDARD_REVIEW, "salt": RiskLevel.STANDARD_REVIEW},
            ))

        assert [r.ingredient for r in grounded.ingredient_research] == ["sugar", "salt"]
