"""
Shared test setup.

Environment is pinned before any app module is imported: no real API keys,
no search, no sqlite file, and no pacing delays between stages.
"""
import os
import sys
from pathlib import Path

os.environ["OPENAI_API_KEY"] = "test-key"
os.environ["EXA_API_KEY"] = ""
os.environ["HISTORY_DB_PATH"] = ""
os.environ["STAGE_PACING_MS"] = "0"
os.environ["RESEARCH_BATCH_DELAY_MS"] = "0"
os.environ["RETRY_DELAY_MS"] = "0"
os.environ["LLM_MIN_INTERVAL_MS"] = "0"

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from eatwise.models import (
    ConflictType,
    ConflictVerdict,
    IngredientResearch,
    Region,
    RiskLevel,
    SafetyStance,
    SourceClaim,
    SourceCredibility,
)


def make_claim(source="FDA", stance=SafetyStance.APPROVED, region=Region.UNITED_STATES,
               credibility=SourceCredibility.REGULATORY_AUTHORITY, claim="Considered safe at normal intake."):
    return SourceClaim(
        source=source,
        source_url=f"https://example.org/{source.lower()}",
        credibility=credibility,
        claim=claim,
        stance=stance,
        region=region,
        classification_confidence=0.8,
    )


def make_research(ingredient, claims, conflict=False, confidence=0.8,
                  conflict_type=ConflictType.REGIONAL, summary="FDA and EFSA disagree"):
    return IngredientResearch(
        ingredient=ingredient,
        risk_level=RiskLevel.HIGH_SCRUTINY,
        claims=claims,
        conflict_detected=conflict,
        conflict_type=conflict_type if conflict else None,
        conflict_summary=summary if conflict else None,
        confidence_score=confidence,
    )


@pytest.fixture
def conflicting_claims():
    return [
        make_claim("FDA", SafetyStance.APPROVED, Region.UNITED_STATES),
        make_claim("EFSA", SafetyStance.PROHIBITED, Region.EUROPEAN_UNION,
                   claim="No longer considered safe as a food additive."),
        make_claim("Blog", SafetyStance.UNDER_REVIEW, Region.UNSPECIFIED, SourceCredibility.GENERAL_WEB),
    ]


@pytest.fixture
def no_conflict_verdict():
    return ConflictVerdict(detected=False, confidence=0.8)
