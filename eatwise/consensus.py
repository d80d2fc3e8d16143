"""
Research planning and evidence reduction.

Pure functions over the research models: which ingredients to research and how
deeply, how to judge the combined evidence, and which conflicts to surface as
neutral trade-offs. No I/O; the research service drives these.
"""
from __future__ import annotations
import logging
from typing import Dict, List, Optional, Tuple

from eatwise.models import (
    RISK_PRIORITY,
    ConfidenceLevel,
    ConflictType,
    ConflictVerdict,
    ConsensusStatus,
    GroundedResearch,
    IngredientResearch,
    RiskAssessment,
    RiskLevel,
    SafetyStance,
    SourceClaim,
    TradeOffContext,
    TradeOffPosition,
)

logger = logging.getLogger(__name__)

ALL_INGREDIENTS_CUTOFF = 5       # Without a risk assessment, research everything up to this count
CLEAR_CONSENSUS_THRESHOLD = 0.7
MIN_CLAIMS_FOR_CONSENSUS = 2
MAX_TRADE_OFF_POSITIONS = 4
RATIONALE_MAX_CHARS = 200
DEFAULT_CONFLICT_SUMMARY = "Conflicting positions detected"


# ── Planning ───────────────────────────────────────────────────────────

def select_research_set(
    ingredients: List[str],
    risk_assessment: Optional[RiskAssessment],
) -> List[str]:
    """The risk assessment's picks if present, else every ingredient when there are few."""
    if risk_assessment is not None:
        candidates = risk_assessment.ingredients_to_research
    elif len(ingredients) <= ALL_INGREDIENTS_CUTOFF:
        candidates = ingredients
    else:
        candidates = []

    seen = set()
    selected = []
    for ingredient in candidates:
        if ingredient and ingredient not in seen:
            seen.add(ingredient)
            selected.append(ingredient)
    return selected


def risk_levels_for(
    ingredients: List[str],
    risk_assessment: Optional[RiskAssessment],
) -> Dict[str, RiskLevel]:
    """Exact-string lookup into the risk details; unknown ingredients get STANDARD_REVIEW."""
    details = risk_assessment.risk_details if risk_assessment else {}
    return {
        ing: details[ing].risk_level if ing in details else RiskLevel.STANDARD_REVIEW
        for ing in ingredients
    }


def sort_by_risk(ingredients: List[str], risk_levels: Dict[str, RiskLevel]) -> List[str]:
    """Highest scrutiny first; ties keep their original order."""
    return sorted(
        ingredients,
        key=lambda ing: -RISK_PRIORITY[risk_levels.get(ing, RiskLevel.STANDARD_REVIEW)],
    )


def research_depth(count: int, has_high_risk: bool) -> Tuple[int, int]:
    """
    (max ingredients, results per ingredient) for a research set of ``count``.

    Few ingredients get more sources each; many ingredients trade depth for
    breadth, capped at 3 (4 when something is high risk).
    """
    if count <= 2:
        return 2, (4 if has_high_risk else 3)
    if count <= 4:
        return 3, 3
    return (4 if has_high_risk else 3), 2


def needs_secondary_search(risk_level: RiskLevel, claim_count: int) -> bool:
    return risk_level in (RiskLevel.HIGH_SCRUTINY, RiskLevel.MODERATE_SCRUTINY) and claim_count < 3


# ── Reduction ──────────────────────────────────────────────────────────

def has_unresolved_conflict(research: IngredientResearch) -> bool:
    """A detected conflict with at least one source taking a definite stance."""
    return research.conflict_detected and any(
        c.stance != SafetyStance.UNDER_REVIEW for c in research.claims
    )


def assess_ambiguity(claims: List[SourceClaim], conflict: ConflictVerdict) -> ConfidenceLevel:
    if conflict.detected:
        return ConfidenceLevel.HIGH
    if len(claims) >= 3 and conflict.confidence >= CLEAR_CONSENSUS_THRESHOLD:
        return ConfidenceLevel.LOW
    return ConfidenceLevel.MEDIUM


def build_ingredient_research(
    ingredient: str,
    risk_level: RiskLevel,
    claims: List[SourceClaim],
    conflict: ConflictVerdict,
) -> IngredientResearch:
    return IngredientResearch(
        ingredient=ingredient,
        risk_level=risk_level,
        claims=claims,
        conflict_detected=conflict.detected,
        conflict_type=conflict.type,
        conflict_summary=conflict.summary,
        confidence_score=conflict.confidence,
        ambiguity_level=assess_ambiguity(claims, conflict),
    )


def summarize_research(
    results: List[IngredientResearch],
    warnings: List[str],
) -> GroundedResearch:
    """Fold per-ingredient results into the grounded research record."""
    unresolved = [
        f"{r.ingredient}: {r.conflict_summary or DEFAULT_CONFLICT_SUMMARY}"
        for r in results
        if has_unresolved_conflict(r)
    ]
    if results:
        overall = sum(r.confidence_score for r in results) / len(results)
    else:
        overall = 0.5
    return GroundedResearch(
        ingredient_research=results,
        overall_confidence=overall,
        unresolved_conflicts=unresolved,
        data_quality_warnings=list(warnings),
    )


def total_claims(research: GroundedResearch) -> int:
    return sum(len(r.claims) for r in research.ingredient_research)


def determine_consensus_status(research: GroundedResearch) -> ConsensusStatus:
    if not research.ingredient_research:
        return ConsensusStatus.INSUFFICIENT_DATA
    if total_claims(research) < MIN_CLAIMS_FOR_CONSENSUS:
        return ConsensusStatus.INSUFFICIENT_DATA
    if any(has_unresolved_conflict(r) for r in research.ingredient_research):
        return ConsensusStatus.CONFLICTING_EVIDENCE
    if research.overall_confidence >= CLEAR_CONSENSUS_THRESHOLD:
        return ConsensusStatus.CLEAR_CONSENSUS
    return ConsensusStatus.INSUFFICIENT_DATA


def extract_trade_offs(research: GroundedResearch) -> List[TradeOffContext]:
    """One neutral trade-off per unresolved conflict, with up to four positions."""
    trade_offs = []
    for r in research.ingredient_research:
        if not has_unresolved_conflict(r):
            continue
        positions = [
            TradeOffPosition(
                source=c.source,
                credibility=c.credibility,
                region=c.region,
                stance=c.stance,
                rationale=c.claim[:RATIONALE_MAX_CHARS],
            )
            for c in r.claims
            if c.stance != SafetyStance.UNDER_REVIEW
        ][:MAX_TRADE_OFF_POSITIONS]
        trade_offs.append(TradeOffContext(
            ingredient=r.ingredient,
            conflict_type=r.conflict_type or ConflictType.SCIENTIFIC,
            summary=r.conflict_summary or DEFAULT_CONFLICT_SUMMARY,
            positions=positions,
            user_guidance=f"Conflicting evidence detected for {r.ingredient}. See positions below.",
        ))
    return trade_offs
