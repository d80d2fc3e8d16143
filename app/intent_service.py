"""
Intent stage: infer what the shopper cares about.

Combines the current product with the session's recent scans to produce a
persona, a bias sentence for the analysis, and a per-ingredient risk triage
that decides what the research stage looks into.
"""
import logging
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.clients import HISTORY_READ_LIMIT
from app.llm_service import chat_completion
from app.prompt_builder import INTENT_SYSTEM_PROMPT, build_intent_prompt
from eatwise.coercion import (
    closest_enum,
    coerce_bool,
    coerce_str,
    coerce_str_list,
    parse_json_object,
)
from eatwise.models import (
    ConfidenceLevel,
    IntentProfile,
    RiskAssessment,
    RiskDetail,
    RiskLevel,
    ScanHistoryEntry,
)

logger = logging.getLogger(__name__)

DEFAULT_PERSONA = "General Health"
DEFAULT_CONTEXT_BIAS = "Provide balanced nutritional analysis."
NO_CONTEXT_BIAS = "No specific user context available. Provide balanced nutritional analysis."
PERSONA_FROM_TEXT_CHARS = 30
_PERSONA_FIELD = re.compile(r'"persona"\s*:\s*"([^"]+)"')


def extract_history_patterns(history: List[ScanHistoryEntry]) -> Dict[str, Any]:
    """
    Aggregate the most recent scans.

    Returns recent product names, recent intents, and the dominant intent
    (most frequent, seen at least twice) or None.
    """
    recent = history[:HISTORY_READ_LIMIT]
    recent_products = [h.product_name for h in recent if h.product_name]
    recent_intents = [h.user_intent for h in recent if h.user_intent]

    dominant = None
    if recent_intents:
        intent, count = Counter(recent_intents).most_common(1)[0]
        if count >= 2:
            dominant = intent

    return {
        "recent_products": recent_products,
        "recent_intents": recent_intents,
        "dominant_intent": dominant,
    }


def parse_risk_assessment(raw: Any, ingredients: List[str]) -> Optional[RiskAssessment]:
    """Coerce the riskAssessment block. Keys are kept verbatim; lookups downstream are exact."""
    if not isinstance(raw, dict):
        return None

    details: Dict[str, RiskDetail] = {}
    raw_details = raw.get("riskDetails")
    if isinstance(raw_details, dict):
        for key, value in raw_details.items():
            value = value if isinstance(value, dict) else {}
            details[str(key)] = RiskDetail(
                risk_level=closest_enum(value.get("riskLevel"), RiskLevel, RiskLevel.STANDARD_REVIEW),
                reasoning=coerce_str(value.get("reasoning")),
                requires_deep_research=coerce_bool(value.get("requiresDeepResearch"), False),
            )

    to_research = []
    for item in coerce_str_list(raw.get("ingredientsToResearch")):
        if item not in to_research:
            to_research.append(item)

    known = set(ingredients)
    unmatched = [k for k in list(details) + to_research if k not in known]
    if unmatched:
        logger.warning(f"[INTENT] Risk keys not matching any input ingredient: {unmatched}")

    return RiskAssessment(ingredients_to_research=to_research, risk_details=details)


def persona_from_text(content: str) -> str:
    """Best-effort persona from output that is not valid JSON, e.g. JSON cut off at the token limit."""
    match = _PERSONA_FIELD.search(content)
    if match and match.group(1).strip():
        return match.group(1).strip()
    text = content.strip()
    if text.startswith(("{", "```")):
        return DEFAULT_PERSONA
    return text[:PERSONA_FROM_TEXT_CHARS].strip() or DEFAULT_PERSONA


async def infer_intent(
    ingredients: List[str],
    product_type: Optional[str] = None,
    scan_location: Optional[str] = None,
    history: Optional[List[ScanHistoryEntry]] = None,
    current_time: Optional[str] = None,
) -> IntentProfile:
    """
    Infer the user's intent for this scan.

    Never raises for content reasons: empty or unparseable model output yields
    a low-confidence default profile. Transport errors propagate after retries.
    """
    history = history or []
    patterns = extract_history_patterns(history)
    has_history = bool(patterns["recent_products"])
    now = current_time or datetime.now(timezone.utc).isoformat()

    prompt = build_intent_prompt(
        now,
        ingredients,
        product_type or "Unknown product",
        scan_location,
        patterns,
    )
    content = await chat_completion(
        [
            {"role": "system", "content": INTENT_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        temperature=0.4,
        max_tokens=200,
        json_mode=True,
        label="intent",
    )

    if not content.strip():
        logger.warning("[INTENT] Empty response, using default profile")
        return IntentProfile(
            persona=DEFAULT_PERSONA,
            context_bias=NO_CONTEXT_BIAS,
            confidence=ConfidenceLevel.LOW,
            history_influenced=False,
        )

    parsed = parse_json_object(content)
    if parsed is None:
        persona = persona_from_text(content)
        logger.warning(f"[INTENT] Unparseable response, persona from raw text: {persona!r}")
        return IntentProfile(
            persona=persona,
            context_bias=DEFAULT_CONTEXT_BIAS,
            confidence=ConfidenceLevel.LOW,
            history_influenced=False,
        )

    confidence = closest_enum(parsed.get("confidence"), ConfidenceLevel, ConfidenceLevel.MEDIUM)
    profile = IntentProfile(
        persona=coerce_str(parsed.get("persona")).strip() or DEFAULT_PERSONA,
        context_bias=coerce_str(parsed.get("userContextBias")).strip() or DEFAULT_CONTEXT_BIAS,
        confidence=confidence,
        history_influenced=has_history and confidence != ConfidenceLevel.LOW,
        reasoning=coerce_str(parsed.get("reasoning")).strip() or None,
        risk_assessment=parse_risk_assessment(parsed.get("riskAssessment"), ingredients),
    )
    logger.info(
        f"[INTENT] persona={profile.persona!r} confidence={profile.confidence.value} "
        f"history_influenced={profile.history_influenced}"
    )
    return profile
