"""
Vision stage: product label image → ingredients, or a conversational failure.

One vision call extracts raw label data. Confident extractions are accepted
directly; everything else goes through a secondary quality assessment. Unusable
scans become a VisionFailure carrying a message and follow-up options for the
user instead of an error.
"""
import logging
from typing import Any, Dict, List, Union

from app.clients import VISION_MODEL
from app.image_handler import to_image_url
from app.llm_service import chat_completion
from app.prompt_builder import (
    CONVERSATION_PROMPT_SYSTEM,
    EXTRACTION_ASSESSMENT_PROMPT,
    VISION_EXTRACTION_PROMPT,
    VISION_USER_INSTRUCTION,
    build_assessment_prompt,
    build_conversation_prompt,
)
from eatwise.coercion import (
    closest_enum,
    coerce_bool,
    coerce_number,
    coerce_optional_bool,
    coerce_str,
    coerce_str_list,
    parse_json_object,
)
from eatwise.ingredients import normalize_ingredients
from eatwise.models import (
    ConfidenceLevel,
    ExtractionAssessment,
    FailureReason,
    RawExtraction,
    VisionFailure,
    VisionOutcome,
    VisionSuccess,
)

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_THRESHOLD = 0.7
HIGH_CONFIDENCE_MIN_INGREDIENTS = 3
FALLBACK_MIN_INGREDIENTS = 2
SUGGESTION_COUNT = 3

DEFAULT_SUGGESTIONS = [
    "Take a clearer photo of the label",
    "Scan the barcode instead",
    "Tell me what product this is",
]


def _coerce_nutrition(value: Any) -> Dict[str, Union[float, str]]:
    if not isinstance(value, dict):
        return {}
    nutrition: Dict[str, Union[float, str]] = {}
    for key, item in value.items():
        if isinstance(item, bool) or item is None:
            continue
        if isinstance(item, (int, float)):
            nutrition[str(key)] = float(item)
        else:
            text = coerce_str(item).strip()
            if text:
                nutrition[str(key)] = text
    return nutrition


def parse_raw_extraction(parsed: Dict[str, Any]) -> RawExtraction:
    """Coerce the vision model's JSON into a RawExtraction."""
    confidence = parsed.get("confidence")
    issues = coerce_str(parsed.get("issues")).strip() or None
    return RawExtraction(
        ingredients=normalize_ingredients(coerce_str_list(parsed.get("ingredients"))),
        nutrition=_coerce_nutrition(parsed.get("nutrition")),
        is_readable=coerce_optional_bool(parsed.get("isReadable")),
        issues=issues,
        confidence=coerce_number(confidence, 0.0) if confidence is not None else None,
        product_type=coerce_str(parsed.get("productType")).strip() or None,
        visible_elements=coerce_str_list(parsed.get("visibleElements")),
        extraction_notes=coerce_str(parsed.get("extractionNotes")).strip() or None,
    )


def is_high_confidence(raw: RawExtraction) -> bool:
    return (
        raw.is_readable is True
        and len(raw.ingredients) >= HIGH_CONFIDENCE_MIN_INGREDIENTS
        and (raw.confidence or 0.0) > HIGH_CONFIDENCE_THRESHOLD
    )


def conservative_assessment(raw: RawExtraction) -> ExtractionAssessment:
    """Assessment derived from raw data alone, used when the assessment call fails."""
    if raw.is_readable is False:
        reason = FailureReason.UNREADABLE_TEXT
    elif not raw.ingredients:
        reason = FailureReason.NO_LABEL_DETECTED
    else:
        reason = FailureReason.LOW_CONFIDENCE
    usable = len(raw.ingredients) >= FALLBACK_MIN_INGREDIENTS and raw.is_readable is not False
    return ExtractionAssessment(
        confidence=raw.confidence if raw.confidence is not None else 0.3,
        quality=ConfidenceLevel.LOW,
        is_usable=usable,
        failure_reason=FailureReason.NONE if usable else reason,
        reasoning="Assessment unavailable; conservative defaults from raw data",
    )


async def assess_extraction(raw: RawExtraction) -> ExtractionAssessment:
    try:
        content = await chat_completion(
            [
                {"role": "system", "content": EXTRACTION_ASSESSMENT_PROMPT},
                {"role": "user", "content": build_assessment_prompt(raw)},
            ],
            temperature=0.2,
            max_tokens=300,
            json_mode=True,
            label="vision-assessment",
        )
    except Exception as e:
        logger.warning(f"[VISION] Assessment call failed, using conservative fallback: {e}")
        return conservative_assessment(raw)

    parsed = parse_json_object(content)
    if parsed is None:
        logger.warning("[VISION] Assessment response unparseable, using conservative fallback")
        return conservative_assessment(raw)

    return ExtractionAssessment(
        confidence=coerce_number(parsed.get("confidence"), 0.5),
        quality=closest_enum(parsed.get("extractionQuality"), ConfidenceLevel, ConfidenceLevel.MEDIUM),
        is_usable=coerce_bool(parsed.get("isUsable"), True),
        failure_reason=closest_enum(parsed.get("failureReason"), FailureReason, FailureReason.NONE),
        reasoning=coerce_str(parsed.get("reasoning"), "Assessment completed"),
    )


def _three_suggestions(proposed: List[str]) -> List[str]:
    suggestions = [s for s in proposed if s][:SUGGESTION_COUNT]
    for default in DEFAULT_SUGGESTIONS:
        if len(suggestions) >= SUGGESTION_COUNT:
            break
        if default not in suggestions:
            suggestions.append(default)
    return suggestions


async def generate_conversation_prompt(raw: RawExtraction, reason: FailureReason) -> Dict[str, Any]:
    """Message + exactly three follow-up options for a failed scan."""
    fallback = {
        "message": (
            f"I couldn't fully process this {raw.product_type or 'product'} image. "
            "Would you like to try a different approach?"
        ),
        "suggested_questions": list(DEFAULT_SUGGESTIONS),
    }
    try:
        content = await chat_completion(
            [
                {"role": "system", "content": CONVERSATION_PROMPT_SYSTEM},
                {"role": "user", "content": build_conversation_prompt(raw, reason)},
            ],
            temperature=0.6,
            max_tokens=250,
            json_mode=True,
            label="vision-conversation",
        )
    except Exception as e:
        logger.warning(f"[VISION] Conversation prompt call failed: {e}")
        return fallback

    parsed = parse_json_object(content)
    if parsed is None:
        return fallback

    message = coerce_str(parsed.get("message")).strip()
    return {
        "message": message or fallback["message"],
        "suggested_questions": _three_suggestions(coerce_str_list(parsed.get("suggestedQuestions"))),
    }


async def build_failure(
    raw: RawExtraction,
    reason: FailureReason,
    confidence: float,
) -> VisionFailure:
    if reason == FailureReason.NONE:
        reason = FailureReason.PROCESSING_ERROR
    prompt = await generate_conversation_prompt(raw, reason)
    logger.info(f"[VISION] Scan failed: reason={reason.value} confidence={confidence:.2f}")
    return VisionFailure(
        reason=reason,
        message=prompt["message"],
        suggested_questions=prompt["suggested_questions"],
        product_type_guess=raw.product_type,
        visible_elements=raw.visible_elements,
        confidence=max(0.0, min(1.0, confidence)),
    )


async def analyze_product_image(image: Union[str, bytes]) -> VisionOutcome:
    """
    Extract ingredients from a product image.

    Args:
        image: Raw bytes, base64, data URL, or http(s) URL

    Returns:
        VisionSuccess or VisionFailure. Only transport errors (after retries)
        and invalid image payloads raise.
    """
    image_url = to_image_url(image)

    content = await chat_completion(
        [
            {"role": "system", "content": VISION_EXTRACTION_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": VISION_USER_INSTRUCTION},
                    {"type": "image_url", "image_url": {"url": image_url}},
                ],
            },
        ],
        model=VISION_MODEL,
        temperature=0,
        json_mode=True,
        label="vision",
    )

    if not content.strip():
        logger.warning("[VISION] Empty response from vision model")
        return await build_failure(RawExtraction(), FailureReason.PROCESSING_ERROR, 0.0)

    parsed = parse_json_object(content)
    if parsed is None:
        logger.warning("[VISION] Vision response was not a JSON object")
        raw = RawExtraction(issues="Could not parse vision response")
        return await build_failure(raw, FailureReason.PROCESSING_ERROR, 0.0)

    raw = parse_raw_extraction(parsed)
    logger.info(
        f"[VISION] Extracted {len(raw.ingredients)} ingredients "
        f"(readable={raw.is_readable}, confidence={raw.confidence})"
    )

    if is_high_confidence(raw):
        assessment = ExtractionAssessment(
            confidence=raw.confidence or 0.8,
            quality=ConfidenceLevel.HIGH,
            is_usable=True,
            failure_reason=FailureReason.NONE,
            reasoning="High-confidence extraction, secondary assessment skipped",
        )
    else:
        assessment = await assess_extraction(raw)

    if not raw.ingredients and assessment.is_usable and assessment.failure_reason == FailureReason.NONE:
        assessment = assessment.model_copy(update={
            "is_usable": False,
            "failure_reason": FailureReason.NO_LABEL_DETECTED,
        })

    if not assessment.is_usable or assessment.failure_reason != FailureReason.NONE:
        return await build_failure(raw, assessment.failure_reason, assessment.confidence)

    return VisionSuccess(
        ingredients=raw.ingredients,
        nutrition=raw.nutrition,
        confidence=assessment.confidence,
        quality=assessment.quality,
        product_type=raw.product_type,
        issues=raw.issues,
    )
