"""
Helpers for the dynamic UI payload.

Structural prop-type inference, component normalization, schema coverage
checks and the static responses used when generation cannot be trusted.
"""
from __future__ import annotations
import json
import re
from typing import Any, Dict, List, Optional

from eatwise.coercion import closest_enum, coerce_number, coerce_str, coerce_str_list
from eatwise.models import (
    ComponentInstance,
    ComponentMetadata,
    ComponentSchema,
    ComponentVariant,
    DynamicUIResponse,
    LayoutHints,
    PropDefinition,
    TradeOffContext,
    UIPropType,
    UISchema,
    VisionFailure,
)

HEALTH_SCORE_KEYS = ("score", "healthScore", "safetyScore", "overallScore", "rating")
FALLBACK_CONFIDENCE = 0.3
TRADE_OFF_COMPONENT = "TradeOffComparison"

_SEVERITY_WORDS = {"low", "medium", "high", "critical", "info", "warning", "safe", "danger", "caution"}
_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")


# ── Prop types ─────────────────────────────────────────────────────────

def heuristic_prop_type(name: str, value: Any) -> UIPropType:
    """Guess a prop type from the value's shape. Numbers in 0..100 read as percentages."""
    if isinstance(value, bool):
        return UIPropType.BOOLEAN
    if isinstance(value, (int, float)):
        if 0 <= value <= 100:
            return UIPropType.PERCENTAGE
        return UIPropType.NUMBER
    if isinstance(value, list):
        if value and isinstance(value[0], dict) and "key" in value[0]:
            return UIPropType.KEY_VALUE
        return UIPropType.LIST
    if isinstance(value, dict):
        return UIPropType.KEY_VALUE
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.startswith(("http://", "https://")):
            return UIPropType.URL
        if _HEX_COLOR.match(stripped):
            return UIPropType.COLOR
        if _ISO_DATE.match(stripped):
            return UIPropType.DATE
        if stripped.lower() in _SEVERITY_WORDS and "severity" in name.lower():
            return UIPropType.SEVERITY
    return UIPropType.TEXT


def infer_prop_types_heuristic(props: Dict[str, Any]) -> Dict[str, UIPropType]:
    return {name: heuristic_prop_type(name, value) for name, value in props.items()}


def coerce_prop_types(raw: Any, props: Dict[str, Any]) -> Dict[str, UIPropType]:
    """
    Merge model-proposed prop types with the heuristic.

    Every prop present in ``props`` gets a type; model labels are fuzzy-matched
    onto UIPropType and the heuristic fills whatever is missing or unrecognised.
    """
    proposed = raw if isinstance(raw, dict) else {}
    types = {}
    for name, value in props.items():
        fallback = heuristic_prop_type(name, value)
        types[name] = closest_enum(proposed.get(name), UIPropType, fallback)
    return types


def build_component_schema(
    name: str,
    prop_types: Dict[str, UIPropType],
    description: Optional[str] = None,
) -> ComponentSchema:
    return ComponentSchema(
        name=name,
        description=description or f"Auto-generated schema for {name}",
        required_props=[
            PropDefinition(name=prop, type=prop_type, description=f"{prop} ({prop_type.value})")
            for prop, prop_type in prop_types.items()
        ],
    )


# ── Components ─────────────────────────────────────────────────────────

def flatten_props(props: Dict[str, Any]) -> Dict[str, Any]:
    """Nested objects become JSON strings; lists and scalars pass through."""
    return {
        key: json.dumps(value, ensure_ascii=False) if isinstance(value, dict) else value
        for key, value in props.items()
    }


def normalize_component(raw: Any, index: int, intent: str) -> ComponentInstance:
    """Coerce one loosely-shaped component into a valid instance."""
    data = raw if isinstance(raw, dict) else {}

    name = data.get("component")
    if not isinstance(name, str) or not name.strip():
        name = f"Component{index}"

    props = data.get("props")
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}

    return ComponentInstance(
        component=name.strip(),
        variant=closest_enum(data.get("variant"), ComponentVariant, ComponentVariant.CARD),
        priority=int(round(coerce_number(data.get("priority"), index + 1, 1, 10))),
        props=flatten_props(props) if isinstance(props, dict) else {},
        metadata=ComponentMetadata(
            intent=coerce_str(metadata.get("intent"), intent) or intent,
            confidence=coerce_number(metadata.get("confidence"), 0.5),
            sources=coerce_str_list(metadata.get("sources")),
        ),
    )


def raw_component_props(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict) and isinstance(raw.get("props"), dict):
        return raw["props"]
    return {}


def first_instances_by_name(raw_components: List[Any]) -> Dict[str, Any]:
    """First raw component seen for each distinct name, in order."""
    firsts: Dict[str, Any] = {}
    for i, raw in enumerate(raw_components):
        name = raw.get("component") if isinstance(raw, dict) else None
        if not isinstance(name, str) or not name.strip():
            name = f"Component{i}"
        firsts.setdefault(name.strip(), raw)
    return firsts


def missing_schema_components(response: DynamicUIResponse) -> List[ComponentInstance]:
    """First instance of each component whose name has no schema entry."""
    known = {s.name for s in response.ui_schema.generated_components}
    missing: List[ComponentInstance] = []
    for component in response.components:
        if component.component not in known:
            known.add(component.component)
            missing.append(component)
    return missing


def has_comparison_component(response: DynamicUIResponse) -> bool:
    return any(
        c.variant == ComponentVariant.COMPARISON
        or "tradeoff" in c.component.lower()
        or "conflict" in c.component.lower()
        for c in response.components
    )


def add_trade_off_components(
    response: DynamicUIResponse,
    trade_offs: List[TradeOffContext],
    intent: str,
) -> DynamicUIResponse:
    """Append one neutral comparison component per trade-off, with its schema."""
    if not trade_offs:
        return response

    schema = ComponentSchema(
        name=TRADE_OFF_COMPONENT,
        description="Neutral side-by-side view of conflicting positions on an ingredient",
        required_props=[
            PropDefinition(name="ingredient", type=UIPropType.TEXT, description="Ingredient in question"),
            PropDefinition(name="summary", type=UIPropType.TEXT, description="What the sources disagree on"),
            PropDefinition(name="positions", type=UIPropType.KEY_VALUE, description="Source and stance pairs"),
            PropDefinition(name="guidance", type=UIPropType.TEXT, description="Neutral guidance"),
        ],
    )
    next_priority = min(10, max((c.priority for c in response.components), default=0) + 1)
    components = [
        ComponentInstance(
            component=TRADE_OFF_COMPONENT,
            variant=ComponentVariant.COMPARISON,
            priority=next_priority,
            props={
                "ingredient": t.ingredient,
                "summary": t.summary,
                "positions": [
                    {"key": f"{p.source} ({p.region.value})", "value": f"{p.stance.value}: {p.rationale}"}
                    for p in t.positions
                ],
                "guidance": t.user_guidance,
            },
            metadata=ComponentMetadata(
                intent=intent,
                confidence=0.5,
                sources=[p.source for p in t.positions],
            ),
        )
        for t in trade_offs
    ]

    generated = list(response.ui_schema.generated_components)
    if TRADE_OFF_COMPONENT not in {s.name for s in generated}:
        generated.append(schema)
    return response.model_copy(update={
        "ui_schema": UISchema(generated_components=generated),
        "components": list(response.components) + components,
    })


# ── Static responses ───────────────────────────────────────────────────

def fallback_response(analysis: str, intent: str) -> DynamicUIResponse:
    """Single generic card carrying the raw analysis text."""
    return DynamicUIResponse(
        ui_schema=UISchema(generated_components=[
            ComponentSchema(
                name="AnalysisResult",
                description="Fallback component displaying the analysis",
                required_props=[
                    PropDefinition(name="content", type=UIPropType.TEXT, description="Analysis content"),
                    PropDefinition(name="severity", type=UIPropType.SEVERITY, description="Overall severity"),
                ],
            )
        ]),
        components=[
            ComponentInstance(
                component="AnalysisResult",
                variant=ComponentVariant.CARD,
                priority=1,
                props={"content": analysis, "severity": "info"},
                metadata=ComponentMetadata(intent=intent, confidence=FALLBACK_CONFIDENCE, sources=[]),
            )
        ],
        layout_hints=LayoutHints(primary_component="AnalysisResult"),
    )


def build_vision_failed_envelope(failure: VisionFailure) -> Dict[str, Any]:
    """Conversational response asking the user for another input."""
    ui = DynamicUIResponse(
        ui_schema=UISchema(generated_components=[
            ComponentSchema(
                name="ConversationPrompt",
                description="Asks the user how to continue after an unusable image",
                required_props=[
                    PropDefinition(name="message", type=UIPropType.TEXT, description="Message to the user"),
                    PropDefinition(name="suggestedQuestions", type=UIPropType.LIST, description="Follow-up options"),
                    PropDefinition(name="productType", type=UIPropType.TEXT, description="Best guess of the product"),
                    PropDefinition(name="severity", type=UIPropType.SEVERITY, description="Message severity"),
                ],
            )
        ]),
        components=[
            ComponentInstance(
                component="ConversationPrompt",
                variant=ComponentVariant.CARD,
                priority=1,
                props={
                    "message": failure.message,
                    "suggestedQuestions": list(failure.suggested_questions),
                    "productType": failure.product_type_guess,
                    "severity": "info",
                },
                metadata=ComponentMetadata(intent="Conversation Mode", confidence=failure.confidence, sources=[]),
            )
        ],
    )
    envelope = {
        "status": failure.status,
        "ui_action": "prompt_user_input",
        "message": failure.message,
        "detectedContext": {
            "productType": failure.product_type_guess,
            "visibleElements": list(failure.visible_elements),
            "suggestedQuestions": list(failure.suggested_questions),
        },
        "failureReason": failure.reason.value,
        "confidence": failure.confidence,
    }
    envelope.update(ui.model_dump(mode="json", by_alias=True))
    return envelope


def extract_health_score(components: List[ComponentInstance]) -> Optional[float]:
    """First numeric score-like prop across components, in order."""
    for component in components:
        for key in HEALTH_SCORE_KEYS:
            value = component.props.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return float(value)
    return None
