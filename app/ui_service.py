"""
UI synthesis stage: analysis text → intent-specific component tree.

The model invents component schemas and instances. Output that fails strict
validation is salvaged component by component; whatever comes out, every
instance references a schema before the response leaves this module.
"""
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from app.llm_service import chat_completion
from app.prompt_builder import (
    PROP_TYPE_SYSTEM_PROMPT,
    UI_SYSTEM_PROMPT,
    build_prop_type_prompt,
    build_ui_prompt,
)
from eatwise.coercion import parse_json_object
from eatwise.formatter import format_trade_offs
from eatwise.models import (
    ComponentSchema,
    ConsensusStatus,
    DynamicUIResponse,
    LayoutHints,
    TradeOffContext,
    UIPropType,
    UISchema,
)
from eatwise.ui_schema import (
    add_trade_off_components,
    build_component_schema,
    coerce_prop_types,
    fallback_response,
    first_instances_by_name,
    has_comparison_component,
    infer_prop_types_heuristic,
    missing_schema_components,
    normalize_component,
    raw_component_props,
)

logger = logging.getLogger(__name__)


async def infer_prop_types(component_name: str, props: Dict[str, Any]) -> Dict[str, UIPropType]:
    """Ask the model to type each prop; fall back to the structural heuristic."""
    if not props:
        return {}
    try:
        content = await chat_completion(
            [
                {"role": "system", "content": PROP_TYPE_SYSTEM_PROMPT},
                {"role": "user", "content": build_prop_type_prompt(component_name, props)},
            ],
            temperature=0.1,
            max_tokens=300,
            json_mode=True,
            label="prop-types",
        )
    except Exception as e:
        logger.warning(f"[UI] Prop type inference failed for {component_name}: {e}")
        return infer_prop_types_heuristic(props)
    return coerce_prop_types(parse_json_object(content), props)


async def infer_schemas(raw_components: List[Any]) -> List[ComponentSchema]:
    """One schema per distinct component name, typed from its first instance."""
    schemas = []
    for name, raw in first_instances_by_name(raw_components).items():
        prop_types = await infer_prop_types(name, raw_component_props(raw))
        schemas.append(build_component_schema(name, prop_types))
    return schemas


async def recover_response(parsed: Optional[Dict[str, Any]], persona: str) -> Optional[DynamicUIResponse]:
    """Salvage a response that failed strict validation, or None if nothing is usable."""
    if not isinstance(parsed, dict):
        return None
    raw_components = parsed.get("components")
    if not isinstance(raw_components, list) or not raw_components:
        return None

    components = [normalize_component(raw, i, persona) for i, raw in enumerate(raw_components)]
    schemas = await infer_schemas(raw_components)
    logger.info(f"[UI] Recovered {len(components)} components, {len(schemas)} inferred schemas")
    return DynamicUIResponse(
        ui_schema=UISchema(generated_components=schemas),
        components=components,
        layout_hints=LayoutHints(primary_component=components[0].component),
    )


async def ensure_schema_coverage(response: DynamicUIResponse) -> DynamicUIResponse:
    """Add a schema entry for every component name the model forgot to define."""
    missing = missing_schema_components(response)
    if not missing:
        return response

    generated = list(response.ui_schema.generated_components)
    for component in missing:
        logger.warning(f"[UI] Component {component.component!r} has no schema, inferring one")
        prop_types = await infer_prop_types(component.component, component.props)
        generated.append(build_component_schema(
            component.component,
            prop_types,
            description=f"Dynamically added: {component.component}",
        ))
    return response.model_copy(update={"ui_schema": UISchema(generated_components=generated)})


async def generate_ui(
    analysis: str,
    persona: str,
    consensus_status: Optional[ConsensusStatus] = None,
    trade_offs: Optional[List[TradeOffContext]] = None,
) -> DynamicUIResponse:
    """
    Generate the dynamic UI for an analysis.

    Always returns a valid response whose components are all covered by the
    schema. Transport errors of the generation call propagate after retries.
    """
    trade_offs = trade_offs or []
    content = await chat_completion(
        [
            {"role": "system", "content": UI_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": build_ui_prompt(persona, analysis, consensus_status, format_trade_offs(trade_offs)),
            },
        ],
        temperature=0.7,
        json_mode=True,
        label="ui",
    )

    parsed = parse_json_object(content)
    response: Optional[DynamicUIResponse] = None
    if parsed is not None:
        try:
            response = DynamicUIResponse.model_validate(parsed)
        except ValidationError as e:
            logger.warning(f"[UI] Strict validation failed ({e.error_count()} errors), attempting recovery")
            response = await recover_response(parsed, persona)
        else:
            if not response.components:
                response = None

    if response is None:
        logger.warning("[UI] No usable UI from model, using fallback component")
        response = fallback_response(analysis, persona)

    response = await ensure_schema_coverage(response)

    if consensus_status == ConsensusStatus.CONFLICTING_EVIDENCE and not has_comparison_component(response):
        response = add_trade_off_components(response, trade_offs, persona)

    logger.info(f"[UI] {len(response.components)} components, {len(response.ui_schema.generated_components)} schemas")
    return response
