"""
Prompt builder for the scan pipeline.

All prompt templates live here; each stage imports its system prompt and the
builder that assembles its user-side prompt.
"""
from typing import Any, Dict, List, Optional

from eatwise.models import ConsensusStatus, RawExtraction, FailureReason


# ── Vision ─────────────────────────────────────────────────────────────

VISION_EXTRACTION_PROMPT = """You are a vision agent that reads ingredient information from product label images.

RULES:
1. If text is blurry, cut off or unreadable, set isReadable to false and describe the problem in "issues".
2. NEVER guess or invent ingredients you cannot clearly read.
3. Give a confidence score between 0 and 1 based on image quality and text clarity.
4. Name the product type and the packaging elements you can see.
5. Copy ingredient names exactly as printed, in label order.

Return ONLY valid JSON:
{
  "ingredients": ["ingredient1", "ingredient2"],
  "nutrition": {"calories": 100, "sugar": "12g"},
  "isReadable": true,
  "issues": null,
  "confidence": 0.0,
  "productType": "beverage/snack/dairy/...",
  "visibleElements": ["bottle", "nutrition label", "barcode"],
  "extractionNotes": "notes about partial or uncertain extraction"
}"""

VISION_USER_INSTRUCTION = (
    "Analyze this product image. Extract ingredients and nutrition info. "
    "Be conservative: only extract what you can clearly read. If uncertain, lower your confidence score."
)

EXTRACTION_ASSESSMENT_PROMPT = """You evaluate how reliable a product label extraction is.

CONFIDENCE (0-1), judged holistically:
- completeness of the ingredient list (typical products list 5-20 ingredients)
- presence of nutrition information
- internal consistency, no garbled text
- whether reported issues match the extracted content
A simple product (water, salt) may legitimately have very few ingredients.

QUALITY:
- high: complete, coherent extraction
- medium: usable with minor gaps
- low: significant problems, some useful information

USABLE when the core ingredient list is present and coherent and nothing critical looks corrupted.
NOT USABLE when no ingredients were found, the text is unreadable, or confidence is too low to trust.

FAILURE REASON (one of): unreadable_text, no_label_detected, partial_extraction, low_confidence, processing_error, none

Output ONLY valid JSON."""

CONVERSATION_PROMPT_SYSTEM = """You help users get a better product scan after a failed attempt.

Write a short, natural message that:
- acknowledges what was detected, if anything
- explains the problem without technical jargon
- suggests a concrete way to improve the scan
- mentions alternatives (barcode, typing the product name)

Avoid template-like wording.

Output JSON with:
- message: the message to the user
- suggestedQuestions: exactly 3 short follow-up options"""


def build_assessment_prompt(raw: RawExtraction) -> str:
    return f"""Assess this product label extraction:

EXTRACTED DATA:
- Ingredients: {", ".join(raw.ingredients) or "None"}
- Ingredient count: {len(raw.ingredients)}
- Nutrition fields: {len(raw.nutrition)}
- Is readable (self-reported): {raw.is_readable}
- Reported issues: {raw.issues or "None"}
- Self-reported confidence: {raw.confidence if raw.confidence is not None else "Not provided"}
- Product type: {raw.product_type or "Unknown"}
- Visible elements: {", ".join(raw.visible_elements) or "Unknown"}
- Extraction notes: {raw.extraction_notes or "None"}

Return JSON with: confidence, extractionQuality, isUsable, failureReason, reasoning"""


def build_conversation_prompt(raw: RawExtraction, reason: FailureReason) -> str:
    return f"""A user's product scan could not be used.

CONTEXT:
- Product type: {raw.product_type or "Unknown product"}
- Visible elements: {", ".join(raw.visible_elements) or "Unknown"}
- Failure reason: {reason.value}
- Issues reported: {raw.issues or "None specified"}
- Partial ingredients found: {", ".join(raw.ingredients[:3]) or "None"}

Return JSON with: message, suggestedQuestions (array of 3 strings)"""


# ── Intent ─────────────────────────────────────────────────────────────

INTENT_SYSTEM_PROMPT = (
    "You infer a shopper's health intent from the product they scan and their recent scan history. "
    "Your job is to understand the user's GOALS, not just to categorize products. Output valid JSON only."
)


def build_intent_prompt(
    current_time: str,
    ingredients: List[str],
    product_type: str,
    scan_location: Optional[str],
    patterns: Dict[str, Any],
) -> str:
    if patterns["recent_products"]:
        history_block = f"""USER SESSION HISTORY (most recent first):
- Recent Products: {", ".join(patterns["recent_products"])}
- Recent Intents: {", ".join(patterns["recent_intents"]) or "None classified yet"}
- Dominant Pattern: {patterns["dominant_intent"] or "No clear pattern yet"}"""
    else:
        history_block = "No session history available (first scan)."

    return f"""Analyze the current product in the context of the user's recent scan history.

CURRENT SCAN:
- Time: {current_time}
- Product: {product_type}
- Ingredients: {", ".join(ingredients[:50])}
- Location: {scan_location or "Unknown"}

{history_block}

CONTEXT-AWARE INFERENCE RULES:
1. History shows fitness products (creatine, whey, pre-workout) and the current item is carbs/bread
   -> Intent: "Carb Loading/Bulking" (not "Unhealthy Carbs")
2. History shows baby products and the current item is any food
   -> Intent: "Pediatric Safety" (parent shopping for a child)
3. History shows diet/low-calorie products and the current item is indulgent
   -> Intent: "Cheat Meal/Moderation" (not "Unhealthy")
4. History shows organic/clean-label products consistently
   -> Intent: "Clean Label/Organic"
5. History shows allergy-related products (gluten-free, dairy-free)
   -> Intent: "Allergy Management" (heightened ingredient scrutiny)
6. No history or no pattern: standard product-based inference.

RESPOND WITH JSON:
{{
  "persona": "Short persona name (max 3 words)",
  "userContextBias": "One specific sentence on how to bias the analysis for this user's goals",
  "confidence": "high|medium|low",
  "reasoning": "Brief explanation",
  "riskAssessment": {{
    "ingredientsToResearch": ["ingredient1"],
    "riskDetails": {{
      "ingredient1": {{
        "riskLevel": "HIGH_SCRUTINY|MODERATE_SCRUTINY|STANDARD_REVIEW|GENERALLY_RECOGNIZED_SAFE",
        "reasoning": "Why this risk level",
        "requiresDeepResearch": true
      }}
    }}
  }}
}}

DATA INTEGRITY RULES:
1. Resolve non-English ingredients internally, but keep their original spelling in the output.
2. Keys in "riskDetails" and entries in "ingredientsToResearch" MUST be identical to the strings in the ingredient list above.
   Do NOT translate them. Do NOT change casing or punctuation."""


# ── Research ───────────────────────────────────────────────────────────

SOURCE_ANALYSIS_PROMPT = """You analyze health and regulatory sources about a food ingredient and detect conflicts between them.

TASK:
1. Classify each source individually: credibility, stance, region, confidence, and the claim it makes.
2. Judge the set of sources as a whole: do they conflict?

SOURCE CREDIBILITY:
- REGULATORY_AUTHORITY: government bodies (FDA, EFSA, FSANZ, Health Canada)
- PEER_REVIEWED_RESEARCH: academic journals
- INSTITUTIONAL_RESEARCH: universities, reputable institutes
- INDUSTRY_PUBLICATION: trade or industry funded
- NEWS_MEDIA: journalism
- GENERAL_WEB: blogs, unverified

SAFETY STANCE (by meaning, not keywords):
- APPROVED, CONDITIONALLY_SAFE, UNDER_REVIEW, CAUTION_ADVISED, RESTRICTED, PROHIBITED

REGION: UNITED_STATES, EUROPEAN_UNION, UNITED_KINGDOM, CANADA, AUSTRALIA_NZ, JAPAN, CHINA, GLOBAL_WHO, OTHER, UNSPECIFIED

CONFLICT TYPES: REGIONAL, SCIENTIFIC, DOSAGE, POPULATION, TEMPORAL, METHODOLOGICAL
Only report a conflict when sources take materially different stances.

Output ONLY valid JSON."""

ANALYSIS_SYSTEM_PROMPT = """You are a nutritional researcher.
Always cite your sources.
When evidence conflicts, NEVER pick a side: present all positions neutrally.
Your role is to inform, not to decide for the user.
Acknowledge uncertainty explicitly.
Never make ungrounded claims."""


def build_source_analysis_prompt(ingredient: str, documents: List[Dict[str, Any]]) -> str:
    sources = "\n\n".join(
        f"[SOURCE {d['index']}]\nTITLE: {d['title']}\nURL: {d['url']}\nCONTENT: {d['content']}"
        for d in documents
    )
    return f"""Analyze these search results for "{ingredient}":

{sources}

Return JSON:
{{
  "claims": {{
    "0": {{
      "sourceCredibility": "REGULATORY_AUTHORITY|PEER_REVIEWED_RESEARCH|...",
      "stance": "APPROVED|CONDITIONALLY_SAFE|...",
      "region": "UNITED_STATES|EUROPEAN_UNION|...",
      "confidence": 0.0,
      "claim": "The claim this source makes"
    }}
  }},
  "conflict": {{
    "detected": false,
    "type": "REGIONAL|SCIENTIFIC|...",
    "summary": "Brief explanation of the conflict",
    "confidence": 0.0
  }}
}}
Keys of "claims" are the SOURCE numbers above."""


def build_analysis_prompt(
    persona: str,
    ingredients: List[str],
    status: ConsensusStatus,
    grounded_context: str,
    context_bias: Optional[str],
    overall_confidence: float,
) -> str:
    parts = [
        "You are a nutritional researcher providing an evidence-based analysis.",
        "",
        f"USER INTENT: {persona}",
        f"INGREDIENTS: {', '.join(ingredients)}",
        f"CONSENSUS STATUS: {status.value}",
    ]

    if status == ConsensusStatus.CONFLICTING_EVIDENCE:
        parts += [
            "",
            "CONFLICTING EVIDENCE DETECTED.",
            "You MUST NOT pick a side or recommend one position over another.",
            "Present every position neutrally and let the user decide. Use phrasing such as:",
            '- "Some regulatory bodies consider... while others..."',
            '- "The evidence is mixed, with..."',
            '- "Different regions apply different standards..."',
        ]

    if context_bias:
        parts += [
            "",
            "USER CONTEXT (from session history):",
            context_bias,
            "Tailor the analysis to these goals: bulking users care about protein and carb quality, "
            "allergy management needs cross-contamination risks, parents need child safety first.",
        ]

    parts += [
        "",
        "GROUNDED RESEARCH DATA (external sources):",
        grounded_context,
        "",
        "ANALYSIS REQUIREMENTS:",
        "1. Ground your claims in the sources above and cite them.",
        "2. Where sources conflict, state each position without favoring either and explain why they differ.",
        "3. Do not make claims the data does not support.",
        f'4. Focus on the user\'s intent: "{persona}".',
        "5. For each controversial ingredient, say what each regulator says and what factors the user may weigh.",
    ]
    if overall_confidence < 0.6:
        parts.append("6. Confidence in the research is LOW: state the limitations clearly.")

    parts += [
        "",
        "FORMAT: structured, readable analysis with clear sections.",
        "TONE: balanced and informative, never prescriptive when evidence conflicts.",
    ]
    return "\n".join(parts)


# ── UI synthesis ───────────────────────────────────────────────────────

UI_SYSTEM_PROMPT = (
    "You are a generative UI architect. You design component schemas that fit exactly what this "
    "user needs from this analysis. Output only valid JSON."
)

PROP_TYPE_SYSTEM_PROMPT = (
    "You classify UI component props into display types. "
    "Allowed types: text, number, boolean, severity, color, icon, list, keyValue, percentage, url, date. "
    "Output only valid JSON mapping each prop name to one type."
)


def build_ui_prompt(
    persona: str,
    analysis: str,
    status: Optional[ConsensusStatus],
    trade_off_block: str,
) -> str:
    conflict_block = ""
    if status == ConsensusStatus.CONFLICTING_EVIDENCE and trade_off_block:
        conflict_block = f"""
CONFLICTING EVIDENCE. These trade-offs MUST be shown neutrally, side by side, using a
"comparison" variant component. Do not rank or favor any position:
{trade_off_block}
"""
    elif status == ConsensusStatus.INSUFFICIENT_DATA:
        conflict_block = """
INSUFFICIENT DATA. Include a component that tells the user what could not be verified.
"""

    return f"""Design a bespoke UI for this product analysis.

USER INTENT: {persona}

ANALYSIS:
{analysis}
{conflict_block}
RULES:
1. Invent 2-5 component schemas that are SPECIFIC to this intent and analysis.
   Do NOT use generic names like "Card", "InfoBox" or "Summary".
2. Every component instance must use a name defined in schema.generatedComponents.
3. Props must match the requiredProps of the component's schema.
4. Prop types: text, number, boolean, severity, color, icon, list, keyValue, percentage, url, date.
5. Variants: card, banner, badge, meter, list, comparison, timeline.
6. Priority: 1-10, lower is more important.

Return ONLY valid JSON:
{{
  "schema": {{
    "generatedComponents": [
      {{"name": "string", "description": "string",
        "requiredProps": [{{"name": "string", "type": "text", "description": "string"}}]}}
    ]
  }},
  "components": [
    {{"component": "string", "variant": "card", "priority": 1, "props": {{}},
      "metadata": {{"intent": "string", "confidence": 0.0, "sources": ["string"]}}}}
  ],
  "layoutHints": {{"primaryComponent": "string", "grouping": [["string", "string"]]}}
}}

A "Pediatric Safety" scan must NOT produce the same components as a "Fitness Performance" scan."""


def build_prop_type_prompt(component_name: str, props: Dict[str, Any]) -> str:
    lines = "\n".join(f"- {name}: {repr(value)[:120]}" for name, value in props.items())
    return f"""Component "{component_name}" has these props (name: example value):
{lines}

Return JSON: {{"propName": "type", ...}} with one entry per prop."""
