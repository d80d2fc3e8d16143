"""
Research stage: ground the analysis in external sources.

For each selected ingredient: neural search → one joint LLM call that classifies
every source and judges whether they conflict → optional regulatory follow-up
search for risky ingredients with thin evidence. Results are reduced into a
consensus status, neutral trade-offs, and a synthesized analysis with a
grounding metadata footer.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from app.clients import (
    RESEARCH_BATCH_DELAY_MS,
    RESEARCH_BATCH_SIZE,
    RESEARCH_TIMEOUT_MS,
    RETRY_ATTEMPTS,
    RETRY_BACKOFF,
    RETRY_DELAY_MS,
    SEARCH_TIMEOUT_MS,
)
from app.llm_service import chat_completion
from app.prompt_builder import (
    ANALYSIS_SYSTEM_PROMPT,
    SOURCE_ANALYSIS_PROMPT,
    build_analysis_prompt,
    build_source_analysis_prompt,
)
from app.search_client import neural_search, search_enabled
from eatwise.coercion import closest_enum, coerce_bool, coerce_number, coerce_str, parse_json_object
from eatwise.consensus import (
    build_ingredient_research,
    determine_consensus_status,
    extract_trade_offs,
    needs_secondary_search,
    research_depth,
    risk_levels_for,
    select_research_set,
    sort_by_risk,
    summarize_research,
)
from eatwise.formatter import (
    append_metadata_footer,
    balance_conflicting_analysis,
    build_intent_query,
    build_regulatory_query,
    build_research_metadata,
    format_grounded_context,
)
from eatwise.models import (
    ConflictType,
    ConflictVerdict,
    ConsensusStatus,
    GroundedResearch,
    IngredientResearch,
    Region,
    ResearchResult,
    RiskAssessment,
    RiskLevel,
    SafetyStance,
    SourceAnalysis,
    SourceClaim,
    SourceCredibility,
)
from eatwise.retry import with_retry

logger = logging.getLogger(__name__)

TIME_LIMIT_MARGIN_S = 10.0
REGULATORY_RESULTS = 2
NO_SEARCH_KEY_WARNING = "Search API key not configured - analysis based on LLM knowledge only"
RESEARCH_TIMEOUT_WARNING = "Research timed out - using LLM knowledge only"
EMPTY_ANALYSIS = "Unable to generate analysis."


# ── Search & source analysis ───────────────────────────────────────────

async def search_sources(
    query: str,
    num_results: int,
    summary_query: str,
    highlights_query: str,
) -> List[Dict[str, Any]]:
    """One retried search, bounded as a whole by the per-search timeout."""
    return await asyncio.wait_for(
        with_retry(
            lambda: neural_search(query, num_results, summary_query, highlights_query),
            retries=RETRY_ATTEMPTS,
            delay=RETRY_DELAY_MS / 1000,
            backoff=RETRY_BACKOFF,
            label="search",
        ),
        timeout=SEARCH_TIMEOUT_MS / 1000,
    )


def to_documents(results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    documents = []
    for index, result in enumerate(results):
        highlights = result.get("highlights")
        highlight_text = " ".join(h for h in highlights if isinstance(h, str)) if isinstance(highlights, list) else ""
        documents.append({
            "index": index,
            "title": coerce_str(result.get("title")),
            "url": coerce_str(result.get("url")),
            "content": coerce_str(result.get("summary")) or highlight_text or coerce_str(result.get("text")),
            "published_date": coerce_str(result.get("publishedDate")) or None,
        })
    return documents


def _raw_claim_items(raw_claims: Any) -> List[tuple]:
    if isinstance(raw_claims, dict):
        return list(raw_claims.items())
    if isinstance(raw_claims, list):
        return [(str(i), c) for i, c in enumerate(raw_claims)]
    return []


def parse_source_analysis(parsed: Dict[str, Any], documents: List[Dict[str, Any]]) -> SourceAnalysis:
    """Map the joint analysis JSON back onto the source documents by index."""
    by_index = {d["index"]: d for d in documents}
    claims: List[SourceClaim] = []

    for key, raw in _raw_claim_items(parsed.get("claims")):
        try:
            index = int(str(key).strip())
        except ValueError:
            continue
        document = by_index.get(index)
        if document is None or not isinstance(raw, dict):
            continue
        claims.append(SourceClaim(
            source=document["title"] or document["url"] or f"Source {index}",
            source_url=document["url"] or None,
            credibility=closest_enum(raw.get("sourceCredibility"), SourceCredibility, SourceCredibility.GENERAL_WEB),
            claim=coerce_str(raw.get("claim")).strip() or document["content"],
            stance=closest_enum(raw.get("stance"), SafetyStance, SafetyStance.UNDER_REVIEW),
            region=closest_enum(raw.get("region"), Region, Region.UNSPECIFIED),
            date_published=document["published_date"],
            classification_confidence=coerce_number(raw.get("confidence"), 0.5),
        ))

    raw_conflict = parsed.get("conflict") if isinstance(parsed.get("conflict"), dict) else {}
    conflict_type = None
    if isinstance(raw_conflict.get("type"), str) and raw_conflict["type"].strip():
        conflict_type = closest_enum(raw_conflict["type"], ConflictType, ConflictType.REGIONAL)
    summary = coerce_str(raw_conflict.get("summary")).strip() or None

    return SourceAnalysis(
        claims=claims,
        conflict=ConflictVerdict(
            detected=coerce_bool(raw_conflict.get("detected"), False),
            type=conflict_type,
            summary=summary,
            confidence=coerce_number(raw_conflict.get("confidence"), 0.5),
        ),
    )


async def analyze_sources(ingredient: str, results: List[Dict[str, Any]]) -> Optional[SourceAnalysis]:
    """Classify every source and detect conflicts in a single model call. None if the call fails."""
    if not results:
        return SourceAnalysis(conflict=ConflictVerdict(detected=False, confidence=0.0))

    documents = to_documents(results)
    try:
        content = await chat_completion(
            [
                {"role": "system", "content": SOURCE_ANALYSIS_PROMPT},
                {"role": "user", "content": build_source_analysis_prompt(ingredient, documents)},
            ],
            temperature=0.2,
            max_tokens=1000,
            json_mode=True,
            label="source-analysis",
        )
    except Exception as e:
        logger.warning(f"[RESEARCH] Source analysis failed for {ingredient!r}: {e}")
        return None

    parsed = parse_json_object(content)
    if parsed is None:
        logger.warning(f"[RESEARCH] Source analysis unparseable for {ingredient!r}")
        return None
    return parse_source_analysis(parsed, documents)


async def research_ingredient(
    ingredient: str,
    persona: str,
    num_results: int,
    risk_level: RiskLevel,
) -> IngredientResearch:
    claims: List[SourceClaim] = []
    conflict = ConflictVerdict(
        detected=False,
        confidence=0.0,
        summary="No conflict detected in primary analysis.",
    )

    try:
        results = await search_sources(
            build_intent_query(ingredient, persona),
            num_results,
            f"Safety, health effects, and regulatory status of {ingredient}",
            f"Health risks and benefits of {ingredient}",
        )
        primary = await analyze_sources(ingredient, results)
        if primary is None:
            primary = SourceAnalysis(conflict=ConflictVerdict(detected=False, confidence=0.3))
        claims.extend(primary.claims)
        conflict = primary.conflict
        if conflict.detected:
            logger.info(f"[RESEARCH] Conflict for {ingredient!r}: {conflict.type}")
    except Exception as e:
        logger.warning(f"[RESEARCH] Primary search failed for {ingredient!r}: {type(e).__name__}: {e}")

    if needs_secondary_search(risk_level, len(claims)):
        try:
            results = await search_sources(
                build_regulatory_query(ingredient),
                REGULATORY_RESULTS,
                f"{ingredient} regulatory status FDA EFSA WHO",
                f"{ingredient} bans restrictions limits",
            )
            # An empty or failed follow-up keeps the primary verdict
            secondary = await analyze_sources(ingredient, results) if results else None
            if secondary is not None:
                claims.extend(secondary.claims)
                conflict = secondary.conflict
        except Exception as e:
            logger.warning(f"[RESEARCH] Regulatory search failed for {ingredient!r}: {type(e).__name__}: {e}")

    return build_ingredient_research(ingredient, risk_level, claims, conflict)


# ── Grounded research ──────────────────────────────────────────────────

async def perform_grounded_research(
    to_research: List[str],
    persona: str,
    risk_levels: Dict[str, RiskLevel],
) -> GroundedResearch:
    """Research ingredients in small concurrent batches, highest risk first."""
    if not search_enabled():
        logger.warning("[RESEARCH] No search API key, skipping grounded research")
        return GroundedResearch(overall_confidence=0.5, data_quality_warnings=[NO_SEARCH_KEY_WARNING])

    ordered = sort_by_risk(to_research, risk_levels)
    has_high_risk = any(risk_levels.get(i) == RiskLevel.HIGH_SCRUTINY for i in ordered)
    max_ingredients, per_ingredient = research_depth(len(ordered), has_high_risk)
    selected = ordered[:max_ingredients]

    warnings: List[str] = []
    if len(ordered) > max_ingredients:
        warnings.append(f"Research limited to {max_ingredients} of {len(ordered)} controversial ingredients")

    loop = asyncio.get_running_loop()
    started = loop.time()
    budget = RESEARCH_TIMEOUT_MS / 1000 - TIME_LIMIT_MARGIN_S
    results: List[IngredientResearch] = []

    for start in range(0, len(selected), RESEARCH_BATCH_SIZE):
        if loop.time() - started > budget:
            warnings.append(
                f"Research time limit reached - analyzed {start} of {len(selected)} ingredients"
            )
            break

        batch = selected[start:start + RESEARCH_BATCH_SIZE]
        settled = await asyncio.gather(
            *(research_ingredient(ing, persona, per_ingredient, risk_levels.get(ing, RiskLevel.STANDARD_REVIEW))
              for ing in batch),
            return_exceptions=True,
        )
        for ingredient, outcome in zip(batch, settled):
            if isinstance(outcome, BaseException):
                warnings.append(f'Research failed for "{ingredient}": {outcome}')
                continue
            results.append(outcome)
            if not outcome.claims:
                warnings.append(f'No external sources found for "{ingredient}"')

        if start + RESEARCH_BATCH_SIZE < len(selected):
            await asyncio.sleep(RESEARCH_BATCH_DELAY_MS / 1000)

    grounded = summarize_research(results, warnings)
    logger.info(
        f"[RESEARCH] Researched {len(results)}/{len(selected)} ingredients, "
        f"confidence={grounded.overall_confidence:.2f}, conflicts={len(grounded.unresolved_conflicts)}"
    )
    return grounded


# ── Stage entry point ──────────────────────────────────────────────────

async def research_ingredients(
    ingredients: List[str],
    persona: str,
    risk_assessment: Optional[RiskAssessment] = None,
    context_bias: Optional[str] = None,
) -> ResearchResult:
    """
    Run grounded research and synthesize the analysis text.

    Research failures degrade into warnings; only a transport failure of the
    final synthesis call propagates.
    """
    to_research = select_research_set(ingredients, risk_assessment)
    risk_levels = risk_levels_for(to_research, risk_assessment)
    logger.info(f"[RESEARCH] {len(to_research)} ingredients selected: {to_research}")

    try:
        grounded = await asyncio.wait_for(
            perform_grounded_research(to_research, persona, risk_levels),
            timeout=RESEARCH_TIMEOUT_MS / 1000,
        )
    except asyncio.TimeoutError:
        logger.warning("[RESEARCH] Research budget exceeded, continuing without grounding")
        grounded = GroundedResearch(overall_confidence=0.3, data_quality_warnings=[RESEARCH_TIMEOUT_WARNING])

    status = determine_consensus_status(grounded)
    trade_offs = extract_trade_offs(grounded)
    logger.info(f"[RESEARCH] consensus={status.value} trade_offs={len(trade_offs)}")

    analysis = await chat_completion(
        [
            {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": build_analysis_prompt(
                    persona,
                    ingredients,
                    status,
                    format_grounded_context(grounded),
                    context_bias,
                    grounded.overall_confidence,
                ),
            },
        ],
        temperature=0.3,
        label="analysis",
    )
    analysis = analysis.strip() or EMPTY_ANALYSIS
    if status == ConsensusStatus.CONFLICTING_EVIDENCE:
        analysis = balance_conflicting_analysis(analysis)

    metadata = build_research_metadata(grounded)
    return ResearchResult(
        analysis_text=append_metadata_footer(analysis, status, metadata, len(trade_offs)),
        consensus_status=status,
        trade_off_contexts=trade_offs,
        metadata=metadata,
    )
