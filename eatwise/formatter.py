"""
Text rendering for research output.

Turns grounded research into LLM prompt context, builds search queries, appends
the grounding metadata footer, and keeps conflicting-evidence analyses neutral.
"""
from __future__ import annotations
import re
from typing import List

from eatwise.models import (
    ConsensusStatus,
    GroundedResearch,
    ResearchMetadata,
    TradeOffContext,
)

CLAIM_PREVIEW_CHARS = 300

NEUTRALITY_NOTE = (
    "Note: the available evidence conflicts. The positions above are presented "
    "side by side so you can weigh them for your own situation."
)

# Phrases that take a side. Only stripped when evidence conflicts.
ONE_SIDED_PATTERNS = [
    r"\byou should (?:not |never )?(?:avoid|consume|eat|choose|buy|stop)\b",
    r"\bwe (?:strongly )?recommend\b",
    r"\bi (?:strongly )?recommend\b",
    r"\b(?:best|better|wise|safest) to (?:avoid|eliminate|cut out)\b",
    r"\bstay away from\b",
    r"\bdo not (?:consume|eat|buy)\b",
    r"\b(?:is|are) (?:definitely|clearly|absolutely|completely) (?:safe|harmful|dangerous|toxic)\b",
]
_ONE_SIDED = re.compile("|".join(ONE_SIDED_PATTERNS), re.IGNORECASE)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


# ── Search queries ─────────────────────────────────────────────────────

def build_intent_query(ingredient: str, persona: str) -> str:
    return f'"{ingredient}" {persona} health implications'


def build_regulatory_query(ingredient: str) -> str:
    return f'"{ingredient}" banned OR restricted OR prohibited food additive'


# ── Prompt context ─────────────────────────────────────────────────────

def format_grounded_context(research: GroundedResearch) -> str:
    """Render grounded research as a prompt section for the synthesis call."""
    if not research.ingredient_research:
        if research.data_quality_warnings:
            warnings = "\n".join(research.data_quality_warnings)
            return (
                f"Data Quality Warnings:\n{warnings}\n\n"
                "[No external grounding data available - rely on training knowledge with caution]"
            )
        return "[No external research data available]"

    sections: List[str] = []

    if research.data_quality_warnings:
        lines = "\n".join(f"• {w}" for w in research.data_quality_warnings)
        sections.append(f"DATA QUALITY WARNINGS:\n{lines}")

    if research.unresolved_conflicts:
        lines = "\n".join(f"• {c}" for c in research.unresolved_conflicts)
        sections.append(f"REGULATORY CONFLICTS DETECTED:\n{lines}")

    for ir in research.ingredient_research:
        if ir.conflict_detected:
            conflict = f"Conflict ({ir.conflict_type.value if ir.conflict_type else 'UNKNOWN'}): {ir.conflict_summary}"
        else:
            conflict = "No conflicts detected"
        meta = " | ".join([
            f"Risk Level: {ir.risk_level.value}",
            f"Confidence: {round(ir.confidence_score * 100)}%",
            f"Ambiguity: {ir.ambiguity_level.value}",
            conflict,
        ])
        claims = "\n\n".join(
            f"[Source {i}: {c.source} - {c.credibility.value} ({c.region.value})]\n"
            f"Stance: {c.stance.value} (confidence: {round(c.classification_confidence * 100)}%)\n"
            f"Evidence: {c.claim[:CLAIM_PREVIEW_CHARS]}\n"
            f"URL: {c.source_url or 'N/A'}"
            for i, c in enumerate(ir.claims, start=1)
        )
        sections.append(f"RESEARCH: {ir.ingredient.upper()}\n{meta}\n\n{claims or 'No sources retrieved'}")

    sections.append(f"OVERALL GROUNDING CONFIDENCE: {round(research.overall_confidence * 100)}%")
    return "\n\n---\n\n".join(sections)


def format_trade_offs(trade_offs: List[TradeOffContext]) -> str:
    """Compact rendering of trade-offs for the UI generation prompt."""
    blocks = []
    for t in trade_offs:
        positions = "\n".join(
            f"  - {p.source} ({p.credibility.value}, {p.region.value}): {p.stance.value} - {p.rationale}"
            for p in t.positions
        )
        blocks.append(
            f"{t.ingredient} [{t.conflict_type.value}]: {t.summary}\n{positions or '  - (no definite positions)'}"
        )
    return "\n\n".join(blocks)


# ── Output ─────────────────────────────────────────────────────────────

def build_research_metadata(research: GroundedResearch) -> ResearchMetadata:
    return ResearchMetadata(
        sources_consulted=sum(len(r.claims) for r in research.ingredient_research),
        overall_confidence=round(research.overall_confidence * 100),
        unresolved_conflicts=list(research.unresolved_conflicts),
        data_warnings=list(research.data_quality_warnings),
    )


def append_metadata_footer(
    analysis: str,
    status: ConsensusStatus,
    metadata: ResearchMetadata,
    trade_off_count: int,
) -> str:
    return (
        f"{analysis}\n\n"
        "---\n"
        "[Grounding Metadata]\n"
        f"Consensus Status: {status.value}\n"
        f"Sources Consulted: {metadata.sources_consulted}\n"
        f"Overall Confidence: {metadata.overall_confidence}%\n"
        f"Unresolved Conflicts: {len(metadata.unresolved_conflicts)}\n"
        f"Data Warnings: {len(metadata.data_warnings)}\n"
        f"Trade-offs Identified: {trade_off_count}\n"
        "---"
    )


def find_one_sided_language(text: str) -> List[str]:
    """Sentences that recommend one side."""
    return [s for s in _SENTENCE_SPLIT.split(text) if _ONE_SIDED.search(s)]


def balance_conflicting_analysis(text: str) -> str:
    """
    Drop prescriptive sentences from an analysis of conflicting evidence.

    Line structure is kept; a neutrality note is appended when anything was removed.
    """
    if not find_one_sided_language(text):
        return text

    kept_lines = []
    for line in text.split("\n"):
        sentences = _SENTENCE_SPLIT.split(line)
        kept = [s for s in sentences if not _ONE_SIDED.search(s)]
        if sentences and not kept and line.strip():
            continue
        kept_lines.append(" ".join(kept))
    return "\n".join(kept_lines).rstrip() + f"\n\n{NEUTRALITY_NOTE}"
