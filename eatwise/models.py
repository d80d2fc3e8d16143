"""
Pydantic data models for the EatWise scan pipeline.
"""
from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ── Shared levels ──────────────────────────────────────────────────────

class ConfidenceLevel(str, Enum):
    """Coarse three-step level, used for extraction quality, intent confidence and ambiguity."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ── Vision ─────────────────────────────────────────────────────────────

class FailureReason(str, Enum):
    LOW_CONFIDENCE = "low_confidence"
    UNREADABLE_TEXT = "unreadable_text"
    NO_LABEL_DETECTED = "no_label_detected"
    PARTIAL_EXTRACTION = "partial_extraction"
    PROCESSING_ERROR = "processing_error"
    NONE = "none"


class RawExtraction(BaseModel):
    """First-pass vision output after coercion. Never leaves the vision stage."""
    ingredients: List[str] = Field(default_factory=list)
    nutrition: Dict[str, Union[float, str]] = Field(default_factory=dict)
    is_readable: Optional[bool] = None
    issues: Optional[str] = None
    confidence: Optional[float] = None         # Model self-report, 0..1
    product_type: Optional[str] = None
    visible_elements: List[str] = Field(default_factory=list)
    extraction_notes: Optional[str] = None


class ExtractionAssessment(BaseModel):
    confidence: float = Field(ge=0.0, le=1.0)
    quality: ConfidenceLevel = ConfidenceLevel.MEDIUM
    is_usable: bool = True
    failure_reason: FailureReason = FailureReason.NONE
    reasoning: str = ""


class VisionSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["success"] = "success"
    ingredients: List[str]                     # Ordered, de-duplicated
    nutrition: Dict[str, Union[float, str]] = Field(default_factory=dict)
    confidence: float = Field(ge=0.0, le=1.0)
    quality: ConfidenceLevel
    product_type: Optional[str] = None
    issues: Optional[str] = None


class VisionFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["vision_failed"] = "vision_failed"
    reason: FailureReason
    message: str
    suggested_questions: List[str]             # Exactly three
    product_type_guess: Optional[str] = None
    visible_elements: List[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)


VisionOutcome = Union[VisionSuccess, VisionFailure]


# ── History & Intent ───────────────────────────────────────────────────

class ScanHistoryEntry(BaseModel):
    product_name: str
    user_intent: Optional[str] = None
    health_score: Optional[float] = None
    timestamp: str                             # ISO-8601


class DailyHabit(BaseModel):
    ingredient: str
    count: int


class DailyInsight(BaseModel):
    summary: str
    suggestion: str


class RiskLevel(str, Enum):
    HIGH_SCRUTINY = "HIGH_SCRUTINY"
    MODERATE_SCRUTINY = "MODERATE_SCRUTINY"
    STANDARD_REVIEW = "STANDARD_REVIEW"
    GENERALLY_RECOGNIZED_SAFE = "GENERALLY_RECOGNIZED_SAFE"


RISK_PRIORITY: Dict[RiskLevel, int] = {
    RiskLevel.HIGH_SCRUTINY: 3,
    RiskLevel.MODERATE_SCRUTINY: 2,
    RiskLevel.STANDARD_REVIEW: 1,
    RiskLevel.GENERALLY_RECOGNIZED_SAFE: 0,
}


class RiskDetail(BaseModel):
    risk_level: RiskLevel = RiskLevel.STANDARD_REVIEW
    reasoning: str = ""
    requires_deep_research: bool = False


class RiskAssessment(BaseModel):
    ingredients_to_research: List[str] = Field(default_factory=list)
    risk_details: Dict[str, RiskDetail] = Field(default_factory=dict)   # Keyed by exact ingredient string


class IntentProfile(BaseModel):
    persona: str = "General Health"
    context_bias: str = "Provide balanced nutritional analysis."
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM
    history_influenced: bool = False
    reasoning: Optional[str] = None
    risk_assessment: Optional[RiskAssessment] = None


# ── Research ───────────────────────────────────────────────────────────

class SourceCredibility(str, Enum):
    REGULATORY_AUTHORITY = "REGULATORY_AUTHORITY"      # FDA, EFSA, FSANZ, ...
    PEER_REVIEWED_RESEARCH = "PEER_REVIEWED_RESEARCH"
    INSTITUTIONAL_RESEARCH = "INSTITUTIONAL_RESEARCH"  # Universities, hospitals
    INDUSTRY_PUBLICATION = "INDUSTRY_PUBLICATION"
    NEWS_MEDIA = "NEWS_MEDIA"
    GENERAL_WEB = "GENERAL_WEB"


class SafetyStance(str, Enum):
    APPROVED = "APPROVED"
    CONDITIONALLY_SAFE = "CONDITIONALLY_SAFE"
    UNDER_REVIEW = "UNDER_REVIEW"
    CAUTION_ADVISED = "CAUTION_ADVISED"
    RESTRICTED = "RESTRICTED"
    PROHIBITED = "PROHIBITED"


class Region(str, Enum):
    UNITED_STATES = "UNITED_STATES"
    EUROPEAN_UNION = "EUROPEAN_UNION"
    UNITED_KINGDOM = "UNITED_KINGDOM"
    CANADA = "CANADA"
    AUSTRALIA_NZ = "AUSTRALIA_NZ"
    JAPAN = "JAPAN"
    CHINA = "CHINA"
    GLOBAL_WHO = "GLOBAL_WHO"
    OTHER = "OTHER"
    UNSPECIFIED = "UNSPECIFIED"


class ConflictType(str, Enum):
    REGIONAL = "REGIONAL"                  # Jurisdictions disagree
    SCIENTIFIC = "SCIENTIFIC"              # Studies disagree
    DOSAGE = "DOSAGE"                      # Safe below a threshold
    POPULATION = "POPULATION"              # Safe for some groups only
    TEMPORAL = "TEMPORAL"                  # Older vs newer findings
    METHODOLOGICAL = "METHODOLOGICAL"      # Study design disputes


class ConsensusStatus(str, Enum):
    CLEAR_CONSENSUS = "CLEAR_CONSENSUS"
    CONFLICTING_EVIDENCE = "CONFLICTING_EVIDENCE"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


class SourceClaim(BaseModel):
    source: str
    source_url: Optional[str] = None
    credibility: SourceCredibility = SourceCredibility.GENERAL_WEB
    claim: str = ""
    stance: SafetyStance = SafetyStance.UNDER_REVIEW
    region: Region = Region.UNSPECIFIED
    date_published: Optional[str] = None
    classification_confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class ConflictVerdict(BaseModel):
    detected: bool = False
    type: Optional[ConflictType] = None
    summary: Optional[str] = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class SourceAnalysis(BaseModel):
    """Result of the joint classify-and-detect call over one ingredient's sources."""
    claims: List[SourceClaim] = Field(default_factory=list)
    conflict: ConflictVerdict = Field(default_factory=ConflictVerdict)


class IngredientResearch(BaseModel):
    ingredient: str
    risk_level: RiskLevel = RiskLevel.STANDARD_REVIEW
    claims: List[SourceClaim] = Field(default_factory=list)
    conflict_detected: bool = False
    conflict_type: Optional[ConflictType] = None
    conflict_summary: Optional[str] = None
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    ambiguity_level: ConfidenceLevel = ConfidenceLevel.MEDIUM


class GroundedResearch(BaseModel):
    ingredient_research: List[IngredientResearch] = Field(default_factory=list)
    overall_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    unresolved_conflicts: List[str] = Field(default_factory=list)
    data_quality_warnings: List[str] = Field(default_factory=list)


class TradeOffPosition(BaseModel):
    source: str
    credibility: SourceCredibility
    region: Region
    stance: SafetyStance
    rationale: str                             # At most 200 characters


class TradeOffContext(BaseModel):
    ingredient: str
    conflict_type: ConflictType
    summary: str
    positions: List[TradeOffPosition] = Field(default_factory=list)   # At most 4
    user_guidance: str


class ResearchMetadata(BaseModel):
    sources_consulted: int = 0
    overall_confidence: int = 0                # Percent
    unresolved_conflicts: List[str] = Field(default_factory=list)
    data_warnings: List[str] = Field(default_factory=list)


class ResearchResult(BaseModel):
    analysis_text: str
    consensus_status: ConsensusStatus
    trade_off_contexts: List[TradeOffContext] = Field(default_factory=list)
    metadata: ResearchMetadata = Field(default_factory=ResearchMetadata)


# ── Dynamic UI (serialized camelCase, exactly as the client expects) ───

class UIPropType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SEVERITY = "severity"
    COLOR = "color"
    ICON = "icon"
    LIST = "list"
    KEY_VALUE = "keyValue"
    PERCENTAGE = "percentage"
    URL = "url"
    DATE = "date"


class ComponentVariant(str, Enum):
    CARD = "card"
    BANNER = "banner"
    BADGE = "badge"
    METER = "meter"
    LIST = "list"
    COMPARISON = "comparison"
    TIMELINE = "timeline"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PropDefinition(_CamelModel):
    name: str
    type: UIPropType
    description: str = ""


class ComponentSchema(_CamelModel):
    name: str
    description: str = ""
    required_props: List[PropDefinition] = Field(default_factory=list)


class UISchema(_CamelModel):
    generated_components: List[ComponentSchema] = Field(default_factory=list)


class ComponentMetadata(_CamelModel):
    intent: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    sources: List[str] = Field(default_factory=list)


class ComponentInstance(_CamelModel):
    component: str
    variant: ComponentVariant = ComponentVariant.CARD
    priority: int = Field(default=1, ge=1, le=10)
    props: Dict[str, Any] = Field(default_factory=dict)
    metadata: ComponentMetadata = Field(default_factory=ComponentMetadata)


class LayoutHints(_CamelModel):
    primary_component: Optional[str] = None
    grouping: Optional[List[List[str]]] = None


class DynamicUIResponse(_CamelModel):
    ui_schema: UISchema = Field(alias="schema")
    components: List[ComponentInstance] = Field(default_factory=list)
    layout_hints: Optional[LayoutHints] = None


# ── Request & collaborators ────────────────────────────────────────────

class ScanRequest(BaseModel):
    image: Optional[str] = None                # Base64, data URL or http(s) URL
    barcode: Optional[str] = None
    scanLocation: Optional[str] = None
    sessionId: Optional[str] = None


class ProductInfo(BaseModel):
    product_name: str
    ingredients_text: str = ""
