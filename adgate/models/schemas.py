"""
Pydantic schemas for the AdGate backend.

Field names are camelCase so the models serialize directly into the API
contract consumed by the dashboard. Models fall into four groups:

- Snapshots fed into the pure evaluators (GateInput, PeriodMetrics,
  DailyMetrics, CreativeContext, MetricsSnapshot). GateInput is frozen;
  a fresh one is built for every evaluation.
- Evaluator outputs (GateStatus, ExtractionScoringResult,
  NarrativeEligibility, ConversionDiagnosis, AccountBaseline,
  EfficiencyResult, OutcomeMeasurement, AccountLearnings).
- Persisted records (ExtractionState, Recommendation, AuditLogEntry,
  NarrativeChecklist, SystemAlert).
- API request/response envelopes.
"""

import math
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializeAsAny,
    computed_field,
    field_validator,
    model_validator,
)

from adgate.models.enums import (
    AdLpMatch,
    AlertSeverity,
    AnomalySeverity,
    AspectRatio,
    BaselineQuality,
    ConfidenceLevel,
    ContextChangeType,
    ConversionHealth,
    DeliveryHealth,
    ExtractionStatus,
    GateType,
    IneligibilityReason,
    MismatchSeverity,
    NarrativeGap,
    OfferTiming,
    OutcomeVerdict,
    Placement,
    PrimaryIssue,
    RecommendationStatus,
    RecommendationType,
    SignalCategory,
    SourceSystem,
    SystemName,
    TrackingAnomalyType,
    ValueTiming,
)


# =============================================================================
# Scoring Gates
# =============================================================================


class GateInput(BaseModel):
    """
    Immutable per-evaluation snapshot of creative facts.

    Optional fractions (iOS share, modeled-conversion share) accept anything:
    values that are missing, unparseable, NaN or outside [0, 1] become None,
    which the evaluator treats as "unknown" and handles with its
    conservative-default path.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "firstSeenAt": "2026-01-10T08:00:00Z",
                "totalSpend": 2500.0,
                "totalImpressions": 12000,
                "totalConversions": 42,
                "iosTrafficPercent": 0.35,
                "modeledConversionPercent": 0.1,
                "userAttributionWindow": "7d_click",
                "platformAttributionWindow": "7d_click",
            }
        },
    )

    firstSeenAt: datetime = Field(
        ...,
        description="When the creative first delivered an impression"
    )
    totalSpend: float = Field(default=0.0, ge=0, description="Cumulative spend")
    totalImpressions: int = Field(default=0, ge=0, description="Cumulative impressions")
    totalConversions: int = Field(default=0, ge=0, description="Cumulative conversions")
    iosTrafficPercent: Optional[float] = Field(
        default=None,
        description="Fraction (0-1) of traffic from iOS; None when unknown"
    )
    modeledConversionPercent: Optional[float] = Field(
        default=None,
        description="Fraction (0-1) of conversions that are modeled; None when unknown"
    )
    userAttributionWindow: Optional[str] = Field(
        default=None,
        description="Attribution window the advertiser reports against"
    )
    platformAttributionWindow: Optional[str] = Field(
        default=None,
        description="Attribution window the ad platform reports"
    )

    @field_validator('iosTrafficPercent', 'modeledConversionPercent', mode='before')
    @classmethod
    def _coerce_fraction(cls, value: Any) -> Optional[float]:
        if value is None or isinstance(value, bool):
            return None
        try:
            fraction = float(value)
        except (TypeError, ValueError):
            return None
        if math.isnan(fraction) or fraction < 0 or fraction > 1:
            return None
        return fraction

    @field_validator('userAttributionWindow', 'platformAttributionWindow', mode='before')
    @classmethod
    def _coerce_window(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class AgeGate(BaseModel):
    passed: bool
    hoursRemaining: int = 0


class SpendGate(BaseModel):
    passed: bool
    amountRemaining: float = 0.0


class VolumeGate(BaseModel):
    """Volume level on the confidence ladder plus distance to the next rung."""
    level: ConfidenceLevel
    current: int
    nextThreshold: Optional[int] = None


class TrafficPenalty(BaseModel):
    """iOS / modeled-conversion penalty flag."""
    penalized: bool
    dataMissing: bool = False
    percent: Optional[float] = None


class AttributionGate(BaseModel):
    blocked: bool
    message: Optional[str] = None


class GateDetails(BaseModel):
    age: AgeGate
    spend: SpendGate
    impressions: VolumeGate
    conversions: VolumeGate
    iosTraffic: TrafficPenalty
    modeledConversions: TrafficPenalty
    attributionMismatch: AttributionGate


class GateStatus(BaseModel):
    """
    Output of the scoring gate evaluator.

    Derived purely from GateInput. gateMessages preserves evaluation order:
    age, spend, impressions, conversions, iOS, modeled, attribution.
    """
    canScoreDelivery: bool
    deliveryConfidenceMax: ConfidenceLevel
    canScoreConversion: bool
    conversionConfidenceMax: ConfidenceLevel
    canShowRecommendations: bool
    gateMessages: List[str] = Field(default_factory=list)
    gates: GateDetails


# =============================================================================
# Extraction
# =============================================================================


class SignalRequirement(BaseModel):
    """Static catalog entry for one extracted signal."""
    model_config = ConfigDict(frozen=True)

    name: str
    required: bool
    confidenceImpact: int = Field(default=0, ge=0, le=30)
    category: SignalCategory
    description: str = ""


class ExtractionResult(BaseModel):
    """What the upstream media-signal extractor reports for one creative."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "extractedSignals": ["duration", "hasAudio", "aspectRatio", "cutCount"],
                "failedSignals": ["motionStartMs"],
                "errorMessage": None,
            }
        }
    )

    extractedSignals: List[str] = Field(default_factory=list)
    failedSignals: List[str] = Field(default_factory=list)
    errorMessage: Optional[str] = None


class ExtractionState(BaseModel):
    """
    Per-creative extraction record.

    `version` increases on every persisted write and backs the optimistic
    concurrency check used by retries.
    """
    userId: str
    creativeId: str
    status: ExtractionStatus = ExtractionStatus.PENDING
    extractedSignals: List[str] = Field(default_factory=list)
    missingSignals: List[str] = Field(default_factory=list)
    failedSignals: List[str] = Field(default_factory=list)
    errorMessage: Optional[str] = None
    retryCount: int = Field(default=0, ge=0)
    maxRetries: int = Field(default=3, ge=0)
    version: int = Field(default=1, ge=1)
    startedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class ExtractionConfidence(BaseModel):
    confidence: ConfidenceLevel
    penaltyTotal: int = 0
    reasons: List[str] = Field(default_factory=list)


class ExtractionScoringResult(BaseModel):
    """Whether extraction completeness allows scoring, and at what ceiling."""
    allowed: bool
    maxConfidence: ConfidenceLevel
    message: Optional[str] = None
    reasons: List[str] = Field(default_factory=list)


# =============================================================================
# Orchestration and Wrong-Blame Detection
# =============================================================================


class NarrativeEligibility(BaseModel):
    eligible: bool
    reason: IneligibilityReason


class CreativeContext(BaseModel):
    """Non-creative context captured for one period (landing page, offer text)."""
    lpUrl: Optional[str] = None
    discountText: Optional[str] = None
    priceText: Optional[str] = None
    guaranteeText: Optional[str] = None
    capturedAt: Optional[datetime] = None


class ContextChange(BaseModel):
    changeType: ContextChangeType
    previousValue: Optional[str] = None
    currentValue: Optional[str] = None
    message: str


class PeriodMetrics(BaseModel):
    """
    Aggregate delivery/conversion metrics for one period.

    Used by the tracking anomaly and audience fatigue detectors. Derived
    ratios fall back to computed values when not supplied by the platform.
    """
    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    revenue: float = 0.0
    pageViews: Optional[int] = None
    frequency: Optional[float] = None
    ctr: Optional[float] = None
    cpm: Optional[float] = None

    def effective_ctr(self) -> Optional[float]:
        if self.ctr is not None:
            return self.ctr
        if self.impressions > 0:
            return self.clicks / self.impressions * 100
        return None

    def effective_cpm(self) -> Optional[float]:
        if self.cpm is not None:
            return self.cpm
        if self.impressions > 0:
            return self.spend / self.impressions * 1000
        return None


class TrackingAnomaly(BaseModel):
    anomalyType: TrackingAnomalyType
    severity: AnomalySeverity
    message: str
    previousValue: Optional[float] = None
    currentValue: Optional[float] = None


class FatigueDiagnosis(BaseModel):
    detected: bool
    confidence: ConfidenceLevel = ConfidenceLevel.INSUFFICIENT
    indicators: List[str] = Field(default_factory=list)
    frequencyChange: Optional[float] = None
    ctrChange: Optional[float] = None
    cpmChange: Optional[float] = None
    message: Optional[str] = None


class ConversionDiagnosis(BaseModel):
    """
    Single authoritative answer to "may the creative be blamed?".

    primaryIssue is chosen by strict priority; canBlameCreative is True only
    when primaryIssue is NONE.
    """
    primaryIssue: PrimaryIssue
    canBlameCreative: bool
    confidence: ConfidenceLevel = ConfidenceLevel.HIGH
    message: str
    contextChanges: List[ContextChange] = Field(default_factory=list)
    trackingAnomaly: Optional[TrackingAnomaly] = None
    fatigue: Optional[FatigueDiagnosis] = None


class SystemActivation(BaseModel):
    """Which subsystems may speak for a creative in this evaluation."""
    systemsActivated: List[SystemName] = Field(default_factory=list)
    blockedReasons: Dict[str, str] = Field(default_factory=dict)


# =============================================================================
# Narrative Checklist
# =============================================================================


class NarrativeChecklist(BaseModel):
    """
    Observable message-structure facts about one creative.

    The fourteen fact fields are exactly the keys an LLM may fill. The
    confidence cap is derived on every read, so an LLM-filled checklist
    that the user has not confirmed can never carry more than low.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "ctaPresent": True,
                "ctaHasActionVerb": True,
                "ctaHasOutcome": False,
                "ctaHasUrgency": False,
                "benefitStated": True,
                "benefitQuantified": False,
                "timeToBenefitStated": False,
                "valueTiming": "middle",
                "offerPresent": True,
                "offerTiming": "late",
                "proofPresent": False,
                "pricingVisible": False,
                "guaranteeMentioned": False,
                "adLpMatch": "unsure",
                "userConfirmed": False,
                "llmAssisted": True,
            }
        }
    )

    ctaPresent: bool = False
    ctaHasActionVerb: bool = False
    ctaHasOutcome: bool = False
    ctaHasUrgency: bool = False
    benefitStated: bool = False
    benefitQuantified: bool = False
    timeToBenefitStated: bool = False
    valueTiming: ValueTiming = ValueTiming.NOT_PRESENT
    offerPresent: bool = False
    offerTiming: OfferTiming = OfferTiming.NOT_SHOWN
    proofPresent: bool = False
    pricingVisible: bool = False
    guaranteeMentioned: bool = False
    adLpMatch: AdLpMatch = AdLpMatch.UNSURE

    userConfirmed: bool = False
    llmAssisted: bool = False
    lastUpdated: Optional[datetime] = None

    @computed_field
    @property
    def confidenceCap(self) -> ConfidenceLevel:
        if self.llmAssisted and not self.userConfirmed:
            return ConfidenceLevel.LOW
        return ConfidenceLevel.HIGH


class NarrativeDiagnostic(BaseModel):
    findings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    primaryGap: NarrativeGap = NarrativeGap.NONE
    confidence: ConfidenceLevel = ConfidenceLevel.LOW


# =============================================================================
# Placement
# =============================================================================


class PlacementRatios(BaseModel):
    model_config = ConfigDict(frozen=True)

    accepted: List[AspectRatio]
    optimal: AspectRatio


class AspectRatioMismatch(BaseModel):
    """
    Fit of one creative's aspect ratio to one placement.

    `mismatch` is only true for a ratio the placement does not accept;
    an accepted but non-optimal ratio is reported with severity warning.
    """
    placement: Placement
    aspectRatio: AspectRatio
    optimal: AspectRatio
    mismatch: bool
    severity: MismatchSeverity = MismatchSeverity.NONE
    warning: str = ""
    suggestion: Optional[str] = None


class RateBands(BaseModel):
    model_config = ConfigDict(frozen=True)

    low: float
    medium: float
    high: float


class PlacementBenchmarks(BaseModel):
    model_config = ConfigDict(frozen=True)

    thumbstop: RateBands
    holdRate: RateBands
    ctrMultiplier: float = Field(default=1.0, description="Expected CTR relative to account baseline")


class ScoringContextValidation(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)


# =============================================================================
# Baseline and Efficiency
# =============================================================================


class BaselineSegment(BaseModel):
    model_config = ConfigDict(frozen=True)

    conversionType: str = Field(..., min_length=1, description="e.g. purchase, lead")
    placement: str = Field(default="all", description="e.g. feed, stories, reels, all")
    objective: str = Field(default="conversions", description="Campaign objective")


class DailyMetrics(BaseModel):
    """One day of metrics for one segment of an account."""
    date: date
    spend: float = 0.0
    conversions: int = 0
    revenue: float = 0.0
    impressions: int = 0
    clicks: int = 0
    conversionType: str
    placement: str = "all"
    objective: str = "conversions"
    isPromoDay: Optional[bool] = None


class AccountBaseline(BaseModel):
    """
    Segmented rolling averages for an account.

    Replaced wholesale on recompute; never partially updated.
    """
    userId: Optional[str] = None
    conversionType: str
    placement: str
    objective: str
    avgCpa: Optional[float] = None
    avgRoas: Optional[float] = None
    avgCtr: Optional[float] = None
    avgCvr: Optional[float] = None
    avgCpm: Optional[float] = None
    sampleSize: int = Field(default=0, description="Total conversions in included days")
    daysIncluded: int = 0
    promoDaysExcluded: int = 0
    periodStart: Optional[date] = None
    periodEnd: Optional[date] = None
    quality: BaselineQuality = BaselineQuality.NONE
    computedAt: Optional[datetime] = None


class EfficiencyResult(BaseModel):
    canScore: bool
    efficiencyScore: Optional[float] = Field(
        default=None,
        description="0-100; 50 means parity with baseline CPA"
    )
    cpaVsBaseline: Optional[float] = Field(
        default=None,
        description="Percent CPA improvement vs baseline (positive is better)"
    )
    roasVsBaseline: Optional[float] = Field(
        default=None,
        description="Percent ROAS change vs baseline (positive is better)"
    )
    confidence: ConfidenceLevel = ConfidenceLevel.INSUFFICIENT
    reason: Optional[str] = None


# =============================================================================
# Recommendations
# =============================================================================


class RecommendationDraft(BaseModel):
    """
    Unvalidated recommendation proposal.

    Every field is optional here so the validator can report all missing
    and malformed fields in one pass instead of failing at parse time.
    """
    model_config = ConfigDict(
        extra='ignore',
        json_schema_extra={
            "example": {
                "sourceSystem": "structure",
                "recommendationType": "motion_timing",
                "whatToChange": "Move first motion to 0-1s",
                "targetRange": "0-1s instead of 2.4s",
                "observableGap": "First motion currently appears at 2.4s",
                "metricToWatch": "thumbstop rate, CTR",
                "runDurationDays": 7,
                "confidence": "medium",
            }
        },
    )

    sourceSystem: Optional[str] = None
    recommendationType: Optional[str] = None
    recommendationText: Optional[str] = None
    whatToChange: Optional[str] = None
    targetRange: Optional[str] = None
    observableGap: Optional[str] = None
    metricToWatch: Optional[str] = None
    runDurationDays: Optional[Any] = None
    confidence: Optional[str] = None
    sourceCreativeId: Optional[str] = None


class RecommendationValidation(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)


class RecommendationSpec(BaseModel):
    """A recommendation whose specificity fields passed validation."""
    sourceSystem: SourceSystem
    recommendationType: RecommendationType
    recommendationText: Optional[str] = None
    whatToChange: str
    targetRange: str
    observableGap: str
    metricToWatch: str
    runDurationDays: int = Field(..., ge=3, le=30)
    confidence: ConfidenceLevel


class MetricsSnapshot(BaseModel):
    """Before/after metrics used to measure a recommendation's outcome."""
    spend: float = 0.0
    conversions: int = 0
    revenue: float = 0.0
    impressions: int = 0
    clicks: int = 0

    @property
    def cpa(self) -> Optional[float]:
        return self.spend / self.conversions if self.conversions > 0 else None

    @property
    def roas(self) -> Optional[float]:
        return self.revenue / self.spend if self.spend > 0 else None


class ComparisonPeriod(BaseModel):
    beforeStart: datetime
    beforeEnd: datetime
    afterStart: datetime
    afterEnd: datetime


class OutcomeMeasurement(BaseModel):
    verdict: OutcomeVerdict
    confidence: ConfidenceLevel
    conversions: int
    cpaChange: Optional[float] = Field(
        default=None,
        description="Percent CPA improvement (positive means CPA fell)"
    )
    roasChange: Optional[float] = None
    runDurationDays: int
    comparisonPeriod: ComparisonPeriod
    measuredAt: datetime


class Recommendation(RecommendationSpec):
    """Persisted recommendation with lifecycle and outcome fields."""
    id: str
    userId: str
    sourceCreativeId: Optional[str] = None
    status: RecommendationStatus = RecommendationStatus.PENDING
    followedAt: Optional[datetime] = None
    ignoredAt: Optional[datetime] = None
    linkedCreativeId: Optional[str] = None
    outcomeVerdict: Optional[OutcomeVerdict] = None
    outcomeCpaChange: Optional[float] = None
    outcomeRoasChange: Optional[float] = None
    outcomeConversions: Optional[int] = None
    outcomeConfidence: Optional[ConfidenceLevel] = None
    outcomeMeasuredAt: Optional[datetime] = None
    createdAt: datetime
    updatedAt: Optional[datetime] = None


class AccountPattern(BaseModel):
    recommendationType: RecommendationType
    sampleSize: int
    successRate: float = Field(..., description="Percent of samples that improved")
    avgCpaImprovement: float = 0.0
    avgRoasImprovement: float = 0.0
    recencyDays: int = 0
    lastUpdated: Optional[datetime] = None


class AccountLearnings(BaseModel):
    userId: Optional[str] = None
    patterns: List[AccountPattern] = Field(default_factory=list)
    totalMeasured: int = 0
    computedAt: Optional[datetime] = None


class RankedRecommendation(BaseModel):
    recommendation: SerializeAsAny[RecommendationSpec]
    originalConfidence: ConfidenceLevel
    adjustedConfidence: ConfidenceLevel
    accountSuccessRate: Optional[float] = None
    adjustment: str = Field(default="unchanged", description="boosted, demoted or unchanged")
    reason: Optional[str] = None


class TypePerformance(BaseModel):
    recommendationType: RecommendationType
    successRate: float


class MonthlySummary(BaseModel):
    month: str
    recommendationsGenerated: int = 0
    recommendationsFollowed: int = 0
    recommendationsIgnored: int = 0
    outcomesMeasured: int = 0
    successRate: float = 0.0
    avgCpaImprovement: float = 0.0
    topPerformingTypes: List[TypePerformance] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)


# =============================================================================
# Audit Trail
# =============================================================================


class AuditLogEntry(BaseModel):
    """
    One append-only decision record.

    stepOrder, id and createdAt are assigned by the store on append.
    """
    traceId: str
    userId: str
    creativeId: Optional[str] = None
    gateType: GateType
    gateStatus: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Snapshot of the decision inputs/outputs at this step"
    )
    systemsActivated: List[SystemName] = Field(default_factory=list)
    blocked: bool = False
    blockedReason: Optional[str] = None
    versions: Dict[str, str] = Field(default_factory=dict)
    id: Optional[str] = None
    stepOrder: Optional[int] = None
    createdAt: Optional[datetime] = None


# =============================================================================
# Alerting
# =============================================================================


class SystemAlert(BaseModel):
    ruleId: str
    name: str
    severity: AlertSeverity
    message: str
    triggeredAt: datetime
    notified: bool = False


# =============================================================================
# API Envelopes
# =============================================================================


class NarrativeEligibilityRequest(BaseModel):
    deliveryHealth: DeliveryHealth
    conversionHealth: ConversionHealth
    totalConversions: int = Field(default=0, ge=0)


class NarrativeEligibilityResponse(NarrativeEligibility):
    message: str


class DiagnosisRequest(BaseModel):
    """Inputs for the wrong-blame chain; detectors run server side."""
    previousContext: Optional[CreativeContext] = None
    currentContext: Optional[CreativeContext] = None
    previousMetrics: Optional[PeriodMetrics] = None
    currentMetrics: Optional[PeriodMetrics] = None
    hasAttributionGap: bool = False


class EfficiencyRequest(BaseModel):
    currentCpa: float = Field(..., ge=0)
    currentRoas: float = Field(default=0.0, ge=0)
    currentConversions: int = Field(..., ge=0)
    baseline: Optional[AccountBaseline] = None


class BaselineComputeRequest(BaseModel):
    userId: str
    segment: BaselineSegment
    days: List[DailyMetrics]
    persist: bool = False


class EvaluationRequest(BaseModel):
    """Everything needed for one end-to-end creative evaluation."""
    userId: str
    creativeId: str
    gateInput: GateInput
    deliveryHealth: DeliveryHealth
    conversionHealth: ConversionHealth
    extraction: Optional[ExtractionState] = None
    diagnosis: DiagnosisRequest = Field(default_factory=DiagnosisRequest)


class EvaluationResponse(BaseModel):
    traceId: str
    gateStatus: GateStatus
    extraction: Optional[ExtractionScoringResult] = None
    deliveryConfidence: ConfidenceLevel
    conversionConfidence: ConfidenceLevel
    narrativeEligibility: NarrativeEligibility
    diagnosis: ConversionDiagnosis
    activation: SystemActivation
    messages: List[str] = Field(default_factory=list)


class FollowRequest(BaseModel):
    linkedCreativeId: Optional[str] = None


class OutcomeRequest(BaseModel):
    before: MetricsSnapshot
    after: MetricsSnapshot


class RankRequest(BaseModel):
    recommendations: List[RecommendationSpec]
    learnings: Optional[AccountLearnings] = None
    userId: Optional[str] = None


class LlmOutputRequest(BaseModel):
    rawText: Optional[str] = None
    record: Optional[Dict[str, Any]] = None


class RecommendationCreateRequest(RecommendationDraft):
    userId: str = Field(..., min_length=1)
    traceId: Optional[str] = Field(
        default=None,
        description="Evaluation trace to append the generation step to; a new trace is started when omitted"
    )


class ChecklistConfirmRequest(BaseModel):
    """Stored or prefilled checklist plus the user's edits."""
    checklist: NarrativeChecklist
    edits: Optional[Dict[str, Any]] = None


class PlacementCheckRequest(BaseModel):
    """Either aspectRatio or both width and height must be given."""
    placement: Optional[Placement] = None
    aspectRatio: Optional[AspectRatio] = None
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    creativeId: Optional[str] = None
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM

    @model_validator(mode='after')
    def _ratio_or_dimensions(self) -> 'PlacementCheckRequest':
        if self.aspectRatio is None and (self.width is None or self.height is None):
            raise ValueError('aspectRatio or both width and height are required')
        return self


class PlacementCheckResponse(BaseModel):
    context: ScoringContextValidation
    mismatch: Optional[AspectRatioMismatch] = None
    benchmarks: PlacementBenchmarks
    recommendation: Optional[RecommendationDraft] = None
