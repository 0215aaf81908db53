"""
Package initialization file for AdGate models.

Re-exports all Pydantic schemas and enumerations so other modules can write:

    from adgate.models import GateInput, GateStatus, ConfidenceLevel
"""

# =============================================================================
# Enums
# =============================================================================

from adgate.models.enums import (
    ConfidenceLevel,
    DeliveryHealth,
    ConversionHealth,
    ExtractionStatus,
    SignalCategory,
    IneligibilityReason,
    PrimaryIssue,
    ContextChangeType,
    TrackingAnomalyType,
    AnomalySeverity,
    SystemName,
    ValueTiming,
    OfferTiming,
    AdLpMatch,
    NarrativeGap,
    BaselineQuality,
    SourceSystem,
    RecommendationType,
    RecommendationStatus,
    OutcomeVerdict,
    GateType,
    AlertSeverity,
)

# =============================================================================
# Schemas
# =============================================================================

from adgate.models.schemas import (
    # Gates
    GateInput,
    AgeGate,
    SpendGate,
    VolumeGate,
    TrafficPenalty,
    AttributionGate,
    GateDetails,
    GateStatus,
    # Extraction
    SignalRequirement,
    ExtractionResult,
    ExtractionState,
    ExtractionConfidence,
    ExtractionScoringResult,
    # Orchestration
    NarrativeEligibility,
    CreativeContext,
    ContextChange,
    PeriodMetrics,
    TrackingAnomaly,
    FatigueDiagnosis,
    ConversionDiagnosis,
    SystemActivation,
    # Narrative
    NarrativeChecklist,
    NarrativeDiagnostic,
    # Baseline
    BaselineSegment,
    DailyMetrics,
    AccountBaseline,
    EfficiencyResult,
    # Recommendations
    RecommendationDraft,
    RecommendationValidation,
    RecommendationSpec,
    MetricsSnapshot,
    ComparisonPeriod,
    OutcomeMeasurement,
    Recommendation,
    AccountPattern,
    AccountLearnings,
    RankedRecommendation,
    TypePerformance,
    MonthlySummary,
    # Audit / alerting
    AuditLogEntry,
    SystemAlert,
    # API envelopes
    NarrativeEligibilityRequest,
    NarrativeEligibilityResponse,
    DiagnosisRequest,
    EfficiencyRequest,
    BaselineComputeRequest,
    EvaluationRequest,
    EvaluationResponse,
    FollowRequest,
    OutcomeRequest,
    RankRequest,
    LlmOutputRequest,
    RecommendationCreateRequest,
    ChecklistConfirmRequest,
)
