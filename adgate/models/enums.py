"""
Enumeration definitions for the AdGate backend.

All enums inherit from both `str` and `Enum` so they serialize as plain strings
in Pydantic models and API responses.

Groups:
- Confidence lattice: ConfidenceLevel
- Health inputs to the activation orchestrator: DeliveryHealth, ConversionHealth
- Extraction: ExtractionStatus, SignalCategory
- Orchestration: IneligibilityReason, PrimaryIssue, ContextChangeType,
  TrackingAnomalyType, AnomalySeverity, SystemName
- Narrative checklist: ValueTiming, OfferTiming, AdLpMatch, NarrativeGap
- Placement: Placement, AspectRatio, MismatchSeverity
- Baseline: BaselineQuality
- Recommendations: SourceSystem, RecommendationType, RecommendationStatus,
  OutcomeVerdict
- Audit and alerting: GateType, AlertSeverity
"""

from enum import Enum


# =============================================================================
# Confidence Lattice
# =============================================================================

class ConfidenceLevel(str, Enum):
    """
    Totally ordered confidence value.

    Order: insufficient(0) < low(1) < medium(2) < high(3)

    Lattice operations (clamp, step_up, step_down) live in
    adgate.services.confidence; `rank` exposes the position in the order.
    """
    INSUFFICIENT = "insufficient"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {
    ConfidenceLevel.INSUFFICIENT: 0,
    ConfidenceLevel.LOW: 1,
    ConfidenceLevel.MEDIUM: 2,
    ConfidenceLevel.HIGH: 3,
}


# =============================================================================
# Health Inputs
# =============================================================================

class DeliveryHealth(str, Enum):
    """Delivery (structure) health as reported by the Structure subsystem."""
    HEALTHY = "healthy"
    RISKY = "risky"
    POOR = "poor"


class ConversionHealth(str, Enum):
    """Conversion health as reported by the Conversion subsystem."""
    GOOD = "good"
    BAD = "bad"
    INSUFFICIENT = "insufficient"


# =============================================================================
# Extraction
# =============================================================================

class ExtractionStatus(str, Enum):
    """
    Per-creative extraction state.

    Transitions: pending -> {complete | partial | failed}; failed -> pending
    only via an explicit retry.
    """
    PENDING = "pending"
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


class SignalCategory(str, Enum):
    """What kind of measurement an extracted signal is."""
    TIMING = "timing"
    VISUAL = "visual"
    AUDIO = "audio"
    METADATA = "metadata"


# =============================================================================
# Orchestration
# =============================================================================

class IneligibilityReason(str, Enum):
    """
    Closed set of narrative eligibility reasons.

    ELIGIBLE is the reason carried by an eligible result; every other member
    explains a refusal.
    """
    ELIGIBLE = "delivery_healthy_conversion_bad"
    DELIVERY_UNHEALTHY = "delivery_unhealthy"
    CONVERSION_HEALTHY = "conversion_healthy"
    INSUFFICIENT_DATA = "insufficient_data"
    INSUFFICIENT_CONVERSIONS = "insufficient_conversions"


class PrimaryIssue(str, Enum):
    """Dominant explanation chosen by the wrong-blame priority chain."""
    TRACKING = "tracking"
    EXTERNAL_CHANGE = "external_change"
    AUDIENCE_FATIGUE = "audience_fatigue"
    ATTRIBUTION_GAP = "attribution_gap"
    NONE = "none"


class ContextChangeType(str, Enum):
    """Observable non-creative change between two periods."""
    LP_URL = "lp_url"
    DISCOUNT = "discount"
    PRICE = "price"
    GUARANTEE = "guarantee"


class TrackingAnomalyType(str, Enum):
    CONVERSION_DROP = "conversion_drop"
    PAGEVIEW_CONVERSION_MISMATCH = "pageview_conversion_mismatch"
    ZERO_CONVERSIONS = "zero_conversions"


class AnomalySeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class SystemName(str, Enum):
    """The three analysis subsystems the orchestrator may activate."""
    STRUCTURE = "structure"
    NARRATIVE = "narrative"
    CONVERSION = "conversion"


# =============================================================================
# Narrative Checklist
# =============================================================================

class ValueTiming(str, Enum):
    OPENING = "opening"
    MIDDLE = "middle"
    END = "end"
    NOT_PRESENT = "not_present"


class OfferTiming(str, Enum):
    EARLY = "early"
    MID = "mid"
    LATE = "late"
    NOT_SHOWN = "not_shown"


class AdLpMatch(str, Enum):
    YES = "yes"
    UNSURE = "unsure"
    NO = "no"


class NarrativeGap(str, Enum):
    """Primary structural gap found by narrative diagnosis."""
    VALUE_TIMING = "value_timing"
    OFFER_TIMING = "offer_timing"
    MISSING_PROOF = "missing_proof"
    UNCLEAR_CTA = "unclear_cta"
    NO_PRICING = "no_pricing"
    MISSING_GUARANTEE = "missing_guarantee"
    AD_LP_MISMATCH = "ad_lp_mismatch"
    NONE = "none"


# =============================================================================
# Placement
# =============================================================================

class Placement(str, Enum):
    """Ad placement a creative is delivered into."""
    FEED = "feed"
    REELS = "reels"
    STORIES = "stories"
    AUDIENCE_NETWORK = "audience_network"
    MESSENGER = "messenger"
    RIGHT_COLUMN = "right_column"
    SEARCH = "search"
    UNKNOWN = "unknown"


class AspectRatio(str, Enum):
    """Aspect ratio bucket of a creative; anything else is `other`."""
    SQUARE = "1:1"
    PORTRAIT = "4:5"
    VERTICAL = "9:16"
    LANDSCAPE = "16:9"
    TALL = "2:3"
    OTHER = "other"


class MismatchSeverity(str, Enum):
    """
    critical: the placement does not accept the ratio (cropped or letterboxed)
    warning: accepted but not the placement's optimal ratio
    """
    CRITICAL = "critical"
    WARNING = "warning"
    NONE = "none"


# =============================================================================
# Baseline
# =============================================================================

class BaselineQuality(str, Enum):
    """
    Baseline quality keyed purely on total-conversion sample size.

    Thresholds (configurable): high >= 200, medium >= 50, low >= 10, else none.
    """
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =============================================================================
# Recommendations
# =============================================================================

class SourceSystem(str, Enum):
    """Subsystem that produced a recommendation."""
    STRUCTURE = "structure"
    NARRATIVE = "narrative"
    CONVERSION = "conversion"


class RecommendationType(str, Enum):
    """
    Closed set of recommendation types, grouped by source system.

    Grouping is defined in adgate.services.recommendations.TYPES_BY_SYSTEM.
    """
    # Structure
    MOTION_TIMING = "motion_timing"
    CUT_DENSITY = "cut_density"
    TEXT_APPEARANCE = "text_appearance"
    ASPECT_RATIO = "aspect_ratio"
    OPENING_HOOK = "opening_hook"
    AUDIO_LEVELS = "audio_levels"
    # Narrative
    VALUE_TIMING = "value_timing"
    OFFER_TIMING = "offer_timing"
    CTA_CLARITY = "cta_clarity"
    PROOF_ADDITION = "proof_addition"
    PRICING_VISIBILITY = "pricing_visibility"
    GUARANTEE_ADDITION = "guarantee_addition"
    AD_LP_ALIGNMENT = "ad_lp_alignment"
    # Conversion
    LANDING_PAGE = "landing_page"
    CHECKOUT_FLOW = "checkout_flow"
    OFFER_STRENGTH = "offer_strength"
    TRACKING_FIX = "tracking_fix"
    AUDIENCE_REFRESH = "audience_refresh"
    BUDGET_ADJUSTMENT = "budget_adjustment"


class RecommendationStatus(str, Enum):
    """Lifecycle: pending -> followed | ignored."""
    PENDING = "pending"
    FOLLOWED = "followed"
    IGNORED = "ignored"


class OutcomeVerdict(str, Enum):
    """Terminal verdict recorded once for a followed recommendation."""
    IMPROVED = "improved"
    NEUTRAL = "neutral"
    DECLINED = "declined"
    INSUFFICIENT_DATA = "insufficient_data"


# =============================================================================
# Audit and Alerting
# =============================================================================

class GateType(str, Enum):
    """Kind of decision recorded in the audit trail."""
    SCORE_ATTEMPT = "score_attempt"
    RECOMMENDATION_GEN = "recommendation_gen"
    SYSTEM_ACTIVATION = "system_activation"
    ELIGIBILITY_CHECK = "eligibility_check"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"
