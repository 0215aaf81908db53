"""
Confidence lattice operations.

The lattice is the total order insufficient < low < medium < high. Every
confidence value produced by the evaluators starts from an optimistic default
and is narrowed with clamp(); nothing in one evaluation pass moves a value
back up. The only upward movement anywhere is step_up(), used by the
meta-learning ranker on *future* recommendations.

Properties relied on by callers:
    clamp(clamp(x, a), b) == clamp(x, min_level(a, b))
    clamp(x, c) <= x and clamp(x, c) <= c
"""

from typing import Iterable, Optional

from adgate.core.config import Settings, get_settings
from adgate.models.enums import BaselineQuality, ConfidenceLevel


# =============================================================================
# Lattice Order
# =============================================================================

LATTICE = (
    ConfidenceLevel.INSUFFICIENT,
    ConfidenceLevel.LOW,
    ConfidenceLevel.MEDIUM,
    ConfidenceLevel.HIGH,
)

CONFIDENCE_LABELS = {
    ConfidenceLevel.HIGH: 'High confidence',
    ConfidenceLevel.MEDIUM: 'Medium confidence',
    ConfidenceLevel.LOW: 'Low confidence - early signal',
    ConfidenceLevel.INSUFFICIENT: 'Insufficient data',
}


def min_level(*levels: ConfidenceLevel) -> ConfidenceLevel:
    """Lowest of the given levels (meet in the lattice)."""
    return min(levels, key=lambda level: level.rank)


def max_level(*levels: ConfidenceLevel) -> ConfidenceLevel:
    return max(levels, key=lambda level: level.rank)


def clamp(value: ConfidenceLevel, ceiling: ConfidenceLevel) -> ConfidenceLevel:
    """Return value, lowered to ceiling if it sits above it."""
    return value if value.rank <= ceiling.rank else ceiling


def clamp_all(value: ConfidenceLevel, ceilings: Iterable[Optional[ConfidenceLevel]]) -> ConfidenceLevel:
    """Apply a chain of ceilings; None entries impose no ceiling."""
    for ceiling in ceilings:
        if ceiling is not None:
            value = clamp(value, ceiling)
    return value


def step_up(value: ConfidenceLevel, cap: ConfidenceLevel = ConfidenceLevel.HIGH) -> ConfidenceLevel:
    """One step toward high, never past cap."""
    if value.rank >= cap.rank:
        return value
    return LATTICE[LATTICE.index(value) + 1]


def step_down(value: ConfidenceLevel, floor: ConfidenceLevel = ConfidenceLevel.LOW) -> ConfidenceLevel:
    """One step toward insufficient, never below floor."""
    if value.rank <= floor.rank:
        return value
    return LATTICE[LATTICE.index(value) - 1]


# =============================================================================
# Ladders
# =============================================================================

def from_conversion_count(
    conversions: int,
    settings: Optional[Settings] = None,
) -> ConfidenceLevel:
    """
    Map a conversion count onto the shared 10/30/100 ladder.

    Used by the conversion gate, efficiency scoring and outcome measurement
    so the three never disagree about what a conversion count is worth.
    """
    settings = settings or get_settings()
    if conversions >= settings.conversions_high:
        return ConfidenceLevel.HIGH
    if conversions >= settings.conversions_medium:
        return ConfidenceLevel.MEDIUM
    if conversions >= settings.conversions_low:
        return ConfidenceLevel.LOW
    return ConfidenceLevel.INSUFFICIENT


def from_impression_count(
    impressions: int,
    settings: Optional[Settings] = None,
) -> ConfidenceLevel:
    """Impression ladder; delivery has no insufficient tier."""
    settings = settings or get_settings()
    if impressions >= settings.impressions_high:
        return ConfidenceLevel.HIGH
    if impressions >= settings.impressions_medium:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def from_baseline_quality(quality: BaselineQuality) -> ConfidenceLevel:
    """Ceiling imposed by baseline quality; NONE maps to insufficient."""
    return {
        BaselineQuality.NONE: ConfidenceLevel.INSUFFICIENT,
        BaselineQuality.LOW: ConfidenceLevel.LOW,
        BaselineQuality.MEDIUM: ConfidenceLevel.MEDIUM,
        BaselineQuality.HIGH: ConfidenceLevel.HIGH,
    }[quality]


def get_confidence_label(level: ConfidenceLevel) -> str:
    return CONFIDENCE_LABELS[level]
