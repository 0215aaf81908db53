"""
Placement awareness for delivery scoring.

Delivery scores only mean something relative to the placement a creative
runs in: a 1:1 video in reels is cropped, a stories thumbstop rate is not
comparable to a right-column one. This module holds the per-placement
aspect-ratio catalogue and benchmark bands, buckets raw dimensions into a
named ratio, and reports how well a ratio fits a placement.

Mismatch severities:
    critical -> ratio not accepted (cropped or letterboxed)
    warning  -> accepted, but not the placement's optimal ratio
    none     -> optimal ratio

Everything here is pure and works on mechanical measurements only.

Usage:
    from adgate.services.placement import detect_aspect_ratio_mismatch, parse_aspect_ratio

    ratio = parse_aspect_ratio(1080, 1080)
    fit = detect_aspect_ratio_mismatch(ratio, 'reels')
    if fit.mismatch:
        ...
"""

import logging
from typing import Dict, Optional, Union

from adgate.core.config import Settings, get_settings
from adgate.models.enums import AspectRatio, MismatchSeverity, Placement
from adgate.models.schemas import (
    AspectRatioMismatch,
    PlacementBenchmarks,
    PlacementRatios,
    RateBands,
    ScoringContextValidation,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Catalogues
# =============================================================================

_A = AspectRatio

PLACEMENT_ASPECT_RATIOS: Dict[Placement, PlacementRatios] = {
    Placement.FEED: PlacementRatios(accepted=[_A.SQUARE, _A.PORTRAIT, _A.LANDSCAPE], optimal=_A.SQUARE),
    Placement.REELS: PlacementRatios(accepted=[_A.VERTICAL], optimal=_A.VERTICAL),
    Placement.STORIES: PlacementRatios(accepted=[_A.VERTICAL], optimal=_A.VERTICAL),
    Placement.AUDIENCE_NETWORK: PlacementRatios(accepted=[_A.LANDSCAPE, _A.SQUARE], optimal=_A.LANDSCAPE),
    Placement.MESSENGER: PlacementRatios(accepted=[_A.SQUARE, _A.PORTRAIT], optimal=_A.SQUARE),
    Placement.RIGHT_COLUMN: PlacementRatios(accepted=[_A.SQUARE], optimal=_A.SQUARE),
    Placement.SEARCH: PlacementRatios(accepted=[_A.SQUARE, _A.LANDSCAPE], optimal=_A.SQUARE),
    Placement.UNKNOWN: PlacementRatios(
        accepted=[_A.SQUARE, _A.PORTRAIT, _A.VERTICAL, _A.LANDSCAPE],
        optimal=_A.SQUARE,
    ),
}


def _benchmarks(thumbstop, hold_rate, ctr_multiplier: float) -> PlacementBenchmarks:
    return PlacementBenchmarks(
        thumbstop=RateBands(low=thumbstop[0], medium=thumbstop[1], high=thumbstop[2]),
        holdRate=RateBands(low=hold_rate[0], medium=hold_rate[1], high=hold_rate[2]),
        ctrMultiplier=ctr_multiplier,
    )


# (low, medium, high) bands; ctrMultiplier is relative to the account baseline
PLACEMENT_BENCHMARKS: Dict[Placement, PlacementBenchmarks] = {
    Placement.FEED: _benchmarks((0.15, 0.25, 0.35), (0.10, 0.20, 0.30), 1.0),
    Placement.REELS: _benchmarks((0.20, 0.35, 0.50), (0.15, 0.30, 0.45), 0.7),
    Placement.STORIES: _benchmarks((0.25, 0.40, 0.55), (0.20, 0.35, 0.50), 0.8),
    Placement.AUDIENCE_NETWORK: _benchmarks((0.10, 0.18, 0.25), (0.08, 0.15, 0.22), 1.5),
    Placement.MESSENGER: _benchmarks((0.15, 0.25, 0.35), (0.12, 0.22, 0.32), 1.2),
    Placement.RIGHT_COLUMN: _benchmarks((0.05, 0.10, 0.15), (0.03, 0.08, 0.12), 0.5),
    Placement.SEARCH: _benchmarks((0.10, 0.20, 0.30), (0.08, 0.15, 0.22), 1.3),
    Placement.UNKNOWN: _benchmarks((0.15, 0.25, 0.35), (0.10, 0.20, 0.30), 1.0),
}

# Width / height of each named ratio, checked in this order
RATIO_VALUES = (
    (_A.SQUARE, 1.0),
    (_A.PORTRAIT, 0.8),
    (_A.VERTICAL, 0.5625),
    (_A.LANDSCAPE, 1.778),
    (_A.TALL, 0.667),
)

MISSING_PLACEMENT_ERROR = 'Cannot score without placement context. Scores are placement-specific.'


# =============================================================================
# Ratio Parsing
# =============================================================================

def parse_aspect_ratio(width: float, height: float, settings: Optional[Settings] = None) -> AspectRatio:
    """
    Bucket pixel dimensions into a named aspect ratio.

    A ratio within settings.aspect_ratio_tolerance of a named ratio snaps to
    it; anything else is AspectRatio.OTHER.

    Raises:
        ValueError: width or height is not positive.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f'Dimensions must be positive, got {width}x{height}')

    settings = settings or get_settings()
    ratio = width / height
    for name, value in RATIO_VALUES:
        if abs(ratio - value) < settings.aspect_ratio_tolerance:
            return name
    return AspectRatio.OTHER


# =============================================================================
# Mismatch Detection
# =============================================================================

def detect_aspect_ratio_mismatch(
    aspect_ratio: Union[AspectRatio, str],
    placement: Union[Placement, str],
) -> AspectRatioMismatch:
    """
    Report how a creative's aspect ratio fits a placement.

    Raises:
        ValueError: placement or aspect_ratio is not a known value.
    """
    aspect_ratio = AspectRatio(aspect_ratio)
    placement = Placement(placement)
    config = PLACEMENT_ASPECT_RATIOS[placement]

    if aspect_ratio == config.optimal:
        return AspectRatioMismatch(
            placement=placement,
            aspectRatio=aspect_ratio,
            optimal=config.optimal,
            mismatch=False,
        )

    if aspect_ratio in config.accepted:
        return AspectRatioMismatch(
            placement=placement,
            aspectRatio=aspect_ratio,
            optimal=config.optimal,
            mismatch=False,
            severity=MismatchSeverity.WARNING,
            warning=(
                f"{aspect_ratio.value} is accepted in {placement.value}, "
                f"but {config.optimal.value} is optimal."
            ),
            suggestion=f"Consider creating a {config.optimal.value} version for {placement.value}.",
        )

    expected = ' or '.join(ratio.value for ratio in config.accepted)
    logger.debug("Aspect ratio %s not accepted in %s", aspect_ratio.value, placement.value)
    return AspectRatioMismatch(
        placement=placement,
        aspectRatio=aspect_ratio,
        optimal=config.optimal,
        mismatch=True,
        severity=MismatchSeverity.CRITICAL,
        warning=(
            f"This {aspect_ratio.value} creative will be cropped or letterboxed "
            f"in {placement.value} (expects {expected})."
        ),
        suggestion=f"Create a {config.optimal.value} version for {placement.value} to avoid cropping.",
    )


# =============================================================================
# Scoring Context
# =============================================================================

def validate_scoring_context(placement: Optional[Union[Placement, str]]) -> ScoringContextValidation:
    """Delivery scores need a concrete placement; unknown does not count."""
    errors = []
    if placement is None or Placement(placement) == Placement.UNKNOWN:
        errors.append(MISSING_PLACEMENT_ERROR)
    return ScoringContextValidation(valid=not errors, errors=errors)


def get_placement_benchmarks(placement: Optional[Union[Placement, str]]) -> PlacementBenchmarks:
    """Benchmark bands for a placement; unrecognised placements get the unknown bands."""
    if placement in {p.value for p in Placement}:
        return PLACEMENT_BENCHMARKS[Placement(placement)]
    return PLACEMENT_BENCHMARKS[Placement.UNKNOWN]
