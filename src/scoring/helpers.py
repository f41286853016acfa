"""
Scoring Helper Functions and Constants

Contains the CTR curve, competition buckets, the shared sample-size
confidence policy and normalization utilities used by both the
opportunity scorer and the revenue calculator.
"""

import math
from dataclasses import dataclass
from typing import Dict, Tuple


# ============================================================================
# CTR CURVE (industry-standard organic CTR by rank)
# ============================================================================

CTR_CURVE: Dict[int, float] = {
    1: 0.285,   # 28.5% CTR for position 1
    2: 0.157,   # 15.7%
    3: 0.110,   # 11.0%
    4: 0.080,   # 8.0%
    5: 0.049,   # 4.9%
    6: 0.040,   # 4.0%
    7: 0.032,   # 3.2%
    8: 0.026,   # 2.6%
    9: 0.021,   # 2.1%
    10: 0.016,  # 1.6%
}

# Exponential decay applied past the last tabulated rank
CTR_DECAY_RATE = 0.2


@dataclass(frozen=True)
class CTRCurve:
    """
    Expected CTR lookup.

    Integer ranks come from the table; ranks beyond the table decay
    exponentially from the last tabulated value. Positions below 1 are
    invalid and have no expected CTR.
    """
    table: Tuple[Tuple[int, float], ...] = tuple(sorted(CTR_CURVE.items()))
    decay_rate: float = CTR_DECAY_RATE

    def expected_ctr(self, position: float) -> float:
        if position < 1:
            return 0.0

        rank = int(math.floor(position + 0.5))
        lookup = dict(self.table)
        if rank in lookup:
            return lookup[rank]

        last_rank, last_ctr = self.table[-1]
        return last_ctr * math.exp(-self.decay_rate * (rank - last_rank))


DEFAULT_CTR_CURVE = CTRCurve()


def get_ctr_for_position(position: float) -> float:
    """Expected CTR for a position on the default curve."""
    return DEFAULT_CTR_CURVE.expected_ctr(position)


# ============================================================================
# COMPETITION
# ============================================================================

# (upper bound of observed/expected CTR ratio, factor)
COMPETITION_BUCKETS: Tuple[Tuple[float, float], ...] = (
    (0.3, 0.5),    # Far below the curve: heavy SERP competition
    (0.6, 0.7),
    (0.9, 0.85),
)


def ctr_ratio(actual_ctr: float, expected_ctr: float) -> float:
    """Observed CTR relative to the curve (1.0 when the curve has no value)."""
    if expected_ctr <= 0:
        return 1.0
    return actual_ctr / expected_ctr


def competition_factor(ratio: float) -> float:
    """
    Bucket an observed/expected CTR ratio into a competition discount.

    Args:
        ratio: actual CTR divided by expected CTR

    Returns:
        0.5, 0.7, 0.85 or 1.0
    """
    for upper_bound, factor in COMPETITION_BUCKETS:
        if ratio < upper_bound:
            return factor
    return 1.0


# ============================================================================
# SHARED CONFIDENCE POLICY
# ============================================================================

MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 1.0

# (threshold, multiplier) - first match wins
IMPRESSION_CONFIDENCE: Tuple[Tuple[int, float], ...] = ((100, 0.5), (1000, 0.75))
TRANSACTION_CONFIDENCE: Tuple[Tuple[int, float], ...] = ((5, 0.5), (20, 0.75))


def _step_multiplier(value: float, steps: Tuple[Tuple[int, float], ...]) -> float:
    for threshold, multiplier in steps:
        if value < threshold:
            return multiplier
    return 1.0


def sample_size_confidence(impressions: int, transactions: int) -> float:
    """
    Confidence multiplier for the amount of observed data.

    Low impression or transaction counts each discount confidence.
    The result is unclamped; callers clamp after applying their own
    discounts.
    """
    return (
        _step_multiplier(impressions, IMPRESSION_CONFIDENCE)
        * _step_multiplier(transactions, TRANSACTION_CONFIDENCE)
    )


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    """Clamp value into [lower, upper]."""
    return max(lower, min(upper, value))


def clamp_confidence(value: float) -> float:
    return clamp(value, MIN_CONFIDENCE, MAX_CONFIDENCE)


# ============================================================================
# NORMALIZATION
# ============================================================================

def normalize_volume(volume: int, max_volume: int) -> float:
    """
    Logarithmic normalization of a traffic count to 0-1.

    Large-traffic nodes grow logarithmically so they don't dominate
    linearly.

    Args:
        volume: Observed count (impressions)
        max_volume: Maximum count used as the top of the scale

    Returns:
        Normalized value (0.0 - 1.0)
    """
    if volume <= 0:
        return 0.0

    if max_volume <= 0:
        max_volume = volume

    return clamp(math.log10(volume + 1) / math.log10(max_volume + 1))


def normalize_linear(value: float, max_value: float) -> float:
    """Linear normalization of value against max_value, clamped to 0-1."""
    if value <= 0 or max_value <= 0:
        return 0.0
    return clamp(value / max_value)
