"""
Scoring Module for the Taxonomy Opportunity Engine

This module provides two core calculations:

1. **Opportunity Score** (0-100)
   Composite score representing a node's optimization potential.
   Components: Search Volume, CTR Gap, Position Potential, Competition, Revenue Impact

2. **Revenue Projection**
   Projected clicks, sessions, transactions and revenue at a target position,
   with lift, ROI, confidence (0.1-1.0) and time to impact.

Example Usage:
    from src.models import NodeMetrics
    from src.scoring import OpportunityScorer, RevenueCalculator

    node = NodeMetrics(
        node_id="running-shoes",
        position=8.4,
        impressions=12000,
        clicks=240,
        sessions=210,
        revenue=8400.0,
        transactions=70,
    )

    score = OpportunityScorer().score(node)
    print(f"Opportunity Score: {score.score}")

    projection = RevenueCalculator().project(node, target_position=3)
    print(f"Annual lift: {projection.lift.annual_revenue_lift:.0f}")
"""

# Helper utilities and constants
from .helpers import (
    CTR_CURVE,
    CTRCurve,
    DEFAULT_CTR_CURVE,
    get_ctr_for_position,
    competition_factor,
    ctr_ratio,
    sample_size_confidence,
    clamp_confidence,
    normalize_volume,
    normalize_linear,
    MIN_CONFIDENCE,
    MAX_CONFIDENCE,
)

# Opportunity scoring
from .opportunity import (
    DEFAULT_WEIGHTS,
    OpportunityScorer,
    ScoringConfig,
    ScoringContext,
    position_potential,
)

# Revenue projection
from .revenue import (
    CalculatorConfig,
    RevenueCalculator,
    classify_improvement,
    conversion_rate_improvement,
    default_target_position,
    estimate_cost,
    estimate_time_to_impact,
    projection_confidence,
)

__all__ = [
    # Helpers
    "CTR_CURVE",
    "CTRCurve",
    "DEFAULT_CTR_CURVE",
    "get_ctr_for_position",
    "competition_factor",
    "ctr_ratio",
    "sample_size_confidence",
    "clamp_confidence",
    "normalize_volume",
    "normalize_linear",
    "MIN_CONFIDENCE",
    "MAX_CONFIDENCE",
    # Opportunity
    "DEFAULT_WEIGHTS",
    "OpportunityScorer",
    "ScoringConfig",
    "ScoringContext",
    "position_potential",
    # Revenue
    "CalculatorConfig",
    "RevenueCalculator",
    "classify_improvement",
    "conversion_rate_improvement",
    "default_target_position",
    "estimate_cost",
    "estimate_time_to_impact",
    "projection_confidence",
]
