"""
Opportunity Ranking

Combines a node's opportunity score and revenue projection into one
comparable value, a 1-5 priority and the persisted Opportunity record.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any

from src.models import (
    Effort,
    Opportunity,
    OpportunityCategory,
    OpportunityScore,
    RevenueProjection,
)

# Combined value weights
SCORE_WEIGHT = 0.4
LIFT_WEIGHT = 0.6
LIFT_REFERENCE = 100_000.0  # Annual lift that saturates the revenue side

# Priority blend
PRIORITY_SCORE_WEIGHT = 0.7
PRIORITY_REVENUE_WEIGHT = 0.3
PRIORITY_REVENUE_REFERENCE = 100_000.0

# (combined priority value lower bound, priority)
PRIORITY_THRESHOLDS = ((80, 1), (65, 2), (50, 3), (30, 4))
LOWEST_PRIORITY = 5

DEFAULT_TTL_DAYS = 7

# Categorization: score bands and product-count effort bands
HIGH_SCORE_THRESHOLD = 70
MEDIUM_SCORE_THRESHOLD = 40
LOW_EFFORT_MAX_SKUS = 10
MEDIUM_EFFORT_MAX_SKUS = 100


@dataclass
class NodeOutcome:
    """What one successfully processed node produced."""
    node_id: str
    score: Optional[OpportunityScore] = None
    projection: Optional[RevenueProjection] = None
    sku_count: int = 0

    @property
    def annual_lift(self) -> float:
        return self.projection.lift.annual_revenue_lift if self.projection else 0.0

    @property
    def confidence(self) -> float:
        values = []
        if self.score:
            values.append(self.score.confidence)
        if self.projection:
            values.append(self.projection.confidence)
        if not values:
            return 0.0
        return sum(values) / len(values)


def combined_value(outcome: NodeOutcome) -> float:
    """
    Ranking value in [0, 100].

    A missing score or projection contributes 0 to its side; negative
    lifts count as no lift.
    """
    score_part = outcome.score.score / 100 if outcome.score else 0.0
    lift_part = min(1.0, max(0.0, outcome.annual_lift) / LIFT_REFERENCE)
    value = (SCORE_WEIGHT * score_part + LIFT_WEIGHT * lift_part) * outcome.confidence * 100
    return round(value, 4)


def priority_for(score: int, revenue_potential: float) -> int:
    """Priority 1 (act now) to 5 (low) from score and revenue potential."""
    revenue_part = (
        math.log10(max(0.0, revenue_potential) + 1)
        / math.log10(PRIORITY_REVENUE_REFERENCE)
        * 100
    )
    combined = score * PRIORITY_SCORE_WEIGHT + revenue_part * PRIORITY_REVENUE_WEIGHT

    for lower_bound, priority in PRIORITY_THRESHOLDS:
        if combined >= lower_bound:
            return priority
    return LOWEST_PRIORITY


def estimate_effort(sku_count: int) -> Effort:
    """Low up to 10 products, medium up to 100, high above."""
    if sku_count <= LOW_EFFORT_MAX_SKUS:
        return Effort.LOW
    if sku_count <= MEDIUM_EFFORT_MAX_SKUS:
        return Effort.MEDIUM
    return Effort.HIGH


def categorize(score: int, sku_count: int) -> OpportunityCategory:
    """
    Bucket an opportunity by score and effort.

    score >= 70: quick-win when effort is low, else strategic
    score >= 40: incremental when effort is low, else long-term
    otherwise:   maintain
    """
    low_effort = estimate_effort(sku_count) == Effort.LOW

    if score >= HIGH_SCORE_THRESHOLD:
        return OpportunityCategory.QUICK_WIN if low_effort else OpportunityCategory.STRATEGIC
    if score >= MEDIUM_SCORE_THRESHOLD:
        return OpportunityCategory.INCREMENTAL if low_effort else OpportunityCategory.LONG_TERM
    return OpportunityCategory.MAINTAIN


def rank_outcomes(outcomes: List[NodeOutcome], limit: Optional[int] = None) -> List[NodeOutcome]:
    """Order by combined value descending, ties by node id."""
    ranked = sorted(outcomes, key=lambda o: (-combined_value(o), o.node_id))
    if limit is not None:
        ranked = ranked[:limit]
    return ranked


def build_opportunity(
    outcome: NodeOutcome,
    project_id: str,
    job_id: Optional[str] = None,
    ttl_days: int = DEFAULT_TTL_DAYS,
    now: Optional[datetime] = None,
) -> Opportunity:
    now = now or datetime.now()
    score = outcome.score.score if outcome.score else 0
    revenue_potential = max(0.0, outcome.annual_lift)

    factors: Dict[str, Any] = {}
    if outcome.score:
        factors.update(outcome.score.factor_breakdown)
    if outcome.projection:
        factors["target_position"] = outcome.projection.assumptions.target_position
        factors["time_to_impact_weeks"] = outcome.projection.time_to_impact_weeks
        factors["monthly_revenue_lift"] = outcome.projection.lift.monthly_revenue_lift

    return Opportunity(
        node_id=outcome.node_id,
        project_id=project_id,
        score=score,
        revenue_potential=revenue_potential,
        priority=priority_for(score, revenue_potential),
        factors=factors,
        combined_value=combined_value(outcome),
        confidence=round(outcome.confidence, 4),
        category=categorize(score, outcome.sku_count),
        effort=estimate_effort(outcome.sku_count),
        job_id=job_id,
        computed_at=now,
        valid_until=now + timedelta(days=ttl_days),
    )


def ranking_entry(outcome: NodeOutcome) -> Dict[str, Any]:
    """Compact summary row for a job result."""
    score = outcome.score.score if outcome.score else None
    return {
        "node_id": outcome.node_id,
        "combined_value": combined_value(outcome),
        "score": score,
        "category": categorize(score, outcome.sku_count).value if score is not None else None,
        "annual_revenue_lift": outcome.annual_lift if outcome.projection else None,
        "confidence": round(outcome.confidence, 4),
    }
