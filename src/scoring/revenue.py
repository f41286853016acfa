"""
Revenue Projection Calculator

Projects what a node would earn if it reached a target search position:

1. Expected CTR at the target, discounted by observed competition
2. Clicks → sessions using the node's own click-to-session ratio
3. Sessions → transactions at an assumed conversion-rate improvement
4. Transactions → revenue at the current average order value

The lift over current performance is then turned into monthly/annual
revenue, ROI against a stepped cost estimate, a confidence value and an
estimated time to impact. Defaults are derived from the node itself, so
the same input always yields the same projection.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from src.models import (
    ImprovementMethod,
    NodeMetrics,
    PartialAssumptions,
    ProjectedMetrics,
    ProjectionAssumptions,
    RevenueLift,
    RevenueProjection,
    Timeframe,
    safe_divide,
)

from .helpers import (
    CTRCurve,
    DEFAULT_CTR_CURVE,
    clamp_confidence,
    competition_factor,
    ctr_ratio,
    sample_size_confidence,
)

logger = logging.getLogger(__name__)


# Below both thresholds a node has too little data to project
MIN_IMPRESSIONS = 10
MIN_SESSIONS = 5

# Sessions per click when the node has no clicks yet
DEFAULT_SESSION_RATIO = 0.9

# (current conversion rate upper bound, assumed relative improvement)
CONVERSION_HEADROOM: Tuple[Tuple[float, float], ...] = (
    (0.005, 0.50),
    (0.01, 0.30),
    (0.02, 0.15),
)
DEFAULT_CONVERSION_IMPROVEMENT = 0.05

# (position improvement lower bound, cost) - improvement must exceed the bound
COST_STEPS: Tuple[Tuple[float, float], ...] = (
    (15, 5000.0),
    (10, 3000.0),
    (5, 1500.0),
    (3, 1000.0),
)
BASE_COST = 500.0
TOP_POSITION = 3  # Improving from here costs double
TOP_POSITION_COST_MULTIPLIER = 2.0

# (position improvement lower bound, confidence multiplier)
JUMP_CONFIDENCE: Tuple[Tuple[float, float], ...] = (
    (15, 0.5),
    (10, 0.7),
    (5, 0.85),
)
TIMEFRAME_CONFIDENCE = {
    Timeframe.AGGRESSIVE: 0.7,
    Timeframe.MODERATE: 1.0,
    Timeframe.CONSERVATIVE: 1.1,
}

# (position improvement upper bound, weeks)
IMPACT_WEEKS: Tuple[Tuple[float, int], ...] = ((3, 2), (7, 4), (15, 8))
MAX_IMPACT_WEEKS = 12

# (position improvement upper bound, method)
IMPROVEMENT_METHODS: Tuple[Tuple[float, ImprovementMethod], ...] = (
    (3, ImprovementMethod.ORGANIC),
    (7, ImprovementMethod.CONTENT),
    (15, ImprovementMethod.MIXED),
)

# Scenario spread around the realistic monthly lift
REVENUE_RANGE_MULTIPLIERS = {
    "conservative": 0.7,
    "realistic": 1.0,
    "optimistic": 1.5,
}

MONTHS_PER_YEAR = 12
DEFAULT_TARGET_STEP = 3


@dataclass(frozen=True)
class CalculatorConfig:
    """Immutable calculator configuration."""
    ctr_curve: CTRCurve = DEFAULT_CTR_CURVE
    default_session_ratio: float = DEFAULT_SESSION_RATIO
    base_cost: float = BASE_COST


def default_target_position(current_position: float) -> int:
    """Default target: three ranks up, never above position 1."""
    return max(1, int(math.floor(current_position)) - DEFAULT_TARGET_STEP)


def conversion_rate_improvement(conversion_rate: float) -> float:
    """Assumed relative conversion uplift; weak converters get more headroom."""
    for upper_bound, improvement in CONVERSION_HEADROOM:
        if conversion_rate < upper_bound:
            return improvement
    return DEFAULT_CONVERSION_IMPROVEMENT


def estimate_cost(current_position: float, target_position: int, base_cost: float = BASE_COST) -> float:
    """
    Estimate the cost of moving from current to target position.

    Args:
        current_position: Current average rank
        target_position: Target rank
        base_cost: Cost of a small (≤3 rank) improvement

    Returns:
        Estimated cost in currency units
    """
    improvement = current_position - target_position
    cost = base_cost
    for lower_bound, step_cost in COST_STEPS:
        if improvement > lower_bound:
            cost = step_cost
            break

    if current_position <= TOP_POSITION:
        cost *= TOP_POSITION_COST_MULTIPLIER
    return cost


def estimate_time_to_impact(improvement: float) -> int:
    """Weeks until a position improvement shows in traffic."""
    if improvement <= 0:
        return 0
    for upper_bound, weeks in IMPACT_WEEKS:
        if improvement <= upper_bound:
            return weeks
    return MAX_IMPACT_WEEKS


def classify_improvement(improvement: float) -> ImprovementMethod:
    for upper_bound, method in IMPROVEMENT_METHODS:
        if improvement <= upper_bound:
            return method
    return ImprovementMethod.TECHNICAL


def projection_confidence(
    node: NodeMetrics,
    target_position: int,
    timeframe: Timeframe,
) -> float:
    """
    Confidence in a projection, between 0.1 and 1.0.

    Starts at 1.0 and is discounted for large position jumps, thin
    impression/transaction samples and aggressive timeframes.
    """
    improvement = node.position - target_position
    confidence = 1.0
    for lower_bound, multiplier in JUMP_CONFIDENCE:
        if improvement > lower_bound:
            confidence *= multiplier
            break

    confidence *= sample_size_confidence(node.impressions, node.transactions)
    confidence *= TIMEFRAME_CONFIDENCE[timeframe]
    return clamp_confidence(confidence)


class RevenueCalculator:
    """Projects revenue lift for a node at a target position."""

    def __init__(self, config: Optional[CalculatorConfig] = None):
        self.config = config or CalculatorConfig()

    def expected_ctr(self, position: float) -> float:
        return self.config.ctr_curve.expected_ctr(position)

    def resolve_assumptions(
        self,
        node: NodeMetrics,
        target_position: int,
        partial: Optional[PartialAssumptions] = None,
    ) -> ProjectionAssumptions:
        """
        Fill every unset assumption from the node's current metrics.

        Defaults:
            ctr_improvement: 0.0 (the improvement comes from the CTR curve)
            conversion_rate_improvement: by current conversion rate
            competition_factor: CTR-ratio bucket at the current position
            seasonality_factor: 1.0
            timeframe: moderate
        """
        partial = partial or PartialAssumptions()

        competition = partial.competition_factor
        if competition is None:
            competition = competition_factor(
                ctr_ratio(node.ctr, self.expected_ctr(node.position))
            )

        conversion_improvement = partial.conversion_rate_improvement
        if conversion_improvement is None:
            conversion_improvement = conversion_rate_improvement(node.conversion_rate)

        return ProjectionAssumptions(
            target_position=target_position,
            ctr_improvement=partial.ctr_improvement if partial.ctr_improvement is not None else 0.0,
            conversion_rate_improvement=conversion_improvement,
            timeframe=Timeframe(partial.timeframe or Timeframe.MODERATE),
            seasonality_factor=(
                partial.seasonality_factor if partial.seasonality_factor is not None else 1.0
            ),
            competition_factor=competition,
            improvement_method=classify_improvement(node.position - target_position),
        )

    def project(
        self,
        node: NodeMetrics,
        target_position: int,
        assumptions: Optional[PartialAssumptions] = None,
    ) -> RevenueProjection:
        """
        Project a node's performance at target_position.

        Args:
            node: Current metrics
            target_position: Rank to project at (≥ 1)
            assumptions: Optional overrides of the derived defaults

        Returns:
            RevenueProjection; a zero-confidence "no data" projection when
            the node has too little traffic
        """
        if target_position < 1:
            raise ValueError(f"target_position must be >= 1, got {target_position}")

        resolved = self.resolve_assumptions(node, target_position, assumptions)

        if node.impressions <= MIN_IMPRESSIONS and node.sessions <= MIN_SESSIONS:
            logger.debug(f"Node {node.node_id} has insufficient data for projection")
            return self._no_data_projection(node, resolved)

        projected_ctr = min(
            1.0,
            self.expected_ctr(target_position) * resolved.competition_factor
            + resolved.ctr_improvement,
        )
        projected_clicks = node.impressions * projected_ctr

        if node.clicks > 0:
            session_ratio = node.sessions / node.clicks
        else:
            session_ratio = self.config.default_session_ratio
        projected_sessions = projected_clicks * session_ratio

        projected_conversion = node.conversion_rate * (1 + resolved.conversion_rate_improvement)
        projected_transactions = projected_sessions * projected_conversion
        # Average order value is held constant; no price changes are modeled
        projected_revenue = projected_transactions * node.average_order_value

        projected = ProjectedMetrics(
            position=float(target_position),
            impressions=node.impressions,
            clicks=projected_clicks,
            ctr=projected_ctr,
            sessions=projected_sessions,
            conversion_rate=projected_conversion,
            transactions=projected_transactions,
            revenue=projected_revenue,
            average_order_value=node.average_order_value,
        )

        lift = self._calculate_lift(node, projected, resolved)
        improvement = node.position - target_position

        return RevenueProjection(
            node_id=node.node_id,
            current=node,
            projected=projected,
            lift=lift,
            confidence=round(projection_confidence(node, target_position, resolved.timeframe), 4),
            time_to_impact_weeks=estimate_time_to_impact(improvement),
            assumptions=resolved,
            revenue_range={
                name: lift.monthly_revenue_lift * multiplier
                for name, multiplier in REVENUE_RANGE_MULTIPLIERS.items()
            },
        )

    def project_scenarios(
        self,
        node: NodeMetrics,
        target_positions: List[int],
        assumptions: Optional[PartialAssumptions] = None,
    ) -> List[RevenueProjection]:
        """What-if projections, one per target position."""
        return [self.project(node, target, assumptions) for target in target_positions]

    def _calculate_lift(
        self,
        node: NodeMetrics,
        projected: ProjectedMetrics,
        assumptions: ProjectionAssumptions,
    ) -> RevenueLift:
        monthly = (projected.revenue - node.revenue) * assumptions.seasonality_factor
        annual = monthly * MONTHS_PER_YEAR

        if node.revenue > 0:
            percentage = monthly / node.revenue * 100
        elif projected.revenue > 0:
            percentage = 100.0
        else:
            percentage = 0.0

        cost = estimate_cost(node.position, assumptions.target_position, self.config.base_cost)

        return RevenueLift(
            additional_clicks=projected.clicks - node.clicks,
            additional_sessions=projected.sessions - node.sessions,
            additional_transactions=projected.transactions - node.transactions,
            monthly_revenue_lift=monthly,
            annual_revenue_lift=annual,
            percentage_increase=percentage,
            return_on_investment=safe_divide(annual, cost) * 100,
            estimated_cost=cost,
        )

    def _no_data_projection(
        self,
        node: NodeMetrics,
        assumptions: ProjectionAssumptions,
    ) -> RevenueProjection:
        return RevenueProjection(
            node_id=node.node_id,
            current=node,
            projected=ProjectedMetrics(
                position=float(assumptions.target_position),
                impressions=node.impressions,
                clicks=0.0,
                ctr=0.0,
                sessions=0.0,
                conversion_rate=0.0,
                transactions=0.0,
                revenue=0.0,
                average_order_value=0.0,
            ),
            lift=RevenueLift(),
            confidence=0.0,
            time_to_impact_weeks=0,
            assumptions=assumptions,
            revenue_range={name: 0.0 for name in REVENUE_RANGE_MULTIPLIERS},
            has_data=False,
        )
