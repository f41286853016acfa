"""
Opportunity Score Calculator

Calculates a composite score (0-100) representing how much a taxonomy
node would gain from optimization, considering:

1. Search Volume (25%) - Demand, log-normalized impressions
2. CTR Gap (30%) - Clicks lost against the expected CTR curve
3. Position Potential (20%) - Room to climb within the first two pages
4. Competition (10%) - SERP pressure inferred from the CTR ratio
5. Revenue Impact (15%) - Share of the batch's top revenue

Formula:
    Opportunity_Score = round(100 × (
        Search_Volume × 0.25 +
        CTR_Gap × 0.30 +
        Position_Potential × 0.20 +
        Competition × 0.10 +
        Revenue_Impact × 0.15
    ))
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from src.models import NodeMetrics, OpportunityScore

from .helpers import (
    CTRCurve,
    DEFAULT_CTR_CURVE,
    clamp,
    clamp_confidence,
    competition_factor,
    ctr_ratio,
    normalize_linear,
    normalize_volume,
    sample_size_confidence,
)

logger = logging.getLogger(__name__)


DEFAULT_WEIGHTS: Dict[str, float] = {
    "search_volume": 0.25,
    "ctr_gap": 0.30,
    "position_potential": 0.20,
    "competition": 0.10,
    "revenue_impact": 0.15,
}

# Fixed tops of scale when no batch context is available
REFERENCE_IMPRESSIONS = 1_000_000
REFERENCE_REVENUE = 100_000.0

# Positions past this get no position potential
POSITION_POTENTIAL_HORIZON = 20.0

WEIGHT_TOLERANCE = 1e-9
MAX_RECOMMENDATIONS = 5


@dataclass(frozen=True)
class ScoringConfig:
    """Immutable scorer configuration."""
    weights: Tuple[Tuple[str, float], ...] = tuple(DEFAULT_WEIGHTS.items())
    ctr_curve: CTRCurve = DEFAULT_CTR_CURVE
    reference_impressions: int = REFERENCE_IMPRESSIONS
    reference_revenue: float = REFERENCE_REVENUE

    def __post_init__(self):
        names = {name for name, _ in self.weights}
        if names != set(DEFAULT_WEIGHTS):
            raise ValueError(f"Scoring weights must cover exactly {sorted(DEFAULT_WEIGHTS)}")
        total = sum(weight for _, weight in self.weights)
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"Scoring weights must sum to 1.0, got {total}")

    @classmethod
    def with_weights(cls, weights: Dict[str, float], **kwargs) -> "ScoringConfig":
        return cls(weights=tuple(weights.items()), **kwargs)

    @property
    def weight_map(self) -> Dict[str, float]:
        return dict(self.weights)


@dataclass(frozen=True)
class ScoringContext:
    """Batch-wide maxima used to normalize volume and revenue."""
    max_impressions: int = 0
    max_revenue: float = 0.0

    @classmethod
    def from_nodes(cls, nodes: Iterable[NodeMetrics]) -> "ScoringContext":
        max_impressions = 0
        max_revenue = 0.0
        for node in nodes:
            max_impressions = max(max_impressions, node.impressions)
            max_revenue = max(max_revenue, node.revenue)
        return cls(max_impressions=max_impressions, max_revenue=max_revenue)


class OpportunityScorer:
    """
    Scores taxonomy nodes.

    Stateless per call: score() depends only on the node, the optional
    batch context and the injected configuration.
    """

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or ScoringConfig()
        self._weights = self.config.weight_map

    def expected_ctr(self, position: float) -> float:
        return self.config.ctr_curve.expected_ctr(position)

    def score(
        self,
        node: NodeMetrics,
        context: Optional[ScoringContext] = None,
    ) -> OpportunityScore:
        """
        Calculate the opportunity score for one node.

        Args:
            node: Current metrics
            context: Batch maxima; fixed references are used when omitted

        Returns:
            OpportunityScore with factor breakdown and confidence
        """
        if not node.has_data:
            logger.debug(f"Node {node.node_id} has no traffic data, scoring 0")
            return OpportunityScore(
                node_id=node.node_id,
                score=0,
                factor_breakdown={name: 0.0 for name in self._weights},
                confidence=0.0,
            )

        factors = self.calculate_factors(node, context)
        raw_score = sum(self._weights[name] * value for name, value in factors.items())
        score = int(clamp(round(100 * raw_score), 0, 100))

        confidence = clamp_confidence(
            sample_size_confidence(node.impressions, node.transactions)
        )

        return OpportunityScore(
            node_id=node.node_id,
            score=score,
            factor_breakdown={name: round(value, 4) for name, value in factors.items()},
            confidence=round(confidence, 4),
            recommendations=self._recommendations(factors),
        )

    def calculate_factors(
        self,
        node: NodeMetrics,
        context: Optional[ScoringContext] = None,
    ) -> Dict[str, float]:
        """Normalized (0-1) value of every factor."""
        max_impressions = self.config.reference_impressions
        max_revenue = self.config.reference_revenue
        if context is not None:
            max_impressions = context.max_impressions or max_impressions
            max_revenue = context.max_revenue or max_revenue

        return {
            "search_volume": normalize_volume(node.impressions, max_impressions),
            "ctr_gap": self._ctr_gap(node),
            "position_potential": position_potential(node.position),
            "competition": self._competition(node),
            "revenue_impact": normalize_linear(node.revenue, max_revenue),
        }

    def _ctr_gap(self, node: NodeMetrics) -> float:
        if node.impressions <= 0:
            return 0.0
        expected = self.expected_ctr(node.position)
        if expected <= 0:
            return 0.0
        return clamp(max(0.0, expected - node.ctr) / expected)

    def _competition(self, node: NodeMetrics) -> float:
        if node.impressions <= 0:
            return 0.0
        return competition_factor(ctr_ratio(node.ctr, self.expected_ctr(node.position)))

    def _recommendations(self, factors: Dict[str, float]) -> List[str]:
        recommendations = []

        if factors["ctr_gap"] > 0.6:
            recommendations.append(
                "Improve title tags and meta descriptions to increase click-through rate"
            )
        if factors["ctr_gap"] > 0.4:
            recommendations.append("Test richer SERP snippets with structured data markup")
        if factors["position_potential"] > 0.7:
            recommendations.append("Optimize content and technical SEO to improve search rankings")
        if factors["search_volume"] > 0.8:
            recommendations.append("High search volume - prioritize for immediate optimization")
        if factors["revenue_impact"] > 0.7:
            recommendations.append("High revenue potential - focus on conversion optimization")
        if 0 < factors["competition"] <= 0.5:
            recommendations.append("High competition - focus on long-tail variations")

        return recommendations[:MAX_RECOMMENDATIONS]

    def score_many(
        self,
        nodes: List[NodeMetrics],
        context: Optional[ScoringContext] = None,
    ) -> List[OpportunityScore]:
        """Score a list of nodes against a shared context, highest score first."""
        if context is None:
            context = ScoringContext.from_nodes(nodes)
        scores = [self.score(node, context) for node in nodes]
        scores.sort(key=lambda s: (-s.score, s.node_id))
        return scores


def position_potential(position: float) -> float:
    """
    Room to climb for a position on the first two result pages.

    Returns:
        (20 - position) / 20 within [1, 20], otherwise 0
    """
    if math.isnan(position) or position < 1 or position > POSITION_POTENTIAL_HORIZON:
        return 0.0
    return (POSITION_POTENTIAL_HORIZON - position) / POSITION_POTENTIAL_HORIZON
