"""
Test Suite for the Opportunity Scoring Engine

Tests the CTR curve, the individual factors, the composite score and
its confidence.
"""

import math

import pytest

from src.models import NodeMetrics
from src.scoring import (
    DEFAULT_WEIGHTS,
    OpportunityScorer,
    ScoringConfig,
    ScoringContext,
    competition_factor,
    get_ctr_for_position,
    normalize_volume,
    position_potential,
    sample_size_confidence,
)


class TestCTRCurve:
    """Test expected CTR lookup."""

    def test_tabulated_positions(self):
        assert get_ctr_for_position(1) == 0.285
        assert get_ctr_for_position(5) == 0.049
        assert get_ctr_for_position(10) == 0.016

    def test_fractional_position_rounds_to_nearest_rank(self):
        assert get_ctr_for_position(2.4) == 0.157
        assert get_ctr_for_position(2.5) == 0.110

    def test_decay_beyond_table(self):
        expected = 0.016 * math.exp(-0.2 * 5)
        assert get_ctr_for_position(15) == pytest.approx(expected)
        assert get_ctr_for_position(30) < get_ctr_for_position(15)

    def test_invalid_position_has_no_ctr(self):
        assert get_ctr_for_position(0) == 0.0
        assert get_ctr_for_position(0.4) == 0.0


class TestFactors:
    """Test the normalized factor helpers."""

    def test_position_potential_bounds(self):
        assert position_potential(1) == pytest.approx(0.95)
        assert position_potential(20) == 0.0
        assert position_potential(25) == 0.0
        assert position_potential(0) == 0.0

    def test_position_potential_monotonic(self):
        """Better positions never have more room to climb."""
        values = [position_potential(p) for p in range(1, 21)]
        assert values == sorted(values, reverse=True)

    def test_competition_buckets(self):
        assert competition_factor(0.1) == 0.5
        assert competition_factor(0.5) == 0.7
        assert competition_factor(0.8) == 0.85
        assert competition_factor(1.2) == 1.0

    def test_volume_normalization_is_logarithmic(self):
        assert normalize_volume(0, 1000) == 0.0
        assert normalize_volume(1000, 1000) == pytest.approx(1.0)
        assert normalize_volume(100, 10000) == pytest.approx(math.log10(101) / math.log10(10001))

    def test_sample_size_confidence(self):
        assert sample_size_confidence(50, 2) == pytest.approx(0.25)
        assert sample_size_confidence(500, 10) == pytest.approx(0.5625)
        assert sample_size_confidence(5000, 50) == 1.0


class TestOpportunityScore:
    """Test the composite opportunity score."""

    def test_ctr_gap_scenario(self, sample_node):
        """Position 5 at 2% CTR against an expected 4.9%."""
        scorer = OpportunityScorer()
        result = scorer.score(sample_node)

        assert sample_node.ctr == pytest.approx(0.02)
        assert result.factor_breakdown["ctr_gap"] == pytest.approx(0.5918, abs=1e-4)
        contribution = DEFAULT_WEIGHTS["ctr_gap"] * result.factor_breakdown["ctr_gap"]
        assert contribution == pytest.approx(0.178, abs=1e-3)

    def test_full_score_without_context(self, sample_node):
        result = OpportunityScorer().score(sample_node)

        assert result.factor_breakdown["position_potential"] == pytest.approx(0.75)
        assert result.factor_breakdown["competition"] == 0.7
        assert result.factor_breakdown["revenue_impact"] == pytest.approx(0.09)
        assert result.score == 58
        assert result.confidence == 1.0

    def test_score_matches_weighted_factors(self, project_nodes):
        scorer = OpportunityScorer()
        context = ScoringContext.from_nodes(project_nodes)

        for node in project_nodes:
            result = scorer.score(node, context)
            factors = scorer.calculate_factors(node, context)
            expected = round(100 * sum(DEFAULT_WEIGHTS[k] * v for k, v in factors.items()))
            assert result.score == expected
            assert 0 <= result.score <= 100
            assert all(0.0 <= v <= 1.0 for v in result.factor_breakdown.values())

    def test_zero_data_node(self, empty_node):
        """No traffic scores zero with zero confidence, without errors."""
        result = OpportunityScorer().score(empty_node)

        assert result.score == 0
        assert result.confidence == 0.0
        assert set(result.factor_breakdown) == set(DEFAULT_WEIGHTS)
        assert all(v == 0.0 for v in result.factor_breakdown.values())

    def test_zero_impressions_with_sessions(self):
        """Analytics-only nodes get no CTR gap or competition."""
        node = NodeMetrics("analytics-only", position=20.0, sessions=40, revenue=500.0, transactions=2)
        result = OpportunityScorer().score(node)

        assert result.factor_breakdown["ctr_gap"] == 0.0
        assert result.factor_breakdown["competition"] == 0.0
        assert result.confidence == pytest.approx(0.25)

    def test_context_normalizes_against_batch_maxima(self, project_nodes):
        context = ScoringContext.from_nodes(project_nodes)
        top = next(n for n in project_nodes if n.node_id == "shoes")

        factors = OpportunityScorer().calculate_factors(top, context)

        assert context.max_impressions == 52000
        assert factors["search_volume"] == pytest.approx(1.0)
        assert factors["revenue_impact"] == pytest.approx(1.0)

    def test_deterministic(self, sample_node):
        scorer = OpportunityScorer()
        first = scorer.score(sample_node)
        second = scorer.score(sample_node)
        assert first.score == second.score
        assert first.factor_breakdown == second.factor_breakdown

    def test_recommendations_capped(self, sample_node):
        result = OpportunityScorer().score(sample_node)
        assert len(result.recommendations) <= 5
        assert any("structured data" in r for r in result.recommendations)

    def test_score_many_ranks_descending(self, project_nodes):
        scores = OpportunityScorer().score_many(project_nodes)
        values = [s.score for s in scores]
        assert values == sorted(values, reverse=True)
        assert len(scores) == len(project_nodes)


class TestScoringConfig:
    """Test weight validation."""

    def test_weights_must_sum_to_one(self):
        weights = dict(DEFAULT_WEIGHTS, competition=0.2)
        with pytest.raises(ValueError):
            ScoringConfig.with_weights(weights)

    def test_weights_must_cover_all_factors(self):
        weights = {"search_volume": 0.5, "ctr_gap": 0.5}
        with pytest.raises(ValueError):
            ScoringConfig.with_weights(weights)

    def test_custom_weights(self, sample_node):
        weights = {
            "search_volume": 0.0,
            "ctr_gap": 1.0,
            "position_potential": 0.0,
            "competition": 0.0,
            "revenue_impact": 0.0,
        }
        scorer = OpportunityScorer(ScoringConfig.with_weights(weights))
        assert scorer.score(sample_node).score == 59
