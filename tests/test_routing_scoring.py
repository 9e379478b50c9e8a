"""
Unit tests for provider scoring and eligibility.
"""
import random
import uuid

import pytest

from payment_orchestrator.core.enums import ProviderStatus
from payment_orchestrator.routing import ProviderScoreEvaluator, RoutingContext, RoutingProvider, ScoringWeights
from payment_orchestrator.routing.scoring import (
    availability_score,
    cost_score,
    latency_score,
    priority_score,
    success_rate_score,
)


def make_provider(**overrides) -> RoutingProvider:
    values = {
        "id": uuid.uuid4(),
        "code": "stripe",
        "name": "Stripe",
        "status": ProviderStatus.ACTIVE,
        "supported_currencies": ["USD", "EUR"],
        "supported_methods": ["CARD"],
        "priority": 1,
        "success_rate": 0.95,
        "average_latency_ms": 150.0,
        "cost_per_transaction": 0.029,
        "is_active": True,
    }
    values.update(overrides)
    return RoutingProvider(**values)


@pytest.fixture
def context() -> RoutingContext:
    return RoutingContext(
        merchant_id="merchant_test", amount=1000, currency="USD", payment_method_type="CARD"
    )


class TestSubScores:
    """Test suite for the individual score components."""

    @pytest.mark.unit
    def test_success_rate_is_clamped(self) -> None:
        assert success_rate_score(0.9) == pytest.approx(90.0)
        assert success_rate_score(1.5) == 100.0
        assert success_rate_score(-0.1) == 0.0

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "status,expected",
        [
            (ProviderStatus.ACTIVE, 100.0),
            (ProviderStatus.DEGRADED, 50.0),
            (ProviderStatus.MAINTENANCE, 0.0),
            ("INACTIVE", 0.0),
        ],
    )
    def test_availability(self, status, expected) -> None:
        assert availability_score(status) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "latency_ms,expected",
        [(50, 100.0), (100, 100.0), (200, 87.5), (300, 75.0), (400, 62.5), (500, 50.0), (750, 25.0), (1000, 0.0), (5000, 0.0)],
    )
    def test_latency_bands(self, latency_ms, expected) -> None:
        assert latency_score(latency_ms) == pytest.approx(expected)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "cost,expected",
        [(0.0, 100.0), (0.01, 90.0), (0.02, 70.0), (0.03, 50.0), (0.04, 40.0), (0.05, 30.0), (0.1, 5.0), (1.0, 0.0)],
    )
    def test_cost_bands(self, cost, expected) -> None:
        assert cost_score(cost) == pytest.approx(expected)

    @pytest.mark.unit
    def test_priority_floor(self) -> None:
        assert priority_score(1) == 100.0
        assert priority_score(3) == 80.0
        assert priority_score(20) == 0.0

    @pytest.mark.unit
    def test_latency_never_increases_with_latency(self) -> None:
        """Test latency score is non-increasing across all bands."""
        scores = [latency_score(ms) for ms in range(0, 1200, 10)]
        assert all(a >= b for a, b in zip(scores, scores[1:]))


class TestProviderScoreEvaluator:
    """Test suite for ProviderScoreEvaluator."""

    @pytest.mark.unit
    def test_weighted_total(self, context) -> None:
        """Test the aggregate is the weighted sum of the components."""
        provider = make_provider(
            success_rate=1.0, average_latency_ms=50.0, cost_per_transaction=0.0, priority=1
        )
        score = ProviderScoreEvaluator().evaluate_provider(provider, context)

        assert score.eligible is True
        assert score.total_score == pytest.approx(100.0)

    @pytest.mark.unit
    def test_defaults_for_missing_metrics(self, context) -> None:
        """Test providers without rolling metrics get the default success rate and latency."""
        provider = make_provider(success_rate=None, average_latency_ms=None)
        score = ProviderScoreEvaluator().evaluate_provider(provider, context)

        assert score.components.success_rate == pytest.approx(95.0)
        assert score.components.latency == pytest.approx(87.5)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "overrides,reason",
        [
            ({"is_active": False}, "Provider is inactive"),
            ({"status": ProviderStatus.MAINTENANCE}, "Provider status is MAINTENANCE"),
            ({"status": ProviderStatus.INACTIVE}, "Provider status is INACTIVE"),
            ({"supported_currencies": ["EUR"]}, "Currency USD not supported"),
            ({"supported_methods": ["BANK_TRANSFER"]}, "Payment method CARD not supported"),
        ],
    )
    def test_ineligible_scores_zero(self, context, overrides, reason) -> None:
        """Test ineligible providers score 0 and carry the reason."""
        score = ProviderScoreEvaluator().evaluate_provider(make_provider(**overrides), context)

        assert score.eligible is False
        assert score.total_score == 0.0
        assert score.disqualification_reason == reason

    @pytest.mark.unit
    def test_degraded_is_eligible_with_lower_availability(self, context) -> None:
        score = ProviderScoreEvaluator().evaluate_provider(
            make_provider(status=ProviderStatus.DEGRADED), context
        )
        assert score.eligible is True
        assert score.components.availability == 50.0

    @pytest.mark.unit
    def test_providers_sorted_by_score(self, context) -> None:
        """Test ranking is by total score, highest first."""
        slow = make_provider(code="slow", average_latency_ms=900.0)
        fast = make_provider(code="fast", average_latency_ms=50.0)
        unsupported = make_provider(code="eur_only", supported_currencies=["EUR"])

        scores = ProviderScoreEvaluator().evaluate_providers([slow, unsupported, fast], context)

        assert [s.provider_code for s in scores] == ["fast", "slow", "eur_only"]

    @pytest.mark.unit
    def test_custom_weights(self, context) -> None:
        """Test weights change the aggregate."""
        weights = ScoringWeights(success_rate=1.0, availability=0.0, latency=0.0, cost=0.0, priority=0.0)
        score = ProviderScoreEvaluator(weights).evaluate_provider(
            make_provider(success_rate=0.8), context
        )
        assert score.total_score == pytest.approx(80.0)

    @pytest.mark.unit
    def test_success_rate_monotonicity(self, context) -> None:
        """Test raising the success rate never lowers the aggregate score."""
        rng = random.Random(7)
        evaluator = ProviderScoreEvaluator()

        for _ in range(200):
            base = dict(
                id=uuid.uuid4(),
                status=rng.choice([ProviderStatus.ACTIVE, ProviderStatus.DEGRADED]),
                priority=rng.randint(1, 12),
                average_latency_ms=rng.uniform(0, 1500),
                cost_per_transaction=rng.uniform(0, 0.2),
            )
            low, high = sorted([rng.random(), rng.random()])

            low_score = evaluator.evaluate_provider(make_provider(success_rate=low, **base), context)
            high_score = evaluator.evaluate_provider(make_provider(success_rate=high, **base), context)

            assert high_score.total_score >= low_score.total_score
