"""
Provider scoring.

Each eligible provider gets five sub-scores on a 0-100 scale which are
combined with configurable weights:

- success rate: rate x 100
- availability: ACTIVE 100, DEGRADED 50, otherwise 0
- latency: piecewise linear, 100 under 100 ms down to 0 at 1000 ms
- cost: piecewise linear, 100 for free providers
- priority: 100 at merchant priority 1, minus 10 per step
"""
from typing import List, Optional, Tuple

import structlog

from payment_orchestrator.core.enums import ProviderStatus
from payment_orchestrator.routing.types import (
    ProviderScore,
    RoutingContext,
    RoutingProvider,
    ScoreComponents,
    ScoringWeights,
)

logger = structlog.get_logger(__name__)

DEFAULT_SUCCESS_RATE = 0.95
DEFAULT_LATENCY_MS = 200.0
DEFAULT_COST = 0.0

UNAVAILABLE_STATUSES = frozenset({ProviderStatus.INACTIVE, ProviderStatus.MAINTENANCE})


def success_rate_score(success_rate: float) -> float:
    return min(100.0, max(0.0, success_rate * 100))


def availability_score(status: ProviderStatus | str) -> float:
    status = ProviderStatus(status)
    if status == ProviderStatus.ACTIVE:
        return 100.0
    if status == ProviderStatus.DEGRADED:
        return 50.0
    return 0.0


def latency_score(latency_ms: float) -> float:
    if latency_ms < 100:
        return 100.0
    if latency_ms < 300:
        return 100 - ((latency_ms - 100) / 200) * 25
    if latency_ms < 500:
        return 75 - ((latency_ms - 300) / 200) * 25
    if latency_ms < 1000:
        return 50 - ((latency_ms - 500) / 500) * 50
    return 0.0


def cost_score(cost: float) -> float:
    """Cost is a fraction of the amount (0.029 = 2.9%)."""
    if cost <= 0:
        return 100.0
    if cost <= 0.01:
        return 100 - cost * 1000
    if cost <= 0.03:
        return 90 - (cost - 0.01) * 2000
    if cost <= 0.05:
        return 50 - (cost - 0.03) * 1000
    return max(0.0, 30 - (cost - 0.05) * 500)


def priority_score(priority: int) -> float:
    return max(0.0, 100.0 - (priority - 1) * 10)


class ProviderScoreEvaluator:
    """Ranks providers for a routing context."""

    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = weights or ScoringWeights()

    def evaluate_providers(
        self, providers: List[RoutingProvider], context: RoutingContext
    ) -> List[ProviderScore]:
        """
        Score every provider.

        Returns:
            List[ProviderScore]: All providers, highest total score first;
            ineligible providers score 0 and carry the reason
        """
        scores = [self.evaluate_provider(provider, context) for provider in providers]
        # Stable sort keeps directory order for equal scores
        scores.sort(key=lambda score: score.total_score, reverse=True)
        return scores

    def evaluate_provider(self, provider: RoutingProvider, context: RoutingContext) -> ProviderScore:
        eligible, reason = self.check_eligibility(provider, context)
        if not eligible:
            return ProviderScore(
                provider_id=provider.id,
                provider_code=provider.code,
                total_score=0.0,
                components=ScoreComponents(),
                eligible=False,
                disqualification_reason=reason,
            )

        components = ScoreComponents(
            success_rate=success_rate_score(
                provider.success_rate if provider.success_rate is not None else DEFAULT_SUCCESS_RATE
            ),
            availability=availability_score(provider.status),
            latency=latency_score(
                provider.average_latency_ms
                if provider.average_latency_ms is not None
                else DEFAULT_LATENCY_MS
            ),
            cost=cost_score(
                provider.cost_per_transaction
                if provider.cost_per_transaction is not None
                else DEFAULT_COST
            ),
            priority=priority_score(provider.priority),
        )

        weights = self.weights
        total_score = (
            components.success_rate * weights.success_rate
            + components.availability * weights.availability
            + components.latency * weights.latency
            + components.cost * weights.cost
            + components.priority * weights.priority
        )

        logger.debug(
            "provider_score_calculated",
            provider_id=str(provider.id),
            provider_code=provider.code,
            total_score=total_score,
            components=components.model_dump(),
        )

        return ProviderScore(
            provider_id=provider.id,
            provider_code=provider.code,
            total_score=total_score,
            components=components,
            eligible=True,
        )

    @staticmethod
    def check_eligibility(
        provider: RoutingProvider, context: RoutingContext
    ) -> Tuple[bool, Optional[str]]:
        if not provider.is_active:
            return False, "Provider is inactive"

        if provider.status in UNAVAILABLE_STATUSES:
            return False, f"Provider status is {provider.status.value}"

        if context.currency.value not in provider.supported_currencies:
            return False, f"Currency {context.currency.value} not supported"

        if context.payment_method_type.value not in provider.supported_methods:
            return False, f"Payment method {context.payment_method_type.value} not supported"

        return True, None
