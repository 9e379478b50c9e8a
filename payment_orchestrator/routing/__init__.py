"""Routing decision engine: rule conditions, provider scoring and selection."""
from payment_orchestrator.routing.conditions import ConditionEvaluator
from payment_orchestrator.routing.scoring import ProviderScoreEvaluator
from payment_orchestrator.routing.service import RoutingService
from payment_orchestrator.routing.types import (
    ConditionOperator,
    CreateRoutingRuleInput,
    ProviderScore,
    RoutingContext,
    RoutingDecision,
    RoutingProvider,
    RoutingRuleConditions,
    RoutingRuleInfo,
    RuleCondition,
    ScoringWeights,
    UpdateRoutingRuleInput,
)

__all__ = [
    "ConditionEvaluator",
    "ConditionOperator",
    "CreateRoutingRuleInput",
    "ProviderScore",
    "ProviderScoreEvaluator",
    "RoutingContext",
    "RoutingDecision",
    "RoutingProvider",
    "RoutingRuleConditions",
    "RoutingRuleInfo",
    "RoutingService",
    "RuleCondition",
    "ScoringWeights",
    "UpdateRoutingRuleInput",
]
