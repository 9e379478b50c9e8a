"""Routing models: context, rule conditions, provider scores and decisions."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from payment_orchestrator.core.enums import Currency, PaymentMethodType
from payment_orchestrator.providers.types import RoutingProvider


class RoutingContext(BaseModel):
    """Transaction attributes a routing decision is made for."""

    model_config = ConfigDict(frozen=True)

    merchant_id: str
    amount: int = Field(gt=0)
    currency: Currency
    payment_method_type: PaymentMethodType
    card_brand: Optional[str] = None
    country: Optional[str] = None
    region: Optional[str] = None
    customer_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    IN = "in"
    NOT_IN = "not_in"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUALS = "greater_than_or_equals"
    LESS_THAN_OR_EQUALS = "less_than_or_equals"
    BETWEEN = "between"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"


class RuleCondition(BaseModel):
    field: str
    operator: ConditionOperator
    value: Any = None


# A named field holds either a full condition (RuleCondition or its dict form)
# or a plain value compared for equality.
FieldCondition = Any


class RoutingRuleConditions(BaseModel):
    """
    Condition tree of a routing rule.

    A rule matches when every ``all`` condition holds, at least one ``any``
    condition holds, every named field matches and the legacy
    ``amount_min``/``amount_max`` bounds (if present) contain the amount.
    Camel-case keys are accepted for rules stored by older clients.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    all: Optional[List[RuleCondition]] = None
    any: Optional[List[RuleCondition]] = None
    currency: Optional[FieldCondition] = None
    amount: Optional[FieldCondition] = None
    payment_method_type: Optional[FieldCondition] = Field(
        default=None, validation_alias=AliasChoices("payment_method_type", "paymentMethodType")
    )
    card_brand: Optional[FieldCondition] = Field(
        default=None, validation_alias=AliasChoices("card_brand", "cardBrand")
    )
    country: Optional[FieldCondition] = None
    region: Optional[FieldCondition] = None
    amount_min: Optional[Union[int, float]] = Field(
        default=None, validation_alias=AliasChoices("amount_min", "amountMin")
    )
    amount_max: Optional[Union[int, float]] = Field(
        default=None, validation_alias=AliasChoices("amount_max", "amountMax")
    )

    def named_fields(self) -> Dict[str, Any]:
        """Named field conditions that are set, in evaluation order."""
        names = ("currency", "amount", "payment_method_type", "card_brand", "country", "region")
        return {name: getattr(self, name) for name in names if getattr(self, name) is not None}


class ScoreComponents(BaseModel):
    success_rate: float = 0.0
    availability: float = 0.0
    latency: float = 0.0
    cost: float = 0.0
    priority: float = 0.0


class ProviderScore(BaseModel):
    provider_id: uuid.UUID
    provider_code: str
    total_score: float
    components: ScoreComponents
    eligible: bool
    disqualification_reason: Optional[str] = None


class ScoringWeights(BaseModel):
    """Component weights of the aggregate provider score."""

    model_config = ConfigDict(frozen=True)

    success_rate: float = 0.40
    availability: float = 0.25
    latency: float = 0.15
    cost: float = 0.10
    priority: float = 0.10


class RoutingDecision(BaseModel):
    selected_provider_id: uuid.UUID
    selected_provider_code: str
    fallback_provider_ids: List[uuid.UUID] = Field(default_factory=list)
    matched_rule_id: Optional[uuid.UUID] = None
    score: float
    reason: str
    evaluated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CreateRoutingRuleInput(BaseModel):
    merchant_id: str
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    conditions: RoutingRuleConditions
    provider_id: uuid.UUID
    priority: int = Field(default=100, ge=0)
    is_active: bool = True


class UpdateRoutingRuleInput(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    conditions: Optional[RoutingRuleConditions] = None
    provider_id: Optional[uuid.UUID] = None
    priority: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class RoutingRuleInfo(BaseModel):
    """Read model of a stored routing rule."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    merchant_id: str
    name: str
    description: Optional[str] = None
    conditions: Dict[str, Any]
    provider_id: uuid.UUID
    priority: int
    is_active: bool
    version: int
    created_at: datetime
    updated_at: datetime
