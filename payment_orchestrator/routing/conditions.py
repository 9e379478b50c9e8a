"""Routing rule condition evaluation."""
from enum import Enum
from typing import Any, Dict, Union

import structlog
from pydantic import ValidationError

from payment_orchestrator.routing.types import (
    ConditionOperator,
    RoutingContext,
    RoutingRuleConditions,
    RuleCondition,
)

logger = structlog.get_logger(__name__)

Op = ConditionOperator

# Accepted field names (snake and camel case) -> context attribute
CONTEXT_FIELDS = {
    "currency": "currency",
    "amount": "amount",
    "payment_method_type": "payment_method_type",
    "paymentMethodType": "payment_method_type",
    "card_brand": "card_brand",
    "cardBrand": "card_brand",
    "country": "country",
    "region": "region",
    "merchant_id": "merchant_id",
    "merchantId": "merchant_id",
    "customer_id": "customer_id",
    "customerId": "customer_id",
}

METADATA_PREFIX = "metadata."


class ConditionEvaluationError(ValueError):
    """A condition could not be evaluated against the context."""


class ConditionEvaluator:
    """
    Evaluates a rule's condition tree against a routing context.

    Evaluation never raises: a condition that cannot be evaluated (bad
    operator value, non-numeric comparison, malformed condition) counts as
    a non-match and is logged.
    """

    def evaluate(
        self,
        conditions: Union[RoutingRuleConditions, Dict[str, Any]],
        context: RoutingContext,
    ) -> bool:
        """
        Check whether a condition tree matches the context.

        ``all`` and ``any`` entries are validated one by one, so a malformed
        entry only fails itself and an ``any`` group can still match through
        its other entries.

        Args:
            conditions: Parsed conditions or their stored dict form
            context: Routing context

        Returns:
            bool: True if every part of the tree matches
        """
        if isinstance(conditions, RoutingRuleConditions):
            conditions = conditions.model_dump(exclude_none=True)
        conditions = dict(conditions or {})

        all_conditions = conditions.pop("all", None)
        any_conditions = conditions.pop("any", None)
        for group in (all_conditions, any_conditions):
            if group is not None and not isinstance(group, list):
                logger.warning("routing_conditions_invalid", error="condition group is not a list")
                return False

        if all_conditions:
            if not all(self.evaluate_condition(c, context) for c in all_conditions):
                return False

        if any_conditions:
            if not any(self.evaluate_condition(c, context) for c in any_conditions):
                return False

        try:
            fields = RoutingRuleConditions.model_validate(conditions)
        except ValidationError as e:
            logger.warning("routing_conditions_invalid", error=str(e))
            return False

        for name, condition in fields.named_fields().items():
            if not self._evaluate_field_condition(name, condition, context):
                return False

        if fields.amount_min is not None or fields.amount_max is not None:
            amount = context.amount
            if fields.amount_min is not None and amount < fields.amount_min:
                return False
            if fields.amount_max is not None and amount > fields.amount_max:
                return False

        return True

    def evaluate_condition(
        self, condition: Union[RuleCondition, Dict[str, Any]], context: RoutingContext
    ) -> bool:
        if not isinstance(condition, RuleCondition):
            try:
                condition = RuleCondition.model_validate(condition)
            except ValidationError as e:
                logger.warning("routing_condition_invalid", error=str(e))
                return False

        field_value = self.get_field_value(condition.field, context)
        try:
            return self._compare(field_value, condition.operator, condition.value)
        except ConditionEvaluationError as e:
            logger.warning(
                "routing_condition_evaluation_failed",
                field=condition.field,
                operator=condition.operator.value,
                error=str(e),
            )
            return False

    def _evaluate_field_condition(
        self, field_name: str, condition: Any, context: RoutingContext
    ) -> bool:
        if isinstance(condition, dict) and "field" in condition:
            try:
                condition = RuleCondition.model_validate(condition)
            except ValidationError as e:
                logger.warning("routing_condition_invalid", field=field_name, error=str(e))
                return False

        if isinstance(condition, RuleCondition):
            return self.evaluate_condition(condition, context)

        # Plain value: equality against the named field
        return self._is_equal(self.get_field_value(field_name, context), condition)

    @staticmethod
    def get_field_value(field: str, context: RoutingContext) -> Any:
        """Resolve a condition field against the context; unknown fields are None."""
        attribute = CONTEXT_FIELDS.get(field)
        if attribute is not None:
            value = getattr(context, attribute)
        elif field.startswith(METADATA_PREFIX):
            value = context.metadata.get(field[len(METADATA_PREFIX):])
        else:
            return None
        return value.value if isinstance(value, Enum) else value

    def _compare(self, field_value: Any, operator: ConditionOperator, condition_value: Any) -> bool:
        if operator == Op.EQUALS:
            return self._is_equal(field_value, condition_value)
        if operator == Op.NOT_EQUALS:
            return not self._is_equal(field_value, condition_value)
        if operator == Op.IN:
            return isinstance(condition_value, list) and field_value in condition_value
        if operator == Op.NOT_IN:
            return isinstance(condition_value, list) and field_value not in condition_value
        if operator == Op.GREATER_THAN:
            return self._to_number(field_value) > self._to_number(condition_value)
        if operator == Op.LESS_THAN:
            return self._to_number(field_value) < self._to_number(condition_value)
        if operator == Op.GREATER_THAN_OR_EQUALS:
            return self._to_number(field_value) >= self._to_number(condition_value)
        if operator == Op.LESS_THAN_OR_EQUALS:
            return self._to_number(field_value) <= self._to_number(condition_value)
        if operator == Op.BETWEEN:
            if isinstance(condition_value, list) and len(condition_value) == 2:
                value = self._to_number(field_value)
                return (
                    self._to_number(condition_value[0])
                    <= value
                    <= self._to_number(condition_value[1])
                )
            return False
        if operator in (Op.CONTAINS, Op.STARTS_WITH, Op.ENDS_WITH):
            if not isinstance(field_value, str) or not isinstance(condition_value, str):
                return False
            haystack, needle = field_value.lower(), condition_value.lower()
            if operator == Op.CONTAINS:
                return needle in haystack
            if operator == Op.STARTS_WITH:
                return haystack.startswith(needle)
            return haystack.endswith(needle)
        return False

    def _is_equal(self, a: Any, b: Any) -> bool:
        # Amounts compare numerically even when the rule stores them as strings
        if self._is_integer(a) or self._is_integer(b):
            try:
                return self._to_number(a) == self._to_number(b)
            except ConditionEvaluationError:
                return False
        return a == b

    @staticmethod
    def _is_integer(value: Any) -> bool:
        return isinstance(value, int) and not isinstance(value, bool)

    @staticmethod
    def _to_number(value: Any) -> Union[int, float]:
        # Integer strings stay ints so minor-unit amounts compare exactly at any size
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            for parse in (int, float):
                try:
                    return parse(value)
                except ValueError:
                    continue
        raise ConditionEvaluationError(f"Cannot convert {value!r} to number")
