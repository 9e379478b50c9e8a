"""
Routing decision engine.

Selects a provider and ordered fallbacks for a transaction:

1. Merchant rules (cached) are evaluated in priority order; the first match
   wins if its provider is enabled for the merchant and eligible for the
   transaction.
2. Otherwise every enabled provider is scored and the best eligible one is
   selected.

Fallbacks are always the best-scored eligible providers other than the
selected one.
"""
import uuid
from typing import Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from payment_orchestrator.cache import Cache, CacheDomain, cache_key
from payment_orchestrator.config import Settings, get_settings
from payment_orchestrator.core.errors import RoutingError, RoutingErrorCode
from payment_orchestrator.database.models import RoutingRule
from payment_orchestrator.monitoring.metrics import metrics
from payment_orchestrator.providers.service import ProviderService
from payment_orchestrator.routing.conditions import ConditionEvaluator
from payment_orchestrator.routing.scoring import ProviderScoreEvaluator
from payment_orchestrator.routing.types import (
    CreateRoutingRuleInput,
    ProviderScore,
    RoutingContext,
    RoutingDecision,
    RoutingRuleInfo,
    ScoringWeights,
    UpdateRoutingRuleInput,
)

logger = structlog.get_logger(__name__)


class RoutingService:
    """Provider selection and routing rule management."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: Cache,
        provider_service: ProviderService,
        settings: Optional[Settings] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        score_evaluator: Optional[ProviderScoreEvaluator] = None,
    ):
        """
        Initialize routing service.

        Args:
            session_factory: Database session factory
            cache: Cache backend for merchant rules
            provider_service: Provider directory
            settings: Application settings (weights, TTLs, fallback count)
            condition_evaluator: Rule condition evaluator
            score_evaluator: Provider score evaluator
        """
        self.session_factory = session_factory
        self.cache = cache
        self.provider_service = provider_service
        self.settings = settings or get_settings()
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()
        self.score_evaluator = score_evaluator or ProviderScoreEvaluator(
            ScoringWeights(**self.settings.routing_weights)
        )

    async def select_provider(self, context: RoutingContext) -> RoutingDecision:
        """
        Select a provider for a transaction.

        Args:
            context: Routing context

        Returns:
            RoutingDecision: Selected provider, fallbacks and reason

        Raises:
            RoutingError: NO_PROVIDERS_AVAILABLE when the merchant has no
                enabled provider, NO_ELIGIBLE_PROVIDER when none can take
                the transaction
        """
        logger.debug(
            "routing_select_provider",
            merchant_id=context.merchant_id,
            amount=context.amount,
            currency=context.currency.value,
        )

        rules = await self._get_rules_for_merchant(context.merchant_id)
        matched_rule = next(
            (rule for rule in rules if self.condition_evaluator.evaluate(rule.conditions, context)),
            None,
        )

        providers = await self.provider_service.get_merchant_providers(context.merchant_id)
        if not providers:
            metrics.record_routing_failure(RoutingErrorCode.NO_PROVIDERS_AVAILABLE.value)
            raise RoutingError(
                f"No providers available for merchant {context.merchant_id}",
                RoutingErrorCode.NO_PROVIDERS_AVAILABLE,
                merchant_id=context.merchant_id,
            )

        scores = self.score_evaluator.evaluate_providers(providers, context)

        if matched_rule is not None:
            rule_provider = next((p for p in providers if p.id == matched_rule.provider_id), None)
            rule_score = next((s for s in scores if s.provider_id == matched_rule.provider_id), None)
            if rule_provider is None:
                logger.info(
                    "routing_rule_provider_unavailable",
                    rule_id=str(matched_rule.id),
                    provider_id=str(matched_rule.provider_id),
                )
            elif rule_score is None or not rule_score.eligible:
                logger.info(
                    "routing_rule_provider_ineligible",
                    rule_id=str(matched_rule.id),
                    provider_code=rule_provider.code,
                    reason=rule_score.disqualification_reason if rule_score else None,
                )
            else:
                fallbacks = self._eligible(scores, exclude=[rule_provider.id])
                decision = RoutingDecision(
                    selected_provider_id=rule_provider.id,
                    selected_provider_code=rule_provider.code,
                    fallback_provider_ids=[
                        s.provider_id for s in fallbacks[: self.settings.routing_fallback_count]
                    ],
                    matched_rule_id=matched_rule.id,
                    score=100.0,
                    reason=f"Matched routing rule: {matched_rule.name}",
                )
                metrics.record_routing_decision("rule")
                self._log_decision(context, decision)
                return decision

        eligible = self._eligible(scores)
        if not eligible:
            metrics.record_routing_failure(RoutingErrorCode.NO_ELIGIBLE_PROVIDER.value)
            raise RoutingError(
                "No eligible providers for this transaction",
                RoutingErrorCode.NO_ELIGIBLE_PROVIDER,
                merchant_id=context.merchant_id,
            )

        decision = self._decision_from_scores(eligible, "Selected by scoring algorithm")
        metrics.record_routing_decision("score")
        self._log_decision(context, decision)
        return decision

    async def get_next_fallback(
        self, context: RoutingContext, failed_provider_ids: Iterable[uuid.UUID]
    ) -> Optional[RoutingDecision]:
        """
        Re-rank the merchant's providers without the ones that already failed.

        Returns:
            Optional[RoutingDecision]: None when no eligible provider remains
        """
        failed = list(failed_provider_ids)
        logger.debug(
            "routing_next_fallback",
            merchant_id=context.merchant_id,
            failed_provider_ids=[str(pid) for pid in failed],
        )

        providers = await self.provider_service.get_merchant_providers(context.merchant_id)
        remaining = [p for p in providers if p.id not in failed]
        if not remaining:
            return None

        eligible = self._eligible(self.score_evaluator.evaluate_providers(remaining, context))
        if not eligible:
            return None

        metrics.record_routing_decision("fallback")
        return self._decision_from_scores(eligible, f"Fallback after {len(failed)} failures")

    def evaluate_rule(self, rule: RoutingRuleInfo, context: RoutingContext) -> bool:
        return self.condition_evaluator.evaluate(rule.conditions, context)

    # Rule management

    async def list_rules(
        self,
        merchant_id: str,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[RoutingRuleInfo], int]:
        conditions = [RoutingRule.merchant_id == merchant_id]
        if is_active is not None:
            conditions.append(RoutingRule.is_active.is_(is_active))

        async with self.session_factory() as db:
            result = await db.execute(
                select(RoutingRule)
                .where(*conditions)
                .order_by(RoutingRule.priority)
                .offset((page - 1) * limit)
                .limit(limit)
            )
            rules = result.scalars().all()
            total = await db.scalar(select(func.count()).select_from(RoutingRule).where(*conditions))

        return [RoutingRuleInfo.model_validate(rule) for rule in rules], int(total or 0)

    async def get_rule(self, rule_id: uuid.UUID) -> Optional[RoutingRuleInfo]:
        async with self.session_factory() as db:
            rule = await db.get(RoutingRule, rule_id)
            return RoutingRuleInfo.model_validate(rule) if rule else None

    async def create_rule(self, data: CreateRoutingRuleInput) -> RoutingRuleInfo:
        async with self.session_factory() as db:
            rule = RoutingRule(
                merchant_id=data.merchant_id,
                name=data.name,
                description=data.description,
                conditions=data.conditions.model_dump(mode="json", exclude_none=True),
                provider_id=data.provider_id,
                priority=data.priority,
                is_active=data.is_active,
            )
            db.add(rule)
            await db.commit()
            await db.refresh(rule)
            info = RoutingRuleInfo.model_validate(rule)

        await self._invalidate_rules_cache(data.merchant_id)
        logger.info("routing_rule_created", rule_id=str(info.id), merchant_id=data.merchant_id)
        return info

    async def update_rule(
        self,
        rule_id: uuid.UUID,
        data: UpdateRoutingRuleInput,
        expected_version: Optional[int] = None,
    ) -> Optional[RoutingRuleInfo]:
        """
        Update a rule.

        Args:
            rule_id: Rule id
            data: Fields to change
            expected_version: Version the caller last read; the update is
                rejected if the rule changed since

        Returns:
            Optional[RoutingRuleInfo]: Updated rule, None if it does not exist

        Raises:
            RoutingError: CONCURRENT_MODIFICATION on a version conflict
        """
        async with self.session_factory() as db:
            rule = await db.get(RoutingRule, rule_id)
            if rule is None:
                return None
            merchant_id = rule.merchant_id

            if expected_version is not None and rule.version != expected_version:
                raise self._concurrent_modification(rule_id, merchant_id)

            changes = data.model_dump(exclude_unset=True)
            if "conditions" in changes and data.conditions is not None:
                changes["conditions"] = data.conditions.model_dump(mode="json", exclude_none=True)
            for field_name, value in changes.items():
                setattr(rule, field_name, value)

            try:
                await db.commit()
            except StaleDataError as e:
                await db.rollback()
                raise self._concurrent_modification(rule_id, merchant_id) from e

            await db.refresh(rule)
            info = RoutingRuleInfo.model_validate(rule)

        await self._invalidate_rules_cache(info.merchant_id)
        logger.info("routing_rule_updated", rule_id=str(rule_id), version=info.version)
        return info

    async def delete_rule(self, rule_id: uuid.UUID) -> bool:
        async with self.session_factory() as db:
            rule = await db.get(RoutingRule, rule_id)
            if rule is None:
                return False
            merchant_id = rule.merchant_id
            await db.delete(rule)
            await db.commit()

        await self._invalidate_rules_cache(merchant_id)
        logger.info("routing_rule_deleted", rule_id=str(rule_id))
        return True

    # Helpers

    async def _get_rules_for_merchant(self, merchant_id: str) -> List[RoutingRuleInfo]:
        key = cache_key(CacheDomain.ROUTING_RULES, merchant_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return [RoutingRuleInfo.model_validate(rule) for rule in cached]

        async with self.session_factory() as db:
            result = await db.execute(
                select(RoutingRule)
                .where(RoutingRule.merchant_id == merchant_id, RoutingRule.is_active.is_(True))
                .order_by(RoutingRule.priority)
            )
            rules = [RoutingRuleInfo.model_validate(rule) for rule in result.scalars().all()]

        await self.cache.set_with_ttl(
            key,
            [rule.model_dump(mode="json") for rule in rules],
            self.settings.routing_rules_cache_ttl,
        )
        return rules

    async def _invalidate_rules_cache(self, merchant_id: str) -> None:
        await self.cache.delete(cache_key(CacheDomain.ROUTING_RULES, merchant_id))

    @staticmethod
    def _eligible(
        scores: List[ProviderScore], exclude: Iterable[uuid.UUID] = ()
    ) -> List[ProviderScore]:
        excluded = set(exclude)
        return [s for s in scores if s.eligible and s.provider_id not in excluded]

    def _decision_from_scores(self, eligible: List[ProviderScore], reason: str) -> RoutingDecision:
        selected = eligible[0]
        fallbacks = eligible[1:1 + self.settings.routing_fallback_count]
        return RoutingDecision(
            selected_provider_id=selected.provider_id,
            selected_provider_code=selected.provider_code,
            fallback_provider_ids=[s.provider_id for s in fallbacks],
            score=selected.total_score,
            reason=reason,
        )

    @staticmethod
    def _concurrent_modification(rule_id: uuid.UUID, merchant_id: str) -> RoutingError:
        return RoutingError(
            f"Routing rule {rule_id} was modified concurrently",
            RoutingErrorCode.CONCURRENT_MODIFICATION,
            merchant_id=merchant_id,
        )

    @staticmethod
    def _log_decision(context: RoutingContext, decision: RoutingDecision) -> None:
        logger.info(
            "routing_decision_made",
            merchant_id=context.merchant_id,
            provider_code=decision.selected_provider_code,
            fallback_count=len(decision.fallback_provider_ids),
            matched_rule_id=str(decision.matched_rule_id) if decision.matched_rule_id else None,
            score=decision.score,
            reason=decision.reason,
        )
