"""
Operator command line.

Usage:
    payment-orchestrator init-db
    payment-orchestrator seed-providers --merchant-id m_123
    payment-orchestrator refresh-fx --base USD
    payment-orchestrator mock-settlement --merchant-id m_123 --provider stripe \\
        --from 2026-01-01 --to 2026-01-02 --format csv --discrepancies
    payment-orchestrator reconcile --merchant-id m_123 --provider stripe \\
        --from 2026-01-01 --to 2026-01-02 --settlement-file settlement.csv
    payment-orchestrator ledger-summary --currency USD
    payment-orchestrator provider-health

Results are printed as JSON on stdout; logs go to stderr.
"""
import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from payment_orchestrator.cache import RedisCache
from payment_orchestrator.config import Settings, get_settings
from payment_orchestrator.core.enums import Currency
from payment_orchestrator.core.errors import OrchestratorError, ProviderError, ProviderErrorCode
from payment_orchestrator.database import close_db, create_engine, create_session_factory, init_db
from payment_orchestrator.monitoring import setup_logging
from payment_orchestrator.providers import PayPalMockAdapter, StripeMockAdapter
from payment_orchestrator.reconciliation import (
    MockSettlementRequest,
    ReconcileRequest,
    SettlementRecord,
    parse_settlement_csv,
)
from payment_orchestrator.services import Services, build_services

logger = structlog.get_logger(__name__)

Command = Callable[[Services, argparse.Namespace], Awaitable[Any]]

BUILTIN_PROVIDERS = (
    (StripeMockAdapter, "Stripe", 0.029, 1),
    (PayPalMockAdapter, "PayPal", 0.034, 2),
)


def parse_datetime(value: str) -> datetime:
    """Parse an ISO date or datetime; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def _provider_id(services: Services, code: str):
    provider = await services.provider_service.get_provider_by_code(code)
    if provider is None:
        raise ProviderError(f"Provider {code} not found", ProviderErrorCode.NOT_FOUND, provider_code=code)
    return provider.id


async def cmd_init_db(services: Services, args: argparse.Namespace) -> Dict[str, Any]:
    # Tables are created before dispatch; nothing else to do.
    return {"status": "initialized"}


async def cmd_seed_providers(services: Services, args: argparse.Namespace) -> List[Dict[str, Any]]:
    seeded = []
    for adapter_cls, name, cost, priority in BUILTIN_PROVIDERS:
        config: Dict[str, Any] = {}
        if args.webhook_secret:
            config["webhook_secret"] = args.webhook_secret
        provider = await services.provider_service.upsert_provider(
            code=adapter_cls.provider_code,
            name=name,
            supported_currencies=sorted(c.value for c in adapter_cls.supported_currencies),
            supported_methods=sorted(m.value for m in adapter_cls.supported_methods),
            cost_per_transaction=cost,
            config=config,
        )
        if args.merchant_id:
            await services.provider_service.configure_merchant_provider(
                args.merchant_id, provider.id, priority=priority
            )
        seeded.append({"id": str(provider.id), "code": provider.code, "priority": priority})
    return seeded


async def cmd_refresh_fx(services: Services, args: argparse.Namespace) -> Dict[str, Any]:
    count = await services.fx.refresh_rates(Currency(args.base))
    return {"base": args.base, "rates_stored": count}


async def cmd_mock_settlement(services: Services, args: argparse.Namespace) -> Any:
    settlement = await services.reconciliation.generate_mock_settlement(
        MockSettlementRequest(
            merchant_id=args.merchant_id,
            provider_id=await _provider_id(services, args.provider),
            from_date=args.from_date,
            to_date=args.to_date,
            format=args.format,
            introduce_discrepancies=args.discrepancies,
        )
    )
    if args.format == "csv":
        sys.stdout.write(settlement.csv or "")
        return None
    return [record.model_dump(mode="json") for record in settlement.records]


def load_settlement_file(path: Path) -> List[SettlementRecord]:
    """Read a settlement file; ``.csv`` files as CSV, anything else as a JSON list."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".csv":
        return parse_settlement_csv(text)
    return [SettlementRecord.model_validate(item) for item in json.loads(text)]


async def cmd_reconcile(services: Services, args: argparse.Namespace) -> Dict[str, Any]:
    report = await services.reconciliation.reconcile(
        ReconcileRequest(
            merchant_id=args.merchant_id,
            provider_id=await _provider_id(services, args.provider),
            from_date=args.from_date,
            to_date=args.to_date,
            settlement_data=load_settlement_file(args.settlement_file),
        )
    )
    return report.model_dump(mode="json")


async def cmd_ledger_summary(services: Services, args: argparse.Namespace) -> Dict[str, Any]:
    summary = await services.ledger.get_ledger_summary(
        currency=Currency(args.currency) if args.currency else None,
        from_date=args.from_date,
        to_date=args.to_date,
    )
    return summary.model_dump(mode="json")


async def cmd_provider_health(services: Services, args: argparse.Namespace) -> Dict[str, Any]:
    if args.provider:
        providers = [await services.provider_service.get_provider_by_code(args.provider)]
        if providers[0] is None:
            raise ProviderError(
                f"Provider {args.provider} not found",
                ProviderErrorCode.NOT_FOUND,
                provider_code=args.provider,
            )
    else:
        providers, _ = await services.provider_service.list_providers(limit=100)

    results = {}
    for provider in providers:
        health = await services.provider_service.check_health(provider.id)
        results[provider.code] = health.model_dump(mode="json")
    return {"dependencies": await services.health.check_all(), "providers": results}


COMMANDS: Dict[str, Command] = {
    "init-db": cmd_init_db,
    "seed-providers": cmd_seed_providers,
    "refresh-fx": cmd_refresh_fx,
    "mock-settlement": cmd_mock_settlement,
    "reconcile": cmd_reconcile,
    "ledger-summary": cmd_ledger_summary,
    "provider-health": cmd_provider_health,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="payment-orchestrator", description="Payment orchestrator operations"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")

    seed = sub.add_parser("seed-providers", help="Register the built-in mock providers")
    seed.add_argument("--merchant-id", help="Enable the providers for this merchant")
    seed.add_argument("--webhook-secret", help="Webhook signing secret stored on each provider")

    fx = sub.add_parser("refresh-fx", help="Fetch and store current FX rates")
    fx.add_argument("--base", default=Currency.USD.value, choices=[c.value for c in Currency])

    def period_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--merchant-id", required=True)
        p.add_argument("--provider", required=True, help="Provider code")
        p.add_argument("--from", dest="from_date", type=parse_datetime, required=True)
        p.add_argument("--to", dest="to_date", type=parse_datetime, required=True)

    mock = sub.add_parser("mock-settlement", help="Generate a settlement file from local data")
    period_args(mock)
    mock.add_argument("--format", choices=["json", "csv"], default="json")
    mock.add_argument("--discrepancies", action="store_true", help="Perturb some records")

    reconcile = sub.add_parser("reconcile", help="Reconcile a settlement file")
    period_args(reconcile)
    reconcile.add_argument("--settlement-file", type=Path, required=True)

    summary = sub.add_parser("ledger-summary", help="Ledger totals per account")
    summary.add_argument("--currency", choices=[c.value for c in Currency])
    summary.add_argument("--from", dest="from_date", type=parse_datetime)
    summary.add_argument("--to", dest="to_date", type=parse_datetime)

    health = sub.add_parser("provider-health", help="Probe provider and dependency health")
    health.add_argument("--provider", help="Provider code (default: all providers)")

    return parser


async def run(args: argparse.Namespace, settings: Optional[Settings] = None) -> Any:
    """Run one command against freshly built services."""
    settings = settings or get_settings()
    engine = create_engine(settings)
    cache = RedisCache.from_url(settings.redis_url, settings.cache_key_prefix)
    try:
        await init_db(engine)
        services = build_services(settings, create_session_factory(engine), cache)
        return await COMMANDS[args.command](services, args)
    finally:
        await cache.close()
        await close_db(engine)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings, stream=sys.stderr)

    try:
        result = asyncio.run(run(args, settings))
    except OrchestratorError as e:
        logger.error("command_failed", command=args.command, **e.to_dict())
        print(json.dumps({"error": e.to_dict()}, default=str))
        return 1

    if result is not None:
        print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
