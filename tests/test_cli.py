"""
Tests for the operator command line.
"""
import argparse
import json
from datetime import datetime, timedelta, timezone

import pytest

from payment_orchestrator import cli
from payment_orchestrator.core.errors import ProviderError, ProviderErrorCode
from payment_orchestrator.reconciliation import SettlementRecord

from tests.conftest import insert_transaction


class TestParser:
    """Test suite for argument parsing."""

    @pytest.mark.unit
    def test_every_command_has_a_subparser(self) -> None:
        parser = cli.build_parser()

        for command in cli.COMMANDS:
            extra = []
            if command in ("mock-settlement", "reconcile"):
                extra = [
                    "--merchant-id", "m_1",
                    "--provider", "stripe",
                    "--from", "2026-01-01",
                    "--to", "2026-01-02",
                ]
            if command == "reconcile":
                extra += ["--settlement-file", "settlement.csv"]
            assert parser.parse_args([command, *extra]).command == command

    @pytest.mark.unit
    def test_period_arguments_are_parsed(self) -> None:
        args = cli.build_parser().parse_args(
            [
                "mock-settlement",
                "--merchant-id", "m_1",
                "--provider", "stripe",
                "--from", "2026-01-01",
                "--to", "2026-01-02T12:00:00+02:00",
                "--format", "csv",
                "--discrepancies",
            ]
        )

        assert args.from_date == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert args.to_date.utcoffset() == timedelta(hours=2)
        assert args.discrepancies

    @pytest.mark.unit
    def test_invalid_currency_rejected(self) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["refresh-fx", "--base", "XYZ"])


class TestSettlementFiles:
    """Test suite for settlement file loading."""

    @pytest.mark.unit
    def test_json_and_csv(self, tmp_path) -> None:
        record = {"transaction_id": "tx_1", "amount": 1000, "currency": "USD", "status": "COMPLETED"}
        json_file = tmp_path / "settlement.json"
        json_file.write_text(json.dumps([record]))
        csv_file = tmp_path / "settlement.CSV"
        csv_file.write_text(
            "transaction_id,amount,currency,status,provider_ref,settled_at\n"
            "tx_1,1000,USD,COMPLETED,,\n"
        )

        from_json = cli.load_settlement_file(json_file)
        from_csv = cli.load_settlement_file(csv_file)

        assert from_json == [SettlementRecord.model_validate(record)]
        assert [(r.transaction_id, r.amount) for r in from_csv] == [("tx_1", 1000)]


class TestCommands:
    """Test suite for command handlers run against test services."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_seed_then_reconcile(self, services, session_factory, tmp_path) -> None:
        seeded = await cli.cmd_seed_providers(
            services, argparse.Namespace(merchant_id="m_cli", webhook_secret="whsec_cli")
        )
        assert [p["code"] for p in seeded] == ["stripe", "paypal"]
        merchant_providers = await services.provider_service.get_merchant_providers("m_cli")
        assert [p.code for p in merchant_providers] == ["stripe", "paypal"]

        stripe_id = merchant_providers[0].id
        transaction = await insert_transaction(
            session_factory, merchant_id="m_cli", provider_id=stripe_id
        )
        settlement_file = tmp_path / "settlement.json"
        settlement_file.write_text(
            json.dumps(
                [
                    {
                        "transaction_id": str(transaction.id),
                        "amount": 1000,
                        "currency": "USD",
                        "status": "COMPLETED",
                    }
                ]
            )
        )
        now = datetime.now(timezone.utc)

        report = await cli.cmd_reconcile(
            services,
            argparse.Namespace(
                merchant_id="m_cli",
                provider="stripe",
                from_date=now - timedelta(days=1),
                to_date=now + timedelta(days=1),
                settlement_file=settlement_file,
            ),
        )

        assert report["status"] == "COMPLETED"
        assert report["matched_transactions"] == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_refresh_fx_and_ledger_summary(self, services) -> None:
        refreshed = await cli.cmd_refresh_fx(services, argparse.Namespace(base="USD"))
        summary = await cli.cmd_ledger_summary(
            services, argparse.Namespace(currency=None, from_date=None, to_date=None)
        )

        assert refreshed == {"base": "USD", "rates_stored": 9}
        assert summary["is_balanced"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_provider_health(self, services, seeded_providers) -> None:
        result = await cli.cmd_provider_health(services, argparse.Namespace(provider="stripe"))

        assert result["providers"]["stripe"]["status"] == "healthy"
        assert result["dependencies"]["status"] == "healthy"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_provider(self, services) -> None:
        with pytest.raises(ProviderError) as exc_info:
            await cli.cmd_provider_health(services, argparse.Namespace(provider="adyen"))

        assert exc_info.value.code == ProviderErrorCode.NOT_FOUND
