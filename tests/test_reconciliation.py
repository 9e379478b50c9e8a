"""
Tests for settlement reconciliation.
"""
import random
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from payment_orchestrator.core.enums import DiscrepancyResolution, DiscrepancyType, ReportStatus
from payment_orchestrator.core.errors import ReconciliationError, ReconciliationErrorCode
from payment_orchestrator.reconciliation import (
    MockSettlementRequest,
    ReconcileRequest,
    ReconciliationEngine,
    SettlementRecord,
    parse_settlement_csv,
)

from tests.conftest import MERCHANT_ID, insert_transaction

PROVIDER_ID = uuid.uuid4()


@pytest.fixture
def reconciliation(session_factory, test_settings) -> ReconciliationEngine:
    return ReconciliationEngine(session_factory, settings=test_settings, rng=random.Random(3))


@pytest.fixture
def period():
    now = datetime.now(timezone.utc)
    return now - timedelta(days=1), now + timedelta(days=1)


def reconcile_request(period, records) -> ReconcileRequest:
    return ReconcileRequest(
        merchant_id=MERCHANT_ID,
        provider_id=PROVIDER_ID,
        from_date=period[0],
        to_date=period[1],
        settlement_data=records,
    )


def settlement(transaction_id, amount=1000, status="COMPLETED") -> SettlementRecord:
    return SettlementRecord(
        transaction_id=str(transaction_id), amount=amount, currency="USD", status=status
    )


class TestReconcile:
    """Test suite for ReconciliationEngine.reconcile."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_amount_mismatch(self, reconciliation, session_factory, period) -> None:
        """Test a provider amount below the local amount is flagged for review."""
        transaction = await insert_transaction(session_factory, provider_id=PROVIDER_ID)

        report = await reconciliation.reconcile(
            reconcile_request(period, [settlement(transaction.id, amount=900)])
        )

        assert report.status == ReportStatus.REQUIRES_REVIEW
        assert report.total_transactions == 1
        assert report.matched_transactions == 0
        assert report.discrepancy_count == 1
        [discrepancy] = report.discrepancies
        assert discrepancy.type == DiscrepancyType.AMOUNT_MISMATCH
        assert (discrepancy.provider_amount, discrepancy.local_amount) == (900, 1000)
        assert discrepancy.id == "disc_0"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_every_transaction_accounted_for(self, reconciliation, session_factory, period) -> None:
        """Test matched, mismatched, missing-locally and missing-at-provider ids together."""
        matched = await insert_transaction(session_factory, provider_id=PROVIDER_ID)
        mismatched = await insert_transaction(session_factory, provider_id=PROVIDER_ID)
        unsettled = await insert_transaction(session_factory, provider_id=PROVIDER_ID)
        # Outside the provider filter, so it must not appear
        await insert_transaction(session_factory, provider_id=uuid.uuid4())
        phantom_id = uuid.uuid4()

        report = await reconciliation.reconcile(
            reconcile_request(
                period,
                [
                    settlement(matched.id),
                    settlement(mismatched.id, amount=1100, status="FAILED"),
                    settlement(phantom_id),
                ],
            )
        )

        assert report.total_transactions == 4
        assert report.matched_transactions == 1
        assert report.unmatched_transactions == 4
        assert report.summary["reconciliation_rate"] == 25.0
        assert report.summary["by_type"] == {
            "AMOUNT_MISMATCH": 1,
            "STATUS_MISMATCH": 1,
            "MISSING_IN_DB": 1,
            "MISSING_IN_PROVIDER": 1,
        }
        by_type = {d.type: d.transaction_id for d in report.discrepancies}
        assert by_type[DiscrepancyType.MISSING_IN_DB] == str(phantom_id)
        assert by_type[DiscrepancyType.MISSING_IN_PROVIDER] == str(unsettled.id)
        assert by_type[DiscrepancyType.STATUS_MISMATCH] == str(mismatched.id)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_clean_settlement_completes(self, reconciliation, session_factory, period) -> None:
        transaction = await insert_transaction(session_factory, provider_id=PROVIDER_ID)

        report = await reconciliation.reconcile(reconcile_request(period, [settlement(transaction.id)]))

        assert report.status == ReportStatus.COMPLETED
        assert report.discrepancies == []
        assert report.summary["reconciliation_rate"] == 100.0


class TestResolveDiscrepancy:
    """Test suite for discrepancy review."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_resolving_last_discrepancy_completes_report(
        self, reconciliation, session_factory, period
    ) -> None:
        transaction = await insert_transaction(session_factory, provider_id=PROVIDER_ID)
        report = await reconciliation.reconcile(
            reconcile_request(period, [settlement(transaction.id, amount=900)])
        )

        resolved = await reconciliation.resolve_discrepancy(
            report.id,
            "disc_0",
            DiscrepancyResolution.FORCE_MATCH,
            resolved_by="ops@example.com",
            expected_version=report.version,
        )

        assert resolved.status == ReportStatus.COMPLETED
        assert resolved.reviewed_at is not None
        assert resolved.reviewed_by == "ops@example.com"
        assert resolved.discrepancies[0].resolution == DiscrepancyResolution.FORCE_MATCH
        assert resolved.version == report.version + 1

        fetched = await reconciliation.get_report(report.id)
        assert fetched.status == ReportStatus.COMPLETED

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_partial_resolution_keeps_review(self, reconciliation, session_factory, period) -> None:
        transaction = await insert_transaction(session_factory, provider_id=PROVIDER_ID)
        report = await reconciliation.reconcile(
            reconcile_request(period, [settlement(transaction.id, amount=900, status="FAILED")])
        )

        updated = await reconciliation.resolve_discrepancy(report.id, "disc_1", DiscrepancyResolution.IGNORE)

        assert updated.status == ReportStatus.REQUIRES_REVIEW
        assert updated.reviewed_at is None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_stale_version_rejected(self, reconciliation, session_factory, period) -> None:
        transaction = await insert_transaction(session_factory, provider_id=PROVIDER_ID)
        report = await reconciliation.reconcile(
            reconcile_request(period, [settlement(transaction.id, amount=900, status="FAILED")])
        )
        await reconciliation.resolve_discrepancy(report.id, "disc_0", DiscrepancyResolution.IGNORE)

        with pytest.raises(ReconciliationError) as exc_info:
            await reconciliation.resolve_discrepancy(
                report.id, "disc_1", DiscrepancyResolution.IGNORE, expected_version=report.version
            )

        assert exc_info.value.code == ReconciliationErrorCode.CONCURRENT_MODIFICATION

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_not_found_errors(self, reconciliation, session_factory, period) -> None:
        with pytest.raises(ReconciliationError) as exc_info:
            await reconciliation.get_report(uuid.uuid4())
        assert exc_info.value.code == ReconciliationErrorCode.REPORT_NOT_FOUND

        transaction = await insert_transaction(session_factory, provider_id=PROVIDER_ID)
        report = await reconciliation.reconcile(
            reconcile_request(period, [settlement(transaction.id, amount=900)])
        )
        with pytest.raises(ReconciliationError) as exc_info:
            await reconciliation.resolve_discrepancy(report.id, "disc_9", DiscrepancyResolution.IGNORE)
        assert exc_info.value.code == ReconciliationErrorCode.DISCREPANCY_NOT_FOUND

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_reports(self, reconciliation, session_factory, period) -> None:
        transaction = await insert_transaction(session_factory, provider_id=PROVIDER_ID)
        await reconciliation.reconcile(reconcile_request(period, [settlement(transaction.id)]))
        await reconciliation.reconcile(
            reconcile_request(period, [settlement(transaction.id, amount=900)])
        )

        reports, total = await reconciliation.list_reports(merchant_id=MERCHANT_ID)
        in_review, review_total = await reconciliation.list_reports(
            status=ReportStatus.REQUIRES_REVIEW
        )

        assert total == 2
        assert len(reports) == 2
        assert review_total == 1
        assert in_review[0].discrepancy_count == 1
        assert (await reconciliation.list_reports(merchant_id="other"))[1] == 0


class TestMockSettlement:
    """Test suite for mock settlement generation."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_clean_settlement_reconciles(self, reconciliation, session_factory, period) -> None:
        for _ in range(5):
            await insert_transaction(session_factory, provider_id=PROVIDER_ID)
        request = MockSettlementRequest(
            merchant_id=MERCHANT_ID,
            provider_id=PROVIDER_ID,
            from_date=period[0],
            to_date=period[1],
        )

        generated = await reconciliation.generate_mock_settlement(request)
        report = await reconciliation.reconcile(reconcile_request(period, generated.records))

        assert len(generated.records) == 5
        assert generated.csv is None
        assert report.status == ReportStatus.COMPLETED
        assert report.matched_transactions == 5

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_perturbed_settlement_is_detected(self, reconciliation, session_factory, period) -> None:
        for _ in range(10):
            await insert_transaction(session_factory, provider_id=PROVIDER_ID)
        request = MockSettlementRequest(
            merchant_id=MERCHANT_ID,
            provider_id=PROVIDER_ID,
            from_date=period[0],
            to_date=period[1],
            introduce_discrepancies=True,
        )

        generated = await reconciliation.generate_mock_settlement(request)
        report = await reconciliation.reconcile(reconcile_request(period, generated.records))

        # 12% of 10 records perturbs one, by amount skew
        assert report.status == ReportStatus.REQUIRES_REVIEW
        assert [d.type for d in report.discrepancies] == [DiscrepancyType.AMOUNT_MISMATCH]
        assert report.matched_transactions == 9

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_csv_output_parses_back(self, reconciliation, session_factory, period) -> None:
        await insert_transaction(session_factory, provider_id=PROVIDER_ID, provider_transaction_id="pi_1")
        await insert_transaction(session_factory, provider_id=PROVIDER_ID)
        request = MockSettlementRequest(
            merchant_id=MERCHANT_ID,
            provider_id=PROVIDER_ID,
            from_date=period[0],
            to_date=period[1],
            format="csv",
        )

        generated = await reconciliation.generate_mock_settlement(request)

        assert generated.csv.splitlines()[0] == (
            "transaction_id,amount,currency,status,provider_ref,settled_at"
        )
        assert parse_settlement_csv(generated.csv) == generated.records

    @pytest.mark.unit
    def test_csv_missing_columns(self) -> None:
        with pytest.raises(ValueError, match="missing columns"):
            parse_settlement_csv("transaction_id,amount\nabc,100\n")
