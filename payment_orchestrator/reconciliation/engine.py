"""
Reconciliation engine.

Compares a provider settlement against local transactions for one
merchant, provider and period. Every transaction id in either set ends up
either matched or with at least one discrepancy:

- provider record without local transaction: MISSING_IN_DB
- local transaction without provider record: MISSING_IN_PROVIDER
- different amount: AMOUNT_MISMATCH
- different status: STATUS_MISMATCH (independent of the amount check)
"""
import csv
import io
import random
import time
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from payment_orchestrator.config import Settings, get_settings
from payment_orchestrator.core.enums import (
    Currency,
    DiscrepancyResolution,
    DiscrepancyType,
    ReportStatus,
    TransactionStatus,
)
from payment_orchestrator.core.errors import ReconciliationError, ReconciliationErrorCode
from payment_orchestrator.database.models import ReconciliationReport, Transaction
from payment_orchestrator.monitoring.metrics import metrics
from payment_orchestrator.reconciliation.types import (
    Discrepancy,
    MockSettlement,
    MockSettlementRequest,
    ReconcileRequest,
    ReconciliationReportInfo,
    SettlementRecord,
)

logger = structlog.get_logger(__name__)

CSV_COLUMNS = ["transaction_id", "amount", "currency", "status", "provider_ref", "settled_at"]


def settlement_to_csv(records: List[SettlementRecord]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for record in records:
        row = record.model_dump()
        writer.writerow({column: "" if row[column] is None else row[column] for column in CSV_COLUMNS})
    return buffer.getvalue()


def parse_settlement_csv(text: str) -> List[SettlementRecord]:
    """
    Read a settlement file in the format produced by ``settlement_to_csv``.

    Raises:
        ValueError: Missing columns or a non-integer amount
    """
    reader = csv.DictReader(io.StringIO(text.strip()))
    missing = set(CSV_COLUMNS) - set(reader.fieldnames or [])
    if missing:
        raise ValueError(f"Settlement CSV is missing columns: {sorted(missing)}")

    return [
        SettlementRecord(
            transaction_id=row["transaction_id"],
            amount=int(row["amount"]),
            currency=row["currency"],
            status=row["status"],
            provider_ref=row["provider_ref"] or None,
            settled_at=row["settled_at"] or None,
        )
        for row in reader
    ]


class ReconciliationEngine:
    """Settlement generation, reconciliation and discrepancy review."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize engine.

        Args:
            session_factory: Database session factory
            settings: Application settings (perturbation ratio)
            rng: Random source for mock settlement perturbation
        """
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.rng = rng or random.Random()

    async def generate_mock_settlement(self, request: MockSettlementRequest) -> MockSettlement:
        """
        Project local transactions into a settlement file.

        With ``introduce_discrepancies`` a share of the records is perturbed,
        cycling through an amount skew, a status flip and a replacement by a
        phantom record.
        """
        transactions = await self._load_transactions(
            request.merchant_id, request.provider_id, request.from_date, request.to_date
        )
        records = [
            SettlementRecord(
                transaction_id=str(t.id),
                amount=t.amount,
                currency=t.currency,
                status=t.status,
                provider_ref=t.provider_transaction_id,
                settled_at=self._isoformat(t.updated_at),
            )
            for t in transactions
        ]

        if request.introduce_discrepancies and records:
            records = self._perturb(records)

        logger.info(
            "mock_settlement_generated",
            merchant_id=request.merchant_id,
            provider_id=str(request.provider_id),
            records=len(records),
            perturbed=request.introduce_discrepancies,
        )

        csv_text = settlement_to_csv(records) if request.format == "csv" else None
        return MockSettlement(records=records, csv=csv_text)

    async def reconcile(self, request: ReconcileRequest) -> ReconciliationReportInfo:
        """
        Reconcile a settlement and store the report.

        Returns:
            ReconciliationReportInfo: REQUIRES_REVIEW if any discrepancy was
            found, COMPLETED otherwise
        """
        started = time.perf_counter()
        transactions = await self._load_transactions(
            request.merchant_id, request.provider_id, request.from_date, request.to_date
        )
        local = {str(t.id): t for t in transactions}
        provider_ids = {record.transaction_id for record in request.settlement_data}

        discrepancies: List[Discrepancy] = []
        matched = 0

        def add(transaction_id: str, kind: DiscrepancyType, description: str, **fields) -> None:
            discrepancies.append(
                Discrepancy(
                    id=f"disc_{len(discrepancies)}",
                    transaction_id=transaction_id,
                    type=kind,
                    description=description,
                    **fields,
                )
            )

        for record in request.settlement_data:
            transaction = local.get(record.transaction_id)
            if transaction is None:
                add(
                    record.transaction_id,
                    DiscrepancyType.MISSING_IN_DB,
                    f"Transaction {record.transaction_id} exists in provider settlement "
                    "but not in local records",
                    provider_amount=record.amount,
                    provider_status=record.status,
                )
                continue

            mismatch = False
            if transaction.amount != record.amount:
                add(
                    record.transaction_id,
                    DiscrepancyType.AMOUNT_MISMATCH,
                    f"Amount mismatch: provider={record.amount}, local={transaction.amount}",
                    provider_amount=record.amount,
                    local_amount=transaction.amount,
                )
                mismatch = True

            if transaction.status != record.status:
                add(
                    record.transaction_id,
                    DiscrepancyType.STATUS_MISMATCH,
                    f"Status mismatch: provider={record.status}, local={transaction.status}",
                    provider_status=record.status,
                    local_status=transaction.status,
                )
                mismatch = True

            if not mismatch:
                matched += 1

        for transaction_id, transaction in local.items():
            if transaction_id not in provider_ids:
                add(
                    transaction_id,
                    DiscrepancyType.MISSING_IN_PROVIDER,
                    f"Transaction {transaction_id} exists in local records "
                    "but not in provider settlement",
                    local_amount=transaction.amount,
                    local_status=transaction.status,
                )

        total = len(provider_ids | set(local))
        by_type = dict(Counter(d.type.value for d in discrepancies))
        rate = round(matched / total * 100, 2) if total else 100.0

        report = ReconciliationReport(
            merchant_id=request.merchant_id,
            provider_id=request.provider_id,
            status=(ReportStatus.REQUIRES_REVIEW if discrepancies else ReportStatus.COMPLETED).value,
            period_start=request.from_date,
            period_end=request.to_date,
            total_transactions=total,
            matched_transactions=matched,
            unmatched_transactions=len(discrepancies),
            discrepancies=[d.model_dump(mode="json") for d in discrepancies],
            summary={"by_type": by_type, "reconciliation_rate": rate},
            generated_at=datetime.now(timezone.utc),
        )
        async with self.session_factory() as db:
            db.add(report)
            await db.commit()
            await db.refresh(report)
            info = ReconciliationReportInfo.model_validate(report)

        metrics.record_reconciliation(by_type, rate, time.perf_counter() - started)
        logger.info(
            "reconciliation_completed",
            report_id=str(info.id),
            merchant_id=request.merchant_id,
            total=total,
            matched=matched,
            discrepancies=len(discrepancies),
            reconciliation_rate=rate,
        )
        return info

    async def list_reports(
        self,
        merchant_id: Optional[str] = None,
        status: Optional[ReportStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[ReconciliationReportInfo], int]:
        conditions = []
        if merchant_id is not None:
            conditions.append(ReconciliationReport.merchant_id == merchant_id)
        if status is not None:
            conditions.append(ReconciliationReport.status == ReportStatus(status).value)

        async with self.session_factory() as db:
            result = await db.execute(
                select(ReconciliationReport)
                .where(*conditions)
                .order_by(ReconciliationReport.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            reports = [ReconciliationReportInfo.model_validate(r) for r in result.scalars().all()]
            total = await db.scalar(
                select(func.count()).select_from(ReconciliationReport).where(*conditions)
            )

        return reports, int(total or 0)

    async def get_report(self, report_id: uuid.UUID) -> ReconciliationReportInfo:
        """
        Raises:
            ReconciliationError: REPORT_NOT_FOUND
        """
        async with self.session_factory() as db:
            report = await db.get(ReconciliationReport, report_id)
            if report is None:
                raise self._report_not_found(report_id)
            return ReconciliationReportInfo.model_validate(report)

    async def resolve_discrepancy(
        self,
        report_id: uuid.UUID,
        discrepancy_id: str,
        resolution: DiscrepancyResolution,
        resolved_by: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> ReconciliationReportInfo:
        """
        Resolve one discrepancy of a report.

        Re-resolving a discrepancy overwrites its previous resolution. When
        every discrepancy is resolved the report becomes COMPLETED and is
        stamped as reviewed.

        Args:
            report_id: Report id
            discrepancy_id: Discrepancy id within the report (``disc_<n>``)
            resolution: Resolution to record
            resolved_by: Reviewer
            expected_version: Report version the reviewer last read

        Raises:
            ReconciliationError: REPORT_NOT_FOUND, DISCREPANCY_NOT_FOUND or
                CONCURRENT_MODIFICATION
        """
        resolution = DiscrepancyResolution(resolution)
        async with self.session_factory() as db:
            report = await db.get(ReconciliationReport, report_id)
            if report is None:
                raise self._report_not_found(report_id)

            if expected_version is not None and report.version != expected_version:
                raise self._concurrent_modification(report_id, discrepancy_id)

            discrepancies = [Discrepancy.model_validate(d) for d in report.discrepancies]
            target = next((d for d in discrepancies if d.id == discrepancy_id), None)
            if target is None:
                raise ReconciliationError(
                    f"Discrepancy {discrepancy_id} not found in report {report_id}",
                    ReconciliationErrorCode.DISCREPANCY_NOT_FOUND,
                    report_id=report_id,
                    discrepancy_id=discrepancy_id,
                )

            now = datetime.now(timezone.utc)
            target.resolution = resolution
            target.resolved_at = now
            target.resolved_by = resolved_by

            all_resolved = all(d.is_resolved for d in discrepancies)
            report.discrepancies = [d.model_dump(mode="json") for d in discrepancies]
            report.status = (
                ReportStatus.COMPLETED if all_resolved else ReportStatus.REQUIRES_REVIEW
            ).value
            if all_resolved:
                report.reviewed_at = now
                report.reviewed_by = resolved_by

            try:
                await db.commit()
            except StaleDataError as e:
                await db.rollback()
                raise self._concurrent_modification(report_id, discrepancy_id) from e

            await db.refresh(report)
            info = ReconciliationReportInfo.model_validate(report)

        logger.info(
            "discrepancy_resolved",
            report_id=str(report_id),
            discrepancy_id=discrepancy_id,
            resolution=resolution.value,
            all_resolved=all_resolved,
        )
        return info

    # Helpers

    async def _load_transactions(
        self,
        merchant_id: str,
        provider_id: uuid.UUID,
        from_date: datetime,
        to_date: datetime,
    ) -> List[Transaction]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Transaction)
                .where(
                    Transaction.merchant_id == merchant_id,
                    Transaction.provider_id == provider_id,
                    Transaction.created_at >= from_date,
                    Transaction.created_at <= to_date,
                )
                .order_by(Transaction.created_at)
            )
            return list(result.scalars().all())

    def _perturb(self, records: List[SettlementRecord]) -> List[SettlementRecord]:
        count = max(1, int(len(records) * self.settings.reconciliation_discrepancy_ratio))
        indices = self.rng.sample(range(len(records)), min(count, len(records)))

        perturbed: Dict[int, Optional[SettlementRecord]] = {}
        phantoms: List[SettlementRecord] = []
        for position, index in enumerate(indices):
            record = records[index]
            kind = position % 3
            if kind == 0:
                skew = self.rng.uniform(0.05, 0.20) * self.rng.choice((1, -1))
                perturbed[index] = record.model_copy(
                    update={"amount": round(record.amount * (1 + skew))}
                )
            elif kind == 1:
                flipped = (
                    TransactionStatus.FAILED
                    if record.status == TransactionStatus.COMPLETED.value
                    else TransactionStatus.COMPLETED
                )
                perturbed[index] = record.model_copy(update={"status": flipped.value})
            else:
                perturbed[index] = None
                phantoms.append(
                    SettlementRecord(
                        transaction_id=str(uuid.uuid4()),
                        amount=self.rng.randint(1000, 100999),
                        currency=Currency.USD.value,
                        status=TransactionStatus.COMPLETED.value,
                        settled_at=datetime.now(timezone.utc).isoformat(),
                    )
                )

        kept = [
            perturbed.get(index, record)
            for index, record in enumerate(records)
        ]
        return [record for record in kept if record is not None] + phantoms

    @staticmethod
    def _isoformat(value: Optional[datetime]) -> Optional[str]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()

    @staticmethod
    def _report_not_found(report_id: uuid.UUID) -> ReconciliationError:
        return ReconciliationError(
            f"Reconciliation report {report_id} not found",
            ReconciliationErrorCode.REPORT_NOT_FOUND,
            report_id=report_id,
        )

    @staticmethod
    def _concurrent_modification(report_id: uuid.UUID, discrepancy_id: str) -> ReconciliationError:
        return ReconciliationError(
            f"Reconciliation report {report_id} was modified concurrently",
            ReconciliationErrorCode.CONCURRENT_MODIFICATION,
            report_id=report_id,
            discrepancy_id=discrepancy_id,
        )
