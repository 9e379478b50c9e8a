"""
Double-entry ledger.

A posting is a set of entries for one transaction whose debits equal its
credits in every currency. Postings are validated in memory and written in
a single database transaction; entries are never updated afterwards, a
correction is a new offsetting posting.
"""
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payment_orchestrator.core.enums import AccountCode, Currency, LedgerEntryType
from payment_orchestrator.core.errors import LedgerError, LedgerErrorCode
from payment_orchestrator.database.models import FxRateRecord, LedgerEntry, Transaction
from payment_orchestrator.fx.service import round_minor
from payment_orchestrator.ledger.types import (
    AccountBalance,
    LedgerEntryFilter,
    LedgerEntryInfo,
    LedgerEntryInput,
    LedgerSummary,
)
from payment_orchestrator.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

VALID_ACCOUNT_CODES = frozenset(code.value for code in AccountCode)

POSTING_PAYMENT = "payment"
POSTING_REFUND = "refund"
POSTING_FX_SPREAD = "fx_spread"


class LedgerService:
    """Records and aggregates ledger postings."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record_entries(
        self,
        transaction_id: uuid.UUID,
        entries: Sequence[LedgerEntryInput],
        posting: Optional[str] = None,
        db: Optional[AsyncSession] = None,
    ) -> List[LedgerEntryInfo]:
        """
        Record a balanced posting for a transaction.

        Args:
            transaction_id: Transaction the posting belongs to
            entries: Posting lines
            posting: Posting name; a transaction can hold each named
                posting only once
            db: Session to join. The caller then owns the commit and the
                entries become visible with the caller's changes.

        Returns:
            List[LedgerEntryInfo]: Entries as written, with running balances

        Raises:
            LedgerError: TRANSACTION_NOT_FOUND, INVALID_ACCOUNT_CODE,
                INVALID_AMOUNT, UNBALANCED_ENTRY or DUPLICATE_ENTRY. Nothing
                is written when an error is raised.
        """
        self._validate(transaction_id, entries)

        if db is not None:
            return await self._write(db, transaction_id, entries, posting)

        async with self.session_factory() as session:
            written = await self._write(session, transaction_id, entries, posting)
            await session.commit()
        return written

    async def record_payment(
        self,
        transaction_id: uuid.UUID,
        amount: int,
        currency: Currency,
        merchant_id: Optional[str] = None,
        db: Optional[AsyncSession] = None,
    ) -> List[LedgerEntryInfo]:
        """Customer payment received: debit cash, credit merchant payable."""
        metadata = {"merchant_id": merchant_id} if merchant_id else {}
        entries = [
            LedgerEntryInput(
                account_code=AccountCode.CASH.value,
                entry_type=LedgerEntryType.DEBIT,
                amount=amount,
                currency=currency,
                description="Payment received from customer",
                metadata=metadata,
            ),
            LedgerEntryInput(
                account_code=AccountCode.MERCHANT_PAYABLE.value,
                entry_type=LedgerEntryType.CREDIT,
                amount=amount,
                currency=currency,
                description="Payable to merchant",
                metadata=metadata,
            ),
        ]
        return await self.record_entries(transaction_id, entries, POSTING_PAYMENT, db=db)

    async def record_refund(
        self,
        transaction_id: uuid.UUID,
        amount: int,
        currency: Currency,
        merchant_id: Optional[str] = None,
        db: Optional[AsyncSession] = None,
    ) -> List[LedgerEntryInfo]:
        """Refund issued: debit refund payable, credit cash."""
        metadata = {"merchant_id": merchant_id} if merchant_id else {}
        entries = [
            LedgerEntryInput(
                account_code=AccountCode.REFUND_PAYABLE.value,
                entry_type=LedgerEntryType.DEBIT,
                amount=amount,
                currency=currency,
                description="Refund issued to customer",
                metadata=metadata,
            ),
            LedgerEntryInput(
                account_code=AccountCode.CASH.value,
                entry_type=LedgerEntryType.CREDIT,
                amount=amount,
                currency=currency,
                description="Cash outflow for refund",
                metadata=metadata,
            ),
        ]
        return await self.record_entries(transaction_id, entries, POSTING_REFUND, db=db)

    async def record_fx_spread(
        self,
        transaction_id: uuid.UUID,
        spread_amount: int,
        currency: Currency,
        db: Optional[AsyncSession] = None,
    ) -> List[LedgerEntryInfo]:
        """FX spread earned: debit FX receivable, credit FX revenue."""
        entries = [
            LedgerEntryInput(
                account_code=AccountCode.FX_RECEIVABLE.value,
                entry_type=LedgerEntryType.DEBIT,
                amount=spread_amount,
                currency=currency,
                description="FX spread receivable",
            ),
            LedgerEntryInput(
                account_code=AccountCode.FX_REVENUE.value,
                entry_type=LedgerEntryType.CREDIT,
                amount=spread_amount,
                currency=currency,
                description="FX spread revenue",
            ),
        ]
        return await self.record_entries(transaction_id, entries, POSTING_FX_SPREAD, db=db)

    async def record_completed_payment(
        self,
        transaction: Transaction,
        db: AsyncSession,
        amount: Optional[int] = None,
    ) -> List[LedgerEntryInfo]:
        """
        Post a payment that reached COMPLETED, in the caller's session.

        Writes the payment posting for the charged amount and, for converted
        payments, the FX spread earned on the conversion. Every path that
        completes a payment posts through here so the ledger does not depend
        on how completion was observed.

        Args:
            transaction: The completed payment
            db: Session the status change is written in
            amount: Captured amount, defaults to the charged amount

        Returns:
            List[LedgerEntryInfo]: All entries written
        """
        currency = Currency(transaction.charged_currency)
        written = await self.record_payment(
            transaction.id,
            transaction.charged_amount if amount is None else amount,
            currency,
            transaction.merchant_id,
            db=db,
        )
        spread_amount = await self._fx_spread_amount(db, transaction)
        if spread_amount > 0:
            written += await self.record_fx_spread(transaction.id, spread_amount, currency, db=db)
        return written

    @staticmethod
    async def _fx_spread_amount(db: AsyncSession, transaction: Transaction) -> int:
        if transaction.converted_amount is None or transaction.fx_rate_id is None:
            return 0
        rate = await db.get(FxRateRecord, transaction.fx_rate_id)
        if rate is None:
            return 0
        return transaction.converted_amount - round_minor(transaction.amount * rate.rate)

    async def get_entries_by_transaction(self, transaction_id: uuid.UUID) -> List[LedgerEntryInfo]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(LedgerEntry)
                .where(LedgerEntry.transaction_id == transaction_id)
                .order_by(LedgerEntry.created_at)
            )
            return [LedgerEntryInfo.model_validate(entry) for entry in result.scalars().all()]

    async def list_entries(
        self,
        filters: Optional[LedgerEntryFilter] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[LedgerEntryInfo], int]:
        """
        List entries, newest first.

        Returns:
            Tuple[List[LedgerEntryInfo], int]: Page of entries and total count
        """
        filters = filters or LedgerEntryFilter()
        conditions = []
        if filters.transaction_id is not None:
            conditions.append(LedgerEntry.transaction_id == filters.transaction_id)
        if filters.account_code is not None:
            conditions.append(LedgerEntry.account_code == filters.account_code)
        if filters.entry_type is not None:
            conditions.append(LedgerEntry.entry_type == filters.entry_type.value)
        if filters.currency is not None:
            conditions.append(LedgerEntry.currency == filters.currency.value)
        if filters.from_date is not None:
            conditions.append(LedgerEntry.created_at >= filters.from_date)
        if filters.to_date is not None:
            conditions.append(LedgerEntry.created_at <= filters.to_date)

        async with self.session_factory() as db:
            result = await db.execute(
                select(LedgerEntry)
                .where(*conditions)
                .order_by(LedgerEntry.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            entries = [LedgerEntryInfo.model_validate(entry) for entry in result.scalars().all()]
            total = await db.scalar(
                select(func.count()).select_from(LedgerEntry).where(*conditions)
            )

        return entries, int(total or 0)

    async def get_account_balance(
        self,
        account_code: str,
        currency: Optional[Currency] = None,
        as_of: Optional[datetime] = None,
    ) -> List[AccountBalance]:
        """
        Balance of an account per currency (debits minus credits).

        Args:
            account_code: Account to aggregate
            currency: Restrict to one currency
            as_of: Only count entries created at or before this time
        """
        conditions = [LedgerEntry.account_code == account_code]
        if currency is not None:
            conditions.append(LedgerEntry.currency == Currency(currency).value)
        if as_of is not None:
            conditions.append(LedgerEntry.created_at <= as_of)

        totals = await self._aggregate(conditions)
        return [
            self._balance(code, cur, debits, credits)
            for (code, cur), (debits, credits) in sorted(totals.items())
        ]

    async def get_ledger_summary(
        self,
        currency: Optional[Currency] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> LedgerSummary:
        """
        Totals across every account.

        ``is_balanced`` is the system-wide double-entry check: total debits
        equal total credits.
        """
        conditions = []
        if currency is not None:
            conditions.append(LedgerEntry.currency == Currency(currency).value)
        if from_date is not None:
            conditions.append(LedgerEntry.created_at >= from_date)
        if to_date is not None:
            conditions.append(LedgerEntry.created_at <= to_date)

        totals = await self._aggregate(conditions)
        accounts = [
            self._balance(code, cur, debits, credits)
            for (code, cur), (debits, credits) in sorted(totals.items())
        ]
        total_debits = sum(account.debit_total for account in accounts)
        total_credits = sum(account.credit_total for account in accounts)

        return LedgerSummary(
            total_debits=total_debits,
            total_credits=total_credits,
            is_balanced=total_debits == total_credits,
            accounts=accounts,
        )

    # Internals

    def _validate(self, transaction_id: uuid.UUID, entries: Sequence[LedgerEntryInput]) -> None:
        for entry in entries:
            if entry.account_code not in VALID_ACCOUNT_CODES:
                raise self._reject(
                    f"Invalid account code: {entry.account_code}",
                    LedgerErrorCode.INVALID_ACCOUNT_CODE,
                    transaction_id,
                )
            if entry.amount <= 0:
                raise self._reject(
                    f"Ledger entry amount must be positive, got {entry.amount}",
                    LedgerErrorCode.INVALID_AMOUNT,
                    transaction_id,
                )

        if len(entries) < 2:
            raise self._reject(
                f"Ledger posting for transaction {transaction_id} needs at least two entries",
                LedgerErrorCode.UNBALANCED_ENTRY,
                transaction_id,
            )

        totals: Dict[Currency, List[int]] = defaultdict(lambda: [0, 0])
        for entry in entries:
            index = 0 if entry.entry_type == LedgerEntryType.DEBIT else 1
            totals[entry.currency][index] += entry.amount

        for currency, (debits, credits) in totals.items():
            if debits != credits:
                logger.warning(
                    "ledger_unbalanced_posting",
                    transaction_id=str(transaction_id),
                    currency=currency.value,
                    debits=debits,
                    credits=credits,
                )
                raise self._reject(
                    f"Ledger entries for transaction {transaction_id} are not balanced",
                    LedgerErrorCode.UNBALANCED_ENTRY,
                    transaction_id,
                )

    async def _write(
        self,
        db: AsyncSession,
        transaction_id: uuid.UUID,
        entries: Sequence[LedgerEntryInput],
        posting: Optional[str],
    ) -> List[LedgerEntryInfo]:
        if await db.get(Transaction, transaction_id) is None:
            raise self._reject(
                f"Transaction {transaction_id} not found",
                LedgerErrorCode.TRANSACTION_NOT_FOUND,
                transaction_id,
            )

        balances: Dict[Tuple[str, str], int] = {}
        rows = []
        for entry in entries:
            key = (entry.account_code, entry.currency.value)
            if key not in balances:
                balances[key] = await self._current_balance(db, *key)
            signed = entry.amount if entry.entry_type == LedgerEntryType.DEBIT else -entry.amount
            balances[key] += signed

            rows.append(
                LedgerEntry(
                    transaction_id=transaction_id,
                    account_code=entry.account_code,
                    entry_type=entry.entry_type.value,
                    amount=entry.amount,
                    currency=entry.currency.value,
                    balance=balances[key],
                    posting=posting,
                    description=entry.description,
                    metadata_=dict(entry.metadata),
                )
            )

        db.add_all(rows)
        try:
            await db.flush()
        except IntegrityError as e:
            raise self._reject(
                f"Ledger posting {posting} already exists for transaction {transaction_id}",
                LedgerErrorCode.DUPLICATE_ENTRY,
                transaction_id,
            ) from e

        metrics.record_ledger_entries(entries[0].currency.value, len(rows))
        logger.info(
            "ledger_entries_recorded",
            transaction_id=str(transaction_id),
            posting=posting,
            entry_count=len(rows),
        )
        return [LedgerEntryInfo.model_validate(row) for row in rows]

    @staticmethod
    async def _current_balance(db: AsyncSession, account_code: str, currency: str) -> int:
        signed = case(
            (LedgerEntry.entry_type == LedgerEntryType.DEBIT.value, LedgerEntry.amount),
            else_=-LedgerEntry.amount,
        )
        total = await db.scalar(
            select(func.coalesce(func.sum(signed), 0)).where(
                LedgerEntry.account_code == account_code,
                LedgerEntry.currency == currency,
            )
        )
        return int(total or 0)

    async def _aggregate(self, conditions: list) -> Dict[Tuple[str, str], Tuple[int, int]]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(
                    LedgerEntry.account_code,
                    LedgerEntry.currency,
                    LedgerEntry.entry_type,
                    func.sum(LedgerEntry.amount),
                )
                .where(*conditions)
                .group_by(LedgerEntry.account_code, LedgerEntry.currency, LedgerEntry.entry_type)
            )
            rows = result.all()

        totals: Dict[Tuple[str, str], List[int]] = defaultdict(lambda: [0, 0])
        for account_code, currency, entry_type, amount in rows:
            index = 0 if entry_type == LedgerEntryType.DEBIT.value else 1
            totals[(account_code, currency)][index] += int(amount or 0)
        return {key: (debits, credits) for key, (debits, credits) in totals.items()}

    @staticmethod
    def _balance(account_code: str, currency: str, debits: int, credits: int) -> AccountBalance:
        return AccountBalance(
            account_code=account_code,
            currency=currency,
            debit_total=debits,
            credit_total=credits,
            balance=debits - credits,
        )

    @staticmethod
    def _reject(message: str, code: LedgerErrorCode, transaction_id: uuid.UUID) -> LedgerError:
        metrics.record_ledger_rejection(code.value)
        return LedgerError(message, code, transaction_id=transaction_id)
