"""
Tests for the double-entry ledger.
"""
import random
import uuid
from typing import List

import pytest

from payment_orchestrator.core.enums import AccountCode, Currency, LedgerEntryType
from payment_orchestrator.core.errors import LedgerError, LedgerErrorCode
from payment_orchestrator.ledger import LedgerEntryFilter, LedgerEntryInput, LedgerService

from tests.conftest import insert_transaction

ACCOUNTS = [code.value for code in AccountCode]


def line(account: AccountCode, entry_type: LedgerEntryType, amount: int, currency="USD"):
    return LedgerEntryInput(
        account_code=account.value,
        entry_type=entry_type,
        amount=amount,
        currency=currency,
    )


def random_posting(rng: random.Random, balanced: bool) -> List[LedgerEntryInput]:
    """Random debit/credit lines; when unbalanced, the last credit is inflated."""
    debits = [rng.randint(1, 10_000) for _ in range(rng.randint(1, 3))]
    total = sum(debits)
    cut = sorted(rng.sample(range(1, total), rng.randint(0, min(2, total - 1)))) if total > 1 else []
    credits = [b - a for a, b in zip([0, *cut], [*cut, total])]
    if not balanced:
        credits[-1] += rng.randint(1, 100)

    entries = [
        LedgerEntryInput(
            account_code=rng.choice(ACCOUNTS),
            entry_type=LedgerEntryType.DEBIT,
            amount=amount,
            currency=Currency.USD,
        )
        for amount in debits
    ]
    entries += [
        LedgerEntryInput(
            account_code=rng.choice(ACCOUNTS),
            entry_type=LedgerEntryType.CREDIT,
            amount=amount,
            currency=Currency.USD,
        )
        for amount in credits
    ]
    rng.shuffle(entries)
    return entries


@pytest.fixture
def ledger(session_factory) -> LedgerService:
    return LedgerService(session_factory)


class TestRecordEntries:
    """Test suite for posting validation."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_balanced_postings_accepted_unbalanced_rejected(
        self, ledger, session_factory
    ) -> None:
        """Test random postings: balanced ones are written, unbalanced ones write nothing."""
        rng = random.Random(7)

        for i in range(30):
            transaction = await insert_transaction(session_factory)
            balanced = i % 2 == 0
            entries = random_posting(rng, balanced)

            if balanced:
                written = await ledger.record_entries(transaction.id, entries)
                assert len(written) == len(entries)
            else:
                with pytest.raises(LedgerError) as exc_info:
                    await ledger.record_entries(transaction.id, entries)
                assert exc_info.value.code == LedgerErrorCode.UNBALANCED_ENTRY
                assert await ledger.get_entries_by_transaction(transaction.id) == []

        summary = await ledger.get_ledger_summary()
        assert summary.is_balanced
        assert summary.total_debits == summary.total_credits

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_single_entry_rejected(self, ledger, session_factory) -> None:
        transaction = await insert_transaction(session_factory)

        with pytest.raises(LedgerError) as exc_info:
            await ledger.record_entries(
                transaction.id, [line(AccountCode.CASH, LedgerEntryType.DEBIT, 100)]
            )

        assert exc_info.value.code == LedgerErrorCode.UNBALANCED_ENTRY

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_balance_checked_per_currency(self, ledger, session_factory) -> None:
        """Test debits in one currency cannot balance credits in another."""
        transaction = await insert_transaction(session_factory)

        with pytest.raises(LedgerError) as exc_info:
            await ledger.record_entries(
                transaction.id,
                [
                    line(AccountCode.CASH, LedgerEntryType.DEBIT, 100, "USD"),
                    line(AccountCode.MERCHANT_PAYABLE, LedgerEntryType.CREDIT, 100, "EUR"),
                ],
            )

        assert exc_info.value.code == LedgerErrorCode.UNBALANCED_ENTRY

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_account_code(self, ledger, session_factory) -> None:
        transaction = await insert_transaction(session_factory)
        entries = [
            LedgerEntryInput(
                account_code="9999", entry_type=LedgerEntryType.DEBIT, amount=100, currency="USD"
            ),
            line(AccountCode.CASH, LedgerEntryType.CREDIT, 100),
        ]

        with pytest.raises(LedgerError) as exc_info:
            await ledger.record_entries(transaction.id, entries)

        assert exc_info.value.code == LedgerErrorCode.INVALID_ACCOUNT_CODE

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -50])
    async def test_non_positive_amount(self, ledger, session_factory, amount) -> None:
        transaction = await insert_transaction(session_factory)
        entries = [
            line(AccountCode.CASH, LedgerEntryType.DEBIT, amount),
            line(AccountCode.MERCHANT_PAYABLE, LedgerEntryType.CREDIT, amount),
        ]

        with pytest.raises(LedgerError) as exc_info:
            await ledger.record_entries(transaction.id, entries)

        assert exc_info.value.code == LedgerErrorCode.INVALID_AMOUNT

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_transaction(self, ledger) -> None:
        with pytest.raises(LedgerError) as exc_info:
            await ledger.record_payment(uuid.uuid4(), 1000, Currency.USD)

        assert exc_info.value.code == LedgerErrorCode.TRANSACTION_NOT_FOUND

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_duplicate_posting_rejected(self, ledger, session_factory) -> None:
        transaction = await insert_transaction(session_factory)
        await ledger.record_payment(transaction.id, 1000, Currency.USD)

        with pytest.raises(LedgerError) as exc_info:
            await ledger.record_payment(transaction.id, 1000, Currency.USD)

        assert exc_info.value.code == LedgerErrorCode.DUPLICATE_ENTRY
        assert len(await ledger.get_entries_by_transaction(transaction.id)) == 2


class TestBalances:
    """Test suite for balances and summaries."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_running_balance_and_account_balance(self, ledger, session_factory) -> None:
        payment = await insert_transaction(session_factory)
        refund = await insert_transaction(session_factory, type="REFUND", amount=300)

        payment_entries = await ledger.record_payment(payment.id, 1000, Currency.USD, "m_1")
        refund_entries = await ledger.record_refund(refund.id, 300, Currency.USD, "m_1")

        cash_after_payment = next(e for e in payment_entries if e.account_code == AccountCode.CASH.value)
        cash_after_refund = next(e for e in refund_entries if e.account_code == AccountCode.CASH.value)
        assert cash_after_payment.balance == 1000
        assert cash_after_refund.balance == 700
        assert cash_after_payment.metadata == {"merchant_id": "m_1"}

        [cash] = await ledger.get_account_balance(AccountCode.CASH.value, Currency.USD)
        assert (cash.debit_total, cash.credit_total, cash.balance) == (1000, 300, 700)

        [payable] = await ledger.get_account_balance(AccountCode.MERCHANT_PAYABLE.value)
        assert payable.balance == -1000

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_summary_per_currency(self, ledger, session_factory) -> None:
        usd = await insert_transaction(session_factory)
        eur = await insert_transaction(session_factory, currency="EUR")
        await ledger.record_payment(usd.id, 1000, Currency.USD)
        await ledger.record_payment(eur.id, 500, Currency.EUR)
        await ledger.record_fx_spread(eur.id, 5, Currency.EUR)

        everything = await ledger.get_ledger_summary()
        eur_only = await ledger.get_ledger_summary(currency=Currency.EUR)

        assert everything.is_balanced
        assert everything.total_debits == 1505
        assert eur_only.total_debits == eur_only.total_credits == 505
        assert {a.account_code for a in eur_only.accounts} == {
            AccountCode.CASH.value,
            AccountCode.MERCHANT_PAYABLE.value,
            AccountCode.FX_RECEIVABLE.value,
            AccountCode.FX_REVENUE.value,
        }

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_entries_filters(self, ledger, session_factory) -> None:
        transaction = await insert_transaction(session_factory)
        await ledger.record_payment(transaction.id, 1000, Currency.USD)

        entries, total = await ledger.list_entries(
            LedgerEntryFilter(entry_type=LedgerEntryType.DEBIT, currency=Currency.USD)
        )

        assert total == 1
        assert entries[0].account_code == AccountCode.CASH.value
