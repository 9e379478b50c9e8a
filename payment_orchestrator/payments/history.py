"""Status changes with their audit trail."""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from payment_orchestrator.core.enums import TransactionStatus
from payment_orchestrator.core.state_machine import assert_transition
from payment_orchestrator.database.models import Transaction, TransactionStatusHistory


def record_status_change(
    db: AsyncSession,
    transaction: Transaction,
    to_status: TransactionStatus,
    reason: Optional[str] = None,
) -> None:
    """
    Move a transaction to a new status inside the caller's session.

    The history row is added to the same session, so the change and its
    audit entry commit together.

    Raises:
        PaymentError: INVALID_TRANSITION if the state machine forbids it
    """
    to_status = TransactionStatus(to_status)
    from_status = transaction.status
    assert_transition(from_status, to_status, transaction.id)

    db.add(
        TransactionStatusHistory(
            transaction_id=transaction.id,
            from_status=from_status,
            to_status=to_status.value,
            reason=reason,
        )
    )
    transaction.status = to_status.value


async def record_creation(
    db: AsyncSession, transaction: Transaction, reason: Optional[str] = None
) -> None:
    """
    Insert a new transaction and the history row for its initial status.

    The transaction is flushed first; a duplicate idempotency key surfaces
    here as ``IntegrityError``.
    """
    assert_transition(None, transaction.status, transaction.id)
    db.add(transaction)
    await db.flush()
    db.add(
        TransactionStatusHistory(
            transaction_id=transaction.id,
            from_status=None,
            to_status=transaction.status,
            reason=reason,
        )
    )
