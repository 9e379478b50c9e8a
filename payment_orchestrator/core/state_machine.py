"""Transaction status state machine."""
from typing import Dict, FrozenSet, Optional

from payment_orchestrator.core.enums import TransactionStatus
from payment_orchestrator.core.errors import PaymentError, PaymentErrorCode

S = TransactionStatus

INITIAL_STATUS = S.PENDING

ALLOWED_TRANSITIONS: Dict[TransactionStatus, FrozenSet[TransactionStatus]] = {
    # COMPLETED covers capture of an authorized payment; FAILED covers provider callbacks.
    S.PENDING: frozenset({S.PROCESSING, S.COMPLETED, S.CANCELLED, S.FAILED}),
    # PENDING is reached when the provider authorized without capturing.
    S.PROCESSING: frozenset({S.COMPLETED, S.FAILED, S.PENDING}),
    S.COMPLETED: frozenset({S.REFUNDED}),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
    S.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)


def can_transition(
    from_status: Optional[TransactionStatus | str], to_status: TransactionStatus | str
) -> bool:
    """
    Check whether a status change is part of the state machine.

    Args:
        from_status: Current status, None for a transaction being created
        to_status: Requested status

    Returns:
        bool: True if the transition is allowed
    """
    to_status = TransactionStatus(to_status)
    if from_status is None:
        return to_status == INITIAL_STATUS
    return to_status in ALLOWED_TRANSITIONS[TransactionStatus(from_status)]


def assert_transition(
    from_status: Optional[TransactionStatus | str],
    to_status: TransactionStatus | str,
    transaction_id: Optional[object] = None,
) -> None:
    """
    Validate a status change.

    Raises:
        PaymentError: INVALID_TRANSITION if the change is not allowed
    """
    if not can_transition(from_status, to_status):
        current = TransactionStatus(from_status).value if from_status is not None else "NEW"
        raise PaymentError(
            f"Invalid status transition {current} -> {TransactionStatus(to_status).value}",
            PaymentErrorCode.INVALID_TRANSITION,
            transaction_id=transaction_id,
        )
