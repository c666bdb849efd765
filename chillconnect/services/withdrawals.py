"""Provider withdrawals: tokens leave the wallet on request and come back on rejection or cancellation."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from chillconnect.config import get_settings
from chillconnect.models.user import User
from chillconnect.models.withdrawal import PaymentMethod, WithdrawalRequest, WithdrawalStatus
from chillconnect.services import ledger
from chillconnect.services.audit_log import create_log, CATEGORY_WITHDRAWAL
from chillconnect.services.bookings import BookingError

logger = logging.getLogger(__name__)

# status -> statuses it may move to
TRANSITIONS = {
    WithdrawalStatus.PENDING: (WithdrawalStatus.APPROVED, WithdrawalStatus.REJECTED, WithdrawalStatus.CANCELLED),
    WithdrawalStatus.APPROVED: (WithdrawalStatus.COMPLETED, WithdrawalStatus.REJECTED),
}


class WithdrawalError(BookingError):
    pass


def quote(amount_tokens: int) -> tuple[int, int, int]:
    """(amount_inr, processing_fee, net_amount); the fee rounds down."""
    s = get_settings()
    amount_inr = amount_tokens * s.token_value_inr
    fee = amount_inr * s.withdrawal_fee_percent // 100
    return amount_inr, fee, amount_inr - fee


def request_withdrawal(
    db: Session, user: User, amount_tokens: int, payment_method: PaymentMethod, notes: str | None = None,
) -> WithdrawalRequest:
    """Create a PENDING request and debit the tokens now. Caller commits."""
    minimum = get_settings().min_withdrawal_tokens
    if amount_tokens < minimum:
        raise WithdrawalError(f"Minimum withdrawal is {minimum} tokens")
    if payment_method.user_id != user.id:
        raise WithdrawalError("Payment method not found", status_code=404)
    amount_inr, fee, net = quote(amount_tokens)
    withdrawal = WithdrawalRequest(
        user_id=user.id,
        payment_method_id=payment_method.id,
        amount_tokens=amount_tokens,
        amount_inr=amount_inr,
        processing_fee=fee,
        net_amount=net,
        status=WithdrawalStatus.PENDING,
        provider_notes=(notes or "").strip() or None,
    )
    db.add(withdrawal)
    db.flush()
    ledger.debit_for_withdrawal(db, withdrawal)
    create_log(
        db,
        CATEGORY_WITHDRAWAL,
        "Withdrawal requested",
        f"Withdrawal {withdrawal.id} requested: {amount_tokens} tokens (net INR {net}).",
        target_user_id=user.id,
        actor_user_id=user.id,
        actor_email=user.email,
        meta={"withdrawal_id": withdrawal.id, "amount_tokens": amount_tokens},
    )
    logger.info("Withdrawal %s requested by %s for %s tokens", withdrawal.id, user.id, amount_tokens)
    return withdrawal


def _lock(db: Session, withdrawal: WithdrawalRequest) -> WithdrawalRequest:
    return (
        db.query(WithdrawalRequest)
        .filter(WithdrawalRequest.id == withdrawal.id)
        .with_for_update()
        .populate_existing()
        .one()
    )


def _move(db: Session, withdrawal: WithdrawalRequest, new_status: WithdrawalStatus) -> None:
    """Check the transition against the locked, freshly read row so racing requests cannot both pass."""
    _lock(db, withdrawal)
    if new_status not in TRANSITIONS.get(withdrawal.status, ()):
        raise WithdrawalError(f"Cannot change withdrawal from {withdrawal.status.value} to {new_status.value}")


def _log(db: Session, withdrawal: WithdrawalRequest, actor: User, title: str, message: str) -> None:
    create_log(
        db,
        CATEGORY_WITHDRAWAL,
        title,
        message,
        target_user_id=withdrawal.user_id,
        actor_user_id=actor.id,
        actor_email=actor.email,
        meta={"withdrawal_id": withdrawal.id, "status": withdrawal.status},
    )


def cancel_withdrawal(db: Session, withdrawal: WithdrawalRequest, user: User) -> WithdrawalRequest:
    if withdrawal.user_id != user.id:
        raise WithdrawalError("Withdrawal not found", status_code=404)
    _move(db, withdrawal, WithdrawalStatus.CANCELLED)
    ledger.refund_withdrawal(db, withdrawal, "cancelled by provider")
    withdrawal.status = WithdrawalStatus.CANCELLED
    _log(db, withdrawal, user, "Withdrawal cancelled", f"Withdrawal {withdrawal.id} cancelled; {withdrawal.amount_tokens} tokens returned.")
    return withdrawal


def approve_withdrawal(db: Session, withdrawal: WithdrawalRequest, staff: User, notes: str | None = None) -> WithdrawalRequest:
    _move(db, withdrawal, WithdrawalStatus.APPROVED)
    withdrawal.status = WithdrawalStatus.APPROVED
    withdrawal.admin_notes = (notes or "").strip() or withdrawal.admin_notes
    withdrawal.processed_by = staff.id
    withdrawal.processed_at = datetime.now(timezone.utc)
    _log(db, withdrawal, staff, "Withdrawal approved", f"Withdrawal {withdrawal.id} approved.")
    return withdrawal


def reject_withdrawal(db: Session, withdrawal: WithdrawalRequest, staff: User, reason: str) -> WithdrawalRequest:
    _move(db, withdrawal, WithdrawalStatus.REJECTED)
    ledger.refund_withdrawal(db, withdrawal, f"rejected: {reason}")
    withdrawal.status = WithdrawalStatus.REJECTED
    withdrawal.rejection_reason = reason.strip()
    withdrawal.processed_by = staff.id
    withdrawal.processed_at = datetime.now(timezone.utc)
    _log(db, withdrawal, staff, "Withdrawal rejected", f"Withdrawal {withdrawal.id} rejected: {reason}")
    return withdrawal


def complete_withdrawal(
    db: Session, withdrawal: WithdrawalRequest, staff: User, transaction_reference: str, notes: str | None = None,
) -> WithdrawalRequest:
    _move(db, withdrawal, WithdrawalStatus.COMPLETED)
    now = datetime.now(timezone.utc)
    withdrawal.status = WithdrawalStatus.COMPLETED
    withdrawal.transaction_reference = transaction_reference.strip()
    withdrawal.admin_notes = (notes or "").strip() or withdrawal.admin_notes
    withdrawal.processed_by = staff.id
    withdrawal.processed_at = withdrawal.processed_at or now
    withdrawal.completed_at = now
    _log(db, withdrawal, staff, "Withdrawal completed", f"Withdrawal {withdrawal.id} paid out, reference {withdrawal.transaction_reference}.")
    return withdrawal
