"""Token wallet ledger: purchases, escrow hold/release/refund, withdrawals.

Every balance change in the application goes through this module and writes one
TokenTransaction row. Functions flush but never commit; the caller's request commits
once. Rows are locked with SELECT ... FOR UPDATE in a fixed order (booking first, then
wallets by ascending user id) so concurrent requests on the same booking or the same
pair of wallets serialize instead of deadlocking.

Invariants:
  - balance >= 0 and escrow_balance >= 0 (also CHECK constraints on the table)
  - a seeker's escrow_balance equals the sum of token_amount over their HELD bookings
  - a booking's escrow leaves HELD exactly once
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from chillconnect.models.booking import Booking, EscrowStatus
from chillconnect.models.wallet import TokenWallet, TokenTransaction, TransactionType, TransactionStatus

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class WalletNotFound(LedgerError):
    status_code = 404


class InvalidAmount(LedgerError):
    pass


class EscrowStateError(LedgerError):
    pass


class InsufficientTokens(LedgerError):
    def __init__(self, required: int, available: int):
        super().__init__("Insufficient tokens")
        self.required = required
        self.available = available


def create_wallet(db: Session, user_id: int) -> TokenWallet:
    wallet = TokenWallet(user_id=user_id, balance=0, escrow_balance=0, total_earned=0, total_spent=0)
    db.add(wallet)
    db.flush()
    return wallet


def get_wallet(db: Session, user_id: int) -> TokenWallet:
    wallet = db.query(TokenWallet).filter(TokenWallet.user_id == user_id).first()
    if not wallet:
        raise WalletNotFound("Wallet not found")
    return wallet


def lock_wallets(db: Session, *user_ids: int) -> dict[int, TokenWallet]:
    """Lock the given users' wallets in ascending user id order; returns {user_id: wallet}."""
    wallets: dict[int, TokenWallet] = {}
    for uid in sorted(set(user_ids)):
        wallet = (
            db.query(TokenWallet)
            .filter(TokenWallet.user_id == uid)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not wallet:
            raise WalletNotFound(f"Wallet not found for user {uid}")
        wallets[uid] = wallet
    return wallets


def _lock_booking(db: Session, booking: Booking) -> Booking:
    return (
        db.query(Booking)
        .filter(Booking.id == booking.id)
        .with_for_update()
        .populate_existing()
        .one()
    )


def _require_positive(amount: int) -> None:
    if not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount("Amount must be a positive whole number of tokens")


def _record(
    db: Session,
    wallet: TokenWallet,
    tx_type: TransactionType,
    amount: int,
    previous_balance: int,
    description: str,
    *,
    booking_id: int | None = None,
    withdrawal_id: int | None = None,
    status: TransactionStatus = TransactionStatus.COMPLETED,
    payment_reference: str | None = None,
    meta: dict[str, Any] | None = None,
) -> TokenTransaction:
    tx = TokenTransaction(
        user_id=wallet.user_id,
        wallet_id=wallet.id,
        type=tx_type,
        status=status,
        amount=amount,
        previous_balance=previous_balance,
        new_balance=wallet.balance,
        description=description[:500],
        booking_id=booking_id,
        withdrawal_id=withdrawal_id,
        payment_reference=payment_reference,
        meta=meta,
    )
    db.add(tx)
    db.flush()
    return tx


def credit(
    db: Session,
    user_id: int,
    amount: int,
    tx_type: TransactionType,
    description: str,
    *,
    withdrawal_id: int | None = None,
    meta: dict[str, Any] | None = None,
) -> TokenTransaction:
    """Add tokens to a wallet's spendable balance."""
    _require_positive(amount)
    wallet = lock_wallets(db, user_id)[user_id]
    previous = wallet.balance
    wallet.balance = previous + amount
    return _record(db, wallet, tx_type, amount, previous, description, withdrawal_id=withdrawal_id, meta=meta)


def debit(
    db: Session,
    user_id: int,
    amount: int,
    tx_type: TransactionType,
    description: str,
    *,
    withdrawal_id: int | None = None,
    meta: dict[str, Any] | None = None,
) -> TokenTransaction:
    """Remove tokens from a wallet's spendable balance; never below zero."""
    _require_positive(amount)
    wallet = lock_wallets(db, user_id)[user_id]
    if wallet.balance < amount:
        raise InsufficientTokens(required=amount, available=wallet.balance)
    previous = wallet.balance
    wallet.balance = previous - amount
    return _record(db, wallet, tx_type, amount, previous, description, withdrawal_id=withdrawal_id, meta=meta)


def adjust(db: Session, user_id: int, delta: int, description: str, *, meta: dict[str, Any] | None = None) -> TokenTransaction:
    """Staff correction: positive delta credits, negative debits."""
    if delta == 0:
        raise InvalidAmount("Adjustment must be non-zero")
    if delta > 0:
        return credit(db, user_id, delta, TransactionType.ADJUSTMENT, description, meta=meta)
    return debit(db, user_id, -delta, TransactionType.ADJUSTMENT, description, meta=meta)


# --- Escrow ---


def hold_for_booking(db: Session, booking: Booking) -> TokenTransaction:
    """Move the booking's cost from the seeker's balance into escrow. Booking must be flushed (has id)."""
    _require_positive(booking.token_amount)
    amount = booking.token_amount
    wallet = lock_wallets(db, booking.seeker_id)[booking.seeker_id]
    if wallet.balance < amount:
        raise InsufficientTokens(required=amount, available=wallet.balance)
    previous = wallet.balance
    wallet.balance = previous - amount
    wallet.escrow_balance = wallet.escrow_balance + amount
    wallet.total_spent = wallet.total_spent + amount
    booking.escrow_status = EscrowStatus.HELD
    return _record(
        db, wallet, TransactionType.ESCROW_HOLD, amount, previous,
        f"Escrow hold for booking {booking.id}", booking_id=booking.id,
    )


def _take_held(db: Session, booking: Booking) -> Booking:
    locked = _lock_booking(db, booking)
    if locked.escrow_status != EscrowStatus.HELD:
        raise EscrowStateError(
            f"Escrow for booking {locked.id} is already {locked.escrow_status.value.lower()}"
        )
    return locked


def release_to_provider(db: Session, booking: Booking) -> TokenTransaction:
    """Pay the held amount to the provider (booking completed)."""
    booking = _take_held(db, booking)
    amount = booking.token_amount
    wallets = lock_wallets(db, booking.seeker_id, booking.provider_id)
    seeker_wallet = wallets[booking.seeker_id]
    provider_wallet = wallets[booking.provider_id]

    _drain_escrow(seeker_wallet, amount, booking.id)
    previous = provider_wallet.balance
    provider_wallet.balance = previous + amount
    provider_wallet.total_earned = provider_wallet.total_earned + amount
    booking.escrow_status = EscrowStatus.RELEASED
    logger.info("Escrow released: booking=%s amount=%s provider=%s", booking.id, amount, booking.provider_id)
    return _record(
        db, provider_wallet, TransactionType.ESCROW_RELEASE, amount, previous,
        f"Payment for completed booking {booking.id}", booking_id=booking.id,
    )


def refund_to_seeker(db: Session, booking: Booking) -> TokenTransaction:
    """Return the held amount to the seeker (booking cancelled)."""
    booking = _take_held(db, booking)
    amount = booking.token_amount
    wallet = lock_wallets(db, booking.seeker_id)[booking.seeker_id]

    _drain_escrow(wallet, amount, booking.id)
    previous = wallet.balance
    wallet.balance = previous + amount
    wallet.total_spent = max(0, wallet.total_spent - amount)
    booking.escrow_status = EscrowStatus.REFUNDED
    logger.info("Escrow refunded: booking=%s amount=%s seeker=%s", booking.id, amount, booking.seeker_id)
    return _record(
        db, wallet, TransactionType.BOOKING_REFUND, amount, previous,
        f"Refund for cancelled booking {booking.id}", booking_id=booking.id,
    )


def split_escrow(db: Session, booking: Booking, refund_amount: int) -> list[TokenTransaction]:
    """Dispute outcome: refund part of the escrow to the seeker, pay the rest to the provider."""
    if refund_amount < 0 or refund_amount > booking.token_amount:
        raise InvalidAmount(f"Refund must be between 0 and {booking.token_amount} tokens")
    if refund_amount == 0:
        return [release_to_provider(db, booking)]
    if refund_amount == booking.token_amount:
        return [refund_to_seeker(db, booking)]

    booking = _take_held(db, booking)
    amount = booking.token_amount
    payout = amount - refund_amount
    wallets = lock_wallets(db, booking.seeker_id, booking.provider_id)
    seeker_wallet = wallets[booking.seeker_id]
    provider_wallet = wallets[booking.provider_id]

    _drain_escrow(seeker_wallet, amount, booking.id)
    seeker_previous = seeker_wallet.balance
    seeker_wallet.balance = seeker_previous + refund_amount
    seeker_wallet.total_spent = max(0, seeker_wallet.total_spent - refund_amount)
    refund_tx = _record(
        db, seeker_wallet, TransactionType.BOOKING_REFUND, refund_amount, seeker_previous,
        f"Partial refund for disputed booking {booking.id}", booking_id=booking.id,
    )

    provider_previous = provider_wallet.balance
    provider_wallet.balance = provider_previous + payout
    provider_wallet.total_earned = provider_wallet.total_earned + payout
    release_tx = _record(
        db, provider_wallet, TransactionType.ESCROW_RELEASE, payout, provider_previous,
        f"Partial payment for disputed booking {booking.id}", booking_id=booking.id,
    )
    booking.escrow_status = EscrowStatus.SPLIT
    logger.info("Escrow split: booking=%s refund=%s payout=%s", booking.id, refund_amount, payout)
    return [refund_tx, release_tx]


def _drain_escrow(wallet: TokenWallet, amount: int, booking_id: int) -> None:
    if wallet.escrow_balance < amount:
        # Only reachable if escrow_balance was edited outside the ledger
        logger.error(
            "Escrow underflow: wallet=%s escrow=%s amount=%s booking=%s",
            wallet.id, wallet.escrow_balance, amount, booking_id,
        )
        raise EscrowStateError("Escrow balance is lower than the held booking amount; run wallet reconciliation")
    wallet.escrow_balance = wallet.escrow_balance - amount


# --- Withdrawals ---


def debit_for_withdrawal(db: Session, withdrawal) -> TokenTransaction:
    """Deduct a withdrawal's tokens when it is requested. The request must be flushed (has id)."""
    return debit(
        db, withdrawal.user_id, withdrawal.amount_tokens, TransactionType.WITHDRAWAL,
        f"Withdrawal request {withdrawal.id} - {withdrawal.amount_tokens} tokens",
        withdrawal_id=withdrawal.id,
        meta={"amount_inr": withdrawal.amount_inr, "net_amount": withdrawal.net_amount},
    )


def refund_withdrawal(db: Session, withdrawal, reason: str) -> TokenTransaction:
    """Return a rejected or cancelled withdrawal's tokens."""
    return credit(
        db, withdrawal.user_id, withdrawal.amount_tokens, TransactionType.WITHDRAWAL_REFUND,
        f"Refund for withdrawal request {withdrawal.id}: {reason}",
        withdrawal_id=withdrawal.id,
    )


# --- Purchases (PayPal) ---


def start_purchase(db: Session, user_id: int, amount: int, order_id: str, meta: dict[str, Any] | None = None) -> TokenTransaction:
    """Record a PENDING purchase; the wallet is credited only when the order is captured."""
    _require_positive(amount)
    wallet = get_wallet(db, user_id)
    return _record(
        db, wallet, TransactionType.PURCHASE, amount, wallet.balance,
        f"Token purchase via PayPal - {amount} tokens",
        status=TransactionStatus.PENDING, payment_reference=order_id, meta=meta,
    )


def _lock_purchase(db: Session, order_id: str) -> TokenTransaction:
    tx = (
        db.query(TokenTransaction)
        .filter(
            TokenTransaction.payment_reference == order_id,
            TokenTransaction.type == TransactionType.PURCHASE,
        )
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not tx:
        raise LedgerError("Unknown payment")
    return tx


def complete_purchase(db: Session, order_id: str, meta: dict[str, Any] | None = None) -> tuple[TokenTransaction, bool]:
    """Credit a pending purchase. Returns (transaction, credited_now); a second call is a no-op."""
    tx = _lock_purchase(db, order_id)
    if tx.status == TransactionStatus.COMPLETED:
        return tx, False
    if tx.status == TransactionStatus.FAILED:
        raise EscrowStateError("Payment was declined")
    wallet = lock_wallets(db, tx.user_id)[tx.user_id]
    tx.previous_balance = wallet.balance
    wallet.balance = wallet.balance + tx.amount
    tx.new_balance = wallet.balance
    tx.status = TransactionStatus.COMPLETED
    tx.meta = {**(tx.meta or {}), **(meta or {}), "payment_status": "completed"}
    db.flush()
    logger.info("Token purchase completed: order=%s user=%s amount=%s", order_id, tx.user_id, tx.amount)
    return tx, True


def fail_purchase(db: Session, order_id: str, reason: str) -> TokenTransaction:
    tx = _lock_purchase(db, order_id)
    if tx.status == TransactionStatus.PENDING:
        tx.status = TransactionStatus.FAILED
        tx.meta = {**(tx.meta or {}), "payment_status": "failed", "reason": reason}
        db.flush()
        logger.warning("Token purchase failed: order=%s reason=%s", order_id, reason)
    return tx


# --- Reconciliation ---


def held_escrow_total(db: Session, seeker_id: int) -> int:
    total = (
        db.query(func.coalesce(func.sum(Booking.token_amount), 0))
        .filter(Booking.seeker_id == seeker_id, Booking.escrow_status == EscrowStatus.HELD)
        .scalar()
    )
    return int(total or 0)


def reconcile_wallet(db: Session, user_id: int) -> list[str]:
    """Compare a wallet with its bookings and ledger. Returns human-readable discrepancies (empty when consistent)."""
    wallet = get_wallet(db, user_id)
    problems: list[str] = []
    if wallet.balance < 0:
        problems.append(f"balance is negative ({wallet.balance})")
    if wallet.escrow_balance < 0:
        problems.append(f"escrow_balance is negative ({wallet.escrow_balance})")

    held = held_escrow_total(db, user_id)
    if held != wallet.escrow_balance:
        problems.append(f"escrow_balance {wallet.escrow_balance} != held bookings total {held}")

    # Purchases complete out of id order, so sum the per-row deltas instead of reading the last row
    net = (
        db.query(func.coalesce(func.sum(TokenTransaction.new_balance - TokenTransaction.previous_balance), 0))
        .filter(
            TokenTransaction.wallet_id == wallet.id,
            TokenTransaction.status == TransactionStatus.COMPLETED,
        )
        .scalar()
    )
    if int(net or 0) != wallet.balance:
        problems.append(f"balance {wallet.balance} != ledger net {int(net or 0)}")
    return problems
