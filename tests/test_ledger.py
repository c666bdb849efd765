"""Wallet ledger: escrow lifecycle, purchases, withdrawals and reconciliation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from chillconnect.models.booking import Booking, BookingType, EscrowStatus
from chillconnect.models.user import UserRole
from chillconnect.models.wallet import TokenTransaction, TransactionStatus, TransactionType
from chillconnect.models.withdrawal import PaymentMethod, PaymentMethodType, WithdrawalRequest
from chillconnect.services import ledger


def _booking(db, seeker, provider, amount=30) -> Booking:
    start = datetime.now(timezone.utc) + timedelta(days=1)
    booking = Booking(
        seeker_id=seeker.id,
        provider_id=provider.id,
        type=BookingType.INCALL,
        start_time=start,
        end_time=start + timedelta(hours=1),
        duration=60,
        token_amount=amount,
    )
    db.add(booking)
    db.flush()
    return booking


def _wallet(db, user):
    db.expire_all()
    return ledger.get_wallet(db, user.id)


def test_hold_moves_balance_into_escrow(db, make_user):
    seeker = make_user(UserRole.SEEKER, balance=100)
    provider = make_user(UserRole.PROVIDER)
    booking = _booking(db, seeker, provider, 30)

    tx = ledger.hold_for_booking(db, booking)
    db.commit()

    wallet = _wallet(db, seeker)
    assert (wallet.balance, wallet.escrow_balance, wallet.total_spent) == (70, 30, 30)
    assert tx.type == TransactionType.ESCROW_HOLD
    assert (tx.previous_balance, tx.new_balance) == (100, 70)
    assert booking.escrow_status == EscrowStatus.HELD


def test_hold_refuses_when_balance_short(db, make_user):
    seeker = make_user(UserRole.SEEKER, balance=10)
    provider = make_user(UserRole.PROVIDER)
    booking = _booking(db, seeker, provider, 30)

    with pytest.raises(ledger.InsufficientTokens) as exc:
        ledger.hold_for_booking(db, booking)
    assert (exc.value.required, exc.value.available) == (30, 10)


def test_release_pays_provider_once(db, make_user):
    seeker = make_user(UserRole.SEEKER, balance=100)
    provider = make_user(UserRole.PROVIDER)
    booking = _booking(db, seeker, provider, 40)
    ledger.hold_for_booking(db, booking)

    ledger.release_to_provider(db, booking)
    db.commit()

    assert _wallet(db, seeker).escrow_balance == 0
    provider_wallet = _wallet(db, provider)
    assert (provider_wallet.balance, provider_wallet.total_earned) == (40, 40)
    assert booking.escrow_status == EscrowStatus.RELEASED

    with pytest.raises(ledger.EscrowStateError):
        ledger.release_to_provider(db, booking)
    with pytest.raises(ledger.EscrowStateError):
        ledger.refund_to_seeker(db, booking)


def test_refund_restores_seeker(db, make_user):
    seeker = make_user(UserRole.SEEKER, balance=100)
    provider = make_user(UserRole.PROVIDER)
    booking = _booking(db, seeker, provider, 25)
    ledger.hold_for_booking(db, booking)

    ledger.refund_to_seeker(db, booking)
    db.commit()

    wallet = _wallet(db, seeker)
    assert (wallet.balance, wallet.escrow_balance, wallet.total_spent) == (100, 0, 0)
    assert booking.escrow_status == EscrowStatus.REFUNDED


def test_split_escrow_divides_amount(db, make_user):
    seeker = make_user(UserRole.SEEKER, balance=100)
    provider = make_user(UserRole.PROVIDER)
    booking = _booking(db, seeker, provider, 50)
    ledger.hold_for_booking(db, booking)

    txs = ledger.split_escrow(db, booking, 20)
    db.commit()

    assert [t.type for t in txs] == [TransactionType.BOOKING_REFUND, TransactionType.ESCROW_RELEASE]
    seeker_wallet = _wallet(db, seeker)
    assert (seeker_wallet.balance, seeker_wallet.escrow_balance) == (70, 0)
    assert _wallet(db, provider).balance == 30
    assert booking.escrow_status == EscrowStatus.SPLIT


def test_split_escrow_rejects_out_of_range(db, make_user):
    seeker = make_user(UserRole.SEEKER, balance=100)
    provider = make_user(UserRole.PROVIDER)
    booking = _booking(db, seeker, provider, 50)
    ledger.hold_for_booking(db, booking)

    with pytest.raises(ledger.InvalidAmount):
        ledger.split_escrow(db, booking, 51)


def test_purchase_completes_once(db, make_user):
    user = make_user(UserRole.SEEKER)
    ledger.start_purchase(db, user.id, 25, "ORDER-1")
    db.commit()
    assert _wallet(db, user).balance == 0

    tx, credited = ledger.complete_purchase(db, "ORDER-1", meta={"capture_id": "CAP-1"})
    db.commit()
    assert credited is True
    assert tx.status == TransactionStatus.COMPLETED
    assert _wallet(db, user).balance == 25

    _, credited_again = ledger.complete_purchase(db, "ORDER-1")
    db.commit()
    assert credited_again is False
    assert _wallet(db, user).balance == 25


def test_failed_purchase_cannot_be_completed(db, make_user):
    user = make_user(UserRole.SEEKER)
    ledger.start_purchase(db, user.id, 25, "ORDER-2")
    ledger.fail_purchase(db, "ORDER-2", "PAYMENT.CAPTURE.DENIED")
    db.commit()

    with pytest.raises(ledger.EscrowStateError):
        ledger.complete_purchase(db, "ORDER-2")
    with pytest.raises(ledger.LedgerError):
        ledger.complete_purchase(db, "UNKNOWN")


def test_withdrawal_debit_and_refund(db, make_user):
    provider = make_user(UserRole.PROVIDER, balance=200)
    method = PaymentMethod(user_id=provider.id, type=PaymentMethodType.UPI, details={"upi_id": "p@upi"}, is_default=True)
    db.add(method)
    db.flush()
    withdrawal = WithdrawalRequest(
        user_id=provider.id, payment_method_id=method.id, amount_tokens=150,
        amount_inr=15000, processing_fee=750, net_amount=14250,
    )
    db.add(withdrawal)
    db.flush()

    tx = ledger.debit_for_withdrawal(db, withdrawal)
    assert tx.withdrawal_id == withdrawal.id
    assert _wallet(db, provider).balance == 50

    ledger.refund_withdrawal(db, withdrawal, "rejected")
    db.commit()
    assert _wallet(db, provider).balance == 200


def test_adjust_cannot_go_negative(db, make_user):
    user = make_user(UserRole.SEEKER, balance=5)
    with pytest.raises(ledger.InsufficientTokens):
        ledger.adjust(db, user.id, -10, "correction")
    with pytest.raises(ledger.InvalidAmount):
        ledger.adjust(db, user.id, 0, "noop")


def test_reconcile_clean_and_tampered(db, make_user):
    seeker = make_user(UserRole.SEEKER, balance=100)
    provider = make_user(UserRole.PROVIDER)
    booking = _booking(db, seeker, provider, 30)
    ledger.hold_for_booking(db, booking)
    ledger.start_purchase(db, seeker.id, 10, "ORDER-3")
    db.commit()

    assert ledger.reconcile_wallet(db, seeker.id) == []
    assert ledger.reconcile_wallet(db, provider.id) == []

    wallet = _wallet(db, seeker)
    wallet.escrow_balance = 45
    wallet.balance = 80
    db.commit()

    problems = ledger.reconcile_wallet(db, seeker.id)
    assert any("held bookings total 30" in p for p in problems)
    assert any("ledger net 70" in p for p in problems)


def test_ledger_rows_record_every_change(db, make_user):
    seeker = make_user(UserRole.SEEKER, balance=100)
    provider = make_user(UserRole.PROVIDER)
    booking = _booking(db, seeker, provider, 30)
    ledger.hold_for_booking(db, booking)
    ledger.release_to_provider(db, booking)
    db.commit()

    types = [t for (t,) in db.query(TokenTransaction.type).order_by(TokenTransaction.id).all()]
    assert types == [TransactionType.ADJUSTMENT, TransactionType.ESCROW_HOLD, TransactionType.ESCROW_RELEASE]
