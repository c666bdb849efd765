"""Dispute lifecycle: filing freezes the booking, resolution settles its escrow."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from chillconnect.config import get_settings
from chillconnect.models.booking import Booking, BookingStatus, EscrowStatus
from chillconnect.models.dispute import Dispute, DisputeStatus, DisputeType, OPEN_DISPUTE_STATUSES
from chillconnect.models.user import User, MANAGER_ROLES
from chillconnect.models.verification import AssignmentType
from chillconnect.services import ledger
from chillconnect.services.assignment import assign_dispute, complete_assignments
from chillconnect.services.audit_log import create_log, CATEGORY_DISPUTE
from chillconnect.services.bookings import BookingError
from chillconnect.services.otp import as_utc

logger = logging.getLogger(__name__)


class DisputeError(BookingError):
    pass


# Row locks, re-read so a concurrent filing or resolution is seen before the state checks
def _lock_booking(db: Session, booking_id: int) -> Booking:
    return db.query(Booking).filter(Booking.id == booking_id).with_for_update().populate_existing().one()


def _lock_dispute(db: Session, dispute: Dispute) -> Dispute:
    return db.query(Dispute).filter(Dispute.id == dispute.id).with_for_update().populate_existing().one()


def file_dispute(
    db: Session,
    booking: Booking,
    reporter: User,
    dispute_type: DisputeType,
    description: str,
    evidence: list[str] | None = None,
) -> Dispute:
    """Open a dispute on a booking whose escrow is still held. Caller commits."""
    if reporter.id not in (booking.seeker_id, booking.provider_id):
        raise DisputeError("Only booking participants can file a dispute", status_code=403)
    booking = _lock_booking(db, booking.id)
    if booking.escrow_status != EscrowStatus.HELD:
        raise DisputeError("This booking's payment is already settled and can no longer be disputed")
    existing = (
        db.query(Dispute)
        .filter(Dispute.booking_id == booking.id, Dispute.status.in_(OPEN_DISPUTE_STATUSES + (DisputeStatus.APPEALED,)))
        .first()
    )
    if existing:
        raise DisputeError("A dispute is already open for this booking")

    against = booking.provider_id if reporter.id == booking.seeker_id else booking.seeker_id
    dispute = Dispute(
        booking_id=booking.id,
        reported_by=reporter.id,
        reported_against=against,
        dispute_type=dispute_type,
        description=description.strip(),
        evidence=[e.strip() for e in (evidence or []) if e and e.strip()],
        status=DisputeStatus.OPEN,
    )
    db.add(dispute)
    old_status = booking.status
    booking.status = BookingStatus.DISPUTED
    db.flush()
    assign_dispute(db, dispute)
    create_log(
        db,
        CATEGORY_DISPUTE,
        "Dispute filed",
        f"Dispute {dispute.id} ({dispute_type.value}) filed on booking {booking.id} by user {reporter.id}.",
        booking_id=booking.id,
        target_user_id=against,
        actor_user_id=reporter.id,
        actor_email=reporter.email,
        meta={"old_status": old_status, "dispute_id": dispute.id},
    )
    logger.info("Dispute %s filed on booking %s by %s", dispute.id, booking.id, reporter.id)
    return dispute


def can_resolve(dispute: Dispute, user: User) -> bool:
    return user.role in MANAGER_ROLES or (user.is_staff and dispute.assigned_to == user.id)


def resolve_dispute(
    db: Session,
    dispute: Dispute,
    resolver: User,
    resolution: str,
    refund_amount: int,
    action_taken: str | None = None,
) -> Dispute:
    """Settle the escrow: refund_amount to the seeker, the rest to the provider. Caller commits."""
    if not can_resolve(dispute, resolver):
        raise DisputeError("Only a manager or the assigned staff member can resolve this dispute", status_code=403)
    _lock_dispute(db, dispute)
    if dispute.status not in OPEN_DISPUTE_STATUSES + (DisputeStatus.APPEALED,):
        raise DisputeError(f"Dispute is already {dispute.status.value.lower()}")
    booking = _lock_booking(db, dispute.booking_id)

    if booking.escrow_status == EscrowStatus.HELD:
        ledger.split_escrow(db, booking, refund_amount)
        booking.status = BookingStatus.CANCELLED if refund_amount == booking.token_amount else BookingStatus.COMPLETED
        now = datetime.now(timezone.utc)
        if booking.status == BookingStatus.CANCELLED:
            booking.cancelled_at = now
            booking.cancelled_by_id = resolver.id
            booking.cancellation_reason = "Refunded after dispute resolution"
        else:
            booking.completed_at = now
        dispute.refund_issued = refund_amount > 0
        dispute.refund_amount = refund_amount
    elif refund_amount:
        # An appeal re-decides the case but cannot move tokens already settled
        raise DisputeError("Escrow for this booking is already settled; an appeal can only change the written resolution")

    dispute.status = DisputeStatus.RESOLVED
    dispute.resolution = resolution.strip()
    dispute.action_taken = (action_taken or "").strip() or None
    dispute.resolved_at = datetime.now(timezone.utc)
    if dispute.assigned_to is None:
        dispute.assigned_to = resolver.id
    complete_assignments(db, dispute.id, AssignmentType.DISPUTE)
    create_log(
        db,
        CATEGORY_DISPUTE,
        "Dispute resolved",
        f"Dispute {dispute.id} resolved: {refund_amount} of {booking.token_amount} tokens refunded to the seeker.",
        booking_id=booking.id,
        actor_user_id=resolver.id,
        actor_email=resolver.email,
        meta={"dispute_id": dispute.id, "refund_amount": refund_amount, "booking_status": booking.status},
    )
    logger.info("Dispute %s resolved by %s refund=%s", dispute.id, resolver.id, refund_amount)
    return dispute


def appeal_dispute(db: Session, dispute: Dispute, user: User, reason: str, now: datetime | None = None) -> Dispute:
    """A party may appeal a resolution once, within the appeal window. Caller commits."""
    if user.id not in (dispute.reported_by, dispute.reported_against):
        raise DisputeError("Only the parties to this dispute can appeal", status_code=403)
    _lock_dispute(db, dispute)
    if dispute.status != DisputeStatus.RESOLVED:
        raise DisputeError("Only resolved disputes can be appealed")
    if dispute.appealed_at is not None:
        raise DisputeError("This dispute has already been appealed")
    now = now or datetime.now(timezone.utc)
    window = timedelta(days=get_settings().dispute_appeal_window_days)
    if as_utc(dispute.resolved_at) + window < now:
        raise DisputeError(f"Appeals must be filed within {window.days} days of resolution")

    dispute.status = DisputeStatus.APPEALED
    dispute.appeal_reason = reason.strip()
    dispute.appealed_at = now
    assign_dispute(db, dispute)
    create_log(
        db,
        CATEGORY_DISPUTE,
        "Dispute appealed",
        f"Dispute {dispute.id} appealed by user {user.id}.",
        booking_id=dispute.booking_id,
        actor_user_id=user.id,
        actor_email=user.email,
        meta={"dispute_id": dispute.id},
    )
    return dispute
