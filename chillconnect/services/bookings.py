"""Booking lifecycle: pricing, availability, status transitions with escrow side effects."""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from chillconnect.models.booking import Booking, BookingStatus, BookingType, ACTIVE_STATUSES
from chillconnect.models.user import User, UserRole
from chillconnect.services import ledger
from chillconnect.services.assignment import assign_booking_monitoring
from chillconnect.services.audit_log import create_log, CATEGORY_BOOKING

logger = logging.getLogger(__name__)

# Allowed status changes through the status endpoint. DISPUTED is entered only by filing a dispute.
TRANSITIONS: dict[BookingStatus, tuple[BookingStatus, ...]] = {
    BookingStatus.PENDING: (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
    BookingStatus.CONFIRMED: (BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED),
    BookingStatus.IN_PROGRESS: (BookingStatus.COMPLETED, BookingStatus.CANCELLED),
    BookingStatus.COMPLETED: (),
    BookingStatus.CANCELLED: (),
    BookingStatus.DISPUTED: (),
}


class BookingError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def quote_tokens(duration_minutes: int, hourly_rate: int) -> int:
    """Tokens for a booking: hourly rate pro-rated by minutes, rounded up."""
    return math.ceil(duration_minutes * hourly_rate / 60)


def find_conflict(db: Session, provider_id: int, start: datetime, end: datetime) -> Booking | None:
    """An active booking of the provider overlapping [start, end)."""
    return (
        db.query(Booking)
        .filter(
            Booking.provider_id == provider_id,
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.start_time < end,
            Booking.end_time > start,
        )
        .first()
    )


def is_participant(booking: Booking, user: User) -> bool:
    return user.id in (booking.seeker_id, booking.provider_id)


def can_view(booking: Booking, user: User) -> bool:
    return is_participant(booking, user) or user.is_staff


def create_booking(
    db: Session,
    seeker: User,
    provider: User,
    booking_type: BookingType,
    start: datetime,
    duration: int,
    location: str | None = None,
    notes: str | None = None,
) -> Booking:
    """Create a PENDING booking and hold its cost in the seeker's escrow. Caller commits."""
    if not provider.profile or not provider.profile.hourly_rate:
        raise BookingError("Provider has not set an hourly rate")
    end = start + timedelta(minutes=duration)
    token_amount = quote_tokens(duration, provider.profile.hourly_rate)

    # Serialize bookings for the same provider: lock the provider row before the overlap check
    db.query(User).filter(User.id == provider.id).with_for_update().first()
    if find_conflict(db, provider.id, start, end):
        raise BookingError("Provider is not available at this time")

    booking = Booking(
        seeker_id=seeker.id,
        provider_id=provider.id,
        type=booking_type,
        start_time=start,
        end_time=end,
        duration=duration,
        token_amount=token_amount,
        location=location if booking_type == BookingType.OUTCALL else None,
        notes=notes,
        status=BookingStatus.PENDING,
    )
    db.add(booking)
    db.flush()
    ledger.hold_for_booking(db, booking)
    assign_booking_monitoring(db, booking)
    logger.info("Booking created: %s seeker=%s provider=%s tokens=%s", booking.id, seeker.id, provider.id, token_amount)
    return booking


def _check_actor(booking: Booking, actor: User, new_status: BookingStatus) -> None:
    if actor.is_staff:
        return
    if new_status in (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS) and actor.id != booking.provider_id:
        raise BookingError(f"Only the provider can mark a booking {new_status.value.lower()}", status_code=403)
    if new_status == BookingStatus.COMPLETED and actor.id != booking.seeker_id:
        raise BookingError("Only the seeker can mark a booking completed", status_code=403)
    if new_status == BookingStatus.CANCELLED and booking.status == BookingStatus.IN_PROGRESS:
        raise BookingError("A booking in progress can only be cancelled by staff; file a dispute instead", status_code=403)


def change_status(
    db: Session,
    booking: Booking,
    new_status: BookingStatus,
    actor: User | None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> Booking:
    """Apply a transition from TRANSITIONS with its escrow effect. actor=None means a system job."""
    if actor is not None and not actor.is_staff and not is_participant(booking, actor):
        raise BookingError("Access denied", status_code=403)
    old_status = booking.status
    if new_status not in TRANSITIONS[old_status]:
        raise BookingError(f"Cannot change status from {old_status.value} to {new_status.value}")
    if actor is not None:
        _check_actor(booking, actor, new_status)

    now = datetime.now(timezone.utc)
    if new_status == BookingStatus.COMPLETED:
        ledger.release_to_provider(db, booking)
        booking.completed_at = now
    elif new_status == BookingStatus.CANCELLED:
        ledger.refund_to_seeker(db, booking)
        booking.cancelled_at = now
        booking.cancelled_by_id = actor.id if actor else None
        booking.cancellation_reason = (reason or "")[:500] or None
    booking.status = new_status

    create_log(
        db,
        CATEGORY_BOOKING,
        f"Booking {new_status.value.lower()}",
        f"Booking {booking.id} changed from {old_status.value} to {new_status.value}."
        + (f" Reason: {reason}" if reason else ""),
        booking_id=booking.id,
        actor_user_id=actor.id if actor else None,
        actor_email=actor.email if actor else None,
        ip_address=ip_address,
        user_agent=user_agent,
        meta={"old_status": old_status, "new_status": new_status, "token_amount": booking.token_amount},
    )
    logger.info("Booking %s status %s -> %s by %s", booking.id, old_status.value, new_status.value, actor.id if actor else "system")
    return booking


def expire_stale_bookings(db: Session, now: datetime | None = None) -> list[int]:
    """Cancel PENDING bookings whose start time passed without confirmation; escrow is refunded. Caller commits."""
    now = now or datetime.now(timezone.utc)
    stale = (
        db.query(Booking)
        .filter(Booking.status == BookingStatus.PENDING, Booking.start_time <= now)
        .all()
    )
    expired = []
    for booking in stale:
        change_status(db, booking, BookingStatus.CANCELLED, None, reason="Not confirmed before start time")
        expired.append(booking.id)
    return expired


def provider_query(db: Session):
    """Providers visible to seekers: verified, not suspended."""
    return db.query(User).filter(
        User.role == UserRole.PROVIDER,
        User.is_verified.is_(True),
        User.is_suspended.is_(False),
    )
