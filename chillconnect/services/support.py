"""Support desk: members open tickets, staff reply, resolve and close them."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from chillconnect.models.booking import Booking
from chillconnect.models.support import (
    SupportTicket,
    TicketCategory,
    TicketMessage,
    TicketPriority,
    TicketStatus,
)
from chillconnect.models.user import User
from chillconnect.models.verification import AssignmentType
from chillconnect.services.assignment import assign_support_ticket, complete_assignments
from chillconnect.services.audit_log import create_log, CATEGORY_SUPPORT
from chillconnect.services.bookings import BookingError
from chillconnect.services.otp import as_utc

logger = logging.getLogger(__name__)


class SupportError(BookingError):
    pass


def can_view(ticket: SupportTicket, user: User) -> bool:
    return user.is_staff or ticket.user_id == user.id


def _lock(db: Session, ticket: SupportTicket) -> SupportTicket:
    return (
        db.query(SupportTicket)
        .filter(SupportTicket.id == ticket.id)
        .with_for_update()
        .populate_existing()
        .one()
    )


def _clean_urls(urls: list[str] | None) -> list[str]:
    return [u.strip() for u in (urls or []) if u and u.strip()]


def open_ticket(
    db: Session,
    user: User,
    subject: str,
    description: str,
    category: TicketCategory,
    priority: TicketPriority = TicketPriority.MEDIUM,
    booking_id: int | None = None,
    attachments: list[str] | None = None,
) -> SupportTicket:
    """Create a ticket and put it in the support rotation. Caller commits."""
    if booking_id is not None:
        booking = db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking or user.id not in (booking.seeker_id, booking.provider_id):
            raise SupportError("Booking not found", status_code=404)
    ticket = SupportTicket(
        user_id=user.id,
        booking_id=booking_id,
        subject=subject.strip(),
        description=description.strip(),
        category=category,
        priority=priority,
        status=TicketStatus.OPEN,
        attachments=_clean_urls(attachments),
    )
    db.add(ticket)
    db.flush()
    assign_support_ticket(db, ticket)
    create_log(
        db,
        CATEGORY_SUPPORT,
        "Support ticket opened",
        f"Ticket #{ticket.ticket_number} ({category.value}, {priority.value}) opened by user {user.id}.",
        booking_id=booking_id,
        target_user_id=user.id,
        actor_user_id=user.id,
        actor_email=user.email,
        meta={"ticket_id": ticket.id},
    )
    logger.info("Support ticket %s opened by %s", ticket.id, user.id)
    return ticket


def add_reply(
    db: Session,
    ticket: SupportTicket,
    sender: User,
    message: str,
    attachments: list[str] | None = None,
    internal: bool = False,
) -> TicketMessage:
    """
    Append a message. A staff reply leaves the ticket waiting on the member;
    a member reply (also on a resolved ticket) puts it back in progress.
    """
    if not can_view(ticket, sender):
        raise SupportError("You do not have permission to reply to this ticket", status_code=403)
    if internal and not sender.is_staff:
        raise SupportError("Only staff can add internal notes", status_code=403)
    _lock(db, ticket)
    if ticket.status == TicketStatus.CLOSED:
        raise SupportError("Cannot reply to a closed ticket")

    from_staff = sender.is_staff and sender.id != ticket.user_id
    reply = TicketMessage(
        ticket_id=ticket.id,
        sender_id=sender.id,
        message=message.strip(),
        attachments=_clean_urls(attachments),
        is_staff=from_staff,
        is_internal=internal,
    )
    db.add(reply)
    if not internal:
        ticket.status = TicketStatus.WAITING_USER if from_staff else TicketStatus.IN_PROGRESS
    db.flush()
    logger.info("Reply %s added to ticket %s by %s", reply.id, ticket.id, sender.id)
    return reply


def resolve_ticket(db: Session, ticket: SupportTicket, staff: User, resolution: str) -> SupportTicket:
    _lock(db, ticket)
    if ticket.status in (TicketStatus.RESOLVED, TicketStatus.CLOSED):
        raise SupportError(f"Ticket is already {ticket.status.value.lower()}")
    ticket.status = TicketStatus.RESOLVED
    ticket.resolution = resolution.strip()
    ticket.resolved_at = datetime.now(timezone.utc)
    if ticket.assigned_to is None:
        ticket.assigned_to = staff.id
    complete_assignments(db, ticket.id, AssignmentType.SUPPORT_TICKET)
    create_log(
        db,
        CATEGORY_SUPPORT,
        "Support ticket resolved",
        f"Ticket #{ticket.ticket_number} resolved.",
        booking_id=ticket.booking_id,
        target_user_id=ticket.user_id,
        actor_user_id=staff.id,
        actor_email=staff.email,
        meta={"ticket_id": ticket.id},
    )
    return ticket


def close_ticket(db: Session, ticket: SupportTicket, staff: User) -> SupportTicket:
    _lock(db, ticket)
    if ticket.status == TicketStatus.CLOSED:
        raise SupportError("Ticket is already closed")
    ticket.status = TicketStatus.CLOSED
    ticket.closed_at = datetime.now(timezone.utc)
    complete_assignments(db, ticket.id, AssignmentType.SUPPORT_TICKET)
    create_log(
        db,
        CATEGORY_SUPPORT,
        "Support ticket closed",
        f"Ticket #{ticket.ticket_number} closed.",
        booking_id=ticket.booking_id,
        target_user_id=ticket.user_id,
        actor_user_id=staff.id,
        actor_email=staff.email,
        meta={"ticket_id": ticket.id},
    )
    return ticket


def first_response_hours(db: Session) -> float | None:
    """Average hours from ticket creation to the first public staff reply, over answered tickets."""
    rows = (
        db.query(SupportTicket.id, SupportTicket.created_at, TicketMessage.created_at)
        .join(TicketMessage, TicketMessage.ticket_id == SupportTicket.id)
        .filter(TicketMessage.is_staff.is_(True), TicketMessage.is_internal.is_(False))
        .order_by(TicketMessage.id.asc())
        .all()
    )
    first: dict[int, float] = {}
    for ticket_id, opened, replied in rows:
        if ticket_id in first or opened is None or replied is None:
            continue
        first[ticket_id] = (as_utc(replied) - as_utc(opened)).total_seconds() / 3600
    if not first:
        return None
    return round(sum(first.values()) / len(first), 2)
