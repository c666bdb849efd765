"""Round-robin assignment of verification, booking-monitoring, dispute and support work to staff."""
import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from chillconnect.models.booking import Booking
from chillconnect.models.dispute import Dispute
from chillconnect.models.support import SupportTicket, TicketStatus
from chillconnect.models.user import User, UserRole
from chillconnect.models.verification import (
    Assignment,
    AssignmentType,
    RoundRobinCounter,
    Verification,
    VerificationStatus,
)

logger = logging.getLogger(__name__)

# Roles that take queue work; SUPER_ADMIN is kept out of the rotation
ASSIGNABLE_ROLES = (UserRole.EMPLOYEE, UserRole.MANAGER, UserRole.ADMIN)


def _eligible_staff(db: Session) -> list[User]:
    return (
        db.query(User)
        .filter(
            User.role.in_(ASSIGNABLE_ROLES),
            User.is_verified.is_(True),
            User.is_suspended.is_(False),
        )
        .order_by(User.created_at.asc(), User.id.asc())
        .all()
    )


def next_employee(db: Session, queue: AssignmentType) -> User | None:
    """Pick the staff member after the last one assigned to this queue (wrapping). None if no staff."""
    staff = _eligible_staff(db)
    if not staff:
        return None

    counter = (
        db.query(RoundRobinCounter)
        .filter(RoundRobinCounter.type == queue)
        .with_for_update()
        .first()
    )
    if not counter:
        counter = RoundRobinCounter(type=queue, last_assigned_id=None)
        db.add(counter)

    ids = [s.id for s in staff]
    if counter.last_assigned_id in ids:
        chosen = staff[(ids.index(counter.last_assigned_id) + 1) % len(staff)]
    else:
        # First assignment, or the last pick left the rotation
        chosen = staff[0]
    counter.last_assigned_id = chosen.id
    db.flush()
    return chosen


def _create_assignment(db: Session, employee: User, item_id: int, item_type: AssignmentType) -> Assignment:
    assignment = Assignment(employee_id=employee.id, item_id=item_id, item_type=item_type, is_active=True)
    db.add(assignment)
    db.flush()
    return assignment


def assign_verification(db: Session, verification: Verification) -> User | None:
    employee = next_employee(db, AssignmentType.VERIFICATION)
    if not employee:
        logger.warning("No staff available; verification %s left unassigned", verification.id)
        return None
    _create_assignment(db, employee, verification.id, AssignmentType.VERIFICATION)
    verification.employee_id = employee.id
    verification.assigned_at = datetime.now(timezone.utc)
    verification.status = VerificationStatus.IN_PROGRESS
    logger.info("Verification %s assigned to employee %s", verification.id, employee.id)
    return employee


def assign_booking_monitoring(db: Session, booking: Booking) -> User | None:
    employee = next_employee(db, AssignmentType.BOOKING_MONITORING)
    if not employee:
        logger.warning("No staff available; booking %s has no monitor", booking.id)
        return None
    _create_assignment(db, employee, booking.id, AssignmentType.BOOKING_MONITORING)
    booking.assigned_employee_id = employee.id
    logger.info("Booking %s assigned to employee %s for monitoring", booking.id, employee.id)
    return employee


def assign_dispute(db: Session, dispute: Dispute, employee: User | None = None) -> User | None:
    """Assign to the given staff member, or the next in rotation."""
    if employee is None:
        employee = next_employee(db, AssignmentType.DISPUTE)
    if not employee:
        logger.warning("No staff available; dispute %s left unassigned", dispute.id)
        return None
    complete_assignments(db, dispute.id, AssignmentType.DISPUTE)
    _create_assignment(db, employee, dispute.id, AssignmentType.DISPUTE)
    dispute.assigned_to = employee.id
    logger.info("Dispute %s assigned to employee %s", dispute.id, employee.id)
    return employee


def assign_support_ticket(db: Session, ticket: SupportTicket, employee: User | None = None) -> User | None:
    """Assign to the given staff member, or the next in rotation."""
    if employee is None:
        employee = next_employee(db, AssignmentType.SUPPORT_TICKET)
    if not employee:
        logger.warning("No staff available; support ticket %s left unassigned", ticket.id)
        return None
    complete_assignments(db, ticket.id, AssignmentType.SUPPORT_TICKET)
    _create_assignment(db, employee, ticket.id, AssignmentType.SUPPORT_TICKET)
    ticket.assigned_to = employee.id
    ticket.assigned_at = datetime.now(timezone.utc)
    logger.info("Support ticket %s assigned to employee %s", ticket.id, employee.id)
    return employee


def complete_assignments(db: Session, item_id: int, item_type: AssignmentType) -> int:
    """Close active assignments for an item. Returns how many were closed."""
    active = (
        db.query(Assignment)
        .filter(
            Assignment.item_id == item_id,
            Assignment.item_type == item_type,
            Assignment.is_active.is_(True),
        )
        .all()
    )
    now = datetime.now(timezone.utc)
    for a in active:
        a.is_active = False
        a.completed_at = now
    db.flush()
    return len(active)


def reassign(db: Session, assignment: Assignment, new_employee: User) -> Assignment:
    """Move an active assignment to another staff member and update the underlying item."""
    assignment.is_active = False
    assignment.completed_at = datetime.now(timezone.utc)
    replacement = _create_assignment(db, new_employee, assignment.item_id, assignment.item_type)

    if assignment.item_type == AssignmentType.VERIFICATION:
        item = db.query(Verification).filter(Verification.id == assignment.item_id).first()
        if item:
            item.employee_id = new_employee.id
            item.assigned_at = datetime.now(timezone.utc)
    elif assignment.item_type == AssignmentType.BOOKING_MONITORING:
        item = db.query(Booking).filter(Booking.id == assignment.item_id).first()
        if item:
            item.assigned_employee_id = new_employee.id
    elif assignment.item_type == AssignmentType.DISPUTE:
        item = db.query(Dispute).filter(Dispute.id == assignment.item_id).first()
        if item:
            item.assigned_to = new_employee.id
    elif assignment.item_type == AssignmentType.SUPPORT_TICKET:
        item = db.query(SupportTicket).filter(SupportTicket.id == assignment.item_id).first()
        if item:
            item.assigned_to = new_employee.id
            item.assigned_at = datetime.now(timezone.utc)
    db.flush()
    logger.info(
        "Assignment %s (%s %s) moved from employee %s to %s",
        assignment.id, assignment.item_type.value, assignment.item_id, assignment.employee_id, new_employee.id,
    )
    return replacement


def _clear_assignee(db: Session, assignment: Assignment) -> None:
    if assignment.item_type == AssignmentType.VERIFICATION:
        item = db.query(Verification).filter(Verification.id == assignment.item_id).first()
        if item and item.employee_id == assignment.employee_id:
            item.employee_id = None
            item.assigned_at = None
            if item.status == VerificationStatus.IN_PROGRESS:
                item.status = VerificationStatus.PENDING
    elif assignment.item_type == AssignmentType.BOOKING_MONITORING:
        item = db.query(Booking).filter(Booking.id == assignment.item_id).first()
        if item and item.assigned_employee_id == assignment.employee_id:
            item.assigned_employee_id = None
    elif assignment.item_type == AssignmentType.DISPUTE:
        item = db.query(Dispute).filter(Dispute.id == assignment.item_id).first()
        if item and item.assigned_to == assignment.employee_id:
            item.assigned_to = None
    elif assignment.item_type == AssignmentType.SUPPORT_TICKET:
        item = db.query(SupportTicket).filter(SupportTicket.id == assignment.item_id).first()
        if item and item.assigned_to == assignment.employee_id:
            item.assigned_to = None
            item.assigned_at = None
            if item.status == TicketStatus.IN_PROGRESS:
                item.status = TicketStatus.OPEN


def hand_off_assignments(db: Session, employee: User) -> int:
    """
    Move a departing staff member's open work back into the rotation.
    Call after the role or suspension change; items stay unassigned when nobody else is available.
    """
    db.flush()
    active = (
        db.query(Assignment)
        .filter(Assignment.employee_id == employee.id, Assignment.is_active.is_(True))
        .order_by(Assignment.id.asc())
        .all()
    )
    for assignment in active:
        replacement = next_employee(db, assignment.item_type)
        if replacement is not None and replacement.id != employee.id:
            reassign(db, assignment, replacement)
            continue
        assignment.is_active = False
        assignment.completed_at = datetime.now(timezone.utc)
        _clear_assignee(db, assignment)
        logger.warning(
            "No staff available; %s %s left unassigned", assignment.item_type.value, assignment.item_id,
        )
    db.flush()
    return len(active)
