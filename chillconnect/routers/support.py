"""Support tickets: member help desk and the staff ticket queue."""
import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from chillconnect.database import get_db
from chillconnect.dependencies import get_current_user, require_manager, require_staff
from chillconnect.models.support import (
    SupportTicket,
    TicketCategory,
    TicketMessage,
    TicketPriority,
    TicketStatus,
)
from chillconnect.models.user import User, STAFF_ROLES
from chillconnect.schemas.support import (
    TicketAssign,
    TicketCreate,
    TicketDetail,
    TicketList,
    TicketMessageResponse,
    TicketReply,
    TicketResolve,
    TicketResponse,
    TicketStatistics,
)
from chillconnect.services.assignment import assign_support_ticket
from chillconnect.services.notifications import send_support_update_email
from chillconnect.services.support import (
    SupportError,
    add_reply,
    can_view,
    close_ticket,
    first_response_hours,
    open_ticket,
    resolve_ticket,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/support", tags=["support"])

# Most urgent first in the staff queue
_PRIORITY_RANK = case(
    {TicketPriority.URGENT: 4, TicketPriority.HIGH: 3, TicketPriority.MEDIUM: 2, TicketPriority.LOW: 1},
    value=SupportTicket.priority,
    else_=0,
)


def _get_ticket(db: Session, ticket_id: int, user: User) -> SupportTicket:
    ticket = db.query(SupportTicket).filter(SupportTicket.id == ticket_id).first()
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    if not can_view(ticket, user):
        raise HTTPException(status_code=403, detail="You do not have permission to view this ticket")
    return ticket


def _detail(db: Session, ticket: SupportTicket, user: User) -> TicketDetail:
    q = db.query(TicketMessage).filter(TicketMessage.ticket_id == ticket.id)
    if not user.is_staff:
        q = q.filter((TicketMessage.is_internal.is_(False)) | (TicketMessage.sender_id == user.id))
    messages = q.order_by(TicketMessage.created_at.asc(), TicketMessage.id.asc()).all()
    return TicketDetail(
        **TicketResponse.model_validate(ticket).model_dump(),
        messages=[TicketMessageResponse.model_validate(m) for m in messages],
    )


def _paginate(q, page: int, limit: int, *order) -> TicketList:
    total = q.count()
    rows = q.order_by(*order).offset((page - 1) * limit).limit(limit).all()
    return TicketList(tickets=[TicketResponse.model_validate(t) for t in rows], total=total, page=page, limit=limit)


def _notify_owner(db: Session, ticket: SupportTicket, update: str) -> None:
    owner = db.query(User).filter(User.id == ticket.user_id).first()
    if owner:
        send_support_update_email(owner.email, ticket.ticket_number, ticket.subject, update)


@router.post("/tickets", response_model=TicketResponse, status_code=201)
def create_ticket(data: TicketCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    try:
        ticket = open_ticket(
            db, current_user, data.subject, data.description, data.category,
            data.priority, data.booking_id, data.attachments,
        )
    except SupportError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.message)
    db.commit()
    db.refresh(ticket)
    return TicketResponse.model_validate(ticket)


@router.get("/tickets", response_model=TicketList)
def my_tickets(
    status: TicketStatus | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    q = db.query(SupportTicket).filter(SupportTicket.user_id == current_user.id)
    if status is not None:
        q = q.filter(SupportTicket.status == status)
    return _paginate(q, page, limit, SupportTicket.created_at.desc(), SupportTicket.id.desc())


@router.get("/tickets/{ticket_id}", response_model=TicketDetail)
def ticket_detail(ticket_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return _detail(db, _get_ticket(db, ticket_id, current_user), current_user)


@router.post("/tickets/{ticket_id}/messages", response_model=TicketMessageResponse, status_code=201)
def reply(
    ticket_id: int,
    data: TicketReply,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ticket = _get_ticket(db, ticket_id, current_user)
    try:
        message = add_reply(db, ticket, current_user, data.message, data.attachments, data.internal)
    except SupportError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.message)
    db.commit()
    db.refresh(message)
    if message.is_staff and not message.is_internal:
        _notify_owner(db, ticket, "Our team replied to your ticket.")
    return TicketMessageResponse.model_validate(message)


@router.get("/admin/tickets", response_model=TicketList)
def staff_tickets(
    status: TicketStatus | None = None,
    category: TicketCategory | None = None,
    priority: TicketPriority | None = None,
    assigned_to_me: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    q = db.query(SupportTicket)
    if status is not None:
        q = q.filter(SupportTicket.status == status)
    if category is not None:
        q = q.filter(SupportTicket.category == category)
    if priority is not None:
        q = q.filter(SupportTicket.priority == priority)
    if assigned_to_me:
        q = q.filter(SupportTicket.assigned_to == current_user.id)
    return _paginate(q, page, limit, _PRIORITY_RANK.desc(), SupportTicket.created_at.desc(), SupportTicket.id.desc())


@router.get("/admin/statistics", response_model=TicketStatistics)
def statistics(db: Session = Depends(get_db), current_user: User = Depends(require_staff)):
    by_status = dict(db.query(SupportTicket.status, func.count(SupportTicket.id)).group_by(SupportTicket.status).all())
    by_category = dict(db.query(SupportTicket.category, func.count(SupportTicket.id)).group_by(SupportTicket.category).all())
    by_priority = dict(db.query(SupportTicket.priority, func.count(SupportTicket.id)).group_by(SupportTicket.priority).all())
    return TicketStatistics(
        total=sum(by_status.values()),
        by_status={s.value: by_status.get(s, 0) for s in TicketStatus},
        by_category={c.value: by_category.get(c, 0) for c in TicketCategory},
        by_priority={p.value: by_priority.get(p, 0) for p in TicketPriority},
        avg_first_response_hours=first_response_hours(db),
    )


@router.put("/admin/tickets/{ticket_id}/assign", response_model=TicketResponse)
def assign(
    ticket_id: int,
    data: TicketAssign,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_manager),
):
    ticket = _get_ticket(db, ticket_id, current_user)
    if ticket.status == TicketStatus.CLOSED:
        raise HTTPException(status_code=400, detail="Ticket is closed")
    employee = (
        db.query(User)
        .filter(User.id == data.employee_id, User.role.in_(STAFF_ROLES), User.is_suspended.is_(False))
        .first()
    )
    if not employee:
        raise HTTPException(status_code=400, detail="Can only assign to staff members")
    assign_support_ticket(db, ticket, employee)
    if ticket.status == TicketStatus.OPEN:
        ticket.status = TicketStatus.IN_PROGRESS
    db.commit()
    db.refresh(ticket)
    logger.info("Ticket %s assigned to %s by %s", ticket.id, employee.id, current_user.id)
    return TicketResponse.model_validate(ticket)


@router.put("/admin/tickets/{ticket_id}/resolve", response_model=TicketResponse)
def resolve(
    ticket_id: int,
    data: TicketResolve,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    ticket = _get_ticket(db, ticket_id, current_user)
    try:
        resolve_ticket(db, ticket, current_user, data.resolution)
    except SupportError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.message)
    db.commit()
    db.refresh(ticket)
    _notify_owner(db, ticket, f"Resolved: {ticket.resolution}")
    return TicketResponse.model_validate(ticket)


@router.put("/admin/tickets/{ticket_id}/close", response_model=TicketResponse)
def close(ticket_id: int, db: Session = Depends(get_db), current_user: User = Depends(require_staff)):
    ticket = _get_ticket(db, ticket_id, current_user)
    try:
        close_ticket(db, ticket, current_user)
    except SupportError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.message)
    db.commit()
    db.refresh(ticket)
    return TicketResponse.model_validate(ticket)
