"""Disputes: filing, staff handling, resolution and appeal."""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from chillconnect.database import get_db
from chillconnect.dependencies import get_current_user, require_manager, require_staff
from chillconnect.models.booking import Booking
from chillconnect.models.dispute import Dispute, DisputeStatus, DisputeType
from chillconnect.models.user import User, STAFF_ROLES
from chillconnect.schemas.dispute import (
    DisputeAppeal,
    DisputeAssign,
    DisputeCreate,
    DisputeList,
    DisputeResolve,
    DisputeResponse,
)
from chillconnect.services.assignment import assign_dispute
from chillconnect.services.disputes import DisputeError, appeal_dispute, file_dispute, resolve_dispute

router = APIRouter(prefix="/disputes", tags=["disputes"])


def _get_dispute(db: Session, dispute_id: int) -> Dispute:
    dispute = db.query(Dispute).filter(Dispute.id == dispute_id).first()
    if not dispute:
        raise HTTPException(status_code=404, detail="Dispute not found")
    return dispute


def _paginate(q, page: int, limit: int) -> DisputeList:
    total = q.count()
    rows = q.order_by(Dispute.created_at.desc(), Dispute.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return DisputeList(disputes=[DisputeResponse.model_validate(d) for d in rows], total=total, page=page, limit=limit)


@router.post("", response_model=DisputeResponse, status_code=201)
def create(data: DisputeCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    booking = db.query(Booking).filter(Booking.id == data.booking_id).first()
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    try:
        dispute = file_dispute(db, booking, current_user, data.dispute_type, data.description, data.evidence)
    except DisputeError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.message)
    db.commit()
    db.refresh(dispute)
    return DisputeResponse.model_validate(dispute)


@router.get("/my", response_model=DisputeList)
def my_disputes(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    q = db.query(Dispute).filter((Dispute.reported_by == current_user.id) | (Dispute.reported_against == current_user.id))
    return _paginate(q, page, limit)


@router.get("/statistics")
def statistics(db: Session = Depends(get_db), current_user: User = Depends(require_staff)):
    by_status = dict(db.query(Dispute.status, func.count(Dispute.id)).group_by(Dispute.status).all())
    by_type = dict(db.query(Dispute.dispute_type, func.count(Dispute.id)).group_by(Dispute.dispute_type).all())
    refunded = db.query(func.coalesce(func.sum(Dispute.refund_amount), 0)).filter(Dispute.refund_issued.is_(True)).scalar()
    return {
        "by_status": {s.value: by_status.get(s, 0) for s in DisputeStatus},
        "by_type": {t.value: by_type.get(t, 0) for t in DisputeType},
        "total": sum(by_status.values()),
        "tokens_refunded": int(refunded or 0),
    }


@router.get("", response_model=DisputeList)
def list_disputes(
    status: DisputeStatus | None = None,
    assigned_to_me: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    q = db.query(Dispute)
    if status is not None:
        q = q.filter(Dispute.status == status)
    if assigned_to_me:
        q = q.filter(Dispute.assigned_to == current_user.id)
    return _paginate(q, page, limit)


@router.get("/{dispute_id}", response_model=DisputeResponse)
def detail(dispute_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    dispute = _get_dispute(db, dispute_id)
    if not current_user.is_staff and current_user.id not in (dispute.reported_by, dispute.reported_against):
        raise HTTPException(status_code=403, detail="Access denied")
    return DisputeResponse.model_validate(dispute)


@router.put("/{dispute_id}/assign", response_model=DisputeResponse)
def assign(
    dispute_id: int,
    data: DisputeAssign,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_manager),
):
    dispute = _get_dispute(db, dispute_id)
    employee = db.query(User).filter(User.id == data.employee_id, User.role.in_(STAFF_ROLES)).first()
    if not employee:
        raise HTTPException(status_code=400, detail="Employee not found")
    assign_dispute(db, dispute, employee)
    if dispute.status == DisputeStatus.OPEN:
        dispute.status = DisputeStatus.INVESTIGATING
    db.commit()
    db.refresh(dispute)
    return DisputeResponse.model_validate(dispute)


@router.put("/{dispute_id}/resolve", response_model=DisputeResponse)
def resolve(
    dispute_id: int,
    data: DisputeResolve,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    dispute = _get_dispute(db, dispute_id)
    try:
        resolve_dispute(db, dispute, current_user, data.resolution, data.refund_amount, data.action_taken)
    except DisputeError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.message)
    db.commit()
    db.refresh(dispute)
    return DisputeResponse.model_validate(dispute)


@router.post("/{dispute_id}/appeal", response_model=DisputeResponse)
def appeal(
    dispute_id: int,
    data: DisputeAppeal,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    dispute = _get_dispute(db, dispute_id)
    try:
        appeal_dispute(db, dispute, current_user, data.reason)
    except DisputeError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.message)
    db.commit()
    db.refresh(dispute)
    return DisputeResponse.model_validate(dispute)
