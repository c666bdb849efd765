"""Staff console: dashboard, verification queue, monitoring, user management, audit log."""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from chillconnect.database import get_db
from chillconnect.dependencies import require_admin, require_manager, require_staff
from chillconnect.models.audit_log import AuditLog
from chillconnect.models.booking import Booking, BookingStatus, ACTIVE_STATUSES
from chillconnect.models.dispute import Dispute, OPEN_DISPUTE_STATUSES, DisputeStatus
from chillconnect.models.message import Message
from chillconnect.models.user import User, UserRole, ADMIN_ROLES, MANAGER_ROLES, STAFF_ROLES
from chillconnect.models.verification import Assignment, AssignmentType, Verification, VerificationStatus
from chillconnect.models.wallet import TokenWallet
from chillconnect.models.withdrawal import WithdrawalRequest, WithdrawalStatus
from chillconnect.routers.bookings import booking_to_response
from chillconnect.schemas.admin import (
    AdminUser,
    AdminUserList,
    AssignmentResponse,
    AuditLogResponse,
    DashboardStats,
    ReassignRequest,
    RoleChange,
    SuspendRequest,
    TokenAdjustment,
    VerificationDecision,
    VerificationItem,
)
from chillconnect.schemas.booking import BookingList
from chillconnect.schemas.chat import MessageResponse as ChatMessageResponse
from chillconnect.schemas.token import TransactionResponse
from chillconnect.services import ledger
from chillconnect.services.assignment import assign_verification, complete_assignments, hand_off_assignments, reassign
from chillconnect.services.audit_log import (
    create_log,
    request_context,
    CATEGORY_ACCOUNT,
    CATEGORY_VERIFICATION,
    CATEGORY_WALLET,
)
from chillconnect.services.notifications import send_verification_decision_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def _admin_user(user: User) -> AdminUser:
    wallet = user.wallet
    return AdminUser(
        id=user.id,
        email=user.email,
        phone=user.phone,
        role=user.role,
        name=user.display_name,
        is_verified=user.is_verified,
        email_verified=user.email_verified,
        is_suspended=user.is_suspended,
        suspension_reason=user.suspension_reason,
        balance=wallet.balance if wallet else 0,
        escrow_balance=wallet.escrow_balance if wallet else 0,
        last_login_at=user.last_login_at,
        created_at=user.created_at,
    )


def _verification_item(v: Verification) -> VerificationItem:
    return VerificationItem(
        id=v.id,
        user_id=v.user_id,
        user_email=v.user.email,
        user_name=v.user.display_name,
        role=v.user.role,
        status=v.status,
        document_url=v.document_url,
        notes=v.notes,
        employee_id=v.employee_id,
        assigned_at=v.assigned_at,
        reviewed_at=v.reviewed_at,
        created_at=v.created_at,
    )


def _get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _can_manage(actor: User, target: User) -> None:
    """Staff may act on members; only admins act on staff, and nobody on a super admin except a super admin."""
    if actor.id == target.id:
        raise HTTPException(status_code=400, detail="You cannot change your own account here")
    if target.role == UserRole.SUPER_ADMIN and actor.role != UserRole.SUPER_ADMIN:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    if target.is_staff and actor.role not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Insufficient permissions")


@router.get("/dashboard", response_model=DashboardStats)
def dashboard(db: Session = Depends(get_db), current_user: User = Depends(require_staff)):
    users_by_role = dict(db.query(User.role, func.count(User.id)).group_by(User.role).all())
    bookings_by_status = dict(db.query(Booking.status, func.count(Booking.id)).group_by(Booking.status).all())
    balance, escrow = db.query(
        func.coalesce(func.sum(TokenWallet.balance), 0), func.coalesce(func.sum(TokenWallet.escrow_balance), 0)
    ).one()
    return DashboardStats(
        users_by_role={r.value: users_by_role.get(r, 0) for r in UserRole},
        pending_verifications=db.query(func.count(Verification.id))
        .filter(Verification.status.in_((VerificationStatus.PENDING, VerificationStatus.IN_PROGRESS)))
        .scalar(),
        bookings_by_status={s.value: bookings_by_status.get(s, 0) for s in BookingStatus},
        open_disputes=db.query(func.count(Dispute.id))
        .filter(Dispute.status.in_(OPEN_DISPUTE_STATUSES + (DisputeStatus.APPEALED,)))
        .scalar(),
        pending_withdrawals=db.query(func.count(WithdrawalRequest.id))
        .filter(WithdrawalRequest.status.in_((WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED)))
        .scalar(),
        flagged_messages=db.query(func.count(Message.id)).filter(Message.is_flagged.is_(True)).scalar(),
        tokens_in_circulation=int(balance or 0),
        tokens_in_escrow=int(escrow or 0),
    )


@router.get("/users", response_model=AdminUserList)
def list_users(
    role: UserRole | None = None,
    is_verified: bool | None = None,
    is_suspended: bool | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    q = db.query(User)
    if role is not None:
        q = q.filter(User.role == role)
    if is_verified is not None:
        q = q.filter(User.is_verified.is_(is_verified))
    if is_suspended is not None:
        q = q.filter(User.is_suspended.is_(is_suspended))
    if search:
        term = f"%{search.strip()}%"
        q = q.filter((User.email.ilike(term)) | (User.phone.ilike(term)))
    total = q.count()
    rows = q.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return AdminUserList(users=[_admin_user(u) for u in rows], total=total, page=page, limit=limit)


@router.get("/verification-queue", response_model=list[VerificationItem])
def verification_queue(
    status: VerificationStatus | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    q = db.query(Verification)
    if status is not None:
        q = q.filter(Verification.status == status)
    else:
        q = q.filter(Verification.status.in_((VerificationStatus.PENDING, VerificationStatus.IN_PROGRESS)))
    # Employees work their own queue; managers and above see everything
    if current_user.role not in MANAGER_ROLES:
        q = q.filter(Verification.employee_id == current_user.id)
    return [_verification_item(v) for v in q.order_by(Verification.created_at.asc(), Verification.id.asc()).all()]


@router.put("/verification/{verification_id}", response_model=VerificationItem)
def decide_verification(
    request: Request,
    verification_id: int,
    data: VerificationDecision,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    verification = db.query(Verification).filter(Verification.id == verification_id).first()
    if not verification:
        raise HTTPException(status_code=404, detail="Verification not found")
    if current_user.role not in MANAGER_ROLES and verification.employee_id != current_user.id:
        raise HTTPException(status_code=403, detail="This verification is assigned to another staff member")
    if verification.status in (VerificationStatus.APPROVED, VerificationStatus.REJECTED):
        raise HTTPException(status_code=400, detail=f"Verification already {verification.status.value.lower()}")

    user = verification.user
    verification.status = VerificationStatus.APPROVED if data.approve else VerificationStatus.REJECTED
    verification.notes = (data.notes or "").strip() or None
    verification.reviewed_at = datetime.now(timezone.utc)
    if verification.employee_id is None:
        verification.employee_id = current_user.id
    user.is_verified = data.approve
    complete_assignments(db, verification.id, AssignmentType.VERIFICATION)
    create_log(
        db,
        CATEGORY_VERIFICATION,
        "Verification approved" if data.approve else "Verification rejected",
        f"Verification {verification.id} for {user.email} {verification.status.value.lower()}.",
        target_user_id=user.id,
        actor_user_id=current_user.id,
        actor_email=current_user.email,
        meta={"verification_id": verification.id, "notes": verification.notes},
        **request_context(request),
    )
    db.commit()
    db.refresh(verification)
    send_verification_decision_email(user.email, data.approve, verification.notes)
    return _verification_item(verification)


@router.get("/bookings", response_model=BookingList)
def monitor_bookings(
    status: BookingStatus | None = None,
    assigned_to_me: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    q = db.query(Booking)
    if status is not None:
        q = q.filter(Booking.status == status)
    else:
        q = q.filter(Booking.status.in_(ACTIVE_STATUSES + (BookingStatus.DISPUTED,)))
    if assigned_to_me or current_user.role not in MANAGER_ROLES:
        q = q.filter(Booking.assigned_employee_id == current_user.id)
    total = q.count()
    rows = q.order_by(Booking.start_time.asc(), Booking.id.asc()).offset((page - 1) * limit).limit(limit).all()
    return BookingList(bookings=[booking_to_response(b, current_user) for b in rows], total=total, page=page, limit=limit)


@router.get("/flagged-messages", response_model=list[ChatMessageResponse])
def flagged_messages(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    q = db.query(Message).filter(Message.is_flagged.is_(True))
    if current_user.role not in MANAGER_ROLES:
        q = q.join(Booking, Booking.id == Message.booking_id).filter(Booking.assigned_employee_id == current_user.id)
    rows = q.order_by(Message.risk_score.desc(), Message.created_at.desc()).limit(limit).all()
    return [ChatMessageResponse.model_validate(m) for m in rows]


@router.get("/assignments", response_model=list[AssignmentResponse])
def list_assignments(
    employee_id: int | None = None,
    item_type: AssignmentType | None = None,
    active_only: bool = True,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    q = db.query(Assignment)
    if current_user.role not in MANAGER_ROLES:
        employee_id = current_user.id
    if employee_id is not None:
        q = q.filter(Assignment.employee_id == employee_id)
    if item_type is not None:
        q = q.filter(Assignment.item_type == item_type)
    if active_only:
        q = q.filter(Assignment.is_active.is_(True))
    return [AssignmentResponse.model_validate(a) for a in q.order_by(Assignment.id.asc()).all()]


@router.get("/my-queue", response_model=list[AssignmentResponse])
def my_queue(db: Session = Depends(get_db), current_user: User = Depends(require_staff)):
    rows = (
        db.query(Assignment)
        .filter(Assignment.employee_id == current_user.id, Assignment.is_active.is_(True))
        .order_by(Assignment.created_at.asc(), Assignment.id.asc())
        .all()
    )
    return [AssignmentResponse.model_validate(a) for a in rows]


@router.put("/assignments/{assignment_id}/reassign", response_model=AssignmentResponse)
def reassign_assignment(
    assignment_id: int,
    data: ReassignRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_manager),
):
    assignment = db.query(Assignment).filter(Assignment.id == assignment_id).first()
    if not assignment:
        raise HTTPException(status_code=404, detail="Assignment not found")
    if not assignment.is_active:
        raise HTTPException(status_code=400, detail="Assignment is already closed")
    employee = (
        db.query(User)
        .filter(User.id == data.employee_id, User.role.in_(STAFF_ROLES), User.is_suspended.is_(False))
        .first()
    )
    if not employee:
        raise HTTPException(status_code=400, detail="Employee not found")
    replacement = reassign(db, assignment, employee)
    db.commit()
    db.refresh(replacement)
    return AssignmentResponse.model_validate(replacement)


@router.put("/users/{user_id}/role", response_model=AdminUser)
def change_role(
    request: Request,
    user_id: int,
    data: RoleChange,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    target = _get_user(db, user_id)
    _can_manage(current_user, target)
    if data.role in ADMIN_ROLES and current_user.role != UserRole.SUPER_ADMIN:
        raise HTTPException(status_code=403, detail="Only a super admin can grant admin roles")
    old_role = target.role
    target.role = data.role
    db.flush()
    if data.role in STAFF_ROLES:
        target.is_verified = True
    elif data.role == UserRole.PROVIDER and old_role != UserRole.PROVIDER:
        # New providers go through the same approval queue as registrations
        target.is_verified = False
        pending = (
            db.query(Verification)
            .filter(
                Verification.user_id == target.id,
                Verification.status.in_((VerificationStatus.PENDING, VerificationStatus.IN_PROGRESS)),
            )
            .first()
        )
        if not pending:
            pending = Verification(user_id=target.id, status=VerificationStatus.PENDING)
            db.add(pending)
            db.flush()
        if pending.employee_id is None:
            assign_verification(db, pending)
    handed_off = 0
    if old_role in STAFF_ROLES and data.role not in STAFF_ROLES:
        handed_off = hand_off_assignments(db, target)
    create_log(
        db,
        CATEGORY_ACCOUNT,
        "Role changed",
        f"Role of {target.email} changed from {old_role.value} to {data.role.value}.",
        target_user_id=target.id,
        actor_user_id=current_user.id,
        actor_email=current_user.email,
        meta={"old_role": old_role, "new_role": data.role, "handed_off": handed_off},
        **request_context(request),
    )
    db.commit()
    db.refresh(target)
    return _admin_user(target)


@router.put("/users/{user_id}/suspend", response_model=AdminUser)
def suspend(
    request: Request,
    user_id: int,
    data: SuspendRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_manager),
):
    target = _get_user(db, user_id)
    _can_manage(current_user, target)
    if target.is_deleted:
        raise HTTPException(status_code=400, detail="Account is deleted")
    target.is_suspended = True
    target.suspension_reason = data.reason.strip()
    if target.is_staff:
        hand_off_assignments(db, target)
    create_log(
        db,
        CATEGORY_ACCOUNT,
        "User suspended",
        f"{target.email} suspended: {target.suspension_reason}",
        target_user_id=target.id,
        actor_user_id=current_user.id,
        actor_email=current_user.email,
        **request_context(request),
    )
    db.commit()
    db.refresh(target)
    logger.info("User %s suspended by %s", target.id, current_user.id)
    return _admin_user(target)


@router.put("/users/{user_id}/unsuspend", response_model=AdminUser)
def unsuspend(
    request: Request,
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_manager),
):
    target = _get_user(db, user_id)
    _can_manage(current_user, target)
    if target.is_deleted:
        raise HTTPException(status_code=400, detail="Deleted accounts cannot be reactivated")
    target.is_suspended = False
    target.suspension_reason = None
    create_log(
        db,
        CATEGORY_ACCOUNT,
        "User unsuspended",
        f"{target.email} unsuspended.",
        target_user_id=target.id,
        actor_user_id=current_user.id,
        actor_email=current_user.email,
        **request_context(request),
    )
    db.commit()
    db.refresh(target)
    return _admin_user(target)


@router.post("/users/{user_id}/tokens", response_model=TransactionResponse)
def adjust_tokens(
    request: Request,
    user_id: int,
    data: TokenAdjustment,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    target = _get_user(db, user_id)
    reason = data.reason.strip()
    tx = ledger.adjust(
        db, target.id, data.amount, f"Admin adjustment: {reason}",
        meta={"admin_id": current_user.id, "reason": reason},
    )
    create_log(
        db,
        CATEGORY_WALLET,
        "Token adjustment",
        f"{data.amount:+d} tokens for {target.email}: {reason}",
        target_user_id=target.id,
        actor_user_id=current_user.id,
        actor_email=current_user.email,
        meta={"amount": data.amount, "transaction_id": tx.id},
        **request_context(request),
    )
    db.commit()
    db.refresh(tx)
    return TransactionResponse.model_validate(tx)


@router.get("/audit-logs", response_model=list[AuditLogResponse])
def audit_logs(
    category: str | None = None,
    target_user_id: int | None = None,
    booking_id: int | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    q = db.query(AuditLog)
    if category:
        q = q.filter(AuditLog.category == category.strip())
    if target_user_id is not None:
        q = q.filter(AuditLog.target_user_id == target_user_id)
    if booking_id is not None:
        q = q.filter(AuditLog.booking_id == booking_id)
    rows = q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return [AuditLogResponse.model_validate(r) for r in rows]
