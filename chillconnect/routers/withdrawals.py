"""Provider payout methods and withdrawal requests; staff processing."""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from chillconnect.database import get_db
from chillconnect.dependencies import require_manager, require_provider
from chillconnect.models.user import User
from chillconnect.models.withdrawal import PaymentMethod, WithdrawalRequest, WithdrawalStatus
from chillconnect.schemas.auth import MessageResponse
from chillconnect.schemas.withdrawal import (
    PaymentMethodCreate,
    PaymentMethodResponse,
    PaymentMethodUpdate,
    WithdrawalComplete,
    WithdrawalCreate,
    WithdrawalDecision,
    WithdrawalList,
    WithdrawalReject,
    WithdrawalResponse,
    WithdrawalStatistics,
)
from chillconnect.services.notifications import send_withdrawal_status_email
from chillconnect.services.withdrawals import (
    WithdrawalError,
    approve_withdrawal,
    cancel_withdrawal,
    complete_withdrawal,
    reject_withdrawal,
    request_withdrawal,
)

router = APIRouter(prefix="/withdrawals", tags=["withdrawals"])


def _get_method(db: Session, method_id: int, user: User) -> PaymentMethod:
    method = db.query(PaymentMethod).filter(PaymentMethod.id == method_id, PaymentMethod.user_id == user.id).first()
    if not method:
        raise HTTPException(status_code=404, detail="Payment method not found")
    return method


def _get_withdrawal(db: Session, withdrawal_id: int) -> WithdrawalRequest:
    withdrawal = db.query(WithdrawalRequest).filter(WithdrawalRequest.id == withdrawal_id).first()
    if not withdrawal:
        raise HTTPException(status_code=404, detail="Withdrawal not found")
    return withdrawal


def _clear_default(db: Session, user_id: int, keep_id: int | None = None) -> None:
    q = db.query(PaymentMethod).filter(PaymentMethod.user_id == user_id, PaymentMethod.is_default.is_(True))
    if keep_id is not None:
        q = q.filter(PaymentMethod.id != keep_id)
    for m in q.all():
        m.is_default = False


def _notify(db: Session, withdrawal: WithdrawalRequest, detail: str | None = None) -> None:
    user = db.query(User).filter(User.id == withdrawal.user_id).first()
    if user:
        send_withdrawal_status_email(user.email, withdrawal.id, withdrawal.status.value, detail)


def _apply(db: Session, action, *args) -> WithdrawalRequest:
    try:
        withdrawal = action(db, *args)
    except WithdrawalError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.message)
    db.commit()
    db.refresh(withdrawal)
    return withdrawal


# --- Payment methods ---


@router.get("/payment-methods", response_model=list[PaymentMethodResponse])
def list_payment_methods(db: Session = Depends(get_db), current_user: User = Depends(require_provider)):
    rows = db.query(PaymentMethod).filter(PaymentMethod.user_id == current_user.id).order_by(PaymentMethod.id.asc()).all()
    return [PaymentMethodResponse.model_validate(m) for m in rows]


@router.post("/payment-methods", response_model=PaymentMethodResponse, status_code=201)
def add_payment_method(
    data: PaymentMethodCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_provider),
):
    has_any = db.query(PaymentMethod.id).filter(PaymentMethod.user_id == current_user.id).first() is not None
    is_default = data.is_default or not has_any
    if is_default:
        _clear_default(db, current_user.id)
    method = PaymentMethod(
        user_id=current_user.id,
        type=data.type,
        label=(data.label or "").strip() or None,
        details={k: v.strip() for k, v in data.details.items()},
        is_default=is_default,
    )
    db.add(method)
    db.commit()
    db.refresh(method)
    return PaymentMethodResponse.model_validate(method)


@router.put("/payment-methods/{method_id}", response_model=PaymentMethodResponse)
def update_payment_method(
    method_id: int,
    data: PaymentMethodUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_provider),
):
    method = _get_method(db, method_id, current_user)
    if data.label is not None:
        method.label = data.label.strip() or None
    if data.is_default:
        _clear_default(db, current_user.id, keep_id=method.id)
        method.is_default = True
    db.commit()
    db.refresh(method)
    return PaymentMethodResponse.model_validate(method)


@router.delete("/payment-methods/{method_id}", response_model=MessageResponse)
def delete_payment_method(method_id: int, db: Session = Depends(get_db), current_user: User = Depends(require_provider)):
    method = _get_method(db, method_id, current_user)
    in_use = (
        db.query(WithdrawalRequest.id)
        .filter(
            WithdrawalRequest.payment_method_id == method.id,
            WithdrawalRequest.status.in_((WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED)),
        )
        .first()
    )
    if in_use:
        raise HTTPException(status_code=400, detail="This payment method has a withdrawal in progress")
    referenced = db.query(WithdrawalRequest.id).filter(WithdrawalRequest.payment_method_id == method.id).first()
    if referenced:
        raise HTTPException(status_code=400, detail="This payment method is referenced by past withdrawals and cannot be deleted")
    was_default = method.is_default
    db.delete(method)
    db.flush()
    if was_default:
        nxt = db.query(PaymentMethod).filter(PaymentMethod.user_id == current_user.id).order_by(PaymentMethod.id.asc()).first()
        if nxt:
            nxt.is_default = True
    db.commit()
    return MessageResponse(message="Payment method deleted")


# --- Provider requests ---


@router.post("/request", response_model=WithdrawalResponse, status_code=201)
def create_request(data: WithdrawalCreate, db: Session = Depends(get_db), current_user: User = Depends(require_provider)):
    method = _get_method(db, data.payment_method_id, current_user)
    withdrawal = _apply(db, request_withdrawal, current_user, data.amount_tokens, method, data.notes)
    _notify(db, withdrawal)
    return WithdrawalResponse.model_validate(withdrawal)


@router.get("/my", response_model=WithdrawalList)
def my_requests(
    status: WithdrawalStatus | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_provider),
):
    q = db.query(WithdrawalRequest).filter(WithdrawalRequest.user_id == current_user.id)
    if status is not None:
        q = q.filter(WithdrawalRequest.status == status)
    total = q.count()
    rows = q.order_by(WithdrawalRequest.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return WithdrawalList(withdrawals=[WithdrawalResponse.model_validate(w) for w in rows], total=total, page=page, limit=limit)


@router.put("/{withdrawal_id}/cancel", response_model=WithdrawalResponse)
def cancel(withdrawal_id: int, db: Session = Depends(get_db), current_user: User = Depends(require_provider)):
    withdrawal = _apply(db, cancel_withdrawal, _get_withdrawal(db, withdrawal_id), current_user)
    return WithdrawalResponse.model_validate(withdrawal)


# --- Staff processing ---


@router.get("/admin/statistics", response_model=WithdrawalStatistics)
def statistics(db: Session = Depends(get_db), current_user: User = Depends(require_manager)):
    by_status = dict(
        db.query(WithdrawalRequest.status, func.count(WithdrawalRequest.id)).group_by(WithdrawalRequest.status).all()
    )

    def _sum(column, *statuses):
        return int(
            db.query(func.coalesce(func.sum(column), 0)).filter(WithdrawalRequest.status.in_(statuses)).scalar() or 0
        )

    return WithdrawalStatistics(
        by_status={s.value: by_status.get(s, 0) for s in WithdrawalStatus},
        pending_tokens=_sum(WithdrawalRequest.amount_tokens, WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED),
        completed_tokens=_sum(WithdrawalRequest.amount_tokens, WithdrawalStatus.COMPLETED),
        completed_net_inr=_sum(WithdrawalRequest.net_amount, WithdrawalStatus.COMPLETED),
        total_fees_inr=_sum(WithdrawalRequest.processing_fee, WithdrawalStatus.COMPLETED),
    )


@router.get("/admin", response_model=WithdrawalList)
def list_all(
    status: WithdrawalStatus | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_manager),
):
    q = db.query(WithdrawalRequest)
    if status is not None:
        q = q.filter(WithdrawalRequest.status == status)
    total = q.count()
    rows = q.order_by(WithdrawalRequest.id.asc()).offset((page - 1) * limit).limit(limit).all()
    return WithdrawalList(withdrawals=[WithdrawalResponse.model_validate(w) for w in rows], total=total, page=page, limit=limit)


@router.put("/admin/{withdrawal_id}/approve", response_model=WithdrawalResponse)
def approve(
    withdrawal_id: int,
    data: WithdrawalDecision,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_manager),
):
    withdrawal = _apply(db, approve_withdrawal, _get_withdrawal(db, withdrawal_id), current_user, data.notes)
    _notify(db, withdrawal, data.notes)
    return WithdrawalResponse.model_validate(withdrawal)


@router.put("/admin/{withdrawal_id}/reject", response_model=WithdrawalResponse)
def reject(
    withdrawal_id: int,
    data: WithdrawalReject,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_manager),
):
    withdrawal = _apply(db, reject_withdrawal, _get_withdrawal(db, withdrawal_id), current_user, data.reason)
    _notify(db, withdrawal, data.reason)
    return WithdrawalResponse.model_validate(withdrawal)


@router.put("/admin/{withdrawal_id}/complete", response_model=WithdrawalResponse)
def complete(
    withdrawal_id: int,
    data: WithdrawalComplete,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_manager),
):
    withdrawal = _apply(
        db, complete_withdrawal, _get_withdrawal(db, withdrawal_id), current_user, data.transaction_reference, data.notes,
    )
    _notify(db, withdrawal, f"Reference: {withdrawal.transaction_reference}")
    return WithdrawalResponse.model_validate(withdrawal)
