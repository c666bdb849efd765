"""Token wallet: packages, balance, PayPal purchases, ledger history."""
import logging
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from chillconnect.config import get_settings
from chillconnect.database import get_db
from chillconnect.dependencies import get_current_user
from chillconnect.models.user import User
from chillconnect.models.wallet import TokenTransaction, TransactionType, TransactionStatus
from chillconnect.schemas.token import (
    CaptureRequest,
    CaptureResponse,
    PackagesResponse,
    PurchaseRequest,
    PurchaseResponse,
    TokenPackage,
    TransactionList,
    TransactionResponse,
    WalletResponse,
)
from chillconnect.services import ledger, paypal
from chillconnect.services.audit_log import create_log, request_context, CATEGORY_WALLET
from chillconnect.services.notifications import send_token_purchase_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tokens", tags=["tokens"])


def _wallet_response(wallet) -> WalletResponse:
    value = get_settings().token_value_inr
    return WalletResponse(
        balance=wallet.balance,
        escrow_balance=wallet.escrow_balance,
        total_earned=wallet.total_earned,
        total_spent=wallet.total_spent,
        token_value_inr=value,
        balance_inr=wallet.balance * value,
    )


def _send_receipt(db: Session, tx: TokenTransaction) -> None:
    user = db.query(User).filter(User.id == tx.user_id).first()
    if user:
        send_token_purchase_email(
            user.email, tx.amount, tx.amount * get_settings().token_value_inr, tx.new_balance,
        )


@router.get("/packages", response_model=PackagesResponse)
def packages():
    s = get_settings()
    return PackagesResponse(
        packages=[TokenPackage(**p) for p in paypal.token_packages()],
        token_value_inr=s.token_value_inr,
        min_purchase=s.min_token_purchase,
    )


@router.get("/balance", response_model=WalletResponse)
def balance(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return _wallet_response(ledger.get_wallet(db, current_user.id))


@router.post("/purchase", response_model=PurchaseResponse)
def purchase(
    request: Request,
    data: PurchaseRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    s = get_settings()
    if data.token_amount < s.min_token_purchase:
        raise HTTPException(status_code=400, detail=f"Minimum purchase is {s.min_token_purchase} tokens")
    if not paypal.paypal_configured():
        raise HTTPException(status_code=503, detail="Payments are not configured")
    ledger.get_wallet(db, current_user.id)
    try:
        order = paypal.create_order(data.token_amount, current_user.id)
    except paypal.PayPalError as e:
        raise HTTPException(status_code=502, detail=str(e))

    ledger.start_purchase(
        db, current_user.id, data.token_amount, order["order_id"],
        meta={"amount_inr": order["amount_inr"], "payment_status": "pending"},
    )
    create_log(
        db,
        CATEGORY_WALLET,
        "Token purchase started",
        f"PayPal order {order['order_id']} created for {data.token_amount} tokens.",
        target_user_id=current_user.id,
        actor_user_id=current_user.id,
        actor_email=current_user.email,
        meta={"order_id": order["order_id"], "token_amount": data.token_amount},
        **request_context(request),
    )
    db.commit()
    return PurchaseResponse(
        order_id=order["order_id"],
        approval_url=order["approval_url"],
        token_amount=data.token_amount,
        amount_inr=order["amount_inr"],
    )


@router.post("/capture", response_model=CaptureResponse)
def capture(
    data: CaptureRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    tx = (
        db.query(TokenTransaction)
        .filter(
            TokenTransaction.payment_reference == data.order_id,
            TokenTransaction.type == TransactionType.PURCHASE,
            TokenTransaction.user_id == current_user.id,
        )
        .first()
    )
    if not tx:
        raise HTTPException(status_code=404, detail="Payment not found")
    if tx.status == TransactionStatus.COMPLETED:
        return CaptureResponse(order_id=data.order_id, token_amount=tx.amount, new_balance=tx.new_balance, already_credited=True)
    if tx.status == TransactionStatus.FAILED:
        raise HTTPException(status_code=400, detail="Payment was declined")

    try:
        result = paypal.capture_order(data.order_id)
    except paypal.PayPalError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if result["status"] != "COMPLETED":
        logger.warning("PayPal capture not completed: order=%s status=%s", data.order_id, result["status"])
        raise HTTPException(status_code=400, detail=f"Payment not completed (status: {result['status']})")

    tx, credited_now = ledger.complete_purchase(db, data.order_id, meta={"capture_id": result["capture_id"]})
    db.commit()
    if credited_now:
        _send_receipt(db, tx)
    return CaptureResponse(
        order_id=data.order_id, token_amount=tx.amount, new_balance=tx.new_balance, already_credited=not credited_now,
    )


@router.get("/transactions", response_model=TransactionList)
def transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: TransactionType | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    q = db.query(TokenTransaction).filter(TokenTransaction.user_id == current_user.id)
    if type is not None:
        q = q.filter(TokenTransaction.type == type)
    total = q.count()
    rows = q.order_by(TokenTransaction.created_at.desc(), TokenTransaction.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return TransactionList(
        transactions=[TransactionResponse.model_validate(r) for r in rows],
        total=total,
        page=page,
        limit=limit,
    )


@router.post("/webhook")
def paypal_webhook(request: Request, event: dict = Body(...), db: Session = Depends(get_db)):
    """PayPal event delivery. Credits are idempotent, so a webhook racing the capture endpoint is harmless."""
    if not paypal.verify_webhook(dict(request.headers), event):
        logger.warning("PayPal webhook rejected: id=%s type=%s", event.get("id"), event.get("event_type"))
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    event_type = event.get("event_type")
    resource = event.get("resource") or {}
    order_id = paypal.order_id_from_capture_event(resource)
    logger.info("PayPal webhook: type=%s order=%s", event_type, order_id)
    if not order_id:
        return {"received": True}

    try:
        if event_type == "PAYMENT.CAPTURE.COMPLETED":
            tx, credited_now = ledger.complete_purchase(db, order_id, meta={"capture_id": resource.get("id"), "via": "webhook"})
            db.commit()
            if credited_now:
                _send_receipt(db, tx)
        elif event_type in ("PAYMENT.CAPTURE.DENIED", "PAYMENT.CAPTURE.DECLINED"):
            ledger.fail_purchase(db, order_id, event_type)
            db.commit()
    except ledger.LedgerError as e:
        # Unknown order or already failed; acknowledge so PayPal stops retrying
        db.rollback()
        logger.warning("PayPal webhook not applied: order=%s reason=%s", order_id, e.message)
    return {"received": True}
