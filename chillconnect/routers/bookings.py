"""Bookings: provider discovery, create with escrow, status lifecycle."""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from chillconnect.config import get_settings
from chillconnect.database import get_db
from chillconnect.dependencies import get_current_user, require_seeker
from chillconnect.models.booking import Booking, BookingStatus
from chillconnect.models.user import User, UserRole
from chillconnect.routers.users import provider_summary, search_providers
from chillconnect.schemas.booking import BookingCreate, BookingList, BookingResponse, BookingStatusUpdate, Party
from chillconnect.schemas.user import ProviderList, ProviderSummary
from chillconnect.services.audit_log import request_context
from chillconnect.services.bookings import BookingError, can_view, change_status, create_booking, provider_query
from chillconnect.services.chat import post_system_message
from chillconnect.services.notifications import send_booking_confirmation_email
from chillconnect.services.otp import as_utc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _party(user: User | None, with_email: bool) -> Party | None:
    if not user:
        return None
    return Party(id=user.id, name=user.display_name, email=user.email if with_email else None)


def booking_to_response(booking: Booking, viewer: User | None = None) -> BookingResponse:
    """Participants see names only; staff also see emails."""
    with_email = bool(viewer and viewer.is_staff)
    return BookingResponse(
        id=booking.id,
        seeker_id=booking.seeker_id,
        provider_id=booking.provider_id,
        type=booking.type,
        start_time=booking.start_time,
        end_time=booking.end_time,
        duration=booking.duration,
        token_amount=booking.token_amount,
        location=booking.location,
        notes=booking.notes,
        status=booking.status,
        escrow_status=booking.escrow_status,
        assigned_employee_id=booking.assigned_employee_id,
        cancellation_reason=booking.cancellation_reason,
        cancelled_at=booking.cancelled_at,
        completed_at=booking.completed_at,
        created_at=booking.created_at,
        seeker=_party(booking.seeker, with_email),
        provider=_party(booking.provider, with_email),
    )


def get_booking_for(db: Session, booking_id: int, user: User) -> Booking:
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    if not can_view(booking, user):
        raise HTTPException(status_code=403, detail="Access denied")
    return booking


@router.get("/search", response_model=ProviderList)
def search(
    location: str | None = None,
    service: str | None = None,
    min_rating: float | None = Query(None, ge=0, le=5),
    max_rate: int | None = Query(None, gt=0),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return search_providers(db, location, service, min_rating, max_rate, page, limit)


@router.get("/providers/{provider_id}", response_model=ProviderSummary)
def provider_detail(
    provider_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    provider = provider_query(db).filter(User.id == provider_id).first()
    if not provider or not provider.profile:
        raise HTTPException(status_code=404, detail="Provider not found")
    return provider_summary(provider)


@router.post("", response_model=BookingResponse, status_code=201)
def create(
    request: Request,
    data: BookingCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_seeker),
):
    s = get_settings()
    if not current_user.is_verified:
        raise HTTPException(status_code=403, detail="Verify your email before booking")
    start = as_utc(data.start_time)
    if start <= datetime.now(timezone.utc):
        raise HTTPException(status_code=400, detail="Booking must start in the future")
    if data.duration < s.min_booking_minutes:
        raise HTTPException(status_code=400, detail=f"Minimum booking duration is {s.min_booking_minutes} minutes")

    provider = provider_query(db).filter(User.id == data.provider_id).first()
    if not provider:
        raise HTTPException(status_code=404, detail="Provider not found or not available")

    try:
        booking = create_booking(
            db, current_user, provider, data.type, start, data.duration,
            location=(data.location or "").strip() or None,
            notes=(data.notes or "").strip() or None,
        )
    except BookingError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.message)
    post_system_message(db, booking, f"Booking created for {booking.duration} minutes ({booking.token_amount} tokens held in escrow).")
    db.commit()
    db.refresh(booking)

    start_text = booking.start_time.strftime("%Y-%m-%d %H:%M UTC")
    for user in (current_user, provider):
        send_booking_confirmation_email(user.email, booking.id, start_text, booking.type.value, booking.token_amount)
    return booking_to_response(booking, current_user)


@router.get("/my", response_model=BookingList)
def my_bookings(
    status: BookingStatus | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if current_user.role == UserRole.PROVIDER:
        q = db.query(Booking).filter(Booking.provider_id == current_user.id)
    else:
        q = db.query(Booking).filter(Booking.seeker_id == current_user.id)
    if status is not None:
        q = q.filter(Booking.status == status)
    total = q.count()
    rows = q.order_by(Booking.start_time.desc(), Booking.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return BookingList(
        bookings=[booking_to_response(b, current_user) for b in rows],
        total=total,
        page=page,
        limit=limit,
    )


@router.put("/{booking_id}/status", response_model=BookingResponse)
def update_status(
    request: Request,
    booking_id: int,
    data: BookingStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    booking = get_booking_for(db, booking_id, current_user)
    if data.status == BookingStatus.DISPUTED:
        raise HTTPException(status_code=400, detail="File a dispute to dispute a booking")
    try:
        change_status(db, booking, data.status, current_user, reason=data.reason, **request_context(request))
    except BookingError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=e.message)
    post_system_message(db, booking, f"Booking {data.status.value.lower().replace('_', ' ')} by {current_user.display_name}.")
    db.commit()
    db.refresh(booking)
    return booking_to_response(booking, current_user)


@router.get("/{booking_id}", response_model=BookingResponse)
def booking_detail(
    booking_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return booking_to_response(get_booking_for(db, booking_id, current_user), current_user)
