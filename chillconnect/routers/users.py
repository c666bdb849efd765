"""Own profile and account, provider directory."""
import logging
import secrets
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func
from sqlalchemy.orm import Session, contains_eager

from chillconnect.database import get_db
from chillconnect.dependencies import get_current_user
from chillconnect.models.booking import Booking, BookingStatus, ACTIVE_STATUSES
from chillconnect.models.user import ACCOUNT_DELETED_REASON, User, UserProfile, UserRole
from chillconnect.models.verification import Verification
from chillconnect.schemas.auth import ChangePasswordRequest, MessageResponse, ProfileResponse
from chillconnect.schemas.user import ProfileUpdate, ProviderList, ProviderSummary, UserStats, VerificationStatusResponse
from chillconnect.services import ledger
from chillconnect.services.audit_log import create_log, request_context, CATEGORY_ACCOUNT
from chillconnect.services.auth import get_password_hash, verify_password
from chillconnect.services.bookings import provider_query

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


def provider_summary(user: User) -> ProviderSummary:
    p = user.profile
    return ProviderSummary(
        id=user.id,
        first_name=p.first_name,
        last_name=p.last_name,
        bio=p.bio,
        location=p.location,
        services=p.services or [],
        hourly_rate=p.hourly_rate,
        availability=p.availability,
        profile_photo=p.profile_photo,
        average_rating=p.average_rating or 0.0,
        total_ratings=p.total_ratings or 0,
        rating_breakdown=p.rating_breakdown,
        member_since=user.created_at,
    )


def search_providers(
    db: Session,
    location: str | None,
    service: str | None,
    min_rating: float | None,
    max_rate: int | None,
    page: int,
    limit: int,
) -> ProviderList:
    """Verified providers matching the filters, best rated first."""
    q = provider_query(db).join(UserProfile, UserProfile.user_id == User.id).options(contains_eager(User.profile))
    if location:
        q = q.filter(UserProfile.location.ilike(f"%{location.strip()}%"))
    if min_rating is not None:
        q = q.filter(UserProfile.average_rating >= min_rating)
    if max_rate is not None:
        q = q.filter(UserProfile.hourly_rate <= max_rate)
    q = q.order_by(UserProfile.average_rating.desc(), UserProfile.total_ratings.desc(), User.id.asc())
    providers = q.all()
    if service:
        # services is a JSON list; filter in Python so SQLite and PostgreSQL behave the same
        wanted = service.strip().lower()
        providers = [u for u in providers if any(wanted in (s or "").lower() for s in (u.profile.services or []))]
    total = len(providers)
    start = (page - 1) * limit
    return ProviderList(
        providers=[provider_summary(u) for u in providers[start:start + limit]],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/profile", response_model=ProfileResponse)
def get_profile(current_user: User = Depends(get_current_user)):
    if not current_user.profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return ProfileResponse.model_validate(current_user.profile)


@router.put("/profile", response_model=ProfileResponse)
def update_profile(
    data: ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    profile = current_user.profile
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    changes = data.model_dump(exclude_unset=True)
    if current_user.role != UserRole.PROVIDER:
        for field in ("services", "hourly_rate", "availability"):
            if changes.pop(field, None) is not None:
                raise HTTPException(status_code=400, detail=f"Only providers can set {field.replace('_', ' ')}")
    for field, value in changes.items():
        setattr(profile, field, value.strip() if isinstance(value, str) else value)
    if "services" in changes and changes["services"] is not None:
        profile.services = [s.strip() for s in changes["services"] if s and s.strip()]
    db.commit()
    db.refresh(profile)
    return ProfileResponse.model_validate(profile)


@router.put("/password", response_model=MessageResponse)
def change_password(
    request: Request,
    data: ChangePasswordRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not verify_password(data.current_password, current_user.hashed_password):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    current_user.hashed_password = get_password_hash(data.new_password)
    create_log(
        db,
        CATEGORY_ACCOUNT,
        "Password changed",
        f"Password changed for {current_user.email}.",
        target_user_id=current_user.id,
        actor_user_id=current_user.id,
        actor_email=current_user.email,
        **request_context(request),
    )
    db.commit()
    return MessageResponse(message="Password updated successfully")


@router.get("/verification-status", response_model=VerificationStatusResponse)
def verification_status(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    latest = (
        db.query(Verification)
        .filter(Verification.user_id == current_user.id)
        .order_by(Verification.id.desc())
        .first()
    )
    return VerificationStatusResponse(
        role=current_user.role,
        is_verified=current_user.is_verified,
        email_verified=current_user.email_verified,
        phone_verified=current_user.phone_verified,
        age_verified=current_user.age_verified,
        verification_status=latest.status if latest else None,
        verification_notes=latest.notes if latest else None,
        reviewed_at=latest.reviewed_at if latest else None,
    )


@router.get("/stats", response_model=UserStats)
def stats(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    column = Booking.provider_id if current_user.role == UserRole.PROVIDER else Booking.seeker_id
    counts = dict(
        db.query(Booking.status, func.count(Booking.id))
        .filter(column == current_user.id)
        .group_by(Booking.status)
        .all()
    )
    wallet = ledger.get_wallet(db, current_user.id)
    profile = current_user.profile
    is_provider = current_user.role == UserRole.PROVIDER
    return UserStats(
        total_bookings=sum(counts.values()),
        completed_bookings=counts.get(BookingStatus.COMPLETED, 0),
        cancelled_bookings=counts.get(BookingStatus.CANCELLED, 0),
        active_bookings=sum(counts.get(s, 0) for s in ACTIVE_STATUSES),
        balance=wallet.balance,
        escrow_balance=wallet.escrow_balance,
        total_earned=wallet.total_earned,
        total_spent=wallet.total_spent,
        average_rating=profile.average_rating if is_provider and profile else None,
        total_ratings=profile.total_ratings if is_provider and profile else None,
    )


@router.get("/providers", response_model=ProviderList)
def list_providers(
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
def provider_profile(
    provider_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    provider = provider_query(db).filter(User.id == provider_id).first()
    if not provider or not provider.profile:
        raise HTTPException(status_code=404, detail="Provider not found")
    return provider_summary(provider)


@router.delete("/account", response_model=MessageResponse)
def delete_account(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if current_user.is_staff:
        raise HTTPException(status_code=400, detail="Staff accounts are removed by an administrator")
    held = ledger.held_escrow_total(db, current_user.id)
    active_as_provider = (
        db.query(Booking.id)
        .filter(Booking.provider_id == current_user.id, Booking.status.in_(ACTIVE_STATUSES + (BookingStatus.DISPUTED,)))
        .first()
    )
    if held or active_as_provider:
        raise HTTPException(status_code=400, detail="You have bookings in progress. Complete or cancel them before deleting your account.")

    # Bookings, ledger rows and audit entries reference the user, so the account is closed rather than removed
    current_user.is_suspended = True
    current_user.suspension_reason = ACCOUNT_DELETED_REASON
    current_user.email = f"deleted-{current_user.id}@deleted.invalid"
    current_user.phone = None
    current_user.hashed_password = get_password_hash(secrets.token_urlsafe(32))
    create_log(
        db,
        CATEGORY_ACCOUNT,
        "Account deleted",
        f"User {current_user.id} deleted their account.",
        target_user_id=current_user.id,
        actor_user_id=current_user.id,
        **request_context(request),
    )
    db.commit()
    logger.info("Account closed by user %s", current_user.id)
    return MessageResponse(message="Account deleted")
