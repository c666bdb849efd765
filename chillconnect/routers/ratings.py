"""Provider ratings and reviews."""
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from chillconnect.database import get_db
from chillconnect.dependencies import get_current_user, require_provider, require_seeker
from chillconnect.models.booking import Booking, BookingStatus
from chillconnect.models.rating import Rating
from chillconnect.models.user import User, UserProfile, UserRole, ADMIN_ROLES
from chillconnect.schemas.auth import MessageResponse
from chillconnect.schemas.rating import ProviderRatings, RatingCreate, RatingResponse, RatingResponseCreate
from chillconnect.services.ratings import update_provider_rating

router = APIRouter(prefix="/ratings", tags=["ratings"])


def rating_to_response(rating: Rating, viewer: User | None = None) -> RatingResponse:
    """Anonymous ratings hide the seeker from everyone but the author and admins."""
    reveal = not rating.anonymous or (viewer is not None and (viewer.id == rating.seeker_id or viewer.role in ADMIN_ROLES))
    return RatingResponse(
        id=rating.id,
        booking_id=rating.booking_id,
        provider_id=rating.provider_id,
        seeker_id=rating.seeker_id if reveal else None,
        seeker_name=(rating.seeker.display_name if rating.seeker else None) if reveal else "Anonymous",
        rating=rating.rating,
        review=rating.review,
        anonymous=rating.anonymous,
        provider_response=rating.provider_response,
        responded_at=rating.responded_at,
        created_at=rating.created_at,
    )


def _get_rating(db: Session, rating_id: int) -> Rating:
    rating = db.query(Rating).filter(Rating.id == rating_id).first()
    if not rating:
        raise HTTPException(status_code=404, detail="Rating not found")
    return rating


@router.post("", response_model=RatingResponse, status_code=201)
def submit(data: RatingCreate, db: Session = Depends(get_db), current_user: User = Depends(require_seeker)):
    booking = db.query(Booking).filter(Booking.id == data.booking_id).first()
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    if booking.seeker_id != current_user.id:
        raise HTTPException(status_code=403, detail="You can only rate your own bookings")
    if booking.status != BookingStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="Only completed bookings can be rated")
    if db.query(Rating).filter(Rating.booking_id == booking.id).first():
        raise HTTPException(status_code=400, detail="This booking has already been rated")

    rating = Rating(
        booking_id=booking.id,
        seeker_id=current_user.id,
        provider_id=booking.provider_id,
        rating=data.rating,
        review=(data.review or "").strip() or None,
        anonymous=data.anonymous,
    )
    db.add(rating)
    db.flush()
    update_provider_rating(db, booking.provider_id)
    db.commit()
    db.refresh(rating)
    return rating_to_response(rating, current_user)


@router.get("/provider/{provider_id}", response_model=ProviderRatings)
def provider_ratings(
    provider_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    profile = (
        db.query(UserProfile)
        .join(User, User.id == UserProfile.user_id)
        .filter(UserProfile.user_id == provider_id, User.role == UserRole.PROVIDER)
        .first()
    )
    if not profile:
        raise HTTPException(status_code=404, detail="Provider not found")
    rows = (
        db.query(Rating)
        .filter(Rating.provider_id == provider_id)
        .order_by(Rating.created_at.desc(), Rating.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return ProviderRatings(
        provider_id=provider_id,
        average_rating=profile.average_rating or 0.0,
        total_ratings=profile.total_ratings or 0,
        rating_breakdown=profile.rating_breakdown or {str(i): 0 for i in range(1, 6)},
        ratings=[rating_to_response(r, current_user) for r in rows],
    )


@router.put("/{rating_id}/response", response_model=RatingResponse)
def respond(
    rating_id: int,
    data: RatingResponseCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_provider),
):
    rating = _get_rating(db, rating_id)
    if rating.provider_id != current_user.id:
        raise HTTPException(status_code=403, detail="You can only respond to your own ratings")
    rating.provider_response = data.response.strip()
    rating.responded_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(rating)
    return rating_to_response(rating, current_user)


@router.get("/my", response_model=list[RatingResponse])
def my_ratings(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    rows = db.query(Rating).filter(Rating.seeker_id == current_user.id).order_by(Rating.id.desc()).all()
    return [rating_to_response(r, current_user) for r in rows]


@router.get("/received", response_model=list[RatingResponse])
def received_ratings(db: Session = Depends(get_db), current_user: User = Depends(require_provider)):
    rows = db.query(Rating).filter(Rating.provider_id == current_user.id).order_by(Rating.id.desc()).all()
    return [rating_to_response(r, current_user) for r in rows]


@router.delete("/{rating_id}", response_model=MessageResponse)
def delete(rating_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    rating = _get_rating(db, rating_id)
    if rating.seeker_id != current_user.id and current_user.role not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Access denied")
    provider_id = rating.provider_id
    db.delete(rating)
    db.flush()
    update_provider_rating(db, provider_id)
    db.commit()
    return MessageResponse(message="Rating deleted")
