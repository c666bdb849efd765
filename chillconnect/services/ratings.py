"""Provider rating aggregates."""
from sqlalchemy.orm import Session

from chillconnect.models.rating import Rating
from chillconnect.models.user import UserProfile


def update_provider_rating(db: Session, provider_id: int) -> UserProfile | None:
    """Recompute average, count and 1..5 breakdown on the provider's profile."""
    profile = db.query(UserProfile).filter(UserProfile.user_id == provider_id).first()
    if not profile:
        return None
    stars = [r for (r,) in db.query(Rating.rating).filter(Rating.provider_id == provider_id).all()]
    breakdown = {str(i): 0 for i in range(1, 6)}
    for s in stars:
        breakdown[str(s)] += 1
    profile.total_ratings = len(stars)
    profile.average_rating = round(sum(stars) / len(stars), 2) if stars else 0.0
    profile.rating_breakdown = breakdown
    db.flush()
    return profile
