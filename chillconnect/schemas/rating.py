"""Rating schemas."""
from datetime import datetime
from pydantic import BaseModel, Field


class RatingCreate(BaseModel):
    booking_id: int
    rating: int = Field(ge=1, le=5)
    review: str | None = Field(default=None, max_length=500)
    anonymous: bool = False


class RatingResponseCreate(BaseModel):
    response: str = Field(min_length=1, max_length=500)


class RatingResponse(BaseModel):
    id: int
    booking_id: int
    provider_id: int
    seeker_id: int | None = None  # hidden for anonymous ratings
    seeker_name: str | None = None
    rating: int
    review: str | None = None
    anonymous: bool
    provider_response: str | None = None
    responded_at: datetime | None = None
    created_at: datetime | None = None


class ProviderRatings(BaseModel):
    provider_id: int
    average_rating: float
    total_ratings: int
    rating_breakdown: dict[str, int]
    ratings: list[RatingResponse]
