"""Profile, provider listing and account stats schemas."""
from datetime import datetime
from pydantic import BaseModel, Field
from chillconnect.models.user import UserRole
from chillconnect.models.verification import VerificationStatus


class ProfileUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    bio: str | None = Field(default=None, max_length=2000)
    location: str | None = Field(default=None, max_length=255)
    services: list[str] | None = None
    hourly_rate: int | None = Field(default=None, gt=0)
    availability: str | None = Field(default=None, max_length=2000)
    profile_photo: str | None = Field(default=None, max_length=500)


class ProviderSummary(BaseModel):
    id: int
    first_name: str
    last_name: str
    bio: str | None = None
    location: str | None = None
    services: list[str] | None = None
    hourly_rate: int | None = None
    availability: str | None = None
    profile_photo: str | None = None
    average_rating: float = 0.0
    total_ratings: int = 0
    rating_breakdown: dict[str, int] | None = None
    member_since: datetime | None = None


class ProviderList(BaseModel):
    providers: list[ProviderSummary]
    total: int
    page: int
    limit: int


class VerificationStatusResponse(BaseModel):
    role: UserRole
    is_verified: bool
    email_verified: bool
    phone_verified: bool
    age_verified: bool
    verification_status: VerificationStatus | None = None
    verification_notes: str | None = None
    reviewed_at: datetime | None = None


class UserStats(BaseModel):
    total_bookings: int
    completed_bookings: int
    cancelled_bookings: int
    active_bookings: int
    balance: int
    escrow_balance: int
    total_earned: int
    total_spent: int
    average_rating: float | None = None
    total_ratings: int | None = None
