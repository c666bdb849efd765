"""Users, roles and the 1:1 profile extension."""
from sqlalchemy import Column, Integer, String, Enum as SQLEnum, DateTime, Date, Boolean, Float, Text, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from chillconnect.database import Base, JSONType
import enum


class UserRole(str, enum.Enum):
    SEEKER = "SEEKER"
    PROVIDER = "PROVIDER"
    EMPLOYEE = "EMPLOYEE"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


# Platform staff: can monitor bookings and work the verification queue
STAFF_ROLES = (UserRole.EMPLOYEE, UserRole.MANAGER, UserRole.ADMIN, UserRole.SUPER_ADMIN)
# Can resolve disputes and process withdrawals
MANAGER_ROLES = (UserRole.MANAGER, UserRole.ADMIN, UserRole.SUPER_ADMIN)
ADMIN_ROLES = (UserRole.ADMIN, UserRole.SUPER_ADMIN)
# Public self-registration
MEMBER_ROLES = (UserRole.SEEKER, UserRole.PROVIDER)
# suspension_reason of self-deleted accounts; such accounts are never reactivated
ACCOUNT_DELETED_REASON = "Account deleted by user"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(20), nullable=True, index=True)
    hashed_password = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.SEEKER)

    # is_verified gates booking: seekers after email verification, providers after staff approval
    is_verified = Column(Boolean, default=False, nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)
    phone_verified = Column(Boolean, default=False, nullable=False)
    age_verified = Column(Boolean, default=False, nullable=False)
    consent_given = Column(Boolean, default=False, nullable=False)

    is_suspended = Column(Boolean, default=False, nullable=False)
    suspension_reason = Column(String(500), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    profile = relationship("UserProfile", back_populates="user", uselist=False)
    wallet = relationship("TokenWallet", back_populates="user", uselist=False)

    @property
    def is_deleted(self) -> bool:
        return self.is_suspended and self.suspension_reason == ACCOUNT_DELETED_REASON

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def display_name(self) -> str:
        if self.profile and (self.profile.first_name or self.profile.last_name):
            return f"{self.profile.first_name or ''} {self.profile.last_name or ''}".strip()
        return self.email


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    date_of_birth = Column(Date, nullable=True)
    bio = Column(Text, nullable=True)
    location = Column(String(255), nullable=True, index=True)
    services = Column(JSONType, nullable=True)  # list of service names offered (providers)
    hourly_rate = Column(Integer, nullable=True)  # tokens per hour
    availability = Column(Text, nullable=True)
    profile_photo = Column(String(500), nullable=True)

    # Aggregates recomputed by services.ratings on every rating change
    average_rating = Column(Float, nullable=False, default=0.0)
    total_ratings = Column(Integer, nullable=False, default=0)
    rating_breakdown = Column(JSONType, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="profile")
