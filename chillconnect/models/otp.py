"""Short-lived one-time codes for email/phone verification, OTP login and password reset."""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.sql import func
from chillconnect.database import Base
import enum


class OTPType(str, enum.Enum):
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    LOGIN = "LOGIN"
    PASSWORD_RESET = "PASSWORD_RESET"


class OTP(Base):
    __tablename__ = "otps"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    code = Column(String(10), nullable=False)
    type = Column(SQLEnum(OTPType), nullable=False)
    # Target the code was sent to (new phone number for phone verification)
    destination = Column(String(255), nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed = Column(Boolean, nullable=False, default=False)
    attempts = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
