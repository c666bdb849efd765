"""Auth schemas: registration, login, OTP flows."""
import re
from datetime import date, datetime
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from chillconnect.models.user import UserRole

PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15
MIN_PASSWORD_LENGTH = 8


def normalize_phone(value: str | None) -> str:
    """Keep a leading + and digits only."""
    if not value:
        return ""
    s = value.strip()
    digits = re.sub(r"\D", "", s)
    return ("+" + digits) if s.startswith("+") else digits


def _validate_phone(value: str) -> str:
    phone = normalize_phone(value)
    digits = phone.lstrip("+")
    if len(digits) < PHONE_MIN_DIGITS:
        raise ValueError(f"Phone number must have at least {PHONE_MIN_DIGITS} digits.")
    if len(digits) > PHONE_MAX_DIGITS:
        raise ValueError(f"Phone number cannot exceed {PHONE_MAX_DIGITS} digits.")
    return phone


def _validate_password(value: str) -> str:
    if len(value or "") < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return value


class UserRegister(BaseModel):
    email: EmailStr
    password: str
    role: UserRole
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    date_of_birth: date
    phone: str | None = None
    consent_given: bool = False

    @field_validator("password")
    @classmethod
    def password_length(cls, v: str) -> str:
        return _validate_password(v)

    @field_validator("phone")
    @classmethod
    def phone_valid(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return _validate_phone(v)

    @model_validator(mode="after")
    def consent_required(self):
        if not self.consent_given:
            raise ValueError("You must give consent to the terms of service")
        return self


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class ProfileResponse(BaseModel):
    first_name: str
    last_name: str
    date_of_birth: date | None = None
    bio: str | None = None
    location: str | None = None
    services: list[str] | None = None
    hourly_rate: int | None = None
    availability: str | None = None
    profile_photo: str | None = None
    average_rating: float = 0.0
    total_ratings: int = 0
    rating_breakdown: dict[str, int] | None = None

    class Config:
        from_attributes = True


class UserResponse(BaseModel):
    id: int
    email: str
    phone: str | None = None
    role: UserRole
    is_verified: bool
    email_verified: bool
    phone_verified: bool
    age_verified: bool
    is_suspended: bool = False
    last_login_at: datetime | None = None
    created_at: datetime | None = None
    profile: ProfileResponse | None = None

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class MessageResponse(BaseModel):
    message: str


class VerifyOTPRequest(BaseModel):
    otp: str = Field(min_length=4, max_length=10)


class SendPhoneOTPRequest(BaseModel):
    phone: str

    @field_validator("phone")
    @classmethod
    def phone_valid(cls, v: str) -> str:
        return _validate_phone(v)


class LoginOTPRequest(BaseModel):
    email: EmailStr


class LoginOTPVerify(BaseModel):
    email: EmailStr
    otp: str = Field(min_length=4, max_length=10)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    otp: str = Field(min_length=4, max_length=10)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_length(cls, v: str) -> str:
        return _validate_password(v)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_length(cls, v: str) -> str:
        return _validate_password(v)
