"""Registration, login and OTP verification flows."""
import logging
from datetime import date, datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError

from chillconnect.config import get_settings
from chillconnect.database import get_db
from chillconnect.dependencies import get_current_user
from chillconnect.models.otp import OTPType
from chillconnect.models.user import User, UserProfile, UserRole, MEMBER_ROLES
from chillconnect.models.verification import Verification, VerificationStatus
from chillconnect.schemas.auth import (
    ForgotPasswordRequest,
    LoginOTPRequest,
    LoginOTPVerify,
    MessageResponse,
    ResetPasswordRequest,
    SendPhoneOTPRequest,
    Token,
    UserLogin,
    UserRegister,
    UserResponse,
    VerifyOTPRequest,
)
from chillconnect.services import ledger
from chillconnect.services.assignment import assign_verification
from chillconnect.services.audit_log import create_log, request_context, CATEGORY_ACCOUNT
from chillconnect.services.auth import create_access_token, get_password_hash, verify_password
from chillconnect.services.notifications import send_welcome_email
from chillconnect.services.otp import deliver_otp, issue_otp, verify_otp

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def age_on(dob: date, today: date) -> int:
    return today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))


def _load_user(db: Session, user_id: int) -> User:
    return db.query(User).options(joinedload(User.profile)).filter(User.id == user_id).one()


def _token_for(db: Session, user: User) -> Token:
    user = _load_user(db, user.id)
    token = create_access_token(user.id, user.email, user.role)
    return Token(access_token=token, user=UserResponse.model_validate(user))


def _find_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == email.strip().lower()).first()


def _mark_login(db: Session, user: User) -> None:
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()


@router.post("/register", response_model=Token, status_code=201)
def register(request: Request, data: UserRegister, db: Session = Depends(get_db)):
    settings = get_settings()
    if data.role not in MEMBER_ROLES:
        raise HTTPException(status_code=400, detail="You can only register as a seeker or a provider")
    if age_on(data.date_of_birth, date.today()) < settings.min_age_years:
        raise HTTPException(status_code=400, detail=f"You must be at least {settings.min_age_years} years old")
    email = data.email.strip().lower()
    if _find_by_email(db, email):
        raise HTTPException(status_code=400, detail="An account with this email already exists")

    user = User(
        email=email,
        phone=data.phone,
        hashed_password=get_password_hash(data.password),
        role=data.role,
        age_verified=True,
        consent_given=True,
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="An account with this email already exists")

    db.add(UserProfile(
        user_id=user.id,
        first_name=data.first_name.strip(),
        last_name=data.last_name.strip(),
        date_of_birth=data.date_of_birth,
        rating_breakdown={str(i): 0 for i in range(1, 6)},
    ))
    ledger.create_wallet(db, user.id)
    if user.role == UserRole.PROVIDER:
        verification = Verification(user_id=user.id, status=VerificationStatus.PENDING)
        db.add(verification)
        db.flush()
        assign_verification(db, verification)

    otp = issue_otp(db, user, OTPType.EMAIL, destination=user.email)
    create_log(
        db,
        CATEGORY_ACCOUNT,
        "Account registered",
        f"{user.role.value.title()} account registered: {user.email}.",
        target_user_id=user.id,
        actor_user_id=user.id,
        actor_email=user.email,
        **request_context(request),
    )
    db.commit()

    if not deliver_otp(otp, user):
        logger.warning("Registration OTP not delivered for user %s", user.id)
    send_welcome_email(user.email, data.first_name.strip(), user.role.value)
    logger.info("User registered: %s role=%s", user.id, user.role.value)
    return _token_for(db, user)


@router.post("/login", response_model=Token)
def login(request: Request, data: UserLogin, db: Session = Depends(get_db)):
    user = _find_by_email(db, data.email)
    if not user or not verify_password(data.password, user.hashed_password):
        create_log(
            db,
            CATEGORY_ACCOUNT,
            "Login failed",
            f"Failed login attempt for email: {data.email}.",
            actor_email=data.email,
            meta={"reason": "invalid_email_or_password"},
            **request_context(request),
        )
        db.commit()
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if user.is_suspended:
        raise HTTPException(status_code=403, detail="Account suspended. Please contact support.")
    _mark_login(db, user)
    return _token_for(db, user)


@router.get("/me", response_model=UserResponse)
def me(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return UserResponse.model_validate(_load_user(db, current_user.id))


@router.post("/send-email-otp", response_model=MessageResponse)
def send_email_otp(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    if current_user.email_verified:
        raise HTTPException(status_code=400, detail="Email is already verified")
    otp = issue_otp(db, current_user, OTPType.EMAIL, destination=current_user.email)
    db.commit()
    if not deliver_otp(otp, current_user):
        raise HTTPException(status_code=503, detail="Could not send the verification email. Please try again later.")
    return MessageResponse(message="OTP sent to your email")


@router.post("/verify-email-otp", response_model=UserResponse)
def verify_email_otp(
    request: Request,
    data: VerifyOTPRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ok, message, _ = verify_otp(db, current_user, OTPType.EMAIL, data.otp)
    if not ok:
        db.commit()  # persist the attempt count
        raise HTTPException(status_code=400, detail=message)
    current_user.email_verified = True
    # Providers are verified by staff review; seekers by email
    if current_user.role == UserRole.SEEKER:
        current_user.is_verified = True
    create_log(
        db,
        CATEGORY_ACCOUNT,
        "Email verified",
        f"Email verified for {current_user.email}.",
        target_user_id=current_user.id,
        actor_user_id=current_user.id,
        actor_email=current_user.email,
        **request_context(request),
    )
    db.commit()
    return UserResponse.model_validate(_load_user(db, current_user.id))


@router.post("/send-phone-otp", response_model=MessageResponse)
def send_phone_otp(
    data: SendPhoneOTPRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    taken = db.query(User).filter(User.phone == data.phone, User.id != current_user.id, User.phone_verified.is_(True)).first()
    if taken:
        raise HTTPException(status_code=400, detail="This phone number is already in use")
    otp = issue_otp(db, current_user, OTPType.PHONE, destination=data.phone)
    db.commit()
    if not deliver_otp(otp, current_user):
        raise HTTPException(status_code=503, detail="Could not send the SMS. Please try again later.")
    return MessageResponse(message="OTP sent to your phone")


@router.post("/verify-phone-otp", response_model=UserResponse)
def verify_phone_otp(
    data: VerifyOTPRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ok, message, otp = verify_otp(db, current_user, OTPType.PHONE, data.otp)
    if not ok:
        db.commit()
        raise HTTPException(status_code=400, detail=message)
    current_user.phone = otp.destination or current_user.phone
    current_user.phone_verified = True
    db.commit()
    return UserResponse.model_validate(_load_user(db, current_user.id))


@router.post("/login-otp/request", response_model=MessageResponse)
def request_login_otp(data: LoginOTPRequest, db: Session = Depends(get_db)):
    user = _find_by_email(db, data.email)
    # Same answer whether or not the account exists
    if user and not user.is_suspended:
        otp = issue_otp(db, user, OTPType.LOGIN, destination=user.email)
        db.commit()
        deliver_otp(otp, user)
    return MessageResponse(message="If the account exists, a login code has been sent")


@router.post("/login-otp/verify", response_model=Token)
def verify_login_otp(request: Request, data: LoginOTPVerify, db: Session = Depends(get_db)):
    user = _find_by_email(db, data.email)
    if not user:
        raise HTTPException(status_code=400, detail="Invalid or expired OTP")
    if user.is_suspended:
        raise HTTPException(status_code=403, detail="Account suspended. Please contact support.")
    ok, message, _ = verify_otp(db, user, OTPType.LOGIN, data.otp)
    if not ok:
        create_log(
            db,
            CATEGORY_ACCOUNT,
            "OTP login failed",
            f"Failed OTP login for {user.email}: {message}",
            target_user_id=user.id,
            actor_email=user.email,
            **request_context(request),
        )
        db.commit()
        raise HTTPException(status_code=400, detail=message)
    # Receiving the code proves control of the inbox
    user.email_verified = True
    if user.role == UserRole.SEEKER:
        user.is_verified = True
    _mark_login(db, user)
    return _token_for(db, user)


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(data: ForgotPasswordRequest, db: Session = Depends(get_db)):
    user = _find_by_email(db, data.email)
    if user:
        otp = issue_otp(db, user, OTPType.PASSWORD_RESET, destination=user.email)
        db.commit()
        deliver_otp(otp, user)
    return MessageResponse(message="If the account exists, a reset code has been sent")


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(request: Request, data: ResetPasswordRequest, db: Session = Depends(get_db)):
    user = _find_by_email(db, data.email)
    if not user:
        raise HTTPException(status_code=400, detail="Invalid or expired OTP")
    ok, message, _ = verify_otp(db, user, OTPType.PASSWORD_RESET, data.otp)
    if not ok:
        db.commit()
        raise HTTPException(status_code=400, detail=message)
    user.hashed_password = get_password_hash(data.new_password)
    create_log(
        db,
        CATEGORY_ACCOUNT,
        "Password reset",
        f"Password reset via OTP for {user.email}.",
        target_user_id=user.id,
        actor_email=user.email,
        **request_context(request),
    )
    db.commit()
    return MessageResponse(message="Password reset successfully")


@router.post("/logout", response_model=MessageResponse)
def logout(current_user: User = Depends(get_current_user)):
    # Tokens are stateless; the client discards its copy
    return MessageResponse(message="Logged out successfully")
