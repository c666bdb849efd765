"""One-time codes: issue, deliver, verify."""
import logging
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from chillconnect.config import get_settings
from chillconnect.models.otp import OTP, OTPType
from chillconnect.models.user import User
from chillconnect.services.notifications import send_otp_email, send_otp_sms

logger = logging.getLogger(__name__)

CODE_LENGTH = 6


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite returns naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _generate_code() -> str:
    return "".join(secrets.choice("0123456789") for _ in range(CODE_LENGTH))


def issue_otp(db: Session, user: User, otp_type: OTPType, destination: str | None = None) -> OTP:
    """Create a fresh code, invalidating earlier unconsumed codes of the same type."""
    db.query(OTP).filter(
        OTP.user_id == user.id,
        OTP.type == otp_type,
        OTP.consumed.is_(False),
    ).update({OTP.consumed: True}, synchronize_session=False)

    otp = OTP(
        user_id=user.id,
        code=_generate_code(),
        type=otp_type,
        destination=destination,
        expires_at=utcnow() + timedelta(minutes=get_settings().otp_expire_minutes),
        consumed=False,
        attempts=0,
    )
    db.add(otp)
    db.flush()
    logger.info("OTP issued: user=%s type=%s", user.id, otp_type.value)
    return otp


def deliver_otp(otp: OTP, user: User) -> bool:
    """Send the code by SMS (phone codes) or email (everything else)."""
    if otp.type == OTPType.PHONE:
        return send_otp_sms(otp.destination or user.phone or "", otp.code)
    return send_otp_email(user.email, otp.code, otp.type.value)


def verify_otp(db: Session, user: User, otp_type: OTPType, code: str) -> tuple[bool, str, OTP | None]:
    """Check a submitted code against the newest live code of that type.

    Wrong codes count against the attempt limit; a correct code is consumed so it works once.
    Returns (ok, message, otp).
    """
    otp = (
        db.query(OTP)
        .filter(
            OTP.user_id == user.id,
            OTP.type == otp_type,
            OTP.consumed.is_(False),
        )
        .order_by(OTP.id.desc())
        .first()
    )
    if not otp or as_utc(otp.expires_at) <= utcnow():
        return False, "Invalid or expired OTP", None
    if otp.attempts >= get_settings().otp_max_attempts:
        return False, "Too many attempts. Please request a new OTP.", otp

    otp.attempts += 1
    if not secrets.compare_digest(otp.code, (code or "").strip()):
        db.flush()
        return False, "Invalid or expired OTP", otp

    otp.consumed = True
    db.flush()
    logger.info("OTP verified: user=%s type=%s", user.id, otp_type.value)
    return True, "OTP verified successfully", otp


def prune_otps(db: Session, older_than: timedelta = timedelta(days=1)) -> int:
    """Delete consumed or expired codes older than the cutoff. Returns rows deleted."""
    cutoff = utcnow() - older_than
    deleted = (
        db.query(OTP)
        .filter((OTP.expires_at < cutoff) | (OTP.consumed.is_(True) & (OTP.created_at < cutoff)))
        .delete(synchronize_session=False)
    )
    return deleted
