from datetime import datetime, timedelta, timezone

from chillconnect.jobs import run_otp_prune_job
from chillconnect.models.otp import OTP, OTPType
from chillconnect.models.user import UserRole
from chillconnect.services.otp import prune_otps


def _otp(db, user, *, created_ago, expires_in, consumed=False):
    now = datetime.now(timezone.utc)
    otp = OTP(
        user_id=user.id,
        code="123456",
        type=OTPType.EMAIL,
        destination=user.email,
        created_at=now - created_ago,
        expires_at=now + expires_in,
        consumed=consumed,
    )
    db.add(otp)
    db.flush()
    return otp.id


def _seed(db, user):
    return {
        "old_expired": _otp(db, user, created_ago=timedelta(days=2), expires_in=-timedelta(days=2) + timedelta(minutes=10)),
        "old_consumed": _otp(db, user, created_ago=timedelta(days=2), expires_in=timedelta(hours=1), consumed=True),
        "recent_consumed": _otp(db, user, created_ago=timedelta(hours=1), expires_in=timedelta(minutes=5), consumed=True),
        "recently_expired": _otp(db, user, created_ago=timedelta(minutes=20), expires_in=-timedelta(minutes=10)),
        "live": _otp(db, user, created_ago=timedelta(0), expires_in=timedelta(minutes=10)),
    }


def test_prune_removes_only_day_old_dead_codes(db, make_user):
    user = make_user(UserRole.SEEKER)
    ids = _seed(db, user)

    assert prune_otps(db) == 2
    db.commit()

    remaining = {otp_id for (otp_id,) in db.query(OTP.id).all()}
    assert remaining == {ids["recent_consumed"], ids["recently_expired"], ids["live"]}


def test_prune_job_commits_in_its_own_session(db, make_user):
    user = make_user(UserRole.SEEKER)
    ids = _seed(db, user)
    db.commit()

    assert run_otp_prune_job() == 2
    db.expire_all()
    remaining = {otp_id for (otp_id,) in db.query(OTP.id).all()}
    assert ids["old_expired"] not in remaining
    assert ids["old_consumed"] not in remaining
    assert ids["live"] in remaining
