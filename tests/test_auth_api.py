from datetime import date, datetime, timedelta, timezone

from conftest import PASSWORD, auth_headers

from chillconnect.models.otp import OTP, OTPType
from chillconnect.models.user import User, UserRole
from chillconnect.models.verification import Verification, VerificationStatus


def _payload(**overrides):
    data = {
        "email": "Asha@Example.com",
        "password": PASSWORD,
        "role": "SEEKER",
        "first_name": "Asha",
        "last_name": "Rao",
        "date_of_birth": "1995-05-20",
        "phone": "+91 98765 43210",
        "consent_given": True,
    }
    data.update(overrides)
    return data


def _latest_code(db, user_id, otp_type):
    db.expire_all()
    return (
        db.query(OTP)
        .filter(OTP.user_id == user_id, OTP.type == otp_type, OTP.consumed.is_(False))
        .order_by(OTP.id.desc())
        .first()
        .code
    )


def test_register_seeker_sends_otp(client, db, outbox):
    r = client.post("/auth/register", json=_payload())
    assert r.status_code == 201
    body = r.json()
    assert body["user"]["email"] == "asha@example.com"
    assert body["user"]["phone"] == "+919876543210"
    assert body["user"]["is_verified"] is False
    assert body["user"]["profile"]["first_name"] == "Asha"

    user = db.query(User).filter(User.email == "asha@example.com").one()
    assert user.wallet.balance == 0
    subjects = [m["subject"] for m in outbox["email"]]
    assert any("code" in s.lower() or "verif" in s.lower() for s in subjects)


def test_register_provider_queues_verification(client, db, make_user):
    employee = make_user(UserRole.EMPLOYEE)
    r = client.post("/auth/register", json=_payload(email="pro@example.com", role="PROVIDER"))
    assert r.status_code == 201
    v = db.query(Verification).one()
    assert v.employee_id == employee.id
    assert v.status == VerificationStatus.IN_PROGRESS


def test_register_rejects_minors_staff_and_duplicates(client):
    today = date.today()
    minor_dob = date(today.year - 17, 1, 1).isoformat()
    assert client.post("/auth/register", json=_payload(date_of_birth=minor_dob)).status_code == 400
    assert client.post("/auth/register", json=_payload(role="ADMIN")).status_code == 400
    assert client.post("/auth/register", json=_payload(consent_given=False)).status_code == 422
    assert client.post("/auth/register", json=_payload(password="short")).status_code == 422

    assert client.post("/auth/register", json=_payload()).status_code == 201
    dup = client.post("/auth/register", json=_payload(email="ASHA@example.com"))
    assert dup.status_code == 400


def test_login_and_me(client, make_user):
    user = make_user(UserRole.SEEKER, email="login@example.com")
    r = client.post("/auth/login", json={"email": "LOGIN@example.com", "password": PASSWORD})
    assert r.status_code == 200
    token = r.json()["access_token"]
    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["id"] == user.id

    assert client.post("/auth/login", json={"email": "login@example.com", "password": "wrong-pass"}).status_code == 401
    assert client.get("/auth/me").status_code == 401


def test_suspended_user_is_locked_out(client, db, make_user):
    user = make_user(UserRole.SEEKER, email="gone@example.com")
    headers = auth_headers(user)
    user.is_suspended = True
    db.commit()
    assert client.post("/auth/login", json={"email": "gone@example.com", "password": PASSWORD}).status_code == 403
    assert client.get("/auth/me", headers=headers).status_code == 403


def test_email_otp_verifies_seeker(client, db):
    r = client.post("/auth/register", json=_payload())
    headers = {"Authorization": f"Bearer {r.json()['access_token']}"}
    user_id = r.json()["user"]["id"]

    code = _latest_code(db, user_id, OTPType.EMAIL)
    wrong = "000000" if code != "000000" else "999999"
    assert client.post("/auth/verify-email-otp", json={"otp": wrong}, headers=headers).status_code == 400

    ok = client.post("/auth/verify-email-otp", json={"otp": code}, headers=headers)
    assert ok.status_code == 200
    assert ok.json()["email_verified"] is True
    assert ok.json()["is_verified"] is True

    # a code works once
    again = client.post("/auth/verify-email-otp", json={"otp": code}, headers=headers)
    assert again.status_code == 400


def test_otp_attempt_limit(client, db, make_user):
    user = make_user(UserRole.SEEKER, verified=False)
    headers = auth_headers(user)
    assert client.post("/auth/send-email-otp", headers=headers).status_code == 200
    code = _latest_code(db, user.id, OTPType.EMAIL)
    wrong = "111111" if code != "111111" else "222222"
    for _ in range(5):
        assert client.post("/auth/verify-email-otp", json={"otp": wrong}, headers=headers).status_code == 400
    r = client.post("/auth/verify-email-otp", json={"otp": code}, headers=headers)
    assert r.status_code == 400
    assert "Too many attempts" in r.json()["detail"]


def test_expired_otp_rejected(client, db, make_user):
    user = make_user(UserRole.SEEKER, verified=False)
    headers = auth_headers(user)
    client.post("/auth/send-email-otp", headers=headers)
    db.expire_all()
    otp = db.query(OTP).filter(OTP.user_id == user.id).order_by(OTP.id.desc()).first()
    otp.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    db.commit()
    r = client.post("/auth/verify-email-otp", json={"otp": otp.code}, headers=headers)
    assert r.status_code == 400


def test_phone_otp_sent_by_sms(client, db, make_user, outbox):
    user = make_user(UserRole.SEEKER)
    headers = auth_headers(user)
    r = client.post("/auth/send-phone-otp", json={"phone": "+1 415 555 0100"}, headers=headers)
    assert r.status_code == 200
    assert outbox["sms"][-1]["to"] == "+14155550100"

    code = _latest_code(db, user.id, OTPType.PHONE)
    r = client.post("/auth/verify-phone-otp", json={"otp": code}, headers=headers)
    assert r.status_code == 200
    assert r.json()["phone_verified"] is True
    assert r.json()["phone"] == "+14155550100"


def test_login_otp_flow(client, db, make_user):
    user = make_user(UserRole.SEEKER, email="otp@example.com")
    unknown = client.post("/auth/login-otp/request", json={"email": "nobody@example.com"})
    known = client.post("/auth/login-otp/request", json={"email": "otp@example.com"})
    assert unknown.status_code == known.status_code == 200
    assert unknown.json() == known.json()

    code = _latest_code(db, user.id, OTPType.LOGIN)
    r = client.post("/auth/login-otp/verify", json={"email": "otp@example.com", "otp": code})
    assert r.status_code == 200
    assert r.json()["user"]["id"] == user.id


def test_password_reset(client, db, make_user):
    user = make_user(UserRole.PROVIDER, email="reset@example.com")
    assert client.post("/auth/forgot-password", json={"email": "reset@example.com"}).status_code == 200
    code = _latest_code(db, user.id, OTPType.PASSWORD_RESET)

    r = client.post(
        "/auth/reset-password",
        json={"email": "reset@example.com", "otp": code, "new_password": "NewPassword456"},
    )
    assert r.status_code == 200
    assert client.post("/auth/login", json={"email": "reset@example.com", "password": PASSWORD}).status_code == 401
    assert client.post("/auth/login", json={"email": "reset@example.com", "password": "NewPassword456"}).status_code == 200
