from conftest import PASSWORD, auth_headers

from chillconnect.models.audit_log import AuditLog
from chillconnect.models.user import User, UserRole
from chillconnect.models.verification import Assignment, Verification


def _register_provider(client, email="newpro@example.com"):
    r = client.post("/auth/register", json={
        "email": email,
        "password": PASSWORD,
        "role": "PROVIDER",
        "first_name": "Neha",
        "last_name": "Kapoor",
        "date_of_birth": "1992-03-14",
        "consent_given": True,
    })
    assert r.status_code == 201
    return r.json()["user"]["id"]


def test_verification_review(client, db, make_user, outbox):
    employee = make_user(UserRole.EMPLOYEE)
    other = make_user(UserRole.EMPLOYEE)
    provider_id = _register_provider(client)

    queue = client.get("/admin/verification-queue", headers=auth_headers(employee)).json()
    assert [v["user_id"] for v in queue] == [provider_id]
    assert client.get("/admin/verification-queue", headers=auth_headers(other)).json() == []

    vid = queue[0]["id"]
    assert client.put(f"/admin/verification/{vid}", json={"approve": True}, headers=auth_headers(other)).status_code == 403
    r = client.put(f"/admin/verification/{vid}", json={"approve": True, "notes": "ID checked"}, headers=auth_headers(employee))
    assert r.status_code == 200
    assert r.json()["status"] == "APPROVED"
    assert outbox["email"][-1]["to"] == "newpro@example.com"

    db.expire_all()
    assert db.get(User, provider_id).is_verified is True
    assert db.query(Assignment).filter(Assignment.item_id == vid, Assignment.is_active.is_(True)).count() == 0
    assert client.put(f"/admin/verification/{vid}", json={"approve": False}, headers=auth_headers(employee)).status_code == 400


def test_rejected_provider_stays_hidden(client, db, make_user):
    manager = make_user(UserRole.MANAGER)
    seeker = make_user(UserRole.SEEKER)
    provider_id = _register_provider(client)
    vid = db.query(Verification).filter(Verification.user_id == provider_id).one().id

    r = client.put(f"/admin/verification/{vid}", json={"approve": False, "notes": "Blurry ID"}, headers=auth_headers(manager))
    assert r.status_code == 200
    assert client.get(f"/bookings/providers/{provider_id}", headers=auth_headers(seeker)).status_code == 404


def test_members_cannot_use_console(client, make_user):
    seeker = make_user(UserRole.SEEKER)
    assert client.get("/admin/dashboard", headers=auth_headers(seeker)).status_code == 403
    assert client.get("/admin/users", headers=auth_headers(seeker)).status_code == 403


def test_dashboard_counts(client, make_user):
    employee = make_user(UserRole.EMPLOYEE)
    make_user(UserRole.SEEKER, balance=40)
    stats = client.get("/admin/dashboard", headers=auth_headers(employee)).json()
    assert stats["users_by_role"]["SEEKER"] == 1
    assert stats["tokens_in_circulation"] == 40
    assert stats["tokens_in_escrow"] == 0


def test_role_changes(client, db, make_user):
    admin = make_user(UserRole.ADMIN)
    super_admin = make_user(UserRole.SUPER_ADMIN)
    manager = make_user(UserRole.MANAGER)
    member = make_user(UserRole.SEEKER, verified=False)

    assert client.put(f"/admin/users/{member.id}/role", json={"role": "EMPLOYEE"}, headers=auth_headers(manager)).status_code == 403
    assert client.put(f"/admin/users/{member.id}/role", json={"role": "ADMIN"}, headers=auth_headers(admin)).status_code == 403
    assert client.put(f"/admin/users/{super_admin.id}/role", json={"role": "SEEKER"}, headers=auth_headers(admin)).status_code == 403
    assert client.put(f"/admin/users/{admin.id}/role", json={"role": "SEEKER"}, headers=auth_headers(admin)).status_code == 400

    r = client.put(f"/admin/users/{member.id}/role", json={"role": "EMPLOYEE"}, headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json()["role"] == "EMPLOYEE"
    assert r.json()["is_verified"] is True
    r = client.put(f"/admin/users/{member.id}/role", json={"role": "ADMIN"}, headers=auth_headers(super_admin))
    assert r.status_code == 200


def test_suspend_and_unsuspend(client, make_user):
    manager = make_user(UserRole.MANAGER)
    employee = make_user(UserRole.EMPLOYEE)
    seeker = make_user(UserRole.SEEKER)

    assert client.put(f"/admin/users/{seeker.id}/suspend", json={"reason": "Spam"}, headers=auth_headers(employee)).status_code == 403
    assert client.put(f"/admin/users/{employee.id}/suspend", json={"reason": "Nope"}, headers=auth_headers(manager)).status_code == 403

    r = client.put(f"/admin/users/{seeker.id}/suspend", json={"reason": "Spam messages"}, headers=auth_headers(manager))
    assert r.status_code == 200
    assert r.json()["is_suspended"] is True
    assert client.get("/auth/me", headers=auth_headers(seeker)).status_code == 403

    assert client.put(f"/admin/users/{seeker.id}/unsuspend", headers=auth_headers(manager)).status_code == 200
    assert client.get("/auth/me", headers=auth_headers(seeker)).status_code == 200


def test_token_adjustment_is_audited(client, db, make_user):
    admin = make_user(UserRole.ADMIN)
    manager = make_user(UserRole.MANAGER)
    seeker = make_user(UserRole.SEEKER, balance=10)

    body = {"amount": 15, "reason": "Goodwill credit"}
    assert client.post(f"/admin/users/{seeker.id}/tokens", json=body, headers=auth_headers(manager)).status_code == 403
    r = client.post(f"/admin/users/{seeker.id}/tokens", json=body, headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json()["new_balance"] == 25

    r = client.post(f"/admin/users/{seeker.id}/tokens", json={"amount": -50, "reason": "Chargeback"}, headers=auth_headers(admin))
    assert r.status_code == 400
    assert r.json()["available"] == 25

    db.expire_all()
    assert db.query(AuditLog).filter(AuditLog.title == "Token adjustment", AuditLog.target_user_id == seeker.id).count() == 1
    logs = client.get(f"/admin/audit-logs?target_user_id={seeker.id}", headers=auth_headers(admin)).json()
    assert any(entry["title"] == "Token adjustment" for entry in logs)


def test_reassign_verification(client, db, make_user):
    first = make_user(UserRole.EMPLOYEE)
    second = make_user(UserRole.EMPLOYEE)
    manager = make_user(UserRole.MANAGER)
    _register_provider(client)

    queue = client.get("/admin/my-queue", headers=auth_headers(first)).json()
    assert len(queue) == 1
    r = client.put(
        f"/admin/assignments/{queue[0]['id']}/reassign", json={"employee_id": second.id}, headers=auth_headers(manager)
    )
    assert r.status_code == 200
    assert client.get("/admin/my-queue", headers=auth_headers(first)).json() == []
    assert len(client.get("/admin/my-queue", headers=auth_headers(second)).json()) == 1


def test_promotion_to_provider_needs_approval(client, db, make_user):
    super_admin = make_user(UserRole.SUPER_ADMIN)
    employee = make_user(UserRole.EMPLOYEE)
    member = make_user(UserRole.SEEKER, hourly_rate=20)

    r = client.put(f"/admin/users/{member.id}/role", json={"role": "PROVIDER"}, headers=auth_headers(super_admin))
    assert r.status_code == 200
    assert r.json()["is_verified"] is False
    assert client.get("/users/providers", headers=auth_headers(super_admin)).json()["providers"] == []

    db.expire_all()
    verification = db.query(Verification).filter(Verification.user_id == member.id).one()
    assert verification.employee_id == employee.id
    r = client.put(f"/admin/verification/{verification.id}", json={"approve": True}, headers=auth_headers(employee))
    assert r.status_code == 200
    listed = client.get("/users/providers", headers=auth_headers(super_admin)).json()["providers"]
    assert [p["id"] for p in listed] == [member.id]


def test_demoted_staff_hand_off_their_queue(client, db, make_user):
    super_admin = make_user(UserRole.SUPER_ADMIN)
    first = make_user(UserRole.EMPLOYEE)
    second = make_user(UserRole.EMPLOYEE)
    provider_id = _register_provider(client)
    assert len(client.get("/admin/my-queue", headers=auth_headers(first)).json()) == 1

    r = client.put(f"/admin/users/{first.id}/role", json={"role": "SEEKER"}, headers=auth_headers(super_admin))
    assert r.status_code == 200

    db.expire_all()
    assert db.query(Assignment).filter(Assignment.employee_id == first.id, Assignment.is_active.is_(True)).count() == 0
    assert len(client.get("/admin/my-queue", headers=auth_headers(second)).json()) == 1
    verification = db.query(Verification).filter(Verification.user_id == provider_id).one()
    assert verification.employee_id == second.id


def test_last_staff_member_leaving_unassigns_work(client, db, make_user):
    super_admin = make_user(UserRole.SUPER_ADMIN)
    only = make_user(UserRole.EMPLOYEE)
    provider_id = _register_provider(client)

    r = client.put(f"/admin/users/{only.id}/suspend", json={"reason": "Left the company"}, headers=auth_headers(super_admin))
    assert r.status_code == 200

    db.expire_all()
    verification = db.query(Verification).filter(Verification.user_id == provider_id).one()
    assert verification.employee_id is None
    assert verification.status.value == "PENDING"
    assert db.query(Assignment).filter(Assignment.is_active.is_(True)).count() == 0
