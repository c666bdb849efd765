from conftest import PASSWORD, auth_headers, future

from chillconnect.models.user import User, UserRole
from chillconnect.services.auth import verify_password


def test_provider_profile_update(client, make_user):
    provider = make_user(UserRole.PROVIDER)
    r = client.put(
        "/users/profile",
        json={"bio": "Certified therapist", "hourly_rate": 30, "services": [" massage ", "", "yoga"], "location": "Pune"},
        headers=auth_headers(provider),
    )
    assert r.status_code == 200
    assert r.json()["services"] == ["massage", "yoga"]
    assert r.json()["hourly_rate"] == 30

    seeker = make_user(UserRole.SEEKER)
    public = client.get(f"/users/providers/{provider.id}", headers=auth_headers(seeker)).json()
    assert public["bio"] == "Certified therapist"
    only_yoga = client.get("/users/providers?service=YOGA", headers=auth_headers(seeker)).json()
    assert only_yoga["total"] == 1


def test_seeker_cannot_set_provider_fields(client, make_user):
    seeker = make_user(UserRole.SEEKER)
    assert client.put("/users/profile", json={"hourly_rate": 10}, headers=auth_headers(seeker)).status_code == 400
    assert client.put("/users/profile", json={"first_name": "Ravi"}, headers=auth_headers(seeker)).json()["first_name"] == "Ravi"


def test_change_password(client, make_user):
    user = make_user(UserRole.SEEKER, email="pw@example.com")
    headers = auth_headers(user)
    bad = {"current_password": "wrong-one", "new_password": "Another123"}
    assert client.put("/users/password", json=bad, headers=headers).status_code == 400
    ok = {"current_password": PASSWORD, "new_password": "Another123"}
    assert client.put("/users/password", json=ok, headers=headers).status_code == 200
    assert client.post("/auth/login", json={"email": "pw@example.com", "password": "Another123"}).status_code == 200


def test_verification_status_and_stats(client, make_user):
    seeker = make_user(UserRole.SEEKER, balance=100)
    provider = make_user(UserRole.PROVIDER, hourly_rate=20)
    client.post(
        "/bookings",
        json={"provider_id": provider.id, "type": "INCALL", "start_time": future(), "duration": 60},
        headers=auth_headers(seeker),
    )

    status = client.get("/users/verification-status", headers=auth_headers(seeker)).json()
    assert status["is_verified"] is True
    assert status["verification_status"] is None

    seeker_stats = client.get("/users/stats", headers=auth_headers(seeker)).json()
    assert (seeker_stats["active_bookings"], seeker_stats["escrow_balance"], seeker_stats["balance"]) == (1, 20, 80)
    assert seeker_stats["average_rating"] is None
    provider_stats = client.get("/users/stats", headers=auth_headers(provider)).json()
    assert provider_stats["total_bookings"] == 1
    assert provider_stats["average_rating"] == 0.0


def test_delete_account(client, db, make_user):
    seeker = make_user(UserRole.SEEKER, balance=100, email="leaving@example.com")
    provider = make_user(UserRole.PROVIDER, hourly_rate=20)
    employee = make_user(UserRole.EMPLOYEE)
    booking_id = client.post(
        "/bookings",
        json={"provider_id": provider.id, "type": "INCALL", "start_time": future(), "duration": 60},
        headers=auth_headers(seeker),
    ).json()["id"]

    assert client.delete("/users/account", headers=auth_headers(employee)).status_code == 400
    assert client.delete("/users/account", headers=auth_headers(seeker)).status_code == 400
    assert client.delete("/users/account", headers=auth_headers(provider)).status_code == 400

    client.put(f"/bookings/{booking_id}/status", json={"status": "CANCELLED"}, headers=auth_headers(seeker))
    assert client.delete("/users/account", headers=auth_headers(seeker)).status_code == 200

    db.expire_all()
    closed = db.get(User, seeker.id)
    assert closed.is_suspended
    assert closed.email == f"deleted-{seeker.id}@deleted.invalid"
    assert client.post("/auth/login", json={"email": "leaving@example.com", "password": PASSWORD}).status_code == 401


def test_deleted_account_cannot_be_reactivated(client, db, make_user):
    seeker = make_user(UserRole.SEEKER)
    manager = make_user(UserRole.MANAGER)
    assert client.delete("/users/account", headers=auth_headers(seeker)).status_code == 200

    db.expire_all()
    closed = db.get(User, seeker.id)
    assert closed.is_deleted
    assert not verify_password(f"deleted-{seeker.id}", closed.hashed_password)
    assert not verify_password(PASSWORD, closed.hashed_password)

    r = client.put(f"/admin/users/{seeker.id}/unsuspend", headers=auth_headers(manager))
    assert r.status_code == 400
    assert client.put(f"/admin/users/{seeker.id}/suspend", json={"reason": "Spam"}, headers=auth_headers(manager)).status_code == 400
    db.expire_all()
    assert db.get(User, seeker.id).is_deleted
