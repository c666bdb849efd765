import pytest
from conftest import auth_headers

from chillconnect.models.user import UserRole
from chillconnect.models.wallet import TokenTransaction, TransactionType
from chillconnect.services import ledger
from chillconnect.models.withdrawal import WithdrawalRequest, WithdrawalStatus
from chillconnect.services.withdrawals import WithdrawalError, quote, reject_withdrawal

UPI = {"type": "UPI", "label": "My UPI", "details": {"upi_id": "provider@okbank"}}


@pytest.fixture()
def provider(make_user):
    return make_user(UserRole.PROVIDER, balance=500, hourly_rate=20)


@pytest.fixture()
def method_id(client, provider):
    r = client.post("/withdrawals/payment-methods", json=UPI, headers=auth_headers(provider))
    assert r.status_code == 201
    return r.json()["id"]


def _request(client, provider, method_id, amount=200):
    return client.post(
        "/withdrawals/request",
        json={"amount_tokens": amount, "payment_method_id": method_id},
        headers=auth_headers(provider),
    )


def _balance(db, user):
    db.expire_all()
    return ledger.get_wallet(db, user.id).balance


def test_quote_floors_fee():
    assert quote(100) == (10000, 500, 9500)
    assert quote(101) == (10100, 505, 9595)


def test_payment_methods(client, provider, method_id):
    headers = auth_headers(provider)
    methods = client.get("/withdrawals/payment-methods", headers=headers).json()
    assert methods[0]["is_default"] is True

    bad = {"type": "BANK_TRANSFER", "details": {"account_number": "123"}}
    assert client.post("/withdrawals/payment-methods", json=bad, headers=headers).status_code == 422

    bank = {"type": "BANK_TRANSFER", "details": {"account_holder": "P One", "account_number": "12345678", "ifsc": "HDFC0001"}, "is_default": True}
    second = client.post("/withdrawals/payment-methods", json=bank, headers=headers).json()
    methods = {m["id"]: m["is_default"] for m in client.get("/withdrawals/payment-methods", headers=headers).json()}
    assert methods == {method_id: False, second["id"]: True}

    assert client.delete(f"/withdrawals/payment-methods/{second['id']}", headers=headers).status_code == 200
    assert client.get("/withdrawals/payment-methods", headers=headers).json()[0]["is_default"] is True


def test_seekers_cannot_withdraw(client, make_user):
    seeker = make_user(UserRole.SEEKER, balance=500)
    assert client.post("/withdrawals/payment-methods", json=UPI, headers=auth_headers(seeker)).status_code == 403


def test_request_debits_tokens(client, db, provider, method_id, outbox):
    r = _request(client, provider, method_id, 200)
    assert r.status_code == 201
    body = r.json()
    assert (body["amount_inr"], body["processing_fee"], body["net_amount"]) == (20000, 1000, 19000)
    assert body["status"] == "PENDING"
    assert _balance(db, provider) == 300
    tx = db.query(TokenTransaction).filter(TokenTransaction.type == TransactionType.WITHDRAWAL).one()
    assert tx.withdrawal_id == body["id"]
    assert outbox["email"][-1]["to"] == provider.email


def test_request_limits(client, db, provider, method_id, make_user):
    assert _request(client, provider, method_id, 50).status_code == 400
    r = _request(client, provider, method_id, 600)
    assert r.status_code == 400
    assert r.json()["available"] == 500

    other = make_user(UserRole.PROVIDER, balance=500)
    assert _request(client, other, method_id, 200).status_code == 404
    assert _balance(db, provider) == 500


def test_cancel_returns_tokens(client, db, provider, method_id):
    wid = _request(client, provider, method_id).json()["id"]
    r = client.put(f"/withdrawals/{wid}/cancel", headers=auth_headers(provider))
    assert r.status_code == 200
    assert r.json()["status"] == "CANCELLED"
    assert _balance(db, provider) == 500
    assert client.put(f"/withdrawals/{wid}/cancel", headers=auth_headers(provider)).status_code == 400


def test_staff_flow_approve_complete(client, db, provider, method_id, make_user):
    manager = make_user(UserRole.MANAGER)
    employee = make_user(UserRole.EMPLOYEE)
    wid = _request(client, provider, method_id).json()["id"]

    assert client.put(f"/withdrawals/admin/{wid}/approve", json={}, headers=auth_headers(employee)).status_code == 403
    assert client.put(
        f"/withdrawals/admin/{wid}/complete", json={"transaction_reference": "UTR1"}, headers=auth_headers(manager)
    ).status_code == 400

    r = client.put(f"/withdrawals/admin/{wid}/approve", json={"notes": "KYC ok"}, headers=auth_headers(manager))
    assert r.status_code == 200
    assert r.json()["processed_by"] == manager.id
    # provider can no longer cancel once approved
    assert client.put(f"/withdrawals/{wid}/cancel", headers=auth_headers(provider)).status_code == 400

    r = client.put(
        f"/withdrawals/admin/{wid}/complete", json={"transaction_reference": "UTR123456"}, headers=auth_headers(manager)
    )
    assert r.status_code == 200
    assert r.json()["status"] == "COMPLETED"
    assert r.json()["transaction_reference"] == "UTR123456"
    assert _balance(db, provider) == 300

    stats = client.get("/withdrawals/admin/statistics", headers=auth_headers(manager)).json()
    assert stats["completed_tokens"] == 200
    assert stats["total_fees_inr"] == 1000

    # used methods stay for the record
    assert client.delete(f"/withdrawals/payment-methods/{method_id}", headers=auth_headers(provider)).status_code == 400


def test_reject_refunds(client, db, provider, method_id, make_user):
    manager = make_user(UserRole.MANAGER)
    wid = _request(client, provider, method_id).json()["id"]
    r = client.put(f"/withdrawals/admin/{wid}/reject", json={"reason": "Details mismatch"}, headers=auth_headers(manager))
    assert r.status_code == 200
    assert r.json()["rejection_reason"] == "Details mismatch"
    assert _balance(db, provider) == 500
    assert ledger.reconcile_wallet(db, provider.id) == []


def test_stale_request_cannot_refund_twice(client, db, provider, method_id, make_user):
    manager = make_user(UserRole.MANAGER)
    withdrawal_id = _request(client, provider, method_id).json()["id"]
    # Loaded before the provider cancels, as a concurrent staff request would have it
    stale = db.get(WithdrawalRequest, withdrawal_id)
    assert stale.status == WithdrawalStatus.PENDING

    assert client.put(f"/withdrawals/{withdrawal_id}/cancel", headers=auth_headers(provider)).status_code == 200

    with pytest.raises(WithdrawalError):
        reject_withdrawal(db, stale, manager, "Duplicate request")
    db.rollback()
    assert _balance(db, provider) == 500
    refunds = db.query(TokenTransaction).filter(
        TokenTransaction.user_id == provider.id, TokenTransaction.type == TransactionType.WITHDRAWAL_REFUND,
    ).count()
    assert refunds == 1
