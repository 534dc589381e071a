"""Tests for the registrations blueprint.

Covers:
- Register returns the QR credential (token + data URL)
- Reactivating a cancelled registration via POST /
- Lifecycle endpoints and invalid transitions
- Payment update auto-sends the pass once
- Admin release of a stuck send-lock
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from app.models.registration import Registration
from app.services import qr_service, send_lock


def _base(seed_data):
    return f"/api/events/{seed_data['event_id']}/registrations"


def _url(seed_data, suffix=""):
    return f"{_base(seed_data)}/{seed_data['registration_id']}{suffix}"


@pytest.fixture
def fake_transport(app):
    """Record pass deliveries instead of sending them."""
    original = app.extensions["notification_transport"]
    fake = MagicMock()
    fake.enqueue.return_value = {"job_id": "job-1", "queued": True, "status": "queued"}
    app.extensions["notification_transport"] = fake
    yield fake
    app.extensions["notification_transport"] = original


@pytest.fixture
def no_photo():
    with patch("app.services.storage_service.requests.get") as mock_get:
        mock_get.side_effect = requests.ConnectionError("no network in tests")
        yield mock_get


class TestRegister:

    def test_register_returns_qr(self, client, db_session, seed_data, login, fake_transport):
        login()
        resp = client.post(_base(seed_data), json={"memberId": seed_data["other_member_id"]})

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["outcome"] == "created"
        assert data["registration"]["status"] == "registered"
        assert data["registration"]["paymentStatus"] == "pending"
        assert data["qrDataURL"].startswith("data:image/png;base64,")
        assert data["passJob"] is None

        payload = qr_service.decode(data["qrToken"])
        assert payload["r"] == data["registration"]["id"]
        assert payload["m"] == seed_data["other_member_id"]
        fake_transport.enqueue.assert_not_called()

    def test_register_paid_auto_sends(self, client, seed_data, login, fake_transport, no_photo):
        login()
        resp = client.post(_base(seed_data), json={
            "memberId": seed_data["other_member_id"],
            "paymentStatus": "paid",
            "amountPaid": "500",
        })
        assert resp.status_code == 201
        assert resp.get_json()["passJob"]["job_id"] == "job-1"
        fake_transport.enqueue.assert_called_once()

    def test_register_existing_returns_200(self, client, seed_data, login, fake_transport):
        login()
        resp = client.post(_base(seed_data), json={"memberId": seed_data["member_id"]})
        assert resp.status_code == 200
        assert resp.get_json()["outcome"] == "existing"
        fake_transport.enqueue.assert_not_called()

    def test_register_reactivates_cancelled(self, client, seed_data, login, fake_transport, no_photo):
        login()
        client.post(_url(seed_data, "/cancel"))

        resp = client.post(_base(seed_data), json={"memberId": seed_data["member_id"]})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["outcome"] == "reactivated"
        assert data["registration"]["id"] == seed_data["registration_id"]
        assert data["registration"]["status"] == "registered"

    def test_register_requires_member_id(self, client, seed_data, login):
        login()
        assert client.post(_base(seed_data), json={}).status_code == 400

    @pytest.mark.parametrize("member_id", [True, False, "1", 1.0])
    def test_register_rejects_non_integer_member_id(self, client, seed_data, login, member_id):
        login()
        resp = client.post(_base(seed_data), json={"memberId": member_id})
        assert resp.status_code == 400
        assert Registration.query.count() == 1

    def test_register_unknown_event(self, client, seed_data, login):
        login()
        resp = client.post(
            "/api/events/9999/registrations", json={"memberId": seed_data["member_id"]}
        )
        assert resp.status_code == 400
        assert "not found" in resp.get_json()["message"]

    def test_register_requires_login(self, client, seed_data):
        resp = client.post(_base(seed_data), json={"memberId": seed_data["member_id"]})
        assert resp.status_code == 401


class TestLifecycle:

    def test_detail(self, client, seed_data, login):
        login()
        resp = client.get(_url(seed_data))
        assert resp.status_code == 200
        data = resp.get_json()["registration"]
        assert data["amountPaid"] == "500.00"
        assert data["passState"] == "unset"
        assert data["pdfSentAt"] is None

    def test_detail_unknown_404(self, client, seed_data, login):
        login()
        assert client.get(f"{_base(seed_data)}/9999").status_code == 404

    def test_cancel_then_reactivate(self, client, seed_data, login):
        login()
        resp = client.post(_url(seed_data, "/cancel"), json={"reason": "changed plans"})
        assert resp.status_code == 200
        assert resp.get_json()["registration"]["status"] == "cancelled"
        assert resp.get_json()["registration"]["paymentStatus"] == "paid"

        resp = client.post(_url(seed_data, "/reactivate"))
        assert resp.status_code == 200
        assert resp.get_json()["registration"]["status"] == "registered"

    def test_invalid_transition_400(self, client, seed_data, login):
        login()
        assert client.post(_url(seed_data, "/no-show")).status_code == 200
        resp = client.post(_url(seed_data, "/cancel"))
        assert resp.status_code == 400
        assert "terminal state" in resp.get_json()["message"]


class TestPayment:

    def test_paid_triggers_auto_send(self, client, db_session, seed_data, login, fake_transport, no_photo):
        registration = db_session.get(Registration, seed_data["registration_id"])
        registration.payment_status = "pending"
        db_session.commit()
        login()

        resp = client.post(_url(seed_data, "/payment"), json={
            "paymentStatus": "paid",
            "amountPaid": 500,
            "cashReceiptNumber": "R-22",
        })

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["registration"]["paymentStatus"] == "paid"
        assert data["registration"]["cashReceiptNumber"] == "R-22"
        assert data["passJob"]["status"] == "queued"
        job = fake_transport.enqueue.call_args.args[0]
        assert job["registration_id"] == seed_data["registration_id"]
        assert job["pass_pdf"].startswith(b"%PDF")
        assert job["notify_user_id"] == seed_data["admin_id"]

    def test_paid_with_sent_pass_does_not_resend(self, client, db_session, seed_data, login, fake_transport):
        rid = seed_data["registration_id"]
        lock = send_lock.acquire(rid)
        send_lock.finalize(rid, lock_token=lock["lock_token"])
        registration = db_session.get(Registration, rid)
        registration.payment_status = "failed"
        db_session.commit()
        login()

        resp = client.post(_url(seed_data, "/payment"), json={"paymentStatus": "paid"})
        assert resp.status_code == 200
        assert resp.get_json()["passJob"] is None
        fake_transport.enqueue.assert_not_called()

    def test_refund(self, client, seed_data, login, fake_transport):
        login()
        resp = client.post(_url(seed_data, "/payment"), json={"paymentStatus": "refunded"})
        assert resp.status_code == 200
        assert resp.get_json()["registration"]["paymentStatus"] == "refunded"
        fake_transport.enqueue.assert_not_called()

    def test_invalid_payment_transition(self, client, seed_data, login):
        login()
        resp = client.post(_url(seed_data, "/payment"), json={"paymentStatus": "pending"})
        assert resp.status_code == 400

    def test_payment_status_required(self, client, seed_data, login):
        login()
        assert client.post(_url(seed_data, "/payment"), json={}).status_code == 400


class TestReleaseSendLock:

    def test_admin_releases_stuck_lock(self, client, db_session, seed_data, login):
        send_lock.acquire(seed_data["registration_id"])
        login()

        resp = client.post(_url(seed_data, "/release-send-lock"))

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["previousState"] == "locked"
        assert data["registration"]["passState"] == "unset"
        db_session.expire_all()
        assert db_session.get(Registration, seed_data["registration_id"]).pdf_send_state == "unset"
