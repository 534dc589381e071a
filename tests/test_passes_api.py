"""Tests for the public pass endpoints.

Covers:
- PDF download and QR PNG
- send-whatsapp: direct send, alreadySent, inProgress, provider failure (502)
- forceResend honoured for staff only
- Phone validation errors
- Queued deliveries report a job id; job status lookup
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from app.models.member import Member
from app.models.notification_log import NotificationLog
from app.models.registration import Registration
from app.services import notification_service, send_lock


def _url(seed_data, suffix):
    return (
        f"/api/public/events/{seed_data['event_id']}/registrations/"
        f"{seed_data['registration_id']}{suffix}"
    )


def _provider(status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.text = "ok" if status == 200 else "error"
    return resp


@pytest.fixture(autouse=True)
def no_photo():
    with patch("app.services.storage_service.requests.get") as mock_get:
        mock_get.side_effect = requests.ConnectionError("no network in tests")
        yield mock_get


def _mark_sent(registration_id):
    lock = send_lock.acquire(registration_id)
    send_lock.finalize(registration_id, lock_token=lock["lock_token"])


class TestDownload:

    def test_download_pdf(self, client, seed_data):
        resp = client.get(_url(seed_data, "/download-pdf"))
        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert resp.data.startswith(b"%PDF")
        assert (
            f'filename="mandapam-visitor-pass-{seed_data["registration_id"]}.pdf"'
            in resp.headers["Content-Disposition"]
        )

    def test_download_unknown_registration(self, client, seed_data):
        url = f"/api/public/events/{seed_data['event_id']}/registrations/9999/download-pdf"
        assert client.get(url).status_code == 404

    def test_download_wrong_event(self, client, seed_data):
        url = f"/api/public/events/9999/registrations/{seed_data['registration_id']}/download-pdf"
        assert client.get(url).status_code == 404

    def test_render_failure_is_500(self, client, seed_data):
        with patch(
            "app.services.pass_service.pdf_canvas.Canvas", side_effect=RuntimeError("disk full")
        ):
            resp = client.get(_url(seed_data, "/download-pdf"))
        assert resp.status_code == 500
        assert resp.get_json()["message"] == "Server error while generating PDF"

    def test_qr_png(self, client, seed_data):
        resp = client.get(_url(seed_data, "/qr"))
        assert resp.status_code == 200
        assert resp.mimetype == "image/png"
        assert resp.data[:4] == b"\x89PNG"


class TestSendWhatsApp:

    @patch("app.services.whatsapp_service.requests.post")
    def test_direct_send(self, mock_post, client, db_session, seed_data):
        mock_post.return_value = _provider()

        resp = client.post(_url(seed_data, "/send-whatsapp"))

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["success"] is True
        assert data["queued"] is False
        assert data["jobId"] is None
        assert data["phone"] == "9876543210"
        assert mock_post.call_count == 1

        db_session.expire_all()
        registration = db_session.get(Registration, seed_data["registration_id"])
        assert registration.pdf_send_state == "sent"
        # anonymous caller: nobody to notify
        assert NotificationLog.query.count() == 0

    @patch("app.services.whatsapp_service.requests.post")
    def test_second_send_reports_already_sent(self, mock_post, client, seed_data):
        mock_post.return_value = _provider()
        client.post(_url(seed_data, "/send-whatsapp"))

        resp = client.post(_url(seed_data, "/send-whatsapp"))

        data = resp.get_json()
        assert resp.status_code == 200
        assert data["alreadySent"] is True
        assert data["sentAt"] is not None
        assert mock_post.call_count == 1

    @patch("app.services.whatsapp_service.requests.post")
    def test_in_progress(self, mock_post, client, seed_data):
        send_lock.acquire(seed_data["registration_id"])

        resp = client.post(_url(seed_data, "/send-whatsapp"))

        assert resp.status_code == 200
        assert resp.get_json()["inProgress"] is True
        mock_post.assert_not_called()

    @patch("app.services.whatsapp_service.requests.post")
    def test_provider_failure_502_and_lock_released(self, mock_post, client, db_session, seed_data):
        mock_post.return_value = _provider(500)

        resp = client.post(_url(seed_data, "/send-whatsapp"))

        assert resp.status_code == 502
        assert resp.get_json()["success"] is False
        db_session.expire_all()
        registration = db_session.get(Registration, seed_data["registration_id"])
        assert registration.pdf_send_state == "unset"

    @patch("app.services.whatsapp_service.requests.post")
    def test_force_resend_ignored_for_anonymous(self, mock_post, client, seed_data):
        mock_post.return_value = _provider()
        _mark_sent(seed_data["registration_id"])

        resp = client.post(_url(seed_data, "/send-whatsapp"), json={"forceResend": True})

        assert resp.get_json()["alreadySent"] is True
        mock_post.assert_not_called()

    @patch("app.services.whatsapp_service.requests.post")
    def test_force_resend_by_staff(self, mock_post, client, seed_data, login):
        mock_post.return_value = _provider()
        _mark_sent(seed_data["registration_id"])
        login()

        resp = client.post(_url(seed_data, "/send-whatsapp"), json={"forceResend": True})

        assert resp.status_code == 200
        assert resp.get_json()["success"] is True
        assert "alreadySent" not in resp.get_json()
        assert mock_post.call_count == 1

        entry = NotificationLog.query.one()
        assert entry.user_id == seed_data["admin_id"]
        assert entry.title == "WhatsApp Pass Sent"

    @pytest.mark.parametrize("phone,message", [
        ("", "phone number is required"),
        ("12345", "Invalid phone number format"),
    ])
    def test_bad_phone_400(self, client, db_session, seed_data, phone, message):
        member = db_session.get(Member, seed_data["member_id"])
        member.phone = phone
        db_session.commit()

        resp = client.post(_url(seed_data, "/send-whatsapp"))

        assert resp.status_code == 400
        assert message in resp.get_json()["message"]

    def test_unknown_registration_404(self, client, seed_data):
        url = f"/api/public/events/{seed_data['event_id']}/registrations/9999/send-whatsapp"
        assert client.post(url).status_code == 404


class TestQueuedDelivery:

    @pytest.fixture
    def queued(self, app):
        original = app.extensions["notification_transport"]
        app.extensions["notification_transport"] = notification_service.QueuedTransport()
        yield
        app.extensions["notification_transport"] = original

    @patch("app.tasks.notification_tasks.send_pass_task")
    def test_send_reports_job_id(self, mock_task, client, seed_data, queued):
        mock_task.apply_async.return_value = MagicMock(id="job-42")

        resp = client.post(_url(seed_data, "/send-whatsapp"))

        data = resp.get_json()
        assert resp.status_code == 200
        assert data["queued"] is True
        assert data["jobId"] == "job-42"
        assert data["message"] == "WhatsApp message queued for delivery"

    def test_job_status(self, client, seed_data, login):
        login()
        with patch.object(notification_service, "get_job_status") as mock_status:
            mock_status.return_value = {
                "job_id": "job-42", "state": "SUCCESS", "result": {"status": "sent"}, "error": None,
            }
            resp = client.get("/api/notifications/jobs/job-42")

        assert resp.status_code == 200
        assert resp.get_json()["job"]["state"] == "SUCCESS"
        mock_status.assert_called_once_with("job-42")
