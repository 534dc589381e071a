"""Notification service — deliver visitor passes over WhatsApp.

Two layers:

deliver_pass() is the worker body. It runs one delivery attempt for one
registration under the send-lock:
    reload row -> acquire lock -> one WhatsApp send -> finalize
                                            on failure: release + raise

NotificationTransport decides WHERE deliver_pass runs. The transport is
chosen once in create_app():
    QueuedTransport  — Celery job on Redis (durable, retried, rate limited)
    DirectTransport  — inline in the calling process, used when the broker
                       was unreachable at startup or the queue is disabled

Call sites only use enqueue_send() / queue_pass_delivery().
"""

import base64
import logging
from datetime import datetime, timezone

from flask import current_app
from kombu.exceptions import OperationalError

from app.extensions import db
from app.models.notification_log import NotificationLog
from app.models.registration import Registration
from app.models.user import User
from app.services import pass_service, send_lock, whatsapp_service
from app.services.whatsapp_service import WhatsAppSendError

logger = logging.getLogger(__name__)


def _iso(value):
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


# ──────────────────────────────────────────────
# Worker body
# ──────────────────────────────────────────────


def deliver_pass(
    registration_id,
    pass_pdf,
    phone=None,
    display_name=None,
    event_id=None,
    notify_user_id=None,
    force_resend=False,
):
    """Send one registration's pass, at most once.

    Returns:
        dict: {"status": "sent", ...} or {"status": "skipped", "reason": ...}
            where reason is "not_found", "already_sent" or "lock_held".

    Raises:
        WhatsAppSendError: The send failed. The lock has been released.
    """
    # Fresh read: the job may have sat in the queue for a while
    registration = db.session.get(Registration, registration_id, populate_existing=True)
    if registration is None:
        logger.warning(f"Pass delivery skipped: registration {registration_id} not found")
        return {"status": "skipped", "reason": "not_found"}

    member = registration.member
    event = registration.event
    phone = phone or (member.phone if member else None)
    display_name = display_name or (member.name if member else None)

    lock = send_lock.acquire(registration_id, force_resend=force_resend)
    if not lock["acquired"]:
        result = {"status": "skipped", "reason": lock["reason"]}
        if lock["reason"] == "already_sent":
            result["already_sent_at"] = _iso(lock["sent_at"])
        logger.info(f"Pass delivery {registration_id} skipped: {lock['reason']}")
        return result

    try:
        whatsapp_service.send_pdf(
            phone,
            pass_pdf,
            member_name=display_name,
            filename=pass_service.pass_filename(registration),
        )
    except Exception:
        send_lock.release(registration_id)
        raise

    sent_at = datetime.now(timezone.utc)
    finalized = send_lock.finalize(
        registration_id, sent_at=sent_at, lock_token=lock["lock_token"]
    )

    if notify_user_id:
        notify_operator(
            notify_user_id,
            member_id=registration.member_id,
            member_name=display_name,
            phone=phone,
            event_id=event_id or registration.event_id,
            event_title=event.title if event else "",
        )

    logger.info(f"Pass delivered for registration {registration_id} to {phone}")
    return {
        "status": "sent",
        "sent_at": _iso(sent_at),
        "finalized": finalized,
        "was_already_sent": lock["was_already_sent"],
    }


def notify_operator(user_id, member_id, member_name, phone, event_id, event_title):
    """Record a "WhatsApp Pass Sent" entry in the staff user's feed.

    Best-effort: failures are logged, never raised.
    """
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        logger.info(f"Operator notification skipped: user {user_id} missing or inactive")
        return None

    entry = NotificationLog(
        user_id=user.id,
        member_id=member_id,
        title="WhatsApp Pass Sent",
        message=(
            f"Visitor pass sent via WhatsApp to {member_name} ({phone}) "
            f'for event "{event_title}"'
        ),
        type="event",
        event_id=event_id,
        status="sent",
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to record operator notification for user {user_id}: {e}")
        return None
    return entry


# ──────────────────────────────────────────────
# Transports
# ──────────────────────────────────────────────


class NotificationTransport:
    """Where pass deliveries run."""

    name = "base"

    def enqueue(self, job):
        raise NotImplementedError


class DirectTransport(NotificationTransport):
    """Runs the delivery inline. Failures are logged, not raised."""

    name = "direct"

    def enqueue(self, job):
        try:
            result = deliver_pass(**job)
        except WhatsAppSendError as e:
            logger.error(
                f"Direct pass delivery failed for registration "
                f"{job['registration_id']}: {e}"
            )
            return {"job_id": None, "queued": False, "status": "failed", "error": str(e)}
        return {"job_id": None, "queued": False, **result}


class QueuedTransport(NotificationTransport):
    """Hands the delivery to the Celery worker pool."""

    name = "queued"

    def __init__(self, fallback=None):
        self.fallback = fallback or DirectTransport()

    def enqueue(self, job):
        from app.tasks.notification_tasks import send_pass_task

        kwargs = dict(job)
        kwargs["pass_pdf"] = base64.b64encode(job["pass_pdf"]).decode("ascii")
        try:
            result = send_pass_task.apply_async(kwargs=kwargs)
        except (OperationalError, OSError) as e:
            logger.error(
                f"Enqueue failed for registration {job['registration_id']}, "
                f"sending directly: {e}"
            )
            return self.fallback.enqueue(job)

        logger.info(f"Queued pass delivery job {result.id} for registration {job['registration_id']}")
        return {"job_id": result.id, "queued": True, "status": "queued"}


def _broker_available(celery_app):
    try:
        with celery_app.connection_for_write() as conn:
            conn.ensure_connection(max_retries=1)
    except (OperationalError, OSError) as e:
        logger.warning(f"Notification queue unavailable: {e}")
        return False
    return True


def init_notification_transport(app):
    """Pick the transport once, at startup. Never raises."""
    transport = DirectTransport()
    if app.config.get("NOTIFY_QUEUE_ENABLED"):
        celery_app = app.extensions.get("celery")
        if celery_app is not None and _broker_available(celery_app):
            transport = QueuedTransport()
        else:
            logger.warning("Falling back to direct WhatsApp delivery (no queue)")
    app.extensions["notification_transport"] = transport
    logger.info(f"Notification transport: {transport.name}")
    return transport


def get_transport():
    return current_app.extensions["notification_transport"]


# ──────────────────────────────────────────────
# Entry points
# ──────────────────────────────────────────────


def enqueue_send(
    registration_id,
    pass_pdf,
    phone,
    display_name,
    notify_user_id=None,
    event_id=None,
    force_resend=False,
):
    """Submit one pass delivery. Returns a job handle dict."""
    job = {
        "registration_id": registration_id,
        "pass_pdf": pass_pdf,
        "phone": phone,
        "display_name": display_name,
        "event_id": event_id,
        "notify_user_id": notify_user_id,
        "force_resend": force_resend,
    }
    return get_transport().enqueue(job)


def queue_pass_delivery(registration, base_url=None, notify_user_id=None, force_resend=False):
    """Render a registration's pass and submit it for delivery."""
    member = registration.member
    pdf = pass_service.render(registration, registration.event, member, base_url)
    return enqueue_send(
        registration.id,
        pdf,
        member.phone,
        member.name,
        notify_user_id=notify_user_id,
        event_id=registration.event_id,
        force_resend=force_resend,
    )


def auto_send_on_payment(registration, base_url=None, notify_user_id=None):
    """Queue the pass after payment confirmation, unless already handled.

    Best-effort: the payment itself has committed, so failures here are
    logged and reported as None, never raised.
    """
    if not current_app.config.get("AUTO_SEND_PASS_ON_PAYMENT"):
        return None
    if registration.pdf_send_state != "unset":
        logger.info(
            f"Auto-send skipped for registration {registration.id}: "
            f"pass state {registration.pdf_send_state}"
        )
        return None
    member = registration.member
    if member is None or not whatsapp_service.is_valid_mobile(member.phone):
        logger.warning(f"Auto-send skipped for registration {registration.id}: no valid phone")
        return None

    try:
        return queue_pass_delivery(
            registration, base_url=base_url, notify_user_id=notify_user_id
        )
    except Exception as e:
        logger.error(f"Auto-send failed for registration {registration.id}: {e}")
        return None


def get_job_status(job_id):
    """Look up a queued delivery in the Celery result backend."""
    celery_app = current_app.extensions.get("celery")
    result = celery_app.AsyncResult(job_id)
    status = {"job_id": job_id, "state": result.state, "result": None, "error": None}
    if result.successful():
        status["result"] = result.result
    elif result.failed():
        status["error"] = str(result.result)
    return status
