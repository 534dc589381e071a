"""Send-lock — per-registration guard around WhatsApp pass delivery.

States live on the registration row (pdf_send_state):

    unset  --acquire-->  locked  --finalize-->  sent
      ^                    |                      |
      +------release-------+      acquire(force_resend=True)
                           ^----------------------+

acquire() reads the row FOR UPDATE and then moves it with a
compare-and-swap UPDATE conditioned on the state it observed, so exactly
one caller wins even on backends without row locks. Each successful
acquire mints a lock token; finalize() only takes effect for the holder
of the current token, so a stale worker can never overwrite a newer
attempt's result.

Locks do not expire unless PASS_SEND_LOCK_TTL_SECONDS is positive. With
the default of 0, a worker that dies mid-send leaves the row locked until
an operator calls release().

All functions commit.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from flask import current_app

from app.extensions import db
from app.models.registration import Registration

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def _aware(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _result(acquired, reason=None, sent_at=None, lock_token=None, was_already_sent=False):
    return {
        "acquired": acquired,
        "reason": reason,
        "sent_at": sent_at,
        "lock_token": lock_token,
        "was_already_sent": was_already_sent,
    }


def _lock_expired(registration, now):
    ttl = current_app.config.get("PASS_SEND_LOCK_TTL_SECONDS", 0)
    if not ttl or ttl <= 0:
        return False
    acquired_at = _aware(registration.pdf_lock_acquired_at)
    if acquired_at is None:
        return True
    return now - acquired_at >= timedelta(seconds=ttl)


def acquire(registration_id, force_resend=False):
    """Try to take the send-lock for a registration. Never waits.

    Returns:
        dict with keys:
            acquired: bool
            reason: None | "not_found" | "already_sent" | "lock_held"
            sent_at: previous send time (already_sent, or a forced resend)
            lock_token: token to pass to finalize() when acquired
            was_already_sent: True when a forced resend relocked a sent row
    """
    now = _now()

    registration = (
        Registration.query
        .filter_by(id=registration_id)
        .with_for_update()
        .first()
    )
    if registration is None:
        db.session.commit()
        return _result(False, "not_found")

    state = registration.pdf_send_state
    sent_at = _aware(registration.pdf_sent_at)

    if state == "sent" and not force_resend:
        db.session.commit()
        logger.info(f"Send-lock {registration_id}: already sent at {sent_at}")
        return _result(False, "already_sent", sent_at=sent_at)

    if state == "locked":
        if not _lock_expired(registration, now):
            db.session.commit()
            logger.info(f"Send-lock {registration_id}: held by another worker")
            return _result(False, "lock_held")
        logger.warning(
            f"Send-lock {registration_id}: taking over stale lock "
            f"acquired at {registration.pdf_lock_acquired_at}"
        )

    token = str(uuid.uuid4())
    criteria = [
        Registration.id == registration_id,
        Registration.pdf_send_state == state,
    ]
    if state == "locked":
        criteria.append(Registration.pdf_lock_token == registration.pdf_lock_token)

    updated = (
        Registration.query
        .filter(*criteria)
        .update(
            {
                "pdf_send_state": "locked",
                "pdf_lock_token": token,
                "pdf_lock_acquired_at": now,
            },
            synchronize_session=False,
        )
    )
    db.session.commit()

    if updated != 1:
        logger.info(f"Send-lock {registration_id}: lost acquire race")
        return _result(False, "lock_held")

    was_sent = state == "sent"
    if was_sent:
        logger.info(f"Send-lock {registration_id}: forced resend (last sent {sent_at})")
    return _result(
        True,
        sent_at=sent_at if was_sent else None,
        lock_token=token,
        was_already_sent=was_sent,
    )


def release(registration_id):
    """Unconditionally clear the send-lock back to unset."""
    (
        Registration.query
        .filter_by(id=registration_id)
        .update(
            {
                "pdf_send_state": "unset",
                "pdf_sent_at": None,
                "pdf_lock_token": None,
                "pdf_lock_acquired_at": None,
            },
            synchronize_session=False,
        )
    )
    db.session.commit()
    logger.info(f"Send-lock {registration_id}: released")


def finalize(registration_id, sent_at=None, lock_token=None):
    """Record a completed send, if the lock is still held.

    Args:
        registration_id: Registration id.
        sent_at: Completion time, defaults to now.
        lock_token: When given, the write only lands if this token still
            holds the lock.

    Returns:
        bool: True if the row moved to sent.
    """
    sent_at = sent_at or _now()

    query = Registration.query.filter(
        Registration.id == registration_id,
        Registration.pdf_send_state == "locked",
    )
    if lock_token is not None:
        query = query.filter(Registration.pdf_lock_token == lock_token)

    updated = query.update(
        {
            "pdf_send_state": "sent",
            "pdf_sent_at": sent_at,
            "pdf_lock_token": None,
        },
        synchronize_session=False,
    )
    db.session.commit()

    if updated != 1:
        logger.warning(
            f"Send-lock {registration_id}: finalize skipped, lock no longer held"
        )
        return False
    return True
