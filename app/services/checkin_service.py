"""Check-in service — validate a scanned QR token and mark attendance once.

Flow:
    decode token -> load registration -> cross-check ids -> can_check_in
    -> conditional UPDATE (registered -> attended) + audit row, one commit

The final step is the only guard against double check-in: two gates
scanning the same pass race on the UPDATE, one wins, the other is told
already_attended. Reading status first is advisory only.
"""

import logging

from app.extensions import db
from app.models.audit import AuditEvent
from app.models.registration import Registration
from app.services import qr_service, registration_service

logger = logging.getLogger(__name__)

FAILURE_MESSAGES = {
    "invalid_token": "Invalid QR code.",
    "not_found": "Registration not found.",
    "cancelled": "Registration cancelled.",
    "already_attended": "Visitor already checked in.",
    "no_show": "Registration was marked as no-show.",
}


def check_in(qr_token, actor_user_id=None):
    """Check a visitor in from a scanned token.

    Args:
        qr_token: The raw "EVT:..." string from the scanner.
        actor_user_id: Gate staff user performing the scan, for audit.

    Returns:
        tuple: (context, None) on success, where context is a dict with
            "registration", "member" and "event"; or (None, reason).
    """
    payload = qr_service.decode(qr_token)
    if payload is None:
        logger.warning("Check-in rejected: invalid token")
        return None, "invalid_token"

    registration = db.session.get(Registration, payload["r"])
    if registration is None:
        logger.warning(f"Check-in rejected: registration {payload['r']} not found")
        return None, "not_found"

    if (
        registration.event_id != payload["e"]
        or registration.member_id != payload["m"]
    ):
        logger.warning(
            f"Check-in rejected: id mismatch for registration {registration.id}"
        )
        return None, "invalid_token"

    ok, reason = registration_service.can_check_in(registration)
    if not ok:
        logger.info(f"Check-in rejected for registration {registration.id}: {reason}")
        return None, reason

    if not registration_service.mark_attended(registration.id):
        # Lost the race (or the row changed since we read it)
        db.session.rollback()
        db.session.refresh(registration)
        _, reason = registration_service.can_check_in(registration)
        reason = reason or "already_attended"
        logger.info(
            f"Check-in lost race for registration {registration.id}: {reason}"
        )
        return None, reason

    # The conditional UPDATE and its audit row commit as one transaction
    audit = AuditEvent(
        registration_id=registration.id,
        actor_user_id=actor_user_id,
        action="registration.checked_in",
        metadata_={
            "event_id": registration.event_id,
            "member_id": registration.member_id,
            "payment_status": registration.payment_status,
        },
    )
    try:
        db.session.add(audit)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception(f"Check-in for registration {registration.id} rolled back")
        raise

    db.session.refresh(registration)

    logger.info(
        f"Checked in registration {registration.id} "
        f"(member={registration.member_id}, event={registration.event_id})"
    )
    return {
        "registration": registration,
        "member": registration.member,
        "event": registration.event,
    }, None
