"""Registration service — lifecycle state machine and payment sub-state.

Attendance transitions are enforced via Registration.VALID_TRANSITIONS,
payment transitions via Registration.PAYMENT_TRANSITIONS. The two axes
are independent: cancelling never touches payment, and refunds are an
explicit record_payment(..., "refunded") call.

registered -> attended happens ONLY through mark_attended(), which the
check-in service calls. Nothing else may set attended_at.

Notes are sanitized with bleach.clean() to strip HTML tags.

Functions flush but do NOT commit — the caller commits. mark_attended()
runs its UPDATE inside the caller's transaction so the check-in audit row
commits (or rolls back) together with it.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

import bleach

from app.extensions import db
from app.models.audit import AuditEvent
from app.models.event import Event
from app.models.member import Member
from app.models.registration import Registration

logger = logging.getLogger(__name__)


def _sanitize(text):
    """Strip all HTML tags from user input."""
    if text is None:
        return text
    return bleach.clean(text, tags=[], strip=True).strip()


def _audit(registration, action, actor_user_id=None, **metadata):
    audit = AuditEvent(
        registration_id=registration.id,
        actor_user_id=actor_user_id,
        action=action,
        metadata_={
            "event_id": registration.event_id,
            "member_id": registration.member_id,
            **metadata,
        },
    )
    db.session.add(audit)
    db.session.flush()
    return audit


def _transition(registration, new_status):
    """Validate and apply a status change. Returns the old status."""
    if new_status not in Registration.STATUSES:
        raise ValueError(
            f"Invalid status '{new_status}'. "
            f"Must be one of: {', '.join(Registration.STATUSES)}"
        )

    old_status = registration.status
    allowed = Registration.VALID_TRANSITIONS.get(old_status, [])
    if new_status not in allowed:
        raise ValueError(
            f"Cannot transition from '{old_status}' to '{new_status}'. "
            f"Allowed: {', '.join(allowed) if allowed else 'none (terminal state)'}"
        )

    registration.status = new_status
    return old_status


def _to_amount(value):
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value)).quantize(Decimal("0.01"))
    except InvalidOperation:
        raise ValueError(f"Invalid amount '{value}'.")
    if amount < 0:
        raise ValueError("Amount cannot be negative.")
    return amount


def get_registration(registration_id, event_id=None):
    """Load a registration by id, optionally scoped to an event."""
    registration = db.session.get(Registration, registration_id)
    if registration is None:
        return None
    if event_id is not None and registration.event_id != event_id:
        return None
    return registration


# ──────────────────────────────────────────────
# Registration + reactivation
# ──────────────────────────────────────────────


def register_member(
    event_id,
    member_id,
    actor_user_id=None,
    amount_paid=None,
    payment_status=None,
    notes=None,
):
    """Register a member for an event, or reactivate a cancelled registration.

    The (event_id, member_id) pair is unique: a cancelled row is reused
    rather than duplicated.

    Returns:
        tuple: (registration, outcome) where outcome is one of
            "created", "reactivated", "existing".

    Raises:
        ValueError: If the event or member is missing or the member is inactive.
    """
    event = db.session.get(Event, event_id)
    if event is None:
        raise ValueError(f"Event {event_id} not found.")
    member = db.session.get(Member, member_id)
    if member is None:
        raise ValueError(f"Member {member_id} not found.")
    if not member.is_active:
        raise ValueError(f"Member {member_id} is inactive.")

    if payment_status and payment_status not in Registration.PAYMENT_STATUSES:
        raise ValueError(
            f"Invalid payment status '{payment_status}'. "
            f"Must be one of: {', '.join(Registration.PAYMENT_STATUSES)}"
        )

    amount = _to_amount(amount_paid)
    notes = _sanitize(notes)

    existing = Registration.query.filter_by(
        event_id=event_id, member_id=member_id
    ).first()

    if existing is not None:
        if existing.status != "cancelled":
            return existing, "existing"
        reactivate_registration(existing, actor_user_id=actor_user_id)
        if notes:
            existing.notes = notes
        db.session.flush()
        return existing, "reactivated"

    registration = Registration(
        event_id=event_id,
        member_id=member_id,
        status="registered",
        payment_status=payment_status or "pending",
        amount_paid=amount,
        notes=notes,
        registered_at=datetime.now(timezone.utc),
    )
    db.session.add(registration)
    db.session.flush()

    _audit(
        registration,
        "registration.created",
        actor_user_id,
        payment_status=registration.payment_status,
    )
    logger.info(
        f"Registration {registration.id} created: "
        f"member={member_id} event={event_id}"
    )
    return registration, "created"


def reactivate_registration(registration, actor_user_id=None):
    """Move a cancelled registration back to registered."""
    _transition(registration, "registered")
    registration.cancelled_at = None
    registration.registered_at = datetime.now(timezone.utc)
    db.session.flush()

    _audit(registration, "registration.reactivated", actor_user_id)
    logger.info(f"Registration {registration.id} reactivated")
    return registration


def cancel_registration(registration, actor_user_id=None, reason=None):
    """Cancel a registration. Payment status is left untouched."""
    old_status = _transition(registration, "cancelled")
    registration.cancelled_at = datetime.now(timezone.utc)
    db.session.flush()

    _audit(
        registration,
        "registration.cancelled",
        actor_user_id,
        old_status=old_status,
        reason=_sanitize(reason),
    )
    logger.info(f"Registration {registration.id} cancelled")
    return registration


def mark_no_show(registration, actor_user_id=None):
    """Close out a registration that never checked in."""
    _transition(registration, "no_show")
    db.session.flush()

    _audit(registration, "registration.no_show", actor_user_id)
    return registration


# ──────────────────────────────────────────────
# Payment sub-state
# ──────────────────────────────────────────────


def record_payment(
    registration,
    new_payment_status,
    actor_user_id=None,
    amount_paid=None,
    payment_id=None,
    payment_order_id=None,
    cash_receipt_number=None,
):
    """Change the payment status, enforcing PAYMENT_TRANSITIONS.

    Returns:
        The old payment status.

    Raises:
        ValueError: If the status is unknown or the transition not allowed.
    """
    if new_payment_status not in Registration.PAYMENT_STATUSES:
        raise ValueError(
            f"Invalid payment status '{new_payment_status}'. "
            f"Must be one of: {', '.join(Registration.PAYMENT_STATUSES)}"
        )

    old = registration.payment_status
    if old != new_payment_status:
        allowed = Registration.PAYMENT_TRANSITIONS.get(old, [])
        if new_payment_status not in allowed:
            raise ValueError(
                f"Cannot change payment from '{old}' to '{new_payment_status}'. "
                f"Allowed: {', '.join(allowed) if allowed else 'none (terminal state)'}"
            )

    amount = _to_amount(amount_paid)
    if amount is not None:
        registration.amount_paid = amount
    if payment_id:
        registration.payment_id = payment_id
    if payment_order_id:
        registration.payment_order_id = payment_order_id
    if cash_receipt_number:
        registration.cash_receipt_number = cash_receipt_number

    registration.payment_status = new_payment_status
    db.session.flush()

    _audit(
        registration,
        "registration.payment_changed",
        actor_user_id,
        old_payment_status=old,
        new_payment_status=new_payment_status,
        amount_paid=str(registration.amount_paid) if registration.amount_paid is not None else None,
    )
    return old


# ──────────────────────────────────────────────
# Check-in support
# ──────────────────────────────────────────────


def can_check_in(registration):
    """Decide whether a registration may be checked in.

    Returns:
        tuple: (ok, reason) where reason is None when ok, else one of
            "not_found", "cancelled", "already_attended", "no_show".
    """
    if registration is None:
        return False, "not_found"
    if registration.status == "cancelled":
        return False, "cancelled"
    if registration.status == "attended" or registration.attended_at is not None:
        return False, "already_attended"
    if registration.status == "no_show":
        return False, "no_show"
    return True, None


def mark_attended(registration_id, now=None):
    """Atomically flip a registration from registered to attended.

    A single conditional UPDATE, so of N concurrent scans exactly one sees
    a row count of 1. Does NOT commit; the caller commits together with
    its audit row.

    Returns:
        bool: True if this call performed the check-in.
    """
    now = now or datetime.now(timezone.utc)
    updated = (
        Registration.query
        .filter(
            Registration.id == registration_id,
            Registration.status == "registered",
            Registration.attended_at.is_(None),
        )
        .update(
            {"status": "attended", "attended_at": now},
            synchronize_session=False,
        )
    )
    return updated == 1
