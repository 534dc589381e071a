"""Registrations blueprint — /api/events/<event_id>/registrations/*

Staff-only lifecycle actions on event registrations. Each action maps to
one registration_service call; the route commits.

Route Map:
  POST /                      — register a member (or reactivate)
  GET  /<id>                  — registration detail
  POST /<id>/cancel           — registered -> cancelled
  POST /<id>/reactivate       — cancelled -> registered
  POST /<id>/no-show          — registered -> no_show
  POST /<id>/payment          — payment sub-state (auto-sends pass on paid)
  POST /<id>/release-send-lock — admin: clear a stuck send-lock
"""

import logging

from flask import Blueprint, abort, jsonify, request
from flask_login import current_user

from app.decorators import admin_required, staff_required
from app.extensions import db
from app.services import (
    notification_service,
    qr_service,
    registration_service,
    send_lock,
)

registrations_bp = Blueprint(
    "registrations", __name__, url_prefix="/api/events/<int:event_id>/registrations"
)

logger = logging.getLogger(__name__)


def _iso(value):
    return value.isoformat() if value is not None else None


def registration_json(registration):
    """Public shape of a registration for API responses."""
    return {
        "id": registration.id,
        "eventId": registration.event_id,
        "memberId": registration.member_id,
        "status": registration.status,
        "paymentStatus": registration.payment_status,
        "amountPaid": (
            str(registration.amount_paid) if registration.amount_paid is not None else None
        ),
        "paymentId": registration.payment_id,
        "cashReceiptNumber": registration.cash_receipt_number,
        "registeredAt": _iso(registration.registered_at),
        "attendedAt": _iso(registration.attended_at),
        "cancelledAt": _iso(registration.cancelled_at),
        "passState": registration.pdf_send_state,
        "pdfSentAt": _iso(registration.pdf_sent_at),
    }


def _get_or_404(event_id, registration_id):
    registration = registration_service.get_registration(registration_id, event_id)
    if registration is None:
        abort(404)
    return registration


def _body():
    return request.get_json(silent=True) or {}


# ──────────────────────────────────────────────
# POST /api/events/<event_id>/registrations
# ──────────────────────────────────────────────

@registrations_bp.route("", methods=["POST"])
@staff_required
def register(event_id):
    """Register a member. Returns the QR credential for immediate display."""
    data = _body()
    member_id = data.get("memberId")
    # bool is an int subclass; JSON true must not register member 1
    if not isinstance(member_id, int) or isinstance(member_id, bool):
        return jsonify(success=False, message="memberId is required."), 400

    try:
        registration, outcome = registration_service.register_member(
            event_id,
            member_id,
            actor_user_id=current_user.id,
            amount_paid=data.get("amountPaid"),
            payment_status=data.get("paymentStatus"),
            notes=data.get("notes"),
        )
    except ValueError as e:
        db.session.rollback()
        return jsonify(success=False, message=str(e)), 400

    db.session.commit()

    token = qr_service.encode(registration)
    job = None
    if outcome != "existing" and registration.payment_status == "paid":
        job = notification_service.auto_send_on_payment(
            registration, notify_user_id=current_user.id
        )

    status_code = 201 if outcome == "created" else 200
    return jsonify(
        success=True,
        outcome=outcome,
        registration=registration_json(registration),
        qrToken=token,
        qrDataURL=qr_service.to_data_url(token),
        passJob=job,
    ), status_code


@registrations_bp.route("/<int:registration_id>")
@staff_required
def detail(event_id, registration_id):
    registration = _get_or_404(event_id, registration_id)
    return jsonify(success=True, registration=registration_json(registration))


# ──────────────────────────────────────────────
# Lifecycle transitions
# ──────────────────────────────────────────────

@registrations_bp.route("/<int:registration_id>/cancel", methods=["POST"])
@staff_required
def cancel(event_id, registration_id):
    registration = _get_or_404(event_id, registration_id)
    try:
        registration_service.cancel_registration(
            registration, actor_user_id=current_user.id, reason=_body().get("reason")
        )
    except ValueError as e:
        db.session.rollback()
        return jsonify(success=False, message=str(e)), 400
    db.session.commit()
    return jsonify(success=True, registration=registration_json(registration))


@registrations_bp.route("/<int:registration_id>/reactivate", methods=["POST"])
@staff_required
def reactivate(event_id, registration_id):
    registration = _get_or_404(event_id, registration_id)
    try:
        registration_service.reactivate_registration(
            registration, actor_user_id=current_user.id
        )
    except ValueError as e:
        db.session.rollback()
        return jsonify(success=False, message=str(e)), 400
    db.session.commit()
    return jsonify(success=True, registration=registration_json(registration))


@registrations_bp.route("/<int:registration_id>/no-show", methods=["POST"])
@staff_required
def no_show(event_id, registration_id):
    registration = _get_or_404(event_id, registration_id)
    try:
        registration_service.mark_no_show(registration, actor_user_id=current_user.id)
    except ValueError as e:
        db.session.rollback()
        return jsonify(success=False, message=str(e)), 400
    db.session.commit()
    return jsonify(success=True, registration=registration_json(registration))


@registrations_bp.route("/<int:registration_id>/payment", methods=["POST"])
@staff_required
def payment(event_id, registration_id):
    """Update the payment sub-state. Moving to paid auto-sends the pass."""
    registration = _get_or_404(event_id, registration_id)
    data = _body()
    new_status = data.get("paymentStatus")
    if not new_status:
        return jsonify(success=False, message="paymentStatus is required."), 400

    try:
        old_status = registration_service.record_payment(
            registration,
            new_status,
            actor_user_id=current_user.id,
            amount_paid=data.get("amountPaid"),
            payment_id=data.get("paymentId"),
            payment_order_id=data.get("paymentOrderId"),
            cash_receipt_number=data.get("cashReceiptNumber"),
        )
    except ValueError as e:
        db.session.rollback()
        return jsonify(success=False, message=str(e)), 400
    db.session.commit()

    job = None
    if new_status == "paid" and old_status != "paid" and registration.status == "registered":
        job = notification_service.auto_send_on_payment(
            registration, notify_user_id=current_user.id
        )

    return jsonify(
        success=True, registration=registration_json(registration), passJob=job
    )


@registrations_bp.route("/<int:registration_id>/release-send-lock", methods=["POST"])
@admin_required
def release_send_lock(event_id, registration_id):
    """Clear a send-lock left behind by a crashed worker."""
    registration = _get_or_404(event_id, registration_id)
    previous = registration.pdf_send_state
    send_lock.release(registration.id)
    logger.warning(
        f"Send-lock for registration {registration.id} released by "
        f"{current_user.email} (was {previous})"
    )
    db.session.refresh(registration)
    return jsonify(success=True, previousState=previous, registration=registration_json(registration))

