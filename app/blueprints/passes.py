"""Passes blueprint — /api/public/events/<event_id>/registrations/<id>/*

Public endpoints used by the registration confirmation screen and the
admin panel:

  GET  /download-pdf   — render the visitor pass on demand
  GET  /qr             — PNG of the registration's QR credential
  POST /send-whatsapp  — queue the pass for WhatsApp delivery

The send endpoint is rate limited per IP, except for logged-in admins,
managers and sub-admins, who are also recorded as the notifying user.
Only staff may force a resend of an already-delivered pass.

Plus, for staff:
  GET  /api/notifications/jobs/<job_id> — queued delivery status
"""

import logging

from flask import Blueprint, Response, abort, jsonify, request
from flask_login import current_user

from app.decorators import staff_required
from app.extensions import limiter
from app.services import (
    notification_service,
    pass_service,
    qr_service,
    registration_service,
    whatsapp_service,
)
from app.services.pass_service import PassRenderError

passes_bp = Blueprint(
    "passes",
    __name__,
    url_prefix="/api/public/events/<int:event_id>/registrations/<int:registration_id>",
)
jobs_bp = Blueprint("jobs", __name__, url_prefix="/api/notifications")

logger = logging.getLogger(__name__)


def _staff_caller():
    return current_user.is_authenticated and current_user.is_active


def _privileged_caller():
    return _staff_caller() and current_user.is_privileged


def _load(event_id, registration_id):
    registration = registration_service.get_registration(registration_id, event_id)
    if registration is None:
        abort(404)
    return registration


def _base_url():
    return request.host_url.rstrip("/")


# ──────────────────────────────────────────────
# GET /download-pdf
# ──────────────────────────────────────────────

@passes_bp.route("/download-pdf")
@limiter.limit("30 per minute")
def download_pdf(event_id, registration_id):
    registration = _load(event_id, registration_id)
    if registration.member is None:
        return jsonify(success=False, message="Registration not found"), 404

    pdf = pass_service.render(
        registration, registration.event, registration.member, _base_url()
    )
    filename = pass_service.pass_filename(registration)
    return Response(
        pdf,
        mimetype="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Length": str(len(pdf)),
        },
    )


@passes_bp.route("/qr")
def qr_png(event_id, registration_id):
    registration = _load(event_id, registration_id)
    png = qr_service.to_displayable_image(qr_service.encode(registration))
    return Response(png, mimetype="image/png")


# ──────────────────────────────────────────────
# POST /send-whatsapp
# ──────────────────────────────────────────────

@passes_bp.route("/send-whatsapp", methods=["POST"])
@limiter.limit("20 per 15 minutes", exempt_when=_privileged_caller)
def send_whatsapp(event_id, registration_id):
    """Queue the visitor pass for WhatsApp delivery.

    Responses (all 200):
        alreadySent  — delivered before; nothing queued
        inProgress   — another send holds the lock; nothing queued
        queued       — accepted; jobId set when it went through the queue
    """
    registration = _load(event_id, registration_id)
    member = registration.member
    if member is None:
        return jsonify(
            success=False, message="Member information not found for this registration"
        ), 400

    phone = (member.phone or "").strip()
    if not phone:
        return jsonify(
            success=False,
            message="Member phone number is required but not found. "
                    "Please update the member profile with a valid phone number.",
        ), 400
    if not whatsapp_service.is_valid_mobile(phone):
        return jsonify(
            success=False,
            message=f"Invalid phone number format: {phone}. "
                    f"Phone number must be 10 digits starting with 6-9.",
        ), 400

    data = request.get_json(silent=True) or {}
    force_resend = bool(data.get("forceResend")) and _staff_caller()
    notify_user_id = current_user.id if _staff_caller() else None

    if registration.pdf_send_state == "sent" and not force_resend:
        return jsonify(
            success=True,
            message="WhatsApp message was already sent for this registration",
            phone=phone,
            alreadySent=True,
            sentAt=registration.pdf_sent_at.isoformat() if registration.pdf_sent_at else None,
        )
    if registration.pdf_send_state == "locked":
        return jsonify(
            success=True,
            message="WhatsApp message is currently being sent. Please wait.",
            phone=phone,
            inProgress=True,
        )

    job = notification_service.queue_pass_delivery(
        registration,
        base_url=_base_url(),
        notify_user_id=notify_user_id,
        force_resend=force_resend,
    )

    if job.get("status") == "skipped":
        return jsonify(
            success=True,
            message=f"Send skipped: {job.get('reason')}",
            phone=phone,
            alreadySent=job.get("reason") == "already_sent",
            inProgress=job.get("reason") == "lock_held",
        )
    if job.get("status") == "failed":
        return jsonify(
            success=False,
            message="Failed to send WhatsApp message. Please try again later.",
            phone=phone,
        ), 502

    return jsonify(
        success=True,
        message=(
            "WhatsApp message queued for delivery" if job.get("queued")
            else "WhatsApp message sent"
        ),
        phone=phone,
        queued=bool(job.get("queued")),
        jobId=job.get("job_id"),
    )


@passes_bp.errorhandler(PassRenderError)
def pass_render_failed(e):
    logger.error(f"Pass render error: {e}")
    return jsonify(success=False, message="Server error while generating PDF"), 500


# ──────────────────────────────────────────────
# GET /api/notifications/jobs/<job_id>
# ──────────────────────────────────────────────

@jobs_bp.route("/jobs/<job_id>")
@staff_required
def job_status(job_id):
    return jsonify(success=True, job=notification_service.get_job_status(job_id))
