"""Check-in blueprint — /api/events/checkin

Gate scanners POST the scanned QR string; the response carries either the
visitor's display details or the reason the scan was refused.

Reason -> HTTP status:
    invalid_token, cancelled, no_show  400
    not_found                          404
    already_attended                   409
"""

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from app.blueprints.registrations import registration_json
from app.decorators import staff_required
from app.extensions import limiter
from app.services import checkin_service, storage_service

checkin_bp = Blueprint("checkin", __name__, url_prefix="/api/events")

REASON_STATUS = {
    "invalid_token": 400,
    "cancelled": 400,
    "no_show": 400,
    "not_found": 404,
    "already_attended": 409,
}


@checkin_bp.route("/checkin", methods=["POST"])
@limiter.limit("120 per minute")
@staff_required
def checkin():
    data = request.get_json(silent=True) or {}
    qr_token = data.get("qrToken")
    if not qr_token or not isinstance(qr_token, str):
        return jsonify(success=False, reason="invalid_token", message="qrToken is required."), 400

    context, reason = checkin_service.check_in(qr_token.strip(), actor_user_id=current_user.id)
    if reason:
        return jsonify(
            success=False,
            reason=reason,
            message=checkin_service.FAILURE_MESSAGES[reason],
        ), REASON_STATUS[reason]

    member = context["member"]
    event = context["event"]
    base_url = current_app.config["APP_BASE_URL"]
    return jsonify(
        success=True,
        message="Check-in successful.",
        registration=registration_json(context["registration"]),
        member={
            "id": member.id,
            "name": member.name,
            "businessName": member.business_name,
            "city": member.city,
            "photoUrl": storage_service.resolve_file_url(member.profile_image, base_url),
        },
        event={
            "id": event.id,
            "title": event.title,
            "venue": event.venue,
        },
    )
