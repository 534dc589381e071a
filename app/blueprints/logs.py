"""Logs blueprint — /api/logs/*

Mobile and web clients report their own errors here (e.g. a scanner that
failed to read a pass) so they land in the server log alongside the
request that caused them. Always answers 200 so a logging failure never
cascades into the client.
"""

import logging

from flask import Blueprint, jsonify, request

from app.extensions import limiter

logs_bp = Blueprint("logs", __name__, url_prefix="/api/logs")

logger = logging.getLogger(__name__)

# Longest value accepted per field
MAX_FIELD_LENGTH = 2000


def _clip(value):
    if value is None:
        return None
    text = str(value)
    return text[:MAX_FIELD_LENGTH]


@logs_bp.route("/client-error", methods=["POST"])
@limiter.limit("60 per minute")
def client_error():
    data = request.get_json(silent=True) or {}
    logger.error(
        "Client error: "
        f"source={_clip(data.get('source')) or 'unknown'} "
        f"message={_clip(data.get('message') or data.get('error'))} "
        f"screen={_clip(data.get('screen'))} "
        f"qrToken={_clip(data.get('qrToken'))} "
        f"stack={_clip(data.get('stack'))} "
        f"ua={_clip(request.headers.get('User-Agent'))}"
    )
    return jsonify(success=True)
