"""QR credential service — sign, encode, decode and draw pass QR codes.

Token format:
    "EVT:" + base64url_nopad(json({"data": {"r", "e", "m", "t"}, "sig": hex}))

`sig` is HMAC-SHA256 over the compact JSON of `data` (keys in r, e, m, t
order), keyed with QR_SECRET. Tokens are stateless and never expire; the
registration row decides whether a scan is still admissible.

decode() never raises. Every malformed, forged or mistagged token comes
back as None so callers cannot learn which check failed.
"""

import base64
import binascii
import hashlib
import hmac
import io
import json
import logging
import re
from datetime import datetime, timezone

import qrcode
from flask import current_app

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "EVT:"

_B64URL_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_PAYLOAD_KEYS = ("r", "e", "m", "t")
_SIG_RE = re.compile(r"^[0-9a-f]{64}\Z")


def _canonical(obj):
    """Compact JSON, same bytes as JSON.stringify for these shapes."""
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def _b64url_encode(raw):
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(text):
    """Strict base64url (no padding) decode. Returns bytes or None.

    Rejects any text that does not re-encode to itself, so trailing-bit
    mutations cannot alias a valid token.
    """
    if not text or not _B64URL_RE.match(text) or len(text) % 4 == 1:
        return None
    padded = text + "=" * (-len(text) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError):
        return None
    if _b64url_encode(raw) != text:
        return None
    return raw


def _secret():
    return current_app.config["QR_SECRET"].encode("utf-8")


def _epoch_millis(value):
    if value is None:
        value = datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


# --- Payload + signature ---


def build_payload(registration):
    """Return the signed fields for a registration, in canonical order."""
    issued = registration.registered_at or registration.created_at
    return {
        "r": registration.id,
        "e": registration.event_id,
        "m": registration.member_id,
        "t": _epoch_millis(issued),
    }


def sign_payload(payload):
    """Wrap a payload with its HMAC-SHA256 hex signature."""
    sig = hmac.new(
        _secret(), _canonical(payload).encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return {"data": payload, "sig": sig}


def encode(registration):
    """Build the full "EVT:..." token string for a registration."""
    envelope = sign_payload(build_payload(registration))
    return TOKEN_PREFIX + _b64url_encode(_canonical(envelope).encode("utf-8"))


def decode(token):
    """Verify a scanned token.

    Returns:
        The payload dict {"r", "e", "m", "t"} if the token is well-formed
        and correctly signed, else None.
    """
    if not isinstance(token, str) or not token.startswith(TOKEN_PREFIX):
        return None

    raw = _b64url_decode(token[len(TOKEN_PREFIX):])
    if raw is None:
        return None

    try:
        envelope = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, RecursionError):
        return None

    if not isinstance(envelope, dict):
        return None
    data = envelope.get("data")
    sig = envelope.get("sig")
    if not isinstance(data, dict) or not isinstance(sig, str):
        return None
    if not _SIG_RE.match(sig):
        return None
    if set(data) != set(_PAYLOAD_KEYS):
        return None
    for key in _PAYLOAD_KEYS:
        # bool is an int subclass; a forged true/false must not pass as an id
        if not isinstance(data[key], int) or isinstance(data[key], bool):
            return None

    payload = {key: data[key] for key in _PAYLOAD_KEYS}
    expected = sign_payload(payload)
    if not hmac.compare_digest(expected["sig"].encode("ascii"), sig.encode("ascii")):
        return None
    # Only the exact bytes we issue are accepted
    if _canonical(expected).encode("utf-8") != raw:
        return None

    return payload


# --- Display ---


def to_displayable_image(token, box_size=10, border=2):
    """Render a token as PNG bytes (error correction level M)."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(token)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def to_data_url(token):
    """PNG QR as a data: URL for JSON clients."""
    png = to_displayable_image(token)
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")
