"""WhatsApp service — send the visitor pass PDF through messagesapi.co.in.

One multipart POST per call:
    {WHATSAPP_API_URL}/{DEVICE_UID}/{quoted DEVICE_NAME}
    file=<pdf>, phone=91XXXXXXXXXX, message=<greeting + template>

No timeout and no retry here. Slow networks are allowed to finish; the
Celery task owns retry/backoff. Any failure raises WhatsAppSendError.
"""

import logging
import re
from urllib.parse import quote

import requests
from flask import current_app

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE_TEMPLATE = """🙏 MANDAPAM 2026 – कोल्हापूर मध्ये आपले हार्दिक स्वागत! 🎉

आपण आता MANDAPAM Association चे अधिकृत सदस्य झाला आहात. 🎊

आपला Visitor Pass खाली जोडलेला आहे. 🎫

📞 कार्यक्रमाची सविस्तर माहिती, एक्झिबिटर्स माहिती, वेळापत्रक आणि खास ऑफर्स पाहण्यासाठी
MANDAPAM App डाउनलोड करा 👇

📱 Android वापरकर्त्यांसाठी:
👉 https://play.google.com/store/apps/details?id=com.mandapam.expo

🍎 iOS वापरकर्त्यांसाठी:
👉 लवकरच येत आहे

🔑 आपल्या मोबाईल क्रमांकाने लॉगिन करून अँपमध्ये प्रवेश करा.

आपल्या सहभागाबद्दल मनःपूर्वक धन्यवाद!

— MANDAPAM टीम"""

# Indian mobile numbers, after stripping +91 / 91
MOBILE_RE = re.compile(r"^[6-9]\d{9}$")


class WhatsAppSendError(Exception):
    """The provider rejected the message or could not be reached."""


def format_phone_number(value, country_code=None):
    """Normalize a phone number to <country code><10 digits>.

    Returns "" when the number cannot be normalized.
    """
    if country_code is None:
        country_code = current_app.config.get("WHATSAPP_COUNTRY_CODE", "91")
    digits = re.sub(r"\D", "", value or "")
    if not digits:
        return ""
    if len(digits) == 10:
        return f"{country_code}{digits}"
    if len(digits) == 12 and digits.startswith(country_code):
        return digits
    if len(digits) > 10:
        return f"{country_code}{digits[-10:]}"
    return ""


def is_valid_mobile(value):
    """True for a 10-digit Indian mobile, with or without +91/91."""
    cleaned = re.sub(r"[\s-]", "", value or "")
    if cleaned.startswith("+91"):
        cleaned = cleaned[3:]
    elif cleaned.startswith("91") and len(cleaned) == 12:
        cleaned = cleaned[2:]
    return bool(MOBILE_RE.match(cleaned))


def build_message(member_name=None):
    """Personalized greeting followed by the configured template."""
    template = (
        current_app.config.get("WHATSAPP_MESSAGE_TEMPLATE") or DEFAULT_MESSAGE_TEMPLATE
    )
    greeting = f"प्रिय {member_name},\n\n" if member_name else ""
    return f"{greeting}{template}"


def _endpoint():
    device_uid = current_app.config.get("WHATSAPP_DEVICE_UID")
    if not device_uid:
        raise WhatsAppSendError("WHATSAPP_DEVICE_UID is not configured.")
    base = current_app.config["WHATSAPP_API_URL"].rstrip("/")
    device_name = current_app.config.get("WHATSAPP_DEVICE_NAME", "Mandapam")
    return f"{base}/{device_uid}/{quote(device_name, safe='')}"


def send_pdf(phone, pdf_bytes, member_name=None, filename="visitor-pass.pdf"):
    """Send one PDF to one phone number.

    Returns:
        dict: {"phone": formatted_phone, "status_code": 200}

    Raises:
        WhatsAppSendError: On invalid input, network failure, or non-200.
    """
    formatted = format_phone_number(phone)
    if not formatted:
        raise WhatsAppSendError(f"Invalid phone number format: {phone!r}")
    if not pdf_bytes:
        raise WhatsAppSendError("PDF is empty.")

    url = _endpoint()
    message = build_message(member_name)
    logger.info(
        f"Sending WhatsApp pass to {formatted} "
        f"({len(pdf_bytes) / 1024:.1f} KB, message {len(message)} chars)"
    )

    try:
        resp = requests.post(
            url,
            files={"file": (filename, pdf_bytes, "application/pdf")},
            data={"phone": formatted, "message": message},
            timeout=None,
        )
    except requests.RequestException as e:
        logger.error(f"WhatsApp request to {formatted} failed: {e}")
        raise WhatsAppSendError(str(e)) from e

    if resp.status_code != 200:
        logger.error(
            f"WhatsApp API returned {resp.status_code} for {formatted}: "
            f"{resp.text[:200]}"
        )
        raise WhatsAppSendError(f"WhatsApp API returned status {resp.status_code}")

    logger.info(f"WhatsApp pass sent to {formatted}")
    return {"phone": formatted, "status_code": resp.status_code}
