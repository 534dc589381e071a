"""Pass service — render the single-page A4 visitor pass PDF.

Layout, top to bottom:
    logo (or wordmark) / event title / "VISITOR PASS" / square photo
    (or placeholder) / member name / details / QR code / instructions
    / footer

Everything is drawn into an in-memory buffer; nothing touches disk except
reading the configured logo and fonts.

Image fetches degrade: a missing or broken photo becomes a placeholder
frame of the same size. A configured logo that exists but cannot be
decoded is a broken deployment and raises PassRenderError.
"""

import io
import logging
import os
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from zoneinfo import ZoneInfo

from flask import current_app
from PIL import Image, ImageOps, UnidentifiedImageError
from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas as pdf_canvas

from app.services import pass_text, qr_service, storage_service

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN_X = 60
TOP_Y = 72

LOGO_WIDTH, LOGO_HEIGHT = 150, 66
PHOTO_SIZE = 132
QR_SIZE = 168

TITLE_COLOR = "#111827"
ACCENT_COLOR = "#2563eb"
BODY_COLOR = "#374151"
MUTED_COLOR = "#4b5563"
RULE_COLOR = "#e5e7eb"
FOOTER_COLOR = "#6b7280"


class PassRenderError(Exception):
    """The pass could not be produced at all."""


# --- Images ---


def crop_to_square(img, size):
    """Center-square crop, then resize to size x size.

    Same crop the mobile app preview uses, so server and client passes match.
    """
    img = ImageOps.exif_transpose(img)
    width, height = img.size
    side = min(width, height)
    left = (width - side) // 2
    top = (height - side) // 2
    img = img.crop((left, top, left + side, top + side))
    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    return img.resize((size, size), Image.LANCZOS)


def load_photo(ref, base_url, pixels):
    """Fetch and square-crop a profile photo. Returns a PIL image or None."""
    data = storage_service.fetch_image(ref, base_url)
    if not data:
        return None
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return crop_to_square(img, pixels)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning(f"Profile photo could not be decoded: {e}")
        return None


def load_logo(path):
    """Load the configured logo. None if not configured or missing."""
    if not path:
        return None
    if not os.path.isfile(path):
        logger.warning(f"Pass logo not found at {path}; using wordmark")
        return None
    try:
        with Image.open(path) as img:
            img.load()
            return img.convert("RGBA")
    except (UnidentifiedImageError, OSError) as e:
        raise PassRenderError(f"Pass logo at {path} is unreadable: {e}") from e


# --- Text helpers ---


def format_amount(value):
    try:
        return f"{Decimal(str(value if value is not None else 0)):.2f}"
    except InvalidOperation:
        return "0.00"


def format_timestamp(value, tz_name="Asia/Kolkata"):
    """en-IN style, e.g. "17 Oct 2026, 03:45 PM"."""
    if value is None:
        return "—"
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    local = value.astimezone(ZoneInfo(tz_name))
    return f"{local.day} {local:%b %Y}, {local:%I:%M %p}"


def build_instructions(config):
    helpdesk = config.get("PASS_HELPDESK_PHONE")
    org = config.get("PASS_ORG_NAME", "event")
    if helpdesk:
        assistance = f"For assistance, contact the {org} helpdesk at {helpdesk}."
    else:
        assistance = f"For assistance, contact the {org} helpdesk at the venue."
    return [
        "Carry a valid photo ID along with this pass to the venue.",
        "Present this QR code at the entry gate for verification.",
        "Arrive at least 15 minutes before the event start time.",
        "Do not share this pass with others; it is non-transferable.",
        assistance,
    ]


def pass_filename(registration):
    return f"mandapam-visitor-pass-{registration.id}.pdf"


# --- Rendering ---


def _y(cursor):
    """Top-down cursor to reportlab's bottom-up y."""
    return PAGE_HEIGHT - cursor


def _rule(c, cursor):
    c.setStrokeColor(HexColor(RULE_COLOR))
    c.setLineWidth(1)
    c.line(MARGIN_X, _y(cursor), PAGE_WIDTH - MARGIN_X, _y(cursor))


def _draw_logo(c, cursor, logo, org_name):
    x = (PAGE_WIDTH - LOGO_WIDTH) / 2
    if logo is not None:
        c.drawImage(
            ImageReader(logo),
            x,
            _y(cursor + LOGO_HEIGHT),
            width=LOGO_WIDTH,
            height=LOGO_HEIGHT,
            preserveAspectRatio=True,
            mask="auto",
        )
    else:
        c.setFont("Helvetica-Bold", 28)
        c.setFillColor(HexColor(ACCENT_COLOR))
        c.drawCentredString(PAGE_WIDTH / 2, _y(cursor + LOGO_HEIGHT / 2 + 10), org_name)
    return cursor + LOGO_HEIGHT + 28


def _draw_photo(c, cursor, photo):
    x = (PAGE_WIDTH - PHOTO_SIZE) / 2
    bottom = _y(cursor + PHOTO_SIZE)
    if photo is not None:
        c.drawImage(ImageReader(photo), x, bottom, width=PHOTO_SIZE, height=PHOTO_SIZE)
    else:
        c.setStrokeColor(HexColor(RULE_COLOR))
        c.setFillColor(HexColor("#f3f4f6"))
        c.setLineWidth(1)
        c.rect(x, bottom, PHOTO_SIZE, PHOTO_SIZE, stroke=1, fill=1)
        c.setFont("Helvetica", 10)
        c.setFillColor(HexColor(FOOTER_COLOR))
        c.drawCentredString(PAGE_WIDTH / 2, bottom + PHOTO_SIZE / 2 - 3, "Photo not available")
    return cursor + PHOTO_SIZE + 26


def _draw_details(c, cursor, registration, tz_name):
    c.setFont("Helvetica", 12)
    c.setFillColor(HexColor(BODY_COLOR))
    right = PAGE_WIDTH - MARGIN_X

    payment = (registration.payment_status or "pending").capitalize()
    c.drawString(MARGIN_X, _y(cursor + 12), f"Registration ID: {registration.id}")
    c.drawRightString(right, _y(cursor + 12), f"Payment Status: {payment}")
    cursor += 18

    c.drawString(
        MARGIN_X, _y(cursor + 12),
        f"Amount Paid: Rs. {format_amount(registration.amount_paid)}",
    )
    c.drawRightString(
        right, _y(cursor + 12),
        f"Registered On: {format_timestamp(registration.registered_at, tz_name)}",
    )
    return cursor + 22


def _draw_qr(c, cursor, registration):
    png = qr_service.to_displayable_image(qr_service.encode(registration))
    x = (PAGE_WIDTH - QR_SIZE) / 2
    c.drawImage(
        ImageReader(io.BytesIO(png)), x, _y(cursor + QR_SIZE), width=QR_SIZE, height=QR_SIZE
    )
    return cursor + QR_SIZE + 30


def _draw_instructions(c, cursor, instructions):
    c.setFont("Helvetica-Bold", 14)
    c.setFillColor(HexColor(TITLE_COLOR))
    c.drawCentredString(PAGE_WIDTH / 2, _y(cursor + 14), "Important Instructions")
    cursor += 22

    c.setFont("Helvetica", 12)
    c.setFillColor(HexColor(MUTED_COLOR))
    width = PAGE_WIDTH - MARGIN_X * 2
    for item in instructions:
        for line in simpleSplit(f"• {item}", "Helvetica", 12, width):
            c.drawString(MARGIN_X, _y(cursor + 12), line)
            cursor += 16
        cursor += 2
    return cursor + 16


def render(registration, event, member, base_url=None):
    """Render the visitor pass for one registration.

    Args:
        registration: Registration row.
        event: Event row.
        member: Member row (photo and display name).
        base_url: Prefix for relative upload references.

    Returns:
        bytes: the PDF document.

    Raises:
        PassRenderError: If the document cannot be produced.
    """
    config = current_app.config
    base_url = base_url or config["APP_BASE_URL"]
    tz_name = config.get("PASS_TIMEZONE", "Asia/Kolkata")
    org_name = config.get("PASS_ORG_NAME", "MANDAPAM")

    logo = load_logo(config.get("PASS_LOGO_PATH"))
    photo = None
    if member is not None and member.profile_image:
        photo = load_photo(
            member.profile_image, base_url, config.get("PASS_PHOTO_PIXELS", 400)
        )
        if photo is None:
            logger.info(f"Pass {registration.id}: rendering without profile photo")

    title = (event.title if event is not None else None) or f"{org_name} Event"
    display_name = (member.name if member is not None else None) or "Guest"

    buf = io.BytesIO()
    try:
        c = pdf_canvas.Canvas(buf, pagesize=A4)
        c.setTitle(f"Visitor Pass #{registration.id}")
        c.setAuthor(org_name)

        cursor = _draw_logo(c, TOP_Y, logo, org_name)

        pass_text.draw_centered_text(
            c, title, PAGE_WIDTH / 2, _y(cursor + 20), 20, TITLE_COLOR,
            font_dir=config.get("PASS_FONT_DIR"),
        )
        cursor += 30
        c.setFont("Helvetica-Bold", 16)
        c.setFillColor(HexColor(ACCENT_COLOR))
        c.drawCentredString(PAGE_WIDTH / 2, _y(cursor + 16), "VISITOR PASS")
        cursor += 24

        cursor = _draw_photo(c, cursor, photo)

        pass_text.draw_centered_text(
            c, display_name, PAGE_WIDTH / 2, _y(cursor + 18), 18, TITLE_COLOR,
            font_dir=config.get("PASS_FONT_DIR"),
        )
        cursor += 32

        _rule(c, cursor)
        cursor += 22

        cursor = _draw_details(c, cursor, registration, tz_name)
        cursor = _draw_qr(c, cursor, registration)
        cursor = _draw_instructions(c, cursor, build_instructions(config))

        _rule(c, cursor)
        cursor += 22
        c.setFont("Helvetica", 11)
        c.setFillColor(HexColor(FOOTER_COLOR))
        c.drawCentredString(PAGE_WIDTH / 2, _y(cursor + 11), config["PASS_FOOTER_TEXT"])

        c.showPage()
        c.save()
    except PassRenderError:
        raise
    except Exception as e:
        logger.error(f"Pass render failed for registration {registration.id}: {e}")
        raise PassRenderError(str(e)) from e

    pdf = buf.getvalue()
    logger.info(f"Rendered pass for registration {registration.id} ({len(pdf)} bytes)")
    return pdf
