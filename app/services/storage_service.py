"""Storage service — resolve stored file references and fetch image bytes.

A stored reference (e.g. members.profile_image) is one of:
    data:image/...;base64,...   inline upload from the mobile app
    http(s)://...               already a public URL
    <filename>                  served from {base_url}/uploads/<filename>

fetch_image() is best-effort: it returns None on any failure and logs
why, so callers can degrade instead of aborting.
"""

import base64
import binascii
import logging
import os

import requests
from flask import current_app

logger = logging.getLogger(__name__)

# Max image size accepted for pass rendering: 10 MB
MAX_IMAGE_SIZE = 10 * 1024 * 1024


def resolve_file_url(ref, base_url=""):
    """Translate a stored reference into a fetchable URL (or data: URI)."""
    if not ref:
        return None
    if ref.startswith(("data:", "http://", "https://")):
        return ref
    return f"{(base_url or '').rstrip('/')}/uploads/{ref.lstrip('/')}"


def _decode_data_url(url):
    try:
        _, encoded = url.split(",", 1)
        return base64.b64decode(encoded, validate=False)
    except (ValueError, binascii.Error) as e:
        logger.warning(f"Bad data: URL image: {e}")
        return None


def _read_local(ref):
    """Read an upload from the local upload folder, if present."""
    upload_dir = current_app.config.get("UPLOAD_FOLDER", "uploads")
    if not os.path.isabs(upload_dir):
        upload_dir = os.path.join(current_app.root_path, "..", upload_dir)
    filepath = os.path.realpath(os.path.join(upload_dir, ref.lstrip("/")))

    # Keep lookups inside the upload folder
    if not filepath.startswith(os.path.realpath(upload_dir) + os.sep):
        logger.warning(f"Rejected upload path outside upload folder: {ref}")
        return None
    if not os.path.isfile(filepath):
        return None
    with open(filepath, "rb") as f:
        return f.read()


def fetch_image(ref, base_url=""):
    """Return the bytes for a stored image reference, or None."""
    if not ref:
        return None

    if ref.startswith("data:"):
        return _decode_data_url(ref)

    if not ref.startswith(("http://", "https://")):
        try:
            data = _read_local(ref)
        except OSError as e:
            logger.warning(f"Failed to read local upload {ref}: {e}")
            data = None
        if data is not None:
            return data

    url = resolve_file_url(ref, base_url)
    timeout = current_app.config.get("PASS_IMAGE_FETCH_TIMEOUT") or None
    try:
        resp = requests.get(url, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.warning(f"Image fetch failed for {url}: {e}")
        return None

    if len(resp.content) > MAX_IMAGE_SIZE:
        logger.warning(f"Image too large ({len(resp.content)} bytes): {url}")
        return None
    return resp.content
