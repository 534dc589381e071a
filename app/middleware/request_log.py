"""Request log middleware — one log line per request.

Records method, path, status and duration. 5xx responses log at WARNING
so they stand out in production logs.
"""

import logging
import time

from flask import g, request

logger = logging.getLogger(__name__)


def start_timer():
    """Before-request hook: remember when the request started."""
    g.request_started_at = time.perf_counter()


def log_request(response):
    """After-request hook: log the finished request."""
    started = getattr(g, "request_started_at", None)
    duration_ms = (time.perf_counter() - started) * 1000 if started else 0.0
    message = (
        f"{request.method} {request.path} -> {response.status_code} "
        f"({duration_ms:.1f} ms) ip={request.remote_addr}"
    )
    if response.status_code >= 500:
        logger.warning(message)
    else:
        logger.info(message)
    return response


def init_request_log_middleware(app):
    """Register the request timer and logger hooks."""
    app.before_request(start_timer)
    app.after_request(log_request)
