"""
Celery tasks for visitor pass delivery.

One job = one registration's one send attempt. Retries come from Celery
(exponential backoff with jitter) on WhatsAppSendError; the send-lock is
already released when the error reaches here. Rate limit and retry ceiling
are applied through task_annotations (NOTIFY_RATE_LIMIT, NOTIFY_MAX_RETRIES).
"""

import base64
import logging

from celery import shared_task

from app.services.notification_service import deliver_pass
from app.services.whatsapp_service import WhatsAppSendError

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    name="app.tasks.notification_tasks.send_pass_task",
    acks_late=True,
    autoretry_for=(WhatsAppSendError,),
    retry_backoff=True,
    retry_backoff_max=600,  # Max 10 minute backoff
    retry_jitter=True,
    max_retries=3,
)
def send_pass_task(
    self,
    registration_id,
    pass_pdf,
    phone=None,
    display_name=None,
    event_id=None,
    notify_user_id=None,
    force_resend=False,
):
    """Deliver a base64-encoded pass PDF for one registration."""
    logger.info(
        f"Pass delivery job {self.request.id} for registration {registration_id} "
        f"(attempt {self.request.retries + 1})"
    )
    return deliver_pass(
        registration_id,
        base64.b64decode(pass_pdf),
        phone=phone,
        display_name=display_name,
        event_id=event_id,
        notify_user_id=notify_user_id,
        force_resend=force_resend,
    )
