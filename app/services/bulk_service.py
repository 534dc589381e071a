"""Bulk service — admin batch jobs behind the Flask CLI.

- bulk_register_members: register many members to one event at once,
  reactivating cancelled registrations instead of duplicating them.
- send_pending_passes: queue WhatsApp passes for every registration that
  never got one (e.g. after the WhatsApp device was offline).

Designed to be called from CLI commands (`flask bulk-register`,
`flask send-pending-passes`); progress is echoed with click.
"""

import logging

import click

from app.extensions import db
from app.models.member import Member
from app.models.registration import Registration
from app.services import notification_service, registration_service, whatsapp_service

logger = logging.getLogger(__name__)


def bulk_register_members(event_id, member_ids=None, payment_status="paid"):
    """Register active members to an event.

    Args:
        event_id: Target event id.
        member_ids: Optional iterable of member ids; default all active members.
        payment_status: Payment status for new registrations.

    Returns:
        dict: counts per outcome ("created", "reactivated", "existing", "failed").
    """
    query = Member.query.filter(Member.is_active.is_(True))
    if member_ids:
        query = query.filter(Member.id.in_(list(member_ids)))
    members = query.order_by(Member.id).all()

    click.echo(f"Registering {len(members)} member(s) to event {event_id}.")
    counts = {"created": 0, "reactivated": 0, "existing": 0, "failed": 0}

    for member in members:
        try:
            registration, outcome = registration_service.register_member(
                event_id, member.id, payment_status=payment_status
            )
            db.session.commit()
        except ValueError as e:
            db.session.rollback()
            counts["failed"] += 1
            click.echo(f"   ✗ {member.name} (id {member.id}): {e}")
            continue

        counts[outcome] += 1
        if outcome != "existing":
            click.echo(f"   ✓ {member.name} (id {member.id}): {outcome}, registration {registration.id}")

    click.echo(
        f"Done: {counts['created']} created, {counts['reactivated']} reactivated, "
        f"{counts['existing']} already registered, {counts['failed']} failed."
    )
    return counts


def send_pending_passes(event_id=None, dry_run=False):
    """Queue passes for registered rows whose pass was never delivered.

    Rows that are currently locked are left alone.

    Returns:
        int: Number of passes queued (or would-be-queued in dry-run mode).
    """
    if dry_run:
        click.echo("[DRY RUN] No messages will actually be sent.\n")

    query = Registration.query.filter(
        Registration.status == "registered",
        Registration.pdf_send_state == "unset",
    )
    if event_id is not None:
        query = query.filter(Registration.event_id == event_id)
    registrations = query.order_by(Registration.id).all()

    click.echo(f"Found {len(registrations)} registration(s) without a delivered pass.")
    queued = 0

    for registration in registrations:
        member = registration.member
        label = f"#{registration.id} {member.name if member else '?'}"

        if member is None or not whatsapp_service.is_valid_mobile(member.phone):
            click.echo(f"   SKIP {label}: no valid phone number")
            continue

        if dry_run:
            click.echo(f"   WOULD SEND {label} → {member.phone}")
            queued += 1
            continue

        try:
            job = notification_service.queue_pass_delivery(registration)
        except Exception as e:
            logger.error(f"Bulk pass send failed for registration {registration.id}: {e}")
            click.echo(f"   ✗ {label}: {e}")
            continue

        if job.get("status") in ("queued", "sent"):
            queued += 1
            click.echo(f"   ✓ {label}: {job.get('status')} {job.get('job_id') or ''}".rstrip())
        else:
            click.echo(f"   - {label}: {job.get('status')} {job.get('reason') or job.get('error') or ''}")

    click.echo(f"{'[DRY RUN] ' if dry_run else ''}Done: {queued} pass(es) {'would be ' if dry_run else ''}sent.")
    return queued
