"""Tests for the registration lifecycle.

Covers:
- Registering, with reuse of a cancelled row (reactivation)
- Attendance transitions (valid + invalid, terminal states)
- Payment sub-state transitions, independent of attendance
- can_check_in reasons
- mark_attended is conditional and only succeeds once
- Notes sanitized via bleach
"""

from datetime import datetime, timezone

import pytest

from app.models.audit import AuditEvent
from app.models.member import Member
from app.models.registration import Registration
from app.services import registration_service


# ─── Helpers ───────────────────────────────────────────────

def _make_registration(db_session, event_id, member_id, **kwargs):
    defaults = {
        "status": "registered",
        "payment_status": "pending",
        "registered_at": datetime(2026, 2, 1, 10, 0, tzinfo=timezone.utc),
    }
    defaults.update(kwargs)
    registration = Registration(event_id=event_id, member_id=member_id, **defaults)
    db_session.add(registration)
    db_session.commit()
    return registration


class TestRegisterMember:

    def test_creates_pending_registration(self, db_session, seed_data):
        registration, outcome = registration_service.register_member(
            seed_data["event_id"], seed_data["other_member_id"],
            actor_user_id=seed_data["admin_id"],
        )
        db_session.commit()

        assert outcome == "created"
        assert registration.status == "registered"
        assert registration.payment_status == "pending"
        assert registration.pdf_send_state == "unset"
        assert registration.registered_at is not None

        audit = AuditEvent.query.filter_by(
            registration_id=registration.id, action="registration.created"
        ).one()
        assert audit.actor_user_id == seed_data["admin_id"]
        assert audit.metadata_["member_id"] == seed_data["other_member_id"]

    def test_existing_active_registration_returned(self, db_session, seed_data):
        registration, outcome = registration_service.register_member(
            seed_data["event_id"], seed_data["member_id"]
        )
        assert outcome == "existing"
        assert registration.id == seed_data["registration_id"]
        assert Registration.query.count() == 1

    def test_cancelled_registration_is_reactivated_not_duplicated(self, db_session, seed_data):
        registration = db_session.get(Registration, seed_data["registration_id"])
        registration_service.cancel_registration(registration)
        db_session.commit()

        again, outcome = registration_service.register_member(
            seed_data["event_id"], seed_data["member_id"]
        )
        db_session.commit()

        assert outcome == "reactivated"
        assert again.id == seed_data["registration_id"]
        assert again.status == "registered"
        assert again.cancelled_at is None
        assert Registration.query.count() == 1

    def test_unknown_event_rejected(self, db_session, seed_data):
        with pytest.raises(ValueError, match="Event 999 not found"):
            registration_service.register_member(999, seed_data["member_id"])

    def test_unknown_member_rejected(self, db_session, seed_data):
        with pytest.raises(ValueError, match="Member 999 not found"):
            registration_service.register_member(seed_data["event_id"], 999)

    def test_inactive_member_rejected(self, db_session, seed_data):
        member = db_session.get(Member, seed_data["other_member_id"])
        member.is_active = False
        db_session.commit()

        with pytest.raises(ValueError, match="inactive"):
            registration_service.register_member(
                seed_data["event_id"], seed_data["other_member_id"]
            )

    def test_invalid_payment_status_rejected(self, db_session, seed_data):
        with pytest.raises(ValueError, match="Invalid payment status"):
            registration_service.register_member(
                seed_data["event_id"], seed_data["other_member_id"],
                payment_status="bogus",
            )

    def test_negative_amount_rejected(self, db_session, seed_data):
        with pytest.raises(ValueError, match="negative"):
            registration_service.register_member(
                seed_data["event_id"], seed_data["other_member_id"],
                amount_paid="-5",
            )

    def test_notes_are_sanitized(self, db_session, seed_data):
        registration, _ = registration_service.register_member(
            seed_data["event_id"], seed_data["other_member_id"],
            notes="<script>alert(1)</script>Walk-in <b>VIP</b>",
        )
        assert "<" not in registration.notes
        assert "Walk-in VIP" in registration.notes


class TestTransitions:

    def test_cancel_keeps_payment_status(self, db_session, seed_data):
        registration = db_session.get(Registration, seed_data["registration_id"])
        registration_service.cancel_registration(registration, reason="<i>duplicate</i>")
        db_session.commit()

        assert registration.status == "cancelled"
        assert registration.payment_status == "paid"
        assert registration.cancelled_at is not None

        audit = AuditEvent.query.filter_by(action="registration.cancelled").one()
        assert audit.metadata_["reason"] == "duplicate"
        assert audit.metadata_["old_status"] == "registered"

    def test_cannot_cancel_twice(self, db_session, seed_data):
        registration = db_session.get(Registration, seed_data["registration_id"])
        registration_service.cancel_registration(registration)
        with pytest.raises(ValueError, match="Cannot transition"):
            registration_service.cancel_registration(registration)

    def test_reactivate_requires_cancelled(self, db_session, seed_data):
        registration = db_session.get(Registration, seed_data["registration_id"])
        with pytest.raises(ValueError, match="Cannot transition"):
            registration_service.reactivate_registration(registration)

    @pytest.mark.parametrize("terminal", ["attended", "no_show"])
    def test_terminal_states_allow_nothing(self, db_session, seed_data, terminal):
        registration = _make_registration(
            db_session, seed_data["event_id"], seed_data["other_member_id"],
            status=terminal,
        )
        with pytest.raises(ValueError, match="terminal state"):
            registration_service.cancel_registration(registration)

    def test_mark_no_show(self, db_session, seed_data):
        registration = db_session.get(Registration, seed_data["registration_id"])
        registration_service.mark_no_show(registration)
        db_session.commit()
        assert registration.status == "no_show"


class TestRecordPayment:

    def test_pending_to_paid(self, db_session, seed_data):
        registration = _make_registration(
            db_session, seed_data["event_id"], seed_data["other_member_id"]
        )
        old = registration_service.record_payment(
            registration, "paid", amount_paid="500", cash_receipt_number="R-101"
        )
        db_session.commit()

        assert old == "pending"
        assert registration.payment_status == "paid"
        assert str(registration.amount_paid) == "500.00"
        assert registration.cash_receipt_number == "R-101"

    def test_paid_to_pending_rejected(self, db_session, seed_data):
        registration = db_session.get(Registration, seed_data["registration_id"])
        with pytest.raises(ValueError, match="Cannot change payment"):
            registration_service.record_payment(registration, "pending")

    def test_refund_leaves_attendance_alone(self, db_session, seed_data):
        registration = db_session.get(Registration, seed_data["registration_id"])
        registration_service.record_payment(registration, "refunded")
        db_session.commit()
        assert registration.payment_status == "refunded"
        assert registration.status == "registered"

    def test_unknown_status_rejected(self, db_session, seed_data):
        registration = db_session.get(Registration, seed_data["registration_id"])
        with pytest.raises(ValueError, match="Invalid payment status"):
            registration_service.record_payment(registration, "settled")

    def test_same_status_is_allowed(self, db_session, seed_data):
        registration = db_session.get(Registration, seed_data["registration_id"])
        old = registration_service.record_payment(registration, "paid", payment_id="pay_123")
        assert old == "paid"
        assert registration.payment_id == "pay_123"


class TestCheckInRules:

    def test_none_is_not_found(self):
        assert registration_service.can_check_in(None) == (False, "not_found")

    def test_registered_is_admissible(self, db_session, seed_data):
        registration = db_session.get(Registration, seed_data["registration_id"])
        assert registration_service.can_check_in(registration) == (True, None)

    def test_pending_payment_is_still_admissible(self, db_session, seed_data):
        registration = _make_registration(
            db_session, seed_data["event_id"], seed_data["other_member_id"]
        )
        assert registration_service.can_check_in(registration) == (True, None)

    @pytest.mark.parametrize("status,reason", [
        ("cancelled", "cancelled"),
        ("attended", "already_attended"),
        ("no_show", "no_show"),
    ])
    def test_rejection_reasons(self, db_session, seed_data, status, reason):
        registration = _make_registration(
            db_session, seed_data["event_id"], seed_data["other_member_id"],
            status=status,
        )
        assert registration_service.can_check_in(registration) == (False, reason)

    def test_attended_at_alone_means_already_attended(self, db_session, seed_data):
        registration = db_session.get(Registration, seed_data["registration_id"])
        registration.attended_at = datetime.now(timezone.utc)
        assert registration_service.can_check_in(registration) == (False, "already_attended")

    def test_mark_attended_succeeds_exactly_once(self, db_session, seed_data):
        registration_id = seed_data["registration_id"]
        now = datetime(2026, 3, 5, 8, 0, tzinfo=timezone.utc)

        assert registration_service.mark_attended(registration_id, now) is True
        assert registration_service.mark_attended(registration_id, now) is False

        registration = db_session.get(Registration, registration_id)
        db_session.refresh(registration)
        assert registration.status == "attended"
        assert registration.attended_at.replace(tzinfo=timezone.utc) == now

    def test_mark_attended_refuses_cancelled(self, db_session, seed_data):
        registration = db_session.get(Registration, seed_data["registration_id"])
        registration_service.cancel_registration(registration)
        db_session.commit()

        assert registration_service.mark_attended(registration.id) is False
