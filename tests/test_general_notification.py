"""
General audit notification guard + management review invitation tests.

Covers:
    1. Eligibility codes (ELIGIBLE / RECENT_NOTIFICATION / RESEND_ALLOWED / PROGRAM_NOT_APPROVED)
    2. Five-minute dedup window → RateLimitedError with last-sent marker
    3. Resend after the window (warned, not blocked)
    4. Status summary
    5. One-shot management review invitation
"""

from datetime import timedelta

import pytest

from auditflow.core.exceptions import ConflictError, RateLimitedError, ValidationError
from auditflow.models import db
from auditflow.models.activity_log import ActivityLog
from auditflow.models.audit import Audit
from auditflow.models.meeting import AgendaTemplate, AgendaTemplateItem
from auditflow.models.notification import Message
from auditflow.services import agenda_templates
from auditflow.services import general_notification_service as gn
from auditflow.utils.helpers import ensure_utc


def _age_last_send(audit_id, seconds):
    """Move the last-sent marker into the past."""
    audit = db.session.get(Audit, audit_id)
    audit.general_notification_sent_at = ensure_utc(audit.general_notification_sent_at) - timedelta(seconds=seconds)
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════
# SEND / DEDUP WINDOW
# ═════════════════════════════════════════════════════════════════════════

class TestGeneralNotification:
    def test_first_send_reaches_every_active_user(self, tenant, audit, people, make_user, live):
        make_user("Ivan", status="inactive")
        result = gn.send(tenant.id, audit.id, actor_id=people["mr"].id)

        assert result == {"sent": True, "is_resend": False, "recipients": 6, "warning": None}
        msgs = Message.query.filter_by(category="GENERAL_NOTIFICATION").all()
        assert len(msgs) == 6
        assert people["outsider"].id not in {m.recipient_id for m in msgs}
        assert msgs[0].subject == gn.GENERAL_NOTIFICATION_SUBJECT
        assert msgs[0].meta["footer"] == "Yours Faithfully\nManagement Representative"
        assert live.events(f"tenant:{tenant.id}", "generalNotificationSent")
        assert ActivityLog.query.filter_by(action="SEND_GENERAL_AUDIT_NOTIFICATION").count() == 1

    def test_second_send_within_window_is_rate_limited(self, tenant, audit, people):
        gn.send(tenant.id, audit.id, actor_id=people["mr"].id)
        with pytest.raises(RateLimitedError) as exc:
            gn.send(tenant.id, audit.id, actor_id=people["manager"].id)

        err = exc.value
        assert err.last_sent_by == people["mr"].id
        assert err.last_sent_at is not None
        assert 0 < err.retry_after <= 300
        # Marker untouched by the blocked call
        assert db.session.get(Audit, audit.id).general_notification_sent_by == people["mr"].id
        assert Message.query.filter_by(category="GENERAL_NOTIFICATION").count() == 6

    def test_send_after_window_is_resend(self, tenant, audit, people):
        gn.send(tenant.id, audit.id, actor_id=people["mr"].id)
        _age_last_send(audit.id, 301)

        result = gn.send(tenant.id, audit.id, actor_id=people["manager"].id)
        assert result["sent"] is True
        assert result["is_resend"] is True
        assert "5 minute(s) ago by Marcus Tester" in result["warning"]
        assert db.session.get(Audit, audit.id).general_notification_sent_by == people["manager"].id

    def test_program_not_approved(self, tenant, audit, program, people):
        program.status = "UNDER_REVIEW"
        db.session.commit()
        with pytest.raises(ConflictError, match="APPROVED program"):
            gn.send(tenant.id, audit.id, actor_id=people["mr"].id)
        assert db.session.get(Audit, audit.id).general_notification_sent_at is None


# ═════════════════════════════════════════════════════════════════════════
# ELIGIBILITY & STATUS
# ═════════════════════════════════════════════════════════════════════════

class TestEligibility:
    def test_codes_follow_send_history(self, tenant, audit, people):
        assert gn.check_eligibility(tenant.id, audit.id)["code"] == gn.CODE_ELIGIBLE

        gn.send(tenant.id, audit.id, actor_id=people["mr"].id)
        recent = gn.check_eligibility(tenant.id, audit.id)
        assert recent["code"] == gn.CODE_RECENT_NOTIFICATION
        assert recent["can_send"] is False
        assert recent["last_sent_by"] == people["mr"].id

        _age_last_send(audit.id, 600)
        resend = gn.check_eligibility(tenant.id, audit.id)
        assert resend["code"] == gn.CODE_RESEND_ALLOWED
        assert resend["can_send"] is True
        assert resend["minutes_ago"] == 10

    def test_status_summary(self, tenant, staffed_audit, people):
        from auditflow.services import team_service
        uid = people["auditor1"].id
        team_service.respond_to_appointment(tenant.id, staffed_audit.id, uid, responder_id=uid, decision="ACCEPTED")

        status = gn.get_status(tenant.id, staffed_audit.id)
        assert status["team"]["leader"]["user_id"] == people["leader"].id
        assert status["team"]["member_count"] == 2
        assert status["team"]["responses"] == {"PENDING": 2, "ACCEPTED": 1, "DECLINED": 0}
        assert status["team"]["all_accepted"] is False
        assert status["general_notification"]["code"] == gn.CODE_ELIGIBLE
        assert status["management_review_invitation"]["sent"] is False


# ═════════════════════════════════════════════════════════════════════════
# MANAGEMENT REVIEW INVITATION
# ═════════════════════════════════════════════════════════════════════════

class TestManagementReviewInvitation:
    def _send(self, tenant, audit, people, **overrides):
        kwargs = dict(
            actor_id=people["mr"].id,
            meeting_date="2025-09-01",
            start_time="10:00",
            end_time="12:00",
            venue="Council Chamber",
        )
        kwargs.update(overrides)
        return gn.send_management_review_invitation(tenant.id, audit.id, **kwargs)

    def test_invites_capability_holders_once(self, tenant, audit, people):
        result = self._send(tenant, audit, people)
        assert result == {"sent": True, "recipients": 1}
        msg = Message.query.filter_by(recipient_id=people["mr"].id, category="MEETING").one()
        assert msg.subject == "Management Review Meeting Invitation - ISO 9001 Programme 2025"
        assert msg.meta["type"] == "MANAGEMENT_REVIEW_INVITATION"
        assert "from 10:00 to 12:00 at Council Chamber" in msg.body

        with pytest.raises(ConflictError):
            self._send(tenant, audit, people)
        assert Message.query.filter_by(category="MEETING").count() == 1

    def test_agenda_uses_builtin_template(self, tenant, audit, people):
        self._send(tenant, audit, people)
        msg = Message.query.filter_by(recipient_id=people["mr"].id, category="MEETING").one()
        assert msg.meta["agendas"] == list(agenda_templates.MANAGEMENT_REVIEW_AGENDA)
        assert agenda_templates.MANAGEMENT_REVIEW_AGENDA[0] in msg.body

    def test_agenda_follows_tenant_template(self, tenant, audit, people):
        template = AgendaTemplate(tenant_id=tenant.id, meeting_type="MANAGEMENT_REVIEW", name="Board review")
        template.items = [
            AgendaTemplateItem(agenda_text="Audit results", order=1),
            AgendaTemplateItem(agenda_text="AOB", order=2),
        ]
        db.session.add(template)
        db.session.commit()

        self._send(tenant, audit, people)
        msg = Message.query.filter_by(recipient_id=people["mr"].id, category="MEETING").one()
        assert msg.meta["agendas"] == ["Audit results", "AOB"]
        assert "Audit results\nAOB" in msg.body
        assert agenda_templates.MANAGEMENT_REVIEW_AGENDA[0] not in msg.body

    def test_invalid_date(self, tenant, audit, people):
        with pytest.raises(ValidationError):
            self._send(tenant, audit, people, meeting_date="first monday")

    def test_no_capability_holders(self, tenant, audit, make_user):
        actor = make_user("Solo")
        with pytest.raises(ValidationError, match="No users found"):
            gn.send_management_review_invitation(
                tenant.id, audit.id, actor_id=actor.id,
                meeting_date="2025-09-01", start_time="10:00", end_time="12:00", venue="Hall",
            )
        assert db.session.get(Audit, audit.id).management_review_invitation_sent_at is None
