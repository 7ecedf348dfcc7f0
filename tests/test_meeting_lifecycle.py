"""
Meeting lifecycle tests.

Covers:
    1. create_or_update upsert (one live meeting per audit/kind, child replacement)
    2. Agenda seeding (tenant template → built-in → caller)
    3. Invitations per kind
    4. start / complete / cancel state machine and leader guard
    5. join / record_attendance / agenda item mutators
    6. archive and privileged hard delete
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from auditflow.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from auditflow.models import db
from auditflow.models.activity_log import ActivityLog
from auditflow.models.meeting import AgendaItem, Attendance, Meeting
from auditflow.models.notification import Message
from auditflow.services import agenda_templates, meeting_service


def _live_meetings(audit_id, kind):
    return db.session.execute(
        select(Meeting).where(Meeting.audit_id == audit_id, Meeting.type == kind, Meeting.archived.is_(False))
    ).scalars().all()


def _future_iso(days=3):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


@pytest.fixture()
def opening(tenant, staffed_audit, people):
    """OPENING meeting scheduled now, so the leader may start it today."""
    return meeting_service.create_or_update(
        tenant.id, staffed_audit.id, "OPENING",
        {"venue": "Board Room", "attendances": [{"user_id": people["auditor1"].id}]},
        actor_id=people["leader"].id,
    )


# ═════════════════════════════════════════════════════════════════════════
# CREATE OR UPDATE
# ═════════════════════════════════════════════════════════════════════════

class TestCreateOrUpdate:
    def test_initial_status_per_kind(self, tenant, audit):
        planning = meeting_service.create_or_update(tenant.id, audit.id, "PLANNING", {})
        closing = meeting_service.create_or_update(tenant.id, audit.id, "closing", {})
        assert planning["status"] == "ACTIVE"
        assert closing["status"] == "UPCOMING"
        assert closing["type"] == "CLOSING"

    def test_unknown_kind(self, tenant, audit):
        with pytest.raises(ValidationError):
            meeting_service.create_or_update(tenant.id, audit.id, "KICKOFF", {})

    def test_second_call_updates_in_place(self, tenant, audit, people):
        first = meeting_service.create_or_update(
            tenant.id, audit.id, "PLANNING",
            {
                "venue": "Room 1",
                "agendas": ["Scope", "Resources"],
                "attendances": [{"user_id": people["auditor1"].id, "present": True}],
            },
        )
        second = meeting_service.create_or_update(
            tenant.id, audit.id, "PLANNING",
            {
                "venue": "Room 2",
                "agendas": [{"agenda_text": "Timetable", "order": 5}],
                "attendances": [{"user_id": people["auditor2"].id}],
            },
        )
        assert first["id"] == second["id"]
        assert len(_live_meetings(audit.id, "PLANNING")) == 1
        assert second["venue"] == "Room 2"
        assert [a["agenda_text"] for a in second["agendas"]] == ["Timetable"]
        assert second["agendas"][0]["order"] == 5
        assert [a["user_id"] for a in second["attendances"]] == [people["auditor2"].id]
        assert AgendaItem.query.count() == 1
        assert Attendance.query.count() == 1
        assert ActivityLog.query.filter_by(action="UPDATE_PLANNING_MEETING").count() == 1

    def test_update_keeps_omitted_scalars(self, tenant, audit):
        meeting_service.create_or_update(tenant.id, audit.id, "PLANNING", {"venue": "Lab", "notes": "n1"})
        second = meeting_service.create_or_update(tenant.id, audit.id, "PLANNING", {"notes": "n2"})
        assert second["venue"] == "Lab"
        assert second["notes"] == "n2"

    def test_builtin_agenda_overrides_caller_for_opening(self, tenant, audit):
        meeting = meeting_service.create_or_update(
            tenant.id, audit.id, "OPENING", {"agendas": ["Ignored"]},
        )
        texts = [a["agenda_text"] for a in meeting["agendas"]]
        assert texts == list(agenda_templates.OPENING_MEETING_AGENDA)
        assert [a["order"] for a in meeting["agendas"]] == list(range(1, len(texts) + 1))

    def test_tenant_template_wins_over_builtin(self, tenant, audit):
        from auditflow.models.meeting import AgendaTemplate, AgendaTemplateItem
        template = AgendaTemplate(tenant_id=tenant.id, meeting_type="CLOSING", name="Short close")
        template.items = [
            AgendaTemplateItem(agenda_text="Findings", order=1),
            AgendaTemplateItem(agenda_text="Thanks", order=2),
        ]
        db.session.add(template)
        db.session.commit()

        meeting = meeting_service.create_or_update(tenant.id, audit.id, "CLOSING", {})
        assert [a["agenda_text"] for a in meeting["agendas"]] == ["Findings", "Thanks"]

    def test_scheduled_at_local_time_zone(self, tenant, audit):
        meeting = meeting_service.create_or_update(
            tenant.id, audit.id, "PLANNING",
            {"scheduled_at_local": "2025-08-12T09:30", "time_zone": "Africa/Nairobi"},
        )
        assert meeting["scheduled_at"].startswith("2025-08-12T06:30")

    def test_bad_date_is_validation_error(self, tenant, audit):
        with pytest.raises(ValidationError):
            meeting_service.create_or_update(tenant.id, audit.id, "PLANNING", {"scheduled_at": "next tuesday"})

    def test_attendance_outside_tenant_rejected(self, tenant, audit, people):
        with pytest.raises(ValidationError):
            meeting_service.create_or_update(
                tenant.id, audit.id, "PLANNING", {"attendances": [{"user_id": people["outsider"].id}]},
            )
        assert Meeting.query.count() == 0

    def test_archived_meeting_frees_slot(self, tenant, audit):
        first = meeting_service.create_or_update(tenant.id, audit.id, "PLANNING", {})
        meeting_service.archive(tenant.id, first["id"])
        second = meeting_service.create_or_update(tenant.id, audit.id, "PLANNING", {})
        assert second["id"] != first["id"]
        assert Meeting.query.filter_by(audit_id=audit.id, type="PLANNING").count() == 2


# ═════════════════════════════════════════════════════════════════════════
# INVITATIONS
# ═════════════════════════════════════════════════════════════════════════

class TestInvitations:
    def test_opening_invites_roster(self, tenant, staffed_audit, people, opening):
        msg = Message.query.filter_by(recipient_id=people["auditor1"].id, category="MEETING").one()
        assert msg.subject == "Opening Meeting Invitation - ISO 9001 Programme 2025"
        assert msg.meta["type"] == "OPENING_MEETING_INVITATION"
        assert msg.meta["venue"] == "Board Room"
        assert msg.meta["agendas"][0] == agenda_templates.OPENING_MEETING_AGENDA[0]
        assert msg.entity_id == opening["id"]

    def test_explicit_invitees_take_precedence(self, tenant, audit, people):
        meeting_service.create_or_update(
            tenant.id, audit.id, "CLOSING",
            {"invitee_ids": [people["auditor3"].id], "attendances": [{"user_id": people["auditor1"].id}]},
        )
        assert Message.query.filter_by(recipient_id=people["auditor3"].id, category="MEETING").count() == 1
        assert Message.query.filter_by(recipient_id=people["auditor1"].id, category="MEETING").count() == 0

    def test_management_review_falls_back_to_management_roles(self, tenant, audit, people):
        meeting_service.create_or_update(
            tenant.id, audit.id, "MANAGEMENT_REVIEW",
            {"scheduled_at": _future_iso(), "start_time": "10:00", "end_time": "12:00", "venue": "Hall"},
        )
        recipients = {m.recipient_id for m in Message.query.filter_by(category="MEETING").all()}
        # HOD, MR and HOD AUDITOR role holders
        assert recipients == {people["manager"].id, people["mr"].id, people["leader"].id}
        msg = Message.query.filter_by(recipient_id=people["mr"].id).one()
        assert msg.subject == "Management Review Invitation - ISO 9001 Programme 2025"
        assert "from 10:00 to 12:00" in msg.body

    @pytest.mark.parametrize("kind, label", [("OPENING", "Opening"), ("CLOSING", "Closing")])
    def test_opening_and_closing_fall_back_to_management_roles(self, tenant, audit, people, kind, label):
        meeting = meeting_service.create_or_update(tenant.id, audit.id, kind, {"venue": "Hall"})
        msgs = Message.query.filter_by(category="MEETING").all()
        assert {m.recipient_id for m in msgs} == {people["manager"].id, people["mr"].id, people["leader"].id}
        assert msgs[0].subject == f"{label} Meeting Invitation - ISO 9001 Programme 2025"
        assert msgs[0].meta["type"] == f"{kind}_MEETING_INVITATION"
        assert msgs[0].entity_id == meeting["id"]

    def test_planning_sends_no_invitations(self, tenant, audit, people):
        meeting_service.create_or_update(
            tenant.id, audit.id, "PLANNING", {"attendances": [{"user_id": people["auditor1"].id}]},
        )
        assert Message.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════
# STATE MACHINE
# ═════════════════════════════════════════════════════════════════════════

class TestStatusTransitions:
    def test_leader_starts_meeting(self, tenant, staffed_audit, people, opening, live):
        result = meeting_service.start(tenant.id, opening["id"], actor_id=people["leader"].id)
        assert result["status"] == "ACTIVE"
        assert result["started_at"] is not None
        assert live.events(f"meeting:{opening['id']}", "meetingStarted")

    def test_start_notifies_other_team_members(self, tenant, staffed_audit, people, opening):
        meeting_service.start(tenant.id, opening["id"], actor_id=people["leader"].id)
        started = Message.query.filter(Message.subject == "Meeting Started: Audit #AUD-001").all()
        assert {m.recipient_id for m in started} == {people["auditor1"].id, people["auditor2"].id}

    def test_non_leader_cannot_start(self, tenant, staffed_audit, people, opening):
        with pytest.raises(ForbiddenError):
            meeting_service.start(tenant.id, opening["id"], actor_id=people["auditor1"].id)
        assert db.session.get(Meeting, opening["id"]).status == "UPCOMING"

    def test_cannot_start_before_scheduled_date(self, tenant, staffed_audit, people):
        meeting = meeting_service.create_or_update(
            tenant.id, staffed_audit.id, "CLOSING", {"scheduled_at": _future_iso(days=2)},
        )
        with pytest.raises(ConflictError, match="before scheduled date"):
            meeting_service.start(tenant.id, meeting["id"], actor_id=people["leader"].id)

    def test_start_ignores_time_of_day(self, tenant, staffed_audit, people):
        late_today = datetime.now(timezone.utc).replace(hour=23, minute=59, second=0, microsecond=0)
        meeting = meeting_service.create_or_update(
            tenant.id, staffed_audit.id, "CLOSING", {"scheduled_at": late_today.isoformat()},
        )
        result = meeting_service.start(tenant.id, meeting["id"], actor_id=people["leader"].id)
        assert result["status"] == "ACTIVE"

    def test_start_twice_conflicts(self, tenant, staffed_audit, people, opening):
        meeting_service.start(tenant.id, opening["id"], actor_id=people["leader"].id)
        with pytest.raises(ConflictError):
            meeting_service.start(tenant.id, opening["id"], actor_id=people["leader"].id)

    def test_complete_requires_active(self, tenant, staffed_audit, people, opening):
        with pytest.raises(ConflictError):
            meeting_service.complete(tenant.id, opening["id"], actor_id=people["leader"].id)
        meeting_service.start(tenant.id, opening["id"], actor_id=people["leader"].id)
        result = meeting_service.complete(tenant.id, opening["id"], actor_id=people["leader"].id)
        assert result["status"] == "COMPLETED"
        assert result["completed_at"] is not None

    def test_complete_leader_only(self, tenant, staffed_audit, people, opening):
        meeting_service.start(tenant.id, opening["id"], actor_id=people["leader"].id)
        with pytest.raises(ForbiddenError):
            meeting_service.complete(tenant.id, opening["id"], actor_id=people["manager"].id)

    def test_cancel_from_upcoming(self, tenant, staffed_audit, people, opening):
        result = meeting_service.cancel(tenant.id, opening["id"], actor_id=people["leader"].id, reason="Venue closed")
        assert result["status"] == "CANCELLED"
        assert result["cancel_reason"] == "Venue closed"
        with pytest.raises(ConflictError):
            meeting_service.start(tenant.id, opening["id"], actor_id=people["leader"].id)

    def test_archived_meeting_cannot_start(self, tenant, staffed_audit, people, opening):
        meeting_service.archive(tenant.id, opening["id"])
        with pytest.raises(ConflictError, match="archived"):
            meeting_service.start(tenant.id, opening["id"], actor_id=people["leader"].id)


# ═════════════════════════════════════════════════════════════════════════
# ATTENDANCE & AGENDA
# ═════════════════════════════════════════════════════════════════════════

class TestAttendanceAndAgenda:
    def test_join_active_meeting(self, tenant, staffed_audit, people, opening, live):
        meeting_service.start(tenant.id, opening["id"], actor_id=people["leader"].id)
        row = meeting_service.join(tenant.id, opening["id"], user_id=people["auditor2"].id)
        assert row["present"] is True
        assert row["joined_at"] is not None
        assert live.events(f"meeting:{opening['id']}", "attendanceUpdated")

    def test_rejoin_refreshes_single_row(self, tenant, staffed_audit, people, opening):
        meeting_service.start(tenant.id, opening["id"], actor_id=people["leader"].id)
        uid = people["auditor1"].id
        meeting_service.join(tenant.id, opening["id"], user_id=uid)
        meeting_service.join(tenant.id, opening["id"], user_id=uid)
        assert Attendance.query.filter_by(meeting_id=opening["id"], user_id=uid).count() == 1

    def test_join_locks_meeting_row(self, tenant, staffed_audit, people, opening, monkeypatch):
        meeting_service.start(tenant.id, opening["id"], actor_id=people["leader"].id)
        calls = []
        real_get_scoped = meeting_service.get_scoped

        def _recording(model, pk, **scope):
            calls.append((model, scope.get("for_update", False)))
            return real_get_scoped(model, pk, **scope)

        monkeypatch.setattr(meeting_service, "get_scoped", _recording)
        meeting_service.join(tenant.id, opening["id"], user_id=people["auditor2"].id)
        assert (Meeting, True) in calls

    def test_join_requires_active(self, tenant, staffed_audit, people, opening):
        with pytest.raises(ConflictError):
            meeting_service.join(tenant.id, opening["id"], user_id=people["auditor1"].id)

    def test_join_requires_team_membership(self, tenant, staffed_audit, people, opening):
        meeting_service.start(tenant.id, opening["id"], actor_id=people["leader"].id)
        with pytest.raises(ForbiddenError):
            meeting_service.join(tenant.id, opening["id"], user_id=people["auditor3"].id)

    def test_record_attendance_any_status(self, tenant, staffed_audit, people, opening):
        row = meeting_service.record_attendance(
            tenant.id, opening["id"], people["auditor3"].id, present=False, remarks="Apology sent",
        )
        assert row["present"] is False
        assert row["remarks"] == "Apology sent"
        row = meeting_service.record_attendance(tenant.id, opening["id"], people["auditor3"].id, present=True)
        assert row["present"] is True
        assert Attendance.query.filter_by(meeting_id=opening["id"], user_id=people["auditor3"].id).count() == 1

    def test_record_attendance_outsider_not_found(self, tenant, staffed_audit, people, opening):
        with pytest.raises(NotFoundError):
            meeting_service.record_attendance(tenant.id, opening["id"], people["outsider"].id, present=True)

    def test_agenda_item_appends_after_last(self, tenant, audit):
        meeting = meeting_service.create_or_update(
            tenant.id, audit.id, "PLANNING", {"agendas": [{"agenda_text": "A", "order": 10}]},
        )
        item = meeting_service.upsert_agenda_item(tenant.id, meeting["id"], agenda_text="B")
        assert item["order"] == 11

    def test_agenda_item_update_in_place(self, tenant, audit):
        meeting = meeting_service.create_or_update(tenant.id, audit.id, "PLANNING", {"agendas": ["A"]})
        item_id = meeting["agendas"][0]["id"]
        item = meeting_service.upsert_agenda_item(
            tenant.id, meeting["id"], item_id=item_id, discussed=True, notes="Agreed",
        )
        assert item["agenda_text"] == "A"
        assert item["discussed"] is True
        assert item["notes"] == "Agreed"

    def test_agenda_item_of_other_meeting_not_found(self, tenant, audit):
        planning = meeting_service.create_or_update(tenant.id, audit.id, "PLANNING", {"agendas": ["A"]})
        closing = meeting_service.create_or_update(tenant.id, audit.id, "CLOSING", {})
        with pytest.raises(NotFoundError):
            meeting_service.upsert_agenda_item(
                tenant.id, closing["id"], item_id=planning["agendas"][0]["id"], notes="x",
            )

    def test_new_agenda_item_needs_text(self, tenant, audit):
        meeting = meeting_service.create_or_update(tenant.id, audit.id, "PLANNING", {})
        with pytest.raises(ValidationError):
            meeting_service.upsert_agenda_item(tenant.id, meeting["id"], agenda_text="   ")

    def test_delete_agenda_item(self, tenant, other_tenant, audit):
        meeting = meeting_service.create_or_update(tenant.id, audit.id, "PLANNING", {"agendas": ["A", "B"]})
        item_id = meeting["agendas"][0]["id"]
        with pytest.raises(NotFoundError):
            meeting_service.delete_agenda_item(other_tenant.id, item_id)
        meeting_service.delete_agenda_item(tenant.id, item_id)
        assert [a["agenda_text"] for a in meeting_service.get_meeting(tenant.id, meeting["id"])["agendas"]] == ["B"]


# ═════════════════════════════════════════════════════════════════════════
# ARCHIVE & DELETE
# ═════════════════════════════════════════════════════════════════════════

class TestArchiveAndDelete:
    def test_archive_hides_from_list(self, tenant, audit):
        meeting = meeting_service.create_or_update(tenant.id, audit.id, "PLANNING", {})
        meeting_service.archive(tenant.id, meeting["id"])
        assert meeting_service.list_meetings(tenant.id, audit.id) == []
        assert ActivityLog.query.filter_by(action="ARCHIVE_MEETING").count() == 1

    def test_archive_twice_conflicts(self, tenant, audit):
        meeting = meeting_service.create_or_update(tenant.id, audit.id, "PLANNING", {})
        meeting_service.archive(tenant.id, meeting["id"])
        with pytest.raises(ConflictError):
            meeting_service.archive(tenant.id, meeting["id"])

    def test_hard_delete_cascades(self, tenant, staffed_audit, people, opening):
        meeting_service.hard_delete(tenant.id, opening["id"], actor_id=people["leader"].id)
        assert db.session.get(Meeting, opening["id"]) is None
        assert AgendaItem.query.filter_by(meeting_id=opening["id"]).count() == 0
        assert Attendance.query.filter_by(meeting_id=opening["id"]).count() == 0

    def test_hard_delete_by_capability_holder(self, tenant, staffed_audit, people, opening):
        meeting_service.hard_delete(tenant.id, opening["id"], actor_id=people["manager"].id)
        assert db.session.get(Meeting, opening["id"]) is None

    def test_hard_delete_forbidden_for_member(self, tenant, staffed_audit, people, opening):
        with pytest.raises(ForbiddenError):
            meeting_service.hard_delete(tenant.id, opening["id"], actor_id=people["auditor1"].id)
        assert db.session.get(Meeting, opening["id"]) is not None

    def test_other_tenant_cannot_see_meeting(self, other_tenant, tenant, audit):
        meeting = meeting_service.create_or_update(tenant.id, audit.id, "PLANNING", {})
        with pytest.raises(NotFoundError):
            meeting_service.get_meeting(other_tenant.id, meeting["id"])
