"""
Audit team composition tests.

Covers:
    1. Leader assignment / replacement (single-leader invariant)
    2. Batch member add with partial success
    3. Removal with role-specific notification
    4. Appointment response (first response wins, invitation stamped once)
    5. Candidate lists
"""

import pytest
from sqlalchemy import select

from auditflow.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from auditflow.models import db
from auditflow.models.activity_log import ActivityLog
from auditflow.models.audit import AuditTeamMember
from auditflow.models.notification import Message, Notification
from auditflow.services import team_service
from auditflow.services.helpers.unit_of_work import SideEffects, run_in_transaction


def _rows(audit_id):
    return db.session.execute(
        select(AuditTeamMember).where(AuditTeamMember.audit_id == audit_id).order_by(AuditTeamMember.id)
    ).scalars().all()


def _leaders(audit_id):
    return [r for r in _rows(audit_id) if r.role == "TEAM_LEADER"]


def _notifications(user_id, type_=None):
    q = Notification.query.filter_by(target_user_id=user_id)
    if type_:
        q = q.filter_by(type=type_)
    return q.all()


# ═════════════════════════════════════════════════════════════════════════
# ASSIGN TEAM LEADER
# ═════════════════════════════════════════════════════════════════════════

class TestAssignTeamLeader:
    def test_assign_creates_pending_leader(self, tenant, audit, people):
        result = team_service.assign_team_leader(
            tenant.id, audit.id, people["leader"].id, actor_id=people["manager"].id,
        )
        assert result["role"] == "TEAM_LEADER"
        assert result["status"] == "PENDING"
        assert len(_leaders(audit.id)) == 1

    def test_assign_sends_invitation_message(self, tenant, audit, people):
        team_service.assign_team_leader(tenant.id, audit.id, people["leader"].id, actor_id=people["manager"].id)
        msgs = Message.query.filter_by(recipient_id=people["leader"].id, category="TEAM_APPOINTMENT").all()
        assert len(msgs) == 1
        assert msgs[0].subject == "Team Appointment: Team Leader for ISO 9001 Programme 2025"
        assert msgs[0].meta["role"] == "TEAM_LEADER"
        assert msgs[0].sender_id == people["manager"].id

    def test_replace_leader_deletes_previous_row(self, tenant, audit, people):
        team_service.assign_team_leader(tenant.id, audit.id, people["leader"].id, actor_id=people["manager"].id)
        team_service.assign_team_leader(tenant.id, audit.id, people["auditor3"].id, actor_id=people["manager"].id)

        leaders = _leaders(audit.id)
        assert len(leaders) == 1
        assert leaders[0].user_id == people["auditor3"].id
        assert people["leader"].id not in {r.user_id for r in _rows(audit.id)}
        removed = _notifications(people["leader"].id, "AUDIT_TEAM_LEADER_REMOVED")
        assert len(removed) == 1

    def test_reassign_same_leader_resets_response(self, tenant, audit, people):
        leader_id = people["leader"].id
        team_service.assign_team_leader(tenant.id, audit.id, leader_id, actor_id=people["manager"].id)
        team_service.respond_to_appointment(
            tenant.id, audit.id, leader_id, responder_id=leader_id, decision="ACCEPTED",
        )
        result = team_service.assign_team_leader(tenant.id, audit.id, leader_id, actor_id=people["manager"].id)
        assert result["status"] == "PENDING"
        assert result["response_at"] is None
        assert len(_rows(audit.id)) == 1

    def test_member_cannot_become_leader(self, tenant, audit, people):
        team_service.add_team_members(tenant.id, audit.id, [people["auditor1"].id], actor_id=people["manager"].id)
        with pytest.raises(ConflictError):
            team_service.assign_team_leader(
                tenant.id, audit.id, people["auditor1"].id, actor_id=people["manager"].id,
            )
        row = _rows(audit.id)[0]
        assert row.role == "TEAM_MEMBER"
        assert _leaders(audit.id) == []

    def test_storage_rejects_second_leader_row(self, tenant, audit, people):
        team_service.assign_team_leader(tenant.id, audit.id, people["leader"].id, actor_id=people["manager"].id)

        # A writer that bypasses the service checks still hits the one-leader index
        def _tx():
            db.session.add(AuditTeamMember(
                audit_id=audit.id, user_id=people["auditor3"].id, role="TEAM_LEADER", status="PENDING",
            ))
            db.session.flush()
            return None, SideEffects()

        with pytest.raises(ConflictError):
            run_in_transaction(_tx)
        assert [r.user_id for r in _leaders(audit.id)] == [people["leader"].id]
        assert len(_rows(audit.id)) == 1

    def test_candidate_from_other_tenant_not_found(self, tenant, audit, people):
        with pytest.raises(NotFoundError):
            team_service.assign_team_leader(
                tenant.id, audit.id, people["outsider"].id, actor_id=people["manager"].id,
            )

    def test_audit_from_other_tenant_not_found(self, other_tenant, audit, people):
        with pytest.raises(NotFoundError):
            team_service.assign_team_leader(
                other_tenant.id, audit.id, people["leader"].id, actor_id=people["manager"].id,
            )

    def test_assign_writes_activity_and_live_event(self, tenant, audit, people, live):
        team_service.assign_team_leader(tenant.id, audit.id, people["leader"].id, actor_id=people["manager"].id)
        log = ActivityLog.query.filter_by(action="ASSIGN_TEAM_LEADER").one()
        assert log.entity_id == str(audit.id)
        assert log.user_id == people["manager"].id
        assert live.events(f"audit:{audit.id}", "teamUpdated")


# ═════════════════════════════════════════════════════════════════════════
# ADD TEAM MEMBERS
# ═════════════════════════════════════════════════════════════════════════

class TestAddTeamMembers:
    def test_partial_success(self, tenant, audit, people):
        team_service.assign_team_leader(tenant.id, audit.id, people["leader"].id, actor_id=people["manager"].id)
        result = team_service.add_team_members(
            tenant.id, audit.id, [people["leader"].id, people["auditor1"].id], actor_id=people["manager"].id,
        )
        assert [m["user_id"] for m in result["added"]] == [people["auditor1"].id]
        assert result["added"][0]["status"] == "PENDING"
        assert result["rejected"] == [
            {"user_id": people["leader"].id, "reason": team_service.REASON_ALREADY_LEADER},
        ]

    def test_existing_member_and_outsider_rejected(self, tenant, audit, people):
        team_service.add_team_members(tenant.id, audit.id, [people["auditor1"].id], actor_id=people["manager"].id)
        result = team_service.add_team_members(
            tenant.id, audit.id,
            [people["auditor1"].id, people["outsider"].id, people["auditor2"].id],
            actor_id=people["manager"].id,
        )
        reasons = {r["user_id"]: r["reason"] for r in result["rejected"]}
        assert reasons[people["auditor1"].id] == team_service.REASON_ALREADY_MEMBER
        assert reasons[people["outsider"].id] == team_service.REASON_NOT_IN_TENANT
        assert [m["user_id"] for m in result["added"]] == [people["auditor2"].id]

    def test_duplicate_ids_in_request(self, tenant, audit, people):
        uid = people["auditor1"].id
        result = team_service.add_team_members(tenant.id, audit.id, [uid, uid], actor_id=people["manager"].id)
        assert len(result["added"]) == 1
        assert result["rejected"] == [{"user_id": uid, "reason": team_service.REASON_DUPLICATE}]
        assert len(_rows(audit.id)) == 1

    def test_all_rejected_adds_nothing(self, tenant, audit, people):
        result = team_service.add_team_members(
            tenant.id, audit.id, [people["outsider"].id], actor_id=people["manager"].id,
        )
        assert result["added"] == []
        assert _rows(audit.id) == []

    def test_empty_list_is_validation_error(self, tenant, audit, people):
        with pytest.raises(ValidationError):
            team_service.add_team_members(tenant.id, audit.id, [], actor_id=people["manager"].id)

    def test_each_added_member_invited(self, tenant, audit, people):
        team_service.add_team_members(
            tenant.id, audit.id, [people["auditor1"].id, people["auditor2"].id], actor_id=people["manager"].id,
        )
        for key in ("auditor1", "auditor2"):
            msg = Message.query.filter_by(recipient_id=people[key].id, category="TEAM_APPOINTMENT").one()
            assert msg.meta["role"] == "TEAM_MEMBER"
        assert ActivityLog.query.filter_by(action="ADD_TEAM_MEMBER").count() == 2

    def test_member_inserted_concurrently_is_rejected(self, tenant, audit, people, monkeypatch):
        uid = people["auditor1"].id
        team_service.add_team_members(tenant.id, audit.id, [uid], actor_id=people["manager"].id)
        # Eligibility sees the team as it was before the other request committed
        monkeypatch.setattr(team_service, "_team_rows", lambda audit_id: [])

        result = team_service.add_team_members(
            tenant.id, audit.id, [uid, people["auditor2"].id], actor_id=people["manager"].id,
        )
        assert [m["user_id"] for m in result["added"]] == [people["auditor2"].id]
        assert result["rejected"] == [{"user_id": uid, "reason": team_service.REASON_ALREADY_MEMBER}]
        assert [r.user_id for r in _rows(audit.id)].count(uid) == 1
        assert Message.query.filter_by(recipient_id=uid, category="TEAM_APPOINTMENT").count() == 1


# ═════════════════════════════════════════════════════════════════════════
# REMOVE TEAM MEMBER
# ═════════════════════════════════════════════════════════════════════════

class TestRemoveTeamMember:
    def test_remove_member(self, tenant, staffed_audit, people):
        removed = team_service.remove_team_member(
            tenant.id, staffed_audit.id, people["auditor1"].id, actor_id=people["manager"].id,
        )
        assert removed["role"] == "TEAM_MEMBER"
        assert people["auditor1"].id not in {r.user_id for r in _rows(staffed_audit.id)}
        notes = _notifications(people["auditor1"].id, "AUDIT_TEAM_MEMBER_REMOVED")
        assert len(notes) == 1
        assert notes[0].title == "Removed as Audit Team Member"
        assert ActivityLog.query.filter_by(action="REMOVE_TEAM_MEMBER").count() == 1

    def test_remove_leader_uses_leader_wording(self, tenant, staffed_audit, people):
        team_service.remove_team_member(
            tenant.id, staffed_audit.id, people["leader"].id, actor_id=people["manager"].id,
        )
        notes = _notifications(people["leader"].id, "AUDIT_TEAM_LEADER_REMOVED")
        assert len(notes) == 1
        assert notes[0].title == "Removed as Audit Team Leader"
        assert _leaders(staffed_audit.id) == []
        assert ActivityLog.query.filter_by(action="REMOVE_TEAM_LEADER").count() == 1

    def test_remove_unassigned_user_not_found(self, tenant, staffed_audit, people):
        with pytest.raises(NotFoundError):
            team_service.remove_team_member(
                tenant.id, staffed_audit.id, people["auditor3"].id, actor_id=people["manager"].id,
            )

    def test_removed_leader_can_rejoin_as_member(self, tenant, staffed_audit, people):
        team_service.remove_team_member(tenant.id, staffed_audit.id, people["leader"].id)
        result = team_service.add_team_members(tenant.id, staffed_audit.id, [people["leader"].id])
        assert len(result["added"]) == 1


# ═════════════════════════════════════════════════════════════════════════
# RESPOND TO APPOINTMENT
# ═════════════════════════════════════════════════════════════════════════

class TestRespondToAppointment:
    def test_accept(self, tenant, staffed_audit, people):
        uid = people["auditor1"].id
        result = team_service.respond_to_appointment(
            tenant.id, staffed_audit.id, uid, responder_id=uid, decision="accepted",
        )
        assert result["status"] == "ACCEPTED"
        assert result["response_at"] is not None

    def test_second_response_conflicts_and_keeps_first(self, tenant, staffed_audit, people):
        uid = people["auditor1"].id
        team_service.respond_to_appointment(tenant.id, staffed_audit.id, uid, responder_id=uid, decision="ACCEPTED")
        with pytest.raises(ConflictError):
            team_service.respond_to_appointment(
                tenant.id, staffed_audit.id, uid, responder_id=uid, decision="DECLINED", decline_reason="Busy",
            )
        row = next(r for r in _rows(staffed_audit.id) if r.user_id == uid)
        assert row.status == "ACCEPTED"
        assert row.decline_reason is None

    def test_decline_requires_reason(self, tenant, staffed_audit, people):
        uid = people["auditor1"].id
        with pytest.raises(ValidationError):
            team_service.respond_to_appointment(
                tenant.id, staffed_audit.id, uid, responder_id=uid, decision="DECLINED", decline_reason="  ",
            )

    def test_invalid_decision(self, tenant, staffed_audit, people):
        uid = people["auditor1"].id
        with pytest.raises(ValidationError):
            team_service.respond_to_appointment(
                tenant.id, staffed_audit.id, uid, responder_id=uid, decision="MAYBE",
            )

    def test_only_appointee_may_respond(self, tenant, staffed_audit, people):
        with pytest.raises(ForbiddenError):
            team_service.respond_to_appointment(
                tenant.id, staffed_audit.id, people["auditor1"].id,
                responder_id=people["auditor2"].id, decision="ACCEPTED",
            )

    def test_not_on_team(self, tenant, staffed_audit, people):
        uid = people["auditor3"].id
        with pytest.raises(NotFoundError):
            team_service.respond_to_appointment(
                tenant.id, staffed_audit.id, uid, responder_id=uid, decision="ACCEPTED",
            )

    def test_decline_stamps_invitation_once(self, tenant, staffed_audit, people):
        uid = people["auditor2"].id
        team_service.respond_to_appointment(
            tenant.id, staffed_audit.id, uid, responder_id=uid, decision="DECLINED", decline_reason="On leave",
        )
        invitation = Message.query.filter_by(recipient_id=uid, category="TEAM_APPOINTMENT").one()
        assert invitation.meta["response"] == "DECLINED"
        assert invitation.meta["responseComment"] == "On leave"

    def test_response_notifies_capability_and_mr(self, tenant, staffed_audit, people, live):
        uid = people["auditor1"].id
        team_service.respond_to_appointment(tenant.id, staffed_audit.id, uid, responder_id=uid, decision="ACCEPTED")

        # Manager holds the capability; MR holds it and is also default-role MR: one notification each
        assert len(_notifications(people["manager"].id, "TEAM_APPOINTMENT_RESPONSE")) == 1
        assert len(_notifications(people["mr"].id, "TEAM_APPOINTMENT_RESPONSE")) == 1
        assert _notifications(people["auditor2"].id, "TEAM_APPOINTMENT_RESPONSE") == []
        events = live.events(f"audit:{staffed_audit.id}", "teamAppointmentResponded")
        assert events[-1]["payload"]["response"] == "ACCEPTED"


# ═════════════════════════════════════════════════════════════════════════
# QUERIES
# ═════════════════════════════════════════════════════════════════════════

class TestTeamQueries:
    def test_list_team(self, tenant, staffed_audit, people):
        team = team_service.list_team(tenant.id, staffed_audit.id)
        assert team["team_leader"]["user_id"] == people["leader"].id
        assert {m["user_id"] for m in team["team_members"]} == {people["auditor1"].id, people["auditor2"].id}

    def test_member_candidates_exclude_team(self, tenant, staffed_audit, people):
        ids = [c["id"] for c in team_service.list_eligible_candidates(tenant.id, staffed_audit.id)]
        assert ids == [people["auditor3"].id]

    def test_leader_candidates_prefer_hod_auditor(self, tenant, audit, people):
        candidates = team_service.list_eligible_candidates(tenant.id, audit.id, for_leader=True)
        assert candidates[0]["id"] == people["leader"].id
        assert candidates[0]["is_preferred_leader"] is True
        assert people["manager"].id not in [c["id"] for c in candidates]


# ═════════════════════════════════════════════════════════════════════════
# Scenario: team → acceptance → meeting start
# ═════════════════════════════════════════════════════════════════════════

def test_team_to_meeting_start_scenario(tenant, audit, people):
    from auditflow.services import meeting_service

    user_a, user_b = people["leader"].id, people["auditor1"].id
    leader = team_service.assign_team_leader(tenant.id, audit.id, user_a, actor_id=people["manager"].id)
    assert leader["status"] == "PENDING"

    result = team_service.add_team_members(tenant.id, audit.id, [user_a, user_b], actor_id=people["manager"].id)
    assert result["rejected"][0]["user_id"] == user_a
    assert "already the team leader" in result["rejected"][0]["reason"]
    assert result["added"][0]["user_id"] == user_b
    assert result["added"][0]["status"] == "PENDING"

    accepted = team_service.respond_to_appointment(
        tenant.id, audit.id, user_a, responder_id=user_a, decision="ACCEPTED",
    )
    assert accepted["status"] == "ACCEPTED"

    meeting = meeting_service.create_or_update(tenant.id, audit.id, "OPENING", {}, actor_id=user_a)
    with pytest.raises(ForbiddenError):
        meeting_service.start(tenant.id, meeting["id"], actor_id=user_b)
    started = meeting_service.start(tenant.id, meeting["id"], actor_id=user_a)
    assert started["status"] == "ACTIVE"
