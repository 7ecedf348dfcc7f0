"""
Post-commit side-effect dispatch tests.

Dispatch runs after the workflow transaction commits; a failure for one
recipient (or of the live-event backend) is logged and never undoes the
committed state change.
"""

import pytest

from auditflow.models import db
from auditflow.models.audit import AuditTeamMember
from auditflow.models.notification import Message, Notification
from auditflow.services import message_service, notification as dispatcher, team_service
from auditflow.services.helpers.unit_of_work import SideEffects, run_in_transaction
from auditflow.services.notification import NotificationService, dispatch_side_effects


class TestDispatchIsolation:
    def test_message_failure_does_not_roll_back_assignment(self, tenant, audit, people, monkeypatch):
        def _boom(**kwargs):
            raise RuntimeError("mail store down")

        monkeypatch.setattr(message_service, "create_message", _boom)
        result = team_service.assign_team_leader(
            tenant.id, audit.id, people["leader"].id, actor_id=people["manager"].id,
        )
        assert result["role"] == "TEAM_LEADER"
        assert AuditTeamMember.query.filter_by(audit_id=audit.id).count() == 1
        assert Message.query.count() == 0

    def test_one_failing_recipient_does_not_block_others(self, tenant, people, monkeypatch):
        real_create = message_service.create_message
        bad_id = people["auditor1"].id

        def _flaky(**kwargs):
            if kwargs["recipient_id"] == bad_id:
                raise RuntimeError("rejected")
            return real_create(**kwargs)

        monkeypatch.setattr(message_service, "create_message", _flaky)
        effects = SideEffects()
        effects.message(
            recipient_ids=[people["auditor1"].id, people["auditor2"].id, people["auditor3"].id],
            subject="Heads up",
        )
        counts = dispatch_side_effects(tenant.id, effects)
        assert counts["messages"] == 2
        assert {m.recipient_id for m in Message.query.all()} == {people["auditor2"].id, people["auditor3"].id}

    def test_live_backend_failure_is_swallowed(self, tenant, people, live, monkeypatch):
        def _down(*args, **kwargs):
            raise ConnectionError("redis unavailable")

        monkeypatch.setattr(live, "publish", _down)
        effects = SideEffects()
        effects.notify(user_ids=[people["auditor1"].id], type="PING", title="Ping")
        effects.push("tenant:1", "ping")
        counts = dispatch_side_effects(tenant.id, effects)
        assert counts == {"notifications": 1, "messages": 0, "live_events": 0}
        assert Notification.query.filter_by(type="PING").count() == 1

    def test_side_effects_not_dispatched_when_transaction_fails(self, tenant, people):
        def _tx():
            effects = SideEffects()
            effects.notify(user_ids=[people["auditor1"].id], type="NEVER", title="Never")
            raise ValueError("validation failed mid-way")

        with pytest.raises(ValueError):
            run_in_transaction(_tx)
        assert Notification.query.count() == 0


class TestAudienceResolution:
    def test_capability_and_default_role_deduplicated(self, tenant, people):
        effects = SideEffects()
        effects.notify(
            type="X", title="X",
            capability="auditProgram:create", default_role="MR",
            exclude_user_ids=[people["manager"].id],
        )
        dispatch_side_effects(tenant.id, effects)
        assert [n.target_user_id for n in Notification.query.filter_by(type="X").all()] == [people["mr"].id]

    def test_notify_helpers(self, tenant, people):
        event = SideEffects().notify(type="Y", title="Y")
        created = dispatcher.notify_users_with_capability(tenant.id, "managementReview:read", event)
        assert [n.target_user_id for n in created] == [people["mr"].id]
        created = dispatcher.notify_by_default_role(tenant.id, "AUDITOR", event)
        assert {n.target_user_id for n in created} == {
            people["auditor1"].id, people["auditor2"].id, people["auditor3"].id,
        }

    def test_inactive_users_skipped(self, tenant, people):
        people["auditor3"].status = "inactive"
        db.session.commit()
        event = SideEffects().notify(type="Z", title="Z")
        created = dispatcher.notify_by_default_role(tenant.id, "AUDITOR", event)
        assert people["auditor3"].id not in {n.target_user_id for n in created}


class TestInbox:
    def test_list_and_mark_read(self, tenant, people):
        uid = people["auditor1"].id
        for title in ("one", "two", "three"):
            NotificationService.create(tenant_id=tenant.id, target_user_id=uid, type="T", title=title)
        items, total = NotificationService.list_for_user(tenant.id, uid, limit=2)
        assert total == 3
        assert len(items) == 2
        assert NotificationService.unread_count(tenant.id, uid) == 3

        NotificationService.mark_read(tenant.id, uid, items[0].id)
        assert NotificationService.unread_count(tenant.id, uid) == 2
        assert NotificationService.mark_all_read(tenant.id, uid) == 2
        assert NotificationService.unread_count(tenant.id, uid) == 0

    def test_mark_read_other_user_is_noop(self, tenant, people):
        n = NotificationService.create(
            tenant_id=tenant.id, target_user_id=people["auditor1"].id, type="T", title="mine",
        )
        assert NotificationService.mark_read(tenant.id, people["auditor2"].id, n.id) is None

    def test_invitation_response_recorded_once(self, tenant, people):
        msg = message_service.create_message(
            tenant_id=tenant.id, recipient_id=people["auditor1"].id, subject="Invite",
            category="TEAM_APPOINTMENT", entity_type="audit", entity_id=1,
        )
        assert message_service.record_response(msg, "ACCEPTED") is True
        assert message_service.record_response(msg, "DECLINED", "changed my mind") is False
        db.session.commit()
        assert db.session.get(Message, msg.id).meta["response"] == "ACCEPTED"
