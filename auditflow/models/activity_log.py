"""
Audit Workflow Platform
Activity log model.

Models:
    - ActivityLog: immutable, append-only trail of workflow actions.
"""

from datetime import datetime, timezone

from auditflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ACTIVITY_ENTITY_TYPES = {"AUDIT", "AUDIT_TEAM_MEMBER", "MEETING", "AUDIT_PLAN"}

ACTIVITY_ACTIONS = {
    # Team composition
    "ASSIGN_TEAM_LEADER",
    "ADD_TEAM_MEMBER",
    "REMOVE_TEAM_LEADER",
    "REMOVE_TEAM_MEMBER",
    "RESPOND_TEAM_APPOINTMENT",
    # Meetings (one per kind is derived: CREATE_<KIND>_MEETING …)
    "START_MEETING",
    "COMPLETE_MEETING",
    "CANCEL_MEETING",
    "ARCHIVE_MEETING",
    "DELETE_MEETING",
    # Audit plan
    "CREATE_AUDIT_PLAN",
    "UPDATE_AUDIT_PLAN",
    "SUBMIT_AUDIT_PLAN",
    "APPROVE_AUDIT_PLAN",
    "REJECT_AUDIT_PLAN",
    # Broadcasts
    "SEND_GENERAL_AUDIT_NOTIFICATION",
    "SEND_MANAGEMENT_REVIEW_INVITATION",
}


class ActivityLog(db.Model):
    """
    Immutable activity trail.

    One row per action, written in the same transaction as the state change
    it documents.
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("idx_activity_entity", "entity_type", "entity_id"),
        db.Index("idx_activity_tenant_ts", "tenant_id", "timestamp"),
        db.Index("idx_activity_action", "action"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    action = db.Column(db.String(60), nullable=False)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)
    details = db.Column(db.Text, default="")
    meta = db.Column("metadata", db.JSON, nullable=True)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "details": self.details,
            "metadata": self.meta or {},
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_activity(
    *,
    tenant_id: int,
    action: str,
    entity_type: str,
    entity_id,
    user_id: int | None = None,
    details: str = "",
    metadata: dict | None = None,
) -> ActivityLog:
    """
    Append a single activity row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) ActivityLog instance.
    """
    log = ActivityLog(
        tenant_id=tenant_id,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        details=details,
        meta=metadata or {},
    )
    db.session.add(log)
    db.session.flush()
    return log
