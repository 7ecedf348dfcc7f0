"""
Audit Workflow Platform
Notification and message models.

Models:
    - Notification: structured in-app notification with read tracking.
    - Message: human-readable inbox entry (invitations, announcements). An
      invitation message can carry a one-shot ``response`` in its metadata.
"""

from datetime import datetime, timezone

from auditflow.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "AUDIT_TEAM_LEADER_REMOVED",
    "AUDIT_TEAM_MEMBER_REMOVED",
    "TEAM_APPOINTMENT_RESPONSE",
    "AUDIT_PLAN_APPROVAL",
    "AUDIT_PLAN_APPROVED",
    "AUDIT_PLAN_REJECTED",
    "MEETING_STARTED",
    "GENERAL_AUDIT_NOTIFICATION",
}

MESSAGE_CATEGORIES = {"TEAM_APPOINTMENT", "MEETING", "ANNOUNCEMENT", "SYSTEM"}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("idx_notification_target_read", "target_user_id", "is_read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    target_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    type = db.Column(db.String(50), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    link = db.Column(db.String(500), nullable=True)
    # "metadata" is reserved on declarative models
    meta = db.Column("metadata", db.JSON, nullable=True)

    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def mark_read(self):
        self.is_read = True
        self.read_at = _utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "target_user_id": self.target_user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "link": self.link,
            "metadata": self.meta or {},
            "is_read": self.is_read,
            "read_at": _iso(self.read_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"


class Message(db.Model):
    """
    Inbox message from one user to another.

    ``entity_type``/``entity_id`` tie invitations back to what they are
    about, so a later response can find the originating message.
    """

    __tablename__ = "messages"
    __table_args__ = (
        db.Index("idx_message_recipient_read", "recipient_id", "is_read"),
        db.Index("idx_message_entity", "entity_type", "entity_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    recipient_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    subject = db.Column(db.String(300), nullable=False)
    body = db.Column(db.Text, default="")
    category = db.Column(db.String(30), nullable=False, default="SYSTEM")
    entity_type = db.Column(db.String(30), nullable=True, comment="audit | meeting | audit_plan")
    entity_id = db.Column(db.Integer, nullable=True)
    meta = db.Column("metadata", db.JSON, nullable=True)

    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    sender = db.relationship("User", foreign_keys=[sender_id])

    def mark_read(self):
        self.is_read = True
        self.read_at = _utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sender_id": self.sender_id,
            "sender": self.sender.to_summary() if self.sender else None,
            "recipient_id": self.recipient_id,
            "subject": self.subject,
            "body": self.body,
            "category": self.category,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "metadata": self.meta or {},
            "is_read": self.is_read,
            "read_at": _iso(self.read_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Message {self.id}: {self.subject[:40]}>"
