"""
Audit Workflow Platform
Meeting domain model.

Models:
    - Meeting: one row per (audit, kind) while not archived; kinds are
      PLANNING | OPENING | CLOSING | MANAGEMENT_REVIEW.
    - AgendaItem: ordered agenda line owned by a meeting.
    - Attendance: per-user presence record owned by a meeting.
    - AgendaTemplate / AgendaTemplateItem: tenant-specific agenda seeds.
"""

from datetime import datetime, timezone

from auditflow.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

MEETING_KINDS = ("PLANNING", "OPENING", "CLOSING", "MANAGEMENT_REVIEW")

MEETING_UPCOMING = "UPCOMING"
MEETING_ACTIVE = "ACTIVE"
MEETING_COMPLETED = "COMPLETED"
MEETING_CANCELLED = "CANCELLED"
MEETING_STATUSES = {MEETING_UPCOMING, MEETING_ACTIVE, MEETING_COMPLETED, MEETING_CANCELLED}


class Meeting(db.Model):
    """
    Audit meeting, generalised over the four kinds.

    The partial unique index keeps exactly one live (non-archived) meeting per
    (audit, type); archived rows are history and do not count.
    """

    __tablename__ = "meetings"
    __table_args__ = (
        db.Index(
            "uq_meeting_audit_type_live",
            "audit_id",
            "type",
            unique=True,
            sqlite_where=db.text("archived = 0"),
            postgresql_where=db.text("archived = false"),
        ),
        db.Index("idx_meeting_tenant", "tenant_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
    )
    audit_id = db.Column(
        db.Integer, db.ForeignKey("audits.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(30), nullable=False, comment="PLANNING | OPENING | CLOSING | MANAGEMENT_REVIEW")

    scheduled_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    venue = db.Column(db.String(300), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    start_time = db.Column(db.String(10), nullable=True, comment="HH:MM display value (management review)")
    end_time = db.Column(db.String(10), nullable=True, comment="HH:MM display value (management review)")

    status = db.Column(db.String(20), nullable=False, default=MEETING_UPCOMING)
    archived = db.Column(db.Boolean, nullable=False, default=False)

    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.Text, nullable=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    audit = db.relationship("Audit")
    agendas = db.relationship(
        "AgendaItem", back_populates="meeting", cascade="all, delete-orphan",
        order_by="AgendaItem.order",
    )
    attendances = db.relationship(
        "Attendance", back_populates="meeting", cascade="all, delete-orphan",
        order_by="Attendance.id",
    )

    def to_dict(self, include_children=True):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "audit_id": self.audit_id,
            "type": self.type,
            "scheduled_at": _iso(self.scheduled_at),
            "venue": self.venue,
            "notes": self.notes,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "status": self.status,
            "archived": self.archived,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "cancelled_at": _iso(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "created_by_id": self.created_by_id,
            "created_at": _iso(self.created_at),
        }
        if include_children:
            d["agendas"] = [a.to_dict() for a in self.agendas]
            d["attendances"] = [a.to_dict() for a in self.attendances]
        return d

    def __repr__(self):
        return f"<Meeting {self.id}: {self.type} audit={self.audit_id} {self.status}>"


class AgendaItem(db.Model):
    __tablename__ = "meeting_agenda_items"

    id = db.Column(db.Integer, primary_key=True)
    meeting_id = db.Column(
        db.Integer, db.ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    agenda_text = db.Column(db.Text, nullable=False)
    # Gaps are allowed; renumbering is the caller's job
    order = db.Column("sort_order", db.Integer, nullable=False, default=0)
    discussed = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)

    meeting = db.relationship("Meeting", back_populates="agendas")

    def to_dict(self):
        return {
            "id": self.id,
            "meeting_id": self.meeting_id,
            "agenda_text": self.agenda_text,
            "order": self.order,
            "discussed": self.discussed,
            "notes": self.notes,
        }


class Attendance(db.Model):
    __tablename__ = "meeting_attendances"
    __table_args__ = (
        db.UniqueConstraint("meeting_id", "user_id", name="uq_attendance_meeting_user"),
    )

    id = db.Column(db.Integer, primary_key=True)
    meeting_id = db.Column(
        db.Integer, db.ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    present = db.Column(db.Boolean, nullable=False, default=False)
    remarks = db.Column(db.Text, nullable=True)
    joined_at = db.Column(db.DateTime(timezone=True), nullable=True)

    meeting = db.relationship("Meeting", back_populates="attendances")
    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "meeting_id": self.meeting_id,
            "user_id": self.user_id,
            "present": self.present,
            "remarks": self.remarks,
            "joined_at": _iso(self.joined_at),
            "user": self.user.to_summary() if self.user else None,
        }


class AgendaTemplate(db.Model):
    """Tenant override for the built-in agenda of a meeting kind."""

    __tablename__ = "agenda_templates"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "meeting_type", "name", name="uq_agenda_template_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    meeting_type = db.Column(db.String(30), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    items = db.relationship(
        "AgendaTemplateItem", back_populates="template", cascade="all, delete-orphan",
        order_by="AgendaTemplateItem.order",
    )


class AgendaTemplateItem(db.Model):
    __tablename__ = "agenda_template_items"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("agenda_templates.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    agenda_text = db.Column(db.Text, nullable=False)
    order = db.Column("sort_order", db.Integer, nullable=False, default=0)

    template = db.relationship("AgendaTemplate", back_populates="items")
