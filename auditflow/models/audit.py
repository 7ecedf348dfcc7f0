"""
Audit Workflow Platform
Audit domain model.

Models:
    - AuditProgram: yearly programme grouping audits; approval gates broadcasts.
    - Audit: one execution instance of an audit type within a programme.
    - AuditTeamMember: user ↔ audit assignment with functional role and response.
"""

import re
from datetime import datetime, timezone

from auditflow.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

PROGRAM_STATUSES = {"DRAFT", "UNDER_REVIEW", "APPROVED", "REJECTED"}

AUDIT_TYPES = {
    "FIRST_INTERNAL",
    "FIRST_SURVEILLANCE",
    "SECOND_INTERNAL",
    "SECOND_SURVEILLANCE",
    "THIRD_INTERNAL",
    "RECERTIFICATION",
}
AUDIT_STATUSES = {"OPEN", "COMPLETED", "CANCELLED"}

TEAM_LEADER = "TEAM_LEADER"
TEAM_MEMBER = "TEAM_MEMBER"
TEAM_ROLES = {TEAM_LEADER, TEAM_MEMBER}

RESPONSE_PENDING = "PENDING"
RESPONSE_ACCEPTED = "ACCEPTED"
RESPONSE_DECLINED = "DECLINED"
RESPONSE_DECISIONS = {RESPONSE_ACCEPTED, RESPONSE_DECLINED}


class AuditProgram(db.Model):
    """Programme of audits for a tenant; owned by programme staff."""

    __tablename__ = "audit_programs"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="DRAFT")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    audits = db.relationship("Audit", back_populates="program", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "title": self.title,
            "status": self.status,
        }


class Audit(db.Model):
    """
    One audit inside a programme.

    Carries two one-shot broadcast markers: the general audit notification
    (dedup-guarded, re-sendable after a cooldown) and the management review
    invitation (sent at most once).
    """

    __tablename__ = "audits"
    __table_args__ = (
        db.UniqueConstraint("program_id", "audit_no", name="uq_audit_program_no"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    program_id = db.Column(
        db.Integer, db.ForeignKey("audit_programs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    audit_no = db.Column(db.String(50), nullable=False)
    type = db.Column(db.String(40), nullable=False, comment="FIRST_INTERNAL | RECERTIFICATION | …")
    status = db.Column(db.String(20), nullable=False, default="OPEN")

    audit_date_from = db.Column(db.DateTime(timezone=True), nullable=True)
    audit_date_to = db.Column(db.DateTime(timezone=True), nullable=True)
    follow_up_date_from = db.Column(db.DateTime(timezone=True), nullable=True)
    follow_up_date_to = db.Column(db.DateTime(timezone=True), nullable=True)
    management_review_date_from = db.Column(db.DateTime(timezone=True), nullable=True)
    management_review_date_to = db.Column(db.DateTime(timezone=True), nullable=True)

    general_notification_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    general_notification_sent_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    management_review_invitation_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    management_review_invitation_sent_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    program = db.relationship("AuditProgram", back_populates="audits")
    team_members = db.relationship(
        "AuditTeamMember", back_populates="audit", lazy="dynamic", cascade="all, delete-orphan",
    )

    @property
    def type_title(self) -> str:
        """``FIRST_INTERNAL`` → ``First Internal``."""
        if not self.type:
            return "Audit"
        return re.sub(r"\s+", " ", self.type.replace("_", " ")).title()

    def to_dict(self, include_team=False):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "program_id": self.program_id,
            "audit_no": self.audit_no,
            "type": self.type,
            "status": self.status,
            "audit_date_from": _iso(self.audit_date_from),
            "audit_date_to": _iso(self.audit_date_to),
            "follow_up_date_from": _iso(self.follow_up_date_from),
            "follow_up_date_to": _iso(self.follow_up_date_to),
            "management_review_date_from": _iso(self.management_review_date_from),
            "management_review_date_to": _iso(self.management_review_date_to),
            "general_notification_sent_at": _iso(self.general_notification_sent_at),
            "general_notification_sent_by": self.general_notification_sent_by,
            "management_review_invitation_sent_at": _iso(self.management_review_invitation_sent_at),
            "management_review_invitation_sent_by": self.management_review_invitation_sent_by,
        }
        if include_team:
            d["team_members"] = [m.to_dict() for m in self.team_members.order_by(AuditTeamMember.id)]
        return d

    def __repr__(self):
        return f"<Audit {self.id}: {self.audit_no} ({self.type})>"


class AuditTeamMember(db.Model):
    """
    Assignment of one user to one audit.

    A user holds at most one row per audit (leader XOR member). The partial
    unique index ``uq_audit_single_leader`` lets the database reject a second
    TEAM_LEADER even when two assignments race.
    """

    __tablename__ = "audit_team_members"
    __table_args__ = (
        db.UniqueConstraint("audit_id", "user_id", name="uq_audit_team_member"),
        db.Index(
            "uq_audit_single_leader",
            "audit_id",
            unique=True,
            sqlite_where=db.text("role = 'TEAM_LEADER'"),
            postgresql_where=db.text("role = 'TEAM_LEADER'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    audit_id = db.Column(
        db.Integer, db.ForeignKey("audits.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role = db.Column(db.String(20), nullable=False, default=TEAM_MEMBER)
    status = db.Column(db.String(20), nullable=False, default=RESPONSE_PENDING)
    appointed_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    response_at = db.Column(db.DateTime(timezone=True), nullable=True)
    decline_reason = db.Column(db.Text, nullable=True)

    audit = db.relationship("Audit", back_populates="team_members")
    user = db.relationship("User")

    @property
    def is_leader(self) -> bool:
        return self.role == TEAM_LEADER

    def to_dict(self):
        return {
            "id": self.id,
            "audit_id": self.audit_id,
            "user_id": self.user_id,
            "role": self.role,
            "status": self.status,
            "appointed_at": _iso(self.appointed_at),
            "response_at": _iso(self.response_at),
            "decline_reason": self.decline_reason,
            "user": self.user.to_summary() if self.user else None,
        }

    def __repr__(self):
        return f"<AuditTeamMember audit={self.audit_id} user={self.user_id} {self.role}/{self.status}>"
