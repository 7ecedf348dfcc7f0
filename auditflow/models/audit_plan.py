"""
Audit Workflow Platform
Audit plan model.

Models:
    - AuditPlan: objectives/scope/criteria/timetable document that moves
      DRAFT → SUBMITTED → APPROVED | REJECTED (REJECTED loops back to editable).
"""

from datetime import datetime, timezone

from auditflow.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

PLAN_DRAFT = "DRAFT"
PLAN_SUBMITTED = "SUBMITTED"
PLAN_APPROVED = "APPROVED"
PLAN_REJECTED = "REJECTED"
PLAN_STATUSES = {PLAN_DRAFT, PLAN_SUBMITTED, PLAN_APPROVED, PLAN_REJECTED}

# Statuses in which the author may still edit the plan
PLAN_EDITABLE_STATUSES = (PLAN_DRAFT, PLAN_REJECTED)

TIMETABLE_REQUIRED_KEYS = ("activity", "startDate", "endDate", "responsible")


class AuditPlan(db.Model):
    """
    Audit plan for one audit.

    ``timetable`` is a JSON list of
    ``{activity, startDate, endDate, responsible, participants}`` entries.
    """

    __tablename__ = "audit_plans"
    __table_args__ = (
        db.Index("idx_audit_plan_audit_status", "audit_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    audit_id = db.Column(
        db.Integer, db.ForeignKey("audits.id", ondelete="CASCADE"), nullable=False,
    )
    title = db.Column(db.String(400), nullable=False)
    description = db.Column(db.Text, nullable=True)

    objectives = db.Column(db.JSON, nullable=False, default=list)
    scope = db.Column(db.JSON, nullable=False, default=list)
    criteria = db.Column(db.JSON, nullable=False, default=list)
    methods = db.Column(db.JSON, nullable=False, default=list)
    timetable = db.Column(db.JSON, nullable=False, default=list)

    planned_start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    planned_end_date = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    requirements = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(20), nullable=False, default=PLAN_DRAFT)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    audit = db.relationship("Audit")
    created_by = db.relationship("User", foreign_keys=[created_by_id])

    @property
    def is_editable(self) -> bool:
        return self.status in PLAN_EDITABLE_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "audit_id": self.audit_id,
            "title": self.title,
            "description": self.description,
            "objectives": self.objectives or [],
            "scope": self.scope or [],
            "criteria": self.criteria or [],
            "methods": self.methods or [],
            "timetable": self.timetable or [],
            "planned_start_date": _iso(self.planned_start_date),
            "planned_end_date": _iso(self.planned_end_date),
            "notes": self.notes,
            "requirements": self.requirements,
            "status": self.status,
            "rejection_reason": self.rejection_reason,
            "created_by_id": self.created_by_id,
            "created_by": self.created_by.to_summary() if self.created_by else None,
            "submitted_at": _iso(self.submitted_at),
            "submitted_by_id": self.submitted_by_id,
            "approved_at": _iso(self.approved_at),
            "approved_by_id": self.approved_by_id,
            "rejected_at": _iso(self.rejected_at),
            "rejected_by_id": self.rejected_by_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<AuditPlan {self.id}: audit={self.audit_id} {self.status}>"
