"""
Audit Plan Approval Service.

Status transitions:
    submit:  DRAFT | REJECTED → SUBMITTED   (timetable must be complete)
    approve: SUBMITTED → APPROVED           (timetable re-checked)
    reject:  SUBMITTED → REJECTED           (reason stored; plan editable again)

A plan is mutable only while DRAFT or REJECTED, so nothing changes underneath
an approver. At most one plan per audit is under review at a time.

Notifications:
    submit  → every holder of the programme-creation capability
    approve → every current team member except the approver
    reject  → the author (exactly one) + the capability group
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import select

from auditflow.core.exceptions import ConflictError, ForbiddenError, ValidationError
from auditflow.models import db
from auditflow.models.activity_log import write_activity
from auditflow.models.audit import Audit, AuditTeamMember
from auditflow.models.audit_plan import (
    PLAN_APPROVED,
    PLAN_DRAFT,
    PLAN_REJECTED,
    PLAN_SUBMITTED,
    TIMETABLE_REQUIRED_KEYS,
    AuditPlan,
)
from auditflow.models.auth import User
from auditflow.services.helpers.scoped_queries import get_scoped
from auditflow.services.helpers.unit_of_work import SideEffects, run_in_transaction
from auditflow.services.notification import dispatch_side_effects
from auditflow.utils.helpers import parse_datetime, strip_html_list, utcnow

logger = logging.getLogger(__name__)

PLAN_TRANSITIONS = {
    "submit": {"from": [PLAN_DRAFT, PLAN_REJECTED], "to": PLAN_SUBMITTED},
    "approve": {"from": [PLAN_SUBMITTED], "to": PLAN_APPROVED},
    "reject": {"from": [PLAN_SUBMITTED], "to": PLAN_REJECTED},
}

# Rich-text arrays are stored as plain text; scope entries are plain strings already
_RICH_TEXT_FIELDS = ("objectives", "criteria", "methods")
_TEXT_FIELDS = ("description", "notes", "requirements")
_DATE_FIELDS = ("planned_start_date", "planned_end_date")


# ── Validation ─────────────────────────────────────────────────────────────────


def validate_timetable(timetable, *, required: bool) -> list[dict]:
    """Return the timetable if well-formed.

    Every entry must be an object carrying non-empty activity, startDate,
    endDate and responsible. ``participants`` is optional.

    Raises:
        ValidationError: not a list, empty while ``required``, or an incomplete entry.
    """
    if timetable is None:
        timetable = []
    if not isinstance(timetable, list):
        raise ValidationError("Timetable must be a list", details={"timetable": "not a list"})
    if required and not timetable:
        raise ValidationError(
            "Cannot submit audit plan without a timetable. Please create the timetable first.",
            details={"timetable": "empty"},
        )
    for index, entry in enumerate(timetable):
        missing = [k for k in TIMETABLE_REQUIRED_KEYS if not isinstance(entry, dict) or not entry.get(k)]
        if missing:
            raise ValidationError(
                "Each timetable activity must include activity, startDate, endDate, and responsible",
                details={"timetable": {"index": index, "missing": missing}},
            )
    return timetable


def _validate_transition(plan: AuditPlan, action: str) -> str:
    rule = PLAN_TRANSITIONS[action]
    if plan.status not in rule["from"]:
        raise ConflictError.transition("AuditPlan", action, plan.status)
    return rule["to"]


def _plan_title(audit: Audit) -> str:
    program_title = audit.program.title if audit.program else ""
    return f"Audit Plan for the {audit.type_title} - {program_title}"


def _plan_link(plan: AuditPlan) -> str:
    audit = plan.audit
    return f"/audits/{audit.program_id}/{audit.id}/timetable/audit-plan-print?planId={plan.id}"


def _plan_metadata(plan: AuditPlan, **extra) -> dict:
    audit = plan.audit
    return {
        "planId": plan.id,
        "auditId": audit.id,
        "programId": audit.program_id,
        "programTitle": audit.program.title if audit.program else None,
        **extra,
    }


def _apply_fields(plan: AuditPlan, data: dict) -> list[str]:
    """Copy editable fields from ``data``; returns the names that were applied."""
    applied = []
    for field in _RICH_TEXT_FIELDS:
        if field in data:
            setattr(plan, field, strip_html_list(data.get(field)))
            applied.append(field)
    if "scope" in data:
        scope = data.get("scope")
        plan.scope = [str(s) for s in scope] if isinstance(scope, list) else []
        applied.append("scope")
    for field in _TEXT_FIELDS:
        if field in data:
            setattr(plan, field, data.get(field) or None)
            applied.append(field)
    for field in _DATE_FIELDS:
        if field in data:
            try:
                setattr(plan, field, parse_datetime(data.get(field)))
            except ValueError as exc:
                raise ValidationError(str(exc), details={field: "invalid"}) from exc
            applied.append(field)
    if "timetable" in data:
        plan.timetable = validate_timetable(data.get("timetable"), required=False)
        applied.append("timetable")
    return applied


# ── Queries ────────────────────────────────────────────────────────────────────


def get_plan(tenant_id: int, plan_id: int) -> dict:
    return get_scoped(AuditPlan, plan_id, tenant_id=tenant_id).to_dict()


def list_plans(tenant_id: int, audit_id: int) -> list[dict]:
    audit = get_scoped(Audit, audit_id, tenant_id=tenant_id)
    stmt = (
        select(AuditPlan)
        .where(AuditPlan.audit_id == audit.id)
        .order_by(AuditPlan.created_at.desc(), AuditPlan.id.desc())
    )
    return [p.to_dict() for p in db.session.execute(stmt).scalars().all()]


# ── Create / update ────────────────────────────────────────────────────────────


def create_plan(tenant_id: int, audit_id: int, data: dict, *, actor_id: int) -> dict:
    """Create a DRAFT plan. The author must be on the audit team."""
    data = data or {}

    def _tx():
        audit = get_scoped(Audit, audit_id, tenant_id=tenant_id)
        on_team = db.session.execute(
            select(AuditTeamMember.id).where(
                AuditTeamMember.audit_id == audit.id,
                AuditTeamMember.user_id == actor_id,
            )
        ).scalar_one_or_none()
        if on_team is None:
            raise ForbiddenError("You must be a team member to create an audit plan", user_id=actor_id)

        plan = AuditPlan(
            tenant_id=tenant_id,
            audit_id=audit.id,
            title=_plan_title(audit),
            status=PLAN_DRAFT,
            created_by_id=actor_id,
        )
        plan.audit = audit
        _apply_fields(plan, data)
        db.session.add(plan)
        db.session.flush()

        write_activity(
            tenant_id=tenant_id,
            user_id=actor_id,
            action="CREATE_AUDIT_PLAN",
            entity_type="AUDIT_PLAN",
            entity_id=plan.id,
            details=f'Created audit plan "{plan.title}" for audit {audit.audit_no}',
            metadata={"auditId": audit.id, "title": plan.title},
        )
        return plan.to_dict(), SideEffects()

    result, _ = run_in_transaction(_tx, context={"tenant_id": tenant_id, "audit_id": audit_id})
    logger.info(
        "Audit plan created", extra={"tenant_id": tenant_id, "audit_id": audit_id, "plan_id": result["id"]},
    )
    return result


def update(tenant_id: int, plan_id: int, fields: dict, *, actor_id: int | None = None) -> dict:
    """Edit a DRAFT or REJECTED plan. The title is derived and ignored here.

    Raises:
        ConflictError: plan is SUBMITTED or APPROVED.
        ValidationError: malformed timetable or date.
    """
    fields = fields or {}

    def _tx():
        plan = get_scoped(AuditPlan, plan_id, tenant_id=tenant_id, for_update=True)
        if not plan.is_editable:
            raise ConflictError.transition("AuditPlan", "update", plan.status)
        applied = _apply_fields(plan, fields)
        db.session.flush()
        write_activity(
            tenant_id=tenant_id,
            user_id=actor_id,
            action="UPDATE_AUDIT_PLAN",
            entity_type="AUDIT_PLAN",
            entity_id=plan.id,
            details=f'Updated audit plan "{plan.title}"',
            metadata={"auditId": plan.audit_id, "fields": applied},
        )
        return plan.to_dict(), SideEffects()

    result, _ = run_in_transaction(_tx, context={"tenant_id": tenant_id, "plan_id": plan_id})
    return result


# ── Approval workflow ──────────────────────────────────────────────────────────


def submit(tenant_id: int, plan_id: int, *, actor_id: int) -> dict:
    """DRAFT | REJECTED → SUBMITTED; notifies programme-creation capability holders."""

    def _tx():
        plan = get_scoped(AuditPlan, plan_id, tenant_id=tenant_id, for_update=True)
        new_status = _validate_transition(plan, "submit")
        validate_timetable(plan.timetable, required=True)

        under_review = db.session.execute(
            select(AuditPlan.id).where(
                AuditPlan.audit_id == plan.audit_id,
                AuditPlan.status == PLAN_SUBMITTED,
                AuditPlan.id != plan.id,
            )
        ).first()
        if under_review is not None:
            raise ConflictError(
                "Another audit plan for this audit is already awaiting approval",
                resource="AuditPlan",
                current_state=plan.status,
            )

        plan.status = new_status
        plan.submitted_at = utcnow()
        plan.submitted_by_id = actor_id
        db.session.flush()

        audit = plan.audit
        program_title = audit.program.title if audit.program else ""
        write_activity(
            tenant_id=tenant_id,
            user_id=actor_id,
            action="SUBMIT_AUDIT_PLAN",
            entity_type="AUDIT_PLAN",
            entity_id=plan.id,
            details=f"Audit plan submitted for approval for audit {audit.audit_no} ({program_title})",
            metadata={"auditId": audit.id, "programId": audit.program_id},
        )

        effects = SideEffects()
        effects.notify(
            type="AUDIT_PLAN_APPROVAL",
            title="Audit Plan Submitted for Approval",
            message=f'A new audit plan for program "{program_title}" requires your review and approval.',
            link=_plan_link(plan),
            metadata=_plan_metadata(plan),
            capability=current_app.config["PROGRAM_CREATE_CAPABILITY"],
        )
        effects.push(f"audit:{audit.id}", "auditPlanUpdated", {"planId": plan.id, "status": new_status})
        return plan.to_dict(), effects

    result, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "plan_id": plan_id})
    logger.info("Audit plan submitted", extra={"tenant_id": tenant_id, "plan_id": plan_id, "actor_id": actor_id})
    dispatch_side_effects(tenant_id, effects, actor_id=actor_id)
    return result


def approve(tenant_id: int, plan_id: int, *, actor_id: int) -> dict:
    """SUBMITTED → APPROVED; notifies the audit team except the approver."""

    def _tx():
        plan = get_scoped(AuditPlan, plan_id, tenant_id=tenant_id, for_update=True)
        new_status = _validate_transition(plan, "approve")
        # Time has passed since submission; check again
        validate_timetable(plan.timetable, required=True)

        plan.status = new_status
        plan.approved_at = utcnow()
        plan.approved_by_id = actor_id
        db.session.flush()

        write_activity(
            tenant_id=tenant_id,
            user_id=actor_id,
            action="APPROVE_AUDIT_PLAN",
            entity_type="AUDIT_PLAN",
            entity_id=plan.id,
            details="Approved audit plan",
            metadata={"planId": plan.id, "auditId": plan.audit_id},
        )

        team_ids = db.session.execute(
            select(AuditTeamMember.user_id)
            .where(AuditTeamMember.audit_id == plan.audit_id, AuditTeamMember.user_id != actor_id)
            .order_by(AuditTeamMember.id)
        ).scalars().all()
        approver = db.session.get(User, actor_id) if actor_id is not None else None
        approver_name = approver.full_name if approver else "Management Representative"
        program_title = plan.audit.program.title if plan.audit.program else "Audit Program"

        effects = SideEffects()
        if team_ids:
            effects.notify(
                type="AUDIT_PLAN_APPROVED",
                title="Audit Plan Approved",
                message=f'The audit plan for program "{program_title}" has been approved by {approver_name}.',
                link=_plan_link(plan),
                metadata=_plan_metadata(plan),
                user_ids=list(team_ids),
            )
        effects.push(f"audit:{plan.audit_id}", "auditPlanUpdated", {"planId": plan.id, "status": new_status})
        return plan.to_dict(), effects

    result, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "plan_id": plan_id})
    logger.info("Audit plan approved", extra={"tenant_id": tenant_id, "plan_id": plan_id, "actor_id": actor_id})
    dispatch_side_effects(tenant_id, effects, actor_id=actor_id)
    return result


def reject(tenant_id: int, plan_id: int, *, actor_id: int, reason: str | None = None) -> dict:
    """SUBMITTED → REJECTED with the reason stored.

    The author gets exactly one notification; the capability broadcast
    excludes the author so a programme manager who wrote the plan is not
    notified twice.
    """
    reason = (reason or "").strip() or None

    def _tx():
        plan = get_scoped(AuditPlan, plan_id, tenant_id=tenant_id, for_update=True)
        new_status = _validate_transition(plan, "reject")

        plan.status = new_status
        plan.rejection_reason = reason
        plan.rejected_at = utcnow()
        plan.rejected_by_id = actor_id
        db.session.flush()

        write_activity(
            tenant_id=tenant_id,
            user_id=actor_id,
            action="REJECT_AUDIT_PLAN",
            entity_type="AUDIT_PLAN",
            entity_id=plan.id,
            details="Rejected audit plan",
            metadata={"planId": plan.id, "reason": reason},
        )

        program_title = plan.audit.program.title if plan.audit.program else ""
        suffix = f" Reason: {reason}" if reason else ""
        author_id = plan.created_by_id
        effects = SideEffects()
        if author_id is not None:
            effects.notify(
                type="AUDIT_PLAN_REJECTED",
                title="Audit Plan Rejected",
                message=f'Your audit plan for program "{program_title}" was rejected.{suffix}',
                link=f"/audits/{plan.audit.program_id}/{plan.audit_id}/timetable?planId={plan.id}",
                metadata=_plan_metadata(plan, reason=reason),
                user_ids=[author_id],
            )
        effects.notify(
            type="AUDIT_PLAN_REJECTED",
            title="Audit Plan Rejected",
            message=(
                f'Audit plan for program "{program_title}" has been rejected. '
                f"Please review and resubmit.{suffix}"
            ),
            link=_plan_link(plan),
            metadata=_plan_metadata(plan, reason=reason),
            capability=current_app.config["PROGRAM_CREATE_CAPABILITY"],
            exclude_user_ids=[uid for uid in (author_id,) if uid is not None],
        )
        effects.push(f"audit:{plan.audit_id}", "auditPlanUpdated", {"planId": plan.id, "status": new_status})
        return plan.to_dict(), effects

    result, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "plan_id": plan_id})
    logger.info("Audit plan rejected", extra={"tenant_id": tenant_id, "plan_id": plan_id, "actor_id": actor_id})
    dispatch_side_effects(tenant_id, effects, actor_id=actor_id)
    return result
