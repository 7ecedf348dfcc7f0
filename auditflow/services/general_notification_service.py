"""
General Audit Notification Guard.

The general audit notification tells every user in the tenant that an audit
of an approved programme is scheduled. It is deduplicated per audit:

    never sent                → ELIGIBLE
    sent < cooldown ago       → RECENT_NOTIFICATION (send raises RateLimitedError)
    sent ≥ cooldown ago       → RESEND_ALLOWED (send succeeds, flagged as resend)
    programme not APPROVED    → PROGRAM_NOT_APPROVED (send raises ConflictError)

The eligibility read, the cooldown check and the "mark as sent" write run in
one transaction with the audit row locked, so two concurrent sends cannot
both observe "not sent yet".

The management review invitation is a stricter sibling: it goes out at most
once per audit.
"""

from __future__ import annotations

import logging
import math

from flask import current_app
from sqlalchemy import select

from auditflow.core.exceptions import ConflictError, RateLimitedError, ValidationError
from auditflow.models import db
from auditflow.models.activity_log import write_activity
from auditflow.models.audit import (
    RESPONSE_ACCEPTED,
    RESPONSE_DECLINED,
    RESPONSE_PENDING,
    TEAM_LEADER,
    Audit,
    AuditTeamMember,
)
from auditflow.models.auth import User
from auditflow.services import permission_service
from auditflow.services.agenda_templates import resolve_agenda
from auditflow.services.helpers.scoped_queries import get_scoped
from auditflow.services.helpers.unit_of_work import SideEffects, run_in_transaction
from auditflow.services.notification import dispatch_side_effects
from auditflow.utils.helpers import ensure_utc, parse_datetime, utcnow

logger = logging.getLogger(__name__)

GENERAL_NOTIFICATION_SUBJECT = "General Audit Notification"

CODE_ELIGIBLE = "ELIGIBLE"
CODE_RESEND_ALLOWED = "RESEND_ALLOWED"
CODE_RECENT_NOTIFICATION = "RECENT_NOTIFICATION"
CODE_PROGRAM_NOT_APPROVED = "PROGRAM_NOT_APPROVED"

_NOTIFICATION_BODY = (
    "This is to notify you that the above mentioned audit shall be undertaken on the "
    "mentioned dates and as per the audit programme.\n\n"
    "The audit plan indicating the scope, objectives, criteria and the audit team shall be "
    "circulated by the audit team leader.\n\n"
    "Kindly prepare accordingly."
)
_NOTIFICATION_FOOTER = "Yours Faithfully\nManagement Representative"


def _cooldown_seconds() -> int:
    return int(current_app.config["GENERAL_NOTIFICATION_COOLDOWN_SECONDS"])


def _sender_name(user_id: int | None) -> str | None:
    if user_id is None:
        return None
    user = db.session.get(User, user_id)
    return user.full_name if user else None


def _evaluate(audit: Audit, now=None) -> dict:
    """Pure eligibility decision for an already-loaded audit."""
    now = now or utcnow()
    last_sent_at = ensure_utc(audit.general_notification_sent_at)
    result = {
        "can_send": True,
        "code": CODE_ELIGIBLE,
        "reason": None,
        "last_sent_at": last_sent_at.isoformat() if last_sent_at else None,
        "last_sent_by": audit.general_notification_sent_by,
        "minutes_ago": None,
        "retry_after": None,
        "warning": None,
    }
    program_status = audit.program.status if audit.program else None
    if program_status != "APPROVED":
        result.update(
            can_send=False,
            code=CODE_PROGRAM_NOT_APPROVED,
            reason="General Audit Notification can only be sent for audits in an APPROVED program",
        )
        return result
    if last_sent_at is None:
        return result

    elapsed = (now - last_sent_at).total_seconds()
    result["minutes_ago"] = int(elapsed // 60)
    cooldown = _cooldown_seconds()
    if elapsed < cooldown:
        result.update(
            can_send=False,
            code=CODE_RECENT_NOTIFICATION,
            reason=(
                "A General Audit Notification was already sent recently for this audit. "
                "Please wait before sending again."
            ),
            retry_after=max(1, math.ceil(cooldown - elapsed)),
        )
        return result

    sender = _sender_name(audit.general_notification_sent_by) or "another user"
    result.update(
        code=CODE_RESEND_ALLOWED,
        warning=(
            f"A General Audit Notification was already sent {result['minutes_ago']} minute(s) ago "
            f"by {sender}. Sending again will notify all users."
        ),
    )
    return result


def _notification_metadata(audit: Audit) -> dict:
    program_title = audit.program.title if audit.program else ""
    date_from = ensure_utc(audit.audit_date_from)
    date_to = ensure_utc(audit.audit_date_to)
    date_from_str = date_from.strftime("%d/%m/%Y") if date_from else ""
    date_to_str = date_to.strftime("%d/%m/%Y") if date_to else ""
    return {
        "type": "GENERAL_AUDIT_NOTIFICATION",
        "auditId": audit.id,
        "auditNo": audit.audit_no,
        "programTitle": program_title,
        "dateFrom": date_from_str,
        "dateTo": date_to_str,
        "header": {
            "program": program_title,
            "auditNo": audit.type_title,
            "dates": f"{date_from_str} to {date_to_str}",
        },
        "body": _NOTIFICATION_BODY,
        "footer": _NOTIFICATION_FOOTER,
    }


def _tenant_user_ids(tenant_id: int) -> list[int]:
    return list(db.session.execute(
        select(User.id)
        .where(User.tenant_id == tenant_id, User.status == "active")
        .order_by(User.id)
    ).scalars().all())


# ── Queries ────────────────────────────────────────────────────────────────────


def check_eligibility(tenant_id: int, audit_id: int) -> dict:
    """Read-only preview of what ``send`` would do right now."""
    audit = get_scoped(Audit, audit_id, tenant_id=tenant_id)
    return _evaluate(audit)


def get_status(tenant_id: int, audit_id: int) -> dict:
    """Team summary, general-notification eligibility and MR invitation marker."""
    audit = get_scoped(Audit, audit_id, tenant_id=tenant_id)
    rows = db.session.execute(
        select(AuditTeamMember).where(AuditTeamMember.audit_id == audit.id).order_by(AuditTeamMember.id)
    ).scalars().all()
    leader = next((r for r in rows if r.role == TEAM_LEADER), None)
    counts = {
        RESPONSE_PENDING: sum(1 for r in rows if r.status == RESPONSE_PENDING),
        RESPONSE_ACCEPTED: sum(1 for r in rows if r.status == RESPONSE_ACCEPTED),
        RESPONSE_DECLINED: sum(1 for r in rows if r.status == RESPONSE_DECLINED),
    }
    mr_sent_at = ensure_utc(audit.management_review_invitation_sent_at)
    return {
        "audit": audit.to_dict(),
        "team": {
            "leader": leader.to_dict() if leader else None,
            "member_count": sum(1 for r in rows if r.role != TEAM_LEADER),
            "responses": counts,
            "all_accepted": bool(rows) and counts[RESPONSE_ACCEPTED] == len(rows),
        },
        "general_notification": _evaluate(audit),
        "management_review_invitation": {
            "sent": mr_sent_at is not None,
            "sent_at": mr_sent_at.isoformat() if mr_sent_at else None,
            "sent_by": audit.management_review_invitation_sent_by,
        },
    }


# ── Send ───────────────────────────────────────────────────────────────────────


def send(tenant_id: int, audit_id: int, *, actor_id: int) -> dict:
    """Broadcast the general audit notification to every active tenant user.

    Returns:
        ``{"sent": True, "is_resend": bool, "recipients": int, "warning": str | None}``

    Raises:
        ConflictError: programme not APPROVED.
        RateLimitedError: sent within the cooldown; carries last_sent_at/by.
    """

    def _tx():
        audit = get_scoped(Audit, audit_id, tenant_id=tenant_id, for_update=True)
        now = utcnow()
        decision = _evaluate(audit, now)
        if decision["code"] == CODE_PROGRAM_NOT_APPROVED:
            raise ConflictError(
                decision["reason"],
                resource="AuditProgram",
                current_state=audit.program.status if audit.program else None,
            )
        if decision["code"] == CODE_RECENT_NOTIFICATION:
            raise RateLimitedError(
                decision["reason"],
                last_sent_at=ensure_utc(audit.general_notification_sent_at),
                last_sent_by=audit.general_notification_sent_by,
                retry_after=decision["retry_after"],
            )

        is_resend = decision["code"] == CODE_RESEND_ALLOWED
        audit.general_notification_sent_at = now
        audit.general_notification_sent_by = actor_id
        db.session.flush()

        program_title = audit.program.title if audit.program else ""
        write_activity(
            tenant_id=tenant_id,
            user_id=actor_id,
            action="SEND_GENERAL_AUDIT_NOTIFICATION",
            entity_type="AUDIT",
            entity_id=audit.id,
            details=f"General Audit Notification sent for audit {audit.audit_no} ({program_title})",
            metadata={"auditId": audit.id, "programId": audit.program_id, "isResend": is_resend},
        )

        recipients = _tenant_user_ids(tenant_id)
        effects = SideEffects()
        if recipients:
            effects.message(
                recipient_ids=recipients,
                sender_id=actor_id,
                subject=GENERAL_NOTIFICATION_SUBJECT,
                body="A general audit notification has been issued.",
                category="GENERAL_NOTIFICATION",
                entity_type="audit",
                entity_id=audit.id,
                metadata=_notification_metadata(audit),
            )
        effects.push(
            f"tenant:{tenant_id}", "generalNotificationSent",
            {"auditId": audit.id, "isResend": is_resend, "sentBy": actor_id},
        )
        result = {
            "sent": True,
            "is_resend": is_resend,
            "recipients": len(recipients),
            "warning": decision["warning"],
        }
        return result, effects

    result, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "audit_id": audit_id})
    if result["is_resend"]:
        logger.warning(
            "General audit notification re-sent", extra={"tenant_id": tenant_id, "audit_id": audit_id, "actor_id": actor_id},
        )
    else:
        logger.info(
            "General audit notification sent", extra={"tenant_id": tenant_id, "audit_id": audit_id, "actor_id": actor_id},
        )
    dispatch_side_effects(tenant_id, effects, actor_id=actor_id)
    return result


def send_management_review_invitation(
    tenant_id: int,
    audit_id: int,
    *,
    actor_id: int,
    meeting_date,
    start_time: str,
    end_time: str,
    venue: str,
) -> dict:
    """Invite every holder of the management-review capability. Once per audit.

    Raises:
        ValidationError: bad meeting date or nobody holds the capability.
        ConflictError: the invitation was already sent.
    """
    try:
        meeting_at = parse_datetime(meeting_date)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"meeting_date": "invalid"}) from exc
    if meeting_at is None:
        raise ValidationError("Meeting date is required", details={"meeting_date": "required"})

    def _tx():
        audit = get_scoped(Audit, audit_id, tenant_id=tenant_id, for_update=True)
        if audit.management_review_invitation_sent_at is not None:
            raise ConflictError(
                "Management review invitation has already been sent for this audit",
                resource="Audit",
                current_state="INVITATION_SENT",
            )
        capability = current_app.config["MANAGEMENT_REVIEW_CAPABILITY"]
        recipients = [u.id for u in permission_service.users_with_capability(tenant_id, capability)]
        if not recipients:
            raise ValidationError(
                "No users found with management review permission",
                details={"capability": capability},
            )

        audit.management_review_invitation_sent_at = utcnow()
        audit.management_review_invitation_sent_by = actor_id
        db.session.flush()

        program_title = audit.program.title if audit.program else ""
        date_label = meeting_at.strftime("%d %B %Y").lstrip("0")
        write_activity(
            tenant_id=tenant_id,
            user_id=actor_id,
            action="SEND_MANAGEMENT_REVIEW_INVITATION",
            entity_type="AUDIT",
            entity_id=audit.id,
            details=f"Management Review invitation sent for audit {audit.audit_no} ({program_title})",
            metadata={
                "auditId": audit.id,
                "programId": audit.program_id,
                "invitedUsers": len(recipients),
                "meetingDate": meeting_at.isoformat(),
                "startTime": start_time,
                "endTime": end_time,
                "venue": venue,
            },
        )

        agenda_lines = resolve_agenda(tenant_id, "MANAGEMENT_REVIEW")
        agenda = "\n".join(agenda_lines)
        body = (
            "Management Review Invitation\n\n"
            f"Programme\n{program_title}\n\n"
            f"Audit Number\n{audit.type_title}\n\n"
            f"Management Review Meeting Date (S)\n{date_label}\n\n"
            "You are hereby notified and invited to the above mentioned forum to be held on the "
            f"above mentioned date(S) from {start_time} to {end_time} at {venue}.\n\n"
            f"The agenda of the meeting shall be\n{agenda}\n\n"
            "Kindly prepare accordingly\n"
            "Yours Faithfully\n"
            "Management Rep (Secretary to Management review meeting)"
        )
        effects = SideEffects()
        effects.message(
            recipient_ids=recipients,
            sender_id=actor_id,
            subject=f"Management Review Meeting Invitation - {program_title}",
            body=body,
            category="MEETING",
            entity_type="audit",
            entity_id=audit.id,
            metadata={
                "type": "MANAGEMENT_REVIEW_INVITATION",
                "auditId": audit.id,
                "meetingDate": meeting_at.isoformat(),
                "startTime": start_time,
                "endTime": end_time,
                "venue": venue,
                "agendas": agenda_lines,
            },
        )
        return {"sent": True, "recipients": len(recipients)}, effects

    result, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "audit_id": audit_id})
    logger.info(
        "Management review invitation sent", extra={"tenant_id": tenant_id, "audit_id": audit_id, "actor_id": actor_id},
    )
    dispatch_side_effects(tenant_id, effects, actor_id=actor_id)
    return result
