"""
Audit Team Composition Service.

Assigns and replaces the team leader, adds and removes team members, and
records each appointee's accept/decline response.

Invariants enforced here and backed by storage constraints:
    - At most one TEAM_LEADER per audit (partial unique index).
    - One row per (audit, user): a user is leader XOR member, never both.
    - A (re)assigned leader always starts PENDING; a previous acceptance is
      discarded so the appointment must be re-confirmed.
    - A response is accepted exactly once per appointment (first one wins).

Notifications and invitation messages are produced as a ``SideEffects``
descriptor and dispatched only after the transaction commits.

Usage:
    from auditflow.services import team_service

    member = team_service.assign_team_leader(tenant_id, audit_id, user_id, actor_id=hod_id)
    result = team_service.add_team_members(tenant_id, audit_id, [4, 5, 6], actor_id=hod_id)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from auditflow.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from auditflow.models import db
from auditflow.models.activity_log import write_activity
from auditflow.models.audit import (
    RESPONSE_DECISIONS,
    RESPONSE_DECLINED,
    RESPONSE_PENDING,
    TEAM_LEADER,
    TEAM_MEMBER,
    Audit,
    AuditTeamMember,
)
from auditflow.models.auth import User
from auditflow.services import message_service, permission_service
from auditflow.services.helpers.scoped_queries import get_scoped
from auditflow.services.helpers.unit_of_work import SideEffects, run_in_transaction
from auditflow.services.notification import dispatch_side_effects

logger = logging.getLogger(__name__)

TEAM_APPOINTMENT_CATEGORY = "TEAM_APPOINTMENT"

REASON_ALREADY_LEADER = "User is already the team leader. Remove as leader before assigning as member."
REASON_ALREADY_MEMBER = "User is already a team member."
REASON_NOT_IN_TENANT = "User not found in tenant."
REASON_DUPLICATE = "User listed more than once in the request."

_ROLE_LABELS = {TEAM_LEADER: "Team Leader", TEAM_MEMBER: "Team Member"}


# ── Private helpers ────────────────────────────────────────────────────────────


def _now():
    return datetime.now(timezone.utc)


def _team_rows(audit_id: int) -> list[AuditTeamMember]:
    stmt = select(AuditTeamMember).where(AuditTeamMember.audit_id == audit_id).order_by(AuditTeamMember.id)
    return list(db.session.execute(stmt).scalars().all())


def _tenant_user(tenant_id: int, user_id: int) -> User:
    return get_scoped(User, user_id, tenant_id=tenant_id)


def _respond_link(audit: Audit) -> str:
    return f"/audit-management/audits/{audit.id}/team/respond"


def _queue_invitation(effects: SideEffects, audit: Audit, user_id: int, role: str, actor_id: int | None):
    program_title = audit.program.title if audit.program else ""
    role_label = _ROLE_LABELS[role]
    effects.message(
        recipient_ids=[user_id],
        sender_id=actor_id,
        subject=f"Team Appointment: {role_label} for {program_title}",
        body=(
            f"You have been appointed as {role_label} for audit {audit.audit_no} "
            f"({audit.type_title}) in the audit programme \"{program_title}\". "
            "Please accept or decline this appointment."
        ),
        category=TEAM_APPOINTMENT_CATEGORY,
        entity_type="audit",
        entity_id=audit.id,
        metadata={
            "type": "TEAM_APPOINTMENT",
            "auditId": audit.id,
            "programId": audit.program_id,
            "auditNo": audit.audit_no,
            "programTitle": program_title,
            "role": role,
            "link": _respond_link(audit),
        },
    )


def _insert_skip_duplicates(rows: list[dict]) -> set[int]:
    """Bulk-insert team rows, silently skipping (audit, user) pairs that already exist.

    Returns the user ids that were actually inserted.
    """
    if not rows:
        return set()
    dialect = db.session.get_bind().dialect.name
    if dialect in ("postgresql", "sqlite"):
        insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = (
            insert_fn(AuditTeamMember)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["audit_id", "user_id"])
            .returning(AuditTeamMember.user_id)
        )
        return set(db.session.execute(stmt).scalars().all())

    # Other dialects: one savepoint per row
    inserted = set()
    for row in rows:
        try:
            with db.session.begin_nested():
                db.session.add(AuditTeamMember(**row))
        except IntegrityError:
            continue
        inserted.add(row["user_id"])
    return inserted


# ── Queries ────────────────────────────────────────────────────────────────────


def list_team(tenant_id: int, audit_id: int) -> dict:
    """Return the audit with its leader and members."""
    audit = get_scoped(Audit, audit_id, tenant_id=tenant_id)
    rows = _team_rows(audit.id)
    leader = next((r for r in rows if r.role == TEAM_LEADER), None)
    return {
        "audit": audit.to_dict(),
        "team_leader": leader.to_dict() if leader else None,
        "team_members": [r.to_dict() for r in rows if r.role == TEAM_MEMBER],
    }


def list_eligible_candidates(tenant_id: int, audit_id: int, *, for_leader: bool = False) -> list[dict]:
    """Auditors who can still be appointed.

    Member candidates exclude everyone already on the team. Leader candidates
    exclude only the current leader; preferred-leader-role holders sort first.
    """
    audit = get_scoped(Audit, audit_id, tenant_id=tenant_id)
    rows = _team_rows(audit.id)
    if for_leader:
        excluded = {r.user_id for r in rows if r.role == TEAM_LEADER}
    else:
        excluded = {r.user_id for r in rows}

    preferred_role = current_app.config["PREFERRED_LEADER_ROLE"]
    candidates = []
    for user in permission_service.users_with_roles(tenant_id, current_app.config["AUDITOR_ROLE_NAMES"]):
        if user.id in excluded:
            continue
        roles = permission_service.user_role_names(user.id, tenant_id)
        candidates.append({
            **user.to_summary(),
            "roles": sorted(roles),
            "is_preferred_leader": preferred_role in roles,
        })
    if for_leader:
        candidates.sort(key=lambda c: (not c["is_preferred_leader"], c["id"]))
    return candidates


# ── Commands ───────────────────────────────────────────────────────────────────


def assign_team_leader(tenant_id: int, audit_id: int, candidate_id: int, *, actor_id: int | None = None) -> dict:
    """Make ``candidate_id`` the audit's team leader (status PENDING).

    A different existing leader is removed first. A candidate who is already
    a TEAM_MEMBER must be removed as member before becoming leader.

    Raises:
        NotFoundError: audit or candidate not in tenant.
        ConflictError: candidate is already a TEAM_MEMBER, or a concurrent
            assignment won the race.
    """

    def _tx():
        audit = get_scoped(Audit, audit_id, tenant_id=tenant_id, for_update=True)
        _tenant_user(tenant_id, candidate_id)
        rows = _team_rows(audit.id)
        current_leader = next((r for r in rows if r.role == TEAM_LEADER), None)
        existing = next((r for r in rows if r.user_id == candidate_id), None)

        if existing is not None and existing.role == TEAM_MEMBER:
            raise ConflictError(
                "User is already a team member. Remove as member before assigning as leader.",
                resource="AuditTeamMember",
                current_state=TEAM_MEMBER,
            )

        effects = SideEffects()
        displaced_id = None
        if current_leader is not None and current_leader.user_id != candidate_id:
            displaced_id = current_leader.user_id
            db.session.delete(current_leader)
            # Clear the leader slot before the new row hits the partial unique index
            db.session.flush()

        if existing is not None:
            existing.status = RESPONSE_PENDING
            existing.response_at = None
            existing.decline_reason = None
            existing.appointed_at = _now()
            member = existing
        else:
            member = AuditTeamMember(
                audit_id=audit.id,
                user_id=candidate_id,
                role=TEAM_LEADER,
                status=RESPONSE_PENDING,
                appointed_at=_now(),
            )
            db.session.add(member)
        db.session.flush()

        write_activity(
            tenant_id=tenant_id,
            user_id=actor_id,
            action="ASSIGN_TEAM_LEADER",
            entity_type="AUDIT",
            entity_id=audit.id,
            details=f"Assigned user {candidate_id} as team leader for audit {audit.audit_no}",
            metadata={"userId": candidate_id, "previousLeaderId": displaced_id},
        )

        _queue_invitation(effects, audit, candidate_id, TEAM_LEADER, actor_id)
        if displaced_id is not None:
            effects.notify(
                user_ids=[displaced_id],
                type="AUDIT_TEAM_LEADER_REMOVED",
                title="Removed as Audit Team Leader",
                message=f"You have been replaced as team leader for audit {audit.audit_no}.",
                link=f"/audit-management/audits/{audit.id}",
                metadata={"auditId": audit.id, "newLeaderId": candidate_id},
            )
        effects.push(f"audit:{audit.id}", "teamUpdated", {"auditId": audit.id, "leaderId": candidate_id})
        return member.to_dict(), effects

    result, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "audit_id": audit_id})
    logger.info(
        "Team leader assigned",
        extra={"tenant_id": tenant_id, "audit_id": audit_id, "user_id": candidate_id, "actor_id": actor_id},
    )
    dispatch_side_effects(tenant_id, effects, actor_id=actor_id)
    return result


def add_team_members(tenant_id: int, audit_id: int, candidate_ids, *, actor_id: int | None = None) -> dict:
    """Add several users as TEAM_MEMBER (status PENDING) with partial success.

    Candidates already on the team, outside the tenant, or repeated in the
    request are reported in ``rejected`` with a reason; the rest are inserted.
    Rows inserted concurrently by another request are skipped at write time
    and reported as already members.

    Returns:
        {"audit": {...}, "added": [member, ...], "rejected": [{"user_id", "reason"}, ...]}
    """
    if not isinstance(candidate_ids, (list, tuple)) or not candidate_ids:
        raise ValidationError("At least one user id is required", details={"user_ids": "empty"})

    def _tx():
        audit = get_scoped(Audit, audit_id, tenant_id=tenant_id, for_update=True)
        by_user = {r.user_id: r for r in _team_rows(audit.id)}

        rejected: list[dict] = []
        eligible: list[int] = []
        seen: set = set()
        for raw_id in candidate_ids:
            try:
                user_id = int(raw_id)
            except (TypeError, ValueError):
                rejected.append({"user_id": raw_id, "reason": "Invalid user id."})
                continue
            if user_id in seen:
                rejected.append({"user_id": user_id, "reason": REASON_DUPLICATE})
                continue
            seen.add(user_id)
            existing = by_user.get(user_id)
            if existing is not None:
                reason = REASON_ALREADY_LEADER if existing.role == TEAM_LEADER else REASON_ALREADY_MEMBER
                rejected.append({"user_id": user_id, "reason": reason})
                continue
            if db.session.execute(
                select(User.id).where(User.id == user_id, User.tenant_id == tenant_id)
            ).scalar_one_or_none() is None:
                rejected.append({"user_id": user_id, "reason": REASON_NOT_IN_TENANT})
                continue
            eligible.append(user_id)

        appointed_at = _now()
        inserted = _insert_skip_duplicates([
            {
                "audit_id": audit.id,
                "user_id": user_id,
                "role": TEAM_MEMBER,
                "status": RESPONSE_PENDING,
                "appointed_at": appointed_at,
            }
            for user_id in eligible
        ])
        for user_id in eligible:
            if user_id not in inserted:
                rejected.append({"user_id": user_id, "reason": REASON_ALREADY_MEMBER})

        effects = SideEffects()
        added_ids = [uid for uid in eligible if uid in inserted]
        for user_id in added_ids:
            write_activity(
                tenant_id=tenant_id,
                user_id=actor_id,
                action="ADD_TEAM_MEMBER",
                entity_type="AUDIT",
                entity_id=audit.id,
                details=f"Added user {user_id} as team member for audit {audit.audit_no}",
                metadata={"userId": user_id},
            )
            _queue_invitation(effects, audit, user_id, TEAM_MEMBER, actor_id)
        if added_ids:
            effects.push(f"audit:{audit.id}", "teamUpdated", {"auditId": audit.id, "addedUserIds": added_ids})

        # Bulk insert bypassed the identity map; reload for serialisation
        db.session.expire(audit)
        added = [
            r.to_dict() for r in _team_rows(audit.id) if r.user_id in inserted
        ]
        return {"audit": audit.to_dict(include_team=True), "added": added, "rejected": rejected}, effects

    result, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "audit_id": audit_id})
    logger.info(
        "Team members added: %d added, %d rejected", len(result["added"]), len(result["rejected"]),
        extra={"tenant_id": tenant_id, "audit_id": audit_id, "actor_id": actor_id},
    )
    dispatch_side_effects(tenant_id, effects, actor_id=actor_id)
    return result


def remove_team_member(tenant_id: int, audit_id: int, user_id: int, *, actor_id: int | None = None) -> dict:
    """Remove a user from the audit team regardless of role.

    Raises:
        NotFoundError: audit missing, or the user was never assigned.
    """

    def _tx():
        audit = get_scoped(Audit, audit_id, tenant_id=tenant_id, for_update=True)
        row = db.session.execute(
            select(AuditTeamMember).where(
                AuditTeamMember.audit_id == audit.id,
                AuditTeamMember.user_id == user_id,
            )
        ).scalar_one_or_none()
        if row is None:
            raise NotFoundError(resource="AuditTeamMember", resource_id=user_id, tenant_id=tenant_id)

        removed = row.to_dict()
        was_leader = row.role == TEAM_LEADER
        db.session.delete(row)
        db.session.flush()

        write_activity(
            tenant_id=tenant_id,
            user_id=actor_id,
            action="REMOVE_TEAM_LEADER" if was_leader else "REMOVE_TEAM_MEMBER",
            entity_type="AUDIT",
            entity_id=audit.id,
            details=f"Removed user {user_id} as {'team leader' if was_leader else 'team member'} "
                    f"from audit {audit.audit_no}",
            metadata={"userId": user_id, "role": removed["role"]},
        )

        effects = SideEffects()
        role_word = "Leader" if was_leader else "Member"
        effects.notify(
            user_ids=[user_id],
            type="AUDIT_TEAM_LEADER_REMOVED" if was_leader else "AUDIT_TEAM_MEMBER_REMOVED",
            title=f"Removed as Audit Team {role_word}",
            message=f"You have been removed as team {role_word.lower()} from audit {audit.audit_no}.",
            link=f"/audit-management/audits/{audit.id}",
            metadata={"auditId": audit.id, "role": removed["role"]},
        )
        effects.push(f"audit:{audit.id}", "teamUpdated", {"auditId": audit.id, "removedUserId": user_id})
        return removed, effects

    result, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "audit_id": audit_id})
    logger.info(
        "Team member removed",
        extra={"tenant_id": tenant_id, "audit_id": audit_id, "user_id": user_id, "actor_id": actor_id},
    )
    dispatch_side_effects(tenant_id, effects, actor_id=actor_id)
    return result


def respond_to_appointment(
    tenant_id: int,
    audit_id: int,
    user_id: int,
    *,
    responder_id: int,
    decision: str,
    decline_reason: str | None = None,
) -> dict:
    """Record the appointee's ACCEPTED / DECLINED response.

    Raises:
        ValidationError: decision not ACCEPTED/DECLINED, or DECLINED without a reason.
        NotFoundError: audit missing, or user not on the team.
        ForbiddenError: someone other than the appointee is responding.
        ConflictError: the appointment was already responded to.
    """
    decision = (decision or "").strip().upper()
    if decision not in RESPONSE_DECISIONS:
        raise ValidationError(
            "Response must be ACCEPTED or DECLINED",
            details={"response": f"expected one of {sorted(RESPONSE_DECISIONS)}"},
        )
    reason = (decline_reason or "").strip() or None
    if decision == RESPONSE_DECLINED and not reason:
        raise ValidationError("A reason is required when declining", details={"decline_reason": "required"})

    def _tx():
        audit = get_scoped(Audit, audit_id, tenant_id=tenant_id)
        row = db.session.execute(
            select(AuditTeamMember)
            .where(AuditTeamMember.audit_id == audit.id, AuditTeamMember.user_id == user_id)
            .with_for_update()
        ).scalar_one_or_none()
        if row is None:
            raise NotFoundError(resource="AuditTeamMember", resource_id=user_id, tenant_id=tenant_id)
        if responder_id != row.user_id:
            raise ForbiddenError("Only the appointed user can respond to this appointment", user_id=responder_id)
        if row.status != RESPONSE_PENDING:
            raise ConflictError(
                "You have already responded to this appointment",
                resource="AuditTeamMember",
                current_state=row.status,
            )

        row.status = decision
        row.response_at = _now()
        row.decline_reason = reason if decision == RESPONSE_DECLINED else None
        db.session.flush()

        invitation = message_service.find_latest_invitation(
            tenant_id, user_id, entity_type="audit", entity_id=audit.id, category=TEAM_APPOINTMENT_CATEGORY,
        )
        invitation_updated = False
        if invitation is not None:
            invitation_updated = message_service.record_response(invitation, decision, reason)

        write_activity(
            tenant_id=tenant_id,
            user_id=responder_id,
            action="RESPOND_TEAM_APPOINTMENT",
            entity_type="AUDIT_TEAM_MEMBER",
            entity_id=row.id,
            details=f"User {user_id} {decision.lower()} the {_ROLE_LABELS[row.role]} appointment "
                    f"for audit {audit.audit_no}",
            metadata={"auditId": audit.id, "decision": decision, "declineReason": row.decline_reason},
        )

        user = row.user
        who = user.full_name if user else f"User {user_id}"
        verb = "accepted" if decision != RESPONSE_DECLINED else "declined"
        text = f"{who} has {verb} the {_ROLE_LABELS[row.role]} appointment for audit {audit.audit_no}."
        if reason:
            text += f" Reason: {reason}"
        audience = dict(
            capability=current_app.config["PROGRAM_CREATE_CAPABILITY"],
            default_role=current_app.config["MR_ROLE_NAME"],
        )
        payload = {
            "auditId": audit.id,
            "userId": user_id,
            "role": row.role,
            "response": decision,
            "declineReason": row.decline_reason,
        }

        effects = SideEffects()
        effects.message(
            subject="Audit Team Appointment Response",
            body=text,
            sender_id=responder_id,
            category="SYSTEM",
            entity_type="audit",
            entity_id=audit.id,
            metadata={"type": "TEAM_APPOINTMENT_RESPONSE", **payload},
            **audience,
        )
        effects.notify(
            type="TEAM_APPOINTMENT_RESPONSE",
            title="Audit Team Appointment Response",
            message=text,
            link=f"/audit-management/audits/{audit.id}",
            metadata=payload,
            **audience,
        )
        if invitation_updated:
            effects.push(f"user:{responder_id}", "messageUpdated", {"messageId": invitation.id, "response": decision})
        effects.push(f"audit:{audit.id}", "teamAppointmentResponded", payload)
        return row.to_dict(), effects

    result, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "audit_id": audit_id})
    logger.info(
        "Team appointment %s", decision.lower(),
        extra={"tenant_id": tenant_id, "audit_id": audit_id, "user_id": user_id},
    )
    dispatch_side_effects(tenant_id, effects, actor_id=responder_id)
    return result
