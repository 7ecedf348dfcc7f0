"""
Meeting Lifecycle Service.

One state machine serves all four meeting kinds (PLANNING, OPENING, CLOSING,
MANAGEMENT_REVIEW). Each kind is described by a ``MeetingKindConfig``:
initial status, whether invitations go out, and how invitees are resolved.
Agenda seeding goes through ``agenda_templates.resolve_agenda``.

Status transitions:
    start:    UPCOMING → ACTIVE          (team leader only, not before scheduled date)
    complete: ACTIVE → COMPLETED         (team leader only)
    cancel:   UPCOMING | ACTIVE → CANCELLED (team leader only)

Upsert policy:
    ``create_or_update`` keeps exactly one non-archived meeting per
    (audit, kind). Calling it again updates that row in place and replaces
    its agenda and attendance wholesale, so repeated "save draft" calls are
    idempotent. A partial unique index backs this up at the storage layer.

Usage:
    from auditflow.services import meeting_service

    meeting = meeting_service.create_or_update(
        tenant_id, audit_id, "OPENING",
        {"scheduled_at": "2025-08-12T09:00:00Z", "venue": "Board Room"},
        actor_id=leader_id,
    )
    meeting_service.start(tenant_id, meeting["id"], actor_id=leader_id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from flask import current_app
from sqlalchemy import delete, func, select

from auditflow.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from auditflow.models import db
from auditflow.models.activity_log import write_activity
from auditflow.models.audit import TEAM_LEADER, Audit, AuditTeamMember
from auditflow.models.auth import User
from auditflow.models.meeting import (
    MEETING_ACTIVE,
    MEETING_CANCELLED,
    MEETING_COMPLETED,
    MEETING_KINDS,
    MEETING_UPCOMING,
    AgendaItem,
    Attendance,
    Meeting,
)
from auditflow.services import permission_service
from auditflow.services.agenda_templates import resolve_agenda
from auditflow.services.helpers.scoped_queries import get_scoped
from auditflow.services.helpers.unit_of_work import SideEffects, run_in_transaction
from auditflow.services.notification import dispatch_side_effects
from auditflow.utils.helpers import ensure_utc, local_to_utc, parse_datetime, utcnow

logger = logging.getLogger(__name__)


MEETING_TRANSITIONS = {
    "start": {"from": [MEETING_UPCOMING], "to": MEETING_ACTIVE},
    "complete": {"from": [MEETING_ACTIVE], "to": MEETING_COMPLETED},
    "cancel": {"from": [MEETING_UPCOMING, MEETING_ACTIVE], "to": MEETING_CANCELLED},
}

_SCALAR_FIELDS = ("venue", "notes", "start_time", "end_time")


# ── Invitee strategies ─────────────────────────────────────────────────────────


def _no_invitees(tenant_id: int, payload: dict, roster_ids: list[int]) -> list[int]:
    return []


def _explicit_or_roster(tenant_id: int, payload: dict, roster_ids: list[int]) -> list[int]:
    explicit = payload.get("invitee_ids")
    if explicit:
        return [int(uid) for uid in explicit]
    return list(roster_ids)


def _explicit_roster_or_management(tenant_id: int, payload: dict, roster_ids: list[int]) -> list[int]:
    ids = _explicit_or_roster(tenant_id, payload, roster_ids)
    if ids:
        return ids
    role_names = current_app.config["MANAGEMENT_ROLE_NAMES"]
    return [u.id for u in permission_service.users_with_roles(tenant_id, role_names)]


@dataclass(frozen=True)
class MeetingKindConfig:
    kind: str
    label: str
    initial_status: str
    resolve_invitees: Callable[[int, dict, list[int]], list[int]]

    @property
    def sends_invitations(self) -> bool:
        return self.resolve_invitees is not _no_invitees


MEETING_KIND_CONFIGS: dict[str, MeetingKindConfig] = {
    # Planning meetings are informal working sessions: live from creation
    "PLANNING": MeetingKindConfig("PLANNING", "Planning", MEETING_ACTIVE, _no_invitees),
    "OPENING": MeetingKindConfig("OPENING", "Opening", MEETING_UPCOMING, _explicit_roster_or_management),
    "CLOSING": MeetingKindConfig("CLOSING", "Closing", MEETING_UPCOMING, _explicit_roster_or_management),
    "MANAGEMENT_REVIEW": MeetingKindConfig(
        "MANAGEMENT_REVIEW", "Management Review", MEETING_UPCOMING, _explicit_roster_or_management,
    ),
}


def get_kind_config(kind: str) -> MeetingKindConfig:
    key = (kind or "").strip().upper().replace("-", "_")
    config = MEETING_KIND_CONFIGS.get(key)
    if config is None:
        raise ValidationError(
            f"Unknown meeting type {kind!r}",
            details={"type": f"expected one of {list(MEETING_KINDS)}"},
        )
    return config


# ── Private helpers ────────────────────────────────────────────────────────────


def _log_extra(tenant_id, meeting: Meeting | None = None, **kw) -> dict:
    extra = {"tenant_id": tenant_id, **kw}
    if meeting is not None:
        extra.update({"meeting_id": meeting.id, "audit_id": meeting.audit_id})
    return extra


def _leader_id(audit_id: int) -> int | None:
    return db.session.execute(
        select(AuditTeamMember.user_id).where(
            AuditTeamMember.audit_id == audit_id,
            AuditTeamMember.role == TEAM_LEADER,
        )
    ).scalar_one_or_none()


def _team_user_ids(audit_id: int) -> list[int]:
    return list(db.session.execute(
        select(AuditTeamMember.user_id)
        .where(AuditTeamMember.audit_id == audit_id)
        .order_by(AuditTeamMember.id)
    ).scalars().all())


def _require_leader(meeting: Meeting, actor_id: int, action: str) -> None:
    if actor_id is None or _leader_id(meeting.audit_id) != actor_id:
        raise ForbiddenError(f"Only the audit team leader can {action} this meeting", user_id=actor_id)


def _require_live(meeting: Meeting) -> None:
    if meeting.archived:
        raise ConflictError("Meeting is archived", resource="Meeting", current_state="ARCHIVED")


def _validate_transition(meeting: Meeting, action: str) -> str:
    rule = MEETING_TRANSITIONS[action]
    if meeting.status not in rule["from"]:
        raise ConflictError.transition("Meeting", action, meeting.status)
    return rule["to"]


def _resolve_scheduled_at(payload: dict):
    local_value = payload.get("scheduled_at_local")
    tz_name = payload.get("time_zone")
    try:
        if local_value and tz_name:
            return local_to_utc(local_value, tz_name)
        return parse_datetime(payload.get("scheduled_at"))
    except ValueError as exc:
        raise ValidationError(str(exc), details={"scheduled_at": "invalid"}) from exc


def _normalise_agenda(entries) -> list[dict]:
    """Accept plain strings or ``{agenda_text|text, order, discussed, notes}`` dicts."""
    rows = []
    for index, entry in enumerate(entries or [], start=1):
        if isinstance(entry, str):
            text, order, discussed, notes = entry, index, False, None
        elif isinstance(entry, dict):
            text = entry.get("agenda_text") or entry.get("text") or ""
            order = entry.get("order", index)
            discussed = bool(entry.get("discussed", False))
            notes = entry.get("notes")
        else:
            raise ValidationError("Agenda entries must be strings or objects", details={"agendas": index})
        text = str(text).strip()
        if not text:
            raise ValidationError("Agenda text is required", details={"agendas": index})
        try:
            order = int(order)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Agenda order must be an integer", details={"agendas": index}) from exc
        rows.append({"agenda_text": text, "order": order, "discussed": discussed, "notes": notes})
    return rows


def _normalise_attendance(tenant_id: int, entries) -> list[dict]:
    rows: dict[int, dict] = {}
    for index, entry in enumerate(entries or [], start=1):
        if not isinstance(entry, dict) or entry.get("user_id") is None:
            raise ValidationError("Each attendance entry needs a user_id", details={"attendances": index})
        try:
            user_id = int(entry["user_id"])
        except (TypeError, ValueError) as exc:
            raise ValidationError("user_id must be an integer", details={"attendances": index}) from exc
        # Natural key (meeting, user): a repeated user keeps the last entry
        rows[user_id] = {
            "user_id": user_id,
            "present": bool(entry.get("present", False)),
            "remarks": entry.get("remarks"),
        }
    if rows:
        known = set(db.session.execute(
            select(User.id).where(User.tenant_id == tenant_id, User.id.in_(list(rows)))
        ).scalars().all())
        unknown = sorted(set(rows) - known)
        if unknown:
            raise ValidationError("Attendance references users outside the tenant", details={"user_ids": unknown})
    return list(rows.values())


def _live_meeting(audit_id: int, kind: str) -> Meeting | None:
    return db.session.execute(
        select(Meeting)
        .where(Meeting.audit_id == audit_id, Meeting.type == kind, Meeting.archived.is_(False))
        .with_for_update()
    ).scalar_one_or_none()


def _invitation_message(config: MeetingKindConfig, audit: Audit, meeting: Meeting, agenda: list[str]):
    program_title = audit.program.title if audit.program else ""
    scheduled = ensure_utc(meeting.scheduled_at)
    date_str = scheduled.strftime("%d %b %Y") if scheduled else "TBA"
    venue = meeting.venue or "TBA"
    if config.kind == "MANAGEMENT_REVIEW":
        subject = f"Management Review Invitation - {program_title}"
        times = f"from {meeting.start_time or 'TBA'} to {meeting.end_time or 'TBA'}"
    else:
        subject = f"{config.label} Meeting Invitation - {program_title}"
        times = f"at {scheduled.strftime('%H:%M') if scheduled else 'TBA'} UTC"
    agenda_lines = "\n".join(f"{i}. {line}" for i, line in enumerate(agenda, start=1)) or "To be circulated"
    body = (
        f"{config.label} Meeting Invitation\n\n"
        f"Programme: {program_title}\n"
        f"Audit Number: {audit.audit_no}\n"
        f"Date: {date_str}\n\n"
        f"You are hereby invited to the {config.label.lower()} meeting to be held on {date_str} "
        f"{times} at {venue}.\n\n"
        f"The agenda of the meeting shall be:\n{agenda_lines}\n\n"
        "Kindly prepare accordingly."
    )
    metadata = {
        "type": f"{config.kind}_MEETING_INVITATION",
        "meetingId": meeting.id,
        "auditId": audit.id,
        "programTitle": program_title,
        "scheduledAt": scheduled.isoformat() if scheduled else None,
        "startTime": meeting.start_time,
        "endTime": meeting.end_time,
        "venue": meeting.venue,
        "agendas": agenda,
    }
    return subject, body, metadata


# ── Queries ────────────────────────────────────────────────────────────────────


def get_meeting(tenant_id: int, meeting_id: int) -> dict:
    return get_scoped(Meeting, meeting_id, tenant_id=tenant_id).to_dict()


def list_meetings(tenant_id: int, audit_id: int, kind: str | None = None) -> list[dict]:
    """Non-archived meetings for the audit, newest first."""
    audit = get_scoped(Audit, audit_id, tenant_id=tenant_id)
    stmt = select(Meeting).where(Meeting.audit_id == audit.id, Meeting.archived.is_(False))
    if kind:
        stmt = stmt.where(Meeting.type == get_kind_config(kind).kind)
    stmt = stmt.order_by(Meeting.created_at.desc(), Meeting.id.desc())
    return [m.to_dict() for m in db.session.execute(stmt).scalars().all()]


# ── Create / update ────────────────────────────────────────────────────────────


def create_or_update(tenant_id: int, audit_id: int, kind: str, payload: dict, *, actor_id: int | None = None) -> dict:
    """Upsert the live meeting of ``kind`` for the audit.

    Payload keys (all optional): scheduled_at | (scheduled_at_local + time_zone),
    venue, notes, start_time, end_time, agendas, attendances, invitee_ids.

    Raises:
        ValidationError: unknown kind, bad date/time, malformed agenda or attendance.
        NotFoundError: audit not in tenant.
        ConflictError: a concurrent request created the meeting first.
    """
    config = get_kind_config(kind)
    payload = payload or {}
    scheduled_at = _resolve_scheduled_at(payload)

    def _tx():
        audit = get_scoped(Audit, audit_id, tenant_id=tenant_id, for_update=True)
        attendance_rows = _normalise_attendance(tenant_id, payload.get("attendances"))
        agenda_lines = resolve_agenda(tenant_id, config.kind, payload.get("agendas"))
        agenda_rows = _normalise_agenda(agenda_lines)

        meeting = _live_meeting(audit.id, config.kind)
        is_update = meeting is not None
        if is_update:
            for field in _SCALAR_FIELDS:
                if field in payload:
                    setattr(meeting, field, payload.get(field))
            if scheduled_at is not None:
                meeting.scheduled_at = scheduled_at
            db.session.execute(delete(AgendaItem).where(AgendaItem.meeting_id == meeting.id))
            db.session.execute(delete(Attendance).where(Attendance.meeting_id == meeting.id))
            db.session.expire(meeting, ["agendas", "attendances"])
        else:
            meeting = Meeting(
                tenant_id=tenant_id,
                audit_id=audit.id,
                type=config.kind,
                scheduled_at=scheduled_at or utcnow(),
                status=config.initial_status,
                archived=False,
                created_by_id=actor_id,
                **{field: payload.get(field) for field in _SCALAR_FIELDS},
            )
            db.session.add(meeting)
        db.session.flush()

        for row in agenda_rows:
            db.session.add(AgendaItem(meeting_id=meeting.id, **row))
        for row in attendance_rows:
            db.session.add(Attendance(meeting_id=meeting.id, **row))
        db.session.flush()
        db.session.expire(meeting, ["agendas", "attendances"])

        action = f"{'UPDATE' if is_update else 'CREATE'}_{config.kind}_MEETING"
        write_activity(
            tenant_id=tenant_id,
            user_id=actor_id,
            action=action,
            entity_type="MEETING",
            entity_id=meeting.id,
            details=f"{'Updated' if is_update else 'Created'} {config.label.lower()} meeting "
                    f"for audit {audit.audit_no}",
            metadata={
                "auditId": audit.id,
                "agendaCount": len(agenda_rows),
                "attendanceCount": len(attendance_rows),
            },
        )

        effects = SideEffects()
        if config.sends_invitations:
            invitees = config.resolve_invitees(tenant_id, payload, [r["user_id"] for r in attendance_rows])
            if invitees:
                subject, body, metadata = _invitation_message(
                    config, audit, meeting, [r["agenda_text"] for r in agenda_rows],
                )
                effects.message(
                    recipient_ids=invitees,
                    sender_id=actor_id,
                    subject=subject,
                    body=body,
                    category="MEETING",
                    entity_type="meeting",
                    entity_id=meeting.id,
                    metadata=metadata,
                )
        effects.push(
            f"audit:{audit.id}", "meetingUpdated",
            {"meetingId": meeting.id, "type": config.kind, "status": meeting.status, "created": not is_update},
        )
        return meeting.to_dict(), effects

    result, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "audit_id": audit_id})
    logger.info(
        "%s meeting saved", config.label,
        extra={"tenant_id": tenant_id, "audit_id": audit_id, "meeting_id": result["id"]},
    )
    dispatch_side_effects(tenant_id, effects, actor_id=actor_id)
    return result


# ── Status transitions ─────────────────────────────────────────────────────────


def start(tenant_id: int, meeting_id: int, *, actor_id: int) -> dict:
    """UPCOMING → ACTIVE. Team leader only; not before the scheduled (UTC) date.

    Raises:
        ForbiddenError: actor is not the audit's team leader.
        ConflictError: wrong status, archived, or scheduled date still in the future.
    """

    def _tx():
        meeting = get_scoped(Meeting, meeting_id, tenant_id=tenant_id, for_update=True)
        _require_live(meeting)
        _require_leader(meeting, actor_id, "start")
        new_status = _validate_transition(meeting, "start")

        # Date-only comparison in UTC; time of day is ignored
        scheduled_date = ensure_utc(meeting.scheduled_at).date()
        if scheduled_date > utcnow().date():
            raise ConflictError(
                "Cannot start meeting before scheduled date",
                resource="Meeting",
                current_state=meeting.status,
            )

        meeting.status = new_status
        meeting.started_at = utcnow()
        db.session.flush()

        audit = meeting.audit
        kind = get_kind_config(meeting.type)
        write_activity(
            tenant_id=tenant_id,
            user_id=actor_id,
            action="START_MEETING",
            entity_type="MEETING",
            entity_id=meeting.id,
            details=f"Started {kind.label.lower()} meeting for audit {audit.audit_no}",
            metadata={"auditId": audit.id, "type": meeting.type},
        )

        effects = SideEffects()
        others = [uid for uid in _team_user_ids(audit.id) if uid != actor_id]
        if others:
            program_title = audit.program.title if audit.program else ""
            effects.message(
                recipient_ids=others,
                sender_id=actor_id,
                subject=f"Meeting Started: Audit #{audit.audit_no}",
                body=(
                    f"The {kind.label.lower()} meeting for audit #{audit.audit_no} ({program_title}) "
                    "has been started by the team leader.\n\n"
                    "You can now join the meeting."
                ),
                category="MEETING",
                entity_type="meeting",
                entity_id=meeting.id,
                metadata={
                    "type": "MEETING_STARTED_NOTIFICATION",
                    "meetingId": meeting.id,
                    "meetingType": meeting.type,
                    "auditId": audit.id,
                    "auditNo": audit.audit_no,
                    "programTitle": program_title,
                },
            )
        effects.push(f"meeting:{meeting.id}", "meetingStarted", {"meetingId": meeting.id, "status": new_status})
        return meeting.to_dict(), effects

    result, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "meeting_id": meeting_id})
    logger.info("Meeting started", extra={"tenant_id": tenant_id, "meeting_id": meeting_id, "actor_id": actor_id})
    dispatch_side_effects(tenant_id, effects, actor_id=actor_id)
    return result


def _leader_transition(tenant_id: int, meeting_id: int, actor_id: int, action: str, activity: str,
                       event_name: str, reason: str | None = None) -> dict:
    def _tx():
        meeting = get_scoped(Meeting, meeting_id, tenant_id=tenant_id, for_update=True)
        _require_live(meeting)
        _require_leader(meeting, actor_id, action)
        new_status = _validate_transition(meeting, action)

        meeting.status = new_status
        if new_status == MEETING_COMPLETED:
            meeting.completed_at = utcnow()
        elif new_status == MEETING_CANCELLED:
            meeting.cancelled_at = utcnow()
            meeting.cancel_reason = reason
        db.session.flush()

        write_activity(
            tenant_id=tenant_id,
            user_id=actor_id,
            action=activity,
            entity_type="MEETING",
            entity_id=meeting.id,
            details=f"Meeting {meeting.id} ({meeting.type}) → {new_status}",
            metadata={"auditId": meeting.audit_id, "reason": reason},
        )
        effects = SideEffects()
        effects.push(f"meeting:{meeting.id}", event_name, {"meetingId": meeting.id, "status": new_status})
        return meeting.to_dict(), effects

    result, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "meeting_id": meeting_id})
    logger.info("Meeting %s", action, extra={"tenant_id": tenant_id, "meeting_id": meeting_id, "actor_id": actor_id})
    dispatch_side_effects(tenant_id, effects, actor_id=actor_id)
    return result


def complete(tenant_id: int, meeting_id: int, *, actor_id: int) -> dict:
    """ACTIVE → COMPLETED. Team leader only."""
    return _leader_transition(tenant_id, meeting_id, actor_id, "complete", "COMPLETE_MEETING", "meetingCompleted")


def cancel(tenant_id: int, meeting_id: int, *, actor_id: int, reason: str | None = None) -> dict:
    """UPCOMING | ACTIVE → CANCELLED. Team leader only."""
    return _leader_transition(
        tenant_id, meeting_id, actor_id, "cancel", "CANCEL_MEETING", "meetingCancelled",
        reason=(reason or "").strip() or None,
    )


# ── Attendance & agenda ────────────────────────────────────────────────────────


def _upsert_attendance(meeting: Meeting, user_id: int, **fields) -> Attendance:
    row = db.session.execute(
        select(Attendance).where(Attendance.meeting_id == meeting.id, Attendance.user_id == user_id)
    ).scalar_one_or_none()
    if row is None:
        row = Attendance(meeting_id=meeting.id, user_id=user_id)
        db.session.add(row)
    for key, value in fields.items():
        setattr(row, key, value)
    db.session.flush()
    return row


def join(tenant_id: int, meeting_id: int, *, user_id: int) -> dict:
    """Mark a team member present with a join timestamp. Re-joining refreshes the timestamp.

    Raises:
        ConflictError: meeting is not ACTIVE (or archived).
        ForbiddenError: user is not on the audit team.
    """

    def _tx():
        # Row lock serialises concurrent first joins on the (meeting, user) attendance key
        meeting = get_scoped(Meeting, meeting_id, tenant_id=tenant_id, for_update=True)
        _require_live(meeting)
        if meeting.status != MEETING_ACTIVE:
            raise ConflictError(
                "Meeting is not active", resource="Meeting", current_state=meeting.status,
            )
        if user_id not in _team_user_ids(meeting.audit_id):
            raise ForbiddenError("Only audit team members can join this meeting", user_id=user_id)

        row = _upsert_attendance(meeting, user_id, present=True, joined_at=utcnow())
        effects = SideEffects()
        effects.push(
            f"meeting:{meeting.id}", "attendanceUpdated",
            {"meetingId": meeting.id, "userId": user_id, "present": True},
        )
        return row.to_dict(), effects

    result, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "meeting_id": meeting_id})
    dispatch_side_effects(tenant_id, effects, actor_id=user_id)
    return result


def record_attendance(tenant_id: int, meeting_id: int, user_id: int, *, present: bool,
                      remarks: str | None = None) -> dict:
    """Set presence/remarks for (meeting, user), creating the row if needed. Any status."""

    def _tx():
        meeting = get_scoped(Meeting, meeting_id, tenant_id=tenant_id)
        get_scoped(User, user_id, tenant_id=tenant_id)
        row = _upsert_attendance(meeting, user_id, present=bool(present), remarks=remarks)
        effects = SideEffects()
        effects.push(
            f"meeting:{meeting.id}", "attendanceUpdated",
            {"meetingId": meeting.id, "userId": user_id, "present": row.present},
        )
        return row.to_dict(), effects

    result, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "meeting_id": meeting_id})
    dispatch_side_effects(tenant_id, effects)
    return result


def upsert_agenda_item(
    tenant_id: int,
    meeting_id: int,
    *,
    agenda_text: str | None = None,
    order: int | None = None,
    item_id: int | None = None,
    discussed: bool | None = None,
    notes: str | None = None,
) -> dict:
    """Create an agenda item, or update ``item_id`` in place. Any status.

    A new item without ``order`` is appended after the current last one.
    Gaps in ``order`` are allowed.
    """

    def _tx():
        meeting = get_scoped(Meeting, meeting_id, tenant_id=tenant_id)
        if item_id is not None:
            item = get_scoped(AgendaItem, item_id, meeting_id=meeting.id)
        else:
            if not (agenda_text or "").strip():
                raise ValidationError("Agenda text is required", details={"agenda_text": "required"})
            item = AgendaItem(meeting_id=meeting.id)
            if order is None:
                last = db.session.execute(
                    select(func.max(AgendaItem.order)).where(AgendaItem.meeting_id == meeting.id)
                ).scalar()
                item.order = (last or 0) + 1
            db.session.add(item)

        if agenda_text is not None:
            if not agenda_text.strip():
                raise ValidationError("Agenda text cannot be blank", details={"agenda_text": "blank"})
            item.agenda_text = agenda_text.strip()
        if order is not None:
            item.order = int(order)
        if discussed is not None:
            item.discussed = bool(discussed)
        if notes is not None:
            item.notes = notes
        db.session.flush()
        return item.to_dict(), SideEffects()

    result, _ = run_in_transaction(_tx, context={"tenant_id": tenant_id, "meeting_id": meeting_id})
    return result


def delete_agenda_item(tenant_id: int, item_id: int) -> None:
    def _tx():
        item = db.session.execute(
            select(AgendaItem)
            .join(Meeting, Meeting.id == AgendaItem.meeting_id)
            .where(AgendaItem.id == item_id, Meeting.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if item is None:
            raise NotFoundError(resource="AgendaItem", resource_id=item_id, tenant_id=tenant_id)
        db.session.delete(item)
        return None, SideEffects()

    run_in_transaction(_tx, context={"tenant_id": tenant_id})


# ── Archive / delete ───────────────────────────────────────────────────────────


def archive(tenant_id: int, meeting_id: int, *, actor_id: int | None = None) -> dict:
    """Soft delete. Frees the (audit, kind) slot for a new meeting."""

    def _tx():
        meeting = get_scoped(Meeting, meeting_id, tenant_id=tenant_id, for_update=True)
        _require_live(meeting)
        meeting.archived = True
        db.session.flush()
        write_activity(
            tenant_id=tenant_id,
            user_id=actor_id,
            action="ARCHIVE_MEETING",
            entity_type="MEETING",
            entity_id=meeting.id,
            details=f"Archived {meeting.type} meeting {meeting.id}",
            metadata={"auditId": meeting.audit_id},
        )
        effects = SideEffects()
        effects.push(f"audit:{meeting.audit_id}", "meetingArchived", {"meetingId": meeting.id})
        return meeting.to_dict(include_children=False), effects

    result, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "meeting_id": meeting_id})
    logger.info("Meeting archived", extra={"tenant_id": tenant_id, "meeting_id": meeting_id})
    dispatch_side_effects(tenant_id, effects, actor_id=actor_id)
    return result


def hard_delete(tenant_id: int, meeting_id: int, *, actor_id: int) -> None:
    """Physically delete a meeting with its agenda and attendance.

    Privileged: the audit's team leader or a holder of the programme-creation
    capability.
    """

    def _tx():
        meeting = get_scoped(Meeting, meeting_id, tenant_id=tenant_id, for_update=True)
        capability = current_app.config["PROGRAM_CREATE_CAPABILITY"]
        if _leader_id(meeting.audit_id) != actor_id and not permission_service.has_permission(
            actor_id, tenant_id, capability,
        ):
            raise ForbiddenError("Not allowed to delete this meeting", user_id=actor_id)

        audit_id, meeting_type = meeting.audit_id, meeting.type
        db.session.delete(meeting)
        db.session.flush()
        write_activity(
            tenant_id=tenant_id,
            user_id=actor_id,
            action="DELETE_MEETING",
            entity_type="MEETING",
            entity_id=meeting_id,
            details=f"Deleted {meeting_type} meeting {meeting_id}",
            metadata={"auditId": audit_id},
        )
        effects = SideEffects()
        effects.push(f"audit:{audit_id}", "meetingDeleted", {"meetingId": meeting_id})
        return None, effects

    _, effects = run_in_transaction(_tx, context={"tenant_id": tenant_id, "meeting_id": meeting_id})
    logger.warning("Meeting hard-deleted", extra={"tenant_id": tenant_id, "meeting_id": meeting_id, "actor_id": actor_id})
    dispatch_side_effects(tenant_id, effects, actor_id=actor_id)
