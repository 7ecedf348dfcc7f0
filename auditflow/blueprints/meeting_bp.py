"""
Meeting Blueprint.

Routes:
  GET    /audits/<aid>/meetings                     – live meetings (?type=OPENING)
  PUT    /audits/<aid>/meetings/<kind>              – create or update the (audit, kind) meeting
  GET    /meetings/<mid>                            – meeting with agenda + attendance
  POST   /meetings/<mid>/start                      – UPCOMING → ACTIVE (team leader)
  POST   /meetings/<mid>/complete                   – ACTIVE → COMPLETED (team leader)
  POST   /meetings/<mid>/cancel                     – → CANCELLED (team leader)
  POST   /meetings/<mid>/join                       – team member joins an ACTIVE meeting
  PUT    /meetings/<mid>/attendance/<uid>           – record presence / remarks
  POST   /meetings/<mid>/agenda                     – add agenda item
  PUT    /meetings/<mid>/agenda/<item_id>           – edit agenda item
  DELETE /agenda-items/<item_id>                    – delete agenda item
  POST   /meetings/<mid>/archive                    – soft delete
  DELETE /meetings/<mid>                            – hard delete (privileged)
"""

from flask import Blueprint, jsonify, request

from auditflow.blueprints import json_body, missing_params, request_int
from auditflow.services import meeting_service
from auditflow.utils.errors import E, api_error

meeting_bp = Blueprint("meeting_bp", __name__, url_prefix="/api/v1")


# ── Create / read ─────────────────────────────────────────────────────────────

@meeting_bp.route("/audits/<int:aid>/meetings", methods=["GET"])
def list_meetings(aid):
    tenant_id = request_int("tenant_id")
    if err := missing_params(tenant_id=tenant_id):
        return err
    items = meeting_service.list_meetings(tenant_id, aid, request.args.get("type"))
    return jsonify({"items": items, "total": len(items)})


@meeting_bp.route("/audits/<int:aid>/meetings/<kind>", methods=["PUT"])
def save_meeting(aid, kind):
    """Body: { tenant_id, user_id, scheduled_at | scheduled_at_local + time_zone,
    venue, notes, start_time, end_time, agendas, attendances, invitee_ids }
    """
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=actor_id):
        return err
    meeting = meeting_service.create_or_update(tenant_id, aid, kind, json_body(), actor_id=actor_id)
    return jsonify(meeting)


@meeting_bp.route("/meetings/<int:mid>", methods=["GET"])
def get_meeting(mid):
    tenant_id = request_int("tenant_id")
    if err := missing_params(tenant_id=tenant_id):
        return err
    return jsonify(meeting_service.get_meeting(tenant_id, mid))


# ── Status transitions ────────────────────────────────────────────────────────

@meeting_bp.route("/meetings/<int:mid>/start", methods=["POST"])
def start_meeting(mid):
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=actor_id):
        return err
    return jsonify(meeting_service.start(tenant_id, mid, actor_id=actor_id))


@meeting_bp.route("/meetings/<int:mid>/complete", methods=["POST"])
def complete_meeting(mid):
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=actor_id):
        return err
    return jsonify(meeting_service.complete(tenant_id, mid, actor_id=actor_id))


@meeting_bp.route("/meetings/<int:mid>/cancel", methods=["POST"])
def cancel_meeting(mid):
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=actor_id):
        return err
    reason = json_body().get("reason")
    return jsonify(meeting_service.cancel(tenant_id, mid, actor_id=actor_id, reason=reason))


@meeting_bp.route("/meetings/<int:mid>/join", methods=["POST"])
def join_meeting(mid):
    tenant_id, user_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=user_id):
        return err
    return jsonify(meeting_service.join(tenant_id, mid, user_id=user_id))


# ── Child collections ─────────────────────────────────────────────────────────

@meeting_bp.route("/meetings/<int:mid>/attendance/<int:uid>", methods=["PUT"])
def record_attendance(mid, uid):
    """Body: { tenant_id, present: bool, remarks? }"""
    tenant_id = request_int("tenant_id")
    data = json_body()
    if err := missing_params(tenant_id=tenant_id, present=data.get("present")):
        return err
    row = meeting_service.record_attendance(
        tenant_id, mid, uid, present=bool(data["present"]), remarks=data.get("remarks"),
    )
    return jsonify(row)


def _agenda_order(data):
    order = data.get("order")
    if order is None:
        return None, None
    try:
        return int(order), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, "order must be an integer")


@meeting_bp.route("/meetings/<int:mid>/agenda", methods=["POST"])
def add_agenda_item(mid):
    """Body: { tenant_id, agenda_text, order?, notes? }"""
    tenant_id = request_int("tenant_id")
    data = json_body()
    if err := missing_params(tenant_id=tenant_id, agenda_text=data.get("agenda_text")):
        return err
    order, err = _agenda_order(data)
    if err:
        return err
    item = meeting_service.upsert_agenda_item(
        tenant_id, mid,
        agenda_text=data["agenda_text"],
        order=order,
        discussed=data.get("discussed"),
        notes=data.get("notes"),
    )
    return jsonify(item), 201


@meeting_bp.route("/meetings/<int:mid>/agenda/<int:item_id>", methods=["PUT"])
def update_agenda_item(mid, item_id):
    tenant_id = request_int("tenant_id")
    if err := missing_params(tenant_id=tenant_id):
        return err
    data = json_body()
    order, err = _agenda_order(data)
    if err:
        return err
    item = meeting_service.upsert_agenda_item(
        tenant_id, mid,
        item_id=item_id,
        agenda_text=data.get("agenda_text"),
        order=order,
        discussed=data.get("discussed"),
        notes=data.get("notes"),
    )
    return jsonify(item)


@meeting_bp.route("/agenda-items/<int:item_id>", methods=["DELETE"])
def delete_agenda_item(item_id):
    tenant_id = request_int("tenant_id")
    if err := missing_params(tenant_id=tenant_id):
        return err
    meeting_service.delete_agenda_item(tenant_id, item_id)
    return jsonify({"deleted": True})


# ── Archive / delete ──────────────────────────────────────────────────────────

@meeting_bp.route("/meetings/<int:mid>/archive", methods=["POST"])
def archive_meeting(mid):
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id):
        return err
    return jsonify(meeting_service.archive(tenant_id, mid, actor_id=actor_id))


@meeting_bp.route("/meetings/<int:mid>", methods=["DELETE"])
def delete_meeting(mid):
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=actor_id):
        return err
    meeting_service.hard_delete(tenant_id, mid, actor_id=actor_id)
    return jsonify({"deleted": True})
