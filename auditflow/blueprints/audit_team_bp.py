"""
Audit Team Blueprint.

Routes:
  GET    /audits/<aid>/team                              – leader + members
  GET    /audits/<aid>/team/candidates                   – appointable auditors (?for_leader=true)
  PUT    /audits/<aid>/team/leader                       – assign / replace team leader
  POST   /audits/<aid>/team/members                      – add members (partial success)
  DELETE /audits/<aid>/team/members/<uid>                – remove leader or member
  POST   /audits/<aid>/team/members/<uid>/respond        – accept / decline appointment
  GET    /audits/<aid>/general-notification              – eligibility + team status
  POST   /audits/<aid>/general-notification              – broadcast (5-min dedup)
  POST   /audits/<aid>/management-review-invitation      – one-shot MR invitation
"""

import logging

from flask import Blueprint, jsonify

from auditflow.blueprints import json_body, missing_params, request_bool, request_int
from auditflow.services import general_notification_service, team_service
from auditflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

audit_team_bp = Blueprint("audit_team_bp", __name__, url_prefix="/api/v1")


# ═════════════════════════════════════════════════════════════════════════════
# TEAM COMPOSITION
# ═════════════════════════════════════════════════════════════════════════════

@audit_team_bp.route("/audits/<int:aid>/team", methods=["GET"])
def get_team(aid):
    tenant_id = request_int("tenant_id")
    if err := missing_params(tenant_id=tenant_id):
        return err
    return jsonify(team_service.list_team(tenant_id, aid))


@audit_team_bp.route("/audits/<int:aid>/team/candidates", methods=["GET"])
def list_candidates(aid):
    tenant_id = request_int("tenant_id")
    if err := missing_params(tenant_id=tenant_id):
        return err
    items = team_service.list_eligible_candidates(tenant_id, aid, for_leader=request_bool("for_leader"))
    return jsonify({"items": items, "total": len(items)})


@audit_team_bp.route("/audits/<int:aid>/team/leader", methods=["PUT"])
def assign_leader(aid):
    """Body: { tenant_id, user_id (actor), candidate_id }"""
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    candidate_id = request_int("candidate_id")
    if err := missing_params(tenant_id=tenant_id, user_id=actor_id, candidate_id=candidate_id):
        return err
    member = team_service.assign_team_leader(tenant_id, aid, candidate_id, actor_id=actor_id)
    return jsonify(member)


@audit_team_bp.route("/audits/<int:aid>/team/members", methods=["POST"])
def add_members(aid):
    """Body: { tenant_id, user_id (actor), candidate_ids: [int] }

    201 when at least one user was added, 200 when every candidate was rejected.
    """
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=actor_id):
        return err
    candidate_ids = json_body().get("candidate_ids")
    if not isinstance(candidate_ids, list):
        return api_error(E.VALIDATION_INVALID, "candidate_ids must be an array of user ids")
    result = team_service.add_team_members(tenant_id, aid, candidate_ids, actor_id=actor_id)
    return jsonify(result), 201 if result["added"] else 200


@audit_team_bp.route("/audits/<int:aid>/team/members/<int:uid>", methods=["DELETE"])
def remove_member(aid, uid):
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=actor_id):
        return err
    removed = team_service.remove_team_member(tenant_id, aid, uid, actor_id=actor_id)
    return jsonify({"removed": removed})


@audit_team_bp.route("/audits/<int:aid>/team/members/<int:uid>/respond", methods=["POST"])
def respond(aid, uid):
    """Body: { tenant_id, user_id (responder), decision: ACCEPTED|DECLINED, decline_reason? }"""
    tenant_id, responder_id = request_int("tenant_id"), request_int("user_id")
    data = json_body()
    decision = data.get("decision")
    if err := missing_params(tenant_id=tenant_id, user_id=responder_id, decision=decision):
        return err
    member = team_service.respond_to_appointment(
        tenant_id, aid, uid,
        responder_id=responder_id,
        decision=decision,
        decline_reason=data.get("decline_reason"),
    )
    return jsonify(member)


# ═════════════════════════════════════════════════════════════════════════════
# BROADCASTS
# ═════════════════════════════════════════════════════════════════════════════

@audit_team_bp.route("/audits/<int:aid>/general-notification", methods=["GET"])
def general_notification_status(aid):
    tenant_id = request_int("tenant_id")
    if err := missing_params(tenant_id=tenant_id):
        return err
    return jsonify(general_notification_service.get_status(tenant_id, aid))


@audit_team_bp.route("/audits/<int:aid>/general-notification", methods=["POST"])
def send_general_notification(aid):
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=actor_id):
        return err
    result = general_notification_service.send(tenant_id, aid, actor_id=actor_id)
    return jsonify(result)


@audit_team_bp.route("/audits/<int:aid>/management-review-invitation", methods=["POST"])
def send_management_review_invitation(aid):
    """Body: { tenant_id, user_id, meeting_date, start_time, end_time, venue }"""
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    data = json_body()
    if err := missing_params(
        tenant_id=tenant_id,
        user_id=actor_id,
        meeting_date=data.get("meeting_date"),
        start_time=data.get("start_time"),
        end_time=data.get("end_time"),
        venue=data.get("venue"),
    ):
        return err
    result = general_notification_service.send_management_review_invitation(
        tenant_id, aid,
        actor_id=actor_id,
        meeting_date=data["meeting_date"],
        start_time=data["start_time"],
        end_time=data["end_time"],
        venue=data["venue"],
    )
    return jsonify(result), 201
