"""
Audit Plan Blueprint.

Routes:
  GET    /audits/<aid>/plans          – plans for an audit, newest first
  POST   /audits/<aid>/plans          – create DRAFT plan (team members only)
  GET    /plans/<pid>                 – single plan
  PUT    /plans/<pid>                 – edit (DRAFT / REJECTED only)
  POST   /plans/<pid>/submit          – → SUBMITTED
  POST   /plans/<pid>/approve         – → APPROVED
  POST   /plans/<pid>/reject          – → REJECTED (body: reason)
"""

from flask import Blueprint, jsonify

from auditflow.blueprints import json_body, missing_params, request_int
from auditflow.services import audit_plan_service

audit_plan_bp = Blueprint("audit_plan_bp", __name__, url_prefix="/api/v1")


@audit_plan_bp.route("/audits/<int:aid>/plans", methods=["GET"])
def list_plans(aid):
    tenant_id = request_int("tenant_id")
    if err := missing_params(tenant_id=tenant_id):
        return err
    items = audit_plan_service.list_plans(tenant_id, aid)
    return jsonify({"items": items, "total": len(items)})


@audit_plan_bp.route("/audits/<int:aid>/plans", methods=["POST"])
def create_plan(aid):
    """Body: { tenant_id, user_id, objectives, scope, criteria, methods, timetable,
    planned_start_date, planned_end_date, notes, requirements, description }
    """
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=actor_id):
        return err
    plan = audit_plan_service.create_plan(tenant_id, aid, json_body(), actor_id=actor_id)
    return jsonify(plan), 201


@audit_plan_bp.route("/plans/<int:pid>", methods=["GET"])
def get_plan(pid):
    tenant_id = request_int("tenant_id")
    if err := missing_params(tenant_id=tenant_id):
        return err
    return jsonify(audit_plan_service.get_plan(tenant_id, pid))


@audit_plan_bp.route("/plans/<int:pid>", methods=["PUT"])
def update_plan(pid):
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id):
        return err
    return jsonify(audit_plan_service.update(tenant_id, pid, json_body(), actor_id=actor_id))


@audit_plan_bp.route("/plans/<int:pid>/submit", methods=["POST"])
def submit_plan(pid):
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=actor_id):
        return err
    return jsonify(audit_plan_service.submit(tenant_id, pid, actor_id=actor_id))


@audit_plan_bp.route("/plans/<int:pid>/approve", methods=["POST"])
def approve_plan(pid):
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=actor_id):
        return err
    return jsonify(audit_plan_service.approve(tenant_id, pid, actor_id=actor_id))


@audit_plan_bp.route("/plans/<int:pid>/reject", methods=["POST"])
def reject_plan(pid):
    tenant_id, actor_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=actor_id):
        return err
    reason = json_body().get("reason")
    return jsonify(audit_plan_service.reject(tenant_id, pid, actor_id=actor_id, reason=reason))
