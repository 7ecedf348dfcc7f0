"""
Inbox Blueprint.

Notifications (structured, typed) and messages (human-readable invitations)
for one user.

Routes:
  GET    /notifications                 – list (?unread_only=true&limit&offset)
  GET    /notifications/unread-count    – badge count
  POST   /notifications/<nid>/read      – mark one read
  POST   /notifications/read-all        – mark all read
  GET    /messages                      – list (?unread_only=true&limit&offset)
  POST   /messages/<mid>/read           – mark one read
"""

import logging

from flask import Blueprint, jsonify

from auditflow.blueprints import missing_params, request_bool, request_int
from auditflow.services import message_service
from auditflow.services.notification import NotificationService
from auditflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")


def _page():
    limit = min(max(request_int("limit", 50), 1), 200)
    offset = max(request_int("offset", 0), 0)
    return limit, offset


# ═══════════════════════════════════════════════════════════════════════════
#  NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    tenant_id, user_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=user_id):
        return err
    limit, offset = _page()
    items, total = NotificationService.list_for_user(
        tenant_id, user_id, unread_only=request_bool("unread_only"), limit=limit, offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total})


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    tenant_id, user_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=user_id):
        return err
    return jsonify({"unread_count": NotificationService.unread_count(tenant_id, user_id)})


@notification_bp.route("/notifications/<int:nid>/read", methods=["POST"])
def mark_notification_read(nid):
    tenant_id, user_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=user_id):
        return err
    notif = NotificationService.mark_read(tenant_id, user_id, nid)
    if not notif:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    tenant_id, user_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=user_id):
        return err
    count = NotificationService.mark_all_read(tenant_id, user_id)
    return jsonify({"marked_read": count})


# ═══════════════════════════════════════════════════════════════════════════
#  MESSAGES
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/messages", methods=["GET"])
def list_messages():
    tenant_id, user_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=user_id):
        return err
    limit, offset = _page()
    items, total = message_service.list_for_recipient(
        tenant_id, user_id, unread_only=request_bool("unread_only"), limit=limit, offset=offset,
    )
    return jsonify({"items": [m.to_dict() for m in items], "total": total})


@notification_bp.route("/messages/<int:mid>/read", methods=["POST"])
def mark_message_read(mid):
    tenant_id, user_id = request_int("tenant_id"), request_int("user_id")
    if err := missing_params(tenant_id=tenant_id, user_id=user_id):
        return err
    msg = message_service.mark_read(tenant_id, user_id, mid)
    if not msg:
        return api_error(E.NOT_FOUND, "Message not found")
    return jsonify(msg.to_dict())
