"""
Audit Workflow Platform
Notification Service.

Central service for creating and querying in-app notifications, plus the
post-commit dispatcher that turns a ``SideEffects`` descriptor into
notifications, inbox messages and live events.

Dispatch is fire-and-forget from the workflow's point of view: each
recipient is handled in isolation and a failure is logged, never raised.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update

from auditflow.models import db
from auditflow.models.notification import Notification
from auditflow.services import live_events, message_service, permission_service
from auditflow.services.helpers.unit_of_work import MessageEvent, NotificationEvent, SideEffects

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, tenant_id, target_user_id, type, title, message="", link=None, metadata=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            tenant_id=tenant_id,
            target_user_id=target_user_id,
            type=type,
            title=title,
            message=message,
            link=link,
            meta=dict(metadata or {}),
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(tenant_id, user_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a user, newest first.
        """
        base = select(Notification).where(
            Notification.tenant_id == tenant_id,
            Notification.target_user_id == user_id,
        )
        if unread_only:
            base = base.where(Notification.is_read.is_(False))
        total = db.session.execute(select(func.count()).select_from(base.subquery())).scalar_one()
        items = db.session.execute(
            base.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit)
        ).scalars().all()
        return list(items), total

    @staticmethod
    def unread_count(tenant_id, user_id):
        """Return count of unread notifications."""
        return db.session.execute(
            select(func.count(Notification.id)).where(
                Notification.tenant_id == tenant_id,
                Notification.target_user_id == user_id,
                Notification.is_read.is_(False),
            )
        ).scalar_one()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(tenant_id, user_id, notification_id):
        """Mark a single notification as read."""
        notif = db.session.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.tenant_id == tenant_id,
                Notification.target_user_id == user_id,
            )
        ).scalar_one_or_none()
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(tenant_id, user_id):
        """Mark all notifications for a user as read."""
        result = db.session.execute(
            update(Notification)
            .where(
                Notification.tenant_id == tenant_id,
                Notification.target_user_id == user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=datetime.now(timezone.utc))
        )
        db.session.commit()
        return result.rowcount


# ═════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═════════════════════════════════════════════════════════════════════════


def push_live(channel: str, event_name: str, payload: dict | None = None) -> bool:
    """Best-effort live push. Returns False when the backend failed."""
    try:
        live_events.publish(channel, event_name, payload or {})
        return True
    except Exception:
        logger.warning("Live event %s on %s failed", event_name, channel, exc_info=True)
        return False


def notify_user(tenant_id: int, user_id: int, event: NotificationEvent) -> Notification | None:
    """Persist one notification for ``user_id`` and push it on ``user:<id>``."""
    try:
        notif = NotificationService.create(
            tenant_id=tenant_id,
            target_user_id=user_id,
            type=event.type,
            title=event.title,
            message=event.message,
            link=event.link,
            metadata=event.metadata,
        )
    except Exception:
        db.session.rollback()
        logger.warning(
            "Failed to create %s notification", event.type,
            extra={"tenant_id": tenant_id, "user_id": user_id}, exc_info=True,
        )
        return None
    push_live(f"user:{user_id}", "notification", notif.to_dict())
    return notif


def notify_users_with_capability(tenant_id: int, capability: str, event: NotificationEvent) -> list:
    users = permission_service.users_with_capability(tenant_id, capability)
    return _notify_many(tenant_id, [u.id for u in users], event)


def notify_by_default_role(tenant_id: int, role_name: str, event: NotificationEvent) -> list:
    users = permission_service.users_with_default_role(tenant_id, role_name)
    return _notify_many(tenant_id, [u.id for u in users], event)


def _notify_many(tenant_id: int, user_ids, event: NotificationEvent) -> list:
    created = []
    excluded = set(event.exclude_user_ids)
    for user_id in user_ids:
        if user_id in excluded:
            continue
        notif = notify_user(tenant_id, user_id, event)
        if notif is not None:
            created.append(notif)
    return created


def _resolve_audience(tenant_id: int, explicit_ids, capability, default_role, exclude) -> list[int]:
    """Union of explicit ids, capability holders and default-role users, deduplicated in order."""
    ids: list[int] = list(explicit_ids or [])
    if capability:
        ids.extend(u.id for u in permission_service.users_with_capability(tenant_id, capability))
    if default_role:
        ids.extend(u.id for u in permission_service.users_with_default_role(tenant_id, default_role))
    seen: set[int] = set(exclude or ())
    audience = []
    for user_id in ids:
        if user_id not in seen:
            seen.add(user_id)
            audience.append(user_id)
    return audience


def send_messages(tenant_id: int, event: MessageEvent, *, actor_id: int | None = None) -> list:
    """Create one inbox message per resolved recipient; failures are isolated."""
    recipients = _resolve_audience(
        tenant_id, event.recipient_ids, event.capability, event.default_role, exclude=(),
    )
    sent = []
    for recipient_id in recipients:
        try:
            msg = message_service.create_message(
                tenant_id=tenant_id,
                sender_id=event.sender_id if event.sender_id is not None else actor_id,
                recipient_id=recipient_id,
                subject=event.subject,
                body=event.body,
                category=event.category,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                metadata=event.metadata,
            )
        except Exception:
            db.session.rollback()
            logger.warning(
                "Failed to create message %r", event.subject,
                extra={"tenant_id": tenant_id, "user_id": recipient_id}, exc_info=True,
            )
            continue
        sent.append(msg)
        push_live(f"user:{recipient_id}", "messageCreated", {"messageId": msg.id, "subject": msg.subject})
    return sent


def dispatch_side_effects(tenant_id: int, effects: SideEffects, *, actor_id: int | None = None) -> dict:
    """Deliver everything a committed transaction produced.

    Never raises for delivery problems. Returns counts for logging/tests.
    """
    counts = {"notifications": 0, "messages": 0, "live_events": 0}
    if not effects:
        return counts

    for event in effects.notifications:
        try:
            audience = _resolve_audience(
                tenant_id, event.user_ids, event.capability, event.default_role, event.exclude_user_ids,
            )
        except Exception:
            db.session.rollback()
            logger.warning("Could not resolve audience for %s", event.type,
                           extra={"tenant_id": tenant_id}, exc_info=True)
            continue
        for user_id in audience:
            if notify_user(tenant_id, user_id, event) is not None:
                counts["notifications"] += 1

    for event in effects.messages:
        try:
            counts["messages"] += len(send_messages(tenant_id, event, actor_id=actor_id))
        except Exception:
            db.session.rollback()
            logger.warning("Could not deliver message %r", event.subject,
                           extra={"tenant_id": tenant_id}, exc_info=True)

    for event in effects.live_events:
        if push_live(event.channel, event.event_name, event.payload):
            counts["live_events"] += 1

    logger.info(
        "Dispatched side effects: %d notification(s), %d message(s), %d live event(s)",
        counts["notifications"], counts["messages"], counts["live_events"],
        extra={"tenant_id": tenant_id, "actor_id": actor_id},
    )
    return counts
