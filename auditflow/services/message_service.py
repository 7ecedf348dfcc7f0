"""
Message Service — inbox entries for invitations and announcements.

Messages are lighter than notifications: a subject, a human-readable body and
a metadata blob the UI renders (meeting date, venue, agenda …). Invitation
messages are tied to the entity they are about (``entity_type``/``entity_id``)
so the invited user's later response can be recorded on the original message.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select

from auditflow.models import db
from auditflow.models.notification import Message

logger = logging.getLogger(__name__)


def create_message(
    *,
    tenant_id: int,
    recipient_id: int,
    subject: str,
    body: str = "",
    sender_id: int | None = None,
    category: str = "SYSTEM",
    entity_type: str | None = None,
    entity_id: int | None = None,
    metadata: dict | None = None,
) -> Message:
    """Create and commit a single inbox message."""
    msg = Message(
        tenant_id=tenant_id,
        sender_id=sender_id,
        recipient_id=recipient_id,
        subject=subject,
        body=body,
        category=category,
        entity_type=entity_type,
        entity_id=entity_id,
        meta=dict(metadata or {}),
    )
    db.session.add(msg)
    db.session.commit()
    return msg


def find_latest_invitation(
    tenant_id: int, recipient_id: int, *, entity_type: str, entity_id: int, category: str,
) -> Message | None:
    """Newest message of ``category`` about the entity sent to the recipient."""
    stmt = (
        select(Message)
        .where(
            Message.tenant_id == tenant_id,
            Message.recipient_id == recipient_id,
            Message.entity_type == entity_type,
            Message.entity_id == entity_id,
            Message.category == category,
        )
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(1)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def record_response(message: Message, response: str, comment: str | None = None) -> bool:
    """Stamp the one-shot response on an invitation message.

    Returns False (and leaves the message untouched) when a response is
    already recorded. Flushes only; the caller owns the transaction.
    """
    meta = dict(message.meta or {})
    if meta.get("response"):
        return False
    meta.update({
        "response": response,
        "responseComment": comment,
        "respondedAt": datetime.now(timezone.utc).isoformat(),
    })
    # Reassign so the JSON column is flagged dirty
    message.meta = meta
    db.session.flush()
    return True


# ── Inbox queries ────────────────────────────────────────────────────────────


def list_for_recipient(tenant_id: int, recipient_id: int, *, unread_only=False, limit=50, offset=0):
    """Messages for a user, newest first. Returns (items, total)."""
    base = select(Message).where(Message.tenant_id == tenant_id, Message.recipient_id == recipient_id)
    if unread_only:
        base = base.where(Message.is_read.is_(False))
    total = db.session.execute(select(func.count()).select_from(base.subquery())).scalar_one()
    items = db.session.execute(
        base.order_by(Message.created_at.desc(), Message.id.desc()).offset(offset).limit(limit)
    ).scalars().all()
    return list(items), total


def mark_read(tenant_id: int, recipient_id: int, message_id: int) -> Message | None:
    msg = db.session.execute(
        select(Message).where(
            Message.id == message_id,
            Message.tenant_id == tenant_id,
            Message.recipient_id == recipient_id,
        )
    ).scalar_one_or_none()
    if msg:
        msg.mark_read()
        db.session.commit()
    return msg
