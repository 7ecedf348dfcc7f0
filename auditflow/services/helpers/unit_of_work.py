"""
Transaction boundary and post-commit side effects.

Every state-changing workflow operation is split in two phases:

1. ``run_in_transaction(fn)`` runs ``fn`` against the session and commits.
   Any exception rolls the whole mutation back. Storage-level uniqueness
   violations (IntegrityError) surface as ConflictError so racing requests
   fail cleanly instead of with a 500.
2. ``fn`` returns ``(result, SideEffects)``. The caller hands the
   descriptor to ``dispatch_side_effects`` *after* the commit; dispatch
   failures are logged per recipient and never roll anything back.

Usage:
    def _tx():
        ...
        effects = SideEffects()
        effects.notify(user_ids=[u.id], type="…", title="…")
        return member.to_dict(), effects

    result, effects = run_in_transaction(_tx, context={"audit_id": audit_id})
    dispatch_side_effects(tenant_id, effects, actor_id=actor_id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError

from auditflow.core.exceptions import ConflictError
from auditflow.models import db

logger = logging.getLogger(__name__)


# ── Side-effect descriptors ──────────────────────────────────────────────────


@dataclass
class NotificationEvent:
    """One structured notification, addressed by explicit ids or by audience predicate."""
    type: str
    title: str
    message: str = ""
    link: str | None = None
    metadata: dict = field(default_factory=dict)
    user_ids: list[int] = field(default_factory=list)
    capability: str | None = None
    default_role: str | None = None
    exclude_user_ids: list[int] = field(default_factory=list)


@dataclass
class MessageEvent:
    """One inbox message per recipient."""
    subject: str
    body: str = ""
    recipient_ids: list[int] = field(default_factory=list)
    capability: str | None = None
    default_role: str | None = None
    category: str = "SYSTEM"
    entity_type: str | None = None
    entity_id: int | None = None
    metadata: dict = field(default_factory=dict)
    sender_id: int | None = None


@dataclass
class LiveEvent:
    """Best-effort push on a ``user:<id>`` / ``tenant:<id>`` / ``audit:<id>`` / ``meeting:<id>`` channel."""
    channel: str
    event_name: str
    payload: dict = field(default_factory=dict)


@dataclass
class SideEffects:
    """Everything a committed transaction wants the outside world to hear about."""
    notifications: list[NotificationEvent] = field(default_factory=list)
    messages: list[MessageEvent] = field(default_factory=list)
    live_events: list[LiveEvent] = field(default_factory=list)

    def notify(self, **kwargs) -> NotificationEvent:
        event = NotificationEvent(**kwargs)
        self.notifications.append(event)
        return event

    def message(self, **kwargs) -> MessageEvent:
        event = MessageEvent(**kwargs)
        self.messages.append(event)
        return event

    def push(self, channel: str, event_name: str, payload: dict | None = None) -> LiveEvent:
        event = LiveEvent(channel=channel, event_name=event_name, payload=payload or {})
        self.live_events.append(event)
        return event

    def __bool__(self) -> bool:
        return bool(self.notifications or self.messages or self.live_events)


# ── Transaction runner ───────────────────────────────────────────────────────


def run_in_transaction(
    fn: Callable[[], tuple[Any, SideEffects]],
    *,
    context: dict | None = None,
) -> tuple[Any, SideEffects]:
    """Run ``fn`` as one atomic unit of work and commit.

    Args:
        fn: Zero-arg callable doing the reads/writes. Returns ``(result, effects)``.
        context: Structured logging fields (tenant_id, audit_id, …).

    Raises:
        ConflictError: A unique / partial-unique index rejected the write.
        Whatever ``fn`` raised, after rollback.
    """
    try:
        result, effects = fn()
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error in workflow transaction: %s", exc.orig, extra=context or {})
        raise ConflictError(
            "The change conflicts with a concurrent update; reload and try again",
        ) from exc
    except Exception:
        db.session.rollback()
        raise
    return result, effects
