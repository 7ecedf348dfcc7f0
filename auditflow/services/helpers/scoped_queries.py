"""
Tenant-scoped query helpers.

Every get-by-id in the workflow services goes through these helpers instead
of ``db.session.get(Model, pk)``. A bare ``.get()`` bypasses tenant
isolation; here a scope filter is mandatory.

Usage:
    audit = get_scoped(Audit, audit_id, tenant_id=tenant_id)
    audit = get_scoped(Audit, audit_id, tenant_id=tenant_id, for_update=True)
    item = get_scoped(AgendaItem, item_id, meeting_id=meeting.id)
    plan = get_scoped_or_none(AuditPlan, plan_id, tenant_id=tenant_id)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model.
    If the model does not have that column, a ValueError is raised at
    call time so the bug surfaces immediately during development/testing.
"""

import logging

from sqlalchemy import select

from auditflow.core.exceptions import NotFoundError
from auditflow.models import db

logger = logging.getLogger(__name__)


def get_scoped(
    model,
    pk: int,
    *,
    tenant_id: int | None = None,
    audit_id: int | None = None,
    meeting_id: int | None = None,
    for_update: bool = False,
):
    """Fetch a single entity by PK with mandatory scope filter.

    Cross-tenant access is indistinguishable from a missing record: both
    raise NotFoundError → HTTP 404.

    Args:
        model: SQLAlchemy model class with an ``id`` PK column.
        pk: Primary key value to look up.
        tenant_id / audit_id / meeting_id: Scope filters; at least one.
        for_update: Lock the row (``SELECT … FOR UPDATE``) until the
            surrounding transaction ends. Ignored by SQLite.

    Raises:
        ValueError: If no scope is given, or a scope column is missing on the model.
        NotFoundError: If the entity does not exist OR belongs to a different scope.
    """
    provided_scopes = {
        "tenant_id": tenant_id,
        "audit_id": audit_id,
        "meeting_id": meeting_id,
    }
    provided_scopes = {k: v for k, v in provided_scopes.items() if v is not None}

    if not provided_scopes:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter "
            "(tenant_id, audit_id or meeting_id)."
        )

    missing_fields = [field for field in provided_scopes if not hasattr(model, field)]
    if missing_fields:
        raise ValueError(
            f"{model.__name__} has no scope column(s) {sorted(missing_fields)}; "
            "refusing to perform a partially scoped lookup."
        )

    stmt = select(model).where(model.id == pk)
    for field, value in provided_scopes.items():
        stmt = stmt.where(getattr(model, field) == value)
    if for_update:
        stmt = stmt.with_for_update()

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in scope %s",
            model.__name__,
            pk,
            provided_scopes,
        )
        raise NotFoundError(resource=model.__name__, resource_id=pk, tenant_id=tenant_id)

    return result


def get_scoped_or_none(model, pk: int, **scope):
    """Same as get_scoped but returns None instead of raising NotFoundError."""
    try:
        return get_scoped(model, pk, **scope)
    except NotFoundError:
        return None
