"""
Permission Service — capability and role lookups.

Two kinds of question are answered here:
  - "may this user do X?"      → has_permission(user_id, tenant_id, codename)
  - "who can do X / who is Y?" → users_with_capability / users_with_default_role /
                                 users_with_roles (audience resolution for fan-out)

Capabilities are ``module:action`` codenames attached to roles; a user holds
a capability when any of their roles grants it. Evaluation is deny-by-default.
"""

import logging
import threading
import time
from typing import Optional

from sqlalchemy import select

from auditflow.models import db
from auditflow.models.auth import Permission, Role, RolePermission, User, UserRole

logger = logging.getLogger(__name__)

CACHE_TTL = 300  # 5 minutes

# Cache key: (user_id, tenant_id)
_permission_cache: dict[tuple[int, int], tuple[float, set[str]]] = {}
_cache_lock = threading.Lock()


def _get_cached(key: tuple[int, int]) -> Optional[set[str]]:
    with _cache_lock:
        entry = _permission_cache.get(key)
        if entry is None:
            return None
        cached_at, perms = entry
        if time.time() - cached_at > CACHE_TTL:
            del _permission_cache[key]
            return None
        return perms


def _set_cached(key: tuple[int, int], perms: set[str]) -> None:
    with _cache_lock:
        _permission_cache[key] = (time.time(), perms)


def invalidate_cache(user_id: int) -> None:
    with _cache_lock:
        keys = [k for k in _permission_cache if k[0] == user_id]
        for k in keys:
            _permission_cache.pop(k, None)


def invalidate_all_cache() -> None:
    with _cache_lock:
        _permission_cache.clear()


# ── Per-user evaluation ──────────────────────────────────────────────────────


def get_user_permissions(user_id: int, tenant_id: int) -> set[str]:
    """Return every capability codename the user holds within the tenant."""
    key = (user_id, tenant_id)
    cached = _get_cached(key)
    if cached is not None:
        return cached

    stmt = (
        select(Permission.codename)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(Role, Role.id == RolePermission.role_id)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(
            UserRole.user_id == user_id,
            Role.tenant_id == tenant_id,
            RolePermission.allowed.is_(True),
        )
    )
    perms = set(db.session.execute(stmt).scalars().all())
    _set_cached(key, perms)
    return perms


def has_permission(user_id: int, tenant_id: int, codename: str) -> bool:
    return codename in get_user_permissions(user_id, tenant_id)


# ── Audience resolution ─────────────────────────────────────────────────────


def _active_users(stmt) -> list[User]:
    stmt = stmt.where(User.status == "active").distinct().order_by(User.id)
    return list(db.session.execute(stmt).scalars().all())


def users_with_capability(tenant_id: int, codename: str) -> list[User]:
    """All active tenant users holding ``codename`` through any of their roles."""
    stmt = (
        select(User)
        .join(UserRole, UserRole.user_id == User.id)
        .join(Role, Role.id == UserRole.role_id)
        .join(RolePermission, RolePermission.role_id == Role.id)
        .join(Permission, Permission.id == RolePermission.permission_id)
        .where(
            User.tenant_id == tenant_id,
            Role.tenant_id == tenant_id,
            Permission.codename == codename,
            RolePermission.allowed.is_(True),
        )
    )
    users = _active_users(stmt)
    logger.debug(
        "Resolved capability audience %s: %d user(s)", codename, len(users),
        extra={"tenant_id": tenant_id},
    )
    return users


def users_with_default_role(tenant_id: int, role_name: str) -> list[User]:
    """Active tenant users whose *default* (primary) role is ``role_name``."""
    stmt = (
        select(User)
        .join(UserRole, UserRole.user_id == User.id)
        .join(Role, Role.id == UserRole.role_id)
        .where(
            User.tenant_id == tenant_id,
            Role.tenant_id == tenant_id,
            Role.name == role_name,
            UserRole.is_default.is_(True),
        )
    )
    return _active_users(stmt)


def users_with_roles(tenant_id: int, role_names) -> list[User]:
    """Active tenant users holding any of ``role_names`` (default or not)."""
    names = list(role_names)
    if not names:
        return []
    stmt = (
        select(User)
        .join(UserRole, UserRole.user_id == User.id)
        .join(Role, Role.id == UserRole.role_id)
        .where(
            User.tenant_id == tenant_id,
            Role.tenant_id == tenant_id,
            Role.name.in_(names),
        )
    )
    return _active_users(stmt)


def user_role_names(user_id: int, tenant_id: int) -> set[str]:
    stmt = (
        select(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id, Role.tenant_id == tenant_id)
    )
    return set(db.session.execute(stmt).scalars().all())
