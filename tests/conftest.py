"""
Shared pytest fixtures for the audit workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - live: the in-memory live-event backend
    - tenant / other_tenant: Pre-created Tenant entities
    - make_user: factory for users with roles and capabilities
    - people: the standard cast (programme manager, MR, auditors, …)
    - program / audit: an APPROVED programme with one audit
    - staffed_audit: the audit with a leader and two members appointed
"""

from datetime import datetime, timedelta, timezone

import pytest

from auditflow import create_app
from auditflow.models import db as _db
from auditflow.services.permission_service import invalidate_all_cache

PROGRAM_CREATE = "auditProgram:create"
MANAGEMENT_REVIEW_READ = "managementReview:read"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # Ids are reused after every recreate; stale permission sets would leak
        invalidate_all_cache()
        app.extensions["live_events"].clear()
        yield
        invalidate_all_cache()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def live(app):
    """In-memory live-event backend (history of published envelopes)."""
    return app.extensions["live_events"]


# ── Identity builders ────────────────────────────────────────────────────


def _make_tenant(name, slug):
    from auditflow.models.auth import Tenant
    t = Tenant(name=name, slug=slug)
    _db.session.add(t)
    _db.session.commit()
    return t


@pytest.fixture()
def tenant():
    return _make_tenant("Acme Quality", "acme")


@pytest.fixture()
def other_tenant():
    return _make_tenant("Other Org", "other")


def _get_or_create_role(tenant_id, name, capabilities):
    from auditflow.models.auth import Permission, Role, RolePermission
    role = Role.query.filter_by(tenant_id=tenant_id, name=name).first()
    if role is None:
        role = Role(tenant_id=tenant_id, name=name)
        _db.session.add(role)
        _db.session.flush()
    for codename in capabilities:
        perm = Permission.query.filter_by(codename=codename).first()
        if perm is None:
            category, _ = Permission.split_codename(codename)
            perm = Permission(codename=codename, category=category)
            _db.session.add(perm)
            _db.session.flush()
        if not RolePermission.query.filter_by(role_id=role.id, permission_id=perm.id).first():
            _db.session.add(RolePermission(role_id=role.id, permission_id=perm.id, allowed=True))
    _db.session.flush()
    return role


@pytest.fixture()
def make_user(tenant):
    """Factory: make_user("Grace", roles={"MR": [MANAGEMENT_REVIEW_READ]}, default_role="MR")."""
    from auditflow.models.auth import User, UserRole

    counter = {"n": 0}

    def _make(first_name, *, last_name="Tester", roles=None, default_role=None,
              status="active", tenant_obj=None):
        counter["n"] += 1
        t = tenant_obj or tenant
        user = User(
            tenant_id=t.id,
            email=f"{first_name.lower()}.{counter['n']}@{t.slug}.example",
            first_name=first_name,
            last_name=last_name,
            status=status,
        )
        _db.session.add(user)
        _db.session.flush()
        for role_name, capabilities in (roles or {}).items():
            role = _get_or_create_role(t.id, role_name, capabilities)
            _db.session.add(UserRole(user_id=user.id, role_id=role.id, is_default=role_name == default_role))
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def people(make_user, other_tenant):
    """The standard cast for one tenant plus an outsider from another tenant."""
    return {
        "manager": make_user("Paula", roles={"HOD": [PROGRAM_CREATE]}, default_role="HOD"),
        "mr": make_user(
            "Marcus", roles={"MR": [PROGRAM_CREATE, MANAGEMENT_REVIEW_READ]}, default_role="MR",
        ),
        "leader": make_user("Lena", roles={"HOD AUDITOR": []}, default_role="HOD AUDITOR"),
        "auditor1": make_user("Aaron", roles={"AUDITOR": []}, default_role="AUDITOR"),
        "auditor2": make_user("Bianca", roles={"AUDITOR": []}, default_role="AUDITOR"),
        "auditor3": make_user("Chidi", roles={"AUDITOR": []}, default_role="AUDITOR"),
        "outsider": make_user("Olga", tenant_obj=other_tenant),
    }


# ── Audit builders ───────────────────────────────────────────────────────


@pytest.fixture()
def program(tenant):
    from auditflow.models.audit import AuditProgram
    p = AuditProgram(tenant_id=tenant.id, title="ISO 9001 Programme 2025", status="APPROVED")
    _db.session.add(p)
    _db.session.commit()
    return p


@pytest.fixture()
def audit(tenant, program):
    from auditflow.models.audit import Audit
    start = datetime.now(timezone.utc) + timedelta(days=14)
    a = Audit(
        tenant_id=tenant.id,
        program_id=program.id,
        audit_no="AUD-001",
        type="FIRST_INTERNAL",
        audit_date_from=start,
        audit_date_to=start + timedelta(days=2),
    )
    _db.session.add(a)
    _db.session.commit()
    return a


@pytest.fixture()
def staffed_audit(tenant, audit, people):
    """Audit with Lena as leader and Aaron + Bianca as members (all PENDING)."""
    from auditflow.services import team_service
    team_service.assign_team_leader(tenant.id, audit.id, people["leader"].id, actor_id=people["manager"].id)
    team_service.add_team_members(
        tenant.id, audit.id, [people["auditor1"].id, people["auditor2"].id], actor_id=people["manager"].id,
    )
    return audit
