"""
Audit Workflow Platform
Blueprint registry and shared request helpers.

Authentication is handled upstream; the acting tenant and user arrive as
``tenant_id`` / ``user_id`` in the query string or JSON body.
"""

from flask import request

from auditflow.utils.errors import E, api_error


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def request_int(name: str, default=None):
    """Integer from the query string, falling back to the JSON body.

    Malformed values are treated as absent.
    """
    raw = request.args.get(name)
    if raw is None:
        raw = json_body().get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def request_bool(name: str, default: bool = False) -> bool:
    raw = request.args.get(name)
    if raw is None:
        raw = json_body().get(name)
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


def missing_params(**values):
    """400 response naming every ``None`` value, or None when all are present."""
    missing = [name for name, value in values.items() if value is None]
    if not missing:
        return None
    return api_error(
        E.VALIDATION_REQUIRED,
        f"{', '.join(missing)} {'is' if len(missing) == 1 else 'are'} required",
        details={name: "required" for name in missing},
    )


def register_blueprints(app) -> None:
    from auditflow.blueprints.audit_plan_bp import audit_plan_bp
    from auditflow.blueprints.audit_team_bp import audit_team_bp
    from auditflow.blueprints.health_bp import health_bp
    from auditflow.blueprints.meeting_bp import meeting_bp
    from auditflow.blueprints.notification_bp import notification_bp

    for bp in (health_bp, audit_team_bp, meeting_bp, audit_plan_bp, notification_bp):
        app.register_blueprint(bp)
