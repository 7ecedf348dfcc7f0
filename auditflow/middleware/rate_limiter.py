"""
HTTP rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in auditflow/__init__.py with no default
limits; this module applies granular limits per route category.

This is transport-level throttling. The five-minute dedup window on the
general audit notification is a business rule enforced in
``general_notification_service`` and is independent of these limits.

Usage:
    from auditflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"

# Blueprints that mutate audit workflow state
_WRITE_BLUEPRINTS = ("audit_team_bp", "meeting_bp", "audit_plan_bp")
# Inbox polling from the SPA
_READ_BLUEPRINTS = ("notification_bp",)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Workflow endpoints: 60/minute
        - Inbox endpoints:    200/minute
        - Health check:       exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in _WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    for bp_name in _READ_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT)(bp)

    health = app.blueprints.get("health_bp")
    if health:
        limiter.exempt(health)

    app.logger.info("Rate limiter configured — workflow: %s, inbox: %s", WRITE_LIMIT, READ_LIMIT)
