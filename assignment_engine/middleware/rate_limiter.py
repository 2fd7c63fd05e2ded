"""
Rate limiting configuration.

Applies per-blueprint limits using Flask-Limiter. The Limiter instance is
created in assignment_engine/__init__.py with no default limits; this module
applies granular limits per route category.

    - Batch triggers (scheduler):  10/minute (each call may run a full batch)
    - Assignment / SLA / notification endpoints:  60/minute
    - Health check:                exempt

Usage:
    from assignment_engine.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

BATCH_TRIGGER_LIMIT = "10/minute"
WRITE_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """Apply rate limits to API blueprints. Disabled in testing mode."""
    if app.config.get("TESTING"):
        app.logger.debug("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("scheduler_bp")
    if bp:
        limiter.limit(BATCH_TRIGGER_LIMIT)(bp)

    for bp_name in ("assignment_bp", "sla_bp", "notification_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: batch triggers %s, write %s",
                    BATCH_TRIGGER_LIMIT, WRITE_LIMIT)
