"""
Rate limiting configuration.

The Limiter instance is created in opexhub/__init__.py with no default
limits; this module applies per-blueprint limits once blueprints are
registered.

Usage:
    from opexhub.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Limits (per remote IP):
        - Stage decisions and registration (POST): WORKFLOW_ACT_RATE_LIMIT
        - Reads (GET):                             200/minute
        - Health check:                            exempt

    Disabled when RATELIMIT_ENABLED is false (testing).
    """
    if not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (RATELIMIT_ENABLED=False)")
        return

    write_limit = app.config.get("WORKFLOW_ACT_RATE_LIMIT", "60/minute")
    for bp_name in ("workflow_bp", "initiative_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(write_limit, methods=["POST"])(bp)
            limiter.limit(READ_LIMIT, methods=["GET"])(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    logger.info("Rate limiter configured - write: %s, read: %s", write_limit, READ_LIMIT)
