"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to the circuits blueprint.

    Limits (per remote IP):
        - Write endpoints:  60/minute  (POST, bulk delete included)
        - Read endpoints:   200/minute (GET)

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("circuits")
    if bp:
        limiter.limit(WRITE_LIMIT, methods=["POST", "PUT", "PATCH", "DELETE"])(bp)
        limiter.limit(READ_LIMIT, methods=["GET"])(bp)

    app.logger.info(
        "Rate limiter configured: circuits write: %s, read: %s", WRITE_LIMIT, READ_LIMIT,
    )
