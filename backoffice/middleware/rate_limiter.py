"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in backoffice/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from backoffice.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Invoice endpoints:   60/minute  (collect reads a full period; locks write)
        - Document endpoints:  200/minute (queue status is polled by the UI)
        - Health check:        exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("invoice")
    if bp:
        limiter.limit("60/minute")(bp)

    bp = app.blueprints.get("worklog_pdf")
    if bp:
        limiter.limit("200/minute")(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    logger.info("Rate limiter configured — invoice: 60/min, documents: 200/min")
