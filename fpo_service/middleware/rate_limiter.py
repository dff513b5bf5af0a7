"""
Per-actor rate limits for the FPO lifecycle API.

Transitions hold a worker while they wait on the AAA service, so the
lifecycle blueprint is throttled per caller: by ``X-Actor-ID`` when the
header is present, otherwise by remote address. Health checks are exempt.
The limit string comes from ``FPO_RATE_LIMIT`` (Flask-Limiter syntax).
"""

import logging

from flask import request
from flask_limiter.util import get_remote_address

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = "60/minute"


def actor_or_address() -> str:
    actor = request.headers.get("X-Actor-ID")
    return f"actor:{actor}" if actor else f"ip:{get_remote_address()}"


def init_rate_limits(app, limiter):
    """Attach limits to the registered blueprints. No-op while TESTING."""
    if app.config.get("TESTING"):
        logger.debug("Rate limits skipped under TESTING")
        return

    limit = app.config.get("FPO_RATE_LIMIT", DEFAULT_LIMIT)
    lifecycle = app.blueprints.get("fpo_lifecycle")
    if lifecycle is not None:
        limiter.limit(limit, key_func=actor_or_address)(lifecycle)
    health = app.blueprints.get("health")
    if health is not None:
        limiter.exempt(health)

    logger.info("Rate limit %s per actor on fpo_lifecycle", limit)
