"""
Sentry Error Tracking
Background matching and learning failures never reach the user, so Sentry
is where they surface.
"""

import logging
from typing import Optional

import sentry_sdk

logger = logging.getLogger(__name__)


def init_sentry() -> None:
    """
    Initialize Sentry SDK with FastAPI integration.

    Without SENTRY_DSN error tracking stays disabled (development, tests).
    """
    from app.config import settings

    if settings.sentry_dsn is None:
        logger.warning("Sentry DSN not configured - error tracking disabled")
        return

    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment or settings.environment,
        traces_sample_rate=0.1,
        integrations=[FastApiIntegration()],
    )
    logger.info(
        "Sentry initialized",
        extra={"environment": settings.sentry_environment or settings.environment}
    )


def set_matching_context(user_id: str, operation: str, partner_id: Optional[str] = None) -> None:
    """Tag the current scope with who and what was being matched."""
    sentry_sdk.set_context("matching", {
        "user_id": user_id,
        "operation": operation,
        "partner_id": partner_id,
    })
    sentry_sdk.set_tag("operation", operation)
    if partner_id:
        sentry_sdk.set_tag("partner_id", partner_id)


def capture_exception(error: BaseException) -> None:
    sentry_sdk.capture_exception(error)


def capture_message(message: str, level: str = "info") -> None:
    sentry_sdk.capture_message(message, level=level)
