"""
Learning Actor
Explicit (non-debounced) pattern learning for one partner
"""

from typing import Dict, Optional

import dramatiq
import structlog

from app.exceptions import MatchingError

logger = structlog.get_logger(__name__)


@dramatiq.actor(
    max_retries=2,
    min_backoff=10000,  # 10 seconds
    max_backoff=120000,  # 2 minutes
    queue_name="pattern_learning",
    time_limit=600000  # 10 minutes, two oracle rounds plus corpus scans
)
def learn_partner(user_id: str, partner_id: str, transaction_id: Optional[str] = None) -> Dict:
    """
    Learn patterns for one partner right away.

    Oracle failures are not retried here: the workflow keeps the stored
    patterns and the next debounced sweep tries again.
    """
    from app.database import SessionLocal
    from app.services.monitoring.error_tracking import set_matching_context
    from app.services.pattern_learning import learn_partner_patterns

    if SessionLocal is None:
        raise RuntimeError("Database not configured")

    set_matching_context(user_id, "learn_partner", partner_id)
    logger.info("learn_partner_started", user_id=user_id, partner_id=partner_id)
    db = SessionLocal()
    try:
        return learn_partner_patterns(db, user_id, partner_id, transaction_id=transaction_id)
    except MatchingError as e:
        db.rollback()
        logger.warning("learn_partner_rejected", user_id=user_id, partner_id=partner_id, error=str(e))
        return {"error": str(e)}
    except Exception as e:
        db.rollback()
        logger.error("learn_partner_failed", user_id=user_id, partner_id=partner_id, error=str(e), exc_info=True)
        raise
    finally:
        db.close()
