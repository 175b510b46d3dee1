"""
Learning Queue (debouncer)

Coalesces learning requests per user so several quick assignments cost one
oracle batch instead of one call each.

- enqueue: adds the partner; only the first request into an empty queue
  sets process_after = now + 5 min (later requests never push it back)
- sweep (scheduler, every 5 min): claims due idle queues with a
  compare-and-swap to "processing", learns all pending partners, applies
  patterns, then releases the queue back to "idle"
- a failed batch releases the queue with its partners still pending, so
  the next sweep retries them

Every write is a conditional UPDATE on (user_id, version). A queue stuck in
"processing" after a worker crash is reclaimed once it is older than
STALE_PROCESSING_MINUTES.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.learning_queue import LearningQueue, QueueStatus
from app.services.monitoring.error_tracking import capture_exception, set_matching_context
from app.services.ownership import require_id

logger = structlog.get_logger(__name__)

STALE_PROCESSING_MINUTES = 30
CAS_ATTEMPTS = 5


def _debounce() -> timedelta:
    return timedelta(minutes=settings.learning_debounce_minutes)


def load_queue(db: Session, user_id: str) -> Optional[LearningQueue]:
    """Fresh read of the queue row, bypassing the identity map."""
    return db.query(LearningQueue).populate_existing().filter(
        LearningQueue.user_id == user_id
    ).one_or_none()


def compare_and_swap(db: Session, user_id: str, expected_version: int, values: Dict[str, Any]) -> bool:
    """
    Apply values only if the row still has expected_version. Commits.

    Returns:
        True when this call won the write
    """
    values = dict(values, version=expected_version + 1)
    updated = db.query(LearningQueue).filter(
        LearningQueue.user_id == user_id,
        LearningQueue.version == expected_version,
    ).update(values, synchronize_session=False)
    db.commit()
    return updated == 1


def _update_with_retry(db: Session, user_id: str, build: Callable[[LearningQueue], Optional[Dict[str, Any]]]) -> bool:
    """Re-read and retry a CAS write; build returns None to abandon."""
    for _ in range(CAS_ATTEMPTS):
        queue = load_queue(db, user_id)
        if queue is None:
            return False
        values = build(queue)
        if values is None:
            return False
        if compare_and_swap(db, user_id, queue.version, values):
            return True
    logger.warning("learning_queue_contention", user_id=user_id, attempts=CAS_ATTEMPTS)
    return False


def enqueue_partner_for_learning(db: Session, user_id: str, partner_id: str) -> Dict[str, Any]:
    """
    Add a partner to the user's learning queue.

    Returns:
        {"queued": bool, "pending": n, "process_after": iso or None}
    """
    partner_id = require_id(partner_id, "partner_id")
    now = datetime.utcnow()

    if load_queue(db, user_id) is None:
        db.add(LearningQueue(
            user_id=user_id,
            pending_partner_ids=[partner_id],
            queued_at=now,
            process_after=now + _debounce(),
            status=QueueStatus.IDLE,
            version=0,
        ))
        try:
            db.commit()
            logger.info("partner_queued_for_learning", user_id=user_id, partner_id=partner_id, pending=1)
            return {"queued": True, "pending": 1, "process_after": (now + _debounce()).isoformat()}
        except IntegrityError:
            # Another request created the row first
            db.rollback()

    def build(queue: LearningQueue) -> Optional[Dict[str, Any]]:
        pending = list(queue.pending_partner_ids or [])
        if partner_id in pending:
            return None
        values = {"pending_partner_ids": pending + [partner_id]}
        if not pending:
            values["queued_at"] = now
            values["process_after"] = now + _debounce()
        return values

    queued = _update_with_retry(db, user_id, build)
    queue = load_queue(db, user_id)
    pending = len(queue.pending_partner_ids or []) if queue else 0
    logger.info("partner_queued_for_learning", user_id=user_id, partner_id=partner_id, queued=queued, pending=pending)
    return {
        "queued": queued,
        "pending": pending,
        "process_after": queue.process_after.isoformat() if queue and queue.process_after else None,
    }


@dataclass(frozen=True)
class QueueSnapshot:
    """Queue row state captured at read time; claims CAS against this version."""
    user_id: str
    version: int
    status: str
    pending_partner_ids: List[str]
    processing_started_at: Optional[datetime] = None

    @classmethod
    def of(cls, queue: LearningQueue) -> "QueueSnapshot":
        return cls(
            user_id=queue.user_id,
            version=queue.version,
            status=queue.status,
            pending_partner_ids=list(queue.pending_partner_ids or []),
            processing_started_at=queue.processing_started_at,
        )


def claim_queue(db: Session, queue, now: datetime) -> bool:
    """
    CAS the queue into "processing". False when another sweep got there first.

    The row must still carry the version that was read and be idle or a
    stale claim.
    """
    stale_before = now - timedelta(minutes=STALE_PROCESSING_MINUTES)
    updated = db.query(LearningQueue).filter(
        LearningQueue.user_id == queue.user_id,
        LearningQueue.version == queue.version,
        or_(
            LearningQueue.status == QueueStatus.IDLE,
            LearningQueue.processing_started_at < stale_before,
        ),
    ).update({
        "status": QueueStatus.PROCESSING,
        "processing_started_at": now,
        "version": queue.version + 1,
    }, synchronize_session=False)
    db.commit()
    return updated == 1


def release_queue(db: Session, user_id: str, processed_ids: List[str], error: Optional[str] = None) -> None:
    """
    Back to "idle". On success the processed partners leave the queue;
    partners enqueued while processing stay and get a fresh deadline.
    On error every partner stays pending.
    """
    now = datetime.utcnow()

    def build(queue: LearningQueue) -> Dict[str, Any]:
        pending = list(queue.pending_partner_ids or [])
        remaining = pending if error else [p for p in pending if p not in processed_ids]
        values = {
            "status": QueueStatus.IDLE,
            "processing_started_at": None,
            "pending_partner_ids": remaining,
            "last_error": error[:500] if error else None,
        }
        if error is None:
            values["last_processed_at"] = now
        if not remaining:
            values["queued_at"] = None
            values["process_after"] = None
        elif error is None:
            values["queued_at"] = now
            values["process_after"] = now + _debounce()
        return values

    if not _update_with_retry(db, user_id, build):
        logger.error("learning_queue_release_failed", user_id=user_id)


def process_queue(db: Session, queue: QueueSnapshot, oracle=None) -> Optional[Dict[str, Any]]:
    """
    Claim one queue, learn every pending partner, re-apply patterns, release.

    Returns:
        Batch result, or None when the queue could not be claimed
    """
    from app.services.pattern_application import apply_patterns_to_transactions
    from app.services.pattern_learning.workflow import learn_patterns_for_partners_batch

    user_id = queue.user_id
    partner_ids = list(queue.pending_partner_ids or [])
    if not claim_queue(db, queue, datetime.utcnow()):
        logger.info("learning_queue_claim_lost", user_id=user_id)
        return None

    set_matching_context(user_id, "learning_queue")
    log = logger.bind(user_id=user_id, partners=len(partner_ids))
    log.info("learning_queue_processing")
    try:
        result = learn_patterns_for_partners_batch(db, user_id, partner_ids, oracle=oracle)
        result["applied"] = apply_patterns_to_transactions(db, user_id)
    except Exception as e:
        db.rollback()
        log.error("learning_queue_batch_failed", error=str(e), exc_info=True)
        capture_exception(e)
        release_queue(db, user_id, partner_ids, error=str(e))
        raise

    release_queue(db, user_id, partner_ids)
    log.info("learning_queue_processed", processed=result["processed"], failed=len(result["failed"]))
    return result


def process_due_queues(db: Session, now: Optional[datetime] = None, oracle=None) -> Dict[str, int]:
    """
    Scheduler sweep: every idle queue past its deadline, plus stale claims.

    A failing queue is logged and left for the next sweep.

    Returns:
        {"due": n, "processed": n, "failed": n}
    """
    now = now or datetime.utcnow()
    stale_before = now - timedelta(minutes=STALE_PROCESSING_MINUTES)
    due = [QueueSnapshot.of(queue) for queue in db.query(LearningQueue).filter(
        or_(
            and_(LearningQueue.status == QueueStatus.IDLE, LearningQueue.process_after <= now),
            and_(LearningQueue.status == QueueStatus.PROCESSING, LearningQueue.processing_started_at < stale_before),
        )
    ).all()]

    stats = {"due": 0, "processed": 0, "failed": 0}
    for queue in due:
        if not queue.pending_partner_ids:
            continue
        stats["due"] += 1
        if queue.status == QueueStatus.PROCESSING:
            logger.warning("learning_queue_reclaimed", user_id=queue.user_id, started_at=str(queue.processing_started_at))
        try:
            if process_queue(db, queue, oracle=oracle) is not None:
                stats["processed"] += 1
        except Exception:
            stats["failed"] += 1

    if stats["due"]:
        logger.info("learning_sweep_completed", **stats)
    return stats


def trigger_learning_now(db: Session, user_id: str, oracle=None) -> Dict[str, Any]:
    """Process the user's queue immediately, ignoring the debounce deadline."""
    queue = load_queue(db, user_id)
    if queue is None or not queue.pending_partner_ids:
        return {"success": True, "message": "No pending patterns to learn", "processed": 0}
    if queue.status == QueueStatus.PROCESSING:
        return {"success": False, "message": "Already processing", "processed": 0}

    try:
        result = process_queue(db, QueueSnapshot.of(queue), oracle=oracle)
    except Exception as e:
        return {"success": False, "message": f"Learning failed: {e}", "processed": 0}

    if result is None:
        return {"success": False, "message": "Already processing", "processed": 0}
    return {
        "success": True,
        "message": f"Learned patterns for {result['processed']} partners",
        "processed": result["processed"],
        "failed": result["failed"],
    }


def get_queue_status(db: Session, user_id: str) -> Dict[str, Any]:
    queue = load_queue(db, user_id)
    if queue is None:
        return {"status": QueueStatus.IDLE, "pending_partner_ids": [], "pending_count": 0, "process_after": None,
                "queued_at": None, "last_processed_at": None, "last_error": None}

    def iso(value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None

    return {
        "status": queue.status,
        "pending_partner_ids": list(queue.pending_partner_ids or []),
        "pending_count": len(queue.pending_partner_ids or []),
        "process_after": iso(queue.process_after),
        "queued_at": iso(queue.queued_at),
        "last_processed_at": iso(queue.last_processed_at),
        "last_error": queue.last_error,
    }
