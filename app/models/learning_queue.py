"""
LearningQueue Model
Per-user debounce state for pattern learning
"""

from sqlalchemy import Column, String, Integer, DateTime
from sqlalchemy.sql import func
from app.database import Base, JSONColumn


class QueueStatus:
    IDLE = "idle"
    PROCESSING = "processing"


class LearningQueue(Base):
    """
    One row per user.

    Every write is a compare-and-swap on version, so two concurrent sweeps
    cannot both claim the same queue and an enqueue during processing is
    never lost.
    """
    __tablename__ = "learning_queues"

    user_id = Column(String(128), primary_key=True)
    pending_partner_ids = Column(JSONColumn, nullable=False, default=list)
    queued_at = Column(DateTime(timezone=True), nullable=True)
    process_after = Column(DateTime(timezone=True), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=QueueStatus.IDLE)
    version = Column(Integer, nullable=False, default=0)
    processing_started_at = Column(DateTime(timezone=True), nullable=True)

    last_processed_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(String(500), nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<LearningQueue(user_id={self.user_id}, status={self.status}, pending={len(self.pending_partner_ids or [])})>"
