"""
Transaction Model
Bank movements delivered by the banking sync, enriched by partner matching
"""

from sqlalchemy import Column, String, Integer, Float, Text, DateTime, Index
from sqlalchemy.sql import func
from app.database import Base, JSONColumn
from app.models.partner import new_id


class MatchedBy:
    """Values of Transaction.partner_matched_by."""
    MANUAL = "manual"
    SUGGESTION = "suggestion"
    AUTO = "auto"
    AI = "ai"

    # Sources pattern learning may train on
    USER_CONFIRMED = (MANUAL, SUGGESTION, AI)


class Transaction(Base):
    """
    A bank movement.

    partner_matched_by == "auto" means the assignment came from signals alone
    and may be revoked by the cascade; manual/suggestion assignments change
    only through explicit user action.
    """
    __tablename__ = "transactions"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(128), nullable=False, index=True)

    # Bank data
    date = Column(DateTime(timezone=True), nullable=False)
    amount = Column(Integer, nullable=False)  # minor units, signed
    currency = Column(String(3), nullable=False, default="EUR")
    name = Column(Text, nullable=True)
    partner = Column(Text, nullable=True)
    reference = Column(Text, nullable=True)
    partner_iban = Column(String(64), nullable=True)

    # Partner assignment
    partner_id = Column(String(32), nullable=True, index=True)
    partner_type = Column(String(10), nullable=True)  # user, global
    partner_match_confidence = Column(Float, nullable=True)
    partner_matched_by = Column(String(20), nullable=True)  # manual, suggestion, auto, ai
    partner_suggestions = Column(JSONColumn, nullable=False, default=list)
    """
    Ranked, recomputed on every run:
    [{"partner_id": "...", "partner_type": "user", "confidence": 95, "source": "pattern"}]
    """

    # Receipts
    file_ids = Column(JSONColumn, nullable=False, default=list)

    # No-receipt category
    no_receipt_category_id = Column(String(32), nullable=True)
    category_match_confidence = Column(Float, nullable=True)
    category_matched_by = Column(String(20), nullable=True)
    category_suggestions = Column(JSONColumn, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index("idx_transactions_user_date", "user_id", "date"),
        Index("idx_transactions_user_partner", "user_id", "partner_id"),
    )

    def clear_partner(self):
        """Drop the assignment (suggestions are left for the next match run)."""
        self.partner_id = None
        self.partner_type = None
        self.partner_match_confidence = None
        self.partner_matched_by = None

    def __repr__(self):
        return f"<Transaction(id={self.id}, amount={self.amount}, partner_id={self.partner_id})>"
