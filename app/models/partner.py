"""
Partner Models
User-owned partners and shared/global partner templates
"""

import uuid

from sqlalchemy import Column, String, Text, Boolean, DateTime, Index
from sqlalchemy.sql import func
from app.database import Base, JSONColumn


def new_id() -> str:
    return uuid.uuid4().hex


class Partner(Base):
    """
    A user's counterparty (vendor/customer).

    Never physically deleted, only deactivated. A partner localized from a
    global template keeps the template id in global_partner_id.
    """
    __tablename__ = "partners"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(128), nullable=False, index=True)
    global_partner_id = Column(String(32), nullable=True, index=True)

    # Identity
    name = Column(String(255), nullable=False)
    aliases = Column(JSONColumn, nullable=False, default=list)

    # Matching keys
    ibans = Column(JSONColumn, nullable=False, default=list)
    vat_id = Column(String(64), nullable=True)  # single authoritative VAT id
    website = Column(String(255), nullable=True)
    email_domains = Column(JSONColumn, nullable=False, default=list)

    learned_patterns = Column(JSONColumn, nullable=False, default=list)
    """
    Oracle-derived glob patterns, replaced only by the learning workflow.

    Structure:
    [
        {
            "pattern": "amazon*",
            "confidence": 95,
            "created_at": "2026-02-05T10:30:00",
            "source_transaction_ids": ["tx1", "tx2"]
        }
    ]
    """
    patterns_updated_at = Column(DateTime(timezone=True), nullable=True)

    manual_removals = Column(JSONColumn, nullable=False, default=list)
    """
    Negative evidence: [{"transaction_id": "...", "partner": "...", "name": "..."}]
    Text fields are captured at removal time.
    """

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index("idx_partners_user_active", "user_id", "is_active"),
    )

    def removed_transaction_ids(self) -> set:
        return {
            r.get("transaction_id")
            for r in (self.manual_removals or [])
            if isinstance(r, dict) and r.get("transaction_id")
        }

    def __repr__(self):
        return f"<Partner(id={self.id}, name='{self.name}', user_id={self.user_id})>"


class GlobalPartner(Base):
    """
    Shared partner template visible to every user.

    Carries hand-written static patterns instead of learned ones:
    [{"pattern": "*paypal*", "confidence": 90, "exclude": ["*paypal*netflix*"]}]
    """
    __tablename__ = "global_partners"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    aliases = Column(JSONColumn, nullable=False, default=list)
    ibans = Column(JSONColumn, nullable=False, default=list)
    vat_id = Column(String(64), nullable=True)
    website = Column(String(255), nullable=True)
    email_domains = Column(JSONColumn, nullable=False, default=list)
    patterns = Column(JSONColumn, nullable=False, default=list)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<GlobalPartner(id={self.id}, name='{self.name}')>"
