"""
NoReceiptCategory Model
Explains transactions that will never have a receipt (bank fees, payroll, ...)
"""

from sqlalchemy import Column, String, Integer, Boolean, DateTime
from sqlalchemy.sql import func
from app.database import Base, JSONColumn
from app.models.partner import new_id

RECEIPT_LOST_TEMPLATE = "receipt-lost"


class NoReceiptCategory(Base):
    """
    Same pattern / partner-linkage mechanics as Partner.

    Template ids: bank-fees, interest, internal-transfers,
    payment-provider-settlements, taxes-government, payroll,
    private-personal, zero-value, receipt-lost.
    """
    __tablename__ = "no_receipt_categories"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(128), nullable=False, index=True)
    template_id = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)

    matched_partner_ids = Column(JSONColumn, nullable=False, default=list)
    learned_patterns = Column(JSONColumn, nullable=False, default=list)
    manual_removals = Column(JSONColumn, nullable=False, default=list)
    transaction_count = Column(Integer, nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<NoReceiptCategory(id={self.id}, template_id='{self.template_id}')>"
