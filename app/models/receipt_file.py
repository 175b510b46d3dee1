"""
ReceiptFile Model
Uploaded invoices/receipts with fields delivered by the extraction pipeline
"""

from sqlalchemy import Column, String, Integer, Float, Text, Boolean, DateTime
from sqlalchemy.sql import func
from app.database import Base, JSONColumn
from app.models.partner import new_id


class ReceiptFile(Base):
    """
    A scanned document.

    extracted_* columns are written by the extraction pipeline; matching only
    reads them. transaction_ids holds the connected transactions.
    """
    __tablename__ = "files"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(128), nullable=False, index=True)
    file_name = Column(String(255), nullable=True)

    # Extraction output
    extraction_complete = Column(Boolean, nullable=False, default=False)
    extracted_amount = Column(Integer, nullable=True)  # minor units
    extracted_currency = Column(String(3), nullable=True)
    extracted_date = Column(DateTime(timezone=True), nullable=True)
    extracted_partner = Column(String(255), nullable=True)
    extracted_vat_id = Column(String(64), nullable=True)
    extracted_iban = Column(String(64), nullable=True)
    extracted_website = Column(String(255), nullable=True)
    extracted_text = Column(Text, nullable=True)
    sender_email = Column(String(255), nullable=True)

    precision_hint = Column(JSONColumn, nullable=True)
    # {"transaction_id": "...", "match_confidence": 60} from a targeted receipt search

    # Partner assignment
    partner_id = Column(String(32), nullable=True, index=True)
    partner_type = Column(String(10), nullable=True)
    partner_match_confidence = Column(Float, nullable=True)
    partner_matched_by = Column(String(20), nullable=True)
    partner_suggestions = Column(JSONColumn, nullable=False, default=list)

    # Transaction connections
    transaction_ids = Column(JSONColumn, nullable=False, default=list)
    transaction_suggestions = Column(JSONColumn, nullable=False, default=list)
    transaction_matched_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<ReceiptFile(id={self.id}, partner_id={self.partner_id})>"
