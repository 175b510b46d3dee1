"""
UserProfile Model
The user's own identifiers, excluded from partner evidence
"""

from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from app.database import Base, JSONColumn


class UserProfile(Base):
    __tablename__ = "user_profiles"

    user_id = Column(String(128), primary_key=True)
    company_name = Column(String(255), nullable=True)

    # Own identifiers (bank-account ibans and integration mailboxes included)
    vat_ids = Column(JSONColumn, nullable=False, default=list)
    ibans = Column(JSONColumn, nullable=False, default=list)
    emails = Column(JSONColumn, nullable=False, default=list)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<UserProfile(user_id={self.user_id})>"
