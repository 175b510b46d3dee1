"""
Notification Model
Persisted user notifications; delivery happens elsewhere
"""

from sqlalchemy import Column, String, Text, Boolean, DateTime
from sqlalchemy.sql import func
from app.database import Base, JSONColumn
from app.models.partner import new_id


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(128), nullable=False, index=True)
    type = Column(String(50), nullable=False)  # partner_matching, pattern_learned, patterns_cleared
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    context = Column(JSONColumn, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Notification(id={self.id}, type={self.type}, user_id={self.user_id})>"
