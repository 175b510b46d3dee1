"""
Database Models
"""

from app.models.partner import Partner, GlobalPartner
from app.models.transaction import Transaction, MatchedBy
from app.models.receipt_file import ReceiptFile
from app.models.category import NoReceiptCategory
from app.models.learning_queue import LearningQueue, QueueStatus
from app.models.notification import Notification
from app.models.user_profile import UserProfile

__all__ = [
    "Partner",
    "GlobalPartner",
    "Transaction",
    "MatchedBy",
    "ReceiptFile",
    "NoReceiptCategory",
    "LearningQueue",
    "QueueStatus",
    "Notification",
    "UserProfile",
]
