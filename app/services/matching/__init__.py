"""
Matching Engine Service Package

Pure matching building blocks: text normalization, glob patterns, signal
scoring and thresholds. Nothing in here touches the database.
"""

from app.services.matching.glob import match, match_flexible
from app.services.matching.identity import OwnIdentifiers
from app.services.matching.records import MatchRecord, PartnerMatch, PartnerProfile, PatternRule
from app.services.matching.signals import score_partner
from app.services.matching.thresholds import (
    CategoryThresholds,
    FileMatchThresholds,
    LearningLimits,
    PartnerThresholds,
)

__all__ = [
    # Glob patterns
    "match",
    "match_flexible",
    # Records
    "MatchRecord",
    "PartnerMatch",
    "PartnerProfile",
    "PatternRule",
    "OwnIdentifiers",
    # Scoring
    "score_partner",
    # Thresholds
    "CategoryThresholds",
    "FileMatchThresholds",
    "LearningLimits",
    "PartnerThresholds",
]
