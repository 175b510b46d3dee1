"""
Matching thresholds.

Partner and category matching share the 89 auto-apply line. File <-> transaction
matching uses lower thresholds because its signals (amount, date) are weaker.
Deployment-tunable values come from settings; the rest are fixed defaults.
"""

from app.config import settings


class PartnerThresholds:
    AUTO_APPLY = settings.partner_auto_apply_threshold
    MAX_SUGGESTIONS = 3
    UNMATCHED_BATCH_LIMIT = 1000  # default mode of match_partners


class FileMatchThresholds:
    AUTO_MATCH = settings.file_auto_match_threshold
    SUGGESTION = settings.file_suggestion_threshold
    DATE_RANGE_DAYS = 30
    MAX_SUGGESTIONS = 5
    MAX_RESULTS = 20
    CANDIDATE_LIMIT = 500
    RECENT_LIMIT = 200


class CategoryThresholds:
    SUGGESTION = 60
    AUTO_APPLY = settings.partner_auto_apply_threshold
    PARTNER_MATCH_CONFIDENCE = 89
    COMBINED_MATCH_BONUS = 15
    MAX_SUGGESTIONS = 3
    USAGE_BOOST_MAX = 10
    NO_FILE_EVIDENCE_BOOST = 8


class LearningLimits:
    POSITIVE_LIMIT = 50
    COLLISION_SCAN_LIMIT = 500
    COLLISION_SAMPLE = 30
    REMOVAL_SAMPLE = 20
    MIN_CANDIDATE_CONFIDENCE = 50
    BROAD_MATCH_COUNT = 20
    BROAD_MATCH_PERCENT = 3.0
    VERIFY_UNASSIGNED_SAMPLE = 15
    VERIFY_CONFLICT_SAMPLE = 5
    NOTIFICATION_PREVIEW = 10
