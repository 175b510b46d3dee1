"""
Pattern Learning Package

Oracle-driven glob pattern learning for partners: prompt building, the
oracle wrapper, the deterministic safety filter, dry-run verification and
the end-to-end workflow.
"""

from app.services.pattern_learning.workflow import (
    learn_partner_patterns,
    learn_patterns_for_partners_batch,
)

__all__ = [
    "learn_partner_patterns",
    "learn_patterns_for_partners_batch",
]
