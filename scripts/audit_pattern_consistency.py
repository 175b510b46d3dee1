#!/usr/bin/env python3
"""
Pattern consistency audit for learned partner patterns.

Run: python scripts/audit_pattern_consistency.py [--user-id USER] [--repair]

Checks, per active user partner:
  - automatic assignments no current pattern justifies (cascade missed)
  - learned patterns that match a transaction the user removed

--repair runs the cascade for every partner with stale assignments.

Exit codes:
  0 - Consistent
  1 - Issues found
  2 - Audit failed (database connection error)
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

from sqlalchemy import or_

project_root = Path(__file__).parent.parent

from app import database  # noqa: E402
from app.models.partner import Partner  # noqa: E402
from app.models.transaction import MatchedBy, Transaction  # noqa: E402
from app.services.cascade import cascade_unassign, still_matches  # noqa: E402
from app.services.matching.records import pattern_rules  # noqa: E402
from app.services.pattern_learning.safety import first_matching_record  # noqa: E402


def audit_partner(db, partner: Partner) -> dict:
    """Stale auto assignments and removal collisions for one partner."""
    rules = pattern_rules(partner.learned_patterns)
    auto_assigned = db.query(Transaction).filter(
        Transaction.user_id == partner.user_id,
        Transaction.partner_id == partner.id,
        or_(Transaction.partner_matched_by == MatchedBy.AUTO, Transaction.partner_matched_by.is_(None)),
    ).all()
    stale = [tx.id for tx in auto_assigned if not (rules and still_matches(tx, rules))]

    removals = [r for r in (partner.manual_removals or []) if isinstance(r, dict)]
    removal_hits = []
    for rule in rules:
        hit = first_matching_record(rule.pattern, removals)
        if hit is not None:
            removal_hits.append({"pattern": rule.pattern, "transaction_id": hit.get("transaction_id")})

    return {
        "partner_id": partner.id,
        "user_id": partner.user_id,
        "name": partner.name,
        "patterns": len(rules),
        "auto_assigned": len(auto_assigned),
        "stale_assignments": stale,
        "removal_hits": removal_hits,
    }


def format_report(results: list) -> str:
    lines = []
    lines.append("=" * 80)
    lines.append("LEARNED PATTERN CONSISTENCY AUDIT")
    lines.append("=" * 80)
    lines.append("")
    lines.append(f"Partners audited:          {len(results)}")
    lines.append(f"With stale assignments:    {sum(1 for r in results if r['stale_assignments'])}")
    lines.append(f"With removal hits:         {sum(1 for r in results if r['removal_hits'])}")
    lines.append("")

    issues = [r for r in results if r["stale_assignments"] or r["removal_hits"]]
    if issues:
        lines.append("ISSUES")
        lines.append("-" * 80)
        for result in issues[:20]:
            lines.append(
                f"  - {result['name']} ({result['partner_id']}, user {result['user_id']}): "
                f"{len(result['stale_assignments'])} stale, {len(result['removal_hits'])} removal hits"
            )
            for hit in result["removal_hits"][:3]:
                lines.append(f"      pattern '{hit['pattern']}' matches removed {hit['transaction_id']}")
        if len(issues) > 20:
            lines.append(f"  ... and {len(issues) - 20} more")
        lines.append("")

    lines.append("=" * 80)
    return "\n".join(lines)


def main():
    """Main audit script entry point"""
    parser = argparse.ArgumentParser(description="Audit learned partner patterns against assignments and removals")
    parser.add_argument("--user-id", default=None, help="Only audit this user's partners")
    parser.add_argument("--repair", action="store_true", help="Run the cascade for partners with stale assignments")
    args = parser.parse_args()

    print("Initializing database connection...")
    try:
        database.init_db()
    except Exception as e:
        print(f"ERROR: Failed to connect to database: {e}")
        sys.exit(2)
    if database.SessionLocal is None:
        print("ERROR: Database not configured. Set DATABASE_URL environment variable.")
        sys.exit(2)

    db = database.SessionLocal()
    try:
        query = db.query(Partner).filter(Partner.is_active.is_(True))
        if args.user_id:
            query = query.filter(Partner.user_id == args.user_id)
        results = [audit_partner(db, partner) for partner in query.all()]

        print(format_report(results))

        if args.repair:
            for result in results:
                if result["stale_assignments"]:
                    partner = db.get(Partner, result["partner_id"])
                    unassigned = cascade_unassign(db, partner.user_id, partner.id, partner.learned_patterns)
                    print(f"Repaired {result['name']}: {unassigned} assignments cleared")
    finally:
        db.close()

    timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
    report_path = project_root / "scripts" / f"pattern_audit_{timestamp}.json"
    try:
        with open(report_path, "w") as f:
            json.dump(results, f, indent=2, default=str)
        print(f"\nJSON report saved to: {report_path}")
    except OSError as e:
        print(f"\nWARNING: Failed to save JSON report: {e}")

    if any(r["stale_assignments"] or r["removal_hits"] for r in results):
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
