#!/usr/bin/env python
"""
Seed No-Receipt Categories

Creates the standard no-receipt categories for a user.

Usage:
    python scripts/seed_no_receipt_categories.py USER_ID [USER_ID ...]

Idempotent: skips templates the user already has.
"""

import sys

from app import database
from app.models.category import NoReceiptCategory

CATEGORY_TEMPLATES = [
    {"template_id": "bank-fees", "name": "Bank fees"},
    {"template_id": "interest", "name": "Interest"},
    {"template_id": "internal-transfers", "name": "Internal transfers"},
    {"template_id": "payment-provider-settlements", "name": "Payment provider settlements"},
    {"template_id": "taxes-government", "name": "Taxes & government"},
    {"template_id": "payroll", "name": "Payroll"},
    {"template_id": "private-personal", "name": "Private / personal"},
    {"template_id": "zero-value", "name": "Zero-value transactions"},
    {"template_id": "receipt-lost", "name": "Receipt lost"},
]


def seed_categories(user_ids):
    """Insert missing templates for each user; one commit for all."""
    database.init_db()
    if database.SessionLocal is None:
        raise RuntimeError("DATABASE_URL not configured")

    db = database.SessionLocal()
    try:
        seeded_count = 0
        skipped_count = 0

        for user_id in user_ids:
            existing = {
                row.template_id
                for row in db.query(NoReceiptCategory.template_id).filter(NoReceiptCategory.user_id == user_id).all()
            }
            for template in CATEGORY_TEMPLATES:
                if template["template_id"] in existing:
                    skipped_count += 1
                    continue
                db.add(NoReceiptCategory(
                    user_id=user_id,
                    template_id=template["template_id"],
                    name=template["name"],
                    matched_partner_ids=[],
                    learned_patterns=[],
                    manual_removals=[],
                    transaction_count=0,
                    is_active=True,
                ))
                seeded_count += 1

        db.commit()

        print(f"\n{'='*60}")
        print("No-receipt category seeding complete!")
        print(f"  Seeded: {seeded_count} categories")
        print(f"  Skipped: {skipped_count} categories (already exist)")
        print(f"{'='*60}")

    except Exception as e:
        db.rollback()
        print(f"Error seeding categories: {e}")
        raise
    finally:
        db.close()


if __name__ == '__main__':
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)
    seed_categories(sys.argv[1:])
