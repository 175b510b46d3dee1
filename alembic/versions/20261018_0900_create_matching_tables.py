"""create_matching_tables

Revision ID: 20261018_0900_create_matching
Revises:
Create Date: 2026-10-18 09:00:00

Adds: partners, global_partners, transactions, files, no_receipt_categories,
learning_queues, notifications, user_profiles
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = '20261018_0900_create_matching'
down_revision = None
branch_labels = None
depends_on = None


def _json():
    return sa.JSON().with_variant(JSONB(), 'postgresql')


def _list_column(name: str) -> sa.Column:
    return sa.Column(name, _json(), nullable=False, server_default=sa.text("'[]'"))


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """
    Create every table the matching engine reads or writes.

    JSON list columns default to '[]' so rows written by other services
    never carry NULL lists.
    """
    op.create_table(
        'partners',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('global_partner_id', sa.String(length=32), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        _list_column('aliases'),
        _list_column('ibans'),
        sa.Column('vat_id', sa.String(length=64), nullable=True),
        sa.Column('website', sa.String(length=255), nullable=True),
        _list_column('email_domains'),
        _list_column('learned_patterns'),
        sa.Column('patterns_updated_at', sa.DateTime(timezone=True), nullable=True),
        _list_column('manual_removals'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_partners_user_id', 'partners', ['user_id'])
    op.create_index('ix_partners_global_partner_id', 'partners', ['global_partner_id'])
    op.create_index('idx_partners_user_active', 'partners', ['user_id', 'is_active'])

    op.create_table(
        'global_partners',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        _list_column('aliases'),
        _list_column('ibans'),
        sa.Column('vat_id', sa.String(length=64), nullable=True),
        sa.Column('website', sa.String(length=255), nullable=True),
        _list_column('email_domains'),
        _list_column('patterns'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'transactions',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='EUR'),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('partner', sa.Text(), nullable=True),
        sa.Column('reference', sa.Text(), nullable=True),
        sa.Column('partner_iban', sa.String(length=64), nullable=True),
        sa.Column('partner_id', sa.String(length=32), nullable=True),
        sa.Column('partner_type', sa.String(length=10), nullable=True),
        sa.Column('partner_match_confidence', sa.Float(), nullable=True),
        sa.Column('partner_matched_by', sa.String(length=20), nullable=True),
        _list_column('partner_suggestions'),
        _list_column('file_ids'),
        sa.Column('no_receipt_category_id', sa.String(length=32), nullable=True),
        sa.Column('category_match_confidence', sa.Float(), nullable=True),
        sa.Column('category_matched_by', sa.String(length=20), nullable=True),
        _list_column('category_suggestions'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_transactions_user_id', 'transactions', ['user_id'])
    op.create_index('ix_transactions_partner_id', 'transactions', ['partner_id'])
    op.create_index('idx_transactions_user_date', 'transactions', ['user_id', 'date'])
    op.create_index('idx_transactions_user_partner', 'transactions', ['user_id', 'partner_id'])

    op.create_table(
        'files',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=True),
        sa.Column('extraction_complete', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('extracted_amount', sa.Integer(), nullable=True),
        sa.Column('extracted_currency', sa.String(length=3), nullable=True),
        sa.Column('extracted_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('extracted_partner', sa.String(length=255), nullable=True),
        sa.Column('extracted_vat_id', sa.String(length=64), nullable=True),
        sa.Column('extracted_iban', sa.String(length=64), nullable=True),
        sa.Column('extracted_website', sa.String(length=255), nullable=True),
        sa.Column('extracted_text', sa.Text(), nullable=True),
        sa.Column('sender_email', sa.String(length=255), nullable=True),
        sa.Column('precision_hint', _json(), nullable=True),
        sa.Column('partner_id', sa.String(length=32), nullable=True),
        sa.Column('partner_type', sa.String(length=10), nullable=True),
        sa.Column('partner_match_confidence', sa.Float(), nullable=True),
        sa.Column('partner_matched_by', sa.String(length=20), nullable=True),
        _list_column('partner_suggestions'),
        _list_column('transaction_ids'),
        _list_column('transaction_suggestions'),
        sa.Column('transaction_matched_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_files_user_id', 'files', ['user_id'])
    op.create_index('ix_files_partner_id', 'files', ['partner_id'])

    op.create_table(
        'no_receipt_categories',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('template_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        _list_column('matched_partner_ids'),
        _list_column('learned_patterns'),
        _list_column('manual_removals'),
        sa.Column('transaction_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_no_receipt_categories_user_id', 'no_receipt_categories', ['user_id'])

    op.create_table(
        'learning_queues',
        sa.Column('user_id', sa.String(length=128), nullable=False),
        _list_column('pending_partner_ids'),
        sa.Column('queued_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('process_after', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='idle'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processing_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.String(length=500), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('user_id'),
    )
    op.create_index('ix_learning_queues_process_after', 'learning_queues', ['process_after'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('context', _json(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])

    op.create_table(
        'user_profiles',
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('company_name', sa.String(length=255), nullable=True),
        _list_column('vat_ids'),
        _list_column('ibans'),
        _list_column('emails'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('user_id'),
    )


def downgrade() -> None:
    """Drop all matching tables."""
    for table in (
        'user_profiles',
        'notifications',
        'learning_queues',
        'no_receipt_categories',
        'files',
        'transactions',
        'global_partners',
        'partners',
    ):
        op.drop_table(table)
