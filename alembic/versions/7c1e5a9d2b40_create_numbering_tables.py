"""create users, rate decks, phone numbers, assignments, billings and email logs

Revision ID: 7c1e5a9d2b40
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7c1e5a9d2b40'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('hashed_password', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('company', sa.String(), nullable=True),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'number_rate_decks',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('currency', sa.String(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'number_rates',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('rate_deck_id', sa.String(), sa.ForeignKey('number_rate_decks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('country', sa.String(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('prefix', sa.String(), nullable=False),
        sa.Column('rate', sa.Float(), nullable=False),
        sa.Column('setup_fee', sa.Float(), nullable=False),
        sa.Column('effective_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_number_rates_rate_deck_id', 'number_rates', ['rate_deck_id'])
    op.create_index('idx_number_rates_deck_country_type', 'number_rates', ['rate_deck_id', 'country', 'type'])

    op.create_table(
        'rate_deck_assignments',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rate_deck_id', sa.String(), sa.ForeignKey('number_rate_decks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rate_deck_type', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_rate_deck_assignments_user_id', 'rate_deck_assignments', ['user_id'])
    op.create_index('ix_rate_deck_assignments_rate_deck_id', 'rate_deck_assignments', ['rate_deck_id'])

    op.create_table(
        'phone_numbers',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('number', sa.String(), nullable=False),
        sa.Column('country', sa.String(), nullable=False),
        sa.Column('number_type', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('backorder_only', sa.Boolean(), nullable=False),
        sa.Column('provider', sa.String(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('capabilities', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('rate_deck_id', sa.String(), sa.ForeignKey('number_rate_decks.id', ondelete='SET NULL'), nullable=True),
        sa.Column('assigned_to', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('assigned_by', sa.String(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('unassigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('unassigned_by', sa.String(), nullable=True),
        sa.Column('unassigned_reason', sa.Text(), nullable=True),
        sa.Column('monthly_rate', sa.Float(), nullable=False),
        sa.Column('setup_fee', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False),
        sa.Column('billing_cycle', sa.String(), nullable=False),
        sa.Column('next_billing_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_billed_date', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_phone_numbers_number', 'phone_numbers', ['number'], unique=True)
    op.create_index('ix_phone_numbers_country', 'phone_numbers', ['country'])
    op.create_index('ix_phone_numbers_number_type', 'phone_numbers', ['number_type'])
    op.create_index('ix_phone_numbers_status', 'phone_numbers', ['status'])
    op.create_index('ix_phone_numbers_rate_deck_id', 'phone_numbers', ['rate_deck_id'])
    op.create_index('ix_phone_numbers_assigned_to', 'phone_numbers', ['assigned_to'])
    op.create_index('idx_phone_numbers_status_backorder', 'phone_numbers', ['status', 'backorder_only'])

    op.create_table(
        'phone_number_assignments',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('phone_number_id', sa.String(), sa.ForeignKey('phone_numbers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('assigned_by', sa.String(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('billing_start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('billing_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('monthly_rate', sa.Float(), nullable=False),
        sa.Column('setup_fee', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False),
        sa.Column('billing_cycle', sa.String(), nullable=False),
        sa.Column('unassigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('unassigned_by', sa.String(), nullable=True),
        sa.Column('unassigned_reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_phone_number_assignments_phone_number_id', 'phone_number_assignments', ['phone_number_id'])
    op.create_index('ix_phone_number_assignments_user_id', 'phone_number_assignments', ['user_id'])
    op.create_index('ix_phone_number_assignments_status', 'phone_number_assignments', ['status'])
    op.create_index('idx_assignments_number_status', 'phone_number_assignments', ['phone_number_id', 'status'])
    op.create_index('idx_assignments_number_user_status', 'phone_number_assignments', ['phone_number_id', 'user_id', 'status'])
    op.create_index(
        'uq_assignments_one_active_per_number',
        'phone_number_assignments',
        ['phone_number_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )

    op.create_table(
        'phone_number_billings',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('phone_number_id', sa.String(), sa.ForeignKey('phone_numbers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('assignment_id', sa.String(), sa.ForeignKey('phone_number_assignments.id', ondelete='SET NULL'), nullable=True),
        sa.Column('billing_period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('billing_period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('billing_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('transaction_type', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('processed_by', sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_phone_number_billings_phone_number_id', 'phone_number_billings', ['phone_number_id'])
    op.create_index('ix_phone_number_billings_user_id', 'phone_number_billings', ['user_id'])
    op.create_index('ix_phone_number_billings_assignment_id', 'phone_number_billings', ['assignment_id'])
    op.create_index('ix_phone_number_billings_status', 'phone_number_billings', ['status'])
    op.create_index('idx_billings_assignment_status', 'phone_number_billings', ['assignment_id', 'status'])
    op.create_index('idx_billings_number_user_status', 'phone_number_billings', ['phone_number_id', 'user_id', 'status'])

    op.create_table(
        'email_logs',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('user_email', sa.String(), nullable=False),
        sa.Column('user_name', sa.String(), nullable=True),
        sa.Column('notification_type', sa.String(), nullable=False),
        sa.Column('email_subject', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('alert_data', sa.JSON(), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_email_logs_user_id', 'email_logs', ['user_id'])
    op.create_index('ix_email_logs_notification_type', 'email_logs', ['notification_type'])


def downgrade() -> None:
    op.drop_table('email_logs')
    op.drop_table('phone_number_billings')
    op.drop_index('uq_assignments_one_active_per_number', table_name='phone_number_assignments')
    op.drop_table('phone_number_assignments')
    op.drop_table('phone_numbers')
    op.drop_table('rate_deck_assignments')
    op.drop_table('number_rates')
    op.drop_table('number_rate_decks')
    op.drop_table('users')
