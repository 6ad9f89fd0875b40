"""Add sparkbid core tables

Revision ID: 20261019_sparkbid_core
Revises:
Create Date: 2026-10-19

Tables:
- user: marketplace participants (citizen / electrician / admin)
- job, bid, review: job lifecycle and bidding
- escrow_account, payment: held amount of the accepted bid
- conversation, message: owner <-> accepted electrician messaging
- device_token, notification_log: push fallback and delivery trace
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = '20261019_sparkbid_core'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    # === USER TABLE ===
    op.create_table('user',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(32), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='citizen'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('service_category', sa.String(32), nullable=False, server_default='elektrik'),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('rating_average', sa.Numeric(3, 2), nullable=False, server_default='0'),
        sa.Column('total_reviews', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_user'),
    )
    op.create_index('ix_user_email', 'user', ['email'], unique=True)
    op.create_index('ix_user_role', 'user', ['role'], unique=False)

    # === JOB TABLE ===
    op.create_table('job',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('citizen_id', sa.UUID(), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('category', sa.String(32), nullable=False, server_default='elektrik'),
        sa.Column('urgency', sa.String(20), nullable=False, server_default='medium'),
        sa.Column('estimated_budget', sa.Numeric(12, 2), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='open'),
        sa.Column('location', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('city_key', sa.String(100), nullable=True),
        sa.Column('bid_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('accepted_bid_id', sa.UUID(), nullable=True),
        sa.Column('assigned_electrician_id', sa.UUID(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('review_window_closes_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['citizen_id'], ['user.id'], name='fk_job_citizen_id_user', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(
            ['assigned_electrician_id'], ['user.id'],
            name='fk_job_assigned_electrician_id_user', ondelete='SET NULL',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_job'),
    )
    op.create_index('ix_job_citizen_id', 'job', ['citizen_id'], unique=False)
    op.create_index('ix_job_status', 'job', ['status'], unique=False)
    op.create_index('ix_job_assigned_electrician_id', 'job', ['assigned_electrician_id'], unique=False)
    op.create_index('idx_job_status_category', 'job', ['status', 'category'], unique=False)
    op.create_index('idx_job_status_city_key', 'job', ['status', 'city_key'], unique=False)

    # === BID TABLE ===
    op.create_table('bid',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('job_id', sa.UUID(), nullable=False),
        sa.Column('electrician_id', sa.UUID(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('estimated_duration_hours', sa.Integer(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('withdrawn_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['job_id'], ['job.id'], name='fk_bid_job_id_job', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['electrician_id'], ['user.id'], name='fk_bid_electrician_id_user', ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id', name='pk_bid'),
    )
    op.create_index('ix_bid_job_id', 'bid', ['job_id'], unique=False)
    op.create_index('ix_bid_electrician_id', 'bid', ['electrician_id'], unique=False)
    op.create_index('idx_bid_job_status', 'bid', ['job_id', 'status'], unique=False)
    # One active (pending/accepted) bid per electrician per job
    op.create_index(
        'uq_bid_active_per_bidder', 'bid', ['job_id', 'electrician_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'accepted')"),
    )

    # === REVIEW TABLE ===
    op.create_table('review',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('job_id', sa.UUID(), nullable=False),
        sa.Column('reviewer_id', sa.UUID(), nullable=False),
        sa.Column('reviewed_id', sa.UUID(), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('rating >= 1 AND rating <= 5', name='ck_review_rating_range'),
        sa.ForeignKeyConstraint(['job_id'], ['job.id'], name='fk_review_job_id_job', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['reviewer_id'], ['user.id'], name='fk_review_reviewer_id_user', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['reviewed_id'], ['user.id'], name='fk_review_reviewed_id_user', ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id', name='pk_review'),
        sa.UniqueConstraint('job_id', name='uq_review_job_id'),
    )
    op.create_index('ix_review_reviewed_id', 'review', ['reviewed_id'], unique=False)

    # === ESCROW ACCOUNT TABLE ===
    op.create_table('escrow_account',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('job_id', sa.UUID(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='TRY'),
        sa.Column('status', sa.String(20), nullable=False, server_default='unfunded'),
        sa.Column('funding_requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('funded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['job_id'], ['job.id'], name='fk_escrow_account_job_id_job', ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id', name='pk_escrow_account'),
        sa.UniqueConstraint('job_id', name='uq_escrow_account_job_id'),
    )
    op.create_index('ix_escrow_account_status', 'escrow_account', ['status'], unique=False)

    # === PAYMENT TABLE ===
    op.create_table('payment',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('escrow_id', sa.UUID(), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='TRY'),
        sa.Column('external_reference', sa.String(255), nullable=True),
        sa.Column('counterparty_id', sa.UUID(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ['escrow_id'], ['escrow_account.id'],
            name='fk_payment_escrow_id_escrow_account', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['counterparty_id'], ['user.id'],
            name='fk_payment_counterparty_id_user', ondelete='SET NULL',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_payment'),
    )
    op.create_index('ix_payment_escrow_id', 'payment', ['escrow_id'], unique=False)
    op.create_index('ix_payment_external_reference', 'payment', ['external_reference'], unique=False)

    # === CONVERSATION TABLE ===
    op.create_table('conversation',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('job_id', sa.UUID(), nullable=False),
        sa.Column('citizen_id', sa.UUID(), nullable=False),
        sa.Column('electrician_id', sa.UUID(), nullable=False),
        sa.Column('archived_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_message_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_message_preview', sa.String(120), nullable=True),
        sa.Column('citizen_unread_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('electrician_unread_count', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['job_id'], ['job.id'], name='fk_conversation_job_id_job', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(
            ['citizen_id'], ['user.id'],
            name='fk_conversation_citizen_id_user', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['electrician_id'], ['user.id'],
            name='fk_conversation_electrician_id_user', ondelete='RESTRICT',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_conversation'),
        sa.UniqueConstraint('job_id', name='uq_conversation_job_id'),
    )
    op.create_index('ix_conversation_citizen_id', 'conversation', ['citizen_id'], unique=False)
    op.create_index('ix_conversation_electrician_id', 'conversation', ['electrician_id'], unique=False)

    # === MESSAGE TABLE ===
    op.create_table('message',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('conversation_id', sa.UUID(), nullable=False),
        sa.Column('sender_id', sa.UUID(), nullable=False),
        sa.Column('recipient_id', sa.UUID(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ['conversation_id'], ['conversation.id'],
            name='fk_message_conversation_id_conversation', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(['sender_id'], ['user.id'], name='fk_message_sender_id_user', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['recipient_id'], ['user.id'], name='fk_message_recipient_id_user', ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id', name='pk_message'),
    )
    op.create_index('ix_message_recipient_id', 'message', ['recipient_id'], unique=False)
    op.create_index('idx_message_conversation_created', 'message', ['conversation_id', 'created_at'], unique=False)

    # === DEVICE TOKEN TABLE ===
    op.create_table('device_token',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('token', sa.String(500), nullable=False),
        sa.Column('platform', sa.String(20), nullable=False, server_default='android'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_count', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['user.id'], name='fk_device_token_user_id_user', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_device_token'),
        sa.UniqueConstraint('token', name='uq_device_token_token'),
    )
    op.create_index('idx_device_token_user_active', 'device_token', ['user_id', 'is_active'], unique=False)

    # === NOTIFICATION LOG TABLE ===
    op.create_table('notification_log',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('event_type', sa.String(40), nullable=False),
        sa.Column('job_id', sa.UUID(), nullable=True),
        sa.Column('recipient_id', sa.UUID(), nullable=True),
        sa.Column('transport', sa.String(20), nullable=False),
        sa.Column('outcome', sa.String(20), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('detail', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_notification_log'),
    )
    op.create_index('ix_notification_log_recipient_id', 'notification_log', ['recipient_id'], unique=False)
    op.create_index('idx_notification_log_job', 'notification_log', ['job_id', 'created_at'], unique=False)


def downgrade() -> None:
    op.drop_table('notification_log')
    op.drop_table('device_token')
    op.drop_table('message')
    op.drop_table('conversation')
    op.drop_table('payment')
    op.drop_table('escrow_account')
    op.drop_table('review')
    op.drop_table('bid')
    op.drop_table('job')
    op.drop_table('user')
