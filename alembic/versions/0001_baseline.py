"""Baseline migration - directory, trigger, notification, consent and audit tables

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-12

Directory tables (users, clients, supervisor_assignments) are owned by the
practice application; they are created here so a standalone install works.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    """Create all engine tables."""

    # ==========================================================================
    # Directory
    # ==========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('role', sa.String(50), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        _ts('created_at'),
    )
    op.create_index('idx_users_role_active', 'users', ['role', 'is_active'])

    op.create_table(
        'clients',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column(
            'assigned_therapist_id',
            sa.Integer(),
            sa.ForeignKey('users.id', ondelete='SET NULL'),
            nullable=True,
        ),
        _ts('created_at'),
    )

    op.create_table(
        'supervisor_assignments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'supervisor_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column(
            'therapist_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        _ts('assigned_at'),
    )
    op.create_index(
        'idx_supervisor_therapist_active', 'supervisor_assignments', ['therapist_id', 'is_active']
    )

    # ==========================================================================
    # Trigger definitions
    # ==========================================================================
    op.create_table(
        'notification_templates',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False, unique=True),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('action_url', sa.String(500), nullable=True),
        sa.Column('action_label', sa.String(100), nullable=True),
        sa.Column('is_html', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        _ts('created_at'),
        _ts('updated_at'),
    )

    op.create_table(
        'notification_triggers',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('condition', sa.JSON(), nullable=False),
        sa.Column('recipient_rule', sa.JSON(), nullable=False),
        sa.Column(
            'template_id',
            sa.Uuid(),
            sa.ForeignKey('notification_templates.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('priority', sa.String(20), nullable=False),
        sa.Column('enabled', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        _ts('created_at'),
        _ts('updated_at'),
    )
    op.create_index('idx_trigger_event_enabled', 'notification_triggers', ['event_type', 'enabled'])

    # ==========================================================================
    # Events and notifications
    # ==========================================================================
    op.create_table(
        'domain_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('subject_id', sa.Integer(), nullable=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('context', sa.JSON(), nullable=False),
        _ts('occurred_at'),
        _ts('received_at'),
        sa.Column('status', sa.String(20), nullable=False),
        _ts('processed_at', nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
    )
    op.create_index('idx_events_status_received', 'domain_events', ['status', 'received_at'])
    op.create_index('idx_events_type_occurred', 'domain_events', ['event_type', 'occurred_at'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'recipient_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column(
            'event_id',
            sa.Uuid(),
            sa.ForeignKey('domain_events.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column(
            'source_trigger_id',
            sa.Uuid(),
            sa.ForeignKey('notification_triggers.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('subject_id', sa.Integer(), nullable=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('priority', sa.String(20), nullable=False),
        sa.Column('action_url', sa.String(500), nullable=True),
        sa.Column('action_label', sa.String(100), nullable=True),
        _ts('read_at', nullable=True),
        _ts('created_at'),
        sa.UniqueConstraint(
            'event_id', 'source_trigger_id', 'recipient_id', name='uq_notif_event_trigger_recipient'
        ),
    )
    op.create_index(
        'idx_notif_recipient_unread', 'notifications', ['recipient_id', 'read_at', 'created_at']
    )
    op.create_index('idx_notif_recipient_created', 'notifications', ['recipient_id', 'created_at'])

    op.create_table(
        'notification_deliveries',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'notification_id',
            sa.Uuid(),
            sa.ForeignKey('notifications.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        _ts('delivered_at', nullable=True),
        _ts('created_at'),
        sa.UniqueConstraint('notification_id', 'channel', name='uq_delivery_notification_channel'),
    )

    op.create_table(
        'notification_preferences',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('enable_in_app', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('enable_log', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('enable_webhook', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('quiet_hours_start', sa.Time(), nullable=True),
        sa.Column('quiet_hours_end', sa.Time(), nullable=True),
        _ts('created_at'),
        _ts('updated_at'),
        sa.UniqueConstraint('user_id', 'event_type', name='uq_preference_user_event_type'),
    )

    # ==========================================================================
    # Consent and audit
    # ==========================================================================
    op.create_table(
        'consent_records',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('subject_id', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('granted', sa.Boolean(), nullable=False),
        sa.Column('consent_version', sa.String(20), nullable=False),
        _ts('granted_at', nullable=True),
        _ts('withdrawn_at', nullable=True),
        _ts('recorded_at'),
        sa.Column('recorded_by', sa.Integer(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
    )
    op.create_index(
        'idx_consent_subject_category_recorded',
        'consent_records',
        ['subject_id', 'category', 'recorded_at'],
    )
    op.create_index('idx_consent_category_recorded', 'consent_records', ['category', 'recorded_at'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('subject_id', sa.Integer(), nullable=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('target_type', sa.String(50), nullable=True),
        sa.Column('target_id', sa.String(64), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('prev_hash', sa.String(64), nullable=True),
        sa.Column('entry_hash', sa.String(64), nullable=True),
        _ts('created_at'),
    )
    op.create_index('idx_audit_created', 'audit_logs', ['created_at'])
    op.create_index('idx_audit_subject_created', 'audit_logs', ['subject_id', 'created_at'])
    op.create_index('idx_audit_event_created', 'audit_logs', ['event_type', 'created_at'])

    # ==========================================================================
    # Jobs and alerts
    # ==========================================================================
    op.create_table(
        'jobs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('job_type', sa.String(50), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        _ts('run_at'),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        _ts('created_at'),
        _ts('started_at', nullable=True),
        _ts('completed_at', nullable=True),
        sa.Column('idempotency_key', sa.String(255), nullable=True),
        sa.UniqueConstraint('idempotency_key', name='uq_job_idempotency'),
    )
    op.create_index('idx_jobs_pending', 'jobs', ['status', 'run_at'])

    op.create_table(
        'system_alerts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('dedupe_key', sa.String(64), nullable=False),
        sa.Column('alert_key', sa.String(255), nullable=True),
        sa.Column('alert_type', sa.String(50), nullable=False),
        sa.Column('severity', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        _ts('first_seen_at'),
        _ts('last_seen_at'),
        sa.Column('occurrence_count', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        _ts('resolved_at', nullable=True),
        sa.Column('resolved_by', sa.Integer(), nullable=True),
        sa.UniqueConstraint('dedupe_key', name='uq_system_alerts_dedupe'),
    )
    op.create_index('ix_system_alerts_status', 'system_alerts', ['status', 'severity'])


def downgrade() -> None:
    """Drop all engine tables."""
    for table in (
        'system_alerts',
        'jobs',
        'audit_logs',
        'consent_records',
        'notification_preferences',
        'notification_deliveries',
        'notifications',
        'domain_events',
        'notification_triggers',
        'notification_templates',
        'supervisor_assignments',
        'clients',
        'users',
    ):
        op.drop_table(table)
