"""
Initial schema: identity, pipeline, contacts, activity log, settings

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), onupdate=sa.func.now()),
    ]


def upgrade() -> None:
    """Create all tables."""

    # Identity
    op.create_table(
        'users',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('job_title', sa.String(200), nullable=True),
        sa.Column('timezone', sa.String(100), nullable=True),
        sa.Column('avatar', sa.String(500), nullable=True),
        sa.Column('status', sa.Enum('active', 'inactive', 'terminated', name='userstatus'), nullable=False, index=True),
        sa.Column('login_attempts', sa.Integer, nullable=False, server_default='0'),
        sa.Column('locked_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_login', sa.DateTime(timezone=True), nullable=True),
        sa.Column('email_verified', sa.Boolean, nullable=True, server_default=sa.false()),
        sa.Column('email_verification_token', sa.String(64), nullable=True, index=True),
        sa.Column('password_reset_token', sa.String(64), nullable=True, index=True),
        sa.Column('password_reset_expires', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'roles',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('name', sa.String(50), nullable=False, unique=True, index=True),
        sa.Column('display_name', sa.String(100), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('permissions', sa.JSON, nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=True, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'user_roles',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('user_id', sa.String(15), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('role_id', sa.String(15), sa.ForeignKey('roles.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('assigned_by', sa.String(15), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=True, server_default=sa.true(), index=True),
        *_timestamps(),
    )

    op.create_table(
        'user_sessions',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('user_id', sa.String(15), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('session_token', sa.String(64), nullable=False, unique=True, index=True),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=True, server_default=sa.true(), index=True),
        sa.Column('last_activity', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    # Pipeline reference data
    op.create_table(
        'lead_statuses',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('slug', sa.String(50), nullable=False, unique=True, index=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('color', sa.String(7), nullable=True),
        sa.Column('sort_order', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=True, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'lead_sources',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False, unique=True),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=True, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'contacts',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=True, index=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('company', sa.String(200), nullable=True),
        sa.Column('job_title', sa.String(200), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('source_lead_id', sa.String(15), nullable=True, index=True),
        sa.Column('owner_id', sa.String(15), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('is_active', sa.Boolean, nullable=True, server_default=sa.true(), index=True),
        *_timestamps(),
    )

    op.create_table(
        'leads',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, index=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('company', sa.String(200), nullable=True),
        sa.Column('job_title', sa.String(200), nullable=True),
        sa.Column('website', sa.String(500), nullable=True),
        sa.Column('industry', sa.String(100), nullable=True),
        sa.Column('company_size', sa.String(50), nullable=True),
        sa.Column('annual_revenue', sa.Numeric(15, 2), nullable=True),
        sa.Column('budget_range', sa.String(100), nullable=True),
        sa.Column('decision_maker', sa.Boolean, nullable=True, server_default=sa.false()),
        sa.Column('lead_source_id', sa.String(15), sa.ForeignKey('lead_sources.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('status', sa.String(50), nullable=False, server_default='new', index=True),
        sa.Column('temperature', sa.Enum('cold', 'warm', 'hot', name='leadtemperature'), nullable=False, index=True),
        sa.Column('priority', sa.Enum('low', 'medium', 'high', 'urgent', name='leadpriority'), nullable=False),
        sa.Column('score', sa.Integer, nullable=False, server_default='0'),
        sa.Column('assigned_to', sa.String(15), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('created_by', sa.String(15), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('tags', sa.JSON, nullable=False),
        sa.Column('next_follow_up', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_contacted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('converted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('conversion_type', sa.String(50), nullable=True),
        sa.Column('conversion_value', sa.Numeric(15, 2), nullable=True),
        sa.Column('converted_contact_id', sa.String(15), sa.ForeignKey('contacts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('version', sa.Integer, nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'lead_activities',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('lead_id', sa.String(15), sa.ForeignKey('leads.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('activity_type', sa.String(50), nullable=False, index=True),
        sa.Column('subject', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('outcome', sa.Enum('positive', 'neutral', 'negative', name='activityoutcome'), nullable=False),
        sa.Column('duration_minutes', sa.Integer, nullable=False, server_default='0'),
        sa.Column('next_action', sa.String(500), nullable=True),
        sa.Column('activity_date', sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column('details', sa.JSON, nullable=True),
        sa.Column('created_by', sa.String(15), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
    )

    # Audit trail
    op.create_table(
        'activities',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('user_id', sa.String(15), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('type', sa.String(50), nullable=False, index=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('category', sa.String(50), nullable=False, server_default='system'),
        sa.Column('subject_type', sa.String(50), nullable=True, index=True),
        sa.Column('subject_id', sa.String(15), nullable=True, index=True),
        sa.Column('details', sa.JSON, nullable=True),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('created', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), index=True),
    )

    op.create_table(
        'app_settings',
        sa.Column('id', sa.String(15), primary_key=True),
        sa.Column('key', sa.String(100), nullable=False, unique=True, index=True),
        sa.Column('value', sa.JSON, nullable=True),
        sa.Column('description', sa.String(500), nullable=True),
        *_timestamps(),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('app_settings')
    op.drop_table('activities')
    op.drop_table('lead_activities')
    op.drop_table('leads')
    op.drop_table('contacts')
    op.drop_table('lead_sources')
    op.drop_table('lead_statuses')
    op.drop_table('user_sessions')
    op.drop_table('user_roles')
    op.drop_table('roles')
    op.drop_table('users')

    # Drop enums
    op.execute("DROP TYPE IF EXISTS activityoutcome")
    op.execute("DROP TYPE IF EXISTS leadpriority")
    op.execute("DROP TYPE IF EXISTS leadtemperature")
    op.execute("DROP TYPE IF EXISTS userstatus")
