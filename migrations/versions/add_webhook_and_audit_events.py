"""add webhook_events and audit_events tables

Revision ID: add_webhook_audit_events
Revises: create_agreement_tables
Create Date: 2026-10-19

webhook_events keeps every Evia Sign callback so a manual status refresh
can fall back to it. audit_events records the agreement workflow trail,
including reconciliation divergence at critical severity.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

# revision identifiers, used by Alembic.
revision = 'add_webhook_audit_events'
down_revision = 'create_agreement_tables'
branch_labels = None
depends_on = None


def upgrade():
    conn = op.get_bind()
    tables = inspect(conn).get_table_names()

    if 'webhook_events' not in tables:
        op.create_table(
            'webhook_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('event_type', sa.String(length=100), nullable=True),
            sa.Column('request_id', sa.String(length=100), nullable=False),
            sa.Column('user_name', sa.String(length=200), nullable=True),
            sa.Column('user_email', sa.String(length=200), nullable=True),
            sa.Column('subject', sa.String(length=300), nullable=True),
            sa.Column('event_id', sa.Integer(), nullable=True),
            sa.Column('event_time', sa.DateTime(), nullable=True),
            sa.Column('raw_data', sa.JSON(), nullable=True),
            sa.Column('processed', sa.Boolean(), nullable=True, server_default=sa.false()),
            sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.text('CURRENT_TIMESTAMP')),
            sa.PrimaryKeyConstraint('id', name='pk_webhook_events')
        )
        op.create_index('ix_webhook_events_request_id', 'webhook_events', ['request_id'], unique=False)

    if 'audit_events' not in tables:
        op.create_table(
            'audit_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('event_type', sa.String(length=50), nullable=False),
            sa.Column('agreement_id', sa.String(length=36), nullable=True),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('event_data', sa.JSON(), nullable=True),
            sa.Column('source', sa.String(length=20), nullable=False, server_default='app'),
            sa.Column('severity', sa.String(length=20), nullable=False, server_default='info'),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
            sa.PrimaryKeyConstraint('id', name='pk_audit_events')
        )
        op.create_index('ix_audit_events_agreement_id', 'audit_events', ['agreement_id'], unique=False)
        op.create_index('ix_audit_events_event_type', 'audit_events', ['event_type'], unique=False)


def downgrade():
    conn = op.get_bind()
    tables = inspect(conn).get_table_names()

    if 'audit_events' in tables:
        op.drop_index('ix_audit_events_event_type', table_name='audit_events')
        op.drop_index('ix_audit_events_agreement_id', table_name='audit_events')
        op.drop_table('audit_events')

    if 'webhook_events' in tables:
        op.drop_index('ix_webhook_events_request_id', table_name='webhook_events')
        op.drop_table('webhook_events')
