"""create rental agreement tables

Revision ID: create_agreement_tables
Revises:
Create Date: 2026-10-19

Creates app_users, properties, property_units, agreement_templates and
agreements. The agreements status CHECK constraints are built from the
status enums so the schema and the code share one list of values.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

from agreement_status import AgreementStatus, SignatureStatus

# revision identifiers, used by Alembic.
revision = 'create_agreement_tables'
down_revision = None
branch_labels = None
depends_on = None


def _sql_in(values):
    return ', '.join(f"'{v}'" for v in values)


def upgrade():
    conn = op.get_bind()
    tables = inspect(conn).get_table_names()

    if 'app_users' not in tables:
        op.create_table(
            'app_users',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('auth_id', sa.String(length=36), nullable=True),
            sa.Column('name', sa.String(length=200), nullable=False),
            sa.Column('email', sa.String(length=200), nullable=True),
            sa.Column('role', sa.String(length=20), nullable=False, server_default='rentee'),
            sa.Column('national_id', sa.String(length=50), nullable=True),
            sa.Column('permanent_address', sa.Text(), nullable=True),
            sa.Column('contact_details', sa.JSON(), nullable=True),
            sa.Column('createdat', sa.DateTime(), nullable=True, server_default=sa.text('CURRENT_TIMESTAMP')),
            sa.PrimaryKeyConstraint('id', name='pk_app_users'),
            sa.UniqueConstraint('auth_id', name='uq_app_users_auth_id')
        )

    if 'properties' not in tables:
        op.create_table(
            'properties',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('name', sa.String(length=200), nullable=False),
            sa.Column('address', sa.Text(), nullable=True),
            sa.Column('propertytype', sa.String(length=50), nullable=True),
            sa.Column('rentalvalues', sa.JSON(), nullable=True),
            sa.Column('terms', sa.JSON(), nullable=True),
            sa.Column('bank_name', sa.String(length=120), nullable=True),
            sa.Column('bank_branch', sa.String(length=120), nullable=True),
            sa.Column('bank_account_number', sa.String(length=60), nullable=True),
            sa.Column('owner_id', sa.String(length=36), nullable=True),
            sa.Column('createdat', sa.DateTime(), nullable=True, server_default=sa.text('CURRENT_TIMESTAMP')),
            sa.ForeignKeyConstraint(['owner_id'], ['app_users.id'], name='fk_properties_owner_id', ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id', name='pk_properties')
        )

    if 'property_units' not in tables:
        op.create_table(
            'property_units',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('propertyid', sa.String(length=36), nullable=False),
            sa.Column('unitnumber', sa.String(length=20), nullable=False),
            sa.Column('floor', sa.String(length=20), nullable=True),
            sa.Column('bedrooms', sa.Integer(), nullable=True),
            sa.Column('bathrooms', sa.Integer(), nullable=True),
            sa.Column('rentalvalues', sa.JSON(), nullable=True),
            sa.ForeignKeyConstraint(['propertyid'], ['properties.id'], name='fk_property_units_propertyid', ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id', name='pk_property_units')
        )

    if 'agreement_templates' not in tables:
        op.create_table(
            'agreement_templates',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('name', sa.String(length=200), nullable=False),
            sa.Column('content', sa.Text(), nullable=False),
            sa.Column('createdat', sa.DateTime(), nullable=True, server_default=sa.text('CURRENT_TIMESTAMP')),
            sa.PrimaryKeyConstraint('id', name='pk_agreement_templates')
        )

    if 'agreements' not in tables:
        op.create_table(
            'agreements',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('templateid', sa.String(length=36), nullable=True),
            sa.Column('propertyid', sa.String(length=36), nullable=True),
            sa.Column('unitid', sa.String(length=36), nullable=True),
            sa.Column('renteeid', sa.String(length=36), nullable=True),
            sa.Column('status', sa.String(length=20), nullable=False, server_default=AgreementStatus.DRAFT.value),
            sa.Column('terms', sa.JSON(), nullable=False),
            sa.Column('notes', sa.Text(), nullable=True),
            sa.Column('documenturl', sa.Text(), nullable=True),
            sa.Column('needs_document_generation', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('startdate', sa.Date(), nullable=True),
            sa.Column('enddate', sa.Date(), nullable=True),
            sa.Column('eviasignreference', sa.String(length=100), nullable=True),
            sa.Column('signature_status', sa.String(length=20), nullable=True),
            sa.Column('signature_sent_at', sa.DateTime(), nullable=True),
            sa.Column('signature_updated_at', sa.DateTime(), nullable=True),
            sa.Column('signatories_status', sa.JSON(), nullable=True),
            sa.Column('signeddate', sa.DateTime(), nullable=True),
            sa.Column('signatureurl', sa.Text(), nullable=True),
            sa.Column('createdat', sa.DateTime(), nullable=True, server_default=sa.text('CURRENT_TIMESTAMP')),
            sa.Column('updatedat', sa.DateTime(), nullable=True, server_default=sa.text('CURRENT_TIMESTAMP')),
            sa.CheckConstraint(
                f"status IN ({_sql_in(AgreementStatus.values())})",
                name='agreements_status_check'
            ),
            sa.CheckConstraint(
                f"signature_status IS NULL OR signature_status IN ({_sql_in(SignatureStatus.values())})",
                name='agreements_signature_status_check'
            ),
            sa.ForeignKeyConstraint(['templateid'], ['agreement_templates.id'], name='fk_agreements_templateid'),
            sa.ForeignKeyConstraint(['propertyid'], ['properties.id'], name='fk_agreements_propertyid'),
            sa.ForeignKeyConstraint(['unitid'], ['property_units.id'], name='fk_agreements_unitid', ondelete='SET NULL'),
            sa.ForeignKeyConstraint(['renteeid'], ['app_users.id'], name='fk_agreements_renteeid'),
            sa.PrimaryKeyConstraint('id', name='pk_agreements')
        )

        op.create_index('ix_agreements_eviasignreference', 'agreements', ['eviasignreference'], unique=False)
        op.create_index('ix_agreements_status', 'agreements', ['status'], unique=False)


def downgrade():
    conn = op.get_bind()
    tables = inspect(conn).get_table_names()

    if 'agreements' in tables:
        op.drop_index('ix_agreements_status', table_name='agreements')
        op.drop_index('ix_agreements_eviasignreference', table_name='agreements')
        op.drop_table('agreements')

    for table in ('agreement_templates', 'property_units', 'properties', 'app_users'):
        if table in tables:
            op.drop_table(table)
