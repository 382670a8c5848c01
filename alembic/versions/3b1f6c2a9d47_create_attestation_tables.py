"""create_attestation_tables

Revision ID: 3b1f6c2a9d47
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b1f6c2a9d47'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

challenge_channel_enum = sa.Enum('EMAIL', 'SMS', name='challengechannel')
consumed_reason_enum = sa.Enum(
    'VALIDATED', 'SUPERSEDED', 'CANCELLED', 'ATTEMPTS_EXHAUSTED', 'DELIVERY_FAILED',
    name='consumedreason'
)
attestation_method_enum = sa.Enum('APP_APPROVAL', 'EMAIL_OTP', 'MANUAL_APPROVAL', name='attestationmethod')
confidence_level_enum = sa.Enum('LOW', 'SUBSTANTIAL', 'HIGH', name='confidencelevel')

def upgrade() -> None:
    op.create_table(
        'physicians',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('license_number', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('specialization', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_physicians_id', 'physicians', ['id'])
    op.create_index('ix_physicians_license_number', 'physicians', ['license_number'], unique=True)

    op.create_table(
        'challenges',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('license_number', sa.String(), nullable=False),
        sa.Column('channel', challenge_channel_enum, nullable=False),
        sa.Column('destination', sa.String(), nullable=False),
        sa.Column('code_hash', sa.String(), nullable=False),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('consumed', sa.Boolean(), nullable=False),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('consumed_reason', consumed_reason_enum, nullable=True),
    )
    op.create_index('ix_challenges_license_number', 'challenges', ['license_number'])
    # At most one unconsumed challenge per license
    op.create_index(
        'uq_challenges_live_license',
        'challenges',
        ['license_number'],
        unique=True,
        sqlite_where=sa.text('consumed = 0'),
        postgresql_where=sa.text('consumed = false'),
    )

    op.create_table(
        'attestation_records',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('document_id', sa.String(), nullable=False),
        sa.Column('method', attestation_method_enum, nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('license_number', sa.String(), nullable=False),
        sa.Column('physician_name', sa.String(), nullable=False),
        sa.Column('proof', sa.Text(), nullable=False),
        sa.Column('confidence_level', confidence_level_enum, nullable=False),
        sa.Column('client_ip', sa.String(), nullable=False),
        sa.Column('user_agent', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_attestation_records_document_id', 'attestation_records', ['document_id'])
    op.create_index('ix_attestation_records_license_number', 'attestation_records', ['license_number'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor', sa.String(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_id', 'audit_logs', ['id'])
    op.create_index('ix_audit_logs_actor', 'audit_logs', ['actor'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])

def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('attestation_records')
    op.drop_index('uq_challenges_live_license', table_name='challenges')
    op.drop_table('challenges')
    op.drop_table('physicians')

    bind = op.get_bind()
    for enum_type in (confidence_level_enum, attestation_method_enum, consumed_reason_enum, challenge_channel_enum):
        enum_type.drop(bind, checkfirst=True)
