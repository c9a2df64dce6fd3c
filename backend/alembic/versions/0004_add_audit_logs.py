"""Add audit_logs table

Revision ID: 0004_add_audit_logs
Revises: 0003_add_message_usage
Create Date: 2026-09-05

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0004_add_audit_logs'
down_revision: Union[str, None] = '0003_add_message_usage'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('category', sa.String(20), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('user_id', sa.String(64)),
        sa.Column('success', sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column('message', sa.Text, server_default='', nullable=False),
        sa.Column('details', sa.JSON),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_audit_logs_category', 'audit_logs', ['category'])
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])


def downgrade() -> None:
    op.drop_index('ix_audit_logs_user_id', table_name='audit_logs')
    op.drop_index('ix_audit_logs_category', table_name='audit_logs')
    op.drop_table('audit_logs')
