"""Add webhook_events ledger

Revision ID: 0002_add_webhook_events
Revises: 0001_add_subscriptions
Create Date: 2026-09-02

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0002_add_webhook_events'
down_revision: Union[str, None] = '0001_add_subscriptions'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # event_id is not unique: a failed attempt and its successful retry both get a row
    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('data', sa.JSON),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index('ix_webhook_events_event_id', 'webhook_events', ['event_id'])


def downgrade() -> None:
    op.drop_index('ix_webhook_events_event_id', table_name='webhook_events')
    op.drop_table('webhook_events')
