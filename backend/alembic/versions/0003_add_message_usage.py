"""Add message_usage quota counter

Revision ID: 0003_add_message_usage
Revises: 0002_add_webhook_events
Create Date: 2026-09-03

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0003_add_message_usage'
down_revision: Union[str, None] = '0002_add_webhook_events'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'message_usage',
        sa.Column('user_id', sa.String(64), primary_key=True),
        sa.Column('message_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('month', sa.String(7), nullable=False),  # YYYY-MM
        sa.Column('last_reset', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table('message_usage')
